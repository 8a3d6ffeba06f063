
class Config:
	# SSH-CONNECT 5.1. Window and packet size we advertise when opening
	#  or confirming a channel
	INITIAL_WINDOW_SIZE = 2 * 1024 * 1024
	MAXIMUM_PACKET_SIZE = 32768

	# SSH-CONNECT 5.2. The window size is a uint32, so it may never be
	#  raised past this
	MAXIMUM_WINDOW_SIZE = 0xFFFFFFFF

	# Window top-ups smaller than this are queued up and sent together
	#  unless forced
	CHANNEL_MINADJUST = 1024

	# Max channels per transport. If none, no limit.
	CHANNELS_MAX = None

	# If the peer may open session channels towards us
	ACCEPT_CHANNELS = False

	# Default timeout in seconds for blocking calls. None blocks
	#  forever, 0 never blocks.
	TIMEOUT = None
