
class ChannelError(Exception):
	"""Base class of everything raised by the channel layer"""



# Operation attempted outside its legal state, e.g. a second process
#  request on the same channel
class InvalidState(ChannelError):
	...


# Malformed or out-of-sequence message from the peer
class ProtocolError(ChannelError):
	...


# Peer answered a channel request with SSH_MSG_CHANNEL_FAILURE
class RequestRejected(ChannelError):
	...


class ChannelOpenFailure(RequestRejected):
	def __init__(self, reason_code, description=""):
		super().__init__(f"Channel open failed ({reason_code}): {description}")
		self.reason_code = reason_code
		self.description = description


# The underlying connection went away before the handshake completed.
#  Fatal, never retried.
class TransportClosed(ChannelError):
	...


# A caller supplied timeout ran out on a blocking wait. The channel is
#  left as it was, so the wait can be retried.
class Timeout(ChannelError):
	def __init__(self, message="Timed out", bytes_sent=0):
		super().__init__(message)
		self.bytes_sent = bytes_sent


# Local code tried to send more than the peer's window allows. This is a
#  bug in the caller, not a runtime condition.
class WindowExceeded(ChannelError):
	...
