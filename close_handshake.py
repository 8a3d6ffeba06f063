
import enum
import threading
import time

from errors import Timeout



class Stage(enum.IntEnum):
	"""How far one direction of a channel has shut down"""
	OPEN = 0
	EOF = 1     # SSH_MSG_CHANNEL_EOF, no more data
	CLOSED = 2  # SSH_MSG_CHANNEL_CLOSE, no more messages at all


class ChannelState(enum.Enum):
	OPENING = "opening"
	OPEN = "open"
	EOF_SENT = "eof-sent"
	EOF_RECEIVED = "eof-received"
	EOF_BOTH = "eof-both"
	CLOSING = "closing"
	CLOSED = "closed"


def channel_state(local, remote):
	"""Map the stage of both directions onto a channel state"""
	if local == Stage.CLOSED and remote == Stage.CLOSED:
		return ChannelState.CLOSED

	# A close counts as that direction's EOF. Closing is only reached
	#  once both directions are past EOF.
	if local >= Stage.EOF and remote >= Stage.EOF:
		if Stage.CLOSED in (local, remote):
			return ChannelState.CLOSING
		return ChannelState.EOF_BOTH
	if local >= Stage.EOF:
		return ChannelState.EOF_SENT
	if remote >= Stage.EOF:
		return ChannelState.EOF_RECEIVED
	return ChannelState.OPEN



class CloseHandshake:
	"""
	SSH-CONNECT 5.3. Both directions shut down independently: each one
	goes OPEN -> EOF -> CLOSED and never back. Skipping straight to
	CLOSED counts as having passed EOF.

	advance() only reports a change once, which is what keeps EOF and
	CLOSE from ever being sent twice.
	"""

	LOCAL = "local"
	REMOTE = "remote"

	def __init__(self):
		self.cv = threading.Condition()
		self.stages = {self.LOCAL: Stage.OPEN, self.REMOTE: Stage.OPEN}

		# Set when the transport dies before the handshake finished
		self.error = None


	def advance(self, side, stage) -> bool: # returns whether anything changed
		with self.cv:
			if self.error is not None or stage <= self.stages[side]:
				return False
			self.stages[side] = stage
			self.cv.notify_all()
			return True


	def force_closed(self, error):
		with self.cv:
			if self.error is None and self.state != ChannelState.CLOSED:
				self.error = error
			self.cv.notify_all()


	@property
	def state(self):
		with self.cv:
			if self.error is not None:
				return ChannelState.CLOSED
			return channel_state(self.stages[self.LOCAL], self.stages[self.REMOTE])

	@property
	def local_eof_sent(self):
		return self.stages[self.LOCAL] >= Stage.EOF

	@property
	def remote_eof_received(self):
		return self.stages[self.REMOTE] >= Stage.EOF

	@property
	def local_close_sent(self):
		return self.stages[self.LOCAL] == Stage.CLOSED

	@property
	def remote_close_received(self):
		return self.stages[self.REMOTE] == Stage.CLOSED

	@property
	def closed(self):
		return self.local_close_sent and self.remote_close_received


	def wait_for(self, predicate, timeout=None):
		"""
		Block until predicate() holds. Raises the transport's error if
		it died first, or Timeout without touching any state.
		"""
		deadline = None if timeout is None else time.monotonic() + timeout
		with self.cv:
			while not predicate():
				if self.error is not None:
					raise self.error
				remaining = None if deadline is None else deadline - time.monotonic()
				if remaining is not None and remaining <= 0:
					raise Timeout("Timed out waiting for the peer")
				self.cv.wait(remaining)


	def wait_remote_eof(self, timeout=None):
		self.wait_for(lambda: self.remote_eof_received, timeout)


	def wait_closed(self, timeout=None):
		self.wait_for(lambda: self.closed, timeout)
