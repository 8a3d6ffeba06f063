
import logging
import threading
import time

from config import Config
from errors import ProtocolError, Timeout, WindowExceeded


logger = logging.getLogger(__name__)



class FlowControlWindow:
	"""
	SSH-CONNECT 5.2. Byte budget for one direction of a channel.

	A channel holds two of these. The local window is how much the peer
	may still send us; it shrinks as data arrives and is topped up with
	adjust() as the consumer reads. The remote window is how much we may
	still send; it shrinks through reserve() as we write and grows when
	the peer sends SSH_MSG_CHANNEL_WINDOW_ADJUST.

	The consumer and the transport's reader thread both touch the size,
	so every change happens under the condition's lock.
	"""

	def __init__(self, size, maximum_packet_size, on_adjust=None,
			minimum_adjust=Config.CHANNEL_MINADJUST):
		self.cv = threading.Condition()
		self._size = size
		self.initial_size = size
		self.maximum_packet_size = maximum_packet_size
		self.minimum_adjust = minimum_adjust

		# Called with the number of bytes to advertise whenever a
		#  queued adjustment is actually sent
		self.on_adjust = on_adjust

		# Credit given back by the consumer but not yet advertised
		self.pending_adjust = 0

		# Set once the window is torn down. Blocked reservers are
		#  woken with this error.
		self.error = None

	@property
	def size(self):
		with self.cv:
			return self._size


	def consume(self, n):
		"""Account for n bytes arriving in this direction"""
		with self.cv:
			if n > self._size:
				raise WindowExceeded(f"{n} bytes exceeds window of {self._size}")
			self._size -= n


	def adjust(self, delta, force=False):
		"""
		Give delta bytes of credit back. Small amounts are queued and
		sent with a later adjustment unless forced, or unless the window
		has run dry. Returns the window size as the peer understands it.
		"""
		if delta < 0:
			raise ValueError(f"Window adjustment of {delta} is negative")

		with self.cv:
			if self.error is not None:
				return self._size

			self.pending_adjust += delta
			if self.pending_adjust <= 0:
				return self._size
			if not force and self.pending_adjust < self.minimum_adjust and self._size > 0:
				return self._size

			# Never advertise past the uint32 limit
			credit = min(self.pending_adjust, Config.MAXIMUM_WINDOW_SIZE - self._size)
			self.pending_adjust = 0
			self._size += credit
			size = self._size

		if credit and self.on_adjust is not None:
			self.on_adjust(credit)
		return size


	def grow(self, n):
		"""Apply a window adjustment received from the peer"""
		if n < 0:
			raise ValueError(f"Window adjustment of {n} is negative")
		with self.cv:
			if self._size + n > Config.MAXIMUM_WINDOW_SIZE:
				raise ProtocolError(f"Window adjust of {n} overflows window of {self._size}")
			self._size += n
			self.cv.notify_all()
			logger.debug("Window up %d to %d", n, self._size)


	def reserve(self, n, timeout=None):
		"""
		Wait for the window to open up and take up to n bytes of it,
		never more than a single packet. Returns how much was taken.
		"""
		deadline = None if timeout is None else time.monotonic() + timeout
		with self.cv:
			while self._size == 0 and self.error is None:
				remaining = None if deadline is None else deadline - time.monotonic()
				if remaining is not None and remaining <= 0:
					raise Timeout("Timed out waiting for window space")
				self.cv.wait(remaining)

			if self.error is not None:
				raise self.error

			size = min(n, self._size, self.maximum_packet_size)
			self._size -= size
			return size


	def close(self, error):
		"""Tear the window down, releasing anybody blocked in reserve()"""
		with self.cv:
			if self.error is None:
				self.error = error
			self.cv.notify_all()
