
import threading
import time

from errors import Timeout



class ExtendedData:
	# Queue extended data separately for read_extended()
	NORMAL = 0

	# Treat extended data and ordinary data the same. Both substreams
	#  are read through read() in the order they arrived.
	MERGE = 1

	# Discard all extended data as it arrives
	IGNORE = 2

	MODES = (NORMAL, MERGE, IGNORE)



class ExtendedDataRouter:
	"""
	Buffers a channel's inbound data until the consumer reads it, and
	decides where extended (stderr) data goes.
	"""

	def __init__(self, mode=ExtendedData.NORMAL):
		self.cv = threading.Condition()
		self.mode = mode
		self.primary = bytearray()
		self.extended = bytearray()

		# Remote EOF. Nothing more will be fed, reads past the buffered
		#  data return b"".
		self.eof = False

		# Raised to readers once their buffer is empty, if set
		self.error = None


	def set_mode(self, mode):
		if mode not in ExtendedData.MODES:
			raise ValueError(f"Unknown extended data mode {mode!r}")
		with self.cv:
			self.mode = mode


	def feed(self, data):
		with self.cv:
			self.primary += data
			self.cv.notify_all()


	def feed_extended(self, data) -> int: # returns bytes dropped
		with self.cv:
			if self.mode == ExtendedData.IGNORE:
				return len(data)

			# Merged data lands in the primary buffer, after whatever
			#  primary data arrived before it
			if self.mode == ExtendedData.MERGE:
				self.primary += data
			else:
				self.extended += data
			self.cv.notify_all()
			return 0


	def read(self, size, extended=False, timeout=None):
		deadline = None if timeout is None else time.monotonic() + timeout
		with self.cv:
			buffer = self.extended if extended else self.primary

			while True:
				if buffer:
					data = bytes(buffer[:size])
					del buffer[:size]
					return data

				# Only NORMAL mode ever adds to the extended buffer.
				#  Whatever was queued before a mode change is still
				#  drained above.
				if extended and self.mode != ExtendedData.NORMAL:
					return b""
				if self.eof:
					return b""
				if self.error is not None:
					raise self.error

				remaining = None if deadline is None else deadline - time.monotonic()
				if remaining is not None and remaining <= 0:
					raise Timeout("Timed out waiting for data")
				self.cv.wait(remaining)


	def pending(self, extended=False):
		with self.cv:
			return len(self.extended if extended else self.primary)


	def discard(self, primary=False, extended=False) -> int: # returns bytes dropped
		with self.cv:
			dropped = 0
			if primary:
				dropped += len(self.primary)
				self.primary.clear()
			if extended:
				dropped += len(self.extended)
				self.extended.clear()
			return dropped


	def mark_eof(self):
		with self.cv:
			self.eof = True
			self.cv.notify_all()


	def close(self, error):
		"""Stop waiting readers. Buffered data stays readable."""
		with self.cv:
			if self.error is None:
				self.error = error
			self.cv.notify_all()
