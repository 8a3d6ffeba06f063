
import logging
import queue
import threading

from channels import ChannelHandler, DEFAULT_TIMEOUT
from config import Config
from errors import ChannelError, ProtocolError, Timeout, TransportClosed
from messages import SSH_MSG, SSH_MSG_CHANNEL_OPEN


logger = logging.getLogger(__name__)



class Transport:
	"""
	The connection channels are multiplexed over.

	Key exchange, authentication and the binary packet protocol all live
	below this class. A subclass only has to move whole, already
	decrypted packet payloads with read_payload() and write_payload().

	start() runs a reader thread that hands inbound payloads to the
	channels. It has to keep running for blocked channel calls to ever
	wake up, e.g. a write waiting for the peer to grow its window.
	"""

	def __init__(self,
		timeout=Config.TIMEOUT,
		accept_channels=Config.ACCEPT_CHANNELS,
		channels_max=Config.CHANNELS_MAX
	):
		# Default for blocking channel calls. None blocks forever, 0
		#  never blocks. Each call may override it.
		self.timeout = timeout

		# All channels share one send path, so packets are written one
		#  at a time
		self.send_lock = threading.Lock()

		# If the reading loop is running. When the connection drops,
		#  the loop ends and error is set.
		self.running = False
		self.thread = None
		self.error = None

		self.channel_handler = ChannelHandler(self, channels_max, accept_channels)


	def read_payload(self):
		"""Return the next inbound packet payload, or None once the connection has ended"""
		raise NotImplementedError

	def write_payload(self, payload):
		raise NotImplementedError


	def send_packet(self, channel_id, payload):
		with self.send_lock:
			if self.error is not None:
				raise self.error

			msg_class = SSH_MSG.msg_types.get(payload[0])
			logger.debug(" -> Sending %s (channel %s)",
				msg_class.__name__ if msg_class else payload[0], channel_id)
			try:
				self.write_payload(payload)
			except OSError as e:
				error = TransportClosed(f"Connection lost: {e}")
			else:
				return

		self.fail(error)
		raise error


	def start(self):
		self.running = True
		self.thread = threading.Thread(target=self.loop, daemon=True)
		self.thread.start()


	def loop(self):
		while self.running:
			try:
				payload = self.read_payload()
			except (OSError, ChannelError) as e:
				self.fail(e)
				return

			# If the peer drops the connection, we never get anything
			#  more than an empty read
			if payload is None:
				self.fail()
				return

			self.handle_payload(payload)


	def handle_payload(self, payload):
		try:
			msg = SSH_MSG.read_msg(payload)
		except ProtocolError as e:
			logger.warning("Dropping a malformed channel message: %s", e)
			return

		logger.debug(" <- Received %r", msg)
		try:
			self.channel_handler.handle_message(msg)
		except TransportClosed:
			# Whatever the channel wanted to answer can't go anywhere.
			#  The channels have been told already.
			return


	def open_channel(self, channel_type="session", timeout=DEFAULT_TIMEOUT,
			initial_window_size=Config.INITIAL_WINDOW_SIZE,
			maximum_packet_size=Config.MAXIMUM_PACKET_SIZE):
		"""SSH-CONNECT 5.1. Open a channel and wait for the peer to confirm it"""
		if self.error is not None:
			raise self.error

		channel = self.channel_handler.new_channel(
			channel_type=channel_type,
			initial_window_size=initial_window_size,
			maximum_packet_size=maximum_packet_size)

		msg = SSH_MSG_CHANNEL_OPEN(channel_type, channel.local_id, initial_window_size, maximum_packet_size)
		try:
			self.send_packet(channel.local_id, msg.payload())
		except TransportClosed:
			self.channel_handler.close_channel(channel.local_id)
			raise

		channel.wait_opened(timeout)
		return channel


	def accept_channel(self, timeout=DEFAULT_TIMEOUT):
		"""Wait for the peer to open a session channel towards us"""
		if timeout is DEFAULT_TIMEOUT:
			timeout = self.timeout
		try:
			return self.channel_handler.accept_queue.get(timeout=timeout)
		except queue.Empty:
			raise Timeout("Timed out waiting for the peer to open a channel") from None


	def fail(self, error=None):
		"""
		The connection is gone. Every channel is closed and anything
		blocked on one is woken with TransportClosed.
		"""
		if not isinstance(error, TransportClosed):
			error = TransportClosed(f"Transport closed: {error}" if error else "Transport closed")

		with self.send_lock:
			if self.error is not None:
				return
			self.error = error
			self.running = False

		logger.info("Transport closed: %s", error)
		self.channel_handler.close_all_channels(error)


	def close(self):
		self.fail(TransportClosed("Transport closed locally"))


	def join(self, timeout=None):
		if self.thread is not None:
			self.thread.join(timeout)



class QueueTransport(Transport):
	"""
	Carries payloads over in-process queues. pair() gives two transports
	wired back to back, each acting as the other's peer.
	"""

	def __init__(self, inbound, outbound, **kwargs):
		super().__init__(**kwargs)
		self.inbound = inbound
		self.outbound = outbound

	@classmethod
	def pair(cls, **kwargs):
		a_to_b = queue.Queue()
		b_to_a = queue.Queue()
		return cls(b_to_a, a_to_b, **kwargs), cls(a_to_b, b_to_a, **kwargs)

	def read_payload(self):
		return self.inbound.get()

	def write_payload(self, payload):
		self.outbound.put(payload)

	def close(self):
		super().close()

		# Wake our own reader, and let the peer know we're gone
		self.inbound.put(None)
		self.outbound.put(None)
