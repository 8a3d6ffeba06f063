
import collections
import logging
import queue
import threading
from itertools import count, filterfalse

from close_handshake import CloseHandshake, ChannelState, Stage
from config import Config
from errors import (
	ChannelOpenFailure,
	InvalidState,
	ProtocolError,
	RequestRejected,
	Timeout,
	TransportClosed,
	WindowExceeded)
from extended_data import ExtendedDataRouter
from flow_control import FlowControlWindow
from messages import (
	SSH_EXTENDED_DATA_STDERR,
	SSH_MSG_CHANNEL_OPEN,
	SSH_MSG_CHANNEL_OPEN_CONFIRMATION,
	SSH_MSG_CHANNEL_OPEN_FAILURE,
	SSH_MSG_CHANNEL_WINDOW_ADJUST,
	SSH_MSG_CHANNEL_DATA,
	SSH_MSG_CHANNEL_EXTENDED_DATA,
	SSH_MSG_CHANNEL_EOF,
	SSH_MSG_CHANNEL_CLOSE,
	SSH_MSG_CHANNEL_REQUEST,
	SSH_MSG_CHANNEL_SUCCESS,
	SSH_MSG_CHANNEL_FAILURE)
from process import ProcessLifecycle, encode_terminal_modes


logger = logging.getLogger(__name__)


# Stands in for "whatever timeout the transport was configured with",
#  as None already means block forever
DEFAULT_TIMEOUT = object()



class ChannelHandler:
	"""
	Lookup of the channels running on one transport. Inbound channel
	messages are handed to the channel they are addressed to.
	"""

	def __init__(self, transport, channels_max=Config.CHANNELS_MAX, accept_channels=Config.ACCEPT_CHANNELS):
		self.transport = transport

		# Max channels on this transport. If none, no limit.
		self.channels_max = channels_max

		# If the peer may open session channels towards us. Accepted
		#  channels wait in accept_queue until picked up.
		self.accept_channels = accept_channels
		self.accept_queue = queue.Queue()

		self.lock = threading.Lock()
		self.channels = {}


	def new_channel(self, **kwargs):
		with self.lock:
			if self.channels_max is not None and len(self.channels) >= self.channels_max:
				raise ChannelOpenFailure(
					SSH_MSG_CHANNEL_OPEN_FAILURE.SSH_OPEN_RESOURCE_SHORTAGE,
					"Too many channels open")

			# Take the lowest channel id that isn't already used
			channel_id = next(filterfalse(self.channels.__contains__, count(0)))
			channel = Channel(self.transport, channel_id, **kwargs)
			self.channels[channel_id] = channel
			return channel


	def get(self, channel_id):
		with self.lock:
			return self.channels.get(channel_id)


	def close_channel(self, channel_id):
		with self.lock:
			channel = self.channels.pop(channel_id, None)
		if channel is not None:
			logger.info("Channel %d closed.", channel_id)


	def close_all_channels(self, error):
		with self.lock:
			channels = list(self.channels.values())
			self.channels.clear()
		for channel in channels:
			channel.handle_transport_lost(error)


	def handle_message(self, msg):
		if isinstance(msg, SSH_MSG_CHANNEL_OPEN):
			self.handle_CHANNEL_OPEN(msg)
			return

		# If there is no existing channel for the given recipient
		#  channel, then end here
		channel = self.get(msg.recipient_channel)
		if channel is None:
			logger.warning("Received %r for an unknown channel", msg)
			return

		# A misbehaving channel is shut down on its own. Other channels
		#  on the transport carry on.
		try:
			if not channel.opened.is_set() and not isinstance(msg, (
					SSH_MSG_CHANNEL_OPEN_CONFIRMATION, SSH_MSG_CHANNEL_OPEN_FAILURE)):
				raise ProtocolError(f"Received {msg!r} before the channel was confirmed")

			if   isinstance(msg, SSH_MSG_CHANNEL_OPEN_CONFIRMATION): channel.handle_CHANNEL_OPEN_CONFIRMATION(msg)
			elif isinstance(msg, SSH_MSG_CHANNEL_OPEN_FAILURE):      self.handle_CHANNEL_OPEN_FAILURE(channel, msg)
			elif isinstance(msg, SSH_MSG_CHANNEL_WINDOW_ADJUST):     channel.handle_CHANNEL_WINDOW_ADJUST(msg)
			elif isinstance(msg, SSH_MSG_CHANNEL_DATA):              channel.handle_CHANNEL_DATA(msg)
			elif isinstance(msg, SSH_MSG_CHANNEL_EXTENDED_DATA):     channel.handle_CHANNEL_EXTENDED_DATA(msg)
			elif isinstance(msg, SSH_MSG_CHANNEL_EOF):               channel.handle_CHANNEL_EOF(msg)
			elif isinstance(msg, SSH_MSG_CHANNEL_CLOSE):             channel.handle_CHANNEL_CLOSE(msg)
			elif isinstance(msg, SSH_MSG_CHANNEL_REQUEST):           channel.handle_CHANNEL_REQUEST(msg)
			elif isinstance(msg, SSH_MSG_CHANNEL_SUCCESS):           channel.handle_CHANNEL_REPLY(True)
			elif isinstance(msg, SSH_MSG_CHANNEL_FAILURE):           channel.handle_CHANNEL_REPLY(False)
			else:
				raise ProtocolError(f"Unexpected message {msg!r}")
		except ProtocolError as e:
			channel.handle_protocol_error(e)


	# SSH-CONNECT 5.1.
	def handle_CHANNEL_OPEN(self, msg):
		peer_channel_id = msg.sender_channel

		if msg.channel_type != "session":
			error_msg = f"Channel type '{msg.channel_type}' not implemented"
			logger.info(error_msg)
			resp = SSH_MSG_CHANNEL_OPEN_FAILURE.UNKNOWN_CHANNEL_TYPE(peer_channel_id, error_msg)
			self.transport.send_packet(None, resp.payload())
			return

		if not self.accept_channels:
			error_msg = "Not accepting channels"
			logger.info("Refused a channel the peer tried to open")
			resp = SSH_MSG_CHANNEL_OPEN_FAILURE.ADMINISTRATIVELY_PROHIBITED(peer_channel_id, error_msg)
			self.transport.send_packet(None, resp.payload())
			return

		try:
			channel = self.new_channel(accepted=True)
		except ChannelOpenFailure as e:
			resp = SSH_MSG_CHANNEL_OPEN_FAILURE(peer_channel_id, e.reason_code, e.description)
			self.transport.send_packet(None, resp.payload())
			return

		channel.handle_CHANNEL_OPEN_CONFIRMATION(SSH_MSG_CHANNEL_OPEN_CONFIRMATION(
			recipient_channel=channel.local_id,
			sender_channel=peer_channel_id,
			initial_window_size=msg.initial_window_size,
			maximum_packet_size=msg.maximum_packet_size))

		resp = SSH_MSG_CHANNEL_OPEN_CONFIRMATION(
			recipient_channel=peer_channel_id,
			sender_channel=channel.local_id,
			initial_window_size=channel.local_window.initial_size,
			maximum_packet_size=channel.local_window.maximum_packet_size)
		self.transport.send_packet(channel.local_id, resp.payload())
		self.accept_queue.put(channel)


	def handle_CHANNEL_OPEN_FAILURE(self, channel, msg):
		if channel.opened.is_set():
			raise ProtocolError(f"Open failure for channel {channel.local_id}, which is already open")
		self.close_channel(channel.local_id)
		channel.handle_CHANNEL_OPEN_FAILURE(msg)



class _PendingReply:
	"""A channel request waiting for SSH_MSG_CHANNEL_SUCCESS/FAILURE"""

	def __init__(self, on_success=None, on_failure=None):
		self.event = threading.Event()
		self.success = None
		self.error = None
		self.on_success = on_success
		self.on_failure = on_failure

	def resolve(self, success):
		self.success = success
		callback = self.on_success if success else self.on_failure
		if callback is not None:
			callback()
		self.event.set()

	def fail(self, error):
		if self.on_failure is not None:
			self.on_failure()
		self.error = error
		self.event.set()

	def wait(self, timeout):
		if not self.event.wait(timeout):
			raise Timeout("Timed out waiting for a reply to a channel request")
		if self.error is not None:
			raise self.error
		return self.success



# SSH-CONNECT 6.1.
class Channel:
	"""
	One flow-controlled, bidirectional stream over a transport.

	Operations on the same channel are expected to come from one owner
	at a time. The transport's reader thread feeds inbound messages in
	through the handle_* methods; blocking calls only ever wait on
	conditions that reader thread signals.

	Use as a context manager to make sure the channel is closed on
	every way out of a block.
	"""

	FLUSH_EXTENDED_DATA = -1
	FLUSH_ALL = -2

	def __init__(self,
		transport,
		local_id,
		channel_type="session",
		initial_window_size=Config.INITIAL_WINDOW_SIZE,
		maximum_packet_size=Config.MAXIMUM_PACKET_SIZE,
		accepted=False
	):
		self.transport = transport
		self.local_id = local_id
		self.channel_type = channel_type

		# Whether the peer opened this channel towards us
		self.accepted = accepted

		# Filled in once the peer confirms the channel
		self.remote_id = None
		self.remote_window = None

		self.local_window = FlowControlWindow(
			initial_window_size,
			maximum_packet_size,
			on_adjust=self.send_CHANNEL_WINDOW_ADJUST)
		self.router = ExtendedDataRouter()
		self.process = ProcessLifecycle()
		self.handshake = CloseHandshake()

		# Serialises handshake and window messages so nothing is ever
		#  sent after our CLOSE
		self.lock = threading.RLock()

		self.opened = threading.Event()
		self.open_error = None
		self.abandoned = False

		# Requests waiting for a reply, in the order they were sent
		self.replies = collections.deque()
		self.released = False

	def __repr__(self):
		return f"<Channel {self.local_id} ({self.state.value})>"

	def __enter__(self):
		return self

	def __exit__(self, *exc_info):
		self.close()


	@property
	def state(self):
		if self.open_error is not None:
			return ChannelState.CLOSED
		if not self.opened.is_set():
			return ChannelState.OPENING
		return self.handshake.state

	@property
	def local_maximum_packet_size(self):
		return self.local_window.maximum_packet_size

	@property
	def remote_maximum_packet_size(self):
		if self.remote_window is None:
			return 0
		return self.remote_window.maximum_packet_size

	@property
	def extended_data_mode(self):
		return self.router.mode

	@property
	def stderr(self):
		return ChannelStderr(self)


	def _timeout(self, timeout):
		if timeout is DEFAULT_TIMEOUT:
			return self.transport.timeout
		return timeout


	def _check_opened(self):
		if not self.opened.is_set() or self.open_error is not None:
			raise InvalidState(f"Channel {self.local_id} is not open")


	def _send(self, msg):
		self.transport.send_packet(self.local_id, msg.payload())


	def wait_opened(self, timeout=DEFAULT_TIMEOUT):
		if not self.opened.wait(self._timeout(timeout)):
			with self.lock:
				if not self.opened.is_set():
					# A late confirmation will be answered with a close
					self.abandoned = True
					raise Timeout("Timed out waiting for the channel to open")
		if self.open_error is not None:
			raise self.open_error


	#################
	# Reading data #
	#################
	def read(self, size=Config.MAXIMUM_PACKET_SIZE, timeout=DEFAULT_TIMEOUT):
		"""
		Read up to size bytes of the primary stream (plus extended data
		in MERGE mode). Blocks until something arrives. Returns b"" once
		the peer sent EOF and everything buffered has been read.
		"""
		return self._read(size, False, timeout)


	def read_extended(self, size=Config.MAXIMUM_PACKET_SIZE, timeout=DEFAULT_TIMEOUT):
		"""
		Read up to size bytes of extended data. Only NORMAL mode queues
		extended data, so in the other modes this returns b"" right away.
		"""
		return self._read(size, True, timeout)


	def _read(self, size, extended, timeout):
		# Nothing can have arrived on a channel that never opened
		if not self.opened.is_set() or self.open_error is not None:
			raise ProtocolError(f"Channel {self.local_id} is not open")
		data = self.router.read(size, extended=extended, timeout=self._timeout(timeout))

		# Data the consumer has taken is credited back to the peer. If
		#  the adjustment can't be sent the transport has failed every
		#  channel already, and the data is still handed over.
		if data:
			try:
				self.local_window.adjust(len(data))
			except TransportClosed as e:
				logger.debug("Channel %d: window adjust not sent: %s", self.local_id, e)
		return data


	def eof(self):
		"""If the peer sent EOF and there is nothing left to read"""
		return self.handshake.remote_eof_received and self.router.pending() == 0


	def flush(self, stream_id=0):
		"""
		Throw away inbound data that hasn't been read yet. stream_id is
		0 for the primary stream, SSH_EXTENDED_DATA_STDERR or
		FLUSH_EXTENDED_DATA for extended data, or FLUSH_ALL. Returns
		the number of bytes thrown away.
		"""
		if stream_id == 0:
			dropped = self.router.discard(primary=True)
		elif stream_id in (SSH_EXTENDED_DATA_STDERR, self.FLUSH_EXTENDED_DATA):
			dropped = self.router.discard(extended=True)
		elif stream_id == self.FLUSH_ALL:
			dropped = self.router.discard(primary=True, extended=True)
		else:
			raise ValueError(f"Unknown stream id {stream_id}")

		if dropped:
			self.local_window.adjust(dropped)
		return dropped

	def flush_stderr(self):
		return self.flush(SSH_EXTENDED_DATA_STDERR)

	def flush_extended_data(self):
		return self.flush(self.FLUSH_EXTENDED_DATA)

	def flush_all(self):
		return self.flush(self.FLUSH_ALL)


	def set_extended_data_mode(self, mode):
		self.router.set_mode(mode)


	################
	# Writing data #
	################
	def write(self, data, timeout=DEFAULT_TIMEOUT):
		"""
		Send all of data, split into packets that fit both the peer's
		window and its maximum packet size. Blocks whenever the window
		runs out until the peer grants more. Returns len(data).
		"""
		return self._write(data, None, timeout)


	def write_extended(self, data, timeout=DEFAULT_TIMEOUT):
		# IGNORE mode only covers what we receive, so this always sends
		return self._write(data, SSH_EXTENDED_DATA_STDERR, timeout)


	def _write(self, data, data_type_code, timeout):
		self._check_opened()
		if self.handshake.local_eof_sent:
			raise InvalidState(f"Channel {self.local_id} already sent EOF")

		# SSH-CONNECT 6.5. The session has nothing to carry data to until
		#  a shell, command or subsystem was asked for
		if not self.accepted and self.channel_type == "session" and self.process.request_kind is None:
			raise InvalidState(f"Channel {self.local_id} has no shell, exec or subsystem request")

		data = memoryview(bytes(data))
		timeout = self._timeout(timeout)
		sent = 0
		while sent < len(data):
			try:
				n = self.remote_window.reserve(len(data) - sent, timeout=timeout)
			except Timeout as e:
				raise Timeout(
					f"Timed out after sending {sent} of {len(data)} bytes",
					bytes_sent=sent) from e

			chunk = bytes(data[sent:sent+n])
			with self.lock:
				if self.handshake.local_eof_sent:
					raise InvalidState(f"Channel {self.local_id} closed while writing")
				if data_type_code is None:
					self._send(SSH_MSG_CHANNEL_DATA(self.remote_id, chunk))
				else:
					self._send(SSH_MSG_CHANNEL_EXTENDED_DATA(self.remote_id, data_type_code, chunk))
			sent += n

		return sent


	def receive_window_adjust(self, adjustment, force=False):
		"""
		Give the peer adjustment more bytes of window. Small amounts are
		queued unless forced. Returns the window size as the peer sees it.
		"""
		return self.local_window.adjust(adjustment, force)


	def window_read(self):
		return self.local_window.size

	def window_write(self):
		if self.remote_window is None:
			return 0
		return self.remote_window.size


	####################
	# Channel requests #
	####################
	def _request(self, msg, timeout, on_success=None, on_failure=None):
		reply = _PendingReply(on_success, on_failure)
		with self.lock:
			if self.handshake.error is not None:
				error = self.handshake.error
			elif self.handshake.local_close_sent:
				error = InvalidState(f"Channel {self.local_id} is closed")
			else:
				error = None
				self.replies.append(reply)
				self._send(msg)

		# Never sent, so it will never be answered either
		if error is not None:
			reply.fail(error)
		return reply.wait(self._timeout(timeout))


	# SSH-CONNECT 6.5.
	def start_process(self, kind, argument=None, timeout=DEFAULT_TIMEOUT):
		self._check_opened()
		self.process.begin(kind, argument)

		success = self._request(
			self.process.request(self.remote_id),
			timeout,
			on_success=self.process.confirm,
			on_failure=self.process.reject)
		if not success:
			raise RequestRejected(f"Peer refused the {kind} request")

	def shell(self, timeout=DEFAULT_TIMEOUT):
		self.start_process(ProcessLifecycle.SHELL, timeout=timeout)

	def command(self, command, timeout=DEFAULT_TIMEOUT):
		self.start_process(ProcessLifecycle.EXEC, command, timeout=timeout)

	def subsystem(self, subsystem, timeout=DEFAULT_TIMEOUT):
		self.start_process(ProcessLifecycle.SUBSYSTEM, subsystem, timeout=timeout)


	# SSH-CONNECT 6.4.
	def set_environment_variable(self, name, value, timeout=DEFAULT_TIMEOUT) -> bool: # returns success bool
		"""
		Peers are free to ignore this (OpenSSH only takes what AcceptEnv
		allows). True only means the peer said yes, not that it applied it.
		"""
		self._check_opened()
		self.process.check_not_started("env")

		msg = SSH_MSG_CHANNEL_REQUEST(self.remote_id, "env", True, name=name, value=value)
		success = self._request(msg, timeout)
		if success:
			self.process.environ[name] = value
		else:
			logger.info("Peer refused environment variable %s", name)
		return success


	# SSH-CONNECT 6.2.
	def request_pty(self, term="vt100", modes=b"", width=80, height=24, width_px=0, height_px=0,
			timeout=DEFAULT_TIMEOUT) -> bool: # returns success bool
		self._check_opened()
		self.process.check_not_started("pty-req")

		if isinstance(modes, dict):
			modes = encode_terminal_modes(modes)

		msg = SSH_MSG_CHANNEL_REQUEST(
			self.remote_id, "pty-req", True,
			term_environment_var=term,
			term_width=width,
			term_height=height,
			term_width_pixels=width_px,
			term_height_pixels=height_px,
			terminal_modes=modes)
		success = self._request(msg, timeout)
		if success:
			self.process.pty = {
				"term": term, "width": width, "height": height,
				"width_px": width_px, "height_px": height_px}
		else:
			logger.info("Peer refused a pty on channel %d", self.local_id)
		return success


	# SSH-CONNECT 6.10.
	def send_exit_status(self, status):
		self._check_opened()
		self._send_notice(SSH_MSG_CHANNEL_REQUEST(
			self.remote_id, "exit-status", False, exit_status=status))

	def send_exit_signal(self, signal_name, core_dumped=False, error_message="", language_tag=""):
		self._check_opened()
		self._send_notice(SSH_MSG_CHANNEL_REQUEST(
			self.remote_id, "exit-signal", False,
			signal_name=signal_name,
			core_dumped=core_dumped,
			error_message=error_message,
			language_tag=language_tag))

	def _send_notice(self, msg):
		with self.lock:
			if self.handshake.local_close_sent:
				raise InvalidState(f"Channel {self.local_id} is closed")
			self._send(msg)


	def exit_status(self):
		return self.process.exit_status()

	def exit_signal(self):
		return self.process.exit_signal()


	###################
	# EOF and closing #
	###################
	# SSH-CONNECT 5.3.
	def send_eof(self, wait=False, timeout=DEFAULT_TIMEOUT):
		"""
		Tell the peer no more data is coming. The peer may still send
		data back. With wait, block until the peer sends its own EOF.
		"""
		self._check_opened()
		with self.lock:
			if self.handshake.advance(CloseHandshake.LOCAL, Stage.EOF):
				self.remote_window.close(InvalidState(f"Channel {self.local_id} already sent EOF"))
				self._send(SSH_MSG_CHANNEL_EOF(self.remote_id))
				logger.debug("Channel %d: EOF sent", self.local_id)
		if wait:
			self.wait_eof(timeout)


	def wait_eof(self, timeout=DEFAULT_TIMEOUT):
		self.handshake.wait_remote_eof(self._timeout(timeout))


	def close(self, wait=False, timeout=DEFAULT_TIMEOUT):
		"""
		Send our CLOSE (and EOF first if that hasn't gone yet). The
		peer may still send until it answers with its own CLOSE; with
		wait, block until it has.
		"""
		with self.lock:
			# Nothing can be sent before the peer confirms. A late
			#  confirmation is answered with a close.
			if not self.opened.is_set():
				self.abandoned = True
				return
		if self.open_error is not None:
			return

		self._send_close()
		if wait:
			self.wait_closed(timeout)


	def wait_closed(self, timeout=DEFAULT_TIMEOUT):
		self.handshake.wait_closed(self._timeout(timeout))


	def _send_close(self):
		with self.lock:
			if self.handshake.advance(CloseHandshake.LOCAL, Stage.EOF):
				self._send(SSH_MSG_CHANNEL_EOF(self.remote_id))
			if not self.handshake.advance(CloseHandshake.LOCAL, Stage.CLOSED):
				return

			closed = InvalidState(f"Channel {self.local_id} is closed")
			self.remote_window.close(closed)
			self.local_window.close(closed)
			self.router.close(ProtocolError(f"Channel {self.local_id} is closed"))
			self._send(SSH_MSG_CHANNEL_CLOSE(self.remote_id))
			logger.debug("Channel %d: CLOSE sent", self.local_id)
		self._check_released()


	def _check_released(self):
		# Only once both sides have closed can the channel id be reused
		with self.lock:
			if self.released or not self.handshake.closed:
				return
			self.released = True
		self._fail_replies(InvalidState(f"Channel {self.local_id} closed before the peer replied"))
		self.transport.channel_handler.close_channel(self.local_id)


	def _fail_replies(self, error):
		with self.lock:
			replies = list(self.replies)
			self.replies.clear()
		for reply in replies:
			reply.fail(error)


	####################
	# Message handlers #
	####################
	def handle_CHANNEL_OPEN_CONFIRMATION(self, msg):
		with self.lock:
			if self.opened.is_set():
				raise ProtocolError(f"Channel {self.local_id} confirmed twice")
			self.remote_id = msg.sender_channel
			self.remote_window = FlowControlWindow(msg.initial_window_size, msg.maximum_packet_size)
			self.opened.set()
			abandoned = self.abandoned

		logger.debug("Channel %d open, peer channel %d, window %d, max packet %d",
			self.local_id, self.remote_id, msg.initial_window_size, msg.maximum_packet_size)
		if abandoned:
			self._send_close()


	def handle_CHANNEL_OPEN_FAILURE(self, msg):
		self.open_error = ChannelOpenFailure(msg.reason_code, msg.description)
		self.opened.set()


	def handle_CHANNEL_WINDOW_ADJUST(self, msg):
		self.remote_window.grow(msg.bytes_to_add)


	def _accept_data(self, data):
		if self.handshake.remote_eof_received:
			raise ProtocolError(f"Data on channel {self.local_id} after EOF")
		if len(data) > self.local_window.maximum_packet_size:
			logger.warning("Channel %d: packet of %d bytes is over the maximum of %d",
				self.local_id, len(data), self.local_window.maximum_packet_size)

		try:
			self.local_window.consume(len(data))
		except WindowExceeded as e:
			raise ProtocolError(f"Peer overran the window on channel {self.local_id}: {e}") from e


	def handle_CHANNEL_DATA(self, msg):
		self._accept_data(msg.data)
		self.router.feed(msg.data)


	def handle_CHANNEL_EXTENDED_DATA(self, msg):
		self._accept_data(msg.data)

		if msg.data_type_code != SSH_EXTENDED_DATA_STDERR:
			logger.warning("Channel %d: discarding extended data of type %d",
				self.local_id, msg.data_type_code)
			dropped = len(msg.data)
		else:
			dropped = self.router.feed_extended(msg.data)

		# Data thrown away still has to be credited, or the peer would
		#  run out of window for nothing
		if dropped:
			self.local_window.adjust(dropped)


	def handle_CHANNEL_EOF(self, msg):
		# No explicit response is sent to this message. The channel
		#  remains open and more data may still be sent in the other
		#  direction.
		if self.handshake.advance(CloseHandshake.REMOTE, Stage.EOF):
			self.router.mark_eof()
			logger.debug("Channel %d: EOF received", self.local_id)


	def handle_CHANNEL_CLOSE(self, msg):
		# A CLOSE also ends the peer's data, EOF or not
		self.handshake.advance(CloseHandshake.REMOTE, Stage.CLOSED)
		self.router.mark_eof()
		logger.debug("Channel %d: CLOSE received", self.local_id)

		# If we have not sent our own CLOSE, then we must respond with
		#  our own. Otherwise this is the response to ours.
		self._send_close()
		self._check_released()


	def handle_CHANNEL_REQUEST(self, msg):
		if msg.request_type in ("exit-status", "exit-signal"):
			self.process.record_exit(msg)
			success = True
		elif self.accepted:
			success = self.process.handle_request(msg)
		else:
			logger.debug("Channel %d: unhandled request %r", self.local_id, msg.request_type)
			success = False

		# Only respond if the peer asked for one!
		if msg.want_reply:
			with self.lock:
				if self.handshake.local_close_sent:
					return
				if success:
					self._send(SSH_MSG_CHANNEL_SUCCESS(self.remote_id))
				else:
					self._send(SSH_MSG_CHANNEL_FAILURE(self.remote_id))


	def handle_CHANNEL_REPLY(self, success):
		with self.lock:
			if not self.replies:
				raise ProtocolError(f"Reply on channel {self.local_id} without a request")
			reply = self.replies.popleft()
		reply.resolve(success)


	def send_CHANNEL_WINDOW_ADJUST(self, bytes_to_add):
		with self.lock:
			# No window adjustments may follow our CLOSE
			if self.handshake.local_close_sent or self.handshake.error is not None:
				return
			self._send(SSH_MSG_CHANNEL_WINDOW_ADJUST(self.remote_id, bytes_to_add))


	def handle_protocol_error(self, error):
		logger.warning("Protocol error on channel %d: %s", self.local_id, error)
		self.router.close(error)
		if self.opened.is_set() and self.open_error is None:
			self._send_close()


	def handle_transport_lost(self, error):
		"""The transport died. Everything blocked on this channel is woken with error."""
		self.handshake.force_closed(error)
		self.local_window.close(error)
		if self.remote_window is not None:
			self.remote_window.close(error)
		self.router.close(error)
		self._fail_replies(error)

		if not self.opened.is_set():
			self.open_error = error
			self.opened.set()
		self.released = True



class ChannelStderr:
	"""File-like view of a channel's extended data stream"""

	def __init__(self, channel):
		self.channel = channel

	def read(self, size=Config.MAXIMUM_PACKET_SIZE, timeout=DEFAULT_TIMEOUT):
		return self.channel.read_extended(size, timeout)

	def write(self, data, timeout=DEFAULT_TIMEOUT):
		return self.channel.write_extended(data, timeout)

	def flush(self):
		return self.channel.flush_stderr()
