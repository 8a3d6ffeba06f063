
"""
RFC 4250, 4.1. Message Numbers

Only the connection protocol channel messages (90 to 100) are handled
here. Everything below that belongs to the transport.
"""

import logging

from data_types import DataReader, DataWriter
from errors import ProtocolError


logger = logging.getLogger(__name__)


# SSH-CONNECT 5.2. The only data type code defined for extended data
SSH_EXTENDED_DATA_STDERR = 1



class SSH_MSG:
	"""
	Parent class of all channel messages. This is used to read in a raw
	payload and turn it into an instance of the respective message
	"""

	msg_types = {}

	def __init_subclass__(cls):
		"""
		Adds subclasses to the list of available message types. Helper
		bases without a message number are skipped.
		"""
		message_number = cls.__dict__.get("message_number")
		if message_number is not None:
			SSH_MSG.msg_types[message_number] = cls

	@classmethod
	def read_msg(cls, payload):
		"""
		Used to create an instance of the correct type of message from
		a raw payload
		"""
		r = DataReader(payload)

		# Read the code and try to find the correct message class
		message_number = r.read_uint8()

		msg_class = cls.msg_types.get(message_number, None)
		if msg_class is None:
			raise ProtocolError(f"Unhandled message number {message_number}")

		msg = msg_class.from_reader(r)
		if r.remaining:
			logger.warning("Extra data left over from %s: %r", msg, r.read_rest())
		return msg

	@classmethod
	def from_reader(cls, r):
		raise NotImplementedError(f"{cls.__name__} cannot be read")

	def payload(self):
		raise NotImplementedError(f"{self.__class__.__name__} cannot be written")

	def __repr__(self):
		return f"{self.__class__.__name__}({self.recipient_channel})"



class _SSH_MSG_CHANNEL_ONLY(SSH_MSG):
	"""Messages that carry nothing but the recipient channel"""

	def __init__(self, recipient_channel):
		self.recipient_channel = recipient_channel

	@classmethod
	def from_reader(cls, r):
		recipient_channel = r.read_uint32()
		return cls(recipient_channel)

	def payload(self):
		w = DataWriter()
		w.write_uint8(self.message_number)
		w.write_uint32(self.recipient_channel)
		return w.data



# 90 to 127: Channel related messages
class SSH_MSG_CHANNEL_OPEN(SSH_MSG):
	message_number = 90

	# Anything after the common fields is channel type specific (e.g.
	#  forwarding addresses). It is kept as is and not interpreted.
	def __init__(self, channel_type, sender_channel, initial_window_size, maximum_packet_size, type_data=b""):
		self.channel_type = channel_type
		self.sender_channel = sender_channel
		self.initial_window_size = initial_window_size
		self.maximum_packet_size = maximum_packet_size
		self.type_data = type_data

	@classmethod
	def from_reader(cls, r):
		channel_type = r.read_string()
		sender_channel = r.read_uint32()
		initial_window_size = r.read_uint32()
		maximum_packet_size = r.read_uint32()
		type_data = r.read_rest()
		return cls(channel_type, sender_channel, initial_window_size, maximum_packet_size, type_data)

	def payload(self):
		w = DataWriter()
		w.write_uint8(self.message_number)
		w.write_string(self.channel_type)
		w.write_uint32(self.sender_channel)
		w.write_uint32(self.initial_window_size)
		w.write_uint32(self.maximum_packet_size)
		w.write_bytes(self.type_data)
		return w.data

	def __repr__(self):
		return f"SSH_MSG_CHANNEL_OPEN({self.channel_type!r}, {self.sender_channel})"

class SSH_MSG_CHANNEL_OPEN_CONFIRMATION(SSH_MSG):
	message_number = 91

	def __init__(self, recipient_channel, sender_channel, initial_window_size, maximum_packet_size):
		self.recipient_channel = recipient_channel
		self.sender_channel = sender_channel
		self.initial_window_size = initial_window_size
		self.maximum_packet_size = maximum_packet_size

	@classmethod
	def from_reader(cls, r):
		recipient_channel = r.read_uint32()
		sender_channel = r.read_uint32()
		initial_window_size = r.read_uint32()
		maximum_packet_size = r.read_uint32()
		# Session channels have no type specific data
		r.read_rest()
		return cls(recipient_channel, sender_channel, initial_window_size, maximum_packet_size)

	def payload(self):
		w = DataWriter()
		w.write_uint8(self.message_number)
		w.write_uint32(self.recipient_channel)
		w.write_uint32(self.sender_channel)
		w.write_uint32(self.initial_window_size)
		w.write_uint32(self.maximum_packet_size)
		return w.data

class SSH_MSG_CHANNEL_OPEN_FAILURE(SSH_MSG):
	message_number = 92

	# SSH-CONNECT 5.1. Reason codes
	SSH_OPEN_ADMINISTRATIVELY_PROHIBITED = 1
	SSH_OPEN_CONNECT_FAILED              = 2
	SSH_OPEN_UNKNOWN_CHANNEL_TYPE        = 3
	SSH_OPEN_RESOURCE_SHORTAGE           = 4

	ADMINISTRATIVELY_PROHIBITED = lambda c,d: SSH_MSG_CHANNEL_OPEN_FAILURE(c, 1, d)
	CONNECT_FAILED              = lambda c,d: SSH_MSG_CHANNEL_OPEN_FAILURE(c, 2, d)
	UNKNOWN_CHANNEL_TYPE        = lambda c,d: SSH_MSG_CHANNEL_OPEN_FAILURE(c, 3, d)
	RESOURCE_SHORTAGE           = lambda c,d: SSH_MSG_CHANNEL_OPEN_FAILURE(c, 4, d)

	def __init__(self, recipient_channel, reason_code, description, language_tag=""):
		self.recipient_channel = recipient_channel
		self.reason_code = reason_code
		self.description = description
		self.language_tag = language_tag

	@classmethod
	def from_reader(cls, r):
		recipient_channel = r.read_uint32()
		reason_code = r.read_uint32()
		description = r.read_string(us_ascii=False)
		language_tag = r.read_string()
		return cls(recipient_channel, reason_code, description, language_tag)

	def payload(self):
		w = DataWriter()
		w.write_uint8(self.message_number)
		w.write_uint32(self.recipient_channel)
		w.write_uint32(self.reason_code)
		w.write_string(self.description, us_ascii=False)
		w.write_string(self.language_tag)
		return w.data

class SSH_MSG_CHANNEL_WINDOW_ADJUST(SSH_MSG):
	message_number = 93

	def __init__(self, recipient_channel, bytes_to_add):
		self.recipient_channel = recipient_channel
		self.bytes_to_add = bytes_to_add

	@classmethod
	def from_reader(cls, r):
		recipient_channel = r.read_uint32()
		bytes_to_add = r.read_uint32()
		return cls(recipient_channel, bytes_to_add)

	def payload(self):
		w = DataWriter()
		w.write_uint8(self.message_number)
		w.write_uint32(self.recipient_channel)
		w.write_uint32(self.bytes_to_add)
		return w.data

class SSH_MSG_CHANNEL_DATA(SSH_MSG):
	message_number = 94

	def __init__(self, recipient_channel, data):
		self.recipient_channel = recipient_channel
		self.data = data

	@classmethod
	def from_reader(cls, r):
		recipient_channel = r.read_uint32()
		data = r.read_string(blob=True)
		return cls(recipient_channel, data)

	def payload(self):
		w = DataWriter()
		w.write_uint8(self.message_number)
		w.write_uint32(self.recipient_channel)
		w.write_string(self.data)
		return w.data

class SSH_MSG_CHANNEL_EXTENDED_DATA(SSH_MSG):
	message_number = 95

	def __init__(self, recipient_channel, data_type_code, data):
		self.recipient_channel = recipient_channel
		self.data_type_code = data_type_code
		self.data = data

	@classmethod
	def from_reader(cls, r):
		recipient_channel = r.read_uint32()
		data_type_code = r.read_uint32()
		data = r.read_string(blob=True)
		return cls(recipient_channel, data_type_code, data)

	def payload(self):
		w = DataWriter()
		w.write_uint8(self.message_number)
		w.write_uint32(self.recipient_channel)
		w.write_uint32(self.data_type_code)
		w.write_string(self.data)
		return w.data

class SSH_MSG_CHANNEL_EOF(_SSH_MSG_CHANNEL_ONLY):
	message_number = 96

class SSH_MSG_CHANNEL_CLOSE(_SSH_MSG_CHANNEL_ONLY):
	message_number = 97

class SSH_MSG_CHANNEL_REQUEST(SSH_MSG):
	message_number = 98

	def __init__(self, recipient_channel, request_type, want_reply, **data):
		self.recipient_channel = recipient_channel
		self.request_type = request_type
		self.want_reply = want_reply
		for field_name in data.keys():
			self.__setattr__(field_name, data[field_name])

	@classmethod
	def from_reader(cls, r):
		recipient_channel = r.read_uint32()
		request_type = r.read_string()
		want_reply = r.read_bool()

		# SSH-CONNECT 6.2.
		if request_type == "pty-req":
			term_environment_var = r.read_string()
			term_width = r.read_uint32()
			term_height = r.read_uint32()
			term_width_pixels = r.read_uint32()
			term_height_pixels = r.read_uint32()
			terminal_modes = r.read_string(blob=True)
			return cls(
				recipient_channel=recipient_channel,
				request_type="pty-req",
				want_reply=want_reply,
				term_environment_var=term_environment_var,
				term_width=term_width,
				term_height=term_height,
				term_width_pixels=term_width_pixels,
				term_height_pixels=term_height_pixels,
				terminal_modes=terminal_modes)

		# SSH-CONNECT 6.4.
		elif request_type == "env":
			name = r.read_string()
			value = r.read_string(us_ascii=False)
			return cls(
				recipient_channel=recipient_channel,
				request_type="env",
				want_reply=want_reply,
				name=name,
				value=value)

		# SSH-CONNECT 6.5.
		elif request_type == "shell":
			return cls(
				recipient_channel=recipient_channel,
				request_type="shell",
				want_reply=want_reply)

		# SSH-CONNECT 6.5.
		elif request_type == "exec":
			command = r.read_string(us_ascii=False)
			return cls(
				recipient_channel=recipient_channel,
				request_type="exec",
				want_reply=want_reply,
				command=command)

		# SSH-CONNECT 6.5.
		elif request_type == "subsystem":
			subsystem_name = r.read_string()
			return cls(
				recipient_channel=recipient_channel,
				request_type="subsystem",
				want_reply=want_reply,
				subsystem_name=subsystem_name)

		# SSH-CONNECT 6.10.
		elif request_type == "exit-status":
			exit_status = r.read_uint32()
			return cls(
				recipient_channel=recipient_channel,
				request_type="exit-status",
				want_reply=False,
				exit_status=exit_status)

		# SSH-CONNECT 6.10.
		elif request_type == "exit-signal":
			signal_name = r.read_string()
			core_dumped = r.read_bool()
			error_message = r.read_string(us_ascii=False)
			language_tag = r.read_string()
			return cls(
				recipient_channel=recipient_channel,
				request_type="exit-signal",
				want_reply=False,
				signal_name=signal_name,
				core_dumped=core_dumped,
				error_message=error_message,
				language_tag=language_tag)

		# Anything else is kept raw so it can at least be refused
		else:
			return cls(
				recipient_channel=recipient_channel,
				request_type=request_type,
				want_reply=want_reply,
				request_data=r.read_rest())

	def payload(self):
		w = DataWriter()
		w.write_uint8(self.message_number)
		w.write_uint32(self.recipient_channel)
		w.write_string(self.request_type)
		w.write_bool(self.want_reply)

		# SSH-CONNECT 6.2.
		if self.request_type == "pty-req":
			w.write_string(self.term_environment_var)
			w.write_uint32(self.term_width)
			w.write_uint32(self.term_height)
			w.write_uint32(self.term_width_pixels)
			w.write_uint32(self.term_height_pixels)
			w.write_string(self.terminal_modes)

		# SSH-CONNECT 6.4.
		elif self.request_type == "env":
			w.write_string(self.name)
			w.write_string(self.value, us_ascii=False)

		# SSH-CONNECT 6.5.
		elif self.request_type == "shell":
			pass
		elif self.request_type == "exec":
			w.write_string(self.command, us_ascii=False)
		elif self.request_type == "subsystem":
			w.write_string(self.subsystem_name)

		# SSH-CONNECT 6.10.
		elif self.request_type == "exit-status":
			w.write_uint32(self.exit_status)
		elif self.request_type == "exit-signal":
			w.write_string(self.signal_name)
			w.write_bool(self.core_dumped)
			w.write_string(self.error_message, us_ascii=False)
			w.write_string(self.language_tag)

		else:
			w.write_bytes(getattr(self, "request_data", b""))

		return w.data

	def __repr__(self):
		return f"SSH_MSG_CHANNEL_REQUEST({self.recipient_channel}, {self.request_type!r})"

class SSH_MSG_CHANNEL_SUCCESS(_SSH_MSG_CHANNEL_ONLY):
	message_number = 99

class SSH_MSG_CHANNEL_FAILURE(_SSH_MSG_CHANNEL_ONLY):
	message_number = 100
