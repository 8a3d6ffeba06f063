
import logging
import threading

from data_types import DataReader, DataWriter
from errors import InvalidState, ProtocolError
from messages import SSH_MSG_CHANNEL_REQUEST


logger = logging.getLogger(__name__)


# SSH-CONNECT 8. Encoding of Terminal Modes
TTY_OP_END = 0
TERMINAL_MODES = {
	# Special characters
	"VINTR": 1,      # will send an interrupt signal
	"VQUIT": 2,      # will send a quit signal
	"VERASE": 3,     # will erase the last character typed
	"VKILL": 4,      # will erase the current line
	"VEOF": 5,       # will send an end of file (terminate the input)
	"VEOL": 6,       # will end the line
	"VEOL2": 7,      # alternate for ending the line
	"VSTART": 8,     # will restart the output after stopping it
	"VSTOP": 9,      # will stop the output
	"VSUSP": 10,     # will send a terminal stop signal
	"VDSUSP": 11,    # alternate for sending a terminal stop signal
	"VREPRINT": 12,  # will redraw the current line
	"VWERASE": 13,   # will erase the last word typed
	"VLNEXT": 14,    # will enter the next character quoted
	"VSWTCH": 16,    # will switch to a different shell layer

	# Input settings
	"INLCR": 34,     # Map NL into CR on input
	"IGNCR": 35,     # Ignore CR on input
	"ICRNL": 36,     # Map CR to NL on input

	# Local settings
	"ISIG": 50,
	"ICANON": 51,
	"ECHO": 53,

	# Output settings
	"ONLCR": 72,     # Map NL to CR-NL
	"OCRNL": 73,     # Translate CR to NL
	"ONOCR": 74,     # Translate NL to CR-NL
	"ONLRET": 75,    # Newline performs a carriage return

	# Special settings
	"TTY_OP_ISPEED": 128, # the input speed, baud rate
	"TTY_OP_OSPEED": 129, # the output speed, baud rate
}


def encode_terminal_modes(modes) -> bytes:
	"""
	Build the terminal modes blob of a pty-req from a mapping of
	opcode (or its name) to value
	"""
	w = DataWriter()
	for opcode, value in modes.items():
		if isinstance(opcode, str):
			opcode = TERMINAL_MODES[opcode]
		if not 0 < opcode < 160:
			raise ValueError(f"Terminal mode opcode {opcode} does not take a uint32")
		w.write_uint8(opcode)
		w.write_uint32(value)
	w.write_uint8(TTY_OP_END)
	return w.data


def decode_terminal_modes(blob) -> dict:
	modes = {}

	# If the terminal mode string is empty, then ignored
	r = DataReader(blob)
	while r.remaining:
		opcode = r.read_uint8()

		# Indicates end of options
		if opcode == TTY_OP_END:
			break

		# Opcodes 160 to 255 are not yet defined, and cause parsing to
		#  stop (they should only be used after any other data)
		if opcode >= 160:
			logger.warning("Stopped parsing terminal modes at opcode %d", opcode)
			break

		modes[opcode] = r.read_uint32()

	return modes



class ProcessLifecycle:
	"""
	SSH-CONNECT 6.5. At most one of shell, exec or subsystem may be
	started on a session channel. Environment and pty requests have to
	come before it.
	"""

	SHELL = "shell"
	EXEC = "exec"
	SUBSYSTEM = "subsystem"
	KINDS = (SHELL, EXEC, SUBSYSTEM)

	def __init__(self):
		self.lock = threading.Lock()

		# The requested process, set from the moment the request is
		#  sent (or received) so a second one is refused
		self.request_kind = None
		self.argument = None
		self.started = False

		# Environment variables and pty settings, as sent or received
		self.environ = {}
		self.pty = None

		self._exit_status = None
		self._exit_signal = (None, None)
		self.core_dumped = False


	def begin(self, kind, argument=None):
		if kind not in self.KINDS:
			raise ValueError(f"Unknown process kind {kind!r}")
		if kind == self.SHELL and argument is not None:
			raise ValueError("A shell does not take an argument")
		if kind != self.SHELL and not isinstance(argument, str):
			raise ValueError(f"{kind} needs a string argument")

		with self.lock:
			if self.request_kind is not None:
				raise InvalidState(
					f"Channel already has a {self.request_kind} request, cannot start {kind}")
			self.request_kind = kind
			self.argument = argument


	def confirm(self):
		with self.lock:
			self.started = True


	def reject(self):
		# A refused request leaves the channel free for another one
		with self.lock:
			self.request_kind = None
			self.argument = None


	def check_not_started(self, what):
		with self.lock:
			if self.request_kind is not None:
				raise InvalidState(f"{what} has to be sent before the {self.request_kind} request")


	def request(self, recipient_channel):
		"""SSH_MSG_CHANNEL_REQUEST for the process begin() accepted"""
		if self.request_kind == self.EXEC:
			return SSH_MSG_CHANNEL_REQUEST(recipient_channel, self.EXEC, True, command=self.argument)
		elif self.request_kind == self.SUBSYSTEM:
			return SSH_MSG_CHANNEL_REQUEST(recipient_channel, self.SUBSYSTEM, True, subsystem_name=self.argument)
		return SSH_MSG_CHANNEL_REQUEST(recipient_channel, self.SHELL, True)


	# SSH-CONNECT 6.10.
	def record_exit(self, msg):
		# Exit reports are informational. A later one simply replaces
		#  an earlier one.
		if msg.request_type == "exit-status":
			self._exit_status = msg.exit_status
		else:
			self._exit_signal = (msg.signal_name, msg.error_message)
			self.core_dumped = msg.core_dumped


	def exit_status(self):
		return self._exit_status

	def exit_signal(self):
		return self._exit_signal


	def handle_request(self, msg) -> bool: # returns success bool
		"""
		Requests a peer sends on a channel it opened towards us. The
		process itself is run by whoever accepted the channel; this
		only records what was asked for.
		"""
		request_type = msg.request_type

		# SSH-CONNECT 6.2.
		if request_type == "pty-req":
			if self.request_kind is not None:
				return False
			try:
				modes = decode_terminal_modes(msg.terminal_modes)
			except ProtocolError:
				return False
			self.pty = {
				"term": msg.term_environment_var,
				"width": msg.term_width,
				"height": msg.term_height,
				"width_px": msg.term_width_pixels,
				"height_px": msg.term_height_pixels,
				"modes": modes}
			self.environ["TERM"] = msg.term_environment_var
			return True

		# SSH-CONNECT 6.4.
		elif request_type == "env":
			if self.request_kind is not None:
				return False
			self.environ[msg.name] = msg.value
			return True

		# SSH-CONNECT 6.5.
		elif request_type in self.KINDS:
			argument = None
			if request_type == self.EXEC:
				argument = msg.command
			elif request_type == self.SUBSYSTEM:
				argument = msg.subsystem_name
			try:
				self.begin(request_type, argument)
			except (InvalidState, ValueError) as e:
				logger.info("Refused %s request: %s", request_type, e)
				return False
			self.confirm()
			return True

		return False
