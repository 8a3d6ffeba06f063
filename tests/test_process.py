import unittest
from errors import InvalidState
from messages import SSH_MSG_CHANNEL_REQUEST
from process import (
	ProcessLifecycle,
	TERMINAL_MODES,
	decode_terminal_modes,
	encode_terminal_modes)


class TestProcessLifecycle(unittest.TestCase):

	def setUp(self):
		self.process = ProcessLifecycle()

	def test_exec_request(self):
		self.process.begin(ProcessLifecycle.EXEC, "echo hi")

		msg = self.process.request(42)

		self.assertEqual(msg.recipient_channel, 42)
		self.assertEqual(msg.request_type, "exec")
		self.assertEqual(msg.command, "echo hi")
		self.assertTrue(msg.want_reply)

	def test_subsystem_request(self):
		self.process.begin(ProcessLifecycle.SUBSYSTEM, "sftp")

		msg = self.process.request(1)

		self.assertEqual(msg.subsystem_name, "sftp")

	def test_shell_takes_no_argument(self):
		with self.assertRaises(ValueError):
			self.process.begin(ProcessLifecycle.SHELL, "bash")

	def test_exec_needs_argument(self):
		with self.assertRaises(ValueError):
			self.process.begin(ProcessLifecycle.EXEC)

	def test_unknown_kind(self):
		with self.assertRaises(ValueError):
			self.process.begin("x11")

	def test_only_one_process(self):
		self.process.begin(ProcessLifecycle.SHELL)
		self.process.confirm()

		with self.assertRaises(InvalidState):
			self.process.begin(ProcessLifecycle.EXEC, "ls")
		self.assertEqual(self.process.request_kind, ProcessLifecycle.SHELL)
		self.assertTrue(self.process.started)

	def test_reject_frees_the_channel(self):
		self.process.begin(ProcessLifecycle.SUBSYSTEM, "nope")
		self.process.reject()

		self.process.begin(ProcessLifecycle.SHELL)
		self.assertEqual(self.process.request_kind, ProcessLifecycle.SHELL)

	def test_env_after_start(self):
		self.process.begin(ProcessLifecycle.SHELL)

		with self.assertRaises(InvalidState):
			self.process.check_not_started("env")

	def test_exit_reports(self):
		self.assertIsNone(self.process.exit_status())
		self.assertEqual(self.process.exit_signal(), (None, None))

		self.process.record_exit(SSH_MSG_CHANNEL_REQUEST(0, "exit-status", False, exit_status=1))
		self.process.record_exit(SSH_MSG_CHANNEL_REQUEST(0, "exit-status", False, exit_status=0))
		self.process.record_exit(SSH_MSG_CHANNEL_REQUEST(
			0, "exit-signal", False,
			signal_name="TERM", core_dumped=False, error_message="bye", language_tag=""))

		self.assertEqual(self.process.exit_status(), 0)
		self.assertEqual(self.process.exit_signal(), ("TERM", "bye"))


class TestIncomingRequests(unittest.TestCase):

	def setUp(self):
		self.process = ProcessLifecycle()

	def test_env_and_pty_then_shell(self):
		env = SSH_MSG_CHANNEL_REQUEST(0, "env", True, name="LANG", value="C")
		pty = SSH_MSG_CHANNEL_REQUEST(
			0, "pty-req", True,
			term_environment_var="xterm",
			term_width=120,
			term_height=40,
			term_width_pixels=0,
			term_height_pixels=0,
			terminal_modes=encode_terminal_modes({"ECHO": 0}))
		shell = SSH_MSG_CHANNEL_REQUEST(0, "shell", True)

		self.assertTrue(self.process.handle_request(env))
		self.assertTrue(self.process.handle_request(pty))
		self.assertTrue(self.process.handle_request(shell))

		self.assertEqual(self.process.environ, {"LANG": "C", "TERM": "xterm"})
		self.assertEqual(self.process.pty["width"], 120)
		self.assertEqual(self.process.pty["modes"], {TERMINAL_MODES["ECHO"]: 0})
		self.assertTrue(self.process.started)

	def test_second_process_is_refused(self):
		self.assertTrue(self.process.handle_request(
			SSH_MSG_CHANNEL_REQUEST(0, "exec", True, command="ls")))

		self.assertFalse(self.process.handle_request(SSH_MSG_CHANNEL_REQUEST(0, "shell", True)))
		self.assertEqual(self.process.argument, "ls")

	def test_env_after_start_is_refused(self):
		self.process.handle_request(SSH_MSG_CHANNEL_REQUEST(0, "shell", True))

		self.assertFalse(self.process.handle_request(
			SSH_MSG_CHANNEL_REQUEST(0, "env", True, name="A", value="B")))

	def test_unknown_request_is_refused(self):
		msg = SSH_MSG_CHANNEL_REQUEST(0, "x11-req", True, request_data=b"")

		self.assertFalse(self.process.handle_request(msg))


class TestTerminalModes(unittest.TestCase):

	def test_encode(self):
		blob = encode_terminal_modes({"VINTR": 3, 129: 38400})

		self.assertEqual(blob, b"\x01\x00\x00\x00\x03\x81\x00\x00\x96\x00\x00")

	def test_decode(self):
		blob = b"\x81\x00\x00\x96\x00\x80\x00\x00\x96\x00\x01\x00\x00\x00\x03\x00"

		modes = decode_terminal_modes(blob)

		self.assertEqual(modes, {129: 38400, 128: 38400, 1: 3})

	def test_decode_empty(self):
		self.assertEqual(decode_terminal_modes(b""), {})

	def test_decode_stops_at_undefined_opcode(self):
		blob = b"\x01\x00\x00\x00\x03\xa0\xff\xff"

		self.assertEqual(decode_terminal_modes(blob), {1: 3})

	def test_encode_rejects_bad_opcode(self):
		with self.assertRaises(ValueError):
			encode_terminal_modes({200: 1})
