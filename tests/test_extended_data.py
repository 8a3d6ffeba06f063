import threading
import unittest
from errors import ProtocolError, Timeout
from extended_data import ExtendedData, ExtendedDataRouter


class TestNormalMode(unittest.TestCase):

	def setUp(self):
		self.router = ExtendedDataRouter(ExtendedData.NORMAL)

	def test_streams_are_kept_apart(self):
		self.router.feed(b"out1")
		self.router.feed_extended(b"err1")
		self.router.feed(b"out2")

		self.assertEqual(self.router.read(100), b"out1out2")
		self.assertEqual(self.router.read(100, extended=True), b"err1")

	def test_partial_read(self):
		self.router.feed(b"abcdef")

		self.assertEqual(self.router.read(4), b"abcd")
		self.assertEqual(self.router.read(4), b"ef")

	def test_read_waits_for_data(self):
		result = []

		t = threading.Thread(target=lambda: result.append(self.router.read(10, timeout=5)))
		t.start()
		self.router.feed(b"late")
		t.join(5)

		self.assertEqual(result, [b"late"])

	def test_read_times_out(self):
		with self.assertRaises(Timeout):
			self.router.read(10, timeout=0.05)

	def test_eof_after_drain(self):
		self.router.feed(b"last")
		self.router.mark_eof()

		self.assertEqual(self.router.read(10), b"last")
		self.assertEqual(self.router.read(10), b"")
		self.assertEqual(self.router.read(10), b"")
		self.assertEqual(self.router.read(10, extended=True), b"")

	def test_error_after_drain(self):
		self.router.feed(b"left")
		self.router.close(ProtocolError("closed"))

		self.assertEqual(self.router.read(10), b"left")
		with self.assertRaises(ProtocolError):
			self.router.read(10)

	def test_close_wakes_reader(self):
		errors = []

		def read():
			try:
				self.router.read(10, timeout=5)
			except ProtocolError as e:
				errors.append(e)

		t = threading.Thread(target=read)
		t.start()
		self.router.close(ProtocolError("closed"))
		t.join(5)

		self.assertEqual(len(errors), 1)

	def test_discard(self):
		self.router.feed(b"abc")
		self.router.feed_extended(b"de")

		self.assertEqual(self.router.discard(extended=True), 2)
		self.assertEqual(self.router.discard(primary=True, extended=True), 3)
		self.assertEqual(self.router.pending(), 0)


class TestMergeMode(unittest.TestCase):

	def test_arrival_order_is_kept(self):
		router = ExtendedDataRouter(ExtendedData.MERGE)

		router.feed(b"a")
		router.feed_extended(b"B")
		router.feed(b"c")
		router.feed_extended(b"D")

		self.assertEqual(router.read(100), b"aBcD")
		self.assertEqual(router.read(100, extended=True, timeout=0), b"")

	def test_extended_read_does_not_block(self):
		router = ExtendedDataRouter(ExtendedData.MERGE)

		self.assertEqual(router.read(100, extended=True), b"")


class TestIgnoreMode(unittest.TestCase):

	def test_extended_data_is_dropped(self):
		router = ExtendedDataRouter(ExtendedData.IGNORE)

		dropped = router.feed_extended(b"x" * 500)

		self.assertEqual(dropped, 500)
		self.assertEqual(router.read(1000, extended=True), b"")
		self.assertEqual(router.pending(), 0)


class TestModeChanges(unittest.TestCase):

	def test_change_is_not_retroactive(self):
		router = ExtendedDataRouter(ExtendedData.NORMAL)
		router.feed_extended(b"queued")

		router.set_mode(ExtendedData.MERGE)
		router.feed(b"out")
		router.feed_extended(b"merged")

		self.assertEqual(router.read(100), b"outmerged")
		self.assertEqual(router.read(100, extended=True), b"queued")
		self.assertEqual(router.read(100, extended=True), b"")

	def test_unknown_mode(self):
		router = ExtendedDataRouter()

		with self.assertRaises(ValueError):
			router.set_mode(7)
