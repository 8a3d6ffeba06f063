"""
Handles reading and writing of the data types used by channel messages
(RFC 4251, 5.)

byte
	A byte represents an arbitrary 8-bit value (octet).

boolean
	A boolean value is stored as a single byte. The value 0 represents
	FALSE, and the value 1 represents TRUE. All non-zero values MUST
	be interpreted as TRUE; however, applications MUST NOT store values
	other than 0 and 1.

uint32
	Represents a 32-bit unsigned integer. Stored as four bytes in the
	order of decreasing significance (network byte order).

string
	Arbitrary length binary string, stored as a uint32 containing its
	length followed by that many bytes. Used both for channel data
	(raw bytes) and for text. US-ASCII is used for internal names such
	as request types, and ISO-10646 UTF-8 for text that might be
	displayed to the user.
"""


import struct

from errors import ProtocolError



class DataReader:
	def __init__(self, data):
		self.data = data
		self.head = 0 # What byte we are up to reading

	@property
	def remaining(self):
		return len(self.data) - self.head

	def read_rest(self):
		return self.read_bytes(self.remaining)

	def read_bytes(self, n):
		# A short read means the peer sent a truncated message
		if n > self.remaining:
			raise ProtocolError(
				f"Wanted {n} bytes at offset {self.head}, only {self.remaining} left")

		b = self.data[self.head:self.head+n]
		self.head += n
		return b

	def read_bool(self):
		b = self.read_bytes(1)
		return b != b"\x00"

	def read_uint8(self):
		b = self.read_bytes(1)
		return struct.unpack(">B", b)[0]

	def read_uint32(self):
		b = self.read_bytes(4)
		return struct.unpack(">I", b)[0]

	def read_string(self, blob=False, us_ascii=True):
		str_len = self.read_uint32()
		str_bytes = self.read_bytes(str_len)

		# Channel data is kept as raw bytes
		if blob:
			return bytes(str_bytes)

		try:
			if us_ascii:
				return str_bytes.decode("ascii")
			return str_bytes.decode("utf-8")
		except UnicodeDecodeError as e:
			raise ProtocolError(f"Undecodable string field: {e}") from e


class DataWriter:
	def __init__(self):
		self.data = b""

	def write_bytes(self, data):
		self.data += data

	def write_bool(self, val):
		b = struct.pack(">?", val)
		self.write_bytes(b)

	def write_uint8(self, num):
		b = struct.pack(">B", num)
		self.write_bytes(b)

	def write_uint32(self, num):
		b = struct.pack(">I", num)
		self.write_bytes(b)

	def write_string(self, data, us_ascii=True):
		# If the data is not already encoded, we need to encode
		if isinstance(data, str):
			if us_ascii:
				str_bytes = data.encode("ascii")
			else:
				str_bytes = data.encode("utf-8")
		else:
			str_bytes = bytes(data)

		self.write_uint32(len(str_bytes))
		self.write_bytes(str_bytes)
