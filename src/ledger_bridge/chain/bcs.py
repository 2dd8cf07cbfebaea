"""Binary Canonical Serialization primitives.

Only the subset the bridge needs: fixed-width little-endian integers, ULEB128
lengths, byte vectors, UTF-8 strings and 32-byte addresses.
"""

from __future__ import annotations

import struct

ADDRESS_LENGTH = 32


class BCSError(ValueError):
    """Malformed or truncated BCS input."""


class Writer:
    def __init__(self) -> None:
        self._buf = bytearray()

    def u8(self, value: int) -> Writer:
        self._buf += struct.pack("<B", value)
        return self

    def u16(self, value: int) -> Writer:
        self._buf += struct.pack("<H", value)
        return self

    def u64(self, value: int) -> Writer:
        self._buf += struct.pack("<Q", value)
        return self

    def bool(self, value: bool) -> Writer:
        return self.u8(1 if value else 0)

    def uleb128(self, value: int) -> Writer:
        if value < 0:
            raise BCSError("uleb128 cannot encode a negative value")
        while True:
            byte = value & 0x7F
            value >>= 7
            if value:
                self._buf.append(byte | 0x80)
            else:
                self._buf.append(byte)
                return self

    def fixed(self, data: bytes) -> Writer:
        self._buf += data
        return self

    def bytes(self, data: bytes) -> Writer:
        self.uleb128(len(data))
        self._buf += data
        return self

    def string(self, value: str) -> Writer:
        return self.bytes(value.encode("utf-8"))

    def address(self, value: bytes) -> Writer:
        if len(value) != ADDRESS_LENGTH:
            raise BCSError(f"address must be {ADDRESS_LENGTH} bytes, got {len(value)}")
        return self.fixed(value)

    def getvalue(self) -> bytes:
        return bytes(self._buf)


class Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def _take(self, n: int) -> bytes:
        if n < 0 or self._pos + n > len(self._data):
            raise BCSError(f"unexpected end of input at offset {self._pos} (wanted {n} bytes)")
        chunk = self._data[self._pos : self._pos + n]
        self._pos += n
        return chunk

    def u8(self) -> int:
        return self._take(1)[0]

    def u16(self) -> int:
        return struct.unpack("<H", self._take(2))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self._take(8))[0]

    def bool(self) -> bool:
        value = self.u8()
        if value > 1:
            raise BCSError(f"invalid bool byte {value}")
        return value == 1

    def uleb128(self) -> int:
        result = 0
        shift = 0
        while True:
            byte = self.u8()
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return result
            shift += 7
            if shift > 63:
                raise BCSError("uleb128 value overflows u64")

    def fixed(self, n: int) -> bytes:
        return self._take(n)

    def bytes(self) -> bytes:
        return self._take(self.uleb128())

    def string(self) -> str:
        try:
            return self.bytes().decode("utf-8")
        except UnicodeDecodeError as exc:
            raise BCSError(f"invalid utf-8 string: {exc}") from exc

    def address(self) -> bytes:
        return self._take(ADDRESS_LENGTH)

    def expect_end(self) -> None:
        if self.remaining:
            raise BCSError(f"{self.remaining} trailing bytes after value")
