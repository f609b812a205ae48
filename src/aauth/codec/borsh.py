# src/aauth/codec/borsh.py
from __future__ import annotations

import struct
from typing import Callable, List, Optional, TypeVar

from aauth.runtime.errors import CodecError

T = TypeVar("T")

U64_MAX = (1 << 64) - 1
U128_MAX = (1 << 128) - 1


class BorshWriter:
    """Little-endian Borsh encoder.

    Only the primitives used by persisted records and signed transactions
    are supported.
    """

    def __init__(self) -> None:
        self._buf = bytearray()

    def u8(self, v: int) -> "BorshWriter":
        if not 0 <= int(v) <= 0xFF:
            raise CodecError("value_out_of_range", "u8 out of range", {"value": v})
        self._buf.append(int(v))
        return self

    def u16(self, v: int) -> "BorshWriter":
        if not 0 <= int(v) <= 0xFFFF:
            raise CodecError("value_out_of_range", "u16 out of range", {"value": v})
        self._buf += struct.pack("<H", int(v))
        return self

    def u32(self, v: int) -> "BorshWriter":
        if not 0 <= int(v) <= 0xFFFFFFFF:
            raise CodecError("value_out_of_range", "u32 out of range", {"value": v})
        self._buf += struct.pack("<I", int(v))
        return self

    def u64(self, v: int) -> "BorshWriter":
        if not 0 <= int(v) <= U64_MAX:
            raise CodecError("value_out_of_range", "u64 out of range", {"value": v})
        self._buf += struct.pack("<Q", int(v))
        return self

    def u128(self, v: int) -> "BorshWriter":
        if not 0 <= int(v) <= U128_MAX:
            raise CodecError("value_out_of_range", "u128 out of range", {"value": v})
        self._buf += int(v).to_bytes(16, "little")
        return self

    def boolean(self, v: bool) -> "BorshWriter":
        return self.u8(1 if v else 0)

    def fixed(self, data: bytes, length: int) -> "BorshWriter":
        if len(data) != length:
            raise CodecError(
                "invalid_length",
                "fixed array length mismatch",
                {"expected": length, "got": len(data)},
            )
        self._buf += bytes(data)
        return self

    def string(self, s: str) -> "BorshWriter":
        raw = s.encode("utf-8")
        self.u32(len(raw))
        self._buf += raw
        return self

    def option(self, v: Optional[T], write: Callable[["BorshWriter", T], None]) -> "BorshWriter":
        if v is None:
            return self.u8(0)
        self.u8(1)
        write(self, v)
        return self

    def vec(self, items: List[T], write: Callable[["BorshWriter", T], None]) -> "BorshWriter":
        self.u32(len(items))
        for item in items:
            write(self, item)
        return self

    def bytes_vec(self, data: bytes) -> "BorshWriter":
        """Vec<u8>: u32 length prefix followed by the raw bytes."""
        self.u32(len(data))
        self._buf += bytes(data)
        return self

    def raw(self, data: bytes) -> "BorshWriter":
        self._buf += bytes(data)
        return self

    def getvalue(self) -> bytes:
        return bytes(self._buf)


class BorshReader:
    """Little-endian Borsh decoder with a length check before every slice."""

    def __init__(self, data: bytes, *, offset: int = 0) -> None:
        self._data = bytes(data)
        self._pos = int(offset)

    def remaining(self) -> int:
        return len(self._data) - self._pos

    def _take(self, n: int) -> bytes:
        if n < 0 or self._pos + n > len(self._data):
            raise CodecError(
                "unexpected_eof",
                "not enough bytes",
                {"need": n, "offset": self._pos, "len": len(self._data)},
            )
        out = self._data[self._pos : self._pos + n]
        self._pos += n
        return out

    def u8(self) -> int:
        return self._take(1)[0]

    def u16(self) -> int:
        return struct.unpack("<H", self._take(2))[0]

    def u32(self) -> int:
        return struct.unpack("<I", self._take(4))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self._take(8))[0]

    def u128(self) -> int:
        return int.from_bytes(self._take(16), "little")

    def boolean(self) -> bool:
        v = self.u8()
        if v not in (0, 1):
            raise CodecError("invalid_bool", "bool byte must be 0 or 1", {"value": v})
        return v == 1

    def fixed(self, length: int) -> bytes:
        return self._take(length)

    def string(self) -> str:
        n = self.u32()
        raw = self._take(n)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CodecError("invalid_utf8", f"invalid utf-8: {e}") from e

    def option(self, read: Callable[["BorshReader"], T]) -> Optional[T]:
        tag = self.u8()
        if tag == 0:
            return None
        if tag == 1:
            return read(self)
        raise CodecError("invalid_option_tag", "option tag must be 0 or 1", {"tag": tag})

    def vec(self, read: Callable[["BorshReader"], T]) -> List[T]:
        n = self.u32()
        return [read(self) for _ in range(n)]

    def bytes_vec(self) -> bytes:
        return self._take(self.u32())

    def expect_end(self) -> None:
        if self.remaining() != 0:
            raise CodecError("trailing_bytes", "unexpected trailing bytes", {"remaining": self.remaining()})
