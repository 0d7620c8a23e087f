from __future__ import annotations
import struct

from state.errors import OutOfRange

# Native byte order, standard sizes. Chunks are only portable between
# builds sharing the producer's byte order.
_BYTE_ORDER = "="
_FORMATS = frozenset("bBhHiIqQfd?")


def _struct_for(fmt: str) -> struct.Struct:
    if len(fmt) != 1 or fmt not in _FORMATS:
        raise ValueError(f"Unsupported chunk value format {fmt!r}")
    return struct.Struct(_BYTE_ORDER + fmt)


class ByteChunk:
    """Growable byte buffer with typed append and positional reads.

    Reads never move an internal cursor: every ``get_*`` takes the position
    to read from and returns ``(value, next_pos)``, so a caller can probe
    ahead and back off without touching the buffer.
    """

    def __init__(self, data: bytes | bytearray | None = None) -> None:
        self._data = bytearray(data) if data else bytearray()

    # -- buffer management --

    @property
    def size(self) -> int:
        return len(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ByteChunk):
            return self._data == other._data
        if isinstance(other, (bytes, bytearray)):
            return self._data == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"ByteChunk(size={len(self._data)})"

    def to_bytes(self) -> bytes:
        return bytes(self._data)

    def clear(self) -> None:
        self._data.clear()

    def resize(self, size: int) -> int:
        """Truncate or zero-extend to *size* bytes."""
        if size < 0:
            raise ValueError(f"Chunk size must be non-negative, got {size}")
        if size < len(self._data):
            del self._data[size:]
        else:
            self._data.extend(bytes(size - len(self._data)))
        return len(self._data)

    def _check(self, pos: int, length: int) -> None:
        if pos < 0 or pos + length > len(self._data):
            raise OutOfRange(
                f"Read of {length} bytes at {pos} out of range (size={len(self._data)})"
            )

    # -- fixed-size values --

    def put(self, fmt: str, value) -> int:
        self._data += _struct_for(fmt).pack(value)
        return len(self._data)

    def get(self, fmt: str, pos: int) -> tuple:
        s = _struct_for(fmt)
        self._check(pos, s.size)
        (value,) = s.unpack_from(self._data, pos)
        return value, pos + s.size

    def put_int(self, value: int) -> int:
        return self.put("i", value)

    def get_int(self, pos: int) -> tuple[int, int]:
        return self.get("i", pos)

    def put_uint(self, value: int) -> int:
        return self.put("I", value)

    def get_uint(self, pos: int) -> tuple[int, int]:
        return self.get("I", pos)

    def put_double(self, value: float) -> int:
        return self.put("d", value)

    def get_double(self, pos: int) -> tuple[float, int]:
        return self.get("d", pos)

    def put_bool(self, value: bool) -> int:
        return self.put("?", value)

    def get_bool(self, pos: int) -> tuple[bool, int]:
        return self.get("?", pos)

    # -- variable-length spans --

    def put_bytes(self, data: bytes | bytearray) -> int:
        self._data += data
        return len(self._data)

    def get_bytes(self, pos: int, length: int) -> tuple[bytes, int]:
        if length < 0:
            raise ValueError(f"Length must be non-negative, got {length}")
        self._check(pos, length)
        return bytes(self._data[pos:pos + length]), pos + length

    def put_chunk(self, other: ByteChunk) -> int:
        return self.put_bytes(other._data)

    def put_str(self, text: str) -> int:
        """Append a string as an int32 byte count followed by UTF-8 bytes."""
        raw = text.encode("utf-8")
        self.put_int(len(raw))
        return self.put_bytes(raw)

    def get_str(self, pos: int) -> tuple[str, int]:
        length, pos = self.get_int(pos)
        if length < 0:
            raise OutOfRange(f"Negative string length {length} at {pos - 4}")
        raw, pos = self.get_bytes(pos, length)
        return raw.decode("utf-8", errors="replace"), pos
