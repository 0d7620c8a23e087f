from __future__ import annotations

import numpy as np

from core.logger import AppLogger
from state.byte_chunk import ByteChunk
from state.errors import FormatMismatch, OutOfRange, Truncated
from state.params import ParameterTable

VERSION_MAGIC = b"pfft"
HEADER_SIZE = len(VERSION_MAGIC) + 4  # magic + uint32 version
_PARAM_DTYPE = np.dtype("=f8")  # native-order double, same as ByteChunk


def make_version(major: int, revision: int = 0, minor: int = 0) -> int:
    """Pack a version as 0xVVVVRRMM."""
    if not (0 <= major <= 0xFFFF and 0 <= revision <= 0xFF and 0 <= minor <= 0xFF):
        raise ValueError(f"Version {major}.{revision}.{minor} does not fit 0xVVVVRRMM")
    return (major << 16) | (revision << 8) | minor


def split_version(version: int) -> tuple[int, int, int]:
    return (version >> 16) & 0xFFFF, (version >> 8) & 0xFF, version & 0xFF


def version_decimal(version: int) -> int:
    """0xVVVVRRMM rendered as the decimal number VVVVRRMM (1.2.3 -> 10203)."""
    major, revision, minor = split_version(version)
    return major * 10000 + revision * 100 + minor


def version_string(version: int) -> str:
    major, revision, minor = split_version(version)
    return f"v{major}.{revision}.{minor}"


class StateCodec:
    """Reads and writes plug-in state chunks.

    Chunk layout, in order::

        [magic 'pfft'][uint32 version]   version header
        [custom pre-data]                 write_custom_pre / read_custom_pre
        [double * n_params]               parameter block, table order, no count
        [custom post-data]                write_custom_post / read_custom_post

    Subclasses override the custom hooks to carry opaque plug-in data. The
    read hooks must only decode; anything they return is handed to
    ``apply_custom_data`` once the whole chunk has been validated.
    """

    def __init__(self, plugin_version: int = make_version(1),
                 logger: AppLogger | None = None) -> None:
        self.plugin_version = plugin_version
        self._logger = logger or AppLogger()

    # -- version header --

    def init_chunk_with_version(self, chunk: ByteChunk) -> None:
        chunk.put_bytes(VERSION_MAGIC)
        chunk.put_uint(self.plugin_version)

    def get_version_from_chunk(self, chunk: ByteChunk, pos: int) -> tuple[int, int]:
        """Return ``(version, next_pos)``; ``(0, pos)`` for headerless data.

        A header is only trusted when at least HEADER_SIZE bytes remain and
        the magic matches, otherwise the bytes are left for the caller to
        read as a bare parameter block.
        """
        if chunk.size - pos < HEADER_SIZE:
            return 0, pos
        magic, after_magic = chunk.get_bytes(pos, len(VERSION_MAGIC))
        if magic != VERSION_MAGIC:
            return 0, pos
        version, next_pos = chunk.get_uint(after_magic)
        self.check_version(version)
        return version, next_pos

    def check_version(self, version: int) -> None:
        """Reject chunks written by a newer major version of the plug-in."""
        chunk_major = split_version(version)[0]
        own_major = split_version(self.plugin_version)[0]
        if chunk_major > own_major:
            raise FormatMismatch(
                f"Chunk written by {version_string(version)}, this build is "
                f"{version_string(self.plugin_version)}"
            )

    # -- parameter block --

    def serialize_params(self, chunk: ByteChunk, table: ParameterTable,
                         values=None) -> bool:
        """Append one double per parameter. *values* replaces the live table."""
        with table.lock:
            if values is None:
                values = table.snapshot()
            else:
                values = table.constrain_all(values)
        chunk.put_bytes(np.asarray(values, dtype=_PARAM_DTYPE).tobytes())
        return True

    def read_params(self, chunk: ByteChunk, pos: int, count: int) -> tuple[np.ndarray, int]:
        """Decode *count* doubles starting at *pos* without applying them."""
        try:
            raw, end = chunk.get_bytes(pos, count * _PARAM_DTYPE.itemsize)
        except OutOfRange as e:
            raise Truncated(
                f"Parameter block needs {count * _PARAM_DTYPE.itemsize} bytes at {pos}, "
                f"chunk has {chunk.size - pos}"
            ) from e
        if not raw:
            return np.empty(0, dtype=np.float64), end
        return np.frombuffer(raw, dtype=_PARAM_DTYPE).astype(np.float64), end

    def unserialize_params(self, chunk: ByteChunk, pos: int, table: ParameterTable) -> int:
        values, end = self.read_params(chunk, pos, len(table))
        table.apply(values)
        return end

    # -- custom data hooks --

    def write_custom_pre(self, chunk: ByteChunk) -> None:
        pass

    def write_custom_post(self, chunk: ByteChunk) -> None:
        pass

    def read_custom_pre(self, chunk: ByteChunk, pos: int, version: int) -> tuple[object, int]:
        return None, pos

    def read_custom_post(self, chunk: ByteChunk, pos: int, version: int) -> tuple[object, int]:
        return None, pos

    def apply_custom_data(self, pre: object, post: object) -> None:
        pass

    # -- full state --

    def serialize_state(self, chunk: ByteChunk, table: ParameterTable,
                        values=None) -> bool:
        """Append a full state chunk; on failure *chunk* is cut back to its old size."""
        start = chunk.size
        try:
            with table.lock:
                self.init_chunk_with_version(chunk)
                self.write_custom_pre(chunk)
                self.serialize_params(chunk, table, values)
                self.write_custom_post(chunk)
        except BaseException:
            chunk.resize(start)
            raise
        return True

    def decode_state(self, chunk: ByteChunk, pos: int,
                     count: int) -> tuple[np.ndarray, object, object, int]:
        """Decode a full state chunk into ``(values, pre, post, end_pos)``."""
        version, pos = self.get_version_from_chunk(chunk, pos)
        try:
            pre, pos = self.read_custom_pre(chunk, pos, version)
            values, pos = self.read_params(chunk, pos, count)
            post, pos = self.read_custom_post(chunk, pos, version)
        except OutOfRange as e:
            raise Truncated(str(e)) from e
        return values, pre, post, pos

    def unserialize_state(self, chunk: ByteChunk, pos: int, table: ParameterTable) -> int:
        """Restore *table* from a state chunk; nothing changes on failure."""
        values, pre, post, end = self.decode_state(chunk, pos, len(table))
        with table.lock:
            table.apply(values)
            self.apply_custom_data(pre, post)
        self._logger.state(f"restored {len(table)} parameters from {end - pos} bytes")
        return end
