"""Program (.fxp) and bank (.fxb) preset containers.

Every container field is big-endian; chunk payloads are stored verbatim as
the state codec wrote them.

Program container (56-byte header)::

    0   char[4]   'CcnK'
    4   int32     byte size of everything after this field
    8   char[4]   'FPCh' (opaque state chunk) or 'FxCk' (float parameters)
    12  int32     container version (1)
    16  int32     plug-in unique id
    20  int32     plug-in version, 0xVVVVRRMM
    24  int32     parameter count (read but not enforced for 'FPCh')
    28  char[28]  program name, NUL padded
    56  ...       'FPCh': int32 chunk size + chunk
                  'FxCk': float32 normalized value per parameter

Bank container (156-byte header)::

    0   char[4]   'CcnK'
    4   int32     byte size of everything after this field
    8   char[4]   'FBCh' (opaque bank chunk) or 'FxBk' (program sequence)
    12  int32     container version (2)
    16  int32     plug-in unique id
    20  int32     plug-in version, 0xVVVVRRMM
    24  int32     program count
    28  int32     current program, -1 for none
    32  char[124] reserved, zero
    156 ...       'FBCh': int32 chunk size + bank chunk
                  'FxBk': program count 'FxCk' program containers
"""
from __future__ import annotations
import os
import struct
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Union

import numpy as np

from model.bank import PresetBank
from model.preset import Preset
from state.byte_chunk import ByteChunk
from state.errors import FormatMismatch, ParameterCountMismatch, StateError
from state.plugin_state import PluginState

CHUNK_MAGIC = b"CcnK"
PROGRAM_CHUNK = b"FPCh"
PROGRAM_PARAMS = b"FxCk"
BANK_CHUNK = b"FBCh"
BANK_PROGRAMS = b"FxBk"
PROGRAM_VERSION = 1
BANK_VERSION = 2
PROGRAM_NAME_SIZE = 28
BANK_RESERVED_SIZE = 124

_PROGRAM_HEADER = struct.Struct(f">4si4siIIi{PROGRAM_NAME_SIZE}s")
_BANK_HEADER = struct.Struct(f">4si4siIIii{BANK_RESERVED_SIZE}s")
_INT = struct.Struct(">i")
_PARAM_DTYPE = np.dtype(">f4")
_SIZE_FIELD_END = 8  # byte size counts from here

Source = Union[str, os.PathLike, BinaryIO]


@dataclass
class ProgramContainer:
    unique_id: int
    plugin_version: int
    name: str
    chunk: bytes | None = None         # 'FPCh' form
    params: np.ndarray | None = None   # 'FxCk' form, normalized
    num_params: int = 0                # header count for the 'FPCh' form

    @property
    def form(self) -> bytes:
        return PROGRAM_CHUNK if self.chunk is not None else PROGRAM_PARAMS


@dataclass
class BankContainer:
    unique_id: int
    plugin_version: int
    num_programs: int
    current_program: int
    chunk: bytes | None = None                     # 'FBCh' form
    programs: list[ProgramContainer] | None = None  # 'FxBk' form

    @property
    def form(self) -> bytes:
        return BANK_CHUNK if self.chunk is not None else BANK_PROGRAMS


# -- names --

def _encode_name(name: str) -> bytes:
    raw = name.encode("utf-8")[:PROGRAM_NAME_SIZE - 1]
    return raw.decode("utf-8", errors="ignore").encode("utf-8")


def _decode_name(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace")


# -- programs --

def encode_program(program: ProgramContainer) -> bytes:
    if program.chunk is not None:
        count = program.num_params
        body = _INT.pack(len(program.chunk)) + program.chunk
    else:
        params = np.asarray(program.params, dtype=_PARAM_DTYPE)
        count = len(params)
        body = params.tobytes()
    byte_size = _PROGRAM_HEADER.size - _SIZE_FIELD_END + len(body)
    header = _PROGRAM_HEADER.pack(
        CHUNK_MAGIC, byte_size, program.form, PROGRAM_VERSION,
        program.unique_id, program.plugin_version, count, _encode_name(program.name),
    )
    return header + body


def decode_program(data: bytes, offset: int = 0) -> tuple[ProgramContainer, int]:
    """Parse one program container at *offset*; returns it and its end offset."""
    if len(data) - offset < _PROGRAM_HEADER.size:
        raise FormatMismatch(
            f"Program container needs {_PROGRAM_HEADER.size} header bytes, "
            f"got {len(data) - offset}"
        )
    (magic, byte_size, form, version, unique_id, plugin_version,
     count, raw_name) = _PROGRAM_HEADER.unpack_from(data, offset)
    if magic != CHUNK_MAGIC:
        raise FormatMismatch(f"Bad container magic {magic!r} (expected {CHUNK_MAGIC!r})")
    if form not in (PROGRAM_CHUNK, PROGRAM_PARAMS):
        raise FormatMismatch(f"Not a program container: {form!r}")
    if version != PROGRAM_VERSION:
        raise FormatMismatch(f"Unsupported program container version {version}")
    end = offset + _SIZE_FIELD_END + byte_size
    if byte_size < _PROGRAM_HEADER.size - _SIZE_FIELD_END or end > len(data):
        raise FormatMismatch(f"Program byte size {byte_size} does not fit {len(data) - offset} bytes")
    body_start = offset + _PROGRAM_HEADER.size
    program = ProgramContainer(unique_id, plugin_version, _decode_name(raw_name),
                               num_params=count)
    if form == PROGRAM_CHUNK:
        if count < 0 or end - body_start < _INT.size:
            raise FormatMismatch(f"Malformed chunk program (count={count})")
        (chunk_size,) = _INT.unpack_from(data, body_start)
        if chunk_size < 0 or body_start + _INT.size + chunk_size != end:
            raise FormatMismatch(f"Chunk size {chunk_size} disagrees with byte size {byte_size}")
        program.chunk = bytes(data[body_start + _INT.size:end])
    else:
        if count < 0 or body_start + count * _PARAM_DTYPE.itemsize != end:
            raise FormatMismatch(f"Parameter count {count} disagrees with byte size {byte_size}")
        raw = bytes(data[body_start:end])
        program.params = (np.frombuffer(raw, dtype=_PARAM_DTYPE).astype(np.float64)
                          if raw else np.empty(0, dtype=np.float64))
    return program, end


def decode_program_file(data: bytes) -> ProgramContainer:
    program, end = decode_program(data)
    if end != len(data):
        raise FormatMismatch(f"{len(data) - end} trailing bytes after program container")
    return program


# -- banks --

def encode_bank(bank: BankContainer) -> bytes:
    if bank.chunk is not None:
        body = _INT.pack(len(bank.chunk)) + bank.chunk
    else:
        body = b"".join(encode_program(p) for p in bank.programs)
    byte_size = _BANK_HEADER.size - _SIZE_FIELD_END + len(body)
    header = _BANK_HEADER.pack(
        CHUNK_MAGIC, byte_size, bank.form, BANK_VERSION, bank.unique_id,
        bank.plugin_version, bank.num_programs, bank.current_program,
        bytes(BANK_RESERVED_SIZE),
    )
    return header + body


def decode_bank(data: bytes) -> BankContainer:
    if len(data) < _BANK_HEADER.size:
        raise FormatMismatch(f"Bank container needs {_BANK_HEADER.size} header bytes, got {len(data)}")
    (magic, byte_size, form, version, unique_id, plugin_version,
     num_programs, current, _reserved) = _BANK_HEADER.unpack_from(data)
    if magic != CHUNK_MAGIC:
        raise FormatMismatch(f"Bad container magic {magic!r} (expected {CHUNK_MAGIC!r})")
    if form not in (BANK_CHUNK, BANK_PROGRAMS):
        raise FormatMismatch(f"Not a bank container: {form!r}")
    if version != BANK_VERSION:
        raise FormatMismatch(f"Unsupported bank container version {version}")
    if _SIZE_FIELD_END + byte_size != len(data):
        raise FormatMismatch(f"Bank byte size {byte_size} disagrees with {len(data)} bytes")
    if num_programs < 0 or not (-1 <= current < max(num_programs, 0)):
        raise FormatMismatch(f"Bad program count {num_programs} / current {current}")
    bank = BankContainer(unique_id, plugin_version, num_programs, current)
    pos = _BANK_HEADER.size
    if form == BANK_CHUNK:
        if len(data) - pos < _INT.size:
            raise FormatMismatch("Bank chunk size missing")
        (chunk_size,) = _INT.unpack_from(data, pos)
        pos += _INT.size
        if chunk_size < 0 or pos + chunk_size != len(data):
            raise FormatMismatch(f"Bank chunk size {chunk_size} disagrees with byte size {byte_size}")
        bank.chunk = bytes(data[pos:])
    else:
        programs = []
        for _ in range(num_programs):
            program, pos = decode_program(data, pos)
            if program.params is None:
                raise FormatMismatch("Program sequence banks hold only parameter programs")
            programs.append(program)
        if pos != len(data):
            raise FormatMismatch(f"{len(data) - pos} trailing bytes after bank programs")
        bank.programs = programs
    return bank


# -- byte sinks and sources --

def _read(source: Source) -> bytes:
    if isinstance(source, (str, os.PathLike)):
        return Path(source).read_bytes()
    return source.read()


def _write(sink: Source, data: bytes) -> None:
    if not isinstance(sink, (str, os.PathLike)):
        sink.write(data)
        return
    path = Path(sink)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def _check_identity(state: PluginState, unique_id: int, plugin_version: int) -> None:
    if unique_id != state.unique_id:
        raise FormatMismatch(
            f"Container belongs to plug-in id {unique_id:#x}, expected {state.unique_id:#x}"
        )
    state.codec.check_version(plugin_version)


def _check_param_count(state: PluginState, program: ProgramContainer) -> None:
    if len(program.params) != len(state.table):
        raise ParameterCountMismatch(
            f"Program '{program.name}' has {len(program.params)} parameters, "
            f"table has {len(state.table)}"
        )


def _preset_normalized(state: PluginState, preset: Preset) -> np.ndarray:
    if preset.initialized:
        values, _pre, _post, _end = state.codec.decode_state(
            ByteChunk(preset.chunk), 0, len(state.table))
    else:
        values = state.table.defaults()
    return state.table.to_normalized_all(values)


# -- program files --

def _matches_live(state: PluginState, body: bytes) -> bool:
    """True if restoring *body* would reproduce the live state exactly."""
    count = len(state.table)
    try:
        stored, stored_pre, stored_post, _end = state.codec.decode_state(
            ByteChunk(body), 0, count)
    except StateError:
        return False
    live = ByteChunk()
    state.serialize_state(live)
    values, pre, post, _end = state.codec.decode_state(live, 0, count)
    return (np.array_equal(state.table.constrain_all(stored), values)
            and stored_pre == pre and stored_post == post)


def program_bytes(state: PluginState) -> bytes:
    """Encode the live state as a program container.

    A current preset loaded from a container keeps that container's version
    and, in chunk form, its body verbatim for as long as the live state
    still matches it.
    """
    preset = state.presets.current_preset
    name = preset.name if preset is not None else ""
    unchanged = (preset is not None and preset.plugin_version is not None
                 and preset.initialized and _matches_live(state, preset.chunk))
    version = preset.plugin_version if unchanged else state.plugin_version
    program = ProgramContainer(state.unique_id, version, name, num_params=len(state.table))
    if state.state_chunks:
        if unchanged:
            program.chunk = preset.chunk
        else:
            chunk = ByteChunk()
            state.serialize_state(chunk)
            program.chunk = chunk.to_bytes()
    else:
        program.params = state.table.to_normalized_all(state.table.snapshot())
    return encode_program(program)


def save_program(state: PluginState, sink: Source) -> None:
    data = program_bytes(state)
    _write(sink, data)
    state.logger.file(f"saved program ({len(data)} bytes)")


def load_program(state: PluginState, source: Source) -> None:
    """Restore state from a program container and name the current preset.

    The container is fully validated before any parameter changes; malformed
    input raises FormatMismatch and leaves the plug-in untouched.
    """
    program = decode_program_file(_read(source))
    _check_identity(state, program.unique_id, program.plugin_version)
    if program.chunk is not None:
        try:
            state.unserialize_state(ByteChunk(program.chunk), 0)
        except StateError as e:
            if isinstance(e, FormatMismatch):
                raise
            raise FormatMismatch(f"Program '{program.name}' state is unreadable: {e}") from e
        body = program.chunk
    else:
        _check_param_count(state, program)
        state.table.apply(state.table.from_normalized_all(program.params))
        state.program_changed.emit()
        chunk = ByteChunk()
        state.serialize_state(chunk)
        body = chunk.to_bytes()
    state.presets.set_current_preset(Preset(program.name, body, program.plugin_version))
    state.logger.file(f"loaded program '{program.name}'")


# -- bank files --

def bank_bytes(state: PluginState) -> bytes:
    bank = state.presets
    container = BankContainer(state.unique_id, state.plugin_version, len(bank),
                              bank.current_index)
    if state.state_chunks:
        chunk = ByteChunk()
        bank.serialize_presets(chunk)
        container.chunk = chunk.to_bytes()
    else:
        container.programs = [
            ProgramContainer(state.unique_id, state.plugin_version, preset.name,
                             params=_preset_normalized(state, preset))
            for preset in bank
        ]
    return encode_bank(container)


def save_bank(state: PluginState, sink: Source) -> None:
    data = bank_bytes(state)
    _write(sink, data)
    state.logger.file(f"saved bank of {len(state.presets)} presets ({len(data)} bytes)")


def _stage_bank(state: PluginState, container: BankContainer) -> list[Preset]:
    if container.chunk is not None:
        staged = PresetBank(state.table, state.codec, logger=state.logger)
        try:
            staged.unserialize_presets(ByteChunk(container.chunk), 0)
        except StateError as e:
            raise FormatMismatch(f"Bank chunk is unreadable: {e}") from e
        presets = list(staged)
    else:
        presets = []
        for program in container.programs:
            _check_param_count(state, program)
            values = state.table.from_normalized_all(program.params)
            presets.append(state.presets.preset_from_values(program.name, values))
    if len(presets) != container.num_programs:
        raise FormatMismatch(
            f"Bank header lists {container.num_programs} programs, chunk holds {len(presets)}"
        )
    return presets


def load_bank(state: PluginState, source: Source) -> None:
    """Replace the preset bank and restore its current program.

    Everything, including the current program's state, is decoded before
    the bank or the parameter table is touched.
    """
    container = decode_bank(_read(source))
    _check_identity(state, container.unique_id, container.plugin_version)
    presets = _stage_bank(state, container)
    current = presets[container.current_program] if container.current_program >= 0 else None
    if current is not None and current.initialized:
        try:
            state.codec.decode_state(ByteChunk(current.chunk), 0, len(state.table))
        except StateError as e:
            raise FormatMismatch(f"Current program '{current.name}' is unreadable: {e}") from e

    state.presets.replace_presets(presets)
    state.presets.set_current_index(container.current_program)
    if current is not None and current.initialized:
        state.unserialize_state(ByteChunk(current.chunk), 0)
    else:
        state.program_changed.emit()
    state.logger.file(f"loaded bank of {len(presets)} presets")
