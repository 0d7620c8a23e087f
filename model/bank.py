from __future__ import annotations
from typing import Iterator

from core.logger import AppLogger
from model.preset import Preset
from state.byte_chunk import ByteChunk
from state.codec import StateCodec
from state.errors import (
    NoCurrentPreset, NotFound, OutOfRange, ParameterCountMismatch, StateError, Truncated,
)
from state.params import ParameterTable


class PresetBank:
    """Ordered presets built from, and restored into, one parameter table.

    ``current_index`` is the last restored or saved slot, -1 when none.
    Preset bodies are full state chunks as written by the codec. Slot swaps
    and ``current_index`` changes happen under the table lock.
    """

    def __init__(self, table: ParameterTable, codec: StateCodec,
                 name_prefix: str = "Preset", logger: AppLogger | None = None) -> None:
        self._table = table
        self._codec = codec
        self._presets: list[Preset] = []
        self._logger = logger or AppLogger()
        self.name_prefix = name_prefix
        self.current_index = -1

    # -- enumeration --

    def __len__(self) -> int:
        return len(self._presets)

    def __iter__(self) -> Iterator[Preset]:
        return iter(list(self._presets))

    def __getitem__(self, key: int | str) -> Preset:
        preset = self.get(key)
        if preset is None:
            raise NotFound(f"No preset {key!r} in bank of {len(self._presets)}")
        return preset

    def get(self, key: int | str) -> Preset | None:
        idx = self._resolve(key)
        return None if idx is None else self._presets[idx]

    def find(self, name: str) -> int | None:
        for idx, preset in enumerate(self._presets):
            if preset.name == name:
                return idx
        return None

    def name(self, idx: int) -> str | None:
        if 0 <= idx < len(self._presets):
            return self._presets[idx].name
        return None

    def names(self) -> list[str]:
        return [p.name for p in self._presets]

    @property
    def current_preset(self) -> Preset | None:
        if self.current_index < 0:
            return None
        return self._presets[self.current_index]

    def set_current_index(self, idx: int) -> None:
        if not (-1 <= idx < len(self._presets)):
            raise IndexError(f"Preset index {idx} out of range (size={len(self._presets)})")
        with self._table.lock:
            self.current_index = idx

    def _resolve(self, key: int | str) -> int | None:
        if isinstance(key, str):
            return self.find(key)
        if 0 <= key < len(self._presets):
            return key
        return None

    def _auto_name(self) -> str:
        return f"{self.name_prefix} {len(self._presets) + 1}"

    # -- creation --

    def _snapshot(self, values=None) -> bytes:
        chunk = ByteChunk()
        self._codec.serialize_state(chunk, self._table, values)
        return chunk.to_bytes()

    def make_empty_presets(self, count: int = 1) -> None:
        """Allocate uninitialized slots, to be filled by a later save."""
        for _ in range(count):
            self._presets.append(Preset(self._auto_name()))

    def make_default_preset(self, name: str | None = None, count: int = 1) -> None:
        body = self._snapshot(self._table.defaults())
        for _ in range(count):
            self._presets.append(Preset(name or self._auto_name(), body))
        self._logger.preset(f"added {count} default preset(s)")

    def preset_from_values(self, name: str, values) -> Preset:
        """Build, without adding, a preset from raw values in table order."""
        if len(values) != len(self._table):
            raise ParameterCountMismatch(
                f"Preset '{name}' has {len(values)} values, table has {len(self._table)}"
            )
        return Preset(name, self._snapshot(values))

    def make_preset(self, name: str, values) -> int:
        self._presets.append(self.preset_from_values(name, values))
        return len(self._presets) - 1

    def make_preset_from_named_params(self, name: str,
                                      pairs: list[tuple[int, float]]) -> int:
        """Add a preset from current state with sparse (index, normalized) overrides."""
        values = self._table.snapshot()
        for idx, normalized in pairs:
            if not (0 <= idx < len(self._table)):
                raise IndexError(f"Parameter index {idx} out of range (size={len(self._table)})")
            values[idx] = self._table.param(idx).from_normalized(normalized)
        return self.make_preset(name, values)

    def make_preset_from_chunk(self, name: str, chunk: ByteChunk) -> int:
        return self.make_preset_from_blob(name, chunk.to_bytes())

    def make_preset_from_blob(self, name: str, blob: bytes) -> int:
        self._presets.append(Preset(name, bytes(blob)))
        return len(self._presets) - 1

    def modify_current_preset(self, name: str | None = None) -> None:
        if self.current_index < 0:
            raise NoCurrentPreset("No preset is active")
        if name is None:
            name = self._presets[self.current_index].name
        with self._table.lock:
            self._presets[self.current_index] = Preset(name, self._snapshot())
        self._logger.preset(f"updated preset {self.current_index} '{name}'")

    # -- restore / prune --

    def set_current_preset(self, preset: Preset) -> int:
        """Put *preset* in the current slot, appending it when none is active."""
        with self._table.lock:
            if self.current_index < 0:
                self._presets.append(preset)
                self.current_index = len(self._presets) - 1
            else:
                self._presets[self.current_index] = preset
            return self.current_index

    def restore_preset(self, key: int | str) -> bool:
        """Load a preset into the table.

        Returns False for a missing or uninitialized preset. Corrupt bodies
        raise the codec's errors (``Truncated``, ``FormatMismatch``) with the
        table and ``current_index`` unchanged.
        """
        idx = self._resolve(key)
        if idx is None:
            return False
        preset = self._presets[idx]
        if not preset.initialized:
            return False
        with self._table.lock:
            try:
                self._codec.unserialize_state(ByteChunk(preset.chunk), 0, self._table)
            except StateError as e:
                self._logger.preset(f"could not restore preset {idx} '{preset.name}': {e}")
                raise
            self.current_index = idx
        return True

    def prune_uninitialized_presets(self) -> None:
        with self._table.lock:
            current = self.current_preset
            self._presets = [p for p in self._presets if p.initialized]
            self.current_index = -1
            if current is not None:
                for idx, preset in enumerate(self._presets):
                    if preset is current:
                        self.current_index = idx
                        break

    # -- source dumps --

    def preset_src_code(self, name: str, param_names: list[str] | None = None) -> str:
        """Python source recreating current state with make_preset_from_named_params.

        *param_names* are emitted in place of the numeric indices, e.g. the
        names of index constants in the plug-in module.
        """
        if param_names is not None and len(param_names) != len(self._table):
            raise ParameterCountMismatch(
                f"Got {len(param_names)} parameter names, table has {len(self._table)}"
            )
        with self._table.lock:
            normalized = self._table.to_normalized_all(self._table.snapshot())
        lines = [f"bank.make_preset_from_named_params({name!r}, ["]
        for idx, value in enumerate(normalized):
            key = param_names[idx] if param_names is not None else str(idx)
            lines.append(f"    ({key}, {float(value)!r}),")
        lines.append("])")
        return "\n".join(lines) + "\n"

    @staticmethod
    def _blob_call(name: str, blob: bytes) -> str:
        return f"bank.make_preset_from_blob({name!r}, bytes.fromhex({blob.hex()!r}))\n"

    def preset_blob_code(self, name: str) -> str:
        """Python source recreating current state with make_preset_from_blob."""
        return self._blob_call(name, self._snapshot())

    def bank_blob_code(self) -> str:
        """One make_preset_from_blob call per initialized preset, in bank order."""
        return "".join(self._blob_call(p.name, p.chunk) for p in self._presets if p.initialized)

    # -- bank chunk --

    def serialize_presets(self, chunk: ByteChunk) -> bool:
        chunk.put_int(len(self._presets))
        for preset in self._presets:
            chunk.put_str(preset.name)
            chunk.put_bool(preset.initialized)
            if preset.initialized:
                chunk.put_int(len(preset.chunk))
                chunk.put_bytes(preset.chunk)
        return True

    def unserialize_presets(self, chunk: ByteChunk, pos: int) -> int:
        """Replace the bank with the presets in *chunk*; all or nothing."""
        presets: list[Preset] = []
        try:
            count, pos = chunk.get_int(pos)
            if count < 0:
                raise Truncated(f"Negative preset count {count}")
            for _ in range(count):
                name, pos = chunk.get_str(pos)
                initialized, pos = chunk.get_bool(pos)
                body = None
                if initialized:
                    length, pos = chunk.get_int(pos)
                    if length < 0:
                        raise Truncated(f"Negative preset length {length}")
                    body, pos = chunk.get_bytes(pos, length)
                presets.append(Preset(name, body))
        except OutOfRange as e:
            raise Truncated(f"Bank chunk ends early: {e}") from e
        self.replace_presets(presets)
        return pos

    def replace_presets(self, presets: list[Preset]) -> None:
        with self._table.lock:
            self._presets = list(presets)
            self.current_index = -1
        self._logger.preset(f"loaded bank of {len(self._presets)} presets")
