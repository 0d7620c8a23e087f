from __future__ import annotations
from pathlib import Path

from PyQt6.QtCore import QObject, pyqtSignal

from core.config import AppConfig
from core.logger import AppLogger
from model.bank import PresetBank
from model.preset import Preset
from state.byte_chunk import ByteChunk
from state.codec import StateCodec, version_decimal, version_string
from state.params import Parameter, ParameterTable


class PluginState(QObject):
    """Entry point for host integrations: state chunks, presets, notifications.

    Runs on the control thread. The audio thread only reads through
    ``table`` (``value`` / ``snapshot``), which shares one lock with every
    write made here.
    """

    parameter_changed = pyqtSignal(int, float)  # index, normalized value
    program_changed = pyqtSignal()

    def __init__(self, unique_id: int, codec: StateCodec | None = None,
                 config: AppConfig | None = None, logger: AppLogger | None = None,
                 parent: QObject | None = None) -> None:
        super().__init__(parent)
        self.unique_id = unique_id
        self.config = config or AppConfig()
        self._logger = logger or AppLogger()
        self.codec = codec or StateCodec(logger=self._logger)
        self.table = ParameterTable()
        self.presets = PresetBank(self.table, self.codec,
                                  name_prefix=self.config.default_preset_prefix,
                                  logger=self._logger)

    @property
    def logger(self) -> AppLogger:
        return self._logger

    @property
    def plugin_version(self) -> int:
        return self.codec.plugin_version

    @property
    def state_chunks(self) -> bool:
        return bool(self.config.state_chunks)

    def version_string(self) -> str:
        return version_string(self.plugin_version)

    def version_decimal(self) -> int:
        return version_decimal(self.plugin_version)

    def add_parameter(self, param: Parameter) -> int:
        return self.table.add(param)

    # -- host state --

    def serialize_state(self, chunk: ByteChunk) -> bool:
        return self.codec.serialize_state(chunk, self.table)

    def unserialize_state(self, chunk: ByteChunk, start_pos: int) -> int:
        end = self.codec.unserialize_state(chunk, start_pos, self.table)
        self.program_changed.emit()
        return end

    def compare_state(self, data: bytes, start_pos: int = 0) -> bool:
        """True if *data* at *start_pos* holds exactly the current state."""
        current = ByteChunk()
        self.serialize_state(current)
        candidate = bytes(data[start_pos:start_pos + current.size])
        return current == candidate

    def set_parameter_from_ui(self, idx: int, normalized: float) -> None:
        self.table.set_normalized(idx, normalized)
        self.parameter_changed.emit(idx, self.table.normalized(idx))

    def reset_to_defaults(self) -> None:
        self.table.reset_to_defaults()
        self.program_changed.emit()

    # -- presets --

    def ensure_default_preset(self) -> None:
        """Give hosts that require one at least a single preset."""
        if len(self.presets) == 0:
            self.presets.make_default_preset()

    def restore_preset(self, key: int | str) -> bool:
        if not self.presets.restore_preset(key):
            return False
        self.program_changed.emit()
        return True

    def modify_current_preset(self, name: str | None = None) -> None:
        self.presets.modify_current_preset(name)

    def store_current_state(self, name: str) -> None:
        """Name the current preset after fresh state, adding one when none is active."""
        chunk = ByteChunk()
        self.serialize_state(chunk)
        idx = self.presets.set_current_preset(Preset(name, chunk.to_bytes()))
        self._logger.preset(f"stored current state as preset {idx} '{name}'")

    # -- source dumps --

    def _current_name(self) -> str:
        current = self.presets.current_preset
        return current.name if current is not None else "Dump"

    def dump_preset_src_code(self, path: Path, param_names: list[str] | None = None) -> None:
        """Write current state as a make_preset_from_named_params call."""
        Path(path).write_text(self.presets.preset_src_code(self._current_name(), param_names))
        self._logger.file(f"dumped preset source to {path}")

    def dump_preset_blob(self, path: Path) -> None:
        """Write current state as a make_preset_from_blob call."""
        Path(path).write_text(self.presets.preset_blob_code(self._current_name()))
        self._logger.file(f"dumped preset blob to {path}")

    def dump_bank_blob(self, path: Path) -> None:
        """Write every initialized preset as a make_preset_from_blob call."""
        Path(path).write_text(self.presets.bank_blob_code())
        self._logger.file(f"dumped bank of {len(self.presets)} presets to {path}")
