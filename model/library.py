from __future__ import annotations
from pathlib import Path

from formats import fxp
from model.preset import Preset
from state.errors import StateError
from state.plugin_state import PluginState


class PresetLibrary:
    """Directory of program (.fxp) and bank (.fxb) files for one plug-in."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._programs_dir = self.root / "programs"
        self._banks_dir = self.root / "banks"
        self._programs_dir.mkdir(parents=True, exist_ok=True)
        self._banks_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def for_state(cls, state: PluginState) -> PresetLibrary:
        """Library rooted at the state's configured preset directory."""
        return cls(state.config.preset_root)

    def _unique_path(self, directory: Path, slug: str, suffix: str) -> Path:
        path = directory / f"{slug}{suffix}"
        counter = 1
        while path.exists():
            path = directory / f"{slug}-{counter}{suffix}"
            counter += 1
        return path

    def save_program(self, state: PluginState, name: str | None = None) -> Path:
        """Write the current state; the file is named after *name* or the current preset."""
        if name is not None:
            state.store_current_state(name)
        current = state.presets.current_preset
        slug = Preset(current.name if current else "").slug
        path = self._unique_path(self._programs_dir, slug, ".fxp")
        fxp.save_program(state, path)
        return path

    def load_program(self, state: PluginState, path: Path) -> None:
        fxp.load_program(state, path)

    def list_programs(self) -> list[tuple[str, Path]]:
        """(program name, path) for every readable program file."""
        result = []
        for f in sorted(self._programs_dir.glob("*.fxp")):
            try:
                program = fxp.decode_program_file(f.read_bytes())
            except (StateError, OSError):
                continue  # skip malformed or unreadable files
            result.append((program.name, f))
        return result

    def save_bank(self, state: PluginState, name: str) -> Path:
        path = self._unique_path(self._banks_dir, Preset(name).slug, ".fxb")
        fxp.save_bank(state, path)
        return path

    def load_bank(self, state: PluginState, path: Path) -> None:
        fxp.load_bank(state, path)

    def list_banks(self) -> list[Path]:
        result = []
        for f in sorted(self._banks_dir.glob("*.fxb")):
            try:
                fxp.decode_bank(f.read_bytes())
            except (StateError, OSError):
                continue  # skip malformed or unreadable files
            result.append(f)
        return result

    def delete(self, path: Path) -> None:
        if path.exists():
            path.unlink()
