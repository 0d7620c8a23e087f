from __future__ import annotations
import json
from pathlib import Path

_CONFIG_DIR = Path.home() / ".config" / "plugstate"

_DEFAULTS = {
    "state_chunks": True,
    "default_preset_prefix": "Preset",
    "preset_dir": None,
}

class AppConfig:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _CONFIG_DIR / "config.json"
        self.state_chunks: bool = _DEFAULTS["state_chunks"]
        self.default_preset_prefix: str = _DEFAULTS["default_preset_prefix"]
        self.preset_dir: str | None = _DEFAULTS["preset_dir"]
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text())
            for key in _DEFAULTS:
                if key in data:
                    setattr(self, key, data[key])
        except (json.JSONDecodeError, OSError):
            pass

    def save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = {key: getattr(self, key) for key in _DEFAULTS}
        self._path.write_text(json.dumps(data, indent=2))

    @property
    def preset_root(self) -> Path:
        """Directory holding the on-disk preset library."""
        if self.preset_dir:
            return Path(self.preset_dir)
        return _CONFIG_DIR / "presets"
