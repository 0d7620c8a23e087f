from __future__ import annotations
import re
from dataclasses import dataclass


@dataclass
class Preset:
    name: str
    chunk: bytes | None = None
    plugin_version: int | None = None  # container version it was loaded from

    @property
    def initialized(self) -> bool:
        return self.chunk is not None

    @property
    def slug(self) -> str:
        slug = re.sub(r"[^\w-]", "-", self.name.lower()).strip("-")
        return slug or "preset"
