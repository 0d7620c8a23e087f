from __future__ import annotations


class StateError(Exception):
    """Base class for every failure raised by the state engine."""


class OutOfRange(StateError, IndexError):
    """A read cursor moved past the end of a chunk."""


class Truncated(StateError):
    """A chunk ended before the structure being read was complete."""


class FormatMismatch(StateError, ValueError):
    """Container tag, magic or version is not one this build can read."""


class ParameterCountMismatch(StateError, ValueError):
    """A value list or container does not match the live parameter table."""


class NotFound(StateError, LookupError):
    """No preset matches the requested index or name."""


class NoCurrentPreset(StateError):
    """An operation needed an active preset but the bank has none."""
