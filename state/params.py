from __future__ import annotations
import math
import threading
from dataclasses import dataclass, field

import numpy as np

from state.errors import ParameterCountMismatch


class ShapeLinear:
    def to_normalized(self, value: float, lo: float, hi: float) -> float:
        return (value - lo) / (hi - lo)

    def from_normalized(self, n: float, lo: float, hi: float) -> float:
        return lo + n * (hi - lo)

    def __repr__(self) -> str:
        return "ShapeLinear()"


class ShapePowCurve:
    """Power curve: exponents above 1 give finer resolution near the minimum."""

    def __init__(self, exponent: float) -> None:
        if exponent <= 0:
            raise ValueError(f"Curve exponent must be positive, got {exponent}")
        self.exponent = exponent

    def to_normalized(self, value: float, lo: float, hi: float) -> float:
        return ((value - lo) / (hi - lo)) ** (1.0 / self.exponent)

    def from_normalized(self, n: float, lo: float, hi: float) -> float:
        return lo + (n ** self.exponent) * (hi - lo)

    def __repr__(self) -> str:
        return f"ShapePowCurve({self.exponent})"


class ShapeExp:
    """Exponential mapping for frequency-like ranges. Needs a positive minimum."""

    def to_normalized(self, value: float, lo: float, hi: float) -> float:
        return math.log(value / lo) / math.log(hi / lo)

    def from_normalized(self, n: float, lo: float, hi: float) -> float:
        return lo * math.exp(n * math.log(hi / lo))

    def __repr__(self) -> str:
        return "ShapeExp()"


LINEAR = ShapeLinear()


@dataclass
class Parameter:
    name: str
    default: float
    min_val: float
    max_val: float
    step: float = 0.0        # 0 = continuous
    shape: ShapeLinear | ShapePowCurve | ShapeExp = field(default=LINEAR)
    unit: str = ""
    group: str = ""
    display_texts: dict[float, str] | None = None
    precision: int = 2
    value: float = field(init=False)

    def __post_init__(self) -> None:
        if self.max_val <= self.min_val:
            raise ValueError(
                f"Parameter '{self.name}' needs min < max, got {self.min_val}..{self.max_val}"
            )
        if math.isnan(self.default):
            raise ValueError(f"Parameter '{self.name}' has a NaN default")
        if isinstance(self.shape, ShapeExp) and self.min_val <= 0:
            raise ValueError(f"Parameter '{self.name}' uses ShapeExp with non-positive minimum")
        self.default = self.constrain(self.default)
        self.value = self.default

    def constrain(self, value: float) -> float:
        """Clamp and step-round *value*; NaN falls back to the default."""
        value = float(value)
        if math.isnan(value):
            return self.default
        value = max(self.min_val, min(self.max_val, value))
        if self.step > 0:
            value = self.min_val + round((value - self.min_val) / self.step) * self.step
            value = max(self.min_val, min(self.max_val, value))
        return value

    def to_normalized(self, value: float) -> float:
        value = max(self.min_val, min(self.max_val, float(value)))
        return self.shape.to_normalized(value, self.min_val, self.max_val)

    def from_normalized(self, normalized: float) -> float:
        normalized = float(normalized)
        if math.isnan(normalized):
            return self.default
        normalized = max(0.0, min(1.0, normalized))
        return self.constrain(self.shape.from_normalized(normalized, self.min_val, self.max_val))

    def display_text(self, value: float | None = None) -> str:
        value = self.value if value is None else value
        if self.display_texts and value in self.display_texts:
            return self.display_texts[value]
        text = f"{value:.{self.precision}f}"
        return f"{text} {self.unit}" if self.unit else text


class ParameterTable:
    """Ordered parameter set shared by the control and audio threads.

    Every read and write takes ``lock``. Whole-table operations
    (``snapshot``, ``apply``) hold it for the full pass so the audio thread
    never sees a table half way between two states. The lock is reentrant:
    the codec holds it across a full serialize while calling ``snapshot``.
    """

    def __init__(self) -> None:
        self._params: list[Parameter] = []
        self._by_name: dict[str, int] = {}
        self.lock = threading.RLock()

    def add(self, param: Parameter) -> int:
        with self.lock:
            if param.name in self._by_name:
                raise ValueError(f"Duplicate parameter name '{param.name}'")
            self._params.append(param)
            idx = len(self._params) - 1
            self._by_name[param.name] = idx
            return idx

    def __len__(self) -> int:
        return len(self._params)

    def param(self, idx: int) -> Parameter:
        return self._params[idx]

    def index_of(self, name: str) -> int | None:
        return self._by_name.get(name)

    def names(self) -> list[str]:
        return [p.name for p in self._params]

    # -- single values --

    def value(self, idx: int) -> float:
        with self.lock:
            return self._params[idx].value

    def set_value(self, idx: int, value: float) -> float:
        param = self._params[idx]
        with self.lock:
            self._assign(idx, param.constrain(value))
            return param.value

    def normalized(self, idx: int) -> float:
        param = self._params[idx]
        with self.lock:
            return param.to_normalized(param.value)

    def set_normalized(self, idx: int, normalized: float) -> float:
        param = self._params[idx]
        with self.lock:
            self._assign(idx, param.from_normalized(normalized))
            return param.value

    def _assign(self, idx: int, value: float) -> None:
        self._params[idx].value = value

    # -- whole table --

    def snapshot(self) -> np.ndarray:
        with self.lock:
            return np.array([p.value for p in self._params], dtype=np.float64)

    def defaults(self) -> np.ndarray:
        return np.array([p.default for p in self._params], dtype=np.float64)

    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        lo = np.array([p.min_val for p in self._params], dtype=np.float64)
        hi = np.array([p.max_val for p in self._params], dtype=np.float64)
        return lo, hi

    def constrain_all(self, values) -> np.ndarray:
        values = np.asarray(values, dtype=np.float64)
        if values.shape != (len(self._params),):
            raise ParameterCountMismatch(
                f"Expected {len(self._params)} values, got {values.size}"
            )
        return np.array([p.constrain(v) for p, v in zip(self._params, values)],
                        dtype=np.float64)

    def from_normalized_all(self, normalized) -> np.ndarray:
        normalized = np.asarray(normalized, dtype=np.float64)
        if normalized.shape != (len(self._params),):
            raise ParameterCountMismatch(
                f"Expected {len(self._params)} values, got {normalized.size}"
            )
        return np.array([p.from_normalized(n) for p, n in zip(self._params, normalized)],
                        dtype=np.float64)

    def to_normalized_all(self, values) -> np.ndarray:
        return np.array([p.to_normalized(v) for p, v in zip(self._params, values)],
                        dtype=np.float64)

    def apply(self, values) -> None:
        """Write every parameter at once. Values are clamped to range."""
        constrained = self.constrain_all(values)
        with self.lock:
            for idx, value in enumerate(constrained):
                self._assign(idx, float(value))

    def reset_to_defaults(self) -> None:
        self.apply(self.defaults())
