"""Unit-tagged storage capacities with exact, truncating conversion."""
from __future__ import annotations

import enum
import functools
from dataclasses import dataclass
from fractions import Fraction

from .errors import UnknownUnitError

MAGNITUDE_MAX = 2 ** 64 - 1


class Unit(enum.Enum):
    """Binary capacity units; the value is the number of bytes per unit."""

    BYTES = 1
    KIB = 1024
    MIB = 1024 ** 2
    GIB = 1024 ** 3

    @property
    def ratio(self) -> Fraction:
        return Fraction(self.value, 1)


# diskpart prints binary sizes with decimal-looking labels.
_TOOL_LABELS = {
    "KB": Unit.KIB,
    "MB": Unit.MIB,
    "GB": Unit.GIB,
}

_CALLER_LABELS = {
    "KiB": Unit.KIB,
    "MiB": Unit.MIB,
    "GiB": Unit.GIB,
}


def tool_unit(label: str) -> Unit:
    try:
        return _TOOL_LABELS[label]
    except KeyError:
        raise UnknownUnitError(label) from None


def caller_unit(label: str) -> Unit:
    try:
        return _CALLER_LABELS[label]
    except KeyError:
        raise UnknownUnitError(label) from None


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class Capacity:
    magnitude: int
    unit: Unit = Unit.BYTES

    def __post_init__(self):
        if not 0 <= self.magnitude <= MAGNITUDE_MAX:
            raise ValueError(f"capacity magnitude {self.magnitude} outside 0..{MAGNITUDE_MAX}")

    @classmethod
    def bytes_(cls, magnitude: int) -> "Capacity":
        return cls(magnitude, Unit.BYTES)

    @classmethod
    def kib(cls, magnitude: int) -> "Capacity":
        return cls(magnitude, Unit.KIB)

    @classmethod
    def mib(cls, magnitude: int) -> "Capacity":
        return cls(magnitude, Unit.MIB)

    @classmethod
    def gib(cls, magnitude: int) -> "Capacity":
        return cls(magnitude, Unit.GIB)

    def to_bytes(self) -> int:
        return self.magnitude * self.unit.value

    def to(self, unit: Unit) -> "Capacity":
        return capacity_cast(self, unit)

    def __eq__(self, other):
        if not isinstance(other, Capacity):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    def __lt__(self, other):
        if not isinstance(other, Capacity):
            return NotImplemented
        return self.to_bytes() < other.to_bytes()

    def __hash__(self):
        return hash(self.to_bytes())

    def __add__(self, other):
        if not isinstance(other, Capacity):
            return NotImplemented
        unit = _finer(self.unit, other.unit)
        return Capacity(capacity_cast(self, unit).magnitude + capacity_cast(other, unit).magnitude, unit)

    def __sub__(self, other):
        if not isinstance(other, Capacity):
            return NotImplemented
        unit = _finer(self.unit, other.unit)
        return Capacity(capacity_cast(self, unit).magnitude - capacity_cast(other, unit).magnitude, unit)

    def __str__(self) -> str:
        label = {Unit.BYTES: "B", Unit.KIB: "KiB", Unit.MIB: "MiB", Unit.GIB: "GiB"}[self.unit]
        return f"{self.magnitude} {label}"


def _finer(first: Unit, second: Unit) -> Unit:
    return first if first.value <= second.value else second


def capacity_cast(value: Capacity, unit: Unit) -> Capacity:
    """Convert ``value`` to ``unit``, truncating with floor division.

    Magnitudes are never negative, so flooring is truncation. A result that
    does not fit in 64 bits raises :class:`ValueError`.

    The scale factor is the reduced fraction ``from.ratio / to.ratio`` so the
    multiplication only ever uses the reduced numerator.
    """

    scale = value.unit.ratio / unit.ratio
    if scale.denominator == 1:
        return Capacity(value.magnitude * scale.numerator, unit)
    return Capacity(value.magnitude * scale.numerator // scale.denominator, unit)
