"""Parsing of size-chart measurement cells.

Charts scraped from brand sites store each measurement as a loosely formatted cell:
a number (``35``), a range (``"35-36"``), a comma list (``"35,36,37"``) or quoted
variants of those. Cells are parsed once into a small closed set of shapes so the
fit scorer never has to sniff strings.
"""
import re
from dataclasses import dataclass
from typing import List, Tuple, Union

from ..schemas.catalog import RawCell


_LEADING_NUMBER = re.compile(r"^[+]?(\d+(?:\.\d*)?|\.\d+)")
_QUOTES = "'\"’“”"


@dataclass(frozen=True)
class Single:
    value: float

    @property
    def values(self) -> Tuple[float, ...]:
        return (self.value,)


@dataclass(frozen=True)
class Range:
    low: float
    high: float

    @property
    def values(self) -> Tuple[float, ...]:
        return (self.low, self.high)


@dataclass(frozen=True)
class Values:
    """Comma separated list of discrete values, in chart order."""

    items: Tuple[float, ...]

    @property
    def values(self) -> Tuple[float, ...]:
        return self.items


@dataclass(frozen=True)
class Empty:
    @property
    def values(self) -> Tuple[float, ...]:
        return ()


MeasurementCell = Union[Single, Range, Values, Empty]

EMPTY = Empty()


def _to_float(token: str) -> float | None:
    match = _LEADING_NUMBER.match(token.strip().strip(_QUOTES).strip())
    if not match:
        return None
    return float(match.group(1))


def parse_cell(cell: RawCell) -> MeasurementCell:
    if cell is None or isinstance(cell, bool):
        return EMPTY
    if isinstance(cell, (int, float)):
        return Single(float(cell))

    text = str(cell).strip().strip(_QUOTES).strip()
    if not text:
        return EMPTY

    if "-" in text:
        parts = text.split("-")
        if len(parts) != 2:
            return EMPTY
        low, high = _to_float(parts[0]), _to_float(parts[1])
        if low is None or high is None:
            return EMPTY
        return Range(min(low, high), max(low, high))

    if "," in text:
        items = tuple(v for v in (_to_float(t) for t in text.split(",")) if v is not None)
        if not items:
            return EMPTY
        if len(items) == 1:
            return Single(items[0])
        return Values(items)

    value = _to_float(text)
    return EMPTY if value is None else Single(value)


def parse_range(cell: RawCell) -> List[float]:
    """Numeric values encoded by a chart cell; empty when the cell carries no data."""
    return list(parse_cell(cell).values)


def primary_value(cell: RawCell) -> float:
    """Smallest value of a cell, used to order chart rows from small to large."""
    values = parse_range(cell)
    return min(values) if values else 0.0
