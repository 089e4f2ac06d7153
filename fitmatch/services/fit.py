"""Per-attribute fit scoring.

A user measurement is compared to one chart cell. Inside a range (or equal to a single
value) is ``fitted``; a smaller body than the garment is ``loose``; a larger body is
``tight``. There is deliberately no tolerance band around single values.
"""
import math
from dataclasses import dataclass
from typing import Optional

from ..schemas.catalog import FitType, RawCell
from .measurements import Empty, MeasurementCell, Range, Single, Values, parse_cell


INCREASE = "increase"
DECREASE = "decrease"


@dataclass(frozen=True)
class AttributeFit:
    fit_type: Optional[FitType]
    alteration_required: bool
    difference: Optional[float]
    direction: Optional[str]

    @property
    def scored(self) -> bool:
        return self.fit_type is not None


@dataclass(frozen=True)
class BestFit:
    fits: bool
    score: float
    match_type: FitType


UNSCORED = AttributeFit(fit_type=None, alteration_required=True, difference=None, direction=None)


def _as_cell(chart_cell) -> MeasurementCell:
    if isinstance(chart_cell, (Single, Range, Values, Empty)):
        return chart_cell
    return parse_cell(chart_cell)


def _compare(user: float, low: float, high: float) -> AttributeFit:
    if low <= user <= high:
        return AttributeFit(FitType.FITTED, False, 0.0, None)
    if user < low:
        return AttributeFit(FitType.LOOSE, True, low - user, INCREASE)
    return AttributeFit(FitType.TIGHT, True, user - high, DECREASE)


def score_attribute(user_value: Optional[float], chart_cell: RawCell | MeasurementCell) -> AttributeFit:
    """Classify one measurement against one chart cell.

    Absent or unparseable input on either side is never a fit.
    """
    if user_value is None:
        return UNSCORED
    try:
        user = float(user_value)
    except (TypeError, ValueError):
        return UNSCORED
    if math.isnan(user):
        return UNSCORED

    cell = _as_cell(chart_cell)
    if isinstance(cell, Range):
        return _compare(user, cell.low, cell.high)
    if isinstance(cell, Single):
        return _compare(user, cell.value, cell.value)
    if isinstance(cell, Values):
        # A list cell is read as its leading value
        first = cell.items[0]
        return _compare(user, first, first)
    return UNSCORED


def best_fit_for_fit_type(
    user_value: Optional[float],
    chart_cell: RawCell | MeasurementCell,
    fit_type: FitType | str,
) -> BestFit:
    """How well one cell serves a desired fit, used to pick a single best size.

    ``fitted`` only accepts containment and never falls back to the nearest value.
    ``tight`` prefers the closest value strictly below the body, ``loose`` strictly above;
    both fall back to the globally closest value with ``fits=False``.
    """
    fit_type = FitType(fit_type)
    cell = _as_cell(chart_cell)
    values = cell.values
    if user_value is None or not values:
        return BestFit(False, math.inf, fit_type)
    user = float(user_value)

    if fit_type == FitType.FITTED:
        if min(values) <= user <= max(values):
            return BestFit(True, 0.0, FitType.FITTED)
        return BestFit(False, math.inf, FitType.FITTED)

    if fit_type == FitType.TIGHT:
        below = [v for v in values if v < user]
        if below:
            return BestFit(True, user - max(below), FitType.TIGHT)
    else:
        above = [v for v in values if v > user]
        if above:
            return BestFit(True, min(above) - user, FitType.LOOSE)

    closest = values[0]
    for v in values[1:]:
        if abs(v - user) < abs(closest - user):
            closest = v
    return BestFit(False, abs(closest - user), fit_type)
