import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..schemas.catalog import BodyMeasurements, FitType, ProductSize, SizeChartEntry
from ..schemas.recommend import AttributeDifference, SizeMatchResult
from .charts import DEFAULT_RULES, BrandRules, normalize_size_label, rules_for
from .classifier import BOTTOM_SUBCATEGORIES, TOP_SUBCATEGORIES
from .fit import AttributeFit, BestFit, best_fit_for_fit_type, score_attribute
from .measurements import primary_value


UPPER_ATTRIBUTES = ("bust", "waist", "sleeves")
LOWER_ATTRIBUTES = ("waist", "hip")


class SizeMatchCache:
    """Chart verdicts for one brand, reused for every product of a single call."""

    def __init__(self) -> None:
        self._matches: Dict[Tuple[str, str], List[SizeMatchResult]] = {}

    def __len__(self) -> int:
        return len(self._matches)

    def get(self, subcategory: str, chart_key: str) -> Optional[List[SizeMatchResult]]:
        return self._matches.get((subcategory, chart_key))

    def put(self, subcategory: str, chart_key: str, matches: List[SizeMatchResult]) -> None:
        self._matches[(subcategory, chart_key)] = matches


@dataclass(frozen=True)
class ChartPick:
    entry: SizeChartEntry
    fit: BestFit


def _ok(fit: AttributeFit) -> bool:
    # Attributes missing on either side are left out of the verdict
    return not fit.scored or fit.fit_type == FitType.FITTED


def _fallback_fit_type(*fits: AttributeFit) -> Optional[FitType]:
    kinds = {f.fit_type for f in fits}
    if FitType.LOOSE in kinds:
        return FitType.LOOSE
    if FitType.TIGHT in kinds:
        return FitType.TIGHT
    return None


def _differences(fits: Mapping[str, AttributeFit]) -> Tuple[float, Dict[str, AttributeDifference]]:
    total = 0.0
    out: Dict[str, AttributeDifference] = {}
    for attribute, fit in fits.items():
        if not fit.scored:
            continue
        total += fit.difference or 0.0
        out[attribute] = AttributeDifference(difference=fit.difference or 0.0, direction=fit.direction)
    return total, out


class SizeMatcher:
    def __init__(self, brand_rules: Optional[Mapping[str, BrandRules]] = None) -> None:
        self.brand_rules = brand_rules

    def rules(self, brand: str) -> BrandRules:
        return rules_for(brand, self.brand_rules)

    def match_sizes_for_category(
        self,
        brand: str,
        subcategory: str,
        chart: Iterable[SizeChartEntry],
        body: BodyMeasurements,
        cache: SizeMatchCache,
        chart_key: str = "",
    ) -> List[SizeMatchResult]:
        """Fit verdict for every row of a chart. Repeated calls within a call share one list."""
        cached = cache.get(subcategory, chart_key)
        if cached is not None:
            return cached

        rules = self.rules(brand)
        if subcategory in TOP_SUBCATEGORIES:
            matches = [self._match_upper(entry, body, rules) for entry in chart]
        elif subcategory in BOTTOM_SUBCATEGORIES:
            matches = [self._match_lower(entry, body) for entry in chart]
        else:
            matches = []

        cache.put(subcategory, chart_key, matches)
        return matches

    def _match_upper(self, entry: SizeChartEntry, body: BodyMeasurements, rules: BrandRules) -> SizeMatchResult:
        m = entry.measurements
        fits = {
            "bust": score_attribute(body.bust, m.bust),
            "waist": score_attribute(body.waist, m.waist),
            "sleeves": score_attribute(body.sleeves, m.sleeves),
        }
        bust, waist, sleeves = fits["bust"], fits["waist"], fits["sleeves"]

        if bust.fit_type == FitType.FITTED:
            fit_type = FitType.FITTED
            sleeves_ok = _ok(sleeves) if rules.sleeves_required else True
            alteration_required = not (_ok(waist) and sleeves_ok)
        else:
            fit_type = _fallback_fit_type(bust, waist)
            alteration_required = True

        return self._result(entry, fit_type, alteration_required, fits)

    def _match_lower(self, entry: SizeChartEntry, body: BodyMeasurements) -> SizeMatchResult:
        m = entry.measurements
        fits = {
            "waist": score_attribute(body.waist, m.waist),
            "hip": score_attribute(body.hip, m.hip),
        }
        waist, hip = fits["waist"], fits["hip"]

        if waist.fit_type == FitType.FITTED:
            fit_type = FitType.FITTED
            alteration_required = not _ok(hip)
        else:
            fit_type = _fallback_fit_type(waist, hip)
            alteration_required = True

        return self._result(entry, fit_type, alteration_required, fits)

    @staticmethod
    def _result(
        entry: SizeChartEntry,
        fit_type: Optional[FitType],
        alteration_required: bool,
        fits: Mapping[str, AttributeFit],
    ) -> SizeMatchResult:
        size_difference, attribute_differences = _differences(fits)
        return SizeMatchResult(
            name=entry.name,
            numerical_size=entry.numerical_size,
            numerical_value=entry.numerical_value,
            fit_type=fit_type,
            alteration_required=alteration_required,
            size_difference=size_difference,
            attribute_differences=attribute_differences,
        )


def find_best_fit_across_chart(
    chart: Iterable[SizeChartEntry],
    body: BodyMeasurements,
    fit_type: FitType | str,
    measurement_key: str,
    product_sizes: Iterable[ProductSize],
    rules: BrandRules = DEFAULT_RULES,
) -> Optional[ChartPick]:
    """Single best chart row among the sizes a product actually stocks.

    Rows are ordered from smallest to largest on ``measurement_key``; the first perfect
    match wins, otherwise the lowest score, preferring rows that satisfy the fit.
    Equal scores keep the earlier row.
    """
    user_value = body.get(measurement_key)
    if user_value is None:
        return None

    available = {normalize_size_label(s.size, rules) for s in product_sizes}
    candidates = [
        entry
        for entry in chart
        if available.intersection(entry.labels()) and getattr(entry.measurements, measurement_key, None) is not None
    ]
    candidates.sort(key=lambda e: primary_value(getattr(e.measurements, measurement_key)))

    best: Optional[ChartPick] = None
    best_key: Tuple[int, float] = (2, math.inf)
    for entry in candidates:
        fit = best_fit_for_fit_type(user_value, getattr(entry.measurements, measurement_key), fit_type)
        if fit.fits and fit.score == 0:
            return ChartPick(entry, fit)
        if math.isinf(fit.score):
            continue
        key = (0 if fit.fits else 1, fit.score)
        if key < best_key:
            best, best_key = ChartPick(entry, fit), key
    return best
