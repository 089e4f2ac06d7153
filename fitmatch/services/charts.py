from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from pydantic import TypeAdapter, ValidationError
import structlog

from ..schemas.catalog import SizeChartEntry
from .classifier import TOP_SUBCATEGORIES


logger = structlog.get_logger("fitmatch")

# One brand's chart for one unit: {gender: {category_key: [rows], "default": [rows]}, "default": [rows]}
BrandChart = Mapping[str, Any]

_entries = TypeAdapter(List[SizeChartEntry])


@dataclass(frozen=True)
class BrandRules:
    """Per-brand deviations from the generic matching rules."""

    # Product size labels carry suffixes ("M#1", "28/32") that the chart does not
    strip_size_suffix: bool = False
    # Sleeves must fit as well before a top counts as needing no alteration
    sleeves_required: bool = False
    # Female denim is charted under its own "denim" slice instead of "bottoms"
    denim_chart: bool = False


DEFAULT_RULES = BrandRules()

BRAND_RULES: Dict[str, BrandRules] = {
    "J_Crew": BrandRules(strip_size_suffix=True, sleeves_required=True, denim_chart=True),
}


def rules_for(brand: str, overrides: Optional[Mapping[str, BrandRules]] = None) -> BrandRules:
    table = BRAND_RULES if overrides is None else overrides
    return table.get(brand, DEFAULT_RULES)


def normalize_size_label(label: Optional[str], rules: BrandRules = DEFAULT_RULES) -> str:
    if not label:
        return ""
    if not rules.strip_size_suffix:
        return label
    base = label.split("#")[0]
    return base.split("/")[0].strip()


def category_key(subcategory: str, gender: Optional[str], category: str, rules: BrandRules = DEFAULT_RULES) -> str:
    if rules.denim_chart and gender == "female" and category == "denim":
        return "denim"
    return "tops" if subcategory in TOP_SUBCATEGORIES else "bottoms"


def _slice(node: Any, key: str) -> Any:
    if isinstance(node, Mapping):
        return node.get(key)
    return None


def resolve(
    charts_by_brand: Mapping[str, BrandChart],
    brand: str,
    gender: Optional[str],
    subcategory: str,
    key: str,
) -> Optional[List[SizeChartEntry]]:
    """Chart rows for a brand/gender/category, or ``None`` when the brand has no usable chart.

    Lookup order: ``chart[gender][key]``, ``chart[gender]["default"]``, ``chart["default"]``.
    """
    chart = charts_by_brand.get(brand)
    if not chart:
        return None
    by_gender = _slice(chart, gender) if gender else None
    candidates = (_slice(by_gender, key), _slice(by_gender, "default"), _slice(chart, "default"))
    for rows in candidates:
        if not rows:
            continue
        try:
            return _entries.validate_python(rows)
        except ValidationError as e:
            logger.warning(
                "size_chart_invalid",
                brand=brand,
                gender=gender,
                subcategory=subcategory,
                category_key=key,
                error=str(e),
            )
            return None
    return None
