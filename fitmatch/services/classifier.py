import re
from typing import Dict, List, Optional, Tuple


TOP_SUBCATEGORIES = {"tops", "outerwear", "dresses"}
BOTTOM_SUBCATEGORIES = {"bottoms", "denim"}
DEFAULT_CATEGORIES: List[str] = ["tops", "dresses", "bottoms", "outerwear", "denim"]

# Checked in order, first match wins. A denim jacket is outerwear even though "jean"
# also names a bottom, so outerwear and tops come before bottoms.
DENIM_RULES: List[Tuple[str, re.Pattern]] = [
    ("dresses", re.compile(r"\b(dress(es)?|jumpsuits?|playsuits?|rompers?|gowns?|bridal|wedding)\b")),
    (
        "outerwear",
        re.compile(
            r"\b(coats?|jackets?|blazers?|hoodies?|vests?|waistcoats?|parkas?|trench|bombers?|shackets?|gilets?|anoraks?|puffers?)\b"
        ),
    ),
    (
        "tops",
        re.compile(
            r"\b(tops?|bustiers?|camis?|camisoles?|sweaters?|shirts?|overshirts?|bras?|bralettes?|tees?|blouses?|bodysuits?|corsets?|tanks?|halters?)\b"
        ),
    ),
    (
        "bottoms",
        re.compile(
            r"\b(skirts?|skorts?|pants?|shorts?|jeans?|leggings?|chinos?|trousers?|waist|boxers?|culottes?|joggers?|overalls?)\b"
        ),
    ),
]


def classify(category: str, product_name: str) -> Optional[str]:
    """Fit subcategory for a product. Only denim is refined by name; ``None`` means no rule matched."""
    if category != "denim":
        return category
    name = (product_name or "").lower()
    for subcategory, pattern in DENIM_RULES:
        if pattern.search(name):
            return subcategory
    return None


class SubcategoryCache:
    """Classification results for one brand within one recommendation or search call."""

    def __init__(self) -> None:
        self._by_name: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._by_name)

    def subcategory_for(self, category: str, product_name: str) -> str:
        if category != "denim":
            return category
        name = product_name or ""
        cached = self._by_name.get(name)
        if cached is not None:
            return cached
        subcategory = classify(category, name) or category
        self._by_name[name] = subcategory
        return subcategory
