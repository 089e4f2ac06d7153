"""Brand-by-brand paginated matching.

Each brand is walked page by page from a caller-held offset until enough products
match the user or the brand runs out of products. The resume offset handed back is the
absolute index of the first product that was not inspected, so the next call picks up
exactly where this one stopped.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

import structlog

from ..errors import InvalidRequest, NoSizeChart
from ..schemas.catalog import BodyMeasurements, FitType, Product, SizeChartEntry
from ..schemas.recommend import MatchedProduct, ProductSummary, SizeMatchResult
from .charts import BrandChart, BrandRules, category_key, normalize_size_label, resolve
from .classifier import SubcategoryCache
from .matcher import SizeMatchCache, SizeMatcher
from .stores import Categories, ProductStore


logger = structlog.get_logger("fitmatch")


@dataclass(frozen=True)
class BrandCursor:
    """Resume point for one brand: an offset, or ``None`` once the brand is exhausted."""

    offset: Optional[int] = 0

    @classmethod
    def start(cls) -> "BrandCursor":
        return cls(0)

    @classmethod
    def exhausted(cls) -> "BrandCursor":
        return cls(None)

    @property
    def is_exhausted(self) -> bool:
        return self.offset is None


def parse_cursor(raw: Union[str, Mapping[str, Optional[int]], None], brands: Sequence[str]) -> Dict[str, BrandCursor]:
    """Cursor for every requested brand from its wire form (``{brand: offset|null}``, dict or JSON)."""
    if raw is None or raw == "":
        raw = {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise InvalidRequest("cursor must be a JSON object of brand offsets")
    if not isinstance(raw, Mapping):
        raise InvalidRequest("cursor must be a JSON object of brand offsets")

    cursors: Dict[str, BrandCursor] = {}
    for brand in brands:
        if brand not in raw:
            cursors[brand] = BrandCursor.start()
            continue
        value = raw[brand]
        if value is None:
            cursors[brand] = BrandCursor.exhausted()
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidRequest(f"cursor offset for {brand} must be an integer or null")
        if value < 0:
            raise InvalidRequest(f"cursor offset for {brand} must not be negative")
        cursors[brand] = BrandCursor(value)
    return cursors


def dump_cursor(cursors: Mapping[str, BrandCursor]) -> Dict[str, Optional[int]]:
    return {brand: cursor.offset for brand, cursor in cursors.items()}


class BatchState(str, Enum):
    FETCHING = "fetching"
    SCORING = "scoring"
    QUOTA_MET = "quota_met"
    EXHAUSTED = "exhausted"


class BrandContext:
    """Chart and caches for one brand, created fresh for every top-level call."""

    def __init__(
        self,
        brand: str,
        chart: Optional[BrandChart],
        body: BodyMeasurements,
        gender: Optional[str],
        matcher: SizeMatcher,
    ) -> None:
        self.brand = brand
        self.chart = chart
        self.body = body
        self.gender = gender
        self.matcher = matcher
        self.rules: BrandRules = matcher.rules(brand)
        self.subcategories = SubcategoryCache()
        self.size_matches = SizeMatchCache()
        self._rows: Dict[str, Optional[List[SizeChartEntry]]] = {}

    def chart_rows(self, subcategory: str, category: str, gender: Optional[str]) -> Tuple[str, List[SizeChartEntry]]:
        key = category_key(subcategory, gender, category, self.rules)
        slot = f"{gender}:{key}"
        if slot not in self._rows:
            self._rows[slot] = resolve({self.brand: self.chart} if self.chart else {}, self.brand, gender, subcategory, key)
        rows = self._rows[slot]
        if rows is None:
            raise NoSizeChart(self.brand, gender, key)
        return slot, rows

    def matches_for(self, product: Product) -> Tuple[str, List[SizeMatchResult]]:
        gender = product.gender or self.gender
        subcategory = self.subcategories.subcategory_for(product.category, product.name)
        slot, rows = self.chart_rows(subcategory, product.category, gender)
        matches = self.matcher.match_sizes_for_category(
            self.brand, subcategory, rows, self.body, self.size_matches, chart_key=slot
        )
        return subcategory, matches

    def size_lookup(self, matches: List[SizeMatchResult]) -> Dict[str, SizeMatchResult]:
        lookup: Dict[str, SizeMatchResult] = {}
        for match in matches:
            for label in match.labels():
                lookup.setdefault(label, match)
        return lookup

    def label(self, size: str) -> str:
        return normalize_size_label(size, self.rules)


@dataclass
class BrandBatch:
    brand: str
    products: List[MatchedProduct] = field(default_factory=list)
    processed: int = 0
    cursor: BrandCursor = field(default_factory=BrandCursor.start)
    state: BatchState = BatchState.FETCHING

    @property
    def has_more(self) -> bool:
        return not self.cursor.is_exhausted


class BrandBatchProcessor:
    def __init__(
        self,
        store: ProductStore,
        context: BrandContext,
        fit_type: FitType,
        categories: Categories,
        wishlist: Set[str],
        batch_size: int,
    ) -> None:
        self.store = store
        self.context = context
        self.fit_type = fit_type
        self.categories = categories
        self.wishlist = wishlist
        self.batch_size = batch_size
        self.state = BatchState.FETCHING

    def process_product(self, product: Product) -> Optional[MatchedProduct]:
        ctx = self.context
        try:
            subcategory, matches = ctx.matches_for(product)
        except NoSizeChart as e:
            logger.warning(
                "size_chart_missing",
                brand=e.brand,
                gender=e.gender,
                category_key=e.category_key,
                product_id=product.id,
                unit=ctx.body.unit.value,
            )
            return None

        lookup = ctx.size_lookup([m for m in matches if m.fit_type == self.fit_type])
        sizes = [s for s in product.stocked_sizes() if ctx.label(s.size) in lookup]
        if not sizes:
            return None

        alteration_required = not any(lookup[ctx.label(s.size)].alteration_required is False for s in sizes)
        return MatchedProduct(
            product=ProductSummary.from_product(product),
            subcategory=subcategory,
            matched_sizes=[s.size for s in sizes],
            alteration_required=alteration_required,
            is_wishlist=product.id in self.wishlist,
        )

    async def run(self, cursor: BrandCursor, quota: int) -> BrandBatch:
        brand = self.context.brand
        batch = BrandBatch(brand=brand, cursor=cursor)
        if cursor.is_exhausted:
            batch.state = self.state = BatchState.EXHAUSTED
            return batch
        if quota <= 0:
            batch.state = self.state = BatchState.QUOTA_MET
            return batch

        offset = cursor.offset or 0
        while True:
            self.state = BatchState.FETCHING
            page = await self.store.page(brand, self.categories, self.context.gender, offset, self.batch_size)
            if not page:
                self.state = BatchState.EXHAUSTED
                batch.cursor = BrandCursor.exhausted()
                break

            self.state = BatchState.SCORING
            for i, product in enumerate(page):
                batch.processed += 1
                matched = self.process_product(product)
                if matched is not None:
                    batch.products.append(matched)
                if len(batch.products) >= quota:
                    self.state = BatchState.QUOTA_MET
                    batch.cursor = BrandCursor(offset + i + 1)
                    break
            if self.state == BatchState.QUOTA_MET:
                break
            offset += len(page)

        batch.state = self.state
        logger.info(
            "brand_batch_completed",
            brand=brand,
            state=batch.state.value,
            matched=len(batch.products),
            processed=batch.processed,
            next_offset=batch.cursor.offset,
        )
        return batch
