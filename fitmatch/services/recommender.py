import asyncio
import math
from typing import Dict, List, Mapping, Optional, Sequence, Union

import structlog

from ..config import settings
from ..errors import InvalidRequest, NoSizeChart, ProductNotFound, UserNotFound
from ..schemas.catalog import FitType, Product, Unit, UserProfile
from ..schemas.recommend import (
    BestSizeResponse,
    MatchedProduct,
    ProductSummary,
    RecommendResponse,
    SearchResult,
    SizeMatchResult,
)
from .batch import BatchState, BrandBatch, BrandBatchProcessor, BrandContext, BrandCursor, dump_cursor, parse_cursor
from .charts import BrandRules
from .classifier import BOTTOM_SUBCATEGORIES, DEFAULT_CATEGORIES
from .matcher import SizeMatcher, find_best_fit_across_chart
from .stores import Catalog


logger = structlog.get_logger("fitmatch")

ALL_CATEGORIES = "all"


def _fit_type(value: Union[FitType, str, None]) -> Optional[FitType]:
    if value is None or value == "":
        return None
    try:
        return FitType(value)
    except ValueError:
        raise InvalidRequest(f"fit_type must be one of: {', '.join(f.value for f in FitType)}")


def _brand_list(brands: Union[str, Sequence[str], None]) -> List[str]:
    if not brands:
        return []
    items = brands.split(",") if isinstance(brands, str) else list(brands)
    out: List[str] = []
    for b in items:
        b = (b or "").strip()
        if b and b not in out:
            out.append(b)
    return out


def rank_search_results(results: List[SearchResult]) -> List[SearchResult]:
    """No-alteration results first, then closest fit first. Stable for equal keys."""

    def key(r: SearchResult):
        diff = r.closest_size_difference
        return (r.alteration_required, math.inf if diff is None else diff)

    return sorted(results, key=key)


class Recommender:
    def __init__(
        self,
        catalog: Catalog,
        batch_size: Optional[int] = None,
        products_per_brand: Optional[int] = None,
        default_unit: Optional[str] = None,
        search_excluded_brands: Optional[Sequence[str]] = None,
        brand_rules: Optional[Mapping[str, BrandRules]] = None,
    ) -> None:
        self.catalog = catalog
        self.batch_size = batch_size or settings.batch_size
        self.products_per_brand = products_per_brand or settings.products_per_brand
        self.default_unit = Unit(default_unit or settings.default_unit)
        self.search_excluded_brands = list(
            settings.search_excluded_brands if search_excluded_brands is None else search_excluded_brands
        )
        self.matcher = SizeMatcher(brand_rules)

    async def _profile(self, user_id: str) -> UserProfile:
        profile = await self.catalog.get_profile(user_id)
        if profile is None:
            raise UserNotFound(user_id)
        return profile

    async def _context(self, brand: str, profile: UserProfile) -> BrandContext:
        body = profile.body_measurements(self.default_unit)
        chart = await self.catalog.get_chart(brand, body.unit.value)
        return BrandContext(brand, chart, body, profile.gender, self.matcher)

    async def recommend(
        self,
        user_id: str,
        brands: Union[str, Sequence[str]],
        category: str,
        fit_type: Union[FitType, str, None] = None,
        quota_per_brand: Optional[int] = None,
        cursor: Union[str, Mapping[str, Optional[int]], None] = None,
    ) -> RecommendResponse:
        brand_list = _brand_list(brands)
        if not user_id or not brand_list or not category:
            raise InvalidRequest("user_id, brands and category are required")
        quota = self.products_per_brand if quota_per_brand is None else int(quota_per_brand)
        if quota < 1:
            raise InvalidRequest("products_per_brand must be at least 1")
        requested_fit = _fit_type(fit_type)
        cursors = parse_cursor(cursor, brand_list)

        profile = await self._profile(user_id)
        fit = requested_fit or profile.fit
        categories = DEFAULT_CATEGORIES if category == ALL_CATEGORIES else category
        wishlist = await self.catalog.product_ids(user_id)

        async def run_brand(brand: str) -> BrandBatch:
            if cursors[brand].is_exhausted:
                return BrandBatch(brand, cursor=BrandCursor.exhausted(), state=BatchState.EXHAUSTED)
            context = await self._context(brand, profile)
            processor = BrandBatchProcessor(self.catalog, context, fit, categories, wishlist, self.batch_size)
            return await processor.run(cursors[brand], quota)

        outcomes = await asyncio.gather(*(run_brand(b) for b in brand_list), return_exceptions=True)

        results: Dict[str, Dict[str, List[MatchedProduct]]] = {}
        next_cursors: Dict[str, BrandCursor] = {}
        processed: Dict[str, int] = {}
        failed: List[str] = []
        for brand, outcome in zip(brand_list, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("brand_batch_failed", brand=brand, error=str(outcome), exc_info=outcome)
                failed.append(brand)
                results[brand] = {}
                next_cursors[brand] = cursors[brand]
                processed[brand] = 0
                continue
            by_category: Dict[str, List[MatchedProduct]] = {}
            for item in outcome.products:
                by_category.setdefault(item.product.category, []).append(item)
            results[brand] = by_category
            next_cursors[brand] = outcome.cursor
            processed[brand] = outcome.processed

        total = sum(len(items) for by_category in results.values() for items in by_category.values())
        return RecommendResponse(
            results=results,
            next_cursor=dump_cursor(next_cursors),
            total_matched=total,
            processed_counts=processed,
            has_more=any(not c.is_exhausted for c in next_cursors.values()),
            failed_brands=failed,
        )

    async def search(
        self,
        user_id: str,
        keyword: str,
        gender: Optional[str] = None,
        category: Optional[str] = None,
        brand: Optional[str] = None,
    ) -> List[SearchResult]:
        if not user_id or not keyword or not keyword.strip():
            raise InvalidRequest("user_id and keyword are required")

        profile = await self._profile(user_id)
        products = await self.catalog.search(
            keyword.strip(),
            gender or profile.gender,
            category=category,
            brand=brand,
            exclude_brands=() if brand else self.search_excluded_brands,
        )
        if not products:
            return []

        wishlist = await self.catalog.product_ids(user_id)
        brands = list(dict.fromkeys(p.brand for p in products))
        outcomes = await asyncio.gather(*(self._context(b, profile) for b in brands), return_exceptions=True)
        contexts: Dict[str, BrandContext] = {}
        for brand, outcome in zip(brands, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("brand_batch_failed", brand=brand, error=str(outcome), exc_info=outcome)
                continue
            contexts[brand] = outcome

        results: List[SearchResult] = []
        for product in products:
            if product.brand not in contexts:
                continue
            result = self._search_result(product, contexts[product.brand], profile.fit, wishlist)
            if result is not None:
                results.append(result)
        return rank_search_results(results)

    def _search_result(
        self, product: Product, ctx: BrandContext, fit: FitType, wishlist
    ) -> Optional[SearchResult]:
        stocked = product.stocked_sizes()
        if not stocked:
            return None
        try:
            _, matches = ctx.matches_for(product)
        except NoSizeChart as e:
            logger.warning(
                "size_chart_missing", brand=e.brand, gender=e.gender, category_key=e.category_key, product_id=product.id
            )
            return None

        wanted = [m for m in matches if m.fit_type == fit]
        labels = {ctx.label(s.size) for s in stocked}
        best: Optional[SizeMatchResult] = next((m for m in wanted if labels.intersection(m.labels())), None)
        if best is None and wanted:
            best = min(wanted, key=lambda m: m.size_difference)

        return SearchResult(
            product=ProductSummary.from_product(product),
            best_size=best.name if best else None,
            alteration_required=best.alteration_required if best else True,
            closest_size_difference=best.size_difference if best else None,
            is_wishlist=product.id in wishlist,
        )

    async def best_size(
        self, user_id: str, product_id: str, fit_type: Union[FitType, str, None] = None
    ) -> BestSizeResponse:
        """Best single size of one product for the user, limited to sizes in stock."""
        if not user_id or not product_id:
            raise InvalidRequest("user_id and product_id are required")
        requested_fit = _fit_type(fit_type)

        profile = await self._profile(user_id)
        product = await self.catalog.get_product(product_id)
        if product is None:
            raise ProductNotFound(product_id)
        fit = requested_fit or profile.fit

        ctx = await self._context(product.brand, profile)
        subcategory = ctx.subcategories.subcategory_for(product.category, product.name)
        measurement = "waist" if subcategory in BOTTOM_SUBCATEGORIES else "bust"
        response = BestSizeResponse(
            product=ProductSummary.from_product(product), fit_type=fit, measurement=measurement
        )
        try:
            _, rows = ctx.chart_rows(subcategory, product.category, product.gender or profile.gender)
            _, matches = ctx.matches_for(product)
        except NoSizeChart as e:
            logger.warning(
                "size_chart_missing", brand=e.brand, gender=e.gender, category_key=e.category_key, product_id=product.id
            )
            return response

        pick = find_best_fit_across_chart(rows, ctx.body, fit, measurement, product.stocked_sizes(), ctx.rules)
        if pick is None:
            return response

        response.best_size = pick.entry.name
        response.fit_match = pick.fit.match_type
        for entry, match in zip(rows, matches):
            if entry is pick.entry:
                response.match = match
                break
        return response
