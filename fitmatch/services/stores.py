"""Read-only interfaces to the catalog, plus an in-process implementation.

The engine only ever reads through these protocols. ``InMemoryCatalog`` backs local
development (``CATALOG_BACKEND=file``) and the test-suite; production talks to the
catalog service through ``CatalogApiClient``.
"""
import json
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Set, Union

from ..config import Settings
from ..schemas.catalog import Product, UserProfile
from .charts import BrandChart


Categories = Union[str, Sequence[str]]


class ProductStore(Protocol):
    async def page(
        self, brand: str, categories: Categories, gender: Optional[str], offset: int, limit: int
    ) -> List[Product]: ...

    async def search(
        self,
        keyword: str,
        gender: Optional[str],
        category: Optional[str] = None,
        brand: Optional[str] = None,
        exclude_brands: Sequence[str] = (),
    ) -> List[Product]: ...

    async def get_product(self, product_id: str) -> Optional[Product]: ...


class SizeChartStore(Protocol):
    async def get_chart(self, brand: str, unit: str) -> Optional[BrandChart]: ...


class UserMeasurementStore(Protocol):
    async def get_profile(self, user_id: str) -> Optional[UserProfile]: ...


class WishlistStore(Protocol):
    async def product_ids(self, user_id: str) -> Set[str]: ...


class Catalog(ProductStore, SizeChartStore, UserMeasurementStore, WishlistStore, Protocol):
    """Everything the recommender reads."""


def _category_set(categories: Categories) -> Set[str]:
    if isinstance(categories, str):
        return {categories}
    return set(categories)


class InMemoryCatalog:
    def __init__(
        self,
        products: Iterable[Union[Product, Mapping[str, Any]]] = (),
        size_charts: Optional[Mapping[str, Mapping[str, BrandChart]]] = None,
        profiles: Optional[Mapping[str, Union[UserProfile, Mapping[str, Any]]]] = None,
        wishlists: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> None:
        self.products: List[Product] = [p if isinstance(p, Product) else Product.model_validate(p) for p in products]
        # {brand: {unit: chart}}
        self.size_charts: Dict[str, Mapping[str, BrandChart]] = dict(size_charts or {})
        self.profiles: Dict[str, UserProfile] = {
            uid: p if isinstance(p, UserProfile) else UserProfile.model_validate(p) for uid, p in (profiles or {}).items()
        }
        self.wishlists: Dict[str, Set[str]] = {uid: {str(i) for i in ids} for uid, ids in (wishlists or {}).items()}

    @classmethod
    def from_file(cls, path: str) -> "InMemoryCatalog":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls(
            products=data.get("products", []),
            size_charts=data.get("sizeCharts", {}),
            profiles=data.get("userMeasurements", {}),
            wishlists=data.get("wishlists", {}),
        )

    async def page(
        self, brand: str, categories: Categories, gender: Optional[str], offset: int, limit: int
    ) -> List[Product]:
        wanted = _category_set(categories)
        matching = [
            p
            for p in self.products
            if p.brand == brand and p.category in wanted and (gender is None or p.gender == gender)
        ]
        return matching[offset : offset + limit]

    async def search(
        self,
        keyword: str,
        gender: Optional[str],
        category: Optional[str] = None,
        brand: Optional[str] = None,
        exclude_brands: Sequence[str] = (),
    ) -> List[Product]:
        pattern = re.compile(re.escape(keyword), re.IGNORECASE)
        out = []
        for p in self.products:
            if not pattern.search(p.name):
                continue
            if gender is not None and p.gender != gender:
                continue
            if category and p.category != category:
                continue
            if brand:
                if p.brand != brand:
                    continue
            elif p.brand in exclude_brands:
                continue
            out.append(p)
        return out

    async def get_product(self, product_id: str) -> Optional[Product]:
        for p in self.products:
            if p.id == product_id:
                return p
        return None

    async def get_chart(self, brand: str, unit: str) -> Optional[BrandChart]:
        return (self.size_charts.get(brand) or {}).get(unit)

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.profiles.get(user_id)

    async def product_ids(self, user_id: str) -> Set[str]:
        return set(self.wishlists.get(user_id, set()))


def build_catalog(settings: Settings) -> Catalog:
    backend = (settings.catalog_backend or "http").lower()
    if backend == "file":
        if not settings.catalog_file:
            raise RuntimeError("CATALOG_FILE must be set for the file catalog backend")
        return InMemoryCatalog.from_file(settings.catalog_file)
    if backend == "http":
        from .catalog_api import CatalogApiClient

        return CatalogApiClient()
    raise RuntimeError(f"Unknown catalog backend: {settings.catalog_backend}")
