import httpx
from typing import Any, Dict, List, Optional, Sequence, Set

from ..config import settings
from ..schemas.catalog import Product, UserProfile
from .charts import BrandChart
from .stores import Categories


class CatalogApiClient:
    """Catalog service client implementing every store the recommender reads from.

    Missing resources (404) map to ``None``; any other HTTP failure propagates.
    """

    def __init__(self, base: str | None = None, api_key: str | None = None, timeout: float | None = None) -> None:
        self.base = (base or settings.catalog_api_base).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.catalog_api_key
        self.timeout = timeout or settings.catalog_timeout_seconds

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None, allow_missing: bool = False) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(f"{self.base}{path}", params=params, headers=self._headers())
            if allow_missing and resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.json()

    @staticmethod
    def _items(payload: Any) -> List[Any]:
        if isinstance(payload, dict):
            return payload.get("data") or []
        return payload or []

    async def page(
        self, brand: str, categories: Categories, gender: Optional[str], offset: int, limit: int
    ) -> List[Product]:
        category = categories if isinstance(categories, str) else ",".join(categories)
        params: Dict[str, Any] = {"brand": brand, "category": category, "skip": offset, "limit": limit}
        if gender:
            params["gender"] = gender
        payload = await self._get("/products", params=params)
        return [Product.model_validate(p) for p in self._items(payload)]

    async def search(
        self,
        keyword: str,
        gender: Optional[str],
        category: Optional[str] = None,
        brand: Optional[str] = None,
        exclude_brands: Sequence[str] = (),
    ) -> List[Product]:
        params: Dict[str, Any] = {"q": keyword}
        if gender:
            params["gender"] = gender
        if category:
            params["category"] = category
        if brand:
            params["brand"] = brand
        elif exclude_brands:
            params["excludeBrands"] = ",".join(exclude_brands)
        payload = await self._get("/products/search", params=params)
        return [Product.model_validate(p) for p in self._items(payload)]

    async def get_product(self, product_id: str) -> Optional[Product]:
        payload = await self._get(f"/products/{product_id}", allow_missing=True)
        if payload is None:
            return None
        if isinstance(payload, dict) and "data" in payload:
            payload = payload["data"]
        return Product.model_validate(payload)

    async def get_chart(self, brand: str, unit: str) -> Optional[BrandChart]:
        payload = await self._get(f"/size-charts/{brand}", params={"unit": unit}, allow_missing=True)
        if not payload:
            return None
        # Either the whole document ({"sizeChart": {"cm": ..., "inch": ...}}) or just the unit slice
        if "sizeChart" in payload:
            return (payload.get("sizeChart") or {}).get(unit)
        return payload

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        payload = await self._get(f"/users/{user_id}/measurements", allow_missing=True)
        if payload is None:
            return None
        if isinstance(payload, dict) and "data" in payload:
            payload = payload["data"]
        return UserProfile.model_validate(payload)

    async def product_ids(self, user_id: str) -> Set[str]:
        payload = await self._get(f"/users/{user_id}/wishlist", allow_missing=True)
        ids: Set[str] = set()
        for entry in self._items(payload):
            if isinstance(entry, dict):
                product_id = entry.get("productId")
                if product_id is not None:
                    ids.add(str(product_id))
            else:
                ids.add(str(entry))
        return ids
