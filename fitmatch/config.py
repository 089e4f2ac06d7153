import os
from pydantic import BaseModel


def _csv(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


class Settings(BaseModel):
    api_key: str = os.getenv("API_KEY", "change-me")

    # Catalog backend: "http" talks to the catalog service, "file" loads a JSON fixture
    catalog_backend: str = os.getenv("CATALOG_BACKEND", "http")
    catalog_api_base: str = os.getenv("CATALOG_API_BASE", "http://localhost:8001/v1")
    catalog_api_key: str | None = os.getenv("CATALOG_API_KEY")
    catalog_file: str | None = os.getenv("CATALOG_FILE")
    catalog_timeout_seconds: float = float(os.getenv("CATALOG_TIMEOUT_SECONDS", "30"))

    default_unit: str = os.getenv("DEFAULT_UNIT", "inch")

    # Product pages fetched per store call and default quota per brand
    batch_size: int = int(os.getenv("BATCH_SIZE", "20"))
    products_per_brand: int = int(os.getenv("PRODUCTS_PER_BRAND", "10"))

    search_excluded_brands: list[str] = _csv(os.getenv("SEARCH_EXCLUDED_BRANDS", "Sabo_Skirt"))

    # Rate limit (token bucket)
    rate_limit_per_min: int = int(os.getenv("RATE_LIMIT_PER_MIN", "60"))
    rate_limit_burst: int = int(os.getenv("RATE_LIMIT_BURST", "30"))


settings = Settings()
