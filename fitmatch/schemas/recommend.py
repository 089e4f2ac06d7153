from typing import Dict, List, Optional, Union
from pydantic import BaseModel, Field, StrictInt, field_validator

from .catalog import FitType, Product


class AttributeDifference(BaseModel):
    difference: float
    direction: Optional[str] = None


class SizeMatchResult(BaseModel):
    name: str
    numerical_size: Optional[str] = None
    numerical_value: Optional[str] = None
    fit_type: Optional[FitType] = None
    alteration_required: bool = True
    size_difference: float = 0.0
    attribute_differences: Dict[str, AttributeDifference] = Field(default_factory=dict)

    def labels(self) -> List[str]:
        return [label for label in (self.name, self.numerical_size, self.numerical_value) if label]


class ProductSummary(BaseModel):
    id: str
    brand: str
    category: str
    name: str
    price: Optional[str] = None
    url: Optional[str] = None
    image: Optional[str] = None

    @classmethod
    def from_product(cls, product: Product) -> "ProductSummary":
        return cls(
            id=product.id,
            brand=product.brand,
            category=product.category,
            name=product.name,
            price=product.price,
            url=product.url,
            image=product.image.primary if product.image else None,
        )


class MatchedProduct(BaseModel):
    product: ProductSummary
    subcategory: str
    matched_sizes: List[str]
    alteration_required: bool
    is_wishlist: bool = False


class SearchResult(BaseModel):
    product: ProductSummary
    best_size: Optional[str] = None
    alteration_required: bool = True
    closest_size_difference: Optional[float] = None
    is_wishlist: bool = False


class RecommendRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    brands: List[str] = Field(..., min_length=1)
    category: str = Field(..., min_length=1, description="Product category, or 'all'")
    fit_type: Optional[FitType] = Field(None, description="Defaults to the user's preferred fit")
    products_per_brand: Optional[int] = Field(None, ge=1, le=100)
    cursor: Dict[str, Optional[StrictInt]] = Field(default_factory=dict)

    @field_validator("brands", mode="before")
    @classmethod
    def _split_brands(cls, v: Union[str, List[str]]):
        if isinstance(v, str):
            return [b.strip() for b in v.split(",") if b.strip()]
        return v


class RecommendResponse(BaseModel):
    results: Dict[str, Dict[str, List[MatchedProduct]]]
    next_cursor: Dict[str, Optional[int]]
    total_matched: int
    processed_counts: Dict[str, int]
    has_more: bool
    failed_brands: List[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    results: List[SearchResult]
    count: int


class BestSizeResponse(BaseModel):
    product: ProductSummary
    fit_type: FitType
    measurement: str
    best_size: Optional[str] = None
    fit_match: Optional[FitType] = None
    match: Optional[SizeMatchResult] = None
