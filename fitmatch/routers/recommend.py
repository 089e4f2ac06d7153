from functools import lru_cache
from typing import Optional
from fastapi import APIRouter, Depends, Query

from ..config import settings
from ..schemas.catalog import FitType
from ..schemas.recommend import BestSizeResponse, RecommendRequest, RecommendResponse, SearchResponse
from ..security import verify_api_key
from ..services.recommender import Recommender
from ..services.stores import Catalog, build_catalog


router = APIRouter(tags=["recommend"], dependencies=[Depends(verify_api_key)])


@lru_cache(maxsize=1)
def get_catalog() -> Catalog:
    return build_catalog(settings)


def get_recommender() -> Recommender:
    return Recommender(get_catalog())


@router.post("/recommendations")
async def recommend(payload: RecommendRequest, recommender: Recommender = Depends(get_recommender)) -> RecommendResponse:
    return await recommender.recommend(
        user_id=payload.user_id,
        brands=payload.brands,
        category=payload.category,
        fit_type=payload.fit_type,
        quota_per_brand=payload.products_per_brand,
        cursor=payload.cursor,
    )


@router.get("/search")
async def search(
    user_id: str = Query(..., min_length=1),
    keyword: str = Query(..., min_length=1),
    gender: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    brand: Optional[str] = Query(None),
    recommender: Recommender = Depends(get_recommender),
) -> SearchResponse:
    results = await recommender.search(user_id, keyword, gender=gender, category=category, brand=brand)
    return SearchResponse(results=results, count=len(results))


@router.get("/products/{product_id}/best-size")
async def best_size(
    product_id: str,
    user_id: str = Query(..., min_length=1),
    fit_type: Optional[FitType] = Query(None),
    recommender: Recommender = Depends(get_recommender),
) -> BestSizeResponse:
    return await recommender.best_size(user_id, product_id, fit_type=fit_type)
