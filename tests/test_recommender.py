import pytest
from fitmatch.errors import InvalidRequest, ProductNotFound, UserNotFound
from fitmatch.schemas.catalog import FitType, Unit, UserProfile
from fitmatch.schemas.recommend import ProductSummary, SearchResult
from fitmatch.services.recommender import Recommender, rank_search_results
from fitmatch.services.stores import InMemoryCatalog


TOPS = [
    {"name": "S", "measurements": {"bust": "33-34", "waist": "26-27", "sleeves": 30}},
    {"name": "M", "measurements": {"bust": "35-36", "waist": "28-29", "sleeves": 31}},
    {"name": "M-Tall", "measurements": {"bust": "35-36", "waist": "30-31", "sleeves": 33}},
    {"name": "L", "measurements": {"bust": "37-38", "waist": "30-31", "sleeves": 32}},
]
BOTTOMS = [{"name": "28", "measurements": {"waist": "28-29", "hip": "38-39"}}]

CHARTS = {
    "Acme": {"inch": {"female": {"tops": TOPS, "bottoms": BOTTOMS}, "male": {"tops": TOPS}}},
    "Cove": {"inch": {"female": {"default": TOPS}}},
    "Sabo_Skirt": {"inch": {"default": TOPS}},
    "J_Crew": {"inch": {"female": {"tops": TOPS, "denim": BOTTOMS}}},
}

PROFILES = {
    "u1": {
        "gender": "female",
        "fit": "fitted",
        "upperBody": {"bust": {"value": 35.5, "unit": "inch"}, "sleevesLength": {"value": 31, "unit": "inch"}},
        "lowerBody": {"waist": {"value": 28.5, "unit": "inch"}, "hip": {"value": 38.5, "unit": "inch"}},
    },
    "u-cm": {
        "gender": "female",
        "fit": "fitted",
        "upperBody": {"bust": {"value": 90, "unit": "cm"}},
        "lowerBody": {"waist": {"value": 72, "unit": "cm"}},
    },
}


def _p(pid, brand, category, name, sizes, gender="female", stocked=True):
    return {
        "_id": pid,
        "brand": brand,
        "category": category,
        "gender": gender,
        "name": name,
        "price": "$48.00",
        "image": {"primary": f"https://img.example.com/{pid}.jpg"},
        "sizes": [{"size": s, "inStock": stocked} for s in sizes],
    }


PRODUCTS = [
    _p("a0", "Acme", "tops", "Acme Knit Top 0", ["S", "M", "L"]),
    _p("a-men", "Acme", "tops", "Acme Knit Top Men", ["S", "M", "L"], gender="male"),
    _p("a1", "Acme", "tops", "Acme Knit Top 1", ["S", "M", "L"]),
    _p("a2", "Acme", "tops", "Acme Knit Top 2", ["S", "M", "L"]),
    _p("a3", "Acme", "tops", "Acme Knit Top 3", ["S", "M", "L"]),
    _p("a4", "Acme", "bottoms", "Acme Wide Pant", ["28"]),
    _p("j0", "J_Crew", "tops", "Linen Shirt", ["M#1", "L#1"]),
    _p("j1", "J_Crew", "denim", "Straight Jean", ["28/30"]),
    _p("c0", "Cove", "tops", "Ribbed Tee", ["M-Tall"]),
    _p("c1", "Cove", "tops", "Boxy Tee", ["M"]),
    _p("c2", "Cove", "tops", "Cropped Tee", ["XS"]),
    _p("c3", "Cove", "tops", "Sold Out Tee", ["M"], stocked=False),
    _p("s0", "Sabo_Skirt", "tops", "Sabo Tee", ["M"]),
    _p("n0", "Nochart", "tops", "Plain Tee", ["M"]),
]


class TracingCatalog(InMemoryCatalog):
    def __init__(self, *args, broken_brands=(), broken_charts=(), **kwargs):
        super().__init__(*args, **kwargs)
        self.broken_brands = set(broken_brands)
        self.broken_charts = set(broken_charts)
        self.paged_brands = []
        self.chart_calls = []

    async def page(self, brand, categories, gender, offset, limit):
        self.paged_brands.append(brand)
        if brand in self.broken_brands:
            raise RuntimeError(f"{brand} store unavailable")
        return await super().page(brand, categories, gender, offset, limit)

    async def get_chart(self, brand, unit):
        self.chart_calls.append(brand)
        if brand in self.broken_charts:
            raise RuntimeError(f"{brand} chart store down")
        return await super().get_chart(brand, unit)


def _recommender(**kwargs):
    catalog = TracingCatalog(
        products=PRODUCTS, size_charts=CHARTS, profiles=PROFILES, wishlists={"u1": ["c1", "a1"]}, **kwargs
    )
    return Recommender(
        catalog,
        batch_size=2,
        products_per_brand=2,
        default_unit="inch",
        search_excluded_brands=["Sabo_Skirt"],
    )


@pytest.mark.asyncio
async def test_recommend_merges_brands():
    rec = _recommender()
    res = await rec.recommend("u1", ["Acme", "J_Crew"], "tops")

    assert [p.product.id for p in res.results["Acme"]["tops"]] == ["a0", "a1"]
    assert [p.product.id for p in res.results["J_Crew"]["tops"]] == ["j0"]
    assert res.results["J_Crew"]["tops"][0].matched_sizes == ["M#1"]
    assert res.results["J_Crew"]["tops"][0].alteration_required is False
    assert res.results["Acme"]["tops"][1].is_wishlist is True
    assert res.total_matched == 3
    # a-men is filtered by gender in the store, so it is never inspected
    assert res.processed_counts == {"Acme": 2, "J_Crew": 1}
    assert res.next_cursor == {"Acme": 2, "J_Crew": None}
    assert res.has_more is True
    assert res.failed_brands == []


@pytest.mark.asyncio
async def test_recommend_resumes_from_cursor():
    rec = _recommender()
    first = await rec.recommend("u1", "Acme,J_Crew", "tops")
    rec.catalog.paged_brands.clear()

    second = await rec.recommend("u1", ["Acme", "J_Crew"], "tops", cursor=first.next_cursor)
    assert [p.product.id for p in second.results["Acme"]["tops"]] == ["a2", "a3"]
    assert second.results["J_Crew"] == {}
    assert second.next_cursor == {"Acme": 4, "J_Crew": None}
    assert "J_Crew" not in rec.catalog.paged_brands

    third = await rec.recommend("u1", ["Acme", "J_Crew"], "tops", cursor=second.next_cursor)
    assert third.total_matched == 0
    assert third.next_cursor == {"Acme": None, "J_Crew": None}
    assert third.has_more is False


@pytest.mark.asyncio
async def test_recommend_all_categories_groups_by_category():
    rec = _recommender()
    res = await rec.recommend("u1", ["J_Crew"], "all", quota_per_brand=5)
    assert [p.product.id for p in res.results["J_Crew"]["tops"]] == ["j0"]
    assert [p.product.id for p in res.results["J_Crew"]["denim"]] == ["j1"]
    jean = res.results["J_Crew"]["denim"][0]
    assert jean.subcategory == "bottoms"
    assert jean.matched_sizes == ["28/30"]
    assert jean.alteration_required is False


@pytest.mark.asyncio
async def test_recommend_requested_fit_overrides_profile():
    rec = _recommender()
    res = await rec.recommend("u1", ["Acme"], "tops", fit_type="tight", quota_per_brand=1)
    item = res.results["Acme"]["tops"][0]
    assert item.matched_sizes == ["S"]
    assert item.alteration_required is True


@pytest.mark.asyncio
async def test_recommend_failed_brand_keeps_cursor_and_others_succeed():
    rec = _recommender(broken_brands=["Acme"])
    res = await rec.recommend("u1", ["Acme", "J_Crew"], "tops", cursor={"Acme": 2})
    assert res.failed_brands == ["Acme"]
    assert res.results["Acme"] == {}
    assert res.next_cursor["Acme"] == 2
    assert res.processed_counts["Acme"] == 0
    assert [p.product.id for p in res.results["J_Crew"]["tops"]] == ["j0"]



@pytest.mark.asyncio
async def test_recommend_skips_store_for_exhausted_brands():
    rec = _recommender(broken_brands=["Acme"], broken_charts=["Acme"])
    res = await rec.recommend("u1", ["Acme", "J_Crew"], "tops", cursor={"Acme": None})
    assert res.failed_brands == []
    assert rec.catalog.chart_calls == ["J_Crew"]
    assert "Acme" not in rec.catalog.paged_brands
    assert res.next_cursor["Acme"] is None
    assert res.processed_counts["Acme"] == 0
    assert res.results["Acme"] == {}


@pytest.mark.asyncio
async def test_recommend_without_chart_in_user_unit_matches_nothing():
    rec = _recommender()
    res = await rec.recommend("u-cm", ["Acme"], "tops", quota_per_brand=5)
    assert res.total_matched == 0
    assert res.processed_counts == {"Acme": 4}
    assert res.next_cursor == {"Acme": None}


class UntouchableCatalog(InMemoryCatalog):
    async def get_profile(self, user_id):
        raise AssertionError("store must not be read")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"user_id": "", "brands": ["Acme"], "category": "tops"},
        {"user_id": "u1", "brands": [], "category": "tops"},
        {"user_id": "u1", "brands": " , ", "category": "tops"},
        {"user_id": "u1", "brands": ["Acme"], "category": ""},
        {"user_id": "u1", "brands": ["Acme"], "category": "tops", "fit_type": "baggy"},
        {"user_id": "u1", "brands": ["Acme"], "category": "tops", "quota_per_brand": 0},
        {"user_id": "u1", "brands": ["Acme"], "category": "tops", "cursor": "{bad"},
    ],
)
async def test_recommend_invalid_request_before_store_access(kwargs):
    rec = Recommender(UntouchableCatalog(), default_unit="inch")
    with pytest.raises(InvalidRequest):
        await rec.recommend(**kwargs)


@pytest.mark.asyncio
async def test_recommend_unknown_user():
    rec = _recommender()
    with pytest.raises(UserNotFound):
        await rec.recommend("nobody", ["Acme"], "tops")


def _result(pid, alteration, diff):
    summary = ProductSummary(id=pid, brand="Acme", category="tops", name=pid)
    return SearchResult(product=summary, alteration_required=alteration, closest_size_difference=diff)


def test_rank_no_alteration_before_closer_fit():
    ranked = rank_search_results([_result("b", True, 0), _result("a", False, 2)])
    assert [r.product.id for r in ranked] == ["a", "b"]


def test_rank_is_stable_and_unknown_distance_last():
    ranked = rank_search_results([
        _result("x", True, None),
        _result("y", True, 3),
        _result("z", False, 1),
        _result("w", False, 1),
    ])
    assert [r.product.id for r in ranked] == ["z", "w", "y", "x"]


@pytest.mark.asyncio
async def test_search_ranks_and_skips_unscorable_products():
    rec = _recommender()
    results = await rec.search("u1", "tee")
    assert [r.product.id for r in results] == ["c1", "c2", "c0"]

    boxy, cropped, ribbed = results
    assert (boxy.best_size, boxy.alteration_required, boxy.closest_size_difference) == ("M", False, 0)
    assert boxy.is_wishlist is True
    # no stocked size matches, so the closest chart row stands in
    assert cropped.best_size == "M"
    assert (ribbed.best_size, ribbed.alteration_required, ribbed.closest_size_difference) == ("M-Tall", True, 3.5)


@pytest.mark.asyncio
async def test_search_keeps_other_brands_when_a_chart_fetch_fails():
    catalog = TracingCatalog(
        products=[_p("x0", "Acme", "tops", "Lounge Tee", ["M"]), _p("x1", "Cove", "tops", "Lounge Tee", ["M"])],
        size_charts=CHARTS,
        profiles=PROFILES,
        broken_charts=["Cove"],
    )
    rec = Recommender(catalog, default_unit="inch", search_excluded_brands=[])
    results = await rec.search("u1", "lounge tee")
    assert [r.product.id for r in results] == ["x0"]
    assert results[0].best_size == "M"
    assert sorted(catalog.chart_calls) == ["Acme", "Cove"]


@pytest.mark.asyncio
async def test_search_excluded_brand_only_when_asked():
    rec = _recommender()
    results = await rec.search("u1", "Sabo", brand="Sabo_Skirt")
    assert [r.product.id for r in results] == ["s0"]
    assert await rec.search("u1", "Sabo") == []


@pytest.mark.asyncio
async def test_search_filters_gender_and_category():
    rec = _recommender()
    results = await rec.search("u1", "knit top", gender="male")
    assert [r.product.id for r in results] == ["a-men"]
    assert await rec.search("u1", "tee", category="bottoms") == []


@pytest.mark.asyncio
async def test_search_invalid_request():
    rec = Recommender(UntouchableCatalog(), default_unit="inch")
    with pytest.raises(InvalidRequest):
        await rec.search("u1", "  ")
    with pytest.raises(InvalidRequest):
        await rec.search("", "tee")


@pytest.mark.asyncio
async def test_best_size_for_top():
    rec = _recommender()
    res = await rec.best_size("u1", "a0")
    assert res.measurement == "bust"
    assert res.best_size == "M"
    assert res.fit_match == FitType.FITTED
    assert res.match.alteration_required is False


@pytest.mark.asyncio
async def test_best_size_uses_waist_for_bottoms_and_brand_labels():
    rec = _recommender()
    res = await rec.best_size("u1", "j1")
    assert res.measurement == "waist"
    assert res.best_size == "28"
    assert res.match.fit_type == FitType.FITTED


@pytest.mark.asyncio
async def test_best_size_only_from_stocked_sizes():
    rec = _recommender()
    res = await rec.best_size("u1", "c0")
    assert res.best_size == "M-Tall"
    assert res.match.alteration_required is True

    res = await rec.best_size("u1", "c2")
    assert res.best_size is None
    assert res.match is None


@pytest.mark.asyncio
async def test_best_size_without_chart():
    rec = _recommender()
    res = await rec.best_size("u1", "n0")
    assert res.best_size is None


@pytest.mark.asyncio
async def test_best_size_unknown_product():
    rec = _recommender()
    with pytest.raises(ProductNotFound):
        await rec.best_size("u1", "missing")


def test_profile_body_measurements_share_one_unit():
    profile = UserProfile.model_validate({
        "gender": "female",
        "fit": "loose",
        "upperBody": {"chest": {"value": 90.17, "unit": "cm"}},
        "lowerBody": {"waist": {"value": 28.5, "unit": "inch"}},
    })
    body = profile.body_measurements(Unit.CM)
    assert body.unit == Unit.INCH
    assert body.bust == pytest.approx(35.5)
    assert body.waist == 28.5
    assert body.hip is None

    bare = UserProfile.model_validate({"gender": "male", "fit": "tight"})
    assert bare.body_measurements(Unit.CM).unit == Unit.CM
