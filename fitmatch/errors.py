class FitMatchError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    error_code = "FITMATCH_ERROR"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidRequest(FitMatchError):
    status_code = 400
    error_code = "INVALID_REQUEST"


class UserNotFound(FitMatchError):
    status_code = 404
    error_code = "USER_NOT_FOUND"

    def __init__(self, user_id: str) -> None:
        super().__init__(f"No measurements found for user {user_id}")
        self.user_id = user_id


class ProductNotFound(FitMatchError):
    status_code = 404
    error_code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str) -> None:
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class NoSizeChart(Exception):
    """No chart slice exists for a brand/gender/category. Logged and skipped, never surfaced."""

    def __init__(self, brand: str, gender: str | None, category_key: str) -> None:
        super().__init__(f"No size chart for {brand} ({gender}, {category_key})")
        self.brand = brand
        self.gender = gender
        self.category_key = category_key
