import os
import time
import hashlib
from typing import Dict
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from .config import settings
from .errors import FitMatchError
from .routers.recommend import router as recommend_router


logger = structlog.get_logger("fitmatch")


app = FastAPI(title="Fitmatch Size Recommender", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# Token buckets keyed by client ip
_buckets: Dict[str, tuple[float, float]] = {}
_last_sweep = 0.0


class RateLimited(Exception):
    pass


def _evict_idle(now: float, idle_after: float) -> None:
    # A bucket idle this long has refilled completely, same as a new one
    global _last_sweep
    if now - _last_sweep < idle_after:
        return
    _last_sweep = now
    for ident, (_, last) in list(_buckets.items()):
        if now - last >= idle_after:
            del _buckets[ident]


def _rate_limit(ident: str, requests_per_min: int, burst: int) -> None:
    refill_rate = requests_per_min / 60.0
    capacity = float(burst)
    now = time.time()
    if refill_rate > 0:
        _evict_idle(now, capacity / refill_rate)
    tokens, last = _buckets.get(ident, (capacity, now))
    tokens = min(capacity, tokens + refill_rate * (now - last))
    if tokens < 1.0:
        _buckets[ident] = (tokens, now)
        raise RateLimited(ident)
    _buckets[ident] = (tokens - 1.0, now)


def _request_id(request: Request) -> str:
    return hashlib.md5(f"{request.client.host if request.client else 'unknown'}{time.time()}".encode()).hexdigest()[:8]


def _timestamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _validate_config() -> None:
    strict = os.getenv("STRICT_CONFIG", "0") == "1"
    errors = []
    if not settings.api_key or settings.api_key == "change-me":
        errors.append("API_KEY must be set to a secure value")
    backend = (settings.catalog_backend or "").lower()
    if backend not in ("http", "file"):
        errors.append("CATALOG_BACKEND must be 'http' or 'file'")
    if backend == "http" and not settings.catalog_api_base:
        errors.append("CATALOG_API_BASE must be set for the http catalog backend")
    if backend == "file" and not settings.catalog_file:
        errors.append("CATALOG_FILE must be set for the file catalog backend")
    if settings.default_unit not in ("cm", "inch"):
        errors.append("DEFAULT_UNIT must be 'cm' or 'inch'")
    if settings.batch_size < 1:
        errors.append("BATCH_SIZE must be at least 1")
    if errors:
        if strict:
            raise RuntimeError("Configuration error: " + "; ".join(errors))
        else:
            for e in errors:
                logger.warning("config_warning", warning=e)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    request_id = _request_id(request)
    resp = None

    try:
        client_ip = request.client.host if request.client else "unknown"
        try:
            _rate_limit(client_ip, settings.rate_limit_per_min, settings.rate_limit_burst)
        except RateLimited:
            logger.warning("rate_limit_exceeded", client_ip=client_ip, request_id=request_id)
            resp = JSONResponse(status_code=429, content={"detail": "Too Many Requests"})
            return resp

        logger.info("request_started",
                   request_id=request_id,
                   path=str(request.url.path),
                   method=request.method,
                   client_ip=client_ip,
                   user_agent=request.headers.get("user-agent", "unknown"))

        resp = await call_next(request)
        return resp

    except Exception as e:
        duration_ms = int((time.time() - start) * 1000)
        logger.error("request_failed",
                    request_id=request_id,
                    path=str(request.url.path),
                    method=request.method,
                    error=str(e),
                    duration_ms=duration_ms,
                    exc_info=True)
        raise
    finally:
        duration_ms = int((time.time() - start) * 1000)
        status_code = getattr(resp, "status_code", 0) if resp else 0
        logger.info("request_completed",
                   request_id=request_id,
                   path=str(request.url.path),
                   method=request.method,
                   status=status_code,
                   duration_ms=duration_ms)


@app.exception_handler(FitMatchError)
async def handle_fitmatch_error(request: Request, exc: FitMatchError):
    request_id = _request_id(request)
    logger.info("request_rejected",
               request_id=request_id,
               path=str(request.url.path),
               error_code=exc.error_code,
               detail=exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_code": exc.error_code,
            "request_id": request_id,
            "timestamp": _timestamp(),
        }
    )


@app.exception_handler(Exception)
async def handle_exceptions(request: Request, exc: Exception):
    request_id = _request_id(request)

    logger.error("unhandled_exception",
                request_id=request_id,
                path=str(request.url.path),
                method=request.method,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_code": "INTERNAL_ERROR",
            "request_id": request_id,
            "timestamp": _timestamp(),
        }
    )


@app.get("/v1/health")
async def health():
    return {"status": "ok"}


# Routers under versioned prefix
app.include_router(recommend_router, prefix="/v1")

# Validate configuration at import time (warnings by default; set STRICT_CONFIG=1 to enforce)
_validate_config()
