"""
MarketCache - Exception Handlers

Maps the error taxonomy to HTTP responses.
"""
import uuid
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from marketcache.schemas.market_data import ErrorResponse
from marketcache.utils.exceptions import MarketCacheException, ProviderRateLimitError


async def market_cache_exception_handler(request: Request, exc: MarketCacheException) -> JSONResponse:
    trace_id = uuid.uuid4().hex
    if exc.status_code >= 500:
        logger.error(f"[{trace_id}] {request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        logger.info(f"[{trace_id}] {request.method} {request.url.path} -> {exc.status_code} {exc.code}")

    headers = {}
    if isinstance(exc, ProviderRateLimitError):
        headers["Retry-After"] = str(int(exc.retry_after))

    body = ErrorResponse(code=exc.code, message=exc.message, trace_id=trace_id, details=exc.details)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(), headers=headers)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    trace_id = uuid.uuid4().hex
    logger.exception(f"[{trace_id}] Unhandled error on {request.method} {request.url.path}: {exc}")
    body = ErrorResponse(code="INTERNAL_ERROR", message="An unexpected error occurred", trace_id=trace_id)
    return JSONResponse(status_code=500, content=body.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MarketCacheException, market_cache_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
