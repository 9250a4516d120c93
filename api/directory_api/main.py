from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from directory_api.api.router import api_router
from directory_api.core.config import get_settings
from directory_api.core.telemetry import TelemetryRuntime, setup_api_telemetry, shutdown_api_telemetry
from directory_api.services.cache import get_listing_cache
from directory_api.services.repository import RepositoryError, get_repository

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    current = get_settings()
    repository = get_repository()
    try:
        await repository.ping()
    except RepositoryError as exc:
        # /readyz keeps reporting 503 until storage answers; startup carries on.
        logger.warning("storage backend=%s unreachable at startup: %s", current.storage_backend, exc)
    if not current.machine_credentials:
        logger.warning("no machine credentials configured; /admin/reconcile accepts admin sessions only")
    logger.info(
        "directory api ready environment=%s storage=%s listing_cache_ttl=%.0fs",
        current.environment,
        current.storage_backend,
        current.listing_cache_ttl_seconds,
    )

    try:
        yield
    finally:
        await repository.close()
        get_repository.cache_clear()
        get_listing_cache.cache_clear()
        if _telemetry_runtime is not None:
            shutdown_api_telemetry(app, _telemetry_runtime)
        logger.info("directory api stopped")


app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_api_telemetry(app, settings)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
