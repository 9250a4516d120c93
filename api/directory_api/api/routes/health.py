import logging

from fastapi import APIRouter, Depends, HTTPException, status

from directory_api.core.config import Settings, get_settings
from directory_api.core.errors import StorageError
from directory_api.services.repository import RepositoryError, get_repository

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/")
async def root(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    return {"service": settings.app_name, "status": "ok"}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(repository=Depends(get_repository)) -> dict[str, str]:
    try:
        await repository.ping()
    except RepositoryError as exc:
        logger.warning("readiness probe failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=StorageError().to_detail()) from exc
    return {"status": "ready"}
