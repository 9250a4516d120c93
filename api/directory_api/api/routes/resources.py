from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from directory_api.core.errors import StorageError, to_http_exception
from directory_api.schemas.resources import ResourceListOut
from directory_api.services.cache import RESOURCE_LISTING_PREFIX, get_listing_cache
from directory_api.services.repository import RepositoryError, get_repository

router = APIRouter()


@router.get("", response_model=list[ResourceListOut])
async def list_resources(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    repository=Depends(get_repository),
) -> list[ResourceListOut]:
    cache = get_listing_cache()
    cache_key = f"{RESOURCE_LISTING_PREFIX}{limit}:{offset}"
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    try:
        rows = await repository.list_approved_resources(limit=limit, offset=offset)
    except RepositoryError as exc:
        raise to_http_exception(StorageError()) from exc

    listing = [ResourceListOut(**_public_fields(asdict(row))) for row in rows]
    cache.set(cache_key, listing)
    return listing


def _public_fields(row: dict) -> dict:
    return {key: row[key] for key in ResourceListOut.model_fields}
