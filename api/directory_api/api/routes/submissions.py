from typing import Any

from fastapi import APIRouter, Body, Depends, Query, status

from directory_api.core.auth import ActorContext
from directory_api.core.config import Settings, get_settings
from directory_api.core.errors import DirectoryError, StorageError, to_http_exception
from directory_api.core.security import get_actor
from directory_api.schemas.submissions import DuplicateCheckOut, DuplicateOut, SubmitAccepted
from directory_api.services import intake
from directory_api.services.dedupe import DuplicateMatch, find_duplicate
from directory_api.services.repository import RepositoryError, get_repository

router = APIRouter()


def _duplicate_out(match: DuplicateMatch | None) -> DuplicateOut | None:
    if match is None:
        return None
    return DuplicateOut(type=match.type, id=match.id, title=match.title, url=match.url, slug=match.slug)


@router.post("", response_model=SubmitAccepted, status_code=status.HTTP_201_CREATED)
async def create_submission(
    payload: dict[str, Any] = Body(...),
    actor: ActorContext = Depends(get_actor),
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> SubmitAccepted:
    try:
        result = await intake.submit(repository, payload, actor, settings)
    except DirectoryError as exc:
        raise to_http_exception(exc) from exc

    return SubmitAccepted(
        ok=result.ok,
        submission_id=result.submission_id,
        duplicate=_duplicate_out(result.duplicate),
        warning=result.duplicate.as_conflict().to_detail() if result.duplicate else None,
    )


@router.get("/check", response_model=DuplicateCheckOut)
async def check_duplicate(
    url: str = Query(default="", max_length=2048),
    repository=Depends(get_repository),
) -> DuplicateCheckOut:
    try:
        match = await find_duplicate(repository, url)
    except RepositoryError as exc:
        raise to_http_exception(StorageError()) from exc

    return DuplicateCheckOut(duplicate=_duplicate_out(match))
