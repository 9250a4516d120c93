from fastapi import APIRouter, Depends

from directory_api.core.auth import ActorContext
from directory_api.core.config import Settings, get_settings
from directory_api.core.errors import DirectoryError, to_http_exception
from directory_api.core.security import get_actor
from directory_api.schemas.interactions import InteractionKind, ToggleOut, ToggleRequest
from directory_api.services import interactions
from directory_api.services.repository import get_repository

router = APIRouter()


@router.post("/{kind}/toggle", response_model=ToggleOut)
async def toggle_interaction(
    kind: InteractionKind,
    payload: ToggleRequest,
    actor: ActorContext = Depends(get_actor),
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> ToggleOut:
    try:
        result = await interactions.toggle(
            repository,
            actor,
            kind=kind,
            target_id=payload.target_id,
            settings=settings,
            reason=payload.reason,
        )
    except DirectoryError as exc:
        raise to_http_exception(exc) from exc

    return ToggleOut(kind=kind, target_id=result.target_id, active=result.active, count=result.count)
