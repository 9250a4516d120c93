import logging

from fastapi import APIRouter, Depends, Query

from directory_api.core.auth import ActorContext, MachinePrincipal
from directory_api.core.errors import DirectoryError, to_http_exception
from directory_api.core.security import get_actor, get_machine_principal
from directory_api.schemas.admin import ReconcileOut
from directory_api.services import moderation
from directory_api.services.cache import get_listing_cache
from directory_api.services.moderation import ModerationGate, get_moderation_gate
from directory_api.services.repository import get_repository

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/reconcile", response_model=ReconcileOut)
async def reconcile_approvals(
    machine: MachinePrincipal | None = Depends(get_machine_principal),
    actor: ActorContext = Depends(get_actor),
    gate: ModerationGate = Depends(get_moderation_gate),
    repository=Depends(get_repository),
    limit: int = Query(default=100, ge=1, le=1000),
) -> ReconcileOut:
    try:
        if machine is not None:
            logger.info("reconcile requested by module=%s", machine.module_id)
            reviewer_id = None
        else:
            reviewer_id = (await gate.assert_admin(actor)).user_id
        repaired = await moderation.reconcile_orphaned_approvals(
            repository,
            reviewer_id=reviewer_id,
            limit=limit,
            cache=get_listing_cache(),
        )
    except DirectoryError as exc:
        raise to_http_exception(exc) from exc

    return ReconcileOut(count=repaired)
