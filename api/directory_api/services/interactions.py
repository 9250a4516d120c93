from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from directory_api.core.auth import ActorContext
from directory_api.core.config import Settings
from directory_api.core.errors import (
    EmailNotVerified,
    NotAuthenticated,
    NotFound,
    RateLimited,
    StorageError,
    ValidationError,
)
from directory_api.services.repository import (
    RELATION_TABLES,
    DirectoryRepository,
    RepositoryError,
    RepositoryUniqueViolationError,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToggleResult:
    kind: str
    target_id: str
    active: bool
    count: int | None = None


async def toggle(
    repository: DirectoryRepository,
    actor: ActorContext,
    *,
    kind: str,
    target_id: str,
    settings: Settings,
    reason: str | None = None,
) -> ToggleResult:
    """Flip the ``(actor, target)`` relation for ``kind``: present becomes absent and vice versa."""
    if not actor.is_authenticated or actor.user_id is None:
        raise NotAuthenticated()
    if not actor.email_verified:
        raise EmailNotVerified()
    if kind not in RELATION_TABLES:
        raise ValidationError("unknown interaction", fields={"kind": f"must be one of {sorted(RELATION_TABLES)}"})

    user_id = actor.user_id
    try:
        await _check_target(repository, kind=kind, target_id=target_id, user_id=user_id)
        await _enforce_rate_limit(repository, user_id=user_id, settings=settings)

        if await repository.relation_exists(kind=kind, user_id=user_id, target_id=target_id):
            await repository.delete_relation(kind=kind, user_id=user_id, target_id=target_id)
            active = False
        else:
            try:
                await repository.insert_relation(kind=kind, user_id=user_id, target_id=target_id, reason=reason)
            except RepositoryUniqueViolationError:
                logger.info("toggle insert raced kind=%s user=%s target=%s", kind, user_id, target_id)
            active = True

        await repository.record_interaction_event(kind=kind, user_id=user_id, target_id=target_id, active=active)
        count = await repository.count_votes(target_id) if kind == "vote" else None
    except RepositoryError as exc:
        logger.exception("toggle failed kind=%s user=%s target=%s", kind, user_id, target_id)
        raise StorageError() from exc

    return ToggleResult(kind=kind, target_id=target_id, active=active, count=count)


async def _check_target(repository: DirectoryRepository, *, kind: str, target_id: str, user_id: str) -> None:
    if kind == "flag":
        comment = await repository.get_comment(target_id)
        if comment is None or comment.is_deleted:
            raise NotFound("comment not found")
        if comment.user_id and comment.user_id == user_id:
            raise ValidationError("cannot report your own comment", fields={"target_id": "own comment"})
        return

    resource = await repository.get_resource(target_id)
    if resource is None:
        raise NotFound("resource not found")
    if kind == "vote" and not resource.is_approved:
        raise NotFound("resource not found")


async def _enforce_rate_limit(repository: DirectoryRepository, *, user_id: str, settings: Settings) -> None:
    if settings.toggle_rate_limit_max_ops <= 0:
        return
    since = datetime.now(timezone.utc) - timedelta(seconds=settings.toggle_rate_limit_window_seconds)
    recent = await repository.count_recent_interaction_events(user_id=user_id, since=since)
    if recent >= settings.toggle_rate_limit_max_ops:
        logger.info("toggle rate limited user=%s recent=%s", user_id, recent)
        raise RateLimited()
