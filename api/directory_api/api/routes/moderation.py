from dataclasses import asdict

from fastapi import APIRouter, Body, Depends, Query

from directory_api.core.auth import ActorContext
from directory_api.core.config import Settings, get_settings
from directory_api.core.errors import DirectoryError, to_http_exception
from directory_api.core.security import get_actor
from directory_api.schemas.admin import CommentModerationOut
from directory_api.schemas.submissions import (
    ApprovalEdits,
    ApprovalOut,
    RejectionOut,
    RejectRequest,
    SubmissionOut,
    SubmissionStatus,
)
from directory_api.services import moderation
from directory_api.services.cache import get_listing_cache
from directory_api.services.moderation import ModerationGate, get_moderation_gate
from directory_api.services.repository import get_repository

router = APIRouter()


@router.get("/submissions", response_model=list[SubmissionOut])
async def list_submissions(
    actor: ActorContext = Depends(get_actor),
    gate: ModerationGate = Depends(get_moderation_gate),
    repository=Depends(get_repository),
    submission_status: SubmissionStatus | None = Query(default="pending", alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[SubmissionOut]:
    try:
        reviewer = await gate.assert_admin(actor)
        rows = await moderation.list_queue(
            repository,
            reviewer,
            status=submission_status,
            limit=limit,
            offset=offset,
        )
    except DirectoryError as exc:
        raise to_http_exception(exc) from exc

    return [SubmissionOut(**asdict(row)) for row in rows]


@router.post("/submissions/{submission_id}/approve", response_model=ApprovalOut)
async def approve_submission(
    submission_id: str,
    edits: ApprovalEdits | None = Body(default=None),
    actor: ActorContext = Depends(get_actor),
    gate: ModerationGate = Depends(get_moderation_gate),
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> ApprovalOut:
    try:
        reviewer = await gate.assert_admin(actor)
        result = await moderation.approve(
            repository,
            submission_id,
            reviewer,
            settings=settings,
            cache=get_listing_cache(),
            edits=edits,
        )
    except DirectoryError as exc:
        raise to_http_exception(exc) from exc

    return ApprovalOut(resource_id=result.resource_id, slug=result.slug)


@router.post("/submissions/{submission_id}/reject", response_model=RejectionOut)
async def reject_submission(
    submission_id: str,
    payload: RejectRequest | None = Body(default=None),
    actor: ActorContext = Depends(get_actor),
    gate: ModerationGate = Depends(get_moderation_gate),
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> RejectionOut:
    try:
        reviewer = await gate.assert_admin(actor)
        await moderation.reject(
            repository,
            submission_id,
            reviewer,
            settings=settings,
            notes=payload.notes if payload else None,
        )
    except DirectoryError as exc:
        raise to_http_exception(exc) from exc

    return RejectionOut(submission_id=submission_id)


@router.post("/comments/{comment_id}/soft-delete", response_model=CommentModerationOut)
async def soft_delete_comment(
    comment_id: str,
    actor: ActorContext = Depends(get_actor),
    gate: ModerationGate = Depends(get_moderation_gate),
    repository=Depends(get_repository),
) -> CommentModerationOut:
    try:
        reviewer = await gate.assert_admin(actor)
        await moderation.soft_delete_comment(repository, comment_id, reviewer)
    except DirectoryError as exc:
        raise to_http_exception(exc) from exc

    return CommentModerationOut(comment_id=comment_id)


@router.post("/comments/{comment_id}/resolve-flags", response_model=CommentModerationOut)
async def resolve_comment_flags(
    comment_id: str,
    actor: ActorContext = Depends(get_actor),
    gate: ModerationGate = Depends(get_moderation_gate),
    repository=Depends(get_repository),
) -> CommentModerationOut:
    try:
        reviewer = await gate.assert_admin(actor)
        resolved = await moderation.resolve_comment_flags(repository, comment_id, reviewer)
    except DirectoryError as exc:
        raise to_http_exception(exc) from exc

    return CommentModerationOut(comment_id=comment_id, resolved_flags=resolved)
