"""Admin-gated state transitions for the submission queue.

Submissions move ``pending -> approved`` or ``pending -> rejected`` exactly once.
Approval writes the Resource before flipping the submission status, and the
status flip is a compare-and-swap on ``pending``; a crash in between leaves a
pending submission that already owns a Resource, which a later approval resumes
and :func:`reconcile_orphaned_approvals` repairs.
Rejection is refused once a Resource exists, and a Resource is never written
for a submission that has left ``pending``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from fastapi import Depends

from directory_api.core.auth import ActorContext, ReviewerIdentity
from directory_api.core.config import Settings
from directory_api.core.errors import (
    AlreadyProcessed,
    NotAuthenticated,
    NotAuthorized,
    NotFound,
    StorageError,
)
from directory_api.core.slugs import ensure_unique_slug, generate_slug
from directory_api.core.urls import host_key
from directory_api.schemas.submissions import ApprovalEdits
from directory_api.services.cache import RESOURCE_LISTING_PREFIX, ListingCache
from directory_api.services.repository import (
    DirectoryRepository,
    NewResource,
    RepositoryError,
    RepositoryUniqueViolationError,
    ResourceRecord,
    SubmissionRecord,
    get_repository,
)

logger = logging.getLogger(__name__)


class Authorizer(Protocol):
    async def is_admin(self, actor: ActorContext) -> bool: ...


class AdminAllowListAuthorizer:
    """Admins are the accounts whose email appears in ``admin_emails``."""

    def __init__(self, repository: DirectoryRepository) -> None:
        self.repository = repository

    async def is_admin(self, actor: ActorContext) -> bool:
        if not actor.email:
            return False
        return await self.repository.is_admin_email(actor.email)


class ModerationGate:
    def __init__(self, authorizer: Authorizer) -> None:
        self.authorizer = authorizer

    async def assert_admin(self, actor: ActorContext) -> ReviewerIdentity:
        if not actor.is_authenticated or actor.user_id is None:
            raise NotAuthenticated()
        if not actor.email_verified or not actor.email:
            raise NotAuthorized("a verified admin session is required")
        try:
            allowed = await self.authorizer.is_admin(actor)
        except RepositoryError as exc:
            logger.exception("admin lookup failed for user=%s", actor.user_id)
            raise StorageError() from exc
        if not allowed:
            logger.warning("moderation denied for user=%s", actor.user_id)
            raise NotAuthorized()
        return ReviewerIdentity(user_id=actor.user_id, email=actor.email)


def get_moderation_gate(repository: DirectoryRepository = Depends(get_repository)) -> ModerationGate:
    return ModerationGate(AdminAllowListAuthorizer(repository))


@dataclass(slots=True)
class ApprovalResult:
    resource_id: str
    slug: str


async def list_queue(
    repository: DirectoryRepository,
    reviewer: ReviewerIdentity,
    *,
    status: str | None,
    limit: int,
    offset: int,
) -> list[SubmissionRecord]:
    try:
        return await repository.list_submissions(status=status, limit=limit, offset=offset)
    except RepositoryError as exc:
        logger.exception("failed to list submissions for reviewer=%s", reviewer.user_id)
        raise StorageError() from exc


async def approve(
    repository: DirectoryRepository,
    submission_id: str,
    reviewer: ReviewerIdentity,
    *,
    settings: Settings,
    cache: ListingCache | None = None,
    edits: ApprovalEdits | None = None,
) -> ApprovalResult:
    try:
        result = await _approve(repository, submission_id, reviewer, settings=settings, edits=edits)
    except RepositoryError as exc:
        logger.exception("approval failed submission=%s reviewer=%s", submission_id, reviewer.user_id)
        raise StorageError() from exc

    if cache is not None:
        cache.invalidate(RESOURCE_LISTING_PREFIX)
    return result


async def _approve(
    repository: DirectoryRepository,
    submission_id: str,
    reviewer: ReviewerIdentity,
    *,
    settings: Settings,
    edits: ApprovalEdits | None,
) -> ApprovalResult:
    submission = await _load_pending(repository, submission_id)
    _check_self_moderation(submission, reviewer, settings)
    edits = edits or ApprovalEdits()

    category_id = submission.category_id
    category_slug = edits.category_slug or submission.category_slug
    if edits.category_slug or (not category_id and category_slug):
        category_id = await repository.upsert_category(slug=category_slug, name=category_slug)

    url = edits.url or submission.url
    resource = await repository.get_resource_by_submission(submission.id)
    if resource is not None:
        logger.info("resuming approval submission=%s resource=%s", submission.id, resource.id)
    else:
        new_resource = NewResource(
            slug="",
            title=edits.title or submission.title,
            description=edits.description if edits.description is not None else submission.description,
            url=url,
            url_host=host_key(url),
            logo_url=edits.logo_url or submission.logo_url,
            pricing=edits.pricing or submission.pricing or "unknown",
            category_id=category_id,
            submission_id=submission.id,
        )
        resource = await _insert_with_unique_slug(repository, new_resource, settings=settings)

    tag_slugs = edits.tags if edits.tags is not None else submission.tag_slugs
    if tag_slugs:
        tag_ids = await repository.upsert_tags(list(tag_slugs))
        await repository.link_resource_tags(resource_id=resource.id, tag_ids=list(tag_ids.values()))

    flipped = await repository.transition_submission(
        submission_id=submission.id,
        from_status="pending",
        to_status="approved",
        reviewer_id=reviewer.user_id,
    )
    if not flipped:
        logger.info("approval lost status race submission=%s reviewer=%s", submission.id, reviewer.user_id)
        raise AlreadyProcessed("submission was already processed")

    logger.info(
        "submission approved id=%s resource=%s slug=%s reviewer=%s",
        submission.id,
        resource.id,
        resource.slug,
        reviewer.user_id,
    )
    return ApprovalResult(resource_id=resource.id, slug=resource.slug)


async def _insert_with_unique_slug(
    repository: DirectoryRepository,
    resource: NewResource,
    *,
    settings: Settings,
) -> ResourceRecord:
    """Probe for a free slug and insert; the table's unique constraint has the final say.

    A slug collision between probe and insert triggers a fresh probe, at most
    ``settings.slug_insert_retries`` times. A collision on the submission key means
    a concurrent approval already created this submission's Resource.
    Nothing is written once the submission has left ``pending``; that surfaces
    as :class:`AlreadyProcessed`.
    """
    base = resource.title if generate_slug(resource.title, fallback="") else resource.url_host
    attempts = max(0, settings.slug_insert_retries) + 1
    for attempt in range(attempts):
        resource.slug = await ensure_unique_slug(
            base,
            repository.resource_slug_exists,
            max_attempts=settings.slug_max_attempts,
            max_length=settings.slug_max_length,
        )
        try:
            created = await repository.insert_resource(resource)
        except RepositoryUniqueViolationError as exc:
            existing = await repository.get_resource_by_submission(resource.submission_id or "")
            if existing is not None:
                logger.info(
                    "concurrent approval created resource=%s for submission=%s",
                    existing.id,
                    resource.submission_id,
                )
                return existing
            if exc.key != "slug":
                raise
            logger.warning(
                "slug collided at insert slug=%s attempt=%s/%s",
                resource.slug,
                attempt + 1,
                attempts,
            )
            continue
        if created is None:
            logger.info("submission=%s was decided before its resource was written", resource.submission_id)
            raise AlreadyProcessed("submission was already processed")
        return created
    raise StorageError("could not reserve a slug, try again")


async def reject(
    repository: DirectoryRepository,
    submission_id: str,
    reviewer: ReviewerIdentity,
    *,
    settings: Settings,
    notes: str | None = None,
) -> None:
    """Flip ``pending -> rejected`` unless the submission already owns a Resource.

    The Resource check is part of the same conditional update, so an approval
    that has already written its Resource always wins over a concurrent reject.
    """
    notes = notes.strip() if notes and notes.strip() else None
    try:
        submission = await _load_pending(repository, submission_id)
        _check_self_moderation(submission, reviewer, settings)
        flipped = await repository.transition_submission(
            submission_id=submission.id,
            from_status="pending",
            to_status="rejected",
            reviewer_id=reviewer.user_id,
            notes=notes,
            require_no_resource=True,
        )
        if not flipped:
            current = await repository.get_submission(submission.id)
    except RepositoryError as exc:
        logger.exception("rejection failed submission=%s reviewer=%s", submission_id, reviewer.user_id)
        raise StorageError() from exc

    if not flipped:
        if current is not None and current.status == "pending":
            raise AlreadyProcessed("submission already has a published resource")
        raise AlreadyProcessed("submission was already processed")
    logger.info("submission rejected id=%s reviewer=%s", submission_id, reviewer.user_id)


async def soft_delete_comment(repository: DirectoryRepository, comment_id: str, reviewer: ReviewerIdentity) -> None:
    try:
        if await repository.get_comment(comment_id) is None:
            raise NotFound("comment not found")
        await repository.soft_delete_comment(comment_id)
    except RepositoryError as exc:
        logger.exception("comment soft-delete failed comment=%s", comment_id)
        raise StorageError() from exc
    logger.info("comment soft-deleted id=%s reviewer=%s", comment_id, reviewer.user_id)


async def resolve_comment_flags(repository: DirectoryRepository, comment_id: str, reviewer: ReviewerIdentity) -> int:
    try:
        if await repository.get_comment(comment_id) is None:
            raise NotFound("comment not found")
        resolved = await repository.resolve_comment_flags(comment_id)
    except RepositoryError as exc:
        logger.exception("flag resolution failed comment=%s", comment_id)
        raise StorageError() from exc
    logger.info("comment flags resolved id=%s count=%s reviewer=%s", comment_id, resolved, reviewer.user_id)
    return resolved


async def reconcile_orphaned_approvals(
    repository: DirectoryRepository,
    *,
    reviewer_id: str | None,
    limit: int,
    cache: ListingCache | None = None,
) -> int:
    """Finish approvals whose Resource exists but whose submission is still pending.

    ``reviewer_id`` is ``None`` when a machine caller runs the repair.
    """
    repaired = 0
    try:
        orphaned = await repository.list_orphaned_approvals(limit=limit)
        for submission_id in orphaned:
            flipped = await repository.transition_submission(
                submission_id=submission_id,
                from_status="pending",
                to_status="approved",
                reviewer_id=reviewer_id,
            )
            if flipped:
                repaired += 1
                logger.info("reconciled orphaned approval submission=%s", submission_id)
    except RepositoryError as exc:
        logger.exception("reconciliation failed after repaired=%s", repaired)
        raise StorageError() from exc

    if repaired and cache is not None:
        cache.invalidate(RESOURCE_LISTING_PREFIX)
    return repaired


async def _load_pending(repository: DirectoryRepository, submission_id: str) -> SubmissionRecord:
    submission = await repository.get_submission(submission_id)
    if submission is None:
        raise NotFound("submission not found")
    if submission.status != "pending":
        raise AlreadyProcessed(f"submission is already {submission.status}")
    return submission


def _check_self_moderation(submission: SubmissionRecord, reviewer: ReviewerIdentity, settings: Settings) -> None:
    if settings.allow_self_moderation:
        return
    if submission.submitter_id and submission.submitter_id == reviewer.user_id:
        raise NotAuthorized("reviewers cannot moderate their own submissions")
