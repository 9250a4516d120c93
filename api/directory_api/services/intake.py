from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from directory_api.core.auth import ActorContext
from directory_api.core.config import Settings
from directory_api.core.errors import RateLimited, StorageError, ValidationError
from directory_api.core.urls import fingerprint, host_key
from directory_api.schemas.submissions import SubmissionCandidate
from directory_api.services.dedupe import DuplicateMatch, find_duplicate
from directory_api.services.repository import DirectoryRepository, NewSubmission, RepositoryError

logger = logging.getLogger(__name__)

HONEYPOT_FIELDS = ("hp", "website")


@dataclass(slots=True)
class SubmitResult:
    ok: bool
    submission_id: str | None = None
    duplicate: DuplicateMatch | None = None


def honeypot_tripped(payload: Mapping[str, Any]) -> bool:
    for name in HONEYPOT_FIELDS:
        value = payload.get(name)
        if value is None:
            continue
        if not isinstance(value, str) or value != "":
            return True
    return False


def parse_candidate(payload: Mapping[str, Any]) -> SubmissionCandidate:
    data = {key: value for key, value in payload.items() if key not in HONEYPOT_FIELDS}
    if "tags" not in data and "tag_slugs" in data:
        data["tags"] = data.pop("tag_slugs")
    try:
        return SubmissionCandidate.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError("submission is invalid", fields=_field_errors(exc)) from exc


def _field_errors(exc: PydanticValidationError) -> dict[str, str]:
    fields: dict[str, str] = {}
    for error in exc.errors():
        loc = ".".join(str(part) for part in error.get("loc", ())) or "__root__"
        message = str(error.get("msg", "invalid value"))
        fields.setdefault(loc, message.removeprefix("Value error, "))
    return fields


async def submit(
    repository: DirectoryRepository,
    payload: Mapping[str, Any],
    actor: ActorContext,
    settings: Settings,
) -> SubmitResult:
    """Validate a raw submission payload and store it as ``pending``.

    A filled honeypot reports success without writing anything. Duplicate
    detection only annotates the result; it never blocks the insert.
    """
    if honeypot_tripped(payload):
        logger.info("submission honeypot tripped; dropping silently")
        return SubmitResult(ok=True)

    candidate = parse_candidate(payload)
    ip_hash = fingerprint(actor.ip_address, salt=settings.fingerprint_salt)
    ua_hash = fingerprint(actor.user_agent, salt=settings.fingerprint_salt)

    try:
        if ip_hash and settings.submission_rate_limit_max_ops > 0:
            since = datetime.now(timezone.utc) - timedelta(seconds=settings.submission_rate_limit_window_seconds)
            recent = await repository.count_recent_submissions(ip_hash=ip_hash, since=since)
            if recent >= settings.submission_rate_limit_max_ops:
                raise RateLimited("too many submissions, try again later")

        category_slug = candidate.category_slug
        if candidate.category_id:
            category = await repository.get_category(candidate.category_id)
            if category is None:
                raise ValidationError("submission is invalid", fields={"category_id": "unknown category"})
            category_slug = category_slug or category.slug
    except RepositoryError as exc:
        logger.exception("submission pre-checks failed")
        raise StorageError() from exc

    duplicate: DuplicateMatch | None = None
    try:
        duplicate = await find_duplicate(repository, candidate.url)
    except RepositoryError:
        logger.warning("duplicate lookup failed for submission url host=%s", host_key(candidate.url))

    new_submission = NewSubmission(
        title=candidate.title,
        url=candidate.url,
        url_host=host_key(candidate.url),
        description=candidate.description,
        logo_url=candidate.logo_url,
        pricing=candidate.pricing,
        category_id=candidate.category_id,
        category_slug=category_slug,
        tag_slugs=list(candidate.tags),
        submitter_id=actor.user_id,
        email=None if actor.is_authenticated else candidate.email,
        ip_hash=ip_hash,
        ua_hash=ua_hash,
    )
    try:
        record = await repository.insert_submission(new_submission)
    except RepositoryError as exc:
        logger.exception("failed to store submission host=%s", new_submission.url_host)
        raise StorageError() from exc

    logger.info(
        "submission stored id=%s host=%s submitter=%s duplicate=%s",
        record.id,
        record.url_host,
        record.submitter_id or "guest",
        duplicate.type if duplicate else None,
    )
    return SubmitResult(ok=True, submission_id=record.id, duplicate=duplicate)
