"""Advisory duplicate detection for submitted URLs.

Matching is by host: ``http://www.Example.com/a`` and ``https://example.com/b``
share the key ``example.com``. Published resources take precedence over pending
submissions, and within a host an exact URL match is preferred over a
same-host match.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from directory_api.core.errors import DuplicateConflict
from directory_api.core.urls import comparable_url, host_key, normalize_url
from directory_api.services.repository import DirectoryRepository

DuplicateType = Literal["resource", "submission"]
HOST_MATCH_LIMIT = 20


@dataclass(slots=True)
class DuplicateMatch:
    type: DuplicateType
    id: str
    title: str
    url: str
    slug: str | None = None
    exact: bool = False

    def as_conflict(self) -> DuplicateConflict:
        if self.type == "resource":
            return DuplicateConflict(f"already listed as {self.title!r}")
        return DuplicateConflict(f"already awaiting review as {self.title!r}")


def resolve_host(raw_url: str | None) -> tuple[str, str] | None:
    """Return ``(normalized_url, host_key)`` or ``None`` for empty or unparseable input."""
    if not raw_url or not raw_url.strip():
        return None
    try:
        normalized = normalize_url(raw_url)
    except ValueError:
        return None
    host = host_key(normalized)
    if not host:
        return None
    return normalized, host


async def find_duplicate(repository: DirectoryRepository, raw_url: str | None) -> DuplicateMatch | None:
    resolved = resolve_host(raw_url)
    if resolved is None:
        return None
    normalized, host = resolved
    wanted = comparable_url(normalized)

    resources = await repository.find_resources_by_host(host, limit=HOST_MATCH_LIMIT)
    if resources:
        exact = next((row for row in resources if comparable_url(row.url) == wanted), None)
        match = exact or resources[0]
        return DuplicateMatch(
            type="resource",
            id=match.id,
            title=match.title,
            url=match.url,
            slug=match.slug,
            exact=exact is not None,
        )

    submissions = await repository.find_pending_submissions_by_host(host, limit=HOST_MATCH_LIMIT)
    if submissions:
        exact_submission = next((row for row in submissions if comparable_url(row.url) == wanted), None)
        pending = exact_submission or submissions[0]
        return DuplicateMatch(
            type="submission",
            id=pending.id,
            title=pending.title,
            url=pending.url,
            exact=exact_submission is not None,
        )

    return None
