from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from uuid import uuid4

from directory_api.services.repository import (
    RELATION_TABLES,
    CategoryRecord,
    CommentRecord,
    NewResource,
    NewSubmission,
    RepositoryConflictError,
    RepositoryUniqueViolationError,
    ResourceRecord,
    SubmissionRecord,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRepository:
    """Process-local storage with the same primitives and uniqueness rules as the Postgres schema.

    Every primitive yields to the event loop before touching state, so concurrent
    callers interleave between steps the way separate database round-trips do.
    """

    def __init__(self) -> None:
        self.admin_emails: set[str] = set()
        self.submissions: dict[str, SubmissionRecord] = {}
        self.resources: dict[str, ResourceRecord] = {}
        self.categories: dict[str, CategoryRecord] = {}
        self.tags: dict[str, str] = {}
        self.resource_tags: set[tuple[str, str]] = set()
        self.comments: dict[str, CommentRecord] = {}
        self.relations: dict[str, dict[tuple[str, str], dict[str, object]]] = {kind: {} for kind in RELATION_TABLES}
        self.interaction_events: list[dict[str, object]] = []

    async def close(self) -> None:
        return None

    async def ping(self) -> None:
        await asyncio.sleep(0)

    async def is_admin_email(self, email: str) -> bool:
        await asyncio.sleep(0)
        return email.strip().lower() in self.admin_emails

    def add_admin_email(self, email: str) -> None:
        self.admin_emails.add(email.strip().lower())

    def add_category(self, *, slug: str, name: str | None = None) -> CategoryRecord:
        category = CategoryRecord(id=str(uuid4()), slug=slug, name=name or slug)
        self.categories[category.id] = category
        return category

    def add_comment(self, *, resource_id: str, user_id: str | None, body: str) -> CommentRecord:
        comment = CommentRecord(
            id=str(uuid4()),
            resource_id=resource_id,
            user_id=user_id,
            body=body,
            is_deleted=False,
            created_at=_now(),
        )
        self.comments[comment.id] = comment
        return comment

    async def insert_submission(self, submission: NewSubmission) -> SubmissionRecord:
        await asyncio.sleep(0)
        record = SubmissionRecord(
            id=str(uuid4()),
            status="pending",
            title=submission.title,
            url=submission.url,
            url_host=submission.url_host,
            description=submission.description,
            logo_url=submission.logo_url,
            pricing=submission.pricing,
            category_id=submission.category_id,
            category_slug=submission.category_slug,
            tag_slugs=list(submission.tag_slugs),
            submitter_id=submission.submitter_id,
            email=submission.email,
            notes=None,
            reviewed_by=None,
            reviewed_at=None,
            ip_hash=submission.ip_hash,
            ua_hash=submission.ua_hash,
            created_at=_now(),
        )
        self.submissions[record.id] = record
        return replace(record)

    async def count_recent_submissions(self, *, ip_hash: str, since: datetime) -> int:
        await asyncio.sleep(0)
        return sum(1 for row in self.submissions.values() if row.ip_hash == ip_hash and row.created_at >= since)

    async def get_submission(self, submission_id: str) -> SubmissionRecord | None:
        await asyncio.sleep(0)
        record = self.submissions.get(submission_id)
        return replace(record) if record else None

    async def list_submissions(self, *, status: str | None, limit: int, offset: int) -> list[SubmissionRecord]:
        await asyncio.sleep(0)
        rows = sorted(self.submissions.values(), key=lambda row: row.created_at)
        if status:
            rows = [row for row in rows if row.status == status]
        return [replace(row) for row in rows[offset : offset + limit]]

    async def transition_submission(
        self,
        *,
        submission_id: str,
        from_status: str,
        to_status: str,
        reviewer_id: str | None,
        notes: str | None = None,
        require_no_resource: bool = False,
    ) -> bool:
        await asyncio.sleep(0)
        record = self.submissions.get(submission_id)
        if record is None or record.status != from_status:
            return False
        if require_no_resource and any(row.submission_id == submission_id for row in self.resources.values()):
            return False
        record.status = to_status
        record.reviewed_by = reviewer_id
        record.reviewed_at = _now()
        if notes is not None:
            record.notes = notes
        return True

    async def find_resources_by_host(self, host: str, *, limit: int) -> list[ResourceRecord]:
        await asyncio.sleep(0)
        rows = [row for row in self.resources.values() if row.is_approved and row.url_host == host]
        rows.sort(key=lambda row: row.created_at)
        return [replace(row) for row in rows[:limit]]

    async def find_pending_submissions_by_host(self, host: str, *, limit: int) -> list[SubmissionRecord]:
        await asyncio.sleep(0)
        rows = [row for row in self.submissions.values() if row.status == "pending" and row.url_host == host]
        rows.sort(key=lambda row: row.created_at)
        return [replace(row) for row in rows[:limit]]

    async def get_category(self, category_id: str) -> CategoryRecord | None:
        await asyncio.sleep(0)
        return self.categories.get(category_id)

    async def upsert_category(self, *, slug: str, name: str) -> str:
        await asyncio.sleep(0)
        for category in self.categories.values():
            if category.slug == slug:
                return category.id
        return self.add_category(slug=slug, name=name).id

    async def upsert_tags(self, slugs: list[str]) -> dict[str, str]:
        await asyncio.sleep(0)
        resolved: dict[str, str] = {}
        for slug in slugs:
            resolved[slug] = self.tags.setdefault(slug, str(uuid4()))
        return resolved

    async def resource_slug_exists(self, slug: str) -> bool:
        await asyncio.sleep(0)
        return any(row.slug == slug for row in self.resources.values())

    async def get_resource(self, resource_id: str) -> ResourceRecord | None:
        await asyncio.sleep(0)
        record = self.resources.get(resource_id)
        return replace(record) if record else None

    async def get_resource_by_submission(self, submission_id: str) -> ResourceRecord | None:
        await asyncio.sleep(0)
        for row in self.resources.values():
            if row.submission_id == submission_id:
                return replace(row)
        return None

    async def insert_resource(self, resource: NewResource) -> ResourceRecord | None:
        await asyncio.sleep(0)
        submission = self.submissions.get(resource.submission_id or "")
        if submission is not None and submission.status != "pending":
            return None
        for row in self.resources.values():
            if row.slug == resource.slug:
                raise RepositoryUniqueViolationError("slug")
            if resource.submission_id and row.submission_id == resource.submission_id:
                raise RepositoryUniqueViolationError("submission")
        now = _now()
        record = ResourceRecord(
            id=str(uuid4()),
            slug=resource.slug,
            title=resource.title,
            description=resource.description,
            url=resource.url,
            url_host=resource.url_host,
            logo_url=resource.logo_url,
            pricing=resource.pricing,
            category_id=resource.category_id,
            submission_id=resource.submission_id,
            is_approved=True,
            created_at=now,
            updated_at=now,
        )
        self.resources[record.id] = record
        return replace(record)

    async def link_resource_tags(self, *, resource_id: str, tag_ids: list[str]) -> None:
        await asyncio.sleep(0)
        for tag_id in tag_ids:
            self.resource_tags.add((resource_id, tag_id))

    async def list_approved_resources(self, *, limit: int, offset: int) -> list[ResourceRecord]:
        await asyncio.sleep(0)
        rows = sorted(
            (row for row in self.resources.values() if row.is_approved),
            key=lambda row: row.created_at,
            reverse=True,
        )
        return [replace(row) for row in rows[offset : offset + limit]]

    async def list_orphaned_approvals(self, *, limit: int) -> list[str]:
        await asyncio.sleep(0)
        orphaned: list[str] = []
        for row in self.resources.values():
            submission = self.submissions.get(row.submission_id or "")
            if submission is not None and submission.status == "pending":
                orphaned.append(submission.id)
        return orphaned[:limit]

    async def get_comment(self, comment_id: str) -> CommentRecord | None:
        await asyncio.sleep(0)
        record = self.comments.get(comment_id)
        return replace(record) if record else None

    async def soft_delete_comment(self, comment_id: str) -> bool:
        await asyncio.sleep(0)
        record = self.comments.get(comment_id)
        if record is None:
            return False
        record.is_deleted = True
        record.body = "[deleted]"
        return True

    async def resolve_comment_flags(self, comment_id: str) -> int:
        await asyncio.sleep(0)
        resolved = 0
        for (_, target_id), row in self.relations["flag"].items():
            if target_id == comment_id and not row.get("is_resolved"):
                row["is_resolved"] = True
                resolved += 1
        return resolved

    async def relation_exists(self, *, kind: str, user_id: str, target_id: str) -> bool:
        await asyncio.sleep(0)
        return (user_id, target_id) in self._relations(kind)

    async def insert_relation(self, *, kind: str, user_id: str, target_id: str, reason: str | None = None) -> None:
        await asyncio.sleep(0)
        relations = self._relations(kind)
        if (user_id, target_id) in relations:
            raise RepositoryUniqueViolationError(kind)
        relations[(user_id, target_id)] = {"reason": reason, "is_resolved": False, "created_at": _now()}

    async def delete_relation(self, *, kind: str, user_id: str, target_id: str) -> bool:
        await asyncio.sleep(0)
        return self._relations(kind).pop((user_id, target_id), None) is not None

    async def record_interaction_event(self, *, kind: str, user_id: str, target_id: str, active: bool) -> None:
        await asyncio.sleep(0)
        self.interaction_events.append(
            {"user_id": user_id, "kind": kind, "target_id": target_id, "active": active, "created_at": _now()}
        )

    async def count_recent_interaction_events(self, *, user_id: str, since: datetime) -> int:
        await asyncio.sleep(0)
        return sum(
            1
            for event in self.interaction_events
            if event["user_id"] == user_id and event["created_at"] >= since  # type: ignore[operator]
        )

    async def count_votes(self, resource_id: str) -> int:
        await asyncio.sleep(0)
        return sum(1 for (_, target_id) in self.relations["vote"] if target_id == resource_id)

    def _relations(self, kind: str) -> dict[tuple[str, str], dict[str, object]]:
        try:
            return self.relations[kind]
        except KeyError as exc:
            raise RepositoryConflictError(f"unknown relation kind: {kind}") from exc
