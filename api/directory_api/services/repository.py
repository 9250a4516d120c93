from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from directory_api.core.config import get_settings


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryUniqueViolationError(RepositoryConflictError):
    """Raised when an insert collides with a unique key; ``key`` names which one."""

    def __init__(self, key: str) -> None:
        super().__init__(f"unique key conflict: {key}")
        self.key = key


@dataclass(slots=True)
class SubmissionRecord:
    id: str
    status: str
    title: str
    url: str
    url_host: str
    description: str | None
    logo_url: str | None
    pricing: str
    category_id: str | None
    category_slug: str | None
    tag_slugs: list[str]
    submitter_id: str | None
    email: str | None
    notes: str | None
    reviewed_by: str | None
    reviewed_at: datetime | None
    ip_hash: str | None
    ua_hash: str | None
    created_at: datetime


@dataclass(slots=True)
class ResourceRecord:
    id: str
    slug: str
    title: str
    description: str | None
    url: str
    url_host: str
    logo_url: str | None
    pricing: str
    category_id: str | None
    submission_id: str | None
    is_approved: bool
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class CategoryRecord:
    id: str
    slug: str
    name: str


@dataclass(slots=True)
class CommentRecord:
    id: str
    resource_id: str
    user_id: str | None
    body: str
    is_deleted: bool
    created_at: datetime


@dataclass(slots=True)
class NewSubmission:
    title: str
    url: str
    url_host: str
    description: str | None = None
    logo_url: str | None = None
    pricing: str = "unknown"
    category_id: str | None = None
    category_slug: str | None = None
    tag_slugs: list[str] = field(default_factory=list)
    submitter_id: str | None = None
    email: str | None = None
    ip_hash: str | None = None
    ua_hash: str | None = None


@dataclass(slots=True)
class NewResource:
    slug: str
    title: str
    url: str
    url_host: str
    description: str | None = None
    logo_url: str | None = None
    pricing: str = "unknown"
    category_id: str | None = None
    submission_id: str | None = None


# kind -> (table, target column)
RELATION_TABLES: dict[str, tuple[str, str]] = {
    "vote": ("votes", "resource_id"),
    "save": ("favorites", "resource_id"),
    "flag": ("comment_flags", "comment_id"),
}


class DirectoryRepository(Protocol):
    """Storage primitives the moderation core is written against."""

    async def close(self) -> None: ...

    async def ping(self) -> None: ...

    async def is_admin_email(self, email: str) -> bool: ...

    async def insert_submission(self, submission: NewSubmission) -> SubmissionRecord: ...

    async def count_recent_submissions(self, *, ip_hash: str, since: datetime) -> int: ...

    async def get_submission(self, submission_id: str) -> SubmissionRecord | None: ...

    async def list_submissions(self, *, status: str | None, limit: int, offset: int) -> list[SubmissionRecord]: ...

    async def transition_submission(
        self,
        *,
        submission_id: str,
        from_status: str,
        to_status: str,
        reviewer_id: str | None,
        notes: str | None = None,
        require_no_resource: bool = False,
    ) -> bool: ...

    async def find_resources_by_host(self, host: str, *, limit: int) -> list[ResourceRecord]: ...

    async def find_pending_submissions_by_host(self, host: str, *, limit: int) -> list[SubmissionRecord]: ...

    async def get_category(self, category_id: str) -> CategoryRecord | None: ...

    async def upsert_category(self, *, slug: str, name: str) -> str: ...

    async def upsert_tags(self, slugs: list[str]) -> dict[str, str]: ...

    async def resource_slug_exists(self, slug: str) -> bool: ...

    async def get_resource(self, resource_id: str) -> ResourceRecord | None: ...

    async def get_resource_by_submission(self, submission_id: str) -> ResourceRecord | None: ...

    async def insert_resource(self, resource: NewResource) -> ResourceRecord | None: ...

    async def link_resource_tags(self, *, resource_id: str, tag_ids: list[str]) -> None: ...

    async def list_approved_resources(self, *, limit: int, offset: int) -> list[ResourceRecord]: ...

    async def list_orphaned_approvals(self, *, limit: int) -> list[str]: ...

    async def get_comment(self, comment_id: str) -> CommentRecord | None: ...

    async def soft_delete_comment(self, comment_id: str) -> bool: ...

    async def resolve_comment_flags(self, comment_id: str) -> int: ...

    async def relation_exists(self, *, kind: str, user_id: str, target_id: str) -> bool: ...

    async def insert_relation(self, *, kind: str, user_id: str, target_id: str, reason: str | None = None) -> None: ...

    async def delete_relation(self, *, kind: str, user_id: str, target_id: str) -> bool: ...

    async def record_interaction_event(self, *, kind: str, user_id: str, target_id: str, active: bool) -> None: ...

    async def count_recent_interaction_events(self, *, user_id: str, since: datetime) -> int: ...

    async def count_votes(self, resource_id: str) -> int: ...


_SUBMISSION_COLUMNS = """
  id::text as id,
  status::text as status,
  title,
  url,
  url_host,
  description,
  logo_url,
  pricing::text as pricing,
  category_id::text as category_id,
  category_slug,
  tag_slugs,
  submitter_id::text as submitter_id,
  email,
  notes,
  reviewed_by::text as reviewed_by,
  reviewed_at,
  ip_hash,
  ua_hash,
  created_at
"""

_RESOURCE_COLUMNS = """
  id::text as id,
  slug,
  title,
  description,
  url,
  url_host,
  logo_url,
  pricing::text as pricing,
  category_id::text as category_id,
  submission_id::text as submission_id,
  is_approved,
  created_at,
  updated_at
"""


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self) -> None:
        async with self._connection() as conn:
            await conn.fetchval("select 1")

    async def is_admin_email(self, email: str) -> bool:
        async with self._connection() as conn:
            found = await conn.fetchval(
                "select 1 from admin_emails where lower(email) = lower($1) limit 1",
                email.strip(),
            )
        return bool(found)

    async def insert_submission(self, submission: NewSubmission) -> SubmissionRecord:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"""
                insert into submissions (
                  title,
                  url,
                  url_host,
                  description,
                  logo_url,
                  pricing,
                  category_id,
                  category_slug,
                  tag_slugs,
                  submitter_id,
                  email,
                  status,
                  ip_hash,
                  ua_hash
                )
                values ($1, $2, $3, $4, $5, $6::pricing_tier, $7::uuid, $8, $9, $10::uuid, $11, 'pending', $12, $13)
                returning {_SUBMISSION_COLUMNS}
                """,
                submission.title,
                submission.url,
                submission.url_host,
                submission.description,
                submission.logo_url,
                submission.pricing,
                _as_uuid(submission.category_id),
                submission.category_slug,
                submission.tag_slugs or None,
                _as_uuid(submission.submitter_id),
                submission.email,
                submission.ip_hash,
                submission.ua_hash,
            )
        return self._submission_row_to_record(row)

    async def count_recent_submissions(self, *, ip_hash: str, since: datetime) -> int:
        async with self._connection() as conn:
            count = await conn.fetchval(
                "select count(*) from submissions where ip_hash = $1 and created_at >= $2",
                ip_hash,
                since,
            )
        return int(count or 0)

    async def get_submission(self, submission_id: str) -> SubmissionRecord | None:
        key = _as_uuid(submission_id)
        if key is None:
            return None
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"select {_SUBMISSION_COLUMNS} from submissions where id = $1::uuid",
                key,
            )
        return self._submission_row_to_record(row) if row else None

    async def list_submissions(self, *, status: str | None, limit: int, offset: int) -> list[SubmissionRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                select {_SUBMISSION_COLUMNS}
                from submissions
                where ($1::text is null or status::text = $1)
                order by created_at asc, id asc
                limit $2
                offset $3
                """,
                status,
                limit,
                offset,
            )
        return [self._submission_row_to_record(row) for row in rows]

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
        key = _as_uuid(submission_id)
        if key is None:
            return False
        async with self._connection() as conn:
            async with conn.transaction():
                # Row lock serializes against insert_resource, which takes the same lock.
                await conn.execute("select 1 from submissions where id = $1::uuid for update", key)
                updated = await conn.fetchval(
                    """
                    update submissions
                    set
                      status = $3::submission_status,
                      reviewed_by = $4::uuid,
                      reviewed_at = now(),
                      notes = coalesce($5, notes)
                    where id = $1::uuid
                      and status = $2::submission_status
                      and (
                        not $6::boolean
                        or not exists (select 1 from resources r where r.submission_id = $1::uuid)
                      )
                    returning id::text
                    """,
                    key,
                    from_status,
                    to_status,
                    _as_uuid(reviewer_id),
                    notes,
                    require_no_resource,
                )
        return updated is not None

    async def find_resources_by_host(self, host: str, *, limit: int) -> list[ResourceRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                select {_RESOURCE_COLUMNS}
                from resources
                where is_approved = true
                  and url_host = $1
                order by created_at asc
                limit $2
                """,
                host,
                limit,
            )
        return [self._resource_row_to_record(row) for row in rows]

    async def find_pending_submissions_by_host(self, host: str, *, limit: int) -> list[SubmissionRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                select {_SUBMISSION_COLUMNS}
                from submissions
                where status = 'pending'
                  and url_host = $1
                order by created_at asc
                limit $2
                """,
                host,
                limit,
            )
        return [self._submission_row_to_record(row) for row in rows]

    async def get_category(self, category_id: str) -> CategoryRecord | None:
        key = _as_uuid(category_id)
        if key is None:
            return None
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "select id::text as id, slug, name from categories where id = $1::uuid",
                key,
            )
        return CategoryRecord(id=row["id"], slug=row["slug"], name=row["name"]) if row else None

    async def upsert_category(self, *, slug: str, name: str) -> str:
        # The no-op update makes `returning` yield the existing row on conflict.
        async with self._connection() as conn:
            category_id = await conn.fetchval(
                """
                insert into categories (slug, name)
                values ($1, $2)
                on conflict (slug) do update set slug = excluded.slug
                returning id::text
                """,
                slug,
                name,
            )
        return str(category_id)

    async def upsert_tags(self, slugs: list[str]) -> dict[str, str]:
        if not slugs:
            return {}
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                insert into tags (slug, name)
                select s, s from unnest($1::text[]) as s
                on conflict (slug) do update set slug = excluded.slug
                returning id::text as id, slug
                """,
                slugs,
            )
        return {row["slug"]: row["id"] for row in rows}

    async def resource_slug_exists(self, slug: str) -> bool:
        async with self._connection() as conn:
            found = await conn.fetchval("select 1 from resources where slug = $1 limit 1", slug)
        return bool(found)

    async def get_resource(self, resource_id: str) -> ResourceRecord | None:
        key = _as_uuid(resource_id)
        if key is None:
            return None
        async with self._connection() as conn:
            row = await conn.fetchrow(f"select {_RESOURCE_COLUMNS} from resources where id = $1::uuid", key)
        return self._resource_row_to_record(row) if row else None

    async def get_resource_by_submission(self, submission_id: str) -> ResourceRecord | None:
        key = _as_uuid(submission_id)
        if key is None:
            return None
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"select {_RESOURCE_COLUMNS} from resources where submission_id = $1::uuid",
                key,
            )
        return self._resource_row_to_record(row) if row else None

    async def insert_resource(self, resource: NewResource) -> ResourceRecord | None:
        submission_key = _as_uuid(resource.submission_id)
        async with self._connection() as conn:
            async with conn.transaction():
                if submission_key is not None:
                    status = await conn.fetchval(
                        "select status::text from submissions where id = $1::uuid for update",
                        submission_key,
                    )
                    if status is not None and status != "pending":
                        return None
                row = await conn.fetchrow(
                    f"""
                    insert into resources (
                      slug,
                      title,
                      description,
                      url,
                      url_host,
                      logo_url,
                      pricing,
                      category_id,
                      submission_id,
                      is_approved
                    )
                    values ($1, $2, $3, $4, $5, $6, $7::pricing_tier, $8::uuid, $9::uuid, true)
                    returning {_RESOURCE_COLUMNS}
                    """,
                    resource.slug,
                    resource.title,
                    resource.description,
                    resource.url,
                    resource.url_host,
                    resource.logo_url,
                    resource.pricing,
                    _as_uuid(resource.category_id),
                    submission_key,
                )
        return self._resource_row_to_record(row)

    async def link_resource_tags(self, *, resource_id: str, tag_ids: list[str]) -> None:
        if not tag_ids:
            return
        async with self._connection() as conn:
            await conn.execute(
                """
                insert into resource_tags (resource_id, tag_id)
                select $1::uuid, t from unnest($2::uuid[]) as t
                on conflict do nothing
                """,
                resource_id,
                tag_ids,
            )

    async def list_approved_resources(self, *, limit: int, offset: int) -> list[ResourceRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                select {_RESOURCE_COLUMNS}
                from resources
                where is_approved = true
                order by created_at desc, id desc
                limit $1
                offset $2
                """,
                limit,
                offset,
            )
        return [self._resource_row_to_record(row) for row in rows]

    async def list_orphaned_approvals(self, *, limit: int) -> list[str]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                select s.id::text as id
                from submissions s
                join resources r on r.submission_id = s.id
                where s.status = 'pending'
                order by s.created_at asc
                limit $1
                """,
                limit,
            )
        return [row["id"] for row in rows]

    async def get_comment(self, comment_id: str) -> CommentRecord | None:
        key = _as_uuid(comment_id)
        if key is None:
            return None
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                select
                  id::text as id,
                  resource_id::text as resource_id,
                  user_id::text as user_id,
                  body,
                  is_deleted,
                  created_at
                from comments
                where id = $1::uuid
                """,
                key,
            )
        if not row:
            return None
        return CommentRecord(
            id=row["id"],
            resource_id=row["resource_id"],
            user_id=row["user_id"],
            body=row["body"],
            is_deleted=bool(row["is_deleted"]),
            created_at=row["created_at"],
        )

    async def soft_delete_comment(self, comment_id: str) -> bool:
        key = _as_uuid(comment_id)
        if key is None:
            return False
        async with self._connection() as conn:
            updated = await conn.fetchval(
                """
                update comments
                set is_deleted = true, body = '[deleted]'
                where id = $1::uuid
                returning id::text
                """,
                key,
            )
        return updated is not None

    async def resolve_comment_flags(self, comment_id: str) -> int:
        key = _as_uuid(comment_id)
        if key is None:
            return 0
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                update comment_flags
                set is_resolved = true
                where comment_id = $1::uuid
                  and is_resolved = false
                returning user_id
                """,
                key,
            )
        return len(rows)

    async def relation_exists(self, *, kind: str, user_id: str, target_id: str) -> bool:
        table, column = _relation_table(kind)
        async with self._connection() as conn:
            found = await conn.fetchval(
                f"select 1 from {table} where user_id = $1::uuid and {column} = $2::uuid limit 1",
                user_id,
                target_id,
            )
        return bool(found)

    async def insert_relation(self, *, kind: str, user_id: str, target_id: str, reason: str | None = None) -> None:
        table, column = _relation_table(kind)
        async with self._connection() as conn:
            if kind == "flag":
                await conn.execute(
                    f"insert into {table} (user_id, {column}, reason) values ($1::uuid, $2::uuid, $3)",
                    user_id,
                    target_id,
                    reason,
                )
            else:
                await conn.execute(
                    f"insert into {table} (user_id, {column}) values ($1::uuid, $2::uuid)",
                    user_id,
                    target_id,
                )

    async def delete_relation(self, *, kind: str, user_id: str, target_id: str) -> bool:
        table, column = _relation_table(kind)
        async with self._connection() as conn:
            deleted = await conn.fetch(
                f"delete from {table} where user_id = $1::uuid and {column} = $2::uuid returning user_id",
                user_id,
                target_id,
            )
        return bool(deleted)

    async def record_interaction_event(self, *, kind: str, user_id: str, target_id: str, active: bool) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                insert into interaction_events (user_id, kind, target_id, active)
                values ($1::uuid, $2, $3::uuid, $4)
                """,
                user_id,
                kind,
                target_id,
                active,
            )

    async def count_recent_interaction_events(self, *, user_id: str, since: datetime) -> int:
        async with self._connection() as conn:
            count = await conn.fetchval(
                "select count(*) from interaction_events where user_id = $1::uuid and created_at >= $2",
                user_id,
                since,
            )
        return int(count or 0)

    async def count_votes(self, resource_id: str) -> int:
        async with self._connection() as conn:
            count = await conn.fetchval("select count(*) from votes where resource_id = $1::uuid", resource_id)
        return int(count or 0)

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                yield conn
        except RepositoryError:
            raise
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryUniqueViolationError(_unique_key(exc)) from exc
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryConflictError("invalid identifier or value") from exc
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise RepositoryUnavailableError("database operation failed") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("RD_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _submission_row_to_record(row: asyncpg.Record) -> SubmissionRecord:
        return SubmissionRecord(
            id=row["id"],
            status=row["status"],
            title=row["title"],
            url=row["url"],
            url_host=row["url_host"],
            description=row["description"],
            logo_url=row["logo_url"],
            pricing=row["pricing"] or "unknown",
            category_id=row["category_id"],
            category_slug=row["category_slug"],
            tag_slugs=list(row["tag_slugs"] or []),
            submitter_id=row["submitter_id"],
            email=row["email"],
            notes=row["notes"],
            reviewed_by=row["reviewed_by"],
            reviewed_at=row["reviewed_at"],
            ip_hash=row["ip_hash"],
            ua_hash=row["ua_hash"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _resource_row_to_record(row: asyncpg.Record) -> ResourceRecord:
        return ResourceRecord(
            id=row["id"],
            slug=row["slug"],
            title=row["title"],
            description=row["description"],
            url=row["url"],
            url_host=row["url_host"],
            logo_url=row["logo_url"],
            pricing=row["pricing"] or "unknown",
            category_id=row["category_id"],
            submission_id=row["submission_id"],
            is_approved=bool(row["is_approved"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def _as_uuid(value: Any) -> str | None:
    if value is None:
        return None
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        return None


def _relation_table(kind: str) -> tuple[str, str]:
    try:
        return RELATION_TABLES[kind]
    except KeyError as exc:
        raise RepositoryConflictError(f"unknown relation kind: {kind}") from exc


def _unique_key(exc: pg_exc.UniqueViolationError) -> str:
    constraint = getattr(exc, "constraint_name", None) or ""
    if "submission" in constraint:
        return "submission"
    if "slug" in constraint:
        return "slug"
    return constraint or "unknown"


@lru_cache
def get_repository() -> DirectoryRepository:
    settings = get_settings()
    if settings.storage_backend == "memory":
        from directory_api.services.store import InMemoryRepository

        return InMemoryRepository()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
