from __future__ import annotations

import asyncio
from typing import Any

import pytest

from directory_api.core.auth import ActorContext, ReviewerIdentity
from directory_api.core.config import Settings
from directory_api.core.errors import AlreadyProcessed, NotAuthenticated, NotAuthorized, NotFound, StorageError
from directory_api.core.urls import host_key
from directory_api.schemas.submissions import ApprovalEdits
from directory_api.services import moderation
from directory_api.services.cache import RESOURCE_LISTING_PREFIX, ListingCache
from directory_api.services.moderation import AdminAllowListAuthorizer, ModerationGate
from directory_api.services.repository import NewResource, NewSubmission, RepositoryUnavailableError
from directory_api.services.store import InMemoryRepository

ADMIN = ReviewerIdentity(user_id="admin-1", email="admin@example.com")


def _settings(**overrides: Any) -> Settings:
    return Settings(storage_backend="memory", **overrides)


def _pending(repo: InMemoryRepository, title: str = "Cool Tool", url: str = "https://cooltool.io", **fields: Any) -> str:
    record = asyncio.run(repo.insert_submission(NewSubmission(title=title, url=url, url_host=host_key(url), **fields)))
    return record.id


def _gate(repo: InMemoryRepository) -> ModerationGate:
    repo.add_admin_email("Admin@Example.com")
    return ModerationGate(AdminAllowListAuthorizer(repo))


def test_gate_admits_allow_listed_verified_admin() -> None:
    repo = InMemoryRepository()
    actor = ActorContext(user_id="admin-1", email="admin@example.com", email_verified=True)

    reviewer = asyncio.run(_gate(repo).assert_admin(actor))

    assert reviewer == ADMIN


@pytest.mark.parametrize(
    ("actor", "error"),
    [
        (ActorContext(), NotAuthenticated),
        (ActorContext(user_id="admin-1", email="admin@example.com", email_verified=False), NotAuthorized),
        (ActorContext(user_id="user-1", email="user@example.com", email_verified=True), NotAuthorized),
    ],
)
def test_gate_rejects_non_admins(actor: ActorContext, error: type[Exception]) -> None:
    repo = InMemoryRepository()
    with pytest.raises(error):
        asyncio.run(_gate(repo).assert_admin(actor))


def test_gate_maps_storage_failure() -> None:
    class BrokenRepository(InMemoryRepository):
        async def is_admin_email(self, email: str) -> bool:
            raise RepositoryUnavailableError("down")

    actor = ActorContext(user_id="admin-1", email="admin@example.com", email_verified=True)
    with pytest.raises(StorageError):
        asyncio.run(ModerationGate(AdminAllowListAuthorizer(BrokenRepository())).assert_admin(actor))


def test_approve_creates_resource_and_flips_status() -> None:
    repo = InMemoryRepository()
    submission_id = _pending(repo, tag_slugs=["ai", "writing"], category_slug="productivity")

    result = asyncio.run(moderation.approve(repo, submission_id, ADMIN, settings=_settings()))

    assert result.slug == "cool-tool"
    assert repo.submissions[submission_id].status == "approved"
    assert repo.submissions[submission_id].reviewed_by == ADMIN.user_id
    resource = repo.resources[result.resource_id]
    assert resource.submission_id == submission_id
    assert resource.url_host == "cooltool.io"
    assert resource.category_id is not None
    assert repo.categories[resource.category_id].slug == "productivity"
    assert len(repo.resource_tags) == 2


def test_approve_twice_reports_already_processed() -> None:
    repo = InMemoryRepository()
    submission_id = _pending(repo)
    asyncio.run(moderation.approve(repo, submission_id, ADMIN, settings=_settings()))

    with pytest.raises(AlreadyProcessed):
        asyncio.run(moderation.approve(repo, submission_id, ADMIN, settings=_settings()))
    assert len(repo.resources) == 1


def test_approve_unknown_submission_is_not_found() -> None:
    with pytest.raises(NotFound):
        asyncio.run(moderation.approve(InMemoryRepository(), "missing", ADMIN, settings=_settings()))


def test_concurrent_approvals_of_same_submission_create_one_resource() -> None:
    repo = InMemoryRepository()
    submission_id = _pending(repo)
    settings = _settings()

    async def race() -> list[Any]:
        return await asyncio.gather(
            moderation.approve(repo, submission_id, ADMIN, settings=settings),
            moderation.approve(repo, submission_id, ADMIN, settings=settings),
            return_exceptions=True,
        )

    outcomes = asyncio.run(race())

    successes = [item for item in outcomes if isinstance(item, moderation.ApprovalResult)]
    failures = [item for item in outcomes if isinstance(item, AlreadyProcessed)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert len(repo.resources) == 1
    assert repo.submissions[submission_id].status == "approved"


def test_concurrent_approvals_with_same_title_get_distinct_slugs() -> None:
    repo = InMemoryRepository()
    first = _pending(repo, url="https://cooltool.io")
    second = _pending(repo, url="https://cool-tool.app")
    settings = _settings()

    async def race() -> list[moderation.ApprovalResult]:
        return await asyncio.gather(
            moderation.approve(repo, first, ADMIN, settings=settings),
            moderation.approve(repo, second, ADMIN, settings=settings),
        )

    results = asyncio.run(race())

    assert sorted(result.slug for result in results) == ["cool-tool", "cool-tool-2"]
    assert len({resource.slug for resource in repo.resources.values()}) == 2


def test_approve_applies_reviewer_edits() -> None:
    repo = InMemoryRepository()
    submission_id = _pending(repo, tag_slugs=["old"])
    edits = ApprovalEdits(title="Better Name", pricing="paid", tags=["New Tag"])

    result = asyncio.run(moderation.approve(repo, submission_id, ADMIN, settings=_settings(), edits=edits))

    resource = repo.resources[result.resource_id]
    assert result.slug == "better-name"
    assert resource.title == "Better Name"
    assert resource.pricing == "paid"
    assert set(repo.tags) == {"new-tag"}


def test_approve_uses_host_when_title_has_no_slug() -> None:
    repo = InMemoryRepository()
    submission_id = _pending(repo, title="???", url="https://www.tool.jp")

    result = asyncio.run(moderation.approve(repo, submission_id, ADMIN, settings=_settings()))

    assert result.slug == "tool-jp"


def test_approve_invalidates_listing_cache() -> None:
    repo = InMemoryRepository()
    submission_id = _pending(repo)
    cache = ListingCache(ttl_seconds=60)
    cache.set(f"{RESOURCE_LISTING_PREFIX}20:0", ["stale"])
    cache.set("other:key", ["kept"])

    asyncio.run(moderation.approve(repo, submission_id, ADMIN, settings=_settings(), cache=cache))

    assert cache.get(f"{RESOURCE_LISTING_PREFIX}20:0") is None
    assert cache.get("other:key") == ["kept"]


def test_self_moderation_is_blocked_unless_enabled() -> None:
    repo = InMemoryRepository()
    submission_id = _pending(repo, submitter_id=ADMIN.user_id)

    with pytest.raises(NotAuthorized):
        asyncio.run(moderation.approve(repo, submission_id, ADMIN, settings=_settings()))
    assert repo.submissions[submission_id].status == "pending"

    result = asyncio.run(moderation.approve(repo, submission_id, ADMIN, settings=_settings(allow_self_moderation=True)))
    assert result.slug == "cool-tool"


def test_reject_then_approve_is_already_processed() -> None:
    repo = InMemoryRepository()
    submission_id = _pending(repo)

    asyncio.run(moderation.reject(repo, submission_id, ADMIN, settings=_settings(), notes="  spam  "))

    assert repo.submissions[submission_id].status == "rejected"
    assert repo.submissions[submission_id].notes == "spam"
    with pytest.raises(AlreadyProcessed):
        asyncio.run(moderation.approve(repo, submission_id, ADMIN, settings=_settings()))
    with pytest.raises(AlreadyProcessed):
        asyncio.run(moderation.reject(repo, submission_id, ADMIN, settings=_settings()))
    assert repo.resources == {}


@pytest.mark.parametrize("reject_delay", range(8))
def test_racing_approve_and_reject_never_publish_a_rejected_submission(reject_delay: int) -> None:
    repo = InMemoryRepository()
    submission_id = _pending(repo)
    settings = _settings()

    async def delayed_reject() -> None:
        for _ in range(reject_delay):
            await asyncio.sleep(0)
        await moderation.reject(repo, submission_id, ADMIN, settings=settings, notes="spam")

    async def race() -> list[Any]:
        return await asyncio.gather(
            moderation.approve(repo, submission_id, ADMIN, settings=settings),
            delayed_reject(),
            return_exceptions=True,
        )

    approved, rejected = asyncio.run(race())

    status = repo.submissions[submission_id].status
    if status == "approved":
        assert isinstance(approved, moderation.ApprovalResult)
        assert isinstance(rejected, AlreadyProcessed)
        assert [row.submission_id for row in repo.resources.values()] == [submission_id]
    else:
        assert status == "rejected"
        assert isinstance(approved, AlreadyProcessed)
        assert rejected is None
        assert repo.resources == {}


def test_resource_insert_is_refused_once_submission_is_decided() -> None:
    repo = InMemoryRepository()
    submission_id = _pending(repo)
    asyncio.run(moderation.reject(repo, submission_id, ADMIN, settings=_settings()))

    created = asyncio.run(
        repo.insert_resource(
            NewResource(
                slug="cool-tool",
                title="Cool Tool",
                url="https://cooltool.io",
                url_host="cooltool.io",
                submission_id=submission_id,
            )
        )
    )

    assert created is None
    assert repo.resources == {}


def test_interrupted_approval_is_resumed_without_second_resource() -> None:
    repo = InMemoryRepository()
    submission_id = _pending(repo)
    orphan = asyncio.run(
        repo.insert_resource(
            NewResource(
                slug="cool-tool",
                title="Cool Tool",
                url="https://cooltool.io",
                url_host="cooltool.io",
                submission_id=submission_id,
            )
        )
    )

    with pytest.raises(AlreadyProcessed):
        asyncio.run(moderation.reject(repo, submission_id, ADMIN, settings=_settings()))

    result = asyncio.run(moderation.approve(repo, submission_id, ADMIN, settings=_settings()))

    assert result.resource_id == orphan.id
    assert len(repo.resources) == 1
    assert repo.submissions[submission_id].status == "approved"


def test_reconcile_finishes_orphaned_approvals() -> None:
    repo = InMemoryRepository()
    orphaned = _pending(repo)
    untouched = _pending(repo, title="Other", url="https://other.io")
    asyncio.run(
        repo.insert_resource(
            NewResource(
                slug="cool-tool",
                title="Cool Tool",
                url="https://cooltool.io",
                url_host="cooltool.io",
                submission_id=orphaned,
            )
        )
    )

    repaired = asyncio.run(moderation.reconcile_orphaned_approvals(repo, reviewer_id=ADMIN.user_id, limit=10))

    assert repaired == 1
    assert repo.submissions[orphaned].status == "approved"
    assert repo.submissions[untouched].status == "pending"
    assert asyncio.run(moderation.reconcile_orphaned_approvals(repo, reviewer_id=ADMIN.user_id, limit=10)) == 0


def test_comment_moderation() -> None:
    repo = InMemoryRepository()
    comment = repo.add_comment(resource_id="resource-1", user_id="user-2", body="rude")
    asyncio.run(repo.insert_relation(kind="flag", user_id="user-3", target_id=comment.id, reason="abuse"))
    asyncio.run(repo.insert_relation(kind="flag", user_id="user-4", target_id=comment.id))

    assert asyncio.run(moderation.resolve_comment_flags(repo, comment.id, ADMIN)) == 2
    assert asyncio.run(moderation.resolve_comment_flags(repo, comment.id, ADMIN)) == 0

    asyncio.run(moderation.soft_delete_comment(repo, comment.id, ADMIN))
    assert repo.comments[comment.id].is_deleted is True

    with pytest.raises(NotFound):
        asyncio.run(moderation.soft_delete_comment(repo, "missing", ADMIN))


def test_list_queue_filters_by_status() -> None:
    repo = InMemoryRepository()
    first = _pending(repo)
    _pending(repo, title="Second", url="https://second.io")
    asyncio.run(moderation.reject(repo, first, ADMIN, settings=_settings()))

    pending = asyncio.run(moderation.list_queue(repo, ADMIN, status="pending", limit=10, offset=0))
    everything = asyncio.run(moderation.list_queue(repo, ADMIN, status=None, limit=10, offset=0))

    assert [row.title for row in pending] == ["Second"]
    assert len(everything) == 2
