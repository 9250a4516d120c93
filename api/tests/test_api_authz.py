from __future__ import annotations

import asyncio
import hashlib
import os
from typing import Any

import pytest
from fastapi.testclient import TestClient

import directory_api.core.security as security
from directory_api.core.config import get_settings
from directory_api.core.urls import host_key
from directory_api.main import app
from directory_api.services.cache import get_listing_cache
from directory_api.services.repository import NewResource, NewSubmission, get_repository
from directory_api.services.store import InMemoryRepository

ADMIN_USER = {
    "id": "11111111-1111-1111-1111-111111111111",
    "email": "admin@example.com",
    "email_confirmed_at": "2024-01-01T00:00:00Z",
}
REGULAR_USER = {
    "id": "33333333-3333-3333-3333-333333333333",
    "email": "user@example.com",
    "email_confirmed_at": "2024-01-01T00:00:00Z",
}
UNVERIFIED_USER = {
    "id": "44444444-4444-4444-4444-444444444444",
    "email": "pending@example.com",
    "email_confirmed_at": None,
}
AUTH = {"Authorization": "Bearer token"}


@pytest.fixture
def repo() -> InMemoryRepository:
    repository = InMemoryRepository()
    repository.add_admin_email(ADMIN_USER["email"])
    return repository


@pytest.fixture
def authz_client(repo: InMemoryRepository) -> TestClient:
    os.environ["RD_SUPABASE_URL"] = "https://example.supabase.co"
    os.environ["RD_SUPABASE_ANON_KEY"] = "anon-key"
    get_settings.cache_clear()
    get_listing_cache.cache_clear()

    app.dependency_overrides[get_repository] = lambda: repo

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    os.environ.pop("RD_SUPABASE_URL", None)
    os.environ.pop("RD_SUPABASE_ANON_KEY", None)
    get_settings.cache_clear()
    get_listing_cache.cache_clear()


def _mock_supabase_user(monkeypatch: pytest.MonkeyPatch, user: dict[str, Any]) -> None:
    async def _fake_fetch(**_: Any) -> dict[str, Any]:
        return user

    monkeypatch.setattr(security, "_fetch_supabase_user", _fake_fetch)


def _seed_pending(repo: InMemoryRepository, title: str = "Cool Tool", url: str = "https://cooltool.io") -> str:
    record = asyncio.run(repo.insert_submission(NewSubmission(title=title, url=url, url_host=host_key(url))))
    return record.id


def test_guest_submission_is_accepted(authz_client: TestClient, repo: InMemoryRepository) -> None:
    response = authz_client.post(
        "/submissions",
        json={"title": "Cool Tool", "url": "cooltool.io", "tag_slugs": ["AI"], "email": "me@example.com"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["ok"] is True
    assert body["duplicate"] is None
    assert repo.submissions[body["submission_id"]].tag_slugs == ["ai"]


def test_duplicate_submission_is_stored_with_warning(authz_client: TestClient, repo: InMemoryRepository) -> None:
    existing_id = _seed_pending(repo)

    response = authz_client.post("/submissions", json={"title": "Cool Tool Clone", "url": "www.cooltool.io/x"})

    assert response.status_code == 201
    body = response.json()
    assert body["duplicate"]["id"] == existing_id
    assert body["warning"]["kind"] == "duplicate_conflict"
    assert len(repo.submissions) == 2


def test_invalid_submission_returns_field_errors(authz_client: TestClient) -> None:
    response = authz_client.post("/submissions", json={"title": "x", "url": "ftp://nope"})

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["kind"] == "validation_error"
    assert set(detail["fields"]) == {"title", "url"}


def test_honeypot_submission_looks_successful(authz_client: TestClient, repo: InMemoryRepository) -> None:
    response = authz_client.post("/submissions", json={"title": "Spam", "url": "spam.io", "website": "x"})

    assert response.status_code == 201
    assert response.json() == {"ok": True, "submission_id": None, "duplicate": None, "warning": None}
    assert repo.submissions == {}


def test_duplicate_check_endpoint(authz_client: TestClient, repo: InMemoryRepository) -> None:
    submission_id = _seed_pending(repo)

    hit = authz_client.get("/submissions/check", params={"url": "www.cooltool.io/about"})
    miss = authz_client.get("/submissions/check", params={"url": "elsewhere.io"})
    empty = authz_client.get("/submissions/check")

    assert hit.status_code == 200
    assert hit.json()["duplicate"]["id"] == submission_id
    assert hit.json()["duplicate"]["type"] == "submission"
    assert miss.json() == {"ok": True, "duplicate": None}
    assert empty.json() == {"ok": True, "duplicate": None}


def test_moderation_queue_requires_session(authz_client: TestClient) -> None:
    response = authz_client.get("/moderation/submissions")

    assert response.status_code == 401
    assert response.json()["detail"]["kind"] == "not_authorized"


def test_moderation_queue_denies_regular_user(authz_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _mock_supabase_user(monkeypatch, REGULAR_USER)

    response = authz_client.get("/moderation/submissions", headers=AUTH)
    assert response.status_code == 403


def test_moderation_queue_denies_unverified_admin_email(
    authz_client: TestClient,
    repo: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    repo.add_admin_email(UNVERIFIED_USER["email"])
    _mock_supabase_user(monkeypatch, UNVERIFIED_USER)

    response = authz_client.get("/moderation/submissions", headers=AUTH)
    assert response.status_code == 403


def test_moderation_queue_lists_pending_for_admin(
    authz_client: TestClient,
    repo: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    submission_id = _seed_pending(repo)
    _mock_supabase_user(monkeypatch, ADMIN_USER)

    response = authz_client.get("/moderation/submissions", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert [row["id"] for row in body] == [submission_id]
    assert body[0]["status"] == "pending"


def test_approve_then_reapprove(
    authz_client: TestClient,
    repo: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    submission_id = _seed_pending(repo)
    _mock_supabase_user(monkeypatch, ADMIN_USER)

    approved = authz_client.post(f"/moderation/submissions/{submission_id}/approve", headers=AUTH)
    again = authz_client.post(f"/moderation/submissions/{submission_id}/approve", headers=AUTH)

    assert approved.status_code == 200
    assert approved.json()["slug"] == "cool-tool"
    assert again.status_code == 409
    assert again.json()["detail"]["kind"] == "already_processed"


def test_approve_denied_for_regular_user_leaves_submission_pending(
    authz_client: TestClient,
    repo: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    submission_id = _seed_pending(repo)
    _mock_supabase_user(monkeypatch, REGULAR_USER)

    response = authz_client.post(f"/moderation/submissions/{submission_id}/approve", headers=AUTH)

    assert response.status_code == 403
    assert repo.submissions[submission_id].status == "pending"
    assert repo.resources == {}


def test_approve_with_edits_body(
    authz_client: TestClient,
    repo: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    submission_id = _seed_pending(repo)
    _mock_supabase_user(monkeypatch, ADMIN_USER)

    response = authz_client.post(
        f"/moderation/submissions/{submission_id}/approve",
        json={"title": "Renamed Tool", "pricing": "freemium"},
        headers=AUTH,
    )

    assert response.status_code == 200
    assert response.json()["slug"] == "renamed-tool"
    resource = repo.resources[response.json()["resource_id"]]
    assert resource.pricing == "freemium"


def test_reject_and_missing_submission(
    authz_client: TestClient,
    repo: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    submission_id = _seed_pending(repo)
    _mock_supabase_user(monkeypatch, ADMIN_USER)

    rejected = authz_client.post(
        f"/moderation/submissions/{submission_id}/reject",
        json={"notes": "not a tool"},
        headers=AUTH,
    )
    missing = authz_client.post("/moderation/submissions/does-not-exist/reject", headers=AUTH)

    assert rejected.status_code == 200
    assert rejected.json() == {"ok": True, "submission_id": submission_id}
    assert repo.submissions[submission_id].notes == "not a tool"
    assert missing.status_code == 404


def test_public_listing_reflects_approval(
    authz_client: TestClient,
    repo: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    submission_id = _seed_pending(repo)
    _mock_supabase_user(monkeypatch, ADMIN_USER)

    before = authz_client.get("/resources")
    authz_client.post(f"/moderation/submissions/{submission_id}/approve", headers=AUTH)
    after = authz_client.get("/resources")

    assert before.json() == []
    assert [row["slug"] for row in after.json()] == ["cool-tool"]


def test_toggle_vote_over_http(
    authz_client: TestClient,
    repo: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    submission_id = _seed_pending(repo)
    _mock_supabase_user(monkeypatch, ADMIN_USER)
    resource_id = authz_client.post(f"/moderation/submissions/{submission_id}/approve", headers=AUTH).json()["resource_id"]

    _mock_supabase_user(monkeypatch, REGULAR_USER)
    on = authz_client.post("/interactions/vote/toggle", json={"target_id": resource_id}, headers=AUTH)
    off = authz_client.post("/interactions/vote/toggle", json={"target_id": resource_id}, headers=AUTH)

    assert on.json() == {"kind": "vote", "target_id": resource_id, "active": True, "count": 1}
    assert off.json()["active"] is False


def test_toggle_requires_verified_email(
    authz_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _mock_supabase_user(monkeypatch, UNVERIFIED_USER)

    response = authz_client.post("/interactions/save/toggle", json={"target_id": "anything"}, headers=AUTH)

    assert response.status_code == 403
    assert response.json()["detail"]["kind"] == "email_not_verified"


def test_comment_moderation_over_http(
    authz_client: TestClient,
    repo: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    comment = repo.add_comment(resource_id="resource-1", user_id=REGULAR_USER["id"], body="spam")
    _mock_supabase_user(monkeypatch, ADMIN_USER)

    resolved = authz_client.post(f"/moderation/comments/{comment.id}/resolve-flags", headers=AUTH)
    deleted = authz_client.post(f"/moderation/comments/{comment.id}/soft-delete", headers=AUTH)

    assert resolved.json() == {"ok": True, "comment_id": comment.id, "resolved_flags": 0}
    assert deleted.status_code == 200
    assert repo.comments[comment.id].is_deleted is True


def test_admin_reconcile_requires_admin(
    authz_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _mock_supabase_user(monkeypatch, REGULAR_USER)
    denied = authz_client.post("/admin/reconcile", headers=AUTH)

    _mock_supabase_user(monkeypatch, ADMIN_USER)
    allowed = authz_client.post("/admin/reconcile", params={"limit": 5}, headers=AUTH)

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert allowed.json() == {"count": 0}


def test_admin_reconcile_accepts_machine_credentials(
    authz_client: TestClient,
    repo: InMemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    key_hash = hashlib.sha256(b"worker-secret").hexdigest()
    monkeypatch.setenv("RD_MACHINE_CREDENTIALS", f"directory-reconciler:{key_hash}")
    get_settings.cache_clear()
    orphaned = _seed_pending(repo)
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

    wrong_key = authz_client.post(
        "/admin/reconcile",
        headers={"X-Module-Id": "directory-reconciler", "X-API-Key": "guess"},
    )
    missing_module = authz_client.post("/admin/reconcile", headers={"X-API-Key": "worker-secret"})
    allowed = authz_client.post(
        "/admin/reconcile",
        headers={"X-Module-Id": "directory-reconciler", "X-API-Key": "worker-secret"},
    )

    assert wrong_key.status_code == 401
    assert missing_module.status_code == 401
    assert allowed.status_code == 200
    assert allowed.json() == {"count": 1}
    assert repo.submissions[orphaned].status == "approved"
    assert repo.submissions[orphaned].reviewed_by is None


def test_forwarded_for_is_ignored_from_untrusted_peers(
    authz_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("RD_SUBMISSION_RATE_LIMIT_MAX_OPS", "2")
    get_settings.cache_clear()

    statuses = [
        authz_client.post(
            "/submissions",
            json={"title": f"Tool {index}", "url": f"tool{index}.io"},
            headers={"X-Forwarded-For": f"198.51.100.{index}", "X-Real-IP": f"198.51.100.{index}"},
        ).status_code
        for index in range(3)
    ]

    assert statuses == [201, 201, 429]


def test_forwarded_for_is_honored_from_trusted_proxy(
    authz_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("RD_SUBMISSION_RATE_LIMIT_MAX_OPS", "2")
    monkeypatch.setenv("RD_TRUSTED_PROXIES", "10.0.0.1, testclient")
    get_settings.cache_clear()

    statuses = [
        authz_client.post(
            "/submissions",
            json={"title": f"Tool {index}", "url": f"tool{index}.io"},
            headers={"X-Forwarded-For": f"198.51.100.{index}, 10.0.0.1"},
        ).status_code
        for index in range(3)
    ]

    assert statuses == [201, 201, 201]
