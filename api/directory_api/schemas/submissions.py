import re
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from directory_api.core.slugs import generate_slug, generate_tag_slug
from directory_api.core.urls import normalize_url

Pricing = Literal["unknown", "free", "freemium", "trial", "paid"]
SubmissionStatus = Literal["pending", "approved", "rejected"]
DuplicateType = Literal["resource", "submission"]

MAX_TAGS = 20
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _coerce_tag_slugs(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        raw_items: list[object] = list(value.split(","))
    elif isinstance(value, (list, tuple)):
        raw_items = list(value)
    else:
        raise ValueError("tags must be a list or a comma separated string")

    slugs: list[str] = []
    for item in raw_items:
        if not isinstance(item, str) or not item.strip():
            continue
        slug = generate_tag_slug(item)
        if slug not in slugs:
            slugs.append(slug)
    if len(slugs) > MAX_TAGS:
        raise ValueError(f"at most {MAX_TAGS} tags are allowed")
    return slugs


class SubmissionCandidate(BaseModel):
    """A submission payload after boundary validation; downstream code trusts it as-is."""

    title: str = Field(min_length=3, max_length=200)
    url: str
    description: str | None = Field(default=None, max_length=2000)
    logo_url: str | None = None
    pricing: Pricing = "unknown"
    category_id: str | None = Field(default=None, max_length=64)
    category_slug: str | None = Field(default=None, max_length=100)
    tags: list[str] = Field(default_factory=list)
    email: str | None = Field(default=None, max_length=320)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("url", mode="before")
    @classmethod
    def _normalize_url(cls, value: object) -> str:
        if not isinstance(value, str):
            raise ValueError("url must be a string")
        return normalize_url(value)

    @field_validator("description", "category_id", "email", mode="before")
    @classmethod
    def _optional_text(cls, value: object) -> object:
        return _blank_to_none(value)

    @field_validator("logo_url", mode="before")
    @classmethod
    def _normalize_logo_url(cls, value: object) -> str | None:
        value = _blank_to_none(value)
        if value is None:
            return None
        if not isinstance(value, str) or "://" not in value:
            raise ValueError("logo_url must be an absolute URL")
        return normalize_url(value)

    @field_validator("pricing", mode="before")
    @classmethod
    def _lower_pricing(cls, value: object) -> object:
        value = _blank_to_none(value)
        if value is None:
            return "unknown"
        return value.lower() if isinstance(value, str) else value

    @field_validator("category_slug", mode="before")
    @classmethod
    def _slug_category(cls, value: object) -> str | None:
        value = _blank_to_none(value)
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("category_slug must be a string")
        return generate_slug(value, max_length=60)

    @field_validator("tags", mode="before")
    @classmethod
    def _slug_tags(cls, value: object) -> list[str]:
        return _coerce_tag_slugs(value)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str | None) -> str | None:
        if value is not None and not _EMAIL_RE.match(value):
            raise ValueError("email must be a valid address")
        return value


class ApprovalEdits(BaseModel):
    """Reviewer overrides applied while approving; unset fields keep the submitted values."""

    title: str | None = Field(default=None, min_length=3, max_length=200)
    url: str | None = None
    description: str | None = Field(default=None, max_length=2000)
    logo_url: str | None = None
    pricing: Pricing | None = None
    category_slug: str | None = Field(default=None, max_length=100)
    tags: list[str] | None = None

    @field_validator("title", "description", "logo_url", mode="before")
    @classmethod
    def _optional_text(cls, value: object) -> object:
        return _blank_to_none(value)

    @field_validator("url", mode="before")
    @classmethod
    def _normalize_url(cls, value: object) -> str | None:
        value = _blank_to_none(value)
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("url must be a string")
        return normalize_url(value)

    @field_validator("category_slug", mode="before")
    @classmethod
    def _slug_category(cls, value: object) -> str | None:
        value = _blank_to_none(value)
        return generate_slug(value, max_length=60) if isinstance(value, str) else value

    @field_validator("tags", mode="before")
    @classmethod
    def _slug_tags(cls, value: object) -> list[str] | None:
        if value is None:
            return None
        return _coerce_tag_slugs(value)


class RejectRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)


class DuplicateOut(BaseModel):
    type: DuplicateType
    id: str
    title: str
    url: str
    slug: str | None = None


class DuplicateCheckOut(BaseModel):
    ok: bool = True
    duplicate: DuplicateOut | None = None


class SubmitAccepted(BaseModel):
    ok: bool = True
    submission_id: str | None = None
    duplicate: DuplicateOut | None = None
    warning: dict[str, Any] | None = None


class SubmissionOut(BaseModel):
    id: str
    status: SubmissionStatus
    title: str
    url: str
    description: str | None = None
    logo_url: str | None = None
    pricing: Pricing = "unknown"
    category_id: str | None = None
    category_slug: str | None = None
    tag_slugs: list[str] = Field(default_factory=list)
    submitter_id: str | None = None
    email: str | None = None
    notes: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    created_at: datetime


class ApprovalOut(BaseModel):
    ok: bool = True
    resource_id: str
    slug: str


class RejectionOut(BaseModel):
    ok: bool = True
    submission_id: str
