from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Iterator

from slugify import slugify

from directory_api.core.errors import SlugExhausted

DEFAULT_MAX_LENGTH = 80
TAG_MAX_LENGTH = 30
DEFAULT_MAX_ATTEMPTS = 250
FALLBACK_SLUG = "item"

# dropped rather than turned into a word break: "Don't" -> "dont"
_APOSTROPHES = [("'", ""), ("\u2018", ""), ("\u2019", "")]
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

SlugExists = Callable[[str], Awaitable[bool]]


def generate_slug(base: str | None, *, max_length: int = DEFAULT_MAX_LENGTH, fallback: str = FALLBACK_SLUG) -> str:
    """Lowercase ASCII, single hyphens between words, bounded length, never empty."""
    if not base:
        return fallback
    slug = slugify(base, max_length=max_length, separator="-", replacements=_APOSTROPHES)
    return slug or fallback


def generate_tag_slug(base: str | None) -> str:
    return generate_slug(base, max_length=TAG_MAX_LENGTH)


def _with_suffix(base: str, suffix: str, max_length: int) -> str:
    room = max(1, max_length - len(suffix) - 1)
    stem = base[:room].rstrip("-") or FALLBACK_SLUG
    return f"{stem}-{suffix}"


def candidate_slugs(
    base: str,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> Iterator[str]:
    """Yield ``base``, ``base-2``, ``base-3`` ... for at most ``max_attempts`` candidates."""
    root = generate_slug(base, max_length=max_length)
    for attempt in range(max(1, max_attempts)):
        if attempt == 0:
            yield root
        else:
            yield _with_suffix(root, str(attempt + 1), max_length)


def time_suffix(now: float) -> str:
    value = int(now * 1000)
    digits: list[str] = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
        if value == 0:
            break
    return "".join(reversed(digits))


async def ensure_unique_slug(
    base: str,
    exists: SlugExists,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    max_length: int = DEFAULT_MAX_LENGTH,
    clock: Callable[[], float] = time.time,
) -> str:
    """Return the first probed candidate ``exists`` rejects as free.

    Probing is bounded by ``max_attempts``; after that a single time-derived
    suffix is tried. :class:`SlugExhausted` is raised only when that collides too.
    """
    for candidate in candidate_slugs(base, max_attempts=max_attempts, max_length=max_length):
        if not await exists(candidate):
            return candidate

    root = generate_slug(base, max_length=max_length)
    fallback = _with_suffix(root, time_suffix(clock()), max_length)
    if not await exists(fallback):
        return fallback
    raise SlugExhausted(f"no free slug for base {root!r} after {max_attempts} attempts")
