import hashlib
import hmac
from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, Request, status

from directory_api.core.auth import ActorContext, MachinePrincipal, anonymous_actor
from directory_api.core.config import Settings, get_settings


async def get_actor(
    request: Request,
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
    user_agent: str | None = Header(default=None, alias="User-Agent"),
) -> ActorContext:
    """Resolve the caller. Requests without a bearer token become anonymous actors."""
    ip_address = _client_ip(request, trusted_proxies=settings.trusted_proxies)
    if not authorization:
        return anonymous_actor(ip_address=ip_address, user_agent=user_agent)

    if not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="auth requires bearer token")

    token = authorization.split(" ", maxsplit=1)[1].strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth is not configured",
        )

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    email = user.get("email")
    return ActorContext(
        user_id=user_id,
        email=email if isinstance(email, str) and email else None,
        email_verified=_resolve_email_verified(user),
        ip_address=ip_address,
        user_agent=user_agent,
    )


async def get_machine_principal(
    settings: Settings = Depends(get_settings),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_module_id: str | None = Header(default=None, alias="X-Module-Id"),
) -> MachinePrincipal | None:
    """Resolve a worker caller. Requests without machine headers return ``None``."""
    if not x_api_key and not x_module_id:
        return None
    if not x_api_key or not x_module_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="machine auth requires X-API-Key and X-Module-Id",
        )

    expected = _machine_key_hashes(settings.machine_credentials).get(x_module_id)
    key_hash = hashlib.sha256(x_api_key.encode("utf-8")).hexdigest()
    if expected is None or not hmac.compare_digest(expected, key_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid module credentials")

    return MachinePrincipal(module_id=x_module_id)


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")
    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification failed",
        )

    return response.json()


def _resolve_email_verified(user: dict[str, Any]) -> bool:
    for key in ("email_confirmed_at", "confirmed_at"):
        value = user.get(key)
        if isinstance(value, str) and value:
            return True

    user_metadata = user.get("user_metadata")
    if isinstance(user_metadata, dict):
        for key in ("email_verified", "email_confirmed"):
            if user_metadata.get(key) is True:
                return True

    return False


def _machine_key_hashes(raw: str) -> dict[str, str]:
    hashes: dict[str, str] = {}
    for item in raw.split(","):
        module_id, separator, key_hash = item.partition(":")
        if separator and module_id.strip() and key_hash.strip():
            hashes[module_id.strip()] = key_hash.strip().lower()
    return hashes


def _client_ip(request: Request, *, trusted_proxies: str = "") -> str | None:
    peer = request.client.host if request.client is not None else None
    trusted = {item.strip() for item in trusted_proxies.split(",") if item.strip()}
    if peer is None or peer not in trusted:
        return peer

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return peer
