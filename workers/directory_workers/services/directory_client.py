from __future__ import annotations

import httpx


class DirectoryClientError(Exception):
    """Raised when the directory API rejects a worker call."""


class DirectoryClient:
    def __init__(
        self,
        base_url: str,
        module_id: str,
        api_key: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "X-Module-Id": module_id,
            "X-API-Key": api_key,
        }
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    async def healthz(self) -> bool:
        async with self._client() as client:
            response = await client.get(f"{self.base_url}/healthz")
            return response.status_code == 200

    async def reconcile_approvals(self, limit: int = 100) -> int:
        async with self._client() as client:
            response = await client.post(
                f"{self.base_url}/admin/reconcile",
                params={"limit": limit},
                headers=self.headers,
            )
        if response.status_code in {401, 403}:
            raise DirectoryClientError(f"reconcile rejected with status={response.status_code}")
        response.raise_for_status()
        payload = response.json()
        return int(payload.get("count", 0))
