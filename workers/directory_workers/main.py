from __future__ import annotations

import asyncio
import logging

import httpx

from directory_workers.core.config import get_settings
from directory_workers.core.telemetry import (
    configure_worker_logging,
    setup_worker_telemetry,
    shutdown_worker_telemetry,
)
from directory_workers.jobs.reconcile import next_backoff, run_reconcile_cycle
from directory_workers.services.directory_client import DirectoryClient

logger = logging.getLogger(__name__)


async def run_worker() -> None:
    settings = get_settings()
    configure_worker_logging()
    if not settings.api_key:
        raise SystemExit("RD_WORKER_API_KEY is required")

    telemetry_runtime = setup_worker_telemetry(settings)
    client = DirectoryClient(
        base_url=settings.api_base_url,
        module_id=settings.module_id,
        api_key=settings.api_key,
        timeout_seconds=settings.request_timeout_seconds,
    )

    sleep_for = settings.reconcile_interval_seconds
    try:
        try:
            if not await client.healthz():
                logger.warning("directory api at %s is not healthy yet", settings.api_base_url)
        except httpx.HTTPError as exc:
            logger.warning("directory api at %s is unreachable: %s", settings.api_base_url, exc)

        while True:
            try:
                await run_reconcile_cycle(client, batch_size=settings.reconcile_batch_size)
                sleep_for = settings.reconcile_interval_seconds
            except Exception as exc:  # pragma: no cover - bootstrap robustness
                sleep_for = next_backoff(
                    sleep_for,
                    base=settings.reconcile_interval_seconds,
                    ceiling=settings.max_backoff_seconds,
                )
                logger.exception("reconcile iteration failed: %s; retry in %.1fs", exc, sleep_for)
            await asyncio.sleep(sleep_for)
    finally:
        shutdown_worker_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
