from __future__ import annotations

import logging
import random

from opentelemetry import trace

from directory_workers.services.directory_client import DirectoryClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_reconcile_cycle(client: DirectoryClient, *, batch_size: int) -> int:
    """Drain orphaned approvals in batches until a pass repairs fewer than a full batch."""
    total = 0
    with tracer.start_as_current_span("worker.reconcile_cycle") as span:
        while True:
            repaired = await client.reconcile_approvals(limit=batch_size)
            total += repaired
            if repaired < batch_size:
                break
        span.set_attribute("reconcile.repaired", total)
    if total:
        logger.info("reconciled orphaned approvals: %s", total)
    return total


def next_backoff(current: float, *, base: float, ceiling: float) -> float:
    jitter = random.uniform(0.0, 0.5)
    return min(max(current, base) * (2.0 + jitter), ceiling)
