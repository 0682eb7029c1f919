"""Chunked fan-out of quote fetches for ``subscribe_batch`` requests."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from . import events
from .events import Emit
from .models import BatchJob, Credentials, SessionOutcome, SubscriptionRequest

logger = logging.getLogger(__name__)

# Runs one session lineage (attempt + optional retry) to its final outcome
LineageRunner = Callable[[SubscriptionRequest], Awaitable[SessionOutcome]]


class BatchOrchestrator:
    """Fetches quotes for many symbols without flooding the upstream broker.

    Symbols are processed in chunks of ``chunk_size``: every lineage in a chunk
    runs concurrently, the chunk is awaited as a whole, a progress event is
    emitted, and the next chunk starts after ``pacing`` seconds. At most
    ``chunk_size`` upstream connections are open at any moment for a batch.
    """

    def __init__(
        self,
        run_lineage: LineageRunner,
        emit: Emit,
        chunk_size: int = 10,
        pacing: float = 2.0,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self._run_lineage = run_lineage
        self._emit = emit
        self._chunk_size = chunk_size
        self._pacing = pacing

    async def run(
        self,
        codes: Sequence[str],
        credentials: Credentials,
        owner_id: str,
        user_id: str | None = None,
    ) -> BatchJob:
        job = BatchJob(codes=list(codes), credentials=credentials)
        logger.info("Batch subscribe for %d stocks", job.total)
        await self._emit(events.batch_start(job.total))

        chunks = [job.codes[i : i + self._chunk_size] for i in range(0, job.total, self._chunk_size)]
        for index, chunk in enumerate(chunks):
            requests = [
                SubscriptionRequest(code=code, credentials=credentials, owner_id=owner_id, user_id=user_id)
                for code in chunk
            ]
            results = await asyncio.gather(
                *(self._run_lineage(request) for request in requests),
                return_exceptions=True,
            )
            for request, result in zip(requests, results):
                if isinstance(result, Exception):
                    logger.error("Batch item %s failed unexpectedly: %s", request.code, result)
                job.record(result)

            await self._emit(events.batch_progress(job))

            if index < len(chunks) - 1:
                await asyncio.sleep(self._pacing)

        logger.info("Batch complete: %d ok, %d failed of %d", job.succeeded, job.failed, job.total)
        await self._emit(events.batch_complete(job))
        return job
