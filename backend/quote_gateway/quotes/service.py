"""Quote service: runs session lineages and batches on behalf of client connections."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .batch import BatchOrchestrator
from .credentials import CredentialRefresher
from .events import Emit
from .interface import BrokerFactory, StockStore
from .models import BatchJob, Credentials, RetryWith, SessionOutcome, SubscriptionRequest
from .session import ActiveSessions, SessionTimeouts, SubscriptionSession

logger = logging.getLogger(__name__)


class QuoteService:
    """Process-wide entry point shared by every client connection.

    Owns the collaborators sessions need (broker factory, refresher, stock
    store) and the registry of live sessions. Events are routed per call
    through the ``emit`` callback of the requesting connection.
    """

    def __init__(
        self,
        broker_factory: BrokerFactory,
        refresher: CredentialRefresher | None = None,
        stock_store: StockStore | None = None,
        sessions: ActiveSessions | None = None,
        timeouts: SessionTimeouts = SessionTimeouts(),
        batch_size: int = 10,
        batch_delay: float = 2.0,
    ) -> None:
        self._broker_factory = broker_factory
        self._refresher = refresher
        self._stocks = stock_store
        self.sessions = sessions if sessions is not None else ActiveSessions()
        self._timeouts = timeouts
        self._batch_size = batch_size
        self._batch_delay = batch_delay

    def new_session(self, request: SubscriptionRequest, emit: Emit) -> SubscriptionSession:
        return SubscriptionSession(
            request,
            broker_factory=self._broker_factory,
            emit=emit,
            refresher=self._refresher,
            stock_store=self._stocks,
            timeouts=self._timeouts,
            registry=self.sessions,
        )

    async def fetch_quote(self, request: SubscriptionRequest, emit: Emit) -> SessionOutcome:
        """Run one lineage: the first attempt and, after a token refresh, one retry.

        The predecessor's connection is already closed when ``run()`` returns,
        so the retry never overlaps it.
        """
        outcome = await self.new_session(request, emit).run()
        if isinstance(outcome, RetryWith):
            retry = request.retry_with(outcome.credentials)
            logger.info("Auto-retrying subscription for %s (attempt %d)", retry.code, retry.retry_count + 1)
            # The successor has retry_count == 1, so it cannot ask for another retry
            outcome = await self.new_session(retry, emit).run()
        return outcome

    async def fetch_batch(
        self,
        codes: Sequence[str],
        credentials: Credentials,
        owner_id: str,
        emit: Emit,
        user_id: str | None = None,
    ) -> BatchJob:
        async def run_lineage(request: SubscriptionRequest) -> SessionOutcome:
            return await self.fetch_quote(request, emit)

        orchestrator = BatchOrchestrator(
            run_lineage,
            emit,
            chunk_size=self._batch_size,
            pacing=self._batch_delay,
        )
        return await orchestrator.run(codes, credentials, owner_id=owner_id, user_id=user_id)

    def release(self, owner_id: str) -> int:
        """Detach all live sessions of a client connection."""
        return self.sessions.release(owner_id)
