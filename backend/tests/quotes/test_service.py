"""Tests for QuoteService lineage handling."""

from unittest.mock import patch

import pytest
from fakes import FAST_TIMEOUTS, VIC_PAYLOAD, FakeBroker, Script

from quote_gateway.quotes.models import AuthFailed, Delivered, Errored, SubscriptionRequest
from quote_gateway.quotes.service import QuoteService

BAD_PASSWORD = "Connection Refused: Bad User Name or Password"


def _service(broker, refresher=None, **kwargs) -> QuoteService:
    return QuoteService(broker_factory=broker, refresher=refresher, timeouts=FAST_TIMEOUTS, **kwargs)


@pytest.mark.asyncio
class TestFetchQuote:
    """Unit tests for the attempt + retry driver."""

    async def test_single_attempt_when_delivered(self, credentials, recorder, refresher):
        broker = FakeBroker(Script(messages=[VIC_PAYLOAD]))
        service = _service(broker, refresher)
        request = SubscriptionRequest(code="VIC", credentials=credentials, owner_id="c1")

        outcome = await service.fetch_quote(request, recorder)

        assert isinstance(outcome, Delivered)
        assert len(broker.connections) == 1
        refresher.refresh.assert_not_awaited()

    async def test_refresh_then_retry_succeeds(self, credentials, recorder, refresher):
        broker = FakeBroker(Script(connect_error=BAD_PASSWORD), Script(messages=[VIC_PAYLOAD]))
        service = _service(broker, refresher)
        request = SubscriptionRequest(code="VIC", credentials=credentials, owner_id="c1")

        with patch.object(service, "new_session", wraps=service.new_session) as new_session:
            outcome = await service.fetch_quote(request, recorder)

        assert isinstance(outcome, Delivered)
        assert recorder.types == ["token_refreshed", "connected", "subscribed", "price_update"]
        retry_counts = [call.args[0].retry_count for call in new_session.call_args_list]
        assert retry_counts == [0, 1]
        assert broker.connections[1].credentials.investor_token == "t2"
        # The original request is not mutated by the retry
        assert request.retry_count == 0
        assert request.credentials.investor_token == "t1"

    async def test_retry_starts_after_previous_connection_closed(self, credentials, recorder, refresher):
        broker = FakeBroker(Script(connect_error=BAD_PASSWORD), Script(messages=[VIC_PAYLOAD]))
        service = _service(broker, refresher)
        request = SubscriptionRequest(code="VIC", credentials=credentials, owner_id="c1")

        await service.fetch_quote(request, recorder)

        assert broker.live_at_creation == [0, 0]
        assert [c.close_calls for c in broker.connections] == [1, 1]

    async def test_second_rejection_ends_lineage(self, credentials, recorder, refresher):
        broker = FakeBroker(Script(connect_error=BAD_PASSWORD))
        service = _service(broker, refresher)
        request = SubscriptionRequest(code="VIC", credentials=credentials, owner_id="c1")

        outcome = await service.fetch_quote(request, recorder)

        assert isinstance(outcome, AuthFailed)
        assert recorder.types == ["token_refreshed", "auth_error"]
        assert recorder.events[-1]["error"] == "Authentication failed after token refresh attempt."
        assert len(broker.connections) == 2  # No third attempt
        refresher.refresh.assert_awaited_once()
        assert [c.close_calls for c in broker.connections] == [1, 1]

    async def test_non_auth_error_is_not_retried(self, credentials, recorder, refresher):
        broker = FakeBroker(Script(connect_error="Connection refused"))
        service = _service(broker, refresher)
        request = SubscriptionRequest(code="VIC", credentials=credentials, owner_id="c1")

        outcome = await service.fetch_quote(request, recorder)

        assert isinstance(outcome, Errored)
        assert len(broker.connections) == 1
        refresher.refresh.assert_not_awaited()

    async def test_sessions_leave_registry(self, credentials, recorder, refresher):
        broker = FakeBroker(Script(connect_error=BAD_PASSWORD), Script(messages=[VIC_PAYLOAD]))
        service = _service(broker, refresher)
        request = SubscriptionRequest(code="VIC", credentials=credentials, owner_id="c1")

        await service.fetch_quote(request, recorder)

        assert len(service.sessions) == 0
        assert service.release("c1") == 0


@pytest.mark.asyncio
class TestFetchBatch:
    """QuoteService.fetch_batch wiring to the orchestrator."""

    async def test_batch_with_real_sessions(self, credentials, recorder):
        broker = FakeBroker(Script(messages=[VIC_PAYLOAD]))
        service = _service(broker, batch_size=10, batch_delay=0.0)
        codes = [f"S{i:02d}" for i in range(12)]

        job = await service.fetch_batch(codes, credentials, owner_id="c1", emit=recorder)

        assert job.succeeded == 12
        assert job.failed == 0
        assert len(recorder.of_type("batch_progress")) == 2
        assert recorder.events[-1] == {"type": "batch_complete", "total": 12, "success": 12, "failed": 0}
        assert len(recorder.of_type("price_update")) == 12

    async def test_batch_counts_lineage_outcome(self, credentials, recorder, refresher):
        broker = FakeBroker(Script(connect_error=BAD_PASSWORD), Script(messages=[VIC_PAYLOAD]))
        service = _service(broker, refresher, batch_size=10, batch_delay=0.0)

        job = await service.fetch_batch(["VIC"], credentials, owner_id="c1", emit=recorder)

        # The retried lineage ends in delivery and is counted once, as a success
        assert job.succeeded == 1
        assert job.failed == 0
        assert job.processed == 1
