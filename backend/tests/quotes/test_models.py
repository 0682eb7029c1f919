"""Tests for quote data models."""

import json
from dataclasses import FrozenInstanceError

import pytest

from quote_gateway.quotes.exceptions import MalformedPayload
from quote_gateway.quotes.models import (
    BatchJob,
    Credentials,
    Delivered,
    Errored,
    OhlcQuote,
    SessionState,
    SubscriptionRequest,
    TimedOut,
    topic_for,
)


def _payload(**overrides) -> bytes:
    data = {"symbol": "VIC", "close": 42.5, "high": 43, "low": 41.2, "open": 42, "volume": 123400}
    data.update(overrides)
    return json.dumps(data).encode()


class TestTopic:
    """Tests for the broker topic name."""

    def test_topic_for_code(self):
        assert topic_for("VIC") == "plaintext/quotes/krx/mdds/v2/ohlc/stock/1D/VIC"

    def test_request_topic(self):
        request = SubscriptionRequest(code="FPT", credentials=Credentials("t", "i"), owner_id="c1")
        assert request.topic == topic_for("FPT")


class TestSubscriptionRequest:
    """Tests for SubscriptionRequest."""

    def test_retry_with_returns_new_request(self):
        original = SubscriptionRequest(code="VIC", credentials=Credentials("t1", "i1"), owner_id="c1", user_id="u1")

        retried = original.retry_with(Credentials("t2", "i1"))

        assert retried.retry_count == 1
        assert retried.credentials.investor_token == "t2"
        assert retried.code == "VIC"
        assert retried.owner_id == "c1"
        assert retried.user_id == "u1"
        assert original.retry_count == 0
        assert original.credentials.investor_token == "t1"

    def test_immutable(self):
        request = SubscriptionRequest(code="VIC", credentials=Credentials("t1", "i1"), owner_id="c1")
        with pytest.raises(FrozenInstanceError):
            request.retry_count = 5

    def test_credentials_to_dict(self):
        assert Credentials("t1", "i1").to_dict() == {"investorToken": "t1", "investorId": "i1"}


class TestOhlcQuote:
    """Tests for OhlcQuote parsing and serialization."""

    def test_from_payload(self):
        quote = OhlcQuote.from_payload(_payload())

        assert quote.symbol == "VIC"
        assert quote.close == 42.5
        assert quote.volume == 123400

    def test_from_str_payload(self):
        quote = OhlcQuote.from_payload(_payload().decode())
        assert quote.symbol == "VIC"

    def test_prices_scaled_by_thousand(self):
        quote = OhlcQuote.from_payload(_payload())

        assert quote.market_price == 42500
        assert quote.high_price == 43000
        assert quote.low_price == pytest.approx(41200)
        assert quote.open_price == 42000

    def test_to_dict(self):
        quote = OhlcQuote(symbol="VIC", close=42.5, high=43, low=41, open=42, volume=1000, received_at=0)

        result = quote.to_dict()

        assert result == {
            "symbol": "VIC",
            "close": 42.5,
            "marketPrice": 42500,
            "highPrice": 43000,
            "lowPrice": 41000,
            "openPrice": 42000,
            "volumn": 1000,
            "timestamp": "1970-01-01T00:00:00+00:00",
        }

    def test_extra_fields_ignored(self):
        quote = OhlcQuote.from_payload(_payload(resolution="1D", time=1700000000))
        assert quote.symbol == "VIC"

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b"",
            b"[1, 2, 3]",
            b"null",
        ],
    )
    def test_rejects_non_object(self, payload):
        with pytest.raises(MalformedPayload):
            OhlcQuote.from_payload(payload)

    def test_rejects_missing_symbol(self):
        with pytest.raises(MalformedPayload, match="symbol"):
            OhlcQuote.from_payload(_payload(symbol=None))

    @pytest.mark.parametrize("field", ["close", "high", "low", "open", "volume"])
    def test_rejects_missing_numeric_field(self, field):
        data = json.loads(_payload())
        del data[field]

        with pytest.raises(MalformedPayload, match=field):
            OhlcQuote.from_payload(json.dumps(data))

    @pytest.mark.parametrize("value", ["42.5", True, None, [42]])
    def test_rejects_non_numeric_close(self, value):
        with pytest.raises(MalformedPayload):
            OhlcQuote.from_payload(_payload(close=value))


class TestSessionState:
    """Tests for terminal state classification."""

    @pytest.mark.parametrize(
        "state",
        [SessionState.DELIVERED, SessionState.TIMED_OUT, SessionState.AUTH_FAILED, SessionState.ERRORED],
    )
    def test_terminal(self, state):
        assert state.is_terminal

    @pytest.mark.parametrize(
        "state",
        [SessionState.INIT, SessionState.CONNECTING, SessionState.SUBSCRIBING, SessionState.AWAITING_DATA],
    )
    def test_not_terminal(self, state):
        assert not state.is_terminal

    def test_auth_retrying_ends_session(self):
        """The retry is a new session; the refreshing one is finished."""
        assert SessionState.AUTH_RETRYING.is_terminal


class TestBatchJob:
    """Tests for BatchJob counters."""

    def test_record_outcomes(self):
        job = BatchJob(codes=["A", "B", "C"], credentials=Credentials("t", "i"))
        quote = OhlcQuote(symbol="A", close=1, high=1, low=1, open=1, volume=1)

        job.record(Delivered(quote))
        job.record(TimedOut("No data received for stock"))
        job.record(Errored("boom"))

        assert job.total == 3
        assert job.processed == 3
        assert job.succeeded == 1
        assert job.failed == 2

    def test_exception_counts_as_failure(self):
        job = BatchJob(codes=["A"], credentials=Credentials("t", "i"))

        job.record(RuntimeError("boom"))

        assert job.failed == 1
        assert job.succeeded + job.failed == job.processed
