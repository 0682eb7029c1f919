"""Data models for quote subscriptions."""

from __future__ import annotations

import enum
import json
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from .exceptions import MalformedPayload

# Upstream prices are quoted in thousands of VND
PRICE_SCALE = 1000

TOPIC_TEMPLATE = "plaintext/quotes/krx/mdds/v2/ohlc/stock/1D/{code}"

_PAYLOAD_NUMERIC_FIELDS = ("close", "high", "low", "open", "volume")


def topic_for(code: str) -> str:
    """Broker topic carrying daily OHLC bars for a symbol."""
    return TOPIC_TEMPLATE.format(code=code)


@dataclass(frozen=True, slots=True)
class Credentials:
    """Upstream broker credentials: MQTT username is the investor id, password the token."""

    investor_token: str
    investor_id: str

    def to_dict(self) -> dict:
        return {"investorToken": self.investor_token, "investorId": self.investor_id}


@dataclass(frozen=True, slots=True)
class SubscriptionRequest:
    """Immutable input to a single subscription attempt."""

    code: str
    credentials: Credentials
    owner_id: str  # Client connection that asked for the quote
    user_id: str | None = None
    retry_count: int = 0

    @property
    def topic(self) -> str:
        return topic_for(self.code)

    def retry_with(self, credentials: Credentials) -> SubscriptionRequest:
        """New request for the next attempt in the lineage. The original is untouched."""
        return replace(self, credentials=credentials, retry_count=self.retry_count + 1)


@dataclass(frozen=True, slots=True)
class OhlcQuote:
    """One daily OHLC bar as published by the broker (prices in thousands)."""

    symbol: str
    close: float
    high: float
    low: float
    open: float
    volume: float
    received_at: float = field(default_factory=time.time)

    @classmethod
    def from_payload(cls, payload: bytes | str) -> OhlcQuote:
        """Parse a raw broker message. Raises MalformedPayload on any shape problem."""
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise MalformedPayload(f"Invalid JSON payload: {e}") from e

        if not isinstance(data, dict):
            raise MalformedPayload(f"Expected a JSON object, got {type(data).__name__}")

        symbol = data.get("symbol")
        if not isinstance(symbol, str) or not symbol:
            raise MalformedPayload("Payload is missing 'symbol'")

        values: dict[str, float] = {}
        for name in _PAYLOAD_NUMERIC_FIELDS:
            value = data.get(name)
            # bool is an int subclass, reject it explicitly
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise MalformedPayload(f"Payload field '{name}' is missing or not numeric")
            values[name] = value

        return cls(symbol=symbol, **values)

    @property
    def market_price(self) -> float:
        return self.close * PRICE_SCALE

    @property
    def high_price(self) -> float:
        return self.high * PRICE_SCALE

    @property
    def low_price(self) -> float:
        return self.low * PRICE_SCALE

    @property
    def open_price(self) -> float:
        return self.open * PRICE_SCALE

    def to_dict(self) -> dict:
        """Serialize for the ``price_update`` event (``volumn`` is the wire spelling)."""
        return {
            "symbol": self.symbol,
            "close": self.close,
            "marketPrice": self.market_price,
            "highPrice": self.high_price,
            "lowPrice": self.low_price,
            "openPrice": self.open_price,
            "volumn": self.volume,
            "timestamp": datetime.fromtimestamp(self.received_at, tz=timezone.utc).isoformat(),
        }


class SessionState(str, enum.Enum):
    INIT = "init"
    CONNECTING = "connecting"
    SUBSCRIBING = "subscribing"
    AWAITING_DATA = "awaiting_data"
    DELIVERED = "delivered"
    TIMED_OUT = "timed_out"
    AUTH_RETRYING = "auth_retrying"
    AUTH_FAILED = "auth_failed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        SessionState.DELIVERED,
        SessionState.TIMED_OUT,
        SessionState.AUTH_RETRYING,
        SessionState.AUTH_FAILED,
        SessionState.ERRORED,
    }
)


# --- Session outcomes ---


@dataclass(frozen=True, slots=True)
class Delivered:
    quote: OhlcQuote


@dataclass(frozen=True, slots=True)
class TimedOut:
    reason: str


@dataclass(frozen=True, slots=True)
class AuthFailed:
    reason: str


@dataclass(frozen=True, slots=True)
class Errored:
    reason: str


@dataclass(frozen=True, slots=True)
class RetryWith:
    """The session refreshed credentials and asks its driver for one more attempt."""

    credentials: Credentials


SessionOutcome = Delivered | TimedOut | AuthFailed | Errored | RetryWith


@dataclass(slots=True)
class BatchJob:
    """Running totals for one ``subscribe_batch`` request."""

    codes: list[str]
    credentials: Credentials
    succeeded: int = 0
    failed: int = 0
    processed: int = 0

    @property
    def total(self) -> int:
        return len(self.codes)

    def record(self, outcome: Any) -> None:
        if isinstance(outcome, Delivered):
            self.succeeded += 1
        else:
            self.failed += 1
        self.processed += 1
