"""In-memory stock and account stores."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import Lock

from .interface import AccountStore, StockStore
from .models import OhlcQuote


@dataclass(slots=True)
class StockRecord:
    code: str
    name: str
    industry: str
    market_price: float = 0
    high_price: float = 0
    low_price: float = 0
    open_price: float = 0
    volumn: float = 0
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class AccountRecord:
    record_id: str
    email: str = ""
    investor_token: str = ""
    investor_id: str = ""


class InMemoryStockStore(StockStore):
    """Thread-safe in-memory stock records.

    Writers: SubscriptionSession on delivery (best-effort).
    Readers: tests and any in-process consumer of the latest prices.
    """

    def __init__(self, records: list[StockRecord] | None = None) -> None:
        self._records: dict[str, StockRecord] = {r.code: r for r in records or []}
        self._lock = Lock()

    def add(self, record: StockRecord) -> None:
        with self._lock:
            self._records[record.code] = record

    def get(self, code: str) -> StockRecord | None:
        with self._lock:
            return self._records.get(code)

    async def update_prices(self, code: str, quote: OhlcQuote) -> bool:
        with self._lock:
            record = self._records.get(code)
            if record is None:
                return False
            record.market_price = quote.market_price
            record.high_price = quote.high_price
            record.low_price = quote.low_price
            record.open_price = quote.open_price
            record.volumn = quote.volume
            record.updated_at = time.time()
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, code: str) -> bool:
        with self._lock:
            return code in self._records


class InMemoryAccountStore(AccountStore):
    """Thread-safe in-memory account records keyed by record id."""

    def __init__(self, records: list[AccountRecord] | None = None) -> None:
        self._records: dict[str, AccountRecord] = {r.record_id: r for r in records or []}
        self._lock = Lock()

    def add(self, record: AccountRecord) -> None:
        with self._lock:
            self._records[record.record_id] = record

    def get(self, record_id: str) -> AccountRecord | None:
        with self._lock:
            return self._records.get(record_id)

    async def update_token(self, record_id: str, investor_token: str) -> bool:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                return False
            record.investor_token = investor_token
            return True
