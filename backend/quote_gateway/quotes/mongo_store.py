"""MongoDB-backed stock and account stores (pymongo async API)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from bson import ObjectId
from pymongo import AsyncMongoClient

from .interface import AccountStore, StockStore
from .models import OhlcQuote

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = "stock_t0"

# Collection names follow the deployed schema (Stock and User models)
STOCKS_COLLECTION = "stocks"
USERS_COLLECTION = "users"


class MongoStockStore(StockStore):
    """Stock documents keyed by ``code``. Only existing documents are updated."""

    def __init__(self, collection: Any) -> None:
        self._collection = collection

    async def update_prices(self, code: str, quote: OhlcQuote) -> bool:
        result = await self._collection.update_one(
            {"code": code},
            {
                "$set": {
                    "marketPrice": quote.market_price,
                    "highPrice": quote.high_price,
                    "lowPrice": quote.low_price,
                    "openPrice": quote.open_price,
                    "volumn": quote.volume,
                    "updatedAt": datetime.now(timezone.utc),
                }
            },
        )
        return result.matched_count > 0


class MongoAccountStore(AccountStore):
    """User documents keyed by ``_id``; the token lives in ``investorToken``."""

    def __init__(self, collection: Any) -> None:
        self._collection = collection

    async def update_token(self, record_id: str, investor_token: str) -> bool:
        result = await self._collection.update_one(
            {"_id": _document_id(record_id)},
            {"$set": {"investorToken": investor_token}},
        )
        return result.matched_count > 0


class MongoDatabase:
    """Owns the client and hands out the two stores.

    The client connects lazily; ``ping()`` checks reachability at startup.
    """

    def __init__(self, uri: str, client: AsyncMongoClient | None = None) -> None:
        self._client = client if client is not None else AsyncMongoClient(uri, tz_aware=True)
        database = self._client.get_default_database(default=DEFAULT_DATABASE)
        self.name = database.name
        self.stocks = MongoStockStore(database[STOCKS_COLLECTION])
        self.accounts = MongoAccountStore(database[USERS_COLLECTION])

    async def ping(self) -> None:
        await self._client.admin.command("ping")
        logger.info("Connected to MongoDB database %s", self.name)

    async def aclose(self) -> None:
        await self._client.close()
        logger.info("MongoDB connection closed")


def _document_id(record_id: str) -> ObjectId | str:
    return ObjectId(record_id) if ObjectId.is_valid(record_id) else record_id
