"""Factories wiring settings into broker connections, the credential refresher and record stores."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..config import GatewaySettings
from .credentials import CredentialRefresher
from .interface import AccountStore, BrokerConnection, BrokerFactory, StockStore
from .models import Credentials
from .store import InMemoryAccountStore, InMemoryStockStore

if TYPE_CHECKING:
    from .mongo_store import MongoDatabase

logger = logging.getLogger(__name__)


def create_broker_factory(settings: GatewaySettings) -> BrokerFactory:
    """Return a callable that builds one unopened MQTT connection per session.

    Caller must ``await conn.connect()``.
    """
    from .mqtt_client import MqttBrokerConnection

    logger.info("Upstream broker: %s:%d%s", settings.broker_host, settings.broker_port, settings.broker_path)

    def build(client_id: str, credentials: Credentials) -> BrokerConnection:
        return MqttBrokerConnection(
            host=settings.broker_host,
            port=settings.broker_port,
            client_id=client_id,
            credentials=credentials,
            websocket_path=settings.broker_path,
            connect_timeout=settings.subscribe_timeout,
        )

    return build


def create_credential_refresher(
    settings: GatewaySettings,
    account_store: AccountStore | None = None,
) -> CredentialRefresher:
    """Build the refresher. Without DNSE_USERNAME/DNSE_PASSWORD it raises NotConfigured on use."""
    if settings.auto_refresh_enabled:
        logger.info("Token auto-refresh: ENABLED (target user %s)", settings.target_user_id or "<none>")
    else:
        logger.info("Token auto-refresh: DISABLED")
    return CredentialRefresher(
        username=settings.dnse_username,
        password=settings.dnse_password,
        account_store=account_store,
        owner_record_id=settings.target_user_id,
        auth_url=settings.auth_url,
    )


@dataclass(frozen=True, slots=True)
class Stores:
    """Stock and account stores plus the database connection behind them, if any."""

    stocks: StockStore
    accounts: AccountStore
    database: MongoDatabase | None = None

    async def open(self) -> None:
        if self.database is not None:
            await self.database.ping()

    async def aclose(self) -> None:
        if self.database is not None:
            await self.database.aclose()


def create_stores(settings: GatewaySettings) -> Stores:
    """MongoDB stores when MONGODB_URI is set, otherwise empty in-memory stores."""
    if settings.mongodb_uri:
        from .mongo_store import MongoDatabase

        database = MongoDatabase(settings.mongodb_uri)
        logger.info("Record stores: MongoDB (database %s)", database.name)
        return Stores(stocks=database.stocks, accounts=database.accounts, database=database)

    logger.info("Record stores: in-memory (MONGODB_URI not set, prices and tokens are not persisted)")
    return Stores(stocks=InMemoryStockStore(), accounts=InMemoryAccountStore())
