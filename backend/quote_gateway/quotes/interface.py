"""Abstract interfaces for the upstream broker and the record stores."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable

from .models import Credentials, OhlcQuote


class BrokerConnection(ABC):
    """One upstream broker connection, owned by exactly one SubscriptionSession.

    Every method raises TransportError on failure; implementations translate
    their library's exceptions so sessions never see them.

    Lifecycle:
        conn = broker_factory(client_id, credentials)
        await conn.connect()             # returns on CONNACK
        await conn.subscribe(topic, 1)   # returns on successful SUBACK
        payload = await conn.next_message()
        await conn.close()
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection and wait for the broker's connect acknowledgment."""

    @abstractmethod
    async def subscribe(self, topic: str, qos: int) -> None:
        """Subscribe and wait for the acknowledgment.

        Raises TransportError if the broker rejects the subscription.
        """

    @abstractmethod
    async def next_message(self) -> bytes:
        """Wait for the next data message on any subscribed topic."""

    @abstractmethod
    async def unsubscribe(self, topic: str) -> None:
        """Drop a subscription. Only meaningful while connected."""

    @abstractmethod
    async def close(self) -> None:
        """Disconnect and release resources. Safe to call on a half-open connection."""


# (client_id, credentials) -> unopened connection
BrokerFactory = Callable[[str, Credentials], BrokerConnection]


class StockStore(ABC):
    """Persistent stock records keyed by symbol code."""

    @abstractmethod
    async def update_prices(self, code: str, quote: OhlcQuote) -> bool:
        """Write scaled prices and a fresh timestamp. Returns False if the code is unknown."""


class AccountStore(ABC):
    """Persistent account records holding the current upstream access token."""

    @abstractmethod
    async def update_token(self, record_id: str, investor_token: str) -> bool:
        """Store a new token for the record. Returns False if the record is unknown."""
