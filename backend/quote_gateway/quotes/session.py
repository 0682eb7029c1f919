"""One-shot quote subscription sessions.

A session opens one upstream connection for one client request, waits for a
single data message (or a deadline), forwards it and closes the connection:

    INIT -> CONNECTING -> SUBSCRIBING -> AWAITING_DATA -> DELIVERED
                                                       -> TIMED_OUT
    any live state -> AUTH_RETRYING | AUTH_FAILED | ERRORED

Sessions never restart themselves. On rejected credentials the first attempt
refreshes the token and returns ``RetryWith``; the caller decides whether to
start a successor (see ``QuoteService.fetch_quote``).
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

from . import events
from .credentials import CredentialRefresher
from .events import Emit
from .exceptions import (
    AckTimeout,
    AuthSignatureError,
    DataTimeout,
    MalformedPayload,
    NotConfigured,
    RefreshError,
    SubscriptionRejected,
    TransportError,
)
from .interface import BrokerConnection, BrokerFactory, StockStore
from .models import (
    AuthFailed,
    Credentials,
    Delivered,
    Errored,
    OhlcQuote,
    RetryWith,
    SessionOutcome,
    SessionState,
    SubscriptionRequest,
    TimedOut,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLIENT_ID_PREFIX = "dnse-price-json-mqtt-ws-sub-"
QOS = 1
MAX_RETRIES = 1

AUTH_FAILURE_SIGNATURES = (
    "Bad User Name or Password",
    "Not authorized",
    "Authentication failed",
)

SUBSCRIBE_TIMEOUT_MESSAGE = "Subscribe timeout"
RETRY_EXHAUSTED_MESSAGE = "Authentication failed after token refresh attempt."
REFRESH_FAILED_MESSAGE = "Authentication failed and token refresh failed."


def new_client_id() -> str:
    """Unique MQTT client identifier; 64 random bits make collisions negligible."""
    return f"{CLIENT_ID_PREFIX}{secrets.token_hex(8)}"


def is_auth_failure(message: str) -> bool:
    lowered = message.lower()
    return any(signature.lower() in lowered for signature in AUTH_FAILURE_SIGNATURES)


def classify_transport_error(error: TransportError) -> TransportError:
    """Promote a transport error to AuthSignatureError when its text names bad credentials.

    SUBACK rejections are never promoted: they end the session without a refresh.
    """
    if isinstance(error, (AuthSignatureError, SubscriptionRejected)):
        return error
    if is_auth_failure(str(error)):
        auth_error = AuthSignatureError(str(error))
        auth_error.__cause__ = error
        return auth_error
    return error


@dataclass(frozen=True, slots=True)
class SessionTimeouts:
    subscribe: float = 10.0  # CONNACK + SUBACK
    data: float = 5.0  # first message after SUBACK


class ActiveSessions:
    """Live sessions grouped by the client connection that owns them.

    Sessions add themselves when they start and discard themselves when they
    reach a terminal state. ``release()`` is called by the connection layer
    when a client goes away and detaches whatever is still running.
    """

    def __init__(self) -> None:
        self._by_owner: dict[str, set[SubscriptionSession]] = {}

    def add(self, session: SubscriptionSession) -> None:
        self._by_owner.setdefault(session.request.owner_id, set()).add(session)

    def discard(self, session: SubscriptionSession) -> None:
        owner = session.request.owner_id
        sessions = self._by_owner.get(owner)
        if sessions is None:
            return
        sessions.discard(session)
        if not sessions:
            del self._by_owner[owner]

    def for_owner(self, owner_id: str) -> list[SubscriptionSession]:
        return list(self._by_owner.get(owner_id, ()))

    def release(self, owner_id: str) -> int:
        """Detach every live session of an owner. Returns how many were detached."""
        sessions = self._by_owner.pop(owner_id, set())
        for session in sessions:
            session.detach()
        if sessions:
            logger.info("Released %d live session(s) for connection %s", len(sessions), owner_id)
        return len(sessions)

    def release_all(self) -> int:
        return sum(self.release(owner_id) for owner_id in list(self._by_owner))

    def __len__(self) -> int:
        return sum(len(s) for s in self._by_owner.values())


class SubscriptionSession:
    """Fetches exactly one quote for one SubscriptionRequest.

    Guarantees:
      - at most one ``price_update`` event
      - the upstream connection is closed exactly once, on every exit path
      - ``connected`` precedes ``subscribed`` precedes the terminal event
    """

    def __init__(
        self,
        request: SubscriptionRequest,
        *,
        broker_factory: BrokerFactory,
        emit: Emit,
        refresher: CredentialRefresher | None = None,
        stock_store: StockStore | None = None,
        timeouts: SessionTimeouts = SessionTimeouts(),
        registry: ActiveSessions | None = None,
    ) -> None:
        self.request = request
        self.client_id = new_client_id()
        self.state = SessionState.INIT
        self._broker_factory = broker_factory
        self._emit_event = emit
        self._refresher = refresher
        self._stocks = stock_store
        self._timeouts = timeouts
        self._registry = registry

        self._conn: BrokerConnection | None = None
        self._conn_closed = False
        self._delivered = False
        self._detached = False
        self._task: asyncio.Task | None = None

    @property
    def delivered(self) -> bool:
        return self._delivered

    @property
    def detached(self) -> bool:
        return self._detached

    async def run(self) -> SessionOutcome:
        """Drive the session to a terminal state and report how it ended.

        Raises CancelledError if the owning connection detached the session.
        """
        if self.state is not SessionState.INIT:
            raise RuntimeError("SubscriptionSession.run() may only be called once")

        self._task = asyncio.current_task()
        if self._registry is not None:
            self._registry.add(self)
        try:
            return await self._run()
        finally:
            await self._close_connection(unsubscribe=self._detached)
            if self._registry is not None:
                self._registry.discard(self)

    def detach(self) -> None:
        """Stop emitting and tear the session down. Called when the owning client disconnects."""
        self._detached = True
        if self.state.is_terminal:
            return
        if self._task is not None and not self._task.done():
            self._task.cancel()

    # --- State machine ---

    async def _run(self) -> SessionOutcome:
        code = self.request.code
        logger.info("Subscribing to %s", code)
        logger.debug("Session %s uses client id %s (retry %d)", code, self.client_id, self.request.retry_count)

        try:
            quote = await self._fetch()
        except AckTimeout:
            logger.info("Subscribe timeout for %s", code)
            return await self._finish(
                SessionState.TIMED_OUT,
                events.error(SUBSCRIBE_TIMEOUT_MESSAGE, code=code),
                TimedOut(SUBSCRIBE_TIMEOUT_MESSAGE),
            )
        except DataTimeout:
            logger.info("No message received for %s, closing connection", code)
            event = events.timeout(code)
            return await self._finish(SessionState.TIMED_OUT, event, TimedOut(event["message"]))
        except MalformedPayload as e:
            logger.error("Malformed payload for %s: %s", code, e)
            return await self._finish(SessionState.ERRORED, events.error(str(e), code=code), Errored(str(e)))
        except TransportError as e:
            return await self._on_transport_error(classify_transport_error(e))
        except Exception as e:
            logger.exception("Error subscribing to %s", code)
            return await self._finish(SessionState.ERRORED, events.error(str(e), code=code), Errored(str(e)))

        return await self._deliver(quote)

    async def _fetch(self) -> OhlcQuote:
        """Connect, subscribe and wait for the first message. Raises on every failure."""
        code = self.request.code
        topic = self.request.topic
        loop = asyncio.get_running_loop()

        self.state = SessionState.CONNECTING
        ack_deadline = loop.time() + self._timeouts.subscribe
        self._conn = self._broker_factory(self.client_id, self.request.credentials)
        await self._within(ack_deadline, self._conn.connect(), AckTimeout)

        logger.info("MQTT connected for %s", code)
        self.state = SessionState.SUBSCRIBING
        await self._emit(events.connected(code))

        await self._within(ack_deadline, self._conn.subscribe(topic, QOS), AckTimeout)

        logger.info("Subscribed to %s", code)
        self.state = SessionState.AWAITING_DATA
        await self._emit(events.subscribed(code, topic))

        data_deadline = loop.time() + self._timeouts.data
        payload = await self._within(data_deadline, self._conn.next_message(), DataTimeout)
        logger.debug("Raw payload for %s: %r", code, payload)
        return OhlcQuote.from_payload(payload)

    async def _deliver(self, quote: OhlcQuote) -> SessionOutcome:
        code = self.request.code
        self._delivered = True
        self.state = SessionState.DELIVERED
        await self._close_connection()

        logger.info("Received price for %s: %s", code, quote.close)
        await self._store_quote(quote)
        await self._emit(events.price_update(code, quote))
        return Delivered(quote)

    async def _on_transport_error(self, error: TransportError) -> SessionOutcome:
        code = self.request.code
        reason = str(error)
        logger.error("MQTT error for %s: %s", code, reason)

        if not isinstance(error, AuthSignatureError):
            return await self._finish(SessionState.ERRORED, events.error(reason, code=code), Errored(reason))

        if self.request.retry_count >= MAX_RETRIES:
            logger.error("Max retry attempts reached for %s", code)
            return await self._finish(
                SessionState.AUTH_FAILED,
                events.auth_error(code, RETRY_EXHAUSTED_MESSAGE),
                AuthFailed("max retry attempts reached"),
            )

        logger.info("Token rejected for %s, attempting auto-refresh", code)
        self.state = SessionState.AUTH_RETRYING
        await self._close_connection()

        try:
            if self._refresher is None:
                raise NotConfigured("No credential refresher available")
            fresh = await self._refresher.refresh()
        except RefreshError as e:
            logger.error("Failed to refresh token for %s: %s", code, e)
            return await self._finish(
                SessionState.AUTH_FAILED,
                events.auth_error(code, REFRESH_FAILED_MESSAGE),
                AuthFailed(str(e)),
            )

        # The auth service may omit the investor id; keep the one we connected with
        credentials = Credentials(
            investor_token=fresh.investor_token,
            investor_id=fresh.investor_id or self.request.credentials.investor_id,
        )
        logger.info("Token refreshed for %s, retrying subscription", code)
        await self._emit(events.token_refreshed(code, credentials))
        return RetryWith(credentials)

    async def _finish(self, state: SessionState, event: events.Event, outcome: SessionOutcome) -> SessionOutcome:
        self.state = state
        await self._close_connection()
        await self._emit(event)
        return outcome

    # --- Helpers ---

    async def _within(self, deadline: float, awaitable: Awaitable[T], timeout_error: type[Exception]) -> T:
        remaining = max(0.0, deadline - asyncio.get_running_loop().time())
        try:
            return await asyncio.wait_for(awaitable, remaining)
        except asyncio.TimeoutError:
            raise timeout_error(f"{self.request.code}: deadline elapsed in {self.state.value}") from None

    async def _emit(self, event: events.Event) -> None:
        if self._detached:
            return
        await self._emit_event(event)

    async def _store_quote(self, quote: OhlcQuote) -> None:
        """Best-effort write of the delivered prices. Never affects the session outcome."""
        if self._stocks is None or not quote.close:
            return
        try:
            updated = await self._stocks.update_prices(quote.symbol, quote)
        except Exception:
            logger.exception("Failed to store price for %s", quote.symbol)
            return
        if updated:
            logger.info("Updated %s price: %s", quote.symbol, quote.market_price)
        else:
            logger.debug("No stock record for %s, price not stored", quote.symbol)

    async def _close_connection(self, unsubscribe: bool = False) -> None:
        if self._conn is None or self._conn_closed:
            return
        self._conn_closed = True
        conn = self._conn
        if unsubscribe:
            try:
                await conn.unsubscribe(self.request.topic)
            except TransportError as e:
                logger.debug("Unsubscribe for %s failed during teardown: %s", self.request.code, e)
        try:
            await conn.close()
        except TransportError as e:
            logger.warning("Error closing MQTT client for %s: %s", self.request.code, e)
