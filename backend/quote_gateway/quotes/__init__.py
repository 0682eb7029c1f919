"""Quote subscription subsystem.

Public API:
    SubscriptionRequest   - Immutable input to one subscription attempt
    OhlcQuote             - Parsed broker bar with price scaling
    SubscriptionSession   - One-shot connect/subscribe/receive state machine
    CredentialRefresher   - Token refresh against the DNSE auth service
    BatchOrchestrator     - Chunked fan-out for batch requests
    QuoteService          - Lineage driver shared by all connections
    Gateway               - Connection registry and process lifecycle
    create_gateway_router - FastAPI router factory for the WebSocket endpoint
"""

from .batch import BatchOrchestrator
from .credentials import CredentialRefresher
from .factory import Stores, create_broker_factory, create_credential_refresher, create_stores
from .gateway import ClientConnection, Gateway
from .handler import GatewayProtocolHandler
from .models import Credentials, OhlcQuote, SessionState, SubscriptionRequest
from .service import QuoteService
from .session import ActiveSessions, SessionTimeouts, SubscriptionSession
from .store import InMemoryAccountStore, InMemoryStockStore
from .websocket import create_gateway_router

__all__ = [
    "ActiveSessions",
    "BatchOrchestrator",
    "ClientConnection",
    "CredentialRefresher",
    "Credentials",
    "Gateway",
    "GatewayProtocolHandler",
    "InMemoryAccountStore",
    "InMemoryStockStore",
    "OhlcQuote",
    "QuoteService",
    "SessionState",
    "SessionTimeouts",
    "SubscriptionRequest",
    "Stores",
    "SubscriptionSession",
    "create_broker_factory",
    "create_credential_refresher",
    "create_stores",
    "create_gateway_router",
]
