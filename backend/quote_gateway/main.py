"""FastAPI application for the quote gateway.

Run directly for development:
    python -m quote_gateway.main

For production:
    uvicorn quote_gateway.main:create_app --factory --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

from .config import GatewaySettings
from .quotes import (
    ActiveSessions,
    Gateway,
    GatewayProtocolHandler,
    QuoteService,
    SessionTimeouts,
    Stores,
    create_broker_factory,
    create_credential_refresher,
    create_gateway_router,
    create_stores,
)

logger = logging.getLogger(__name__)


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: GatewaySettings | None = None,
    service: QuoteService | None = None,
    stores: Stores | None = None,
) -> FastAPI:
    """Build the app. ``service`` and ``stores`` may be injected (tests use fakes)."""
    settings = settings or GatewaySettings.from_env()

    refresher = None
    if service is None:
        stores = stores or create_stores(settings)
        refresher = create_credential_refresher(settings, account_store=stores.accounts)
        service = QuoteService(
            broker_factory=create_broker_factory(settings),
            refresher=refresher,
            stock_store=stores.stocks,
            sessions=ActiveSessions(),
            timeouts=SessionTimeouts(subscribe=settings.subscribe_timeout, data=settings.data_timeout),
            batch_size=settings.batch_size,
            batch_delay=settings.batch_delay,
        )

    gateway = Gateway(service, stats_interval=settings.stats_interval)
    handler = GatewayProtocolHandler(gateway, debug=settings.debug)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("WebSocket gateway starting on port %d", settings.port)
        logger.info("MQTT broker: %s:%d", settings.broker_host, settings.broker_port)
        logger.info("Debug mode: %s", "ON" if settings.debug else "OFF")
        if stores is not None:
            await stores.open()
        await gateway.start()
        try:
            yield
        finally:
            await gateway.shutdown()
            if refresher is not None:
                await refresher.aclose()
            if stores is not None:
                await stores.aclose()

    app = FastAPI(title="Quote Gateway", lifespan=lifespan)
    app.state.gateway = gateway
    app.include_router(create_gateway_router(gateway, handler))
    return app


def main() -> None:
    load_dotenv()
    settings = GatewaySettings.from_env()
    configure_logging(settings.debug)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port, log_level="info")


if __name__ == "__main__":
    main()
