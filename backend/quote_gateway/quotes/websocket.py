"""WebSocket endpoint for quote requests."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from . import events
from .gateway import WELCOME_EVENT, Gateway
from .handler import GatewayProtocolHandler

logger = logging.getLogger(__name__)


def create_gateway_router(gateway: Gateway, handler: GatewayProtocolHandler) -> APIRouter:
    """Create the WebSocket router bound to a gateway instance.

    This factory pattern lets us inject the gateway without globals.
    """
    router = APIRouter(tags=["quotes"])

    @router.websocket("/")
    async def quote_socket(websocket: WebSocket) -> None:
        """Bidirectional JSON channel.

        Each inbound frame is one request object; each request is handled in
        its own task so a long batch does not block ``ping``. Closing the
        socket tears down every upstream session the client started.
        """
        await websocket.accept()
        connection = gateway.register(websocket)
        client_ip = websocket.client.host if websocket.client else "unknown"
        logger.info("New client connected from %s (%s)", client_ip, connection.id)
        await connection.send(WELCOME_EVENT)

        try:
            while True:
                text = _frame_text(await websocket.receive())
                try:
                    message = json.loads(text)
                except ValueError as e:
                    logger.warning("Unparseable frame from %s: %s", connection.id, e)
                    await connection.send(events.error(str(e)))
                    continue
                connection.spawn(handler.handle(connection, message))
        except WebSocketDisconnect:
            logger.info("Client disconnected: %s", connection.id)
        finally:
            gateway.unregister(connection)

    return router


def _frame_text(message: dict) -> str:
    """Text of one inbound ASGI frame. Binary frames are decoded as UTF-8."""
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
    text = message.get("text")
    if text is not None:
        return text
    return (message.get("bytes") or b"").decode("utf-8", errors="replace")
