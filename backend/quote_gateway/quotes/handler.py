"""Dispatch of parsed client messages."""

from __future__ import annotations

import logging
import time
from typing import Any

from . import events
from .gateway import ClientConnection, Gateway
from .models import Credentials, SubscriptionRequest

logger = logging.getLogger(__name__)


class GatewayProtocolHandler:
    """Validates client requests and relays the resulting events to the client.

    Message types: ``subscribe``, ``subscribe_batch``, ``ping``, ``health``.
    Anything else gets ``error{"Unknown message type"}``.
    """

    def __init__(self, gateway: Gateway, debug: bool = False) -> None:
        self._gateway = gateway
        self._debug = debug

    async def handle(self, connection: ClientConnection, message: Any) -> None:
        msg_type = message.get("type") if isinstance(message, dict) else None
        if self._debug:
            logger.debug("Received message: %s", message)
        else:
            logger.info("Received message: %s", msg_type)

        try:
            if msg_type == "subscribe":
                await self._subscribe(connection, message)
            elif msg_type == "subscribe_batch":
                await self._subscribe_batch(connection, message)
            elif msg_type == "ping":
                await connection.send({"type": "pong", "timestamp": int(time.time() * 1000)})
            elif msg_type == "health":
                await connection.send(self._health())
            else:
                await connection.send(events.error("Unknown message type"))
        except Exception as e:
            logger.exception("Error handling %s message", msg_type)
            await connection.send(events.error(str(e)))

    async def _subscribe(self, connection: ClientConnection, message: dict) -> None:
        code = message.get("code")
        token = message.get("investorToken")
        investor_id = message.get("investorId")
        if not code or not token or not investor_id:
            await connection.send(events.error("Missing required parameters"))
            return

        request = SubscriptionRequest(
            code=str(code),
            credentials=Credentials(investor_token=str(token), investor_id=str(investor_id)),
            owner_id=connection.id,
            user_id=_optional_str(message.get("userId")),
        )
        await self._gateway.service.fetch_quote(request, connection.send)

    async def _subscribe_batch(self, connection: ClientConnection, message: dict) -> None:
        codes = message.get("codes")
        token = message.get("investorToken")
        investor_id = message.get("investorId")
        if not _valid_codes(codes) or not token or not investor_id:
            await connection.send(events.error("Missing required parameters or invalid codes array"))
            return

        await self._gateway.service.fetch_batch(
            codes,
            Credentials(investor_token=str(token), investor_id=str(investor_id)),
            owner_id=connection.id,
            emit=connection.send,
            user_id=_optional_str(message.get("userId")),
        )

    def _health(self) -> dict:
        return {
            "type": "health",
            "status": "ok",
            "uptime": self._gateway.uptime,
            "connections": self._gateway.connection_count,
            "memory": self._gateway.memory_usage(),
        }


def _valid_codes(codes: Any) -> bool:
    return isinstance(codes, list) and all(isinstance(c, str) and c for c in codes)


def _optional_str(value: Any) -> str | None:
    return str(value) if value else None
