"""Client connection tracking and gateway process lifecycle."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Coroutine
from typing import Any

import psutil
from fastapi.websockets import WebSocket, WebSocketState

from .events import Event
from .service import QuoteService

logger = logging.getLogger(__name__)

WELCOME_EVENT: Event = {"type": "connected", "message": "Connected to WSS server", "version": "1.0.0"}


class ClientConnection:
    """One accepted WebSocket client and the request tasks running for it."""

    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self.id = connection_id or str(uuid.uuid4())
        self.websocket = websocket
        self.tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: Event) -> None:
        """Send an event if the socket is still open. Send failures are logged, not raised."""
        if self._closed or self.websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            await self.websocket.send_json(event)
        except Exception as e:
            logger.debug("Dropping %s event for connection %s: %s", event.get("type"), self.id, e)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Run a request handler in its own task so the receive loop keeps reading."""
        task = asyncio.create_task(coro, name=f"client-{self.id}")
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    def cancel_tasks(self) -> int:
        self._closed = True
        pending = [t for t in self.tasks if not t.done()]
        for task in pending:
            task.cancel()
        return len(pending)


class Gateway:
    """Top-level process object owning every client connection.

    Connections are registered on accept and removed on disconnect; removal
    detaches the connection's live sessions and cancels its request tasks so
    no event is produced for a client that is gone. ``shutdown()`` drains
    whatever is left.
    """

    def __init__(self, service: QuoteService, stats_interval: float = 60.0) -> None:
        self.service = service
        self.connections: dict[str, ClientConnection] = {}
        self.started_at = time.monotonic()
        self._stats_interval = stats_interval
        self._stats_task: asyncio.Task | None = None
        self._process = psutil.Process()

    # --- Connection lifecycle ---

    def register(self, websocket: WebSocket) -> ClientConnection:
        connection = ClientConnection(websocket)
        self.connections[connection.id] = connection
        return connection

    def unregister(self, connection: ClientConnection) -> None:
        """Tear down everything the connection started. Safe to call twice."""
        self.connections.pop(connection.id, None)
        released = self.service.release(connection.id)
        cancelled = connection.cancel_tasks()
        if released or cancelled:
            logger.info(
                "Connection %s closed: %d session(s) released, %d task(s) cancelled",
                connection.id,
                released,
                cancelled,
            )

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    def memory_usage(self) -> dict[str, int]:
        info = self._process.memory_info()
        return {"rss": info.rss, "vms": info.vms}

    # --- Process lifecycle ---

    async def start(self) -> None:
        self._stats_task = asyncio.create_task(self._stats_loop(), name="gateway-stats")

    async def shutdown(self) -> None:
        """Close every client connection and stop background work."""
        logger.info("Shutting down gateway (%d connections)", self.connection_count)
        for connection in list(self.connections.values()):
            self.unregister(connection)
            try:
                await connection.websocket.close(code=1001)
            except Exception as e:
                logger.debug("Error closing connection %s: %s", connection.id, e)
        self.service.sessions.release_all()

        if self._stats_task and not self._stats_task.done():
            self._stats_task.cancel()
            try:
                await self._stats_task
            except asyncio.CancelledError:
                pass
        self._stats_task = None
        logger.info("Gateway closed")

    async def _stats_loop(self) -> None:
        while True:
            await asyncio.sleep(self._stats_interval)
            logger.info("Active connections: %d", self.connection_count)
            logger.info("Memory usage: %dMB", self.memory_usage()["rss"] // (1024 * 1024))
