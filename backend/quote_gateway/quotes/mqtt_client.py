"""MQTT (aiomqtt) connection to the DNSE KRX datafeed."""

from __future__ import annotations

import logging
import ssl
from contextlib import AsyncExitStack

from aiomqtt import Client, MqttError, ProtocolVersion

from .exceptions import SubscriptionRejected, TransportError
from .interface import BrokerConnection
from .models import Credentials

logger = logging.getLogger(__name__)

# SUBACK reason codes at or above this value are failures (MQTT v5 §3.9.3)
_SUBACK_FAILURE = 0x80


def _insecure_tls_context() -> ssl.SSLContext:
    """The datafeed's certificate chain does not validate; match its deployment."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


class MqttBrokerConnection(BrokerConnection):
    """BrokerConnection backed by aiomqtt over secure WebSockets (MQTT v5).

    The investor id is the MQTT username and the investor token the password.
    All aiomqtt errors surface as TransportError carrying the broker's text,
    which is what sessions use to recognise rejected credentials.
    """

    def __init__(
        self,
        host: str,
        port: int,
        client_id: str,
        credentials: Credentials,
        websocket_path: str = "/wss",
        connect_timeout: float = 10.0,
    ) -> None:
        self._client_id = client_id
        self._client = Client(
            hostname=host,
            port=port,
            identifier=client_id,
            username=credentials.investor_id,
            password=credentials.investor_token,
            protocol=ProtocolVersion.V5,
            transport="websockets",
            websocket_path=websocket_path,
            tls_context=_insecure_tls_context(),
            tls_insecure=True,
            timeout=connect_timeout,
        )
        self._stack = AsyncExitStack()
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        try:
            await self._stack.enter_async_context(self._client)
        except MqttError as e:
            self._abort_handshake()
            raise TransportError(str(e)) from e
        except BaseException:
            # Deadline or detach cancelled us before CONNACK. aiomqtt has
            # already opened the socket and only cleans up after MqttError.
            self._abort_handshake()
            raise
        self._connected = True
        logger.debug("MQTT client %s connected", self._client_id)

    async def subscribe(self, topic: str, qos: int) -> None:
        try:
            granted = await self._client.subscribe(topic, qos=qos)
        except MqttError as e:
            raise TransportError(str(e)) from e

        for code in granted or ():
            if int(getattr(code, "value", code)) >= _SUBACK_FAILURE:
                raise SubscriptionRejected(f"Subscription to {topic} rejected: {code}")

    async def next_message(self) -> bytes:
        try:
            message = await anext(self._client.messages)
        except MqttError as e:
            raise TransportError(str(e)) from e

        payload = message.payload
        if isinstance(payload, str):
            return payload.encode()
        if isinstance(payload, (bytes, bytearray)):
            return bytes(payload)
        # aiomqtt hands numbers through unchanged; re-encode so parsing sees JSON text
        return str(payload).encode()

    async def unsubscribe(self, topic: str) -> None:
        if not self._connected:
            return
        try:
            await self._client.unsubscribe(topic)
        except MqttError as e:
            raise TransportError(str(e)) from e

    async def close(self) -> None:
        self._connected = False
        try:
            await self._stack.aclose()
        except MqttError as e:
            logger.warning("MQTT client %s did not disconnect cleanly: %s", self._client_id, e)

    def _abort_handshake(self) -> None:
        """Drop a half-open client that never reached the exit stack.

        Closes the paho socket (which also unregisters aiomqtt's reader and
        writer callbacks) and frees the client's reentrancy lock.
        """
        paho = self._client._client
        try:
            paho.disconnect()
        except Exception as e:
            logger.debug("MQTT client %s disconnect during abort failed: %s", self._client_id, e)
        if paho.socket() is not None:
            paho._sock_close()
        if self._client._lock.locked():
            self._client._lock.release()
        logger.debug("MQTT client %s aborted before CONNACK", self._client_id)
