"""NATS connection wrapper speaking JSON (dicts or pydantic models)."""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable

import nats
from nats.aio.client import Client
from nats.aio.msg import Msg
from nats.js import JetStreamContext
from pydantic import BaseModel

logger = logging.getLogger(__name__)

Payload = dict[str, Any] | BaseModel | None


def _encode(data: Payload) -> bytes:
    if isinstance(data, BaseModel):
        return data.model_dump_json().encode()
    return json.dumps(data or {}).encode()


def _decode(msg: Msg) -> dict[str, Any]:
    return json.loads(msg.data.decode()) if msg.data else {}


class NatsConnection:
    """Owns the nats client and its JetStream context for the whole process."""

    def __init__(self, url: str = "nats://localhost:4222", name: str | None = None) -> None:
        self._url = url
        self._name = name
        self._nc: Client | None = None
        self._js: JetStreamContext | None = None

    @property
    def nc(self) -> Client:
        if self._nc is None or self._nc.is_closed:
            raise RuntimeError("NATS connection not established. Call connect() first.")
        return self._nc

    @property
    def js(self) -> JetStreamContext:
        if self._js is None:
            raise RuntimeError("JetStream not available. Call connect() first.")
        return self._js

    @property
    def is_connected(self) -> bool:
        return self._nc is not None and self._nc.is_connected

    async def connect(self) -> None:
        """Connect with unlimited reconnect attempts."""

        async def error_cb(e: Exception) -> None:
            logger.error("NATS error: %s", e)

        async def disconnected_cb() -> None:
            logger.warning("NATS disconnected")

        async def reconnected_cb() -> None:
            logger.info("NATS reconnected to %s", self._url)

        self._nc = await nats.connect(
            self._url,
            name=self._name,
            error_cb=error_cb,
            disconnected_cb=disconnected_cb,
            reconnected_cb=reconnected_cb,
            max_reconnect_attempts=-1,
            reconnect_time_wait=2,
        )
        self._js = self._nc.jetstream()
        logger.info("Connected to NATS at %s", self._url)

    async def close(self) -> None:
        if self._nc and not self._nc.is_closed:
            await self._nc.drain()
            logger.info("NATS connection drained and closed")

    async def publish(self, subject: str, data: Payload = None) -> None:
        await self.nc.publish(subject, _encode(data))

    async def request(
        self, subject: str, data: Payload = None, timeout: float = 10.0
    ) -> dict[str, Any]:
        """Send a request and wait for the JSON reply."""
        msg = await self.nc.request(subject, _encode(data), timeout=timeout)
        return _decode(msg)

    async def subscribe_request(
        self,
        subject: str,
        handler: Callable[[dict[str, Any]], Awaitable[dict[str, Any]]],
        queue: str | None = None,
    ) -> Any:
        """Serve a request/reply subject; the handler's dict becomes the reply."""

        async def _cb(msg: Msg) -> None:
            try:
                reply = await handler(_decode(msg))
            except Exception:
                logger.exception("Error handling request on %s", subject)
                reply = {"error": "Internal error"}
            try:
                await msg.respond(_encode(reply))
            except Exception:
                logger.exception("Failed to respond on %s", subject)

        sub = await self.nc.subscribe(subject, queue=queue, cb=_cb)
        logger.debug("Subscribed to request subject %s", subject)
        return sub

    async def js_subscribe(
        self,
        subject: str,
        handler: Callable[[dict[str, Any]], Awaitable[None]],
        durable: str | None = None,
    ) -> Any:
        """Durable JetStream subscription; failed messages are NAKed for redelivery."""

        async def _cb(msg: Msg) -> None:
            try:
                await handler(_decode(msg))
                await msg.ack()
            except Exception:
                logger.exception("Error handling JetStream message on %s", subject)
                await msg.nak()

        sub = await self.js.subscribe(subject, durable=durable, cb=_cb, manual_ack=True)
        logger.debug("JetStream subscribed to %s (durable=%s)", subject, durable)
        return sub
