from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Protocol

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class PushSubscriber(Protocol):
    def listen(self, channel: str) -> AsyncIterator[tuple[str, dict]]: ...


class RedisPushSubscriber:
    """Client side of the fan-out: yields ``(event, data)`` pairs from one channel.

    The subscription is dropped when the iteration ends, including when the
    consuming task is cancelled.
    """

    def __init__(self, client: aioredis.Redis, poll_timeout: float = 1.0) -> None:
        self._redis = client
        self._poll_timeout = poll_timeout

    @classmethod
    def from_url(cls, url: str) -> "RedisPushSubscriber":
        return cls(aioredis.from_url(url))

    async def listen(self, channel: str) -> AsyncIterator[tuple[str, dict]]:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        logger.debug("subscribed to %s", channel)
        try:
            while True:
                raw = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self._poll_timeout
                )
                if raw is None or raw.get("type") != "message":
                    continue
                data = raw.get("data")
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                try:
                    envelope = json.loads(data)
                except (TypeError, ValueError):
                    logger.warning("push: dropping undecodable payload on %s", channel)
                    continue
                yield envelope.get("event", ""), envelope.get("data") or {}
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            logger.debug("unsubscribed from %s", channel)
