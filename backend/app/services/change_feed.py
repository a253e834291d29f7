"""
Trip/driver change notifications over Redis pub/sub.

Writers publish a payload-less "changed" message per table; the scheduling
loop subscribes and refreshes its state on every message.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

TRIPS_CHANNEL = "nemt:changes:trips"
PROFILES_CHANNEL = "nemt:changes:profiles"


def create_redis_client(url: str = None):
    """Create the async Redis client used for change notifications."""
    return redis.from_url(
        url or settings.redis_url,
        decode_responses=settings.redis_decode_responses,
    )


class ChangeFeed:

    def __init__(
        self,
        redis_client,
        channels: Iterable[str] = (TRIPS_CHANNEL, PROFILES_CHANNEL),
        retry_interval: float = 10.0,
    ):
        self.redis = redis_client
        self.channels = tuple(channels)
        self.retry_interval = retry_interval

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except Exception:
            return False

    async def publish(self, channel: str) -> None:
        """Announce that rows behind `channel` changed. Best-effort."""
        try:
            await self.redis.publish(channel, "changed")
        except Exception as exc:
            logger.warning(
                "Change notification not published",
                extra={"channel": channel, "error": str(exc)}
            )

    async def listen(self, on_change: Callable[[str], Awaitable[None]]) -> None:
        """
        Call `on_change(channel)` for every message until cancelled.

        A failing callback is logged and does not stop the subscription.
        A lost connection is logged and the subscription is re-established
        after `retry_interval` seconds.
        """
        while True:
            try:
                await self._listen_once(on_change)
            except (RedisConnectionError, OSError) as exc:
                logger.warning(
                    "Change subscription lost, retrying",
                    extra={"error": str(exc), "retry_in": self.retry_interval}
                )
            await asyncio.sleep(self.retry_interval)

    async def _listen_once(self, on_change: Callable[[str], Awaitable[None]]) -> None:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(*self.channels)
            logger.info("Subscribed to change channels", extra={"channels": list(self.channels)})
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                channel = message.get("channel")
                try:
                    await on_change(channel)
                except Exception:
                    logger.exception("Change handler failed", extra={"channel": channel})
        finally:
            await self._close(pubsub)

    async def _close(self, pubsub) -> None:
        try:
            await pubsub.unsubscribe(*self.channels)
            await pubsub.aclose()
        except (RedisConnectionError, OSError) as exc:
            logger.debug("Pub/sub close failed", extra={"error": str(exc)})
