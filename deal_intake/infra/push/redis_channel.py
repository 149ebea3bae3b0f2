"""Redis pub/sub push channel with reconnect."""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from deal_intake.infra.config.settings import settings
from deal_intake.infra.push.channel import PushEvent, PushHandler, dispatch
from deal_intake.infra.storage.redis_client import get_redis
from deal_intake.shared.logging import get_logger

logger = get_logger(__name__)


def channel_name(deal_id: str, prefix: Optional[str] = None) -> str:
    return f"{prefix or settings.push_channel_prefix}:{deal_id}"


async def publish_event(client: aioredis.Redis, deal_id: str, event: PushEvent) -> int:
    """Publish an event for a deal; returns the number of receivers."""
    return await client.publish(channel_name(deal_id), event.to_json())


class RedisPushChannel:
    """Subscribes to `<prefix>:<deal_id>` and feeds parsed events to the handler.

    While the subscription is down `connected` is False, and the listener
    retries with capped exponential backoff until `disconnect()`.
    """

    def __init__(
        self,
        deal_id: str,
        *,
        client: Optional[aioredis.Redis] = None,
        prefix: Optional[str] = None,
        max_backoff: Optional[float] = None,
        initial_backoff: float = 0.5,
    ) -> None:
        self.deal_id = deal_id
        self.channel = channel_name(deal_id, prefix)
        self.max_backoff = max_backoff if max_backoff is not None else settings.push_reconnect_max_seconds
        self.initial_backoff = initial_backoff
        self._client = client
        self._handler: Optional[PushHandler] = None
        self._task: Optional[asyncio.Task] = None
        self._connected = False
        self._subscribed = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self, handler: PushHandler) -> None:
        self._handler = handler
        if self._task is None or self._task.done():
            self._subscribed.clear()
            self._task = asyncio.create_task(self._run(), name=f"push:{self.channel}")

    async def wait_connected(self, timeout: float = 5.0) -> bool:
        try:
            await asyncio.wait_for(self._subscribed.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def disconnect(self) -> None:
        self._handler = None
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._connected = False

    async def _run(self) -> None:
        backoff = self.initial_backoff
        while True:
            try:
                client = self._client or await get_redis()
                await self._listen(client)
                backoff = self.initial_backoff
            except asyncio.CancelledError:
                raise
            except (RedisError, ConnectionError, OSError, RuntimeError) as exc:
                self._connected = False
                logger.warning(
                    "Push channel %s down (%s); reconnecting in %.1fs", self.channel, exc, backoff
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self.max_backoff)

    async def _listen(self, client: aioredis.Redis) -> None:
        pubsub = client.pubsub()
        try:
            await pubsub.subscribe(self.channel)
            self._connected = True
            self._subscribed.set()
            logger.info("Push channel subscribed: %s", self.channel)
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    continue
                await self._on_message(message)
        finally:
            self._connected = False
            try:
                await pubsub.aclose()
            except (RedisError, OSError) as exc:
                logger.debug("pubsub close failed: %s", exc)

    async def _on_message(self, message: Any) -> None:
        data = message.get("data") if isinstance(message, dict) else None
        if data is None:
            return
        try:
            event = PushEvent.from_json(data)
        except ValueError as exc:
            logger.warning("Ignoring malformed push event on %s: %s", self.channel, exc)
            return
        await dispatch(self._handler, event)
