import asyncio
from typing import Any, Awaitable, Callable, Optional, Union

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from chatnotify.utils.config import SessionConfig


logger = structlog.get_logger()

MessageHandler = Callable[[str], Awaitable[None]]


class NoopSubscription:

    async def run(self) -> None:
        await asyncio.Future()

    async def cancel(self) -> None:
        return


class NoopBus:

    enabled = False

    async def subscribe(self, channel: str, on_message: MessageHandler) -> NoopSubscription:
        return NoopSubscription()

    async def close(self) -> None:
        return


class RedisSubscription:

    def __init__(self, pubsub: Any, channel: str, on_message: MessageHandler, poll_timeout: float = 1.0) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._on_message = on_message
        self._poll_timeout = poll_timeout
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=self._poll_timeout)
            except (RedisError, OSError) as exc:
                logger.warning("bus_receive_failed", channel=self._channel, error=str(exc))
                await asyncio.sleep(0.5)
                continue
            if not msg or msg.get("type") != "message":
                continue
            data: Union[str, bytes] = msg.get("data")
            if isinstance(data, bytes):
                try:
                    data = data.decode("utf-8")
                except UnicodeDecodeError as exc:
                    logger.warning("bus_message_dropped", channel=self._channel, error=str(exc))
                    continue
            try:
                await self._on_message(data)
            except Exception:
                logger.exception("bus_handler_failed", channel=self._channel)

    async def cancel(self) -> None:
        self._running = False
        try:
            await self._pubsub.unsubscribe(self._channel)
        except (RedisError, OSError) as exc:
            logger.warning("bus_unsubscribe_failed", channel=self._channel, error=str(exc))
        await self._pubsub.aclose()


class RedisBus:

    enabled = True

    def __init__(self, url: Optional[str] = None, client: Optional[redis.Redis] = None) -> None:
        if client is None and not url:
            raise ValueError("RedisBus needs a url or a client")
        self._redis = client if client is not None else redis.from_url(url)

    async def subscribe(self, channel: str, on_message: MessageHandler) -> RedisSubscription:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        logger.info("bus_subscribed", channel=channel)
        return RedisSubscription(pubsub, channel, on_message)

    async def close(self) -> None:
        await self._redis.aclose()


def get_bus(config: SessionConfig) -> Union[RedisBus, NoopBus]:
    if not config.redis_url:
        return NoopBus()
    return RedisBus(config.redis_url)
