"""
Streaming channel: adapts a push-style connection to the Channel ABC.

Inbound activities arrive on the connection's callback and are bridged into an
asyncio.Queue the session's consumer task drains.
"""

import asyncio
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional

from copilot_session.channels.base import Channel
from copilot_session.channels.connector import StreamingConnection, Subscription
from copilot_session.errors import TransportError
from copilot_session.logger import get_logger

logger = get_logger(__name__)

_CLOSED = object()


class StreamingChannel(Channel):
    kind = "streaming"

    def __init__(self, connection: StreamingConnection):
        self._connection = connection
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._subscription: Optional[Subscription] = None
        try:
            self._subscription = connection.subscribe(self._on_activity)
        except Exception as e:
            logger.warning(f"Streaming subscription failed: {e}")

    @property
    def connection(self) -> StreamingConnection:
        return self._connection

    @property
    def closed(self) -> bool:
        return self._closed

    def _on_activity(self, activity: dict[str, Any]) -> None:
        if not self._closed:
            self._queue.put_nowait(activity)

    async def activities(self) -> AsyncIterator[dict[str, Any]]:
        while not self._closed:
            item = await self._queue.get()
            if item is _CLOSED:
                break
            yield item

    async def post_activity(self, activity: dict[str, Any]) -> None:
        if self._closed:
            raise TransportError("Streaming channel is closed", code="channel_closed")
        try:
            # The ack stream is always closed, whether it completed or failed.
            async with aclosing(self._connection.post_activity(activity)) as acks:
                async for _ in acks:
                    pass
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"Failed to post activity: {e}", code="post_failed") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._unsubscribe()
        self._queue.put_nowait(_CLOSED)
        try:
            await self._connection.close()
        except Exception as e:
            logger.debug(f"Streaming connection cleanup failed: {e}")

    def _unsubscribe(self) -> None:
        subscription = self._subscription
        self._subscription = None
        if subscription is None:
            return
        try:
            subscription.unsubscribe()
        except Exception as e:
            logger.debug(f"Unsubscribe failed: {e}")
