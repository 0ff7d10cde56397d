import asyncio
from typing import Awaitable, Callable, Dict, List, Optional
from pydantic import BaseModel, ValidationError
from gridbot.core.logger import logging
from gridbot.core.state import StateStore
from gridbot.modules.bus.messages import BusMessage, Channel, parse_message

logger = logging.getLogger(__name__)


class Subscription:
    """
    One subscriber's queue on one channel. Payloads arrive as JSON text and are
    parsed on read; anything malformed is logged and skipped.
    """
    def __init__(self, bus: "MessageBus", channel: str, maxsize: int = 0):
        self.bus = bus
        self.channel = channel
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def _enqueue(self, payload: str):
        if self.queue.maxsize > 0 and self.queue.full():
            # slow consumer: drop the oldest payload
            self.queue.get_nowait()
            logger.warning(f"Subscriber on {self.channel} lagging, dropped oldest message")
        self.queue.put_nowait(payload)

    def _parse(self, payload: str) -> Optional[BusMessage]:
        try:
            return parse_message(payload)
        except ValidationError as e:
            logger.warning(f"Dropping malformed message on {self.channel}: {e.error_count()} error(s)")
            return None

    async def get(self) -> BusMessage:
        while True:
            message = self._parse(await self.queue.get())
            if message is not None:
                return message

    def drain(self) -> List[BusMessage]:
        """Parsed messages currently queued, without waiting."""
        messages = []
        while not self.queue.empty():
            message = self._parse(self.queue.get_nowait())
            if message is not None:
                messages.append(message)
        return messages

    def close(self):
        self.bus.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> BusMessage:
        return await self.get()


class MessageBus:
    """
    In-process publish/subscribe over named channels, plus the snapshot store
    agents use to share the latest portfolio state.
    """
    def __init__(self, store: Optional[StateStore] = None):
        self.store = store or StateStore()
        self._subscribers: Dict[str, List[Subscription]] = {}

    def subscribe(self, channel: str, maxsize: int = 0) -> Subscription:
        channel = Channel(channel).value
        sub = Subscription(self, channel, maxsize)
        self._subscribers.setdefault(channel, []).append(sub)
        logger.debug(f"Subscribed to {channel}")
        return sub

    def unsubscribe(self, sub: Subscription):
        subs = self._subscribers.get(sub.channel, [])
        if sub in subs:
            subs.remove(sub)

    async def publish(self, channel: str, message: BaseModel) -> int:
        return await self.publish_raw(channel, message.model_dump_json())

    async def publish_raw(self, channel: str, payload: str) -> int:
        """Fan a JSON payload out to every subscriber; returns the receiver count."""
        channel = Channel(channel).value
        subs = list(self._subscribers.get(channel, []))
        for sub in subs:
            sub._enqueue(payload)
        return len(subs)

    def set_state(self, key: str, field: str, value):
        self.store.set_state(key, field, value)

    def get_state(self, key: str, field: str):
        return self.store.get_state(key, field)


async def consume(sub: Subscription, handler: Callable[[BusMessage], Awaitable[object]]):
    """
    Feed every message on `sub` to `handler` until cancelled. A failing handler
    is logged and the loop moves on to the next message.
    """
    async for message in sub:
        try:
            await handler(message)
        except Exception as e:
            logger.error(f"Handler for {sub.channel} failed on {message.type}: {e}", exc_info=True)
