"""In-process publish/subscribe for invocation lifecycle events.

Publishing is synchronous and never blocks: every subscriber owns a bounded
FIFO queue and, once it is full, the oldest queued event is dropped to make
room. Delivery is therefore at-most-once and best-effort, but events for a
given invocation always arrive in the order they were published.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Set

import structlog

from .invocation import OutputChunk

logger = structlog.get_logger(__name__)


@dataclass
class LifecycleEvent:
    """Base class for everything published on the bus."""
    name: ClassVar[str] = "lifecycleEvent"

    invocation_id: str
    timestamp: float = field(default_factory=time.time, kw_only=True)

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        """Wire form of the event."""
        data = self.payload()
        data["invocationId"] = self.invocation_id
        return data


@dataclass
class CommandIssued(LifecycleEvent):
    name: ClassVar[str] = "commandIssued"

    command: str
    system_command: str
    steps: List[Dict[str, Any]] = field(default_factory=list)
    source: str = "web"

    def payload(self) -> Dict[str, Any]:
        return {
            "command": self.command,
            "systemCommand": self.system_command,
            "steps": self.steps,
            "source": self.source,
        }


@dataclass
class CommandOutput(LifecycleEvent):
    name: ClassVar[str] = "commandOutput"

    chunk: OutputChunk

    def payload(self) -> Dict[str, Any]:
        return self.chunk.to_dict()


@dataclass
class CommandFinished(LifecycleEvent):
    name: ClassVar[str] = "commandFinished"

    code: Optional[int] = None
    signal: Optional[str] = None
    error: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"code": self.code, "signal": self.signal}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class CommandStopped(LifecycleEvent):
    name: ClassVar[str] = "commandStopped"

    message: str = "Command interrupted and SSH connection closed"

    def payload(self) -> Dict[str, Any]:
        return {"message": self.message}


@dataclass
class CommandAnalysis(LifecycleEvent):
    name: ClassVar[str] = "commandAnalysis"

    analysis: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        return {"analysis": self.analysis}


EventFilter = Callable[[LifecycleEvent], bool]

_CLOSED = object()


def for_invocation(invocation_id: str) -> EventFilter:
    """Filter matching the events of a single invocation."""
    return lambda event: event.invocation_id == invocation_id


class Subscription:
    """A subscriber's view of the bus, consumed with `async for`."""

    def __init__(self, bus: EventBus, predicate: Optional[EventFilter], maxsize: int):
        self._bus = bus
        self._predicate = predicate
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def _offer(self, item: Any) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            logger.debug("Subscriber queue full, dropped oldest event", dropped=self.dropped)
        self._queue.put_nowait(item)

    def deliver(self, event: LifecycleEvent) -> None:
        if self.closed:
            return
        if self._predicate is not None and not self._predicate(event):
            return
        self._offer(event)

    def close(self) -> None:
        """Stop receiving; a pending iteration ends after queued events."""
        if self.closed:
            return
        self.closed = True
        self._bus._remove(self)
        self._offer(_CLOSED)

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> LifecycleEvent:
        """Next event; raises StopAsyncIteration once closed and drained."""
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> LifecycleEvent:
        return await self.get()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class EventBus:
    """Fans lifecycle events out to any number of subscribers."""

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self._subscriptions: Set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, predicate: Optional[EventFilter] = None) -> Subscription:
        """Receive events published from now on, optionally filtered."""
        subscription = Subscription(self, predicate, self.max_queue_size)
        self._subscriptions.add(subscription)
        logger.debug("Subscriber added", subscribers=len(self._subscriptions))
        return subscription

    def publish(self, event: LifecycleEvent) -> None:
        logger.debug("Event published", event_name=event.name, invocation_id=event.invocation_id)
        for subscription in list(self._subscriptions):
            subscription.deliver(event)

    def _remove(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)
