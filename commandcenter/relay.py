"""Republishes lifecycle events onto the NATS message bus."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol

import structlog

from .events import EventBus, LifecycleEvent, Subscription

logger = structlog.get_logger(__name__)


class Publisher(Protocol):
    async def publish(self, subject: str, message: Any) -> None:
        ...


def subject_for(prefix: str, event: LifecycleEvent) -> str:
    return f"{prefix}.{event.name}"


class NatsEventRelay:
    """Forwards every bus event to `<prefix>.<eventName>`."""

    def __init__(self, bus: EventBus, publisher: Publisher, prefix: str = "commandcenter.events"):
        self.bus = bus
        self.publisher = publisher
        self.prefix = prefix
        self.forwarded = 0
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._subscription = self.bus.subscribe()
        self._task = asyncio.create_task(self._forward(self._subscription), name="nats-event-relay")
        logger.info("Event relay started", prefix=self.prefix)

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
        if self._task is not None:
            await self._task
        self._subscription = None
        self._task = None
        logger.info("Event relay stopped", forwarded=self.forwarded)

    async def _forward(self, subscription: Subscription) -> None:
        async for event in subscription:
            subject = subject_for(self.prefix, event)
            try:
                await self.publisher.publish(subject, event.to_dict())
            except Exception as e:
                logger.warning("Failed to relay event", subject=subject, error=str(e))
                continue
            self.forwarded += 1
