"""Chat-bot adapter: runs `!`-prefixed chat messages and edits a live status reply."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

import structlog

from .errors import CommandCenterError
from .events import (
    CommandAnalysis,
    CommandFinished,
    CommandIssued,
    CommandOutput,
    CommandStopped,
    LifecycleEvent,
    Subscription,
)
from .orchestrator import CommandCenter

logger = structlog.get_logger(__name__)

PREFIX = "!"
MAX_LINES = 15

STATUS_MARKERS = {
    "processing": "\N{ANTICLOCKWISE DOWNWARDS AND UPWARDS OPEN CIRCLE ARROWS}",
    "completed": "\N{WHITE HEAVY CHECK MARK}",
    "failed": "\N{WARNING SIGN}",
    "stopped": "\N{WARNING SIGN}",
}


class ChatMessage(Protocol):
    """A message the bot posted and may edit later."""

    async def edit(self, *, content: str) -> None:
        ...


Reply = Callable[[str], Awaitable[ChatMessage]]


@dataclass
class IncomingMessage:
    id: str
    content: str
    author_is_bot: bool = False


@dataclass
class TrackedCommand:
    """The status reply of one chat-issued command."""
    message: ChatMessage
    input: str
    lines: List[str] = field(default_factory=list)
    status: str = "processing"
    has_output: bool = False

    def render(self) -> str:
        output = "\n".join(self.lines[-MAX_LINES:])
        return f"{STATUS_MARKERS[self.status]} Command Output:\n```\n{output}\n```"


class ChatBotAdapter:
    """Bridges a chat channel to the command center."""

    def __init__(self, center: CommandCenter, source: str = "chat"):
        self.center = center
        self.source = source
        self._active: Dict[str, TrackedCommand] = {}
        self._awaiting_analysis: Dict[str, TrackedCommand] = {}
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def tracked(self) -> List[str]:
        return list(self._active)

    def start(self) -> None:
        if self._task is not None:
            return
        self._subscription = self.center.bus.subscribe()
        self._task = asyncio.create_task(self._consume(self._subscription), name="chatbot-events")

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
        if self._task is not None:
            await self._task
        self._subscription = None
        self._task = None

    async def handle_message(self, message: IncomingMessage, reply: Reply) -> Optional[str]:
        """
        Run a chat command.

        Returns the invocation id, or None when the message is not a command
        or could not be started.
        """
        if message.author_is_bot or not message.content.startswith(PREFIX):
            return None
        content = message.content[len(PREFIX):].strip()
        if not content:
            return None

        response = await reply(f"Processing command: `{content}`")
        self._active[message.id] = TrackedCommand(message=response, input=content)

        try:
            invocation = await self.center.submit(content, invocation_id=message.id, source=self.source)
        except CommandCenterError as e:
            self._forget(message.id)
            logger.warning("Chat command rejected", message_id=message.id, error=str(e))
            await self._edit(response, f"Error executing command: {e}")
            return None
        logger.info("Chat command accepted", message_id=message.id, invocation_id=invocation.id)
        return invocation.id

    async def handle_event(self, event: LifecycleEvent) -> None:
        invocation_id = event.invocation_id

        if isinstance(event, CommandAnalysis):
            tracked = self._awaiting_analysis.pop(invocation_id, None)
            if tracked is None:
                return
            if event.error is not None:
                summary = f"Analysis unavailable: {event.error}"
            else:
                summary = (event.analysis or {}).get("summary", "")
            await self._edit(tracked.message, f"{tracked.render()}\n**Analysis:** {summary}")
            return

        tracked = self._active.get(invocation_id)
        if tracked is None:
            return

        if isinstance(event, CommandIssued):
            tracked.lines.append(f"Executing: {event.system_command}")
        elif isinstance(event, CommandOutput):
            tracked.has_output = True
            tracked.lines.extend(event.chunk.data.rstrip("\n").splitlines())
        elif isinstance(event, CommandFinished):
            del self._active[invocation_id]
            if event.error is not None:
                tracked.status = "failed"
                tracked.lines.append(f"Command failed: {event.error}")
            else:
                tracked.status = "completed"
                if event.code in (0, None):
                    tracked.lines.append("Command completed.")
                else:
                    tracked.lines.append(f"Command completed with exit code {event.code}.")
            if event.error is None or tracked.has_output:
                self._awaiting_analysis[invocation_id] = tracked
        elif isinstance(event, CommandStopped):
            del self._active[invocation_id]
            tracked.status = "stopped"
            tracked.lines.append("Command stopped.")
        await self._edit(tracked.message, tracked.render())

    def _forget(self, invocation_id: str) -> None:
        self._active.pop(invocation_id, None)
        self._awaiting_analysis.pop(invocation_id, None)

    async def _consume(self, subscription: Subscription) -> None:
        async for event in subscription:
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("Error handling chat event", event_name=event.name)

    async def _edit(self, message: ChatMessage, content: str) -> None:
        try:
            await message.edit(content=content)
        except Exception as e:
            logger.error("Error updating chat message", error=str(e))
