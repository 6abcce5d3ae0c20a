"""The per-request lifecycle record."""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from .models import InvocationState, StreamKind, TranslationResult

logger = structlog.get_logger(__name__)


def new_invocation_id() -> str:
    """Generate an opaque invocation id."""
    return uuid.uuid4().hex


@dataclass
class OutputChunk:
    """A piece of remote output."""
    kind: StreamKind
    data: str
    timestamp: float = field(default_factory=time.time)
    step: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.kind.value,
            "data": self.data,
            "timestamp": self.timestamp,
            "step": self.step,
        }


@dataclass
class Invocation:
    """One request lifecycle, from natural-language input to analysis."""

    id: str
    raw_input: str
    source: str = "web"
    state: InvocationState = InvocationState.RECEIVED
    translation: Optional[TranslationResult] = None
    output: List[OutputChunk] = field(default_factory=list)
    exit_code: Optional[int] = None
    signal: Optional[str] = None
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    _closed: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    @property
    def resolved_command(self) -> str:
        return self.translation.command if self.translation else ""

    def transition(self, state: InvocationState) -> None:
        """Move to a new state; terminal states are final."""
        if self.state.terminal:
            logger.debug(
                "Ignoring transition out of terminal state",
                invocation_id=self.id,
                current=self.state.value,
                requested=state.value,
            )
            return
        self.state = state
        if state.terminal:
            self.finished_at = time.time()
            self._closed.set()

    def append_output(self, chunk: OutputChunk) -> None:
        self.output.append(chunk)

    def captured_output(self) -> str:
        """All output in arrival order."""
        return "".join(chunk.data for chunk in self.output)

    def complete(self, exit_code: Optional[int], signal: Optional[str] = None) -> None:
        self.exit_code = exit_code
        self.signal = signal
        self.transition(InvocationState.COMPLETED)

    def fail(self, error: str) -> None:
        self.error = error
        self.transition(InvocationState.FAILED)

    def interrupt(self) -> None:
        self.transition(InvocationState.INTERRUPTED)

    async def wait_closed(self) -> InvocationState:
        """Wait until the invocation reaches a terminal state."""
        await self._closed.wait()
        return self.state

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot suitable for publishing."""
        return {
            "invocationId": self.id,
            "input": self.raw_input,
            "source": self.source,
            "state": self.state.value,
            "systemCommand": self.resolved_command,
            "translation": self.translation.model_dump(mode="json") if self.translation else None,
            "exitCode": self.exit_code,
            "signal": self.signal,
            "error": self.error,
            "createdAt": self.created_at,
            "finishedAt": self.finished_at,
            "outputChunks": len(self.output),
        }
