"""Command center: translation, remote execution and analysis of requests."""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Set

import structlog

from .analyzer import Analyzer
from .config import CommandCenterConfig
from .errors import RemoteConnectError, SessionBusyError
from .events import CommandAnalysis, EventBus
from .invocation import Invocation, new_invocation_id
from .models import InvocationState, TranslationResult
from .reasoning import ReasoningClient
from .session import SessionManager
from .ssh import ParamikoConnector, RemoteConnector
from .translator import Translator

logger = structlog.get_logger(__name__)


class CommandCenter:
    """Entry point for consumers: submit, cancel, query status."""

    def __init__(
        self,
        config: Optional[CommandCenterConfig] = None,
        connector: Optional[RemoteConnector] = None,
        reasoning: Optional[ReasoningClient] = None,
        bus: Optional[EventBus] = None,
    ):
        """
        Initialize the command center.

        Args:
            config: Settings; loaded from the environment when omitted
            connector: Remote connector; SSH via paramiko when omitted
            reasoning: Reasoning client; created when an API key is configured
            bus: Event bus shared with consumers
        """
        self.config = config or CommandCenterConfig()
        self.bus = bus or EventBus(self.config.event_queue_size)
        if reasoning is None and self.config.reasoning_enabled:
            reasoning = ReasoningClient(self.config)
        self.reasoning = reasoning

        self.translator = Translator(
            reasoning=reasoning,
            timeout=self.config.translate_timeout,
            confidence_threshold=self.config.translation_confidence_threshold,
        )
        self.analyzer = Analyzer(
            reasoning=reasoning,
            base_timeout=self.config.analysis_timeout,
            max_attempts=self.config.analysis_max_attempts,
        )
        self.sessions = SessionManager(
            connector or ParamikoConnector(self.config),
            self.bus,
            command_timeout=self.config.command_timeout,
        )

        self.history: Deque[Dict[str, Any]] = deque(maxlen=self.config.history_size)
        self.system_state: Dict[str, Any] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return self.sessions.busy

    async def translate(self, raw_input: str) -> TranslationResult:
        """Translate with a caller-side ceiling; never raises."""
        try:
            return await asyncio.wait_for(
                self.translator.translate(raw_input, self._history_context(), dict(self.system_state)),
                timeout=self.config.translate_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Translation timed out", input=raw_input, timeout=self.config.translate_timeout)
            return self.translator.fallback(raw_input)

    async def submit(
        self,
        raw_input: str,
        invocation_id: Optional[str] = None,
        source: str = "web",
    ) -> Invocation:
        """
        Translate and start a command.

        Returns the running invocation. Raises SessionBusyError if a command
        is already running and RemoteConnectError if it could not start.
        """
        raw_input = (raw_input or "").strip()
        if not raw_input:
            raise ValueError("Command is required")
        if self.sessions.busy:
            raise SessionBusyError(self.sessions.current.id)

        invocation = Invocation(
            id=invocation_id or new_invocation_id(),
            raw_input=raw_input,
            source=source,
        )
        logger.info("Command received", invocation_id=invocation.id, input=raw_input, source=source)
        invocation.transition(InvocationState.TRANSLATING)
        invocation.translation = await self.translate(raw_input)

        try:
            await self.sessions.start(invocation)
        except RemoteConnectError:
            self._record(invocation)
            raise

        self._spawn(self._follow(invocation))
        return invocation

    async def cancel(self) -> Invocation:
        """Interrupt the running command; raises NoActiveSessionError if idle."""
        return await self.sessions.interrupt()

    async def status(self) -> Dict[str, Any]:
        """Probe the remote host and refresh the known system state."""
        results = await self.sessions.probe(self.config.status_commands)
        now = datetime.now(timezone.utc).isoformat()
        self.system_state["status"] = results
        self.system_state["statusUpdatedAt"] = now
        current = self.sessions.current
        return {
            "server": "running",
            "timestamp": now,
            "busy": current is not None,
            "currentInvocation": current.id if current else None,
            "system": results,
        }

    def recent(self) -> List[Dict[str, Any]]:
        return list(self.history)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self.reasoning is not None:
            await self.reasoning.aclose()

    async def _follow(self, invocation: Invocation) -> None:
        """Analyze the output once the command has finished."""
        state = await invocation.wait_closed()
        self._record(invocation)
        if state == InvocationState.INTERRUPTED:
            return
        if state == InvocationState.FAILED and not invocation.output:
            return

        try:
            result = await self.analyzer.analyze(
                invocation.raw_input,
                invocation.resolved_command,
                invocation.captured_output(),
            )
        except Exception as e:
            logger.error("Analysis failed", invocation_id=invocation.id, error=str(e))
            self.bus.publish(CommandAnalysis(invocation.id, error=str(e)))
            return

        self.system_state["lastAnalysis"] = {
            "input": invocation.raw_input,
            "summary": result.summary,
            "concerns": result.concerns,
            "metrics": result.metrics,
        }
        self.bus.publish(CommandAnalysis(invocation.id, analysis=result.model_dump(mode="json")))
        logger.info(
            "Analysis published",
            invocation_id=invocation.id,
            source=result.source,
            concerns=len(result.concerns),
        )

    def _record(self, invocation: Invocation) -> None:
        self.history.append(invocation.to_dict())

    def _history_context(self) -> List[Dict[str, Any]]:
        return [
            {
                "input": entry["input"],
                "command": entry["systemCommand"],
                "state": entry["state"],
                "exitCode": entry["exitCode"],
            }
            for entry in self.history
        ]

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
