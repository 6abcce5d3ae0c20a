"""Remote session manager: at most one running remote command at a time."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from .errors import (
    NoActiveSessionError,
    RemoteConnectError,
    RemoteStreamError,
    SessionBusyError,
)
from .events import CommandFinished, CommandIssued, CommandOutput, CommandStopped, EventBus
from .invocation import Invocation, OutputChunk
from .models import CommandStep, InvocationState
from .ssh import RemoteConnection, RemoteConnector, RemoteProcess

logger = structlog.get_logger(__name__)


@dataclass
class Session:
    """The live remote-execution context of one invocation."""
    invocation: Invocation
    steps: List[CommandStep]
    connection: Optional[RemoteConnection] = None
    process: Optional[RemoteProcess] = None
    task: Optional[asyncio.Task] = None
    stopped: bool = False


class SessionManager:
    """Owns the single remote session and publishes its lifecycle events."""

    def __init__(
        self,
        connector: RemoteConnector,
        bus: EventBus,
        command_timeout: Optional[float] = 300.0,
    ):
        """
        Initialize the session manager.

        Args:
            connector: Opens connections to the remote host
            bus: Where lifecycle events are published
            command_timeout: Ceiling on total runtime in seconds (None disables)
        """
        self._connector = connector
        self._bus = bus
        self.command_timeout = command_timeout
        self._lock = asyncio.Lock()
        self._session: Optional[Session] = None

    @property
    def busy(self) -> bool:
        return self._session is not None

    @property
    def current(self) -> Optional[Invocation]:
        return self._session.invocation if self._session else None

    async def start(
        self,
        invocation: Invocation,
        steps: Optional[Sequence[CommandStep]] = None,
    ) -> Invocation:
        """
        Connect, start the first step and begin streaming output.

        Returns once the remote command is running, or already interrupted
        if `interrupt()` won the race against the handshake or exec. Raises SessionBusyError
        without touching any state if another invocation holds the session,
        and RemoteConnectError (after publishing commandFinished) if the
        command could not be started.
        """
        if steps is None:
            steps = invocation.translation.steps if invocation.translation else []
        steps = list(steps)
        if not steps:
            raise ValueError("Nothing to execute")

        async with self._lock:
            if self._session is not None:
                active = self._session.invocation.id
                logger.warning("Session busy, rejecting start", invocation_id=invocation.id, active=active)
                raise SessionBusyError(active)
            session = Session(invocation=invocation, steps=steps)
            self._session = session

        invocation.transition(InvocationState.RUNNING)
        logger.info("Starting remote command", invocation_id=invocation.id, command=invocation.resolved_command)

        try:
            session.connection = await self._connector.connect()
            if not session.stopped:
                session.process = await session.connection.execute(steps[0].command)
        except asyncio.CancelledError:
            await self._abandon(session, "Submission cancelled before the command started")
            raise
        except Exception as e:
            if session.stopped:
                # The interrupt closed the connection under us and already reported it
                logger.info("Start abandoned after interrupt", invocation_id=invocation.id, error=str(e))
                await self._teardown(session)
                return invocation
            if isinstance(e, RemoteConnectError):
                await self._abandon(session, str(e))
                raise
            error = f"SSH connection error: {e}"
            await self._abandon(session, error)
            raise RemoteConnectError(error) from e

        if session.stopped:
            # Interrupted during the handshake; the interrupt already reported it
            await self._teardown(session)
            return invocation

        self._bus.publish(CommandIssued(
            invocation.id,
            command=invocation.raw_input,
            system_command=invocation.resolved_command,
            steps=[step.model_dump() for step in steps],
            source=invocation.source,
        ))
        session.task = asyncio.create_task(self._pump(session), name=f"invocation-{invocation.id}")
        return invocation

    async def interrupt(self) -> Invocation:
        """
        Signal the running command, drop the connection and report it stopped.

        Best-effort: nothing waits for the remote process to acknowledge.
        """
        async with self._lock:
            session = self._session
            if session is None:
                raise NoActiveSessionError()
            session.stopped = True
            self._session = None

        invocation = session.invocation
        invocation.interrupt()
        self._bus.publish(CommandStopped(invocation.id))
        logger.info("Command interrupted", invocation_id=invocation.id)

        if session.task is not None:
            session.task.cancel()
        await self._teardown(session, signal_name="INT")
        return invocation

    async def probe(self, commands: Sequence[str], timeout: float = 30.0) -> Dict[str, Any]:
        """
        Run status commands on a separate short-lived connection.

        Does not take the session, so it works while a command is running.
        """
        connection = await self._connector.connect()
        try:
            outputs = await asyncio.wait_for(
                asyncio.gather(*(self._probe_one(connection, command) for command in commands)),
                timeout=timeout,
            )
        finally:
            await self._close_quietly(connection)
        return dict(zip(commands, outputs))

    async def _probe_one(self, connection: RemoteConnection, command: str) -> Any:
        try:
            process = await connection.execute(command)
            chunks = [text async for _, text in process.stream()]
            await process.wait()
            await process.close()
        except (RemoteConnectError, RemoteStreamError) as e:
            return {"error": str(e)}
        return "".join(chunks).strip()

    async def _pump(self, session: Session) -> None:
        invocation = session.invocation
        try:
            if self.command_timeout:
                code, signal = await asyncio.wait_for(self._run_steps(session), self.command_timeout)
            else:
                code, signal = await self._run_steps(session)
        except asyncio.TimeoutError:
            logger.warning("Command timed out", invocation_id=invocation.id, timeout=self.command_timeout)
            await self._finish_failed(
                session,
                f"Command timed out after {self.command_timeout:g} seconds",
                signal_name="INT",
            )
            return
        except (RemoteStreamError, RemoteConnectError) as e:
            logger.error("Remote stream failed", invocation_id=invocation.id, error=str(e))
            await self._finish_failed(session, str(e))
            return
        except Exception as e:
            logger.exception("Unexpected error while running command", invocation_id=invocation.id)
            await self._finish_failed(session, f"Unexpected error: {e}")
            return

        if session.stopped:
            return
        invocation.complete(code, signal)
        self._release(session)
        self._bus.publish(CommandFinished(invocation.id, code=code, signal=signal))
        logger.info("Command finished", invocation_id=invocation.id, code=code, signal=signal)
        await self._teardown(session)

    async def _run_steps(self, session: Session) -> Tuple[Optional[int], Optional[str]]:
        """Run every step in order; the result code is the first failure, else the last code."""
        invocation = session.invocation
        first_failure: Optional[int] = None
        code: Optional[int] = None
        signal: Optional[str] = None

        for index, step in enumerate(session.steps):
            if index > 0:
                try:
                    session.process = await session.connection.execute(step.command)
                except RemoteConnectError as e:
                    raise RemoteStreamError(str(e)) from e
            process = session.process
            async for kind, text in process.stream():
                if session.stopped:
                    return code, signal
                chunk = OutputChunk(kind=kind, data=text, step=step.label)
                invocation.append_output(chunk)
                self._bus.publish(CommandOutput(invocation.id, chunk=chunk))
            code, step_signal = await process.wait()
            await process.close()
            signal = step_signal or signal
            if code not in (0, None) and first_failure is None:
                first_failure = code
            if code not in (0, None) and step.check:
                logger.info("Step failed, skipping remaining steps", step=step.label, code=code)
                break

        return (first_failure if first_failure is not None else code), signal

    async def _finish_failed(self, session: Session, error: str, signal_name: Optional[str] = None) -> None:
        if session.stopped:
            return
        session.invocation.fail(error)
        self._release(session)
        self._bus.publish(CommandFinished(session.invocation.id, error=error))
        await self._teardown(session, signal_name=signal_name)

    async def _abandon(self, session: Session, error: str) -> None:
        """Report a command that never started; a no-op report if it was interrupted."""
        if not session.stopped:
            session.invocation.fail(error)
            self._release(session)
            self._bus.publish(CommandFinished(session.invocation.id, error=error))
        await self._teardown(session)

    def _release(self, session: Session) -> None:
        if self._session is session:
            self._session = None

    async def _teardown(self, session: Session, signal_name: Optional[str] = None) -> None:
        process, connection = session.process, session.connection
        if process is not None and signal_name:
            try:
                await process.send_signal(signal_name)
            except Exception as e:
                logger.warning("Signal delivery failed", error=str(e))
        if connection is not None:
            await self._close_quietly(connection)

    async def _close_quietly(self, connection: RemoteConnection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.warning("Error closing remote connection", error=str(e))
