"""Shared fixtures: an in-memory remote host and a quiet configuration."""

import asyncio
from typing import Dict, List, Optional

import pytest

from commandcenter.config import CommandCenterConfig
from commandcenter.errors import RemoteConnectError
from commandcenter.events import EventBus
from commandcenter.models import StreamKind


class FakeProcess:
    """Plays back scripted output, optionally blocking until released."""

    def __init__(self, chunks=(), code: Optional[int] = 0, hold: Optional[asyncio.Event] = None, error=None):
        self.chunks = list(chunks)
        self.code = code
        self.hold = hold
        self.error = error
        self.signals: List[str] = []
        self.closed = False

    async def stream(self):
        for kind, text in self.chunks:
            await asyncio.sleep(0)
            yield kind, text
        if self.hold is not None:
            await self.hold.wait()
        if self.error is not None:
            raise self.error

    async def wait(self):
        return self.code, None

    async def send_signal(self, name: str) -> None:
        self.signals.append(name)

    async def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, connector: "FakeConnector"):
        self.connector = connector
        self.executed: List[str] = []
        self.processes: List[FakeProcess] = []
        self.closed = False

    async def execute(self, command: str) -> FakeProcess:
        self.executed.append(command)
        if self.connector.exec_hold is not None:
            await self.connector.exec_hold.wait()
        if self.closed:
            raise RemoteConnectError("Command execution error: SSH session not active")
        script = self.connector.scripts.get(command, self.connector.default)
        if isinstance(script, Exception):
            raise script
        process = FakeProcess(**script)
        self.processes.append(process)
        return process

    async def close(self) -> None:
        self.closed = True


class FakeConnector:
    """Maps commands to scripted FakeProcess arguments."""

    def __init__(
        self,
        scripts: Optional[Dict[str, object]] = None,
        default: Optional[dict] = None,
        connect_error: Optional[Exception] = None,
        connect_hold: Optional[asyncio.Event] = None,
        exec_hold: Optional[asyncio.Event] = None,
    ):
        self.scripts = scripts or {}
        self.default = default if default is not None else {"chunks": [(StreamKind.STDOUT, "ok\n")]}
        self.connect_error = connect_error
        self.connect_hold = connect_hold
        self.exec_hold = exec_hold
        self.connections: List[FakeConnection] = []

    async def connect(self) -> FakeConnection:
        if self.connect_hold is not None:
            await self.connect_hold.wait()
        if self.connect_error is not None:
            raise self.connect_error
        connection = FakeConnection(self)
        self.connections.append(connection)
        return connection

    @property
    def processes(self) -> List[FakeProcess]:
        return [p for c in self.connections for p in c.processes]


class FakeReasoning:
    """Stands in for ReasoningClient with canned answers or errors."""

    def __init__(self, translation=None, analysis=None):
        self.translation = translation
        self.analysis = analysis
        self.translate_calls = 0
        self.analyze_calls = 0
        self.closed = False

    async def translate(self, user_input, history=None, system_state=None, timeout=30.0):
        self.translate_calls += 1
        if isinstance(self.translation, Exception):
            raise self.translation
        return self.translation

    async def analyze(self, user_input, command, output, timeout=30.0):
        self.analyze_calls += 1
        answer = self.analysis
        if isinstance(answer, list):
            answer = answer.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def aclose(self):
        self.closed = True


async def drain(subscription) -> list:
    """Everything currently queued on a subscription."""
    events = []
    while subscription.pending():
        try:
            events.append(await subscription.get())
        except StopAsyncIteration:
            break
    return events


async def settle(rounds: int = 20) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def config():
    return CommandCenterConfig(
        _env_file=None,
        deepseek_api_key=None,
        command_timeout=5.0,
        translate_timeout=1.0,
        analysis_timeout=0.5,
        status_commands=["uptime", "free -h"],
    )


@pytest.fixture
def bus():
    return EventBus(max_queue_size=100)


@pytest.fixture
def connector():
    return FakeConnector()


async def wait_until(condition, timeout: float = 1.0) -> None:
    """Poll until condition() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        assert loop.time() < deadline, "condition not met in time"
        await asyncio.sleep(0.01)
