"""Tests for the chat-bot adapter."""

import asyncio

import pytest

from commandcenter.chatbot import MAX_LINES, ChatBotAdapter, IncomingMessage, TrackedCommand
from commandcenter.errors import RemoteConnectError
from commandcenter.events import CommandAnalysis, CommandFinished, CommandOutput, CommandStopped
from commandcenter.invocation import OutputChunk
from commandcenter.models import StreamKind
from commandcenter.orchestrator import CommandCenter

from conftest import FakeConnector, settle, wait_until


class FakeChatMessage:
    def __init__(self, content):
        self.content = content
        self.edits = []

    async def edit(self, *, content):
        self.content = content
        self.edits.append(content)


class FakeChannel:
    def __init__(self):
        self.replies = []

    async def reply(self, content):
        message = FakeChatMessage(content)
        self.replies.append(message)
        return message


@pytest.fixture
def center(config):
    connector = FakeConnector({
        "uptime": {"chunks": [(StreamKind.STDOUT, "10:00 up 1 day,  load average: 0.10, 0.20, 0.30\n")]},
    })
    return CommandCenter(config, connector=connector)


@pytest.mark.asyncio
async def test_ignores_non_commands(center):
    bot = ChatBotAdapter(center)
    channel = FakeChannel()

    assert await bot.handle_message(IncomingMessage("1", "hello there"), channel.reply) is None
    assert await bot.handle_message(IncomingMessage("2", "!uptime", author_is_bot=True), channel.reply) is None
    assert await bot.handle_message(IncomingMessage("3", "!   "), channel.reply) is None
    assert channel.replies == []


@pytest.mark.asyncio
async def test_command_output_and_analysis_rendered(center):
    bot = ChatBotAdapter(center)
    bot.start()
    channel = FakeChannel()

    invocation_id = await bot.handle_message(IncomingMessage("msg-1", "!uptime"), channel.reply)
    reply = channel.replies[0]
    await wait_until(lambda: "**Analysis:**" in reply.content)

    assert invocation_id == "msg-1"
    assert reply.edits[0].startswith("\N{ANTICLOCKWISE DOWNWARDS AND UPWARDS OPEN CIRCLE ARROWS} Command Output:")
    assert "Executing: uptime" in reply.edits[0]
    final = reply.edits[-1]
    assert final.startswith("\N{WHITE HEAVY CHECK MARK} Command Output:")
    assert "load average: 0.10, 0.20, 0.30" in final
    assert "Command completed." in final
    assert "**Analysis:** System load is minimal" in final
    assert bot.tracked == []

    await bot.stop()
    await center.aclose()


@pytest.mark.asyncio
async def test_rejection_reported_in_reply(config):
    center = CommandCenter(config, connector=FakeConnector(connect_error=RemoteConnectError("SSH connection error: refused")))
    bot = ChatBotAdapter(center)
    bot.start()
    channel = FakeChannel()

    result = await bot.handle_message(IncomingMessage("msg-1", "!uptime"), channel.reply)
    await settle()

    assert result is None
    assert channel.replies[0].edits[-1] == "Error executing command: SSH connection error: refused"
    assert bot.tracked == []
    await bot.stop()


@pytest.mark.asyncio
async def test_stop_marks_reply(center):
    bot = ChatBotAdapter(center)
    channel = FakeChannel()
    reply = await channel.reply("Processing command: `sleep`")
    bot._active["msg-2"] = TrackedCommand(message=reply, input="sleep")

    await bot.handle_event(CommandStopped("msg-2"))
    await bot.handle_event(CommandAnalysis("msg-2", analysis={"summary": "late"}))

    assert reply.edits == ["\N{WARNING SIGN} Command Output:\n```\nCommand stopped.\n```"]
    assert bot.tracked == []


@pytest.mark.asyncio
async def test_only_last_lines_shown(center):
    bot = ChatBotAdapter(center)
    reply = await FakeChannel().reply("Processing command")
    bot._active["msg-3"] = TrackedCommand(message=reply, input="logs")

    text = "".join(f"line {i}\n" for i in range(40))
    await bot.handle_event(CommandOutput("msg-3", chunk=OutputChunk(kind=StreamKind.STDOUT, data=text)))
    await bot.handle_event(CommandFinished("msg-3", code=3))

    body = reply.edits[-1].split("```\n", 1)[1].rsplit("\n```", 1)[0].splitlines()
    assert len(body) == MAX_LINES
    assert body[-1] == "Command completed with exit code 3."
    assert body[0] == "line 26"


@pytest.mark.asyncio
async def test_consumer_survives_handler_errors(center, monkeypatch):
    bot = ChatBotAdapter(center)
    handled = []

    async def flaky(event):
        handled.append(event.invocation_id)
        if len(handled) == 1:
            raise RuntimeError("edit exploded")

    monkeypatch.setattr(bot, "handle_event", flaky)
    bot.start()
    center.bus.publish(CommandStopped("msg-1"))
    center.bus.publish(CommandStopped("msg-2"))
    await wait_until(lambda: len(handled) == 2)

    assert handled == ["msg-1", "msg-2"]
    assert not bot._task.done()
    await bot.stop()
