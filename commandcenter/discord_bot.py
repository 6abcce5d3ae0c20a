"""Discord front end for the chat-bot adapter."""

import asyncio
from typing import Optional

import discord
import structlog

from .chatbot import ChatBotAdapter, IncomingMessage
from .orchestrator import CommandCenter

logger = structlog.get_logger(__name__)


def to_incoming(message: discord.Message) -> IncomingMessage:
    return IncomingMessage(
        id=str(message.id),
        content=message.content,
        author_is_bot=message.author.bot,
    )


class DiscordBot:
    """Feeds Discord messages to a ChatBotAdapter and edits replies in place."""

    def __init__(
        self,
        center: CommandCenter,
        token: str,
        channel_id: Optional[int] = None,
        client: Optional[discord.Client] = None,
    ):
        """
        Initialize the Discord bot.

        Args:
            center: Command center that runs the commands
            token: Bot token
            channel_id: Only listen in this channel (None listens everywhere)
            client: Pre-built client, mostly for tests
        """
        self.token = token
        self.channel_id = channel_id
        self.adapter = ChatBotAdapter(center, source="discord")
        if client is None:
            intents = discord.Intents.default()
            intents.message_content = True
            client = discord.Client(intents=intents)
        self.client = client
        self.client.event(self.on_ready)
        self.client.event(self.on_message)
        self._task: Optional[asyncio.Task] = None

    async def on_ready(self) -> None:
        logger.info("Discord bot logged in", user=str(self.client.user))

    async def on_message(self, message: discord.Message) -> Optional[str]:
        if self.channel_id is not None and message.channel.id != self.channel_id:
            return None
        return await self.adapter.handle_message(to_incoming(message), message.reply)

    async def start(self) -> None:
        if self._task is not None:
            return
        self.adapter.start()
        self._task = asyncio.create_task(self._run(), name="discord-bot")

    async def stop(self) -> None:
        if not self.client.is_closed():
            await self.client.close()
        if self._task is not None:
            await self._task
            self._task = None
        await self.adapter.stop()

    async def _run(self) -> None:
        try:
            await self.client.start(self.token)
        except discord.LoginFailure as e:
            logger.error("Discord login failed", error=str(e))
        except Exception:
            logger.exception("Discord client stopped unexpectedly")
