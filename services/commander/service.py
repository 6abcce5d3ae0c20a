"""HTTP and WebSocket surface of the command center."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from commandcenter.config import CommandCenterConfig
from commandcenter.discord_bot import DiscordBot
from commandcenter.errors import (
    CommandCenterError,
    NoActiveSessionError,
    RemoteConnectError,
    SessionBusyError,
)
from commandcenter.events import Subscription
from commandcenter.logger import setup_logging
from commandcenter.messaging import MessageBusClient
from commandcenter.models import ExecuteRequest
from commandcenter.orchestrator import CommandCenter
from commandcenter.relay import NatsEventRelay

logger = structlog.get_logger(__name__)


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


class CommanderService:
    """Accepts commands over HTTP and streams lifecycle events over WebSocket."""

    def __init__(
        self,
        config: Optional[CommandCenterConfig] = None,
        center: Optional[CommandCenter] = None,
    ):
        """Initialize the commander service."""
        self.config = config or CommandCenterConfig()
        self.center = center or CommandCenter(self.config)
        self.message_bus = MessageBusClient(self.config)
        self.relay: Optional[NatsEventRelay] = None
        self.bot: Optional[DiscordBot] = None
        self.app = FastAPI(title="Command Center", lifespan=self._lifespan)

        # Setup routes
        self._setup_routes()

    def _setup_routes(self):
        """Setup FastAPI routes."""

        @self.app.get("/")
        async def root():
            return {
                "service": "command-center",
                "version": "0.1.0",
                "status": "running",
                "busy": self.center.busy,
            }

        @self.app.post("/execute")
        async def execute(request: ExecuteRequest):
            """Translate and start a natural-language command."""
            if not request.command or not request.command.strip():
                return _error(400, "Command is required")
            try:
                invocation = await self.center.submit(
                    request.command,
                    invocation_id=request.invocation_id,
                    source=request.source,
                )
            except SessionBusyError as e:
                return _error(409, str(e), invocationId=e.active_invocation_id)
            except RemoteConnectError as e:
                return _error(500, str(e))
            return JSONResponse(
                status_code=202,
                content={
                    "status": "Command execution started",
                    "invocationId": invocation.id,
                    "systemCommand": invocation.resolved_command,
                },
            )

        @self.app.post("/stop")
        async def stop():
            """Interrupt the running command."""
            try:
                invocation = await self.center.cancel()
            except NoActiveSessionError as e:
                return _error(400, str(e))
            return {"status": "Command stop signal sent", "invocationId": invocation.id}

        @self.app.get("/status")
        async def status():
            """Probe the remote host."""
            try:
                return await self.center.status()
            except asyncio.TimeoutError:
                reason = "status probe timed out"
            except (CommandCenterError, OSError) as e:
                reason = str(e)
            logger.error("Status probe failed", error=reason)
            return JSONResponse(
                status_code=500,
                content={
                    "server": "running",
                    "error": f"Could not connect to remote host: {reason}",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            )

        @self.app.get("/history")
        async def history():
            return {"history": self.center.recent()}

        @self.app.post("/translate")
        async def translate(request: ExecuteRequest):
            """Translate without executing."""
            if not request.command or not request.command.strip():
                return _error(400, "Command is required")
            result = await self.center.translate(request.command.strip())
            return {"systemCommand": result.command, **result.model_dump(mode="json")}

        @self.app.websocket("/ws")
        async def events(websocket: WebSocket):
            """Stream every lifecycle event as {event, data} frames."""
            await websocket.accept()
            subscription = self.center.bus.subscribe()
            receiver = asyncio.create_task(self._watch_disconnect(websocket, subscription))
            logger.info("WebSocket client connected", subscribers=self.center.bus.subscriber_count)
            try:
                await websocket.send_json({"event": "connected", "data": {"busy": self.center.busy}})
                async for event in subscription:
                    await websocket.send_json({"event": event.name, "data": event.to_dict()})
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug("WebSocket send failed", error=str(e))
            finally:
                subscription.close()
                receiver.cancel()
                logger.info("WebSocket client disconnected", dropped=subscription.dropped)

    async def _watch_disconnect(self, websocket: WebSocket, subscription: Subscription) -> None:
        """Consume client frames until the socket closes, then end the stream."""
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            subscription.close()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.start()
        try:
            yield
        finally:
            await self.stop()

    async def start(self):
        """Start the command center service."""
        setup_logging(self.config.service_name, self.config.log_level)
        logger.info("Starting command center", ssh_host=self.config.ssh_host, port=self.config.port)

        # Connect to message bus
        try:
            await self.message_bus.connect()
            self.relay = NatsEventRelay(self.center.bus, self.message_bus, self.config.events_subject_prefix)
            self.relay.start()
        except Exception as e:
            logger.error("Failed to connect to message bus", error=str(e))
            logger.warning("Service will run without the NATS event relay")

        if self.config.discord_token:
            self.bot = DiscordBot(self.center, self.config.discord_token, self.config.discord_channel_id)
            await self.bot.start()
            logger.info("Discord bot started", channel_id=self.config.discord_channel_id)

    async def stop(self):
        """Stop the command center service."""
        logger.info("Stopping command center")
        if self.bot is not None:
            await self.bot.stop()
        if self.relay is not None:
            await self.relay.stop()
        if self.message_bus.connected:
            await self.message_bus.disconnect()
        await self.center.aclose()


def create_app(config: Optional[CommandCenterConfig] = None) -> FastAPI:
    return CommanderService(config).app


def run(config: Optional[CommandCenterConfig] = None) -> None:
    import uvicorn

    config = config or CommandCenterConfig()
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    run()
