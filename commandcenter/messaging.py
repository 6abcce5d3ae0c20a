"""Message bus client wrapper for NATS."""

import json
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import nats
import structlog
from nats.aio.client import Client as NATSClient

from .config import CommandCenterConfig

logger = structlog.get_logger(__name__)


def encode(message: Union[Dict[str, Any], str, bytes]) -> bytes:
    """Serialize a message payload."""
    if isinstance(message, dict):
        return json.dumps(message, default=str).encode()
    if isinstance(message, str):
        return message.encode()
    return message


class MessageBusClient:
    """Wrapper for the NATS connection used to relay lifecycle events."""

    def __init__(self, config: Optional[CommandCenterConfig] = None):
        """Initialize the message bus client."""
        self.config = config or CommandCenterConfig()
        self.nc: Optional[NATSClient] = None
        self._subscriptions: Dict[str, Any] = {}

    @property
    def connected(self) -> bool:
        return self.nc is not None and self.nc.is_connected

    async def connect(self) -> None:
        """Connect to NATS server."""
        try:
            self.nc = await nats.connect(
                servers=[self.config.nats_url],
                max_reconnect_attempts=self.config.nats_max_reconnect_attempts,
                reconnect_time_wait=2,
                error_cb=self._error_callback,
                disconnected_cb=self._disconnected_callback,
                reconnected_cb=self._reconnected_callback,
            )
            logger.info("Connected to NATS", url=self.config.nats_url)
        except Exception as e:
            logger.error("Failed to connect to NATS", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Disconnect from NATS server."""
        if self.nc:
            await self.nc.drain()
            await self.nc.close()
            self.nc = None
            self._subscriptions.clear()
            logger.info("Disconnected from NATS")

    async def publish(
        self,
        subject: str,
        message: Union[Dict[str, Any], str, bytes],
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """Publish a message to a subject."""
        if not self.nc:
            raise RuntimeError("Not connected to NATS")

        payload = encode(message)
        await self.nc.publish(subject, payload, headers=headers)
        logger.debug("Published message", subject=subject, size=len(payload))

    async def subscribe(
        self,
        subject: str,
        callback: Callable[[str, Dict[str, Any]], Awaitable[None]],
        queue: Optional[str] = None,
    ) -> None:
        """Subscribe to a subject; the callback gets the concrete subject and decoded body."""
        if not self.nc:
            raise RuntimeError("Not connected to NATS")

        async def message_handler(msg):
            try:
                data = json.loads(msg.data.decode())
                await callback(msg.subject, data)
            except Exception as e:
                logger.error(
                    "Error handling message",
                    subject=msg.subject,
                    error=str(e)
                )

        sub = await self.nc.subscribe(subject, queue=queue or "", cb=message_handler)
        self._subscriptions[subject] = sub
        logger.info("Subscribed to subject", subject=subject, queue=queue)

    async def _error_callback(self, e: Exception) -> None:
        """Handle NATS errors."""
        logger.error("NATS error", error=str(e))

    async def _disconnected_callback(self) -> None:
        """Handle NATS disconnection."""
        logger.warning("Disconnected from NATS")

    async def _reconnected_callback(self) -> None:
        """Handle NATS reconnection."""
        logger.info("Reconnected to NATS")
