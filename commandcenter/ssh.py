"""SSH transport for remote command execution.

The session manager only sees the async `RemoteConnector` /
`RemoteConnection` / `RemoteProcess` interfaces; the paramiko implementation
below runs its blocking calls in worker threads and polls channels without
blocking the event loop.
"""

from __future__ import annotations

import asyncio
import codecs
import socket
from typing import AsyncIterator, Dict, List, Optional, Protocol, Tuple

import paramiko
import structlog
from paramiko.common import cMSG_CHANNEL_REQUEST

from .config import CommandCenterConfig
from .errors import RemoteConnectError, RemoteStreamError
from .models import StreamKind

logger = structlog.get_logger(__name__)

BUFFER_SIZE = 32768


class RemoteProcess(Protocol):
    """A command running on the remote host."""

    def stream(self) -> AsyncIterator[Tuple[StreamKind, str]]:
        ...

    async def wait(self) -> Tuple[Optional[int], Optional[str]]:
        ...

    async def send_signal(self, name: str) -> None:
        ...

    async def close(self) -> None:
        ...


class RemoteConnection(Protocol):
    """An authenticated connection to the remote host."""

    async def execute(self, command: str) -> RemoteProcess:
        ...

    async def close(self) -> None:
        ...


class RemoteConnector(Protocol):
    """Factory for remote connections."""

    async def connect(self) -> RemoteConnection:
        ...


class ParamikoProcess:
    """A remote command bound to one paramiko exec channel."""

    def __init__(self, channel: paramiko.Channel, poll_interval: float = 0.05):
        self._channel = channel
        self.poll_interval = poll_interval

    async def stream(self) -> AsyncIterator[Tuple[StreamKind, str]]:
        """Yield decoded output chunks in arrival order until the command exits."""
        channel = self._channel
        decoders = {
            kind: codecs.getincrementaldecoder("utf-8")(errors="replace")
            for kind in StreamKind
        }
        readers = (
            (StreamKind.STDOUT, channel.recv_ready, channel.recv),
            (StreamKind.STDERR, channel.recv_stderr_ready, channel.recv_stderr),
        )
        while True:
            received = False
            for kind, ready, recv in readers:
                try:
                    data = recv(BUFFER_SIZE) if ready() else b""
                except (OSError, paramiko.SSHException) as e:
                    raise RemoteStreamError(f"Output stream error: {e}") from e
                if data:
                    received = True
                    text = decoders[kind].decode(data)
                    if text:
                        yield kind, text
            if received:
                continue
            if channel.exit_status_ready() or channel.closed or channel.eof_received:
                if not channel.recv_ready() and not channel.recv_stderr_ready():
                    break
                continue
            await asyncio.sleep(self.poll_interval)

        for kind, decoder in decoders.items():
            tail = decoder.decode(b"", final=True)
            if tail:
                yield kind, tail

    async def wait(self) -> Tuple[Optional[int], Optional[str]]:
        """Exit code and signal name of the finished command."""
        channel = self._channel
        if not channel.exit_status_ready():
            transport = channel.get_transport()
            if channel.closed or transport is None or not transport.is_active():
                raise RemoteStreamError("Connection closed before the command exited")
        status = await asyncio.to_thread(channel.recv_exit_status)
        if status == -1:
            # Server closed the channel without an exit status
            return None, None
        return status, None

    async def send_signal(self, name: str) -> None:
        """Best-effort RFC 4254 "signal" request, e.g. name="INT"."""
        channel = self._channel
        transport = channel.get_transport()
        if channel.closed or transport is None or not transport.is_active():
            return
        message = paramiko.Message()
        message.add_byte(cMSG_CHANNEL_REQUEST)
        message.add_int(channel.remote_chanid)
        message.add_string("signal")
        message.add_boolean(False)
        message.add_string(name)
        try:
            transport._send_user_message(message)
            logger.debug("Signal sent to remote process", signal=name)
        except (OSError, paramiko.SSHException) as e:
            logger.warning("Failed to send signal", signal=name, error=str(e))

    async def close(self) -> None:
        self._channel.close()


class ParamikoConnection:
    """An authenticated paramiko transport."""

    def __init__(self, transport: paramiko.Transport, poll_interval: float = 0.05, timeout: float = 10.0):
        self._transport = transport
        self.poll_interval = poll_interval
        self.timeout = timeout

    def _open_channel(self, command: str) -> paramiko.Channel:
        channel = self._transport.open_session(timeout=self.timeout)
        channel.exec_command(command)
        return channel

    async def execute(self, command: str) -> ParamikoProcess:
        try:
            channel = await asyncio.to_thread(self._open_channel, command)
        except (OSError, paramiko.SSHException) as e:
            raise RemoteConnectError(f"Command execution error: {e}") from e
        logger.debug("Remote command started", command=command)
        return ParamikoProcess(channel, self.poll_interval)

    async def close(self) -> None:
        await asyncio.to_thread(self._transport.close)


class ParamikoConnector:
    """Opens key-authenticated SSH connections with narrowed algorithm suites."""

    def __init__(self, config: Optional[CommandCenterConfig] = None):
        self.config = config or CommandCenterConfig()

    async def connect(self) -> ParamikoConnection:
        cfg = self.config
        logger.info("Connecting to remote host", host=cfg.ssh_host, port=cfg.ssh_port, user=cfg.ssh_username)
        try:
            transport = await asyncio.to_thread(self._open_transport)
        except (OSError, paramiko.SSHException, ValueError) as e:
            logger.error("SSH connection failed", host=cfg.ssh_host, error=str(e))
            raise RemoteConnectError(f"SSH connection error: {e}") from e
        logger.info("SSH connection established", host=cfg.ssh_host)
        return ParamikoConnection(transport, cfg.ssh_poll_interval, cfg.ssh_connect_timeout)

    def _open_transport(self) -> paramiko.Transport:
        cfg = self.config
        sock = socket.create_connection((cfg.ssh_host, cfg.ssh_port), timeout=cfg.ssh_connect_timeout)
        transport = paramiko.Transport(sock)
        try:
            self._apply_algorithms(transport)
            transport.start_client(timeout=cfg.ssh_connect_timeout)
            self._verify_host_key(transport)
            key = paramiko.PKey.from_path(
                cfg.ssh_private_key.expanduser(),
                passphrase=cfg.ssh_key_passphrase.encode() if cfg.ssh_key_passphrase else None,
            )
            transport.auth_publickey(cfg.ssh_username, key)
        except BaseException:
            transport.close()
            raise
        return transport

    def _apply_algorithms(self, transport: paramiko.Transport) -> None:
        """Restrict negotiation to the configured algorithms paramiko supports."""
        options = transport.get_security_options()
        wanted: Dict[str, List[str]] = {
            "kex": self.config.ssh_kex_algorithms,
            "ciphers": self.config.ssh_ciphers,
            "key_types": self.config.ssh_host_key_algorithms,
            "digests": self.config.ssh_mac_algorithms,
        }
        for attr, algorithms in wanted.items():
            available = getattr(options, attr)
            usable = [name for name in algorithms if name in available]
            unsupported = [name for name in algorithms if name not in available]
            if unsupported:
                logger.debug("Skipping unsupported algorithms", kind=attr, algorithms=unsupported)
            if not usable:
                raise ValueError(f"None of the configured {attr} algorithms are supported: {algorithms}")
            setattr(options, attr, usable)

    def _verify_host_key(self, transport: paramiko.Transport) -> None:
        known_hosts = self.config.ssh_known_hosts
        if known_hosts is None:
            return
        host_keys = paramiko.HostKeys(str(known_hosts.expanduser()))
        hostname = self.config.ssh_host
        if self.config.ssh_port != 22:
            hostname = f"[{hostname}]:{self.config.ssh_port}"
        server_key = transport.get_remote_server_key()
        if not host_keys.check(hostname, server_key):
            raise paramiko.SSHException(f"Host key for {hostname} is unknown or does not match {known_hosts}")
