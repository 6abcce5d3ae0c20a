"""Tests for the paramiko transport adapters."""

from types import SimpleNamespace

import pytest

from commandcenter.config import CommandCenterConfig
from commandcenter.errors import RemoteConnectError
from commandcenter.models import StreamKind
from commandcenter.ssh import ParamikoConnector, ParamikoProcess


class FakeChannel:
    """Serves scripted stdout/stderr buffers like a finished exec channel."""

    def __init__(self, stdout=(), stderr=(), status=0):
        self.stdout = list(stdout)
        self.stderr = list(stderr)
        self.status = status
        self.closed = False
        self.eof_received = True

    def recv_ready(self):
        return bool(self.stdout)

    def recv(self, size):
        return self.stdout.pop(0)

    def recv_stderr_ready(self):
        return bool(self.stderr)

    def recv_stderr(self, size):
        return self.stderr.pop(0)

    def exit_status_ready(self):
        return True

    def recv_exit_status(self):
        return self.status

    def get_transport(self):
        return None

    def close(self):
        self.closed = True


class FakeTransport:
    def __init__(self, **available):
        self.options = SimpleNamespace(**available)

    def get_security_options(self):
        return self.options


@pytest.mark.asyncio
async def test_stream_decodes_split_utf8():
    channel = FakeChannel(stdout=[b"caf\xc3", b"\xa9\n"], stderr=[b"oops\n"])
    process = ParamikoProcess(channel, poll_interval=0)

    chunks = [chunk async for chunk in process.stream()]

    assert "".join(text for kind, text in chunks if kind == StreamKind.STDOUT) == "café\n"
    assert (StreamKind.STDERR, "oops\n") in chunks
    assert await process.wait() == (0, None)


@pytest.mark.asyncio
async def test_missing_exit_status():
    process = ParamikoProcess(FakeChannel(status=-1), poll_interval=0)

    assert [chunk async for chunk in process.stream()] == []
    assert await process.wait() == (None, None)


@pytest.mark.asyncio
async def test_signal_on_closed_channel_is_ignored():
    channel = FakeChannel()
    process = ParamikoProcess(channel)

    await process.send_signal("INT")
    await process.close()

    assert channel.closed


def test_algorithms_narrowed_to_supported():
    transport = FakeTransport(
        kex=("curve25519-sha256@libssh.org", "diffie-hellman-group14-sha256"),
        ciphers=("aes256-ctr", "aes128-ctr", "3des-cbc"),
        key_types=("ssh-ed25519", "ssh-rsa"),
        digests=("hmac-sha2-512", "hmac-sha1"),
    )
    connector = ParamikoConnector(CommandCenterConfig(_env_file=None))

    connector._apply_algorithms(transport)

    assert transport.options.kex == ["curve25519-sha256@libssh.org"]
    assert transport.options.ciphers == ["aes128-ctr", "aes256-ctr"]
    assert transport.options.key_types == ["ssh-rsa", "ssh-ed25519"]
    assert transport.options.digests == ["hmac-sha2-512"]


def test_no_supported_algorithm_is_an_error():
    transport = FakeTransport(kex=("diffie-hellman-group1-sha1",), ciphers=(), key_types=(), digests=())
    connector = ParamikoConnector(CommandCenterConfig(_env_file=None))

    with pytest.raises(ValueError):
        connector._apply_algorithms(transport)


@pytest.mark.asyncio
async def test_unreachable_host_raises_connect_error():
    config = CommandCenterConfig(_env_file=None, ssh_host="127.0.0.1", ssh_port=1, ssh_connect_timeout=2)

    with pytest.raises(RemoteConnectError) as excinfo:
        await ParamikoConnector(config).connect()

    assert str(excinfo.value).startswith("SSH connection error:")
