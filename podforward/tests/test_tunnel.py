# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
import asyncio
import logging
import socket
import types
from contextlib import asynccontextmanager

import anyio
import httpx_ws
import pytest

from podforward import DialerError, TunnelError
from podforward._exceptions import ConnectionClosedError
from podforward._tunnel import (
    ForwardedPort,
    PodDialer,
    TunnelRunner,
    build_dialer,
    parse_ports,
)


class FakeWebSocket:
    """Sends the port header on both channels and then replays ``frames``.

    With ``echo`` every frame sent is also received, like an echo server in the Pod.
    """

    def __init__(self, remote_port, frames=(), echo=True):
        header = remote_port.to_bytes(2, "little")
        self.incoming = asyncio.Queue()
        for frame in (b"\x00" + header, b"\x01" + header, *frames):
            self.incoming.put_nowait(frame)
        self.echo = echo
        self.sent = []

    async def send_bytes(self, data):
        self.sent.append(data)
        if self.echo:
            self.incoming.put_nowait(data)

    async def receive_bytes(self):
        return await self.incoming.get()


class FakeTunnelDialer:
    def __init__(self, frames=(), echo=True, error=None):
        self.frames = frames
        self.echo = echo
        self.error = error
        self.dialed = []
        self.sockets = []

    @asynccontextmanager
    async def dial(self, remote_port):
        self.dialed.append(remote_port)
        if self.error:
            raise self.error
        ws = FakeWebSocket(remote_port, self.frames, self.echo)
        self.sockets.append(ws)
        yield ws


@pytest.mark.parametrize(
    "specs,expected",
    [
        (["8080:80"], [ForwardedPort(8080, 80)]),
        (["5000"], [ForwardedPort(5000, 5000)]),
        ([":443"], [ForwardedPort(0, 443)]),
        (["0:443", "8080:80"], [ForwardedPort(0, 443), ForwardedPort(8080, 80)]),
    ],
)
def test_parse_ports(specs, expected):
    assert parse_ports(specs) == expected


@pytest.mark.parametrize("specs", [[], ["http"], ["80:http"], ["8080:0"], ["70000:80"]])
def test_parse_ports_invalid(specs):
    with pytest.raises(ValueError):
        parse_ports(specs)


async def test_build_dialer():
    api = types.SimpleNamespace(open_websocket=None)
    dialer = await build_dialer(api, "flux", "mypod2")
    assert isinstance(dialer, PodDialer)
    assert dialer.namespace == "flux"
    assert dialer.pod_name == "mypod2"
    assert repr(dialer) == "<PodDialer flux/mypod2>"


@pytest.mark.parametrize(
    "api,namespace,pod_name,match",
    [
        (None, "flux", "mypod2", "no kubernetes api client"),
        (object(), "flux", "mypod2", "no kubernetes api client"),
        (types.SimpleNamespace(open_websocket=None), "", "mypod2", "namespace"),
        (types.SimpleNamespace(open_websocket=None), "flux", "", "pod name"),
    ],
)
async def test_build_dialer_errors(api, namespace, pod_name, match):
    with pytest.raises(DialerError, match=match):
        await build_dialer(api, namespace, pod_name)


class FlakyApi:
    """Fails to open the websocket ``failures`` times before succeeding."""

    def __init__(self, failures):
        self.failures = failures
        self.calls = []

    @asynccontextmanager
    async def open_websocket(self, **kwargs):
        self.calls.append(kwargs)
        if len(self.calls) <= self.failures:
            raise httpx_ws.HTTPXWSException("handshake failed")
        yield "websocket"


async def test_pod_dialer_retries(monkeypatch):
    monkeypatch.setattr("podforward._tunnel.CONNECT_ATTEMPTS", 3)
    api = FlakyApi(failures=2)
    async with PodDialer(api, "flux", "mypod2").dial(3030) as ws:
        assert ws == "websocket"
    assert len(api.calls) == 3
    assert api.calls[0] == {
        "version": "v1",
        "url": "pods/mypod2/portforward",
        "namespace": "flux",
        "params": {"name": "mypod2", "namespace": "flux", "ports": "3030"},
    }


async def test_pod_dialer_gives_up(monkeypatch):
    monkeypatch.setattr("podforward._tunnel.CONNECT_ATTEMPTS", 2)
    api = FlakyApi(failures=10)
    with pytest.raises(ConnectionClosedError, match="Unable to connect to pod mypod2"):
        async with PodDialer(api, "flux", "mypod2").dial(3030):
            pass
    assert len(api.calls) == 2


async def test_tunnel_relays_bytes():
    dialer = FakeTunnelDialer()
    stop, ready = anyio.Event(), anyio.Event()
    runner = TunnelRunner(dialer, ["0:80"], stop, ready)
    async with anyio.create_task_group() as tg:
        tg.start_soon(runner.run)
        await ready.wait()
        port = runner.ports[0].local
        assert port > 0

        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(b"hello")
        await writer.drain()
        assert await reader.readexactly(5) == b"hello"
        writer.close()
        await writer.wait_closed()
        stop.set()

    assert dialer.dialed == [80]
    assert dialer.sockets[0].sent[0] == b"\x00hello"
    assert runner.servers == []


async def test_tunnel_error_channel_closes_connection(caplog):
    caplog.set_level(logging.WARNING, logger="podforward._tunnel")
    dialer = FakeTunnelDialer(frames=[b"\x01connection refused"], echo=False)
    stop, ready = anyio.Event(), anyio.Event()
    runner = TunnelRunner(dialer, [":8080"], stop, ready)
    async with anyio.create_task_group() as tg:
        tg.start_soon(runner.run)
        await ready.wait()

        reader, writer = await asyncio.open_connection(
            "127.0.0.1", runner.ports[0].local
        )
        assert await reader.read() == b""
        writer.close()
        stop.set()

    assert "connection refused" in caplog.text


async def test_tunnel_dial_failure_is_logged(caplog):
    caplog.set_level(logging.WARNING, logger="podforward._tunnel")
    dialer = FakeTunnelDialer(error=ConnectionClosedError("Unable to connect to pod"))
    stop, ready = anyio.Event(), anyio.Event()
    runner = TunnelRunner(dialer, [":5432"], stop, ready)
    async with anyio.create_task_group() as tg:
        tg.start_soon(runner.run)
        await ready.wait()

        reader, writer = await asyncio.open_connection(
            "127.0.0.1", runner.ports[0].local
        )
        assert await reader.read() == b""
        writer.close()
        stop.set()

    assert "Error forwarding to port 5432" in caplog.text


async def test_tunnel_bind_failure():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
        blocker.bind(("127.0.0.1", 0))
        blocker.listen()
        port = blocker.getsockname()[1]

        stop, ready = anyio.Event(), anyio.Event()
        runner = TunnelRunner(FakeTunnelDialer(), [f"{port}:80"], stop, ready)
        with pytest.raises(TunnelError, match=f"unable to listen on 127.0.0.1:{port}"):
            await runner.run()
        assert not ready.is_set()
        assert runner.servers == []


async def test_tunnel_stops_open_connections():
    dialer = FakeTunnelDialer(echo=False)
    stop, ready = anyio.Event(), anyio.Event()
    runner = TunnelRunner(dialer, [":80"], stop, ready)
    async with anyio.create_task_group() as tg:
        tg.start_soon(runner.run)
        await ready.wait()

        reader, writer = await asyncio.open_connection(
            "127.0.0.1", runner.ports[0].local
        )
        while not dialer.sockets:
            await anyio.sleep(0.01)
        stop.set()

    assert await reader.read() == b""
    writer.close()
