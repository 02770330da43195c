# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
"""Websocket tunnel between local TCP listeners and a Pod's ``portforward`` subresource."""
from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any, AsyncGenerator

import anyio
import httpx_ws

from ._constants import CONNECT_ATTEMPTS, DEFAULT_ADDRESS
from ._exceptions import ConnectionClosedError, DialerError, TunnelError

if TYPE_CHECKING:
    from ._types import Dialer

if sys.version_info < (3, 12, 1):
    # contextlib.supress() in Python 3.12.1 supprts ExceptionGroups
    # For older versions, we use the exceptiongroup backport
    from exceptiongroup import suppress  # type: ignore # noqa: F811

logger = logging.getLogger(__name__)

# Each forwarded port gets a pair of channels, even numbers carry data and odd numbers errors.
DATA_CHANNEL: int = 0
ERROR_CHANNEL: int = 1
READ_CHUNK_SIZE: int = 1024 * 1024


class PodDialer:
    """Open ``portforward`` websockets to a single Pod."""

    def __init__(self, api: Any, namespace: str, pod_name: str) -> None:
        self.api = api
        self.namespace = namespace
        self.pod_name = pod_name

    def __repr__(self) -> str:
        return f"<PodDialer {self.namespace}/{self.pod_name}>"

    @asynccontextmanager
    async def dial(self, remote_port: int) -> AsyncGenerator[Any]:
        """Connect to the Kubernetes portforward websocket for ``remote_port``."""
        connection_attempts = 0
        while True:
            try:
                async with self.api.open_websocket(
                    version="v1",
                    url=f"pods/{self.pod_name}/portforward",
                    namespace=self.namespace,
                    params={
                        "name": self.pod_name,
                        "namespace": self.namespace,
                        "ports": f"{remote_port}",
                    },
                ) as websocket:
                    yield websocket
                    break
            except httpx_ws.HTTPXWSException as e:
                connection_attempts += 1
                if connection_attempts >= CONNECT_ATTEMPTS:
                    raise ConnectionClosedError(
                        f"Unable to connect to pod {self.pod_name}"
                    ) from e
                await anyio.sleep(0.1 * connection_attempts)


async def build_dialer(api: Any, namespace: str, pod_name: str) -> PodDialer:
    """Create a :class:`PodDialer` scoped to one Pod.

    Raises:
        DialerError: If there is no API client or the Pod is not fully specified.
    """
    if api is None or not hasattr(api, "open_websocket"):
        raise DialerError("no kubernetes api client to open the tunnel with")
    if not namespace:
        raise DialerError("a namespace is required to open a tunnel")
    if not pod_name:
        raise DialerError("a pod name is required to open a tunnel")
    return PodDialer(api, namespace, pod_name)


@dataclass
class ForwardedPort:
    local: int
    remote: int


def parse_ports(specs: list[str]) -> list[ForwardedPort]:
    """Parse port mappings in the same forms ``kubectl port-forward`` accepts.

    Examples:
        >>> parse_ports(["8080:80", "5000", ":443"])
        [ForwardedPort(local=8080, remote=80), ForwardedPort(local=5000, remote=5000),
         ForwardedPort(local=0, remote=443)]
    """
    ports = []
    for spec in specs:
        local, sep, remote = spec.partition(":")
        if not sep:
            remote = local
        try:
            local_port = int(local) if local else 0
            remote_port = int(remote)
        except ValueError as e:
            raise ValueError(f"invalid port mapping {spec!r}") from e
        if not 0 <= local_port <= 65535 or not 0 < remote_port <= 65535:
            raise ValueError(f"port out of range in mapping {spec!r}")
        ports.append(ForwardedPort(local=local_port, remote=remote_port))
    if not ports:
        raise ValueError("at least one port mapping is required")
    return ports


class TunnelRunner:
    """Listen on local ports and relay every connection to a Pod.

    Args:
        ``dialer`` (Dialer): Opens the websocket for each accepted connection.

        ``ports`` (list[str]): Port mappings such as ``"8080:80"``.

        ``stop`` (anyio.Event): Set to shut the tunnel down.

        ``ready`` (anyio.Event): Set by the runner once every listener is accepting connections.

        ``address`` (list[str] | str, optional): Addresses to listen on. Defaults to ``"127.0.0.1"``.
    """

    def __init__(
        self,
        dialer: Dialer,
        ports: list[str],
        stop: anyio.Event,
        ready: anyio.Event,
        address: list[str] | str = DEFAULT_ADDRESS,
    ) -> None:
        self.dialer = dialer
        self.ports = parse_ports(ports)
        self.stop = stop
        self.ready = ready
        self.address = [address] if isinstance(address, str) else list(address)
        self.servers: list[asyncio.Server] = []
        self._connections: set[asyncio.Task] = set()

    async def run(self) -> None:
        """Forward connections until ``stop`` is set.

        Raises:
            TunnelError: If a listener could not be bound.
        """
        try:
            for port in self.ports:
                for address in self.address:
                    try:
                        server = await asyncio.start_server(
                            partial(self._sync_sockets, port.remote),
                            host=address,
                            port=port.local,
                        )
                    except OSError as e:
                        raise TunnelError(
                            f"unable to listen on {address}:{port.local}: {e}"
                        ) from e
                    self.servers.append(server)
                    if port.local == 0:
                        # Bind the remaining addresses to the port the OS picked
                        port.local = server.sockets[0].getsockname()[1]
                    logger.debug(
                        f"Forwarding from {address}:{port.local} -> {port.remote}"
                    )
            self.ready.set()
            await self.stop.wait()
            logger.debug(f"Stopping tunnel to {self.dialer}")
        finally:
            for server in self.servers:
                server.close()
            for task in list(self._connections):
                task.cancel()
            for server in self.servers:
                await server.wait_closed()
            self.servers.clear()

    async def _sync_sockets(self, remote_port: int, reader, writer) -> None:
        """Start two tasks to copy bytes from tcp=>websocket and websocket=>tcp."""
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)
        try:
            async with self.dialer.dial(remote_port) as ws:
                with suppress(ConnectionClosedError, httpx_ws.WebSocketDisconnect):
                    async with anyio.create_task_group() as tg:
                        tg.start_soon(self._tcp_to_ws, ws, reader)
                        tg.start_soon(self._ws_to_tcp, ws, writer)
        except Exception as e:
            logger.warning(f"Error forwarding to port {remote_port}: {e}")
        finally:
            writer.close()
            if task is not None:
                self._connections.discard(task)

    async def _tcp_to_ws(self, ws, reader) -> None:
        while True:
            data = await reader.read(READ_CHUNK_SIZE)
            if not data:
                raise ConnectionClosedError("TCP socket closed")
            try:
                await ws.send_bytes(DATA_CHANNEL.to_bytes(1, "big") + data)
            except ConnectionResetError as e:
                raise ConnectionClosedError("Websocket closed") from e

    async def _ws_to_tcp(self, ws, writer) -> None:
        channels: list[int] = []
        while True:
            message = await ws.receive_bytes()
            channel, payload = message[0], message[1:]
            # The first frame on every channel only carries the port number
            if channel not in channels:
                channels.append(channel)
                continue
            if channel % 2 == ERROR_CHANNEL:
                logger.warning(f"Error from pod on channel {channel}: {payload.decode()}")
                raise ConnectionClosedError(payload.decode())
            writer.write(payload)
            await writer.drain()
