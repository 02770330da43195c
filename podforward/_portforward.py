# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
from __future__ import annotations

import asyncio
import enum
import logging
import socket
from contextlib import suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping

import anyio
import sniffio

from ._cluster import Kr8sClusterClient, load_api
from ._constants import DEFAULT_ADDRESS, DEFAULT_NAMESPACE
from ._exceptions import (
    DialerError,
    PortBindError,
    ResolutionError,
    TunnelError,
)
from ._resolver import Resolver
from ._selector import LabelSelector
from ._tunnel import TunnelRunner, build_dialer
from ._types import ClusterClient, ResourceType

if TYPE_CHECKING:
    from ._types import DialerFactory, Runner, RunnerFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForwardSpec:
    """What to forward to and on which ports.

    Use :meth:`for_pod` or :meth:`for_service` to build one.

    Attributes:
        resource_type: Whether labels select Pods directly or the Endpoints of a Service.
        destination_port: The port inside the Pod to forward to.
        name: An explicit Pod name. Takes precedence over ``selector``.
        selector: Labels used to find the Pod when no name is given.
        namespace: The namespace to look for the resource in.
        listen_port: The local port to listen on, ``0`` picks a free port.
    """

    resource_type: ResourceType
    destination_port: int
    name: str | None = None
    selector: LabelSelector = field(default_factory=LabelSelector)
    namespace: str = DEFAULT_NAMESPACE
    listen_port: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.resource_type, ResourceType):
            raise ValueError(f"unknown resource type {self.resource_type!r}")
        if not 0 < self.destination_port <= 65535:
            raise ValueError(f"invalid destination port {self.destination_port}")
        if not 0 <= self.listen_port <= 65535:
            raise ValueError(f"invalid listen port {self.listen_port}")
        object.__setattr__(self, "selector", LabelSelector.coerce(self.selector))

    @classmethod
    def for_pod(
        cls,
        destination_port: int,
        name: str | None = None,
        selector: LabelSelector | Mapping | None = None,
        namespace: str = DEFAULT_NAMESPACE,
        listen_port: int = 0,
    ) -> ForwardSpec:
        """Forward to a Pod given by name or selected by its labels."""
        return cls(
            resource_type=ResourceType.POD,
            destination_port=destination_port,
            name=name,
            selector=LabelSelector.coerce(selector),
            namespace=namespace,
            listen_port=listen_port,
        )

    @classmethod
    def for_service(
        cls,
        destination_port: int,
        name: str | None = None,
        selector: LabelSelector | Mapping | None = None,
        namespace: str = DEFAULT_NAMESPACE,
        listen_port: int = 0,
    ) -> ForwardSpec:
        """Forward to a Pod backing a Service whose Endpoints match the selector."""
        return cls(
            resource_type=ResourceType.SERVICE,
            destination_port=destination_port,
            name=name,
            selector=LabelSelector.coerce(selector),
            namespace=namespace,
            listen_port=listen_port,
        )


class ForwardState(enum.Enum):
    CREATED = "created"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"


class PortForward:
    """Forward a local port to a port inside a Pod found by name or labels.

    .. warning:
        Port forwards only work when using ``asyncio`` and not ``trio``.

    Args:
        ``spec`` (ForwardSpec): What to forward to.

        ``api`` (kr8s.asyncio.Api, optional): The API client to use. Loaded from the
        default kubeconfig on start when neither ``api`` nor ``client`` is given.

        ``client`` (ClusterClient, optional): Used to list Pods and Endpoints.
        Defaults to a :class:`Kr8sClusterClient` wrapping ``api``.

        ``resolver`` (Resolver, optional): Resolves ``spec`` to a Pod name.

        ``address`` (list[str] | str, optional): Addresses to listen on. Defaults to ``"127.0.0.1"``.

        ``dialer_factory``, ``runner_factory`` (optional): Build the tunnel transport.

    Example:
        This class can be used as an async context manager or with explicit start/stop methods.

        Context manager:

        >>> spec = ForwardSpec.for_pod(8888, selector={"app": "web"})
        >>> async with PortForward(spec) as port:
        ...     print(f"Forwarding to port {port}")

        Explicit start/stop:

        >>> pf = PortForward(spec)
        >>> await pf.start()
        >>> print(f"Forwarding to port {pf.local_port}")
        >>> await pf.stop()
    """

    def __init__(
        self,
        spec: ForwardSpec,
        *,
        api: Any = None,
        client: ClusterClient | None = None,
        resolver: Resolver | None = None,
        address: list[str] | str = DEFAULT_ADDRESS,
        dialer_factory: DialerFactory = build_dialer,
        runner_factory: RunnerFactory = TunnelRunner,
    ) -> None:
        with suppress(sniffio.AsyncLibraryNotFoundError):
            if sniffio.current_async_library() != "asyncio":
                raise RuntimeError("PortForward only works with asyncio")
        self.spec = spec
        self.address = address
        self.state = ForwardState.CREATED
        self.pod_name: str | None = None
        self._api = api
        self._client = client
        self._resolver = resolver
        self._dialer_factory = dialer_factory
        self._runner_factory = runner_factory
        self._listen_port: int | None = None
        self._stop: anyio.Event | None = None
        self._ready: anyio.Event | None = None
        self._runner: Runner | None = None
        self._worker: asyncio.Task | None = None

    def __repr__(self) -> str:
        target = self.spec.name or self.spec.selector
        return f"<PortForward {self.spec.resource_type} {target} {self.state.value}>"

    async def __aenter__(self) -> int:
        return await self.async_start()

    async def __aexit__(self, *args) -> None:
        await self.async_stop()
        await self.async_wait()

    @property
    def local_port(self) -> int:
        """The local port, ``0`` until a free port has been chosen."""
        if self._listen_port is not None:
            return self._listen_port
        return self.spec.listen_port

    @staticmethod
    def get_free_port() -> int:
        """Ask the OS for a free port on the loopback interface.

        The socket is closed again immediately so the tunnel can bind to the port.

        Raises:
            PortBindError: If no port could be bound.
        """
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((DEFAULT_ADDRESS, 0))
                return s.getsockname()[1]
        except OSError as e:
            raise PortBindError(f"could not find a port to bind to: {e}") from e

    def get_listen_port(self) -> int:
        """Return the configured listen port, or a free one if it is ``0``.

        A discovered port is kept for the lifetime of the session.
        """
        if self.spec.listen_port:
            return self.spec.listen_port
        if self._listen_port is None:
            self._listen_port = self.get_free_port()
            logger.debug(f"Picked free local port {self._listen_port}")
        return self._listen_port

    async def get_resource_name(self) -> str:
        """Resolve the Pod to forward to."""
        return await self.async_get_resource_name()

    async def async_get_resource_name(self) -> str:
        if self.pod_name is None:
            if self.spec.name:
                self.pod_name = self.spec.name
            else:
                resolver = await self._get_resolver()
                self.pod_name = await resolver.resolve(
                    self.spec.resource_type,
                    self.spec.name,
                    self.spec.selector,
                    self.spec.namespace,
                )
        return self.pod_name

    async def _get_resolver(self) -> Resolver:
        if self._resolver is None:
            if self._client is None:
                if self._api is None:
                    self._api = await load_api()
                self._client = Kr8sClusterClient(self._api)
            self._resolver = Resolver(self._client)
        return self._resolver

    async def start(self, timeout: float | None = None) -> int:
        """Start forwarding in a background task and wait until the tunnel is ready.

        Args:
            timeout: Seconds to wait for the tunnel to become ready. Waits forever by default.

        Returns:
            The local port the tunnel listens on.

        Raises:
            ConfigError: If the Kubernetes configuration could not be loaded.
            PortBindError: If no free local port could be found.
            ResolutionError: If the resource could not be resolved to a single Pod.
            DialerError: If the tunnel transport could not be created.
            TunnelError: If the tunnel failed before becoming ready.
            TimeoutError: If the tunnel was not ready within ``timeout``.
        """
        return await self.async_start(timeout=timeout)

    async def async_start(self, timeout: float | None = None) -> int:
        if self.state == ForwardState.READY:
            return self.local_port
        if self.state != ForwardState.CREATED:
            raise RuntimeError(
                f"Cannot start a port forward that is {self.state.value}, create a new one"
            )
        self.state = ForwardState.STARTING
        self._stop = anyio.Event()
        self._ready = anyio.Event()
        resource_type = self.spec.resource_type
        try:
            if self._api is None and self._client is None:
                self._api = await load_api()
            listen_port = self.get_listen_port()
            try:
                pod_name = await self.async_get_resource_name()
            except ResolutionError as e:
                raise e.__class__(f"could not get {resource_type} name: {e}") from e
            try:
                dialer = await self._dialer_factory(
                    self._api, self.spec.namespace, pod_name
                )
            except DialerError as e:
                raise DialerError(f"could not create a dialer: {e}") from e
            ports = [f"{listen_port}:{self.spec.destination_port}"]
            try:
                self._runner = self._runner_factory(
                    dialer, ports, self._stop, self._ready, address=self.address
                )
            except Exception as e:
                raise TunnelError(
                    f"could not port forward into {resource_type}: {e}"
                ) from e
        except BaseException:
            self.state = ForwardState.FAILED
            raise

        self._worker = asyncio.get_running_loop().create_task(self._runner.run())
        self._worker.add_done_callback(self._worker_done)
        ready = asyncio.ensure_future(self._ready.wait())
        try:
            done, _ = await asyncio.wait(
                {ready, self._worker},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except BaseException:
            # Cancelled while waiting, make sure the tunnel doesn't outlive us
            self._stop.set()
            self.state = ForwardState.STOPPED
            raise
        finally:
            ready.cancel()

        error = None
        if self._worker in done and not self._worker.cancelled():
            error = self._worker.exception()
        if error is None and self._stop.is_set():
            self.state = ForwardState.STOPPED
            raise TunnelError(
                "could not create port forward: stopped before becoming ready"
            )
        if self._worker in done:
            self.state = ForwardState.FAILED
            if error is not None:
                raise TunnelError(f"could not create port forward: {error}") from error
            raise TunnelError(
                "could not create port forward: tunnel exited before becoming ready"
            )
        if not done:
            self._stop.set()
            self.state = ForwardState.STOPPED
            raise TimeoutError(
                f"Timed out waiting for port forward to {resource_type} {pod_name}"
            )
        self.state = ForwardState.READY
        logger.debug(
            f"Forwarding 127.0.0.1:{listen_port} to {resource_type} "
            f"{self.spec.namespace}/{pod_name}:{self.spec.destination_port}"
        )
        return listen_port

    def _worker_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if self.state != ForwardState.READY:
            return
        if error is not None:
            self.state = ForwardState.FAILED
            logger.debug(f"Port forward to {self.pod_name} failed: {error}")
        else:
            self.state = ForwardState.STOPPED
            logger.debug(f"Port forward to {self.pod_name} finished")

    async def stop(self) -> None:
        """Signal the tunnel to stop.

        Safe to call at any time and more than once. Does nothing if the tunnel never
        started or has already finished.
        """
        await self.async_stop()

    async def async_stop(self) -> None:
        if self.state not in (ForwardState.STARTING, ForwardState.READY):
            return
        assert self._stop
        self._stop.set()
        if self.state == ForwardState.READY:
            self.state = ForwardState.STOPPED
            logger.debug(f"Stopping port forward to {self.pod_name}")

    async def wait(self) -> None:
        """Wait for the tunnel to finish.

        Raises:
            TunnelError: If the tunnel ended with an error.
        """
        await self.async_wait()

    async def async_wait(self) -> None:
        if self._worker is None:
            return
        try:
            await asyncio.shield(self._worker)
        except asyncio.CancelledError:
            if not self._worker.cancelled():
                raise
        except Exception as e:
            raise TunnelError(
                f"port forward to {self.spec.resource_type} {self.pod_name} failed: {e}"
            ) from e

    async def run_forever(self) -> None:
        """Run the port forward until it is stopped or fails.

        Example:
            >>> pf = PortForward(ForwardSpec.for_pod(8888, name="my-pod", listen_port=8889))
            >>> await pf.run_forever()
        """
        await self.async_start()
        try:
            await self.async_wait()
        finally:
            await self.async_stop()


async def new_port_forwarder(
    namespace: str,
    selector: LabelSelector | Mapping | None,
    port: int,
    *,
    resource_type: ResourceType = ResourceType.SERVICE,
    name: str | None = None,
    listen_port: int = 0,
    kubeconfig: str | dict | None = None,
    context: str | None = None,
    url: str | None = None,
    serviceaccount: str | None = None,
    _asyncio: bool = True,
    **kwargs,
) -> PortForward:
    """Load the Kubernetes configuration and create a :class:`PortForward`.

    Args:
        namespace: The namespace to look for the resource in.
        selector: Labels used to find the resource.
        port: The port inside the Pod to forward to.
        resource_type: Select Pods directly or through Service Endpoints. Defaults to Service.
        name: An explicit Pod name, takes precedence over ``selector``.
        listen_port: The local port to listen on, ``0`` picks a free port.
        kubeconfig: Path to, or contents of, the kubeconfig to use.
        context: The kubeconfig context to use.
        url: The URL of the Kubernetes API server.
        serviceaccount: The path of a service account to use.
        **kwargs: Passed on to :class:`PortForward`.

    Raises:
        ConfigError: If the Kubernetes configuration could not be loaded.

    Example:
        >>> pf = await new_port_forwarder("flux", {"name": "flux"}, 3030)
        >>> port = await pf.start()
    """
    api = await load_api(
        url=url,
        kubeconfig=kubeconfig,
        serviceaccount=serviceaccount,
        namespace=namespace,
        context=context,
    )
    spec = ForwardSpec(
        resource_type=resource_type,
        destination_port=port,
        name=name,
        selector=LabelSelector.coerce(selector),
        namespace=namespace,
        listen_port=listen_port,
    )
    if _asyncio:
        return PortForward(spec, api=api, **kwargs)
    from .portforward import PortForward as SyncPortForward

    return SyncPortForward(spec, api=api, **kwargs)
