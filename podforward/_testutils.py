# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
from __future__ import annotations

import contextlib
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Generator

import anyio

from ._exceptions import DialerError
from ._selector import LabelSelector
from ._types import EndpointAddress, EndpointRecord, EndpointSubset, PodRecord


@contextlib.contextmanager
def set_env(**environ: str) -> Generator[None, None, None]:
    """Temporarily set process environment variables.

    Examples:
        >>> with set_env(KUBECONFIG="/tmp/kubeconfig"):
        ...     "KUBECONFIG" in os.environ
        True
    """
    old_environ = dict(os.environ)
    os.environ.update(environ)
    try:
        yield
    finally:
        os.environ.clear()
        os.environ.update(old_environ)


def new_pod(name: str, labels: dict | None = None, phase: str = "Running") -> PodRecord:
    return PodRecord(name=name, phase=phase, labels=labels or {})


def new_endpoints(
    name: str, *pod_names: str | None, labels: dict | None = None
) -> EndpointRecord:
    """Create an Endpoints record with one subset holding an address per Pod name.

    ``None`` creates an address that isn't backed by a Pod.
    """
    addresses = tuple(
        EndpointAddress(ip=f"10.0.0.{i}", target_ref=pod_name)
        for i, pod_name in enumerate(pod_names, start=1)
    )
    return EndpointRecord(
        name=name, subsets=(EndpointSubset(addresses),), labels=labels or {}
    )


class FakeClusterClient:
    """An in-memory cluster that filters like the Kubernetes API does.

    Every call is recorded in ``calls`` so tests can check the API was (not) used.
    """

    def __init__(
        self,
        pods: list[PodRecord] | None = None,
        endpoints: list[EndpointRecord] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.pods = pods or []
        self.endpoints = endpoints or []
        self.error = error
        self.calls: list[tuple] = []

    async def list_pods(
        self,
        namespace: str,
        selector: LabelSelector,
        field_selector: dict[str, str] | None = None,
    ) -> list[PodRecord]:
        self.calls.append(("list_pods", namespace, str(selector), field_selector))
        if self.error:
            raise self.error
        phase = (field_selector or {}).get("status.phase")
        return [
            pod
            for pod in self.pods
            if selector.matches(pod.labels) and (phase is None or pod.phase == phase)
        ]

    async def list_endpoints(
        self, namespace: str, selector: LabelSelector
    ) -> list[EndpointRecord]:
        self.calls.append(("list_endpoints", namespace, str(selector)))
        if self.error:
            raise self.error
        return [ep for ep in self.endpoints if selector.matches(ep.labels)]


class FakeDialer:
    """A dialer that records the Pod it was built for and never connects."""

    def __init__(self, api, namespace: str, pod_name: str) -> None:
        self.api = api
        self.namespace = namespace
        self.pod_name = pod_name

    @asynccontextmanager
    async def dial(self, remote_port: int) -> AsyncGenerator[None]:
        raise DialerError(f"FakeDialer can't connect to port {remote_port}")
        yield


async def fake_dialer_factory(api, namespace: str, pod_name: str) -> FakeDialer:
    return FakeDialer(api, namespace, pod_name)


class FakeRunner:
    """A tunnel runner that becomes ready straight away and runs until stopped.

    Set ``fail`` to make a running tunnel crash.
    """

    def __init__(self, dialer, ports, stop, ready, address="127.0.0.1") -> None:
        self.dialer = dialer
        self.ports = ports
        self.stop = stop
        self.ready = ready
        self.address = address
        self.fail = anyio.Event()
        self.stopped = False

    async def run(self) -> None:
        self.ready.set()
        async with anyio.create_task_group() as tg:

            async def crash():
                await self.fail.wait()
                raise ConnectionResetError("tunnel crashed")

            tg.start_soon(crash)
            await self.stop.wait()
            tg.cancel_scope.cancel()
        self.stopped = True


class FailingRunner(FakeRunner):
    async def run(self) -> None:
        raise OSError("address already in use")


class ExitingRunner(FakeRunner):
    async def run(self) -> None:
        return


class NeverReadyRunner(FakeRunner):
    async def run(self) -> None:
        await self.stop.wait()
        self.stopped = True


class RecordingRunnerFactory:
    """Create runners of ``cls`` and keep hold of them for inspection."""

    def __init__(self, cls: type[FakeRunner] = FakeRunner) -> None:
        self.cls = cls
        self.runners: list[FakeRunner] = []

    def __call__(self, *args, **kwargs) -> FakeRunner:
        runner = self.cls(*args, **kwargs)
        self.runners.append(runner)
        return runner
