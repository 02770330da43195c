# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    AsyncContextManager,
    Awaitable,
    Protocol,
    runtime_checkable,
)

if TYPE_CHECKING:
    import anyio

    from ._selector import LabelSelector


class ResourceType(str, enum.Enum):
    """The kind of resource a port forward targets."""

    POD = "pod"
    SERVICE = "service"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PodRecord:
    """The parts of a Pod the resolver cares about."""

    name: str
    phase: str = ""
    labels: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: dict) -> PodRecord:
        metadata = raw.get("metadata") or {}
        return cls(
            name=metadata["name"],
            phase=(raw.get("status") or {}).get("phase", ""),
            labels=dict(metadata.get("labels") or {}),
        )


@dataclass(frozen=True)
class EndpointAddress:
    ip: str = ""
    target_ref: str | None = None

    @classmethod
    def from_raw(cls, raw: dict) -> EndpointAddress:
        target_ref = raw.get("targetRef") or {}
        return cls(ip=raw.get("ip", ""), target_ref=target_ref.get("name"))


@dataclass(frozen=True)
class EndpointSubset:
    addresses: tuple[EndpointAddress, ...] = ()

    @classmethod
    def from_raw(cls, raw: dict) -> EndpointSubset:
        return cls(
            addresses=tuple(
                EndpointAddress.from_raw(a) for a in raw.get("addresses") or []
            )
        )


@dataclass(frozen=True)
class EndpointRecord:
    """An Endpoints object with its address subsets in API order."""

    name: str
    subsets: tuple[EndpointSubset, ...] = ()
    labels: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: dict) -> EndpointRecord:
        metadata = raw.get("metadata") or {}
        return cls(
            name=metadata["name"],
            subsets=tuple(EndpointSubset.from_raw(s) for s in raw.get("subsets") or []),
            labels=dict(metadata.get("labels") or {}),
        )


@runtime_checkable
class ClusterClient(Protocol):
    """The listing operations the resolver needs from the Kubernetes API."""

    async def list_pods(
        self,
        namespace: str,
        selector: LabelSelector,
        field_selector: dict[str, str] | None = None,
    ) -> list[PodRecord]: ...

    async def list_endpoints(
        self, namespace: str, selector: LabelSelector
    ) -> list[EndpointRecord]: ...


class Dialer(Protocol):
    """Opens a stream to a port inside a single Pod."""

    def dial(self, remote_port: int) -> AsyncContextManager: ...


class Runner(Protocol):
    """Blocks forwarding connections until stopped or failed."""

    async def run(self) -> None: ...


class DialerFactory(Protocol):
    def __call__(self, api, namespace: str, pod_name: str) -> Awaitable[Dialer]: ...


class RunnerFactory(Protocol):
    def __call__(
        self,
        dialer: Dialer,
        ports: list[str],
        stop: anyio.Event,
        ready: anyio.Event,
        address: list[str] | str = ...,
    ) -> Runner: ...
