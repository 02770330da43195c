# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
"""Access to the Kubernetes API through kr8s."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import kr8s.asyncio
from kr8s.asyncio.objects import Endpoints, Pod

from ._exceptions import ConfigError
from ._types import EndpointRecord, PodRecord

if TYPE_CHECKING:
    from kr8s.asyncio import Api

    from ._selector import LabelSelector

logger = logging.getLogger(__name__)


async def load_api(
    url: str | None = None,
    kubeconfig: str | dict | None = None,
    serviceaccount: str | None = None,
    namespace: str | None = None,
    context: str | None = None,
) -> Api:
    """Load the cluster configuration and create a kr8s API client.

    Credentials are looked up by kr8s, falling back to ``$KUBECONFIG``,
    ``~/.kube/config`` and finally the in-cluster service account.

    Raises:
        ConfigError: If no usable configuration was found or the client could not be created.
    """
    try:
        return await kr8s.asyncio.api(
            url=url,
            kubeconfig=kubeconfig,  # type: ignore[arg-type]
            serviceaccount=serviceaccount,
            namespace=namespace,
            context=context,
        )
    except Exception as e:
        raise ConfigError(f"could not load kubernetes configuration: {e}") from e


class Kr8sClusterClient:
    """List Pods and Endpoints with a kr8s :class:`kr8s.asyncio.Api`."""

    def __init__(self, api: Api) -> None:
        self.api = api

    async def list_pods(
        self,
        namespace: str,
        selector: LabelSelector,
        field_selector: dict[str, str] | None = None,
    ) -> list[PodRecord]:
        logger.debug(f"Listing pods in {namespace} with selector {selector}")
        pods = await self.api.async_get(
            Pod,
            namespace=namespace,
            label_selector=str(selector),
            field_selector=field_selector,
        )
        return [PodRecord.from_raw(pod.raw) for pod in _as_list(pods)]

    async def list_endpoints(
        self, namespace: str, selector: LabelSelector
    ) -> list[EndpointRecord]:
        logger.debug(f"Listing endpoints in {namespace} with selector {selector}")
        endpoints = await self.api.async_get(
            Endpoints,
            namespace=namespace,
            label_selector=str(selector),
        )
        return [EndpointRecord.from_raw(ep.raw) for ep in _as_list(endpoints)]


def _as_list(objs) -> list:
    if isinstance(objs, list):
        return objs
    return [objs]
