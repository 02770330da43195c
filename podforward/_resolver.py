# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
from __future__ import annotations

import logging
import random

import httpx
from kr8s import APITimeoutError, ServerError

from ._constants import RUNNING_PHASE
from ._exceptions import (
    AmbiguousError,
    EndpointBackingError,
    NoSelectorError,
    NotFoundError,
    ResolutionError,
)
from ._selector import LabelSelector
from ._types import ClusterClient, ResourceType

logger = logging.getLogger(__name__)


class Resolver:
    """Reduce a name or label selector to exactly one Pod name.

    Args:
        ``client`` (ClusterClient): Used to list Pods and Endpoints.

        ``rng`` (random.Random, optional): Random source used to pick between several
        matching Endpoints objects. Each resolver gets its own generator by default.

    Example:
        >>> resolver = Resolver(Kr8sClusterClient(api))
        >>> await resolver.resolve(ResourceType.POD, None, LabelSelector({"app": "web"}), "default")
        'web-6d4cf56db6-x2x7k'
    """

    def __init__(self, client: ClusterClient, rng: random.Random | None = None) -> None:
        self.client = client
        self.rng = rng if rng is not None else random.Random()

    async def resolve(
        self,
        resource_type: ResourceType,
        name: str | None,
        selector: LabelSelector | None,
        namespace: str,
    ) -> str:
        """Return the name of the Pod to forward to.

        An explicit name is returned as is without calling the API.

        Raises:
            NoSelectorError: If there is no name and the selector is empty.
            NotFoundError: If nothing matches the selector.
            AmbiguousError: If more than one Pod matches the selector.
            EndpointBackingError: If the chosen Endpoints has no Pod behind it.
            ResolutionError: If listing resources failed.
        """
        if name:
            return name
        selector = LabelSelector.coerce(selector)
        if selector.empty:
            raise NoSelectorError(f"no {resource_type} labels specified")

        if resource_type == ResourceType.POD:
            return await self._pod_name(selector, namespace)
        if resource_type == ResourceType.SERVICE:
            return await self._endpoints_pod_name(selector, namespace)
        raise ValueError(f"unknown resource type {resource_type!r}")

    async def _pod_name(self, selector: LabelSelector, namespace: str) -> str:
        try:
            pods = await self.client.list_pods(
                namespace, selector, field_selector={"status.phase": RUNNING_PHASE}
            )
        except (ServerError, APITimeoutError, httpx.HTTPError) as e:
            raise ResolutionError(f"listing pods in kubernetes: {e}") from e

        if not pods:
            raise NotFoundError(
                f'could not find running pod for selector: labels "{selector}"'
            )
        if len(pods) != 1:
            raise AmbiguousError(
                f'ambiguous pod: found more than one pod for selector: labels "{selector}"'
            )
        logger.debug(f"Selector {selector} resolved to pod {pods[0].name}")
        return pods[0].name

    async def _endpoints_pod_name(self, selector: LabelSelector, namespace: str) -> str:
        try:
            endpoints = await self.client.list_endpoints(namespace, selector)
        except (ServerError, APITimeoutError, httpx.HTTPError) as e:
            raise ResolutionError(f"listing endpoints in kubernetes: {e}") from e

        if not endpoints:
            raise NotFoundError(
                f'could not find running endpoints for selector: labels "{selector}"'
            )

        endpoint = self.rng.choice(endpoints)
        for subset in endpoint.subsets:
            for address in subset.addresses:
                if address.target_ref is not None:
                    logger.debug(
                        f"Selector {selector} resolved to pod {address.target_ref} "
                        f"behind endpoint {endpoint.name}"
                    )
                    return address.target_ref
        raise EndpointBackingError(
            f"could not find any pods attached to endpoint {endpoint.name}"
        )
