# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
"""
This module contains `podforward`, a library for forwarding local ports to Pods in a Kubernetes cluster.

Pods are found by name or by label selector, either directly or through the Endpoints of a Service.
At the top level, `podforward` provides a synchronous API that wraps the asynchronous API provided by
`podforward.asyncio`. Both APIs are functionally identical.
"""
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _dist_version
from typing import Mapping, Optional, Union

from . import asyncio, portforward
from ._async_utils import run_sync as _run_sync
from ._exceptions import (
    AmbiguousError,
    ConfigError,
    DialerError,
    EndpointBackingError,
    NoSelectorError,
    NotFoundError,
    PortBindError,
    PortForwardError,
    ResolutionError,
    TunnelError,
)
from ._portforward import ForwardSpec, ForwardState
from ._portforward import new_port_forwarder as _new_port_forwarder
from ._selector import LabelSelector, LabelSelectorRequirement, Operator
from ._types import ResourceType
from .portforward import PortForward

try:
    __version__ = _dist_version("podforward")
except PackageNotFoundError:
    __version__ = "0.0.0"


def new_port_forwarder(
    namespace: str,
    selector: Optional[Union[LabelSelector, Mapping]],
    port: int,
    *,
    resource_type: ResourceType = ResourceType.SERVICE,
    name: Optional[str] = None,
    listen_port: int = 0,
    kubeconfig: Optional[Union[str, dict]] = None,
    context: Optional[str] = None,
    **kwargs,
) -> PortForward:
    """Load the Kubernetes configuration and create a :class:`podforward.PortForward`.

    Args:
        namespace: The namespace to look for the resource in
        selector: The labels used to find the resource
        port: The port inside the Pod to forward to
        resource_type: Select Pods directly or through Service Endpoints, defaults to Service
        name: An explicit Pod name, takes precedence over the selector
        listen_port: The local port to listen on, 0 picks a free port
        kubeconfig: The path to, or contents of, a kubeconfig to use
        context: The kubeconfig context to use
        **kwargs: Additional arguments to pass to :class:`podforward.PortForward`

    Returns:
        The port forward, not yet started

    Raises:
        ConfigError: If the Kubernetes configuration could not be loaded

    Examples:
        >>> import podforward
        >>> pf = podforward.new_port_forwarder("flux", {"name": "flux"}, 3030)
        >>> port = pf.start()
        >>> pf.stop()
    """
    return _run_sync(_new_port_forwarder)(
        namespace,
        selector,
        port,
        resource_type=resource_type,
        name=name,
        listen_port=listen_port,
        kubeconfig=kubeconfig,
        context=context,
        _asyncio=False,
        **kwargs,
    )


__all__ = [
    "__version__",
    "asyncio",
    "new_port_forwarder",
    "portforward",
    "AmbiguousError",
    "ConfigError",
    "DialerError",
    "EndpointBackingError",
    "ForwardSpec",
    "ForwardState",
    "LabelSelector",
    "LabelSelectorRequirement",
    "NoSelectorError",
    "NotFoundError",
    "Operator",
    "PortBindError",
    "PortForward",
    "PortForwardError",
    "ResolutionError",
    "ResourceType",
    "TunnelError",
]
