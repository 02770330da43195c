# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
"""The `podforward` asynchronous API.

This module provides an asynchronous API for forwarding ports into a Kubernetes cluster.
"""
from podforward._cluster import Kr8sClusterClient, load_api
from podforward._portforward import (
    ForwardSpec,
    ForwardState,
    PortForward,
    new_port_forwarder,
)
from podforward._resolver import Resolver

__all__ = [
    "load_api",
    "new_port_forwarder",
    "ForwardSpec",
    "ForwardState",
    "Kr8sClusterClient",
    "PortForward",
    "Resolver",
]
