# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License


class PortForwardError(Exception):
    """Base class for all podforward errors."""


class ConfigError(PortForwardError):
    """Unable to load the cluster configuration or create the API client."""


class ResolutionError(PortForwardError):
    """Unable to resolve the Pod to forward to."""


class NoSelectorError(ResolutionError):
    """Neither a name nor any label selector criteria were given."""


class NotFoundError(ResolutionError):
    """No resource matched the selector."""


class AmbiguousError(ResolutionError):
    """More than one resource matched where exactly one is required."""


class EndpointBackingError(ResolutionError):
    """The selected Endpoints object has no address backed by a Pod."""


class PortBindError(PortForwardError):
    """Unable to acquire a free local port."""


class DialerError(PortForwardError):
    """Unable to create the dialer for the tunnel."""


class TunnelError(PortForwardError):
    """The tunnel terminated with an error."""


class ConnectionClosedError(Exception):
    """A forwarded connection has been closed."""
