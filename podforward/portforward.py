# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
"""Objects for managing a port forward connection.

This module provides the synchronous port forward. Coroutines run on a background event loop,
so a started port forward keeps forwarding after :meth:`PortForward.start` returns.
"""
from ._async_utils import sync
from ._portforward import ForwardSpec, ForwardState
from ._portforward import PortForward as _PortForward

__all__ = ["ForwardSpec", "ForwardState", "PortForward"]


@sync
class PortForward(_PortForward):
    __doc__ = _PortForward.__doc__
