# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
DEFAULT_NAMESPACE = "default"
DEFAULT_ADDRESS = "127.0.0.1"
RUNNING_PHASE = "Running"
# Websocket connection attempts made by the tunnel before giving up on a connection
CONNECT_ATTEMPTS = 5
