# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Cross-platform TCP networking primitives, all synchronous, with an explicit
readiness poll instead of callbacks.

    * NetworkContext - Start/finalize lifecycle every socket lives in.
    * NetworkAddress - Canonical IPv4 address, see resolve() et al.
    * StreamSocket - Core class; TCP socket with create/bind/listen/accept/connect
    and the send/receive primitives, including the send_all()/recv_all() loops.
        * SocketHandle - Lifecycle of the OS socket owned by a stream socket.
    * SelectHelper - Waits on the readiness of many descriptors in one call.

Errors raised by these are found in the errors module (NetworkError and
subclasses).
"""

__all__ = [
    "NetworkContext",
    "NetworkAddress",
    "resolve",
    "port_of",
    "to_display_string",
    "local_host_name",
    "SocketHandle",
    "StreamSocket",
    "INVALID_SOCKET",
    "SOCKET_ERROR",
    "SelectHelper",
    "NetworkError",
    "SocketSystemError",
    "ResolutionError",
    "BindError",
    "ProtocolViolation",
    "FormatError",
]

from .address import (
    NetworkAddress,
    local_host_name,
    port_of,
    resolve,
    to_display_string,
)
from .context import NetworkContext
from .errors import (
    BindError,
    FormatError,
    NetworkError,
    ProtocolViolation,
    ResolutionError,
    SocketSystemError,
)
from .select_helper import SelectHelper
from .stream_socket import INVALID_SOCKET, SOCKET_ERROR, SocketHandle, StreamSocket
