# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Resolution of host names into canonical IPv4 network addresses, along with a
few helpers to inspect them.

    * NetworkAddress - Immutable (IPv4, address, port) value.
    * resolve() - Looks up a host name and builds its network address.
    * port_of() - Port of an address in host byte order.
    * to_display_string() - Dotted-decimal representation of an address.
    * local_host_name() - Configured host name of the local machine.
"""

import logging
import socket
from typing import NamedTuple

from .errors import FormatError, ResolutionError, SocketSystemError

HOST_NAME_BUFFER_SIZE = 256

_logger: logging.Logger = logging.getLogger("NetworkAddress")


class NetworkAddress(NamedTuple):
    """Canonical IPv4 socket address. The host part is kept in its packed
    (network byte order) form, the port in host byte order.
    """

    packed_host: bytes = bytes(4)
    port: int = 0

    @property
    def family(self) -> socket.AddressFamily:
        return socket.AF_INET

    @property
    def sockaddr(self) -> tuple[str, int]:
        """Address in the form the socket calls expect it."""
        return to_display_string(self), self.port

    def __str__(self):
        return f"{to_display_string(self)}:{self.port}"


def resolve(host: str, port: int) -> NetworkAddress:
    """Looks up a host name (or a numeric IPv4 address) using the system's name
    resolution and uses the first returned address record to build the network
    address. No retries are done.

    :param host: Host name or dotted-decimal address.
    :param port: Port of the address.
    :return: Fully populated network address.
    :raises ResolutionError: If no address could be found for the host.
    :raises ValueError: If the port is out of range.
    """
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"Port {port} is out of range!")

    _logger.debug(f"Resolving {host, port}...")
    try:
        dotted = socket.gethostbyname(host)
    except (OSError, UnicodeError) as e:
        raise ResolutionError("Resolve", f"cannot obtain address of {host} ({e})")
    addr = NetworkAddress(socket.inet_aton(dotted), port)
    _logger.debug(f"{host, port} resolved to {dotted}.")
    return addr


def port_of(addr: NetworkAddress) -> int:
    return addr.port


def to_display_string(addr: NetworkAddress) -> str:
    """Renders the host part of an address in dotted-decimal notation.

    :param addr: Address to render.
    :return: Dotted-decimal text.
    :raises FormatError: If the stored bytes cannot be decoded.
    """
    try:
        return socket.inet_ntop(socket.AF_INET, addr.packed_host)
    except (OSError, ValueError, TypeError) as e:
        raise FormatError(f"cannot decode address {addr.packed_host!r}: {e}")


def local_host_name() -> str:
    """Returns the configured host name of the local machine, bounded to the size
    of a host name buffer (including the terminating character).

    :raises SocketSystemError: If the OS call fails.
    """
    try:
        name = socket.gethostname()
    except OSError as e:
        raise SocketSystemError("GetHostName", e)
    return name[: HOST_NAME_BUFFER_SIZE - 1]
