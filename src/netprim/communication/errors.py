# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Error kinds raised by the communication primitives. Every failure that stems
from the OS is raised as a SocketSystemError (or one of its refinements), carrying
the name of the failing operation and the OS' own error description, so that
diagnostics look the same regardless of the call site.

Expected conditions (port in use during a port scan, would-block, peer closed,
refused connection) are never raised, but returned as ordinary values by the
respective operations.
"""

from typing import Optional


class NetworkError(Exception):
    """Base class of all errors raised by the communication primitives."""


class SocketSystemError(NetworkError):
    """An OS-level socket, wait, or resolve operation failed.

    :ivar operation: Name of the failing operation.
    :ivar errno: OS error number, if known.
    :ivar description: OS error description.
    """

    operation: str
    errno: Optional[int]
    description: str

    def __init__(self, operation: str, os_error: OSError | str):
        """Creates a new error for a failed operation.

        :param operation: Name of the failing operation.
        :param os_error: The error raised by the OS call, or its description.
        """
        self.operation = operation
        if isinstance(os_error, OSError):
            self.errno = os_error.errno
            self.description = os_error.strerror or str(os_error)
        else:
            self.errno = None
            self.description = str(os_error)
        super().__init__(f"Socket {operation} Error: {self.description}")


class ResolutionError(SocketSystemError):
    """No address could be found for a host name."""


class BindError(SocketSystemError):
    """A local address is unavailable or its use is disallowed."""


class ProtocolViolation(NetworkError):
    """The primitives were misused, e.g. a socket was closed twice."""


class FormatError(NetworkError):
    """A network address could not be converted to its text form."""
