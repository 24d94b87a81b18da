# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Platform abstraction of the few places where the socket primitives behave
differently depending on the OS family. Exactly one backend is selected when this
module is imported (see PLATFORM), so that call sites never have to branch on the
OS themselves.

    * Platform - Interface every backend implements.
    * PosixPlatform - Linux, BSDs, macOS, and friends.
    * WindowsPlatform - Winsock.
    * select_platform() - Picks the backend for a given sys.platform value.
"""

import errno
import logging
import select
import socket
import sys
from abc import ABC, abstractmethod
from time import sleep
from typing import Iterable, Optional

# Winsock reports its own error numbers instead of the C runtime's ones.
_WSAEADDRINUSE = 10048


class Platform(ABC):
    """Interface of an OS backend used by the network context, the stream socket,
    and the select helper.
    """

    name: str
    _logger: logging.Logger

    def __init__(self, name: str):
        self.name = name
        self._logger = logging.getLogger(f"Platform-{name}")

    @abstractmethod
    def startup(self):
        """Initializes the networking subsystem of the OS, if it requires it."""
        raise NotImplementedError

    @abstractmethod
    def finalize(self):
        """Tears down the networking subsystem of the OS, if it requires it."""
        raise NotImplementedError

    @abstractmethod
    def is_addr_in_use(self, e: OSError) -> bool:
        """Checks whether a failed bind was caused by the address being taken."""
        raise NotImplementedError

    @property
    @abstractmethod
    def recv_all_flags(self) -> int:
        """Receive flags asking the OS to wait for the full requested amount."""
        raise NotImplementedError

    @abstractmethod
    def wait(
        self,
        read_fds: Iterable[int],
        write_fds: Iterable[int],
        except_fds: Iterable[int],
        timeout: Optional[float],
    ) -> tuple[list[int], list[int], list[int]]:
        """Waits for readiness of any of the given descriptors.

        :param read_fds: Descriptors to check for read readiness.
        :param write_fds: Descriptors to check for write readiness.
        :param except_fds: Descriptors to check for exceptional conditions.
        :param timeout: Timeout (seconds), None to block indefinitely.
        :return: Ready subsets of the three descriptor collections.
        :raises OSError: If the wait fails.
        :raises ValueError: If a descriptor cannot be waited on.
        """
        raise NotImplementedError


class PosixPlatform(Platform):
    """Backend for POSIX systems. The networking subsystem is always available,
    so starting up and finalizing has nothing to do.
    """

    def __init__(self):
        super().__init__("posix")

    def startup(self):
        self._logger.debug("Nothing to start up for POSIX sockets.")

    def finalize(self):
        self._logger.debug("Nothing to finalize for POSIX sockets.")

    def is_addr_in_use(self, e: OSError) -> bool:
        return e.errno == errno.EADDRINUSE

    @property
    def recv_all_flags(self) -> int:
        return socket.MSG_WAITALL

    def wait(self, read_fds, write_fds, except_fds, timeout):
        return select.select(read_fds, write_fds, except_fds, timeout)


class WindowsPlatform(Platform):
    """Backend for Winsock. The interpreter's socket module already runs the
    Winsock startup/cleanup pair, so only the differing error codes and the
    restrictions of its select implementation are handled here.
    """

    def __init__(self):
        super().__init__("windows")

    def startup(self):
        self._logger.debug("Winsock initialized by the socket module.")

    def finalize(self):
        self._logger.debug("Winsock cleaned up by the socket module.")

    def is_addr_in_use(self, e: OSError) -> bool:
        return e.errno in (_WSAEADDRINUSE, errno.EADDRINUSE) or (
            getattr(e, "winerror", None) == _WSAEADDRINUSE
        )

    @property
    def recv_all_flags(self) -> int:
        return getattr(socket, "MSG_WAITALL", 0)

    def wait(self, read_fds, write_fds, except_fds, timeout):
        read_fds, write_fds, except_fds = (
            list(read_fds),
            list(write_fds),
            list(except_fds),
        )
        # Winsock rejects a select call on three empty sets
        if not (read_fds or write_fds or except_fds):
            if timeout is None:
                raise ValueError("Cannot block indefinitely on an empty watch set!")
            sleep(timeout)
            return [], [], []
        return select.select(read_fds, write_fds, except_fds, timeout)


def select_platform(platform: str = sys.platform) -> Platform:
    """Picks the backend matching a platform identifier.

    :param platform: Identifier as found in sys.platform.
    :return: Backend for the platform.
    """
    if platform.startswith("win32"):
        return WindowsPlatform()
    return PosixPlatform()


PLATFORM: Platform = select_platform()
