# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Process-wide lifetime window of the communication primitives. A network
context must be started before the first socket is created under it and may only
be finalized once all of its sockets have been closed again. Contexts do not share
any state with each other, so independent contexts can be created and torn down
side by side (e.g. one per test).
"""

import logging
import threading
from typing import Optional

from .errors import ProtocolViolation
from .platform import PLATFORM, Platform


class NetworkContext:
    """Explicit start/finalize lifecycle around the networking subsystem of the OS,
    keeping track of every socket opened under it. Can be used as a context manager,
    starting up on entry and finalizing on exit.
    """

    _logger: logging.Logger

    _platform: Platform
    _started: bool
    _open_fds: set[int]
    _lock: threading.Lock

    def __init__(self, name: str = "NetworkContext", platform: Platform = None):
        """Creates a new (not yet started) network context.

        :param name: Name of context for logging purposes.
        :param platform: OS backend to use. Defaults to the one of the running OS.
        """
        self._logger = logging.getLogger(name)
        self._platform = platform if platform is not None else PLATFORM
        self._started = False
        self._open_fds = set()
        self._lock = threading.Lock()

    @property
    def platform(self) -> Platform:
        return self._platform

    @property
    def started(self) -> bool:
        return self._started

    @property
    def open_sockets(self) -> int:
        with self._lock:
            return len(self._open_fds)

    def startup(self):
        """Starts the networking subsystem. Must be called once before any socket is
        created under this context.

        :raises ProtocolViolation: If the context has already been started.
        """
        self._logger.info(f"Starting network context ({self._platform.name})...")
        if self._started:
            raise ProtocolViolation("Network context has already been started!")
        self._platform.startup()
        self._started = True
        self._logger.info("Network context started.")

    def finalize(self):
        """Shuts the networking subsystem down again. All sockets of this context
        must have been closed beforehand.

        :raises ProtocolViolation: If the context has not been started or if there
        are still sockets open.
        """
        self._logger.info("Finalizing network context...")
        if not self._started:
            raise ProtocolViolation("Network context has not been started!")
        with self._lock:
            if self._open_fds:
                raise ProtocolViolation(
                    f"Network context still has {len(self._open_fds)} open socket(s): "
                    f"{sorted(self._open_fds)}!"
                )
        self._platform.finalize()
        self._started = False
        self._logger.info("Network context finalized.")

    def require_started(self, operation: str):
        """Checks that sockets may currently be used under this context.

        :param operation: Name of operation to report in case of error.
        :raises ProtocolViolation: If the context is not started.
        """
        if not self._started:
            raise ProtocolViolation(
                f"{operation} requires a started network context!"
            )

    def register(self, fd: int):
        with self._lock:
            self._open_fds.add(fd)

    def unregister(self, fd: Optional[int]):
        with self._lock:
            self._open_fds.discard(fd)

    def __enter__(self):
        self.startup()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.finalize()
            return
        # do not mask the original error with a lifecycle violation
        if self.open_sockets:
            self._logger.warning(
                f"{exc_type.__name__}({exc_val}) while {self.open_sockets} "
                "socket(s) still open. Finalizing anyway..."
            )
        self._platform.finalize()
        self._started = False
