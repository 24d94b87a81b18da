# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Readiness multiplexing over many descriptors with a single select call.

Usage follows three steps, repeated per round: watch descriptors (accumulating
interest without any system call), wait once for all of them, and query the
readiness of individual descriptors afterward. reset() empties the watch set for
the next round.
"""

import logging
from typing import Optional, Protocol

from .errors import SocketSystemError
from .platform import PLATFORM, Platform


class _HasFileno(Protocol):
    def fileno(self) -> int: ...


def _to_fd(fd: int | _HasFileno) -> int:
    """Normalizes a descriptor or an object exposing one into a descriptor.

    :raises ValueError: If the descriptor is negative (e.g. a closed socket).
    """
    if not isinstance(fd, int):
        fd = fd.fileno()
    if fd < 0:
        raise ValueError(f"Cannot watch invalid descriptor {fd}!")
    return fd


class SelectHelper:
    """Watch set of descriptors, each registered for read, write, and/or
    exception interest, along with the readiness results of the most recent wait.
    Descriptors can be registered multiple times; they are simply checked
    redundantly. Not thread-safe.
    """

    _logger: logging.Logger
    _platform: Platform

    _read_fds: list[int]
    _write_fds: list[int]
    _except_fds: list[int]
    _max_fd: int

    _ready_r: frozenset[int]
    _ready_w: frozenset[int]
    _ready_x: frozenset[int]

    def __init__(self, name: str = "SelectHelper", platform: Platform = None):
        """Creates a new, empty select helper.

        :param name: Name of select helper for logging purposes.
        :param platform: OS backend used to wait. Defaults to the one of the running
        OS.
        """
        self._logger = logging.getLogger(name)
        self._platform = platform if platform is not None else PLATFORM
        self.reset()

    @property
    def max_fd(self) -> int:
        """Largest descriptor of the watch set, -1 if empty."""
        return self._max_fd

    @property
    def read_fds(self) -> tuple[int, ...]:
        return tuple(self._read_fds)

    @property
    def write_fds(self) -> tuple[int, ...]:
        return tuple(self._write_fds)

    @property
    def except_fds(self) -> tuple[int, ...]:
        return tuple(self._except_fds)

    def watch_read(self, fd: int | _HasFileno):
        """Adds a descriptor to watch for read readiness.

        :param fd: Descriptor or object with fileno().
        """
        self._watch(self._read_fds, fd)

    def watch_write(self, fd: int | _HasFileno):
        """Adds a descriptor to watch for write readiness.

        :param fd: Descriptor or object with fileno().
        """
        self._watch(self._write_fds, fd)

    def watch_exception(self, fd: int | _HasFileno):
        """Adds a descriptor to watch for exceptional conditions.

        :param fd: Descriptor or object with fileno().
        """
        self._watch(self._except_fds, fd)

    def _watch(self, fds: list[int], fd: int | _HasFileno):
        fd = _to_fd(fd)
        fds.append(fd)
        if fd > self._max_fd:
            self._max_fd = fd

    def wait(self, timeout: int = 0) -> int:
        """Waits with a single select call until any descriptor of the watch set is
        ready or the timeout elapses. Afterward, the readiness of each descriptor
        can be queried until the next wait or reset.

        :param timeout: Timeout in milliseconds. 0 blocks indefinitely.
        :return: Number of ready descriptors, counted per interest category.
        :raises SocketSystemError: If the wait fails.
        """
        self._logger.debug(
            f"Waiting on {len(self._read_fds)}/{len(self._write_fds)}/"
            f"{len(self._except_fds)} descriptors (max {self._max_fd}, "
            f"timeout {timeout}ms)..."
        )
        timeout_s: Optional[float] = None if timeout == 0 else timeout / 1000
        try:
            ready_r, ready_w, ready_x = self._platform.wait(
                list(dict.fromkeys(self._read_fds)),
                list(dict.fromkeys(self._write_fds)),
                list(dict.fromkeys(self._except_fds)),
                timeout_s,
            )
        except (OSError, ValueError) as e:
            raise SocketSystemError("Select", e)
        self._ready_r = frozenset(ready_r)
        self._ready_w = frozenset(ready_w)
        self._ready_x = frozenset(ready_x)

        n_ready = len(self._ready_r) + len(self._ready_w) + len(self._ready_x)
        self._logger.debug(f"{n_ready} descriptors ready.")
        return n_ready

    def is_readable(self, fd: int | _HasFileno) -> bool:
        """Checks whether a descriptor was ready for reading in the last wait."""
        return self._is_ready(self._ready_r, fd)

    def is_writable(self, fd: int | _HasFileno) -> bool:
        """Checks whether a descriptor was ready for writing in the last wait."""
        return self._is_ready(self._ready_w, fd)

    def has_exception(self, fd: int | _HasFileno) -> bool:
        """Checks whether a descriptor had an exceptional condition in the last
        wait.
        """
        return self._is_ready(self._ready_x, fd)

    @staticmethod
    def _is_ready(ready: frozenset[int], fd: int | _HasFileno) -> bool:
        if not isinstance(fd, int):
            fd = fd.fileno()
        return fd in ready

    def reset(self):
        """Clears the watch set along with the results of the last wait."""
        self._read_fds = []
        self._write_fds = []
        self._except_fds = []
        self._max_fd = -1
        self._ready_r = frozenset()
        self._ready_w = frozenset()
        self._ready_x = frozenset()
