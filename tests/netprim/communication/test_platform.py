# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
import errno
import socket
import sys
from time import time

import pytest

from netprim.communication.platform import (
    PLATFORM,
    PosixPlatform,
    WindowsPlatform,
    select_platform,
)


@pytest.mark.parametrize(
    "platform,expected",
    [
        ("linux", PosixPlatform),
        ("darwin", PosixPlatform),
        ("freebsd14", PosixPlatform),
        ("win32", WindowsPlatform),
    ],
)
def test_select_platform(platform, expected):
    assert type(select_platform(platform)) is expected


def test_running_platform():
    expected = WindowsPlatform if sys.platform == "win32" else PosixPlatform
    assert type(PLATFORM) is expected


class TestPosixPlatform:
    @pytest.mark.parametrize(
        "code,in_use",
        [
            (errno.EADDRINUSE, True),
            (errno.EACCES, False),
            (errno.EADDRNOTAVAIL, False),
        ],
    )
    def test_is_addr_in_use(self, code, in_use):
        e = OSError(code, "error")
        assert PosixPlatform().is_addr_in_use(e) is in_use

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX only")
    def test_recv_all_flags(self):
        assert PosixPlatform().recv_all_flags == socket.MSG_WAITALL

    def test_wait_timeout(self):
        r_sock, w_sock = socket.socketpair()
        try:
            assert PosixPlatform().wait([r_sock.fileno()], [], [], 0.01) == (
                [],
                [],
                [],
            )
        finally:
            r_sock.close()
            w_sock.close()


class TestWindowsPlatform:
    @pytest.mark.parametrize(
        "code,in_use",
        [
            (10048, True),
            (errno.EADDRINUSE, True),
            (10013, False),
        ],
    )
    def test_is_addr_in_use(self, code, in_use):
        e = OSError(code, "error")
        assert WindowsPlatform().is_addr_in_use(e) is in_use

    def test_wait_on_empty_sets(self):
        t_start = time()
        assert WindowsPlatform().wait([], [], [], 0.05) == ([], [], [])
        assert time() - t_start >= 0.04

    def test_block_on_empty_sets(self):
        with pytest.raises(ValueError):
            WindowsPlatform().wait([], [], [], None)

    def test_recv_all_flags(self):
        assert WindowsPlatform().recv_all_flags == getattr(socket, "MSG_WAITALL", 0)
