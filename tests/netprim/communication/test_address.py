# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
import socket

import pytest

from netprim.communication import (
    FormatError,
    NetworkAddress,
    ResolutionError,
    SocketSystemError,
    local_host_name,
    port_of,
    resolve,
    to_display_string,
)


class TestResolve:
    def test_numeric_roundtrip(self):
        addr = resolve("127.0.0.1", 9000)
        assert to_display_string(addr) == "127.0.0.1"
        assert port_of(addr) == 9000
        assert resolve(to_display_string(addr), port_of(addr)) == addr

    def test_fully_populated(self):
        addr = resolve("10.1.2.3", 80)
        assert addr.packed_host == bytes([10, 1, 2, 3])
        assert addr.family == socket.AF_INET
        assert addr.sockaddr == ("10.1.2.3", 80)
        assert str(addr) == "10.1.2.3:80"

    def test_host_name(self):
        addr = resolve("localhost", 22)
        assert len(addr.packed_host) == 4
        assert to_display_string(addr).startswith("127.")

    @pytest.mark.parametrize("host", ["no-such-host.invalid", "a" * 64 + ".example"])
    def test_unknown_host(self, host):
        with pytest.raises(ResolutionError) as e_info:
            resolve(host, 80)
        assert isinstance(e_info.value, SocketSystemError)
        assert e_info.value.operation == "Resolve"
        assert host in str(e_info.value)

    @pytest.mark.parametrize("port", [-1, 65536, 100000])
    def test_port_out_of_range(self, port):
        with pytest.raises(ValueError):
            resolve("127.0.0.1", port)

    @pytest.mark.parametrize("port", [0, 1, 65535])
    def test_port_bounds(self, port):
        assert port_of(resolve("127.0.0.1", port)) == port


class TestNetworkAddress:
    def test_default(self):
        addr = NetworkAddress()
        assert to_display_string(addr) == "0.0.0.0"
        assert port_of(addr) == 0

    def test_immutable(self):
        addr = resolve("127.0.0.1", 9000)
        with pytest.raises(AttributeError):
            # noinspection PyPropertyAccess
            addr.port = 9001

    @pytest.mark.parametrize("packed_host", [b"", b"\x7f\x00\x01", bytes(16)])
    def test_undecodable(self, packed_host):
        with pytest.raises(FormatError):
            to_display_string(NetworkAddress(packed_host, 80))


class TestLocalHostName:
    def test_matches_system(self):
        name = local_host_name()
        assert name == socket.gethostname()[:255]
        assert len(name) < 256

    def test_bounded(self, monkeypatch):
        monkeypatch.setattr(socket, "gethostname", lambda: "h" * 300)
        assert local_host_name() == "h" * 255

    def test_failure(self, monkeypatch):
        def fail():
            raise OSError(1, "Operation not permitted")

        monkeypatch.setattr(socket, "gethostname", fail)
        with pytest.raises(SocketSystemError) as e_info:
            local_host_name()
        assert e_info.value.operation == "GetHostName"
        assert str(e_info.value) == (
            "Socket GetHostName Error: Operation not permitted"
        )
