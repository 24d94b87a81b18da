# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
import pytest

from netprim.communication import (
    NetworkAddress,
    SocketSystemError,
    StreamSocket,
    resolve,
)
from netprim.scripts.echo_server import EchoServer


@pytest.fixture
def echo_server(context, free_port_range):
    start = free_port_range(5)
    server = EchoServer(context, start_port=start, end_port=start + 5, name="Echo")
    yield server
    server.close()


@pytest.fixture
def echo_client(context, echo_server):
    client = StreamSocket(context, name="EchoClient")
    client.create()
    assert client.connect(resolve("127.0.0.1", echo_server.port))
    assert echo_server.serve_once(1000) == 1
    yield client
    if client.is_open:
        client.close()


@pytest.mark.integration_test
class TestEchoServer:
    def test_first_free_port(self, context, free_port_range):
        start = free_port_range(3)
        with StreamSocket(context, name="Occupant") as occupant:
            occupant.create()
            occupant.bind(NetworkAddress(bytes(4), start))
            with EchoServer(context, start_port=start, end_port=start + 3) as server:
                assert server.port == start + 1
                assert server.clients == 0

    def test_accept(self, echo_server, echo_client):
        assert echo_server.clients == 1

    def test_echo(self, echo_server, echo_client):
        assert echo_client.send_all(b"ping") == 4
        assert echo_server.serve_once(1000) == 1
        buffer = bytearray(4)
        assert echo_client.recv_all(buffer) == 4
        assert buffer == b"ping"

    def test_echo_rounds(self, echo_server, echo_client):
        for message in (b"first", b"second", b"third"):
            assert echo_client.send_all(message) == len(message)
            buffer = bytearray(len(message))
            n_recv = 0
            while n_recv < len(message):
                echo_server.serve_once(1000)
                n_recv += echo_client.receive(memoryview(buffer)[n_recv:])
            assert buffer == message

    def test_disconnect(self, echo_server, echo_client):
        echo_client.close()
        assert echo_server.serve_once(1000) == 1
        assert echo_server.clients == 0

    def test_failed_accept(self, context, echo_server, monkeypatch):
        def fail():
            raise SocketSystemError("Accept", "Connection reset by peer")

        # noinspection PyProtectedMember
        monkeypatch.setattr(echo_server._listener, "accept", fail)
        with StreamSocket(context, name="EchoClient") as client:
            client.create()
            assert client.connect(resolve("127.0.0.1", echo_server.port))
            assert echo_server.serve_once(1000) == 1
            assert echo_server.clients == 0

            monkeypatch.undo()
            assert echo_server.serve_once(1000) == 1
            assert echo_server.clients == 1

    def test_timeout(self, echo_server):
        assert echo_server.serve_once(50) == 0
        assert echo_server.clients == 0

    def test_no_free_port(self, context, free_port_range):
        start = free_port_range(2)
        occupants = [StreamSocket(context, name=f"Occupant-{i}") for i in range(2)]
        try:
            for i, occupant in enumerate(occupants):
                occupant.create()
                occupant.bind(NetworkAddress(bytes(4), start + i))
            with pytest.raises(RuntimeError):
                EchoServer(context, start_port=start, end_port=start + 2)
            assert context.open_sockets == 2
        finally:
            for occupant in occupants:
                occupant.close()

    def test_close(self, context, free_port_range):
        start = free_port_range(1)
        server = EchoServer(context, start_port=start, end_port=start + 1)
        with StreamSocket(context, name="EchoClient") as client:
            client.create()
            assert client.connect(resolve("127.0.0.1", server.port))
            assert server.serve_once(1000) == 1
            assert context.open_sockets == 3
            server.close()
            assert context.open_sockets == 1
        assert context.open_sockets == 0
