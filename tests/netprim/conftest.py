# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
import random
import socket

import pytest

from netprim.communication import NetworkContext, StreamSocket, resolve


def _find_free_port_range(n: int) -> int:
    """Looks for n consecutive ports that can currently be bound on the wildcard
    address, staying below the usual ephemeral port range.

    :param n: Number of consecutive ports.
    :return: First port of the range.
    """
    for _ in range(100):
        start = random.randrange(20000, 32000 - n)
        probes = []
        try:
            for port in range(start, start + n):
                probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
                probes.append(probe)
                probe.bind(("0.0.0.0", port))
        except OSError:
            continue
        finally:
            for probe in probes:
                probe.close()
        return start
    raise RuntimeError(f"Could not find {n} consecutive free ports!")


@pytest.fixture
def free_port_range():
    return _find_free_port_range


@pytest.fixture
def context():
    with NetworkContext(name="TestContext") as ctx:
        yield ctx


@pytest.fixture
def listener(context, free_port_range):
    sock = StreamSocket(context, name="Listener")
    sock.create()
    start = free_port_range(10)
    assert sock.try_bind_range(start, start + 10) == start
    sock.listen()
    yield sock
    if sock.is_open:
        sock.close()


@pytest.fixture
def socket_pair(context, listener):
    """Connected (client, server) pair of stream sockets over the loopback
    interface, both in blocking mode.
    """
    client = StreamSocket(context, name="Client")
    client.create()
    assert client.connect(resolve("127.0.0.1", listener.local_address().port))
    server = listener.accept()
    yield client, server
    for sock in (client, server):
        if sock.is_open:
            sock.close()
