# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""This script starts a TCP echo service on the first free port of a port range,
serving any number of clients from a single thread by multiplexing their
readiness. Everything a client sends is sent back to it unchanged.
"""

import argparse
import logging

from netprim.communication import (
    NetworkContext,
    SelectHelper,
    SocketSystemError,
    StreamSocket,
)


class EchoServer:
    """Echo service built directly on the communication primitives: a listening
    stream socket bound through a port scan, plus a select helper to wait on it and
    all of its connected clients at once.
    """

    _logger: logging.Logger

    _listener: StreamSocket
    _port: int
    _clients: dict[int, StreamSocket]
    _selector: SelectHelper
    _buffer: bytearray

    def __init__(
        self,
        context: NetworkContext,
        start_port: int = 30000,
        end_port: int = 30010,
        name: str = "EchoServer",
        recv_b_size: int = 4096,
    ):
        """Creates a new echo server, listening on the first free port of a range.

        :param context: Network context to create the sockets in.
        :param start_port: First port to try.
        :param end_port: Port after the last one to try (exclusive).
        :param name: Name of echo server for logging purposes.
        :param recv_b_size: Maximum number of bytes echoed per client and round.
        :raises RuntimeError: If there is no free port in the range.
        """
        self._logger = logging.getLogger(name)
        self._logger.info(f"Initializing echo server {start_port, end_port}...")

        self._listener = StreamSocket(context, name=f"{name}-Listener")
        self._listener.create()
        port = self._listener.try_bind_range(start_port, end_port)
        if port is None:
            self._listener.close()
            raise RuntimeError(f"No free port in {start_port, end_port}!")
        self._port = port
        self._listener.listen()

        self._clients = {}
        self._selector = SelectHelper(
            name=f"{name}-Selector", platform=context.platform
        )
        self._buffer = bytearray(recv_b_size)
        self._logger.info(f"Echo server initialized on port {port}.")

    @property
    def port(self) -> int:
        return self._port

    @property
    def clients(self) -> int:
        return len(self._clients)

    def serve_once(self, timeout: int = 0) -> int:
        """Serves a single round: waits until the listening socket or any client is
        readable, echoes whatever the clients sent, drops the clients that closed
        their connection, and accepts a new client if one is pending. A pending
        client that cannot be accepted (e.g. reset in the meantime) is skipped.

        :param timeout: Timeout in milliseconds. 0 blocks indefinitely.
        :return: Number of ready descriptors of this round.
        """
        self._selector.reset()
        self._selector.watch_read(self._listener)
        for client in self._clients.values():
            self._selector.watch_read(client)
        n_ready = self._selector.wait(timeout)

        for fd, client in list(self._clients.items()):
            if not self._selector.is_readable(fd):
                continue
            n_recv = client.receive(self._buffer)
            if n_recv <= 0:
                self._logger.info(f"Client {fd} disconnected.")
                client.close()
                del self._clients[fd]
                continue
            n_sent = client.send_all(self._buffer, n_recv)
            self._logger.debug(f"Echoed {n_sent}/{n_recv} bytes to client {fd}.")

        if self._selector.is_readable(self._listener):
            try:
                client = self._listener.accept()
            except SocketSystemError as e:
                self._logger.warning(f"Could not accept pending client: {e}")
                return n_ready
            self._clients[client.fileno()] = client
            self._logger.info(f"Client {client.fileno()} connected.")
        return n_ready

    def close(self):
        """Closes all client connections and the listening socket."""
        self._logger.info("Closing echo server...")
        for client in self._clients.values():
            client.close()
        self._clients = {}
        self._listener.close()
        self._logger.info("Echo server closed.")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _parse_args() -> argparse.Namespace:
    """Creates a parser for the arguments and parses them.

    :return: Parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter
    )

    logging_group = parser.add_argument_group(
        "Logging", "These arguments define the log level"
    )
    logging_group = logging_group.add_mutually_exclusive_group()
    logging_group.add_argument(
        "--debug",
        action="store_const",
        const=3,
        default=0,
        dest="loglevel",
        help="Sets the logging level to debug (level 3). Equivalent to -vvv.",
    )
    logging_group.add_argument(
        "--info",
        action="store_const",
        const=2,
        default=0,
        dest="loglevel",
        help="Sets the logging level to info (level 2). Equivalent to -vv.",
    )
    logging_group.add_argument(
        "--warning",
        "--warn",
        action="store_const",
        const=1,
        default=0,
        dest="loglevel",
        help="Sets the logging level to warning (level 1). Equivalent to -v.",
    )
    logging_group.add_argument(
        "--v",
        "--verbose",
        "-v",
        action="count",
        default=0,
        dest="loglevel",
        help="Increases verbosity with each occurrence up to level 3.",
    )

    server_group = parser.add_argument_group(
        "Server Configuration", "These arguments define where and how to serve."
    )
    server_group.add_argument(
        "--start-port",
        "-s",
        type=int,
        metavar="PORT",
        default=30000,
        help="First port to try to listen on. (Default: 30000)",
    )
    server_group.add_argument(
        "--end-port",
        "-e",
        type=int,
        metavar="PORT",
        default=30010,
        help="Port after the last one to try to listen on. (Default: 30010)",
    )
    server_group.add_argument(
        "--timeout",
        "-t",
        type=int,
        metavar="MILLISECONDS",
        default=1000,
        help="Timeout of a single serving round, 0 to block. (Default: 1000)",
    )

    return parser.parse_args()


def main():
    """Starts an echo server on the first free port of the configured range and
    serves clients until interrupted.
    """
    args = _parse_args()

    match args.loglevel:
        case 0:
            log_level = logging.ERROR
        case 1:
            log_level = logging.WARNING
        case 2:
            log_level = logging.INFO
        case _:
            log_level = logging.DEBUG

    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(name)-10s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        level=log_level,
    )

    with NetworkContext() as context:
        with EchoServer(
            context, start_port=args.start_port, end_port=args.end_port
        ) as server:
            print(f"Echo server listening on port {server.port}.")
            try:
                while True:
                    server.serve_once(args.timeout)
            except KeyboardInterrupt:
                logging.info("Interrupted, shutting down echo server...")


if __name__ == "__main__":
    main()
