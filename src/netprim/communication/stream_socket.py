# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Connection-oriented (TCP/IPv4) sockets, as a thin layer over the BSD socket
calls with well-defined partial I/O semantics. Two parts work together:

    * SocketHandle - Lifecycle of a single OS socket (open/invalid), non-blocking
    mode, binding (also by scanning a port range), and closing.
    * StreamSocket - Creation, listening, accepting, connecting, and the transfer
    primitives (best-effort send/receive and the send_all/recv_all loops),
    implemented on top of a socket handle it owns.

Transient conditions (port in use during a scan, would-block, peer closed,
refused connection) are returned as values; anything else is raised as
SocketSystemError carrying the failing operation and the OS' error text.
Neither class is thread-safe; a socket must not be used by multiple threads at
once without external locking.
"""

import logging
import os
import socket
from typing import Optional

from .address import NetworkAddress
from .context import NetworkContext
from .errors import BindError, ProtocolViolation, SocketSystemError

INVALID_SOCKET = -1
SOCKET_ERROR = -1

_ANY_HOST = bytes(4)


def _byte_view(obj, size: Optional[int]) -> tuple[memoryview, int]:
    """Flattens a bytes-like object into a byte view and checks the number of bytes
    to transfer against it.

    :param obj: Bytes-like object to view.
    :param size: Number of bytes to transfer, None for all of them.
    :return: Byte view and number of bytes to transfer.
    :raises ValueError: If the size is negative or exceeds the object.
    """
    view = memoryview(obj).cast("B")
    if size is None:
        return view, view.nbytes
    if not 0 <= size <= view.nbytes:
        raise ValueError(f"Size {size} out of bounds for {view.nbytes} bytes!")
    return view, size


class SocketHandle:
    """Exclusive owner of exactly one OS socket. A handle is either invalid (no
    socket attached) or open; it becomes open by attaching a freshly created or
    accepted socket and goes back to invalid when closed. Closing an invalid handle
    is a violation of the protocol, not a no-op.
    """

    _logger: logging.Logger

    _context: NetworkContext
    _sock: Optional[socket.socket]
    _fd: int

    def __init__(self, context: NetworkContext, name: str = "SocketHandle"):
        """Creates a new, invalid socket handle.

        :param context: Network context the socket lives in.
        :param name: Name of handle for logging purposes.
        """
        self._logger = logging.getLogger(name)
        self._context = context
        self._sock = None
        self._fd = INVALID_SOCKET

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def fileno(self) -> int:
        """Returns the OS descriptor of the socket, INVALID_SOCKET if invalid."""
        return self._fd

    def attach(self, sock: socket.socket):
        """Takes ownership of a (created or accepted) OS socket.

        :param sock: Socket to own from now on.
        :raises ProtocolViolation: If the handle already owns a socket.
        """
        if self._sock is not None:
            raise ProtocolViolation(
                f"Socket handle {self._fd} is already open, close it first!"
            )
        self._sock = sock
        self._fd = sock.fileno()
        self._context.register(self._fd)

    def require_open(self, operation: str) -> socket.socket:
        """Returns the owned OS socket for an operation that needs one.

        :param operation: Name of operation to report in case of error.
        :return: Owned socket.
        :raises ProtocolViolation: If the handle is invalid.
        """
        if self._sock is None:
            raise ProtocolViolation(
                f"Socket {operation} on an invalid socket (never created or closed)!"
            )
        return self._sock

    def set_non_blocking(self, enabled: bool):
        """Switches the socket between blocking and non-blocking I/O. Idempotent.

        :param enabled: Whether to switch to non-blocking mode (else blocking).
        :raises SocketSystemError: If the mode cannot be changed.
        """
        sock = self.require_open("SetNonBlock")
        try:
            sock.setblocking(not enabled)
        except OSError as e:
            raise SocketSystemError("SetNonBlock", e)
        self._logger.debug(
            f"Socket {self._fd} set to {'non-' if enabled else ''}blocking mode."
        )

    def bind(self, addr: NetworkAddress):
        """Binds the socket to a local address.

        :param addr: Local address to bind to.
        :raises BindError: If the address is taken or may not be used.
        """
        sock = self.require_open("Bind")
        try:
            sock.bind(addr.sockaddr)
        except OSError as e:
            raise BindError("Bind", e)
        self._logger.debug(f"Socket {self._fd} bound to {addr}.")

    def try_bind_range(self, start_port: int, end_port: int) -> Optional[int]:
        """Tries to bind the socket to the wildcard address at any port of a range,
        going through the ports in ascending order. Ports already in use are
        skipped, while any other failure ends the scan.

        :param start_port: First port to try.
        :param end_port: Port after the last one to try (exclusive).
        :return: Port the socket is bound to, None if every port is in use.
        :raises BindError: If binding fails for another reason than a taken port.
        :raises ValueError: If the range exceeds the valid ports.
        """
        if start_port < 0 or end_port > 0x10000:
            raise ValueError(f"Port range {start_port, end_port} is out of bounds!")
        sock = self.require_open("TryBindRange")
        platform = self._context.platform

        self._logger.debug(
            f"Trying to bind socket {self._fd} to a port in {start_port, end_port}..."
        )
        for port in range(start_port, end_port):
            try:
                sock.bind(NetworkAddress(_ANY_HOST, port).sockaddr)
            except OSError as e:
                if platform.is_addr_in_use(e):
                    self._logger.debug(f"Port {port} in use, skipping...")
                    continue
                raise BindError("TryBindRange", e)
            self._logger.debug(f"Socket {self._fd} bound to port {port}.")
            return port
        self._logger.debug(f"No port available in {start_port, end_port}.")
        return None

    def close(self):
        """Closes the socket, resetting the handle to invalid.

        :raises ProtocolViolation: If the handle is invalid (double close or close
        without create).
        :raises SocketSystemError: If the OS fails to release the socket.
        """
        if self._sock is None:
            raise ProtocolViolation(
                "Socket Close on an invalid socket "
                "(double close or close without create)!"
            )
        sock, fd = self._sock, self._fd
        self._sock = None
        self._fd = INVALID_SOCKET
        self._context.unregister(fd)
        try:
            sock.close()
        except OSError as e:
            raise SocketSystemError("Close", e)
        self._logger.debug(f"Socket {fd} closed.")


class StreamSocket:
    """A TCP/IPv4 socket that can either listen for and accept connections or
    connect to a remote peer, and then transfer bytes over that connection. Owns a
    socket handle for the lifecycle of the underlying OS socket; every transfer
    primitive is implemented on top of it.

    State machine: Invalid -> Created -> (Bound -> Listening | Connected), with
    close() leading back to Invalid from any other state. Only create() (and
    accept() yielding new instances) is valid from Invalid.
    """

    _logger: logging.Logger
    _name: str

    _context: NetworkContext
    _handle: SocketHandle

    def __init__(self, context: NetworkContext, name: str = "StreamSocket"):
        """Creates a new (invalid) stream socket. Call create() before using it.

        :param context: Network context the socket lives in.
        :param name: Name of socket for logging purposes.
        """
        self._logger = logging.getLogger(name)
        self._name = name
        self._context = context
        self._handle = SocketHandle(context, name=name)

    @property
    def handle(self) -> SocketHandle:
        return self._handle

    @property
    def is_open(self) -> bool:
        return self._handle.is_open

    def fileno(self) -> int:
        return self._handle.fileno()

    def set_non_blocking(self, enabled: bool):
        self._handle.set_non_blocking(enabled)

    def bind(self, addr: NetworkAddress):
        self._handle.bind(addr)

    def try_bind_range(self, start_port: int, end_port: int) -> Optional[int]:
        return self._handle.try_bind_range(start_port, end_port)

    def close(self):
        self._handle.close()

    def create(self):
        """Allocates a new TCP/IPv4 socket.

        :raises ProtocolViolation: If the network context is not started or the
        socket is already open.
        :raises SocketSystemError: If the OS cannot allocate the socket.
        """
        self._context.require_started("Create")
        if self._handle.is_open:
            raise ProtocolViolation(
                f"Socket {self._handle.fileno()} is already open, close it first!"
            )
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            raise SocketSystemError("Create", e)
        self._handle.attach(sock)
        self._logger.info(f"Socket {self.fileno()} created.")

    def listen(self, backlog: int = 16):
        """Marks a bound socket as passive, accepting incoming connections.

        :param backlog: Maximum number of pending connections.
        :raises SocketSystemError: If the socket cannot listen.
        """
        sock = self._handle.require_open("Listen")
        try:
            sock.listen(backlog)
        except OSError as e:
            raise SocketSystemError("Listen", e)
        self._logger.info(f"Socket {self.fileno()} listening (backlog {backlog}).")

    def accept(self) -> "StreamSocket":
        """Waits for an incoming connection and hands it over as a new stream
        socket, which exclusively owns the connection from now on. The listening
        socket is not affected. Blocking (unless set non-blocking).

        :return: Stream socket of the accepted connection.
        :raises SocketSystemError: If no connection could be accepted.
        """
        sock = self._handle.require_open("Accept")
        self._logger.debug(f"Accepting connection on socket {self.fileno()}...")
        try:
            a_sock, a_addr = sock.accept()
        except OSError as e:
            raise SocketSystemError("Accept", e)

        accepted = StreamSocket(self._context, name=f"{self._name}-Accepted")
        accepted._handle.attach(a_sock)
        self._logger.info(
            f"Connection {a_addr} accepted as socket {accepted.fileno()}."
        )
        return accepted

    def connect(self, addr: NetworkAddress) -> bool:
        """Connects the socket to a remote address. Blocking (unless set
        non-blocking).

        Note a refused, unreachable, or otherwise failed connection attempt is only
        reported through the return value; the cause is not distinguished further
        (it is logged though).

        :param addr: Remote address to connect to.
        :return: Whether the connection was established.
        :raises SocketSystemError: If the OS call itself cannot be issued.
        """
        sock = self._handle.require_open("Connect")
        self._logger.debug(f"Connecting socket {self.fileno()} to {addr}...")
        try:
            err = sock.connect_ex(addr.sockaddr)
        except OSError as e:
            raise SocketSystemError("Connect", e)
        if err != 0:
            self._logger.debug(
                f"Could not connect socket {self.fileno()} to {addr}: "
                f"{os.strerror(err)}"
            )
            return False
        self._logger.info(f"Socket {self.fileno()} connected to {addr}.")
        return True

    def send(self, data, size: int = None, flags: int = 0) -> int:
        """Sends data with a single call, sending as much as the OS accepts.

        :param data: Bytes-like object to send.
        :param size: Number of bytes of data to send. Defaults to all of it.
        :param flags: Flags passed on to the OS.
        :return: Number of bytes sent, SOCKET_ERROR if the call failed.
        :raises ValueError: If the size is negative or exceeds the data.
        """
        view, size = _byte_view(data, size)
        if size == 0:
            return 0
        sock = self._handle.require_open("Send")
        try:
            return sock.send(view[:size], flags)
        except OSError as e:
            self._logger.debug(f"Send on socket {self.fileno()} failed: {e}")
            return SOCKET_ERROR

    def receive(self, buffer, size: int = None, flags: int = 0) -> int:
        """Receives data with a single call into a writable buffer.

        :param buffer: Writable bytes-like object to receive into.
        :param size: Maximum number of bytes to receive. Defaults to the buffer
        size.
        :param flags: Flags passed on to the OS.
        :return: Number of bytes received (0 if the peer has closed the
        connection), SOCKET_ERROR if the call failed.
        :raises ValueError: If the size is negative or exceeds the buffer.
        """
        view, size = _byte_view(buffer, size)
        if size == 0:
            return 0
        sock = self._handle.require_open("Recv")
        try:
            return sock.recv_into(view, size, flags)
        except OSError as e:
            self._logger.debug(f"Receive on socket {self.fileno()} failed: {e}")
            return SOCKET_ERROR

    def send_all(self, data, size: int = None) -> int:
        """Sends data, calling the OS until everything is sent. In non-blocking
        mode, stops as soon as the OS would block, returning a short count.

        :param data: Bytes-like object to send.
        :param size: Number of bytes of data to send. Defaults to all of it.
        :return: Number of bytes sent.
        :raises SocketSystemError: If sending fails for any other reason.
        :raises ValueError: If the size is negative or exceeds the data.
        """
        view, size = _byte_view(data, size)
        sock = self._handle.require_open("SendAll")

        n_done = 0
        while n_done < size:
            try:
                n_done += sock.send(view[n_done:size])
            except BlockingIOError:
                self._logger.debug(
                    f"Short write on socket {self.fileno()}: {n_done}/{size} bytes."
                )
                return n_done
            except OSError as e:
                raise SocketSystemError("SendAll", e)
        return n_done

    def recv_all(self, buffer, size: int = None) -> int:
        """Receives data into a writable buffer, asking the OS to wait for the full
        remainder with each call. Stops early if the OS would block (non-blocking
        mode) or if the peer has closed the connection; callers detect such short
        reads by comparing the returned count against the requested size.

        :param buffer: Writable bytes-like object to receive into.
        :param size: Number of bytes to receive. Defaults to the buffer size.
        :return: Number of bytes received.
        :raises SocketSystemError: If receiving fails for any other reason.
        :raises ValueError: If the size is negative or exceeds the buffer.
        """
        view, size = _byte_view(buffer, size)
        sock = self._handle.require_open("RecvAll")
        flags = self._context.platform.recv_all_flags

        n_done = 0
        while n_done < size:
            try:
                n_recv = sock.recv_into(view[n_done:size], size - n_done, flags)
            except BlockingIOError:
                self._logger.debug(
                    f"Short read on socket {self.fileno()}: {n_done}/{size} bytes."
                )
                return n_done
            except OSError as e:
                raise SocketSystemError("RecvAll", e)
            if n_recv == 0:
                self._logger.debug(
                    f"Peer of socket {self.fileno()} closed the connection after "
                    f"{n_done}/{size} bytes."
                )
                return n_done
            n_done += n_recv
        return n_done

    def local_address(self) -> NetworkAddress:
        """Returns the local address the socket is bound to.

        :raises SocketSystemError: If the address cannot be retrieved.
        """
        sock = self._handle.require_open("GetSockName")
        try:
            host, port = sock.getsockname()
        except OSError as e:
            raise SocketSystemError("GetSockName", e)
        return NetworkAddress(socket.inet_aton(host), port)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._handle.is_open:
            self.close()

    def __repr__(self):
        return f"{self.__class__.__name__}({self._name!r}, fd={self.fileno()})"

