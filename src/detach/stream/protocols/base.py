import binascii
import logging
import os
import socket

from typing import Optional


logger = logging.getLogger(__name__)


class BaseStreamProtocol(object):
    """
    A protocol sits between one connected socket and the endpoint that owns
    it.

    The endpoint performs all socket reads and feeds the received bytes to
    :meth:`data_received`. Concrete protocols implement that method to split
    the stream into messages. Connection changes and extracted messages are
    reported back to the endpoint through callbacks.
    """

    def __init__(
        self,
        on_message=None,
        on_peer_available=None,
        on_peer_unavailable=None,
        **kwargs,
    ):
        """

        :param on_message: A callback function that will be passed each message
          that the protocol extracts from the stream.

        :param on_peer_available: A callback function that will be called once
          the protocol has a connected socket.

        :param on_peer_unavailable: A callback function that will be called once
          the socket has been closed.
        """
        self._on_message_handler = on_message
        self._on_peer_available_handler = on_peer_available
        self._on_peer_unavailable_handler = on_peer_unavailable
        self._address = None  # type: Optional[str]
        self._identity = b""

        self.transport = None  # type: Optional[socket.socket]

    @property
    def address(self) -> Optional[str]:
        """ Return the socket path of the connection, if it has one """
        return self._address

    @property
    def identity(self):
        """ Return the identifier the endpoint uses to route replies back to
        this connection.
        """
        return self._identity

    def connection_made(self, transport: socket.socket):
        """ Attach a connected socket and notify the endpoint. """
        self.transport = transport
        self._identity = binascii.hexlify(os.urandom(5))

        # Only one end of a Unix socket connection is bound to a path
        for getter in (transport.getsockname, transport.getpeername):
            try:
                name = getter()
            except OSError:
                continue
            if name:
                self._address = os.fsdecode(name)
                break

        logger.debug(f"Connection made. id={self._identity}, path={self._address}")
        self._notify(self._on_peer_available_handler, "on_peer_available")

    def connection_lost(self, exc):
        """ Close the socket and notify the endpoint.

        :param exc: The error that ended the connection, or None for an
          orderly close.
        """
        logger.debug(f"Connection lost. id={self._identity}, reason={exc}")
        self._notify(self._on_peer_unavailable_handler, "on_peer_unavailable")

        if self.transport:
            self.transport.close()

        self.transport = None
        self._address = None
        self._identity = None

    def send(self, data: bytes, **kwargs):
        """ Write already framed bytes to the socket. """
        logger.debug(f"Sending msg with {len(data)} bytes")
        self.transport.sendall(data)

    def data_received(self, data: bytes):
        raise NotImplementedError

    def _notify(self, handler, name, *args):
        # Don't let user code break the library
        try:
            if handler:
                handler(self, self._identity, *args)
        except Exception:
            logger.exception(f"Error in {name} callback method")
