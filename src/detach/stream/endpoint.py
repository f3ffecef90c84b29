import enum
import logging
import os
import socket
import stat

from detach.errors import ParseError, ResourceError, TransportError
from detach.stream.protocols.base import BaseStreamProtocol
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


DEFAULT_SOCKET_PATH = "/tmp/detach.sock"

# Number of bytes requested from the socket per read
RECV_SIZE = 4096


class StreamEndpointModes(enum.Enum):
    Server = 0
    Client = 1


class StreamEndpoint(object):
    """
    An endpoint is used to communicate with other processes over a Unix
    domain stream socket.

    An endpoint may operate in either a client or server mode. When operating
    in client mode it connects to a server's socket path. When operating in
    server mode it binds the socket path and accepts connections from
    clients, one at a time.

    Both modes are fully synchronous: every socket call blocks.

    Users of an endpoint may pass callback functions to receive
    notifications of endpoint events such as new peers joining, existing
    peers leaving and receipt of messages.
    """

    # Concrete endpoint implementations must define the protocol object to
    # be instantiated to handle a connection with a peer. The protocol is
    # expected to inherit from the
    # :ref:`detach.stream.protocols.base.BaseStreamProtocol` interface.
    protocol_class = None

    is_server: bool = False

    def __init__(
        self,
        path: str = DEFAULT_SOCKET_PATH,
        on_message=None,
        on_started=None,
        on_stopped=None,
        on_peer_available=None,
        on_peer_unavailable=None,
        **kwargs,
    ):
        """ Initialise Endpoint

        :param path: The filesystem path of the rendezvous socket.

        :param on_message: A callback function that will be called when a
          protocol extracts a message from the stream.

        :param on_started: A callback that will be called when the endpoint has
          been started (bound for a server, connected for a client).

        :param on_stopped: A callback that will be called when the endpoint has
          been stopped.

        :param on_peer_available: A callback function that will be called when
          a peer connection is established.

        :param on_peer_unavailable: A callback function that will be called when
          a peer connection has been closed.
        """
        self._on_message_handler = on_message
        self._on_started_handler = on_started
        self._on_stopped_handler = on_stopped
        self._on_peer_available_handler = on_peer_available
        self._on_peer_unavailable_handler = on_peer_unavailable

        if self.protocol_class is None or not issubclass(
            self.protocol_class, BaseStreamProtocol
        ):
            raise Exception(
                f"Endpoint protocol class must be a subclass of BaseStreamProtocol, got {self.protocol_class}"
            )

        self._mode = (
            StreamEndpointModes.Server if self.is_server else StreamEndpointModes.Client
        )
        self._mode_str = self._mode.name
        self._path = os.fspath(path)
        self._peers = {}
        self._messages = []  # type: List[bytes]

        self._running = False

    @property
    def path(self) -> str:
        """ Return the rendezvous socket path """
        return self._path

    @property
    def running(self):
        """ Return the running state of the endpoint """
        return self._running

    def __enter__(self):
        try:
            self.start()
        except BaseException:
            # start may fail after acquiring resources (e.g. in a callback)
            self.stop()
            raise
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.stop()

    def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def send(self, data: bytes, *, peer_id: bytes = None, **kwargs):
        """ Send a message to one or more peers.

        :param data: a bytes object containing the message payload.

        :param peer_id: The unique peer identity to send this message to. If
          no peer_id is specified then send to all peers. For a client
          endpoint, which has a single peer, this argument can conveniently
          be left unspecified.
        """
        if not self._peers:
            logger.error("No peers to send message to!")
            return

        if not isinstance(data, bytes):
            logger.error(f"data must be bytes - can't send message. data={data}")
            return

        peer_ids = [peer_id] if peer_id else list(self._peers)

        for _peer_id in peer_ids:
            prot = self._peers[_peer_id]
            try:
                prot.send(data, **kwargs)
            except OSError as exc:
                raise TransportError(f"Unable to send to peer {_peer_id}: {exc}") from exc

    def _protocol_factory(self):
        """ Return a protocol instance to handle a new peer connection """
        return self.protocol_class(
            on_message=self.on_message,
            on_peer_available=self.on_peer_available,
            on_peer_unavailable=self.on_peer_unavailable,
            max_frames=1,
        )

    def _receive(self, prot, sock: socket.socket) -> bytes:
        """ Block until the protocol has extracted one message from the socket.

        :raises TransportError: if the socket fails or the peer closes the
          connection before a complete message has arrived.

        :raises ParseError: if the protocol rejects the byte stream.
        """
        self._messages.clear()
        while not self._messages:
            try:
                chunk = sock.recv(RECV_SIZE)
            except OSError as exc:
                raise TransportError(f"Unable to read from peer: {exc}") from exc
            if not chunk:
                raise TransportError("Peer closed the connection before a complete frame")
            prot.data_received(chunk)
        return self._messages.pop(0)

    def _notify(self, handler, name, *args, **kwargs):
        # Don't let poor user code break the library
        try:
            if handler:
                handler(self, *args, **kwargs)
        except Exception:
            logger.exception(f"Error in {name} callback method")

    def on_peer_available(self, prot, peer_id: bytes):
        """ Called from a protocol instance when its transport is available.

        :param prot: The protocol instance responsible for the peer.

        :param peer_id: The peer's unique identity.
        """
        self._peers[peer_id] = prot
        self._notify(self._on_peer_available_handler, "on_peer_available", peer_id)

    def on_peer_unavailable(self, prot, peer_id: bytes):
        """ Called from a protocol instance when its transport is no longer
        available. No further messages can be sent or received from the peer.

        :param prot: The protocol instance responsible for the peer.

        :param peer_id: The peer's unique identity.
        """
        self._peers.pop(peer_id, None)
        self._notify(self._on_peer_unavailable_handler, "on_peer_unavailable", peer_id)

    def on_message(self, prot, peer_id: bytes, data: bytes, **kwargs) -> None:
        """ Called by a protocol when it extracts a message from a peer.

        :param prot: The protocol instance the received the message.

        :param peer_id: The peer's unique identity which can be used to route
          messages back to the originator.

        :param data: The message payload.
        """
        self._messages.append(data)
        self._notify(
            self._on_message_handler, "on_message", data, peer_id=peer_id
        )


class StreamServer(StreamEndpoint):
    """ An endpoint configured to operate as a server.

    The server owns the rendezvous socket file. It is created by
    :meth:`start` and removed exactly once by :meth:`stop`. Using the server
    as a context manager guarantees the removal on every exit path,
    including exceptions raised while serving.
    """

    is_server = True

    def __init__(self, path: str = DEFAULT_SOCKET_PATH, backlog: int = 1, **kwargs):
        super().__init__(path, **kwargs)
        self._backlog = backlog
        self._listener = None  # type: Optional[socket.socket]
        self._bound_path = None  # type: Optional[str]

    @property
    def bindings(self) -> Sequence[str]:
        """ Return a server endpoint's bound addresses. """
        return [self._bound_path] if self._bound_path else []

    def start(self) -> None:
        """ Bind the rendezvous socket and begin listening.

        :raises ResourceError: if the path is held by a live server or by a
          file that is not a socket. No partial state is left behind.
        """
        if self.running:
            return

        logger.debug(f"Starting {self._mode_str}")

        self._remove_stale_socket()

        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            listener.bind(self._path)
        except OSError as exc:
            listener.close()
            err_str = f"Unable to bind to {self._path}: {exc}"
            logger.error(err_str)
            raise ResourceError(err_str) from None

        try:
            listener.listen(self._backlog)
        except OSError as exc:
            listener.close()
            os.unlink(self._path)
            err_str = f"Unable to listen on {self._path}: {exc}"
            logger.error(err_str)
            raise ResourceError(err_str) from None

        self._listener = listener
        self._bound_path = self._path
        self._running = True
        logger.debug(f"Bound listener to {self._bound_path}")

        self._notify(self._on_started_handler, "on_started")

    def stop(self) -> None:
        """ Stop the server.

        Closes the listening socket and removes the socket file. Calling stop
        on a server that is not running has no consequences.
        """
        if not self.running:
            return

        logger.debug(f"Stopping {self._mode_str}")

        self._running = False
        try:
            # Close listener to prevent any more client connections
            if self._listener:
                self._listener.close()
            self._listener = None
        finally:
            self._unlink()

        self._notify(self._on_stopped_handler, "on_stopped")

    def serve_forever(self) -> None:
        """ Accept peers one at a time until :meth:`should_stop` is true.

        Each accepted peer is handled to completion before the stop
        condition is checked and before the next peer is accepted. Accept
        errors are logged and do not stop the loop.
        """
        if not self.running:
            raise Exception("Server must be started before serving")

        while self.running:
            try:
                sock, _addr = self._listener.accept()
            except OSError as exc:
                if not self.running:
                    break
                logger.error(f"Unable to accept connection: {exc}")
                continue

            logger.debug("Got connection")
            self._handle_peer(sock)

            if self.should_stop():
                logger.debug("Stop requested, no longer accepting connections")
                break

    def should_stop(self) -> bool:
        """ Return True to leave the accept loop after the current peer """
        return False

    def handle_message(self, prot, peer_id: bytes, data: bytes) -> None:
        """ Process the single message received from a peer.

        Concrete servers override this to produce a reply using
        :meth:`send`. Raising ParseError lets :meth:`handle_error` reply to
        the peer.
        """

    def handle_error(self, prot, peer_id: bytes, exc: ParseError) -> None:
        """ Called when a peer's message could not be parsed """
        logger.error(f"Dropping peer {peer_id}, unparseable message: {exc}")

    def _handle_peer(self, sock: socket.socket) -> None:
        prot = self._protocol_factory()
        prot.connection_made(sock)
        peer_id = prot.identity
        reason = None
        try:
            try:
                data = self._receive(prot, sock)
            except ParseError as exc:
                self.handle_error(prot, peer_id, exc)
            else:
                self.handle_message(prot, peer_id, data)
        except TransportError as exc:
            # Terminates this connection only
            logger.error(f"Connection with peer {peer_id} failed: {exc}")
            reason = exc
        finally:
            prot.connection_lost(reason)

    def _remove_stale_socket(self) -> None:
        """ Remove a socket file left behind by a server that has exited """
        try:
            mode = os.stat(self._path).st_mode
        except FileNotFoundError:
            return
        except OSError as exc:
            raise ResourceError(f"Unable to inspect {self._path}: {exc}") from None

        if not stat.S_ISSOCK(mode):
            raise ResourceError(f"{self._path} exists and is not a socket")

        probe = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            probe.connect(self._path)
        except ConnectionRefusedError:
            logger.warning(f"Removing stale socket {self._path}")
            os.unlink(self._path)
            return
        except OSError as exc:
            raise ResourceError(f"Unable to probe {self._path}: {exc}") from None
        finally:
            probe.close()

        raise ResourceError(f"{self._path} is already in use by a running server")

    def _unlink(self) -> None:
        path, self._bound_path = self._bound_path, None
        if path is None:
            return
        try:
            os.unlink(path)
            logger.debug(f"Removed socket {path}")
        except FileNotFoundError:
            logger.warning(f"Socket {path} was already removed")


class StreamClient(StreamEndpoint):
    """ An endpoint configured to operate as a client.

    A client owns a single connection to a server. It is opened by
    :meth:`start` and closed by :meth:`stop`; using the client as a context
    manager guarantees the connection is closed.
    """

    def __init__(self, path: str = DEFAULT_SOCKET_PATH, **kwargs):
        super().__init__(path, **kwargs)
        self._prot = None
        self._sock = None  # type: Optional[socket.socket]

    def start(self) -> None:
        """ Connect to the server.

        :raises TransportError: if the server can not be reached.
        """
        if self.running:
            return

        logger.debug(f"Starting to connect to {self._path}")

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(self._path)
        except OSError as exc:
            sock.close()
            err_str = f"Connection to {self._path} failed: {exc}"
            logger.error(err_str)
            raise TransportError(err_str) from None

        self._sock = sock
        self._prot = self._protocol_factory()
        self._prot.connection_made(sock)
        self._running = True

        self._notify(self._on_started_handler, "on_started")

    def stop(self) -> None:
        """ Close the connection. Calling stop on a stopped client has no
        consequences.
        """
        if not self.running:
            return

        logger.debug(f"Stopping {self._mode_str}")

        self._running = False
        prot, self._prot, self._sock = self._prot, None, None
        prot.connection_lost(None)

        self._notify(self._on_stopped_handler, "on_stopped")

    def receive(self) -> bytes:
        """ Block until a complete message arrives from the server.

        :raises TransportError: if the connection fails or closes early.

        :raises ParseError: if the server sent a malformed frame.
        """
        if not self.running:
            raise TransportError("Client is not connected")
        return self._receive(self._prot, self._sock)
