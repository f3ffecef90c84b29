"""
The worker serves a :class:`~detach.store.Store` over a Unix socket.

Peers are accepted one at a time. Each connection carries one command and
receives one response, after which the connection is closed. The worker
leaves its accept loop once it has replied to a ``EXT`` (quit) command.

.. code-block:: python

    with Worker("/tmp/detach.sock") as worker:
        worker.serve_forever()
"""

import logging

from detach.errors import ParseError
from detach.store import Store
from detach.stream.endpoint import DEFAULT_SOCKET_PATH
from detach.stream.frame import FrameStreamServer
from detach.wire import Err, decode_command, encode_response


logger = logging.getLogger(__name__)


class Worker(FrameStreamServer):
    """ A frame server that applies each received command to a store """

    def __init__(
        self, path: str = DEFAULT_SOCKET_PATH, store: Store = None, **kwargs
    ):
        """ Initialise Worker

        :param path: The filesystem path of the rendezvous socket.

        :param store: The store to serve. A new empty store is created if
          not supplied.

        Remaining keyword arguments are passed to the
        :class:`~detach.stream.endpoint.StreamServer`.
        """
        super().__init__(path, **kwargs)
        self.store = store if store is not None else Store()

    def should_stop(self) -> bool:
        # Checked only after the reply to the quit command has been sent
        return self.store.should_terminate

    def handle_message(self, prot, peer_id: bytes, data: bytes) -> None:
        try:
            command = decode_command(data)
        except ParseError as exc:
            self.handle_error(prot, peer_id, exc)
            return

        logger.debug(f"Peer {peer_id} sent {command!r}")
        response = self.store.apply(command)
        self.send(encode_response(response), peer_id=peer_id)

    def handle_error(self, prot, peer_id: bytes, exc: ParseError) -> None:
        logger.error(f"Invalid command from peer {peer_id}: {exc}")
        response = Err(" ".join(str(exc).split()))
        self.send(encode_response(response), peer_id=peer_id)
