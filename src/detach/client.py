import logging

from detach.stream.endpoint import DEFAULT_SOCKET_PATH
from detach.stream.frame import FrameStreamClient
from detach.wire import (
    Command,
    Delete,
    Dump,
    Get,
    Quit,
    Response,
    Set,
    WrappedValue,
    decode_response,
    encode_command,
)


logger = logging.getLogger(__name__)


def call(command: Command, path: str = DEFAULT_SOCKET_PATH) -> Response:
    """ Send a single command to a worker and return its response.

    A new connection is opened for the command and closed once the response
    has been read. Nothing is retried.

    :param command: The command to send.

    :param path: The worker's socket path.

    :raises TransportError: if the worker can not be reached or closes the
      connection before replying.

    :raises ParseError: if the reply is not a valid response.
    """
    frame = encode_command(command)
    with FrameStreamClient(path) as client:
        logger.debug(f"Sending {command!r} to {path}")
        client.send(frame)
        reply = client.receive()
    return decode_response(reply)


def get(key: str, path: str = DEFAULT_SOCKET_PATH) -> Response:
    return call(Get(key), path)


def set(key: str, value: str, path: str = DEFAULT_SOCKET_PATH) -> Response:  # pylint: disable=redefined-builtin
    return call(Set(key, WrappedValue.from_string(value)), path)


def delete(key: str, path: str = DEFAULT_SOCKET_PATH) -> Response:
    return call(Delete(key), path)


def dump(path: str = DEFAULT_SOCKET_PATH) -> Response:
    return call(Dump(), path)


def quit(path: str = DEFAULT_SOCKET_PATH) -> Response:  # pylint: disable=redefined-builtin
    return call(Quit(), path)
