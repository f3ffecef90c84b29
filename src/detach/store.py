import logging

from detach import serialization
from detach.wire import (
    Command,
    Delete,
    Dump,
    Get,
    Ok,
    Quit,
    Response,
    Set,
    Value,
    WrappedValue,
)
from typing import Dict


logger = logging.getLogger(__name__)


# The request counter is diagnostic only; it saturates at this value.
COUNTER_MAX = 2 ** 64 - 1


class Store(object):
    """
    The worker's in-memory state: a mapping of keys to values, a request
    counter and a termination flag.

    A store is mutated only by the connection handler, one command at a
    time, so it needs no locking.
    """

    def __init__(self, dump_format: str = None):
        """ Initialise Store

        :param dump_format: The name of the serializer used to render the
          mapping in response to a ``DMP`` command. Defaults to the
          registry's default (``text``).
        """
        self.dump_format = dump_format or serialization.registry.default
        # Fail early on an unknown format rather than on the first dump
        serialization.registry.get_codec(self.dump_format)

        self.db = {}  # type: Dict[str, str]
        self.count = 0
        self.should_terminate = False

        self._handlers = {
            Get: self._get,
            Set: self._set,
            Delete: self._delete,
            Dump: self._dump,
            Quit: self._quit,
        }

    def __repr__(self):
        return (
            f"Store(count={self.count}, db={self.db!r}, "
            f"should_terminate={self.should_terminate})"
        )

    def apply(self, command: Command) -> Response:
        """ Apply a command to the store and return its response.

        Every applied command increments the request counter by one.
        """
        try:
            handler = self._handlers[type(command)]
        except KeyError:
            raise TypeError(f"Unsupported command: {command!r}") from None

        response = handler(command)

        self.count = min(self.count + 1, COUNTER_MAX)
        logger.debug(f"state: {self!r}")

        return response

    def _get(self, command: Get) -> Response:
        # An absent key and an empty value are indistinguishable
        return Value(WrappedValue.from_string(self.db.get(command.key, "")))

    def _set(self, command: Set) -> Response:
        self.db[command.key] = command.value.into_string()
        return Ok()

    def _delete(self, command: Delete) -> Response:
        self.db.pop(command.key, None)
        return Ok()

    def _dump(self, command: Dump) -> Response:
        snapshot = serialization.dumps(dict(self.db), self.dump_format)
        return Value(WrappedValue.from_bytes(snapshot))

    def _quit(self, command: Quit) -> Response:
        self.should_terminate = True
        return Ok()
