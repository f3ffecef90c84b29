"""
The wire module defines the commands a client sends to a worker, the
responses a worker returns and the text encoding used for both.

Every command and response occupies a single newline terminated frame.
Values are wrapped in a length prefixed field so that a payload may contain
arbitrary bytes, including the newline delimiter.

.. code-block:: console

    Command  ::= "GET " key | "SET " key " " Value | "DEL " key | "DMP" | "EXT"
    Response ::= "OK" | "ERR " message | Value
    Value    ::= "VAL 0" | "VAL " length " " bytes

Keys must not contain a space or a newline. This is not enforced: a key
containing a space will be mis-split when a ``SET`` frame is decoded.
"""

import logging

from detach.errors import ParseError
from typing import Dict, Optional, Type


logger = logging.getLogger(__name__)


KEY_ENCODING = "utf-8"
KEY_ERRORS = "surrogateescape"

VALUE_MARKER = b"VAL "
EMPTY_VALUE = b"VAL 0"

SEPARATOR = b" "
DELIMITER = b"\n"


def _to_text(data: bytes) -> str:
    return data.decode(KEY_ENCODING, KEY_ERRORS)


def _to_bytes(text: str) -> bytes:
    return text.encode(KEY_ENCODING, KEY_ERRORS)


class WrappedValue(object):
    """
    An optional byte buffer plus an explicit length.

    A zero length means the buffer is absent. A non-zero length without a
    buffer (or with a buffer shorter than the length) can not be
    constructed.
    """

    __slots__ = ("_buf", "_length")

    def __init__(self, buf: Optional[bytes] = None, length: Optional[int] = None):
        if length is None:
            length = len(buf) if buf else 0

        if length < 0:
            raise ValueError(f"length must be non-negative, got {length}")

        if length:
            if buf is None:
                raise ValueError("non-zero length with an empty buffer")
            if len(buf) < length:
                raise ValueError(
                    f"buffer holds {len(buf)} bytes but length is {length}"
                )
            self._buf = bytes(buf[:length])
        else:
            self._buf = None

        self._length = length

    @classmethod
    def empty(cls) -> "WrappedValue":
        return cls()

    @classmethod
    def from_bytes(cls, data: bytes) -> "WrappedValue":
        return cls(data, len(data))

    @classmethod
    def from_string(cls, text: str) -> "WrappedValue":
        return cls.from_bytes(_to_bytes(text))

    @property
    def payload(self) -> bytes:
        """ Return the wrapped bytes, empty when the buffer is absent """
        return self._buf if self._buf is not None else b""

    def into_string(self) -> str:
        return _to_text(self.payload)

    def __len__(self):
        return self._length

    def __eq__(self, other):
        if not isinstance(other, WrappedValue):
            return NotImplemented
        return self.payload == other.payload

    def __hash__(self):
        return hash(self.payload)

    def __repr__(self):
        return f"WrappedValue({self.payload!r})"

    def encode(self) -> bytes:
        """ Return the value field, e.g. ``VAL 5 hello`` or ``VAL 0`` """
        if not self._length:
            return EMPTY_VALUE
        return VALUE_MARKER + str(self._length).encode("ascii") + SEPARATOR + self._buf

    @classmethod
    def decode(cls, field: bytes) -> "WrappedValue":
        """ Decode a value field.

        The declared length is authoritative: the bytes that follow the
        length must be exactly that long.

        :raises ParseError: if the field is malformed.
        """
        field = bytes(field)
        if len(field) < len(EMPTY_VALUE) or not field.startswith(VALUE_MARKER):
            raise ParseError(f"expected a value field, got {field[:16]!r}")

        inner = field[len(VALUE_MARKER) :]

        if inner[:1] == b"0":
            return cls.empty()

        length, sep, rest = inner.partition(SEPARATOR)
        if not sep:
            raise ParseError("value field is missing its payload separator")

        if not length.isdigit():
            raise ParseError(f"invalid value length {length[:16]!r}")

        length = int(length)
        if len(rest) != length:
            raise ParseError(
                f"value declares {length} bytes but carries {len(rest)} bytes"
            )

        return cls(rest, length)


def value_field_offset(head: bytes) -> Optional[int]:
    """ Return the offset of the value field within a frame, if it has one.

    Only ``SET`` commands and ``VAL`` responses carry a value field. The
    frame reader uses this to switch to length aware reading so that
    newlines inside a payload are not mistaken for the frame delimiter.

    :param head: the start of a frame (at most up to its first newline).
    """
    if head.startswith(VALUE_MARKER):
        return 0

    if head.startswith(Set.verb + SEPARATOR):
        sep = head.find(SEPARATOR, len(Set.verb) + 1)
        if sep != -1:
            return sep + 1

    return None


def _check_prefix(frame: bytes, width: int) -> bytes:
    """ Return the fixed width discriminator at the start of a frame """
    if len(frame) < width:
        raise ParseError(f"frame too short to hold a discriminator: {frame!r}")
    return frame[:width]


def _key_argument(frame: bytes) -> str:
    """ Return the key that follows a three letter verb and a space """
    if frame[3:4] != SEPARATOR:
        raise ParseError(f"missing key in {frame[:16]!r}")
    return _to_text(frame[4:])


class _Message(object):
    """ Shared equality and representation for commands and responses """

    __slots__ = ()

    def _fields(self):
        return tuple(getattr(self, name) for name in self.__slots__)

    def __eq__(self, other):
        if type(self) is not type(other):
            return NotImplemented
        return self._fields() == other._fields()

    def __hash__(self):
        return hash((type(self).__name__,) + self._fields())

    def __repr__(self):
        args = ", ".join(
            f"{name}={getattr(self, name)!r}" for name in self.__slots__
        )
        return f"{type(self).__name__}({args})"


class Command(_Message):
    """ A client to worker request """

    __slots__ = ()

    verb = b""

    def encode(self) -> bytes:
        return self.verb

    @classmethod
    def from_frame(cls, frame: bytes) -> "Command":
        if frame != cls.verb:
            raise ParseError(f"{cls.verb.decode()} takes no arguments")
        return cls()


class Get(Command):
    __slots__ = ("key",)

    verb = b"GET"

    def __init__(self, key: str):
        self.key = key

    def encode(self) -> bytes:
        return self.verb + SEPARATOR + _to_bytes(self.key)

    @classmethod
    def from_frame(cls, frame: bytes) -> "Get":
        return cls(_key_argument(frame))


class Set(Command):
    __slots__ = ("key", "value")

    verb = b"SET"

    def __init__(self, key: str, value: WrappedValue):
        self.key = key
        self.value = value

    def encode(self) -> bytes:
        return SEPARATOR.join((self.verb, _to_bytes(self.key), self.value.encode()))

    @classmethod
    def from_frame(cls, frame: bytes) -> "Set":
        if frame[3:4] != SEPARATOR:
            raise ParseError("SET requires a key and a value")
        key, sep, value = frame[4:].partition(SEPARATOR)
        if not sep:
            raise ParseError("SET requires a key and a value")
        return cls(_to_text(key), WrappedValue.decode(value))


class Delete(Command):
    __slots__ = ("key",)

    verb = b"DEL"

    def __init__(self, key: str):
        self.key = key

    def encode(self) -> bytes:
        return self.verb + SEPARATOR + _to_bytes(self.key)

    @classmethod
    def from_frame(cls, frame: bytes) -> "Delete":
        return cls(_key_argument(frame))


class Dump(Command):
    __slots__ = ()

    verb = b"DMP"


class Quit(Command):
    __slots__ = ()

    verb = b"EXT"


COMMANDS = {
    cmd.verb: cmd for cmd in (Get, Set, Delete, Dump, Quit)
}  # type: Dict[bytes, Type[Command]]


class Response(_Message):
    """ A worker to client reply """

    __slots__ = ()


class Value(Response):
    __slots__ = ("value",)

    def __init__(self, value: Optional[WrappedValue] = None):
        self.value = value if value is not None else WrappedValue.empty()

    def encode(self) -> bytes:
        # The value field identifies itself so it needs no extra prefix
        return self.value.encode()


class Err(Response):
    __slots__ = ("message",)

    def __init__(self, message: str):
        self.message = message

    def encode(self) -> bytes:
        return b"ERR " + _to_bytes(self.message)


class Ok(Response):
    __slots__ = ()

    def encode(self) -> bytes:
        return b"OK"


def encode_command(command: Command) -> bytes:
    """ Return the frame for a command, without the trailing delimiter """
    if not isinstance(command, Command):
        raise TypeError(f"Expected a Command, got {type(command)}")
    return command.encode()


def decode_command(frame: bytes) -> Command:
    """ Decode a frame (without its delimiter) into a command.

    :raises ParseError: if the frame is not a valid command.
    """
    frame = bytes(frame)
    verb = _check_prefix(frame, 3)
    try:
        command_class = COMMANDS[verb]
    except KeyError:
        raise ParseError(f"unrecognized command {verb!r}") from None
    return command_class.from_frame(frame)


def encode_response(response: Response) -> bytes:
    """ Return the frame for a response, without the trailing delimiter """
    if not isinstance(response, Response):
        raise TypeError(f"Expected a Response, got {type(response)}")
    return response.encode()


def decode_response(frame: bytes) -> Response:
    """ Decode a frame (without its delimiter) into a response.

    :raises ParseError: if the frame is not a valid response.
    """
    frame = bytes(frame)
    kind = _check_prefix(frame, 2)

    if kind == b"OK":
        if frame != b"OK":
            raise ParseError(f"unexpected bytes after OK: {frame[:16]!r}")
        return Ok()

    if kind == b"ER":
        if not frame.startswith(b"ERR "):
            raise ParseError(f"malformed error response {frame[:16]!r}")
        return Err(_to_text(frame[4:]))

    if kind == b"VA":
        return Value(WrappedValue.decode(frame))

    raise ParseError(f"unrecognized response {frame[:16]!r}")
