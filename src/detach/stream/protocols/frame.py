import enum
import logging

from detach.errors import ParseError
from detach.wire import DELIMITER, EMPTY_VALUE, SEPARATOR, VALUE_MARKER, value_field_offset
from typing import Optional

from .base import BaseStreamProtocol

logger = logging.getLogger(__name__)


MAX_FRAME_SIZE = 16 * 1024 * 1024  # limit maximum frame size as a precaution


class ProtocolStates(enum.Enum):
    WAIT_HEADER = 0
    WAIT_PAYLOAD = 1


def value_end(head: bytes) -> Optional[int]:
    """ Return the offset just past the payload of a frame's value field.

    Returns None if the frame head carries no value field, carries an empty
    one (``VAL 0``) or does not yet hold the complete ``VAL <n> `` prefix.
    A malformed length also returns None so the frame falls back to plain
    line framing and the decoder reports the problem.
    """
    offset = value_field_offset(head)
    if offset is None:
        return None

    field = head[offset:]
    if not field.startswith(VALUE_MARKER) or field.startswith(EMPTY_VALUE):
        return None

    sep = field.find(SEPARATOR, len(VALUE_MARKER))
    if sep == -1:
        return None

    length = field[len(VALUE_MARKER) : sep]
    if not length.isdigit():
        return None

    return offset + sep + 1 + int(length)


class FrameStreamProtocol(BaseStreamProtocol):
    """
    The frame protocol extracts newline terminated frames from a stream.

    Most frames end at the first newline. A frame carrying a value field
    declares the payload length up front, so the protocol switches to
    counting bytes once it has seen the length and only looks for the
    terminating newline after the declared number of payload bytes.

    .. code-block:: console

        +-------------------------+------------------+-----+
        |  header                 |  payload         | EOF |
        +-------------------------+------------------+-----+
        |  SET key VAL <n> + ' '  |  n bytes (any)   | \\n  |
        +-------------------------+------------------+-----+

    Upon extracting a frame from the stream the protocol passes the frame,
    without its terminating newline, to the on_message handler.
    """

    def __init__(
        self,
        on_message=None,
        on_peer_available=None,
        on_peer_unavailable=None,
        max_frames: Optional[int] = None,
        **kwargs,
    ):
        """

        :param max_frames: Stop extracting frames once this many have been
          delivered. Any further bytes are discarded. Defaults to None which
          means no limit.
        """
        super().__init__(
            on_message=on_message,
            on_peer_available=on_peer_available,
            on_peer_unavailable=on_peer_unavailable,
        )
        self.max_frames = max_frames
        self.frames_received = 0
        self._buffer = bytearray()
        self._state = ProtocolStates.WAIT_HEADER
        self._frame_end = 0

    @property
    def done(self) -> bool:
        """ Return True once the protocol will not deliver any more frames """
        return self.max_frames is not None and self.frames_received >= self.max_frames

    def send(self, data: bytes, add_delimiter=True, **kwargs):  # pylint: disable=arguments-differ
        """ Sends a frame by writing it to the transport.

        :param add_delimiter: A flag that informs the sending function
          whether it needs to terminate the frame with a newline. Defaults to
          True.
        """
        if not isinstance(data, bytes):
            logger.error(f"data must be bytes - can't send message. data={data}")
            return

        super().send(data + DELIMITER if add_delimiter else data)

    def data_received(self, data):
        """ Process some bytes received from the transport.

        Upon receiving some bytes from the stream they are added to a buffer
        and then any frames in the buffer are extracted. The parser switches
        between a state where it is looking for the end of a frame header and
        a state where it is waiting for a declared number of payload bytes.

        This method should support the worst case scenario of receiving a
        single byte at a time, however, a more likely scenario is receiving
        one or more frames at once.

        :raises ParseError: if the byte following a declared payload is not
          the frame delimiter or a frame exceeds the maximum frame size.
        """
        self._buffer.extend(data)

        while self._buffer and not self.done:
            if self._state == ProtocolStates.WAIT_HEADER:
                eol = self._buffer.find(DELIMITER)
                head = self._buffer if eol == -1 else self._buffer[:eol]

                end = value_end(head)
                if end is not None:
                    self._check_size(end)
                    self._frame_end = end
                    self._state = ProtocolStates.WAIT_PAYLOAD
                elif eol != -1:
                    frame = bytes(self._buffer[:eol])
                    del self._buffer[: eol + 1]
                    self._deliver(frame)
                else:
                    # There is not enough bytes to find the end of the frame yet.
                    self._check_size(len(self._buffer))
                    break

            elif self._state == ProtocolStates.WAIT_PAYLOAD:
                eom = self._frame_end
                if len(self._buffer) > eom:
                    if self._buffer[eom : eom + 1] != DELIMITER:
                        logger.error(
                            f"Frame payload is not followed by a delimiter. "
                            f"Discarding buffer from peer {self._identity}."
                        )
                        self._reset()
                        raise ParseError(
                            "value payload is longer than its declared length"
                        )

                    frame = bytes(self._buffer[:eom])
                    del self._buffer[: eom + 1]
                    self._state = ProtocolStates.WAIT_HEADER
                    self._deliver(frame)
                else:
                    # There is not enough bytes to extract the payload yet.
                    break

        if self.done and self._buffer:
            logger.debug(f"Discarding {len(self._buffer)} trailing bytes")
            self._buffer.clear()

    def _check_size(self, size: int):
        if size > MAX_FRAME_SIZE:
            logger.error(
                f"Frame size ({size}) exceeds maximum frame size. "
                f"Discarding buffer from peer {self._identity}."
            )
            self._reset()
            raise ParseError(f"frame exceeds maximum size of {MAX_FRAME_SIZE} bytes")

    def _reset(self):
        self._buffer.clear()
        self._state = ProtocolStates.WAIT_HEADER
        self._frame_end = 0

    def _deliver(self, frame: bytes):
        self.frames_received += 1
        self._notify(self._on_message_handler, "on_message", frame)
