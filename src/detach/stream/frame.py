"""
The frame endpoints exchange newline terminated text frames. A frame that
carries a value field declares the length of its payload so the payload may
contain newlines.

.. code-block:: console

    GET key\\n
    SET key VAL 11 hello\\nworld\\n
    VAL 11 hello\\nworld\\n
    OK\\n

Each connection carries exactly one request frame and one response frame.
"""

from detach.stream.endpoint import StreamClient, StreamServer
from detach.stream.protocols.frame import FrameStreamProtocol


class FrameStreamClient(StreamClient):

    protocol_class = FrameStreamProtocol


class FrameStreamServer(StreamServer):

    protocol_class = FrameStreamProtocol
