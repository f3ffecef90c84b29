import logging
import unittest
import unittest.mock

from detach.errors import ParseError
from detach.stream.protocols.base import BaseStreamProtocol
from detach.stream.protocols.frame import FrameStreamProtocol, value_end
from detach.wire import (
    Set,
    Value,
    WrappedValue,
    decode_command,
    decode_response,
    encode_command,
    encode_response,
)


def received_frames(on_message_mock):
    return [args[2] for args, _kwargs in on_message_mock.call_args_list]


class BaseStreamProtocolTestCase(unittest.TestCase):
    def test_connection_lifecycle(self):
        on_peer_available_mock = unittest.mock.Mock()
        on_peer_unavailable_mock = unittest.mock.Mock()
        transport_mock = unittest.mock.Mock()
        transport_mock.getpeername.return_value = ""
        transport_mock.getsockname.return_value = "/tmp/detach-test.sock"

        p = BaseStreamProtocol(
            on_peer_available=on_peer_available_mock,
            on_peer_unavailable=on_peer_unavailable_mock,
        )
        p.connection_made(transport_mock)

        self.assertEqual(p.address, "/tmp/detach-test.sock")
        self.assertTrue(p.identity)
        on_peer_available_mock.assert_called_once_with(p, p.identity)

        identity = p.identity
        p.connection_lost(None)
        on_peer_unavailable_mock.assert_called_once_with(p, identity)
        self.assertTrue(transport_mock.close.called)
        self.assertIsNone(p.transport)

    def test_callback_errors_do_not_break_the_protocol(self):
        on_peer_available_mock = unittest.mock.Mock(side_effect=Exception("Boom"))
        transport_mock = unittest.mock.Mock()
        transport_mock.getpeername.side_effect = OSError("not connected")
        transport_mock.getsockname.return_value = ""

        p = BaseStreamProtocol(on_peer_available=on_peer_available_mock)
        with self.assertLogs(
            "detach.stream.protocols.base", level=logging.ERROR
        ) as log:
            p.connection_made(transport_mock)
        self.assertIn("Error in on_peer_available callback method", log.output[0])
        self.assertIsNone(p.address)

    def test_send_writes_bytes_unchanged(self):
        transport_mock = unittest.mock.Mock()
        p = BaseStreamProtocol()
        p.transport = transport_mock
        p.send(b"GET k")
        transport_mock.sendall.assert_called_once_with(b"GET k")

    def test_framing_is_left_to_subclasses(self):
        p = BaseStreamProtocol()
        with self.assertRaises(NotImplementedError):
            p.data_received(b"partial")


class FrameStreamProtocolTestCase(unittest.TestCase):
    def test_error_raised_when_sending_invalid_data_type(self):
        p = FrameStreamProtocol()
        with self.assertLogs(
            "detach.stream.protocols.frame", level=logging.ERROR
        ) as log:
            p.send("Hello World")
        self.assertIn("data must be bytes", log.output[0])

    def test_send_appends_delimiter(self):
        p = FrameStreamProtocol()
        transport_mock = unittest.mock.Mock()
        p.transport = transport_mock

        p.send(b"OK")
        transport_mock.sendall.assert_called_once_with(b"OK\n")

        transport_mock.reset_mock()
        p.send(b"OK\n", add_delimiter=False)
        transport_mock.sendall.assert_called_once_with(b"OK\n")

    def test_line_frames(self):
        on_message_mock = unittest.mock.Mock()
        p = FrameStreamProtocol(on_message=on_message_mock)

        p.data_received(b"GET a\nDEL b\nDM")
        self.assertEqual(received_frames(on_message_mock), [b"GET a", b"DEL b"])

        p.data_received(b"P\n")
        self.assertEqual(
            received_frames(on_message_mock), [b"GET a", b"DEL b", b"DMP"]
        )
        self.assertEqual(p.frames_received, 3)

    def test_message_received_in_worst_case_delivery_scenario(self):
        on_message_mock = unittest.mock.Mock()

        p = FrameStreamProtocol(on_message=on_message_mock)

        msg = b"SET k VAL 11 hello\nworld\n"

        # Send the test message 1 byte at a time
        for b in msg:
            p.data_received(bytes([b]))

        self.assertEqual(on_message_mock.call_count, 1)
        self.assertEqual(
            received_frames(on_message_mock), [b"SET k VAL 11 hello\nworld"]
        )

    def test_value_payload_may_contain_delimiters(self):
        payloads = (b"\n", b"\n\n", b"line1\nline2\n", b"SET x VAL 1 y\n", b"VAL 0\n")
        for payload in payloads:
            with self.subTest(payload=payload):
                on_message_mock = unittest.mock.Mock()
                p = FrameStreamProtocol(on_message=on_message_mock)

                command = Set("k", WrappedValue.from_bytes(payload))
                response = Value(WrappedValue.from_bytes(payload))
                p.data_received(
                    encode_command(command) + b"\n" + encode_response(response) + b"\n"
                )

                frames = received_frames(on_message_mock)
                self.assertEqual(len(frames), 2)
                self.assertEqual(decode_command(frames[0]), command)
                self.assertEqual(decode_response(frames[1]), response)

    def test_empty_value_frames(self):
        on_message_mock = unittest.mock.Mock()
        p = FrameStreamProtocol(on_message=on_message_mock)
        p.data_received(b"VAL 0\nSET k VAL 0\n")
        self.assertEqual(received_frames(on_message_mock), [b"VAL 0", b"SET k VAL 0"])

    def test_payload_longer_than_declared_length(self):
        on_message_mock = unittest.mock.Mock()
        p = FrameStreamProtocol(on_message=on_message_mock)

        with self.assertLogs(
            "detach.stream.protocols.frame", level=logging.ERROR
        ) as log:
            with self.assertRaises(ParseError):
                p.data_received(b"SET k VAL 1 ab\n")
        self.assertIn("not followed by a delimiter", log.output[0])
        self.assertFalse(on_message_mock.called)

        # The protocol recovers for the next frame
        p.data_received(b"GET k\n")
        self.assertEqual(received_frames(on_message_mock), [b"GET k"])

    def test_malformed_length_falls_back_to_line_framing(self):
        on_message_mock = unittest.mock.Mock()
        p = FrameStreamProtocol(on_message=on_message_mock)
        p.data_received(b"SET k VAL x y\n")
        self.assertEqual(received_frames(on_message_mock), [b"SET k VAL x y"])

    def test_oversized_frame_is_rejected(self):
        on_message_mock = unittest.mock.Mock()
        p = FrameStreamProtocol(on_message=on_message_mock)

        with unittest.mock.patch("detach.stream.protocols.frame.MAX_FRAME_SIZE", 8):
            with self.assertLogs(
                "detach.stream.protocols.frame", level=logging.ERROR
            ) as log:
                with self.assertRaises(ParseError):
                    p.data_received(b"GET abcdefghij")
            self.assertIn("exceeds maximum frame size", log.output[0])

            with self.assertLogs("detach.stream.protocols.frame", level=logging.ERROR):
                with self.assertRaises(ParseError):
                    p.data_received(b"SET k VAL 100 ")

        self.assertFalse(on_message_mock.called)

    def test_max_frames_discards_trailing_bytes(self):
        on_message_mock = unittest.mock.Mock()
        p = FrameStreamProtocol(on_message=on_message_mock, max_frames=1)

        self.assertFalse(p.done)
        p.data_received(b"GET a\nGET b\n")

        self.assertTrue(p.done)
        self.assertEqual(received_frames(on_message_mock), [b"GET a"])

        p.data_received(b"GET c\n")
        self.assertEqual(on_message_mock.call_count, 1)

    def test_on_message_errors_are_logged(self):
        on_message_mock = unittest.mock.Mock(side_effect=Exception("Boom"))
        p = FrameStreamProtocol(on_message=on_message_mock)

        with self.assertLogs(
            "detach.stream.protocols.base", level=logging.ERROR
        ) as log:
            p.data_received(b"OK\nOK\n")
        self.assertIn("Error in on_message callback method", log.output[0])
        self.assertEqual(on_message_mock.call_count, 2)


class ValueEndTestCase(unittest.TestCase):
    def test_value_end(self):
        expected = (
            (b"SET k VAL 5 ", 17),
            (b"VAL 3 ", 9),
            (b"SET k VAL 5", None),
            (b"SET k VAL 0", None),
            (b"VAL 0", None),
            (b"VAL x ", None),
            (b"GET k", None),
            (b"SET k", None),
        )
        for head, end in expected:
            with self.subTest(head=head):
                self.assertEqual(value_end(head), end)


if __name__ == "__main__":
    unittest.main()
