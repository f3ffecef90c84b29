import unittest

from detach.errors import ParseError
from detach.wire import (
    Delete,
    Dump,
    Err,
    Get,
    Ok,
    Quit,
    Set,
    Value,
    WrappedValue,
    decode_command,
    decode_response,
    encode_command,
    encode_response,
    value_field_offset,
)


class WrappedValueTestCase(unittest.TestCase):
    def test_empty_value_encoding(self):
        self.assertEqual(WrappedValue.empty().encode(), b"VAL 0")
        self.assertEqual(WrappedValue.from_bytes(b"").encode(), b"VAL 0")
        self.assertEqual(WrappedValue.from_string("").encode(), b"VAL 0")

    def test_value_encoding(self):
        self.assertEqual(WrappedValue.from_string("hello").encode(), b"VAL 5 hello")
        self.assertEqual(
            WrappedValue.from_bytes(b"a\nb").encode(), b"VAL 3 a\nb"
        )

    def test_length_counts_bytes_not_characters(self):
        value = WrappedValue.from_string("thé")
        self.assertEqual(len(value), 4)
        self.assertEqual(value.encode(), "VAL 4 thé".encode("utf-8"))

    def test_zero_length_means_absent_buffer(self):
        value = WrappedValue(b"ignored", 0)
        self.assertEqual(len(value), 0)
        self.assertEqual(value.payload, b"")
        self.assertEqual(value, WrappedValue.empty())
        self.assertEqual(value.encode(), b"VAL 0")

    def test_non_zero_length_without_buffer_is_rejected(self):
        with self.assertRaises(ValueError) as cm:
            WrappedValue(None, 3)
        self.assertIn("non-zero length with an empty buffer", str(cm.exception))

    def test_buffer_shorter_than_length_is_rejected(self):
        with self.assertRaises(ValueError):
            WrappedValue(b"ab", 3)

    def test_negative_length_is_rejected(self):
        with self.assertRaises(ValueError):
            WrappedValue(b"ab", -1)

    def test_buffer_is_truncated_to_length(self):
        value = WrappedValue(b"hello world", 5)
        self.assertEqual(value.payload, b"hello")

    def test_decode(self):
        self.assertEqual(WrappedValue.decode(b"VAL 0"), WrappedValue.empty())
        self.assertEqual(
            WrappedValue.decode(b"VAL 5 hello"), WrappedValue.from_string("hello")
        )

    def test_decode_value_containing_delimiters(self):
        payloads = (b"\n", b"a\nb", b"\n\n\n", b"two words", b"VAL 3 abc\n", b"\x00\xff")
        for payload in payloads:
            with self.subTest(payload=payload):
                value = WrappedValue.decode(WrappedValue.from_bytes(payload).encode())
                self.assertEqual(value.payload, payload)

    def test_decode_invalid_fields(self):
        invalid_fields = (
            b"",
            b"VAL",
            b"VAL ",
            b"VALUE 5 hello",
            b"val 5 hello",
            b"VAL 5hello",
            b"VAL x hello",
            b"VAL -5 hello",
            b"VAL 5 hell",
            b"VAL 5 hello!",
        )
        for field in invalid_fields:
            with self.subTest(field=field):
                with self.assertRaises(ParseError):
                    WrappedValue.decode(field)

    def test_into_string_survives_undecodable_bytes(self):
        value = WrappedValue.from_bytes(b"\xff\xfe")
        self.assertEqual(WrappedValue.from_string(value.into_string()), value)


class CommandCodecTestCase(unittest.TestCase):
    def test_encode(self):
        expected = (
            (Get("k"), b"GET k"),
            (Set("k", WrappedValue.from_string("hello")), b"SET k VAL 5 hello"),
            (Set("k", WrappedValue.empty()), b"SET k VAL 0"),
            (Delete("k"), b"DEL k"),
            (Dump(), b"DMP"),
            (Quit(), b"EXT"),
        )
        for command, frame in expected:
            with self.subTest(command=command):
                self.assertEqual(encode_command(command), frame)

    def test_round_trip(self):
        commands = (
            Get("key"),
            Get(""),
            Set("key", WrappedValue.from_string("value")),
            Set("key", WrappedValue.from_string("multi\nline\nvalue")),
            Set("key", WrappedValue.from_string("has spaces")),
            Set("key", WrappedValue.empty()),
            Delete("key"),
            Dump(),
            Quit(),
        )
        for command in commands:
            with self.subTest(command=command):
                self.assertEqual(decode_command(encode_command(command)), command)

    def test_decode_key_is_taken_verbatim(self):
        self.assertEqual(decode_command(b"GET some key"), Get("some key"))
        self.assertEqual(decode_command(b"DEL th\xc3\xa9"), Delete("thé"))

    def test_decode_set_splits_on_first_space(self):
        command = decode_command(b"SET k VAL 11 hello world")
        self.assertEqual(command, Set("k", WrappedValue.from_string("hello world")))

    def test_decode_invalid_frames(self):
        invalid_frames = (
            b"",
            b"GE",
            b"GET",
            b"GETk",
            b"DEL",
            b"SET",
            b"SET ",
            b"SET k",
            b"SET k hello",
            b"SET k VAL 9 hello",
            b"DMP extra",
            b"EXT now",
            b"FOO bar",
            b"get k",
        )
        for frame in invalid_frames:
            with self.subTest(frame=frame):
                with self.assertRaises(ParseError):
                    decode_command(frame)

    def test_encode_rejects_non_commands(self):
        with self.assertRaises(TypeError):
            encode_command(Ok())

    def test_variants_with_equal_fields_are_not_equal(self):
        self.assertNotEqual(Get("k"), Delete("k"))
        self.assertNotEqual(Dump(), Quit())
        self.assertEqual(Get("k"), Get("k"))


class ResponseCodecTestCase(unittest.TestCase):
    def test_encode(self):
        expected = (
            (Ok(), b"OK"),
            (Err("boom"), b"ERR boom"),
            (Value(WrappedValue.from_string("hello")), b"VAL 5 hello"),
            (Value(), b"VAL 0"),
        )
        for response, frame in expected:
            with self.subTest(response=response):
                self.assertEqual(encode_response(response), frame)

    def test_round_trip(self):
        responses = (
            Ok(),
            Err("something went wrong"),
            Err(""),
            Value(),
            Value(WrappedValue.from_string("hello")),
            Value(WrappedValue.from_bytes(b"a\nb\n")),
        )
        for response in responses:
            with self.subTest(response=response):
                self.assertEqual(decode_response(encode_response(response)), response)

    def test_decode_invalid_frames(self):
        invalid_frames = (b"", b"O", b"OKAY", b"ER", b"ERRboom", b"VA", b"VAL 3 ab", b"NO")
        for frame in invalid_frames:
            with self.subTest(frame=frame):
                with self.assertRaises(ParseError):
                    decode_response(frame)

    def test_encode_rejects_non_responses(self):
        with self.assertRaises(TypeError):
            encode_response(Get("k"))


class ValueFieldOffsetTestCase(unittest.TestCase):
    def test_offsets(self):
        expected = (
            (b"VAL 5 hello", 0),
            (b"SET key VAL 5 hello", 8),
            (b"SET key", None),
            (b"GET key", None),
            (b"OK", None),
            (b"DMP", None),
        )
        for head, offset in expected:
            with self.subTest(head=head):
                self.assertEqual(value_field_offset(head), offset)


if __name__ == "__main__":
    unittest.main()
