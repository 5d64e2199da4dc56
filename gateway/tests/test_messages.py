import unittest

from pairchat.chat_list import preview_text
from pairchat.errors import InvalidMessage, StoreCorrupted
from pairchat.messages import Message, build_message, now_timestamp, parse_timestamp


class BuildMessageTests(unittest.TestCase):
    def test_defaults(self):
        message = build_message("A1", "hi")
        self.assertEqual(message.sender, "A1")
        self.assertEqual(message.text, "hi")
        self.assertEqual(message.kind, "text")
        self.assertIsNone(message.attachment_url)
        self.assertIsNone(message.attachment_name)
        self.assertFalse(message.read)
        self.assertTrue(message.msg_id)
        self.assertTrue(message.timestamp.endswith("Z"))

    def test_message_ids_are_unique(self):
        self.assertNotEqual(build_message("A1", "x").msg_id, build_message("A1", "x").msg_id)

    def test_attachment_without_caption(self):
        message = build_message("A1", None, "image", "https://blob/x.png", "x.png")
        self.assertEqual(message.text, "")
        self.assertEqual(message.attachment_url, "https://blob/x.png")
        self.assertEqual(message.attachment_name, "x.png")

    def test_rejects_invalid_requests(self):
        cases = [
            dict(text="hi", kind="sticker"),
            dict(text="", kind="text"),
            dict(text="   ", kind="text"),
            dict(text="hi", kind="text", attachment_url="https://blob/x"),
            dict(text="", kind="video"),
            dict(text="x" * 11, kind="text", max_text_len=10),
        ]
        for case in cases:
            with self.subTest(case=case), self.assertRaises(InvalidMessage):
                build_message("A1", **case)

    def test_mark_read_returns_copy(self):
        message = build_message("A1", "hi")
        read = message.mark_read()
        self.assertFalse(message.read)
        self.assertTrue(read.read)
        self.assertEqual(read.msg_id, message.msg_id)


class MessageRecordTests(unittest.TestCase):
    def _record(self, **overrides):
        record = {
            "msg_id": "m1",
            "sender": "A1",
            "text": "hi",
            "kind": "text",
            "attachment_url": None,
            "attachment_name": None,
            "timestamp": "2024-05-01T10:00:00.000Z",
            "read": 0,
        }
        record.update(overrides)
        return record

    def test_from_record_matches_api_dict(self):
        message = Message.from_record(self._record(read=1))
        self.assertEqual(message.to_api_dict(), {**self._record(), "read": True})

    def test_undecodable_records_raise(self):
        for overrides in (
            {"kind": "sticker"},
            {"timestamp": None},
            {"timestamp": "yesterday"},
            {"timestamp": "2024-05-01T10:00:00"},
            {"sender": ""},
        ):
            with self.subTest(overrides=overrides), self.assertRaises(StoreCorrupted):
                Message.from_record(self._record(**overrides))
        record = self._record()
        del record["kind"]
        with self.assertRaises(StoreCorrupted):
            Message.from_record(record)


class TimestampTests(unittest.TestCase):
    def test_timestamp_format_round_trips(self):
        value = now_timestamp()
        self.assertRegex(value, r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")
        self.assertEqual(parse_timestamp(value).utcoffset().total_seconds(), 0)


class PreviewTextTests(unittest.TestCase):
    def test_text_verbatim(self):
        self.assertEqual(preview_text(build_message("A1", "hello there")), "hello there")

    def test_kind_labels_without_caption(self):
        self.assertEqual(preview_text(build_message("A1", "", "image", "u")), "📷 Image")
        self.assertEqual(preview_text(build_message("A1", "", "video", "u")), "🎥 Video")
        self.assertEqual(preview_text(build_message("A1", "", "file", "u")), "📁 File")

    def test_captioned_attachment_is_prefixed(self):
        self.assertEqual(preview_text(build_message("A1", "look", "image", "u")), "📎 look")
