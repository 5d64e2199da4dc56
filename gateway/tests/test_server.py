import argparse
import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stderr
from unittest import mock

from pairchat.server import _load_frames, _resolve_config, main, simulate


class TestGatewayServer(unittest.TestCase):
    def test_load_frames_accepts_array_or_lines(self):
        array_buffer = io.StringIO(json.dumps([{"t": "ping"}]))
        ndjson_buffer = io.StringIO("\n".join(["{\"t\": \"one\"}", "{\"t\": \"two\"}"]))

        self.assertEqual(list(_load_frames(array_buffer)), [{"t": "ping"}])
        self.assertEqual(list(_load_frames(ndjson_buffer)), [{"t": "one"}, {"t": "two"}])
        self.assertEqual(list(_load_frames(io.StringIO("  \n"))), [])

    def _frames(self):
        return [
            {"t": "register", "handle": "A1", "internal_id": "alice-id"},
            {"t": "register", "handle": "B1", "internal_id": "bob-id"},
            {"t": "join_home", "connection": "bob", "handle": "B1"},
            {"t": "join_chat", "connection": "alice", "my_handle": "A1", "other_handle": "B1"},
            {"t": "send_message", "connection": "alice", "id": "s1", "my_handle": "A1", "other_handle": "B1", "text": "hi"},
        ]

    def test_simulate_streams_frames_per_connection(self):
        buffer = io.StringIO()
        simulate(self._frames(), buffer)

        lines = [json.loads(line) for line in buffer.getvalue().splitlines()]
        self.assertEqual(
            [(line["connection"], line["t"]) for line in lines],
            [
                ("bob", "join_home.acked"),
                ("alice", "load_history"),
                ("alice", "receive_message"),
                ("bob", "update_home_chats"),
                ("alice", "send_message.acked"),
            ],
        )
        self.assertEqual(lines[1]["body"], {"room_id": "alice-id_bob-id", "messages": []})
        self.assertEqual(lines[2]["body"]["message"]["text"], "hi")

    def test_simulate_reports_errors_and_history(self):
        frames = self._frames() + [
            {"t": "send_message", "connection": "alice", "id": "s2", "my_handle": "A1", "other_handle": "nobody", "text": "x"},
            {"t": "leave", "connection": "alice"},
            {"t": "join_chat", "connection": "bob", "id": "j", "my_handle": "B1", "other_handle": "A1"},
            {"t": "mark_read", "connection": "bob", "my_handle": "B1", "other_handle": "A1"},
        ]
        buffer = io.StringIO()
        simulate(frames, buffer)

        lines = [json.loads(line) for line in buffer.getvalue().splitlines()]
        error = next(line for line in lines if line["t"] == "error")
        self.assertEqual((error["connection"], error["id"], error["body"]["code"]), ("alice", "s2", "unknown_identity"))

        history = next(line for line in lines if line["t"] == "load_history" and line["connection"] == "bob")
        self.assertEqual([m["text"] for m in history["body"]["messages"]], ["hi"])
        self.assertEqual(lines[-2]["t"], "messages_read")
        self.assertEqual(lines[-1]["body"], {"marked": 1})
        self.assertFalse(any(line["connection"] == "alice" and line["t"] == "messages_read" for line in lines))

    def test_main_simulate_reads_file(self):
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as handle:
            json.dump(self._frames(), handle)
        self.addCleanup(os.unlink, handle.name)

        buffer = io.StringIO()
        exit_code = main(["simulate", "-f", handle.name], output=buffer)

        self.assertEqual(exit_code, 0)
        self.assertEqual(len(buffer.getvalue().splitlines()), 5)

    def test_resolve_config_prefers_flags_over_env(self):
        args = argparse.Namespace(host=None, port=9001, db_path=None, ping_interval_s=None, log_level="DEBUG")
        with mock.patch.dict(os.environ, {"PAIRCHAT_HOST": "0.0.0.0", "PAIRCHAT_PORT": "8000"}, clear=True):
            config = _resolve_config(args)
        self.assertEqual((config.host, config.port, config.log_level), ("0.0.0.0", 9001, "DEBUG"))

    def test_unknown_log_level_flag_is_a_usage_error(self):
        stderr = io.StringIO()
        with redirect_stderr(stderr), self.assertRaises(SystemExit) as ctx:
            main(["serve", "--log-level", "chatty"])
        self.assertEqual(ctx.exception.code, 2)
        self.assertIn("log level must be one of", stderr.getvalue())


class ImportLegacyCommandTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.db_path = os.path.join(self.tmpdir.name, "chat.db")

    def _write(self, name, content):
        path = os.path.join(self.tmpdir.name, name)
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(content)
        return path

    def test_import_reports_counts(self):
        users = self._write(
            "users.json",
            json.dumps([{"id": "alice-id", "profileId": "A1"}, {"id": "bob-id", "profileId": "B1"}]),
        )
        chats = self._write(
            "chats.json",
            json.dumps(
                {"alice-id_bob-id": [{"senderId": "A1", "text": "hi", "timestamp": "2024-05-01T10:00:00.000Z"}]}
            ),
        )
        buffer = io.StringIO()
        exit_code = main(["import-legacy", "--users", users, "--chats", chats, "--db", self.db_path], output=buffer)

        self.assertEqual(exit_code, 0)
        report = json.loads(buffer.getvalue())
        self.assertEqual(report["identities_imported"], 2)
        self.assertEqual(report["messages_imported"], 1)

    def test_unreadable_input_exits_non_zero(self):
        users = self._write("users.json", "[{not json")
        chats = self._write("chats.json", "")
        stderr = io.StringIO()
        with redirect_stderr(stderr):
            exit_code = main(
                ["import-legacy", "--users", users, "--chats", chats, "--db", self.db_path], output=io.StringIO()
            )

        self.assertEqual(exit_code, 1)
        self.assertIn("import failed", stderr.getvalue())


if __name__ == "__main__":
    unittest.main()
