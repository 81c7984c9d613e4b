import io
import json
import tempfile
import unittest
from pathlib import Path

from partyline.server import _load_frames, main, simulate

from .bot_util import FakeClock

FRAMES = [
    {"from": "alice", "content": "/join work p al"},
    {"from": "bob", "content": "/join work p"},
    {"from": "alice", "content": "hello"},
    {"from": "bob", "content": "alice++ for saying hi"},
]


def _outbound(text):
    return [json.loads(line) for line in text.splitlines() if line.strip()]


class TestSimulate(unittest.TestCase):
    def test_simulate_emits_outbound_messages(self):
        output = io.StringIO()

        simulate(FRAMES, output, now_func=FakeClock().now)

        records = _outbound(output.getvalue())
        self.assertIn({"from": "partychat", "to": "bob", "content": "[al] hello"}, records)
        self.assertIn({"from": "partychat", "to": "alice", "content": "woot! alice -> 1 (for saying hi)"}, records)
        self.assertNotIn("al", {record["to"] for record in records})

    def test_simulate_rejects_bad_frames(self):
        with self.assertRaises(ValueError):
            simulate([{"content": "no sender"}], io.StringIO())

    def test_simulate_replays_karma_log(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "ppblog"
            simulate(FRAMES, io.StringIO(), karma_log_path=str(log_path))

            output = io.StringIO()
            bot = simulate(FRAMES[:2] + [{"from": "bob", "content": "/scores"}], output, karma_log_path=str(log_path))

            self.assertEqual(bot.karma.score("work", "alice"), 1)
            self.assertEqual(_outbound(output.getvalue())[-1]["content"], "alice:1")


class TestLoadFrames(unittest.TestCase):
    def test_json_array(self):
        self.assertEqual(_load_frames(io.StringIO(json.dumps(FRAMES))), FRAMES)

    def test_json_lines(self):
        text = "\n".join(json.dumps(frame) for frame in FRAMES) + "\n"
        self.assertEqual(_load_frames(io.StringIO(text)), FRAMES)

    def test_single_object_and_empty(self):
        self.assertEqual(_load_frames(io.StringIO(json.dumps(FRAMES[0]))), [FRAMES[0]])
        self.assertEqual(_load_frames(io.StringIO("  \n")), [])


class TestMain(unittest.TestCase):
    def test_simulate_command_reads_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            frames_path = Path(tmpdir) / "frames.json"
            frames_path.write_text(json.dumps(FRAMES), encoding="utf-8")
            output = io.StringIO()

            code = main(["--log-level", "WARNING", "simulate", "-f", str(frames_path), "--bot-name", "party"], output)

        self.assertEqual(code, 0)
        records = _outbound(output.getvalue())
        self.assertTrue(records)
        self.assertEqual({record["from"] for record in records}, {"party"})


if __name__ == "__main__":
    unittest.main()
