"""Tests for the command-line entry point."""

from __future__ import annotations

import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

import run


class ReadDialogueTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "dialogue.txt"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_labelled_lines_and_continuations(self) -> None:
        self.path.write_text(
            "alice: Welcome to the show.\n\nbob: Thanks!\nIt is great: really.\n",
            encoding="utf-8",
        )
        self.assertEqual(
            run.read_dialogue(self.path),
            [("alice", "Welcome to the show."), ("bob", "Thanks! It is great: really.")],
        )

    def test_unlabelled_first_line_is_rejected(self) -> None:
        self.path.write_text("Just some words\nalice: hi\n", encoding="utf-8")
        with self.assertRaises(ValueError):
            run.read_dialogue(self.path)


class MainTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        env = {
            "PODVGEN_STORE_PATH": str(self.root / "runs" / "active_job.json"),
            "PODVGEN_RUNS_DIR": str(self.root / "runs"),
            "PODVGEN_ENABLE_MOCKS": "true",
            "PODVGEN_POLL_INTERVAL_SEC": "0",
            "PODVGEN_ALICE_AVATAR": "101",
            "PODVGEN_ALICE_VOICE": "v-alice",
        }
        patcher = mock.patch.dict(os.environ, env)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.dialogue = self.root / "dialogue.txt"
        self.dialogue.write_text("alice: Hello and welcome.\n", encoding="utf-8")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _main(self, *argv: str) -> tuple[int, str]:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            code = run.main(list(argv))
        return code, buffer.getvalue()

    def test_submit_status_resume_reset(self) -> None:
        code, out = self._main("submit", str(self.dialogue), "--provider", "joggai", "--no-wait")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["status"], "processing")

        code, out = self._main("status")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["strategy"], "avatar_solo")

        code, out = self._main("resume", "--assemble", str(self.root / "outputs"))
        self.assertEqual(code, 0)
        self.assertIn('"status": "completed"', out)
        self.assertIn("Final video:", out)

        code, out = self._main("reset")
        self.assertEqual(code, 0)
        code, out = self._main("status")
        self.assertIn("No stored job.", out)

    def test_unconfigured_speaker_exits_with_configuration_error(self) -> None:
        self.dialogue.write_text("carol: Nobody set me up.\n", encoding="utf-8")
        with mock.patch("sys.stderr", new_callable=io.StringIO) as stderr:
            code, _ = self._main("submit", str(self.dialogue), "--no-wait")
        self.assertEqual(code, 2)
        self.assertIn("Configuration error", stderr.getvalue())

    def test_resume_without_a_job(self) -> None:
        code, out = self._main("resume")
        self.assertEqual(code, 1)
        self.assertIn("No stored job to resume.", out)


if __name__ == "__main__":
    unittest.main()
