"""Tests for clip download and concatenation."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest import mock

import requests

from podvgen.assembly import assemble_clips, download_clips

CLIP_URLS = ["https://cdn.example/one.mp4?sig=1", "https://cdn.example/two.mp4"]


def _session() -> mock.Mock:
    session = mock.Mock(spec=requests.Session)
    response = mock.Mock()
    response.content = b"video-bytes"
    session.get.return_value = response
    return session


class AssemblyTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.work_dir = self.root / "clips"
        self.output_path = self.root / "final.mp4"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _assemble(self, session: mock.Mock) -> Path:
        return assemble_clips(CLIP_URLS, self.output_path, work_dir=self.work_dir, session=session)

    def test_mock_clips_are_joined_as_text(self) -> None:
        output = assemble_clips(
            ["mock://kie/a.mp4", "mock://kie/b.mp4"],
            self.root / "out" / "final.mp4",
            work_dir=self.work_dir,
        )
        self.assertEqual(output, self.root / "out" / "final.txt")
        content = output.read_text(encoding="utf-8")
        self.assertIn("[Clip #0] mock://kie/a.mp4", content)
        self.assertLess(content.index("a.mp4"), content.index("b.mp4"))

    def test_real_clips_are_downloaded_then_concatenated(self) -> None:
        session = _session()
        with mock.patch("podvgen.assembly.subprocess.run") as run:
            run.return_value = mock.Mock(returncode=0, stdout="", stderr="")
            output = self._assemble(session)

        self.assertEqual(output, self.output_path)
        self.assertEqual(session.get.call_count, 2)
        session.get.return_value.raise_for_status.assert_called()
        first_clip = self.work_dir / "clip-000.mp4"
        self.assertEqual(first_clip.read_bytes(), b"video-bytes")

        cmd = run.call_args.args[0]
        self.assertEqual(cmd[0], "ffmpeg")
        self.assertEqual(cmd[cmd.index("-f") + 1], "concat")
        self.assertEqual(cmd[cmd.index("-c") + 1], "copy")
        self.assertEqual(cmd[-1], str(self.output_path))
        listing = Path(cmd[cmd.index("-i") + 1]).read_text(encoding="utf-8").splitlines()
        self.assertEqual(
            listing,
            [
                f"file '{first_clip.resolve()}'",
                f"file '{(self.work_dir / 'clip-001.mp4').resolve()}'",
            ],
        )

    def test_download_errors_propagate(self) -> None:
        session = mock.Mock(spec=requests.Session)
        session.get.return_value.raise_for_status.side_effect = requests.HTTPError("404")
        with self.assertRaises(requests.HTTPError):
            download_clips(["https://cdn.example/gone.mp4"], self.root, session=session)

    def test_missing_ffmpeg_is_reported(self) -> None:
        with mock.patch("podvgen.assembly.subprocess.run", side_effect=FileNotFoundError("ffmpeg")):
            with self.assertRaises(RuntimeError) as ctx:
                self._assemble(_session())
        self.assertIn("ffmpeg was not found", str(ctx.exception))

    def test_ffmpeg_failure_is_reported(self) -> None:
        with mock.patch("podvgen.assembly.subprocess.run") as run:
            run.return_value = mock.Mock(returncode=1, stdout="", stderr="bad input")
            with self.assertRaises(RuntimeError) as ctx:
                self._assemble(_session())
        self.assertIn("bad input", str(ctx.exception))

    def test_nothing_to_assemble(self) -> None:
        with self.assertRaises(ValueError):
            assemble_clips([], self.output_path, work_dir=self.root)


if __name__ == "__main__":
    unittest.main()
