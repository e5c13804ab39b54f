"""Tests for job persistence."""

from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from podvgen.errors import JobStoreError
from podvgen.store import FileJobStore, MemoryJobStore
from podvgen.types import (
    AvatarPairStrategy,
    DialogueLine,
    DialogueSegment,
    GenerationRequest,
    JobStatus,
    SpeakerProfile,
    TemplateStrategy,
    VideoJob,
)

ALICE = SpeakerProfile(speaker_id="alice", avatar_id="101", voice_id="v-alice", avatar_type=1)
BOB = SpeakerProfile(speaker_id="bob", avatar_id="102", voice_id="v-bob")


def _job(**overrides) -> VideoJob:
    request = GenerationRequest(
        dialogue=(DialogueLine("alice", "Hello there."), DialogueLine("bob", "Hi Alice.")),
        aspect_ratio="portrait",
        captions=False,
        speakers=(ALICE, BOB),
        template_id="42",
        template_variables=(("title", "Pilot"),),
        title="Pilot",
    )
    values = dict(
        status=JobStatus.RATE_LIMITED,
        strategy=AvatarPairStrategy(speaker_a=ALICE, speaker_b=BOB),
        provider_id="kie",
        request=request,
        created_at="2024-05-01T10:00:00+00:00",
        retry_after_seconds=5.0,
        continuation_seed_url="https://cdn.example/seed.webp",
        rate_limit_attempts=2,
        fallback_used=True,
        segments=[DialogueSegment("seg-0", "Hello there.", 3), DialogueSegment("seg-1", "Hi Alice.", 3)],
        segment_index=1,
        segment_urls=["https://cdn.example/clip-0.mp4"],
        seed_image_url="https://cdn.example/frame-0.png",
    )
    values.update(overrides)
    return VideoJob(**values)


class FileJobStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "nested" / "active_job.json"
        self.store = FileJobStore(self.path)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_missing_file_loads_nothing(self) -> None:
        self.assertIsNone(self.store.load())

    def test_round_trip_preserves_the_job(self) -> None:
        job = _job()
        self.store.save(job)
        loaded = self.store.load()
        self.assertEqual(loaded.to_record(), job.to_record())
        self.assertEqual(loaded.status, JobStatus.RATE_LIMITED)
        self.assertEqual(loaded.strategy, job.strategy)
        self.assertEqual(loaded.request, job.request)
        self.assertEqual(loaded.current_segment.id, "seg-1")

    def test_record_is_flat_snake_case_json(self) -> None:
        self.store.save(_job(strategy=TemplateStrategy(template_id="42", variable_bindings=(("script", "x"),))))
        record = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(record["version"], 1)
        self.assertEqual(record["status"], "rate_limited")
        self.assertEqual(record["strategy"]["kind"], "template")
        self.assertEqual(record["continuation_seed_url"], "https://cdn.example/seed.webp")
        self.assertIn("request", record)
        self.assertFalse(self.path.with_suffix(".json.tmp").exists())

    def test_clear_removes_the_record(self) -> None:
        self.store.save(_job())
        self.store.clear()
        self.store.clear()
        self.assertIsNone(self.store.load())

    def test_invalid_json_raises_store_error(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(JobStoreError):
            self.store.load()

    def test_unknown_status_or_strategy_raises_store_error(self) -> None:
        record = _job().to_record()
        self.path.parent.mkdir(parents=True, exist_ok=True)

        self.path.write_text(json.dumps(dict(record, status="exploded")), encoding="utf-8")
        with self.assertRaises(JobStoreError):
            self.store.load()

        self.path.write_text(json.dumps(dict(record, strategy={"kind": "hologram"})), encoding="utf-8")
        with self.assertRaises(JobStoreError):
            self.store.load()

        broken = dict(record)
        del broken["request"]
        self.path.write_text(json.dumps(broken), encoding="utf-8")
        with self.assertRaises(JobStoreError):
            self.store.load()


class MemoryJobStoreTest(unittest.TestCase):
    def test_round_trip_returns_detached_copies(self) -> None:
        store = MemoryJobStore()
        self.assertIsNone(store.load())
        job = _job()
        store.save(job)
        job.segment_urls.append("mutated")
        loaded = store.load()
        self.assertEqual(loaded.segment_urls, ["https://cdn.example/clip-0.mp4"])
        store.clear()
        self.assertIsNone(store.load())


if __name__ == "__main__":
    unittest.main()
