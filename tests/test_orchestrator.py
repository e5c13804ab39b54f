"""Tests for the job orchestrator state machine."""

from __future__ import annotations

import unittest
from typing import Any, Callable, List, Optional
from unittest import mock

import requests

from podvgen.config import GeneratorConfig
from podvgen.errors import ConfigurationError, ProviderFailed, ProviderRejected, TransientPollError
from podvgen.orchestrator import JobOrchestrator
from podvgen.services.joggai import JoggAiAdapter
from podvgen.store import MemoryJobStore
from podvgen.types import (
    AvatarPairStrategy,
    AvatarSoloStrategy,
    DialogueLine,
    GenerationRequest,
    JobStatus,
    PollResult,
    PollStatus,
    RateLimit,
    SpeakerProfile,
    Submission,
    TemplateInfo,
    TemplateStrategy,
    VideoJob,
)

ALICE = SpeakerProfile(speaker_id="alice", avatar_id="101", voice_id="v-alice", image_url="https://img/alice.png")
BOB = SpeakerProfile(speaker_id="bob", avatar_id="102", voice_id="v-bob")


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAdapter:
    """Scripted adapter: outcomes and poll results are consumed in order."""

    def __init__(self, provider_id: str = "fake", max_clip_seconds: Optional[float] = None) -> None:
        self.provider_id = provider_id
        self.max_clip_seconds = max_clip_seconds
        self.poll_interval_sec = 10.0
        self.submit_outcomes: List[Any] = []
        self.poll_results: List[Any] = []
        self.submissions: List[Any] = []
        self.polls: List[str] = []
        self.templates: List[TemplateInfo] = []
        self.ready_error: Optional[Exception] = None
        self.on_submit: Optional[Callable[[], None]] = None
        self.on_poll: Optional[Callable[[], None]] = None

    def ensure_ready(self) -> None:
        if self.ready_error is not None:
            raise self.ready_error

    def submit(self, strategy, request, context):
        self.submissions.append((strategy, context))
        if self.on_submit:
            self.on_submit()
        if self.submit_outcomes:
            outcome = self.submit_outcomes.pop(0)
        else:
            outcome = Submission(job_id=f"job-{len(self.submissions)}")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def poll(self, job_id: str) -> PollResult:
        self.polls.append(job_id)
        if self.on_poll:
            self.on_poll()
        result = self.poll_results.pop(0) if self.poll_results else PollResult(status=PollStatus.PROCESSING)
        if isinstance(result, Exception):
            raise result
        return result

    def list_templates(self) -> List[TemplateInfo]:
        return list(self.templates)


def _request(*speakers: SpeakerProfile, text: str = "Hello and welcome.", **options) -> GenerationRequest:
    return GenerationRequest(
        dialogue=(DialogueLine("alice", text), DialogueLine("bob", "Thanks for having me.")),
        speakers=speakers or (ALICE, BOB),
        **options,
    )


def _completed(url: str = "https://cdn/final.mp4", **extra) -> PollResult:
    return PollResult(status=PollStatus.COMPLETED, result_url=url, **extra)


def _http_response(body: Any, status: int = 200) -> mock.Mock:
    response = mock.Mock(spec=requests.Response)
    response.status_code = status
    response.headers = {}
    response.text = str(body)
    response.json.return_value = body
    return response


class OrchestratorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.store = MemoryJobStore()
        self.adapter = FakeAdapter()
        self.config = GeneratorConfig(default_provider="fake", max_rate_limit_retries=5, stuck_poll_ceiling=60)
        self.orchestrator = self._orchestrator()
        self.events: List[Optional[JobStatus]] = []
        self.orchestrator.subscribe(self._record)

    def _record(self, job: Optional[VideoJob]) -> None:
        self.events.append(job.status if job is not None else None)

    def _orchestrator(self, adapter: Optional[FakeAdapter] = None) -> JobOrchestrator:
        adapter = adapter or self.adapter
        return JobOrchestrator(
            {adapter.provider_id: adapter},
            self.store,
            config=self.config,
            clock=self.clock,
            now=lambda: "2024-05-01T10:00:00+00:00",
        )

    def _advance_and_tick(self, seconds: float = 10.0) -> bool:
        self.clock.advance(seconds)
        return self.orchestrator.tick()


class SubmitAndPollTest(OrchestratorTestCase):
    def test_successful_submission_schedules_polling(self) -> None:
        job = self.orchestrator.submit(_request())
        self.assertEqual(job.status, JobStatus.PROCESSING)
        self.assertEqual(job.job_id, "job-1")
        self.assertIsInstance(job.strategy, AvatarPairStrategy)
        self.assertEqual(self.orchestrator.next_action_at, self.clock() + 10.0)
        self.assertEqual(self.store.load().status, JobStatus.PROCESSING)
        self.assertEqual(self.events, [JobStatus.DRAFT, JobStatus.SUBMITTING, JobStatus.PROCESSING])

    def test_state_is_saved_before_the_network_call(self) -> None:
        seen: List[JobStatus] = []
        self.adapter.on_submit = lambda: seen.append(self.store.load().status)
        self.orchestrator.submit(_request())
        self.assertEqual(seen, [JobStatus.SUBMITTING])

    def test_poll_until_completed(self) -> None:
        self.adapter.poll_results = [
            PollResult(status=PollStatus.PROCESSING),
            _completed(cover_url="https://cdn/cover.jpg"),
        ]
        self.orchestrator.submit(_request())
        self.assertFalse(self._advance_and_tick(9.0))
        self.assertTrue(self._advance_and_tick(1.0))
        self.assertEqual(self.orchestrator.job.poll_count, 1)
        self.assertTrue(self._advance_and_tick())
        job = self.orchestrator.job
        self.assertEqual(job.status, JobStatus.COMPLETED)
        self.assertEqual(job.result_url, "https://cdn/final.mp4")
        self.assertEqual(job.cover_url, "https://cdn/cover.jpg")
        self.assertIsNotNone(job.last_polled_at)
        self.assertIsNone(self.orchestrator.next_action_at)
        self.assertFalse(self.orchestrator.is_active)
        self.assertEqual(self.adapter.polls, ["job-1", "job-1"])

    def test_stale_processing_never_regresses_a_completed_job(self) -> None:
        self.adapter.poll_results = [_completed()]
        self.orchestrator.submit(_request())
        self._advance_and_tick()
        applied = self.orchestrator.apply_poll_result("job-1", PollResult(status=PollStatus.PROCESSING))
        self.assertFalse(applied)
        self.assertEqual(self.orchestrator.job.status, JobStatus.COMPLETED)
        self.assertEqual(self.store.load().status, JobStatus.COMPLETED)

    def test_results_for_other_ids_are_ignored(self) -> None:
        self.orchestrator.submit(_request())
        self.assertFalse(self.orchestrator.apply_poll_result("job-999", _completed()))
        self.assertEqual(self.orchestrator.job.status, JobStatus.PROCESSING)

    def test_provider_failure_is_terminal(self) -> None:
        self.adapter.poll_results = [PollResult(status=PollStatus.FAILED, message="render crashed")]
        self.orchestrator.submit(_request())
        self._advance_and_tick()
        job = self.orchestrator.job
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.error_kind, "provider_failed")
        self.assertEqual(job.error_message, "render crashed")
        self.assertFalse(self._advance_and_tick())

    def test_transient_poll_errors_are_absorbed(self) -> None:
        self.adapter.poll_results = [TransientPollError("timeout"), _completed()]
        self.orchestrator.submit(_request())
        self._advance_and_tick()
        job = self.orchestrator.job
        self.assertEqual(job.status, JobStatus.PROCESSING)
        self.assertEqual(job.transient_errors, 1)
        self._advance_and_tick()
        self.assertEqual(self.orchestrator.job.status, JobStatus.COMPLETED)

    def test_other_poll_errors_are_retried_without_a_state_change(self) -> None:
        self.adapter.poll_results = [ProviderFailed("status endpoint returned garbage"), _completed()]
        self.orchestrator.submit(_request())
        self.assertTrue(self._advance_and_tick())
        job = self.orchestrator.job
        self.assertEqual(job.status, JobStatus.PROCESSING)
        self.assertEqual(job.transient_errors, 1)
        self.assertTrue(self.orchestrator.is_active)
        self._advance_and_tick()
        self.assertEqual(self.orchestrator.job.status, JobStatus.COMPLETED)

    def test_malformed_status_body_keeps_polling(self) -> None:
        session = mock.Mock(spec=requests.Session)
        session.request.side_effect = [
            _http_response({"code": 0, "data": {"video_id": "v1"}}),
            _http_response({"code": 0, "data": ["unexpected"]}),
            _http_response({"code": 0, "data": {"status": "completed", "video_url": "https://cdn/v1.mp4"}}),
        ]
        adapter = JoggAiAdapter(api_key="secret", use_mock=False, session=session, poll_interval_sec=10.0)
        self.orchestrator = self._orchestrator(adapter)
        self.orchestrator.submit(_request(), provider_id="joggai")

        self.assertTrue(self._advance_and_tick())
        job = self.orchestrator.job
        self.assertEqual(job.status, JobStatus.PROCESSING)
        self.assertEqual(job.transient_errors, 1)
        self.assertTrue(self.orchestrator.is_active)

        self._advance_and_tick()
        job = self.orchestrator.job
        self.assertEqual(job.status, JobStatus.COMPLETED)
        self.assertEqual(job.result_url, "https://cdn/v1.mp4")

    def test_stuck_signal_does_not_fail_the_job(self) -> None:
        self.config.stuck_poll_ceiling = 3
        self.orchestrator.submit(_request())
        for _ in range(2):
            self._advance_and_tick()
        self.assertFalse(self.orchestrator.job.stuck)
        self._advance_and_tick()
        job = self.orchestrator.job
        self.assertTrue(job.stuck)
        self.assertEqual(job.status, JobStatus.PROCESSING)
        self.assertTrue(self.orchestrator.is_active)

    def test_configuration_errors_raise_before_any_state(self) -> None:
        self.adapter.ready_error = ConfigurationError("fake API key is missing")
        with self.assertRaises(ConfigurationError):
            self.orchestrator.submit(_request())
        self.assertIsNone(self.orchestrator.job)
        self.assertIsNone(self.store.load())
        self.assertEqual(self.adapter.submissions, [])

    def test_unknown_provider_is_a_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            self.orchestrator.submit(_request(), provider_id="nope")

    def test_plain_rejection_fails_the_job(self) -> None:
        self.adapter.submit_outcomes = [ProviderRejected("invalid avatar", status_code=400)]
        job = self.orchestrator.submit(_request())
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.error_kind, "provider_rejected")
        self.assertIn("invalid avatar", job.error_message)
        self.assertEqual(self.store.load().status, JobStatus.FAILED)

    def test_unsubscribe_stops_notifications(self) -> None:
        seen: List[JobStatus] = []
        unsubscribe = self.orchestrator.subscribe(lambda job: seen.append(job.status))
        unsubscribe()
        self.orchestrator.submit(_request())
        self.assertEqual(seen, [])


class TemplateFallbackTest(OrchestratorTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.adapter.templates = [TemplateInfo(template_id="tpl-1", variables=("script",))]

    def test_template_rejection_falls_back_to_avatars_once(self) -> None:
        self.adapter.submit_outcomes = [ProviderRejected("template unavailable", strategy_specific=True)]
        job = self.orchestrator.submit(_request(template_id="tpl-1"))
        self.assertEqual(job.status, JobStatus.SUBMITTING)
        self.assertTrue(job.fallback_used)
        self.assertIsInstance(job.strategy, AvatarPairStrategy)
        self.assertEqual(self.orchestrator.next_action_at, self.clock())

        self.assertTrue(self.orchestrator.tick())
        self.assertEqual(self.orchestrator.job.status, JobStatus.PROCESSING)
        self.assertIsInstance(self.adapter.submissions[0][0], TemplateStrategy)
        self.assertIsInstance(self.adapter.submissions[1][0], AvatarPairStrategy)

    def test_fallback_is_not_repeated(self) -> None:
        self.adapter.submit_outcomes = [
            ProviderRejected("template unavailable", strategy_specific=True),
            ProviderRejected("avatar unsupported", strategy_specific=True),
        ]
        self.orchestrator.submit(_request(template_id="tpl-1"))
        self.orchestrator.tick()
        job = self.orchestrator.job
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.error_kind, "provider_rejected")
        self.assertEqual(len(self.adapter.submissions), 2)

    def test_fallback_without_configured_speakers_fails_with_configuration(self) -> None:
        self.adapter.submit_outcomes = [ProviderRejected("template unavailable", strategy_specific=True)]
        unconfigured = SpeakerProfile(speaker_id="alice", avatar_id="101")
        job = self.orchestrator.submit(_request(unconfigured, template_id="tpl-1"))
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.error_kind, "configuration")

    def test_explicit_templates_skip_discovery(self) -> None:
        self.adapter.templates = []
        job = self.orchestrator.submit(
            _request(template_id="tpl-2"), templates=[TemplateInfo(template_id="tpl-2")]
        )
        self.assertIsInstance(job.strategy, TemplateStrategy)


class RateLimitTest(OrchestratorTestCase):
    def test_rate_limit_waits_and_resubmits_with_the_seed(self) -> None:
        self.adapter.submit_outcomes = [RateLimit(retry_after_seconds=5, continuation_seed="seed-123")]
        job = self.orchestrator.submit(_request())
        self.assertEqual(job.status, JobStatus.RATE_LIMITED)
        self.assertEqual(job.retry_after_seconds, 5)
        self.assertEqual(job.continuation_seed_url, "seed-123")
        self.assertEqual(self.store.load().continuation_seed_url, "seed-123")

        self.assertFalse(self._advance_and_tick(4.0))
        self.assertEqual(len(self.adapter.submissions), 1)

        self.assertTrue(self._advance_and_tick(1.0))
        self.assertEqual(len(self.adapter.submissions), 2)
        self.assertEqual(self.adapter.submissions[1][1].continuation_seed, "seed-123")
        job = self.orchestrator.job
        self.assertEqual(job.status, JobStatus.PROCESSING)
        self.assertIsNone(job.continuation_seed_url)
        self.assertIsNone(job.retry_after_seconds)
        self.assertIn(JobStatus.RATE_LIMITED, self.events)

    def test_retries_are_capped(self) -> None:
        self.config.max_rate_limit_retries = 2
        self.adapter.submit_outcomes = [RateLimit(retry_after_seconds=1) for _ in range(3)]
        self.orchestrator.submit(_request())
        self._advance_and_tick(1)
        self.assertEqual(self.orchestrator.job.status, JobStatus.RATE_LIMITED)
        self._advance_and_tick(1)
        job = self.orchestrator.job
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.error_kind, "rate_limited")
        self.assertEqual(job.rate_limit_attempts, 3)

    def test_zero_cap_retries_forever(self) -> None:
        self.config.max_rate_limit_retries = 0
        self.adapter.submit_outcomes = [RateLimit(retry_after_seconds=1) for _ in range(7)]
        self.orchestrator.submit(_request())
        for _ in range(7):
            self._advance_and_tick(1)
        job = self.orchestrator.job
        self.assertEqual(job.status, JobStatus.PROCESSING)
        self.assertEqual(job.rate_limit_attempts, 7)


class CancellationTest(OrchestratorTestCase):
    def test_cancel_ignores_an_in_flight_poll(self) -> None:
        self.orchestrator.submit(_request())
        self.adapter.poll_results = [_completed()]
        self.adapter.on_poll = self.orchestrator.cancel
        self._advance_and_tick()
        job = self.orchestrator.job
        self.assertEqual(job.status, JobStatus.PROCESSING)
        self.assertIsNone(self.orchestrator.next_action_at)
        self.assertEqual(self.store.load().status, JobStatus.PROCESSING)

    def test_cancel_keeps_the_record_and_ignores_late_results(self) -> None:
        self.orchestrator.submit(_request())
        self.orchestrator.cancel()
        self.assertFalse(self.orchestrator.is_active)
        self.assertFalse(self._advance_and_tick())
        self.assertFalse(self.orchestrator.apply_poll_result("job-1", _completed()))
        self.assertEqual(self.store.load().job_id, "job-1")

    def test_reset_clears_everything(self) -> None:
        self.orchestrator.submit(_request())
        self.orchestrator.reset()
        self.assertIsNone(self.orchestrator.job)
        self.assertIsNone(self.events[-1])
        self.assertEqual(self.events[-2], JobStatus.PROCESSING)
        self.assertIsNone(self.store.load())
        self.assertFalse(self.orchestrator.apply_poll_result("job-1", _completed()))
        self.assertFalse(self._advance_and_tick())

    def test_new_submission_abandons_the_previous_job(self) -> None:
        self.orchestrator.submit(_request())
        self.orchestrator.submit(_request(text="A different episode."))
        self.assertFalse(self.orchestrator.apply_poll_result("job-1", _completed()))
        job = self.orchestrator.job
        self.assertEqual(job.job_id, "job-2")
        self.assertEqual(job.status, JobStatus.PROCESSING)


class ResumeTest(OrchestratorTestCase):
    def _restart(self) -> JobOrchestrator:
        self.adapter = FakeAdapter()
        self.orchestrator = self._orchestrator()
        return self.orchestrator

    def test_processing_job_polls_immediately_without_resubmitting(self) -> None:
        self.orchestrator.submit(_request())
        orchestrator = self._restart()
        self.adapter.poll_results = [_completed()]
        job = orchestrator.resume()
        self.assertEqual(job.status, JobStatus.PROCESSING)
        self.assertEqual(orchestrator.next_action_at, self.clock())
        self.assertTrue(orchestrator.tick())
        self.assertEqual(self.adapter.polls, ["job-1"])
        self.assertEqual(self.adapter.submissions, [])
        self.assertEqual(orchestrator.job.status, JobStatus.COMPLETED)

    def test_rate_limited_job_waits_the_full_delay(self) -> None:
        self.adapter.submit_outcomes = [RateLimit(retry_after_seconds=5, continuation_seed="seed-123")]
        self.orchestrator.submit(_request())
        self.clock.advance(3)
        orchestrator = self._restart()
        orchestrator.resume()
        self.assertEqual(orchestrator.next_action_at, self.clock() + 5)
        self.assertFalse(self._advance_and_tick(4))
        self.assertTrue(self._advance_and_tick(1))
        self.assertEqual(self.adapter.submissions[0][1].continuation_seed, "seed-123")
        self.assertEqual(orchestrator.job.rate_limit_attempts, 1)

    def test_submitting_job_is_resubmitted(self) -> None:
        self.adapter.on_submit = lambda: self.orchestrator.cancel()
        self.orchestrator.submit(_request())
        self.assertEqual(self.store.load().status, JobStatus.SUBMITTING)
        orchestrator = self._restart()
        job = orchestrator.resume()
        self.assertEqual(job.status, JobStatus.SUBMITTING)
        self.assertTrue(orchestrator.tick())
        self.assertEqual(len(self.adapter.submissions), 1)
        self.assertEqual(orchestrator.job.status, JobStatus.PROCESSING)

    def test_terminal_job_is_loaded_but_not_scheduled(self) -> None:
        self.adapter.poll_results = [_completed()]
        self.orchestrator.submit(_request())
        self._advance_and_tick()
        orchestrator = self._restart()
        job = orchestrator.resume()
        self.assertEqual(job.status, JobStatus.COMPLETED)
        self.assertFalse(orchestrator.is_active)

    def test_empty_store_resumes_nothing(self) -> None:
        self.assertIsNone(self.orchestrator.resume())


class SegmentChainingTest(OrchestratorTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.adapter = FakeAdapter(max_clip_seconds=10)
        self.orchestrator = self._orchestrator()
        self.orchestrator.subscribe(self._record)
        sentence = " ".join(["word"] * 15) + "."
        self.text = " ".join([sentence] * 3)

    def test_segments_are_chained_through_last_frames(self) -> None:
        self.adapter.poll_results = [
            _completed("clip-1", last_frame_url="frame-1", cover_url="cover-1"),
            _completed("clip-2", cover_url="cover-2"),
            _completed("clip-3"),
        ]
        job = self.orchestrator.submit(
            GenerationRequest(dialogue=(DialogueLine("alice", self.text),), speakers=(ALICE,))
        )
        self.assertIsInstance(job.strategy, AvatarSoloStrategy)
        self.assertEqual(len(job.segments), 3)
        self.assertEqual(self.adapter.submissions[0][1].seed_image_url, "https://img/alice.png")
        self.assertEqual(self.adapter.submissions[0][1].segment.id, "seg-0")

        self._advance_and_tick()
        self.assertEqual(self.orchestrator.job.status, JobStatus.SUBMITTING)
        self.orchestrator.tick()
        self.assertEqual(self.adapter.submissions[1][1].seed_image_url, "frame-1")
        self.assertEqual(self.adapter.submissions[1][1].segment.id, "seg-1")

        self._advance_and_tick()
        self.orchestrator.tick()
        self.assertEqual(self.adapter.submissions[2][1].seed_image_url, "cover-2")

        self._advance_and_tick()
        job = self.orchestrator.job
        self.assertEqual(job.status, JobStatus.COMPLETED)
        self.assertEqual(job.result_url, "clip-3")
        self.assertEqual(job.segment_urls, ["clip-1", "clip-2", "clip-3"])
        self.assertEqual(self.events.count(JobStatus.COMPLETED), 1)
        self.assertEqual(self.events[-1], JobStatus.COMPLETED)

    def test_clip_without_frames_continues_unseeded(self) -> None:
        self.adapter.poll_results = [_completed("clip-1")]
        self.orchestrator.submit(
            GenerationRequest(dialogue=(DialogueLine("alice", self.text),), speakers=(ALICE,))
        )
        self._advance_and_tick()
        self.orchestrator.tick()
        self.assertEqual(self.adapter.submissions[1][1].segment.id, "seg-1")
        self.assertIsNone(self.adapter.submissions[1][1].seed_image_url)
        self.assertEqual(self.orchestrator.job.segment_urls, ["clip-1"])

    def test_request_seed_image_starts_the_chain(self) -> None:
        self.orchestrator.submit(
            GenerationRequest(
                dialogue=(DialogueLine("alice", self.text),),
                speakers=(ALICE,),
                seed_image_url="https://img/first.png",
            )
        )
        self.assertEqual(self.adapter.submissions[0][1].seed_image_url, "https://img/first.png")

    def test_short_dialogue_is_not_segmented(self) -> None:
        job = self.orchestrator.submit(_request())
        self.assertEqual(job.segments, [])
        self.assertIsNone(self.adapter.submissions[0][1].segment)


if __name__ == "__main__":
    unittest.main()
