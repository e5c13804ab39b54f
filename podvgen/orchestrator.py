"""Job lifecycle: submission, polling, rate-limit recovery and segment chaining."""

from __future__ import annotations

import json
import re
import time
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

from .config import GeneratorConfig
from .errors import (
    ERROR_KIND_CONFIGURATION,
    ERROR_KIND_PROVIDER_FAILED,
    ERROR_KIND_PROVIDER_REJECTED,
    ERROR_KIND_RATE_LIMITED,
    ConfigurationError,
    PodvgenError,
    ProviderRejected,
)
from .segments import estimate_duration, split_dialogue
from .services.base import ProviderAdapter
from .store import JobStore
from .strategy import StrategySelector
from .types import (
    AvatarSoloStrategy,
    GenerationRequest,
    GenerationStrategy,
    JobStatus,
    PollResult,
    PollStatus,
    RateLimit,
    SubmitContext,
    TemplateInfo,
    TemplateStrategy,
    VideoJob,
)
from .utils.run_logger import RunLogger

# Listeners receive a detached snapshot, or None once the job has been reset.
Listener = Callable[[Optional[VideoJob]], None]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class JobOrchestrator:
    """Owns the single active :class:`VideoJob` and every transition it makes.

    Scheduling is cooperative: commands set ``next_action_at`` on the injected
    monotonic clock and :meth:`tick` performs the one submission or poll that
    is due. A generation counter is bumped by ``submit``/``cancel``/``reset``
    so that results belonging to an abandoned attempt are ignored.
    """

    def __init__(
        self,
        adapters: Mapping[str, ProviderAdapter],
        store: JobStore,
        *,
        selector: Optional[StrategySelector] = None,
        config: Optional[GeneratorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], str] = utc_now,
        run_logger: Optional[RunLogger] = None,
    ) -> None:
        self._adapters = dict(adapters)
        self._store = store
        self._selector = selector or StrategySelector()
        self._config = config or GeneratorConfig()
        self._clock = clock
        self._now = now
        self._run_logger = run_logger
        self._job: Optional[VideoJob] = None
        self._generation = 0
        self._next_action_at: Optional[float] = None
        self._in_flight = False
        self._abandoned = False
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------ queries

    @property
    def job(self) -> Optional[VideoJob]:
        return self._job.snapshot() if self._job else None

    @property
    def next_action_at(self) -> Optional[float]:
        return self._next_action_at

    @property
    def is_active(self) -> bool:
        """True while a non-terminal job has a scheduled action."""
        return self._job is not None and not self._job.is_terminal and self._next_action_at is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for every transition; returns the unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ----------------------------------------------------------------- commands

    def submit(
        self,
        request: GenerationRequest,
        *,
        provider_id: Optional[str] = None,
        templates: Optional[Iterable[TemplateInfo]] = None,
    ) -> VideoJob:
        """Start a new job, abandoning any job that is still being polled.

        Only :class:`ConfigurationError` propagates; it is raised before any
        state is created. Provider rejections surface as a ``Failed`` job.
        """
        provider = provider_id or self._config.default_provider
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise ConfigurationError(f"Unknown provider: {provider}")
        adapter.ensure_ready()

        available = list(templates) if templates is not None else self._discover_templates(adapter, request)
        strategy = self._selector.resolve(request, available)

        self._abandon()
        job = VideoJob(
            status=JobStatus.DRAFT,
            strategy=strategy,
            provider_id=provider,
            request=request,
            created_at=self._now(),
            seed_image_url=self._initial_seed(request, strategy),
        )
        max_clip = adapter.max_clip_seconds
        if max_clip and estimate_duration(request.plain_text()) > max_clip:
            job.segments = split_dialogue(request.plain_text(), max_clip)
        self._job = job
        self._abandoned = False
        self._log(f"Job created for {provider} with {strategy.kind} strategy; segments: {len(job.segments)}")
        self._emit()

        self._submit_current(self._generation)
        return job.snapshot()

    def cancel(self) -> None:
        """Stop the timer and ignore late results. The stored record is kept for a later ``resume``."""
        self._abandon()

    def reset(self) -> None:
        """Cancel, clear the store and drop the job. Listeners are called with None."""
        self._abandon()
        self._store.clear()
        self._job = None
        self._log("Job cleared")
        self._emit()

    def resume(self) -> Optional[VideoJob]:
        """Load the stored job and schedule whatever it was waiting for.

        Raises :class:`~podvgen.errors.JobStoreError` when the record is malformed.
        """
        job = self._store.load()
        if job is None:
            return None
        self._abandon()
        self._job = job
        self._abandoned = False
        now = self._clock()
        if job.is_terminal:
            self._next_action_at = None
        elif job.status is JobStatus.PROCESSING and job.job_id:
            self._refresh_stuck(job)
            self._next_action_at = now
        elif job.status is JobStatus.RATE_LIMITED:
            self._next_action_at = now + (job.retry_after_seconds or self._config.default_retry_after_sec)
        else:
            # Draft, Submitting, or Processing without a handle: submit again.
            job.status = JobStatus.SUBMITTING
            job.job_id = None
            self._next_action_at = now
        self._log(f"Resumed job in state {job.status.value}")
        self._emit()
        return job.snapshot()

    def tick(self) -> bool:
        """Run the action that is due, if any. Returns True when something ran."""
        job = self._job
        if job is None or job.is_terminal or self._in_flight:
            return False
        if self._next_action_at is None or self._clock() < self._next_action_at:
            return False
        self._next_action_at = None
        generation = self._generation
        if job.status is JobStatus.PROCESSING:
            self._poll_current(generation)
        else:
            self._submit_current(generation)
        return True

    def apply_poll_result(self, job_id: str, result: PollResult, *, generation: Optional[int] = None) -> bool:
        """Feed a poll completion in. Stale ids and late results are ignored."""
        job = self._job
        if job is None or job.is_terminal or job.status is not JobStatus.PROCESSING or job.job_id != job_id:
            self._log(f"Ignoring poll result for {job_id}")
            return False
        if self._abandoned or (generation is not None and generation != self._generation):
            self._log(f"Ignoring poll result for {job_id} from an abandoned attempt")
            return False

        adapter = self._adapters[job.provider_id]
        job.last_polled_at = self._now()

        if result.status is PollStatus.PROCESSING:
            job.poll_count += 1
            self._refresh_stuck(job)
            self._store.save(job)
            self._schedule(self._poll_interval(adapter))
            self._emit()
            return True

        if result.status is PollStatus.FAILED:
            self._fail(job, ERROR_KIND_PROVIDER_FAILED, result.message or "Provider reported failure.")
            return True

        if job.segments:
            job.segment_urls.append(result.result_url or "")
        if job.has_more_segments:
            # Only still images can seed the next clip; the clip URL itself is a video.
            job.seed_image_url = result.last_frame_url or result.cover_url
            job.segment_index += 1
            job.job_id = None
            job.status = JobStatus.SUBMITTING
            self._store.save(job)
            if job.seed_image_url:
                self._log(f"Segment {job.segment_index} of {len(job.segments)} seeded with {job.seed_image_url}")
            else:
                self._log(f"Segment {job.segment_index} of {len(job.segments)} continues unseeded: no frame was returned")
            self._schedule(0)
            self._emit()
            return True

        job.status = JobStatus.COMPLETED
        job.result_url = result.result_url
        job.cover_url = result.cover_url
        job.continuation_seed_url = None
        job.retry_after_seconds = None
        self._next_action_at = None
        self._store.save(job)
        self._emit()
        return True

    # ---------------------------------------------------------------- internals

    def _submit_current(self, generation: int) -> None:
        job = self._job
        if job is None:
            return
        adapter = self._adapters[job.provider_id]
        context = SubmitContext(
            seed_image_url=job.seed_image_url,
            continuation_seed=job.continuation_seed_url,
            segment=job.current_segment,
        )
        if job.status is not JobStatus.SUBMITTING:
            job.status = JobStatus.SUBMITTING
            job.retry_after_seconds = None
            self._emit()
        job.job_id = None
        self._store.save(job)

        self._in_flight = True
        try:
            outcome = adapter.submit(job.strategy, job.request, context)
        except ConfigurationError as exc:
            if generation == self._generation:
                self._fail(job, ERROR_KIND_CONFIGURATION, str(exc))
            return
        except ProviderRejected as exc:
            if generation == self._generation:
                self._trace(job, "submit", context, {"error": str(exc), "status_code": exc.status_code})
                self._handle_rejection(job, exc)
            return
        finally:
            self._in_flight = False

        if generation != self._generation or self._job is not job:
            self._log("Ignoring submission outcome from an abandoned attempt")
            return
        self._trace(job, "submit", context, outcome)

        if isinstance(outcome, RateLimit):
            self._handle_rate_limit(job, outcome)
            return

        job.job_id = outcome.job_id
        job.status = JobStatus.PROCESSING
        job.continuation_seed_url = None
        job.poll_count = 0
        job.transient_errors = 0
        job.stuck = False
        self._store.save(job)
        self._schedule(self._poll_interval(adapter))
        self._emit()

    def _poll_current(self, generation: int) -> None:
        job = self._job
        if job is None or not job.job_id:
            return
        adapter = self._adapters[job.provider_id]
        job_id = job.job_id
        self._in_flight = True
        try:
            result = adapter.poll(job_id)
        except PodvgenError as exc:
            # Every poll-side error is retried on the next interval without a state change.
            if generation == self._generation and self._job is job and not job.is_terminal:
                job.transient_errors += 1
                job.last_polled_at = self._now()
                self._refresh_stuck(job)
                self._log(f"Transient poll error for {job_id}: {exc}")
                self._store.save(job)
                self._schedule(self._poll_interval(adapter))
                self._emit()
            return
        finally:
            self._in_flight = False

        self._trace(job, "poll", {"job_id": job_id}, result)
        self.apply_poll_result(job_id, result, generation=generation)

    def _handle_rejection(self, job: VideoJob, exc: ProviderRejected) -> None:
        if exc.strategy_specific and isinstance(job.strategy, TemplateStrategy) and not job.fallback_used:
            job.fallback_used = True
            try:
                job.strategy = self._selector.resolve(job.request, (), exclude_template=True)
            except ConfigurationError as cfg_exc:
                self._fail(job, ERROR_KIND_CONFIGURATION, f"{exc}; no avatar fallback: {cfg_exc}")
                return
            job.seed_image_url = job.seed_image_url or self._initial_seed(job.request, job.strategy)
            self._log(f"Template rejected ({exc}); retrying once with {job.strategy.kind}")
            self._store.save(job)
            self._schedule(0)
            self._emit()
            return
        self._fail(job, ERROR_KIND_PROVIDER_REJECTED, str(exc))

    def _handle_rate_limit(self, job: VideoJob, outcome: RateLimit) -> None:
        job.rate_limit_attempts += 1
        cap = self._config.max_rate_limit_retries
        if cap and job.rate_limit_attempts > cap:
            self._fail(
                job,
                ERROR_KIND_RATE_LIMITED,
                f"Still rate limited after {cap} retries: {outcome.message or 'no detail'}",
            )
            return
        job.status = JobStatus.RATE_LIMITED
        job.retry_after_seconds = outcome.retry_after_seconds
        job.continuation_seed_url = outcome.continuation_seed or job.continuation_seed_url
        self._store.save(job)
        self._schedule(outcome.retry_after_seconds)
        self._log(f"Rate limited; retrying in {outcome.retry_after_seconds:g}s (attempt {job.rate_limit_attempts})")
        self._emit()

    def _fail(self, job: VideoJob, kind: str, message: str) -> None:
        job.status = JobStatus.FAILED
        job.error_kind = kind
        job.error_message = message
        job.retry_after_seconds = None
        self._next_action_at = None
        self._store.save(job)
        self._emit()

    def _abandon(self) -> None:
        self._generation += 1
        self._abandoned = True
        self._next_action_at = None

    def _schedule(self, delay: float) -> None:
        self._next_action_at = self._clock() + max(0.0, float(delay))

    def _poll_interval(self, adapter: ProviderAdapter) -> float:
        return getattr(adapter, "poll_interval_sec", None) or self._config.poll_interval_sec

    def _refresh_stuck(self, job: VideoJob) -> None:
        ceiling = self._config.stuck_poll_ceiling
        if ceiling and job.poll_count + job.transient_errors >= ceiling:
            if not job.stuck:
                self._log(f"Job {job.job_id} looks stuck after {job.poll_count} polls")
            job.stuck = True

    def _discover_templates(self, adapter: ProviderAdapter, request: GenerationRequest) -> Sequence[TemplateInfo]:
        if not request.template_id:
            return ()
        try:
            return adapter.list_templates()
        except PodvgenError as exc:
            if isinstance(exc, ConfigurationError):
                raise
            self._log(f"Template listing failed, using avatar strategies: {exc}")
            return ()

    @staticmethod
    def _initial_seed(request: GenerationRequest, strategy: GenerationStrategy) -> Optional[str]:
        if request.seed_image_url:
            return request.seed_image_url
        if isinstance(strategy, AvatarSoloStrategy):
            return strategy.speaker.image_url
        return None

    def _emit(self) -> None:
        if self._job is not None and self._config.verbose:
            self._print_transition(self._job)
        for listener in list(self._listeners):
            listener(self._job.snapshot() if self._job is not None else None)

    def _trace(self, job: VideoJob, step: str, request: Any, response: Any) -> None:
        if self._run_logger is None:
            return
        trace_id = f"{re.sub(r'[^0-9A-Za-z]', '', job.created_at)[:14]}-{job.provider_id}"
        self._run_logger.log_exchange(
            trace_id,
            step,
            _strip_empty(_to_plain(request)),
            _strip_empty(_to_plain(response)),
        )

    def _print_transition(self, job: VideoJob) -> None:
        record = job.to_record()
        record.pop("request", None)
        record["stuck"] = job.stuck
        body = json.dumps(_strip_empty(record), ensure_ascii=False, indent=2, default=_json_default)
        print(f"[job] {job.status.value}:\n{body}\n")

    def _log(self, message: str) -> None:
        if self._config.verbose:
            print(f"[job] {message}")


def _to_plain(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    return value


def _strip_empty(value: Any) -> Any:
    """Recursively remove empty containers for cleaner logging."""
    if isinstance(value, dict):
        return {k: _strip_empty(v) for k, v in value.items() if not _is_empty(v)}
    if isinstance(value, (list, tuple)):
        return [_strip_empty(item) for item in value if not _is_empty(item)]
    return value


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes)) and value == "":
        return True
    if isinstance(value, (list, tuple, set, dict)) and len(value) == 0:
        return True
    return False


def _json_default(obj: Any) -> Any:
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    if isinstance(obj, set):
        return list(obj)
    return str(obj)


__all__ = ["JobOrchestrator", "Listener", "utc_now"]
