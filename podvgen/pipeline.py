"""High-level facade wiring configuration, adapters, store and orchestrator."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from .assembly import assemble_clips
from .config import EnvSettings, GeneratorConfig, SettingsSource, speakers_from_settings
from .errors import (
    ERROR_KIND_CONFIGURATION,
    ERROR_KIND_PROVIDER_FAILED,
    ERROR_KIND_PROVIDER_REJECTED,
    ConfigurationError,
    JobStoreError,
    PodvgenError,
    ProviderFailed,
    ProviderRejected,
)
from .orchestrator import JobOrchestrator, Listener
from .services.base import ProviderAdapter
from .services.jimeng import JimengAdapter
from .services.joggai import JoggAiAdapter
from .services.kie import KieRunwayAdapter
from .services.replicate import ReplicateAdapter
from .services.tavus import TavusAdapter
from .store import FileJobStore, JobStore
from .types import DialogueLine, GenerationRequest, JobStatus, TemplateInfo, VideoJob
from .utils.run_logger import RunLogger


class PodcastVideoGenerator:
    """Entry point used by the CLI and by embedding applications."""

    def __init__(
        self,
        config: GeneratorConfig | None = None,
        *,
        settings: SettingsSource | None = None,
        adapters: Mapping[str, ProviderAdapter] | None = None,
        store: JobStore | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or EnvSettings(prefix=GeneratorConfig.env_prefix)
        base_config = config or GeneratorConfig.from_env()
        self.config = base_config.with_settings(self.settings)
        self.logger = RunLogger(base_dir=self.config.runs_dir)
        self.store = store or FileJobStore(self.config.store_path)
        self.adapters: Dict[str, ProviderAdapter] = dict(adapters) if adapters else self._build_adapters()
        self._clock = clock
        self._sleep = sleep
        self.orchestrator = JobOrchestrator(
            self.adapters,
            self.store,
            config=self.config,
            clock=clock,
            run_logger=self.logger,
        )

    def build_request(
        self,
        dialogue: Iterable[DialogueLine | Tuple[str, str]],
        **options,
    ) -> GenerationRequest:
        """Create a request, filling speaker profiles the caller left out from settings."""
        lines = tuple(
            line if isinstance(line, DialogueLine) else DialogueLine(speaker_id=line[0], text=line[1])
            for line in dialogue
        )
        speaker_ids = []
        for line in lines:
            if line.speaker_id not in speaker_ids:
                speaker_ids.append(line.speaker_id)
        speakers = speakers_from_settings(self.settings, speaker_ids, options.pop("speakers", ()))
        return GenerationRequest(dialogue=lines, speakers=tuple(speakers), **options)

    def submit(
        self,
        request: GenerationRequest,
        *,
        provider_id: str | None = None,
        templates: Sequence[TemplateInfo] | None = None,
    ) -> VideoJob:
        return self.orchestrator.submit(request, provider_id=provider_id, templates=templates)

    def resume(self) -> Optional[VideoJob]:
        """Pick up the stored job. A corrupt record is discarded with a warning."""
        try:
            return self.orchestrator.resume()
        except JobStoreError as exc:
            print(f"Warning: discarding unreadable job record: {exc}")
            self.store.clear()
            return None

    def run_until_settled(self, *, max_wait_sec: float | None = None) -> Optional[VideoJob]:
        """Drive the cooperative timer until the job is terminal, cancelled or ``max_wait_sec`` passes."""
        started = self._clock()
        while self.orchestrator.is_active:
            due = self.orchestrator.next_action_at
            now = self._clock()
            if max_wait_sec is not None and now - started >= max_wait_sec:
                break
            if due is not None and due > now:
                delay = due - now
                if max_wait_sec is not None:
                    delay = min(delay, max(0.0, started + max_wait_sec - now))
                self._sleep(delay)
                continue
            self.orchestrator.tick()
        return self.orchestrator.job

    def cancel(self) -> None:
        self.orchestrator.cancel()

    def reset(self) -> None:
        self.orchestrator.reset()

    @property
    def job(self) -> Optional[VideoJob]:
        return self.orchestrator.job

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.orchestrator.subscribe(listener)

    def assemble(self, output_dir: str | Path = "outputs") -> Path:
        """Join the clips of the completed job into one file under ``output_dir``."""
        job = self.orchestrator.job
        if job is None:
            raise RuntimeError("No job to assemble.")
        raise_for_failure(job)
        if job.status is not JobStatus.COMPLETED:
            raise RuntimeError(f"Job is not completed yet (status: {job.status.value}).")
        urls = list(job.segment_urls) or [job.result_url or ""]
        stem = job.job_id or job.provider_id
        output_root = Path(output_dir)
        return assemble_clips(
            urls,
            output_root / f"{stem.replace(':', '-')}-final.mp4",
            work_dir=output_root / "clips",
            timeout=self.config.request_timeout_sec,
        )

    def _build_adapters(self) -> Dict[str, ProviderAdapter]:
        """Instantiate one adapter per provider; all share the package-level settings."""
        cfg = self.config
        common = dict(
            use_mock=cfg.enable_mock_generation,
            timeout=cfg.request_timeout_sec,
            poll_interval_sec=cfg.poll_interval_sec,
            default_retry_after_sec=cfg.default_retry_after_sec,
            mock_polls_until_done=cfg.mock_polls_until_done,
            verbose=cfg.verbose,
        )
        adapters: Dict[str, ProviderAdapter] = {
            "joggai": JoggAiAdapter(api_key=cfg.joggai_api_key, api_url=cfg.joggai_api_url, **common),
            "tavus": TavusAdapter(api_key=cfg.tavus_api_key, api_url=cfg.tavus_api_url, **common),
            "kie": KieRunwayAdapter(api_key=cfg.kie_api_key, api_url=cfg.kie_api_url, **common),
            "replicate": ReplicateAdapter(
                api_key=cfg.replicate_api_token, api_url=cfg.replicate_api_url, **common
            ),
            "jimeng": JimengAdapter(
                api_key=cfg.jimeng_api_key,
                api_secret=cfg.jimeng_api_secret,
                api_url=cfg.jimeng_api_url,
                **common,
            ),
        }
        return adapters


def raise_for_failure(job: VideoJob) -> None:
    """Re-raise a failed job's recorded error as the matching exception type."""
    if job.status is not JobStatus.FAILED:
        return
    message = job.error_message or "Video generation failed."
    if job.error_kind == ERROR_KIND_CONFIGURATION:
        raise ConfigurationError(message)
    if job.error_kind == ERROR_KIND_PROVIDER_REJECTED:
        raise ProviderRejected(message)
    if job.error_kind == ERROR_KIND_PROVIDER_FAILED:
        raise ProviderFailed(message)
    error = PodvgenError(message)
    error.error_kind = job.error_kind or error.error_kind
    raise error


__all__ = ["PodcastVideoGenerator", "raise_for_failure"]
