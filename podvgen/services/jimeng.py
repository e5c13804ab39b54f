"""即梦 (volcengine CV async) image/text-to-video adapter."""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from volcengine.visual.VisualService import VisualService

from ..errors import ConfigurationError, ProviderRejected, TransientPollError
from ..types import (
    GenerationRequest,
    GenerationStrategy,
    PollResult,
    PollStatus,
    RateLimit,
    Submission,
    SubmitContext,
    SubmitOutcome,
    TemplateStrategy,
)
from .base import BaseProviderAdapter

JIMENG_I2V_REQ_KEY = "jimeng_i2v_first_v30"
JIMENG_T2V_REQ_KEY = "jimeng_t2v_v30"
JIMENG_OK_CODES = {"0", "10000"}
JIMENG_RATE_LIMIT_CODES = {"50429", "50430"}
JIMENG_FPS = 24
JIMENG_FRAME_OPTIONS = (121, 241)
JIMENG_ASPECT_RATIOS = {"landscape": "16:9", "portrait": "9:16", "square": "1:1"}
_FAILURE_STATES = {"not_found", "expired", "failed", "error"}


class JimengServiceError(RuntimeError):
    """Non-success envelope from the CV service."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"Jimeng CV service error [{code}]: {message}")
        self.code = code


def map_jimeng_status(raw_status: Any, has_media: bool) -> PollStatus:
    """done (with media) -> Completed, not_found/expired/failed/error -> Failed, else Processing."""
    status = str(raw_status or "").strip().lower()
    if status == "done":
        return PollStatus.COMPLETED if has_media else PollStatus.PROCESSING
    if status in _FAILURE_STATES:
        return PollStatus.FAILED
    return PollStatus.PROCESSING


def select_frame_count(duration: Any, fps: int = JIMENG_FPS) -> int:
    if duration is None:
        return JIMENG_FRAME_OPTIONS[0]
    try:
        duration_val = float(duration)
    except (TypeError, ValueError):
        return JIMENG_FRAME_OPTIONS[0]
    approx = int(round(max(duration_val, 0) * fps)) + 1
    return min(JIMENG_FRAME_OPTIONS, key=lambda option: abs(option - approx))


class JimengAdapter(BaseProviderAdapter):
    """Submits and polls 即梦 video tasks through the volcengine ``VisualService``.

    The key may be given as ``"<ak>:<sk>"`` when no separate secret is set.
    """

    provider_id = "jimeng"
    max_clip_seconds = 10

    def __init__(self, *args: Any, api_secret: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._api_secret = api_secret
        self._visual_service: Optional[VisualService] = None
        if not self._api_secret and self._api_key and ":" in self._api_key:
            ak, sk = self._api_key.split(":", 1)
            self._api_key, self._api_secret = ak, sk

    def ensure_ready(self) -> None:
        if self._use_mock:
            return
        if not self._api_key or not self._api_secret:
            raise ConfigurationError("Jimeng access key or secret is missing; cannot call real service.")

    def _submit(
        self, strategy: GenerationStrategy, request: GenerationRequest, context: SubmitContext
    ) -> SubmitOutcome:
        if isinstance(strategy, TemplateStrategy):
            raise ProviderRejected("Jimeng does not support template videos.", strategy_specific=True)

        form = self._build_video_form(request, context)
        try:
            response = self._ensure_visual_success(self._get_visual_service().cv_sync2async_submit_task(form))
        except Exception as exc:  # the SDK raises bare Exception with the HTTP body
            if self._is_rate_limit(exc):
                return RateLimit(
                    retry_after_seconds=self._default_retry_after,
                    continuation_seed=context.continuation_seed or context.seed_image_url,
                    message=str(exc),
                )
            raise ProviderRejected(f"jimeng submission failed: {exc}") from exc

        task_id = _extract_string(response, ("task_id", "TaskId"))
        if not task_id:
            raise ProviderRejected(f"Jimeng response missing task_id: {response}")
        # The handle carries the req_key because get_result must be queried with it.
        return Submission(job_id=f"{form['req_key']}:{task_id}", raw=response)

    def _poll(self, job_id: str) -> PollResult:
        req_key, _, task_id = job_id.rpartition(":")
        query_form = {"req_key": req_key or JIMENG_I2V_REQ_KEY, "task_id": task_id}
        try:
            result = self._ensure_visual_success(self._get_visual_service().cv_sync2async_get_result(query_form))
        except Exception as exc:  # the SDK raises bare Exception with the HTTP body
            raise TransientPollError(f"jimeng status check failed: {exc}") from exc

        status_text = _extract_string(result, ("status",))
        media_url = _extract_media_url(result)
        status = map_jimeng_status(status_text, media_url is not None)
        completed = status is PollStatus.COMPLETED
        return PollResult(
            status=status,
            result_url=media_url if completed else None,
            cover_url=_extract_string(result, ("cover_url", "image_url")) if completed else None,
            last_frame_url=_extract_string(result, ("last_frame_url", "tail_frame_url")) if completed else None,
            message=_extract_string(result, ("message", "error_message")) or status_text,
            raw=result,
        )

    def _build_video_form(self, request: GenerationRequest, context: SubmitContext) -> Dict[str, Any]:
        text = context.prompt_text(request)
        prompt = f"{request.scene_prompt} | {text}" if request.scene_prompt else text
        duration = context.segment.estimated_duration_seconds if context.segment else self.max_clip_seconds
        form: Dict[str, Any] = {
            "prompt": prompt,
            "seed": -1,
            "frames": select_frame_count(duration),
        }
        seed_image = context.continuation_seed or context.seed_image_url
        if seed_image:
            form["req_key"] = JIMENG_I2V_REQ_KEY
            form["image_urls"] = [seed_image]
        else:
            form["req_key"] = JIMENG_T2V_REQ_KEY
            form["aspect_ratio"] = JIMENG_ASPECT_RATIOS.get(request.aspect_ratio, "16:9")
        return form

    def _get_visual_service(self) -> VisualService:
        if self._visual_service is None:
            service = VisualService()
            if self._api_key:
                service.set_ak(self._api_key)
            if self._api_secret:
                service.set_sk(self._api_secret)
            if self._api_url:
                parsed = urlparse(self._api_url)
                if parsed.scheme:
                    service.set_scheme(parsed.scheme)
                host = parsed.netloc or parsed.path
                if host:
                    service.set_host(host)
            if self._timeout:
                service.set_connection_timeout(self._timeout)
                service.set_socket_timeout(self._timeout)
            self._visual_service = service
        return self._visual_service

    @staticmethod
    def _is_rate_limit(exc: Exception) -> bool:
        if isinstance(exc, JimengServiceError) and exc.code in JIMENG_RATE_LIMIT_CODES:
            return True
        text = str(exc)
        return "API Limit" in text or any(code in text for code in JIMENG_RATE_LIMIT_CODES)

    @staticmethod
    def _ensure_visual_success(response: Dict[str, Any]) -> Dict[str, Any]:
        if isinstance(response, dict):
            code = response.get("code") if response.get("code") is not None else response.get("Code")
            if code is not None and str(code) not in JIMENG_OK_CODES:
                message = response.get("message") or response.get("Message") or "Unknown error"
                raise JimengServiceError(str(code), str(message))
            metadata = response.get("ResponseMetadata") or response.get("response_metadata")
            if isinstance(metadata, dict):
                error = metadata.get("Error") or metadata.get("error")
                if isinstance(error, dict):
                    err_code = str(error.get("Code") or error.get("code") or "").strip()
                    if err_code and err_code.lower() not in {"0", "ok", "success"}:
                        raise JimengServiceError(err_code, str(error.get("Message") or error.get("message") or ""))
        return response


def _candidate_containers(response: Any) -> List[dict]:
    containers: List[dict] = []
    seen: set[int] = set()
    stack: List[Any] = [response]
    while stack:
        item = stack.pop()
        if isinstance(item, dict):
            identifier = id(item)
            if identifier in seen:
                continue
            seen.add(identifier)
            containers.append(item)
            stack.extend(item.values())
        elif isinstance(item, list):
            stack.extend(item)
    return containers


def _extract_string(response: Any, candidates: tuple[str, ...]) -> Optional[str]:
    lowered = {candidate.replace("_", "").lower() for candidate in candidates}
    for container in _candidate_containers(response):
        for key, value in container.items():
            if isinstance(value, str) and value and key.replace("_", "").lower() in lowered:
                return value
    return None


def _extract_media_url(response: Any) -> Optional[str]:
    for container in _candidate_containers(response):
        for key, value in container.items():
            lowered = key.lower()
            if isinstance(value, str) and value and lowered == "video_url":
                return value
            if isinstance(value, list) and value and lowered in {"video_urls", "urls"}:
                first = next((item for item in value if isinstance(item, str) and item), None)
                if first:
                    return first
    return None


__all__ = [
    "JIMENG_I2V_REQ_KEY",
    "JIMENG_T2V_REQ_KEY",
    "JimengAdapter",
    "JimengServiceError",
    "map_jimeng_status",
    "select_frame_count",
]
