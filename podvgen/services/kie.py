"""KIE (Runway) text/image-to-video adapter."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ..errors import ProviderRejected, TransientPollError
from ..segments import estimate_duration
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
from .base import BaseProviderAdapter, rejection_from_response

KIE_API_URL = "https://api.kie.ai"
KIE_OK_CODE = 200
KIE_RATE_LIMIT_CODE = 429
KIE_QUALITY = "720p"
KIE_ASPECT_RATIOS = {"landscape": "16:9", "portrait": "9:16", "square": "1:1"}


def map_kie_state(raw_state: Any, video_url: Optional[str]) -> PollStatus:
    """success (with a URL) -> Completed, fail -> Failed, anything else keeps polling."""
    state = str(raw_state or "").strip().lower()
    if state == "success":
        return PollStatus.COMPLETED if video_url else PollStatus.PROCESSING
    if state in {"fail", "failed", "error"}:
        return PollStatus.FAILED
    return PollStatus.PROCESSING


def clip_duration(text: str) -> int:
    """Runway renders 5 or 10 second clips."""
    return 5 if estimate_duration(text) <= 5 else 10


class KieRunwayAdapter(BaseProviderAdapter):
    """Generates b-roll style clips from the dialogue text."""

    provider_id = "kie"
    max_clip_seconds = 10
    default_api_url = KIE_API_URL

    def _submit(
        self, strategy: GenerationStrategy, request: GenerationRequest, context: SubmitContext
    ) -> SubmitOutcome:
        if isinstance(strategy, TemplateStrategy):
            raise ProviderRejected("KIE does not support template videos.", strategy_specific=True)

        text = context.prompt_text(request)
        prompt = f"{request.scene_prompt}. {text}" if request.scene_prompt else text
        payload: Dict[str, Any] = {
            "prompt": prompt,
            "duration": clip_duration(text),
            "quality": KIE_QUALITY,
            "aspectRatio": KIE_ASPECT_RATIOS.get(request.aspect_ratio, "16:9"),
            "waterMark": "",
        }
        image_url = context.continuation_seed or context.seed_image_url
        if image_url:
            payload["imageUrl"] = image_url

        response = self._send("POST", "/api/v1/runway/generate", payload=payload)
        body = self._json_body(response)
        code = body.get("code")

        if response.status_code == 429 or code == KIE_RATE_LIMIT_CODE:
            return RateLimit(
                retry_after_seconds=self._retry_after(response, body),
                continuation_seed=image_url,
                message=body.get("msg") or "KIE rate limit reached",
                raw=body,
            )
        if response.status_code >= 400 or code != KIE_OK_CODE:
            raise rejection_from_response(self.provider_id, response, body)

        data = body.get("data") or {}
        task_id = data.get("taskId") if isinstance(data, dict) else None
        if not task_id:
            raise ProviderRejected(f"KIE response missing taskId: {body}")
        return Submission(job_id=str(task_id), raw=body)

    def _poll(self, job_id: str) -> PollResult:
        response = self._send("GET", "/api/v1/runway/record-detail", params={"taskId": job_id})
        body = self._json_body(response)
        if response.status_code >= 400 or body.get("code") != KIE_OK_CODE:
            raise TransientPollError(f"KIE status check failed: {body.get('msg') or response.status_code}")

        data = body.get("data") or {}
        video_info = data.get("videoInfo") or {}
        video_url = video_info.get("videoUrl") or None
        frame_url = video_info.get("imageUrl") or None
        status = map_kie_state(data.get("state"), video_url)
        completed = status is PollStatus.COMPLETED
        return PollResult(
            status=status,
            result_url=video_url if completed else None,
            cover_url=frame_url if completed else None,
            last_frame_url=frame_url if completed else None,
            message=data.get("failMsg") or data.get("state"),
            raw=body,
        )


__all__ = ["KIE_API_URL", "KieRunwayAdapter", "clip_duration", "map_kie_state"]
