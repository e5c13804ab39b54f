"""Replicate image-to-video adapter (flux-schnell still + stable-video-diffusion)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from ..errors import ProviderRejected, TransientPollError
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

REPLICATE_API_URL = "https://api.replicate.com/v1"
BASE_IMAGE_MODEL = "black-forest-labs/flux-schnell"
STABLE_VIDEO_DIFFUSION_VERSION = "3f0457e4619daac51203dedb472816fd4af51f3149fa7a9e0b5ffcf1b8172438"
FLUX_ASPECT_RATIOS = {"landscape": "16:9", "portrait": "9:16", "square": "1:1"}
DEFAULT_SETTING = "Professional podcast studio with soft lighting"


def map_replicate_status(raw_status: Any) -> PollStatus:
    """succeeded -> Completed, failed/canceled -> Failed, everything else keeps polling."""
    status = str(raw_status or "").strip().lower()
    if status == "succeeded":
        return PollStatus.COMPLETED
    if status in {"failed", "canceled", "cancelled"}:
        return PollStatus.FAILED
    return PollStatus.PROCESSING


def first_output_url(output: Any) -> Optional[str]:
    """Predictions return either a URL or a list of URLs."""
    if isinstance(output, str):
        return output or None
    if isinstance(output, list):
        return next((item for item in output if isinstance(item, str) and item), None)
    return None


def build_scene_prompt(request: GenerationRequest, text: str) -> str:
    parts: List[str] = [f"Setting: {request.scene_prompt or DEFAULT_SETTING}"]
    names = [profile.label for profile in request.speakers][:2]
    if names:
        parts.append("Podcast hosts in conversation: " + ", ".join(names))
    else:
        parts.append("Two podcast hosts sitting at microphones, engaged in discussion")
    topic = request.title or text
    if topic:
        parts.append(f"Topic: {topic[:300]}")
    parts.append("Style: Cinematic, high quality, professional lighting, shallow depth of field")
    parts.append("Camera: Medium shot, eye level, steady")
    return ". ".join(parts)


class ReplicateAdapter(BaseProviderAdapter):
    """Two-step generation: a still from flux-schnell animated by stable-video-diffusion.

    When the video step is rate limited the already generated still is handed
    back as the continuation seed so the retry skips the image step.
    """

    provider_id = "replicate"
    default_api_url = REPLICATE_API_URL

    def __init__(self, *args: Any, video_version: str = STABLE_VIDEO_DIFFUSION_VERSION, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._video_version = video_version

    def _submit(
        self, strategy: GenerationStrategy, request: GenerationRequest, context: SubmitContext
    ) -> SubmitOutcome:
        if isinstance(strategy, TemplateStrategy):
            raise ProviderRejected("Replicate does not support template videos.", strategy_specific=True)

        base_image = context.continuation_seed or context.seed_image_url
        if not base_image:
            response = self._send(
                "POST",
                f"/models/{BASE_IMAGE_MODEL}/predictions",
                payload={
                    "input": {
                        "prompt": build_scene_prompt(request, context.prompt_text(request)),
                        "go_fast": True,
                        "megapixels": "1",
                        "num_outputs": 1,
                        "aspect_ratio": FLUX_ASPECT_RATIOS.get(request.aspect_ratio, "16:9"),
                        "output_format": "webp",
                        "output_quality": 90,
                        "num_inference_steps": 4,
                    }
                },
                headers={"Prefer": "wait"},
            )
            body = self._json_body(response)
            limited = self._rate_limit_or_raise(response, body, continuation_seed=None)
            if limited is not None:
                return limited
            base_image = first_output_url(body.get("output"))
            if not base_image:
                raise ProviderRejected(f"Replicate did not return a base image: {body.get('error') or body}")
            self._log(f"replicate base image: {base_image}")

        response = self._send(
            "POST",
            "/predictions",
            payload={
                "version": self._video_version,
                "input": {
                    "input_image": base_image,
                    "motion_bucket_id": 127,
                    "fps": 6,
                    "cond_aug": 0.02,
                    "decoding_t": 7,
                    "video_length": "14_frames_with_svd",
                    "sizing_strategy": "maintain_aspect_ratio",
                    "frames_per_second": 6,
                },
            },
        )
        body = self._json_body(response)
        limited = self._rate_limit_or_raise(response, body, continuation_seed=base_image)
        if limited is not None:
            return limited
        prediction_id = body.get("id")
        if not prediction_id:
            raise ProviderRejected(f"Replicate response missing prediction id: {body}")
        return Submission(job_id=str(prediction_id), raw=body)

    def _poll(self, job_id: str) -> PollResult:
        response = self._send("GET", f"/predictions/{job_id}")
        body = self._json_body(response)
        if response.status_code >= 400:
            raise TransientPollError(f"Replicate status check failed [{response.status_code}]")
        status = map_replicate_status(body.get("status"))
        video_url = first_output_url(body.get("output"))
        if status is PollStatus.COMPLETED and not video_url:
            status = PollStatus.PROCESSING
        completed = status is PollStatus.COMPLETED
        input_image = (body.get("input") or {}).get("input_image")
        return PollResult(
            status=status,
            result_url=video_url if completed else None,
            cover_url=input_image if completed else None,
            message=body.get("error") or body.get("status"),
            raw=body,
        )

    def _rate_limit_or_raise(
        self, response: requests.Response, body: Dict[str, Any], *, continuation_seed: Optional[str]
    ) -> Optional[RateLimit]:
        if response.status_code < 400 and not body.get("error"):
            return None
        message = str(body.get("detail") or body.get("error") or body.get("title") or "")
        if response.status_code == 402 or self._mentions_billing(message):
            raise rejection_from_response(
                self.provider_id, response, body, f"Replicate credit exhausted: {message}"
            )
        if response.status_code == 429 or self._mentions_rate_limit(message):
            return RateLimit(
                retry_after_seconds=self._retry_after(response, body),
                continuation_seed=continuation_seed,
                message=message or "Replicate rate limit reached",
                raw=body,
            )
        raise rejection_from_response(self.provider_id, response, body, message or None)


__all__ = [
    "REPLICATE_API_URL",
    "ReplicateAdapter",
    "build_scene_prompt",
    "first_output_url",
    "map_replicate_status",
]
