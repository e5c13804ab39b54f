"""Tavus replica-video adapter."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ..errors import ProviderRejected, TransientPollError
from ..types import (
    AvatarPairStrategy,
    AvatarSoloStrategy,
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

TAVUS_API_URL = "https://tavusapi.com/v2"


def map_tavus_status(raw_status: Any, video_url: Optional[str]) -> PollStatus:
    """ready -> Completed, error/deleted -> Failed, everything else keeps polling."""
    status = str(raw_status or "").strip().lower()
    if status == "ready":
        return PollStatus.COMPLETED if video_url else PollStatus.PROCESSING
    if status in {"error", "deleted", "failed"}:
        return PollStatus.FAILED
    return PollStatus.PROCESSING


class TavusAdapter(BaseProviderAdapter):
    """Renders a replica reading the script. Templates are not supported."""

    provider_id = "tavus"
    default_api_url = TAVUS_API_URL

    def _headers(self) -> Dict[str, str]:
        return {"x-api-key": self._api_key or "", "Content-Type": "application/json"}

    def _submit(
        self, strategy: GenerationStrategy, request: GenerationRequest, context: SubmitContext
    ) -> SubmitOutcome:
        if isinstance(strategy, TemplateStrategy):
            raise ProviderRejected("Tavus does not support template videos.", strategy_specific=True)
        if isinstance(strategy, AvatarPairStrategy):
            replica = strategy.speaker_a
            script = request.script() if context.segment is None else context.segment.text
        elif isinstance(strategy, AvatarSoloStrategy):
            replica = strategy.speaker
            script = context.prompt_text(request)
        else:  # pragma: no cover - exhaustive over GenerationStrategy
            raise TypeError(f"Unsupported strategy: {strategy!r}")

        payload: Dict[str, Any] = {
            "replica_id": replica.avatar_id,
            "script": script,
            "video_name": request.title or "Podcast video",
        }
        background = context.continuation_seed or context.seed_image_url
        if background:
            payload["background_url"] = background

        response = self._send("POST", "/videos", payload=payload)
        body = self._json_body(response)
        message = body.get("message") or body.get("error") or ""

        if response.status_code == 429 or self._mentions_rate_limit(message):
            return RateLimit(
                retry_after_seconds=self._retry_after(response, body),
                message=message or "Tavus rate limit reached",
                raw=body,
            )
        if response.status_code >= 400:
            raise rejection_from_response(self.provider_id, response, body)

        video_id = body.get("video_id")
        if not video_id:
            raise ProviderRejected(f"Tavus response missing video_id: {body}")
        return Submission(job_id=str(video_id), raw=body)

    def _poll(self, job_id: str) -> PollResult:
        response = self._send("GET", f"/videos/{job_id}", params={"verbose": "true"})
        body = self._json_body(response)
        if response.status_code >= 400:
            raise TransientPollError(f"Tavus status check failed [{response.status_code}]")
        video_url = body.get("download_url") or body.get("hosted_url") or body.get("stream_url") or None
        status = map_tavus_status(body.get("status"), video_url)
        completed = status is PollStatus.COMPLETED
        return PollResult(
            status=status,
            result_url=video_url if completed else None,
            cover_url=(body.get("still_image_thumbnail_url") or None) if completed else None,
            message=body.get("status_details") or body.get("status"),
            raw=body,
        )


__all__ = ["TAVUS_API_URL", "TavusAdapter", "map_tavus_status"]
