"""JoggAI avatar-video adapter."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..errors import ProviderRejected, TransientPollError
from ..types import (
    AvatarPairStrategy,
    AvatarSoloStrategy,
    GenerationRequest,
    GenerationStrategy,
    PollResult,
    PollStatus,
    RateLimit,
    SpeakerProfile,
    Submission,
    SubmitContext,
    SubmitOutcome,
    TemplateInfo,
    TemplateStrategy,
)
from .base import BaseProviderAdapter, rejection_from_response

JOGGAI_API_URL = "https://api.jogg.ai/v2"
DEFAULT_BACKGROUND_COLOR = "#1a1a2e"
FULL_SCREEN_STYLE = 1

_COMPLETED = {"completed", "success", "succeeded", "done", "finished"}
_FAILED = {"failed", "fail", "error", "expired", "deleted"}


def map_joggai_status(raw_status: Any, video_url: Optional[str]) -> PollStatus:
    """Map JoggAI's status vocabulary onto :class:`PollStatus`.

    A "completed" report without a video URL is still processing; anything
    unrecognised (pending, processing, rendering, new values) keeps polling.
    """
    status = str(raw_status or "").strip().lower()
    if status in _COMPLETED:
        return PollStatus.COMPLETED if video_url else PollStatus.PROCESSING
    if status in _FAILED:
        return PollStatus.FAILED
    return PollStatus.PROCESSING


class JoggAiAdapter(BaseProviderAdapter):
    """Creates talking-avatar videos via JoggAI's v2 API."""

    provider_id = "joggai"
    default_api_url = JOGGAI_API_URL

    def _headers(self) -> Dict[str, str]:
        return {"x-api-key": self._api_key or "", "Content-Type": "application/json"}

    def _list_templates(self) -> List[TemplateInfo]:
        response = self._send("GET", "/templates")
        body = self._json_body(response)
        if response.status_code >= 400 or body.get("code") != 0:
            raise rejection_from_response(self.provider_id, response, body)
        data = body.get("data")
        raw_templates = data.get("templates") if isinstance(data, dict) else data
        templates: List[TemplateInfo] = []
        for item in raw_templates or []:
            if not isinstance(item, dict):
                continue
            variables = tuple(
                str(var.get("name"))
                for var in item.get("variables") or []
                if isinstance(var, dict) and var.get("name")
            )
            templates.append(
                TemplateInfo(
                    template_id=str(item.get("template_id") or item.get("id")),
                    name=str(item.get("name") or ""),
                    variables=variables,
                )
            )
        return templates

    def _submit(
        self, strategy: GenerationStrategy, request: GenerationRequest, context: SubmitContext
    ) -> SubmitOutcome:
        if isinstance(strategy, TemplateStrategy):
            endpoint = "/create_video_with_template"
            payload = self._build_template_payload(strategy, request)
        else:
            endpoint = "/create_video_from_avatar"
            payload = self._build_avatar_payload(strategy, request, context)

        response = self._send("POST", endpoint, payload=payload)
        body = self._json_body(response)
        message = body.get("msg") or body.get("message") or ""

        if response.status_code == 429 or body.get("code") == 429 or self._mentions_rate_limit(message):
            return RateLimit(
                retry_after_seconds=self._retry_after(response, body),
                message=message or "JoggAI rate limit reached",
                raw=body,
            )

        if response.status_code >= 400 or body.get("code") != 0:
            template_problem = isinstance(strategy, TemplateStrategy) and (
                response.status_code in (404, 405) or self._mentions(message, ("template",))
            )
            raise rejection_from_response(
                self.provider_id, response, body, strategy_specific=template_problem
            )

        data = body.get("data") or {}
        video_id = data.get("video_id") if isinstance(data, dict) else None
        if not video_id:
            raise ProviderRejected(f"JoggAI response missing video_id: {body}")
        return Submission(job_id=str(video_id), raw=body)

    def _poll(self, job_id: str) -> PollResult:
        response = self._send("GET", f"/avatar_video/{job_id}")
        body = self._json_body(response)
        if response.status_code >= 400 or body.get("code") != 0:
            raise TransientPollError(f"JoggAI status check failed: {body.get('msg') or response.status_code}")
        data = body.get("data") or {}
        video_url = data.get("video_url") or None
        status = map_joggai_status(data.get("status"), video_url)
        return PollResult(
            status=status,
            result_url=video_url if status is PollStatus.COMPLETED else None,
            cover_url=(data.get("cover_url") or None) if status is PollStatus.COMPLETED else None,
            message=data.get("status"),
            raw=body,
        )

    def _build_avatar_payload(
        self, strategy: GenerationStrategy, request: GenerationRequest, context: SubmitContext
    ) -> Dict[str, Any]:
        # A pair is presented by speaker A reading the labelled script.
        presenter: SpeakerProfile
        if isinstance(strategy, AvatarPairStrategy):
            presenter = strategy.speaker_a
            script = request.script() if context.segment is None else context.segment.text
        elif isinstance(strategy, AvatarSoloStrategy):
            presenter = strategy.speaker
            script = context.prompt_text(request)
        else:  # pragma: no cover - guarded by _submit
            raise TypeError(f"Unsupported strategy for avatar payload: {strategy!r}")

        payload: Dict[str, Any] = {
            "avatar": {
                "avatar_id": _avatar_id(presenter.avatar_id),
                "avatar_type": presenter.avatar_type,
            },
            "voice": {
                "type": "script",
                "script": script,
                "voice_id": presenter.voice_id,
            },
            "aspect_ratio": request.aspect_ratio,
            "screen_style": FULL_SCREEN_STYLE,
            "caption": request.captions,
            "video_background": {"type": "color", "value": DEFAULT_BACKGROUND_COLOR},
        }
        if request.title:
            payload["video_name"] = request.title
        return payload

    @staticmethod
    def _build_template_payload(strategy: TemplateStrategy, request: GenerationRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "template_id": _avatar_id(strategy.template_id),
            "aspect_ratio": request.aspect_ratio,
            "caption": request.captions,
            "variables": [
                {"type": "text", "name": name, "properties": {"content": value}}
                for name, value in strategy.variable_bindings
            ],
        }
        speakers = [profile for profile in request.speakers if profile.is_configured]
        if speakers:
            payload["avatar_id"] = _avatar_id(speakers[0].avatar_id)
            payload["avatar_type"] = speakers[0].avatar_type
            payload["voice_id"] = speakers[0].voice_id
        if request.title:
            payload["video_name"] = request.title
        return payload


def _avatar_id(value: Optional[str]) -> Any:
    """JoggAI expects numeric ids for public avatars and templates."""
    if value is None:
        return None
    text = str(value).strip()
    return int(text) if text.isdigit() else text


__all__ = ["JOGGAI_API_URL", "JoggAiAdapter", "map_joggai_status"]
