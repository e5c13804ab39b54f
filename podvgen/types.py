"""Core data models used across the PodcastVideoGenerator orchestration layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union

from .errors import ConfigurationError, JobStoreError

RECORD_VERSION = 1
ASPECT_RATIOS = ("landscape", "portrait", "square")


class JobStatus(str, Enum):
    """Lifecycle states of a :class:`VideoJob`."""

    DRAFT = "draft"
    SUBMITTING = "submitting"
    PROCESSING = "processing"
    RATE_LIMITED = "rate_limited"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class PollStatus(str, Enum):
    """Normalised provider status returned by every adapter."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class DialogueLine:
    """A single spoken line."""

    speaker_id: str
    text: str


@dataclass(frozen=True, slots=True)
class SpeakerProfile:
    """Avatar and voice selection for one speaker."""

    speaker_id: str
    avatar_id: Optional[str] = None
    voice_id: Optional[str] = None
    avatar_type: int = 0
    image_url: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.avatar_id) and bool(self.voice_id)

    @property
    def label(self) -> str:
        return self.display_name or self.speaker_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "speaker_id": self.speaker_id,
            "avatar_id": self.avatar_id,
            "voice_id": self.voice_id,
            "avatar_type": self.avatar_type,
            "image_url": self.image_url,
            "display_name": self.display_name,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SpeakerProfile":
        return cls(
            speaker_id=str(data["speaker_id"]),
            avatar_id=_optional_str(data.get("avatar_id")),
            voice_id=_optional_str(data.get("voice_id")),
            avatar_type=int(data.get("avatar_type") or 0),
            image_url=_optional_str(data.get("image_url")),
            display_name=_optional_str(data.get("display_name")),
        )


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """Immutable description of the video the caller wants."""

    dialogue: Tuple[DialogueLine, ...]
    aspect_ratio: str = "landscape"
    captions: bool = True
    speakers: Tuple[SpeakerProfile, ...] = ()
    template_id: Optional[str] = None
    template_variables: Tuple[Tuple[str, str], ...] = ()
    title: Optional[str] = None
    scene_prompt: Optional[str] = None
    seed_image_url: Optional[str] = None

    def __post_init__(self) -> None:
        # Accept lists from callers while keeping the instance hashable.
        object.__setattr__(self, "dialogue", tuple(self.dialogue))
        object.__setattr__(self, "speakers", tuple(self.speakers))
        object.__setattr__(self, "template_variables", tuple(tuple(item) for item in self.template_variables))
        if not any(line.text.strip() for line in self.dialogue):
            raise ConfigurationError("Generation request needs at least one non-empty dialogue line.")
        if self.aspect_ratio not in ASPECT_RATIOS:
            raise ConfigurationError(f"Unsupported aspect ratio: {self.aspect_ratio}")

    def speaker(self, speaker_id: str) -> Optional[SpeakerProfile]:
        for profile in self.speakers:
            if profile.speaker_id == speaker_id:
                return profile
        return None

    def speaker_order(self) -> List[str]:
        """Speaker ids in order of first appearance in the dialogue."""
        seen: List[str] = []
        for line in self.dialogue:
            if line.speaker_id not in seen:
                seen.append(line.speaker_id)
        return seen

    def script(self) -> str:
        """Full script with ``Name: text`` labels, one paragraph per line."""
        parts = []
        for line in self.dialogue:
            if not line.text.strip():
                continue
            profile = self.speaker(line.speaker_id)
            name = profile.label if profile else line.speaker_id
            parts.append(f"{name}: {line.text.strip()}")
        return "\n\n".join(parts)

    def plain_text(self) -> str:
        """Spoken text without speaker labels."""
        return " ".join(line.text.strip() for line in self.dialogue if line.text.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dialogue": [{"speaker_id": line.speaker_id, "text": line.text} for line in self.dialogue],
            "aspect_ratio": self.aspect_ratio,
            "captions": self.captions,
            "speakers": [profile.to_dict() for profile in self.speakers],
            "template_id": self.template_id,
            "template_variables": [list(item) for item in self.template_variables],
            "title": self.title,
            "scene_prompt": self.scene_prompt,
            "seed_image_url": self.seed_image_url,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GenerationRequest":
        return cls(
            dialogue=tuple(
                DialogueLine(speaker_id=str(item["speaker_id"]), text=str(item["text"]))
                for item in data.get("dialogue") or []
            ),
            aspect_ratio=data.get("aspect_ratio") or "landscape",
            captions=bool(data.get("captions", True)),
            speakers=tuple(SpeakerProfile.from_dict(item) for item in data.get("speakers") or []),
            template_id=_optional_str(data.get("template_id")),
            template_variables=tuple(
                (str(name), str(value)) for name, value in data.get("template_variables") or []
            ),
            title=_optional_str(data.get("title")),
            scene_prompt=_optional_str(data.get("scene_prompt")),
            seed_image_url=_optional_str(data.get("seed_image_url")),
        )


@dataclass(frozen=True, slots=True)
class TemplateInfo:
    """A provider-side video template."""

    template_id: str
    name: str = ""
    variables: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TemplateStrategy:
    kind: ClassVar[str] = "template"

    template_id: str
    variable_bindings: Tuple[Tuple[str, str], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "template_id": self.template_id,
            "variable_bindings": [list(item) for item in self.variable_bindings],
        }


@dataclass(frozen=True, slots=True)
class AvatarPairStrategy:
    kind: ClassVar[str] = "avatar_pair"

    speaker_a: SpeakerProfile
    speaker_b: SpeakerProfile

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "speaker_a": self.speaker_a.to_dict(), "speaker_b": self.speaker_b.to_dict()}


@dataclass(frozen=True, slots=True)
class AvatarSoloStrategy:
    kind: ClassVar[str] = "avatar_solo"

    speaker: SpeakerProfile

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "speaker": self.speaker.to_dict()}


GenerationStrategy = Union[TemplateStrategy, AvatarPairStrategy, AvatarSoloStrategy]


def strategy_from_dict(data: Mapping[str, Any]) -> GenerationStrategy:
    """Rebuild a strategy from its tagged dictionary form."""
    kind = data.get("kind")
    if kind == TemplateStrategy.kind:
        return TemplateStrategy(
            template_id=str(data["template_id"]),
            variable_bindings=tuple((str(k), str(v)) for k, v in data.get("variable_bindings") or []),
        )
    if kind == AvatarPairStrategy.kind:
        return AvatarPairStrategy(
            speaker_a=SpeakerProfile.from_dict(data["speaker_a"]),
            speaker_b=SpeakerProfile.from_dict(data["speaker_b"]),
        )
    if kind == AvatarSoloStrategy.kind:
        return AvatarSoloStrategy(speaker=SpeakerProfile.from_dict(data["speaker"]))
    raise JobStoreError(f"Unknown strategy kind: {kind!r}")


@dataclass(frozen=True, slots=True)
class DialogueSegment:
    """A bounded chunk of dialogue generated as one clip."""

    id: str
    text: str
    estimated_duration_seconds: int


@dataclass(frozen=True, slots=True)
class PollResult:
    """Normalised status payload produced by a provider adapter."""

    status: PollStatus
    result_url: Optional[str] = None
    cover_url: Optional[str] = None
    last_frame_url: Optional[str] = None
    message: Optional[str] = None
    raw: Any = None


@dataclass(frozen=True, slots=True)
class Submission:
    """Successful submission carrying the provider-issued handle."""

    job_id: str
    raw: Any = None


@dataclass(frozen=True, slots=True)
class RateLimit:
    """The provider asked us to come back later."""

    retry_after_seconds: float
    continuation_seed: Optional[str] = None
    message: Optional[str] = None
    raw: Any = None


SubmitOutcome = Union[Submission, RateLimit]


@dataclass(frozen=True, slots=True)
class SubmitContext:
    """Per-attempt inputs that are not part of the immutable request."""

    seed_image_url: Optional[str] = None
    continuation_seed: Optional[str] = None
    segment: Optional[DialogueSegment] = None

    def prompt_text(self, request: GenerationRequest) -> str:
        if self.segment is not None:
            return self.segment.text
        return request.plain_text()


@dataclass(slots=True)
class VideoJob:
    """The single unit of orchestration state, owned by the orchestrator."""

    status: JobStatus
    strategy: GenerationStrategy
    provider_id: str
    request: GenerationRequest
    created_at: str
    job_id: Optional[str] = None
    result_url: Optional[str] = None
    cover_url: Optional[str] = None
    retry_after_seconds: Optional[float] = None
    continuation_seed_url: Optional[str] = None
    last_polled_at: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    rate_limit_attempts: int = 0
    poll_count: int = 0
    transient_errors: int = 0
    stuck: bool = False
    fallback_used: bool = False
    segments: List[DialogueSegment] = field(default_factory=list)
    segment_index: int = 0
    segment_urls: List[str] = field(default_factory=list)
    seed_image_url: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def current_segment(self) -> Optional[DialogueSegment]:
        if not self.segments or self.segment_index >= len(self.segments):
            return None
        return self.segments[self.segment_index]

    @property
    def has_more_segments(self) -> bool:
        return bool(self.segments) and self.segment_index < len(self.segments) - 1

    def snapshot(self) -> "VideoJob":
        """Detached copy handed to observers."""
        return VideoJob(
            status=self.status,
            strategy=self.strategy,
            provider_id=self.provider_id,
            request=self.request,
            created_at=self.created_at,
            job_id=self.job_id,
            result_url=self.result_url,
            cover_url=self.cover_url,
            retry_after_seconds=self.retry_after_seconds,
            continuation_seed_url=self.continuation_seed_url,
            last_polled_at=self.last_polled_at,
            error_kind=self.error_kind,
            error_message=self.error_message,
            rate_limit_attempts=self.rate_limit_attempts,
            poll_count=self.poll_count,
            transient_errors=self.transient_errors,
            stuck=self.stuck,
            fallback_used=self.fallback_used,
            segments=list(self.segments),
            segment_index=self.segment_index,
            segment_urls=list(self.segment_urls),
            seed_image_url=self.seed_image_url,
        )

    def to_record(self) -> Dict[str, Any]:
        """Flat persisted form written by the job store."""
        return {
            "version": RECORD_VERSION,
            "job_id": self.job_id,
            "provider_id": self.provider_id,
            "status": self.status.value,
            "strategy": self.strategy.to_dict(),
            "result_url": self.result_url,
            "cover_url": self.cover_url,
            "retry_after_seconds": self.retry_after_seconds,
            "continuation_seed_url": self.continuation_seed_url,
            "created_at": self.created_at,
            "last_polled_at": self.last_polled_at,
            "request": self.request.to_dict(),
            "error_kind": self.error_kind,
            "error_message": self.error_message,
            "rate_limit_attempts": self.rate_limit_attempts,
            "poll_count": self.poll_count,
            "transient_errors": self.transient_errors,
            "fallback_used": self.fallback_used,
            "segments": [
                {"id": seg.id, "text": seg.text, "estimated_duration_seconds": seg.estimated_duration_seconds}
                for seg in self.segments
            ],
            "segment_index": self.segment_index,
            "segment_urls": list(self.segment_urls),
            "seed_image_url": self.seed_image_url,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "VideoJob":
        if not isinstance(record, Mapping):
            raise JobStoreError("Job record must be a JSON object.")
        try:
            status = JobStatus(record["status"])
            job = cls(
                status=status,
                strategy=strategy_from_dict(record["strategy"]),
                provider_id=str(record["provider_id"]),
                request=GenerationRequest.from_dict(record["request"]),
                created_at=str(record.get("created_at") or ""),
                job_id=_optional_str(record.get("job_id")),
                result_url=_optional_str(record.get("result_url")),
                cover_url=_optional_str(record.get("cover_url")),
                retry_after_seconds=_optional_float(record.get("retry_after_seconds")),
                continuation_seed_url=_optional_str(record.get("continuation_seed_url")),
                last_polled_at=_optional_str(record.get("last_polled_at")),
                error_kind=_optional_str(record.get("error_kind")),
                error_message=_optional_str(record.get("error_message")),
                rate_limit_attempts=int(record.get("rate_limit_attempts") or 0),
                poll_count=int(record.get("poll_count") or 0),
                transient_errors=int(record.get("transient_errors") or 0),
                fallback_used=bool(record.get("fallback_used")),
                segments=[
                    DialogueSegment(
                        id=str(item["id"]),
                        text=str(item["text"]),
                        estimated_duration_seconds=int(item["estimated_duration_seconds"]),
                    )
                    for item in record.get("segments") or []
                ],
                segment_index=int(record.get("segment_index") or 0),
                segment_urls=[str(url) for url in record.get("segment_urls") or []],
                seed_image_url=_optional_str(record.get("seed_image_url")),
            )
        except JobStoreError:
            raise
        except (KeyError, TypeError, ValueError) as exc:
            raise JobStoreError(f"Malformed job record: {exc}") from exc
        return job


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)
