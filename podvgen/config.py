"""Configuration containers and settings sources for PodcastVideoGenerator."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import ClassVar, Dict, Iterable, List, Mapping, Optional, Protocol

from .types import SpeakerProfile

PROVIDER_IDS = ("joggai", "tavus", "kie", "replicate", "jimeng")


class SettingsSource(Protocol):
    """Read-only key/value settings supplied by the surrounding application."""

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        ...


class DictSettings:
    """Settings backed by a plain mapping."""

    def __init__(self, values: Mapping[str, object] | None = None) -> None:
        self._values: Dict[str, str] = {
            str(key): str(value) for key, value in (values or {}).items() if value is not None
        }

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._values.get(key)
        return value if value else default


class EnvSettings:
    """Settings read from the environment as ``PODVGEN_<KEY>``."""

    def __init__(self, prefix: str = "PODVGEN_", environ: Mapping[str, str] | None = None) -> None:
        self._prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._environ.get(f"{self._prefix}{key.upper()}")
        return value if value else default


@dataclass(slots=True)
class GeneratorConfig:
    """Static configuration applied to every orchestrated job."""

    env_prefix: ClassVar[str] = "PODVGEN_"

    store_path: str = "runs/active_job.json"
    runs_dir: str = "runs"
    enable_mock_generation: bool = True
    verbose: bool = False
    default_provider: str = "joggai"
    poll_interval_sec: float = 10.0
    stuck_poll_ceiling: int = 60
    max_rate_limit_retries: int = 5
    default_retry_after_sec: float = 10.0
    request_timeout_sec: int = 60
    mock_polls_until_done: int = 2
    joggai_api_key: str | None = None
    joggai_api_url: str | None = None
    tavus_api_key: str | None = None
    tavus_api_url: str | None = None
    kie_api_key: str | None = None
    kie_api_url: str | None = None
    replicate_api_token: str | None = None
    replicate_api_url: str | None = None
    jimeng_api_key: str | None = None
    jimeng_api_secret: str | None = None
    jimeng_api_url: str | None = None

    @classmethod
    def from_env(cls) -> "GeneratorConfig":
        """Create a config object populated from environment variables."""
        prefix = cls.env_prefix
        return cls(
            store_path=os.getenv(f"{prefix}STORE_PATH", "runs/active_job.json"),
            runs_dir=os.getenv(f"{prefix}RUNS_DIR", "runs"),
            enable_mock_generation=os.getenv(f"{prefix}ENABLE_MOCKS", "true").lower() == "true",
            verbose=os.getenv(f"{prefix}VERBOSE", "false").lower() == "true",
            default_provider=os.getenv(f"{prefix}PROVIDER", "joggai"),
            poll_interval_sec=float(os.getenv(f"{prefix}POLL_INTERVAL_SEC", "10")),
            stuck_poll_ceiling=int(os.getenv(f"{prefix}STUCK_POLL_CEILING", "60")),
            max_rate_limit_retries=int(os.getenv(f"{prefix}MAX_RATE_LIMIT_RETRIES", "5")),
            default_retry_after_sec=float(os.getenv(f"{prefix}DEFAULT_RETRY_AFTER_SEC", "10")),
            request_timeout_sec=int(os.getenv(f"{prefix}REQUEST_TIMEOUT_SEC", "60")),
            mock_polls_until_done=int(os.getenv(f"{prefix}MOCK_POLLS_UNTIL_DONE", "2")),
            joggai_api_key=os.getenv("JOGGAI_API_KEY"),
            joggai_api_url=os.getenv("JOGGAI_API_URL"),
            tavus_api_key=os.getenv("TAVUS_API_KEY"),
            tavus_api_url=os.getenv("TAVUS_API_URL"),
            kie_api_key=os.getenv("KIE_API_KEY"),
            kie_api_url=os.getenv("KIE_API_URL"),
            replicate_api_token=os.getenv("REPLICATE_API_TOKEN"),
            replicate_api_url=os.getenv("REPLICATE_API_URL"),
            jimeng_api_key=os.getenv("JIMENG_API_KEY"),
            jimeng_api_secret=os.getenv("JIMENG_API_SECRET"),
            jimeng_api_url=os.getenv("JIMENG_API_URL"),
        )

    def with_settings(self, settings: SettingsSource) -> "GeneratorConfig":
        """Return a copy whose credentials are overridden by ``settings``."""
        values = {name: getattr(self, name) for name in self.__slots__}
        for name in (
            "joggai_api_key",
            "tavus_api_key",
            "kie_api_key",
            "replicate_api_token",
            "jimeng_api_key",
            "jimeng_api_secret",
        ):
            override = settings.get(name)
            if override:
                values[name] = override
        return GeneratorConfig(**values)


def speakers_from_settings(
    settings: SettingsSource,
    speaker_ids: Iterable[str],
    existing: Iterable[SpeakerProfile] = (),
) -> List[SpeakerProfile]:
    """Fill in speaker profiles that the request does not carry itself.

    Keys follow ``<speaker>_avatar``, ``<speaker>_avatar_type``,
    ``<speaker>_voice``, ``<speaker>_image`` and ``<speaker>_name``.
    """
    known = {profile.speaker_id: profile for profile in existing}
    profiles: List[SpeakerProfile] = []
    for speaker_id in speaker_ids:
        current = known.get(speaker_id)
        avatar_type_raw = settings.get(f"{speaker_id}_avatar_type")
        try:
            avatar_type = int(avatar_type_raw) if avatar_type_raw else 0
        except ValueError:
            avatar_type = 0
        profiles.append(
            SpeakerProfile(
                speaker_id=speaker_id,
                avatar_id=(current.avatar_id if current else None) or settings.get(f"{speaker_id}_avatar"),
                voice_id=(current.voice_id if current else None) or settings.get(f"{speaker_id}_voice"),
                avatar_type=current.avatar_type if current and current.avatar_id else avatar_type,
                image_url=(current.image_url if current else None) or settings.get(f"{speaker_id}_image"),
                display_name=(current.display_name if current else None) or settings.get(f"{speaker_id}_name"),
            )
        )
    return profiles
