"""Error taxonomy shared by adapters, the orchestrator and the job store."""

from __future__ import annotations

ERROR_KIND_CONFIGURATION = "configuration"
ERROR_KIND_PROVIDER_REJECTED = "provider_rejected"
ERROR_KIND_RATE_LIMITED = "rate_limited"
ERROR_KIND_TRANSIENT = "transient"
ERROR_KIND_PROVIDER_FAILED = "provider_failed"


class PodvgenError(RuntimeError):
    """Base class for every error raised by the package."""

    error_kind = "unknown"


class ConfigurationError(PodvgenError, ValueError):
    """Missing credentials or speaker selection; the job is never submitted."""

    error_kind = ERROR_KIND_CONFIGURATION


class ProviderRejected(PodvgenError):
    """The provider refused a submission (4xx-equivalent).

    ``strategy_specific`` marks rejections caused by the chosen strategy
    itself (for example a template the provider cannot render), which allows
    the orchestrator to fall back to an avatar strategy once.
    """

    error_kind = ERROR_KIND_PROVIDER_REJECTED

    def __init__(self, message: str, *, strategy_specific: bool = False, status_code: int | None = None) -> None:
        super().__init__(message)
        self.strategy_specific = strategy_specific
        self.status_code = status_code


class TransientPollError(PodvgenError):
    """Network blip or malformed status response while polling."""

    error_kind = ERROR_KIND_TRANSIENT


class ProviderFailed(PodvgenError):
    """The provider reported that generation failed."""

    error_kind = ERROR_KIND_PROVIDER_FAILED


class JobStoreError(PodvgenError, ValueError):
    """The persisted job record could not be decoded."""


__all__ = [
    "ERROR_KIND_CONFIGURATION",
    "ERROR_KIND_PROVIDER_FAILED",
    "ERROR_KIND_PROVIDER_REJECTED",
    "ERROR_KIND_RATE_LIMITED",
    "ERROR_KIND_TRANSIENT",
    "ConfigurationError",
    "JobStoreError",
    "PodvgenError",
    "ProviderFailed",
    "ProviderRejected",
    "TransientPollError",
]
