"""Provider adapter contract and the shared HTTP/mock plumbing."""

from __future__ import annotations

import json
import re
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Protocol

import requests

from ..errors import ConfigurationError, ProviderRejected, TransientPollError
from ..types import (
    GenerationRequest,
    GenerationStrategy,
    PollResult,
    PollStatus,
    Submission,
    SubmitContext,
    SubmitOutcome,
    TemplateInfo,
)
from ..utils.files import sha256_hex

RATE_LIMIT_PATTERNS = ("rate limit", "rate-limit", "too many requests")
# Status codes quoted inside a message; ids such as 50429 do not match.
_STATUS_429 = re.compile(r"\b429\b")
BILLING_PATTERNS = ("payment", "billing", "credit", "subscription")
_STATUS_402 = re.compile(r"\b402\b")


class ProviderAdapter(Protocol):
    """What the orchestrator needs from every provider."""

    provider_id: str
    max_clip_seconds: Optional[float]
    poll_interval_sec: float

    def ensure_ready(self) -> None:
        ...

    def submit(
        self, strategy: GenerationStrategy, request: GenerationRequest, context: SubmitContext
    ) -> SubmitOutcome:
        ...

    def poll(self, job_id: str) -> PollResult:
        ...

    def list_templates(self) -> List[TemplateInfo]:
        ...


class BaseProviderAdapter:
    """Common behaviour for HTTP-backed adapters.

    When ``use_mock`` is True the adapter never touches the network: submissions
    return deterministic handles and polls report completion after
    ``mock_polls_until_done`` calls, so the pipeline stays runnable offline.
    """

    provider_id: ClassVar[str] = ""
    max_clip_seconds: ClassVar[Optional[float]] = None
    default_api_url: ClassVar[str] = ""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        use_mock: bool = True,
        timeout: int = 60,
        poll_interval_sec: float = 10.0,
        default_retry_after_sec: float = 10.0,
        mock_polls_until_done: int = 2,
        verbose: bool = False,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_key = api_key
        self._api_url = (api_url or self.default_api_url).rstrip("/")
        self._use_mock = use_mock
        self._timeout = timeout
        self.poll_interval_sec = poll_interval_sec
        self._default_retry_after = default_retry_after_sec
        self._mock_polls_until_done = max(1, mock_polls_until_done)
        self._verbose = verbose
        self._session = session
        self._mock_polls: Dict[str, int] = {}
        self._mock_counter = 0

    @property
    def use_mock(self) -> bool:
        return self._use_mock

    def ensure_ready(self) -> None:
        if self._use_mock:
            return
        if not self._api_key:
            raise ConfigurationError(f"{self.provider_id} API key is missing; cannot call the provider.")

    def submit(
        self, strategy: GenerationStrategy, request: GenerationRequest, context: SubmitContext
    ) -> SubmitOutcome:
        """Submit a job; raises :class:`ProviderRejected` when refused."""
        if self._use_mock:
            return self._mock_submit(strategy, request, context)
        self.ensure_ready()
        try:
            outcome = self._submit(strategy, request, context)
        except requests.RequestException as exc:
            raise ProviderRejected(f"{self.provider_id} submission failed: {exc}") from exc
        self._log(f"{self.provider_id} submit outcome: {outcome}")
        return outcome

    def poll(self, job_id: str) -> PollResult:
        """Return the normalised status; transient problems raise :class:`TransientPollError`."""
        if self._use_mock:
            return self._mock_poll(job_id)
        try:
            result = self._poll(job_id)
        except requests.RequestException as exc:
            raise TransientPollError(f"{self.provider_id} status check failed: {exc}") from exc
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise TransientPollError(f"{self.provider_id} returned a malformed status payload: {exc!r}") from exc
        self._log(f"{self.provider_id} poll {job_id}: {result.status.value}, media_url: {result.result_url is not None}")
        return result

    def list_templates(self) -> List[TemplateInfo]:
        """Templates offered by the provider; empty for providers without templates."""
        if self._use_mock:
            return []
        self.ensure_ready()
        try:
            return self._list_templates()
        except requests.RequestException as exc:
            raise ProviderRejected(f"{self.provider_id} template listing failed: {exc}") from exc

    def _list_templates(self) -> List[TemplateInfo]:
        return []

    def _submit(
        self, strategy: GenerationStrategy, request: GenerationRequest, context: SubmitContext
    ) -> SubmitOutcome:
        raise NotImplementedError

    def _poll(self, job_id: str) -> PollResult:
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _resolve_endpoint(self, path: str) -> str:
        return f"{self._api_url}/{path.lstrip('/')}"

    def _http(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _send(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[dict] = None,
        params: Optional[dict] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        merged = self._headers()
        if headers:
            merged.update(headers)
        return self._http().request(
            method,
            self._resolve_endpoint(path),
            json=payload,
            params=params,
            headers=merged,
            timeout=self._timeout,
        )

    @staticmethod
    def _json_body(response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {"raw_text": response.text}
        return body if isinstance(body, dict) else {"data": body}

    def _retry_after(self, response: Optional[requests.Response] = None, body: Optional[dict] = None) -> float:
        candidates: List[Any] = []
        if response is not None:
            candidates.append(response.headers.get("Retry-After"))
        if body:
            candidates.extend([body.get("retryAfter"), body.get("retry_after")])
        for value in candidates:
            if value is None:
                continue
            try:
                seconds = float(value)
            except (TypeError, ValueError):
                continue
            if seconds > 0:
                return seconds
        return self._default_retry_after

    @staticmethod
    def _mentions(text: Any, patterns: Iterable[str]) -> bool:
        lowered = str(text or "").lower()
        return any(pattern in lowered for pattern in patterns)

    @classmethod
    def _mentions_rate_limit(cls, text: Any) -> bool:
        return cls._mentions(text, RATE_LIMIT_PATTERNS) or bool(_STATUS_429.search(str(text or "")))

    @classmethod
    def _mentions_billing(cls, text: Any) -> bool:
        return cls._mentions(text, BILLING_PATTERNS) or bool(_STATUS_402.search(str(text or "")))

    def _log(self, message: str) -> None:
        if self._verbose:
            print(message)

    def _mock_submit(
        self, strategy: GenerationStrategy, request: GenerationRequest, context: SubmitContext
    ) -> SubmitOutcome:
        self._mock_counter += 1
        fingerprint = json.dumps(
            {
                "strategy": strategy.to_dict(),
                "text": context.prompt_text(request),
                "seed": context.seed_image_url,
                "continuation": context.continuation_seed,
                "attempt": self._mock_counter,
            },
            sort_keys=True,
        )
        job_id = f"mock-{self.provider_id}-{sha256_hex(fingerprint.encode('utf-8'))[:12]}"
        self._mock_polls[job_id] = 0
        return Submission(job_id=job_id, raw={"mock": True})

    def _mock_poll(self, job_id: str) -> PollResult:
        count = self._mock_polls.get(job_id, 0) + 1
        self._mock_polls[job_id] = count
        if count < self._mock_polls_until_done:
            return PollResult(status=PollStatus.PROCESSING, raw={"mock": True, "polls": count})
        base = f"mock://{self.provider_id}/{job_id}"
        return PollResult(
            status=PollStatus.COMPLETED,
            result_url=f"{base}.mp4",
            cover_url=f"{base}-cover.jpg",
            last_frame_url=f"{base}-last.png" if self.max_clip_seconds else None,
            raw={"mock": True, "polls": count},
        )


def rejection_from_response(
    provider_id: str,
    response: requests.Response,
    body: Dict[str, Any],
    message: Optional[str] = None,
    *,
    strategy_specific: bool = False,
) -> ProviderRejected:
    """Build a :class:`ProviderRejected` carrying the HTTP status and provider message."""
    detail = message or body.get("msg") or body.get("message") or body.get("error") or body.get("detail")
    detail = detail or body.get("raw_text") or "unknown error"
    return ProviderRejected(
        f"{provider_id} rejected the submission [{response.status_code}]: {detail}",
        strategy_specific=strategy_specific,
        status_code=response.status_code,
    )


__all__ = [
    "BILLING_PATTERNS",
    "RATE_LIMIT_PATTERNS",
    "BaseProviderAdapter",
    "ProviderAdapter",
    "rejection_from_response",
]
