"""REST client for the OpenAI-compatible generation/translation endpoint.

Every remote call goes through :func:`call_with_retry`, which retries only
transient failures (network errors, timeouts, 408/429/5xx) and surfaces
everything else immediately as :class:`RemoteServiceError`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import requests

from .config import Settings
from .prompts import MARKETING_SYSTEM_PROMPT, TRANSLATION_SYSTEM_PROMPT, translation_request

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

_TEXT_MODEL = "gpt-4"
_IMAGE_SIZE = "1024x1024"


class RemoteServiceError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        attempts: int = 0,
        cause: BaseException | None = None,
        status_code: int | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.attempts = int(attempts)
        self.cause = cause
        self.status_code = status_code
        self.transient = bool(transient)

    def with_attempts(self, attempts: int) -> "RemoteServiceError":
        self.attempts = int(attempts)
        return self


class FixedBackoff:
    def __init__(self, delay_s: float = 1.0) -> None:
        self.delay_s = max(0.0, float(delay_s))

    def delay(self, attempt: int) -> float:
        return self.delay_s


class ExponentialBackoff:
    """``base * factor**(attempt-1)``, capped at ``max_delay_s``."""

    def __init__(self, base_s: float = 1.0, *, factor: float = 2.0, max_delay_s: float = 30.0) -> None:
        self.base_s = max(0.0, float(base_s))
        self.factor = max(1.0, float(factor))
        self.max_delay_s = max(0.0, float(max_delay_s))

    def delay(self, attempt: int) -> float:
        return min(self.max_delay_s, self.base_s * (self.factor ** max(0, attempt - 1)))


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    value: T
    attempts: int


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, RemoteServiceError):
        return exc.transient
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.status_code in TRANSIENT_STATUS_CODES
    return False


def call_with_retry_result(
    operation: Callable[[], T],
    *,
    max_attempts: int = 3,
    backoff: FixedBackoff | ExponentialBackoff | None = None,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "remote call",
) -> RetryResult[T]:
    max_attempts = max(1, int(max_attempts))
    backoff = backoff or ExponentialBackoff()
    last_err: BaseException | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            return RetryResult(value=operation(), attempts=attempt)
        except Exception as e:
            last_err = e
            if not is_transient(e):
                logger.warning("%s failed (non-transient) on attempt %d: %s", label, attempt, e)
                if isinstance(e, RemoteServiceError):
                    raise e.with_attempts(attempt)
                raise RemoteServiceError(
                    f"{label} failed: {e}", attempts=attempt, cause=e, transient=False
                ) from e
            if attempt < max_attempts:
                delay_s = backoff.delay(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s", label, attempt, max_attempts, delay_s, e
                )
                sleep(delay_s)

    status_code = getattr(last_err, "status_code", None)
    raise RemoteServiceError(
        f"{label} failed after {max_attempts} attempts: {last_err}",
        attempts=max_attempts,
        cause=last_err,
        status_code=status_code if isinstance(status_code, int) else None,
        transient=True,
    ) from last_err


def call_with_retry(
    operation: Callable[[], T],
    *,
    max_attempts: int = 3,
    backoff: FixedBackoff | ExponentialBackoff | None = None,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "remote call",
) -> T:
    return call_with_retry_result(
        operation, max_attempts=max_attempts, backoff=backoff, sleep=sleep, label=label
    ).value


@dataclass(frozen=True)
class ServiceStatus:
    available: bool
    status_code: int
    message: str
    models: int = 0


class ServiceClient:
    """Direct REST client for text, translation and image generation."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout: tuple[float, float] = (10.0, 60.0),
        max_attempts: int = 3,
        backoff: FixedBackoff | ExponentialBackoff | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._backoff = backoff or ExponentialBackoff(1.0, max_delay_s=10.0)
        self._sleep = sleep
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "ServiceClient":
        return cls(
            base_url=settings.api_endpoint,
            api_key=settings.require_api_key(),
            timeout=settings.http_timeout,
            max_attempts=settings.max_attempts,
            **kwargs,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def _post_json(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        resp = self._session.post(url, json=body, timeout=self._timeout)
        if resp.status_code != 200:
            raise RemoteServiceError(
                f"HTTP {resp.status_code} from {path}: {resp.text[:300]}",
                status_code=resp.status_code,
                transient=resp.status_code in TRANSIENT_STATUS_CODES,
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise RemoteServiceError(f"Invalid JSON from {path}", status_code=resp.status_code, cause=e) from e
        if not isinstance(data, dict):
            raise RemoteServiceError(f"Unexpected response shape from {path}", status_code=resp.status_code)
        return data

    @staticmethod
    def _completion_text(data: dict[str, Any]) -> str:
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise RemoteServiceError("Completion response has no message content", cause=e) from e
        if not isinstance(text, str) or not text.strip():
            raise RemoteServiceError("Completion response is empty")
        return text

    def _chat(self, *, system_prompt: str, prompt: str, temperature: float, label: str) -> str:
        body = {
            "model": _TEXT_MODEL,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
        }
        data = call_with_retry(
            lambda: self._post_json("/chat/completions", body),
            max_attempts=self._max_attempts,
            backoff=self._backoff,
            sleep=self._sleep,
            label=label,
        )
        return self._completion_text(data)

    def generate_text(self, prompt: str, *, system_prompt: str = MARKETING_SYSTEM_PROMPT) -> str:
        return self._chat(system_prompt=system_prompt, prompt=prompt, temperature=0.7, label="generate_text")

    def translate_text(self, text: str, target_language: str) -> str:
        return self._chat(
            system_prompt=TRANSLATION_SYSTEM_PROMPT,
            prompt=translation_request(text, target_language),
            temperature=0.3,
            label=f"translate_text[{target_language}]",
        )

    def generate_image(self, prompt: str) -> str:
        """Single image generation request; returns the base64 payload.

        Not retried here: the banner updater owns its own bounded retry loop.
        """
        data = self._post_json(
            "/images/generations",
            {"prompt": prompt, "n": 1, "size": _IMAGE_SIZE, "response_format": "b64_json"},
        )
        try:
            b64 = data["data"][0]["b64_json"]
        except (KeyError, IndexError, TypeError) as e:
            raise RemoteServiceError("Image response has no b64_json payload", cause=e) from e
        if not isinstance(b64, str) or not b64:
            raise RemoteServiceError("Image response payload is empty")
        return b64

    def check_status(self) -> ServiceStatus:
        """Lightweight health probe (``GET /models``). Never raises."""
        try:
            resp = self._session.get(f"{self._base_url}/models", timeout=self._timeout)
        except requests.RequestException as e:
            logger.warning("API status check failed: %s", e)
            return ServiceStatus(available=False, status_code=0, message=str(e))

        if resp.status_code != 200:
            return ServiceStatus(available=False, status_code=resp.status_code, message=f"HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError:
            data = None
        models = data.get("data") if isinstance(data, dict) else None
        if not isinstance(models, list):
            return ServiceStatus(
                available=False, status_code=resp.status_code, message="API responded with an unexpected format"
            )
        return ServiceStatus(
            available=True, status_code=resp.status_code, message="API service is available", models=len(models)
        )
