"""Retry/backoff engine shared by every outbound call."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, wait as wait_futures
from dataclasses import dataclass
from typing import Any, Callable, Optional
import threading

import requests

from mclang_flow.providers.base import ProviderError
from mclang_flow.utils.cancellation import (
    POLL_INTERVAL_SECONDS,
    CancellationToken,
    TranslationCancelled,
)
from mclang_flow.utils.headers import parse_retry_after, sanitize_headers
from mclang_flow.utils.log_protocol import NullObserver, PipelineObserver

DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_IO_WORKERS = 8
MAX_ERROR_TEXT_CHARS = 4000

RequestFactory = Callable[[], requests.Request]


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 5
    base_delay: float = 10.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "max_retries", max(0, int(self.max_retries)))
        object.__setattr__(self, "base_delay", max(0.0, float(self.base_delay)))


def classify_status(status_code: int) -> str:
    if 200 <= status_code < 300:
        return "success"
    if status_code in {400, 401}:
        return "fatal"
    if status_code == 429:
        return "rate_limited"
    if 500 <= status_code < 600:
        return "server_error"
    return "other"


def _body_preview(response: Any) -> str:
    try:
        body = (response.text or "").strip()
    except Exception:
        body = ""
    return body[:MAX_ERROR_TEXT_CHARS]


class RetryableTransport:
    """Sends requests built by a factory, retrying by response class.

    Every attempt calls the factory again so no request object is ever
    reused. The blocking HTTP call runs on a small I/O pool so the calling
    thread can keep watching the cancellation token while it is in flight.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        rate_limiter: Any = None,
        observer: Optional[PipelineObserver] = None,
        io_workers: int = DEFAULT_IO_WORKERS,
    ):
        self.policy = policy
        self.timeout = float(timeout) if timeout else DEFAULT_TIMEOUT_SECONDS
        self.rate_limiter = rate_limiter
        self.observer = observer or NullObserver()
        self._session = session or requests.Session()
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, int(io_workers)), thread_name_prefix="mclang-io"
        )
        self._lock = threading.Lock()
        self.total_requests = 0
        self.total_retries = 0

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _send_once(self, request_factory: RequestFactory) -> requests.Response:
        request = request_factory()
        if self.rate_limiter is not None:
            self.rate_limiter.acquire()
        with self._lock:
            self.total_requests += 1
        return self._session.send(request.prepare(), timeout=self.timeout)

    def _race(
        self, request_factory: RequestFactory, cancel: CancellationToken
    ) -> requests.Response:
        future = self._executor.submit(self._send_once, request_factory)
        while True:
            done, _ = wait_futures([future], timeout=POLL_INTERVAL_SECONDS)
            if done:
                return future.result()
            if cancel.is_cancelled():
                future.cancel()
                raise TranslationCancelled("cancelled while waiting for response")

    def _backoff(
        self,
        cancel: CancellationToken,
        wait_seconds: float,
        attempt: int,
        reason: str,
        label: str,
        error_type: str,
    ) -> None:
        with self._lock:
            self.total_retries += 1
        self.observer.on_retry(label, attempt + 1, error_type, wait_seconds)
        prefix = f"[{label}] " if label else ""
        self.observer.warn(
            f"{prefix}{reason}, retrying in {wait_seconds:g}s "
            f"(attempt {attempt + 1}/{self.policy.max_retries})"
        )
        if cancel.wait(wait_seconds):
            raise TranslationCancelled("cancelled during retry backoff")

    def send_with_retry(
        self,
        request_factory: RequestFactory,
        cancel: Optional[CancellationToken] = None,
        *,
        label: str = "",
    ) -> requests.Response:
        cancel = cancel or CancellationToken()
        policy = self.policy
        attempt = 0
        while True:
            if cancel.is_cancelled():
                raise TranslationCancelled("cancelled before request")

            try:
                response = self._race(request_factory, cancel)
            except requests.RequestException as exc:
                if attempt >= policy.max_retries:
                    raise ProviderError(
                        f"Network retries exhausted: {exc}",
                        error_type="network_error",
                        attempts=attempt + 1,
                    ) from exc
                self._backoff(
                    cancel,
                    float(2 ** attempt),
                    attempt,
                    f"Network error: {exc}",
                    label,
                    "network_error",
                )
                attempt += 1
                continue

            status = int(response.status_code)
            kind = classify_status(status)
            if kind == "success":
                return response

            body = _body_preview(response)
            headers = getattr(response, "headers", None)
            retry_after = parse_retry_after(headers)
            error_kwargs = {
                "status_code": status,
                "url": getattr(response, "url", None),
                "response_text": body,
                "response_headers": sanitize_headers(headers),
                "attempts": attempt + 1,
                "retry_after": retry_after,
            }
            if kind == "fatal":
                raise ProviderError(
                    f"HTTP {status}: {body}", error_type="http_error", **error_kwargs
                )
            if attempt >= policy.max_retries:
                raise ProviderError(
                    f"Retries exhausted (HTTP {status}): {body}",
                    error_type="retries_exhausted",
                    **error_kwargs,
                )
            if kind == "rate_limited":
                if retry_after is not None:
                    wait_seconds = float(retry_after)
                else:
                    wait_seconds = policy.base_delay * (2 ** attempt)
            elif kind == "server_error":
                wait_seconds = policy.base_delay
            else:
                raise ProviderError(
                    f"Request failed (HTTP {status}): {body}",
                    error_type="http_error",
                    **error_kwargs,
                )

            self._backoff(cancel, wait_seconds, attempt, f"HTTP {status}", label, kind)
            attempt += 1
