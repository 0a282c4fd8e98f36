"""Provider base classes."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests


class ProviderError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        error_type: str | None = None,
        status_code: int | None = None,
        url: str | None = None,
        response_text: str | None = None,
        request_headers: Dict[str, str] | None = None,
        response_headers: Dict[str, str] | None = None,
        attempts: int | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code
        self.url = url
        self.response_text = response_text
        self.request_headers = request_headers
        self.response_headers = response_headers
        self.attempts = attempts
        self.retry_after = retry_after


class BaseProvider:
    """Builds outbound requests and reads the text out of successful responses.

    Providers never send anything themselves; sending, retrying and
    cancellation belong to :class:`~mclang_flow.providers.retry.RetryableTransport`.
    """

    def __init__(self, profile: Dict[str, Any]):
        self.profile = profile

    def build_request(
        self, messages: List[Dict[str, str]], settings: Optional[Dict[str, Any]] = None
    ) -> requests.Request:
        raise NotImplementedError

    def extract_text(self, response: requests.Response) -> str:
        raise NotImplementedError
