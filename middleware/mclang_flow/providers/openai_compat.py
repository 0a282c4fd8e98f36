"""OpenAI-compatible provider."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, TYPE_CHECKING
import json
import threading
import time
from urllib.parse import urlparse

import requests

from mclang_flow.utils.headers import sanitize_headers

from .base import BaseProvider, ProviderError

if TYPE_CHECKING:
    from mclang_flow.providers.retry import RetryableTransport
    from mclang_flow.utils.cancellation import CancellationToken


DEFAULT_TEMPERATURE = 0.1
MAX_ERROR_TEXT_CHARS = 4000


class _RpmLimiter:
    def __init__(self, rpm: int):
        self.rpm = rpm
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def acquire(self) -> None:
        if self.rpm <= 0:
            return
        interval = 60.0 / float(self.rpm)
        with self._lock:
            now = time.monotonic()
            slot = max(self._next_slot, now)
            self._next_slot = slot + interval
            wait_seconds = slot - now
        if wait_seconds > 0:
            time.sleep(wait_seconds)


def _normalize_base_url(base_url: str) -> str:
    base_url = base_url.strip().rstrip("/")
    if not base_url:
        return base_url
    if base_url.endswith("/chat/completions"):
        return base_url.rsplit("/chat/completions", 1)[0]

    path = (urlparse(base_url).path or "").lower()
    if not path or path == "/":
        return f"{base_url}/v1"
    # Explicit version segments (/v1, /api/paas/v4, .../openapi) are kept as-is.
    return base_url


def _build_url(base_url: str, endpoint: str) -> str:
    normalized = _normalize_base_url(base_url)
    if not normalized:
        return ""
    return f"{normalized}/{endpoint.lstrip('/')}"


def _parse_int(value: Any, default: int = 0) -> int:
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


class OpenAICompatProvider(BaseProvider):
    def __init__(self, profile: Dict[str, Any]):
        super().__init__(profile)
        self.api_key = str(profile.get("api_key") or "").strip()
        self.base_url = str(profile.get("base_url") or "").strip()
        rpm_value = _parse_int(profile.get("rpm"))
        self.rate_limiter = _RpmLimiter(rpm_value) if rpm_value > 0 else None

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        profile_headers = self.profile.get("headers") or {}
        if isinstance(profile_headers, dict):
            headers.update({str(k): str(v) for k, v in profile_headers.items()})
        return headers

    def _require_base_url(self) -> None:
        if not self.base_url:
            raise ProviderError(
                "OpenAI-compatible provider requires base_url",
                error_type="invalid_config",
            )

    def build_request(
        self, messages: List[Dict[str, str]], settings: Optional[Dict[str, Any]] = None
    ) -> requests.Request:
        settings = settings or {}
        self._require_base_url()
        model = str(settings.get("model") or self.profile.get("model") or "").strip()
        if not model:
            raise ProviderError(
                "OpenAI-compatible provider requires model",
                error_type="invalid_config",
            )

        temperature = settings.get("temperature", DEFAULT_TEMPERATURE)
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
        }
        if temperature is not None:
            payload["temperature"] = float(temperature)
        extra = self.profile.get("params") or {}
        if isinstance(extra, dict):
            payload.update(extra)

        return requests.Request(
            "POST",
            _build_url(self.base_url, "chat/completions"),
            headers=self._headers(),
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
        )

    def _json_body(self, response: requests.Response, url: str | None) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            body = (getattr(response, "text", "") or "").strip()
            raise ProviderError(
                "OpenAI-compatible response is not JSON",
                error_type="invalid_json",
                status_code=getattr(response, "status_code", None),
                url=url,
                response_text=body[:MAX_ERROR_TEXT_CHARS],
                response_headers=sanitize_headers(getattr(response, "headers", None)),
            ) from exc

    def extract_text(self, response: requests.Response) -> str:
        url = getattr(response, "url", None)
        data = self._json_body(response, url)
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            body = (getattr(response, "text", "") or "").strip()
            raise ProviderError(
                "OpenAI-compatible response missing content",
                error_type="invalid_response",
                status_code=getattr(response, "status_code", None),
                url=url,
                response_text=body[:MAX_ERROR_TEXT_CHARS],
            ) from exc
        if not isinstance(text, str):
            raise ProviderError(
                "OpenAI-compatible response content is empty",
                error_type="invalid_response",
                status_code=getattr(response, "status_code", None),
                url=url,
            )
        return text

    def build_models_request(self) -> requests.Request:
        self._require_base_url()
        headers = {k: v for k, v in self._headers().items() if k != "Content-Type"}
        return requests.Request("GET", _build_url(self.base_url, "models"), headers=headers)

    def fetch_models(
        self, transport: "RetryableTransport", cancel: "CancellationToken"
    ) -> List[str]:
        """List model ids offered by the endpoint; doubles as a connection check."""
        response = transport.send_with_retry(self.build_models_request, cancel)
        data = self._json_body(response, getattr(response, "url", None))
        models: List[str] = []
        items = data.get("data") if isinstance(data, dict) else None
        if isinstance(items, list):
            for item in items:
                if isinstance(item, dict) and isinstance(item.get("id"), str):
                    models.append(item["id"])
        models.sort()
        return models
