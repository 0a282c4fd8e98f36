"""HTTP header helpers."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


def _is_sensitive_header_key(key: str) -> bool:
    normalized = str(key).strip().lower().replace("_", "-")
    return any(
        token in normalized
        for token in ("authorization", "api-key", "token", "secret", "password")
    )


def sanitize_headers(headers: Any) -> Dict[str, str] | None:
    """Mask sensitive header values before they are attached to errors or logs."""
    if not isinstance(headers, Mapping):
        return None
    sanitized: Dict[str, str] = {}
    for key, value in headers.items():
        header_name = str(key).strip()
        if not header_name:
            continue
        if _is_sensitive_header_key(header_name):
            sanitized[header_name] = "[REDACTED]"
        else:
            sanitized[header_name] = str(value)
    return sanitized or None


def parse_retry_after(headers: Any) -> Optional[int]:
    """Return the ``Retry-After`` value in whole seconds, or None.

    Only the delta-seconds form is honoured; HTTP dates and garbage fall back
    to the caller's own backoff.
    """
    if headers is None:
        return None
    try:
        raw = headers.get("Retry-After")
    except AttributeError:
        return None
    if raw is None:
        return None
    text = str(raw).strip()
    if not text.isdigit():
        return None
    return int(text)
