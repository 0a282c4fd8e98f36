"""Parser for responses that must be a JSON array of strings."""

from __future__ import annotations

from typing import Any, List
import ast
import json
import re

from .base import BaseParser, ParserError


_CODE_FENCE_PATTERNS = [
    re.compile(r"```(?:json|text)?\s*([\s\S]*?)```", re.IGNORECASE),
    re.compile(r"'''(?:json|text)?\s*([\s\S]*?)'''", re.IGNORECASE),
]

_THINK_PATTERN_CLOSED = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)


def _strip_think_tags(text: str) -> str:
    if not text:
        return text
    cleaned = _THINK_PATTERN_CLOSED.sub("", text)
    return cleaned.strip()


def strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    for pattern in _CODE_FENCE_PATTERNS:
        match = pattern.search(cleaned)
        if match:
            return match.group(1).strip()
    # An unterminated fence still gets its opening marker removed.
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json|text)?", "", cleaned, flags=re.IGNORECASE)
    return cleaned.strip()


def _extract_first_json_array(text: str) -> str:
    if not text:
        return ""
    start = None
    depth = 0
    in_str = False
    escape = False
    for idx, ch in enumerate(text):
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == "\"":
                in_str = False
            continue
        if ch == "\"":
            if start is not None:
                in_str = True
            continue
        if ch == "[":
            if start is None:
                start = idx
            depth += 1
        elif ch == "]" and start is not None:
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return ""


def _load_json_like(text: str) -> Any:
    cleaned = strip_code_fence(_strip_think_tags(text))
    candidates = [cleaned]
    extracted = _extract_first_json_array(cleaned)
    if extracted and extracted not in candidates:
        candidates.append(extracted)
    for candidate in candidates:
        if not candidate:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            try:
                return ast.literal_eval(candidate)
            except (ValueError, SyntaxError, MemoryError, RecursionError):
                continue
    raise ParserError("JsonListParser: invalid JSON")


class JsonListParser(BaseParser):
    def parse(self, text: str, expected_count: int) -> List[str]:
        data = _load_json_like(text or "")
        if not isinstance(data, list):
            raise ParserError(
                f"JsonListParser: expected a JSON array, got {type(data).__name__}"
            )
        if not all(isinstance(item, str) for item in data):
            raise ParserError("JsonListParser: array items must be strings")
        if len(data) != expected_count:
            raise ParserError(
                f"JsonListParser: length mismatch (expected {expected_count}, got {len(data)})"
            )
        return list(data)
