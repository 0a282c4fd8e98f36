"""Parser base classes."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ParserError(RuntimeError):
    pass


class BaseParser:
    def __init__(self, profile: Optional[Dict[str, Any]] = None):
        self.profile = profile or {}

    def parse(self, text: str, expected_count: int) -> List[str]:
        raise NotImplementedError
