"""Quest file (SNBT) text extraction and offset-safe write-back.

Only two shapes are recognised, both with regular expressions:

  title: "..." / subtitle: "..."      single-line fields
  description: [ "...", "..." ]       every quoted element of the list

Nested brackets or quotes inside a description list are not understood;
such files may be extracted partially.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple
import re

from mclang_flow.pipelines.scheduler import BatchScheduler
from mclang_flow.utils.cancellation import CancellationToken
from mclang_flow.utils.log_protocol import NullObserver, PipelineObserver

_FIELD_PATTERN = re.compile(r'\b(title|subtitle)\s*:\s*"((?:[^"\\\n]|\\.)*)"')
_DESCRIPTION_BLOCK_PATTERN = re.compile(r"\bdescription\s*:\s*\[([\s\S]*?)\]")
_QUOTED_PATTERN = re.compile(r'"((?:[^"\\]|\\.)*)"')
_DOTTED_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+(?:\.[A-Za-z0-9_\-]+)+$")
_UNESCAPED_QUOTE_PATTERN = re.compile(r'(?<!\\)((?:\\\\)*)"')


@dataclass
class ExtractionSpan:
    start: int
    end: int
    key: str


def _is_translatable(value: str) -> bool:
    return bool(value.strip()) and any(ch.isalpha() for ch in value)


def escape_for_quoted(text: str) -> str:
    """Re-escape translated text for a double-quoted SNBT string."""
    text = text.replace("\r", "").replace("\n", "\\n")
    return _UNESCAPED_QUOTE_PATTERN.sub(lambda m: f'{m.group(1)}\\"', text)


class StructuredTextLocator:
    def __init__(self, observer: Optional[PipelineObserver] = None):
        self.observer = observer or NullObserver()

    def _raw_matches(self, document: str) -> Iterator[Tuple[str, int, int]]:
        for match in _FIELD_PATTERN.finditer(document):
            yield match.group(2), match.start(2), match.end(2)
        for block in _DESCRIPTION_BLOCK_PATTERN.finditer(document):
            block_start = block.start(1)
            for inner in _QUOTED_PATTERN.finditer(block.group(1)):
                yield inner.group(1), block_start + inner.start(1), block_start + inner.end(1)

    def first_raw_value(self, document: str) -> Optional[str]:
        """The first matched value, before blank or letterless values are dropped."""
        for value, _, _ in self._raw_matches(document):
            return value
        return None

    def extract(self, document: str) -> Tuple[Dict[str, str], List[ExtractionSpan]]:
        """Return the synthetic ``index -> text`` mapping and the matching spans."""
        mapping: Dict[str, str] = {}
        spans: List[ExtractionSpan] = []
        for value, start, end in self._raw_matches(document):
            if not _is_translatable(value):
                continue
            key = str(len(spans))
            mapping[key] = value
            spans.append(ExtractionSpan(start=start, end=end, key=key))
        return mapping, spans

    @staticmethod
    def uses_localization_keys(first_value: Optional[str]) -> bool:
        return first_value is not None and bool(_DOTTED_KEY_PATTERN.match(first_value.strip()))

    @staticmethod
    def splice(
        document: str, spans: List[ExtractionSpan], translations: Dict[str, object]
    ) -> str:
        """Replace spans from the highest offset down so pending offsets stay valid."""
        result = document
        for span in sorted(spans, key=lambda item: item.start, reverse=True):
            translated = translations.get(span.key)
            if not isinstance(translated, str) or not translated.strip():
                continue
            result = result[: span.start] + escape_for_quoted(translated) + result[span.end :]
        return result

    def extract_and_translate(
        self,
        document: str,
        artifact_id: str,
        scheduler: BatchScheduler,
        cancel: Optional[CancellationToken] = None,
    ) -> Tuple[Optional[str], int]:
        """Translate a quest document.

        Returns ``(text, dropped)``. ``text`` is None when there is nothing to
        write (no translatable text, localization-key indirection,
        cancellation). ``dropped`` counts spans whose batch failed; those
        keep their original text.
        """
        cancel = cancel or CancellationToken()
        mapping, spans = self.extract(document)
        if not mapping:
            self.observer.info(f"No translatable text found: {artifact_id}")
            return None, 0
        if self.uses_localization_keys(self.first_raw_value(document)):
            self.observer.info(f"Quest file uses localization keys, skipped: {artifact_id}")
            return None, 0

        self.observer.info(f"Extracted {len(mapping)} entries from {artifact_id}")
        translated = scheduler.schedule(mapping, f"Quest_{artifact_id}", cancel=cancel)
        if cancel.is_cancelled():
            return None, 0
        dropped = sum(1 for key in mapping if key not in translated)
        if dropped:
            self.observer.warn(
                f"{artifact_id}: {dropped} entries dropped by failed batches, kept original text"
            )
        return self.splice(document, spans, translated), dropped
