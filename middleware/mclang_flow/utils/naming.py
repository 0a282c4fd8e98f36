"""Mod id and output file name helpers."""

from __future__ import annotations

from typing import Optional
import re
from pathlib import PurePath

from mclang_flow.utils.log_protocol import PipelineObserver

UNKNOWN_MOD_ID = "unknown_mod"


def extract_mod_id(path: str, observer: Optional[PipelineObserver] = None) -> str:
    """Return the directory name in front of ``lang`` (or ``data``) in ``path``.

    ``assets/examplemod/lang/en_us.json`` -> ``examplemod``.
    """
    parts = PurePath(str(path).replace("\\", "/")).parts
    for marker in ("lang", "data"):
        if marker in parts:
            idx = parts.index(marker)
            if idx > 0:
                return parts[idx - 1]
            break
    if observer is not None:
        observer.warn(f"Cannot resolve mod id from path: {path}")
    return UNKNOWN_MOD_ID


def get_target_filename(original_name: str, source_lang: str, target_lang: str) -> str:
    """Swap the source language tag for the target tag in a file name.

    Matching is case-insensitive; names without the source tag get a
    ``<target>_`` prefix.
    """
    if source_lang and source_lang.lower() in original_name.lower():
        pattern = re.compile(re.escape(source_lang), re.IGNORECASE)
        return pattern.sub(lambda _m: target_lang, original_name)
    return f"{target_lang.lower()}_{original_name}"


def is_source_lang_file(name: str, source_lang: str) -> bool:
    stem = PurePath(name).stem.lower()
    return bool(source_lang) and stem == source_lang.lower()
