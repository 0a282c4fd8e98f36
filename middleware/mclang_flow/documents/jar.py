"""Language files bundled inside mod archives (.jar)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import posixpath
import zipfile

from mclang_flow.documents.lang_map import FileFormat, parse_mapping


@dataclass
class JarLangEntry:
    entry_name: str
    mod_id: str
    file_name: str
    fmt: FileFormat
    builtin_entry: Optional[str] = None


def _mod_id_from_entry(entry_name: str) -> str:
    parts = entry_name.split("/")
    if "assets" in parts:
        idx = parts.index("assets")
        if idx + 1 < len(parts):
            return parts[idx + 1]
    return "unknown"


def list_lang_entries(
    archive: zipfile.ZipFile, source_lang: str, target_lang: str
) -> List[JarLangEntry]:
    """Find ``assets/<mod>/lang/<source_lang>.(json|lang)`` entries.

    A sibling entry named after ``target_lang`` is recorded as the built-in
    translation shipped by the mod author.
    """
    names = archive.namelist()
    lowered = {name.lower(): name for name in names}
    entries: List[JarLangEntry] = []
    for name in names:
        if name.endswith("/") or "assets/" not in name:
            continue
        directory, file_name = posixpath.split(name)
        if posixpath.basename(directory) != "lang":
            continue
        stem, ext = posixpath.splitext(file_name)
        if ext.lower() not in {".json", ".lang"} or stem.lower() != source_lang.lower():
            continue
        builtin_key = posixpath.join(directory, f"{target_lang}{ext}").lower()
        entries.append(
            JarLangEntry(
                entry_name=name,
                mod_id=_mod_id_from_entry(name),
                file_name=file_name,
                fmt=FileFormat.from_name(file_name),
                builtin_entry=lowered.get(builtin_key),
            )
        )
    return entries


def read_entry_mapping(
    archive: zipfile.ZipFile, entry_name: str, fmt: FileFormat
) -> Dict[str, Any]:
    with archive.open(entry_name) as f:
        content = f.read().decode("utf-8-sig", errors="replace")
    return parse_mapping(content, fmt)
