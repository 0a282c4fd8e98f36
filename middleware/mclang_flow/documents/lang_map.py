"""Readers and writers for key -> text language mappings (.json / .lang)."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict
import json
import os


class FileFormat(str, Enum):
    JSON = "json"
    LANG = "lang"

    @classmethod
    def from_name(cls, name: str) -> "FileFormat":
        return cls.LANG if str(name).lower().endswith(".lang") else cls.JSON


def sanitize_json_content(content: str) -> str:
    """Make hand-edited language JSON parseable.

    Removes a BOM, ``//`` and ``#`` line comments outside strings, and inside
    strings converts raw newlines/tabs to escapes and drops other control
    characters.
    """
    if content.startswith("\ufeff"):
        content = content[1:]

    out = []
    in_string = False
    escape = False
    i = 0
    length = len(content)
    while i < length:
        ch = content[i]
        if not in_string:
            if ch == "/" and i + 1 < length and content[i + 1] == "/":
                i += 2
                while i < length and content[i] not in "\r\n":
                    i += 1
                continue
            if ch == "#":
                while i < length and content[i] not in "\r\n":
                    i += 1
                continue
            if ch == "\"":
                in_string = True
            out.append(ch)
        elif escape:
            escape = False
            if ch == "\n":
                out.append("n")
            elif ch != "\r":
                out.append(ch)
        elif ch == "\\":
            escape = True
            out.append(ch)
        elif ch == "\"":
            in_string = False
            out.append(ch)
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        elif ch == "\r" or ord(ch) < 0x20 or 0x7F <= ord(ch) < 0xA0:
            pass
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def parse_json_mapping(content: str) -> Dict[str, Any]:
    try:
        data = json.loads(sanitize_json_content(content))
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def parse_lang_mapping(content: str) -> Dict[str, Any]:
    mapping: Dict[str, Any] = {}
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        mapping[key.strip()] = value.strip()
    return mapping


def parse_mapping(content: str, fmt: FileFormat) -> Dict[str, Any]:
    if fmt == FileFormat.LANG:
        return parse_lang_mapping(content)
    return parse_json_mapping(content)


def read_mapping(path: str, fmt: FileFormat) -> Dict[str, Any]:
    """Read a mapping; a missing file reads as an empty mapping."""
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8-sig") as f:
        return parse_mapping(f.read(), fmt)


def dumps_mapping(mapping: Dict[str, Any], fmt: FileFormat) -> str:
    if fmt == FileFormat.LANG:
        lines = []
        for key, value in mapping.items():
            if not isinstance(value, str):
                continue
            escaped = value.replace("\r", "").replace("\n", "\\n")
            lines.append(f"{key}={escaped}\n")
        return "".join(lines)
    return json.dumps(mapping, ensure_ascii=False, indent=2)


def write_mapping(path: str, mapping: Dict[str, Any], fmt: FileFormat) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(dumps_mapping(mapping, fmt))
