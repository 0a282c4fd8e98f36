"""Resource pack metadata written next to the generated language files."""

from __future__ import annotations

import json
import os

PACK_FORMAT = 3
PACK_DESCRIPTION = "§aAI translated resource pack§r, generated by §bmclang-translator§r"


def write_mcmeta(
    output_root: str, *, pack_format: int = PACK_FORMAT, description: str = PACK_DESCRIPTION
) -> str:
    path = os.path.join(output_root, "pack.mcmeta")
    os.makedirs(output_root, exist_ok=True)
    data = {"pack": {"pack_format": pack_format, "description": description}}
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    return path
