# Prompt builder for text batch requests.

from __future__ import annotations

from typing import Dict, List, Sequence
import json
import re


_TEMPLATE_TOKEN_PATTERN = re.compile(r"\{\{([a-zA-Z_][a-zA-Z0-9_]*)\}\}|\{(MOD_ID)\}")

DEFAULT_PROMPT = (
    "You are a localization expert for Minecraft mods. Current mod id: {MOD_ID}.\n"
    "You will receive a JSON array of source strings.\n"
    "Translate every item and return a JSON array of strings.\n"
    "Rules:\n"
    "1. Keep the order: item N of the output corresponds to item N of the input.\n"
    "2. Keep the length: the output array has exactly as many items as the input.\n"
    "3. Preserve formatting codes such as §a, %s, {0} and \\n.\n"
    "4. Return only the JSON array, without Markdown code fences."
)


def _render_template(template: str, mapping: Dict[str, str]) -> str:
    def _replace(match: re.Match[str]) -> str:
        key = match.group(1) or match.group(2)
        return mapping.get(key, match.group(0))

    return _TEMPLATE_TOKEN_PATTERN.sub(_replace, template)


def build_messages(
    template: str,
    context_id: str,
    texts: Sequence[str],
    *,
    source_lang: str = "",
    target_lang: str = "",
) -> List[Dict[str, str]]:
    mapping = {
        "MOD_ID": str(context_id or ""),
        "mod_id": str(context_id or ""),
        "source_lang": str(source_lang or ""),
        "target_lang": str(target_lang or ""),
    }
    system_prompt = _render_template(str(template or DEFAULT_PROMPT), mapping).strip("\n")
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": json.dumps(list(texts), ensure_ascii=False)},
    ]
