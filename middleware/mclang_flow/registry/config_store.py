"""Config Store (YAML-based)."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional
import os

import yaml

from mclang_flow.prompts.builder import DEFAULT_PROMPT


class ConfigError(ValueError):
    pass


@dataclass
class AppConfig:
    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-3.5-turbo"
    input_path: str = ""
    output_path: str = "./MC_Translator/output_cn"
    source_lang: str = "en_us"
    target_lang: str = "zh_cn"
    batch_size: int = 200
    skip_existing: bool = True
    max_retries: int = 5
    retry_delay: float = 10.0
    file_concurrency: int = 5
    network_concurrency: int = 10
    timeout: int = 60
    rpm: int = 0
    prompt: str = DEFAULT_PROMPT
    skip_quest: bool = True
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)

    def api_profile(self) -> Dict[str, Any]:
        return {
            "api_key": self.api_key,
            "base_url": self.base_url,
            "model": self.model,
            "timeout": self.timeout,
            "rpm": self.rpm,
            "headers": dict(self.headers),
            "params": dict(self.params),
        }


_LEGACY_KEYS = {
    "file_semaphore": "file_concurrency",
    "max_network_concurrency": "network_concurrency",
    "batchSize": "batch_size",
    "skipExisting": "skip_existing",
}

_BOOL_FIELDS = {"skip_existing", "skip_quest"}
_INT_FIELDS = {
    "batch_size",
    "max_retries",
    "file_concurrency",
    "network_concurrency",
    "timeout",
    "rpm",
}
_FLOAT_FIELDS = {"retry_delay"}


class ConfigStore:
    def __init__(self, path: str):
        self.path = path

    @staticmethod
    def _parse_bool_flag(value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        normalized = str(value or "").strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off", ""}:
            return False
        return bool(value)

    def _normalize_config_data(self, data: Dict[str, Any]) -> bool:
        changed = False
        for legacy, current in _LEGACY_KEYS.items():
            if legacy in data:
                if current not in data:
                    data[current] = data[legacy]
                del data[legacy]
                changed = True
        for key in _BOOL_FIELDS:
            if key in data:
                parsed = self._parse_bool_flag(data[key])
                if data[key] != parsed:
                    data[key] = parsed
                    changed = True
        return changed

    @staticmethod
    def _coerce(data: Dict[str, Any]) -> Dict[str, Any]:
        known = {f.name for f in fields(AppConfig)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known or value is None:
                continue
            try:
                if key in _INT_FIELDS:
                    value = int(value)
                elif key in _FLOAT_FIELDS:
                    value = float(value)
                elif key in {"headers", "params"}:
                    if not isinstance(value, dict):
                        raise ConfigError(f"Config field {key} must be a mapping")
                elif key not in _BOOL_FIELDS:
                    value = str(value)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"Invalid value for {key}: {value!r}") from exc
            values[key] = value
        return values

    def load(self) -> AppConfig:
        if not self.path or not os.path.exists(self.path):
            return AppConfig()
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Invalid config YAML: {self.path}")
        if self._normalize_config_data(data):
            try:
                with open(self.path, "w", encoding="utf-8") as f:
                    yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
            except OSError:
                # normalization writeback is best-effort; keep in-memory data
                pass
        return AppConfig(**self._coerce(data))

    def save(self, config: AppConfig) -> None:
        parent = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(parent, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(asdict(config), f, sort_keys=False, allow_unicode=True)

    def load_with_overrides(self, overrides: Optional[Dict[str, Any]] = None) -> AppConfig:
        """Load the file and apply non-None overrides (usually from the CLI)."""
        config = self.load()
        if not overrides:
            return config
        merged = asdict(config)
        merged.update({k: v for k, v in overrides.items() if v is not None})
        self._normalize_config_data(merged)
        return AppConfig(**self._coerce(merged))
