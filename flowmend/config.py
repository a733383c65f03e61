# flowmend/config.py
"""
Runtime settings, read from the environment (optionally overlaid with a JSON/YAML file).
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from flowmend.errors import ConfigError
from flowmend.utils.io import load_any

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class Settings:
    n8n_api_url: Optional[str] = None
    n8n_api_key: Optional[str] = None
    n8n_webhook_url: Optional[str] = None
    http_timeout: float = 30.0
    http_retries: int = 2
    http_backoff: float = 0.5
    max_attempts: int = 3
    cache_ttl_minutes: float = 60.0
    cache_max_size: int = 100
    skip_simple: bool = True
    cache_exhausted: bool = False
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_org: Optional[str] = None
    model: str = "gpt-4o-mini"

    @property
    def api_configured(self) -> bool:
        return bool(self.n8n_api_url and self.n8n_api_key)

    @property
    def webhook_configured(self) -> bool:
        return bool(self.n8n_webhook_url)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        raw: Dict[str, Any] = {}
        for field_name, var in _ENV_VARS.items():
            if var in env:
                raw[field_name] = env[var]
        return cls()._with(raw)

    @classmethod
    def from_file(cls, path: str | Path, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Environment settings overlaid with the (lower-case field name) keys of a JSON/YAML file."""
        data = load_any(path)
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a mapping, got {type(data).__name__}")
        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigError(f"{path}: unknown settings {sorted(unknown)}")
        return cls.from_env(env)._with(data)

    def _with(self, raw: Mapping[str, Any]) -> "Settings":
        updates: Dict[str, Any] = {}
        types = {f.name: f.type for f in fields(self)}
        for name, value in raw.items():
            updates[name] = _convert(name, str(types[name]), value)
        return replace(self, **updates)


_ENV_VARS = {
    "n8n_api_url": "N8N_API_URL",
    "n8n_api_key": "N8N_API_KEY",
    "n8n_webhook_url": "N8N_WEBHOOK_URL",
    "http_timeout": "FLOWMEND_HTTP_TIMEOUT",
    "http_retries": "FLOWMEND_HTTP_RETRIES",
    "http_backoff": "FLOWMEND_HTTP_BACKOFF",
    "max_attempts": "FLOWMEND_MAX_ATTEMPTS",
    "cache_ttl_minutes": "FLOWMEND_CACHE_TTL_MINUTES",
    "cache_max_size": "FLOWMEND_CACHE_MAX_SIZE",
    "skip_simple": "FLOWMEND_SKIP_SIMPLE",
    "cache_exhausted": "FLOWMEND_CACHE_EXHAUSTED",
    "openai_api_key": "OPENAI_API_KEY",
    "openai_base_url": "OPENAI_BASE_URL",
    "openai_org": "OPENAI_ORG",
    "model": "FLOWMEND_MODEL",
}


def _convert(name: str, type_name: str, value: Any) -> Any:
    if value is None:
        return None
    try:
        if type_name == "bool":
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in _TRUE:
                return True
            if text in _FALSE:
                return False
            raise ValueError(value)
        if type_name == "int":
            return int(value)
        if type_name == "float":
            return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"invalid value for {name}: {value!r}") from None
    text = str(value).strip()
    return text or None
