"""faq-cache configuration.

Settings come from three layers, later ones winning:

1. Defaults (``_DEFAULT_CONFIG``)
2. The ``"faq_cache"`` section of ``faq-cache.json`` in the working directory
   (or the file named by ``FAQ_CACHE_CONFIG``)
3. ``FAQ_CACHE_*`` environment variables (URLs, tokens, provider)

Config (faq-cache.json):
    {
      "faq_cache": {
        "redis_url": "redis://localhost:6379/0",
        "max_chat_per_category": 1000,
        "embedding_provider": "local",
        "embedding_model": "all-MiniLM-L6-v2",
        "judge_url": "https://api.openai.com/v1/chat/completions",
        "judge_model": "gpt-4o-mini"
      }
    }
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields
from typing import Any

from faq_cache._constants import DEFAULT_CACHE_TTL, EMBEDDING_BATCH_SIZE, MAX_CHAT_PER_CATEGORY
from faq_cache.observability import get_logger

_log = get_logger("config")

CONFIG_FILENAME = "faq-cache.json"
CONFIG_ENV = "FAQ_CACHE_CONFIG"

DEFAULT_SYSTEM_PROMPT = (
    "คุณเป็นแอดมินของเว็บไซต์คอร์สเรียนออนไลน์ ตอบเป็นภาษาไทยเท่านั้น "
    "เน้นช่วยแก้ปัญหาการใช้งานเว็บไซต์ ตอบสั้น กระชับ และสุภาพ"
)


@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings."""

    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "faq"
    index_name: str = "idx:faq_chat"
    max_chat_per_category: int = MAX_CHAT_PER_CATEGORY
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL
    socket_timeout: float = 5.0

    vector_search_enabled: bool = True
    embedding_provider: str = "none"          # "none" | "local" | "http"
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_url: str = ""
    embedding_token: str = ""
    embedding_dimension: int = 384
    embedding_timeout: float = 10.0
    embedding_batch_size: int = EMBEDDING_BATCH_SIZE

    judge_url: str = ""
    judge_model: str = "gpt-4o-mini"
    judge_token: str = ""
    judge_timeout: float = 20.0
    judge_system_prompt: str = DEFAULT_SYSTEM_PROMPT

    breaker_failure_threshold: int = 5
    breaker_reset_seconds: float = 30.0

    def to_dict(self, redact: bool = True) -> dict[str, Any]:
        data = asdict(self)
        if redact:
            for key in ("embedding_token", "judge_token"):
                if data[key]:
                    data[key] = "***"
        return data


_DEFAULT_CONFIG: dict[str, Any] = {f.name: f.default for f in fields(Settings)}
_VALID_KEYS = frozenset(_DEFAULT_CONFIG)

_ENV_OVERRIDES = {
    "FAQ_CACHE_REDIS_URL": "redis_url",
    "FAQ_CACHE_KEY_PREFIX": "key_prefix",
    "FAQ_CACHE_EMBEDDING_PROVIDER": "embedding_provider",
    "FAQ_CACHE_EMBEDDING_URL": "embedding_url",
    "FAQ_CACHE_EMBEDDING_TOKEN": "embedding_token",
    "FAQ_CACHE_JUDGE_URL": "judge_url",
    "FAQ_CACHE_JUDGE_MODEL": "judge_model",
    "FAQ_CACHE_JUDGE_TOKEN": "judge_token",
}


def _coerce(key: str, value: Any) -> Any:
    """Coerce a raw config value to the type of its default."""
    default = _DEFAULT_CONFIG[key]
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


def _config_path(path: str | None) -> str:
    if path:
        return path
    return os.environ.get(CONFIG_ENV, os.path.join(os.getcwd(), CONFIG_FILENAME))


def load_config(path: str | None = None, env: dict[str, str] | None = None) -> Settings:
    """Load settings from file and environment. Returns defaults on any file error."""
    env = os.environ if env is None else env
    config = dict(_DEFAULT_CONFIG)

    config_path = _config_path(path)
    if os.path.isfile(config_path):
        try:
            with open(config_path, encoding="utf-8") as f:
                raw = json.load(f)
            section = raw.get("faq_cache", {}) if isinstance(raw, dict) else {}
            if not isinstance(section, dict):
                _log.warning("config_section_invalid", path=config_path)
                section = {}
            unknown = set(section) - _VALID_KEYS
            if unknown:
                _log.warning("config_unknown_keys", keys=sorted(unknown))
            for key in _VALID_KEYS & set(section):
                try:
                    config[key] = _coerce(key, section[key])
                except (TypeError, ValueError):
                    _log.warning("config_value_invalid", key=key, value=section[key])
        except (OSError, json.JSONDecodeError) as exc:
            _log.warning("config_load_failed", path=config_path, error=str(exc))

    for var, key in _ENV_OVERRIDES.items():
        if env.get(var):
            config[key] = _coerce(key, env[var])

    if config["max_chat_per_category"] < 1:
        _log.warning("config_value_invalid", key="max_chat_per_category",
                     value=config["max_chat_per_category"])
        config["max_chat_per_category"] = MAX_CHAT_PER_CATEGORY

    return Settings(**config)


@dataclass(frozen=True)
class Capabilities:
    """Backend capabilities probed once at startup. Never re-checked."""

    search_extension: bool = False
    embeddings: bool = False

    @property
    def vector_search(self) -> bool:
        return self.search_extension and self.embeddings
