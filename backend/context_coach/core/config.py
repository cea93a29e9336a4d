"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "CTXCOACH_"
DEFAULT_CONFIG_PATH = Path("~/.config/context-coach/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("logging", "level"): "log_level",
    ("logging", "json"): "log_json",
    ("embeddings", "provider"): "embedding_provider",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "max_attempts"): "embedding_max_attempts",
    ("embeddings", "retry_base_delay"): "embedding_retry_base_delay",
    ("openai", "api_key"): "openai_api_key",
    ("openai", "base_url"): "openai_base_url",
    ("chat", "model"): "chat_model",
    ("chat", "max_tokens"): "chat_max_tokens",
    ("chat", "temperature"): "chat_temperature",
    ("chat", "max_context_messages"): "max_context_messages",
    ("chat", "knowledge_base_enabled"): "knowledge_base_enabled",
    ("chunking", "max_tokens"): "chunk_max_tokens",
    ("chunking", "max_tokens_per_line"): "chunk_max_tokens_per_line",
    ("chunking", "overlap_tokens"): "chunk_overlap_tokens",
    ("docs", "request_delay"): "docs_request_delay",
    ("docs", "default_max_pages"): "docs_default_max_pages",
    ("retrieval", "limit"): "search_limit",
    ("retrieval", "min_similarity"): "search_min_similarity",
    ("retrieval", "kb_limit"): "kb_search_limit",
    ("retrieval", "kb_min_similarity"): "kb_min_similarity",
    ("memory", "recent_count"): "memory_recent_count",
    ("memory", "importance_threshold"): "memory_importance_threshold",
    ("memory", "importance_limit"): "memory_importance_limit",
    ("memory", "semantic_limit"): "memory_semantic_limit",
    ("memory", "min_similarity"): "memory_min_similarity",
    ("memory", "semantic_boost"): "memory_semantic_boost",
    ("memory", "recent_weight"): "memory_recent_weight",
    ("memory", "max_total"): "memory_max_total",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".context-coach" / "coach.db")
    log_level: str = "INFO"
    log_json: bool = True

    embedding_provider: Literal["hashed", "openai"] = "hashed"
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = 384
    embedding_max_attempts: int = Field(default=5, ge=1)
    embedding_retry_base_delay: float = Field(default=1.0, ge=0.0)

    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    http_timeout: float = 60.0

    chat_model: str = "gpt-4o-mini"
    chat_max_tokens: int = 2048
    chat_temperature: float = 0.7
    max_context_messages: int = 20
    knowledge_base_enabled: bool = True
    title_max_length: int = 50

    chunk_max_tokens: int = 400
    chunk_max_tokens_per_line: int = 100
    chunk_overlap_tokens: int = 50

    docs_request_delay: float = 1.0
    docs_default_max_pages: int = 100

    search_limit: int = 5
    search_min_similarity: float = 0.7
    kb_search_limit: int = 8
    kb_min_similarity: float = 0.5
    kb_max_result_tokens: int = 2500

    memory_recent_count: int = 5
    memory_importance_threshold: int = 4
    memory_importance_limit: int = 5
    memory_semantic_limit: int = 10
    memory_min_similarity: float = 0.7
    memory_semantic_boost: float = 1.0
    memory_recent_weight: float = 0.5
    memory_max_total: int = 20

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with CTXCOACH_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
