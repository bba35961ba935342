"""Engine settings: bundled YAML defaults overridden by BRANCHWISE_* env vars."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

_DEFAULTS_PATH = Path(__file__).parent / "settings.yml"


class LayoutSettings(BaseModel):
    base_width: float = Field(default=220, gt=0)
    min_spacing: float = Field(default=50, ge=0)
    base_vertical: float = Field(default=180, gt=0)
    level_factor: float = Field(default=15, ge=0)
    child_factor: float = Field(default=5, ge=0)
    child_cap: float = Field(default=30, ge=0)
    origin_x: float = 0
    origin_y: float = 50


class ContextSettings(BaseModel):
    max_tokens: int = Field(default=7000, gt=0)
    keep_recent_turns: int = Field(default=6, ge=0)
    summary_max_tokens: int = Field(default=1000, gt=0)
    system_prompt: str = (
        "You are a helpful AI assistant in a branching conversation tree. "
        "Answer based on the provided conversation path. If information is "
        "missing, ask a precise clarifying question. Keep answers concise "
        "unless asked for depth."
    )


class RateLimitSettings(BaseModel):
    max_requests: int = Field(default=10, gt=0)
    window_seconds: float = Field(default=60, gt=0)


class GenerationSettings(BaseModel):
    default_provider: str = "openai"
    # Overrides default_models for the default provider only
    default_model: str | None = None
    default_models: dict[str, str] = Field(default_factory=lambda: {
        "openai": "gpt-4o-mini",
        "anthropic": "claude-haiku-4-5-20251001",
    })
    max_tokens: int = Field(default=500, gt=0)
    temperature: float | None = 0.7
    completion_timeout_seconds: float = Field(default=60, gt=0)
    stream_flush_chars: int = Field(default=400, gt=0)


class Settings(BaseModel):
    database_path: str = "branchwise.db"
    log_level: str = "INFO"
    layout: LayoutSettings = Field(default_factory=LayoutSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)


# env var -> (section, field); section None means top level
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "BRANCHWISE_DB_PATH": (None, "database_path"),
    "BRANCHWISE_LOG_LEVEL": (None, "log_level"),
    "BRANCHWISE_MAX_CONTEXT_TOKENS": ("context", "max_tokens"),
    "BRANCHWISE_RATE_LIMIT": ("rate_limit", "max_requests"),
    "BRANCHWISE_RATE_WINDOW_SECONDS": ("rate_limit", "window_seconds"),
    "BRANCHWISE_COMPLETION_TIMEOUT": ("generation", "completion_timeout_seconds"),
    "BRANCHWISE_DEFAULT_PROVIDER": ("generation", "default_provider"),
    "BRANCHWISE_DEFAULT_MODEL": ("generation", "default_model"),
}


def load_settings(
    path: Path | str | None = None,
    env: dict[str, str] | None = None,
) -> Settings:
    """Load settings from YAML, then apply environment overrides.

    Raises pydantic.ValidationError if the merged values are invalid.
    """
    source = Path(path) if path is not None else _DEFAULTS_PATH
    raw: dict[str, Any] = {}
    if source.exists():
        with source.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    environ = os.environ if env is None else env
    for var, (section, field) in _ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None or value == "":
            continue
        if section is None:
            raw[field] = value
        else:
            raw.setdefault(section, {})[field] = value

    return Settings.model_validate(raw)
