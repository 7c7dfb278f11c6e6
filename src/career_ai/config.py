"""Centralized configuration for the generation pipeline."""

import json
from typing import Annotated, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_list(v: object) -> object:
    """Accept a JSON array string or comma-separated string from env vars."""
    if isinstance(v, str):
        try:
            parsed = json.loads(v)
        except (json.JSONDecodeError, ValueError):
            parsed = [item.strip() for item in v.split(",") if item.strip()]
        if not isinstance(parsed, list):
            return [str(parsed)]
        return [str(item) for item in parsed]
    return v


class ProviderConfig(BaseSettings):
    """Generation backend settings (mock or live Ollama)."""

    model_config = SettingsConfigDict(env_prefix="AI_", frozen=True)

    mode: Literal["mock", "live"] = "mock"
    host: str = "http://localhost:11434"
    model: str = "llama3.2:3b"
    models: dict[str, str] = Field(default_factory=dict)
    allowed_models: Annotated[list[str], NoDecode] = Field(default_factory=list)

    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=800, gt=0)

    timeout_s: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=2, ge=0, le=10)
    base_delay_s: float = Field(default=0.5, ge=0)
    max_delay_s: float = Field(default=4.0, ge=0)
    jitter_s: float = Field(default=0.3, ge=0)

    @field_validator("allowed_models", mode="before")
    @classmethod
    def _parse_allowed_models(cls, v: object) -> list[str]:
        return _parse_list(v)  # type: ignore[return-value]

    @field_validator("models", mode="before")
    @classmethod
    def _parse_models(cls, v: object) -> dict[str, str]:
        """Accept a JSON object string mapping kind to model id."""
        if isinstance(v, str):
            parsed = json.loads(v) if v.strip() else {}
            if not isinstance(parsed, dict):
                msg = "models must be a JSON object of kind -> model"
                raise ValueError(msg)
            return {str(k): str(m) for k, m in parsed.items()}
        return v  # type: ignore[return-value]

    @model_validator(mode="after")
    def _delay_bounds(self) -> "ProviderConfig":
        if self.max_delay_s < self.base_delay_s:
            msg = (
                f"max_delay_s ({self.max_delay_s}) must be >= "
                f"base_delay_s ({self.base_delay_s})"
            )
            raise ValueError(msg)
        return self

    def model_for(self, kind: str) -> str:
        """Return the model configured for *kind*, falling back to the default."""
        return self.models.get(kind, self.model)


class RateLimitConfig(BaseSettings):
    """Per-user sliding-window admission settings."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_", frozen=True)

    max_requests: int = Field(default=5, gt=0)
    window_s: float = Field(default=60.0, gt=0)


class PromptConfig(BaseSettings):
    """Maximum lengths applied to free-text fields folded into prompts."""

    model_config = SettingsConfigDict(env_prefix="PROMPT_", frozen=True)

    max_prompt_chars: int = Field(default=16_000, ge=1000)
    job_description_max: int = Field(default=2000, gt=1)
    summary_max: int = Field(default=1500, gt=1)
    description_max: int = Field(default=300, gt=1)
    note_max: int = Field(default=120, gt=1)
    item_max: int = Field(default=100, gt=1)
    list_max_items: int = Field(default=12, gt=0)
    user_additions_max: int = Field(default=1000, gt=1)


class ArtifactStoreConfig(BaseSettings):
    """Artifact persistence settings."""

    model_config = SettingsConfigDict(env_prefix="STORE_", frozen=True)

    backend: Literal["memory", "chroma"] = "memory"
    db_path: str = "./artifacts_db"
    collection_name: str = "ai_artifacts"
    embedding_model: str = "all-MiniLM-L6-v2"


class ServerConfig(BaseSettings):
    """HTTP server settings."""

    model_config = SettingsConfigDict(env_prefix="SERVER_", frozen=True)

    host: str = "127.0.0.1"
    port: int = Field(default=8000, gt=0, le=65535)


class AppConfig(BaseSettings):
    """Top-level application configuration."""

    model_config = SettingsConfigDict(frozen=True)

    data_file: str | None = None
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    prompt: PromptConfig = Field(default_factory=PromptConfig)
    store: ArtifactStoreConfig = Field(default_factory=ArtifactStoreConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
