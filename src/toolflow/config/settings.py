"""
Configuration with Pydantic Settings.

Every field can be set from the environment with the TOOLFLOW_ prefix and
"__" between nested sections, e.g. TOOLFLOW_SERVICE__DEFAULT_MODEL=gpt-4.1.
"""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceConfig(BaseModel):
    """Connection and default request parameters for the tool service."""

    api_key: str | None = Field(None, description="API key sent as a bearer token")
    base_url: str = Field("https://api.openai.com/v1", description="Chat completions base URL")
    default_model: str = Field("gpt-4.1", description="Model used when a step names none")
    default_temperature: float = Field(0.7, ge=0.0, le=2.0)
    default_max_tokens: int = Field(2000, gt=0)
    timeout: float = Field(60.0, gt=0, description="HTTP timeout in seconds")
    max_retries: int = Field(3, ge=1, description="Attempts for connect and timeout errors")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class FlowConfig(BaseModel):
    """Engine defaults applied to steps that do not override them."""

    default_max_retries: int = Field(3, ge=0)
    issue_scope: Literal["final", "all"] = Field("final")
    step_timeout: float | None = Field(None, gt=0, description="Per-attempt timeout in seconds")


class ObservabilityConfig(BaseModel):
    """Logging, tracing and metrics."""

    log_level: str = Field("INFO")
    enable_tracing: bool = Field(False)
    enable_metrics: bool = Field(True)
    service_name: str = Field("toolflow")
    otlp_endpoint: str | None = Field(None)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """Main settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="TOOLFLOW_", env_nested_delimiter="__", case_sensitive=False, extra="ignore"
    )

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    flow: FlowConfig = Field(default_factory=FlowConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
