"""Pydantic models for tamma configuration."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class RateLimitConfig(BaseModel):
    """Overrides for a provider's published rate limits."""

    requests_per_minute: int | None = Field(default=None, gt=0)
    tokens_per_minute: int | None = Field(default=None, gt=0)


class ProviderConfig(BaseModel):
    """Configuration for a single AI provider."""

    enabled: bool = True
    type: str | None = None  # factory type; defaults to the table key
    api_key: str | None = Field(default=None, repr=False)
    api_key_env: str | None = None
    base_url: str | None = None
    timeout: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    model: str | None = None
    rate_limit: RateLimitConfig | None = None

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str | None) -> str | None:
        if value is not None and not value.startswith(("http://", "https://")):
            msg = f"base_url must be an http(s) URL, got {value!r}"
            raise ValueError(msg)
        return value


class PlatformConfig(BaseModel):
    """Configuration for a single Git hosting platform."""

    enabled: bool = True
    type: str | None = None  # github | gitlab | gitea | forgejo
    api_key: str | None = Field(default=None, repr=False)
    api_key_env: str | None = None
    base_url: str | None = None
    timeout: float = Field(default=30.0, gt=0)
    rate_limit: RateLimitConfig | None = None

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str | None) -> str | None:
        if value is not None and not value.startswith(("http://", "https://")):
            msg = f"base_url must be an http(s) URL, got {value!r}"
            raise ValueError(msg)
        return value


class DispatchConfig(BaseModel):
    """Dispatch façade behaviour."""

    max_rate_limit_waits: int = Field(default=3, ge=0)
    default_timeout: float | None = Field(default=None, gt=0)
    default_platform: str | None = None


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str = ""
    structured: bool = False


class TammaConfig(BaseModel):
    """Top-level configuration for tamma."""

    providers: dict[str, ProviderConfig] = Field(
        default_factory=lambda: {
            "anthropic": ProviderConfig(api_key_env="ANTHROPIC_API_KEY"),
            "openai": ProviderConfig(api_key_env="OPENAI_API_KEY"),
            "google": ProviderConfig(api_key_env="GOOGLE_API_KEY"),
        }
    )
    platforms: dict[str, PlatformConfig] = Field(
        default_factory=lambda: {
            "github": PlatformConfig(api_key_env="GITHUB_TOKEN"),
            "gitlab": PlatformConfig(api_key_env="GITLAB_TOKEN"),
        }
    )
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
