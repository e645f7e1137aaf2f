"""Configuration management for the mention tracker."""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, SecretStr, model_validator


class InstagramConfig(BaseModel):
    """Instagram Graph API and webhook settings."""

    api_base: str = "https://graph.instagram.com"
    api_version: str = "v24.0"
    app_secret: SecretStr | None = Field(
        default=None, description="Global webhook signing secret (fallback for tenants)"
    )
    verify_token: SecretStr | None = Field(
        default=None, description="Token echoed back during the GET subscription handshake"
    )
    request_timeout: float = Field(default=10.0, gt=0, description="Per-call timeout in seconds")
    inbox_base_url: str = "https://business.facebook.com/latest/inbox/instagram"

    @property
    def base_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/{self.api_version}"


class LifecycleConfig(BaseModel):
    """Story verification and expiry settings."""

    verification_offsets_minutes: list[int] = Field(
        default_factory=lambda: [240, 480, 720, 960, 1200, 1380],
        description="Minutes since mentioned_at at which a story is re-checked",
    )
    verification_window_minutes: int = Field(default=30, ge=1)
    max_verification_checks: int | None = Field(default=None, ge=1)
    story_lifetime_hours: int = Field(default=24, ge=1)

    @model_validator(mode="after")
    def _check_budget(self) -> "LifecycleConfig":
        if not self.verification_offsets_minutes:
            raise ValueError("verification_offsets_minutes must not be empty")
        self.verification_offsets_minutes = sorted(set(self.verification_offsets_minutes))
        offsets = len(self.verification_offsets_minutes)
        if self.max_verification_checks is None:
            self.max_verification_checks = offsets
        elif self.max_verification_checks > offsets:
            raise ValueError(
                f"max_verification_checks ({self.max_verification_checks}) "
                f"exceeds the number of verification offsets ({offsets})"
            )
        return self


class PartySelectionConfig(BaseModel):
    """Party selection dialog settings."""

    timeout_hours: int = Field(default=4, ge=1)
    max_quick_replies: int = Field(default=13, ge=1, le=13)
    quick_reply_title_length: int = Field(default=20, ge=2, le=20)
    header_text: str = "Thanks for mentioning us! 🎉\n\nWhich party is your story about?\n\n"
    confirmation_text: str = "Perfect! Thanks for sharing about {party_name}"


class ServiceConfig(BaseModel):
    """Runtime settings for the HTTP service and workers."""

    database_url: str = Field(
        default="sqlite+aiosqlite:///~/.mention-tracker/mentions.db",
        description="SQLAlchemy async database URL",
    )
    cron_secret: SecretStr | None = Field(
        default=None, description="Shared secret for the internal job endpoints"
    )
    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)


class Config(BaseModel):
    """Root configuration model."""

    instagram: InstagramConfig = InstagramConfig()
    lifecycle: LifecycleConfig = LifecycleConfig()
    party_selection: PartySelectionConfig = PartySelectionConfig()
    service: ServiceConfig = ServiceConfig()


def load_config(config_path: str | Path = "config.yaml") -> Config:
    """Load and validate configuration from YAML file.

    Supports ${VAR_NAME} syntax for environment variable expansion.

    Args:
        config_path: Path to the configuration file.

    Returns:
        Validated Config object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValidationError: If config is invalid.
        ValueError: If referenced environment variable is not set.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\n"
            "Copy config.example.yaml to config.yaml and fill in your values."
        )

    with path.open() as f:
        raw_config = yaml.safe_load(f) or {}

    return Config(**expand_env_vars(raw_config))


def expand_env_vars(obj):
    """Replace "${VAR_NAME}" strings with the value of the environment variable."""
    if isinstance(obj, dict):
        return {k: expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [expand_env_vars(item) for item in obj]
    elif isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
        env_var = obj[2:-1]
        value = os.getenv(env_var)
        if value is None:
            raise ValueError(f"Environment variable '{env_var}' is not set")
        return value
    return obj
