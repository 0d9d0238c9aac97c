"""
Shared configuration management for the Decision Layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="DECISIONS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    log_format: str = Field(default="json")

    # Observability
    enable_tracing: bool = Field(default=False)
    enable_console_tracing: bool = Field(default=False)
    metrics_port: Optional[int] = Field(default=None)


class DecisionSettings(BaseConfig):
    """Rule engine configuration."""

    service_name: str = Field(default="decisions")

    # Strategy used by rule sets compiled without an explicit one
    default_strategy: str = Field(default="collect_all")

    # Unknown strategy names fall back to collect_all instead of raising
    lenient_strategy_names: bool = Field(default=False)

    # YAML or JSON rules document loaded at engine construction
    rules_config_path: Optional[str] = Field(default=None)


def get_config(**overrides) -> DecisionSettings:
    """Get rule engine configuration from the environment."""
    return DecisionSettings(**overrides)
