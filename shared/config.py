"""
Shared configuration management for the Astro Insights gateway.

Every setting is read from the environment (or a local ``.env`` file) with the
``ASTRO_`` prefix. Credentials additionally accept the variable names the web
client deployment already uses (``TOGETHER_API_KEY``, ``VITE_TOGETHER_API_KEY``
and so on). No credential has a default.
"""

from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ASTRO_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = "local"
    log_level: str = "info"
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = ["*"]


class GatewayConfig(BaseConfig):
    """Completion gateway and data-proxy settings."""

    # Request budget
    request_deadline_seconds: float = 55.0
    upstream_timeout_seconds: float = 15.0

    # Primary completion provider (Together AI)
    together_api_key: Optional[str] = Field(
        default=None,
        validation_alias=_env("ASTRO_TOGETHER_API_KEY", "TOGETHER_API_KEY", "VITE_TOGETHER_API_KEY"),
    )
    together_api_url: str = "https://api.together.xyz/v1/chat/completions"
    together_default_model: str = "mistralai/Mixtral-8x7B-Instruct-v0.1"
    together_max_tokens: int = 10000

    # Fallback completion provider (Anthropic Claude)
    claude_api_key: Optional[str] = Field(
        default=None,
        validation_alias=_env("ASTRO_CLAUDE_API_KEY", "CLAUDE_API_KEY", "VITE_CLAUDE_API_KEY"),
    )
    claude_api_url: str = "https://api.anthropic.com/v1/messages"
    claude_model: str = "claude-3-5-sonnet-20241022"
    claude_api_version: str = "2023-06-01"
    claude_max_tokens: int = 4096

    # Astrology data provider (Prokerala)
    prokerala_client_id: Optional[str] = Field(
        default=None,
        validation_alias=_env("ASTRO_PROKERALA_CLIENT_ID", "PROKERALA_CLIENT_ID", "VITE_PROKERALA_CLIENT_ID"),
    )
    prokerala_client_secret: Optional[str] = Field(
        default=None,
        validation_alias=_env("ASTRO_PROKERALA_CLIENT_SECRET", "PROKERALA_CLIENT_SECRET", "VITE_PROKERALA_CLIENT_SECRET"),
    )
    prokerala_token_url: str = "https://api.prokerala.com/token"
    prokerala_api_url: str = "https://api.prokerala.com/v2/astrology"
    token_safety_margin_ms: int = 600_000

    # Data provider rate limiting
    rate_limit_count: int = 50
    rate_limit_window_ms: int = 60_000

    # Upstream retry policy
    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 1000
    retry_backoff_factor: float = 2.0
    retry_jitter_ms: int = 500

    # Truncation-triggered reprompt policy
    reprompt_max_attempts: int = 2
    reprompt_base_delay_ms: int = 500
    reprompt_backoff_factor: float = 2.0
    reprompt_jitter_ms: int = 250

    # Truncation heuristics
    truncation_min_completion_tokens: int = 300
    truncation_min_content_chars: int = 1000
    truncation_hard_floor_tokens: int = 50
    truncation_min_section_body_chars: int = 40

    # Geocoding
    geocode_url: str = "https://nominatim.openstreetmap.org/search"
    geocode_user_agent: str = "AstroInsights/1.0"


def get_config(**overrides) -> GatewayConfig:
    """Get the gateway configuration."""
    return GatewayConfig(**overrides)
