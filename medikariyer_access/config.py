"""
Configuration management for the MediKariyer request pipeline.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CREDENTIAL_ENDPOINTS = [
    "/auth/login",
    "/auth/registerDoctor",
    "/auth/registerHospital",
]

DEFAULT_PUBLIC_ENDPOINTS = DEFAULT_CREDENTIAL_ENDPOINTS + [
    "/auth/refresh",
    "/auth/forgot-password",
    "/auth/reset-password",
    "/lookup/",
    "/contact",
    "/health",
    "/upload/register-photo",
]


class PipelineConfig(BaseSettings):
    """Pipeline configuration with environment overrides."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIKARIYER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "info"

    # Backend
    api_base_url: str = "http://localhost:3000/api/mobile"
    login_path: str = "/auth/login"
    refresh_path: str = "/auth/refresh"
    logout_path: str = "/auth/logout"
    client_version: str = "1.0.0"

    # Endpoint classes
    credential_endpoints: List[str] = Field(default_factory=lambda: list(DEFAULT_CREDENTIAL_ENDPOINTS))
    public_endpoints: List[str] = Field(default_factory=lambda: list(DEFAULT_PUBLIC_ENDPOINTS))

    # Token refresh
    refresh_lead_time_minutes: float = Field(default=5.0, ge=0)

    # Transport
    request_timeout_ms: int = Field(default=30000, gt=0)

    # Client-side rate limiting (requests per endpoint per minute, 0 disables)
    rate_limit_per_minute: int = Field(default=0, ge=0)

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000.0

    @property
    def refresh_lead_time_seconds(self) -> float:
        return self.refresh_lead_time_minutes * 60.0


def strip_query(path: str) -> str:
    """Drop the query string and fragment from a request path."""
    for separator in ("?", "#"):
        path = path.split(separator, 1)[0]
    return path


def matches_endpoint(path: Optional[str], pattern: str) -> bool:
    """Check a request path against an endpoint pattern.

    A pattern matches the exact path, any sub-path (``/lookup`` matches
    ``/lookup/cities``), and a pattern ending in ``/`` matches every path
    with that prefix.
    """
    if not path:
        return False
    path = strip_query(path)
    if path == pattern:
        return True
    if pattern.endswith("/"):
        return path.startswith(pattern)
    return path.startswith(pattern + "/")


def matches_any(path: Optional[str], patterns: List[str]) -> bool:
    return any(matches_endpoint(path, pattern) for pattern in patterns)


def get_config(**overrides) -> PipelineConfig:
    """Get pipeline configuration, applying explicit overrides over the environment."""
    return PipelineConfig(**overrides)
