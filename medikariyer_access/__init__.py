"""
Authenticated request pipeline for the MediKariyer client.

This package aggregates the building blocks of the pipeline:

- config: Pipeline configuration via pydantic-settings
- logging: Structured logging with request correlation
- errors: Canonical error types and responses
- credentials: CredentialStore protocol and in-memory store
- session: SessionState protocol and in-memory state
- coordinator: Single-flight token refresh coordination
- refresh: Refresh endpoint client
- classification: Response and transport error classification
- ratelimit: Client-side per-endpoint rate limiting
- metrics: Prometheus metrics helpers
- pipeline: The request pipeline itself

Only ``pipeline`` composes the others; lower modules must not import it.
"""

from medikariyer_access.config import PipelineConfig, get_config
from medikariyer_access.coordinator import RefreshCoordinator, RefreshState
from medikariyer_access.credentials import CredentialStore, InMemoryCredentialStore
from medikariyer_access.errors import (
    AccountDisabledError,
    ApiError,
    AuthError,
    CredentialsError,
    ForbiddenError,
    NetworkError,
    PipelineException,
    RateLimitError,
)
from medikariyer_access.pipeline import RequestPipeline
from medikariyer_access.session import AuthStatus, InMemorySessionState, SessionState

__all__ = [
    "AccountDisabledError",
    "ApiError",
    "AuthError",
    "AuthStatus",
    "CredentialStore",
    "CredentialsError",
    "ForbiddenError",
    "InMemoryCredentialStore",
    "InMemorySessionState",
    "NetworkError",
    "PipelineConfig",
    "PipelineException",
    "RateLimitError",
    "RefreshCoordinator",
    "RefreshState",
    "RequestPipeline",
    "SessionState",
    "get_config",
]
