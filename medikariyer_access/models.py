"""
Data models for the request pipeline.
"""

from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NetworkErrorKind(str, Enum):
    """Transport failure categories shown to the user."""
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


@dataclass
class Session:
    """Authenticated session as held by the credential store."""
    access_token: str
    refresh_token: str
    expires_at: Optional[datetime] = None
    principal: Dict[str, Any] = field(default_factory=dict)


@dataclass
class OutgoingRequest:
    """Outgoing request description.

    The pipeline never mutates caller headers; it builds a fresh header
    mapping for every attempt.
    """
    method: str
    path: str
    request_id: str
    json: Any = None
    params: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)


class TokenPair(BaseModel):
    """Access/refresh token pair returned by refresh and login."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    access_token: str = Field(alias="accessToken")
    refresh_token: str = Field(alias="refreshToken")
    user: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("access_token", "refresh_token")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("token must be a non-empty string")
        return value

    @field_validator("user", mode="before")
    @classmethod
    def _user_or_empty(cls, value: Any) -> Dict[str, Any]:
        return value if isinstance(value, dict) else {}


def unwrap_envelope(body: Any) -> Any:
    """Return ``body["data"]`` for ``{success, data}`` envelopes, else the body."""
    if isinstance(body, dict) and isinstance(body.get("data"), dict):
        return body["data"]
    return body


def normalize_auth_payload(body: Any) -> Dict[str, Any]:
    """Normalize the token field spellings used across auth responses."""
    payload = unwrap_envelope(body)
    if not isinstance(payload, dict):
        return {}
    tokens = payload.get("tokens") if isinstance(payload.get("tokens"), dict) else {}
    return {
        "accessToken": payload.get("accessToken") or payload.get("token")
        or tokens.get("accessToken") or tokens.get("token"),
        "refreshToken": payload.get("refreshToken")
        or tokens.get("refreshToken") or tokens.get("refresh_token"),
        "user": payload.get("user"),
    }
