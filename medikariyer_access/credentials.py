"""
Credential storage consumed by the request pipeline.

The pipeline only depends on the :class:`CredentialStore` protocol. Durable
platform storage lives outside this package; :class:`InMemoryCredentialStore`
is the reference implementation used in tests and embedded clients.
"""

import hashlib
import platform
import uuid
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable

import jwt

from medikariyer_access.logging import get_logger
from medikariyer_access.models import Session


@runtime_checkable
class CredentialStore(Protocol):
    """Durable storage for the access token, refresh token and expiry."""

    async def get_access_token(self) -> Optional[str]: ...

    async def get_refresh_token(self) -> Optional[str]: ...

    async def get_expiry(self) -> Optional[datetime]: ...

    async def save_tokens(self, access_token: str, refresh_token: str) -> None: ...

    async def clear_tokens(self) -> None: ...

    async def validate_device_binding(self) -> bool: ...


def decode_expiry(token: Optional[str]) -> Optional[datetime]:
    """Read the ``exp`` claim of a JWT without verifying its signature."""
    if not token:
        return None
    try:
        claims = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def default_device_fingerprint() -> str:
    """Stable fingerprint of the current host."""
    raw = f"{platform.node()}:{platform.system()}:{uuid.getnode()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class InMemoryCredentialStore:
    """Process-local credential store with device binding."""

    def __init__(self, device_fingerprint: Optional[str] = None):
        self.logger = get_logger("medikariyer.credentials")
        self._device_fingerprint = device_fingerprint or default_device_fingerprint()
        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._bound_fingerprint: Optional[str] = None

    async def get_access_token(self) -> Optional[str]:
        return self._access_token

    async def get_refresh_token(self) -> Optional[str]:
        return self._refresh_token

    async def get_expiry(self) -> Optional[datetime]:
        return self._expires_at

    async def save_tokens(self, access_token: str, refresh_token: str,
                          expires_at: Optional[datetime] = None) -> None:
        """Persist a token pair and bind it to this device.

        ``expires_at`` defaults to the access token's ``exp`` claim.
        """
        if not access_token or not refresh_token:
            raise ValueError("access_token and refresh_token are required")

        self._access_token = access_token
        self._refresh_token = refresh_token
        self._expires_at = expires_at or decode_expiry(access_token)
        self._bound_fingerprint = self._device_fingerprint
        self.logger.debug("Tokens saved", expires_at=self._expires_at.isoformat() if self._expires_at else None)

    async def clear_tokens(self) -> None:
        self._access_token = None
        self._refresh_token = None
        self._expires_at = None
        self._bound_fingerprint = None
        self.logger.debug("Tokens cleared")

    async def validate_device_binding(self) -> bool:
        """Check the stored tokens were saved on this device.

        Tokens saved without a fingerprint are accepted.
        """
        if self._bound_fingerprint is None:
            return True
        return self._bound_fingerprint == self._device_fingerprint

    async def get_session(self, principal: Optional[dict] = None) -> Optional[Session]:
        """Snapshot of the stored session, or None when logged out."""
        if not self._access_token or not self._refresh_token:
            return None
        return Session(
            access_token=self._access_token,
            refresh_token=self._refresh_token,
            expires_at=self._expires_at,
            principal=principal or {},
        )

    def rebind(self, device_fingerprint: str) -> None:
        """Simulate the store being read on another device."""
        self._device_fingerprint = device_fingerprint
