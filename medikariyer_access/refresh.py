"""
Refresh endpoint client.

Talks to the backend directly and never through the request pipeline, so a
refresh can not recurse into another refresh.
"""

from typing import Optional

import httpx
from pydantic import ValidationError

from medikariyer_access.errors import RefreshError
from medikariyer_access.logging import get_logger
from medikariyer_access.models import TokenPair, normalize_auth_payload


class RefreshClient:
    """Client for the token refresh endpoint."""

    def __init__(self, base_url: str, refresh_path: str = "/auth/refresh", timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.refresh_path = refresh_path
        self.timeout = timeout
        self.transport = transport
        self.logger = get_logger("medikariyer.refresh_client")

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new token pair.

        Raises RefreshError on transport failure, non-2xx status, or a
        response missing either token.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}{self.refresh_path}",
                    json={"refreshToken": refresh_token}
                )
        except httpx.HTTPError as e:
            self.logger.warning("Refresh endpoint unreachable", error=str(e))
            raise RefreshError(
                "Refresh endpoint unavailable",
                details={"http_error": str(e)}
            ) from e

        if not response.is_success:
            raise RefreshError(
                f"Refresh rejected: {response.status_code}",
                details={"status_code": response.status_code}
            )

        try:
            body = response.json()
        except ValueError as e:
            raise RefreshError("Refresh response is not JSON") from e

        try:
            return TokenPair.model_validate(normalize_auth_payload(body))
        except ValidationError as e:
            self.logger.warning("Invalid refresh response structure", errors=e.error_count())
            raise RefreshError(
                "Invalid refresh token response structure",
                details={"status_code": response.status_code}
            ) from e
