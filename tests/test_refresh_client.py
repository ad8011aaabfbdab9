"""
Unit tests for RefreshClient.
"""

import json

import httpx
import pytest

from medikariyer_access.errors import RefreshError
from medikariyer_access.refresh import RefreshClient


BASE_URL = "http://api.test/api/mobile"


def client_for(handler):
    return RefreshClient(BASE_URL, "/auth/refresh", timeout=1.0, transport=httpx.MockTransport(handler))


class TestRefreshClient:
    """Test cases for RefreshClient."""

    @pytest.mark.asyncio
    async def test_refresh_success(self):
        """Test a successful refresh returns the new pair."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={
                "success": True,
                "data": {"accessToken": "new-access", "refreshToken": "new-refresh", "user": {"id": 42}}
            })

        tokens = await client_for(handler).refresh("old-refresh")

        assert tokens.access_token == "new-access"
        assert tokens.refresh_token == "new-refresh"
        assert tokens.user == {"id": 42}
        assert str(seen[0].url) == f"{BASE_URL}/auth/refresh"
        assert json.loads(seen[0].content) == {"refreshToken": "old-refresh"}
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_nested_token_shape(self):
        """Test the tokens.{accessToken,refreshToken} shape is accepted."""
        def handler(request):
            return httpx.Response(200, json={"tokens": {"accessToken": "a", "refreshToken": "r"}})

        tokens = await client_for(handler).refresh("old-refresh")

        assert (tokens.access_token, tokens.refresh_token) == ("a", "r")

    @pytest.mark.asyncio
    async def test_rejected(self):
        def handler(request):
            return httpx.Response(401, json={"success": False, "message": "Invalid refresh token"})

        with pytest.raises(RefreshError) as exc_info:
            await client_for(handler).refresh("revoked")

        assert exc_info.value.details["status_code"] == 401

    @pytest.mark.asyncio
    async def test_missing_refresh_token(self):
        """Test a response with only an access token is invalid."""
        def handler(request):
            return httpx.Response(200, json={"success": True, "data": {"accessToken": "a"}})

        with pytest.raises(RefreshError, match="Invalid refresh token response structure"):
            await client_for(handler).refresh("old-refresh")

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>ok</html>")

        with pytest.raises(RefreshError):
            await client_for(handler).refresh("old-refresh")

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(RefreshError) as exc_info:
            await client_for(handler).refresh("old-refresh")

        assert isinstance(exc_info.value.__cause__, httpx.ReadTimeout)
