"""
Test helper functions and factory methods for the request pipeline.
"""

import asyncio
import inspect
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import httpx
import jwt


@dataclass
class TestUser:
    """Test user data."""

    __test__ = False

    user_id: int
    email: str
    role: str
    first_name: str = "Ayse"
    last_name: str = "Yilmaz"
    is_active: bool = True
    is_approved: bool = True
    password: str = "password123"

    def as_payload(self) -> Dict[str, Any]:
        return {
            "id": self.user_id,
            "email": self.email,
            "role": self.role,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "is_active": self.is_active,
            "is_approved": self.is_approved,
        }


@dataclass
class TestToken:
    """Test token data."""

    __test__ = False

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


def create_test_doctor() -> TestUser:
    return TestUser(user_id=42, email="doctor@medikariyer.test", role="doctor")


def create_test_hospital() -> TestUser:
    return TestUser(user_id=7, email="hospital@medikariyer.test", role="hospital",
                    first_name="Sehir", last_name="Hastanesi")


class MockTokenGenerator:
    """Generate mock JWT tokens for testing."""

    __test__ = False

    def __init__(self, issuer: str = "medikariyer-api", secret: str = "mock-secret"):
        self.issuer = issuer
        self.secret = secret

    def generate_access_token(self, user: TestUser, expires_in: int = 3600) -> str:
        """Generate access token for user."""
        now = datetime.now(timezone.utc)
        payload = {
            "iss": self.issuer,
            "sub": str(user.user_id),
            "userId": user.user_id,
            "email": user.email,
            "role": user.role,
            "isApproved": user.is_approved,
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
        }

        return jwt.encode(payload, self.secret, algorithm="HS256")

    def generate_refresh_token(self, user: TestUser, expires_in: int = 2592000) -> str:
        """Generate refresh token for user."""
        now = datetime.now(timezone.utc)
        payload = {
            "iss": self.issuer,
            "sub": str(user.user_id),
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
            "typ": "Refresh"
        }

        return jwt.encode(payload, self.secret, algorithm="HS256")

    def generate_token_pair(self, user: TestUser, expires_in: int = 3600) -> TestToken:
        """Generate access and refresh token pair."""
        return TestToken(
            access_token=self.generate_access_token(user, expires_in),
            refresh_token=self.generate_refresh_token(user),
            expires_in=expires_in
        )


Handler = Callable[[httpx.Request], Any]


@dataclass
class MockBackend:
    """Scriptable stand-in for the MediKariyer mobile API.

    Serve it through ``backend.transport()``. Protected paths answer 200
    for any bearer token the backend issued and 401 otherwise.
    """

    __test__ = False

    user: TestUser = field(default_factory=create_test_doctor)
    generator: MockTokenGenerator = field(default_factory=MockTokenGenerator)
    base_path: str = "/api/mobile"
    public_prefixes: Tuple[str, ...] = ("/lookup/", "/health", "/contact")

    latency: float = 0.0
    refresh_delay: float = 0.0
    refresh_status: Optional[int] = None
    refresh_body: Optional[Dict[str, Any]] = None
    refresh_error: Optional[Exception] = None
    reject_all_tokens: bool = False

    valid_access_tokens: Set[str] = field(default_factory=set)
    valid_refresh_tokens: Set[str] = field(default_factory=set)
    refresh_calls: int = 0
    requests: List[httpx.Request] = field(default_factory=list)
    routes: Dict[Tuple[str, str], Handler] = field(default_factory=dict)
    issued: List[TestToken] = field(default_factory=list)

    def issue_pair(self, expires_in: int = 3600) -> TestToken:
        """Issue a token pair the backend will accept."""
        pair = self.generator.generate_token_pair(self.user, expires_in)
        self.valid_access_tokens.add(pair.access_token)
        self.valid_refresh_tokens.add(pair.refresh_token)
        self.issued.append(pair)
        return pair

    def revoke_access(self, token: str) -> None:
        self.valid_access_tokens.discard(token)

    def route(self, method: str, path: str, handler: Handler) -> None:
        self.routes[(method.upper(), path)] = handler

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def requests_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if self._local_path(r) == path]

    def _local_path(self, request: httpx.Request) -> str:
        path = request.url.path
        if path.startswith(self.base_path):
            path = path[len(self.base_path):]
        return path

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = self._local_path(request)
        if self.latency:
            await asyncio.sleep(self.latency)

        if path == "/auth/refresh":
            return await self._refresh(request)
        if path == "/auth/login":
            return self._login(request)

        handler = self.routes.get((request.method, path))
        if handler is not None:
            result = handler(request)
            if inspect.isawaitable(result):
                result = await result
            return result

        if path.startswith(self.public_prefixes):
            return httpx.Response(200, json={"success": True, "data": []})

        if not self._authorized(request):
            return httpx.Response(401, json={"success": False, "message": "Token expired"})
        return httpx.Response(200, json={"success": True, "data": {"path": path}})

    def _authorized(self, request: httpx.Request) -> bool:
        header = request.headers.get("Authorization", "")
        if self.reject_all_tokens or not header.startswith("Bearer "):
            return False
        return header[len("Bearer "):] in self.valid_access_tokens

    async def _refresh(self, request: httpx.Request) -> httpx.Response:
        self.refresh_calls += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_error is not None:
            raise self.refresh_error
        if self.refresh_status is not None:
            return httpx.Response(self.refresh_status, json={"success": False, "message": "Refresh rejected"})
        if self.refresh_body is not None:
            return httpx.Response(200, json=self.refresh_body)

        body = json.loads(request.content or b"{}")
        if body.get("refreshToken") not in self.valid_refresh_tokens:
            return httpx.Response(401, json={"success": False, "message": "Invalid refresh token"})

        self.valid_refresh_tokens.discard(body["refreshToken"])
        pair = self.issue_pair()
        return httpx.Response(200, json={
            "success": True,
            "data": {
                "accessToken": pair.access_token,
                "refreshToken": pair.refresh_token,
                "user": self.user.as_payload()
            }
        })

    def _login(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        if body.get("email") != self.user.email or body.get("password") != self.user.password:
            return httpx.Response(401, json={"success": False, "message": "Invalid email or password"})

        pair = self.issue_pair()
        return httpx.Response(200, json={
            "success": True,
            "data": {
                "accessToken": pair.access_token,
                "refreshToken": pair.refresh_token,
                "user": self.user.as_payload()
            }
        })
