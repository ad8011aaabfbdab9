"""
Authenticated request pipeline.

Attaches bearer tokens to outgoing requests, refreshes the access token at
most once per expiry event however many requests are in flight, replays a
request once after a 401, and turns every failure into a typed error.
"""

import functools
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from medikariyer_access.classification import classify_network_error, classify_response, response_body
from medikariyer_access.config import PipelineConfig, get_config, matches_any, matches_endpoint
from medikariyer_access.coordinator import RefreshCoordinator
from medikariyer_access.credentials import CredentialStore, InMemoryCredentialStore
from medikariyer_access.errors import (
    AccountDisabledError,
    ApiError,
    AuthError,
    PipelineException,
    RefreshError,
)
from medikariyer_access.logging import get_logger, new_request_id, set_request_id, token_preview
from medikariyer_access.metrics import PipelineMetrics
from medikariyer_access.models import OutgoingRequest, Session, TokenPair, normalize_auth_payload
from medikariyer_access.ratelimit import EndpointRateLimiter
from medikariyer_access.refresh import RefreshClient
from medikariyer_access.session import InMemorySessionState, SessionState


class RequestPipeline:
    """Authenticated HTTP client for one backend session."""

    def __init__(self,
                 config: Optional[PipelineConfig] = None,
                 credential_store: Optional[CredentialStore] = None,
                 session_state: Optional[SessionState] = None,
                 *,
                 refresh_client: Optional[RefreshClient] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 metrics: Optional[PipelineMetrics] = None,
                 rate_limiter: Optional[EndpointRateLimiter] = None):
        self.config = config or get_config()
        self.credentials = credential_store if credential_store is not None else InMemoryCredentialStore()
        self.session_state = session_state if session_state is not None else InMemorySessionState()
        self.transport = transport
        self.logger = get_logger("medikariyer.pipeline")

        self.refresh_client = refresh_client or RefreshClient(
            self.config.api_base_url,
            self.config.refresh_path,
            timeout=self.config.request_timeout_seconds,
            transport=transport
        )
        self.coordinator = RefreshCoordinator(timeout=self.config.request_timeout_seconds)
        self.metrics = metrics or PipelineMetrics(version=self.config.client_version)
        self.rate_limiter = rate_limiter or EndpointRateLimiter(self.config.rate_limit_per_minute)

        # Per-request metadata keyed by correlation id
        self._attempts: Dict[str, int] = {}
        self._sent_tokens: Dict[str, str] = {}

    async def __aenter__(self) -> "RequestPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.coordinator.aclose()

    # ------------------------------------------------------------------
    # Endpoint classes
    # ------------------------------------------------------------------

    def is_public(self, path: str) -> bool:
        return matches_any(path, self.config.public_endpoints)

    def is_credentials_call(self, path: str) -> bool:
        return matches_any(path, self.config.credential_endpoints)

    def retry_count(self, request_id: str) -> int:
        """Number of 401 retries recorded for an in-flight request."""
        return self._attempts.get(request_id, 0)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request(self, method: str, path: str, *, json: Any = None,
                      params: Optional[Dict[str, Any]] = None,
                      headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        """Send a request through the pipeline.

        Returns the 2xx response unchanged; raises a PipelineException
        subclass for every other outcome.
        """
        req = OutgoingRequest(
            method=method.upper(),
            path=path,
            request_id=new_request_id(),
            json=json,
            params=params,
            headers=dict(headers or {})
        )
        set_request_id(req.request_id)

        started = time.monotonic()
        outcome = "error"
        try:
            self.rate_limiter.acquire(req.path)
            response = await self._execute(req)
            outcome = "success"
            return response
        except PipelineException as e:
            outcome = e.code.lower()
            raise
        finally:
            self._attempts.pop(req.request_id, None)
            self._sent_tokens.pop(req.request_id, None)
            self.metrics.record_request(req.method, outcome, time.monotonic() - started)

    async def get(self, path: str, **kwargs) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, json: Any = None, **kwargs) -> httpx.Response:
        return await self.request("POST", path, json=json, **kwargs)

    async def put(self, path: str, json: Any = None, **kwargs) -> httpx.Response:
        return await self.request("PUT", path, json=json, **kwargs)

    async def patch(self, path: str, json: Any = None, **kwargs) -> httpx.Response:
        return await self.request("PATCH", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs) -> httpx.Response:
        return await self.request("DELETE", path, **kwargs)

    async def login(self, payload: Dict[str, Any]) -> Session:
        """Sign in and store the returned session.

        A 401 surfaces as CredentialsError and leaves any stored session alone.
        """
        response = await self.post(self.config.login_path, json=payload)

        try:
            tokens = TokenPair.model_validate(normalize_auth_payload(response_body(response)))
        except ValidationError as e:
            raise ApiError(
                response.status_code,
                "The server did not return valid credentials."
            ) from e
        if not tokens.user:
            raise ApiError(response.status_code, "The server did not return valid credentials.")

        await self.credentials.save_tokens(tokens.access_token, tokens.refresh_token)
        self.session_state.mark_authenticated(tokens.user)
        self.logger.info("Login successful", user_id=tokens.user.get("id"))

        return Session(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=await self.credentials.get_expiry(),
            principal=tokens.user
        )

    async def logout(self) -> None:
        """Invalidate the refresh token server-side, then drop the session."""
        refresh_token = await self.credentials.get_refresh_token()
        if refresh_token:
            try:
                await self.post(self.config.logout_path, json={"refreshToken": refresh_token})
            except PipelineException as e:
                self.logger.warning("Logout request failed", error=e.message, code=e.code)
        await self._expire_session()
        self.logger.info("Logged out")

    # ------------------------------------------------------------------
    # Request flow
    # ------------------------------------------------------------------

    async def _execute(self, req: OutgoingRequest) -> httpx.Response:
        headers = await self._prepare_headers(req)
        response = await self._send(req, headers)
        if response.is_success:
            return response
        return await self._handle_error_response(req, response)

    async def _prepare_headers(self, req: OutgoingRequest) -> Dict[str, str]:
        """Outbound attachment stage."""
        headers = {
            "Content-Type": "application/json",
            "X-Client-Version": self.config.client_version,
            **req.headers,
            "X-Request-ID": req.request_id,
        }

        if self.is_public(req.path):
            # The refresh endpoint may still hold a soon-to-expire token
            if matches_endpoint(req.path, self.config.refresh_path):
                token = await self.credentials.get_access_token()
                if token:
                    headers["Authorization"] = f"Bearer {token}"
            return headers

        if await self._should_refresh():
            task = self.coordinator.start(
                functools.partial(self._perform_refresh, "proactive"),
                on_failure=functools.partial(self._on_refresh_failure, "proactive")
            )
            if task is not None:
                self.logger.info("Token near expiry, proactive refresh started", request_id=req.request_id)

        if self.coordinator.is_refreshing:
            waiter = self.coordinator.wait()
            self.metrics.set_waiters(self.coordinator.pending_count)
            self.logger.debug("Refresh in progress, waiting", request_id=req.request_id)
            await waiter
            self.metrics.set_waiters(self.coordinator.pending_count)

        # Re-read: the token may have changed while this request waited
        token = await self.credentials.get_access_token()
        if not token:
            self.logger.warning("No access token for protected endpoint", path=req.path)
            raise AuthError(details={"request_id": req.request_id})

        headers["Authorization"] = f"Bearer {token}"
        self._sent_tokens[req.request_id] = token
        self.logger.debug("Authorization header added", path=req.path, token=token_preview(token))
        return headers

    async def _should_refresh(self) -> bool:
        access_token = await self.credentials.get_access_token()
        if not access_token:
            return bool(await self.credentials.get_refresh_token())

        expires_at = await self.credentials.get_expiry()
        if expires_at is None:
            return False
        remaining = (expires_at - datetime.now(timezone.utc)).total_seconds()
        return remaining <= self.config.refresh_lead_time_seconds

    async def _send(self, req: OutgoingRequest, headers: Dict[str, str]) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.config.api_base_url,
                timeout=self.config.request_timeout_seconds,
                transport=self.transport
            ) as client:
                response = await client.request(
                    req.method,
                    req.path,
                    json=req.json,
                    params=req.params,
                    headers=headers
                )
        except httpx.RequestError as e:
            error = classify_network_error(e)
            error.details["request_id"] = req.request_id
            self.logger.error(
                "Network error",
                method=req.method,
                path=req.path,
                kind=error.kind,
                error=str(e)
            )
            raise error from e

        self.logger.debug("Response received", method=req.method, path=req.path, status_code=response.status_code)
        return response

    async def _handle_error_response(self, req: OutgoingRequest, response: httpx.Response) -> httpx.Response:
        """Reactive path: classify a non-2xx response, or refresh and retry once on 401."""
        credentials_call = self.is_credentials_call(req.path)

        if response.status_code == 401 and not credentials_call and not self.is_public(req.path):
            return await self._handle_unauthorized(req, response)

        error = classify_response(response, credentials_call=credentials_call)
        error.details["request_id"] = req.request_id

        if isinstance(error, AccountDisabledError):
            self.session_state.mark_account_disabled()

        self.logger.warning(
            "Request failed",
            method=req.method,
            path=req.path,
            status_code=response.status_code,
            code=error.code
        )
        raise error

    async def _handle_unauthorized(self, req: OutgoingRequest, response: httpx.Response) -> httpx.Response:
        attempts = self._attempts.get(req.request_id, 0)
        if attempts >= 1:
            self.logger.warning("Request rejected after token refresh", path=req.path)
            raise await self._terminal_auth_error(req, response)

        if not await self.credentials.get_refresh_token():
            self.logger.warning("No refresh token available", path=req.path)
            raise await self._terminal_auth_error(req, response)

        self._attempts[req.request_id] = attempts + 1

        sent_token = self._sent_tokens.get(req.request_id)
        current_token = await self.credentials.get_access_token()
        if current_token and current_token != sent_token:
            self.logger.debug("Token already refreshed by another request", path=req.path)
        else:
            await self.coordinator.refresh(
                functools.partial(self._perform_refresh, "reactive"),
                on_failure=functools.partial(self._on_refresh_failure, "reactive")
            )

        self.logger.info("Retrying request with refreshed token", method=req.method, path=req.path)
        return await self._execute(req)

    async def _terminal_auth_error(self, req: OutgoingRequest, response: httpx.Response) -> AuthError:
        await self._expire_session()
        error = classify_response(response)
        if not isinstance(error, AuthError):
            error = AuthError()
        error.details["request_id"] = req.request_id
        return error

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def _perform_refresh(self, trigger: str) -> None:
        """Refresh the token pair. Runs only inside the coordinator."""
        if trigger == "proactive" and not await self._should_refresh():
            self.logger.debug("Token already fresh, skipping proactive refresh")
            return

        refresh_token = await self.credentials.get_refresh_token()
        if not refresh_token:
            raise RefreshError("No refresh token available")
        if not await self.credentials.validate_device_binding():
            raise RefreshError("Stored tokens are bound to another device")

        tokens = await self.refresh_client.refresh(refresh_token)

        await self.credentials.save_tokens(tokens.access_token, tokens.refresh_token)
        self.session_state.mark_authenticated(tokens.user)
        self.metrics.record_refresh(trigger, True)
        self.logger.info("Token refresh successful", trigger=trigger)

    async def _on_refresh_failure(self, trigger: str) -> None:
        self.metrics.record_refresh(trigger, False)
        await self._expire_session()

    async def _expire_session(self) -> None:
        await self.credentials.clear_tokens()
        self.session_state.mark_unauthenticated()
