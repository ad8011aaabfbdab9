"""
Error classification for pipeline responses.

Everything here is a pure function of its input: the same status code and
body always produce the same error kind and message.
"""

from typing import Any, Dict, Optional

import httpx

from medikariyer_access.errors import (
    AccountDisabledError,
    ApiError,
    AuthError,
    CredentialsError,
    ForbiddenError,
    NetworkError,
    PipelineException,
)
from medikariyer_access.models import NetworkErrorKind

ACCOUNT_DISABLED_CODE = "ACCOUNT_DISABLED"

STATUS_MESSAGES: Dict[int, str] = {
    400: "Invalid request. Please check the information you entered.",
    401: "Your session has expired. Please sign in again.",
    403: "You are not allowed to perform this action.",
    404: "The requested resource was not found.",
    409: "The request conflicts with the current state of the resource.",
    422: "The information you entered is not valid. Please check it.",
    429: "Too many requests. Please wait a moment and try again.",
    500: "A server error occurred. Please try again later.",
    502: "The server is temporarily unreachable. Please try again later.",
    503: "The service is currently unavailable. Please try again later.",
    504: "The server took too long to respond. Please try again later.",
}

DEFAULT_MESSAGE = "Something went wrong. Please try again."

NETWORK_MESSAGES: Dict[NetworkErrorKind, str] = {
    NetworkErrorKind.TIMEOUT: "The request timed out. Please check your connection and try again.",
    NetworkErrorKind.CONNECTION_REFUSED: "Could not connect to the server. It may be unavailable.",
    NetworkErrorKind.OFFLINE: "You appear to be offline. Please check your internet connection.",
    NetworkErrorKind.UNKNOWN: "Could not reach the server. Please try again.",
}

_OFFLINE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "temporary failure in name resolution",
    "no address associated",
    "network is unreachable",
)


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _validation_messages(errors: Any) -> Optional[str]:
    if isinstance(errors, list):
        messages = [_flatten(item) for item in errors]
        messages = [m for m in messages if m]
        return ", ".join(messages) or None
    if isinstance(errors, dict):
        messages = []
        for value in errors.values():
            if isinstance(value, list):
                joined = ", ".join(m for m in (_flatten(v) for v in value) if m)
            else:
                joined = _flatten(value)
            if joined:
                messages.append(joined)
        return "; ".join(messages) or None
    return None


def _flatten(item: Any) -> Optional[str]:
    if isinstance(item, dict):
        return _clean(item.get("message")) or _clean(item.get("msg"))
    if item is None:
        return None
    return _clean(str(item))


def extract_error_message(status_code: int, body: Any) -> str:
    """Most specific human-readable message for an error response.

    Priority: field-level validation messages, top-level ``message``,
    top-level ``error``, a status-code fallback, a generic message.
    """
    if isinstance(body, dict):
        message = (
            _validation_messages(body.get("errors"))
            or _clean(body.get("message"))
            or _clean(body.get("error"))
        )
        if message:
            return message
    elif isinstance(body, str) and body.strip() and not body.lstrip().startswith("<"):
        return body.strip()

    return STATUS_MESSAGES.get(status_code, DEFAULT_MESSAGE)


def error_code(body: Any) -> Optional[str]:
    """Structured error code from a backend error body, if present."""
    if not isinstance(body, dict):
        return None
    for key in ("code", "errorCode", "error_code"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def classify_error(status_code: int, body: Any, *, credentials_call: bool = False) -> PipelineException:
    """Map a non-2xx response to its typed error."""
    message = extract_error_message(status_code, body)
    code = error_code(body)
    details: Dict[str, Any] = {"status_code": status_code}
    if code:
        details["backend_code"] = code

    if status_code == 401:
        if credentials_call:
            return CredentialsError(message, details)
        return AuthError(message, details)
    if status_code == 403:
        if code == ACCOUNT_DISABLED_CODE:
            return AccountDisabledError(message, details)
        return ForbiddenError(message, details)
    return ApiError(status_code, message, {"backend_code": code} if code else None)


def response_body(response: httpx.Response) -> Any:
    """Decode a response body, falling back to text for non-JSON payloads."""
    try:
        return response.json()
    except ValueError:
        return response.text


def classify_response(response: httpx.Response, *, credentials_call: bool = False) -> PipelineException:
    return classify_error(response.status_code, response_body(response), credentials_call=credentials_call)


def network_error_kind(error: httpx.RequestError) -> NetworkErrorKind:
    """Categorize a transport failure."""
    if isinstance(error, httpx.TimeoutException):
        return NetworkErrorKind.TIMEOUT
    if isinstance(error, httpx.ConnectError):
        text = str(error).lower()
        if any(marker in text for marker in _OFFLINE_MARKERS):
            return NetworkErrorKind.OFFLINE
        return NetworkErrorKind.CONNECTION_REFUSED
    return NetworkErrorKind.UNKNOWN


def classify_network_error(error: httpx.RequestError) -> NetworkError:
    kind = network_error_kind(error)
    return NetworkError(NETWORK_MESSAGES[kind], kind=kind.value, details={"error_type": type(error).__name__})
