"""
Session state signalled by the request pipeline.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from medikariyer_access.logging import get_logger, set_user_context


class AuthStatus(str, Enum):
    """Authentication status of the client."""
    UNKNOWN = "unknown"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"
    ACCOUNT_DISABLED = "account_disabled"


@runtime_checkable
class SessionState(Protocol):
    """Receiver of session transitions, typically the UI auth store."""

    def mark_authenticated(self, user: Dict[str, Any]) -> None: ...

    def mark_unauthenticated(self) -> None: ...

    def mark_account_disabled(self) -> None: ...


class InMemorySessionState:
    """Session state holder with change listeners."""

    def __init__(self):
        self.logger = get_logger("medikariyer.session")
        self.status = AuthStatus.UNKNOWN
        self.user: Optional[Dict[str, Any]] = None
        self._listeners: List[Callable[[AuthStatus], None]] = []

    def subscribe(self, listener: Callable[[AuthStatus], None]) -> None:
        self._listeners.append(listener)

    def mark_authenticated(self, user: Dict[str, Any]) -> None:
        self.user = user or self.user
        user_id = (self.user or {}).get("id")
        set_user_context(str(user_id) if user_id is not None else None)
        self._transition(AuthStatus.AUTHENTICATED)

    def mark_unauthenticated(self) -> None:
        self.user = None
        set_user_context(None)
        self._transition(AuthStatus.UNAUTHENTICATED)

    def mark_account_disabled(self) -> None:
        if self.user is not None:
            self.user = {**self.user, "is_active": False}
        self._transition(AuthStatus.ACCOUNT_DISABLED)

    @property
    def is_authenticated(self) -> bool:
        return self.status == AuthStatus.AUTHENTICATED

    def _transition(self, status: AuthStatus) -> None:
        if status == self.status:
            return
        self.logger.info("Session status changed", previous=self.status.value, status=status.value)
        self.status = status
        for listener in self._listeners:
            listener(status)
