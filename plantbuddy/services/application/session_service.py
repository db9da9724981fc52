"""
Session Manager
===============
Owns the login session: credentials exchange, role, token lifetime and the
``LOGGED_OUT -> AUTHENTICATING -> ACTIVE -> EXPIRING`` state machine.

Ending a session (logout, expiry, server-side revocation) always purges the
entity cache, since every cached entity was fetched under the session's
token and may include admin-only data.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Optional

from plantbuddy.domain.exceptions import (
    InvalidCredentialsError,
    LoginRejectedError,
    NotAuthenticatedError,
    PlantBuddyError,
    ServerError,
    SessionExpiredError,
    TransportError,
)
from plantbuddy.domain.models import Session
from plantbuddy.enums.common import Role, SessionState
from plantbuddy.enums.events import ClientEvent
from plantbuddy.utils.time import utc_now

if TYPE_CHECKING:
    from infrastructure.api.plant_api import PlantServiceApi
    from plantbuddy.schemas import LoginResponse
    from plantbuddy.services.protocols import AuditSink
    from plantbuddy.utils.cache import EntityCache
    from plantbuddy.utils.event_bus import EventBus

logger = logging.getLogger(__name__)


class SessionManager:
    """Single source of truth for "who is logged in, with which role"."""

    def __init__(
        self,
        api: "PlantServiceApi",
        cache: "EntityCache",
        *,
        event_bus: Optional["EventBus"] = None,
        audit_logger: Optional["AuditSink"] = None,
        refresh_enabled: bool = True,
        refresh_margin_seconds: int = 60,
        default_lifetime_seconds: int = 3600,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._api = api
        self._cache = cache
        self._event_bus = event_bus
        self._audit = audit_logger
        self.refresh_enabled = refresh_enabled
        self.refresh_margin = timedelta(seconds=refresh_margin_seconds)
        self.default_lifetime = timedelta(seconds=default_lifetime_seconds)
        self._clock = clock

        self._lock = threading.RLock()
        self._state = SessionState.LOGGED_OUT
        self._session: Optional[Session] = None
        # Bumped whenever a session ends so a slow login cannot resurrect it
        self._generation = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    def current_session(self) -> Optional[Session]:
        return self._session

    def current_role(self) -> Optional[Role]:
        session = self._session
        return session.role if session is not None else None

    def require_session(self) -> Session:
        """
        Return the active session.

        Raises:
            NotAuthenticatedError: Nobody is logged in.
            SessionExpiredError: The token's lifetime is over; the session is
                ended before raising.
        """
        session = self._session
        if session is None:
            raise NotAuthenticatedError("Not logged in")
        if session.is_expired(self._clock()):
            self._end(session, reason="expired", event=ClientEvent.SESSION_EXPIRED, action="session_expired")
            raise SessionExpiredError("Session expired; log in again")
        return session

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------
    def login(self, username: str, secret: str) -> Session:
        """
        Exchange credentials for a session.

        Raises:
            InvalidCredentialsError: Empty input or credentials refused (401/403).
            LoginRejectedError: Any other server or transport failure.
        """
        username = (username or "").strip()
        if not username or not secret:
            self._audit_event(username or "<empty>", "login", "denied", reason="empty_credentials")
            raise InvalidCredentialsError("Username and password are required")

        if self._session is not None:
            self.logout()

        with self._lock:
            self._generation += 1
            generation = self._generation
            self._state = SessionState.AUTHENTICATING

        try:
            reply = self._api.login(username, secret)
        except ServerError as e:
            self._abort_login(generation)
            if e.status in (401, 403):
                logger.warning("Login refused for user '%s' (HTTP %s)", username, e.status)
                self._audit_event(username, "login", "denied", status=e.status)
                raise InvalidCredentialsError("Invalid username or password") from e
            logger.error("Login for user '%s' rejected by server (HTTP %s)", username, e.status)
            self._audit_event(username, "login", "error", status=e.status)
            raise LoginRejectedError(f"Server rejected the login (HTTP {e.status})", detail=e.detail) from e
        except TransportError as e:
            self._abort_login(generation)
            logger.error("Login for user '%s' failed: %s", username, e)
            self._audit_event(username, "login", "error", error=type(e).__name__)
            raise LoginRejectedError("Service unavailable, try again later", detail=e.detail) from e

        session = self._session_from(reply, username)
        with self._lock:
            if generation != self._generation:
                raise LoginRejectedError("Login was cancelled")
            self._session = session
            self._state = SessionState.ACTIVE

        logger.info("User '%s' logged in as %s", username, session.role.value)
        self._audit_event(username, "login", "success", role=session.role.value)
        self._publish(ClientEvent.SESSION_STARTED, session)
        return session

    def _abort_login(self, generation: int) -> None:
        with self._lock:
            if generation == self._generation:
                self._state = SessionState.LOGGED_OUT

    def logout(self) -> None:
        """End the session from any state, purging all cached data."""
        with self._lock:
            session = self._session
        self._end(session, reason="logout", event=ClientEvent.SESSION_ENDED, action="logout", force=True)

    def invalidate(self, reason: str = "token_rejected") -> None:
        """End the session because the server refused its token."""
        session = self._session
        if session is None:
            return
        logger.warning("Session for '%s' invalidated: %s", session.username, reason)
        self._end(session, reason=reason, event=ClientEvent.SESSION_EXPIRED, action="session_invalidated")

    def _end(
        self,
        session: Optional[Session],
        *,
        reason: str,
        event: ClientEvent,
        action: str,
        force: bool = False,
    ) -> bool:
        with self._lock:
            if not force and (session is None or self._session is not session):
                return False
            self._session = None
            self._state = SessionState.LOGGED_OUT
            self._generation += 1

        self._cache.purge()
        if session is not None:
            self._audit_event(session.username, action, "success", reason=reason)
        self._publish(event, {"reason": reason, "user_id": session.user_id if session else None})
        return True

    # ------------------------------------------------------------------
    # Expiry & refresh
    # ------------------------------------------------------------------
    def check_expiry(self) -> SessionState:
        """Background check: expire, or refresh when close to expiry."""
        session = self._session
        if session is None:
            return self._state

        now = self._clock()
        if session.is_expired(now):
            logger.info("Session for '%s' expired", session.username)
            self._end(session, reason="expired", event=ClientEvent.SESSION_EXPIRED, action="session_expired")
            return self._state

        if session.expires_at - now <= self.refresh_margin:
            with self._lock:
                if self._session is session:
                    self._state = SessionState.EXPIRING
            if self.refresh_enabled:
                try:
                    self.refresh()
                except PlantBuddyError as e:
                    logger.debug("Session refresh failed: %s", e)
        return self._state

    def refresh(self) -> Session:
        """
        Swap the token for a fresh one.

        Raises:
            NotAuthenticatedError / SessionExpiredError: no usable session;
                a failed refresh also ends the session.
        """
        session = self.require_session()
        try:
            reply = self._api.refresh(session.token)
        except TransportError as e:
            logger.warning("Token refresh for '%s' failed: %s", session.username, e)
            self._end(session, reason="refresh_failed", event=ClientEvent.SESSION_EXPIRED, action="session_refresh")
            raise SessionExpiredError("Session could not be refreshed; log in again") from e

        renewed = self._session_from(reply, session.username)
        with self._lock:
            if self._session is not session:
                raise SessionExpiredError("Session ended during refresh")
            self._session = renewed
            self._state = SessionState.ACTIVE

        logger.info("Session for '%s' refreshed until %s", renewed.username, renewed.expires_at.isoformat())
        self._audit_event(renewed.username, "session_refresh", "success")
        self._publish(ClientEvent.SESSION_REFRESHED, renewed)
        return renewed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _session_from(self, reply: "LoginResponse", username: str) -> Session:
        issued = self._clock()
        lifetime = timedelta(seconds=reply.expires_in) if reply.expires_in else self.default_lifetime
        return Session(
            user_id=reply.id,
            username=reply.name or username,
            role=reply.role,
            token=reply.token,
            issued_at=issued,
            expires_at=issued + lifetime,
        )

    def _publish(self, event: ClientEvent, payload) -> None:
        if self._event_bus is None:
            return
        if isinstance(payload, Session):
            payload = {
                "user_id": payload.user_id,
                "username": payload.username,
                "role": payload.role.value,
                "expires_at": payload.expires_at.isoformat(),
            }
        self._event_bus.publish(event, payload)

    def _audit_event(self, actor: str, action: str, outcome: str, **metadata) -> None:
        if self._audit is not None:
            self._audit.log_event(actor=actor, action=action, resource="session", outcome=outcome, **metadata)
