"""Centralized exception hierarchy for the PlantBuddy client core.

All transport, session and mutation failures inherit from
:class:`PlantBuddyError` so the presentation shell can catch a single base
class as a safety net, yet still match on specific subclasses to show the
right message (bad credentials vs. server unavailable, conflict vs.
connectivity).

Hierarchy
---------
::

    PlantBuddyError
    ├── ValidationError              (bad local input)
    ├── ConfigurationError           (missing / invalid config)
    ├── TransportError
    │   ├── UnreachableError         (connection refused, DNS, reset)
    │   ├── TransportTimeoutError    (deadline exhausted)
    │   ├── ServerError              (non-2xx status)
    │   └── MalformedResponseError   (body does not match the contract)
    ├── AuthError
    │   ├── InvalidCredentialsError
    │   ├── LoginRejectedError       (server refused or unavailable at login)
    │   ├── SessionExpiredError
    │   └── NotAuthenticatedError
    └── MutationError
        ├── PolicyDeniedError
        ├── ConflictError            (server holds a newer version)
        ├── MutationUnreachableError
        └── MutationRejectedError
"""

from __future__ import annotations

from typing import Any


class PlantBuddyError(Exception):
    """Base exception for all client core errors.

    Parameters
    ----------
    message:
        Human-readable description.
    detail:
        Optional machine-readable context dict for structured logging.
    """

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


class ValidationError(PlantBuddyError):
    """Caller supplied invalid or incomplete input."""


class ConfigurationError(PlantBuddyError):
    """Missing or invalid client configuration."""


# ── Transport ────────────────────────────────────────────────────────


class TransportError(PlantBuddyError):
    """A request to the remote service did not produce a usable response."""

    @property
    def is_network_failure(self) -> bool:
        return isinstance(self, (UnreachableError, TransportTimeoutError))


class UnreachableError(TransportError):
    """The remote service could not be reached."""


class TransportTimeoutError(TransportError):
    """The call's deadline expired before a response arrived."""


class ServerError(TransportError):
    """The service answered with a non-success HTTP status."""

    def __init__(self, status: int, payload: Any = None, message: str = "") -> None:
        super().__init__(message or f"Server responded with HTTP {status}", detail={"status": status})
        self.status = status
        self.payload = payload

    @property
    def is_conflict(self) -> bool:
        return self.status == 409

    @property
    def is_unauthorized(self) -> bool:
        return self.status == 401


class MalformedResponseError(TransportError):
    """The response body could not be decoded or failed schema validation."""


# ── Authentication ───────────────────────────────────────────────────


class AuthError(PlantBuddyError):
    """Base for session and login failures."""


class InvalidCredentialsError(AuthError):
    """Username or password was rejected (or empty)."""


class LoginRejectedError(AuthError):
    """The service refused the login for a reason other than credentials."""


class SessionExpiredError(AuthError):
    """The session token expired or was revoked; log in again and retry."""


class NotAuthenticatedError(AuthError):
    """An authorized operation was attempted while logged out."""


# ── Mutations ────────────────────────────────────────────────────────


class MutationError(PlantBuddyError):
    """Base for failed create/update/delete submissions."""


class PolicyDeniedError(MutationError):
    """The current role may not perform the operation. No request was sent."""


class ConflictError(MutationError):
    """The server holds a newer version of the entity.

    ``canonical`` is the server's current value (already adopted by the
    cache) so the caller can re-apply its edit against fresh data.
    """

    def __init__(self, message: str = "", *, canonical: Any = None, detail: dict | None = None) -> None:
        super().__init__(message, detail=detail)
        self.canonical = canonical


class MutationUnreachableError(MutationError):
    """The mutation could not be delivered. It was reverted and not retried."""


class MutationRejectedError(MutationError):
    """The server refused the mutation for a reason other than a conflict."""

    def __init__(self, message: str = "", *, status: int | None = None, detail: dict | None = None) -> None:
        super().__init__(message, detail=detail)
        self.status = status
