"""
Service protocols (structural typing interfaces).

Protocols let components declare the minimal surface they depend on without
importing the concrete class. The cache loaders and the mutation coordinator
only need a token source; tests pass plain fakes.

At runtime the concrete ``SessionManager`` and ``AuditLogger`` satisfy these
protocols via structural subtyping, no explicit inheritance needed.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from plantbuddy.domain.models import Session
from plantbuddy.enums.common import Role


@runtime_checkable
class SessionProvider(Protocol):
    """Read access to the active session plus server-side invalidation."""

    def current_session(self) -> Optional[Session]:
        """Return the active session, or ``None`` when logged out."""
        ...

    def current_role(self) -> Optional[Role]:
        ...

    def require_session(self) -> Session:
        """Return the active session or raise an ``AuthError``."""
        ...

    def invalidate(self, reason: str = "") -> None:
        """Drop the session after the server rejected its token."""
        ...


@runtime_checkable
class AuditSink(Protocol):
    def log_event(self, actor: str, action: str, resource: str, outcome: str, **metadata: Any) -> None:
        ...
