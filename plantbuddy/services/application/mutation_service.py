"""
Mutation Coordinator
====================
Single entry point for every create/update/delete the user performs.

For each submitted mutation:

1. the session and the access policy are checked on the caller's thread;
   a denial never builds a request;
2. the mutation joins the FIFO lane of its entity and waits until every
   earlier mutation on that entity resolved, then re-checks the session;
3. the cache entry is marked dirty and shows the optimistic value;
4. the request is sent once, with the current token;
5. the outcome either confirms the entry with the server's value or reverts
   it and raises the matching :class:`~plantbuddy.domain.exceptions.MutationError`.

Conflicts (HTTP 409) are surfaced, never merged: the cache adopts the
server's canonical value and :class:`ConflictError` carries it back.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable, Optional

from plantbuddy.domain.exceptions import (
    ConfigurationError,
    ConflictError,
    MalformedResponseError,
    MutationRejectedError,
    MutationUnreachableError,
    PlantBuddyError,
    PolicyDeniedError,
    ServerError,
    SessionExpiredError,
    TransportError,
    ValidationError,
)
from plantbuddy.domain.models import PLANT_EDITABLE_FIELDS, EntityKey, Plant, Session, UserAccount
from plantbuddy.domain.mutations import (
    Ack,
    CreatePlant,
    CreateUser,
    DeletePlant,
    DeleteUser,
    EditPlant,
    MutationKind,
    UpdateSettings,
    UpdateUser,
)
from plantbuddy.enums.events import ClientEvent
from plantbuddy.security.access_policy import is_allowed, operation_for

if TYPE_CHECKING:
    from infrastructure.api.plant_api import PlantServiceApi
    from plantbuddy.services.application.settings_service import SettingsService
    from plantbuddy.services.protocols import AuditSink, SessionProvider
    from plantbuddy.utils.cache import EntityCache
    from plantbuddy.utils.event_bus import EventBus

logger = logging.getLogger(__name__)


class MutationCoordinator:
    """Serializes writes per entity and reconciles them with the entity cache."""

    def __init__(
        self,
        api: "PlantServiceApi",
        cache: "EntityCache",
        sessions: "SessionProvider",
        *,
        settings: Optional["SettingsService"] = None,
        event_bus: Optional["EventBus"] = None,
        audit_logger: Optional["AuditSink"] = None,
        executor: Executor | None = None,
        max_workers: int = 4,
    ) -> None:
        self._api = api
        self._cache = cache
        self._sessions = sessions
        self._settings = settings
        self._event_bus = event_bus
        self._audit = audit_logger
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="plantbuddy-mutation"
        )

        self._lanes: dict[EntityKey, deque[int]] = {}
        self._tickets = itertools.count(1)
        self._cond = threading.Condition()

        self._handlers: dict[MutationKind, Callable[[Any, Session], Ack]] = {
            MutationKind.EDIT_PLANT: self._edit_plant,
            MutationKind.CREATE_PLANT: self._create_plant,
            MutationKind.DELETE_PLANT: self._delete_plant,
            MutationKind.UPDATE_SETTINGS: self._update_settings,
            MutationKind.CREATE_USER: self._create_user,
            MutationKind.UPDATE_USER: self._update_user,
            MutationKind.DELETE_USER: self._delete_user,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def submit(self, mutation) -> Ack:
        """
        Execute ``mutation`` and wait for its outcome.

        Raises:
            ValidationError: Invalid mutation fields; nothing was queued.
            NotAuthenticatedError / SessionExpiredError: No usable session.
            PolicyDeniedError: The role may not perform it; nothing was sent.
            ConflictError: The server holds a newer version (``canonical``).
            MutationUnreachableError: Network failure; reverted, not retried.
            MutationRejectedError: Any other server refusal; reverted.
        """
        ticket = self._admit(mutation)
        return self._run(mutation, ticket)

    def submit_async(self, mutation) -> "Future[Ack]":
        """Queue ``mutation`` and return a future resolving to its :class:`Ack`.

        The lane position is taken before this returns, so mutations on one
        entity run in submission order regardless of pool scheduling.
        """
        try:
            ticket = self._admit(mutation)
        except PlantBuddyError as e:
            failed: Future = Future()
            failed.set_exception(e)
            return failed

        try:
            future = self._executor.submit(self._run, mutation, ticket)
        except RuntimeError:
            self._release(mutation.key, ticket)
            raise
        future.add_done_callback(lambda f: f.cancelled() and self._release(mutation.key, ticket))
        return future

    def pending(self, key: EntityKey | None = None) -> int:
        """Number of queued or running mutations, overall or for one entity."""
        with self._cond:
            if key is not None:
                return len(self._lanes.get(key, ()))
            return sum(len(lane) for lane in self._lanes.values())

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Admission & lanes
    # ------------------------------------------------------------------
    def _admit(self, mutation) -> int:
        self._validate(mutation)
        session = self._sessions.require_session()
        self._check_policy(mutation, session)
        return self._enqueue(mutation.key)

    def _run(self, mutation, ticket: int) -> Ack:
        key = mutation.key
        try:
            self._wait_turn(key, ticket)
            # The session may have ended while earlier mutations ran
            session = self._sessions.require_session()
            self._check_policy(mutation, session)
            return self._handlers[mutation.kind](mutation, session)
        finally:
            self._release(key, ticket)

    def _enqueue(self, key: EntityKey) -> int:
        with self._cond:
            ticket = next(self._tickets)
            self._lanes.setdefault(key, deque()).append(ticket)
            return ticket

    def _wait_turn(self, key: EntityKey, ticket: int) -> None:
        with self._cond:
            while self._lanes[key][0] != ticket:
                self._cond.wait()

    def _release(self, key: EntityKey, ticket: int) -> None:
        with self._cond:
            lane = self._lanes.get(key)
            if lane is None or ticket not in lane:
                return
            lane.remove(ticket)
            if not lane:
                del self._lanes[key]
            self._cond.notify_all()

    # ------------------------------------------------------------------
    # Validation & policy
    # ------------------------------------------------------------------
    def _validate(self, mutation) -> None:
        kind = mutation.kind
        if kind is MutationKind.UPDATE_SETTINGS:
            if self._settings is not None:
                self._settings.validate(mutation.changes)
            return
        if kind is MutationKind.EDIT_PLANT:
            fields = set(mutation.changes)
        elif kind is MutationKind.CREATE_PLANT:
            fields = set(mutation.fields)
            if not str(mutation.fields.get("name") or "").strip():
                raise ValidationError("A new plant needs a name", detail={"fields": ["name"]})
        elif kind is MutationKind.CREATE_USER:
            if not mutation.display_name.strip() or not mutation.password:
                raise ValidationError("A new user needs a name and a password")
            return
        else:
            return
        unknown = fields - PLANT_EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields not editable: {sorted(unknown)}", detail={"fields": sorted(unknown)})

    def _owner_of(self, mutation) -> Optional[int]:
        if mutation.kind not in (MutationKind.EDIT_PLANT, MutationKind.DELETE_PLANT):
            return None
        entry = self._cache.peek(mutation.key)
        if entry is None or entry.value is None:
            return None
        value = entry.confirmed_value if entry.dirty and entry.confirmed_value is not None else entry.value
        return value.owner_id

    def _check_policy(self, mutation, session: Session) -> None:
        operation = operation_for(mutation, session.user_id, self._owner_of(mutation))
        if is_allowed(session.role, operation):
            return
        logger.warning(
            "Denied %s on %s for '%s' (%s)", mutation.kind.value, mutation.key, session.username, session.role.value
        )
        self._resolved(mutation, session, "denied", operation=operation.value)
        raise PolicyDeniedError(
            f"Role '{session.role.value}' may not perform {operation.value}",
            detail={"operation": operation.value, "role": session.role.value},
        )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    def _optimistic(self, key: EntityKey, mutation, apply: Callable[[Any], Any]) -> tuple[int, bool]:
        """Mark ``key`` dirty when there is a cached value to apply to."""
        entry = self._cache.peek(key)
        if entry is None or entry.value is None:
            return self._cache.epoch, False
        return self._cache.begin_optimistic(key, mutation, apply), True

    def _edit_plant(self, mutation: EditPlant, session: Session) -> Ack:
        key = mutation.key
        epoch, optimistic = self._optimistic(key, mutation, lambda plant: plant.apply_changes(mutation.changes))
        try:
            plant = self._api.update_plant(session.token, mutation.plant_id, mutation.changes, mutation.base_version)
        except PlantBuddyError as e:
            raise self._failed(mutation, session, epoch, e) from e

        if optimistic:
            self._cache.confirm(key, epoch, plant)
        else:
            self._cache.adopt_canonical(key, epoch, plant)
        return self._succeeded(mutation, session, Ack(mutation.kind, key, plant, plant.metadata_version))

    def _create_plant(self, mutation: CreatePlant, session: Session) -> Ack:
        fields = dict(mutation.fields)
        fields.setdefault("owner_id", session.user_id)
        temp_key = mutation.key
        draft = Plant(id=mutation.client_ref, name="").apply_changes(fields)
        epoch = self._cache.begin_optimistic(temp_key, mutation, lambda _: draft)
        try:
            plant = self._api.create_plant(session.token, fields)
        except PlantBuddyError as e:
            raise self._failed(mutation, session, epoch, e) from e

        real_key = EntityKey.plant(plant.id)
        self._cache.confirm(temp_key, epoch, plant, new_key=real_key)
        self._cache.patch_index(EntityKey.plant_index(), add=[plant.id])
        return self._succeeded(mutation, session, Ack(mutation.kind, real_key, plant, plant.metadata_version))

    def _delete_plant(self, mutation: DeletePlant, session: Session) -> Ack:
        key = mutation.key
        epoch, optimistic = self._optimistic(key, mutation, lambda _: None)
        try:
            self._api.delete_plant(session.token, mutation.plant_id, mutation.base_version)
        except PlantBuddyError as e:
            raise self._failed(mutation, session, epoch, e) from e

        if optimistic:
            self._cache.confirm(key, epoch, None)
        else:
            self._cache.adopt_canonical(key, epoch, None)
        self._cache.patch_index(EntityKey.plant_index(), remove=[mutation.plant_id])
        return self._succeeded(mutation, session, Ack(mutation.kind, key))

    def _update_settings(self, mutation: UpdateSettings, session: Session) -> Ack:
        if self._settings is None:
            raise ConfigurationError("No settings store configured")
        settings = self._settings.update_settings(mutation.changes)
        return self._succeeded(mutation, session, Ack(mutation.kind, mutation.key, settings))

    def _create_user(self, mutation: CreateUser, session: Session) -> Ack:
        temp_key = mutation.key
        draft = UserAccount(id=0, display_name=mutation.display_name, role=mutation.role)
        epoch = self._cache.begin_optimistic(temp_key, mutation, lambda _: draft)
        try:
            user = self._api.create_user(session.token, mutation.display_name, mutation.password, mutation.role)
        except PlantBuddyError as e:
            raise self._failed(mutation, session, epoch, e) from e

        if user is None:
            # Service did not echo the record; the index refresh will bring it in
            self._cache.confirm(temp_key, epoch, None)
            self._cache.mark_stale(EntityKey.user_index())
            return self._succeeded(mutation, session, Ack(mutation.kind, temp_key))
        real_key = EntityKey.user(user.id)
        self._cache.confirm(temp_key, epoch, user, new_key=real_key)
        self._cache.patch_index(EntityKey.user_index(), add=[str(user.id)])
        return self._succeeded(mutation, session, Ack(mutation.kind, real_key, user, user.version))

    def _update_user(self, mutation: UpdateUser, session: Session) -> Ack:
        key = mutation.key
        changes = {}
        if mutation.display_name is not None:
            changes["display_name"] = mutation.display_name
        if mutation.role is not None:
            changes["role"] = mutation.role
        epoch, optimistic = self._optimistic(key, mutation, lambda user: replace(user, **changes))
        try:
            user = self._api.update_user(
                session.token,
                mutation.user_id,
                display_name=mutation.display_name,
                password=mutation.password,
                role=mutation.role,
            )
        except PlantBuddyError as e:
            raise self._failed(mutation, session, epoch, e) from e

        if user is None:
            entry = self._cache.peek(key)
            if optimistic and entry is not None:
                self._cache.confirm(key, epoch, entry.value)
            self._cache.mark_stale(key)
            value = entry.value if entry is not None else None
            return self._succeeded(mutation, session, Ack(mutation.kind, key, value))
        if optimistic:
            self._cache.confirm(key, epoch, user)
        else:
            self._cache.adopt_canonical(key, epoch, user)
        return self._succeeded(mutation, session, Ack(mutation.kind, key, user, user.version))

    def _delete_user(self, mutation: DeleteUser, session: Session) -> Ack:
        key = mutation.key
        epoch, optimistic = self._optimistic(key, mutation, lambda _: None)
        try:
            self._api.delete_user(session.token, mutation.user_id)
        except PlantBuddyError as e:
            raise self._failed(mutation, session, epoch, e) from e

        if optimistic:
            self._cache.confirm(key, epoch, None)
        else:
            self._cache.adopt_canonical(key, epoch, None)
        self._cache.patch_index(EntityKey.user_index(), remove=[str(mutation.user_id)])
        return self._succeeded(mutation, session, Ack(mutation.kind, key))

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------
    def _failed(self, mutation, session: Session, epoch: int, error: PlantBuddyError) -> PlantBuddyError:
        """Revert the optimistic write and map ``error`` to the caller-facing exception."""
        key = mutation.key
        self._cache.revert(key, epoch)

        if isinstance(error, ServerError) and error.is_conflict:
            canonical = self._api.conflict_canonical(error) if mutation.kind in (
                MutationKind.EDIT_PLANT,
                MutationKind.DELETE_PLANT,
            ) else None
            if canonical is not None:
                self._cache.adopt_canonical(key, epoch, canonical)
            else:
                self._cache.refresh(key)
            version = canonical.metadata_version if canonical is not None else None
            logger.info("Conflict on %s: server holds version %s", key, version)
            self._resolved(mutation, session, "conflict", server_version=version)
            return ConflictError(
                f"{key} was changed on the server; review the current version and retry",
                canonical=canonical,
                detail={"key": str(key), "server_version": version},
            )

        if isinstance(error, ServerError) and error.is_unauthorized:
            self._resolved(mutation, session, "expired")
            self._sessions.invalidate("token_rejected")
            return SessionExpiredError("Session is no longer valid; log in again")

        if isinstance(error, TransportError) and error.is_network_failure:
            logger.warning("%s on %s not delivered: %s", mutation.kind.value, key, error)
            self._resolved(mutation, session, "unreachable", error=type(error).__name__)
            return MutationUnreachableError(
                "Change not saved, the service is unreachable", detail={"key": str(key)}
            )

        if isinstance(error, ServerError):
            logger.error("%s on %s rejected with HTTP %s", mutation.kind.value, key, error.status)
            self._resolved(mutation, session, "rejected", status=error.status)
            return MutationRejectedError(
                f"Change rejected by the server (HTTP {error.status})",
                status=error.status,
                detail={"key": str(key), "status": error.status},
            )

        if isinstance(error, MalformedResponseError):
            logger.error("%s on %s returned an unreadable response", mutation.kind.value, key)
            self._resolved(mutation, session, "rejected", error="malformed_response")
            return MutationRejectedError("Unreadable response from the server", detail={"key": str(key)})

        # Local validation of the outgoing body
        self._resolved(mutation, session, "invalid", error=str(error))
        return ValidationError(str(error), detail=error.detail)

    def _succeeded(self, mutation, session: Session, ack: Ack) -> Ack:
        logger.info("%s on %s confirmed (version %s)", mutation.kind.value, ack.key, ack.version)
        self._resolved(mutation, session, "success", version=ack.version, key=str(ack.key))
        return ack

    def _resolved(self, mutation, session: Session, outcome: str, **metadata: Any) -> None:
        if self._audit is not None:
            self._audit.log_event(
                actor=session.username,
                action=mutation.kind.value,
                resource=str(mutation.key),
                outcome=outcome,
                **metadata,
            )
        if self._event_bus is not None:
            self._event_bus.publish(
                ClientEvent.MUTATION_RESOLVED,
                {"kind": mutation.kind.value, "key": str(mutation.key), "outcome": outcome},
            )
