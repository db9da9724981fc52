from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from infrastructure.api.plant_api import PlantServiceApi
from infrastructure.api.transport import TransportClient
from infrastructure.logging.audit import AuditLogger
from plantbuddy.config import AppConfig, load_config
from plantbuddy.services.application.loaders import CacheLoaders
from plantbuddy.services.application.mutation_service import MutationCoordinator
from plantbuddy.services.application.plant_service import PlantViewService
from plantbuddy.services.application.session_service import SessionManager
from plantbuddy.services.application.settings_service import SettingsService
from plantbuddy.utils.cache import EntityCache, ttl_policy_from_config
from plantbuddy.utils.event_bus import EventBus
from plantbuddy.utils.persistent_store import JsonStore
from plantbuddy.workers.maintenance import MaintenanceWorker

logger = logging.getLogger(__name__)


@dataclass
class ClientContainer:
    """Owns every component of one client instance.

    Nothing here is a process-wide singleton: two containers are two fully
    independent clients (tests rely on this).
    """

    config: AppConfig
    event_bus: EventBus
    audit_logger: AuditLogger
    transport: TransportClient
    api: PlantServiceApi
    cache: EntityCache
    sessions: SessionManager
    settings_service: SettingsService
    mutations: MutationCoordinator
    plant_service: PlantViewService
    maintenance: MaintenanceWorker

    @classmethod
    def build(
        cls,
        config: AppConfig,
        *,
        transport: Optional[TransportClient] = None,
        start_maintenance: bool = True,
    ) -> "ClientContainer":
        """Construct the client with all dependencies.

        Args:
            config: Client configuration
            transport: Pre-built transport (tests pass one with a fake session)
            start_maintenance: Whether to start the background maintenance thread
        """
        logger.info("Building ClientContainer for %s", config.api_base_url)
        event_bus = EventBus(queue_size=config.eventbus_queue_size, worker_count=config.eventbus_worker_count)
        audit_path = config.audit_log_path
        if not os.path.isabs(audit_path):
            audit_path = os.path.join(config.data_dir, audit_path)
        audit_logger = AuditLogger(audit_path, level=config.log_level)

        transport = transport or TransportClient.from_config(config)
        api = PlantServiceApi(transport)
        cache = EntityCache(
            ttl_policy=ttl_policy_from_config(config),
            idle_seconds=config.cache_idle_seconds,
            max_workers=config.worker_pool_size,
            event_bus=event_bus,
        )
        sessions = SessionManager(
            api,
            cache,
            event_bus=event_bus,
            audit_logger=audit_logger,
            refresh_enabled=config.session_refresh_enabled,
            refresh_margin_seconds=config.session_refresh_margin_seconds,
            default_lifetime_seconds=config.session_default_lifetime_seconds,
        )
        CacheLoaders(api, sessions, cache, readings_lookback_hours=config.readings_lookback_hours).register()

        settings_service = SettingsService(JsonStore(config.data_dir, config.settings_file), event_bus=event_bus)
        mutations = MutationCoordinator(
            api,
            cache,
            sessions,
            settings=settings_service,
            event_bus=event_bus,
            audit_logger=audit_logger,
            max_workers=config.worker_pool_size,
        )
        plant_service = PlantViewService(cache, sessions)

        maintenance = MaintenanceWorker(interval=config.maintenance_interval_seconds)
        maintenance.add_task("session_expiry", sessions.check_expiry)
        maintenance.add_task("cache_eviction", cache.evict_idle)
        if start_maintenance:
            maintenance.start()

        logger.info("ClientContainer built successfully.")
        return cls(
            config=config,
            event_bus=event_bus,
            audit_logger=audit_logger,
            transport=transport,
            api=api,
            cache=cache,
            sessions=sessions,
            settings_service=settings_service,
            mutations=mutations,
            plant_service=plant_service,
            maintenance=maintenance,
        )

    def shutdown(self) -> None:
        """Log out and release threads and connections."""
        self.maintenance.stop()
        if self.sessions.current_session() is not None:
            self.sessions.logout()
        self.mutations.close()
        self.cache.close()
        self.event_bus.drain(timeout=1.0)
        self.event_bus.close()
        self.transport.close()
        self.audit_logger.close()
        logger.info("ClientContainer shutdown complete.")


def create_client(config: AppConfig | None = None, **kwargs) -> ClientContainer:
    """Build a client from ``config`` (or the environment)."""
    return ClientContainer.build(config or load_config(), **kwargs)
