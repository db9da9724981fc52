"""Background workers."""

from plantbuddy.workers.maintenance import MaintenanceWorker

__all__ = ["MaintenanceWorker"]
