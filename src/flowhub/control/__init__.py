"""Control plane - background maintenance."""

from flowhub.control.scheduler import MaintenanceScheduler

__all__ = ["MaintenanceScheduler"]
