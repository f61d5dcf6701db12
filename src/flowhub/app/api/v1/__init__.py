"""API v1 module."""

from flowhub.app.api.v1.events import router as events_router
from flowhub.app.api.v1.instances import router as instances_router
from flowhub.app.api.v1.system import router as system_router

__all__ = ["events_router", "instances_router", "system_router"]
