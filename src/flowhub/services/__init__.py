"""Services module."""

from flowhub.services.fanout import EventFanout, Subscription
from flowhub.services.lifecycle import LifecycleManager, derive_status
from flowhub.services.log_collector import LogCollector
from flowhub.services.monitor import InstanceMonitor
from flowhub.services.monitoring_config import MonitoringConfigHolder
from flowhub.services.port_allocator import PortAllocator

__all__ = [
    "EventFanout",
    "InstanceMonitor",
    "LifecycleManager",
    "LogCollector",
    "MonitoringConfigHolder",
    "PortAllocator",
    "Subscription",
    "derive_status",
]
