"""Process-wide monitoring configuration holder.

Monitor and LogCollector receive the holder and read ``current`` at each
scheduling decision, so a replacement applies to the next poll and never
to one already in flight.
"""

import logging

from flowhub.app.config import MonitoringDefaults, get_settings
from flowhub.core.interfaces import InstanceStore
from flowhub.core.logging_schema import LogEvent
from flowhub.core.models import HealthCheckConfig, MonitoringConfig

logger = logging.getLogger(__name__)


def config_from_defaults(defaults: MonitoringDefaults) -> MonitoringConfig:
    hc = defaults.health_check
    return MonitoringConfig(
        health_check=HealthCheckConfig(
            interval_seconds=hc.interval_seconds,
            timeout_seconds=hc.timeout_seconds,
            retries=hc.retries,
            auto_restart=hc.auto_restart,
            alert_threshold=hc.alert_threshold,
        ),
        log_buffer_size=defaults.log_buffer_size,
        metrics_interval_seconds=defaults.metrics_interval_seconds,
        retention_days=defaults.retention_days,
    )


class MonitoringConfigHolder:
    """Holds the current MonitoringConfig and persists replacements."""

    def __init__(
        self,
        config: MonitoringConfig | None = None,
        store: InstanceStore | None = None,
    ) -> None:
        self._config = config or config_from_defaults(get_settings().monitoring)
        self._store = store

    @property
    def current(self) -> MonitoringConfig:
        return self._config

    async def load(self) -> MonitoringConfig:
        """Adopt the persisted config if one exists."""
        if self._store is not None:
            persisted = await self._store.load_monitoring_config()
            if persisted is not None:
                self._config = persisted
        return self._config

    async def replace(self, config: MonitoringConfig) -> MonitoringConfig:
        """Swap the whole structure and persist it."""
        if self._store is not None:
            await self._store.save_monitoring_config(config)
        self._config = config
        logger.info(
            "Monitoring config replaced",
            extra={"event": LogEvent.CONFIG_UPDATED, "config": config.model_dump(mode="json")},
        )
        return config
