"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseSettings):
    """HTTP server bind configuration."""

    model_config = SettingsConfigDict(env_prefix="FLOWHUB_SERVER_")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)


class DockerConfig(BaseSettings):
    """Docker Engine API configuration."""

    model_config = SettingsConfigDict(env_prefix="DOCKER_")

    host: str = Field(default="unix:///var/run/docker.sock")
    network_name: str | None = Field(default=None)  # None = default bridge

    # Timeout settings
    api_timeout: float = Field(default=10.0)  # seconds (per Docker API call)
    image_pull_timeout: float = Field(default=600.0)  # seconds (10 minutes)
    stop_timeout: int = Field(default=10)  # seconds (SIGTERM grace)


class RuntimeConfig(BaseSettings):
    """n8n container runtime configuration.

    Container naming pattern: {resource_prefix}{instance_id}
    """

    model_config = SettingsConfigDict(env_prefix="FLOWHUB_RUNTIME_")

    resource_prefix: str = Field(default="n8n-")
    image: str = Field(default="n8nio/n8n:latest")
    container_port: int = Field(default=5678)
    mount_path: str = Field(default="/home/node/.n8n")
    health_path: str = Field(default="/healthz")
    probe_host: str = Field(default="localhost")  # host reaching published ports
    timezone: str = Field(default="UTC")


class LifecycleConfig(BaseSettings):
    """Lifecycle operation timing.

    Bring-up/bring-down timeouts are deliberately longer than the
    health probe timeout.
    """

    model_config = SettingsConfigDict(env_prefix="FLOWHUB_LIFECYCLE_")

    ping_timeout: float = Field(default=5.0)  # seconds
    validate_timeout: float = Field(default=10.0)  # seconds
    bring_up_timeout: float = Field(default=30.0)  # seconds
    bring_down_timeout: float = Field(default=15.0)  # seconds
    settle_delay: float = Field(default=2.0)  # seconds after bring-up
    restart_grace: float = Field(default=1.0)  # seconds between stop and start


class PortConfig(BaseSettings):
    """Published port range for instances."""

    model_config = SettingsConfigDict(env_prefix="FLOWHUB_PORTS_")

    min_port: int = Field(default=5600)
    max_port: int = Field(default=5699)
    claim_ttl: float = Field(default=120.0)  # seconds a claim survives unbound
    connect_timeout: float = Field(default=5.0)  # seconds (connectivity test)


class StorageConfig(BaseSettings):
    """Metadata database and on-disk layout."""

    model_config = SettingsConfigDict(env_prefix="FLOWHUB_STORAGE_")

    database_url: str = Field(default="sqlite+aiosqlite:///./data/flowhub.db")
    echo: bool = False
    instances_dir: str = Field(default="./data/instances")
    exports_dir: str = Field(default="./data/exports")


class HealthCheckDefaults(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FLOWHUB_HEALTH_")

    interval_seconds: float = Field(default=30.0)
    timeout_seconds: float = Field(default=10.0)
    retries: int = Field(default=3)
    auto_restart: bool = Field(default=True)
    alert_threshold: int = Field(default=3)


class MonitoringDefaults(BaseSettings):
    """Initial monitoring configuration.

    Used only until a persisted monitoring config record exists.
    """

    model_config = SettingsConfigDict(env_prefix="FLOWHUB_MONITORING_")

    health_check: HealthCheckDefaults = Field(default_factory=HealthCheckDefaults)
    log_buffer_size: int = Field(default=1000)
    metrics_interval_seconds: float = Field(default=60.0)
    retention_days: int = Field(default=30)


class SubscriptionConfig(BaseSettings):
    """Event fan-out and SSE configuration."""

    model_config = SettingsConfigDict(env_prefix="FLOWHUB_SUBSCRIPTIONS_")

    queue_maxsize: int = Field(default=256)  # events buffered per subscriber
    heartbeat_interval: float = Field(default=30.0)  # seconds


class SchedulerConfig(BaseSettings):
    """Maintenance scheduler timing."""

    model_config = SettingsConfigDict(env_prefix="FLOWHUB_SCHEDULER_")

    enabled: bool = Field(default=True)
    tick_interval: float = Field(default=15.0)  # seconds
    orphan_sweep_interval: float = Field(default=300.0)  # seconds (5 minutes)
    export_gc_interval: float = Field(default=3600.0)  # seconds (1 hour)
    operation_timeout: float = Field(default=60.0)  # seconds per sweep


class MetricsConfig(BaseSettings):
    """Prometheus metrics configuration."""

    model_config = SettingsConfigDict(env_prefix="METRICS_")

    enabled: bool = Field(default=True)


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Rate limiting:
    - Prevents log storms from repeated messages
    - WARNING and above bypass rate limiting (always logged)
    """

    model_config = SettingsConfigDict(env_prefix="LOGGING_")

    level: str = Field(default="INFO")
    format: str = Field(default="json")  # json | text
    schema_version: str = Field(default="1.0")
    rate_limit_per_minute: int = Field(default=100)
    service_name: str = Field(default="flowhub")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FLOWHUB_",
        env_nested_delimiter="__",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    ports: PortConfig = Field(default_factory=PortConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringDefaults = Field(default_factory=MonitoringDefaults)
    subscriptions: SubscriptionConfig = Field(default_factory=SubscriptionConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


@lru_cache
def get_settings() -> Settings:
    return Settings()
