"""Join key between instance metadata and the container runtime.

Container naming pattern: {resource_prefix}{instance_id}
Data volume pattern: {resource_prefix}{instance_id}-data
"""

from flowhub.app.config import get_settings

# Container labels
LABEL_INSTANCE_ID = "flowhub.instance.id"
LABEL_CLIENT_NAME = "flowhub.client.name"
LABEL_MANAGED = "flowhub.managed"


def _prefix() -> str:
    return get_settings().runtime.resource_prefix


def runtime_id(instance_id: str) -> str:
    """Container name for an instance (e.g. n8n-01HX...)."""
    return f"{_prefix()}{instance_id}"


def volume_name(instance_id: str) -> str:
    return f"{runtime_id(instance_id)}-data"


def instance_id_from_runtime_id(name: str) -> str | None:
    """Reverse of runtime_id(). Returns None for containers we do not own."""
    prefix = _prefix()
    name = name.lstrip("/")
    if not name.startswith(prefix):
        return None
    instance_id = name[len(prefix) :]
    return instance_id or None
