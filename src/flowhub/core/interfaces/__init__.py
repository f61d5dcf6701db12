"""Core interfaces for flowhub."""

from flowhub.core.interfaces.descriptor import DescriptorProvider, InstanceDescriptor
from flowhub.core.interfaces.runtime import (
    ContainerDetails,
    ContainerRuntime,
    ContainerSummary,
    ExecResult,
    PortBinding,
)
from flowhub.core.interfaces.store import InstanceStore

__all__ = [
    # Runtime gateway
    "ContainerRuntime",
    "ContainerSummary",
    "ContainerDetails",
    "PortBinding",
    "ExecResult",
    # Descriptor provider
    "DescriptorProvider",
    "InstanceDescriptor",
    # Metadata store
    "InstanceStore",
]
