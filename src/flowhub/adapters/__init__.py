"""Adapters module - infrastructure implementations."""

from flowhub.adapters.descriptor.template import TemplateDescriptorProvider
from flowhub.adapters.runtime.docker import DockerRuntime

__all__ = [
    "DockerRuntime",
    "TemplateDescriptorProvider",
]
