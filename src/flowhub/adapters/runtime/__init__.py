from flowhub.adapters.runtime.docker import DockerRuntime

__all__ = ["DockerRuntime"]
