from sidecar_executor.docker.adapter import ContainerRuntime
from sidecar_executor.docker.adapter import LogStreams
from sidecar_executor.docker.lifecycle import ContainerLifecycle
from sidecar_executor.docker.subprocess_adapter import SubprocessContainerRuntime

__all__ = [
    "ContainerLifecycle",
    "ContainerRuntime",
    "LogStreams",
    "SubprocessContainerRuntime",
]
