"""
Exception types raised across the executor.

Health-check failures are the only errors that move a running task to
Failed on their own; everything else is either terminal at launch/kill time
or logged and absorbed by the component that hit it.
"""

from __future__ import annotations


class ExecutorError(Exception):
    """Base class for executor errors."""


class ContainerError(ExecutorError):
    """A container runtime call failed."""

    def __init__(self, action: str, detail: str) -> None:
        super().__init__(f"docker {action} failed: {detail}")
        self.action = action
        self.detail = detail


class HealthCheckError(ExecutorError):
    """Authoritative evidence that the supervised container is dead or sick."""


class ContainerNotRunningError(HealthCheckError):
    def __init__(self, container_id: str) -> None:
        super().__init__(f"Container {container_id} not running!")
        self.container_id = container_id


class UnhealthyServiceError(HealthCheckError):
    def __init__(self, container_id: str, status: str) -> None:
        super().__init__(f"Unhealthy container: {container_id} ({status}) failing task!")
        self.container_id = container_id
        self.status = status


class StatusDeliveryError(ExecutorError):
    """A task status update could not be handed to the orchestrator."""


class DriverError(ExecutorError):
    """The orchestrator channel failed."""


class UnknownStreamError(ExecutorError):
    def __init__(self, stream: str) -> None:
        super().__init__(f"Unknown stream type '{stream}'")
        self.stream = stream
