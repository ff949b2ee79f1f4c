"""Container runtime interface for testable container operations.

This module defines an abstract interface for the container operations the
executor needs, allowing the lifecycle, health and log-relay code to be
tested without a Docker daemon. The concrete implementation drives the
``docker`` CLI via subprocess.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import IO, Any

from sidecar_executor.models import ContainerSpec


class LogStreams:
    """Follow handle for a container's output streams.

    Attributes:
        stdout: Byte stream of the container's stdout.
        stderr: Byte stream of the container's stderr.
    """

    def __init__(self, stdout: IO[bytes], stderr: IO[bytes]) -> None:
        self.stdout = stdout
        self.stderr = stderr

    def close(self) -> None:
        """Stop following and release the streams."""
        for stream in (self.stdout, self.stderr):
            try:
                stream.close()
            except OSError:
                pass


class ContainerRuntime(ABC):
    """Abstract interface for container runtime operations.

    Implementations must be safe to call from several threads at once; the
    health loop, the log relay and the kill path all share one instance.
    """

    @abstractmethod
    def pull_image(self, image: str, timeout: float) -> None:
        """Pull an image.

        Raises:
            TimeoutError: If the pull exceeds timeout.
            ContainerError: If the pull fails.
        """
        ...

    @abstractmethod
    def create_container(self, spec: ContainerSpec) -> str:
        """Create (but do not start) a container.

        Returns:
            Full container ID.

        Raises:
            ContainerError: If the runtime rejects the spec.
        """
        ...

    @abstractmethod
    def start_container(self, container_id: str) -> None:
        """Start a created container.

        Raises:
            ContainerError: If the container fails to start.
        """
        ...

    @abstractmethod
    def list_container_ids(self, all: bool = True) -> list[str]:
        """List full IDs of known containers.

        Args:
            all: Include stopped containers.

        Raises:
            ContainerError: If listing fails.
        """
        ...

    @abstractmethod
    def inspect_container(self, container_id: str) -> dict[str, Any]:
        """Return the container's ``State`` object.

        Raises:
            ContainerError: If the container cannot be inspected.
        """
        ...

    @abstractmethod
    def stop_container(self, container_id: str, timeout_s: int) -> None:
        """Stop a container, killing it after ``timeout_s`` seconds.

        Raises:
            ContainerError: If the stop request fails.
        """
        ...

    @abstractmethod
    def follow_logs(self, container_id: str, since: int = 0) -> LogStreams:
        """Follow a container's stdout and stderr.

        Args:
            container_id: Container to follow.
            since: Unix timestamp to start from (0 = from the beginning).

        Raises:
            ContainerError: If the log stream cannot be attached.
        """
        ...
