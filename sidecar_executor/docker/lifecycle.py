"""Container lifecycle for a single task.

Translates task specs into runtime calls and runtime results into
``ContainerHandle`` snapshots. Create and start failures are terminal for the
task and are not retried.
"""

from __future__ import annotations

import logging

from sidecar_executor.docker.adapter import ContainerRuntime
from sidecar_executor.models import ContainerHandle, ContainerSpec, short_id

logger = logging.getLogger(__name__)


class ContainerLifecycle:
    """Create, start, inspect and stop containers through a ContainerRuntime."""

    def __init__(self, runtime: ContainerRuntime, pull_timeout_s: float = 600.0) -> None:
        self._runtime = runtime
        self._pull_timeout = pull_timeout_s

    @property
    def runtime(self) -> ContainerRuntime:
        return self._runtime

    def create(self, spec: ContainerSpec) -> ContainerHandle:
        """Create the task container, pulling the image first when forced.

        Raises:
            ContainerError: If pull or create fails.
            TimeoutError: If the runtime call times out.
        """
        if spec.force_pull_image:
            logger.info("Pulling image %s", spec.image)
            self._runtime.pull_image(spec.image, timeout=self._pull_timeout)
            logger.info("Pull complete for %s", spec.image)

        container_id = self._runtime.create_container(spec)
        logger.info("Created container %s for %s", short_id(container_id), spec.name)
        return ContainerHandle(container_id=container_id, status="created")

    def start(self, handle: ContainerHandle) -> ContainerHandle:
        """Start a created container.

        Raises:
            ContainerError: If the container fails to start.
        """
        logger.info("Starting container with ID %s", handle.short_id)
        self._runtime.start_container(handle.container_id)
        return ContainerHandle(container_id=handle.container_id, status="running")

    def inspect(self, container_id: str) -> ContainerHandle:
        """Take a fresh snapshot of the container's state."""
        state = self._runtime.inspect_container(container_id)
        return ContainerHandle.from_state(container_id, state)

    def is_listed(self, container_id: str) -> bool:
        """Whether the runtime still lists the container (stopped ones included)."""
        return container_id in self._runtime.list_container_ids(all=True)

    def stop(self, container_id: str, timeout_s: int) -> None:
        """Request a graceful stop, bounded by ``timeout_s``."""
        logger.info("Stopping container %s (timeout %ss)", short_id(container_id), timeout_s)
        self._runtime.stop_container(container_id, timeout_s)
