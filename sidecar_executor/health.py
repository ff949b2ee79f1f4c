"""Periodic liveness and health checks for one running container."""

from __future__ import annotations

import logging
from threading import Event

from sidecar_executor.docker.lifecycle import ContainerLifecycle
from sidecar_executor.errors import ContainerNotRunningError
from sidecar_executor.models import short_id
from sidecar_executor.registry import ServiceRegistryClient

logger = logging.getLogger(__name__)


class HealthWatcher:
    """Watches a container until it dies, turns unhealthy, or shutdown is signalled.

    After an initial backoff (the service needs time to register), each
    iteration confirms the runtime still lists the container and that the
    registry does not report it unhealthy. There is no retry here: registry
    retries and fail-open live in ServiceRegistryClient, so any error that
    reaches this loop is authoritative.
    """

    def __init__(
        self,
        lifecycle: ContainerLifecycle,
        registry: ServiceRegistryClient,
        container_id: str,
        stop_event: Event,
        *,
        backoff_s: float = 60.0,
        interval_s: float = 3.0,
    ) -> None:
        self._lifecycle = lifecycle
        self._registry = registry
        self._container_id = container_id
        self._stop = stop_event
        self._backoff = backoff_s
        self._interval = interval_s

    def check_once(self) -> None:
        """Run one liveness and health check.

        Raises:
            ContainerNotRunningError: The runtime no longer lists the container.
            UnhealthyServiceError: The registry reports it unhealthy/tombstoned.
            ContainerError: The runtime could not list containers.
        """
        if not self._lifecycle.is_listed(self._container_id):
            raise ContainerNotRunningError(self._container_id)
        self._registry.check_health(self._container_id)

    def run(self) -> None:
        """Loop until shutdown is signalled; returns normally only then.

        Raises:
            Exception: The first failed check, which ends the loop.
        """
        cid = short_id(self._container_id)
        logger.debug("Waiting %.0fs before health checking %s", self._backoff, cid)
        if self._stop.wait(self._backoff):
            return

        while not self._stop.is_set():
            self.check_once()
            if self._stop.wait(self._interval):
                break
        logger.debug("Health watcher for %s stopped", cid)
