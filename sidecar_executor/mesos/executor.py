"""Orchestrator-facing interfaces.

``Executor`` is the callback surface the driver invokes for each event the
agent sends. ``ExecutorDriver`` is what an executor uses to talk back.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping

from sidecar_executor.models import TaskState


class ExecutorDriver(ABC):
    """Channel from the executor back to the orchestrator."""

    @abstractmethod
    def send_status_update(
        self, task_id: str, state: TaskState, message: str | None = None
    ) -> None:
        """Queue a task status update for delivery.

        Delivery is asynchronous; returning does not mean the agent has the
        update.

        Raises:
            StatusDeliveryError: If the update could not be handed off.
        """
        ...

    @abstractmethod
    def stop(self) -> None:
        """Stop the driver; ``run()`` returns once it has."""
        ...


class Executor(ABC):
    """Callbacks invoked by an ExecutorDriver.

    Only ``launch_task`` and ``kill_task`` are required; the rest default to
    doing nothing.
    """

    def registered(
        self,
        driver: ExecutorDriver,
        executor_info: Mapping[str, Any],
        framework_info: Mapping[str, Any],
        agent_info: Mapping[str, Any],
    ) -> None:
        pass

    def reregistered(self, driver: ExecutorDriver, agent_info: Mapping[str, Any]) -> None:
        pass

    def disconnected(self, driver: ExecutorDriver) -> None:
        pass

    @abstractmethod
    def launch_task(self, driver: ExecutorDriver, task_info: Mapping[str, Any]) -> None:
        """Start a task. Must return promptly; long work belongs on a thread."""
        ...

    @abstractmethod
    def kill_task(self, driver: ExecutorDriver, task_id: str) -> None:
        ...

    def framework_message(self, driver: ExecutorDriver, message: bytes) -> None:
        pass

    def shutdown(self, driver: ExecutorDriver) -> None:
        pass

    def error(self, driver: ExecutorDriver, message: str) -> None:
        pass
