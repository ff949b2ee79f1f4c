"""
Task status reporting.

Updates leave the process asynchronously and the orchestrator gives no
delivery acknowledgment we can wait on, so callers that exit after a terminal
report wait a fixed grace period first (``wait_grace``).
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Callable

from sidecar_executor.errors import StatusDeliveryError
from sidecar_executor.mesos.executor import ExecutorDriver
from sidecar_executor.models import TaskState

logger = logging.getLogger(__name__)

EXIT_STATUS_DELIVERY_FAILED = 70


def abort_process(exc: BaseException) -> None:
    """Terminate immediately; the orchestrator can no longer be told anything."""
    logging.shutdown()
    os._exit(EXIT_STATUS_DELIVERY_FAILED)


class StatusReporter:
    """Sends task state transitions and enforces one terminal report per task.

    Args:
        driver: Orchestrator channel.
        grace_s: Delay ``wait_grace`` sleeps before the caller exits.
        sleep: Sleep function (injectable for tests).
        on_fatal: Called with the error when an update cannot be delivered.
    """

    def __init__(
        self,
        driver: ExecutorDriver,
        *,
        grace_s: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        on_fatal: Callable[[BaseException], None] = abort_process,
    ) -> None:
        self._driver = driver
        self._grace = grace_s
        self._sleep = sleep
        self._on_fatal = on_fatal
        self._lock = threading.Lock()
        self._terminal: dict[str, TaskState] = {}
        self._history: list[tuple[str, TaskState]] = []

    @property
    def history(self) -> list[tuple[str, TaskState]]:
        """Every (task_id, state) sent so far, in order."""
        with self._lock:
            return list(self._history)

    def terminal_state(self, task_id: str) -> TaskState | None:
        with self._lock:
            return self._terminal.get(task_id)

    def report(self, state: TaskState, task_id: str, message: str | None = None) -> bool:
        """Send one state update.

        Returns:
            False if the task already reached a terminal state and nothing was
            sent, True otherwise.
        """
        with self._lock:
            previous = self._terminal.get(task_id)
            if previous is not None:
                logger.warning(
                    "Task %s already reported %s; not sending %s",
                    task_id,
                    previous.wire_name,
                    state.wire_name,
                )
                return False
            if state.is_terminal:
                self._terminal[task_id] = state
            self._history.append((task_id, state))

        logger.info("Sending %s for task %s", state.wire_name, task_id)
        try:
            self._driver.send_status_update(task_id, state, message)
        except StatusDeliveryError as exc:
            logger.critical("Error sending status update %s", exc)
            self._on_fatal(exc)
        return True

    def wait_grace(self) -> None:
        """Give an asynchronously sent update time to leave the process."""
        self._sleep(self._grace)
