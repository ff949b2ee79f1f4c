"""
Task supervisor for a single orchestrator task.

Launches the task's container, watches it with HealthWatcher, relays its
output with LogRelay, and reports the task's state transitions:

    Running -> Finished | Failed | Killed

Running is reported as soon as the task is accepted, before the container
exists. Exactly one terminal state is reported; after it the supervisor
signals shutdown to its background threads, waits the status grace period and
stops the driver, which ends the process.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Mapping

from sidecar_executor.config import ExecutorConfig
from sidecar_executor.diagnostics import write_task_snapshot
from sidecar_executor.docker.lifecycle import ContainerLifecycle
from sidecar_executor.errors import ContainerError
from sidecar_executor.health import HealthWatcher
from sidecar_executor.log_relay import LogRelay, LogSink
from sidecar_executor.mesos.executor import Executor, ExecutorDriver
from sidecar_executor.models import ContainerHandle, TaskSpec, TaskState, short_id
from sidecar_executor.registry import ServiceRegistryClient
from sidecar_executor.status import StatusReporter, abort_process

logger = logging.getLogger(__name__)

SinkFactory = Callable[[str, TaskSpec], LogSink]

LAUNCH_SETTLE_TIMEOUT_S = 30.0


def _field(section: Any, key: str) -> Any:
    return (section.get(key) if isinstance(section, Mapping) else None) or ""


class TaskSupervisor(Executor):
    """Drives one task through its lifecycle.

    Launch and kill callbacks return promptly; the actual work runs on
    daemon threads so the driver keeps processing events. Threads are
    abandoned, not joined, when the process exits.

    Args:
        config: Executor configuration.
        lifecycle: Container lifecycle (shared runtime handle).
        registry: Registry health client (shared HTTP handle).
        sink_factory: Builds the log sink for a started container.
        sleep: Sleep used for the status grace period.
        on_fatal: Called when a status update cannot be delivered.
    """

    def __init__(
        self,
        config: ExecutorConfig,
        lifecycle: ContainerLifecycle,
        registry: ServiceRegistryClient,
        *,
        sink_factory: SinkFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_fatal: Callable[[BaseException], None] = abort_process,
    ) -> None:
        self._config = config
        self._lifecycle = lifecycle
        self._registry = registry
        self._sink_factory = sink_factory or self._syslog_sink
        self._sleep = sleep
        self._on_fatal = on_fatal

        self._lock = threading.Lock()
        self._reporter: StatusReporter | None = None
        self._shutdown = threading.Event()
        self._kill_requested = threading.Event()
        self._launch_settled = threading.Event()
        self._threads: list[threading.Thread] = []

        self._task_id: str | None = None
        self._task_info: dict[str, Any] = {}
        self._container_id: str | None = None

    @property
    def task_id(self) -> str | None:
        return self._task_id

    @property
    def container_id(self) -> str | None:
        return self._container_id

    @property
    def shutdown_event(self) -> threading.Event:
        return self._shutdown

    def reporter(self, driver: ExecutorDriver) -> StatusReporter:
        with self._lock:
            if self._reporter is None:
                self._reporter = StatusReporter(
                    driver,
                    grace_s=self._config.status_grace_s,
                    sleep=self._sleep,
                    on_fatal=self._on_fatal,
                )
            return self._reporter

    def join(self, timeout: float | None = None) -> None:
        """Wait for the supervisor's worker threads (tests and clean shutdowns)."""
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)

    def _spawn(self, name: str, target: Callable[..., None], *args: Any) -> threading.Thread:
        thread = threading.Thread(target=target, args=args, name=name, daemon=True)
        with self._lock:
            self._threads.append(thread)
        thread.start()
        return thread

    # Orchestrator callbacks without decision logic

    def registered(
        self,
        driver: ExecutorDriver,
        executor_info: Mapping[str, Any],
        framework_info: Mapping[str, Any],
        agent_info: Mapping[str, Any],
    ) -> None:
        logger.info("Registered Executor on agent %s", agent_info.get("hostname", ""))

    def reregistered(self, driver: ExecutorDriver, agent_info: Mapping[str, Any]) -> None:
        logger.info("Re-registered Executor on agent %s", agent_info.get("hostname", ""))

    def disconnected(self, driver: ExecutorDriver) -> None:
        logger.info("Executor disconnected.")

    def framework_message(self, driver: ExecutorDriver, message: bytes) -> None:
        logger.info("Got framework message: %s", message.decode("utf-8", errors="replace"))

    def shutdown(self, driver: ExecutorDriver) -> None:
        logger.info("Shutting down the executor")

    def error(self, driver: ExecutorDriver, message: str) -> None:
        logger.info("Got error message: %s", message)

    # Launch

    def launch_task(self, driver: ExecutorDriver, task_info: Mapping[str, Any]) -> None:
        task_id = str(_field(task_info.get("task_id"), "value"))
        command = _field(task_info.get("command"), "value")
        logger.info(
            "Launching task %s with command '%s'", task_info.get("name") or task_id, command
        )
        logger.info("Task ID %s", task_id)

        with self._lock:
            busy = self._task_id is not None
            if not busy:
                self._task_id = task_id
                self._task_info = dict(task_info)
        if busy:
            logger.error(
                "Already supervising task %s; refusing task %s", self._task_id, task_id
            )
            self.reporter(driver).report(
                TaskState.FAILED, task_id, "executor already runs a task"
            )
            return

        write_task_snapshot(self._config.task_info_path, task_info)
        self.reporter(driver).report(TaskState.RUNNING, task_id)
        self._spawn("task-" + task_id, self._run_task, driver, task_id, dict(task_info))

    def _run_task(self, driver: ExecutorDriver, task_id: str, task_info: dict[str, Any]) -> None:
        try:
            launched = self._launch(driver, task_id, task_info)
        finally:
            self._launch_settled.set()
        if launched is None:
            return

        spec, handle = launched
        if self._config.relay_logs:
            self._spawn("log-relay", self._relay_logs, handle, spec)
        self._watch(driver, task_id, spec, handle)

    def _launch(
        self, driver: ExecutorDriver, task_id: str, task_info: dict[str, Any]
    ) -> tuple[TaskSpec, ContainerHandle] | None:
        """Parse, create and start the task's container.

        Returns None when the launch failed (already reported) or when a kill
        arrived while the container was being created.
        """
        try:
            spec = TaskSpec.from_task_info(task_info)
            handle = self._lifecycle.create(spec.container)
            self._container_id = handle.container_id
            handle = self._lifecycle.start(handle)
        except (ValueError, ContainerError, TimeoutError) as exc:
            logger.error("Failed to launch container for task %s: %s", task_id, exc)
            self._finish(driver, task_id, TaskState.FAILED, str(exc))
            return None
        except Exception as exc:
            logger.error("Unexpected error launching task %s", task_id, exc_info=True)
            self._finish(driver, task_id, TaskState.FAILED, str(exc))
            return None

        if self._kill_requested.is_set():
            # The kill raced container creation and may have missed it.
            try:
                self._lifecycle.stop(handle.container_id, self._config.kill_task_timeout_s)
            except (ContainerError, TimeoutError) as exc:
                logger.error("Error stopping container %s! %s", handle.short_id, exc)
            return None
        return spec, handle

    def _watch(
        self, driver: ExecutorDriver, task_id: str, spec: TaskSpec, handle: ContainerHandle
    ) -> None:
        watcher = HealthWatcher(
            self._lifecycle,
            self._registry,
            handle.container_id,
            self._shutdown,
            backoff_s=self._config.sidecar_backoff_s,
            interval_s=self._config.health_check_interval_s,
        )
        logger.info("Monitoring container %s for task %s", handle.short_id, task_id)
        try:
            watcher.run()
        except Exception as exc:
            if self._kill_requested.is_set():
                logger.info("Health check ended during kill of %s: %s", task_id, exc)
                return
            logger.error("Error! %s", exc, exc_info=True)
            self._finish(driver, task_id, TaskState.FAILED, str(exc))
            return

        if self._kill_requested.is_set():
            return
        self._finish(driver, task_id, TaskState.FINISHED)
        logger.info("Task completed: %s", spec.name or task_id)

    def _relay_logs(self, handle: ContainerHandle, spec: TaskSpec) -> None:
        try:
            sink = self._sink_factory(handle.container_id, spec)
            relay = LogRelay(
                self._lifecycle.runtime,
                handle.container_id,
                sink,
                self._shutdown,
                since=self._config.container_logs_since,
            )
            relay.run()
        except (ContainerError, OSError, ValueError) as exc:
            logger.error("Log relay for %s failed: %s", handle.short_id, exc)

    def _syslog_sink(self, container_id: str, spec: TaskSpec) -> LogSink:
        return LogSink.syslog(
            container_id,
            self._config.syslog_address(),
            service_name=self._config.service_name or spec.name or spec.task_id,
            environment=self._config.environment,
        )

    # Kill

    def kill_task(self, driver: ExecutorDriver, task_id: str) -> None:
        logger.info("Killing task: %s", task_id)
        self._kill_requested.set()
        self._spawn("kill-" + task_id, self._kill, driver, task_id)

    def _kill(self, driver: ExecutorDriver, task_id: str) -> None:
        if self._task_id is not None and not self._launch_settled.wait(LAUNCH_SETTLE_TIMEOUT_S):
            logger.warning("Container for task %s still launching; stopping by name", task_id)
        # Containers are named after their task, so the id works before we
        # have learned the container id.
        target = self._container_id if task_id == self._task_id and self._container_id else task_id
        try:
            self._lifecycle.stop(target, self._config.kill_task_timeout_s)
        except (ContainerError, TimeoutError) as exc:
            logger.error("Error stopping container %s! %s", short_id(target), exc)

        # Exit code 0 after stop means the task finished on its own terms
        state = TaskState.KILLED
        try:
            handle = self._lifecycle.inspect(target)
            if handle.exit_code == 0:
                state = TaskState.FINISHED
        except (ContainerError, TimeoutError) as exc:
            logger.error("Error inspecting container %s! %s", short_id(target), exc)

        self._finish(driver, task_id, state)

    # Terminal transition

    def _finish(
        self,
        driver: ExecutorDriver,
        task_id: str,
        state: TaskState,
        message: str | None = None,
    ) -> None:
        reporter = self.reporter(driver)
        if not reporter.report(state, task_id, message):
            return
        self._shutdown.set()
        write_task_snapshot(
            self._config.task_info_path, self._task_info, state, self._container_id
        )
        reporter.wait_grace()
        driver.stop()
