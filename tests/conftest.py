"""Shared test fixtures and fakes."""

from __future__ import annotations

import io
import logging
from typing import Any

import pytest

from sidecar_executor.config import ExecutorConfig
from sidecar_executor.docker.adapter import ContainerRuntime, LogStreams
from sidecar_executor.errors import ContainerError
from sidecar_executor.log_relay import LogLine
from sidecar_executor.mesos.executor import ExecutorDriver
from sidecar_executor.models import ContainerSpec, TaskState

CONTAINER_ID = "abc123456789" + "f" * 52


class FakeContainerRuntime(ContainerRuntime):
    """Fake runtime for testing without Docker.

    Records every call as (name, args). Individual operations can be made to
    fail by setting the matching ``*_error`` attribute.
    """

    def __init__(self, container_id: str = CONTAINER_ID) -> None:
        self.calls: list[tuple[str, tuple]] = []
        self.container_id = container_id
        self.listed_ids: list[str] = [container_id]
        self.exit_code = 0
        self.pull_error: Exception | None = None
        self.create_error: Exception | None = None
        self.start_error: Exception | None = None
        self.list_error: Exception | None = None
        self.inspect_error: Exception | None = None
        self.stop_error: Exception | None = None
        self.stdout = b""
        self.stderr = b""

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def pull_image(self, image: str, timeout: float) -> None:
        self.calls.append(("pull_image", (image, timeout)))
        if self.pull_error:
            raise self.pull_error

    def create_container(self, spec: ContainerSpec) -> str:
        self.calls.append(("create_container", (spec,)))
        if self.create_error:
            raise self.create_error
        return self.container_id

    def start_container(self, container_id: str) -> None:
        self.calls.append(("start_container", (container_id,)))
        if self.start_error:
            raise self.start_error

    def list_container_ids(self, all: bool = True) -> list[str]:
        self.calls.append(("list_container_ids", (all,)))
        if self.list_error:
            raise self.list_error
        return list(self.listed_ids)

    def inspect_container(self, container_id: str) -> dict[str, Any]:
        self.calls.append(("inspect_container", (container_id,)))
        if self.inspect_error:
            raise self.inspect_error
        return {"Status": "exited", "ExitCode": self.exit_code, "Running": False}

    def stop_container(self, container_id: str, timeout_s: int) -> None:
        self.calls.append(("stop_container", (container_id, timeout_s)))
        if self.stop_error:
            raise self.stop_error

    def follow_logs(self, container_id: str, since: int = 0) -> LogStreams:
        self.calls.append(("follow_logs", (container_id, since)))
        return LogStreams(io.BytesIO(self.stdout), io.BytesIO(self.stderr))


class FakeDriver(ExecutorDriver):
    """Records status updates and stop calls."""

    def __init__(self, events: list[str] | None = None) -> None:
        self.updates: list[tuple[str, TaskState, str | None]] = []
        self.stopped = False
        self.error: Exception | None = None
        # Shared with the fake runtime in ordering tests
        self.events = events if events is not None else []

    def send_status_update(
        self, task_id: str, state: TaskState, message: str | None = None
    ) -> None:
        self.events.append(f"status:{state.wire_name}")
        if self.error:
            raise self.error
        self.updates.append((task_id, state, message))

    def stop(self) -> None:
        self.stopped = True

    def states(self) -> list[TaskState]:
        return [state for _, state, _ in self.updates]


class RecordingSink:
    """Stand-in for LogSink that keeps every line."""

    def __init__(self) -> None:
        self.lines: list[LogLine] = []
        self.closed = False

    def emit(self, line: LogLine) -> None:
        self.lines.append(line)

    def close(self) -> None:
        self.closed = True


class ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.messages: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.messages.append(self.format(record))


def make_task_info(
    task_id: str = "web.1234",
    image: str = "nginx:latest",
    force_pull: bool = False,
    **extra: Any,
) -> dict[str, Any]:
    task_info: dict[str, Any] = {
        "name": "web",
        "task_id": {"value": task_id},
        "command": {"value": "nginx -g 'daemon off;'", "shell": True},
        "container": {
            "type": "DOCKER",
            "docker": {"image": image, "force_pull_image": force_pull},
        },
        "resources": [
            {"name": "cpus", "type": "SCALAR", "scalar": {"value": 0.5}},
            {"name": "mem", "type": "SCALAR", "scalar": {"value": 128}},
        ],
    }
    task_info.update(extra)
    return task_info


@pytest.fixture
def fake_runtime() -> FakeContainerRuntime:
    return FakeContainerRuntime()


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def config(tmp_path) -> ExecutorConfig:
    """Config with every wait shortened so tests do not sleep."""
    return ExecutorConfig(
        sidecar_backoff_s=0.0,
        health_check_interval_s=0.01,
        sidecar_retry_delay_s=0.0,
        status_grace_s=0.0,
        relay_logs=False,
        task_info_path=str(tmp_path / "taskinfo.toml"),
    )


def container_error(action: str = "create") -> ContainerError:
    return ContainerError(action, f"Simulated {action} failure")


def encode_record(payload: bytes) -> bytes:
    """Frame one payload the way the agent frames events."""
    return str(len(payload)).encode("ascii") + b"\n" + payload
