import threading

import pytest

from sidecar_executor.docker.lifecycle import ContainerLifecycle
from sidecar_executor.errors import ContainerError
from sidecar_executor.errors import ContainerNotRunningError
from sidecar_executor.errors import UnhealthyServiceError
from sidecar_executor.health import HealthWatcher
from sidecar_executor.registry import ServiceStatus

from tests.conftest import CONTAINER_ID
from tests.conftest import FakeContainerRuntime


class StubRegistry:
    """Registry stand-in returning scripted statuses."""

    def __init__(self, statuses=None, on_check=None):
        self.statuses = list(statuses or [])
        self.checked = 0
        self.on_check = on_check

    def check_health(self, container_id):
        self.checked += 1
        if self.on_check:
            self.on_check(self.checked)
        status = self.statuses.pop(0) if self.statuses else ServiceStatus.HEALTHY
        if status.is_failing:
            raise UnhealthyServiceError(container_id, status.value)


def _watcher(runtime, registry, stop, backoff_s=0.0):
    return HealthWatcher(
        ContainerLifecycle(runtime),
        registry,
        CONTAINER_ID,
        stop,
        backoff_s=backoff_s,
        interval_s=0.0,
    )


def test_check_once_passes_when_listed_and_healthy(fake_runtime) -> None:
    registry = StubRegistry()
    _watcher(fake_runtime, registry, threading.Event()).check_once()

    assert fake_runtime.calls == [("list_container_ids", (True,))]
    assert registry.checked == 1


def test_missing_container_raises_not_running(fake_runtime) -> None:
    fake_runtime.listed_ids = ["someone-else"]
    registry = StubRegistry()

    with pytest.raises(ContainerNotRunningError) as excinfo:
        _watcher(fake_runtime, registry, threading.Event()).check_once()

    assert str(excinfo.value) == f"Container {CONTAINER_ID} not running!"
    assert registry.checked == 0


def test_short_id_prefix_does_not_count_as_listed(fake_runtime) -> None:
    fake_runtime.listed_ids = [CONTAINER_ID[:12]]

    with pytest.raises(ContainerNotRunningError):
        _watcher(fake_runtime, StubRegistry(), threading.Event()).check_once()


def test_run_raises_first_unhealthy_check(fake_runtime) -> None:
    registry = StubRegistry([ServiceStatus.HEALTHY, ServiceStatus.UNKNOWN, ServiceStatus.UNHEALTHY])

    with pytest.raises(UnhealthyServiceError):
        _watcher(fake_runtime, registry, threading.Event()).run()

    assert registry.checked == 3


def test_run_propagates_runtime_errors() -> None:
    runtime = FakeContainerRuntime()
    runtime.list_error = ContainerError("ps", "daemon down")

    with pytest.raises(ContainerError):
        _watcher(runtime, StubRegistry(), threading.Event()).run()


def test_run_returns_when_stopped(fake_runtime) -> None:
    stop = threading.Event()
    registry = StubRegistry(on_check=lambda n: stop.set() if n == 2 else None)

    _watcher(fake_runtime, registry, stop).run()

    assert registry.checked == 2


def test_stop_during_backoff_skips_checks(fake_runtime) -> None:
    stop = threading.Event()
    stop.set()
    registry = StubRegistry()

    _watcher(fake_runtime, registry, stop, backoff_s=60.0).run()

    assert registry.checked == 0
    assert fake_runtime.calls == []
