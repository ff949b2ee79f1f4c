import pytest

from sidecar_executor.docker.lifecycle import ContainerLifecycle
from sidecar_executor.errors import ContainerError
from sidecar_executor.models import ContainerHandle
from sidecar_executor.models import ContainerSpec

from tests.conftest import CONTAINER_ID


def _spec(**kwargs) -> ContainerSpec:
    return ContainerSpec(name="web.1234", image="nginx:latest", **kwargs)


def test_create_without_pull(fake_runtime) -> None:
    handle = ContainerLifecycle(fake_runtime).create(_spec())

    assert fake_runtime.call_names() == ["create_container"]
    assert handle.container_id == CONTAINER_ID
    assert handle.short_id == CONTAINER_ID[:12]


def test_forced_pull_happens_before_create(fake_runtime) -> None:
    ContainerLifecycle(fake_runtime, pull_timeout_s=42.0).create(_spec(force_pull_image=True))

    assert fake_runtime.calls[0] == ("pull_image", ("nginx:latest", 42.0))
    assert fake_runtime.call_names() == ["pull_image", "create_container"]


def test_pull_failure_aborts_create(fake_runtime) -> None:
    fake_runtime.pull_error = ContainerError("pull", "manifest unknown")

    with pytest.raises(ContainerError):
        ContainerLifecycle(fake_runtime).create(_spec(force_pull_image=True))

    assert "create_container" not in fake_runtime.call_names()


def test_start_marks_running(fake_runtime) -> None:
    handle = ContainerLifecycle(fake_runtime).start(ContainerHandle(CONTAINER_ID))

    assert handle.status == "running"
    assert fake_runtime.calls == [("start_container", (CONTAINER_ID,))]


def test_inspect_reads_exit_code(fake_runtime) -> None:
    fake_runtime.exit_code = 137

    handle = ContainerLifecycle(fake_runtime).inspect(CONTAINER_ID)

    assert handle.exit_code == 137
    assert handle.status == "exited"


def test_is_listed_matches_full_id(fake_runtime) -> None:
    lifecycle = ContainerLifecycle(fake_runtime)

    assert lifecycle.is_listed(CONTAINER_ID)
    assert not lifecycle.is_listed("0" * 64)


def test_stop_passes_timeout(fake_runtime) -> None:
    ContainerLifecycle(fake_runtime).stop(CONTAINER_ID, 5)

    assert fake_runtime.calls == [("stop_container", (CONTAINER_ID, 5))]
