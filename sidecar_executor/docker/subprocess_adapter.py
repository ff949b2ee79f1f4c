"""Concrete container runtime using the docker CLI.

This module provides the production implementation of ContainerRuntime,
executing ``docker`` commands via subprocess.
"""

from __future__ import annotations

import json
import subprocess
from typing import Any

from sidecar_executor.docker.adapter import ContainerRuntime, LogStreams
from sidecar_executor.docker.process import _popen_docker, _run_docker
from sidecar_executor.errors import ContainerError
from sidecar_executor.models import ContainerSpec


def build_create_args(spec: ContainerSpec) -> list[str]:
    """Translate a ContainerSpec into ``docker create`` arguments.

    Args:
        spec: Container configuration.

    Returns:
        Argument list starting with ``create`` (without the docker binary).
    """
    args = ["create", "--name", spec.name]

    if spec.cpu_shares is not None:
        args.extend(["--cpu-shares", str(spec.cpu_shares)])
    if spec.mem_mb is not None:
        args.extend(["--memory", f"{int(spec.mem_mb)}m"])
    if spec.network:
        args.extend(["--network", spec.network])

    for key, value in spec.env.items():
        args.extend(["-e", f"{key}={value}"])
    for key, value in spec.labels.items():
        args.extend(["--label", f"{key}={value}"])
    for port in spec.port_mappings:
        args.extend(["-p", port.to_docker_publish()])
    for volume in spec.volumes:
        args.extend(["-v", volume.to_docker_mount()])
    for key, value in spec.parameters:
        args.append(f"--{key}={value}" if value else f"--{key}")

    args.append(spec.image)
    args.extend(spec.command)
    return args


class _ProcessLogStreams(LogStreams):
    """LogStreams backed by a ``docker logs -f`` child process."""

    def __init__(self, proc: subprocess.Popen) -> None:
        super().__init__(proc.stdout, proc.stderr)
        self._proc = proc

    def close(self) -> None:
        if self._proc.poll() is None:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=2.0)
            except subprocess.TimeoutExpired:
                self._proc.kill()
        super().close()


class SubprocessContainerRuntime(ContainerRuntime):
    """Container runtime that executes commands via the docker CLI.

    Every call spawns its own process, so one instance is safe to share
    between threads.
    """

    def __init__(self, command_timeout_s: float = 30.0) -> None:
        self._timeout = command_timeout_s

    def pull_image(self, image: str, timeout: float) -> None:
        _run_docker(["pull", image], timeout_s=timeout)

    def create_container(self, spec: ContainerSpec) -> str:
        output = _run_docker(build_create_args(spec), timeout_s=self._timeout)
        # docker create may print pull progress first; the id is the last line
        lines = [line.strip() for line in output.splitlines() if line.strip()]
        if not lines:
            raise ContainerError("create", "no container id returned")
        return lines[-1]

    def start_container(self, container_id: str) -> None:
        _run_docker(["start", container_id], timeout_s=self._timeout)

    def list_container_ids(self, all: bool = True) -> list[str]:
        args = ["ps", "--no-trunc", "--format", "{{.ID}}"]
        if all:
            args.insert(1, "--all")
        output = _run_docker(args, timeout_s=self._timeout)
        return [line.strip() for line in output.splitlines() if line.strip()]

    def inspect_container(self, container_id: str) -> dict[str, Any]:
        raw = _run_docker(
            ["inspect", "--type", "container", container_id], timeout_s=self._timeout
        )
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ContainerError("inspect", f"unparseable output: {raw[:200]}") from exc
        if not payload:
            raise ContainerError("inspect", f"no such container: {container_id}")
        return dict(payload[0].get("State") or {})

    def stop_container(self, container_id: str, timeout_s: int) -> None:
        # Leave headroom past the grace period for docker's own kill
        _run_docker(
            ["stop", "-t", str(int(timeout_s)), container_id],
            timeout_s=float(timeout_s) + self._timeout,
        )

    def follow_logs(self, container_id: str, since: int = 0) -> LogStreams:
        args = ["logs", "--follow"]
        if since:
            args.extend(["--since", str(int(since))])
        args.append(container_id)
        return _ProcessLogStreams(_popen_docker(args))
