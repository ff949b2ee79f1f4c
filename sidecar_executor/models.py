"""Task and container models for the executor.

``TaskSpec`` is parsed from the orchestrator's JSON task description and is
the single input to container creation. ``TaskState`` is the lifecycle state
the executor reports back. ``ContainerHandle`` is a point-in-time view of the
container that backs the task.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator


SHORT_ID_LENGTH = 12


def short_id(container_id: str) -> str:
    return str(container_id or "")[:SHORT_ID_LENGTH]


class TaskState(Enum):
    """Task lifecycle states. Running is the only non-terminal state."""

    RUNNING = 0
    FINISHED = 1
    FAILED = 2
    KILLED = 3

    @property
    def is_terminal(self) -> bool:
        return self is not TaskState.RUNNING

    @property
    def wire_name(self) -> str:
        """Orchestrator task-state name (e.g. ``TASK_RUNNING``)."""
        return f"TASK_{self.name}"


@dataclass(frozen=True)
class ContainerHandle:
    """Snapshot of a container taken from one inspect call."""

    container_id: str
    exit_code: int | None = None
    status: str = ""

    @property
    def short_id(self) -> str:
        return short_id(self.container_id)

    @classmethod
    def from_state(cls, container_id: str, state: Mapping[str, Any]) -> "ContainerHandle":
        exit_code = state.get("ExitCode")
        return cls(
            container_id=container_id,
            exit_code=int(exit_code) if exit_code is not None else None,
            status=str(state.get("Status") or "").lower(),
        )


class PortMapping(BaseModel):
    """Host to container port mapping."""

    model_config = ConfigDict(frozen=True)

    host_port: int
    container_port: int
    protocol: str = "tcp"

    def to_docker_publish(self) -> str:
        return f"{self.host_port}:{self.container_port}/{self.protocol.lower()}"


class VolumeSpec(BaseModel):
    """Host path bind mount.

    Attributes:
        host_path: Path on the agent host (must be absolute).
        container_path: Path inside the container (must be absolute).
        mode: ``RO`` or ``RW``.
    """

    model_config = ConfigDict(frozen=True)

    host_path: str
    container_path: str
    mode: Literal["RO", "RW"] = "RW"

    @field_validator("host_path", "container_path")
    @classmethod
    def validate_absolute_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"Volume path must be absolute: {v}")
        return v

    def to_docker_mount(self) -> str:
        suffix = ":ro" if self.mode == "RO" else ""
        return f"{self.host_path}:{self.container_path}{suffix}"


class ContainerSpec(BaseModel):
    """Everything the runtime needs to create the task's container.

    Attributes:
        name: Container name. The task id, so kill requests can address it.
        image: Image reference.
        command: Command argv appended after the image (empty = image default).
        force_pull_image: Pull the image before create.
        network: Docker network mode (None = runtime default).
        cpus: CPU share of the task; mapped to ``--cpu-shares``.
        mem_mb: Memory limit in MiB.
        env: Environment passed to the container.
        labels: Container labels.
        port_mappings: Published ports.
        volumes: Bind mounts.
        parameters: Extra ``--key=value`` runtime flags.
    """

    name: str
    image: str
    command: list[str] = Field(default_factory=list)
    force_pull_image: bool = False
    network: str | None = None
    cpus: float | None = None
    mem_mb: float | None = None
    env: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    port_mappings: list[PortMapping] = Field(default_factory=list)
    volumes: list[VolumeSpec] = Field(default_factory=list)
    parameters: list[tuple[str, str]] = Field(default_factory=list)

    @field_validator("image")
    @classmethod
    def validate_image(cls, v: str) -> str:
        v = str(v or "").strip()
        if not v:
            raise ValueError("Container image must not be empty")
        return v

    @property
    def cpu_shares(self) -> int | None:
        if self.cpus is None:
            return None
        return max(2, int(self.cpus * 1024))


_NETWORK_MODES = {"BRIDGE": "bridge", "HOST": "host", "NONE": "none"}


def _object(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{what} must be an object, got {type(value).__name__}")
    return value


def _objects(items: Any, what: str) -> list[Mapping[str, Any]]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValueError(f"{what} list must be an array, got {type(items).__name__}")
    for item in items:
        if not isinstance(item, Mapping):
            raise ValueError(f"{what} must be an object, got {type(item).__name__}")
    return items


def _pairs(items: Any, key: str, value: str) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for item in items or []:
        if not isinstance(item, Mapping):
            continue
        name = str(item.get(key) or "").strip()
        if name:
            pairs.append((name, str(item.get(value) or "")))
    return pairs


def _scalar_resources(resources: Any) -> dict[str, float]:
    totals: dict[str, float] = {}
    for resource in resources or []:
        if not isinstance(resource, Mapping):
            continue
        scalar = resource.get("scalar")
        if not isinstance(scalar, Mapping) or "value" not in scalar:
            continue
        name = str(resource.get("name") or "")
        totals[name] = totals.get(name, 0.0) + float(scalar["value"])
    return totals


def _command_argv(command: Mapping[str, Any]) -> list[str]:
    value = str(command.get("value") or "").strip()
    arguments = [str(arg) for arg in command.get("arguments") or []]
    # Mesos defaults shell to true
    if command.get("shell", True):
        return ["/bin/sh", "-c", value] if value else []
    if not arguments and value:
        return [value]
    return arguments


class TaskSpec(BaseModel):
    """A task accepted from the orchestrator.

    Attributes:
        task_id: Orchestrator task identifier.
        name: Human-readable task name.
        container: Container creation spec derived from the task.
        task_info: The raw task description, kept for diagnostics.
    """

    task_id: str
    name: str = ""
    container: ContainerSpec
    task_info: dict[str, Any] = Field(default_factory=dict)

    @field_validator("task_id")
    @classmethod
    def validate_task_id(cls, v: str) -> str:
        v = str(v or "").strip()
        if not v:
            raise ValueError("Task id must not be empty")
        return v

    @classmethod
    def from_task_info(cls, task_info: Mapping[str, Any]) -> "TaskSpec":
        """Build a TaskSpec from a Mesos v1 JSON ``TaskInfo``.

        Raises:
            ValueError: If the task has no id or no docker image, or a
                section has the wrong shape.
        """
        task_id = str(_object(task_info.get("task_id"), "task_id").get("value") or "")
        container = _object(task_info.get("container"), "container")
        docker = _object(container.get("docker"), "container.docker")
        command = _object(task_info.get("command"), "command")
        resources = _scalar_resources(task_info.get("resources"))

        env = dict(
            _pairs(
                _object(command.get("environment"), "command.environment").get("variables"),
                "name",
                "value",
            )
        )
        labels = dict(
            _pairs(_object(task_info.get("labels"), "labels").get("labels"), "key", "value")
        )
        labels["ExecutorTaskId"] = task_id

        ports = [
            PortMapping.model_validate(
                {
                    "host_port": mapping.get("host_port"),
                    "container_port": mapping.get("container_port"),
                    "protocol": str(mapping.get("protocol") or "tcp"),
                }
            )
            for mapping in _objects(docker.get("port_mappings"), "port mapping")
        ]
        volumes = [
            VolumeSpec.model_validate(
                {
                    "host_path": str(volume.get("host_path") or ""),
                    "container_path": str(volume.get("container_path") or ""),
                    "mode": "RO" if str(volume.get("mode") or "").upper() == "RO" else "RW",
                }
            )
            for volume in _objects(container.get("volumes"), "volume")
            if volume.get("host_path")
        ]

        spec = ContainerSpec(
            name=task_id,
            image=str(docker.get("image") or ""),
            command=_command_argv(command),
            force_pull_image=bool(docker.get("force_pull_image", False)),
            network=_NETWORK_MODES.get(str(docker.get("network") or "").upper()),
            cpus=resources.get("cpus"),
            mem_mb=resources.get("mem"),
            env=env,
            labels=labels,
            port_mappings=ports,
            volumes=volumes,
            parameters=_pairs(docker.get("parameters"), "key", "value"),
        )
        return cls(
            task_id=task_id,
            name=str(task_info.get("name") or ""),
            container=spec,
            task_info=dict(task_info),
        )
