"""
Mesos executor that runs one Docker container per task and fails the task
when the container disappears or Sidecar reports it unhealthy.
"""

from sidecar_executor.config import ExecutorConfig
from sidecar_executor.health import HealthWatcher
from sidecar_executor.log_relay import LogLine
from sidecar_executor.log_relay import LogRelay
from sidecar_executor.log_relay import LogSink
from sidecar_executor.models import ContainerHandle
from sidecar_executor.models import TaskSpec
from sidecar_executor.models import TaskState
from sidecar_executor.registry import HealthSnapshot
from sidecar_executor.registry import ServiceRegistryClient
from sidecar_executor.registry import ServiceStatus
from sidecar_executor.status import StatusReporter
from sidecar_executor.supervisor import TaskSupervisor

__version__ = "0.4.0"

__all__ = [
    "ContainerHandle",
    "ExecutorConfig",
    "HealthSnapshot",
    "HealthWatcher",
    "LogLine",
    "LogRelay",
    "LogSink",
    "ServiceRegistryClient",
    "ServiceStatus",
    "StatusReporter",
    "TaskSpec",
    "TaskState",
    "TaskSupervisor",
]
