"""Orchestrator (Mesos) executor interfaces and HTTP API driver."""

from sidecar_executor.mesos.driver import DriverSettings, HttpExecutorDriver
from sidecar_executor.mesos.executor import Executor, ExecutorDriver
from sidecar_executor.mesos.recordio import RecordIODecoder, RecordIOError

__all__ = [
    "DriverSettings",
    "Executor",
    "ExecutorDriver",
    "HttpExecutorDriver",
    "RecordIODecoder",
    "RecordIOError",
]
