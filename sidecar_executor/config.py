import os

from dataclasses import asdict
from dataclasses import dataclass
from typing import Any
from typing import Mapping


ENV_PREFIX = "EXECUTOR_"

DEFAULT_SIDECAR_URL = "http://localhost:7777/state.json"
DEFAULT_SYSLOG_ADDR = "127.0.0.1:514"
DEFAULT_TASK_INFO_NAME = "taskinfo.toml"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _env_text(env: Mapping[str, str], name: str) -> str:
    return str(env.get(ENV_PREFIX + name) or "").strip()


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    text = _env_text(env, name)
    if not text:
        return default
    try:
        value = float(text)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {text!r}") from exc
    if value < 0:
        raise ValueError(f"{ENV_PREFIX}{name} must not be negative, got {text!r}")
    return value


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    text = _env_text(env, name)
    if not text:
        return default
    try:
        value = int(text)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {text!r}") from exc
    if value < 0:
        raise ValueError(f"{ENV_PREFIX}{name} must not be negative, got {text!r}")
    return value


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    text = _env_text(env, name).lower()
    if not text:
        return default
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    raise ValueError(f"{ENV_PREFIX}{name} must be a boolean, got {text!r}")


def _default_task_info_path(env: Mapping[str, str]) -> str:
    # Mesos hands every executor a sandbox directory; fall back to /tmp.
    sandbox = str(env.get("MESOS_SANDBOX") or "").strip()
    return os.path.join(sandbox or "/tmp", DEFAULT_TASK_INFO_NAME)


@dataclass(frozen=True)
class ExecutorConfig:
    kill_task_timeout_s: int = 5
    http_timeout_s: float = 2.0
    sidecar_url: str = DEFAULT_SIDECAR_URL
    sidecar_retry_count: int = 5
    sidecar_retry_delay_s: float = 3.0
    # How long to wait after start before the first health check.
    sidecar_backoff_s: float = 60.0
    health_check_interval_s: float = 3.0
    # Status updates are asynchronous; give them time to leave the process.
    status_grace_s: float = 1.0
    relay_logs: bool = True
    syslog_addr: str = DEFAULT_SYSLOG_ADDR
    container_logs_since: int = 0
    service_name: str = ""
    environment: str = "prod"
    task_info_path: str = "/tmp/" + DEFAULT_TASK_INFO_NAME
    host_env_var: str = "TASK_HOST"
    pull_timeout_s: float = 600.0

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ExecutorConfig":
        env = os.environ if env is None else env
        defaults = cls()
        retry_count = _env_int(env, "SIDECAR_RETRY_COUNT", defaults.sidecar_retry_count)
        if retry_count < 1:
            raise ValueError(f"{ENV_PREFIX}SIDECAR_RETRY_COUNT must be at least 1")
        return cls(
            kill_task_timeout_s=_env_int(
                env, "KILL_TASK_TIMEOUT", defaults.kill_task_timeout_s
            ),
            http_timeout_s=_env_float(env, "HTTP_TIMEOUT", defaults.http_timeout_s),
            sidecar_url=_env_text(env, "SIDECAR_URL") or defaults.sidecar_url,
            sidecar_retry_count=retry_count,
            sidecar_retry_delay_s=_env_float(
                env, "SIDECAR_RETRY_DELAY", defaults.sidecar_retry_delay_s
            ),
            sidecar_backoff_s=_env_float(
                env, "SIDECAR_BACKOFF", defaults.sidecar_backoff_s
            ),
            health_check_interval_s=_env_float(
                env, "HEALTH_CHECK_INTERVAL", defaults.health_check_interval_s
            ),
            status_grace_s=_env_float(env, "STATUS_GRACE", defaults.status_grace_s),
            relay_logs=_env_bool(env, "RELAY_LOGS", defaults.relay_logs),
            syslog_addr=_env_text(env, "SYSLOG_ADDR") or defaults.syslog_addr,
            container_logs_since=_env_int(
                env, "CONTAINER_LOGS_SINCE", defaults.container_logs_since
            ),
            service_name=_env_text(env, "SERVICE_NAME"),
            environment=_env_text(env, "ENVIRONMENT") or defaults.environment,
            task_info_path=_env_text(env, "TASK_INFO_PATH")
            or _default_task_info_path(env),
            pull_timeout_s=_env_float(env, "PULL_TIMEOUT", defaults.pull_timeout_s),
        )

    def syslog_address(self) -> tuple[str, int]:
        """Split ``syslog_addr`` into a (host, port) pair for SysLogHandler."""
        host, sep, port = self.syslog_addr.rpartition(":")
        if not sep:
            return self.syslog_addr, 514
        try:
            return host or "127.0.0.1", int(port)
        except ValueError as exc:
            raise ValueError(f"Invalid syslog address: {self.syslog_addr!r}") from exc

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
