"""
Executor driver for the Mesos v1 executor HTTP API.

Subscribes to the agent, decodes the RecordIO event stream and dispatches each
event to an ``Executor``. Status updates are POSTed as UPDATE calls and kept
until the agent acknowledges them; unacknowledged updates (and tasks) are
replayed when the driver re-subscribes after a dropped connection.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import threading
import time
import uuid
from typing import Any, Mapping

import httpx

from sidecar_executor.errors import DriverError, StatusDeliveryError
from sidecar_executor.mesos.executor import Executor, ExecutorDriver
from sidecar_executor.mesos.recordio import RecordIODecoder, RecordIOError
from sidecar_executor.models import TaskState

logger = logging.getLogger(__name__)

API_PATH = "/api/v1/executor"


class DriverSettings:
    """Connection settings the agent passes to the executor through its environment.

    Attributes:
        agent_endpoint: ``host:port`` of the agent.
        framework_id: Framework the executor belongs to.
        executor_id: This executor's id.
        recovery_timeout_s: How long to keep re-subscribing after a disconnect.
        subscription_backoff_s: Delay between re-subscribe attempts.
    """

    def __init__(
        self,
        agent_endpoint: str,
        framework_id: str,
        executor_id: str,
        *,
        recovery_timeout_s: float = 15 * 60,
        subscription_backoff_s: float = 2.0,
    ) -> None:
        self.agent_endpoint = agent_endpoint
        self.framework_id = framework_id
        self.executor_id = executor_id
        self.recovery_timeout_s = recovery_timeout_s
        self.subscription_backoff_s = subscription_backoff_s

    @property
    def url(self) -> str:
        endpoint = self.agent_endpoint
        if not endpoint.startswith(("http://", "https://")):
            endpoint = "http://" + endpoint
        return endpoint.rstrip("/") + API_PATH

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "DriverSettings":
        """Read settings from the ``MESOS_*`` variables the agent sets.

        Raises:
            DriverError: If a required variable is missing.
        """
        env = os.environ if env is None else env
        missing = [
            name
            for name in ("MESOS_AGENT_ENDPOINT", "MESOS_FRAMEWORK_ID", "MESOS_EXECUTOR_ID")
            if not str(env.get(name) or "").strip()
        ]
        if missing:
            raise DriverError(f"missing environment: {', '.join(missing)}")
        return cls(
            agent_endpoint=str(env["MESOS_AGENT_ENDPOINT"]).strip(),
            framework_id=str(env["MESOS_FRAMEWORK_ID"]).strip(),
            executor_id=str(env["MESOS_EXECUTOR_ID"]).strip(),
            recovery_timeout_s=_parse_duration(env.get("MESOS_RECOVERY_TIMEOUT"), 15 * 60),
            subscription_backoff_s=_parse_duration(
                env.get("MESOS_SUBSCRIPTION_BACKOFF_MAX"), 2.0
            ),
        )


_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "ms": 1e-3,
    "secs": 1.0,
    "mins": 60.0,
    "hrs": 3600.0,
    "days": 86400.0,
}


def _parse_duration(value: str | None, default: float) -> float:
    """Parse a Mesos duration string such as ``15mins`` or ``2secs``."""
    text = str(value or "").strip()
    if not text:
        return default
    for unit in sorted(_DURATION_UNITS, key=len, reverse=True):
        if text.endswith(unit):
            try:
                return float(text[: -len(unit)]) * _DURATION_UNITS[unit]
            except ValueError:
                break
    logger.warning("Ignoring unparseable duration %r", text)
    return default


class HttpExecutorDriver(ExecutorDriver):
    """Runs an Executor against the agent's executor HTTP API."""

    def __init__(
        self,
        executor: Executor,
        settings: DriverSettings,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._executor = executor
        self._settings = settings
        self._http = http_client or httpx.Client(
            timeout=httpx.Timeout(10.0, read=None)
        )
        self._owns_client = http_client is None
        self._stopped = threading.Event()
        self._lock = threading.Lock()
        self._subscribed = False
        self._ever_subscribed = False
        self._response: httpx.Response | None = None
        self._unacked_updates: dict[str, dict[str, Any]] = {}
        self._unacked_tasks: dict[str, dict[str, Any]] = {}

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def _call_body(self, call_type: str, **fields: Any) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": call_type,
            "framework_id": {"value": self._settings.framework_id},
            "executor_id": {"value": self._settings.executor_id},
        }
        body.update(fields)
        return body

    def _subscribe_body(self) -> dict[str, Any]:
        with self._lock:
            updates = list(self._unacked_updates.values())
            tasks = list(self._unacked_tasks.values())
        subscribe: dict[str, Any] = {}
        if updates:
            subscribe["unacknowledged_updates"] = updates
        if tasks:
            subscribe["unacknowledged_tasks"] = tasks
        return self._call_body("SUBSCRIBE", subscribe=subscribe)

    def send_status_update(
        self, task_id: str, state: TaskState, message: str | None = None
    ) -> None:
        if self._stopped.is_set():
            raise StatusDeliveryError(
                f"driver is stopped; cannot send {state.wire_name} for {task_id}"
            )

        update_uuid = uuid.uuid4().bytes
        status: dict[str, Any] = {
            "task_id": {"value": task_id},
            "state": state.wire_name,
            "source": "SOURCE_EXECUTOR",
            "executor_id": {"value": self._settings.executor_id},
            "uuid": base64.b64encode(update_uuid).decode("ascii"),
            "timestamp": time.time(),
        }
        if message:
            status["message"] = message
        update = {
            "framework_id": {"value": self._settings.framework_id},
            "status": status,
        }
        with self._lock:
            self._unacked_updates[status["uuid"]] = update
            subscribed = self._subscribed

        if not subscribed:
            logger.warning(
                "Not subscribed; %s for %s will be sent on re-subscribe",
                state.wire_name,
                task_id,
            )
            return

        try:
            response = self._http.post(
                self._settings.url,
                json=self._call_body("UPDATE", update={"status": status}),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            # Still unacknowledged, so it is replayed on re-subscribe.
            logger.warning("Status update POST failed, will replay: %s", exc)
            return
        if 400 <= response.status_code < 500:
            with self._lock:
                self._unacked_updates.pop(status["uuid"], None)
            raise StatusDeliveryError(
                f"agent rejected {state.wire_name} for {task_id}: "
                f"{response.status_code} {response.text.strip()}"
            )
        if response.status_code >= 500:
            logger.warning(
                "Agent returned %s for status update, will replay", response.status_code
            )

    def stop(self) -> None:
        if self._stopped.is_set():
            return
        logger.info("Stopping executor driver")
        self._stopped.set()
        response = self._response
        if response is not None:
            try:
                response.close()
            except (httpx.HTTPError, OSError, RuntimeError):
                pass

    def run(self) -> None:
        """Subscribe and dispatch events until stopped or recovery times out."""
        disconnected_at: float | None = None
        try:
            while not self._stopped.is_set():
                try:
                    self._subscribe_once()
                except (httpx.HTTPError, DriverError, RecordIOError, ValueError) as exc:
                    if self._stopped.is_set():
                        break
                    logger.warning("Subscription to agent failed: %s", exc)

                if self._stopped.is_set():
                    break
                if self._subscribed_flag(False):
                    logger.warning("Lost connection to agent")
                    self._executor.disconnected(self)
                    disconnected_at = time.monotonic()
                elif disconnected_at is None:
                    disconnected_at = time.monotonic()

                if time.monotonic() - disconnected_at > self._settings.recovery_timeout_s:
                    logger.error(
                        "Could not (re)subscribe to agent within %.0fs; giving up",
                        self._settings.recovery_timeout_s,
                    )
                    break
                self._stopped.wait(self._settings.subscription_backoff_s)
        finally:
            self._stopped.set()
            if self._owns_client:
                self._http.close()

    def _subscribed_flag(self, value: bool) -> bool:
        """Set the subscribed flag; return whether it was previously set."""
        with self._lock:
            previous = self._subscribed
            self._subscribed = value
        return previous

    def _subscribe_once(self) -> None:
        decoder = RecordIODecoder()
        with self._http.stream(
            "POST",
            self._settings.url,
            json=self._subscribe_body(),
            headers={"Accept": "application/json"},
        ) as response:
            if response.status_code != 200:
                response.read()
                raise DriverError(
                    f"SUBSCRIBE returned {response.status_code}: {response.text.strip()}"
                )
            self._response = response
            try:
                for record in decoder.decode(response.iter_bytes()):
                    self._dispatch(json.loads(record))
                    if self._stopped.is_set():
                        return
            finally:
                self._response = None

    def _dispatch(self, event: Mapping[str, Any]) -> None:
        event_type = str(event.get("type") or "")
        try:
            self._handle_event(event_type, event)
        except Exception:
            logger.error("Error handling %s event", event_type or "unknown", exc_info=True)

    def _handle_event(self, event_type: str, event: Mapping[str, Any]) -> None:
        if event_type == "SUBSCRIBED":
            subscribed = event.get("subscribed") or {}
            self._subscribed_flag(True)
            if self._ever_subscribed:
                self._executor.reregistered(self, subscribed.get("agent_info") or {})
            else:
                self._ever_subscribed = True
                self._executor.registered(
                    self,
                    subscribed.get("executor_info") or {},
                    subscribed.get("framework_info") or {},
                    subscribed.get("agent_info") or {},
                )
        elif event_type == "LAUNCH":
            task = (event.get("launch") or {}).get("task") or {}
            task_id = str((task.get("task_id") or {}).get("value") or "")
            with self._lock:
                self._unacked_tasks[task_id] = dict(task)
            self._executor.launch_task(self, task)
        elif event_type == "KILL":
            task_id = str(((event.get("kill") or {}).get("task_id") or {}).get("value") or "")
            self._executor.kill_task(self, task_id)
        elif event_type == "ACKNOWLEDGED":
            acknowledged = event.get("acknowledged") or {}
            task_id = str((acknowledged.get("task_id") or {}).get("value") or "")
            with self._lock:
                self._unacked_updates.pop(str(acknowledged.get("uuid") or ""), None)
                self._unacked_tasks.pop(task_id, None)
        elif event_type == "MESSAGE":
            data = (event.get("message") or {}).get("data") or ""
            self._executor.framework_message(self, base64.b64decode(data))
        elif event_type == "SHUTDOWN":
            self._executor.shutdown(self)
            self.stop()
        elif event_type == "ERROR":
            self._executor.error(self, str((event.get("error") or {}).get("message") or ""))
        elif event_type == "HEARTBEAT":
            pass
        else:
            logger.warning("Ignoring unknown event type %r", event_type)

