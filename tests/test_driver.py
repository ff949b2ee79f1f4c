"""Tests for the executor HTTP API driver against a mocked agent."""

import base64
import json

import httpx
import pytest

from sidecar_executor.errors import DriverError
from sidecar_executor.errors import StatusDeliveryError
from sidecar_executor.mesos.driver import DriverSettings
from sidecar_executor.mesos.driver import HttpExecutorDriver
from sidecar_executor.mesos.driver import _parse_duration
from sidecar_executor.mesos.executor import Executor
from sidecar_executor.models import TaskState

from tests.conftest import encode_record


class RecordingExecutor(Executor):
    """Records callbacks; reports Running for every launched task."""

    def __init__(self):
        self.calls = []

    def registered(self, driver, executor_info, framework_info, agent_info):
        self.calls.append(("registered", agent_info.get("hostname")))

    def reregistered(self, driver, agent_info):
        self.calls.append(("reregistered", agent_info.get("hostname")))

    def disconnected(self, driver):
        self.calls.append(("disconnected",))

    def launch_task(self, driver, task_info):
        task_id = task_info["task_id"]["value"]
        self.calls.append(("launch_task", task_id))
        driver.send_status_update(task_id, TaskState.RUNNING)

    def kill_task(self, driver, task_id):
        self.calls.append(("kill_task", task_id))

    def framework_message(self, driver, message):
        self.calls.append(("framework_message", message))

    def shutdown(self, driver):
        self.calls.append(("shutdown",))


def _stream(*events) -> bytes:
    return b"".join(encode_record(json.dumps(event).encode()) for event in events)


SUBSCRIBED = {"type": "SUBSCRIBED", "subscribed": {"agent_info": {"hostname": "agent-1"}}}
SHUTDOWN = {"type": "SHUTDOWN"}


def _launch(task_id):
    return {"type": "LAUNCH", "launch": {"task": {"task_id": {"value": task_id}, "name": "web"}}}


class FakeAgent:
    """MockTransport handler that serves one scripted event stream per SUBSCRIBE."""

    def __init__(self, streams, update_status=202):
        self.streams = list(streams)
        self.update_status = update_status
        self.subscribes = []
        self.updates = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["type"] == "SUBSCRIBE":
            self.subscribes.append(body)
            if not self.streams:
                return httpx.Response(503, text="agent recovering")
            events = self.streams.pop(0)
            if callable(events):
                events = events(body)
            return httpx.Response(200, content=_stream(*events))
        self.updates.append(body)
        return httpx.Response(self.update_status, text="")


def _driver(agent, executor=None, **settings):
    settings.setdefault("subscription_backoff_s", 0.0)
    return HttpExecutorDriver(
        executor or RecordingExecutor(),
        DriverSettings("agent-1:5051", "fw-1", "ex-1", **settings),
        http_client=httpx.Client(transport=httpx.MockTransport(agent)),
    )


def test_settings_url() -> None:
    settings = DriverSettings("10.0.0.1:5051", "fw", "ex")

    assert settings.url == "http://10.0.0.1:5051/api/v1/executor"


def test_settings_from_env() -> None:
    settings = DriverSettings.from_env(
        {
            "MESOS_AGENT_ENDPOINT": "10.0.0.1:5051",
            "MESOS_FRAMEWORK_ID": "fw",
            "MESOS_EXECUTOR_ID": "ex",
            "MESOS_RECOVERY_TIMEOUT": "15mins",
            "MESOS_SUBSCRIPTION_BACKOFF_MAX": "2secs",
        }
    )

    assert settings.framework_id == "fw"
    assert settings.recovery_timeout_s == 900.0
    assert settings.subscription_backoff_s == 2.0


def test_settings_from_env_requires_agent_variables() -> None:
    with pytest.raises(DriverError, match="MESOS_FRAMEWORK_ID"):
        DriverSettings.from_env({"MESOS_AGENT_ENDPOINT": "a:1", "MESOS_EXECUTOR_ID": "ex"})


def test_parse_duration() -> None:
    assert _parse_duration("500ms", 1.0) == 0.5
    assert _parse_duration("1hrs", 1.0) == 3600.0
    assert _parse_duration("soon", 7.0) == 7.0
    assert _parse_duration(None, 7.0) == 7.0


def test_events_are_dispatched_until_shutdown() -> None:
    message = base64.b64encode(b"ping").decode()
    agent = FakeAgent(
        [
            [
                SUBSCRIBED,
                {"type": "HEARTBEAT"},
                _launch("web.1"),
                {"type": "MESSAGE", "message": {"data": message}},
                {"type": "KILL", "kill": {"task_id": {"value": "web.1"}}},
                {"type": "SOMETHING_NEW"},
                SHUTDOWN,
            ]
        ]
    )
    executor = RecordingExecutor()
    driver = _driver(agent, executor)

    driver.run()

    assert executor.calls == [
        ("registered", "agent-1"),
        ("launch_task", "web.1"),
        ("framework_message", b"ping"),
        ("kill_task", "web.1"),
        ("shutdown",),
    ]
    assert driver.stopped
    assert agent.subscribes[0]["framework_id"] == {"value": "fw-1"}
    assert agent.subscribes[0]["executor_id"] == {"value": "ex-1"}

    status = agent.updates[0]["update"]["status"]
    assert agent.updates[0]["type"] == "UPDATE"
    assert status["task_id"] == {"value": "web.1"}
    assert status["state"] == "TASK_RUNNING"
    assert status["source"] == "SOURCE_EXECUTOR"
    assert len(base64.b64decode(status["uuid"])) == 16


def test_events_split_across_stream_chunks_are_dispatched() -> None:
    payload = _stream(SUBSCRIBED, _launch("web.7"), SHUTDOWN)

    def handler(request):
        if json.loads(request.content)["type"] == "SUBSCRIBE":
            chunks = [payload[i : i + 7] for i in range(0, len(payload), 7)]
            return httpx.Response(200, content=iter(chunks))
        return httpx.Response(202)

    executor = RecordingExecutor()
    driver = _driver(handler, executor)

    driver.run()

    assert executor.calls == [
        ("registered", "agent-1"),
        ("launch_task", "web.7"),
        ("shutdown",),
    ]


def test_unacknowledged_updates_are_replayed_on_resubscribe() -> None:
    def acknowledge(body):
        update = body["subscribe"]["unacknowledged_updates"][0]["status"]
        return [
            SUBSCRIBED,
            {
                "type": "ACKNOWLEDGED",
                "acknowledged": {"task_id": update["task_id"], "uuid": update["uuid"]},
            },
            SHUTDOWN,
        ]

    agent = FakeAgent([[SUBSCRIBED, _launch("web.1")], acknowledge])
    executor = RecordingExecutor()
    driver = _driver(agent, executor)

    driver.run()

    assert [call[0] for call in executor.calls] == [
        "registered",
        "launch_task",
        "disconnected",
        "reregistered",
        "shutdown",
    ]
    replay = agent.subscribes[1]["subscribe"]
    assert replay["unacknowledged_updates"][0]["status"]["state"] == "TASK_RUNNING"
    assert replay["unacknowledged_tasks"][0]["task_id"] == {"value": "web.1"}
    assert driver._subscribe_body()["subscribe"] == {}


def test_update_before_subscribe_is_queued() -> None:
    agent = FakeAgent([lambda body: [SUBSCRIBED, SHUTDOWN]])
    driver = _driver(agent)

    driver.send_status_update("web.1", TaskState.FAILED, "boom")
    driver.run()

    assert agent.updates == []
    queued = agent.subscribes[0]["subscribe"]["unacknowledged_updates"][0]["status"]
    assert queued["state"] == "TASK_FAILED"
    assert queued["message"] == "boom"


def test_rejected_update_raises() -> None:
    agent = FakeAgent([[SUBSCRIBED, _launch("web.1"), SHUTDOWN]], update_status=400)
    errors = []

    class ReportingExecutor(RecordingExecutor):
        def launch_task(self, driver, task_info):
            try:
                super().launch_task(driver, task_info)
            except StatusDeliveryError as exc:
                errors.append(exc)

    driver = _driver(agent, ReportingExecutor())
    driver.run()

    assert len(errors) == 1
    assert "TASK_RUNNING" in str(errors[0])


def test_update_after_stop_raises() -> None:
    driver = _driver(FakeAgent([]))
    driver.stop()

    with pytest.raises(StatusDeliveryError):
        driver.send_status_update("web.1", TaskState.FINISHED)


def test_gives_up_after_recovery_timeout() -> None:
    agent = FakeAgent([])
    executor = RecordingExecutor()
    driver = _driver(agent, executor, recovery_timeout_s=0.0, subscription_backoff_s=0.01)

    driver.run()

    assert driver.stopped
    assert len(agent.subscribes) >= 1
    assert executor.calls == []
