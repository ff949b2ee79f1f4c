import logging
import os
import tempfile

from datetime import datetime
from datetime import timezone
from typing import Any
from typing import Mapping

import tomli_w

from sidecar_executor.models import TaskState


logger = logging.getLogger(__name__)


def strip_none_for_toml(value: Any) -> Any:
    if isinstance(value, dict):
        cleaned: dict[str, Any] = {}
        for key, item in value.items():
            if item is None:
                continue
            cleaned_item = strip_none_for_toml(item)
            if cleaned_item is None:
                continue
            cleaned[str(key)] = cleaned_item
        return cleaned
    if isinstance(value, (list, tuple)):
        cleaned_list: list[Any] = []
        for item in value:
            if item is None:
                continue
            cleaned_item = strip_none_for_toml(item)
            if cleaned_item is None:
                continue
            cleaned_list.append(cleaned_item)
        return cleaned_list
    return value


def snapshot_payload(
    task_info: Mapping[str, Any],
    state: TaskState | None = None,
    container_id: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "written_at": datetime.now(timezone.utc).isoformat(),
        "task_info": dict(task_info),
        "container_id": container_id,
    }
    if state is not None:
        payload["status"] = {"state": state.wire_name, "code": state.value}
    return strip_none_for_toml(payload)


def write_task_snapshot(
    path: str,
    task_info: Mapping[str, Any],
    state: TaskState | None = None,
    container_id: str | None = None,
) -> bool:
    """Overwrite ``path`` with a TOML dump of the task for post-mortems.

    Best-effort: failures are logged and reported as False, never raised.
    """
    directory = os.path.dirname(path) or "."
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix="taskinfo-", suffix=".toml", dir=directory)
        try:
            with os.fdopen(fd, "wb") as f:
                tomli_w.dump(snapshot_payload(task_info, state, container_id), f)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
    except (OSError, TypeError, ValueError) as exc:
        logger.warning("Could not write task snapshot to %s: %s", path, exc)
        return False
    return True
