"""
Container log relay.

Follows a container's stdout and stderr and forwards every line as a
structured record to syslog over UDP. Delivery is best-effort: UDP has no
backpressure and no acknowledgment, and a record that cannot be sent is
dropped. Each stream gets its own pump thread; the pumps share only the
shutdown event.
"""

from __future__ import annotations

import json
import logging
import socket
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import SysLogHandler
from typing import IO, Any

from sidecar_executor.docker.adapter import ContainerRuntime
from sidecar_executor.errors import UnknownStreamError
from sidecar_executor.log_format import level_for_stream, prettify_log_line, wrap_container_log
from sidecar_executor.models import short_id

logger = logging.getLogger(__name__)

STREAMS = ("stdout", "stderr")


@dataclass(frozen=True)
class LogLine:
    """One line of container output."""

    stream: str
    data: bytes
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


class JsonRecordFormatter(logging.Formatter):
    """Render a relayed line as a single JSON object."""

    def __init__(self, fields: dict[str, str]) -> None:
        super().__init__()
        self._fields = dict(fields)

    def format(self, record: logging.LogRecord) -> str:
        emitted_at = getattr(record, "emitted_at", None)
        if not isinstance(emitted_at, datetime):
            emitted_at = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "Timestamp": emitted_at.isoformat(),
            "Level": record.levelname.lower(),
            "Payload": record.getMessage(),
        }
        payload.update(self._fields)
        stream = getattr(record, "stream", None)
        if stream:
            payload["Stream"] = stream
        return json.dumps(payload, ensure_ascii=False)


class DroppingSysLogHandler(SysLogHandler):
    """SysLogHandler that drops records it fails to send."""

    def __init__(self, address: tuple[str, int]) -> None:
        super().__init__(address=address, socktype=socket.SOCK_DGRAM)
        self.dropped = 0

    def handleError(self, record: logging.LogRecord) -> None:
        self.dropped += 1


class LogSink:
    """Destination for relayed lines, with fixed service tags on every record."""

    def __init__(
        self,
        container_id: str,
        handler: logging.Handler,
        *,
        service_name: str,
        environment: str,
    ) -> None:
        # A standalone logger, outside the logging hierarchy, so relayed
        # container output never reaches the executor's own handlers.
        self._logger = logging.Logger(f"sidecar_executor.relay.{short_id(container_id)}")
        self._logger.propagate = False
        self._logger.setLevel(logging.DEBUG)
        handler.setFormatter(
            JsonRecordFormatter(
                {
                    "ServiceName": service_name,
                    "Environment": environment,
                    "ContainerId": short_id(container_id),
                }
            )
        )
        self._logger.addHandler(handler)
        self._handler = handler

    @classmethod
    def syslog(
        cls,
        container_id: str,
        address: tuple[str, int],
        *,
        service_name: str,
        environment: str,
    ) -> "LogSink":
        return cls(
            container_id,
            DroppingSysLogHandler(address),
            service_name=service_name,
            environment=environment,
        )

    def emit(self, line: LogLine) -> None:
        level = level_for_stream(line.stream)
        if level is None:
            raise UnknownStreamError(line.stream)
        self._logger.log(
            level,
            "%s",
            line.text,
            extra={"stream": line.stream, "emitted_at": line.timestamp},
        )

    def close(self) -> None:
        self._logger.removeHandler(self._handler)
        self._handler.close()


class LogRelay:
    """Pumps a container's output streams into a LogSink until shutdown.

    Args:
        runtime: Container runtime used to follow the logs.
        container_id: Container to follow.
        sink: Where each line goes.
        stop_event: Shared shutdown signal.
        since: Unix timestamp to start following from (0 = beginning).
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        container_id: str,
        sink: LogSink,
        stop_event: threading.Event,
        *,
        since: int = 0,
    ) -> None:
        self._runtime = runtime
        self._container_id = container_id
        self._sink = sink
        self._stop = stop_event
        self._since = since

    def pump(self, name: str, source: IO[bytes]) -> None:
        """Forward lines from one stream until it closes or shutdown is signalled.

        An unknown stream name ends the pump before anything is read. Read
        errors end this pump only.
        """
        if level_for_stream(name) is None:
            logger.error(
                "handle_one_stream(): %s. Exiting log pump.", UnknownStreamError(name)
            )
            return

        cid = self._container_id
        try:
            while not self._stop.is_set():
                raw = source.readline()
                if not raw:
                    break
                line = LogLine(stream=name, data=raw.rstrip(b"\r\n"))
                logger.debug(wrap_container_log(cid, name, prettify_log_line(line.text)))
                self._sink.emit(line)
        except (OSError, ValueError) as exc:
            # Closing the stream on shutdown surfaces here as a read error.
            if not self._stop.is_set():
                logger.error(
                    "Error reading container log input for %s: '%s'. Exiting log pump '%s'.",
                    short_id(cid),
                    exc,
                    name,
                )
        logger.warning("Log pump exited for '%s'", name)

    def start_pump(self, name: str, source: IO[bytes]) -> threading.Thread:
        thread = threading.Thread(
            target=self.pump,
            args=(name, source),
            name=f"log-pump-{name}",
            daemon=True,
        )
        thread.start()
        return thread

    def run(self) -> None:
        """Attach to the container's logs and relay them until shutdown.

        Raises:
            ContainerError: If the runtime cannot attach to the logs.
        """
        cid = short_id(self._container_id)
        streams = self._runtime.follow_logs(self._container_id, since=self._since)
        logger.info("Started syslog log pump for '%s'", cid)
        pumps = [
            self.start_pump("stdout", streams.stdout),
            self.start_pump("stderr", streams.stderr),
        ]
        try:
            self._stop.wait()
        finally:
            streams.close()
            for thread in pumps:
                thread.join(timeout=2.0)
            self._sink.close()
        logger.info("Log relay for '%s' stopped", cid)
