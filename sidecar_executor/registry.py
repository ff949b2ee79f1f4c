"""
Service registry (Sidecar) health client.

Fetches the registry's state document and answers one question: does the
registry positively say that *this* container on *this* host is unhealthy?

Everything short of that answer fails open: registry outages, unparseable
bodies and hosts or containers the registry has not published yet count as
"no evidence of unhealthiness".
"""

from __future__ import annotations

import json
import logging
import time
from enum import Enum
from typing import Any, Callable, Mapping

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sidecar_executor.errors import UnhealthyServiceError
from sidecar_executor.models import short_id

logger = logging.getLogger(__name__)


class ServiceStatus(Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    TOMBSTONED = "tombstoned"
    UNKNOWN = "unknown"

    @property
    def is_failing(self) -> bool:
        return self in (ServiceStatus.UNHEALTHY, ServiceStatus.TOMBSTONED)


# Sidecar serialises its status enum as an integer.
_NUMERIC_STATUS = {
    0: ServiceStatus.HEALTHY,
    1: ServiceStatus.TOMBSTONED,
    2: ServiceStatus.UNHEALTHY,
    3: ServiceStatus.UNKNOWN,
}

_TEXT_STATUS = {
    "healthy": ServiceStatus.HEALTHY,
    "alive": ServiceStatus.HEALTHY,
    "unhealthy": ServiceStatus.UNHEALTHY,
    "tombstone": ServiceStatus.TOMBSTONED,
    "tombstoned": ServiceStatus.TOMBSTONED,
    "unknown": ServiceStatus.UNKNOWN,
}


def parse_status(value: Any) -> ServiceStatus:
    """Map a registry status value to ServiceStatus; unrecognised is UNKNOWN."""
    if isinstance(value, ServiceStatus):
        return value
    if isinstance(value, bool):
        return ServiceStatus.UNKNOWN
    if isinstance(value, int):
        return _NUMERIC_STATUS.get(value, ServiceStatus.UNKNOWN)
    if isinstance(value, str):
        return _TEXT_STATUS.get(value.strip().lower(), ServiceStatus.UNKNOWN)
    return ServiceStatus.UNKNOWN


class ServiceRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: ServiceStatus = Field(default=ServiceStatus.UNKNOWN, alias="Status")

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> ServiceStatus:
        return parse_status(v)


class ServerRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    services: dict[str, ServiceRecord] = Field(default_factory=dict, alias="Services")


class HealthSnapshot(BaseModel):
    """Point-in-time view of the registry: host -> short container id -> status."""

    model_config = ConfigDict(frozen=True)

    servers: dict[str, dict[str, ServiceStatus]] = Field(default_factory=dict)

    def status_for(self, hostname: str, container_id: str) -> ServiceStatus | None:
        """Status of a container on a host, or None when either is absent."""
        services = self.servers.get(hostname)
        if services is None:
            return None
        return services.get(short_id(container_id))

    def has_host(self, hostname: str) -> bool:
        return hostname in self.servers

    @classmethod
    def from_payload(cls, payload: Any) -> "HealthSnapshot":
        """Parse a decoded state document.

        The document maps hostnames to server entries. Older registry versions
        wrap that mapping in a top-level ``Servers`` key, which is unwrapped.

        Raises:
            ValueError: If the document does not have that shape.
        """
        if not isinstance(payload, Mapping):
            raise ValueError(f"expected an object, got {type(payload).__name__}")
        if isinstance(payload.get("Servers"), Mapping):
            payload = payload["Servers"]

        servers: dict[str, dict[str, ServiceStatus]] = {}
        for hostname, entry in payload.items():
            if not isinstance(entry, Mapping):
                continue
            record = ServerRecord.model_validate(entry)
            servers[str(hostname)] = {
                str(service_id): service.status
                for service_id, service in record.services.items()
            }
        return cls(servers=servers)

    @classmethod
    def from_json(cls, body: bytes | str) -> "HealthSnapshot":
        """Parse a raw state document body.

        Raises:
            ValueError: If the body is not JSON or has the wrong shape.
        """
        try:
            return cls.from_payload(json.loads(body))
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc


class ServiceRegistryClient:
    """Polls the registry with bounded retries and a fail-open policy.

    Args:
        url: State document URL.
        hostname: This host's name as published in the registry.
        http_client: Shared httpx client (owns the per-request timeout).
        retry_count: Maximum fetch attempts per poll.
        retry_delay_s: Fixed delay between failed attempts.
        sleep: Sleep function (injectable for tests).
    """

    def __init__(
        self,
        url: str,
        hostname: str,
        http_client: httpx.Client,
        *,
        retry_count: int = 5,
        retry_delay_s: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._url = url
        self._hostname = hostname
        self._http = http_client
        self._retry_count = max(1, int(retry_count))
        self._retry_delay = retry_delay_s
        self._sleep = sleep

    @property
    def hostname(self) -> str:
        return self._hostname

    def _fetch(self) -> bytes:
        response = self._http.get(self._url)
        response.raise_for_status()
        return response.content

    def fetch_snapshot(self) -> HealthSnapshot | None:
        """Fetch and parse the state document.

        Returns:
            The snapshot, or None when the registry could not be read or
            parsed within the retry bound.
        """
        body: bytes | None = None
        for attempt in range(1, self._retry_count + 1):
            try:
                body = self._fetch()
                break
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                logger.debug(
                    "Sidecar fetch attempt %d/%d failed: %s",
                    attempt,
                    self._retry_count,
                    exc,
                )
                if attempt < self._retry_count:
                    self._sleep(self._retry_delay)

        if body is None:
            logger.error("Can't contact Sidecar! Assuming healthy...")
            return None

        try:
            return HealthSnapshot.from_json(body)
        except ValueError as exc:
            logger.error("Can't parse Sidecar results! Assuming healthy... (%s)", exc)
            return None

    def poll(self, container_id: str) -> ServiceStatus:
        """Registry status for a container on this host.

        Never raises. Returns HEALTHY when the registry is unreachable or its
        answer is unusable, and UNKNOWN when the host or container is not
        published yet.
        """
        snapshot = self.fetch_snapshot()
        if snapshot is None:
            return ServiceStatus.HEALTHY

        if not snapshot.has_host(self._hostname):
            logger.error(
                "Can't find this server ('%s') in the Sidecar state! Assuming healthy...",
                self._hostname,
            )
            return ServiceStatus.UNKNOWN

        status = snapshot.status_for(self._hostname, container_id)
        if status is None:
            logger.error(
                "Can't find service %s in Sidecar yet! Assuming healthy...",
                short_id(container_id),
            )
            return ServiceStatus.UNKNOWN
        return status

    def check_health(self, container_id: str) -> None:
        """Raise when the registry reports this container unhealthy or tombstoned.

        Raises:
            UnhealthyServiceError: The one authoritative failure condition.
        """
        status = self.poll(container_id)
        if status.is_failing:
            raise UnhealthyServiceError(container_id, status.value)
