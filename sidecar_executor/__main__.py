import argparse
import json
import logging
import os
import sys

import httpx

from sidecar_executor.config import ExecutorConfig
from sidecar_executor.docker import ContainerLifecycle
from sidecar_executor.docker import SubprocessContainerRuntime
from sidecar_executor.errors import DriverError
from sidecar_executor.mesos import DriverSettings
from sidecar_executor.mesos import HttpExecutorDriver
from sidecar_executor.registry import ServiceRegistryClient
from sidecar_executor.supervisor import TaskSupervisor

logger = logging.getLogger("sidecar_executor")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sidecar-executor",
        description="Run one Docker task under Mesos, health-checked against Sidecar.",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("EXECUTOR_LOG_LEVEL", "DEBUG"),
        help="Executor log level (default: DEBUG, or $EXECUTOR_LOG_LEVEL)",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Print the resolved configuration and exit",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.DEBUG),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    # httpx logs every request at INFO; the registry is polled every few seconds
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = ExecutorConfig.from_env()
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    if args.check_config:
        print(json.dumps(config.as_dict(), indent=2, sort_keys=True))
        return 0

    logger.info("Starting Sidecar Executor")

    try:
        settings = DriverSettings.from_env()
    except DriverError as exc:
        logger.error("Unable to create an executor driver: %s", exc)
        return 1

    hostname = os.environ.get(config.host_env_var, "")
    if not hostname:
        logger.warning("%s is not set; Sidecar lookups will fail open", config.host_env_var)

    with httpx.Client(timeout=config.http_timeout_s) as registry_http:
        registry = ServiceRegistryClient(
            config.sidecar_url,
            hostname,
            registry_http,
            retry_count=config.sidecar_retry_count,
            retry_delay_s=config.sidecar_retry_delay_s,
        )
        lifecycle = ContainerLifecycle(
            SubprocessContainerRuntime(), pull_timeout_s=config.pull_timeout_s
        )
        supervisor = TaskSupervisor(config, lifecycle, registry)
        driver = HttpExecutorDriver(supervisor, settings)

        logger.info("Executor process has started")
        driver.run()

    logger.info("Sidecar Executor exiting")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
