"""Main entry point for the AWS VPN operator.

Startup order:
1. Configuration from the environment (exit 1 if invalid)
2. AWS region from the environment, else from EC2 instance metadata
3. Kubernetes client from the in-cluster service account, else kubeconfig
4. Watch VPN objects and reconcile until SIGTERM/SIGINT
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError
from botocore.utils import InstanceMetadataRegionFetcher
from kubernetes import client
from kubernetes import config as kube_config

from .config import Config, ConfigurationError
from .dispatcher import Controller, RecordWatcher
from .fleet import NodeLister
from .provisioning import ProvisioningClient
from .records import RecordStore
from .reconciler import VPNReconciler
from .secret_sync import SecretSynchronizer

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_LOG_ATTRS = frozenset({
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "exc_info",
    "exc_text",
    "thread",
    "threadName",
    "taskName",
    "message",
})


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    # Reduce noise from the SDKs
    for name in ("botocore", "boto3", "urllib3", "kubernetes"):
        logging.getLogger(name).setLevel(logging.WARNING)


class StartupError(Exception):
    """Raised when the operator cannot reach AWS or the cluster."""

    pass


def resolve_region(config: Config) -> str:
    """Return the configured region, falling back to instance metadata.

    Raises:
        StartupError: If no region can be determined.
    """
    if config.region:
        return config.region

    try:
        region = InstanceMetadataRegionFetcher().retrieve_region()
    except BotoCoreError as e:
        raise StartupError(f"Could not read region from instance metadata: {e}") from e

    if not region:
        raise StartupError("AWS_REGION is not set and instance metadata has no region")
    return region


def load_kubernetes_config() -> None:
    """Load in-cluster credentials, falling back to the local kubeconfig."""
    logger = logging.getLogger(__name__)
    try:
        kube_config.load_incluster_config()
    except kube_config.ConfigException:
        logger.info("Not running in a cluster, loading kubeconfig")
        try:
            kube_config.load_kube_config()
        except kube_config.ConfigException as e:
            raise StartupError(f"No Kubernetes configuration available: {e}") from e


def build_reconciler(config: Config, region: str) -> VPNReconciler:
    """Wire the reconciler to real AWS and Kubernetes clients."""
    session = boto3.session.Session(region_name=region)
    provisioning = ProvisioningClient(
        cloudformation=session.client("cloudformation"),
        ec2=session.client("ec2"),
        public_route_table_tag=config.public_route_table_tag,
        private_route_table_tag=config.private_route_table_tag,
    )
    core_v1 = client.CoreV1Api()
    return VPNReconciler(
        store=RecordStore(client.CustomObjectsApi()),
        provisioning=provisioning,
        secrets=SecretSynchronizer(core_v1),
        node_lister=NodeLister(core_v1, config.node_label_selector),
        config=config,
    )


async def main() -> int:
    """Run the operator.

    Returns:
        Exit code (0 for a clean shutdown, 1 for configuration or startup errors).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    logging.getLogger().setLevel(config.log_level_value)

    try:
        region = resolve_region(config)
        load_kubernetes_config()
        reconciler = build_reconciler(config, region)
    except StartupError as e:
        logger.error("Startup failed", extra={"error": str(e)})
        return 1

    logger.info(
        "Starting AWS VPN operator",
        extra={
            "region": region,
            "namespace": config.watch_namespace or "*",
            "stack_name_prefix": config.stack_name_prefix,
            "workers": config.max_concurrent_reconciles,
        },
    )

    controller = Controller(reconciler, workers=config.max_concurrent_reconciles)
    custom_objects = client.CustomObjectsApi()

    def watcher_factory(on_key: Any) -> RecordWatcher:
        return RecordWatcher(
            custom_objects,
            on_key,
            namespace=config.watch_namespace,
            timeout_seconds=config.watch_timeout_seconds,
        )

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        controller.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await controller.run(watcher_factory)
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Operator stopped")
    return 0


def run() -> None:
    """Entry point for the operator."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
