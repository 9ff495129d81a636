"""Configuration management with validation.

All settings are read from the environment once at startup and validated
at construction time, so a misconfigured operator fails before it touches
the cluster or AWS.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass

# Custom resource coordinates
CRD_GROUP = "networking.amazonaws.com"
CRD_VERSION = "v1alpha1"
CRD_PLURAL = "vpns"
CRD_KIND = "VPN"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_STACK_NAME_PREFIX = "awsvpnctl"
DEFAULT_FINALIZER_NAME = "vpn.networking.amazonaws.com"

DEFAULT_REQUEUE_DELAY_SECONDS = 5
MIN_REQUEUE_DELAY_SECONDS = 1
MAX_REQUEUE_DELAY_SECONDS = 300

DEFAULT_MAX_CONCURRENT_RECONCILES = 4
MAX_CONCURRENT_RECONCILES = 32

DEFAULT_WATCH_TIMEOUT_SECONDS = 300
MIN_WATCH_TIMEOUT_SECONDS = 30
MAX_WATCH_TIMEOUT_SECONDS = 3600

# Error backoff applied by the dispatcher, never inside a reconcile pass
RETRY_BACKOFF_BASE_SECONDS = 5
MAX_RETRY_BACKOFF_SECONDS = 300

DEFAULT_PUBLIC_ROUTE_TABLE_TAG = "PublicRouteTable"
DEFAULT_PRIVATE_ROUTE_TABLE_TAG = "PrivateRouteTable"

# CloudFormation stack names are limited to 128 characters
MAX_STACK_NAME_LENGTH = 128

# Input validation patterns
VALID_STACK_PREFIX_PATTERN = r"^[a-zA-Z][a-zA-Z0-9-]{0,31}$"
VALID_REGION_PATTERN = r"^[a-z]{2}(-gov|-iso[a-z]?)?-[a-z]+-\d$"
VALID_NAMESPACE_PATTERN = r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # AWS region; None means "resolve from instance metadata at startup"
    region: str | None = None

    # Watch scope; empty string watches every namespace
    watch_namespace: str = ""

    stack_name_prefix: str = DEFAULT_STACK_NAME_PREFIX
    finalizer_name: str = DEFAULT_FINALIZER_NAME

    # Timing
    requeue_delay_seconds: int = DEFAULT_REQUEUE_DELAY_SECONDS
    watch_timeout_seconds: int = DEFAULT_WATCH_TIMEOUT_SECONDS

    # Concurrency across distinct records
    max_concurrent_reconciles: int = DEFAULT_MAX_CONCURRENT_RECONCILES

    # Route table discovery
    public_route_table_tag: str = DEFAULT_PUBLIC_ROUTE_TABLE_TAG
    private_route_table_tag: str = DEFAULT_PRIVATE_ROUTE_TABLE_TAG

    # Restricts which nodes take part in VPC inference
    node_label_selector: str = ""

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if self.region is not None and not re.match(VALID_REGION_PATTERN, self.region):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.region}")

        if self.watch_namespace and not re.match(VALID_NAMESPACE_PATTERN, self.watch_namespace):
            errors.append(f"WATCH_NAMESPACE must be a valid namespace name: {self.watch_namespace}")

        if not re.match(VALID_STACK_PREFIX_PATTERN, self.stack_name_prefix):
            errors.append(
                f"STACK_NAME_PREFIX must match pattern {VALID_STACK_PREFIX_PATTERN}: "
                f"{self.stack_name_prefix}"
            )

        if not self.finalizer_name:
            errors.append("FINALIZER_NAME is required")

        if not (
            MIN_REQUEUE_DELAY_SECONDS <= self.requeue_delay_seconds <= MAX_REQUEUE_DELAY_SECONDS
        ):
            errors.append(
                f"REQUEUE_DELAY_SECONDS must be between {MIN_REQUEUE_DELAY_SECONDS} "
                f"and {MAX_REQUEUE_DELAY_SECONDS} seconds"
            )

        if not (
            MIN_WATCH_TIMEOUT_SECONDS <= self.watch_timeout_seconds <= MAX_WATCH_TIMEOUT_SECONDS
        ):
            errors.append(
                f"WATCH_TIMEOUT_SECONDS must be between {MIN_WATCH_TIMEOUT_SECONDS} "
                f"and {MAX_WATCH_TIMEOUT_SECONDS} seconds"
            )

        if not (1 <= self.max_concurrent_reconciles <= MAX_CONCURRENT_RECONCILES):
            errors.append(
                f"MAX_CONCURRENT_RECONCILES must be between 1 and {MAX_CONCURRENT_RECONCILES}"
            )

        if not self.public_route_table_tag:
            errors.append("PUBLIC_ROUTE_TABLE_TAG is required")
        if not self.private_route_table_tag:
            errors.append("PRIVATE_ROUTE_TABLE_TAG is required")
        if (
            self.public_route_table_tag
            and self.public_route_table_tag == self.private_route_table_tag
        ):
            errors.append("PUBLIC_ROUTE_TABLE_TAG and PRIVATE_ROUTE_TABLE_TAG must differ")

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def log_level_value(self) -> int:
        """Numeric logging level for the configured LOG_LEVEL."""
        return logging.getLevelName(self.log_level)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AWS_REGION / AWS_DEFAULT_REGION: Region for CloudFormation and EC2.
                If neither is set the region is read from instance metadata.
            WATCH_NAMESPACE: Only reconcile VPNs in this namespace (default: all)
            STACK_NAME_PREFIX: Prefix of generated stack names (default: awsvpnctl)
            FINALIZER_NAME: Finalizer placed on VPN objects
            REQUEUE_DELAY_SECONDS: Delay while a stack is in progress (default: 5)
            MAX_CONCURRENT_RECONCILES: Parallel passes over distinct VPNs (default: 4)
            WATCH_TIMEOUT_SECONDS: Server-side watch timeout (default: 300)
            PUBLIC_ROUTE_TABLE_TAG: Tag value marking the public route table
            PRIVATE_ROUTE_TABLE_TAG: Tag value marking the private route table
            NODE_LABEL_SELECTOR: Label selector for nodes used in VPC inference
            LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        region = os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION") or None

        return cls(
            region=region,
            watch_namespace=os.environ.get("WATCH_NAMESPACE", ""),
            stack_name_prefix=os.environ.get("STACK_NAME_PREFIX", DEFAULT_STACK_NAME_PREFIX),
            finalizer_name=os.environ.get("FINALIZER_NAME", DEFAULT_FINALIZER_NAME),
            requeue_delay_seconds=get_int("REQUEUE_DELAY_SECONDS", DEFAULT_REQUEUE_DELAY_SECONDS),
            watch_timeout_seconds=get_int("WATCH_TIMEOUT_SECONDS", DEFAULT_WATCH_TIMEOUT_SECONDS),
            max_concurrent_reconciles=get_int(
                "MAX_CONCURRENT_RECONCILES", DEFAULT_MAX_CONCURRENT_RECONCILES
            ),
            public_route_table_tag=os.environ.get(
                "PUBLIC_ROUTE_TABLE_TAG", DEFAULT_PUBLIC_ROUTE_TABLE_TAG
            ),
            private_route_table_tag=os.environ.get(
                "PRIVATE_ROUTE_TABLE_TAG", DEFAULT_PRIVATE_ROUTE_TABLE_TAG
            ),
            node_label_selector=os.environ.get("NODE_LABEL_SELECTOR", ""),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
