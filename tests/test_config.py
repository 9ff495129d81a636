"""Tests for configuration loading."""

import logging
import os
from unittest.mock import patch

import pytest

from vpn_operator.config import (
    DEFAULT_FINALIZER_NAME,
    DEFAULT_STACK_NAME_PREFIX,
    Config,
    ConfigurationError,
)


class TestConfig:
    """Tests for Config class."""

    def test_defaults(self) -> None:
        config = Config()

        assert config.region is None
        assert config.watch_namespace == ""
        assert config.stack_name_prefix == DEFAULT_STACK_NAME_PREFIX
        assert config.finalizer_name == DEFAULT_FINALIZER_NAME
        assert config.requeue_delay_seconds == 5
        assert config.max_concurrent_reconciles == 4
        assert config.public_route_table_tag == "PublicRouteTable"
        assert config.private_route_table_tag == "PrivateRouteTable"

    def test_invalid_region(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(region="not a region")

        assert "AWS_REGION" in str(exc_info.value)

    def test_gov_region_accepted(self) -> None:
        assert Config(region="us-gov-west-1").region == "us-gov-west-1"

    def test_invalid_stack_prefix(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(stack_name_prefix="1bad_prefix")

        assert "STACK_NAME_PREFIX" in str(exc_info.value)

    def test_requeue_delay_out_of_range(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(requeue_delay_seconds=0)

        assert "REQUEUE_DELAY_SECONDS" in str(exc_info.value)

    def test_concurrency_out_of_range(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(max_concurrent_reconciles=100)

        assert "MAX_CONCURRENT_RECONCILES" in str(exc_info.value)

    def test_route_table_tags_must_differ(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(public_route_table_tag="Same", private_route_table_tag="Same")

        assert "must differ" in str(exc_info.value)

    def test_all_errors_reported_together(self) -> None:
        """Every invalid field is listed in a single error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(region="bad", requeue_delay_seconds=0, log_level="LOUD")

        message = str(exc_info.value)
        assert "AWS_REGION" in message
        assert "REQUEUE_DELAY_SECONDS" in message
        assert "LOG_LEVEL" in message

    def test_log_level_value(self) -> None:
        assert Config(log_level="DEBUG").log_level_value == logging.DEBUG

    def test_from_env(self) -> None:
        env = {
            "AWS_REGION": "eu-west-1",
            "WATCH_NAMESPACE": "network",
            "STACK_NAME_PREFIX": "vpn",
            "REQUEUE_DELAY_SECONDS": "10",
            "MAX_CONCURRENT_RECONCILES": "2",
            "NODE_LABEL_SELECTOR": "role=worker",
            "LOG_LEVEL": "debug",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.region == "eu-west-1"
        assert config.watch_namespace == "network"
        assert config.stack_name_prefix == "vpn"
        assert config.requeue_delay_seconds == 10
        assert config.max_concurrent_reconciles == 2
        assert config.node_label_selector == "role=worker"
        assert config.log_level == "DEBUG"

    def test_from_env_default_region_fallback(self) -> None:
        with patch.dict(os.environ, {"AWS_DEFAULT_REGION": "ap-southeast-2"}, clear=True):
            config = Config.from_env()

        assert config.region == "ap-southeast-2"

    def test_from_env_no_region(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            config = Config.from_env()

        assert config.region is None

    def test_from_env_non_integer(self) -> None:
        with patch.dict(os.environ, {"REQUEUE_DELAY_SECONDS": "soon"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "must be an integer" in str(exc_info.value)
