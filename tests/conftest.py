"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for aws_mock / kube_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from aws_mock import MockCloudFormationClient, MockEC2Client  # noqa: E402
from kube_mock import MockCoreV1Api, MockCustomObjectsApi  # noqa: E402

from vpn_operator.config import Config  # noqa: E402
from vpn_operator.fleet import NodeLister  # noqa: E402
from vpn_operator.provisioning import ProvisioningClient  # noqa: E402
from vpn_operator.reconciler import VPNReconciler  # noqa: E402
from vpn_operator.records import RecordStore  # noqa: E402
from vpn_operator.secret_sync import SecretSynchronizer  # noqa: E402


@pytest.fixture
def config() -> Config:
    return Config(region="us-east-1")


@pytest.fixture
def cfn() -> MockCloudFormationClient:
    return MockCloudFormationClient()


@pytest.fixture
def ec2() -> MockEC2Client:
    return MockEC2Client()


@pytest.fixture
def custom_objects() -> MockCustomObjectsApi:
    return MockCustomObjectsApi()


@pytest.fixture
def core_v1() -> MockCoreV1Api:
    return MockCoreV1Api()


@pytest.fixture
def provisioning(
    cfn: MockCloudFormationClient, ec2: MockEC2Client, config: Config
) -> ProvisioningClient:
    return ProvisioningClient(
        cfn, ec2, config.public_route_table_tag, config.private_route_table_tag
    )


@pytest.fixture
def reconciler(
    custom_objects: MockCustomObjectsApi,
    core_v1: MockCoreV1Api,
    provisioning: ProvisioningClient,
    config: Config,
) -> VPNReconciler:
    return VPNReconciler(
        store=RecordStore(custom_objects),
        provisioning=provisioning,
        secrets=SecretSynchronizer(core_v1),
        node_lister=NodeLister(core_v1),
        config=config,
    )
