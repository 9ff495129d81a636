"""Tests for the vpnctl CLI."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

import pytest
import yaml
from aws_mock import MockEC2Client
from click.testing import CliRunner
from kube_mock import MockCoreV1Api, vpn_object

from vpn_operator.cli import cli, main_cli
from vpn_operator.stacks import generate_stack_name


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _manifest(tmp_path: Path, **kwargs: Any) -> Path:
    path = tmp_path / "vpn.yaml"
    path.write_text(yaml.safe_dump(vpn_object("default", "office", **kwargs)))
    return path


class TestStackName:
    def test_prints_deterministic_name(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["stack-name", "default", "office"])

        assert result.exit_code == 0
        assert result.output.strip() == generate_stack_name("default", "office")

    def test_custom_prefix(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["stack-name", "default", "office", "--prefix", "corp"])

        assert result.output.startswith("corp-default-office-")


class TestRenderTemplate:
    def test_renders_manifest(self, runner: CliRunner, tmp_path: Path) -> None:
        manifest = _manifest(tmp_path, vpc_id="vpc-1")

        result = runner.invoke(
            cli,
            [
                "render-template",
                str(manifest),
                "--public-route-table",
                "rtb-pub",
                "--private-route-table",
                "rtb-priv",
            ],
        )

        assert result.exit_code == 0, result.output
        doc = yaml.safe_load(result.output)
        assert doc["Resources"]["VPCGatewayAttachment"]["Properties"]["VpcId"] == "vpc-1"
        assert doc["Resources"]["CustomerGateway0"]["Properties"]["IpAddress"] == "203.0.113.10"

    def test_vpc_override(self, runner: CliRunner, tmp_path: Path) -> None:
        manifest = _manifest(tmp_path, vpc_id="vpc-1")

        result = runner.invoke(
            cli,
            [
                "render-template",
                str(manifest),
                "--vpc-id",
                "vpc-2",
                "--public-route-table",
                "rtb-pub",
                "--private-route-table",
                "rtb-priv",
            ],
        )

        assert "VpcId: vpc-2" in result.output

    def test_missing_vpc_fails(self, runner: CliRunner, tmp_path: Path) -> None:
        manifest = _manifest(tmp_path)

        result = runner.invoke(
            cli,
            [
                "render-template",
                str(manifest),
                "--public-route-table",
                "rtb-pub",
                "--private-route-table",
                "rtb-priv",
            ],
        )

        assert result.exit_code == 1
        assert "vpc_id is required" in result.output

    def test_invalid_spec_fails(self, runner: CliRunner, tmp_path: Path) -> None:
        manifest = _manifest(tmp_path, vpc_id="vpc-1", connections=[])

        result = runner.invoke(
            cli,
            [
                "render-template",
                str(manifest),
                "--public-route-table",
                "rtb-pub",
                "--private-route-table",
                "rtb-priv",
            ],
        )

        assert result.exit_code == 1
        assert "Invalid VPN spec" in result.output


class _FakeSession:
    ec2 = MockEC2Client()

    def __init__(self, region_name: str | None = None) -> None:
        self.region_name = region_name

    def client(self, service: str) -> Any:
        assert service == "ec2"
        return _FakeSession.ec2


class TestInferVpc:
    @pytest.fixture
    def cluster(self, monkeypatch: pytest.MonkeyPatch) -> MockCoreV1Api:
        core_v1 = MockCoreV1Api()
        _FakeSession.ec2 = MockEC2Client()
        monkeypatch.setenv("AWS_REGION", "us-east-1")
        monkeypatch.setattr("vpn_operator.cli.load_kubernetes_config", lambda: None)
        monkeypatch.setattr("vpn_operator.cli.client.CoreV1Api", lambda: core_v1)
        monkeypatch.setattr("vpn_operator.cli.boto3.session.Session", _FakeSession)
        return core_v1

    def test_single_vpc(self, runner: CliRunner, cluster: MockCoreV1Api) -> None:
        cluster.add_node("n1", "aws:///us-east-1a/i-1")
        cluster.add_node("n2", "aws:///us-east-1b/i-2")
        _FakeSession.ec2.add_instance("i-1", "vpc-A")
        _FakeSession.ec2.add_instance("i-2", "vpc-A")

        result = runner.invoke(cli, ["infer-vpc"])

        assert result.exit_code == 0, result.output
        assert result.output.strip() == "vpc-A"

    def test_ambiguous(self, runner: CliRunner, cluster: MockCoreV1Api) -> None:
        cluster.add_node("n1", "aws:///us-east-1a/i-1")
        cluster.add_node("n2", "aws:///us-east-1b/i-2")
        _FakeSession.ec2.add_instance("i-1", "vpc-A")
        _FakeSession.ec2.add_instance("i-2", "vpc-B")

        result = runner.invoke(cli, ["infer-vpc"])

        assert result.exit_code == 1
        assert "exactly one VPC" in result.output

    def test_selector_passed_through(self, runner: CliRunner, cluster: MockCoreV1Api) -> None:
        cluster.add_node("n1", "aws:///us-east-1a/i-1", labels={"pool": "vpn"})
        cluster.add_node("n2", "aws:///us-east-1b/i-2", labels={"pool": "other"})
        _FakeSession.ec2.add_instance("i-1", "vpc-A")
        _FakeSession.ec2.add_instance("i-2", "vpc-B")

        result = runner.invoke(cli, ["infer-vpc", "--selector", "pool=vpn"])

        assert result.output.strip() == "vpc-A"


class TestRun:
    def test_options_become_environment(
        self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        for name in ("WATCH_NAMESPACE", "AWS_REGION", "LOG_LEVEL"):
            monkeypatch.setenv(name, "")
        seen: dict[str, str | None] = {}

        async def fake_main() -> int:
            seen.update({k: os.environ.get(k) for k in ("WATCH_NAMESPACE", "AWS_REGION", "LOG_LEVEL")})
            return 0

        monkeypatch.setattr("vpn_operator.cli.main", fake_main)

        result = runner.invoke(
            cli, ["run", "--namespace", "team", "--region", "eu-west-1", "--log-level", "debug"]
        )

        assert result.exit_code == 0, result.output
        assert seen == {"WATCH_NAMESPACE": "team", "AWS_REGION": "eu-west-1", "LOG_LEVEL": "DEBUG"}

    def test_exit_code_propagates(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        async def failing_main() -> int:
            return 1

        monkeypatch.setattr("vpn_operator.cli.main", failing_main)

        result = runner.invoke(cli, ["run"])

        assert result.exit_code == 1


class TestEntryPoint:
    def test_console_script_targets_main_cli(self) -> None:
        pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"

        scripts = tomllib.loads(pyproject.read_text())["project"]["scripts"]

        assert scripts["vpnctl"] == "vpn_operator.cli:main_cli"
        assert scripts["vpn-operator"] == "vpn_operator.main:run"

    def test_main_cli_dispatches_commands(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setattr("sys.argv", ["vpnctl", "stack-name", "default", "office"])

        with pytest.raises(SystemExit) as exc_info:
            main_cli()

        assert exc_info.value.code == 0
        assert capsys.readouterr().out.strip() == generate_stack_name("default", "office")
