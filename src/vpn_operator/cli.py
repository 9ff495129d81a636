"""AWS VPN operator CLI (vpnctl).

Usage:
    vpnctl run                         # Run the operator against the current cluster
    vpnctl stack-name default my-vpn   # Print the stack name for a VPN
    vpnctl render-template vpn.yaml \\
        --vpc-id vpc-123 --public-route-table rtb-1 --private-route-table rtb-2
    vpnctl infer-vpc                   # Print the VPC shared by all cluster nodes
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import boto3
import click
import yaml
from kubernetes import client
from pydantic import ValidationError

from .config import DEFAULT_STACK_NAME_PREFIX, Config, ConfigurationError
from .errors import VPNOperatorError
from .fleet import NodeLister, infer_vpc_id
from .main import StartupError, load_kubernetes_config, main, resolve_region
from .models import VPNSpec
from .provisioning import ProvisioningClient
from .stacks import generate_stack_name
from .template import render_template


@click.group()
@click.version_option(version="0.1.0", prog_name="vpnctl")
def cli() -> None:
    """AWS VPN operator CLI (vpnctl).

    \b
    Quick Start:
        vpnctl run --namespace default   # Reconcile VPNs in one namespace
        vpnctl infer-vpc                 # Check which VPC would be used
    """
    pass


@cli.command()
@click.option("--namespace", "-n", default=None, help="Only watch this namespace")
@click.option("--region", "-r", envvar="AWS_REGION", default=None, help="AWS region")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Log level",
)
def run(namespace: str | None, region: str | None, log_level: str | None) -> None:
    """Run the operator in the foreground.

    Options override the corresponding environment variables.
    """
    if namespace is not None:
        os.environ["WATCH_NAMESPACE"] = namespace
    if region:
        os.environ["AWS_REGION"] = region
    if log_level:
        os.environ["LOG_LEVEL"] = log_level.upper()

    sys.exit(asyncio.run(main()))


@cli.command("stack-name")
@click.argument("namespace")
@click.argument("name")
@click.option("--prefix", default=DEFAULT_STACK_NAME_PREFIX, show_default=True)
def stack_name(namespace: str, name: str, prefix: str) -> None:
    """Print the CloudFormation stack name used for NAMESPACE/NAME."""
    click.echo(generate_stack_name(namespace, name, prefix))


@cli.command("render-template")
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--vpc-id", help="VPC ID (defaults to spec.vpcid of the manifest)")
@click.option("--public-route-table", required=True, help="Public route table ID")
@click.option("--private-route-table", required=True, help="Private route table ID")
def render_template_cmd(
    manifest: Path,
    vpc_id: str | None,
    public_route_table: str,
    private_route_table: str,
) -> None:
    """Print the CloudFormation template for a VPN MANIFEST."""
    try:
        document = yaml.safe_load(manifest.read_text())
    except yaml.YAMLError as e:
        raise click.ClickException(f"Invalid YAML in {manifest}: {e}") from e

    if not isinstance(document, dict):
        raise click.ClickException(f"{manifest} does not contain a VPN object")

    try:
        spec = VPNSpec.model_validate(document.get("spec") or {})
    except ValidationError as e:
        raise click.ClickException(f"Invalid VPN spec: {e}") from e

    try:
        body = render_template(
            vpc_id or spec.vpc_id,
            spec.vpn_connections,
            public_route_table,
            private_route_table,
        )
    except VPNOperatorError as e:
        raise click.ClickException(str(e)) from e

    click.echo(body, nl=False)


@cli.command("infer-vpc")
@click.option("--selector", "-l", default=None, help="Node label selector")
def infer_vpc(selector: str | None) -> None:
    """Print the VPC that every cluster node belongs to."""
    try:
        config = Config.from_env()
        region = resolve_region(config)
        load_kubernetes_config()
    except (ConfigurationError, StartupError) as e:
        raise click.ClickException(str(e)) from e

    ec2 = boto3.session.Session(region_name=region).client("ec2")
    provisioning = ProvisioningClient(
        cloudformation=None,
        ec2=ec2,
        public_route_table_tag=config.public_route_table_tag,
        private_route_table_tag=config.private_route_table_tag,
    )
    node_lister = NodeLister(
        client.CoreV1Api(),
        selector if selector is not None else config.node_label_selector,
    )

    try:
        click.echo(infer_vpc_id(node_lister, provisioning))
    except VPNOperatorError as e:
        raise click.ClickException(str(e)) from e


def main_cli() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main_cli()
