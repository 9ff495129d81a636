"""CloudFormation template rendering for VPN stacks.

The template is a pure function of its inputs: the same VPC, connections and
route tables always render to the same bytes. Resource and output order
follows connection order.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import yaml

from .errors import TemplateRenderError
from .models import VPNConnection
from .stacks import customer_gateway_output_key

TEMPLATE_FORMAT_VERSION = "2010-09-09"
TEMPLATE_DESCRIPTION = "Site-to-site VPN managed by aws-vpn-operator"

CUSTOMER_GATEWAY_BGP_ASN = 65000
VPN_TYPE = "ipsec.1"


def _ref(logical_id: str) -> dict[str, str]:
    return {"Ref": logical_id}


def build_template(
    vpc_id: str,
    connections: Sequence[VPNConnection],
    public_route_table_id: str,
    private_route_table_id: str,
) -> dict[str, Any]:
    """Build the template document as a plain mapping.

    Raises:
        TemplateRenderError: If the VPC ID or the connection list is empty.
    """
    if not vpc_id:
        raise TemplateRenderError("vpc_id is required")
    if not connections:
        raise TemplateRenderError("at least one VPN connection is required")

    resources: dict[str, Any] = {
        "VPNGateway": {
            "Type": "AWS::EC2::VPNGateway",
            "Properties": {"Type": VPN_TYPE},
        },
        "VPCGatewayAttachment": {
            "Type": "AWS::EC2::VPCGatewayAttachment",
            "Properties": {
                "VpcId": vpc_id,
                "VpnGatewayId": _ref("VPNGateway"),
            },
        },
        "VPNGatewayRoutePropagation": {
            "Type": "AWS::EC2::VPNGatewayRoutePropagation",
            "DependsOn": "VPCGatewayAttachment",
            "Properties": {
                "RouteTableIds": [public_route_table_id, private_route_table_id],
                "VpnGatewayId": _ref("VPNGateway"),
            },
        },
    }
    outputs: dict[str, Any] = {}

    for index, connection in enumerate(connections):
        gateway = customer_gateway_output_key(index)
        resources[gateway] = {
            "Type": "AWS::EC2::CustomerGateway",
            "Properties": {
                "Type": VPN_TYPE,
                "BgpAsn": CUSTOMER_GATEWAY_BGP_ASN,
                "IpAddress": connection.customer_gateway_ip,
            },
        }
        resources[f"VPNConnection{index}"] = {
            "Type": "AWS::EC2::VPNConnection",
            "Properties": {
                "Type": VPN_TYPE,
                "StaticRoutesOnly": False,
                "CustomerGatewayId": _ref(gateway),
                "VpnGatewayId": _ref("VPNGateway"),
            },
        }
        outputs[gateway] = {"Value": _ref(gateway)}

    return {
        "AWSTemplateFormatVersion": TEMPLATE_FORMAT_VERSION,
        "Description": TEMPLATE_DESCRIPTION,
        "Resources": resources,
        "Outputs": outputs,
    }


def render_template(
    vpc_id: str,
    connections: Sequence[VPNConnection],
    public_route_table_id: str,
    private_route_table_id: str,
) -> str:
    """Render the CloudFormation template body for a VPN stack.

    Args:
        vpc_id: VPC the VPN gateway is attached to.
        connections: Declared connections, in order.
        public_route_table_id: Route table receiving propagated routes.
        private_route_table_id: Route table receiving propagated routes.

    Returns:
        YAML template body.

    Raises:
        TemplateRenderError: If the VPC ID or the connection list is empty.
    """
    document = build_template(vpc_id, connections, public_route_table_id, private_route_table_id)
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False)
