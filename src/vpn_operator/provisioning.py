"""AWS CloudFormation and EC2 client for VPN provisioning.

This module provides the passthroughs the reconciler needs:
1. Stack lifecycle (describe, create, delete)
2. Route table discovery for the VPC being attached
3. Instance to VPC resolution for network inference
4. Customer gateway configuration lookup

ARCHITECTURE:
The boto3 clients are passed in by the caller. Nothing here creates a
session or caches provider state, so one ProvisioningClient can be shared
by every worker.

ERRORS:
botocore failures are normalised at this boundary:
- Missing stack: describe_stack() returns None
- Throttling, 5xx, timeouts, connection errors: TransientProviderError
- Everything else: PermanentProviderError
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .errors import (
    GatewayConfigMismatchError,
    PermanentProviderError,
    RouteTableLookupError,
    TransientProviderError,
)
from .stacks import CUSTOMER_GATEWAY_OUTPUT_PREFIX, ObservedStack

logger = logging.getLogger(__name__)

STACK_CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]

# Error codes AWS uses for retryable conditions
TRANSIENT_ERROR_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "ServiceUnavailable",
    "Unavailable",
    "InternalError",
    "InternalFailure",
    "RequestExpired",
    "RequestTimeout",
})

_NETWORK_ERRORS = (
    BotoConnectionError,
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
)


@dataclass(frozen=True)
class RouteTables:
    """Route tables the VPN gateway propagates routes into."""

    public: str
    private: str


def error_code(exc: ClientError) -> str:
    """Return the AWS error code carried by a ClientError."""
    return exc.response.get("Error", {}).get("Code", "")


def is_stack_not_found(exc: ClientError) -> bool:
    """Whether a CloudFormation error reports a missing stack.

    CloudFormation has no dedicated code for this; it answers with a
    ValidationError whose message ends in "does not exist".
    """
    message = exc.response.get("Error", {}).get("Message", "")
    return error_code(exc) == "ValidationError" and "does not exist" in message


def normalize_error(exc: Exception, operation: str) -> Exception:
    """Map a botocore failure onto the operator error taxonomy.

    Args:
        exc: Exception raised by a boto3 call.
        operation: API operation name, used in the message.

    Returns:
        TransientProviderError or PermanentProviderError.
    """
    if isinstance(exc, ClientError):
        code = error_code(exc)
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        if code in TRANSIENT_ERROR_CODES or status == 429 or status >= 500:
            return TransientProviderError(f"{operation} failed ({code}): {exc}")
        return PermanentProviderError(f"{operation} failed ({code}): {exc}")

    if isinstance(exc, _NETWORK_ERRORS):
        return TransientProviderError(f"{operation} failed: {exc}")

    return PermanentProviderError(f"{operation} failed: {exc}")


class ProvisioningClient:
    """Thin wrapper over the CloudFormation and EC2 APIs.

    Every method performs its calls synchronously and raises an operator
    error on failure. No method retries; backoff belongs to the dispatcher.
    """

    def __init__(
        self,
        cloudformation: Any,
        ec2: Any,
        public_route_table_tag: str,
        private_route_table_tag: str,
    ) -> None:
        """Initialize the client.

        Args:
            cloudformation: boto3 CloudFormation client
            ec2: boto3 EC2 client
            public_route_table_tag: Tag value marking the public route table
            private_route_table_tag: Tag value marking the private route table
        """
        self._cfn = cloudformation
        self._ec2 = ec2
        self._public_tag = public_route_table_tag
        self._private_tag = private_route_table_tag

    # =========================================================================
    # Stacks
    # =========================================================================

    def describe_stack(self, name: str) -> ObservedStack | None:
        """Describe a stack by name.

        Returns:
            The observed stack, or None if no stack of that name exists.

        Raises:
            TransientProviderError, PermanentProviderError
        """
        try:
            response = self._cfn.describe_stacks(StackName=name)
        except ClientError as e:
            if is_stack_not_found(e):
                return None
            raise normalize_error(e, "DescribeStacks") from e
        except BotoCoreError as e:
            raise normalize_error(e, "DescribeStacks") from e

        stacks = response.get("Stacks") or []
        if not stacks:
            return None

        stack = stacks[0]
        outputs = {
            o["OutputKey"]: o.get("OutputValue", "")
            for o in stack.get("Outputs") or []
            if "OutputKey" in o
        }
        return ObservedStack(
            name=stack.get("StackName", name),
            status=stack.get("StackStatus", ""),
            outputs=outputs,
            status_reason=stack.get("StackStatusReason"),
            stack_id=stack.get("StackId"),
        )

    def create_stack(
        self,
        name: str,
        template_body: str,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Submit a stack creation request.

        A stack that already exists under this name counts as created, so a
        pass interrupted after the request converges on the next pass.
        """
        kwargs: dict[str, Any] = {
            "StackName": name,
            "TemplateBody": template_body,
            "Capabilities": STACK_CAPABILITIES,
        }
        if tags:
            kwargs["Tags"] = [{"Key": k, "Value": v} for k, v in sorted(tags.items())]

        try:
            self._cfn.create_stack(**kwargs)
        except ClientError as e:
            if error_code(e) == "AlreadyExistsException":
                logger.info("Stack already exists", extra={"stack_name": name})
                return
            raise normalize_error(e, "CreateStack") from e
        except BotoCoreError as e:
            raise normalize_error(e, "CreateStack") from e

        logger.info("Stack creation requested", extra={"stack_name": name})

    def delete_stack(self, name: str) -> None:
        """Request stack deletion. Deleting a missing stack is a no-op in AWS."""
        try:
            self._cfn.delete_stack(StackName=name)
        except (ClientError, BotoCoreError) as e:
            raise normalize_error(e, "DeleteStack") from e

        logger.info("Stack deletion requested", extra={"stack_name": name})

    # =========================================================================
    # Network discovery
    # =========================================================================

    def list_route_tables(self, vpc_id: str) -> RouteTables:
        """Find the public and private route tables of a VPC.

        A table is public (private) if any of its tag values equals the
        configured marker. Each marker must identify exactly one table.

        Raises:
            RouteTableLookupError: A marker matched zero or several tables.
        """
        tables = self._paginate(
            self._ec2.describe_route_tables,
            "DescribeRouteTables",
            "RouteTables",
            Filters=[{"Name": "vpc-id", "Values": [vpc_id]}],
        )

        public = self._match_route_tables(tables, self._public_tag)
        private = self._match_route_tables(tables, self._private_tag)

        errors: list[str] = []
        for marker, matched in ((self._public_tag, public), (self._private_tag, private)):
            if len(matched) != 1:
                errors.append(f"{len(matched)} route tables tagged {marker!r}")
        if errors:
            raise RouteTableLookupError(f"VPC {vpc_id}: " + ", ".join(errors))

        return RouteTables(public=public[0], private=private[0])

    @staticmethod
    def _match_route_tables(tables: list[dict[str, Any]], marker: str) -> list[str]:
        return [
            t["RouteTableId"]
            for t in tables
            if any(tag.get("Value") == marker for tag in t.get("Tags") or [])
        ]

    def get_vpc_ids(self, instance_ids: list[str]) -> list[str]:
        """Return the sorted distinct VPC IDs of the given instances."""
        if not instance_ids:
            return []

        reservations = self._paginate(
            self._ec2.describe_instances,
            "DescribeInstances",
            "Reservations",
            InstanceIds=list(instance_ids),
        )

        vpc_ids = {
            instance["VpcId"]
            for reservation in reservations
            for instance in reservation.get("Instances") or []
            if instance.get("VpcId")
        }
        return sorted(vpc_ids)

    # =========================================================================
    # Customer gateway configuration
    # =========================================================================

    def resolve_customer_gateway_config(self, gateway_ip: str, outputs: dict[str, str]) -> str:
        """Find the configuration document for a customer gateway address.

        Every stack output named CustomerGateway* holds a customer gateway ID.
        The VPN connections of each gateway are described and the first
        configuration that mentions ``gateway_ip`` is returned.

        Raises:
            GatewayConfigMismatchError: No configuration contains the address.
        """
        for key in sorted(outputs):
            if not key.startswith(CUSTOMER_GATEWAY_OUTPUT_PREFIX):
                continue

            gateway_id = outputs[key]
            try:
                response = self._ec2.describe_vpn_connections(
                    Filters=[{"Name": "customer-gateway-id", "Values": [gateway_id]}]
                )
            except (ClientError, BotoCoreError) as e:
                raise normalize_error(e, "DescribeVpnConnections") from e

            for connection in response.get("VpnConnections") or []:
                configuration = connection.get("CustomerGatewayConfiguration") or ""
                if gateway_ip in configuration:
                    logger.debug(
                        "Resolved customer gateway configuration",
                        extra={"customer_gateway_id": gateway_id, "gateway_ip": gateway_ip},
                    )
                    return configuration

        raise GatewayConfigMismatchError(
            f"No customer gateway configuration mentions {gateway_ip}"
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _paginate(method: Any, operation: str, result_key: str, **kwargs: Any) -> list[Any]:
        items: list[Any] = []
        token: str | None = None
        while True:
            call_kwargs = dict(kwargs)
            if token:
                call_kwargs["NextToken"] = token
            try:
                response = method(**call_kwargs)
            except (ClientError, BotoCoreError) as e:
                raise normalize_error(e, operation) from e

            items.extend(response.get(result_key) or [])
            token = response.get("NextToken")
            if not token:
                return items
