"""Cluster node inventory and VPC inference.

When a VPN does not name its VPC, the VPC is inferred from the nodes of the
cluster: every node's instance must live in the same VPC. There is no quorum
and no majority vote; disagreement is an error.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .errors import AmbiguousNetworkError, MalformedProviderIDError, store_error

logger = logging.getLogger(__name__)

# aws:///<availability-zone>/<instance-id> splits into 5 parts
PROVIDER_ID_MIN_PARTS = 5
PROVIDER_ID_INSTANCE_INDEX = 4


class VpcResolver(Protocol):
    def get_vpc_ids(self, instance_ids: list[str]) -> list[str]: ...


class NodeLister:
    """Lists the provider IDs of cluster nodes."""

    def __init__(self, core_v1: Any, label_selector: str = "") -> None:
        self._core = core_v1
        self._label_selector = label_selector

    def list_provider_ids(self) -> list[str]:
        """Return the spec.providerID of every matching node that has one."""
        kwargs: dict[str, Any] = {}
        if self._label_selector:
            kwargs["label_selector"] = self._label_selector

        try:
            nodes = self._core.list_node(**kwargs)
        except ApiException as e:
            raise store_error(e.status, f"list nodes: {e.reason}") from e
        except HTTPError as e:
            raise store_error(None, f"list nodes: {e}") from e

        provider_ids = []
        for node in nodes.items or []:
            provider_id = node.spec.provider_id if node.spec else None
            if provider_id:
                provider_ids.append(provider_id)
            else:
                logger.debug(
                    "Node has no providerID",
                    extra={"node": node.metadata.name if node.metadata else None},
                )
        return provider_ids


def parse_instance_id(provider_id: str) -> str:
    """Extract the EC2 instance ID from a node providerID.

    >>> parse_instance_id("aws:///us-west-2a/i-0123456789abcdef0")
    'i-0123456789abcdef0'

    Raises:
        MalformedProviderIDError: If the ID has fewer than five parts.
    """
    parts = provider_id.split("/")
    if len(parts) < PROVIDER_ID_MIN_PARTS or not parts[PROVIDER_ID_INSTANCE_INDEX]:
        raise MalformedProviderIDError(f"Malformed providerID: {provider_id!r}")
    return parts[PROVIDER_ID_INSTANCE_INDEX]


def infer_vpc_id(node_lister: NodeLister, provisioning: VpcResolver) -> str:
    """Infer the single VPC that hosts every cluster node.

    Raises:
        MalformedProviderIDError: A node has an unparseable providerID.
        AmbiguousNetworkError: Zero or several distinct VPCs were found.
    """
    instance_ids = [parse_instance_id(p) for p in node_lister.list_provider_ids()]
    if not instance_ids:
        raise AmbiguousNetworkError("No nodes with a providerID; cannot infer VPC")

    vpc_ids = sorted(set(provisioning.get_vpc_ids(instance_ids)))
    if len(vpc_ids) != 1:
        raise AmbiguousNetworkError(
            f"Nodes must share exactly one VPC, found {len(vpc_ids)}: {vpc_ids}"
        )

    logger.info(
        "Inferred VPC from cluster nodes",
        extra={"vpc_id": vpc_ids[0], "nodes": len(instance_ids)},
    )
    return vpc_ids[0]
