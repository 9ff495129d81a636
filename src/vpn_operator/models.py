"""Pydantic models for the VPN custom resource.

These models provide:
1. Type-safe parsing of the objects returned by the Kubernetes API
2. Validation at the boundary (fail fast, fail loudly)
3. Lossless write-back: fields the operator does not own are preserved
"""

from __future__ import annotations

import copy
import ipaddress
import re
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .config import CRD_GROUP, CRD_KIND, CRD_VERSION

# RFC 1123 subdomain, the naming rule for Secrets
_SECRET_NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")

MAX_VPN_CONNECTIONS = 2


class VPNStatusValue(str, Enum):
    """Status vocabulary surfaced on the VPN object.

    These strings are polled by external consumers and must stay stable.
    """

    CREATING = "Creating"
    COMPLETE = "Complete"
    FAILED = "Failed"


@dataclass(frozen=True)
class RecordKey:
    """Identity of a VPN object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


# =============================================================================
# Spec
# =============================================================================


class VPNConnection(BaseModel):
    """A customer gateway and the Secret that receives its configuration."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    customer_gateway_ip: str = Field(alias="customergatewayip")
    config_secret_name: Annotated[
        str, Field(min_length=1, max_length=253, alias="configsecretname")
    ]

    @field_validator("customer_gateway_ip")
    @classmethod
    def validate_ip(cls, v: str) -> str:
        # AWS customer gateways only accept IPv4 addresses
        try:
            ipaddress.IPv4Address(v)
        except ValueError as e:
            raise ValueError(f"customergatewayip must be an IPv4 address: {v}") from e
        return v

    @field_validator("config_secret_name")
    @classmethod
    def validate_secret_name(cls, v: str) -> str:
        if not _SECRET_NAME_PATTERN.match(v):
            raise ValueError(f"configsecretname must be a valid Secret name: {v}")
        return v


class VPNSpec(BaseModel):
    """Desired state of a VPN."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    vpc_id: str = Field("", alias="vpcid")
    vpn_connections: Annotated[
        list[VPNConnection],
        Field(min_length=1, max_length=MAX_VPN_CONNECTIONS, alias="vpnconnections"),
    ]

    @field_validator("vpc_id", mode="before")
    @classmethod
    def normalize_vpc_id(cls, v: Any) -> str:
        return v or ""

    @field_validator("vpn_connections")
    @classmethod
    def validate_unique_secrets(cls, v: list[VPNConnection]) -> list[VPNConnection]:
        names = [c.config_secret_name for c in v]
        if len(names) != len(set(names)):
            raise ValueError("configsecretname must be unique across vpnconnections")
        return v


# =============================================================================
# Record
# =============================================================================


class VPNRecord(BaseModel):
    """A VPN object as read from the cluster.

    ``raw`` keeps the full object so that writes only touch the fields the
    operator owns (finalizers and status).

    A spec that does not validate leaves ``spec`` as None and the reason in
    ``spec_error``, so the record can still be marked Failed or deleted.
    """

    model_config = {"extra": "ignore"}

    name: Annotated[str, Field(min_length=1)]
    namespace: Annotated[str, Field(min_length=1)]
    resource_version: str | None = None
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: str | None = None
    spec: VPNSpec | None = None
    spec_error: str | None = None
    status: VPNStatusValue | None = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False, exclude=True)

    @field_validator("status", mode="before")
    @classmethod
    def ignore_unknown_status(cls, v: Any) -> Any:
        # Status is a derived projection; anything we did not write is ignored
        if v not in {s.value for s in VPNStatusValue} and not isinstance(v, VPNStatusValue):
            return None
        return v

    @property
    def key(self) -> RecordKey:
        """Identity of this record."""
        return RecordKey(namespace=self.namespace, name=self.name)

    @property
    def deletion_requested(self) -> bool:
        """Whether the object has been marked for deletion."""
        return bool(self.deletion_timestamp)

    @property
    def config_secret_names(self) -> list[str]:
        """Secrets this record declares, read leniently when the spec is invalid."""
        if self.spec is not None:
            return [c.config_secret_name for c in self.spec.vpn_connections]

        names: list[str] = []
        spec = self.raw.get("spec") or {}
        connections = spec.get("vpnconnections") if isinstance(spec, dict) else None
        for connection in connections if isinstance(connections, list) else []:
            name = connection.get("configsecretname") if isinstance(connection, dict) else None
            if isinstance(name, str) and name and name not in names:
                names.append(name)
        return names

    @classmethod
    def from_k8s(cls, obj: dict[str, Any]) -> VPNRecord:
        """Build a record from a custom object returned by the API.

        An invalid spec is recorded in ``spec_error`` rather than raised.

        Raises:
            pydantic.ValidationError: If the metadata does not match the schema.
        """
        metadata = obj.get("metadata") or {}
        status = obj.get("status") or {}

        spec: VPNSpec | None = None
        spec_error: str | None = None
        try:
            spec = VPNSpec.model_validate(obj.get("spec") or {})
        except ValidationError as e:
            spec_error = str(e)

        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            resource_version=metadata.get("resourceVersion"),
            finalizers=list(metadata.get("finalizers") or []),
            deletion_timestamp=metadata.get("deletionTimestamp"),
            spec=spec,
            spec_error=spec_error,
            status=status.get("status"),
            raw=copy.deepcopy(obj),
        )

    def to_k8s(self) -> dict[str, Any]:
        """Render the object body for a replace call."""
        if self.raw:
            body = copy.deepcopy(self.raw)
        else:
            body = {
                "apiVersion": f"{CRD_GROUP}/{CRD_VERSION}",
                "kind": CRD_KIND,
                "metadata": {"name": self.name, "namespace": self.namespace},
                "spec": self.spec.model_dump(by_alias=True) if self.spec else {},
            }

        metadata = body.setdefault("metadata", {})
        metadata["finalizers"] = list(self.finalizers)
        if self.resource_version is not None:
            metadata["resourceVersion"] = self.resource_version

        if self.status is not None:
            body["status"] = {**(body.get("status") or {}), "status": self.status.value}

        return body
