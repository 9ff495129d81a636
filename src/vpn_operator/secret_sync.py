"""Publishes customer gateway configuration to Kubernetes Secrets.

Each VPN connection owns one Opaque Secret holding a single data key. The
synchronizer is an upsert: the Secret is created when absent, replaced when
its payload differs byte for byte, and left alone otherwise.
"""

from __future__ import annotations

import base64
import logging
from enum import Enum
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .errors import RecordNotFoundError, store_error

logger = logging.getLogger(__name__)

SECRET_DATA_KEY = "VPNConfiguration"
SECRET_TYPE = "Opaque"

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "aws-vpn-operator"
VPN_LABEL = "networking.amazonaws.com/vpn"


class SyncOutcome(str, Enum):
    """What sync() did to the Secret."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def encode_data(payload: bytes) -> dict[str, str]:
    """Secret ``data`` mapping for a configuration payload."""
    return {SECRET_DATA_KEY: base64.b64encode(payload).decode("ascii")}


def decode_data(data: dict[str, str] | None) -> dict[str, bytes]:
    """Decode a Secret ``data`` mapping; undecodable values compare unequal."""
    decoded: dict[str, bytes] = {}
    for key, value in (data or {}).items():
        try:
            decoded[key] = base64.b64decode(value or "", validate=True)
        except ValueError:
            decoded[key] = (value or "").encode()
    return decoded


class SecretSynchronizer:
    """Create, update and delete per-connection configuration Secrets."""

    def __init__(self, core_v1: Any) -> None:
        """Initialize the synchronizer.

        Args:
            core_v1: kubernetes.client.CoreV1Api (or an equivalent fake)
        """
        self._core = core_v1

    def sync(
        self,
        name: str,
        namespace: str,
        payload: bytes,
        owner: str | None = None,
    ) -> SyncOutcome:
        """Make the Secret hold exactly ``{VPNConfiguration: payload}``.

        Args:
            name: Secret name.
            namespace: Namespace of the owning VPN.
            payload: Raw customer gateway configuration.
            owner: Name of the owning VPN, recorded as a label.

        Returns:
            The action taken.

        Raises:
            TransientStoreError, PermanentStoreError, ConflictError
        """
        desired = {SECRET_DATA_KEY: payload}

        try:
            existing = self._core.read_namespaced_secret(name, namespace)
        except ApiException as e:
            if e.status != 404:
                raise store_error(e.status, f"read Secret {namespace}/{name}: {e.reason}") from e
            existing = None
        except HTTPError as e:
            raise store_error(None, f"read Secret {namespace}/{name}: {e}") from e

        if existing is None:
            self._call(
                "create",
                name,
                namespace,
                self._core.create_namespaced_secret,
                namespace,
                self._build_secret(name, namespace, payload, owner),
            )
            logger.info("Secret created", extra={"secret": name, "namespace": namespace})
            return SyncOutcome.CREATED

        if decode_data(existing.data) == desired:
            logger.debug("Secret unchanged", extra={"secret": name, "namespace": namespace})
            return SyncOutcome.UNCHANGED

        body = self._build_secret(name, namespace, payload, owner)
        metadata = existing.metadata
        if metadata is not None:
            body.metadata.resource_version = metadata.resource_version
            body.metadata.labels = {**(metadata.labels or {}), **(body.metadata.labels or {})}
            body.metadata.annotations = metadata.annotations

        self._call(
            "replace", name, namespace, self._core.replace_namespaced_secret, name, namespace, body
        )
        logger.info("Secret updated", extra={"secret": name, "namespace": namespace})
        return SyncOutcome.UPDATED

    def delete(self, name: str, namespace: str) -> bool:
        """Delete a Secret.

        Returns:
            True if a Secret was deleted, False if it did not exist.
        """
        try:
            self._call("delete", name, namespace, self._core.delete_namespaced_secret, name, namespace)
        except RecordNotFoundError:
            logger.debug("Secret already absent", extra={"secret": name, "namespace": namespace})
            return False

        logger.info("Secret deleted", extra={"secret": name, "namespace": namespace})
        return True

    @staticmethod
    def _build_secret(
        name: str,
        namespace: str,
        payload: bytes,
        owner: str | None,
    ) -> client.V1Secret:
        labels = {MANAGED_BY_LABEL: MANAGED_BY_VALUE}
        if owner:
            labels[VPN_LABEL] = owner
        return client.V1Secret(
            api_version="v1",
            kind="Secret",
            type=SECRET_TYPE,
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=labels),
            data=encode_data(payload),
        )

    @staticmethod
    def _call(verb: str, name: str, namespace: str, method: Any, *args: Any) -> Any:
        try:
            return method(*args)
        except ApiException as e:
            raise store_error(e.status, f"{verb} Secret {namespace}/{name}: {e.reason}") from e
        except HTTPError as e:
            raise store_error(None, f"{verb} Secret {namespace}/{name}: {e}") from e
