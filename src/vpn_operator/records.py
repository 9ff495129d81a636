"""Read and write VPN objects through the Kubernetes API.

Writes carry the resourceVersion that was read, so a concurrent change
surfaces as ConflictError instead of being overwritten.
"""

from __future__ import annotations

import logging
from typing import Any

from kubernetes.client.rest import ApiException
from pydantic import ValidationError
from urllib3.exceptions import HTTPError

from .config import CRD_GROUP, CRD_PLURAL, CRD_VERSION
from .errors import PermanentStoreError, store_error
from .models import RecordKey, VPNRecord

logger = logging.getLogger(__name__)


class RecordStore:
    """VPN custom objects backed by CustomObjectsApi."""

    def __init__(self, custom_objects: Any) -> None:
        """Initialize the store.

        Args:
            custom_objects: kubernetes.client.CustomObjectsApi (or a fake)
        """
        self._api = custom_objects

    def get(self, key: RecordKey) -> VPNRecord | None:
        """Load a record.

        Returns:
            The record, or None if it no longer exists.

        Raises:
            PermanentStoreError: The stored object's metadata does not parse.
            TransientStoreError: The API was unavailable.
        """
        try:
            obj = self._api.get_namespaced_custom_object(
                CRD_GROUP, CRD_VERSION, key.namespace, CRD_PLURAL, key.name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise store_error(e.status, f"get VPN {key}: {e.reason}") from e
        except HTTPError as e:
            raise store_error(None, f"get VPN {key}: {e}") from e

        try:
            return VPNRecord.from_k8s(obj)
        except ValidationError as e:
            raise PermanentStoreError(f"VPN {key} is invalid: {e}") from e

    def update(self, record: VPNRecord) -> VPNRecord:
        """Replace the object (metadata and spec) with ``record``.

        Returns:
            The record as stored, with its new resourceVersion.

        Raises:
            ConflictError: The object changed since it was read.
            RecordNotFoundError: The object was deleted.
        """
        obj = self._write(
            "replace",
            record,
            self._api.replace_namespaced_custom_object,
        )
        logger.debug(
            "VPN updated",
            extra={"vpn": record.name, "namespace": record.namespace},
        )
        return VPNRecord.from_k8s(obj)

    def update_status(self, record: VPNRecord) -> VPNRecord:
        """Write ``record.status`` through the status subresource."""
        obj = self._write(
            "replace status of",
            record,
            self._api.replace_namespaced_custom_object_status,
        )
        logger.debug(
            "VPN status updated",
            extra={
                "vpn": record.name,
                "namespace": record.namespace,
                "status": record.status.value if record.status else None,
            },
        )
        return VPNRecord.from_k8s(obj)

    def _write(self, verb: str, record: VPNRecord, method: Any) -> dict[str, Any]:
        try:
            return method(
                CRD_GROUP,
                CRD_VERSION,
                record.namespace,
                CRD_PLURAL,
                record.name,
                record.to_k8s(),
            )
        except ApiException as e:
            raise store_error(e.status, f"{verb} VPN {record.key}: {e.reason}") from e
        except HTTPError as e:
            raise store_error(None, f"{verb} VPN {record.key}: {e}") from e
