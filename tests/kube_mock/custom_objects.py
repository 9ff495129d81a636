"""Mock CustomObjectsApi holding VPN objects."""

from __future__ import annotations

import copy
from typing import Any

from kubernetes.client.rest import ApiException


def api_exception(status: int, reason: str = "") -> ApiException:
    """Build an ApiException as raised by the kubernetes client."""
    return ApiException(status=status, reason=reason or f"HTTP {status}")


def vpn_object(
    namespace: str,
    name: str,
    connections: list[dict[str, str]] | None = None,
    vpc_id: str = "",
    finalizers: list[str] | None = None,
    deletion_timestamp: str | None = None,
    status: str | None = None,
) -> dict[str, Any]:
    """Build a VPN custom object body."""
    if connections is None:
        connections = [{"customergatewayip": "203.0.113.10", "configsecretname": f"{name}-config"}]
    metadata: dict[str, Any] = {"name": name, "namespace": namespace}
    if finalizers is not None:
        metadata["finalizers"] = list(finalizers)
    if deletion_timestamp is not None:
        metadata["deletionTimestamp"] = deletion_timestamp

    obj: dict[str, Any] = {
        "apiVersion": "networking.amazonaws.com/v1alpha1",
        "kind": "VPN",
        "metadata": metadata,
        "spec": {"vpcid": vpc_id, "vpnconnections": connections},
    }
    if status is not None:
        obj["status"] = {"status": status}
    return obj


class MockCustomObjectsApi:
    """Mimics the namespaced custom object calls of CustomObjectsApi.

    Replacing the main resource ignores status and replacing the status
    subresource ignores everything else, as the API server does for a CRD
    with the status subresource enabled. An object that is being deleted
    disappears once its last finalizer is removed.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._failures: dict[str, list[Exception]] = {}
        self._resource_version = 0

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def put(self, obj: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(obj)
        metadata = stored.setdefault("metadata", {})
        metadata["resourceVersion"] = self._next_version()
        self.objects[(metadata["namespace"], metadata["name"])] = stored
        return copy.deepcopy(stored)

    def stored(self, namespace: str, name: str) -> dict[str, Any] | None:
        obj = self.objects.get((namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def mark_deleted(self, namespace: str, name: str, timestamp: str = "2024-01-01T00:00:00Z") -> None:
        obj = self.objects[(namespace, name)]
        obj["metadata"]["deletionTimestamp"] = timestamp
        obj["metadata"]["resourceVersion"] = self._next_version()

    def fail_next(self, operation: str, error: Exception) -> None:
        """Raise ``error`` on the next call to ``operation``."""
        self._failures.setdefault(operation, []).append(error)

    def calls_to(self, operation: str) -> list[tuple[Any, ...]]:
        return [args for op, args in self.calls if op == operation]

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _next_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def _current(self, namespace: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        current = self.objects.get((namespace, name))
        if current is None:
            raise api_exception(404, "Not Found")
        expected = (body.get("metadata") or {}).get("resourceVersion")
        if expected is not None and expected != current["metadata"]["resourceVersion"]:
            raise api_exception(409, "Conflict")
        return current

    # -------------------------------------------------------------------------
    # kubernetes client surface
    # -------------------------------------------------------------------------

    def get_namespaced_custom_object(
        self, group: str, version: str, namespace: str, plural: str, name: str
    ) -> dict[str, Any]:
        self._record("get_namespaced_custom_object", group, version, namespace, plural, name)
        obj = self.objects.get((namespace, name))
        if obj is None:
            raise api_exception(404, "Not Found")
        return copy.deepcopy(obj)

    def replace_namespaced_custom_object(
        self, group: str, version: str, namespace: str, plural: str, name: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        self._record("replace_namespaced_custom_object", group, version, namespace, plural, name, body)
        current = self._current(namespace, name, body)

        replaced = copy.deepcopy(body)
        replaced["status"] = copy.deepcopy(current.get("status"))
        if replaced["status"] is None:
            del replaced["status"]
        metadata = replaced.setdefault("metadata", {})
        deletion = current["metadata"].get("deletionTimestamp")
        if deletion:
            metadata["deletionTimestamp"] = deletion
        metadata["resourceVersion"] = self._next_version()

        if deletion and not metadata.get("finalizers"):
            del self.objects[(namespace, name)]
        else:
            self.objects[(namespace, name)] = replaced
        return copy.deepcopy(replaced)

    def replace_namespaced_custom_object_status(
        self, group: str, version: str, namespace: str, plural: str, name: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        self._record(
            "replace_namespaced_custom_object_status", group, version, namespace, plural, name, body
        )
        current = self._current(namespace, name, body)
        current["status"] = copy.deepcopy(body.get("status"))
        current["metadata"]["resourceVersion"] = self._next_version()
        return copy.deepcopy(current)

    def list_cluster_custom_object(self, group: str, version: str, plural: str, **kwargs: Any) -> dict[str, Any]:
        self._record("list_cluster_custom_object", group, version, plural)
        return {"items": [copy.deepcopy(o) for o in self.objects.values()]}

    def list_namespaced_custom_object(
        self, group: str, version: str, namespace: str, plural: str, **kwargs: Any
    ) -> dict[str, Any]:
        self._record("list_namespaced_custom_object", group, version, namespace, plural)
        return {
            "items": [copy.deepcopy(o) for (ns, _), o in self.objects.items() if ns == namespace]
        }
