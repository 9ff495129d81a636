"""Kubernetes API mocks for reconciler testing.

In-memory stand-ins for CustomObjectsApi (VPN objects) and CoreV1Api
(Secrets and Nodes). They raise real kubernetes ApiExceptions and enforce
resourceVersion checks, so conflict handling is exercised.

Usage:
    from kube_mock import MockCoreV1Api, MockCustomObjectsApi

    objects = MockCustomObjectsApi()
    objects.put(vpn_object("default", "my-vpn"))

    objects.fail_next("get_namespaced_custom_object", api_exception(503))
"""

from .core import MockCoreV1Api, secret_payload
from .custom_objects import MockCustomObjectsApi, api_exception, vpn_object

__all__ = [
    "MockCoreV1Api",
    "MockCustomObjectsApi",
    "api_exception",
    "secret_payload",
    "vpn_object",
]
