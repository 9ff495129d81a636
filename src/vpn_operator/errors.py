"""Error taxonomy shared by the reconciler and its collaborators.

Every failure that leaves a reconcile pass is one of four kinds:

- NotFound: expected absence (no stack yet, record already gone). Drives the
  creation or cleanup path and is normally not surfaced as an error.
- Transient: throttling, timeouts, 5xx. Retried by the dispatcher's backoff.
- Permanent: malformed input, ambiguous network inference, missing route
  table tags, drifted gateway configuration. Needs operator attention.
- Conflict: the record was modified concurrently. The dispatcher re-reads
  immediately on the next pass.

No step retries internally; all of these propagate to the dispatcher.
"""

from __future__ import annotations


class VPNOperatorError(Exception):
    """Base class for all operator errors."""

    pass


# =============================================================================
# NotFound
# =============================================================================


class NotFoundError(VPNOperatorError):
    """An external object does not exist."""

    pass


class RecordNotFoundError(NotFoundError):
    """The VPN object disappeared while it was being written."""

    pass


# =============================================================================
# Transient
# =============================================================================


class TransientError(VPNOperatorError):
    """A retryable failure (rate limit, timeout, server error)."""

    pass


class TransientProviderError(TransientError):
    """AWS throttled the request or was temporarily unavailable."""

    pass


class TransientStoreError(TransientError):
    """The Kubernetes API was temporarily unavailable."""

    pass


# =============================================================================
# Permanent
# =============================================================================


class PermanentError(VPNOperatorError):
    """A failure that will not resolve without operator intervention."""

    pass


class PermanentProviderError(PermanentError):
    """AWS rejected the request (validation, permissions)."""

    pass


class PermanentStoreError(PermanentError):
    """The Kubernetes API rejected the request."""

    pass


class RouteTableLookupError(PermanentError):
    """The public or private route table could not be identified."""

    pass


class GatewayConfigMismatchError(PermanentError):
    """No customer gateway in the stack carries the declared address."""

    pass


class AmbiguousNetworkError(PermanentError):
    """Cluster nodes do not agree on exactly one VPC."""

    pass


class MalformedProviderIDError(PermanentError):
    """A node's providerID is not of the form aws:///<zone>/<instance-id>."""

    pass


class TemplateRenderError(PermanentError):
    """The CloudFormation template could not be rendered."""

    pass


class UnknownStackStatusError(PermanentError):
    """The stack reports a status outside the known vocabulary."""

    pass


# =============================================================================
# Conflict
# =============================================================================


class ConflictError(VPNOperatorError):
    """The record changed since it was read (resourceVersion mismatch)."""

    pass


def store_error(status: int | None, message: str) -> VPNOperatorError:
    """Map a Kubernetes API status code onto the error taxonomy.

    Args:
        status: HTTP status of the failed call (None for connection errors).
        message: Description of the failed call.
    """
    if status == 404:
        return RecordNotFoundError(message)
    if status == 409:
        return ConflictError(message)
    if status is None or status == 429 or status >= 500:
        return TransientStoreError(message)
    return PermanentStoreError(message)
