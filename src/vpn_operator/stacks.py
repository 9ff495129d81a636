"""CloudFormation stack vocabulary.

The provider reports stack state as free-form strings. Every decision in the
reconciler is made on the closed StackPhase variant produced by
classify_stack_status(), never on the raw string.

KEY DESIGN DECISIONS:
1. Stack per VPN object: the name is a pure function of namespace/name,
   so at most one stack can exist per object
2. Unknown statuses are their own phase and are never folded into another
3. Observed stacks are values; nothing here caches provider state
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum

from .config import DEFAULT_STACK_NAME_PREFIX, MAX_STACK_NAME_LENGTH


class StackPhase(str, Enum):
    """Classified stack state."""

    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"
    DELETING = "deleting"
    DELETE_COMPLETE = "deleteComplete"
    UNKNOWN = "unknown"


# Raw CloudFormation statuses by phase
COMPLETE_STATUSES: frozenset[str] = frozenset({
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "IMPORT_COMPLETE",
})

PENDING_STATUSES: frozenset[str] = frozenset({
    "CREATE_IN_PROGRESS",
    "UPDATE_IN_PROGRESS",
    "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS",
    "REVIEW_IN_PROGRESS",
    "IMPORT_IN_PROGRESS",
})

# Failed and rollback family
FAILED_STATUSES: frozenset[str] = frozenset({
    "CREATE_FAILED",
    "ROLLBACK_IN_PROGRESS",
    "ROLLBACK_FAILED",
    "ROLLBACK_COMPLETE",
    "DELETE_FAILED",
    "UPDATE_FAILED",
    "UPDATE_ROLLBACK_IN_PROGRESS",
    "UPDATE_ROLLBACK_FAILED",
    "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS",
    "UPDATE_ROLLBACK_COMPLETE",
    "IMPORT_ROLLBACK_IN_PROGRESS",
    "IMPORT_ROLLBACK_FAILED",
    "IMPORT_ROLLBACK_COMPLETE",
})

DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
DELETE_COMPLETE = "DELETE_COMPLETE"

# Output keys that carry a customer gateway ID
CUSTOMER_GATEWAY_OUTPUT_PREFIX = "CustomerGateway"


def classify_stack_status(status: str | None) -> StackPhase:
    """Map a raw CloudFormation status onto a StackPhase.

    Args:
        status: StackStatus as returned by DescribeStacks.

    Returns:
        The phase; UNKNOWN for anything not in the known vocabulary.
    """
    if status in COMPLETE_STATUSES:
        return StackPhase.COMPLETE
    if status in PENDING_STATUSES:
        return StackPhase.PENDING
    if status in FAILED_STATUSES:
        return StackPhase.FAILED
    if status == DELETE_IN_PROGRESS:
        return StackPhase.DELETING
    if status == DELETE_COMPLETE:
        return StackPhase.DELETE_COMPLETE
    return StackPhase.UNKNOWN


def customer_gateway_output_key(index: int) -> str:
    """Output name exposing the customer gateway of connection ``index``."""
    return f"{CUSTOMER_GATEWAY_OUTPUT_PREFIX}{index}"


def generate_stack_name(
    namespace: str,
    name: str,
    prefix: str = DEFAULT_STACK_NAME_PREFIX,
) -> str:
    """Generate the deterministic stack name for a VPN object.

    Format: {prefix}-{namespace}-{name}-{hash}

    The name must be:
    - Deterministic (same inputs = same name)
    - Unique per VPN object ("a-b"/"c" and "a"/"b-c" must not collide,
      hence the hash of the unambiguous "namespace/name" key)
    - Valid CloudFormation name ([a-zA-Z][-a-zA-Z0-9]*)
    - At most 128 characters

    Args:
        namespace: Namespace of the VPN object.
        name: Name of the VPN object.
        prefix: Operator-wide stack prefix.

    Returns:
        Stack name string.
    """
    unique_key = f"{namespace}/{name}"
    hash_digest = hashlib.sha256(unique_key.encode()).hexdigest()[:8]

    readable = f"{prefix}-{namespace}-{name}"
    readable = "".join(c if c.isalnum() or c == "-" else "-" for c in readable)
    readable = readable[: MAX_STACK_NAME_LENGTH - len(hash_digest) - 1]

    return f"{readable}-{hash_digest}"


@dataclass(frozen=True)
class ObservedStack:
    """A stack as reported by DescribeStacks during one reconcile pass."""

    name: str
    status: str
    outputs: dict[str, str] = field(default_factory=dict)
    status_reason: str | None = None
    stack_id: str | None = None

    @property
    def phase(self) -> StackPhase:
        """Classified phase of the raw status."""
        return classify_stack_status(self.status)

    @property
    def customer_gateway_ids(self) -> list[str]:
        """Customer gateway IDs exposed by the stack outputs, in output-key order."""
        return [
            value
            for key, value in sorted(self.outputs.items())
            if key.startswith(CUSTOMER_GATEWAY_OUTPUT_PREFIX)
        ]
