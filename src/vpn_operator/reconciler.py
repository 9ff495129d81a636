"""Reconciliation state machine for VPN objects.

One reconcile pass:
1. Load the VPN record (gone means nothing to do)
2. Describe its CloudFormation stack (looked up by deterministic name)
3. plan() picks exactly one action from (record, stack)
4. Execute that action's side effects
5. Tell the dispatcher whether and when to come back

ARCHITECTURE:
plan() is a pure function; everything with a side effect lives in
VPNReconciler and its injected collaborators. Nothing is cached between
passes: every pass re-reads the record and the stack, so a pass that was
interrupted at any point converges on the next one.

Errors are not retried here. They propagate to the dispatcher, which owns
backoff.

DELETION PROTOCOL:
The finalizer is added before any external resource can exist and removed
only once the stack is gone. Secrets are deleted before stack deletion is
requested.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .config import Config
from .errors import PermanentError, UnknownStackStatusError, VPNOperatorError
from .finalizers import add_finalizer, has_finalizer, remove_finalizer
from .fleet import NodeLister, infer_vpc_id
from .models import RecordKey, VPNRecord, VPNSpec, VPNStatusValue
from .provisioning import ProvisioningClient
from .records import RecordStore
from .secret_sync import MANAGED_BY_LABEL, MANAGED_BY_VALUE, SecretSynchronizer
from .stacks import ObservedStack, StackPhase, generate_stack_name
from .template import render_template

logger = logging.getLogger(__name__)

STACK_NAMESPACE_TAG = "networking.amazonaws.com/vpn-namespace"
STACK_NAME_TAG = "networking.amazonaws.com/vpn-name"


class Action(str, Enum):
    """The single step a reconcile pass performs."""

    NONE = "none"
    ADD_FINALIZER = "addFinalizer"
    REMOVE_FINALIZER = "removeFinalizer"
    DELETE_RESOURCES = "deleteResources"
    WAIT_FOR_DELETION = "waitForDeletion"
    CREATE_STACK = "createStack"
    WAIT_FOR_STACK = "waitForStack"
    SYNC_SECRETS = "syncSecrets"
    MARK_FAILED = "markFailed"
    INVALID_SPEC = "invalidSpec"
    UNKNOWN_STATUS = "unknownStatus"


def plan(record: VPNRecord, stack: ObservedStack | None, finalizer: str) -> Action:
    """Choose the next action for a record given its observed stack.

    Args:
        record: Freshly loaded VPN record.
        stack: Observed stack, or None if no stack exists.
        finalizer: Finalizer name owned by this operator.

    Returns:
        The action to execute.
    """
    finalized = has_finalizer(record, finalizer)
    phase = stack.phase if stack is not None else None

    if record.deletion_requested:
        if not finalized:
            return Action.NONE
        if phase is None or phase == StackPhase.DELETE_COMPLETE:
            return Action.REMOVE_FINALIZER
        if phase == StackPhase.DELETING:
            return Action.WAIT_FOR_DELETION
        return Action.DELETE_RESOURCES

    if record.spec is None:
        return Action.INVALID_SPEC

    if not finalized:
        return Action.ADD_FINALIZER

    if phase is None or phase == StackPhase.DELETE_COMPLETE:
        return Action.CREATE_STACK
    if phase == StackPhase.FAILED:
        return Action.MARK_FAILED
    if phase == StackPhase.COMPLETE:
        return Action.SYNC_SECRETS
    if phase in (StackPhase.PENDING, StackPhase.DELETING):
        return Action.WAIT_FOR_STACK
    return Action.UNKNOWN_STATUS


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one pass and the requeue directive for the dispatcher.

    requeue with requeue_after None means "as soon as possible";
    requeue_after is a lower bound, never an exact schedule.
    """

    action: Action
    requeue: bool = False
    requeue_after: float | None = None

    @classmethod
    def done(cls, action: Action) -> ReconcileResult:
        return cls(action=action)

    @classmethod
    def immediately(cls, action: Action) -> ReconcileResult:
        return cls(action=action, requeue=True)

    @classmethod
    def after(cls, action: Action, seconds: float) -> ReconcileResult:
        return cls(action=action, requeue=True, requeue_after=seconds)


class VPNReconciler:
    """Drives VPN records toward their declared state.

    The reconciler holds no per-record state. Different records may be
    reconciled concurrently from several threads; the dispatcher guarantees
    a single record is never reconciled twice at once.
    """

    def __init__(
        self,
        store: RecordStore,
        provisioning: ProvisioningClient,
        secrets: SecretSynchronizer,
        node_lister: NodeLister,
        config: Config,
    ) -> None:
        self._store = store
        self._provisioning = provisioning
        self._secrets = secrets
        self._nodes = node_lister
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    def stack_name_for(self, record: VPNRecord) -> str:
        return generate_stack_name(
            record.namespace, record.name, self._config.stack_name_prefix
        )

    def reconcile(self, key: RecordKey) -> ReconcileResult:
        """Run one reconcile pass for ``key``.

        Returns:
            The action taken and the requeue directive.

        Raises:
            VPNOperatorError: Any failure; the dispatcher decides on backoff.
        """
        start = time.monotonic()

        record = self._store.get(key)
        if record is None:
            logger.debug("VPN no longer exists", extra={"vpn": key.name, "namespace": key.namespace})
            return ReconcileResult.done(Action.NONE)

        stack_name = self.stack_name_for(record)
        stack = self._provisioning.describe_stack(stack_name)
        action = plan(record, stack, self._config.finalizer_name)

        extra: dict[str, Any] = {
            "vpn": record.name,
            "namespace": record.namespace,
            "stack_name": stack_name,
            "stack_status": stack.status if stack else None,
            "action": action.value,
        }
        logger.debug("Planned reconcile action", extra=extra)

        result = self._execute(action, record, stack, stack_name)

        extra["requeue"] = result.requeue
        extra["requeue_after"] = result.requeue_after
        extra["duration_seconds"] = round(time.monotonic() - start, 3)
        if action in (Action.NONE, Action.WAIT_FOR_STACK, Action.WAIT_FOR_DELETION):
            logger.debug("Reconcile pass complete", extra=extra)
        else:
            logger.info("Reconcile pass complete", extra=extra)
        return result

    def _execute(
        self,
        action: Action,
        record: VPNRecord,
        stack: ObservedStack | None,
        stack_name: str,
    ) -> ReconcileResult:
        delay = self._config.requeue_delay_seconds

        if action == Action.NONE:
            return ReconcileResult.done(action)

        if action == Action.ADD_FINALIZER:
            self._store.update(add_finalizer(record, self._config.finalizer_name))
            return ReconcileResult.immediately(action)

        if action == Action.REMOVE_FINALIZER:
            self._store.update(remove_finalizer(record, self._config.finalizer_name))
            return ReconcileResult.done(action)

        if action == Action.WAIT_FOR_DELETION:
            return ReconcileResult.after(action, delay)

        if action == Action.DELETE_RESOURCES:
            self._delete_resources(record, stack_name)
            return ReconcileResult.immediately(action)

        if action == Action.INVALID_SPEC:
            logger.error(
                "VPN spec is invalid",
                extra={
                    "vpn": record.name,
                    "namespace": record.namespace,
                    "error": record.spec_error,
                },
            )
            self._set_status(record, VPNStatusValue.FAILED)
            return ReconcileResult.done(action)

        spec = record.spec
        if spec is None:
            raise PermanentError(f"VPN {record.key} has no valid spec for {action.value}")

        if action == Action.CREATE_STACK:
            self._create_stack(record, spec, stack_name)
            return ReconcileResult.immediately(action)

        if action == Action.WAIT_FOR_STACK:
            return ReconcileResult.after(action, delay)

        # The remaining actions are only planned for an observed stack
        if stack is None:
            raise PermanentError(f"Stack {stack_name} is required for {action.value}")

        if action == Action.SYNC_SECRETS:
            self._sync_secrets(record, spec, stack)
            return ReconcileResult.done(action)

        if action == Action.MARK_FAILED:
            logger.warning(
                "Stack failed",
                extra={
                    "vpn": record.name,
                    "namespace": record.namespace,
                    "stack_name": stack_name,
                    "stack_status": stack.status,
                    "reason": stack.status_reason,
                },
            )
            self._set_status(record, VPNStatusValue.FAILED)
            return ReconcileResult.done(action)

        # Action.UNKNOWN_STATUS
        self._set_status(record, VPNStatusValue.FAILED)
        raise UnknownStackStatusError(
            f"Stack {stack_name} reports unknown status {stack.status!r}"
        )

    # =========================================================================
    # Actions
    # =========================================================================

    def _create_stack(self, record: VPNRecord, spec: VPNSpec, stack_name: str) -> None:
        try:
            vpc_id = spec.vpc_id or infer_vpc_id(self._nodes, self._provisioning)
            route_tables = self._provisioning.list_route_tables(vpc_id)
            body = render_template(
                vpc_id,
                spec.vpn_connections,
                route_tables.public,
                route_tables.private,
            )
            self._provisioning.create_stack(stack_name, body, self._stack_tags(record))
        except VPNOperatorError as e:
            logger.error(
                "Stack creation failed",
                extra={
                    "vpn": record.name,
                    "namespace": record.namespace,
                    "stack_name": stack_name,
                    "error": str(e),
                },
            )
            self._set_status_best_effort(record, VPNStatusValue.FAILED)
            raise

        self._set_status(record, VPNStatusValue.CREATING)

    def _sync_secrets(self, record: VPNRecord, spec: VPNSpec, stack: ObservedStack) -> None:
        for connection in spec.vpn_connections:
            configuration = self._provisioning.resolve_customer_gateway_config(
                connection.customer_gateway_ip, stack.outputs
            )
            self._secrets.sync(
                connection.config_secret_name,
                record.namespace,
                configuration.encode(),
                owner=record.name,
            )
        self._set_status(record, VPNStatusValue.COMPLETE)

    def _delete_resources(self, record: VPNRecord, stack_name: str) -> None:
        for secret_name in record.config_secret_names:
            self._secrets.delete(secret_name, record.namespace)
        self._provisioning.delete_stack(stack_name)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _set_status(self, record: VPNRecord, status: VPNStatusValue) -> None:
        if record.status == status:
            return
        self._store.update_status(record.model_copy(update={"status": status}))

    def _set_status_best_effort(self, record: VPNRecord, status: VPNStatusValue) -> None:
        # The caller re-raises the step failure
        try:
            self._set_status(record, status)
        except VPNOperatorError as e:
            logger.warning(
                "Could not record status",
                extra={
                    "vpn": record.name,
                    "namespace": record.namespace,
                    "status": status.value,
                    "error": str(e),
                },
            )

    @staticmethod
    def _stack_tags(record: VPNRecord) -> dict[str, str]:
        return {
            MANAGED_BY_LABEL: MANAGED_BY_VALUE,
            STACK_NAMESPACE_TAG: record.namespace,
            STACK_NAME_TAG: record.name,
        }
