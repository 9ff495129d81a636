"""Finalizer bookkeeping on VPN records.

These functions never persist anything; they return a copy of the record
with the finalizer list adjusted.
"""

from __future__ import annotations

from .models import VPNRecord


def has_finalizer(record: VPNRecord, name: str) -> bool:
    return name in record.finalizers


def add_finalizer(record: VPNRecord, name: str) -> VPNRecord:
    """Append ``name`` unless it is already present."""
    if has_finalizer(record, name):
        return record.model_copy(deep=True)
    return record.model_copy(update={"finalizers": [*record.finalizers, name]}, deep=True)


def remove_finalizer(record: VPNRecord, name: str) -> VPNRecord:
    """Remove the first occurrence of ``name``."""
    finalizers = list(record.finalizers)
    if name in finalizers:
        finalizers.remove(name)
    return record.model_copy(update={"finalizers": finalizers}, deep=True)
