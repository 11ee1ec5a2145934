"""Sync modules - optimistic local state kept in step with the backend."""

from rebanho.sync.reconcile import HerdState, Reconciliation
from rebanho.sync.store import FormValidationError, HerdStore, NotAuthenticatedError

__all__ = [
    "HerdState",
    "HerdStore",
    "Reconciliation",
    "FormValidationError",
    "NotAuthenticatedError",
]
