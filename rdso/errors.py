"""Failure taxonomy for reconciliation passes.

Fatal errors end the pass with a Degraded status and are not retried until
the specification changes. Transient errors end the pass early and ask the
dispatcher for another full pass. Cleanup errors are collected and reported
without blocking the resources that are still desired.
"""
from __future__ import annotations


class ReconcileError(Exception):
    pass


class ConfigurationError(ReconcileError):
    """The specification cannot be compiled (e.g. duplicate pool names)."""


class InvalidResourceError(ReconcileError):
    """The resource store rejected a document as invalid."""


class TransientStoreError(ReconcileError):
    """The store could not complete a call; a later pass may succeed."""


class ConflictError(TransientStoreError):
    """The live object changed between read and write."""


class NotFoundError(TransientStoreError):
    """An object expected to exist was not found."""


class CleanupError(ReconcileError):
    def __init__(self, failures: list[str]):
        self.failures = list(failures)
        super().__init__("; ".join(self.failures) or "cleanup failed")
