from __future__ import annotations

from typing import Iterable


class ReconcilerError(Exception):
    """Base class for everything the reconciler raises on purpose."""


class NotFoundError(ReconcilerError):
    pass


class ConflictError(ReconcilerError):
    """The object changed in the store since it was read (stale resource version)."""


class ConfigurationError(ReconcilerError):
    """The channel cannot be turned into a dispatcher (e.g. no kafka secret bound)."""


class TransientStoreError(ReconcilerError):
    """Any other get/list/create/update failure; the next trigger retries it."""


class Cancelled(Exception):
    """The caller withdrew the work item; raised before the next store call."""


class AggregateError(ReconcilerError):
    """Several independent operations were attempted and at least one failed."""

    def __init__(self, message: str, errors: Iterable[Exception]):
        self.errors: list[Exception] = list(errors)
        detail = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"{message} ({detail})" if detail else message)
        self.message = message
