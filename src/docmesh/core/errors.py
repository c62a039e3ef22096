"""Error taxonomy shared by the engine, the stores and the collections.

Conflicts and missing paths are classified by the collection layer;
the engine only ever raises exhaustion or cancellation on its own and
otherwise re-raises the original cause unchanged.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from docmesh.storage.base import SubdocStatus


class DocMeshError(Exception):
    """Base class for every error raised by docmesh itself."""


class InvalidArgumentError(DocMeshError, ValueError):
    """Raised for caller errors (e.g. offering ``None`` to a queue)."""


class RetryExhaustedError(DocMeshError):
    """Raised when a retry session consumed its budget without success."""

    def __init__(
        self,
        attempts: int,
        last_cause: BaseException | None,
        message: str | None = None,
    ) -> None:
        self.attempts = attempts
        self.last_cause = last_cause
        if message is None:
            message = f"Retries exhausted after {attempts} attempt(s)"
            if last_cause is not None:
                message += f": {last_cause!r}"
        super().__init__(message)


class ConcurrencyExhaustedError(RetryExhaustedError):
    """CAS retry budget consumed while racing other writers."""

    def __init__(self, attempts: int, last_cause: BaseException | None) -> None:
        super().__init__(
            attempts,
            last_cause,
            f"Couldn't complete the operation in less than {attempts} iterations. "
            "It is likely concurrent modifications of this document are the reason",
        )


class OperationCancelledError(DocMeshError):
    """Raised when a deadline or an external cancel aborts a retry session."""

    def __init__(self, attempts: int, reason: str = "cancelled") -> None:
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"Operation {reason} after {attempts} attempt(s)")


class EmptyQueueError(DocMeshError):
    """Raised by the throwing queue accessors when the queue is empty."""


# ── Store errors ─────────────────────────────────────────────────────


class StoreError(DocMeshError):
    """Anything reported by the document store."""


class DocumentNotFoundError(StoreError):
    """The document does not exist."""


class DocumentExistsError(StoreError):
    """The document already exists (insert of an existing id)."""


class CasMismatchError(StoreError):
    """A write was guarded by a stale CAS token."""


class PathNotFoundError(StoreError):
    """A sub-document path does not exist in the document."""


class PathMismatchError(StoreError):
    """A sub-document path resolves to a value of the wrong shape."""


class PathExistsError(StoreError):
    """A sub-document path that must be absent already exists."""


class MultiMutationError(StoreError):
    """A multi-spec mutation failed; nothing was applied.

    Only the *first* failing spec is reported, which is all a caller
    can rely on for classification.
    """

    def __init__(self, first_failure_status: SubdocStatus, first_failure_index: int) -> None:
        self.first_failure_status = first_failure_status
        self.first_failure_index = first_failure_index
        super().__init__(
            f"Sub-document mutation failed at spec {first_failure_index}: "
            f"{first_failure_status.value}"
        )
