"""Aggregation pipeline exception hierarchy.

All pipeline-specific exceptions inherit from OrchestrationError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from merkle_aggregation.models import WorkerHandle


class OrchestrationError(Exception):
    """Base exception for all aggregation pipeline errors.

    Attributes:
        cleanup_error: CleanupError raised while tearing down workers after
            this error, or None if teardown succeeded (or never ran).
    """

    cleanup_error: CleanupError | None = None


class EntryValidationError(OrchestrationError):
    """Raised when the entry set or run request is invalid."""


class ProvisioningError(OrchestrationError):
    """Raised when a spawner cannot create the requested number of workers."""

    def __init__(self, requested: int, reason: str) -> None:
        self.requested = requested
        self.reason = reason
        super().__init__(f"Could not provision {requested} worker(s): {reason}")


class ExecutorError(OrchestrationError):
    """Base for failures of a single executor (one chunk, one worker)."""

    def __init__(
        self,
        message: str,
        *,
        chunk_index: int | None = None,
        address: str | None = None,
    ) -> None:
        self.chunk_index = chunk_index
        self.address = address
        self.reason = message
        prefix = ""
        if chunk_index is not None:
            prefix = f"Chunk {chunk_index}"
            if address:
                prefix += f" ({address})"
            prefix += ": "
        super().__init__(f"{prefix}{message}")


class WorkerUnreachableError(ExecutorError):
    """Connection failure or request timeout while contacting a worker."""


class WorkerRejectedError(ExecutorError):
    """Worker was reachable but answered with a non-success response.

    Attributes:
        status_code: HTTP status of the response, None when the status was
            successful but the body was unusable.
        body: Response text (truncated).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
        chunk_index: int | None = None,
        address: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message, chunk_index=chunk_index, address=address)


class MalformedResponseError(WorkerRejectedError):
    """Worker answered 2xx but the body does not match the wire schema."""


class RunCancelledError(ExecutorError):
    """Run aborted by a sibling failure or an external cancellation request."""

    def __init__(
        self,
        message: str = "Run cancelled",
        *,
        chunk_index: int | None = None,
        address: str | None = None,
    ) -> None:
        super().__init__(message, chunk_index=chunk_index, address=address)


class AggregationError(OrchestrationError):
    """Consistency violation while merging chunk roots.

    Indicates a worker/aggregator contract violation (mismatched balance
    column counts, empty input, out-of-range totals).
    """


class CleanupError(OrchestrationError):
    """One or more worker teardown calls failed.

    Reported alongside the primary run outcome, never instead of it.

    Attributes:
        failures: (handle, reason) pairs for every handle that failed to
            tear down.
    """

    def __init__(self, failures: list[tuple[WorkerHandle, str]]) -> None:
        self.failures = list(failures)
        details = "; ".join(
            f"{handle.address}: {reason}" for handle, reason in self.failures[:5]
        )
        if len(self.failures) > 5:
            details += f"; ... ({len(self.failures) - 5} more)"
        super().__init__(
            f"Failed to release {len(self.failures)} worker(s): {details}"
        )
