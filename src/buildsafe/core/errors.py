"""Custom exceptions for buildsafe.

Every failure of a mutating filesystem step surfaces as one of these typed
exceptions, always carrying the affected path and the underlying OS error.
"""

from pathlib import Path
from typing import Any


class BuildSafeError(Exception):
    """Base exception for all buildsafe errors.

    All custom exceptions inherit from this base class to allow for broad
    exception handling by build pipelines.
    """

    pass


class AtomicWriteError(BuildSafeError):
    """Raised when a single-file write or a staged-directory commit fails.

    By the time this propagates, local cleanup for the failing operation has
    already run: dangling temp files are removed and any backup taken for
    that operation has been put back.

    Attributes:
        path: The target path of the failing operation
        cause: The underlying exception (usually an OSError)
    """

    def __init__(
        self,
        path: str | Path,
        cause: BaseException | None = None,
        message: str | None = None,
    ) -> None:
        """Initialize AtomicWriteError.

        Args:
            path: Path the failing operation targeted
            cause: Underlying exception (optional)
            message: Override for the leading part of the message (optional)
        """
        self.path = Path(path)
        self.cause = cause

        if message is None:
            message = f"Failed to write {self.path} atomically"
        if cause is not None:
            message += f": {cause}"

        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON output.

        Returns:
            Dictionary representation suitable for JSON responses
        """
        result: dict[str, Any] = {
            "error": "atomic_write_failed",
            "path": str(self.path),
            "message": str(self),
        }

        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"

        return result

    def __repr__(self) -> str:
        """Return repr string for debugging."""
        return f"AtomicWriteError(path={str(self.path)!r}, cause={self.cause!r})"


class RollbackError(BuildSafeError):
    """Raised when a rollback finishes but some operations could not be undone.

    Rollback never stops at the first failure: every operation is attempted
    and every failure is collected here.

    Attributes:
        errors: One AtomicWriteError per operation that could not be undone
    """

    def __init__(self, errors: list[AtomicWriteError]) -> None:
        self.errors = list(errors)
        details = "; ".join(str(error) for error in self.errors)
        super().__init__(
            f"Rollback completed with {len(self.errors)} error(s): {details}"
        )

    @property
    def paths(self) -> list[Path]:
        """Paths whose rollback failed, in the order they were attempted."""
        return [error.path for error in self.errors]

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON output."""
        return {
            "error": "rollback_failed",
            "errors": [error.to_dict() for error in self.errors],
        }


class TransactionStateError(BuildSafeError):
    """Raised when a finished transaction or staged directory is reused."""

    pass


class JournalError(BuildSafeError):
    """Raised when a transaction journal cannot be created, read or parsed.

    Attributes:
        path: Journal file or directory involved
        reason: Human-readable description of the problem
    """

    def __init__(self, path: str | Path, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Journal {self.path}: {reason}")

    def __repr__(self) -> str:
        """Return repr string for debugging."""
        return f"JournalError(path={str(self.path)!r}, reason={self.reason!r})"
