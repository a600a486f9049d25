"""Build transaction manager.

Manages a whole build's filesystem output as a single transaction: every
write, copy, delete, mkdir and staged-directory publish either stays or is
undone together.

Typical use::

    with BuildTransaction() as txn:
        txn.write_file(out / "index.html", html)
        site = txn.create_staged_directory(out / "assets")
        site.write_file("app.css", css)
        txn.commit()

or, equivalently, ``with_atomic_transaction(build)``.
"""

import uuid
from collections.abc import Callable
from pathlib import Path
from types import TracebackType
from typing import Any, TypeVar

import structlog

from buildsafe.config import WriterConfig
from buildsafe.core.errors import RollbackError, TransactionStateError
from buildsafe.core.models import OperationsSummary, WriteOperation
from buildsafe.fs.journal import OperationJournal
from buildsafe.fs.staging import StagedDirectory
from buildsafe.fs.writer import AtomicFileWriter

T = TypeVar("T")


class BuildTransaction:
    """One commit/rollback boundary over many filesystem operations.

    Writes are applied immediately (each one atomic on its own) and recorded
    for undo. Staged directories are published during commit(). Leaving a
    ``with`` block without a successful commit() rolls everything back.
    """

    def __init__(
        self,
        config: WriterConfig | None = None,
        *,
        journal_dir: str | Path | None = None,
        logger: Any = None,
    ) -> None:
        """Initialize transaction.

        Args:
            config: Writer settings (defaults to WriterConfig.from_env())
            journal_dir: Journal directory; overrides config.journal_dir
            logger: Optional structlog logger instance
        """
        self.config = config or WriterConfig.from_env()
        self.transaction_id = uuid.uuid4().hex
        self._logger = (logger or structlog.get_logger(__name__)).bind(
            transaction_id=self.transaction_id
        )

        journal_location = journal_dir or self.config.journal_dir
        self._journal = (
            OperationJournal(self.transaction_id, journal_location)
            if journal_location
            else None
        )
        self._writer = AtomicFileWriter(
            self.config, journal=self._journal, logger=self._logger
        )
        self._staged: list[StagedDirectory] = []
        self._completed = False
        self._rolled_back = False

    @property
    def journal_path(self) -> Path | None:
        return self._journal.path if self._journal else None

    @property
    def operations(self) -> list[WriteOperation]:
        """Flat, time-ordered list of recorded operations."""
        return self._writer.operations

    @property
    def staged_directories(self) -> list[StagedDirectory]:
        return list(self._staged)

    def is_completed(self) -> bool:
        return self._completed

    def _ensure_open(self) -> None:
        if self._completed:
            raise TransactionStateError("Transaction already committed")
        if self._rolled_back:
            raise TransactionStateError("Transaction already rolled back")

    def write_file(self, path: str | Path, content: str | bytes) -> WriteOperation:
        self._ensure_open()
        return self._writer.write_file_atomic(path, content)

    def copy_file(
        self, source_path: str | Path, target_path: str | Path
    ) -> WriteOperation:
        self._ensure_open()
        return self._writer.copy_file_atomic(source_path, target_path)

    def create_directory(self, path: str | Path) -> WriteOperation:
        self._ensure_open()
        return self._writer.mkdir_atomic(path)

    def delete_file(self, path: str | Path) -> WriteOperation:
        self._ensure_open()
        return self._writer.delete_file_atomic(path)

    def create_staged_directory(self, target_path: str | Path) -> StagedDirectory:
        """Create a staged directory published by this transaction's commit()."""
        self._ensure_open()
        staged = self._writer.create_staged_directory(target_path)
        self._staged.append(staged)
        return staged

    def commit(self) -> None:
        """Publish staged directories in registration order and make it final.

        Staged directories keep the trees they displace until every one of
        them has been published. If a later publish fails, rollback() renames
        those trees back, so directories published earlier in this call are
        undone too. This is a two-phase commit across directories: a reader
        may briefly see some targets already replaced while a later one
        fails, but the end state is all-or-nothing.

        Raises:
            TransactionStateError: If the transaction already finished
            AtomicWriteError: If a publish failed (after rolling back)
            RollbackError: If the rollback after a failed publish was
                incomplete; chained to the original error
        """
        self._ensure_open()

        try:
            for staged in self._staged:
                if staged.state == "pending":
                    staged.commit(keep_backup=True)
        except BaseException as exc:
            self._logger.error("transaction.commit_failed", error=str(exc))
            try:
                self.rollback()
            except RollbackError as rollback_exc:
                raise rollback_exc from exc
            raise

        try:
            self._writer.finalize()
        finally:
            # committed once the journal's end record is written, even if
            # purging backups afterwards was interrupted
            self._completed = self._writer.finalized

        summary = self.get_operations_summary()
        self._logger.info(
            "transaction.commit",
            total=summary.total,
            completed=summary.completed,
            types=summary.types,
        )

    def rollback(self) -> None:
        """Undo everything this transaction did, newest first.

        Staged directories are discarded in reverse registration order, then
        recorded operations are undone in reverse chronological order.
        Refused with a warning once the transaction has committed.

        Raises:
            RollbackError: If some operations could not be undone
        """
        if self._completed:
            self._logger.warning("transaction.rollback_refused", reason="committed")
            return
        if self._rolled_back:
            return

        self._rolled_back = True
        for staged in reversed(self._staged):
            # published ones are undone through their recorded operation
            if staged.state == "pending":
                staged.rollback()

        self._writer.rollback()
        self._logger.info("transaction.rollback")

    def get_operations_summary(self) -> OperationsSummary:
        return self._writer.get_operations_summary()

    def __enter__(self) -> "BuildTransaction":
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Context manager exit: roll back unless commit() succeeded."""
        if self._completed or self._rolled_back:
            return
        if exc_type is None:
            self._logger.warning("transaction.abandoned", reason="no commit")
        self.rollback()


def with_atomic_transaction(
    fn: Callable[[BuildTransaction], T],
    *,
    config: WriterConfig | None = None,
    journal_dir: str | Path | None = None,
) -> T:
    """Run fn inside a transaction, committing on success.

    Any exception from fn or from commit(), KeyboardInterrupt and SystemExit
    included, rolls the transaction back and is re-raised.

    Args:
        fn: Callable performing the build through the given transaction
        config: Writer settings
        journal_dir: Optional journal directory

    Returns:
        Whatever fn returned
    """
    with BuildTransaction(config, journal_dir=journal_dir) as transaction:
        result = fn(transaction)
        transaction.commit()

    return result
