"""Crash-consistent single-file writes with reversible history.

AtomicFileWriter makes each write indivisible for concurrent readers (temp
file in the same directory, fsync, rename) and reversible for the writer
itself (a backup of any replaced file is kept until rollback or finalize).
"""

import itertools
import os
import shutil
from pathlib import Path
from typing import Any, Literal

import structlog

from buildsafe.config import WriterConfig
from buildsafe.core.errors import (
    AtomicWriteError,
    RollbackError,
    TransactionStateError,
)
from buildsafe.core.models import OperationsSummary, WriteOperation
from buildsafe.fs.journal import OperationJournal
from buildsafe.fs.paths import (
    find_created_root,
    get_backup_path,
    get_staging_path,
    get_temp_path,
    normalize_path,
    path_exists,
    remove_path,
    sync_directory,
)
from buildsafe.fs.staging import StagedDirectory
from buildsafe.fs.undo import undo_operation
from buildsafe.utils.debug import debug

_OPEN_FLAGS = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0)


class AtomicFileWriter:
    """Performs atomic writes and keeps what is needed to undo them.

    Operations are recorded in the order they complete. rollback() undoes
    them in reverse; finalize() makes them permanent by deleting backups.
    A writer is not safe for concurrent use, and two writers targeting the
    same path are not coordinated: the last rename wins.
    """

    def __init__(
        self,
        config: WriterConfig | None = None,
        *,
        journal: OperationJournal | None = None,
        logger: Any = None,
    ) -> None:
        """Initialize writer.

        Args:
            config: Writer settings (defaults to WriterConfig.from_env())
            journal: Optional journal receiving intent/outcome records
            logger: Optional structlog logger instance
        """
        self.config = config or WriterConfig.from_env()
        self._journal = journal
        self._logger = logger or structlog.get_logger(__name__)
        self._operations: list[WriteOperation] = []
        self._sequence = itertools.count(1)
        self._finalized = False

    @property
    def operations(self) -> list[WriteOperation]:
        """Completed operations in chronological order (a copy)."""
        return list(self._operations)

    @property
    def strict_dir_sync(self) -> bool:
        return self.config.strict_dir_sync

    @property
    def finalized(self) -> bool:
        """True once finalize() has passed the commit point."""
        return self._finalized

    # ------------------------------------------------------------------
    # Operation bookkeeping (also used by StagedDirectory)
    # ------------------------------------------------------------------

    def announce(self, op: WriteOperation) -> None:
        """Assign the next sequence number and journal the intent."""
        self._ensure_active()
        op.sequence = next(self._sequence)
        if self._journal is not None:
            self._journal.record_intent(op)

    def record(self, op: WriteOperation) -> None:
        """Store a completed operation so it can be undone later."""
        op.completed = True
        op.content = None
        self._operations.append(op)
        if self._journal is not None:
            self._journal.record_done(op, "completed")

    def abandon(self, op: WriteOperation) -> None:
        """Mark an announced operation as failed (already cleaned up locally)."""
        if self._journal is not None:
            self._journal.record_done(op, "failed")

    def _ensure_active(self) -> None:
        if self._finalized:
            raise TransactionStateError("Writer has been finalized")

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def write_file_atomic(
        self, path: str | Path, content: str | bytes
    ) -> WriteOperation:
        """Atomically write a file using same-directory temp file + rename.

        Args:
            path: Destination file; its parent directory must exist
            content: Text (encoded with the configured encoding) or bytes

        Returns:
            The recorded WriteOperation

        Raises:
            AtomicWriteError: If any step fails; path is left as it was
            TypeError: If content is neither str nor bytes-like
        """
        target = normalize_path(path)
        return self._write(target, self._encode(content), kind="write")

    def copy_file_atomic(
        self, source_path: str | Path, target_path: str | Path
    ) -> WriteOperation:
        """Copy a file with the same guarantees as write_file_atomic.

        Recorded as a single copy operation.

        Raises:
            AtomicWriteError: If the source cannot be read or the write fails
        """
        source = normalize_path(source_path)
        target = normalize_path(target_path)
        try:
            data = source.read_bytes()
        except OSError as e:
            raise AtomicWriteError(
                target, e, message=f"Failed to read copy source {source}"
            ) from e
        return self._write(target, data, kind="copy", source=source)

    def mkdir_atomic(self, path: str | Path) -> WriteOperation:
        """Create a directory (with parents) and sync its parent.

        Rollback removes the top-most directory this call created, or leaves
        the tree alone if the directory already existed.

        Raises:
            AtomicWriteError: If the directory cannot be created
        """
        target = normalize_path(path)
        created_root = find_created_root(target)
        op = WriteOperation(
            kind="mkdir",
            target=target,
            preexisting=created_root is None,
            created_root=created_root,
        )
        self.announce(op)

        try:
            target.mkdir(parents=True, exist_ok=True)
            sync_directory(target.parent, strict=self.strict_dir_sync)
        except (OSError, AtomicWriteError) as e:
            if created_root is not None and path_exists(created_root):
                self._cleanup(created_root)
            self.abandon(op)
            if isinstance(e, AtomicWriteError):
                raise
            raise AtomicWriteError(
                target, e, message=f"Failed to create directory {target}"
            ) from e

        self.record(op)
        self._logger.info(
            "atomic.mkdir", path=str(target), preexisting=op.preexisting
        )
        return op

    def delete_file_atomic(self, path: str | Path) -> WriteOperation:
        """Remove a file by renaming it to its backup path.

        The rename is atomic; the backup is purged by finalize() or renamed
        back by rollback().

        Raises:
            AtomicWriteError: If the file does not exist or cannot be moved
        """
        target = normalize_path(path)
        if not path_exists(target):
            raise AtomicWriteError(
                target,
                FileNotFoundError(f"No such file: {target}"),
                message=f"Failed to delete {target}",
            )
        if target.is_dir() and not target.is_symlink():
            raise AtomicWriteError(
                target,
                IsADirectoryError(f"Is a directory: {target}"),
                message=f"Failed to delete {target}",
            )

        backup_path = get_backup_path(target)
        op = WriteOperation(kind="delete", target=target, backup_path=backup_path)
        self.announce(op)

        moved = False
        try:
            os.rename(target, backup_path)
            moved = True
            sync_directory(target.parent, strict=self.strict_dir_sync)
        except (OSError, AtomicWriteError) as e:
            if moved:
                self._put_back(backup_path, target)
            self.abandon(op)
            if isinstance(e, AtomicWriteError):
                raise
            raise AtomicWriteError(
                target, e, message=f"Failed to delete {target}"
            ) from e

        self.record(op)
        self._logger.info("atomic.delete", path=str(target), backup=str(backup_path))
        return op

    def create_staged_directory(self, target_path: str | Path) -> StagedDirectory:
        """Create a sibling staging directory for target_path.

        The target is not touched until the returned handle is committed.

        Raises:
            AtomicWriteError: If the staging directory cannot be created
        """
        self._ensure_active()
        target = normalize_path(target_path)
        staging_path = get_staging_path(target)

        try:
            staging_path.mkdir(parents=True)
        except OSError as e:
            raise AtomicWriteError(
                target, e, message=f"Failed to create staging directory for {target}"
            ) from e

        if self._journal is not None:
            self._journal.record_stage(target, staging_path)

        debug("created staging directory", staging=staging_path, target=target)
        return StagedDirectory(
            target_path=target, staging_path=staging_path, writer=self
        )

    def rollback(self) -> None:
        """Undo every completed operation in reverse chronological order.

        Every operation is attempted even if an earlier one fails; failures
        are collected and raised together. The writer's history is cleared
        afterwards.

        Raises:
            TransactionStateError: If the writer was already finalized
            RollbackError: If one or more operations could not be undone
        """
        if self._finalized:
            raise TransactionStateError("Cannot roll back a finalized writer")

        self._logger.info("atomic.rollback.start", operations=len(self._operations))
        errors: list[AtomicWriteError] = []

        for op in reversed(self._operations):
            if not op.completed:
                continue
            try:
                outcome = undo_operation(op)
            except OSError as e:
                message = f"Failed to roll back {op.kind} operation on {op.target}"
                errors.append(AtomicWriteError(op.target, e, message=message))
                continue
            debug("rolled back", kind=op.kind, target=op.target, outcome=outcome)

        self._operations = []

        if self._journal is not None:
            self._journal.record_end(
                "rolled_back", errors=[str(error) for error in errors]
            )

        if errors:
            self._logger.error("atomic.rollback.failed", errors=len(errors))
            raise RollbackError(errors)

        self._logger.info("atomic.rollback.done")

    def finalize(self) -> None:
        """Make every recorded operation permanent by deleting its backup.

        The journal's committed record is written before any backup is
        deleted; recovery purges whatever backups a crash leaves after it.
        Backup deletion is best-effort: failures are logged as warnings and
        leave an orphaned backup for the sweeper.
        """
        self._ensure_active()

        if self._journal is not None:
            self._journal.record_end("committed")
        self._finalized = True

        for op in self._operations:
            if op.backup_path is None:
                continue
            if path_exists(op.backup_path):
                try:
                    remove_path(op.backup_path)
                except OSError as e:
                    self._logger.warning(
                        "atomic.backup_cleanup_failed",
                        backup=str(op.backup_path),
                        error=str(e),
                    )
                    continue
            op.backup_path = None

    def get_operations_summary(self) -> OperationsSummary:
        """Return counts of recorded operations, overall and by kind."""
        return OperationsSummary.from_operations(self._operations)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _encode(self, content: str | bytes) -> bytes:
        if isinstance(content, str):
            return content.encode(self.config.encoding)
        if isinstance(content, (bytes, bytearray, memoryview)):
            return bytes(content)
        raise TypeError(
            f"content must be str or bytes-like, not {type(content).__name__}"
        )

    def _write(
        self,
        target: Path,
        data: bytes,
        *,
        kind: Literal["write", "copy"],
        source: Path | None = None,
    ) -> WriteOperation:
        self._ensure_active()
        op = WriteOperation(kind=kind, target=target, source=source, content=data)

        backup_path = self._take_backup(target)
        op.backup_path = backup_path
        self.announce(op)

        temp_path = get_temp_path(target)
        temp_created = False
        renamed = False
        try:
            # O_EXCL: a file already holding this name is never overwritten
            fd = os.open(temp_path, _OPEN_FLAGS, 0o666)
            temp_created = True
            self._fill_temp(fd, data)
            # a dangling link has no mode to carry over
            if backup_path is not None and target.exists():
                shutil.copymode(target, temp_path)
            os.replace(temp_path, target)
            renamed = True
            debug("renamed temp file", temp=temp_path.name, target=target)
            sync_directory(target.parent, strict=self.strict_dir_sync)
        except (OSError, AtomicWriteError) as e:
            self._undo_failed_write(
                target,
                temp_path if temp_created else None,
                backup_path,
                renamed=renamed,
            )
            self.abandon(op)
            self._logger.error(
                "atomic.write_failed", path=str(target), kind=kind, error=str(e)
            )
            if isinstance(e, AtomicWriteError):
                raise
            raise AtomicWriteError(target, e) from e

        self.record(op)
        self._logger.info(
            "atomic.write",
            path=str(target),
            kind=kind,
            size=len(data),
            backup=str(backup_path) if backup_path else None,
        )
        return op

    def _take_backup(self, target: Path) -> Path | None:
        """Copy an existing target aside. Leaves nothing behind on failure.

        A symlink is backed up as a symlink (dangling or not), so rollback
        puts the link itself back rather than a copy of what it pointed to.
        """
        if not path_exists(target):
            return None

        backup_path = get_backup_path(target)
        try:
            if target.is_dir() and not target.is_symlink():
                raise IsADirectoryError(f"Is a directory: {target}")
            shutil.copy2(target, backup_path, follow_symlinks=False)
        except OSError as e:
            if path_exists(backup_path):
                self._cleanup(backup_path)
            raise AtomicWriteError(
                target, e, message=f"Failed to back up {target}"
            ) from e

        debug("backed up existing target", target=target, backup=backup_path)
        return backup_path

    @staticmethod
    def _fill_temp(fd: int, data: bytes) -> None:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())

    def _undo_failed_write(
        self,
        target: Path,
        temp_path: Path | None,
        backup_path: Path | None,
        *,
        renamed: bool,
    ) -> None:
        if temp_path is not None and path_exists(temp_path):
            self._cleanup(temp_path)

        if renamed:
            if backup_path is not None:
                self._put_back(backup_path, target)
            elif path_exists(target):
                self._cleanup(target)
        elif backup_path is not None and path_exists(backup_path):
            # target was never replaced; the copy is redundant
            self._cleanup(backup_path)

    def _put_back(self, backup_path: Path, target: Path) -> None:
        try:
            os.replace(backup_path, target)
        except OSError as e:
            self._logger.error(
                "atomic.restore_failed",
                path=str(target),
                backup=str(backup_path),
                error=str(e),
            )

    def _cleanup(self, path: Path) -> None:
        try:
            remove_path(path)
        except OSError as e:
            self._logger.warning("atomic.cleanup_failed", path=str(path), error=str(e))


__all__ = ["AtomicFileWriter"]
