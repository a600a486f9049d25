"""Directory-level atomic publish via a sibling staging directory.

A StagedDirectory is built in isolation next to its target and made visible
with one rename, so readers see either the old tree or the new tree.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import structlog

from buildsafe.core.errors import AtomicWriteError, TransactionStateError
from buildsafe.core.models import WriteOperation
from buildsafe.fs.paths import (
    ensure_parent_dir,
    get_backup_path,
    path_exists,
    remove_path,
    sync_directory,
)

if TYPE_CHECKING:  # pragma: no cover - typing only
    from buildsafe.fs.writer import AtomicFileWriter

StageState = Literal["pending", "committed", "rolled_back"]

logger = structlog.get_logger(__name__)


class StagedDirectory:
    """A directory tree staged at ``staging_path`` for publishing at ``target_path``.

    Created by AtomicFileWriter.create_staged_directory(). Populate it through
    write_file() or with ordinary I/O under staging_path, then call commit()
    or rollback(). Both are terminal.
    """

    def __init__(
        self,
        target_path: Path,
        staging_path: Path,
        writer: AtomicFileWriter,
    ) -> None:
        self.target_path = target_path
        self.staging_path = staging_path
        self.operations: list[WriteOperation] = []
        self.state: StageState = "pending"
        self._writer = writer

    def __repr__(self) -> str:
        return (
            f"StagedDirectory(target_path={str(self.target_path)!r}, "
            f"staging_path={str(self.staging_path)!r}, state={self.state!r})"
        )

    def path_for(self, relative: str | Path) -> Path:
        """Resolve a path inside the staging tree.

        Raises:
            ValueError: If relative is absolute or escapes the staging tree
        """
        relative = Path(relative)
        if relative.is_absolute():
            raise ValueError(f"Expected a relative path, got {relative}")

        root = self.staging_path
        candidate = Path(os.path.normpath(root / relative))
        if candidate != root and root not in candidate.parents:
            raise ValueError(f"{relative} escapes staging directory {root}")
        return candidate

    def write_file(self, relative: str | Path, content: str | bytes) -> Path:
        """Write a file into the staging tree, creating parent directories.

        Plain writes are enough here: nothing under staging_path is visible
        at the target until commit().

        Returns:
            Absolute path of the written file inside the staging tree
        """
        if self.state != "pending":
            raise TransactionStateError(
                f"Staged directory for {self.target_path} is {self.state}"
            )

        path = self.path_for(relative)
        ensure_parent_dir(path)
        if isinstance(content, str):
            path.write_text(content, encoding=self._writer.config.encoding)
        else:
            path.write_bytes(content)

        self.operations.append(
            WriteOperation(kind="write", target=path, completed=True)
        )
        return path

    def commit(self, *, keep_backup: bool = False) -> WriteOperation:
        """Publish the staged tree at target_path with a single rename.

        Any existing directory at the target is renamed aside first and put
        back if the publish fails. With ``keep_backup`` the displaced tree is
        retained and recorded on the returned operation, so an owning
        transaction can still restore it later; otherwise it is deleted
        (best-effort) once the publish succeeded.

        Returns:
            The recorded mkdir operation

        Raises:
            TransactionStateError: If already committed or rolled back
            AtomicWriteError: If the publish failed; the target is unchanged
                and the staging directory is removed
        """
        if self.state != "pending":
            raise TransactionStateError(
                f"Cannot commit staged directory for {self.target_path}: {self.state}"
            )

        target = self.target_path
        had_existing = path_exists(target)
        backup_path = get_backup_path(target) if had_existing else None
        op = WriteOperation(
            kind="mkdir",
            target=target,
            backup_path=backup_path,
            preexisting=had_existing,
        )
        self._writer.announce(op)

        moved_aside = False
        published = False
        try:
            if backup_path is not None:
                os.rename(target, backup_path)
                moved_aside = True
            os.rename(self.staging_path, target)
            published = True
            sync_directory(target.parent, strict=self._writer.strict_dir_sync)
        except BaseException as e:
            self._restore_after_failure(backup_path, moved_aside, published)
            self._writer.abandon(op)
            self.state = "rolled_back"
            logger.error("staged.commit_failed", target=str(target), error=str(e))
            if not isinstance(e, OSError):
                raise
            raise AtomicWriteError(
                target, e, message=f"Failed to commit staged directory {target}"
            ) from e

        self.state = "committed"

        if backup_path is not None and not keep_backup:
            try:
                remove_path(backup_path)
                op.backup_path = None
            except OSError as e:
                logger.warning(
                    "staged.backup_cleanup_failed",
                    backup=str(backup_path),
                    error=str(e),
                )

        self._writer.record(op)
        self.operations.append(op)
        logger.info(
            "staged.commit",
            target=str(target),
            replaced=had_existing,
            backup=str(op.backup_path) if op.backup_path else None,
        )
        return op

    def rollback(self) -> None:
        """Discard the staging tree. The target is never touched.

        Cleanup failures are logged as warnings only.
        """
        if self.state == "committed":
            logger.warning(
                "staged.rollback_after_commit", target=str(self.target_path)
            )
            return
        if self.state == "rolled_back":
            return

        self.state = "rolled_back"
        try:
            if path_exists(self.staging_path):
                shutil.rmtree(self.staging_path)
                logger.info("staged.rollback", staging=str(self.staging_path))
        except OSError as e:
            logger.warning(
                "staged.cleanup_failed",
                staging=str(self.staging_path),
                error=str(e),
            )

    def _restore_after_failure(
        self, backup_path: Path | None, moved_aside: bool, published: bool
    ) -> None:
        target = self.target_path
        try:
            if (published or moved_aside) and path_exists(target):
                remove_path(target)
            if moved_aside and backup_path is not None:
                os.rename(backup_path, target)
        except OSError as e:
            logger.error(
                "staged.restore_failed",
                target=str(target),
                backup=str(backup_path) if backup_path else None,
                error=str(e),
            )

        if path_exists(self.staging_path):
            try:
                shutil.rmtree(self.staging_path)
            except OSError as e:
                logger.warning(
                    "staged.cleanup_failed",
                    staging=str(self.staging_path),
                    error=str(e),
                )
