"""Undo rules for recorded operations.

Shared by in-process rollback (AtomicFileWriter.rollback) and crash
recovery from a journal, so both restore the filesystem the same way.
"""

import os
from pathlib import Path
from typing import Literal

from buildsafe.core.models import WriteOperation
from buildsafe.fs.paths import path_exists, remove_path
from buildsafe.utils.debug import debug

UndoOutcome = Literal["restored", "removed", "skipped"]


def _restore_backup(backup: Path, target: Path) -> None:
    if path_exists(target) and target.is_dir() and not target.is_symlink():
        remove_path(target)
    os.replace(backup, target)


def undo_operation(op: WriteOperation, *, strict: bool = True) -> UndoOutcome:
    """Reverse one operation.

    A recorded backup is renamed back onto the target. Without a backup the
    target did not exist before, so it is removed (for mkdir, the top-most
    directory the call created). A missing backup is an error when strict;
    non-strict mode is for journal entries whose outcome is unknown, where a
    missing backup means the mutation never started.

    Args:
        op: Operation to reverse
        strict: Raise when a recorded backup is missing

    Returns:
        What was done to the target

    Raises:
        OSError: If the restore or removal fails, or a backup is missing in
            strict mode
    """
    if op.backup_path is not None:
        if not path_exists(op.backup_path):
            if strict:
                raise FileNotFoundError(
                    f"backup {op.backup_path} for {op.target} is missing"
                )
            debug("backup missing, nothing to undo", target=op.target)
            return "skipped"
        _restore_backup(op.backup_path, op.target)
        debug("restored", target=op.target, backup=op.backup_path)
        return "restored"

    if op.kind == "delete" or op.preexisting:
        return "skipped"

    victim = op.created_root if op.kind == "mkdir" and op.created_root else op.target
    if path_exists(victim):
        remove_path(victim)
        debug("removed", path=victim)
        return "removed"
    return "skipped"
