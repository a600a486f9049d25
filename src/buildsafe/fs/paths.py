"""Path utilities for atomic filesystem operations.

This module names the transient artifacts (temp files, backups, staging
directories) and wraps the low-level primitives the writer builds on:
existence checks that see broken symlinks, recursive removal and
directory fsync.
"""

import os
import shutil
import time
import uuid
from pathlib import Path

import structlog

from buildsafe.core.errors import AtomicWriteError
from buildsafe.utils.debug import debug

logger = structlog.get_logger(__name__)


def normalize_path(path: str | Path, root: Path | None = None) -> Path:
    """Normalize a path for consistent handling.

    Symlinks are deliberately not resolved: renaming onto a symlink replaces
    the link itself, which is what callers asking for that path expect.

    Args:
        path: Path to normalize
        root: Optional root directory for relative paths

    Returns:
        Normalized absolute path
    """
    if not isinstance(path, Path):
        path = Path(path)

    if not path.is_absolute() and root is not None:
        path = root / path

    return Path(os.path.abspath(path))


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def path_exists(path: Path) -> bool:
    """Return True if anything, including a dangling symlink, is at path."""
    return os.path.lexists(path)


def get_temp_path(target: Path) -> Path:
    """Get a unique temp file path in the same directory as target.

    Same directory means same filesystem, which keeps the final rename atomic.

    Args:
        target: File the temp file will eventually replace

    Returns:
        Path of the form .tmp-<pid>-<millis>-<hex8>
    """
    name = f".tmp-{os.getpid()}-{now_millis()}-{uuid.uuid4().hex[:8]}"
    return target.parent / name


def get_backup_path(original_path: Path) -> Path:
    """Generate a sibling backup path for a file or directory.

    Args:
        original_path: Path that needs to be backed up

    Returns:
        original_path + ".backup-<millis>", with a random suffix appended
        only if that name is already taken
    """
    candidate = Path(f"{original_path}.backup-{now_millis()}")
    while path_exists(candidate):
        candidate = Path(
            f"{original_path}.backup-{now_millis()}-{uuid.uuid4().hex[:4]}"
        )
    return candidate


def get_staging_path(target: Path) -> Path:
    """Generate a sibling staging directory path for target.

    Args:
        target: Directory the staged tree will be published as

    Returns:
        target + ".staging-<pid>-<millis>"
    """
    candidate = Path(f"{target}.staging-{os.getpid()}-{now_millis()}")
    while path_exists(candidate):
        candidate = Path(
            f"{target}.staging-{os.getpid()}-{now_millis()}-{uuid.uuid4().hex[:4]}"
        )
    return candidate


def find_created_root(path: Path) -> Path | None:
    """Find the top-most ancestor of path (or path itself) that does not exist yet.

    Args:
        path: Directory about to be created with parents

    Returns:
        Highest missing directory, or None if path already exists
    """
    if path_exists(path):
        return None

    created = path
    for parent in path.parents:
        if path_exists(parent):
            break
        created = parent
    return created


def remove_path(path: Path) -> None:
    """Remove a file, symlink or directory tree.

    Raises:
        OSError: If removal fails
    """
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def ensure_parent_dir(path: Path) -> None:
    """Ensure parent directory exists for a path.

    Args:
        path: Path whose parent directory should exist

    Raises:
        OSError: If parent directory cannot be created
    """
    parent = path.parent
    if not parent.exists():
        parent.mkdir(parents=True, exist_ok=True)


def supports_directory_fsync() -> bool:
    """Check whether this platform can fsync a directory handle.

    Windows cannot open directories for fsync; POSIX systems expose
    O_DIRECTORY for it.
    """
    return os.name == "posix" and hasattr(os, "O_DIRECTORY")


def sync_directory(path: Path, *, strict: bool = False) -> None:
    """Flush a directory's metadata (entries created by rename) to disk.

    Args:
        path: Directory to sync
        strict: Raise instead of warning when the sync fails

    Raises:
        AtomicWriteError: If strict and the sync failed
    """
    if not supports_directory_fsync():
        debug("directory fsync unsupported, skipping", path=path)
        return

    try:
        fd = os.open(path, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError as e:
        if strict:
            raise AtomicWriteError(
                path, e, message=f"Failed to sync directory {path}"
            ) from e
        logger.warning("fs.dir_sync_failed", path=str(path), error=str(e))
