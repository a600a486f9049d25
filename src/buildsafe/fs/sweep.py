"""Orphaned artifact detection and cleanup.

A crash mid-operation can leave backups, staging directories and temp files
behind. None of them is ever the authoritative copy once a transaction has
fully committed or rolled back, so operators can delete them. Run journal
recovery first: an unfinished transaction still needs its backups.
"""

import os
import re
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from buildsafe.fs.paths import normalize_path, remove_path

logger = structlog.get_logger(__name__)

_ORPHAN_PATTERNS = (
    re.compile(r".+\.backup-\d+(-[0-9a-f]+)?$"),
    re.compile(r".+\.staging-\d+-\d+(-[0-9a-f]+)?$"),
    re.compile(r"^\.tmp-\d+-\d+-[0-9a-f]+$"),
)


def is_orphan_name(name: str) -> bool:
    """Return True if name matches a transient artifact naming scheme."""
    return any(pattern.match(name) for pattern in _ORPHAN_PATTERNS)


def find_orphans(root: str | Path) -> list[Path]:
    """Find transient artifacts under root.

    Matching directories are reported once and not descended into.

    Args:
        root: Directory to scan recursively

    Returns:
        Sorted list of orphaned files and directories
    """
    root = normalize_path(root)
    orphans: list[Path] = []

    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        kept_dirs = []
        for name in dirnames:
            if is_orphan_name(name):
                orphans.append(base / name)
            else:
                kept_dirs.append(name)
        dirnames[:] = kept_dirs

        orphans.extend(base / name for name in filenames if is_orphan_name(name))

    return sorted(orphans)


class SweepReport(BaseModel):
    """Outcome of a sweep."""

    root: Path
    dry_run: bool = False
    found: list[Path] = Field(default_factory=list)
    removed: list[Path] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


def sweep_orphans(root: str | Path, *, dry_run: bool = False) -> SweepReport:
    """Delete transient artifacts under root.

    Args:
        root: Directory to scan recursively
        dry_run: Only report what would be removed

    Returns:
        SweepReport listing found and removed paths
    """
    report = SweepReport(root=normalize_path(root), dry_run=dry_run)
    report.found = find_orphans(report.root)

    if dry_run:
        return report

    for path in report.found:
        try:
            remove_path(path)
            report.removed.append(path)
        except OSError as e:
            report.errors.append(f"{path}: {e}")
            logger.warning("sweep.remove_failed", path=str(path), error=str(e))

    logger.info(
        "sweep.done",
        root=str(report.root),
        found=len(report.found),
        removed=len(report.removed),
    )
    return report
