"""Filesystem operations for atomic writes, staging and transactions.

This module provides crash-consistent file writes, atomically published
staged directories, multi-operation build transactions with rollback,
a recovery journal and orphaned-artifact cleanup.
"""

from buildsafe.fs.journal import (
    OperationJournal,
    RecoveryReport,
    find_incomplete_journals,
    read_journal,
    recover_journal,
)
from buildsafe.fs.paths import normalize_path, supports_directory_fsync
from buildsafe.fs.staging import StagedDirectory
from buildsafe.fs.sweep import SweepReport, find_orphans, sweep_orphans
from buildsafe.fs.transaction import BuildTransaction, with_atomic_transaction
from buildsafe.fs.writer import AtomicFileWriter

__all__ = [
    "AtomicFileWriter",
    "BuildTransaction",
    "OperationJournal",
    "RecoveryReport",
    "StagedDirectory",
    "SweepReport",
    "find_incomplete_journals",
    "find_orphans",
    "normalize_path",
    "read_journal",
    "recover_journal",
    "supports_directory_fsync",
    "sweep_orphans",
    "with_atomic_transaction",
]
