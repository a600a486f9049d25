"""Transaction journal for crash recovery.

A journal is a JSONL file, one per transaction, capturing every operation
before and after it touches the filesystem. If the process dies mid
transaction, recover_journal() replays the undo rules against whatever the
journal recorded, bringing the tree back to its pre-transaction state.

Line types:
- header: session metadata, written once
- op: an operation about to be applied (intent)
- done: outcome of a previously announced op (completed or failed)
- stage: a staging directory was created
- end: terminal record (committed or rolled_back)
"""

import json
import os
import platform
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal, TextIO

import structlog
from pydantic import BaseModel, Field

from buildsafe.core.errors import JournalError
from buildsafe.core.models import WriteOperation
from buildsafe.fs.paths import normalize_path, path_exists, remove_path
from buildsafe.fs.undo import undo_operation
from buildsafe.utils.debug import debug

SCHEMA_VERSION = "1.0"
EndStatus = Literal["committed", "rolled_back"]

logger = structlog.get_logger(__name__)


def _dump_line(data: dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":")) + "\n"


class OperationJournal:
    """Writes a transaction journal in JSONL format.

    Every line is flushed and fsync'd before the call returns, so an intent
    record is on disk before the mutation it describes starts.
    """

    def __init__(self, transaction_id: str, journal_dir: str | Path) -> None:
        """Initialize journal writer.

        Args:
            transaction_id: Unique identifier of the owning transaction
            journal_dir: Directory the journal file is created in

        Raises:
            JournalError: If the directory cannot be created or written to
        """
        self.transaction_id = transaction_id
        self.journal_dir = normalize_path(journal_dir)
        self._path = self.journal_dir / f"{transaction_id}.jsonl"
        self._file: TextIO | None = None
        self._header_written = False

        self._ensure_journal_directory()

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_journal_directory(self) -> None:
        """Ensure journal directory exists and is writable."""
        try:
            self.journal_dir.mkdir(parents=True, exist_ok=True)

            # Test write access
            test_file = self.journal_dir / f".test_{uuid.uuid4().hex}"
            test_file.write_text("test")
            test_file.unlink()

        except OSError as e:
            raise JournalError(
                self.journal_dir,
                f"cannot create journal directory: {e}. "
                "Ensure the directory is writable or choose a different one.",
            ) from e

        debug("journal path", path=self._path)

    def write_header(self) -> None:
        """Write journal header with session metadata."""
        if self._header_written:
            return

        header = {
            "type": "header",
            "schema_version": SCHEMA_VERSION,
            "transaction_id": self.transaction_id,
            "generated_at": datetime.now(UTC).isoformat(),
            "pid": os.getpid(),
            "system": {"os": platform.system()},
        }

        self._header_written = True
        self._write_line(header)

    def record_intent(self, op: WriteOperation) -> None:
        """Record an operation that is about to mutate the filesystem."""
        self._write_line({"type": "op", **op.to_record()})

    def record_done(
        self, op: WriteOperation, status: Literal["completed", "failed"]
    ) -> None:
        """Record the outcome of a previously announced operation."""
        self._write_line(
            {
                "type": "done",
                "seq": op.sequence,
                "status": status,
                "backup_path": str(op.backup_path) if op.backup_path else None,
                "preexisting": op.preexisting,
            }
        )

    def record_stage(self, target: Path, staging_path: Path) -> None:
        """Record creation of a staging directory."""
        self._write_line(
            {
                "type": "stage",
                "target": str(target),
                "staging_path": str(staging_path),
                "ts": datetime.now(UTC).isoformat(),
            }
        )

    def record_end(self, status: EndStatus, errors: list[str] | None = None) -> None:
        """Write the terminal record and close the journal."""
        entry: dict[str, Any] = {
            "type": "end",
            "status": status,
            "ts": datetime.now(UTC).isoformat(),
        }
        if errors:
            entry["errors"] = errors
        self._write_line(entry)
        self.close()

    def _write_line(self, data: dict[str, Any]) -> None:
        """Write a JSON line to the journal file."""
        if not self._header_written:
            self.write_header()

        if self._file is None:
            try:
                self._file = open(self._path, "a", encoding="utf-8")
            except OSError as e:
                raise JournalError(self._path, f"cannot open journal: {e}") from e

        self._file.write(_dump_line(data))
        self._file.flush()
        os.fsync(self._file.fileno())

    def close(self) -> None:
        """Close the journal file."""
        if self._file is not None:
            self._file.close()
            self._file = None
            debug("closed journal", path=self._path)

    def __enter__(self) -> "OperationJournal":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()


@dataclass
class JournalState:
    """Parsed contents of a journal file.

    Attributes:
        path: Journal file
        header: Header record (empty if the header line was never written)
        operations: Announced operations that did not fail, in sequence order
        stages: Staging directories created by the transaction
        status: Terminal status, or None if the transaction never finished
        errors: Errors recorded with the terminal record
    """

    path: Path
    header: dict[str, Any] = field(default_factory=dict)
    operations: list[WriteOperation] = field(default_factory=list)
    stages: list[dict[str, str]] = field(default_factory=list)
    status: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def transaction_id(self) -> str:
        return str(self.header.get("transaction_id") or self.path.stem)

    @property
    def is_finished(self) -> bool:
        return self.status is not None


def read_journal(path: str | Path) -> JournalState:
    """Parse a journal file.

    A malformed final line is tolerated (the process died while writing it);
    malformed lines anywhere else raise.

    Args:
        path: Journal file to read

    Returns:
        JournalState describing the recorded transaction

    Raises:
        JournalError: If the file is missing or malformed
    """
    path = Path(path)
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        raise JournalError(path, f"cannot read journal: {e}") from e

    state = JournalState(path=path)
    announced: dict[int, WriteOperation] = {}
    failed: set[int] = set()

    for index, raw_line in enumerate(lines):
        line = raw_line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
            kind = record["type"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            if index == len(lines) - 1:
                logger.warning("journal.torn_line", path=str(path), line=index + 1)
                break
            raise JournalError(path, f"malformed line {index + 1}: {e}") from e

        try:
            if kind == "header":
                state.header = record
            elif kind == "op":
                op = WriteOperation.from_record(record)
                announced[op.sequence] = op
            elif kind == "done":
                seq = int(record["seq"])
                if record["status"] == "failed":
                    failed.add(seq)
                elif seq in announced:
                    op = announced[seq]
                    op.completed = True
                    backup = record.get("backup_path")
                    op.backup_path = Path(backup) if backup else None
                    op.preexisting = bool(record.get("preexisting", op.preexisting))
            elif kind == "stage":
                state.stages.append(
                    {"target": record["target"], "staging_path": record["staging_path"]}
                )
            elif kind == "end":
                state.status = record["status"]
                state.errors = list(record.get("errors", []))
            else:
                raise JournalError(path, f"unknown record type {kind!r}")
        except (KeyError, ValueError) as e:
            raise JournalError(path, f"invalid {kind} record: {e}") from e

    state.operations = [
        announced[seq] for seq in sorted(announced) if seq not in failed
    ]
    return state


class RecoveryReport(BaseModel):
    """Outcome of recovering one journal."""

    journal_path: Path
    transaction_id: str
    action: Literal["rolled_back", "purged", "none"] = "none"
    restored: int = 0
    removed: int = 0
    purged: int = 0
    errors: list[str] = Field(default_factory=list)


def recover_journal(path: str | Path) -> RecoveryReport:
    """Bring the filesystem to a consistent state for one journal.

    - Unfinished transaction: undo every announced operation in reverse order,
      remove its staging directories, then mark the journal rolled back.
    - Committed transaction: delete backups that were left behind.
    - Rolled back transaction: nothing to do.

    Args:
        path: Journal file

    Returns:
        RecoveryReport describing what was done
    """
    state = read_journal(path)
    report = RecoveryReport(
        journal_path=state.path, transaction_id=state.transaction_id
    )
    bound_logger = logger.bind(
        journal=str(state.path), transaction_id=state.transaction_id
    )

    if state.status == "committed":
        for op in state.operations:
            if op.backup_path is None or not path_exists(op.backup_path):
                continue
            try:
                remove_path(op.backup_path)
                report.purged += 1
            except OSError as e:
                report.errors.append(f"{op.backup_path}: {e}")
        if report.purged:
            report.action = "purged"
        bound_logger.info("journal.recover", action=report.action, purged=report.purged)
        return report

    if state.is_finished:
        return report

    for op in reversed(state.operations):
        try:
            outcome = undo_operation(op, strict=op.completed)
        except OSError as e:
            report.errors.append(f"{op.kind} {op.target}: {e}")
            continue
        if outcome == "restored":
            report.restored += 1
        elif outcome == "removed":
            report.removed += 1

    for stage in state.stages:
        staging_path = Path(stage["staging_path"])
        if not path_exists(staging_path):
            continue
        try:
            remove_path(staging_path)
            report.removed += 1
        except OSError as e:
            report.errors.append(f"staging {staging_path}: {e}")

    end: dict[str, Any] = {
        "type": "end",
        "status": "rolled_back",
        "ts": datetime.now(UTC).isoformat(),
        "recovered": True,
    }
    if report.errors:
        end["errors"] = report.errors
    try:
        with open(state.path, "a", encoding="utf-8") as handle:
            handle.write(_dump_line(end))
            handle.flush()
            os.fsync(handle.fileno())
    except OSError as e:
        raise JournalError(state.path, f"cannot append end record: {e}") from e

    report.action = "rolled_back"
    bound_logger.info(
        "journal.recover",
        action=report.action,
        restored=report.restored,
        removed=report.removed,
        errors=len(report.errors),
    )
    return report


def find_incomplete_journals(journal_dir: str | Path) -> list[Path]:
    """List journals in journal_dir whose transaction never finished.

    Args:
        journal_dir: Directory holding *.jsonl journals

    Returns:
        Sorted list of journal paths without an end record
    """
    directory = Path(journal_dir)
    if not directory.is_dir():
        return []

    return [
        journal
        for journal in sorted(directory.glob("*.jsonl"))
        if not read_journal(journal).is_finished
    ]
