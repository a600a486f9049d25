"""Operation records and summaries shared by the writer, staging and journal.

WriteOperation is the unit of undo: every mutation the writer performs is
recorded as one, and rollback walks them in reverse order.
"""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal, cast

from pydantic import BaseModel, Field

OperationKind = Literal["write", "mkdir", "copy", "delete"]
OPERATION_KINDS: tuple[OperationKind, ...] = ("write", "mkdir", "copy", "delete")


@dataclass
class WriteOperation:
    """Record of one attempted or committed filesystem mutation.

    Attributes:
        kind: Operation variant (write, mkdir, copy, delete)
        target: Absolute path affected
        source: Origin path, only for copy
        content: Inline payload while the write is in flight; cleared once done
        backup_path: Saved pre-operation copy of whatever was at target
        completed: True once the primary effect is durably applied
        preexisting: mkdir only, the directory already existed
        created_root: mkdir only, top-most ancestor created by this call
        sequence: Position in the owning writer's operation order
        timestamp: When the operation was recorded
    """

    kind: OperationKind
    target: Path
    source: Path | None = None
    content: bytes | None = field(default=None, repr=False)
    backup_path: Path | None = None
    completed: bool = False
    preexisting: bool = False
    created_root: Path | None = None
    sequence: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_record(self) -> dict[str, Any]:
        """Serialize for the journal. Content is never persisted."""
        return {
            "seq": self.sequence,
            "kind": self.kind,
            "target": str(self.target),
            "source": str(self.source) if self.source else None,
            "backup_path": str(self.backup_path) if self.backup_path else None,
            "completed": self.completed,
            "preexisting": self.preexisting,
            "created_root": str(self.created_root) if self.created_root else None,
            "ts": self.timestamp.isoformat(),
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "WriteOperation":
        """Rebuild an operation from a journal record."""
        kind = data["kind"]
        if kind not in OPERATION_KINDS:
            raise ValueError(f"unknown operation kind: {kind!r}")

        def _path(key: str) -> Path | None:
            value = data.get(key)
            return Path(value) if value else None

        return cls(
            kind=cast(OperationKind, kind),
            target=Path(data["target"]),
            source=_path("source"),
            backup_path=_path("backup_path"),
            completed=bool(data.get("completed", False)),
            preexisting=bool(data.get("preexisting", False)),
            created_root=_path("created_root"),
            sequence=int(data.get("seq", 0)),
            timestamp=datetime.fromisoformat(data["ts"])
            if data.get("ts")
            else datetime.now(UTC),
        )


class OperationsSummary(BaseModel):
    """Counts of recorded operations, overall and per kind."""

    total: int = 0
    completed: int = 0
    types: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_operations(
        cls, operations: Iterable[WriteOperation]
    ) -> "OperationsSummary":
        ops = list(operations)
        return cls(
            total=len(ops),
            completed=sum(1 for op in ops if op.completed),
            types=dict(Counter(op.kind for op in ops)),
        )
