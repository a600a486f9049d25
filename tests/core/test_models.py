"""Tests for operation records and summaries."""

from pathlib import Path

import pytest

from buildsafe.core.models import OperationsSummary, WriteOperation


def test_record_never_contains_content() -> None:
    op = WriteOperation(
        kind="write",
        target=Path("/srv/site/index.html"),
        content=b"<h1>secret draft</h1>",
        backup_path=Path("/srv/site/index.html.backup-1"),
        sequence=3,
    )

    record = op.to_record()

    assert "content" not in record
    assert record["seq"] == 3
    assert record["backup_path"] == "/srv/site/index.html.backup-1"
    assert record["source"] is None


def test_record_round_trip_keeps_undo_fields() -> None:
    op = WriteOperation(
        kind="mkdir",
        target=Path("/srv/site/img/dishes"),
        created_root=Path("/srv/site/img"),
        completed=True,
        sequence=7,
    )

    rebuilt = WriteOperation.from_record(op.to_record())

    assert rebuilt.kind == "mkdir"
    assert rebuilt.created_root == Path("/srv/site/img")
    assert rebuilt.completed is True
    assert rebuilt.sequence == 7
    assert rebuilt.timestamp == op.timestamp


def test_from_record_rejects_unknown_kind() -> None:
    with pytest.raises(ValueError, match="unknown operation kind"):
        WriteOperation.from_record({"kind": "chmod", "target": "/srv/a"})


def test_content_hidden_from_repr() -> None:
    op = WriteOperation(kind="write", target=Path("/a"), content=b"payload")

    assert "payload" not in repr(op)


def test_summary_counts_by_kind() -> None:
    ops = [
        WriteOperation(kind="write", target=Path("/a"), completed=True),
        WriteOperation(kind="write", target=Path("/b"), completed=True),
        WriteOperation(kind="copy", target=Path("/c"), completed=True),
        WriteOperation(kind="mkdir", target=Path("/d")),
    ]

    summary = OperationsSummary.from_operations(ops)

    assert summary.total == 4
    assert summary.completed == 3
    assert summary.types == {"write": 2, "copy": 1, "mkdir": 1}


def test_empty_summary() -> None:
    summary = OperationsSummary.from_operations([])

    assert summary.model_dump() == {"total": 0, "completed": 0, "types": {}}
