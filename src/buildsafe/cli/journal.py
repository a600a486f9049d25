"""CLI commands for inspecting and recovering transaction journals."""

from __future__ import annotations

import importlib
import json
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:  # pragma: no cover - typing only
    import typer
    from typer import Typer as TyperType
else:  # pragma: no cover - runtime fallback for typing
    typer = importlib.import_module("typer")
    TyperType = Any

from buildsafe.config import WriterConfig
from buildsafe.core.errors import BuildSafeError
from buildsafe.core.models import OperationsSummary
from buildsafe.fs.journal import (
    find_incomplete_journals,
    read_journal,
    recover_journal,
)

app: TyperType = typer.Typer(
    help="Inspect and recover buildsafe transaction journals."
)

JournalArgument = Annotated[
    Path,
    typer.Argument(help="Journal file (<transaction_id>.jsonl)."),
]
JournalDirOption = Annotated[
    Path | None,
    typer.Option(
        "--journal-dir",
        help="Journal directory (defaults to BUILDSAFE_JOURNAL_DIR).",
    ),
]
JsonFlag = Annotated[
    bool,
    typer.Option("--json", help="Emit JSON instead of a table."),
]


def show_journal(journal: JournalArgument, json_output: JsonFlag = False) -> None:
    """Print the operations recorded in a journal."""

    try:
        state = read_journal(journal)
    except BuildSafeError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    summary = OperationsSummary.from_operations(state.operations)

    if json_output:
        payload = {
            "transaction_id": state.transaction_id,
            "status": state.status,
            "summary": summary.model_dump(),
            "operations": [op.to_record() for op in state.operations],
            "stages": state.stages,
            "errors": state.errors,
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    console = Console()
    table = Table(title=f"Transaction {state.transaction_id}")
    table.add_column("#", justify="right")
    table.add_column("Kind")
    table.add_column("Target")
    table.add_column("Backup")
    table.add_column("Done")
    for op in state.operations:
        table.add_row(
            str(op.sequence),
            op.kind,
            str(op.target),
            str(op.backup_path) if op.backup_path else "-",
            "yes" if op.completed else "no",
        )
    console.print(table)
    console.print(
        f"status: {state.status or 'unfinished'}  "
        f"total: {summary.total}  completed: {summary.completed}"
    )


def recover(journal_dir: JournalDirOption = None) -> None:
    """Roll back every unfinished transaction found in the journal directory."""

    directory = journal_dir or WriterConfig.from_env().journal_dir
    if directory is None:
        typer.secho(
            "No journal directory given and BUILDSAFE_JOURNAL_DIR is not set.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)

    try:
        journals = find_incomplete_journals(directory)
        reports = [recover_journal(journal) for journal in journals]
    except BuildSafeError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    if not reports:
        typer.secho(
            f"No unfinished transactions in {directory}", fg=typer.colors.GREEN
        )
        return

    failed = False
    for report in reports:
        color = typer.colors.YELLOW if report.errors else typer.colors.GREEN
        typer.secho(
            f"Recovered {report.transaction_id}: restored={report.restored} "
            f"removed={report.removed} errors={len(report.errors)}",
            fg=color,
        )
        for error in report.errors:
            typer.secho(f"  {error}", err=True, fg=typer.colors.RED)
        failed = failed or bool(report.errors)

    if failed:
        raise typer.Exit(code=1)


app.command("show")(show_journal)
app.command("recover")(recover)
