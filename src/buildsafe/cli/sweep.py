"""CLI command for removing orphaned backups, staging dirs and temp files."""

from __future__ import annotations

import importlib
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

if TYPE_CHECKING:  # pragma: no cover - typing only
    import typer
    from typer import Typer as TyperType
else:  # pragma: no cover - runtime fallback for typing
    typer = importlib.import_module("typer")
    TyperType = Any

from buildsafe.fs.sweep import sweep_orphans

app: TyperType = typer.Typer(
    help="Clean up artifacts left behind by interrupted builds."
)

RootArgument = Annotated[
    Path,
    typer.Argument(help="Directory to scan recursively."),
]
DryRunFlag = Annotated[
    bool,
    typer.Option("--dry-run", help="List orphans without deleting them."),
]


def sweep(root: RootArgument, dry_run: DryRunFlag = False) -> None:
    """Delete *.backup-*, *.staging-* and .tmp-* artifacts under ROOT."""

    if not root.is_dir():
        typer.secho(f"Not a directory: {root}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)

    report = sweep_orphans(root, dry_run=dry_run)

    for path in report.found:
        prefix = "would remove" if dry_run else "removed"
        if not dry_run and path not in report.removed:
            prefix = "failed"
        typer.echo(f"{prefix}: {path}")

    typer.secho(
        f"{len(report.found)} orphan(s) found, {len(report.removed)} removed",
        fg=typer.colors.GREEN if not report.errors else typer.colors.YELLOW,
    )

    if report.errors:
        raise typer.Exit(code=1)


app.command("sweep")(sweep)
