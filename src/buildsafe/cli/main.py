"""Root `buildsafe` command combining journal and sweep commands."""

from __future__ import annotations

import importlib
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - typing only
    import typer
    from typer import Typer as TyperType
else:  # pragma: no cover - runtime fallback for typing
    typer = importlib.import_module("typer")
    TyperType = Any

from buildsafe.cli.journal import recover, show_journal
from buildsafe.cli.sweep import sweep

app: TyperType = typer.Typer(
    help="Operator tools for buildsafe atomic build output.",
    no_args_is_help=True,
)

app.command("show")(show_journal)
app.command("recover")(recover)
app.command("sweep")(sweep)


def run_cli(args: Sequence[str] | None = None) -> None:
    app(args=args)
