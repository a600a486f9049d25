"""CLI entrypoints for buildsafe."""

from buildsafe.cli.journal import app as journal_app
from buildsafe.cli.main import app
from buildsafe.cli.sweep import app as sweep_app

__all__ = ["app", "journal_app", "sweep_app"]
