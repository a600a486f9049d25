"""Trace output for buildsafe's filesystem internals.

structlog carries the operational events (writes, commits, rollbacks).
debug() is for the low-level trace underneath them: temp names, backup
paths, undo outcomes. It writes to stderr so it never mixes with CLI
output such as `buildsafe show --json`.

Usage:
    from buildsafe.utils.debug import debug

    debug("renamed temp file", temp=temp_path.name, target=target)

prints::

    [buildsafe] renamed temp file temp=.tmp-12-17000-ab12cd34 target=/srv/a.html

Environment:
    BUILDSAFE_DEBUG: '1', 'true' or 'yes' (case-insensitive) enables it.
"""

import os
import sys
from typing import Any

_DEBUG_ENABLED = os.environ.get("BUILDSAFE_DEBUG", "").strip().lower() in (
    "1",
    "true",
    "yes",
)


def is_debug_enabled() -> bool:
    return _DEBUG_ENABLED


def format_fields(fields: dict[str, Any]) -> str:
    """Render fields as ` key=value` pairs in call order."""
    return "".join(f" {key}={value}" for key, value in fields.items())


def debug(msg: str, **fields: Any) -> None:
    """Print a trace line to stderr if BUILDSAFE_DEBUG is enabled.

    The flag is read at import time; reload the module to pick up changes.
    """
    if _DEBUG_ENABLED:
        line = f"[buildsafe] {msg}{format_fields(fields)}"
        print(line, file=sys.stderr, flush=True)
