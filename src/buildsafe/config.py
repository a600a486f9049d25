"""Environment-driven configuration for the atomic writer and transactions."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

__all__ = ["WriterConfig"]

_TRUTHY = ("1", "true", "yes")


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class WriterConfig:
    """Settings shared by AtomicFileWriter, StagedDirectory and BuildTransaction.

    Attributes:
        strict_dir_sync: Treat a failed directory fsync as fatal instead of
            logging a warning. Only applies where directory fsync is supported.
        journal_dir: Directory for transaction journals; None disables journaling.
        encoding: Encoding used when str content is written.
    """

    strict_dir_sync: bool = False
    journal_dir: Path | None = None
    encoding: str = "utf-8"

    @classmethod
    def from_env(cls, **overrides: Any) -> WriterConfig:
        """Build a config from BUILDSAFE_* variables.

        Args:
            **overrides: Explicit values; None means "use the environment".

        Returns:
            Resolved WriterConfig
        """
        journal_env = os.getenv("BUILDSAFE_JOURNAL_DIR")
        values: dict[str, Any] = {
            "strict_dir_sync": _env_flag("BUILDSAFE_STRICT_DIR_SYNC"),
            "journal_dir": Path(journal_env).expanduser() if journal_env else None,
            "encoding": os.getenv("BUILDSAFE_ENCODING") or "utf-8",
        }

        for key, value in overrides.items():
            if key not in values:
                raise TypeError(f"Unknown WriterConfig option: {key}")
            if value is None:
                continue
            if key == "journal_dir":
                value = Path(value).expanduser()
            values[key] = value

        return cls(**values)
