"""Exception types raised by the audit engine."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class AuditError(Exception):
    """Base class for audit engine errors."""


class ConfigurationError(AuditError):
    """The output root is not a finalized build the audit can inspect."""


class ParseError(AuditError):
    """A single module could not be read or parsed."""

    def __init__(self, path: Path, reason: str, line: Optional[int] = None) -> None:
        self.path = path
        self.reason = reason
        self.line = line
        where = f"{path}:{line}" if line else str(path)
        super().__init__(f"{where}: {reason}")


class GraphFrozenError(AuditError):
    """Raised when a frozen module graph is mutated."""
