"""Post-build audit of module reachability and bundle partitioning."""

from __future__ import annotations

__version__ = "0.1.0"

from .audit import Audit, run
from .errors import AuditError, ConfigurationError, GraphFrozenError, ParseError
from .models import AuditResult, Finding, FindingKind, ModuleRecord

__all__ = [
    "Audit",
    "AuditError",
    "AuditResult",
    "ConfigurationError",
    "Finding",
    "FindingKind",
    "GraphFrozenError",
    "ModuleRecord",
    "ParseError",
    "run",
]
