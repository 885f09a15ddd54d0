"""Configuration loading for audit runs using TOML files."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import toml

from . import config
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditConfig:
    bundles_dir: str = config.DEFAULT_BUNDLES_DIR
    extensions: Tuple[str, ...] = config.DEFAULT_EXTENSIONS
    externals: Tuple[str, ...] = ()
    workers: int = config.DEFAULT_WORKERS
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)


def _config_file_for(root: Optional[Path]) -> Optional[Path]:
    if root is not None:
        candidate = root / config.PROJECT_CONFIG_NAME
        if candidate.is_file():
            return candidate
    if config.USER_CONFIG_FILE.is_file():
        return config.USER_CONFIG_FILE
    return None


def load_full_config(path: Path) -> Dict[str, Any]:
    """Load the entire TOML document at *path*."""
    try:
        return toml.load(str(path))
    except (OSError, toml.TomlDecodeError) as exc:
        raise ConfigurationError(f"Invalid audit configuration {path}: {exc}") from exc


def load_config(root: Optional[Path] = None) -> AuditConfig:
    """Build an :class:`AuditConfig` for an output root.

    Reads the ``[audit]`` table of ``<root>/.bundle-audit.toml``, falling back
    to the user-level config file.  Missing files yield the defaults.
    """
    path = _config_file_for(root)
    if path is None:
        return AuditConfig()

    section = load_full_config(path).get("audit", {})
    if not isinstance(section, dict):
        raise ConfigurationError(f"[audit] in {path} must be a table")

    known = {f.name for f in fields(AuditConfig)} - {"extra"}
    values: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    for key, value in section.items():
        name = key.replace("-", "_")
        if name in known:
            values[name] = value
        else:
            logger.warning("Ignoring unknown audit setting '%s' in %s", key, path)
            extra[key] = value

    for name in ("extensions", "externals"):
        if name in values:
            if not isinstance(values[name], list) or not all(isinstance(v, str) for v in values[name]):
                raise ConfigurationError(f"audit.{name} in {path} must be a list of strings")
            values[name] = tuple(values[name])
    if "workers" in values and (not isinstance(values["workers"], int) or values["workers"] < 1):
        raise ConfigurationError(f"audit.workers in {path} must be a positive integer")
    if "bundles_dir" in values and not isinstance(values["bundles_dir"], str):
        raise ConfigurationError(f"audit.bundles-dir in {path} must be a string")

    logger.debug("Loaded audit configuration from %s", path)
    return AuditConfig(extra=extra, **values)
