"""Default settings for the audit engine, overridable via environment."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("BUNDLE_AUDIT_HOME", str(Path.home() / ".bundle-audit"))).expanduser()
USER_CONFIG_FILE = BASE_DIR / "config.toml"
PROJECT_CONFIG_NAME = ".bundle-audit.toml"

DEFAULT_BUNDLES_DIR = "dist"
MAIN_BUNDLE = "main"
DEFAULT_MAIN = "./app.js"

# Probe order when a specifier omits its extension
DEFAULT_EXTENSIONS = (".js", ".mjs", ".ts", ".hbs", ".hbs.js", ".json")

DEFAULT_WORKERS = int(os.environ.get("BUNDLE_AUDIT_WORKERS", str(min(8, (os.cpu_count() or 1) + 4))))

# Module namespaces provided by the framework runtime loader, never on disk
RUNTIME_MODULE_PREFIXES = ("@ember/", "@glimmer/", "@embroider/macros/")
RUNTIME_MODULES = frozenset({
    "ember",
    "rsvp",
    "require",
    "jquery",
    "@embroider/macros",
    "ember-source",
    "ember-resolver",
    "ember-testing",
})
