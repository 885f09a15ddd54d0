"""Import specifier resolution against the located packages.

Resolution applies the same precedence as the runtime loader being audited:

1. modules provided by the framework runtime (never on disk),
2. relative and absolute paths,
3. bare package specifiers, honoring ``exports``, ``module`` and ``main``,
4. addon-merge fallback: ``renamed-modules``, ``renamed-packages`` and the
   ``app-js`` tables through which addons contribute files to the
   application namespace.

Failures are returned as :class:`ResolutionFailure` values, never raised.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from . import config
from .config_manager import AuditConfig
from .models import Package
from .packages import MANIFEST, PackageLocator, split_package_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedTarget:
    specifier: str
    path: Optional[Path]  # None for runtime-provided modules
    package: Optional[Package] = None
    external: bool = False
    bundle_entry: bool = False
    via: str = "path"


@dataclass(frozen=True)
class ResolutionFailure:
    specifier: str
    importer: Path
    reason: str


Resolution = Union[ResolvedTarget, ResolutionFailure]


def explicit_relative(root: Path, path: Path) -> str:
    """Render *path* relative to *root* as ``./x/y.js`` (or ``../x`` when outside)."""
    rel = Path(os.path.relpath(path, root)).as_posix()
    if rel.startswith("../") or rel == "..":
        return rel
    return f"./{rel}"


def is_runtime_module(specifier: str, externals: Sequence[str] = ()) -> bool:
    if specifier in config.RUNTIME_MODULES or specifier in externals:
        return True
    prefixes = tuple(config.RUNTIME_MODULE_PREFIXES) + tuple(
        e if e.endswith("/") else e + "/" for e in externals
    )
    return specifier.startswith(prefixes)


class ModuleResolver:
    """Resolve import specifiers observed inside modules to files on disk."""

    def __init__(self, packages: List[Package], audit_config: Optional[AuditConfig] = None) -> None:
        if not packages or not packages[0].is_app:
            raise ValueError("the application package must come first")
        self.config = audit_config or AuditConfig()
        self.packages = packages
        self.app = packages[0]
        self._by_root: Dict[Path, Package] = {p.root: p for p in packages}
        self._locator = PackageLocator(self.app.root)
        # deepest roots first so nested packages win
        self._roots_by_depth = sorted(self._by_root, key=lambda r: len(r.parts), reverse=True)

    # ------------------------------------------------------------------
    # Package lookup
    # ------------------------------------------------------------------

    def owner_of(self, path: Path) -> Optional[Package]:
        """Return the innermost located package containing *path*."""
        for root in self._roots_by_depth:
            if path == root or root in path.parents:
                return self._by_root[root]
        return None

    def _package_named(self, name: str, from_dir: Path) -> Optional[Package]:
        root = self._locator.find_package_root(from_dir, name)
        if root is not None:
            return self._by_root.get(root)
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self, from_path: Path, specifier: str, dynamic: bool = False) -> Resolution:
        """Resolve *specifier* as written in the module at *from_path*."""
        result = self._resolve(from_path, specifier)
        if isinstance(result, ResolvedTarget) and dynamic:
            result = ResolvedTarget(
                specifier=result.specifier,
                path=result.path,
                package=result.package,
                external=result.external,
                bundle_entry=True,
                via=result.via,
            )
        if isinstance(result, ResolutionFailure):
            logger.debug("Unresolved '%s' from %s: %s", specifier, from_path, result.reason)
        return result

    def _resolve(self, from_path: Path, specifier: str) -> Resolution:
        if not specifier:
            return ResolutionFailure(specifier, from_path, "empty specifier")

        if is_runtime_module(specifier, self.config.externals):
            return ResolvedTarget(specifier, None, external=True, via="runtime")

        if specifier.startswith(("./", "../")) or specifier in (".", ".."):
            found = self.probe(from_path.parent / specifier)
            if found is None:
                return ResolutionFailure(specifier, from_path, "no file matches relative path")
            return self._target(specifier, found, "relative")

        if specifier.startswith("/"):
            found = self.probe(Path(specifier))
            if found is None:
                return ResolutionFailure(specifier, from_path, "no file matches absolute path")
            return self._target(specifier, found, "absolute")

        found_via = self._resolve_bare(from_path, specifier)
        if found_via is not None:
            return self._target(specifier, found_via[0], found_via[1])

        merged = self._resolve_merged(from_path, specifier)
        if merged is not None:
            return self._target(specifier, merged[0], merged[1])

        name, _ = split_package_name(specifier)
        owner = self.owner_of(from_path)
        if (
            owner is not None
            and name not in (owner.name, self.app.name)
            and self._package_named(name, from_path.parent) is None
        ):
            reason = f"package '{name}' is not present in the build output"
        else:
            reason = "no file matches package path"
        return ResolutionFailure(specifier, from_path, reason)

    def _target(self, specifier: str, path: Path, via: str) -> ResolvedTarget:
        return ResolvedTarget(specifier, path, package=self.owner_of(path), via=via)

    # ------------------------------------------------------------------
    # File probing
    # ------------------------------------------------------------------

    def probe(self, candidate: Path) -> Optional[Path]:
        candidate = Path(os.path.normpath(candidate))
        if candidate.is_file():
            return candidate.resolve()
        for ext in self.config.extensions:
            with_ext = candidate.with_name(candidate.name + ext)
            if with_ext.is_file():
                return with_ext.resolve()
        if candidate.is_dir():
            for ext in self.config.extensions:
                index = candidate / f"index{ext}"
                if index.is_file():
                    return index.resolve()
        return None

    # ------------------------------------------------------------------
    # Bare specifiers
    # ------------------------------------------------------------------

    def _resolve_bare(self, from_path: Path, specifier: str) -> Optional[Tuple[Path, str]]:
        name, subpath = split_package_name(specifier)
        owner = self.owner_of(from_path)
        if owner is not None and owner.name == name:
            pkg: Optional[Package] = owner
        elif name == self.app.name:
            # addon modules reach the application by name, never via node_modules
            pkg = self.app
        else:
            pkg = self._package_named(name, from_path.parent)
        if pkg is None:
            return None
        found = self._resolve_in_package(pkg, subpath)
        if found is None:
            return None
        return found, "package"

    def _resolve_in_package(self, pkg: Package, subpath: str) -> Optional[Path]:
        key = f"./{subpath}" if subpath else "."
        if pkg.exports is not None:
            target = _match_exports(pkg.exports, key)
            if target is not None:
                return self.probe(pkg.root / target)
            # an exports map seals the package; the app keeps its own namespace
            if not pkg.is_app:
                return None

        if not subpath:
            for entry in (pkg.module, pkg.main):
                if entry:
                    found = self.probe(pkg.root / entry)
                    if found is not None:
                        return found
            return self.probe(pkg.root / "index")
        return self.probe(pkg.root / subpath)

    # ------------------------------------------------------------------
    # Addon-merge fallback
    # ------------------------------------------------------------------

    def _resolve_merged(self, from_path: Path, specifier: str) -> Optional[Tuple[Path, str]]:
        renamed = self._renamed_module(specifier)
        if renamed is not None and renamed != specifier:
            found = self._resolve_bare(from_path, renamed) or self._resolve_app_js(renamed)
            if found is not None:
                return found[0], "renamed-module"

        name, subpath = split_package_name(specifier)
        new_name = self.app.renamed_packages.get(name)
        if new_name and new_name != name:
            target = f"{new_name}/{subpath}" if subpath else new_name
            found = self._resolve_bare(self.app.root / MANIFEST, target)
            if found is not None:
                return found[0], "renamed-package"

        found = self._resolve_app_js(specifier)
        if found is not None:
            return found
        return None

    def _renamed_module(self, specifier: str) -> Optional[str]:
        table = self.app.renamed_modules
        if specifier in table:
            return _strip_js(table[specifier])
        for ext in self.config.extensions:
            if specifier + ext in table:
                return _strip_js(table[specifier + ext])
        return None

    def _resolve_app_js(self, specifier: str) -> Optional[Tuple[Path, str]]:
        name, subpath = split_package_name(specifier)
        if name != self.app.name or not subpath:
            return None
        wanted = {f"./{subpath}"} | {f"./{subpath}{ext}" for ext in self.config.extensions}
        # the last located addon providing a name wins
        for pkg in reversed(self.packages[1:]):
            for app_name, local in pkg.app_js.items():
                if app_name in wanted:
                    found = self.probe(pkg.root / local)
                    if found is not None:
                        return found, "app-js"
        return None

    def app_js_conflicts(self) -> Dict[str, List[str]]:
        """Map application-namespace names provided by more than one addon."""
        providers: Dict[str, List[str]] = {}
        for pkg in self.packages[1:]:
            for app_name in pkg.app_js:
                providers.setdefault(app_name, []).append(pkg.name)
        return {k: v for k, v in providers.items() if len(v) > 1}


def _strip_js(specifier: str) -> str:
    return specifier[:-3] if specifier.endswith(".js") else specifier


def _match_exports(exports: Any, key: str) -> Optional[str]:
    """Look up *key* (``"."`` or ``"./sub"``) in a package.json exports field."""
    if isinstance(exports, (str, list)) or (
        isinstance(exports, dict) and exports and not any(k.startswith(".") for k in exports)
    ):
        exports = {".": exports}
    if not isinstance(exports, dict):
        return None

    if key in exports:
        return _pick_condition(exports[key])

    for pattern, target in exports.items():
        if "*" not in pattern:
            continue
        prefix, _, suffix = pattern.partition("*")
        if key.startswith(prefix) and key.endswith(suffix) and len(key) >= len(prefix) + len(suffix):
            matched = key[len(prefix): len(key) - len(suffix)]
            picked = _pick_condition(target)
            if picked is not None:
                return picked.replace("*", matched)
    return None


def _pick_condition(target: Any) -> Optional[str]:
    if isinstance(target, str):
        return target
    if isinstance(target, list):
        for item in target:
            picked = _pick_condition(item)
            if picked is not None:
                return picked
        return None
    if isinstance(target, dict):
        for condition in ("import", "browser", "default"):
            if condition in target:
                return _pick_condition(target[condition])
    return None
