"""Discovery of the application and the packages it depends on."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from .errors import ConfigurationError
from .models import Package

logger = logging.getLogger(__name__)

MANIFEST = "package.json"


def read_manifest(path: Path) -> Dict[str, Any]:
    """Read a package.json file into a dict, raising ``ValueError`` when invalid."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("manifest is not a JSON object")
    return payload


def split_package_name(specifier: str) -> Tuple[str, str]:
    """Split ``@scope/name/sub/path`` into ``("@scope/name", "sub/path")``."""
    parts = specifier.split("/")
    if specifier.startswith("@") and len(parts) >= 2:
        return "/".join(parts[:2]), "/".join(parts[2:])
    return parts[0], "/".join(parts[1:])


def _str_map(value: Any) -> Dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if isinstance(v, str)}


def _ember_meta(manifest: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    meta = manifest.get("ember-addon")
    if isinstance(meta, dict):
        return meta
    keywords = manifest.get("keywords")
    if isinstance(keywords, list) and "ember-addon" in keywords:
        return {}
    return None


def package_from_manifest(root: Path, manifest: Dict[str, Any], kind: str) -> Package:
    meta = _ember_meta(manifest)
    deps = list(manifest.get("dependencies") or {})
    if kind == "app":
        deps += [d for d in (manifest.get("devDependencies") or {}) if d not in deps]

    addon_version: Optional[int] = None
    if meta is not None:
        version = meta.get("version", 1)
        addon_version = version if isinstance(version, int) else 1

    meta = meta or {}
    main = meta.get("main") if kind == "app" else None
    main = main or manifest.get("main")
    return Package(
        name=str(manifest.get("name", root.name)),
        root=root,
        kind=kind,
        addon_version=addon_version,
        main=main if isinstance(main, str) else None,
        module=manifest.get("module") if isinstance(manifest.get("module"), str) else None,
        exports=manifest.get("exports"),
        public_assets=_str_map(meta.get("public-assets")),
        app_js=_str_map(meta.get("app-js")),
        renamed_packages=_str_map(meta.get("renamed-packages")),
        renamed_modules=_str_map(meta.get("renamed-modules")),
        dependencies=tuple(str(d) for d in deps),
    )


class PackageLocator:
    """Enumerate every package participating in a build output.

    The application comes first, followed by its dependencies in depth-first
    declaration order.  Each dependency is found the way Node does it: in the
    depending package's ``node_modules`` and then in each ancestor's, never
    looking above the output root.
    """

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()

    def locate(self) -> List[Package]:
        app = self._load_app()
        packages: List[Package] = [app]
        seen: Set[Path] = {app.root}

        stack: List[Tuple[Package, Iterator[str]]] = [(app, iter(app.dependencies))]
        while stack:
            owner, pending = stack[-1]
            dep = next(pending, None)
            if dep is None:
                stack.pop()
                continue
            dep_root = self.find_package_root(owner.root, dep)
            if dep_root is None:
                logger.debug("Dependency '%s' of %s not present in output", dep, owner.name)
                continue
            if dep_root in seen:
                continue
            seen.add(dep_root)
            try:
                manifest = read_manifest(dep_root / MANIFEST)
            except (OSError, ValueError) as exc:
                logger.warning("Skipping package at %s: unreadable manifest (%s)", dep_root, exc)
                continue
            pkg = package_from_manifest(dep_root, manifest, kind="addon")
            packages.append(pkg)
            stack.append((pkg, iter(pkg.dependencies)))

        logger.info(
            "Located %d package(s) under %s (%d ember addon(s))",
            len(packages), self.root, sum(1 for p in packages[1:] if p.is_ember_addon),
        )
        return packages

    def _load_app(self) -> Package:
        manifest_path = self.root / MANIFEST
        if not manifest_path.is_file():
            raise ConfigurationError(f"{self.root} has no {MANIFEST}; not a finalized build output")
        try:
            manifest = read_manifest(manifest_path)
        except (OSError, ValueError) as exc:
            raise ConfigurationError(f"Cannot read application manifest {manifest_path}: {exc}") from exc

        meta = _ember_meta(manifest) or {}
        if meta.get("type") != "app":
            raise ConfigurationError(
                f"{manifest_path} does not declare an application (ember-addon.type must be \"app\")"
            )
        if not isinstance(manifest.get("name"), str) or not manifest["name"]:
            raise ConfigurationError(f"{manifest_path} has no package name")
        return package_from_manifest(self.root, manifest, kind="app")

    def _ancestors(self, start: Path) -> Iterator[Path]:
        current = start
        while True:
            yield current
            if current == self.root or current.parent == current:
                return
            if self.root not in current.parents:
                return
            current = current.parent

    def find_package_root(self, from_dir: Path, name: str) -> Optional[Path]:
        """Return the resolved root of package *name* as seen from *from_dir*."""
        for directory in self._ancestors(from_dir):
            if directory.name == "node_modules":
                continue
            candidate = directory / "node_modules" / name
            if (candidate / MANIFEST).is_file():
                return candidate.resolve()
        return None
