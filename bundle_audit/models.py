"""Core data models shared by resolution, graph building and reporting."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

UNRESOLVED = "<unresolved>"


@dataclass(frozen=True)
class Package:
    name: str
    root: Path
    kind: str  # "app" | "addon"
    addon_version: Optional[int] = None
    main: Optional[str] = None
    module: Optional[str] = None
    exports: Any = field(default=None, hash=False, compare=False)
    public_assets: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    app_js: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    renamed_packages: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    renamed_modules: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    dependencies: Tuple[str, ...] = ()

    @property
    def is_app(self) -> bool:
        return self.kind == "app"

    @property
    def is_ember_addon(self) -> bool:
        return self.addon_version is not None


class ImportKind(str, Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"
    REEXPORT = "re-export"


@dataclass(frozen=True)
class ImportRef:
    specifier: str
    kind: ImportKind
    names: Tuple[str, ...] = ()
    line: int = 0


@dataclass(frozen=True)
class KnownExports:
    names: Tuple[str, ...] = ()


@dataclass(frozen=True)
class OpaqueExports:
    pass


ExportShape = Union[KnownExports, OpaqueExports]


@dataclass(frozen=True)
class ModuleFacts:
    path: Path
    format: str  # "esm" | "cjs" | "script" | "json"
    imports: Tuple[ImportRef, ...] = ()
    exports: ExportShape = field(default_factory=KnownExports)

    @property
    def is_opaque(self) -> bool:
        return isinstance(self.exports, OpaqueExports)


@dataclass
class Module:
    path: Path
    logical_id: str
    package: Optional[Package]
    facts: Optional[ModuleFacts] = None
    parse_error: Optional[str] = None


@dataclass(frozen=True)
class ImportEdge:
    importer: Path
    specifier: str
    kind: ImportKind
    target: Union[Path, str]  # resolved path, or UNRESOLVED
    names: Tuple[str, ...] = ()

    @property
    def resolved(self) -> bool:
        return self.target != UNRESOLVED


@dataclass
class Bundle:
    name: str
    entries: List[Path]
    physical: Optional[Dict[str, Path]] = None  # logical id -> file inside the artifact
    artifact_dir: Optional[Path] = None


class FindingKind(str, Enum):
    UNRESOLVED_IMPORT = "unresolved-import"
    PARSE_ERROR = "parse-error"
    UNREACHABLE_IN_BUNDLE = "unreachable-in-bundle"
    MISSING_FROM_BUNDLE = "missing-from-bundle"
    CROSS_BUNDLE_DUPLICATE = "cross-bundle-duplicate"
    BROKEN_PUBLIC_ASSET = "broken-public-asset"
    MISSING_EXPORT = "missing-export"


@dataclass(frozen=True)
class Finding:
    kind: FindingKind
    modules: Tuple[str, ...]
    message: str
    bundle: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "kind": self.kind.value,
            "modules": list(self.modules),
            "message": self.message,
        }
        if self.bundle is not None:
            payload["bundle"] = self.bundle
        return payload

    def __str__(self) -> str:
        where = f" [{self.bundle}]" if self.bundle else ""
        return f"{self.kind.value}{where}: {self.message}"


@dataclass
class ModuleRecord:
    consumed_from: List[str] = field(default_factory=list)
    bundles: List[str] = field(default_factory=list)  # bundles whose closure reaches the module
    shipped_in: List[str] = field(default_factory=list)  # bundles physically containing it
    imports: List[Dict[str, str]] = field(default_factory=list)
    exports: Optional[List[str]] = None  # None when the shape is opaque

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consumedFrom": list(self.consumed_from),
            "bundles": list(self.bundles),
            "shippedIn": list(self.shipped_in),
            "imports": [dict(i) for i in self.imports],
            "exports": None if self.exports is None else list(self.exports),
        }


@dataclass
class AuditResult:
    findings: List[Finding] = field(default_factory=list)
    modules: Dict[str, ModuleRecord] = field(default_factory=dict)
    bundles: Dict[str, List[str]] = field(default_factory=dict)  # bundle -> closure, traversal order

    @property
    def ok(self) -> bool:
        return not self.findings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "findings": [f.to_dict() for f in self.findings],
            "modules": {k: v.to_dict() for k, v in self.modules.items()},
            "bundles": {k: list(v) for k, v in self.bundles.items()},
        }
