"""Structural rules evaluated over a frozen graph and its bundle closures."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Sequence, Set

from .graph import ModuleGraph
from .models import Bundle, Finding, FindingKind, ImportKind, KnownExports, Package

logger = logging.getLogger(__name__)


class IssueDetector:
    """Evaluate the fixed rule set and return findings in a stable order."""

    def __init__(
        self,
        graph: ModuleGraph,
        bundles: Sequence[Bundle],
        closures: Dict[str, List[Path]],
        packages: Sequence[Package],
    ) -> None:
        self.graph = graph
        self.bundles = list(bundles)
        self.closures = closures
        self.packages = list(packages)
        self._export_cache: Dict[Path, Optional[FrozenSet[str]]] = {}

    def detect(self) -> List[Finding]:
        findings: List[Finding] = []
        findings.extend(self.parse_errors())
        findings.extend(self.unresolved_imports())
        findings.extend(self.bundle_mismatches())
        findings.extend(self.cross_bundle_duplicates())
        findings.extend(self.broken_public_assets())
        findings.extend(self.missing_exports())
        logger.info("Detector produced %d finding(s)", len(findings))
        return findings

    # ------------------------------------------------------------------
    # Graph-level rules
    # ------------------------------------------------------------------

    def parse_errors(self) -> List[Finding]:
        return [
            Finding(
                FindingKind.PARSE_ERROR,
                (module.logical_id,),
                f"{module.logical_id} could not be parsed: {module.parse_error}",
            )
            for module in self.graph.modules.values()
            if module.parse_error is not None
        ]

    def unresolved_imports(self) -> List[Finding]:
        findings = []
        for record in self.graph.unresolved:
            importer = self.graph.logical_id(record.importer)
            findings.append(Finding(
                FindingKind.UNRESOLVED_IMPORT,
                (importer,),
                f"{importer} imports '{record.specifier}' which cannot be resolved ({record.reason})",
            ))
        return findings

    # ------------------------------------------------------------------
    # Bundle rules
    # ------------------------------------------------------------------

    def bundle_mismatches(self) -> List[Finding]:
        findings: List[Finding] = []
        for bundle in self.bundles:
            if bundle.physical is None:
                continue
            reachable = [self.graph.logical_id(p) for p in self.closures.get(bundle.name, [])]
            reachable_set = set(reachable)
            for module_id in bundle.physical:
                if module_id not in reachable_set:
                    findings.append(Finding(
                        FindingKind.UNREACHABLE_IN_BUNDLE,
                        (module_id,),
                        f"{module_id} is shipped in bundle '{bundle.name}' but is not reachable from its entries",
                        bundle=bundle.name,
                    ))
            for module_id in reachable:
                if module_id not in bundle.physical:
                    findings.append(Finding(
                        FindingKind.MISSING_FROM_BUNDLE,
                        (module_id,),
                        f"{module_id} is reachable in bundle '{bundle.name}' but absent from its output",
                        bundle=bundle.name,
                    ))
        return findings

    def cross_bundle_duplicates(self) -> List[Finding]:
        findings: List[Finding] = []
        reached_by: Dict[str, List[Bundle]] = {}
        for bundle in self.bundles:
            if bundle.physical is None:
                continue
            for path in self.closures.get(bundle.name, []):
                module_id = self.graph.logical_id(path)
                if module_id in bundle.physical:
                    reached_by.setdefault(module_id, []).append(bundle)

        for module_id in (m.logical_id for m in self.graph.modules.values()):
            holders = reached_by.get(module_id, [])
            if len(holders) < 2:
                continue
            digests = {b.name: _digest(b.physical[module_id]) for b in holders}  # type: ignore[index]
            if len(set(digests.values())) > 1:
                names = ", ".join(f"'{b.name}'" for b in holders)
                findings.append(Finding(
                    FindingKind.CROSS_BUNDLE_DUPLICATE,
                    (module_id,),
                    f"{module_id} ships with differing content in bundles {names}",
                ))
        return findings

    # ------------------------------------------------------------------
    # Package rules
    # ------------------------------------------------------------------

    def broken_public_assets(self) -> List[Finding]:
        findings: List[Finding] = []
        for pkg in self.packages:
            for name, destination in pkg.public_assets.items():
                source = Path(name) if Path(name).is_absolute() else pkg.root / name
                if source.is_file():
                    continue
                findings.append(Finding(
                    FindingKind.BROKEN_PUBLIC_ASSET,
                    (self.graph.logical_id(source),),
                    f"{pkg.name} declares public asset '{name}' -> '{destination}' but the file is missing",
                ))
        return findings

    # ------------------------------------------------------------------
    # Export-level rule
    # ------------------------------------------------------------------

    def missing_exports(self) -> List[Finding]:
        findings: List[Finding] = []
        for edge in self.graph.edges:
            if not edge.resolved or edge.kind == ImportKind.DYNAMIC:
                continue
            wanted = [n for n in edge.names if n != "*"]
            if not wanted:
                continue
            available = self.effective_exports(edge.target)  # type: ignore[arg-type]
            if available is None:
                continue
            importer = self.graph.logical_id(edge.importer)
            target = self.graph.logical_id(edge.target)
            for name in wanted:
                if name not in available:
                    findings.append(Finding(
                        FindingKind.MISSING_EXPORT,
                        (importer, target),
                        f"{importer} imports '{name}' from {target}, which does not export it",
                    ))
        return findings

    def effective_exports(self, path: Path, _visiting: Optional[Set[Path]] = None) -> Optional[FrozenSet[str]]:
        """Names *path* exports including ``export *`` re-exports, or None if unknowable."""
        if path in self._export_cache:
            return self._export_cache[path]
        visiting = _visiting if _visiting is not None else set()
        if path in visiting:
            return frozenset()
        module = self.graph.modules.get(path)
        if module is None or module.facts is None or not isinstance(module.facts.exports, KnownExports):
            return None

        visiting.add(path)
        names: Set[str] = set(module.facts.exports.names)
        result: Optional[FrozenSet[str]] = None
        for edge in self.graph.out_edges(path):
            if edge.kind != ImportKind.REEXPORT or edge.names != ("*",):
                continue
            if not edge.resolved:
                break
            inner = self.effective_exports(edge.target, visiting)  # type: ignore[arg-type]
            if inner is None:
                break
            names.update(n for n in inner if n != "default")
        else:
            result = frozenset(names)
        visiting.discard(path)
        if _visiting is None or result is None:
            self._export_cache[path] = result
        return result


def _digest(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()
