"""Audit run: locate, resolve, build, analyze, report."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from . import config
from .config_manager import AuditConfig, load_config
from .detector import IssueDetector
from .errors import ConfigurationError
from .graph import GraphBuilder, ModuleGraph
from .models import UNRESOLVED, AuditResult, Bundle, KnownExports, ModuleRecord
from .packages import PackageLocator
from .parser import SourceFrontEnd
from .reachability import compute_closures, observe_artifacts, partition
from .resolver import ModuleResolver

logger = logging.getLogger(__name__)


class Audit:
    """One audit of one finalized build output.

    All state (packages, graph, closures) lives on the instance, so repeated
    or concurrent audits never share caches.
    """

    def __init__(self, output_root: Union[str, Path], audit_config: Optional[AuditConfig] = None) -> None:
        self.output_root = Path(output_root)
        self._config = audit_config
        self.graph: Optional[ModuleGraph] = None
        self.bundles: List[Bundle] = []
        self.result: Optional[AuditResult] = None

    def run(self) -> AuditResult:
        root = self.output_root.expanduser()
        if not root.is_dir():
            raise ConfigurationError(f"{root} is not a directory")
        root = root.resolve()
        audit_config = self._config or load_config(root)

        packages = PackageLocator(root).locate()
        resolver = ModuleResolver(packages, audit_config)
        for name, providers in resolver.app_js_conflicts().items():
            logger.warning("'%s' is provided by several addons %s; the last one wins", name, providers)

        app = packages[0]
        main_spec = app.main or config.DEFAULT_MAIN
        main_entry = resolver.probe(app.root / main_spec)
        if main_entry is None:
            raise ConfigurationError(f"Application entry '{main_spec}' not found under {root}")

        graph = GraphBuilder(resolver, SourceFrontEnd(), audit_config).build(main_entry)
        graph.freeze()
        self.graph = graph

        bundles = partition(graph)
        closures = compute_closures(graph, bundles, audit_config.workers)
        orphans = observe_artifacts(root / audit_config.bundles_dir, bundles, audit_config.extensions)
        self.bundles = bundles + (orphans or [])

        findings = IssueDetector(graph, self.bundles, closures, packages).detect()
        result = AuditResult(
            findings=findings,
            modules=self._module_records(graph, self.bundles, closures),
            bundles={name: [graph.logical_id(p) for p in paths] for name, paths in closures.items()},
        )
        logger.info(
            "Audit of %s finished: %d module(s), %d bundle(s), %d finding(s)",
            root, len(result.modules), len(bundles), len(findings),
        )
        self.result = result
        return result

    @staticmethod
    def _module_records(
        graph: ModuleGraph,
        bundles: List[Bundle],
        closures: Dict[str, List[Path]],
    ) -> Dict[str, ModuleRecord]:
        reached_in: Dict[Path, List[str]] = {}
        for bundle in bundles:
            for path in closures.get(bundle.name, []):
                reached_in.setdefault(path, []).append(bundle.name)

        records: Dict[str, ModuleRecord] = {}
        for path, module in graph.modules.items():
            facts = module.facts
            imports = []
            for edge in graph.out_edges(path):
                resolved = UNRESOLVED if not edge.resolved else graph.logical_id(edge.target)
                imports.append({"specifier": edge.specifier, "kind": edge.kind.value, "resolved": resolved})
            exports = None
            if facts is not None and isinstance(facts.exports, KnownExports):
                exports = list(facts.exports.names)
            records[module.logical_id] = ModuleRecord(
                consumed_from=[graph.logical_id(p) for p in graph.consumed_from(path)],
                bundles=reached_in.get(path, []),
                imports=imports,
                exports=exports,
            )

        for bundle in bundles:
            for module_id in (bundle.physical or {}):
                records.setdefault(module_id, ModuleRecord()).shipped_in.append(bundle.name)
        return records


def run(output_root: Union[str, Path], audit_config: Optional[AuditConfig] = None) -> AuditResult:
    """Audit the build output at *output_root*."""
    return Audit(output_root, audit_config).run()
