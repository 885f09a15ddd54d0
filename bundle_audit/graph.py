"""Module dependency graph and its builder.

The build runs in two phases:

1. **Parse** -- the discovery frontier is parsed wave by wave on a thread
   pool.  Only the coordinating thread touches the facts cache and the
   resolution cache.
2. **Assemble** -- a single thread walks modules depth-first from each bundle
   entry, following specifiers in source order, so module, edge and
   consumed-from ordering is reproducible regardless of how the pool
   scheduled the parses.

Once assembled the graph is frozen; analysis only ever reads it.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from .config_manager import AuditConfig
from .errors import GraphFrozenError, ParseError
from .models import UNRESOLVED, ImportEdge, ImportKind, ImportRef, Module, ModuleFacts
from .parser import SourceFrontEnd
from .resolver import ModuleResolver, Resolution, ResolutionFailure, ResolvedTarget, explicit_relative

logger = logging.getLogger(__name__)

FOLLOWED_KINDS = (ImportKind.STATIC, ImportKind.REEXPORT)


@dataclass(frozen=True)
class UnresolvedImport:
    importer: Path
    specifier: str
    kind: ImportKind
    reason: str
    line: int = 0


class ModuleGraph:
    """Directed import graph owned by a single audit run."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.modules: Dict[Path, Module] = {}
        self.edges: List[ImportEdge] = []
        self.bundle_entries: List[Path] = []
        self.unresolved: List[UnresolvedImport] = []
        self.external: Dict[Path, List[str]] = {}
        self._out: Dict[Path, List[ImportEdge]] = {}
        self._consumed_from: Dict[Path, List[Path]] = {}
        self._frozen = False

    # ------------------------------------------------------------------
    # Mutation (build phase only)
    # ------------------------------------------------------------------

    def _check_mutable(self) -> None:
        if self._frozen:
            raise GraphFrozenError("module graph is frozen; analysis may not mutate it")

    def add_module(self, module: Module) -> Module:
        self._check_mutable()
        existing = self.modules.get(module.path)
        if existing is not None:
            return existing
        self.modules[module.path] = module
        self._out[module.path] = []
        return module

    def add_edge(self, edge: ImportEdge) -> None:
        self._check_mutable()
        self.edges.append(edge)
        self._out.setdefault(edge.importer, []).append(edge)
        if edge.resolved:
            importers = self._consumed_from.setdefault(edge.target, [])  # type: ignore[arg-type]
            if edge.importer not in importers:
                importers.append(edge.importer)

    def add_bundle_entry(self, path: Path) -> bool:
        self._check_mutable()
        if path in self.bundle_entries:
            return False
        self.bundle_entries.append(path)
        return True

    def add_unresolved(self, record: UnresolvedImport) -> None:
        self._check_mutable()
        self.unresolved.append(record)

    def add_external(self, importer: Path, specifier: str) -> None:
        self._check_mutable()
        self.external.setdefault(importer, []).append(specifier)

    def freeze(self) -> "ModuleGraph":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def logical_id(self, path: Union[Path, str]) -> str:
        if path == UNRESOLVED:
            return UNRESOLVED
        return explicit_relative(self.root, Path(path))

    def out_edges(self, path: Path) -> List[ImportEdge]:
        return list(self._out.get(path, ()))

    def successors(self, path: Path, kinds: Iterable[ImportKind] = FOLLOWED_KINDS) -> Iterator[Path]:
        wanted = tuple(kinds)
        for edge in self._out.get(path, ()):
            if edge.kind in wanted and edge.resolved:
                yield edge.target  # type: ignore[misc]

    def consumed_from(self, path: Path) -> List[Path]:
        """Importers of *path* in first-discovery order."""
        return list(self._consumed_from.get(path, ()))


class GraphBuilder:
    """Build a :class:`ModuleGraph` from the main entry of an application."""

    def __init__(
        self,
        resolver: ModuleResolver,
        front_end: Optional[SourceFrontEnd] = None,
        audit_config: Optional[AuditConfig] = None,
    ) -> None:
        self.resolver = resolver
        self.front_end = front_end or SourceFrontEnd()
        self.config = audit_config or resolver.config
        self._facts: Dict[Path, Union[ModuleFacts, ParseError]] = {}
        self._resolutions: Dict[Tuple[Path, str, bool], Resolution] = {}

    # ------------------------------------------------------------------
    # Phase 1: parse
    # ------------------------------------------------------------------

    def _resolve(self, importer: Path, ref: ImportRef) -> Resolution:
        dynamic = ref.kind == ImportKind.DYNAMIC
        key = (importer, ref.specifier, dynamic)
        if key not in self._resolutions:
            self._resolutions[key] = self.resolver.resolve(importer, ref.specifier, dynamic=dynamic)
        return self._resolutions[key]

    def _parse_all(self, main_entry: Path) -> None:
        frontier: List[Path] = [main_entry]
        queued: Set[Path] = {main_entry}
        waves = 0
        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            while frontier:
                waves += 1
                futures = {pool.submit(self.front_end.extract_facts, path): path for path in frontier}
                for future in as_completed(futures):
                    path = futures[future]
                    try:
                        self._facts[path] = future.result()
                    except ParseError as exc:
                        logger.warning("Parse failed: %s", exc)
                        self._facts[path] = exc

                next_frontier: List[Path] = []
                for path in frontier:
                    facts = self._facts[path]
                    if isinstance(facts, ParseError):
                        continue
                    for ref in facts.imports:
                        target = self._resolve(path, ref)
                        if isinstance(target, ResolvedTarget) and target.path is not None:
                            if target.path not in queued:
                                queued.add(target.path)
                                next_frontier.append(target.path)
                frontier = next_frontier
        logger.info("Parsed %d module(s) in %d wave(s)", len(self._facts), waves)

    # ------------------------------------------------------------------
    # Phase 2: assemble
    # ------------------------------------------------------------------

    def build(self, main_entry: Path) -> ModuleGraph:
        main_entry = main_entry.resolve()
        self._parse_all(main_entry)

        graph = ModuleGraph(self.resolver.app.root)
        graph.add_bundle_entry(main_entry)
        visited: Set[Path] = set()

        index = 0
        while index < len(graph.bundle_entries):
            entry = graph.bundle_entries[index]
            index += 1
            if entry not in visited:
                self._walk_from(graph, entry, visited)

        logger.info(
            "Assembled graph: %d module(s), %d edge(s), %d bundle entr(ies), %d unresolved import(s)",
            len(graph.modules), len(graph.edges), len(graph.bundle_entries), len(graph.unresolved),
        )
        return graph

    def _visit(self, graph: ModuleGraph, path: Path) -> Tuple[ImportRef, ...]:
        facts = self._facts.get(path)
        module = Module(
            path=path,
            logical_id=graph.logical_id(path),
            package=self.resolver.owner_of(path),
        )
        if isinstance(facts, ParseError):
            module.parse_error = facts.reason if facts.line is None else f"{facts.reason} at line {facts.line}"
            graph.add_module(module)
            return ()
        module.facts = facts
        graph.add_module(module)
        logger.debug("Visiting %s", module.logical_id)
        return facts.imports if facts is not None else ()

    def _walk_from(self, graph: ModuleGraph, entry: Path, visited: Set[Path]) -> None:
        visited.add(entry)
        stack: List[Tuple[Path, Iterator[ImportRef]]] = [(entry, iter(self._visit(graph, entry)))]
        while stack:
            importer, pending = stack[-1]
            ref = next(pending, None)
            if ref is None:
                stack.pop()
                continue

            target = self._resolve(importer, ref)
            if isinstance(target, ResolutionFailure):
                graph.add_edge(ImportEdge(importer, ref.specifier, ref.kind, UNRESOLVED, ref.names))
                graph.add_unresolved(
                    UnresolvedImport(importer, ref.specifier, ref.kind, target.reason, ref.line)
                )
                continue
            if target.external or target.path is None:
                graph.add_external(importer, ref.specifier)
                continue

            graph.add_edge(ImportEdge(importer, ref.specifier, ref.kind, target.path, ref.names))
            if target.bundle_entry:
                if graph.add_bundle_entry(target.path):
                    logger.debug("New bundle entry %s", graph.logical_id(target.path))
                continue
            if target.path not in visited:
                visited.add(target.path)
                stack.append((target.path, iter(self._visit(graph, target.path))))
