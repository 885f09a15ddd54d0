"""Bundle partitioning and per-bundle reachability closures."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set

from . import config
from .graph import FOLLOWED_KINDS, ModuleGraph
from .models import Bundle
from .resolver import explicit_relative

logger = logging.getLogger(__name__)


def closure(graph: ModuleGraph, entries: Sequence[Path]) -> List[Path]:
    """Modules reachable from *entries* over static and re-export edges.

    Dynamic edges end the walk: their targets seed other bundles.  Traversal
    is iterative depth-first with a visited set, so cycles of any length
    terminate and ordering follows source order.
    """
    order: List[Path] = []
    seen: Set[Path] = set()
    for entry in entries:
        if entry in seen:
            continue
        seen.add(entry)
        stack = [entry]
        while stack:
            current = stack.pop()
            order.append(current)
            successors = [s for s in graph.successors(current, FOLLOWED_KINDS) if s not in seen]
            for succ in reversed(successors):
                if succ not in seen:
                    seen.add(succ)
                    stack.append(succ)
    return order


def bundle_name_for(entry_id: str, taken: Set[str]) -> str:
    """``./routes/people.js`` -> ``people``; falls back to the dashed path on clashes."""
    stripped = entry_id[2:] if entry_id.startswith("./") else entry_id
    filename = stripped.rsplit("/", 1)[-1]
    stem = filename.split(".", 1)[0] or filename
    if stem not in taken:
        return stem
    without_ext = stripped[: len(stripped) - len(filename)] + stem
    candidate = without_ext.replace("/", "-")
    suffix = 2
    unique = candidate
    while unique in taken:
        unique = f"{candidate}-{suffix}"
        suffix += 1
    return unique


def partition(graph: ModuleGraph) -> List[Bundle]:
    """One bundle per entry: the main entry first, then each dynamic-import root."""
    if not graph.bundle_entries:
        return []
    bundles = [Bundle(name=config.MAIN_BUNDLE, entries=[graph.bundle_entries[0]])]
    taken = {config.MAIN_BUNDLE}
    for entry in graph.bundle_entries[1:]:
        name = bundle_name_for(graph.logical_id(entry), taken)
        taken.add(name)
        bundles.append(Bundle(name=name, entries=[entry]))
    return bundles


def compute_closures(graph: ModuleGraph, bundles: Sequence[Bundle], workers: int = 1) -> Dict[str, List[Path]]:
    """Closure for every bundle, computed in parallel over a frozen graph."""
    if not graph.frozen:
        raise ValueError("reachability requires a frozen graph")
    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        results = list(pool.map(lambda b: closure(graph, b.entries), bundles))
    return {bundle.name: result for bundle, result in zip(bundles, results)}


def list_artifact(directory: Path, extensions: Sequence[str]) -> Dict[str, Path]:
    """Logical id -> file for every module file physically under *directory*."""
    found: Dict[str, Path] = {}
    for path in sorted(directory.rglob("*")):
        if path.is_file() and path.name.endswith(tuple(extensions)):
            found[explicit_relative(directory, path)] = path
    return found


def observe_artifacts(
    bundles_root: Path,
    bundles: List[Bundle],
    extensions: Sequence[str],
) -> Optional[List[Bundle]]:
    """Attach the physical module set of each bundle from ``<bundles_root>/<name>/``.

    Returns bundles found on disk that no entry accounts for, or ``None`` when
    there is no bundles directory at all (physical checks are then skipped).
    """
    if not bundles_root.is_dir():
        logger.info("No bundle artifacts at %s; skipping physical bundle checks", bundles_root)
        return None

    known = {b.name for b in bundles}
    for bundle in bundles:
        directory = bundles_root / bundle.name
        bundle.artifact_dir = directory
        bundle.physical = list_artifact(directory, extensions) if directory.is_dir() else {}
        if not directory.is_dir():
            logger.warning("Bundle '%s' has no artifact directory at %s", bundle.name, directory)

    orphans: List[Bundle] = []
    for directory in _bundle_dirs(bundles_root, known):
        name = directory.relative_to(bundles_root).as_posix()
        logger.warning("Artifact directory %s does not correspond to any bundle entry", directory)
        orphans.append(
            Bundle(name=name, entries=[], physical=list_artifact(directory, extensions), artifact_dir=directory)
        )
    return orphans


def _bundle_dirs(bundles_root: Path, known: Set[str]) -> List[Path]:
    return sorted(
        child for child in bundles_root.iterdir()
        if child.is_dir() and child.name not in known
    )
