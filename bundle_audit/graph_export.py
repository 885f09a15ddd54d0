"""Graph export helpers: Graphviz DOT of an audited module graph."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List

from .audit import Audit
from .models import UNRESOLVED


def export_dot(audit: Audit, output_file: Path, focus: str = "") -> None:
    """Write the module graph of a completed *audit*, clustered by bundle."""
    graph = audit.graph
    if graph is None:
        raise ValueError("audit has not been run")

    node_ids = [m.logical_id for m in graph.modules.values()]
    edges = [
        {
            "src": graph.logical_id(e.importer),
            "dst": graph.logical_id(e.target),
            "kind": e.kind.value,
        }
        for e in graph.edges
    ]
    selected = _focused_subgraph(node_ids, edges, focus)
    chosen = set(selected["nodes"])

    lines = ["digraph ModuleGraph {"]
    lines.append("  rankdir=LR;")

    placed = set()
    for index, bundle in enumerate(audit.bundles):
        entry_ids = {graph.logical_id(p) for p in bundle.entries}
        members = [
            m.logical_id for m in graph.modules.values()
            if m.logical_id in chosen and m.logical_id not in placed
            and (m.logical_id in entry_ids or bundle.name in _bundles_of(audit, m.logical_id))
        ]
        if not members:
            continue
        lines.append(f"  subgraph cluster_{index} {{")
        lines.append(f'    label="{_esc(bundle.name)}";')
        for module_id in members:
            shape = "box" if module_id in entry_ids else "ellipse"
            lines.append(f'    "{_esc(module_id)}" [shape={shape}];')
            placed.add(module_id)
        lines.append("  }")

    for module_id in selected["nodes"]:
        if module_id not in placed:
            lines.append(f'  "{_esc(module_id)}";')

    has_unresolved = False
    for edge in selected["edges"]:
        style = {"dynamic": "dashed", "re-export": "dotted"}.get(edge["kind"], "solid")
        if edge["dst"] == UNRESOLVED:
            has_unresolved = True
        lines.append(
            f'  "{_esc(edge["src"])}" -> "{_esc(edge["dst"])}" [style={style}];'
        )
    if has_unresolved:
        lines.append(f'  "{UNRESOLVED}" [shape=octagon, color=red];')

    lines.append("}")
    output_file.write_text("\n".join(lines), encoding="utf-8")


def _bundles_of(audit: Audit, module_id: str) -> List[str]:
    if audit.result is None:
        return []
    record = audit.result.modules.get(module_id)
    return record.bundles if record is not None else []


def _focused_subgraph(nodes: List[str], edges: List[dict], focus: str) -> Dict[str, List]:
    if not focus:
        return {"nodes": list(nodes), "edges": edges}

    focus_ids = {node_id for node_id in nodes if focus in node_id}
    if not focus_ids:
        return {"nodes": list(nodes), "edges": edges}

    edge_subset = [e for e in edges if e["src"] in focus_ids or e["dst"] in focus_ids]
    node_subset = set(focus_ids)
    for e in edge_subset:
        if e["src"] in nodes:
            node_subset.add(e["src"])
        if e["dst"] in nodes:
            node_subset.add(e["dst"])
    return {"nodes": sorted(node_subset), "edges": edge_subset}


def _esc(text: str) -> str:
    return text.replace('"', '\\"')
