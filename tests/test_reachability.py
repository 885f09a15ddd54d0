"""Tests for bundle partitioning, closures and artifact observation."""

from pathlib import Path

import pytest

from bundle_audit.config import DEFAULT_EXTENSIONS
from bundle_audit.graph import ModuleGraph
from bundle_audit.models import Bundle
from bundle_audit.reachability import (
    bundle_name_for,
    closure,
    compute_closures,
    list_artifact,
    observe_artifacts,
    partition,
)

from conftest import MAIN_BUNDLE_MODULES, PEOPLE_BUNDLE_MODULES, ship
from test_graph import build_graph


def test_partition_main_first(route_split_source: Path):
    graph = build_graph(route_split_source)
    bundles = partition(graph)
    assert [b.name for b in bundles] == ["main", "people"]
    assert graph.logical_id(bundles[1].entries[0]) == "./routes/people.js"


def test_closures_match_route_split(route_split_source: Path):
    graph = build_graph(route_split_source)
    closures = compute_closures(graph, partition(graph), workers=2)
    assert set(graph.logical_id(p) for p in closures["main"]) == set(MAIN_BUNDLE_MODULES)
    assert set(graph.logical_id(p) for p in closures["people"]) == set(PEOPLE_BUNDLE_MODULES)
    assert graph.logical_id(closures["main"][0]) == "./app.js"


def test_closure_follows_reexports(make_app):
    root = make_app({
        "app.js": 'export * from "./barrel.js";',
        "barrel.js": 'export { thing } from "./thing.js";',
        "thing.js": "export const thing = 1;",
    })
    graph = build_graph(root)
    assert [graph.logical_id(p) for p in closure(graph, graph.bundle_entries[:1])] == [
        "./app.js", "./barrel.js", "./thing.js",
    ]


def test_closure_with_cycle(make_app):
    root = make_app({
        "app.js": 'import "./a.js";',
        "a.js": 'import "./b.js";',
        "b.js": 'import "./a.js";',
    })
    graph = build_graph(root)
    assert len(closure(graph, graph.bundle_entries)) == 3


def test_shared_module_reached_by_two_bundles(make_app):
    root = make_app({
        "app.js": 'import "./shared.js";\nexport const lazy = () => import("./lazy.js");',
        "lazy.js": 'import "./shared.js";',
        "shared.js": "export default 1;",
    })
    graph = build_graph(root)
    closures = compute_closures(graph, partition(graph))
    assert root.resolve() / "shared.js" in closures["main"]
    assert root.resolve() / "shared.js" in closures["lazy"]


def test_compute_closures_requires_frozen_graph(temp_dir: Path):
    with pytest.raises(ValueError):
        compute_closures(ModuleGraph(temp_dir), [])


@pytest.mark.parametrize(
    "entry_id, taken, expected",
    [
        ("./routes/people.js", {"main"}, "people"),
        ("./routes/people.js", {"main", "people"}, "routes-people"),
        ("./routes/people.js", {"main", "people", "routes-people"}, "routes-people-2"),
        ("./templates/people.hbs", {"main"}, "people"),
        ("./main.js", {"main"}, "main-2"),
    ],
)
def test_bundle_name_for(entry_id, taken, expected):
    assert bundle_name_for(entry_id, taken) == expected


def test_list_artifact_uses_logical_ids(route_split_app: Path):
    found = list_artifact(route_split_app / "dist" / "main", DEFAULT_EXTENSIONS)
    assert sorted(found) == sorted(MAIN_BUNDLE_MODULES)


def test_observe_without_bundles_dir(route_split_source: Path):
    graph = build_graph(route_split_source)
    bundles = partition(graph)
    assert observe_artifacts(route_split_source / "dist", bundles, DEFAULT_EXTENSIONS) is None
    assert all(b.physical is None for b in bundles)


def test_observe_reports_orphans_and_missing_dirs(route_split_app: Path):
    (route_split_app / "dist" / "people").rename(route_split_app / "dist" / "stale")
    graph = build_graph(route_split_app)
    bundles = partition(graph)
    orphans = observe_artifacts(route_split_app / "dist", bundles, DEFAULT_EXTENSIONS)
    assert [o.name for o in orphans] == ["stale"]
    assert sorted(orphans[0].physical) == sorted(PEOPLE_BUNDLE_MODULES)
    people = [b for b in bundles if b.name == "people"][0]
    assert people.physical == {}


def test_observe_shipped_bundles(route_split_app: Path):
    graph = build_graph(route_split_app)
    bundles = partition(graph)
    assert observe_artifacts(route_split_app / "dist", bundles, DEFAULT_EXTENSIONS) == []
    assert isinstance(bundles[0], Bundle)
    assert sorted(bundles[1].physical) == sorted(PEOPLE_BUNDLE_MODULES)


def test_ship_helper_copies_files(temp_dir: Path):
    (temp_dir / "a.js").write_text("x")
    ship(temp_dir, "main", ["./a.js"])
    assert (temp_dir / "dist" / "main" / "a.js").read_text() == "x"
