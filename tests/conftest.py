"""Pytest configuration and fixtures for bundle-audit tests."""

import json
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, Iterable, Optional

import pytest

MAIN_BUNDLE_MODULES = [
    "./app.js",
    "./components/welcome.js",
    "./controllers/index.js",
    "./routes/index.js",
    "./templates/index.hbs",
]

PEOPLE_BUNDLE_MODULES = [
    "./routes/people.js",
    "./templates/people.hbs",
    "./templates/people/index.hbs",
    "./components/all-people.js",
    "./routes/people/show.js",
    "./templates/people/show.hbs",
    "./components/one-person.js",
    "./components/one-person.hbs",
    "./helpers/capitalize.js",
    "./templates/people/edit.hbs",
    "./modifiers/auto-focus.js",
]


def write_tree(root: Path, files: Dict[str, str]) -> None:
    """Write ``{"dir/file.js": "source"}`` under *root*."""
    for rel, content in files.items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")


def ship(root: Path, bundle: str, module_ids: Iterable[str], bundles_dir: str = "dist") -> None:
    """Copy modules into ``<root>/dist/<bundle>/`` the way a bundler would."""
    out = root / bundles_dir / bundle
    out.mkdir(parents=True, exist_ok=True)
    for module_id in module_ids:
        rel = module_id[2:] if module_id.startswith("./") else module_id
        dest = out / rel
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(root / rel, dest)


def app_manifest(name: str = "my-app", **extra) -> str:
    manifest = {"name": name, "main": "./app.js", "ember-addon": {"version": 2, "type": "app"}}
    meta = extra.pop("ember_addon", None)
    if meta:
        manifest["ember-addon"].update(meta)
    manifest.update(extra)
    return json.dumps(manifest, indent=2)


def addon_manifest(name: str, version: int = 2, **extra) -> str:
    manifest = {"name": name, "keywords": ["ember-addon"], "ember-addon": {"version": version}}
    meta = extra.pop("ember_addon", None)
    if meta:
        manifest["ember-addon"].update(meta)
    manifest.update(extra)
    return json.dumps(manifest, indent=2)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def route_split_source() -> Path:
    """Path to the static route-split application (no bundle artifacts)."""
    return Path(__file__).parent / "fixtures" / "route_split_app"


@pytest.fixture
def route_split_app(temp_dir: Path, route_split_source: Path) -> Path:
    """A copy of the route-split app with correctly partitioned bundle artifacts."""
    root = temp_dir / "my-app"
    shutil.copytree(route_split_source, root)
    ship(root, "main", MAIN_BUNDLE_MODULES)
    ship(root, "people", PEOPLE_BUNDLE_MODULES)
    return root


@pytest.fixture
def make_app(temp_dir: Path) -> Callable[..., Path]:
    """Factory writing a small application into a fresh directory."""
    counter = {"n": 0}

    def _make(files: Dict[str, str], manifest: Optional[str] = None, name: str = "my-app") -> Path:
        counter["n"] += 1
        root = temp_dir / f"app{counter['n']}"
        root.mkdir(parents=True)
        (root / "package.json").write_text(manifest or app_manifest(name), encoding="utf-8")
        write_tree(root, files)
        return root

    return _make
