"""Tests for import specifier resolution."""

import json
from pathlib import Path

import pytest

from bundle_audit.packages import PackageLocator
from bundle_audit.resolver import (
    ModuleResolver,
    ResolutionFailure,
    ResolvedTarget,
    explicit_relative,
    is_runtime_module,
)

from conftest import addon_manifest, app_manifest


def resolver_for(root: Path) -> ModuleResolver:
    return ModuleResolver(PackageLocator(root).locate())


@pytest.fixture
def app_with_addons(make_app) -> Path:
    return make_app(
        {
            "app.js": "",
            "components/welcome.js": "",
            "components/list/index.js": "",
            "templates/index.hbs": "",
            "node_modules/my-addon/package.json": addon_manifest(
                "my-addon",
                main="./index.js",
                ember_addon={"app-js": {"./components/greeting.js": "./_app_/components/greeting.js"}},
            ),
            "node_modules/my-addon/index.js": "",
            "node_modules/my-addon/_app_/components/greeting.js": "",
            "node_modules/other-addon/package.json": addon_manifest(
                "other-addon",
                ember_addon={"app-js": {"./components/greeting.js": "./_app_/components/greeting.js"}},
            ),
            "node_modules/other-addon/_app_/components/greeting.js": "",
            "node_modules/other-addon/index.js": "",
            "node_modules/exported/package.json": json.dumps({
                "name": "exported",
                "exports": {
                    ".": {"import": "./esm/index.js", "require": "./cjs/index.js"},
                    "./feature": "./esm/feature.js",
                    "./utils/*": "./esm/utils/*.js",
                },
            }),
            "node_modules/exported/esm/index.js": "",
            "node_modules/exported/esm/feature.js": "",
            "node_modules/exported/esm/utils/strings.js": "",
            "node_modules/exported/esm/hidden.js": "",
            "node_modules/third-party/package.json": json.dumps({"name": "third-party", "main": "third-party.js"}),
            "node_modules/third-party/third-party.js": "",
            "node_modules/new-name/package.json": addon_manifest("new-name"),
            "node_modules/new-name/index.js": "",
        },
        manifest=app_manifest(
            dependencies={"my-addon": "*", "other-addon": "*", "exported": "*", "third-party": "*", "new-name": "*"},
            ember_addon={"renamed-packages": {"old-name": "new-name"}},
        ),
    )


def test_relative_with_extension_probing(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "app.js"
    target = resolver.resolve(importer, "./components/welcome")
    assert isinstance(target, ResolvedTarget)
    assert target.path == importer.parent / "components" / "welcome.js"
    assert target.package.name == "my-app"
    assert not target.bundle_entry


def test_relative_directory_index(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "app.js"
    target = resolver.resolve(importer, "./components/list")
    assert target.path.name == "index.js"


def test_template_extension(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "app.js"
    assert resolver.resolve(importer, "./templates/index").path.suffix == ".hbs"


def test_relative_failure_is_a_value(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "app.js"
    failure = resolver.resolve(importer, "./components/nope")
    assert isinstance(failure, ResolutionFailure)
    assert failure.importer == importer
    assert failure.specifier == "./components/nope"


def test_self_reference_by_package_name(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "app.js"
    target = resolver.resolve(importer, "my-app/components/welcome")
    assert target.path == importer.parent / "components" / "welcome.js"


def test_bare_package_main(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "app.js"
    target = resolver.resolve(importer, "third-party")
    assert target.path.name == "third-party.js"
    assert target.package.name == "third-party"
    assert target.via == "package"


def test_exports_map(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "app.js"
    assert resolver.resolve(importer, "exported").path.as_posix().endswith("esm/index.js")
    assert resolver.resolve(importer, "exported/feature").path.name == "feature.js"
    assert resolver.resolve(importer, "exported/utils/strings").path.name == "strings.js"
    # not exported: the exports map seals the package
    assert isinstance(resolver.resolve(importer, "exported/esm/hidden.js"), ResolutionFailure)


def test_missing_package_reason(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "app.js"
    failure = resolver.resolve(importer, "not-installed/thing")
    assert isinstance(failure, ResolutionFailure)
    assert "not-installed" in failure.reason


def test_runtime_modules_are_external(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "app.js"
    for spec in ("@ember/component", "@glimmer/tracking", "ember", "rsvp"):
        target = resolver.resolve(importer, spec)
        assert isinstance(target, ResolvedTarget)
        assert target.external
        assert target.path is None


def test_dynamic_resolution_is_tagged_bundle_entry(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "app.js"
    static = resolver.resolve(importer, "./components/welcome.js")
    dynamic = resolver.resolve(importer, "./components/welcome.js", dynamic=True)
    assert static.path == dynamic.path
    assert dynamic.bundle_entry and not static.bundle_entry


def test_app_js_merge_last_addon_wins(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "app.js"
    target = resolver.resolve(importer, "my-app/components/greeting")
    assert isinstance(target, ResolvedTarget)
    assert target.via == "app-js"
    assert target.package.name == "other-addon"
    assert resolver.app_js_conflicts() == {"./components/greeting.js": ["my-addon", "other-addon"]}


def test_app_file_beats_merged_addon_file(app_with_addons: Path):
    (app_with_addons / "components" / "greeting.js").write_text("")
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "app.js"
    target = resolver.resolve(importer, "my-app/components/greeting")
    assert target.package.name == "my-app"


def test_renamed_package(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "app.js"
    target = resolver.resolve(importer, "old-name")
    assert isinstance(target, ResolvedTarget)
    assert target.via == "renamed-package"
    assert target.package.name == "new-name"


def test_renamed_module(make_app):
    root = make_app(
        {
            "app.js": "",
            "node_modules/real-addon/package.json": addon_manifest("real-addon"),
            "node_modules/real-addon/thing.js": "",
        },
        manifest=app_manifest(
            dependencies={"real-addon": "*"},
            ember_addon={"renamed-modules": {"ghost-addon/thing.js": "real-addon/thing.js"}},
        ),
    )
    resolver = resolver_for(root)
    target = resolver.resolve(root.resolve() / "app.js", "ghost-addon/thing")
    assert isinstance(target, ResolvedTarget)
    assert target.via == "renamed-module"
    assert target.path.name == "thing.js"


def test_nested_node_modules_win(make_app):
    root = make_app(
        {
            "app.js": "",
            "node_modules/lib/package.json": json.dumps({"name": "lib", "version": "2.0.0"}),
            "node_modules/lib/index.js": "",
            "node_modules/addon/package.json": addon_manifest("addon", dependencies={"lib": "*"}),
            "node_modules/addon/index.js": "",
            "node_modules/addon/node_modules/lib/package.json": json.dumps({"name": "lib", "version": "1.0.0"}),
            "node_modules/addon/node_modules/lib/index.js": "",
        },
        manifest=app_manifest(dependencies={"addon": "*", "lib": "*"}),
    )
    resolver = resolver_for(root)
    from_addon = resolver.resolve(root.resolve() / "node_modules/addon/index.js", "lib")
    from_app = resolver.resolve(root.resolve() / "app.js", "lib")
    assert "addon/node_modules/lib" in from_addon.path.as_posix()
    assert "addon" not in from_app.path.relative_to(root.resolve()).as_posix()


def test_explicit_relative(temp_dir: Path):
    assert explicit_relative(temp_dir, temp_dir / "a" / "b.js") == "./a/b.js"
    assert explicit_relative(temp_dir / "a", temp_dir / "b.js") == "../b.js"


def test_is_runtime_module_with_externals():
    assert is_runtime_module("@ember/object")
    assert not is_runtime_module("lodash")
    assert is_runtime_module("lodash/merge", externals=("lodash",))
    assert is_runtime_module("lodash", externals=("lodash",))


def test_addon_module_imports_application_by_name(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "node_modules/my-addon/_app_/components/greeting.js"
    target = resolver.resolve(importer, "my-app/components/welcome")
    assert isinstance(target, ResolvedTarget)
    assert target.path == app_with_addons.resolve() / "components" / "welcome.js"
    assert target.package.name == "my-app"


def test_addon_module_reaches_merged_file_through_application_name(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "node_modules/my-addon/index.js"
    target = resolver.resolve(importer, "my-app/components/greeting")
    assert isinstance(target, ResolvedTarget)
    assert target.via == "app-js"


def test_missing_application_file_from_addon_reason(app_with_addons: Path):
    resolver = resolver_for(app_with_addons)
    importer = app_with_addons.resolve() / "node_modules/my-addon/index.js"
    failure = resolver.resolve(importer, "my-app/config/environment")
    assert isinstance(failure, ResolutionFailure)
    assert failure.reason == "no file matches package path"


def test_macros_prefix_needs_a_path_separator():
    assert is_runtime_module("@embroider/macros")
    assert is_runtime_module("@embroider/macros/runtime")
    assert not is_runtime_module("@embroider/macros-foo")
