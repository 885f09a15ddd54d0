"""Module front-end: extract import/export facts with Tree-sitter.

Script modules and pre-compiled template modules (``.hbs``) are both plain
JavaScript by the time the audit runs; the template compiler has already
rewritten every component, helper and modifier reference into a real import.
The front-end therefore parses both the same way and only trusts actual
import syntax:

- ``import ... from "x"`` / ``import "x"``           -> static edge
- ``export ... from "x"`` / ``export * from "x"``    -> re-export edge
- ``import("x")`` with a literal specifier            -> dynamic edge
- ``require("x")`` with a literal specifier           -> static edge (CommonJS)

Modules that assign to ``module.exports`` / ``exports.*`` without any ES
module syntax have an export shape that cannot be enumerated statically and
are tagged :class:`OpaqueExports`.
"""

from __future__ import annotations

import importlib
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from tree_sitter import Language, Parser as TSParser

from .errors import ParseError
from .models import ImportKind, ImportRef, KnownExports, ModuleFacts, OpaqueExports

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".hbs": "javascript",
    ".ts": "typescript",
}

# Map language name -> (grammar module, factory attribute)
_GRAMMAR_MODULES: Dict[str, Tuple[str, str]] = {
    "javascript": ("tree_sitter_javascript", "language"),
    "typescript": ("tree_sitter_typescript", "language_typescript"),
}

_DECLARATIONS = {
    "function_declaration",
    "generator_function_declaration",
    "class_declaration",
    "abstract_class_declaration",
    "lexical_declaration",
    "variable_declaration",
    "enum_declaration",
    "interface_declaration",
    "type_alias_declaration",
    "ambient_declaration",
    "internal_module",
}


def language_for(path: Path) -> str:
    name = path.name
    if name.endswith(".hbs.js"):
        return "javascript"
    if path.suffix == ".json":
        return "json"
    return LANGUAGE_MAP.get(path.suffix, "javascript")


class SourceFrontEnd:
    """Parse on-disk modules into :class:`ModuleFacts`.

    Tree-sitter parsers are not thread-safe, so every worker thread gets its
    own parser per language.  Language objects are shared.
    """

    def __init__(self) -> None:
        self._languages: Dict[str, Any] = {}
        self._local = threading.local()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def _language(self, lang: str) -> Any:
        with self._lock:
            if lang not in self._languages:
                mod_name, attr = _GRAMMAR_MODULES[lang]
                mod = importlib.import_module(mod_name)
                self._languages[lang] = Language(getattr(mod, attr)())
                logger.debug("Loaded tree-sitter grammar for %s", lang)
            return self._languages[lang]

    def _parser(self, lang: str) -> TSParser:
        parsers = getattr(self._local, "parsers", None)
        if parsers is None:
            parsers = self._local.parsers = {}
        if lang not in parsers:
            parsers[lang] = TSParser(self._language(lang))
        return parsers[lang]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract_facts(self, path: Path, source: Optional[bytes] = None) -> ModuleFacts:
        """Parse the module at *path*; raises :class:`ParseError` on malformed input."""
        if source is None:
            try:
                source = path.read_bytes()
            except OSError as exc:
                raise ParseError(path, f"cannot read module: {exc.strerror or exc}") from exc

        lang = language_for(path)
        if lang == "json":
            return _json_facts(path, source)

        tree = self._parser(lang).parse(source)
        root = tree.root_node
        if root.has_error:
            line = _first_error_line(root)
            raise ParseError(path, "syntax error", line)
        return _script_facts(path, root)


def _json_facts(path: Path, source: bytes) -> ModuleFacts:
    try:
        json.loads(source.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise ParseError(path, f"invalid JSON module: {exc}") from exc
    return ModuleFacts(path=path, format="json", exports=KnownExports(("default",)))


# ===================================================================
# Tree walking helpers
# ===================================================================

def _walk(root: Any):
    """Yield every node in source order without recursion."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def _first_error_line(root: Any) -> Optional[int]:
    for node in _walk(root):
        if node.type == "ERROR" or node.is_missing:
            return node.start_point[0] + 1
    return None


def _text(node: Any) -> str:
    return node.text.decode("utf-8", errors="replace")


def _string_value(node: Any) -> Optional[str]:
    """Return the literal value of a string node, or None when it is computed."""
    if node is None:
        return None
    if node.type == "string":
        return _text(node)[1:-1]
    if node.type == "template_string":
        if any(ch.type == "template_substitution" for ch in node.children):
            return None
        return _text(node)[1:-1]
    return None


def _first_argument(call: Any) -> Any:
    args = call.child_by_field_name("arguments")
    if args is None or not args.named_children:
        return None
    return args.named_children[0]


def _line(node: Any) -> int:
    return node.start_point[0] + 1


def _is_type_only(node: Any) -> bool:
    """True for `import type`, `export type {...}` and `type`-qualified specifiers."""
    return any(child.type == "type" for child in node.children)


def _import_names(stmt: Any) -> Tuple[str, ...]:
    names: List[str] = []
    if _is_type_only(stmt):
        return ()
    for child in stmt.children:
        if child.type != "import_clause":
            continue
        for part in child.named_children:
            if part.type == "identifier":
                names.append("default")
            elif part.type == "namespace_import":
                names.append("*")
            elif part.type == "named_imports":
                for spec in part.named_children:
                    if spec.type == "import_specifier" and not _is_type_only(spec):
                        name = spec.child_by_field_name("name")
                        if name is not None:
                            names.append(_unquote(_text(name)))
    return tuple(names)


def _unquote(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        return text[1:-1]
    return text


def _pattern_names(node: Any) -> List[str]:
    if node.type == "identifier":
        return [_text(node)]
    names: List[str] = []
    for sub in _walk(node):
        if sub.type in ("shorthand_property_identifier_pattern",):
            names.append(_text(sub))
        elif sub.type == "identifier" and sub.parent is not None and sub.parent.type in (
            "array_pattern", "pair_pattern", "assignment_pattern", "rest_pattern",
        ):
            if sub.parent.type == "pair_pattern" and sub.parent.child_by_field_name("key") == sub:
                continue
            names.append(_text(sub))
    return names


def _declared_names(decl: Any) -> List[str]:
    if decl.type == "ambient_declaration":
        inner = next((c for c in decl.named_children if c.type in _DECLARATIONS), None)
        return _declared_names(inner) if inner is not None else []
    if decl.type in ("lexical_declaration", "variable_declaration"):
        names: List[str] = []
        for child in decl.named_children:
            if child.type == "variable_declarator":
                target = child.child_by_field_name("name")
                if target is not None:
                    names.extend(_pattern_names(target))
        return names
    name = decl.child_by_field_name("name")
    return [_text(name)] if name is not None else []


def _export_clause_names(clause: Any, source_side: bool) -> List[str]:
    names: List[str] = []
    for spec in clause.named_children:
        if spec.type != "export_specifier" or (source_side and _is_type_only(spec)):
            continue
        name = spec.child_by_field_name("name")
        alias = spec.child_by_field_name("alias")
        if source_side:
            picked = name
        else:
            picked = alias if alias is not None else name
        if picked is not None:
            names.append(_unquote(_text(picked)))
    return names


def _is_cjs_export_target(node: Any) -> bool:
    if node is None or node.type != "member_expression":
        return False
    obj = node.child_by_field_name("object")
    prop = node.child_by_field_name("property")
    if obj is None:
        return False
    if obj.type == "identifier" and _text(obj) == "exports":
        return True
    if obj.type == "identifier" and _text(obj) == "module" and prop is not None and _text(prop) == "exports":
        return True
    return _is_cjs_export_target(obj)


# ===================================================================
# Fact extraction
# ===================================================================

def _script_facts(path: Path, root: Any) -> ModuleFacts:
    imports: List[ImportRef] = []
    exports: List[str] = []
    has_esm = False
    has_cjs = False

    for node in _walk(root):
        kind = node.type

        if kind == "import_statement":
            has_esm = True
            spec = _string_value(node.child_by_field_name("source"))
            if spec is not None:
                imports.append(ImportRef(spec, ImportKind.STATIC, _import_names(node), _line(node)))

        elif kind == "export_statement":
            has_esm = True
            source = node.child_by_field_name("source")
            clause = next((c for c in node.named_children if c.type == "export_clause"), None)
            if source is not None:
                spec = _string_value(source)
                namespace = next((c for c in node.named_children if c.type == "namespace_export"), None)
                if clause is not None:
                    imported = () if _is_type_only(node) else tuple(_export_clause_names(clause, source_side=True))
                    exports.extend(_export_clause_names(clause, source_side=False))
                elif namespace is not None:
                    imported = ()
                    alias = namespace.named_children[-1] if namespace.named_children else None
                    if alias is not None:
                        exports.append(_unquote(_text(alias)))
                else:
                    # export * from: names contributed by the target
                    imported = ("*",)
                if spec is not None:
                    imports.append(ImportRef(spec, ImportKind.REEXPORT, imported, _line(node)))
            elif any(c.type == "default" for c in node.children):
                exports.append("default")
            elif clause is not None:
                exports.extend(_export_clause_names(clause, source_side=False))
            else:
                decl = node.child_by_field_name("declaration")
                if decl is not None and decl.type in _DECLARATIONS:
                    exports.extend(_declared_names(decl))

        elif kind == "call_expression":
            func = node.child_by_field_name("function")
            if func is None:
                continue
            if func.type == "import":
                spec = _string_value(_first_argument(node))
                if spec is not None:
                    imports.append(ImportRef(spec, ImportKind.DYNAMIC, ("*",), _line(node)))
                else:
                    logger.debug("Skipping computed import() in %s:%d", path, _line(node))
            elif func.type == "identifier" and _text(func) == "require":
                spec = _string_value(_first_argument(node))
                if spec is not None:
                    has_cjs = True
                    imports.append(ImportRef(spec, ImportKind.STATIC, ("*",), _line(node)))

        elif kind == "assignment_expression":
            if _is_cjs_export_target(node.child_by_field_name("left")):
                has_cjs = True

    if has_esm:
        return ModuleFacts(path, "esm", tuple(imports), KnownExports(tuple(dict.fromkeys(exports))))
    # no module syntax at all: a classic script whose shape is unknowable
    return ModuleFacts(path, "cjs" if has_cjs else "script", tuple(imports), OpaqueExports())
