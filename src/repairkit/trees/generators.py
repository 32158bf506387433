"""Tree generators: turn a virtual source unit into a SyntaxTree.

Two families are provided. Tree-sitter generators work for any grammar
listed in :data:`GRAMMAR_MODULES`; the ``ast`` generator uses Python's
own parser and yields the abstract (rather than concrete) tree.
"""

from __future__ import annotations

import ast
import importlib
import importlib.util
import threading
from typing import Protocol, cast

import tree_sitter

from repairkit.constants import (
    COMMENT_NODE_TYPES,
    GRAMMAR_MODULES,
    PUNCTUATION_TOKENS,
    UnitKind,
)
from repairkit.errors import ParseError
from repairkit.sources import VirtualSourceUnit
from repairkit.trees.model import SyntaxTree, TreeBuilder

__all__ = [
    "PythonAstGenerator",
    "TreeGenerator",
    "TreeSitterGenerator",
    "grammar_available",
]


class TreeGenerator(Protocol):
    def generate(self, unit: VirtualSourceUnit) -> SyntaxTree: ...


def _source_text(unit: VirtualSourceUnit) -> str:
    """Decode a unit's source, mapping bad input to ParseError."""
    if unit.kind is UnitKind.ARTIFACT:
        raise ParseError(
            unit.qualified_name, 1, 1, "artifact units carry no source"
        )
    try:
        return unit.text
    except UnicodeDecodeError as exc:
        raw = cast(bytes, unit.content)[: exc.start]
        line = raw.count(b"\n") + 1
        column = exc.start - (raw.rfind(b"\n") + 1) + 1
        raise ParseError(
            unit.qualified_name, line, column, "source is not valid UTF-8"
        ) from exc


def _line_col(text: str, offset: int) -> tuple[int, int]:
    line = text.count("\n", 0, offset) + 1
    column = offset - (text.rfind("\n", 0, offset) + 1) + 1
    return line, column


# ---------------------------------------------------------------------------
# Tree-sitter
# ---------------------------------------------------------------------------

_language_cache: dict[str, tree_sitter.Language] = {}
_language_lock = threading.Lock()


def grammar_available(grammar: str) -> bool:
    """Return True if the grammar's tree-sitter package is importable."""
    module_name = GRAMMAR_MODULES.get(grammar)
    if module_name is None:
        return False
    return importlib.util.find_spec(module_name) is not None


def _get_language(grammar: str) -> tree_sitter.Language:
    """Get or load a cached tree-sitter language."""
    with _language_lock:
        if grammar in _language_cache:
            return _language_cache[grammar]
        module_name = GRAMMAR_MODULES.get(grammar)
        if module_name is None:
            raise ValueError(f"unknown tree-sitter grammar: {grammar!r}")
        mod = importlib.import_module(module_name)
        capsule: object = mod.language()
        lang = tree_sitter.Language(capsule)
        _language_cache[grammar] = lang
        return lang


class _CharOffsets:
    """Translate UTF-8 byte offsets into character offsets."""

    def __init__(self, text: str, source: bytes) -> None:
        self._table: list[int] | None = None
        if len(source) != len(text):
            table: list[int] = []
            for index, ch in enumerate(text):
                table.extend([index] * len(ch.encode("utf-8")))
            table.append(len(text))
            self._table = table

    def __call__(self, byte_offset: int) -> int:
        if self._table is None:
            return byte_offset
        return self._table[byte_offset]


class TreeSitterGenerator:
    """Concrete-syntax generator backed by a tree-sitter grammar.

    Only named nodes are kept (comments excluded). A leaf is labeled
    with its source text; an inner node is labeled with its anonymous
    non-punctuation tokens, which is where operators and keywords live.
    A fresh parser is created per call, so one generator instance may
    be shared across threads.
    """

    def __init__(self, grammar: str) -> None:
        self.grammar = grammar

    def generate(self, unit: VirtualSourceUnit) -> SyntaxTree:
        text = _source_text(unit)
        source = text.encode("utf-8")
        parser = tree_sitter.Parser(_get_language(self.grammar))
        root = parser.parse(source).root_node
        offsets = _CharOffsets(text, source)

        if root.has_error:
            bad = _first_error(root)
            line, column = _line_col(text, offsets(bad.start_byte))
            raise ParseError(
                unit.qualified_name, line, column, _describe_error(bad)
            )

        builder = TreeBuilder()
        stack: list[tuple[tree_sitter.Node, int | None]] = [(root, None)]
        while stack:
            node, parent = stack.pop()
            kept = [
                c for c in node.named_children
                if c.type not in COMMENT_NODE_TYPES
            ]
            if kept:
                label = " ".join(
                    c.type for c in node.children
                    if not c.is_named and c.type not in PUNCTUATION_TOKENS
                )
            else:
                label = node.text.decode("utf-8") if node.text else ""
            node_id = builder.add(
                node.type,
                label,
                (offsets(node.start_byte), offsets(node.end_byte)),
                parent,
            )
            for child in reversed(kept):
                stack.append((child, node_id))

        return builder.build(source_ref=unit.qualified_name, text=text)


def _first_error(root: tree_sitter.Node) -> tree_sitter.Node:
    """First ERROR or MISSING node in pre-order."""
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_error or node.is_missing:
            return node
        stack.extend(
            reversed(
                [c for c in node.children if c.has_error or c.is_missing]
            )
        )
    return root


def _describe_error(node: tree_sitter.Node) -> str:
    if node.is_missing:
        return f"missing {node.type!r}"
    snippet = node.text.decode("utf-8", errors="replace") if node.text else ""
    snippet = snippet.strip().splitlines()[0][:40] if snippet.strip() else ""
    if not snippet:
        return "syntax error"
    return f"unexpected {snippet!r}"


# ---------------------------------------------------------------------------
# Python ast
# ---------------------------------------------------------------------------

# Folded into the parent's label instead of becoming nodes
_OPERATOR_TYPES = (ast.operator, ast.unaryop, ast.cmpop, ast.boolop)
_SKIPPED_TYPES = (ast.expr_context, ast.type_ignore)
_SKIPPED_FIELDS = frozenset({"kind", "type_comment"})


class _LineOffsets:
    """Translate ast (line, UTF-8 column) pairs into character offsets."""

    def __init__(self, text: str) -> None:
        self._lines = text.split("\n")
        self._starts: list[int] = []
        offset = 0
        for line in self._lines:
            self._starts.append(offset)
            offset += len(line) + 1

    def __call__(self, lineno: int, col_offset: int) -> int:
        line = self._lines[lineno - 1]
        prefix = line.encode("utf-8")[:col_offset]
        return self._starts[lineno - 1] + len(
            prefix.decode("utf-8", errors="ignore")
        )


class PythonAstGenerator:
    """Abstract-syntax generator for Python built on ``ast``.

    Node types are AST class names. Identifier and constant fields
    become the label (constants via ``repr`` so ``1`` and ``'1'``
    differ); operators are folded into the label of the expression
    that owns them.
    """

    def generate(self, unit: VirtualSourceUnit) -> SyntaxTree:
        text = _source_text(unit)
        nul = text.find("\0")
        if nul >= 0:
            line, column = _line_col(text, nul)
            raise ParseError(
                unit.qualified_name, line, column, "source contains a null byte"
            )
        try:
            module = ast.parse(text, filename=unit.uri)
        except SyntaxError as exc:
            raise ParseError(
                unit.qualified_name,
                exc.lineno or 1,
                exc.offset or 1,
                exc.msg,
            ) from exc
        except RecursionError as exc:
            raise ParseError(
                unit.qualified_name, 1, 1, "source is nested too deeply to parse"
            ) from exc

        offsets = _LineOffsets(text)
        builder = TreeBuilder()
        unpositioned: list[int] = []
        stack: list[tuple[ast.AST, int | None, int]] = [(module, None, 0)]
        while stack:
            node, parent, parent_start = stack.pop()
            label, children = _fields(node)
            span = _span(node, offsets)
            if span is None:
                span = (parent_start, parent_start)
                if children:
                    unpositioned.append(len(builder))
            node_id = builder.add(type(node).__name__, label, span, parent)
            for child in reversed(children):
                stack.append((child, node_id, span[0]))

        # Deepest first, so nested unpositioned nodes are settled before
        # their ancestors read them
        for node_id in reversed(unpositioned):
            child_spans = [builder.span(c) for c in builder.children(node_id)]
            builder.set_span(
                node_id,
                (
                    min(s for s, _ in child_spans),
                    max(e for _, e in child_spans),
                ),
            )
        builder.set_span(0, (0, len(text)))
        return builder.build(source_ref=unit.qualified_name, text=text)


def _fields(node: ast.AST) -> tuple[str, list[ast.AST]]:
    """Split an ast node's fields into its label and its child nodes."""
    label_parts: list[str] = []
    children: list[ast.AST] = []
    for name, value in ast.iter_fields(node):
        if value is None or name in _SKIPPED_FIELDS:
            continue
        if isinstance(value, list):
            for item in value:
                if isinstance(item, _OPERATOR_TYPES):
                    label_parts.append(type(item).__name__)
                elif isinstance(item, _SKIPPED_TYPES):
                    continue
                elif isinstance(item, ast.AST):
                    children.append(item)
                elif isinstance(item, str):
                    label_parts.append(item)
        elif isinstance(value, _OPERATOR_TYPES):
            label_parts.append(type(value).__name__)
        elif isinstance(value, _SKIPPED_TYPES):
            continue
        elif isinstance(value, ast.AST):
            children.append(value)
        elif isinstance(node, ast.Constant) and name == "value":
            label_parts.append(repr(value))
        elif isinstance(value, str):
            label_parts.append(value)
        else:
            label_parts.append(repr(value))
    return " ".join(label_parts), children


def _span(node: ast.AST, offsets: _LineOffsets) -> tuple[int, int] | None:
    if getattr(node, "end_lineno", None) is None or not hasattr(node, "lineno"):
        return None
    start = offsets(node.lineno, node.col_offset)  # type: ignore[attr-defined]
    end = offsets(node.end_lineno, node.end_col_offset)  # type: ignore[attr-defined]
    return start, max(start, end)
