"""Arena-backed syntax tree model.

Nodes live in a flat tuple and refer to each other by integer index.
Ids are assigned in pre-order, so the subtree rooted at ``n`` is exactly
the id range ``[n, n + size(n))``; the diff engine relies on this for
constant-time descendant checks.
"""

from __future__ import annotations

from bisect import bisect_right
from collections import deque
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from repairkit.errors import InvalidTree

__all__ = ["Node", "SyntaxTree", "TreeBuilder"]


@dataclass(frozen=True, slots=True)
class Node:
    """One syntax node. ``span`` is a half-open character range."""

    id: int
    type: str
    label: str
    span: tuple[int, int]
    parent: int | None
    children: tuple[int, ...] = ()

    @property
    def is_leaf(self) -> bool:
        return not self.children


class SyntaxTree:
    """Immutable tree produced by a generator.

    Construction validates the arena and raises :class:`InvalidTree`
    when it is malformed, so every tree that exists is well formed.
    """

    __slots__ = (
        "_nodes",
        "_sizes",
        "_heights",
        "_text",
        "_line_starts",
        "source_ref",
    )

    def __init__(
        self,
        nodes: Sequence[Node],
        source_ref: str = "",
        text: str | None = None,
    ) -> None:
        self._nodes = tuple(nodes)
        self._sizes = _validate(self._nodes)
        self._heights = _heights(self._nodes)
        self._text = text
        self._line_starts: list[int] | None = None
        self.source_ref = source_ref

    # ── Access ───────────────────────────────────────────

    @property
    def root(self) -> Node:
        return self._nodes[0]

    @property
    def nodes(self) -> tuple[Node, ...]:
        return self._nodes

    @property
    def text(self) -> str | None:
        return self._text

    def node(self, node_id: int) -> Node:
        return self._nodes[node_id]

    def __getitem__(self, node_id: int) -> Node:
        return self._nodes[node_id]

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes)

    def children(self, node_id: int) -> tuple[Node, ...]:
        return tuple(self._nodes[c] for c in self._nodes[node_id].children)

    def parent(self, node_id: int) -> Node | None:
        parent = self._nodes[node_id].parent
        return None if parent is None else self._nodes[parent]

    def size(self, node_id: int) -> int:
        """Number of nodes in the subtree, the node included."""
        return self._sizes[node_id]

    def height(self, node_id: int) -> int:
        """Leaves have height 1."""
        return self._heights[node_id]

    def descendants(self, node_id: int) -> range:
        return range(node_id + 1, node_id + self._sizes[node_id])

    def is_descendant(self, node_id: int, ancestor: int) -> bool:
        return ancestor < node_id < ancestor + self._sizes[ancestor]

    def position_in_parent(self, node_id: int) -> int:
        parent = self._nodes[node_id].parent
        if parent is None:
            return 0
        return self._nodes[parent].children.index(node_id)

    # ── Traversal ────────────────────────────────────────

    def preorder(self) -> range:
        return range(len(self._nodes))

    def postorder(self) -> Iterator[int]:
        stack: list[tuple[int, bool]] = [(0, False)]
        while stack:
            node_id, expanded = stack.pop()
            if expanded:
                yield node_id
                continue
            stack.append((node_id, True))
            for child in reversed(self._nodes[node_id].children):
                stack.append((child, False))

    def bfs(self) -> Iterator[int]:
        queue = deque([0])
        while queue:
            node_id = queue.popleft()
            yield node_id
            queue.extend(self._nodes[node_id].children)

    # ── Source positions ─────────────────────────────────

    def line_col(self, offset: int) -> tuple[int, int]:
        """Map a character offset to a 1-based (line, column)."""
        if self._text is None:
            raise ValueError("tree was built without source text")
        if self._line_starts is None:
            starts = [0]
            starts.extend(
                i + 1 for i, ch in enumerate(self._text) if ch == "\n"
            )
            self._line_starts = starts
        line = bisect_right(self._line_starts, offset)
        return line, offset - self._line_starts[line - 1] + 1

    def node_text(self, node_id: int) -> str:
        if self._text is None:
            raise ValueError("tree was built without source text")
        start, end = self._nodes[node_id].span
        return self._text[start:end]

    # ── Comparison & rendering ───────────────────────────

    def structurally_equal(self, other: SyntaxTree) -> bool:
        """Same shape, types and labels; ids and spans are ignored.

        Both arenas are in pre-order, and a pre-order sequence of
        (type, label, arity) determines a tree.
        """
        if len(self._nodes) != len(other._nodes):
            return False
        return all(
            a.type == b.type
            and a.label == b.label
            and len(a.children) == len(b.children)
            for a, b in zip(self._nodes, other._nodes, strict=True)
        )

    def to_dict(self, node_id: int = 0) -> dict[str, Any]:
        built: dict[int, dict[str, Any]] = {}
        # reverse pre-order visits children before their parent
        for current in reversed(self.descendants(node_id)):
            built[current] = self._node_dict(current, built)
        return self._node_dict(node_id, built)

    def _node_dict(
        self, node_id: int, built: dict[int, dict[str, Any]]
    ) -> dict[str, Any]:
        node = self._nodes[node_id]
        return {
            "type": node.type,
            "label": node.label,
            "span": list(node.span),
            "children": [built.pop(c) for c in node.children],
        }

    def pretty(self) -> str:
        lines: list[str] = []
        depth = {0: 0}
        for node in self._nodes:
            if node.parent is not None:
                depth[node.id] = depth[node.parent] + 1
            label = f" {node.label!r}" if node.label else ""
            lines.append(
                f"{'  ' * depth[node.id]}{node.type}{label}"
                f" [{node.span[0]}, {node.span[1]})"
            )
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"SyntaxTree(source_ref={self.source_ref!r},"
            f" root={self.root.type!r}, size={len(self._nodes)})"
        )


class TreeBuilder:
    """Accumulates nodes in pre-order and freezes them into a tree.

    Generators must add a parent before its children and finish a
    subtree before starting its next sibling; ``build`` rejects any
    other layout with :class:`InvalidTree`.
    """

    def __init__(self) -> None:
        self._types: list[str] = []
        self._labels: list[str] = []
        self._spans: list[tuple[int, int]] = []
        self._parents: list[int | None] = []
        self._children: list[list[int]] = []

    def add(
        self,
        type: str,  # noqa: A002
        label: str = "",
        span: tuple[int, int] = (0, 0),
        parent: int | None = None,
    ) -> int:
        node_id = len(self._types)
        if parent is None and node_id != 0:
            raise InvalidTree("tree already has a root")
        if parent is not None:
            if not 0 <= parent < node_id:
                raise InvalidTree(f"unknown parent id {parent}")
            self._children[parent].append(node_id)
        self._types.append(type)
        self._labels.append(label)
        self._spans.append(span)
        self._parents.append(parent)
        self._children.append([])
        return node_id

    def span(self, node_id: int) -> tuple[int, int]:
        return self._spans[node_id]

    def set_span(self, node_id: int, span: tuple[int, int]) -> None:
        self._spans[node_id] = span

    def children(self, node_id: int) -> list[int]:
        return list(self._children[node_id])

    def __len__(self) -> int:
        return len(self._types)

    def build(
        self, source_ref: str = "", text: str | None = None
    ) -> SyntaxTree:
        nodes = [
            Node(
                id=i,
                type=self._types[i],
                label=self._labels[i],
                span=self._spans[i],
                parent=self._parents[i],
                children=tuple(self._children[i]),
            )
            for i in range(len(self._types))
        ]
        return SyntaxTree(nodes, source_ref=source_ref, text=text)


def _validate(nodes: tuple[Node, ...]) -> list[int]:
    """Check arena invariants and return subtree sizes."""
    count = len(nodes)
    if count == 0:
        raise InvalidTree("tree has no nodes")

    for index, node in enumerate(nodes):
        if node.id != index:
            raise InvalidTree(f"node at index {index} has id {node.id}")
        start, end = node.span
        if start < 0 or end < start:
            raise InvalidTree(f"node {index} has invalid span {node.span}")
        if index == 0:
            if node.parent is not None:
                raise InvalidTree("root node must not have a parent")
        elif node.parent is None:
            raise InvalidTree(f"node {index} is a second root")
        elif not 0 <= node.parent < index:
            raise InvalidTree(
                f"node {index} has out-of-order parent {node.parent}"
            )

    seen: set[int] = set()
    for node in nodes:
        for child in node.children:
            if not node.id < child < count:
                raise InvalidTree(
                    f"node {node.id} references invalid child {child}"
                )
            if child in seen:
                raise InvalidTree(f"node {child} has more than one parent")
            if nodes[child].parent != node.id:
                raise InvalidTree(
                    f"node {child} does not point back to parent {node.id}"
                )
            seen.add(child)
    if len(seen) != count - 1:
        raise InvalidTree("tree contains detached nodes")

    sizes = [1] * count
    for node in reversed(nodes):
        for child in node.children:
            sizes[node.id] += sizes[child]

    for node in nodes:
        expected = node.id + 1
        for child in node.children:
            if child != expected:
                raise InvalidTree(f"node ids are not in pre-order at {child}")
            expected += sizes[child]
    return sizes


def _heights(nodes: tuple[Node, ...]) -> list[int]:
    heights = [1] * len(nodes)
    for node in reversed(nodes):
        for child in node.children:
            heights[node.id] = max(heights[node.id], heights[child] + 1)
    return heights
