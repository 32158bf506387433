"""Edit-script extraction and replay.

Extraction follows Chawathe et al.: walk the target breadth-first,
inserting, updating and moving on a working copy of the source, align
the children of every matched pair through their longest common
subsequence, then delete what is left unmatched in post-order. Because
every action is performed on the working copy as it is emitted,
replaying the script in order is always well defined.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

from repairkit.constants import VIRTUAL_ROOT
from repairkit.diff.actions import (
    Delete,
    EditAction,
    EditScript,
    Insert,
    Move,
    Update,
)
from repairkit.diff.matcher import MappingStore
from repairkit.errors import InvalidTree
from repairkit.trees.model import SyntaxTree, TreeBuilder

__all__ = ["apply_script", "generate_script"]


class _WorkingTree:
    """Mutable copy of a tree hung under a virtual root."""

    def __init__(self, tree: SyntaxTree) -> None:
        self.type: dict[int, str] = {}
        self.label: dict[int, str] = {}
        self.span: dict[int, tuple[int, int]] = {}
        self.parent: dict[int, int] = {}
        self.children: dict[int, list[int]] = {VIRTUAL_ROOT: [0]}
        for node in tree:
            self.type[node.id] = node.type
            self.label[node.id] = node.label
            self.span[node.id] = node.span
            self.parent[node.id] = (
                VIRTUAL_ROOT if node.parent is None else node.parent
            )
            self.children[node.id] = list(node.children)

    def require(self, node: int) -> None:
        if node not in self.type:
            raise InvalidTree(f"edit references unknown node #{node}")

    def position(self, node: int) -> int:
        return self.children[self.parent[node]].index(node)

    def insert(
        self,
        node: int,
        type: str,  # noqa: A002
        label: str,
        span: tuple[int, int],
        parent: int,
        index: int,
    ) -> None:
        if node in self.type or node == VIRTUAL_ROOT:
            raise InvalidTree(f"insert reuses existing node #{node}")
        self.type[node] = type
        self.label[node] = label
        self.span[node] = span
        self.children[node] = []
        self.attach(node, parent, index)

    def attach(self, node: int, parent: int, index: int) -> None:
        if parent != VIRTUAL_ROOT:
            self.require(parent)
        ancestor = parent
        while ancestor != VIRTUAL_ROOT:
            if ancestor == node:
                raise InvalidTree(f"cannot move #{node} under itself")
            ancestor = self.parent[ancestor]
        siblings = self.children[parent]
        if not 0 <= index <= len(siblings):
            raise InvalidTree(
                f"index {index} out of range for #{parent}"
                f" with {len(siblings)} children"
            )
        siblings.insert(index, node)
        self.parent[node] = parent

    def detach(self, node: int) -> None:
        self.require(node)
        self.children[self.parent[node]].remove(node)

    def delete(self, node: int) -> None:
        self.require(node)
        if self.children[node]:
            raise InvalidTree(f"cannot delete #{node}: it still has children")
        self.detach(node)
        for table in (self.type, self.label, self.span, self.parent, self.children):
            del table[node]

    def postorder(self) -> list[int]:
        order: list[int] = []
        stack: list[tuple[int, bool]] = [(VIRTUAL_ROOT, False)]
        while stack:
            node, expanded = stack.pop()
            if expanded:
                if node != VIRTUAL_ROOT:
                    order.append(node)
                continue
            stack.append((node, True))
            for child in reversed(self.children[node]):
                stack.append((child, False))
        return order

    def to_tree(self, source_ref: str) -> SyntaxTree:
        roots = self.children[VIRTUAL_ROOT]
        if len(roots) != 1:
            raise InvalidTree(
                f"edit script leaves {len(roots)} roots instead of one"
            )
        builder = TreeBuilder()
        stack: list[tuple[int, int | None]] = [(roots[0], None)]
        while stack:
            node, parent = stack.pop()
            new_id = builder.add(
                self.type[node], self.label[node], self.span[node], parent
            )
            for child in reversed(self.children[node]):
                stack.append((child, new_id))
        return builder.build(source_ref=source_ref)


def generate_script(
    src: SyntaxTree, dst: SyntaxTree, mappings: MappingStore
) -> EditScript:
    """Derive the edit script implied by ``mappings``."""
    work = _WorkingTree(src)
    offset = len(src)
    w2d: dict[int, int] = {VIRTUAL_ROOT: VIRTUAL_ROOT}
    d2w: dict[int, int] = {VIRTUAL_ROOT: VIRTUAL_ROOT}
    for src_id, dst_id in mappings:
        if src[src_id].type != dst[dst_id].type:
            raise InvalidTree(
                f"mapped nodes #{src_id} and #{dst_id} differ in type"
            )
        w2d[src_id] = dst_id
        d2w[dst_id] = src_id

    src_in_order: set[int] = set()
    dst_in_order: set[int] = set()
    actions: list[EditAction] = []

    def dst_parent(x: int) -> int:
        parent = dst[x].parent
        return VIRTUAL_ROOT if parent is None else parent

    def dst_children(y: int) -> tuple[int, ...]:
        return (0,) if y == VIRTUAL_ROOT else dst[y].children

    def find_pos(x: int) -> int:
        # right after the partner of the rightmost in-order left sibling
        anchor: int | None = None
        for sibling in dst_children(dst_parent(x)):
            if sibling == x:
                break
            if sibling in dst_in_order:
                anchor = sibling
        if anchor is None:
            return 0
        return work.position(d2w[anchor]) + 1

    def align_children(w: int, x: int) -> None:
        w_children = work.children[w]
        x_children = dst_children(x)
        src_in_order.difference_update(w_children)
        dst_in_order.difference_update(x_children)
        w_set, x_set = set(w_children), set(x_children)
        s1 = [c for c in w_children if c in w2d and w2d[c] in x_set]
        s2 = [c for c in x_children if c in d2w and d2w[c] in w_set]
        common = _lcs(s1, s2, lambda a, b: w2d[a] == b)
        for a, b in common:
            src_in_order.add(a)
            dst_in_order.add(b)
        aligned = set(common)
        for b in s2:
            a = d2w[b]
            if (a, b) in aligned:
                continue
            work.detach(a)
            k = find_pos(b)
            work.attach(a, w, k)
            actions.append(Move(node=a, parent=w, index=k, span=work.span[a]))
            src_in_order.add(a)
            dst_in_order.add(b)

    for x in dst.bfs():
        z = d2w[dst_parent(x)]
        target = dst[x]
        if x not in d2w:
            k = find_pos(x)
            w = offset + x
            work.insert(w, target.type, target.label, target.span, z, k)
            actions.append(
                Insert(
                    node=w,
                    parent=z,
                    index=k,
                    type=target.type,
                    label=target.label,
                    span=target.span,
                )
            )
            w2d[w] = x
            d2w[x] = w
        else:
            w = d2w[x]
            if work.label[w] != target.label:
                actions.append(
                    Update(
                        node=w,
                        old_label=work.label[w],
                        new_label=target.label,
                        span=work.span[w],
                    )
                )
                work.label[w] = target.label
            if work.parent[w] != z:
                work.detach(w)
                k = find_pos(x)
                work.attach(w, z, k)
                actions.append(
                    Move(node=w, parent=z, index=k, span=work.span[w])
                )
        src_in_order.add(w)
        dst_in_order.add(x)
        align_children(w, x)

    for w in work.postorder():
        if w in w2d:
            continue
        actions.append(
            Delete(
                node=w,
                type=work.type[w],
                label=work.label[w],
                span=work.span[w],
            )
        )
        work.delete(w)

    return EditScript(
        actions=tuple(actions),
        source_ref=src.source_ref,
        target_ref=dst.source_ref,
    )


def _lcs(
    left: Sequence[int],
    right: Sequence[int],
    equal: Callable[[int, int], bool],
) -> list[tuple[int, int]]:
    """Longest common subsequence of two id lists under ``equal``."""
    rows, cols = len(left), len(right)
    table = [[0] * (cols + 1) for _ in range(rows + 1)]
    for i in range(rows - 1, -1, -1):
        for j in range(cols - 1, -1, -1):
            if equal(left[i], right[j]):
                table[i][j] = table[i + 1][j + 1] + 1
            else:
                table[i][j] = max(table[i + 1][j], table[i][j + 1])
    pairs: list[tuple[int, int]] = []
    i = j = 0
    while i < rows and j < cols:
        if equal(left[i], right[j]):
            pairs.append((left[i], right[j]))
            i += 1
            j += 1
        elif table[i + 1][j] >= table[i][j + 1]:
            i += 1
        else:
            j += 1
    return pairs


def apply_script(tree: SyntaxTree, script: EditScript) -> SyntaxTree:
    """Replay ``script`` on a copy of ``tree``.

    Raises :class:`InvalidTree` when an action does not apply (unknown
    node, index out of range, deleting a node that still has children).
    """
    work = _WorkingTree(tree)
    for action in script.actions:
        match action:
            case Insert():
                work.insert(
                    action.node,
                    action.type,
                    action.label,
                    action.span,
                    action.parent,
                    action.index,
                )
            case Delete():
                work.delete(action.node)
            case Update():
                work.require(action.node)
                work.label[action.node] = action.new_label
            case Move():
                work.detach(action.node)
                work.attach(action.node, action.parent, action.index)
    return work.to_tree(script.target_ref or tree.source_ref)
