"""Two-phase node matching between a source and a target tree.

Phase one (top-down) greedily pairs the largest isomorphic subtrees.
Phase two (bottom-up) pairs inner nodes whose already-matched
descendants mostly agree, then recovers matches among the children of
every newly paired node. The result is a one-to-one mapping between
source and target node ids, kept outside the trees themselves.
"""

from __future__ import annotations

import heapq
from collections import Counter, defaultdict
from collections.abc import Iterator
from dataclasses import dataclass

from repairkit.constants import (
    DEFAULT_CHILD_THRESHOLD,
    DEFAULT_MIN_HEIGHT,
    DEFAULT_SIM_THRESHOLD,
    RELABELED_LEAF_SIMILARITY,
)
from repairkit.trees.model import SyntaxTree

__all__ = ["DiffConfig", "MappingStore", "match_trees"]


@dataclass(frozen=True)
class DiffConfig:
    """Matching thresholds, passed explicitly to every diff.

    ``min_height``: smallest subtree height (leaves are 1) the top-down
    phase will match on isomorphism alone.
    ``sim_threshold``: minimum Dice similarity of matched descendants
    for the bottom-up phase to pair two inner nodes.
    ``child_threshold``: minimum similarity for child recovery to pair
    two children of a newly matched pair.
    """

    min_height: int = DEFAULT_MIN_HEIGHT
    sim_threshold: float = DEFAULT_SIM_THRESHOLD
    child_threshold: float = DEFAULT_CHILD_THRESHOLD

    def __post_init__(self) -> None:
        if self.min_height < 1:
            raise ValueError("min_height must be at least 1")
        for name in ("sim_threshold", "child_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1]")


class MappingStore:
    """One-to-one mapping between source and target node ids."""

    def __init__(self) -> None:
        self._src_to_dst: dict[int, int] = {}
        self._dst_to_src: dict[int, int] = {}

    def add(self, src: int, dst: int) -> None:
        if src in self._src_to_dst or dst in self._dst_to_src:
            raise ValueError(f"node already mapped: {src} -> {dst}")
        self._src_to_dst[src] = dst
        self._dst_to_src[dst] = src

    def has_src(self, src: int) -> bool:
        return src in self._src_to_dst

    def has_dst(self, dst: int) -> bool:
        return dst in self._dst_to_src

    def dst_for(self, src: int) -> int:
        return self._src_to_dst[src]

    def src_for(self, dst: int) -> int:
        return self._dst_to_src[dst]

    def __contains__(self, pair: object) -> bool:
        if not isinstance(pair, tuple) or len(pair) != 2:
            return False
        src, dst = pair
        return self._src_to_dst.get(src) == dst

    def __iter__(self) -> Iterator[tuple[int, int]]:
        return iter(self._src_to_dst.items())

    def __len__(self) -> int:
        return len(self._src_to_dst)


def match_trees(
    src: SyntaxTree, dst: SyntaxTree, config: DiffConfig
) -> MappingStore:
    return _Matcher(src, dst, config).run()


def _shape_ids(tree: SyntaxTree, table: dict[tuple, int]) -> list[int]:
    """Hash-cons every subtree; equal ids mean isomorphic subtrees."""
    ids = [0] * len(tree)
    for node in reversed(tree.nodes):
        key = (node.type, node.label, tuple(ids[c] for c in node.children))
        ids[node.id] = table.setdefault(key, len(table))
    return ids


class _HeightQueue:
    """Max-priority queue of node ids keyed by subtree height."""

    def __init__(self, tree: SyntaxTree) -> None:
        self._tree = tree
        self._heap: list[tuple[int, int]] = []
        self.push(0)

    def push(self, node_id: int) -> None:
        heapq.heappush(self._heap, (-self._tree.height(node_id), node_id))

    def peek_height(self) -> int:
        return -self._heap[0][0] if self._heap else 0

    def pop(self) -> list[int]:
        height = self.peek_height()
        popped: list[int] = []
        while self._heap and -self._heap[0][0] == height:
            popped.append(heapq.heappop(self._heap)[1])
        return popped

    def open(self, node_id: int) -> None:
        for child in self._tree[node_id].children:
            self.push(child)


class _Matcher:
    def __init__(
        self, src: SyntaxTree, dst: SyntaxTree, config: DiffConfig
    ) -> None:
        self.src = src
        self.dst = dst
        self.config = config
        self.mappings = MappingStore()
        table: dict[tuple, int] = {}
        self._src_shapes = _shape_ids(src, table)
        self._dst_shapes = _shape_ids(dst, table)
        self._src_content: dict[int, Counter[tuple[str, str]]] = {}
        self._dst_content: dict[int, Counter[tuple[str, str]]] = {}

    def run(self) -> MappingStore:
        self._top_down()
        self._bottom_up()
        return self.mappings

    # ── Top-down ─────────────────────────────────────────

    def _top_down(self) -> None:
        min_height = self.config.min_height
        src_queue = _HeightQueue(self.src)
        dst_queue = _HeightQueue(self.dst)
        ambiguous: list[tuple[int, int]] = []

        while min(src_queue.peek_height(), dst_queue.peek_height()) >= min_height:
            src_height = src_queue.peek_height()
            dst_height = dst_queue.peek_height()
            if src_height > dst_height:
                for node_id in src_queue.pop():
                    src_queue.open(node_id)
                continue
            if dst_height > src_height:
                for node_id in dst_queue.pop():
                    dst_queue.open(node_id)
                continue

            src_by_shape: dict[int, list[int]] = defaultdict(list)
            dst_by_shape: dict[int, list[int]] = defaultdict(list)
            for node_id in src_queue.pop():
                src_by_shape[self._src_shapes[node_id]].append(node_id)
            for node_id in dst_queue.pop():
                dst_by_shape[self._dst_shapes[node_id]].append(node_id)

            for shape, src_nodes in src_by_shape.items():
                dst_nodes = dst_by_shape.get(shape)
                if not dst_nodes:
                    for node_id in src_nodes:
                        src_queue.open(node_id)
                elif len(src_nodes) == 1 and len(dst_nodes) == 1:
                    self._match_subtree(src_nodes[0], dst_nodes[0])
                else:
                    ambiguous.extend(
                        (s, d) for s in src_nodes for d in dst_nodes
                    )
            for shape, dst_nodes in dst_by_shape.items():
                if shape not in src_by_shape:
                    for node_id in dst_nodes:
                        dst_queue.open(node_id)

        # Largest first, then parents that already agree, then position
        ambiguous.sort(
            key=lambda pair: (
                -self.src.size(pair[0]),
                -self._parent_dice(*pair),
                pair[0],
                pair[1],
            )
        )
        for src_id, dst_id in ambiguous:
            if not self.mappings.has_src(src_id) and not self.mappings.has_dst(dst_id):
                self._match_subtree(src_id, dst_id)

    def _match_subtree(self, src_id: int, dst_id: int) -> None:
        # isomorphic subtrees have identical pre-order layouts
        for offset in range(self.src.size(src_id)):
            src_node, dst_node = src_id + offset, dst_id + offset
            if self.mappings.has_src(src_node) or self.mappings.has_dst(dst_node):
                continue
            self.mappings.add(src_node, dst_node)

    def _parent_dice(self, src_id: int, dst_id: int) -> float:
        src_parent = self.src[src_id].parent
        dst_parent = self.dst[dst_id].parent
        if src_parent is None or dst_parent is None:
            return 0.0
        return self._dice(src_parent, dst_parent)

    # ── Bottom-up ────────────────────────────────────────

    def _bottom_up(self) -> None:
        threshold = self.config.sim_threshold
        for src_id in self.src.postorder():
            if src_id == 0:
                self._match_roots()
                break
            node = self.src[src_id]
            if node.is_leaf or self.mappings.has_src(src_id):
                continue
            best: int | None = None
            best_sim = -1.0
            for dst_id in self._candidates(src_id):
                sim = self._dice(src_id, dst_id)
                if sim > best_sim:
                    best, best_sim = dst_id, sim
            if best is not None and best_sim >= threshold:
                self.mappings.add(src_id, best)
                self._recover(src_id, best)

    def _match_roots(self) -> None:
        if not self.mappings.has_src(0) and not self.mappings.has_dst(0):
            if self.src.root.type == self.dst.root.type:
                self.mappings.add(0, 0)
        if self.mappings.has_src(0) and self.mappings.dst_for(0) == 0:
            self._recover(0, 0)

    def _candidates(self, src_id: int) -> list[int]:
        """Unmatched same-type target ancestors of matched descendants."""
        node_type = self.src[src_id].type
        visited: set[int] = set()
        candidates: list[int] = []
        for desc in self.src.descendants(src_id):
            if not self.mappings.has_src(desc):
                continue
            parent = self.dst[self.mappings.dst_for(desc)].parent
            while parent is not None and parent not in visited:
                visited.add(parent)
                if (
                    self.dst[parent].type == node_type
                    and not self.mappings.has_dst(parent)
                ):
                    candidates.append(parent)
                parent = self.dst[parent].parent
        candidates.sort()
        return candidates

    def _dice(self, src_id: int, dst_id: int) -> float:
        """2·common / (|desc(src)| + |desc(dst)|) over matched descendants."""
        denominator = (self.src.size(src_id) - 1) + (self.dst.size(dst_id) - 1)
        if denominator == 0:
            return 0.0
        common = 0
        for desc in self.src.descendants(src_id):
            if self.mappings.has_src(desc) and self.dst.is_descendant(
                self.mappings.dst_for(desc), dst_id
            ):
                common += 1
        return 2.0 * common / denominator

    # ── Child recovery ───────────────────────────────────

    def _recover(self, src_id: int, dst_id: int) -> None:
        threshold = self.config.child_threshold
        stack = [(src_id, dst_id)]
        while stack:
            src_parent, dst_parent = stack.pop()
            src_kids = [
                c for c in self.src[src_parent].children
                if not self.mappings.has_src(c)
            ]
            dst_kids = [
                c for c in self.dst[dst_parent].children
                if not self.mappings.has_dst(c)
            ]
            if not src_kids or not dst_kids:
                continue

            pairs: list[tuple[float, int, int, int]] = []
            for i, src_kid in enumerate(src_kids):
                for j, dst_kid in enumerate(dst_kids):
                    if self.src[src_kid].type != self.dst[dst_kid].type:
                        continue
                    sim = self._similarity(src_kid, dst_kid)
                    if sim >= threshold:
                        pairs.append((-sim, abs(i - j), i, j))
            pairs.sort()

            used_src: set[int] = set()
            used_dst: set[int] = set()
            for _, _, i, j in pairs:
                if i in used_src or j in used_dst:
                    continue
                used_src.add(i)
                used_dst.add(j)
                src_kid, dst_kid = src_kids[i], dst_kids[j]
                if self._src_shapes[src_kid] == self._dst_shapes[dst_kid]:
                    self._match_subtree(src_kid, dst_kid)
                else:
                    self.mappings.add(src_kid, dst_kid)
                    stack.append((src_kid, dst_kid))

    def _similarity(self, src_id: int, dst_id: int) -> float:
        """Content similarity of two unmatched same-type subtrees."""
        if self._src_shapes[src_id] == self._dst_shapes[dst_id]:
            return 1.0
        src_node, dst_node = self.src[src_id], self.dst[dst_id]
        if src_node.is_leaf and dst_node.is_leaf:
            # same type and shapes differ, so only the label changed
            return RELABELED_LEAF_SIMILARITY
        src_content = self._content(self.src, src_id, self._src_content)
        dst_content = self._content(self.dst, dst_id, self._dst_content)
        common = sum((src_content & dst_content).values())
        return 2.0 * common / (self.src.size(src_id) + self.dst.size(dst_id))

    @staticmethod
    def _content(
        tree: SyntaxTree,
        node_id: int,
        cache: dict[int, Counter[tuple[str, str]]],
    ) -> Counter[tuple[str, str]]:
        if node_id not in cache:
            cache[node_id] = Counter(
                (tree[i].type, tree[i].label)
                for i in range(node_id, node_id + tree.size(node_id))
            )
        return cache[node_id]
