from collections import deque
from typing import Dict, FrozenSet, List, Tuple

from ..config import DEFAULT_LAYOUT
from .graph_service import KnowledgeGraphService

MAX_TREE_DEPTH = DEFAULT_LAYOUT.max_tree_depth


class HierarchyCalculator:
    """
    Depth of a node = 1 + max(depth of its parents), roots (no incoming
    edges) sit at 0. Parents already on the current walk contribute 0, so
    cycles terminate, and results are clamped to `max_depth`.

    A depth reached without meeting a cycle or the cap cutoff does not
    depend on the walk that found it, so it is memoized for the rest of
    the pass.
    """

    def __init__(self, store: KnowledgeGraphService, max_depth: int = MAX_TREE_DEPTH):
        self.store = store
        self.max_depth = max_depth

    def depth(self, node_id: str) -> int:
        return self._depth(node_id, frozenset(), {})[0]

    def depths(self) -> Dict[str, int]:
        memo: Dict[str, int] = {}
        found = {node_id: self._depth(node_id, frozenset(), memo)[0] for node_id in self._walk_order()}
        return {node.id: found[node.id] for node in self.store.nodes()}

    def is_root(self, node_id: str) -> bool:
        return not self.store.parents(node_id)

    def _parents(self, node_id: str) -> List[str]:
        return [p for p in self.store.parents(node_id) if self.store.has_node(p)]

    def _walk_order(self) -> List[str]:
        """Parents before children where possible; nodes on cycles go last, in insertion order."""
        ids = [node.id for node in self.store.nodes()]
        waiting = {node_id: len(self._parents(node_id)) for node_id in ids}
        ready = deque(node_id for node_id in ids if waiting[node_id] == 0)
        order = []
        while ready:
            node_id = ready.popleft()
            order.append(node_id)
            for child in self.store.children(node_id):
                if child in waiting:
                    waiting[child] -= 1
                    if waiting[child] == 0:
                        ready.append(child)
        placed = set(order)
        return order + [node_id for node_id in ids if node_id not in placed]

    def _depth(self, node_id: str, path: FrozenSet[str], memo: Dict[str, int]) -> Tuple[int, bool]:
        """Returns (depth, exact). Only exact depths go into `memo`."""
        if node_id in memo:
            return memo[node_id], True
        if node_id in path:
            return 0, False
        # Past the cap the answer is clamped anyway; stop walking.
        if len(path) > self.max_depth:
            return 0, False
        parents = self._parents(node_id)
        if not parents:
            memo[node_id] = 0
            return 0, True
        path = path | {node_id}
        deepest, exact = 0, True
        for parent in parents:
            value, parent_exact = self._depth(parent, path, memo)
            deepest = max(deepest, value)
            exact = exact and parent_exact
        value = min(1 + deepest, self.max_depth)
        if exact:
            memo[node_id] = value
        return value, exact
