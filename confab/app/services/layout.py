import logging
from collections import OrderedDict
from typing import Dict, List

from ..config import DEFAULT_LAYOUT, LayoutSettings
from ..schemas.graph import Position
from .graph_service import KnowledgeGraphService
from .hierarchy import HierarchyCalculator

logger = logging.getLogger(__name__)


class TreeLayoutEngine:
    """Rows by depth, siblings centered horizontally in insertion order."""

    def __init__(self, store: KnowledgeGraphService, settings: LayoutSettings = DEFAULT_LAYOUT):
        self.store = store
        self.settings = settings
        self.hierarchy = HierarchyCalculator(store, settings.max_tree_depth)

    def levels(self) -> Dict[int, List[str]]:
        grouped = OrderedDict()
        for node_id, depth in self.hierarchy.depths().items():
            grouped.setdefault(depth, []).append(node_id)
        return dict(sorted(grouped.items()))

    def recalculate_layout(self) -> Dict[str, Position]:
        s = self.settings
        placed = {}
        for depth, node_ids in self.levels().items():
            y = s.root_y + depth * s.vertical_spacing
            total_width = max(len(node_ids) * s.horizontal_spacing, s.min_level_width)
            start_x = s.root_x_center - total_width / 2
            for i, node_id in enumerate(node_ids):
                position = Position(x=start_x + i * s.horizontal_spacing, y=y)
                if self.store.node(node_id).position != position:
                    self.store.update_node(node_id, {"position": position})
                placed[node_id] = position
        logger.debug("Layout recalculated for %d nodes", len(placed))
        return placed
