import logging
import math
import uuid
from typing import List, Sequence

from ..config import DEFAULT_LAYOUT, LayoutSettings
from ..schemas.graph import GraphNode, Position, Size

logger = logging.getLogger(__name__)

STRATEGIES = ("spiral", "grid")


class IdAllocator:
    """Issues node and edge ids that never repeat within one store."""

    def __init__(self):
        self._issued = set()

    def node_id(self) -> str:
        return self._fresh(lambda: str(uuid.uuid4()))

    def edge_id(self) -> str:
        return self._fresh(lambda: f"e-{uuid.uuid4().hex}")

    def reserve(self, value: str) -> bool:
        """Marks an externally supplied id as taken. False if it was already issued."""
        if value in self._issued:
            return False
        self._issued.add(value)
        return True

    def release(self, value: str):
        self._issued.discard(value)

    def _fresh(self, make):
        value = make()
        while value in self._issued:
            value = make()
        self._issued.add(value)
        return value


def boxes_overlap(x, y, width, height, node: GraphNode, padding: float = 0.0) -> bool:
    left, top = x - padding, y - padding
    right, bottom = x + width + padding, y + height + padding
    n_left, n_top = node.position.x, node.position.y
    n_right, n_bottom = n_left + node.size.width, n_top + node.size.height
    return left < n_right and right > n_left and top < n_bottom and bottom > n_top


class PositionAllocator:
    """
    Picks coordinates for a node that is being added without a position.

    Both strategies are pure functions of the nodes already placed, so the
    same insertion order always produces the same coordinates.
    """

    def __init__(self, strategy: str = "spiral", settings: LayoutSettings = DEFAULT_LAYOUT):
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown position strategy '{strategy}'. Available: {list(STRATEGIES)}")
        self.strategy = strategy
        self.settings = settings

    def allocate(self, nodes: Sequence[GraphNode], size: Size) -> Position:
        if self.strategy == "grid":
            return self.grid_position(len(nodes))
        return self.spiral_position(nodes, size)

    def grid_position(self, count: int) -> Position:
        per_row = self.settings.grid_nodes_per_row
        spacing = self.settings.grid_spacing
        return Position(x=(count % per_row) * spacing, y=(count // per_row) * spacing)

    def spiral_position(self, nodes: Sequence[GraphNode], size: Size) -> Position:
        s = self.settings
        for x, y in self._spiral_candidates():
            if not any(boxes_overlap(x, y, size.width, size.height, n, s.spiral_padding) for n in nodes):
                return Position(x=x, y=y)

        last = nodes[-1]
        logger.debug("Spiral search exhausted, placing next to %s", last.id)
        return Position(x=last.position.x + last.size.width + s.spiral_padding, y=last.position.y)

    def _spiral_candidates(self) -> List[tuple]:
        s = self.settings
        points = [(s.spiral_center_x, s.spiral_center_y)]
        angles = int(round(360 / s.spiral_angle_step))
        for step in range(1, s.spiral_max_steps):
            radius = step * s.spiral_radius_step
            for i in range(angles):
                theta = math.radians(i * s.spiral_angle_step)
                points.append((
                    round(s.spiral_center_x + radius * math.cos(theta), 2),
                    round(s.spiral_center_y + radius * math.sin(theta), 2),
                ))
        return points
