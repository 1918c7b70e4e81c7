import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..config import DEFAULT_LAYOUT, POSITION_STRATEGY, TRANSCRIPT_WINDOW_MS, LayoutSettings
from ..errors import SessionNotFoundError
from ..schemas.graph import (
    DeltaReport,
    FinalizeReport,
    GraphData,
    GraphEdge,
    GraphNode,
    RefinementReport,
)
from ..schemas.transcript import TranscriptEntry
from .allocator import PositionAllocator
from .graph_service import KnowledgeGraphService
from .layout import TreeLayoutEngine
from .maintenance import finalize_graph, merge_nodes
from .reconciler import DeltaReconciler
from .transcripts import TranscriptBuffer

logger = logging.getLogger(__name__)


class GraphSession:
    """
    One conversation: its graph, layout, reconciler and transcript.

    The engine itself never suspends, so each call below runs to completion
    before the next. `lock` is for callers that await the model between
    reading and writing the graph; holding it keeps their deltas in
    receipt order.
    """

    def __init__(self, session_id: Optional[str] = None, strategy: str = POSITION_STRATEGY,
                 settings: LayoutSettings = DEFAULT_LAYOUT):
        self.id = session_id or str(uuid.uuid4())
        self.created_at = datetime.now(timezone.utc)
        self.store = KnowledgeGraphService(PositionAllocator(strategy, settings))
        self.layout = TreeLayoutEngine(self.store, settings)
        self.reconciler = DeltaReconciler(self.store, self.layout)
        self.transcripts = TranscriptBuffer()
        self.lock = asyncio.Lock()

    # --- Ingestion ---

    def submit_delta(self, payload: Any) -> DeltaReport:
        return self.reconciler.submit_delta(payload)

    def submit_refinement(self, payload: Any) -> RefinementReport:
        return self.reconciler.submit_refinement(payload)

    def apply_restructure(self, payload: Any) -> DeltaReport:
        return self.reconciler.apply_restructure(payload)

    def finalize(self) -> FinalizeReport:
        return finalize_graph(self.store, self.layout)

    def merge(self, node_ids: Iterable[str], new_label: str, new_category=None) -> GraphNode:
        return merge_nodes(self.store, self.layout, node_ids, new_label, new_category)

    # --- Direct edits ---

    def add_node(self, node_input) -> GraphNode:
        node = self.store.add_node(node_input)
        return node.model_copy(deep=True)

    def add_edge(self, source: str, target: str, label: Optional[str] = None,
                 type: str = "default", animated: bool = False) -> Optional[GraphEdge]:
        if not (self.store.has_node(source) and self.store.has_node(target)):
            return None
        edge = self.store.add_edge(source, target, label, type, animated)
        self.layout.recalculate_layout()
        return edge.model_copy(deep=True)

    def update_node(self, node_id: str, fields: Dict[str, Any]) -> Optional[GraphNode]:
        node = self.store.update_node(node_id, fields)
        return node.model_copy(deep=True) if node else None

    def remove_node(self, node_id: str) -> bool:
        removed = self.store.remove_node(node_id)
        if removed:
            self.layout.recalculate_layout()
        return removed

    def remove_edge(self, edge_id: str) -> bool:
        removed = self.store.remove_edge(edge_id)
        if removed:
            self.layout.recalculate_layout()
        return removed

    def replace_graph(self, nodes, edges) -> GraphData:
        self.store.replace_graph(nodes, edges)
        self.layout.recalculate_layout()
        return self.store.get_graph()

    def get_graph(self) -> GraphData:
        return self.store.get_graph()

    def clear(self):
        self.store.clear()
        self.transcripts.clear()
        logger.info("Session %s cleared", self.id)

    # --- Transcript ---

    def add_transcript(self, text: str, speaker: Optional[str] = None) -> TranscriptEntry:
        return self.transcripts.add(text, speaker)

    def recent_transcripts(self, window_ms: int = TRANSCRIPT_WINDOW_MS) -> List[TranscriptEntry]:
        return self.transcripts.recent(window_ms)


class SessionRegistry:
    """Independent sessions keyed by id; nothing is shared between them."""

    def __init__(self, strategy: str = POSITION_STRATEGY, settings: LayoutSettings = DEFAULT_LAYOUT):
        self.strategy = strategy
        self.settings = settings
        self._sessions: Dict[str, GraphSession] = {}

    def create(self, session_id: Optional[str] = None) -> GraphSession:
        if session_id and session_id in self._sessions:
            return self._sessions[session_id]
        session = GraphSession(session_id, self.strategy, self.settings)
        self._sessions[session.id] = session
        logger.info("Session %s created", session.id)
        return session

    def get(self, session_id: str) -> GraphSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list(self) -> List[GraphSession]:
        return list(self._sessions.values())

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None
