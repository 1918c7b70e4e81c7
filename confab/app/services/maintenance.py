"""
Whole-graph repairs: connecting isolated nodes to a hub, and collapsing
several nodes into one.
"""
import logging
from typing import Iterable, List, Optional

from ..config import FALLBACK_RELATIONSHIP
from ..errors import InvalidMergeError
from ..schemas.graph import FinalizeReport, GraphNode, Importance, NodeCreate, NodeMetadata, Position
from .graph_service import KnowledgeGraphService
from .layout import TreeLayoutEngine

logger = logging.getLogger(__name__)


def find_hub(store: KnowledgeGraphService) -> Optional[str]:
    """Most connected node; ties go to the earliest inserted."""
    hub, best = None, -1
    for node in store.nodes():
        degree = store.degree(node.id)
        if degree > best:
            hub, best = node.id, degree
    return hub


def isolated_nodes(store: KnowledgeGraphService) -> List[str]:
    return [n.id for n in store.nodes() if store.degree(n.id) == 0]


def finalize_graph(store: KnowledgeGraphService, layout: TreeLayoutEngine,
                   relationship: str = FALLBACK_RELATIONSHIP) -> FinalizeReport:
    isolated = isolated_nodes(store)
    if not isolated:
        return FinalizeReport(hub_id=find_hub(store), isolated_nodes_remaining=0)

    hub = find_hub(store)
    added = []
    for node_id in isolated:
        if node_id == hub or store.has_edge_between(hub, node_id):
            continue
        edge = store.add_edge(hub, node_id, relationship)
        added.append(edge.model_copy(deep=True))

    layout.recalculate_layout()
    remaining = len(isolated_nodes(store))
    logger.info("Finalize: hub %s, %d edges added, %d isolated remaining", hub, len(added), remaining)
    return FinalizeReport(hub_id=hub, edges_added=added, isolated_nodes_remaining=remaining)


def merge_nodes(store: KnowledgeGraphService, layout: TreeLayoutEngine, node_ids: Iterable[str],
                new_label: str, new_category=None) -> GraphNode:
    ids = list(dict.fromkeys(node_ids))
    if len(ids) < 2:
        raise InvalidMergeError("At least 2 distinct node ids are required to merge")
    if not new_label or not new_label.strip():
        raise InvalidMergeError("A label for the merged node is required")
    missing = [i for i in ids if not store.has_node(i)]
    if missing:
        raise InvalidMergeError(f"Unknown node ids: {', '.join(missing)}")

    originals = [store.node(i) for i in ids]
    merged_set = set(ids)
    excerpts = []
    for node in originals:
        for excerpt in node.metadata.source_excerpts:
            if excerpt not in excerpts:
                excerpts.append(excerpt)

    merged = store.add_node(NodeCreate(
        label=new_label,
        category=new_category if new_category is not None else originals[0].category,
        importance=Importance.LARGE,
        position=Position(
            x=sum(n.position.x for n in originals) / len(originals),
            y=sum(n.position.y for n in originals) / len(originals),
        ),
        metadata=NodeMetadata(origin="merge", source_excerpts=excerpts, merged_from=ids),
    ))

    # Transfer before removal: remove_node would cascade these edges away.
    transferred = set()
    for edge in store.edges():
        inside_source, inside_target = edge.source in merged_set, edge.target in merged_set
        if inside_source == inside_target:
            continue
        source = merged.id if inside_source else edge.source
        target = merged.id if inside_target else edge.target
        key = (source, target, edge.label)
        if key in transferred:
            continue
        transferred.add(key)
        store.add_edge(source, target, edge.label, edge.type, edge.animated)

    for node_id in ids:
        store.remove_node(node_id)

    layout.recalculate_layout()
    logger.info("Merged %d nodes into %s (%s)", len(ids), merged.id, new_label)
    return store.node(merged.id).model_copy(deep=True)
