import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from ..errors import MalformedDeltaError
from ..schemas.graph import (
    DeltaReport,
    EdgeProposal,
    GraphEdge,
    NodeProposal,
    NodeUpdateProposal,
    ProposedDelta,
    RefinementInstructions,
    RefinementReport,
    SkippedEntry,
    SkipReason,
)
from .dedup import labels_match
from .graph_service import KnowledgeGraphService
from .layout import TreeLayoutEngine

logger = logging.getLogger(__name__)


class DeltaStage(str, Enum):
    RESOLVING = "resolving"
    FILTERING = "filtering"
    INSERTING = "inserting"
    COMMITTED = "committed"


def _key(ref) -> str:
    return str(ref).strip().lower()


def _describe(entry: Any, index: int) -> str:
    if isinstance(entry, dict):
        for field in ("label", "id", "source"):
            if isinstance(entry.get(field), str):
                return entry[field]
    return f"#{index}"


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ())) or "entry"
    return f"{loc}: {err.get('msg')}"


def parse_payload(payload: Any, model):
    """Validates the top-level shape of an untrusted payload or raises MalformedDeltaError."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=False)
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise MalformedDeltaError(f"Payload is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedDeltaError(f"Payload must be an object, got {type(payload).__name__}")
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise MalformedDeltaError(f"Payload has the wrong shape ({_first_error(e)})") from e


class DeltaReconciler:
    """
    Folds untrusted node/edge proposals into the store.

    A delta is parsed as a whole (a bad top-level shape rejects it without
    touching the graph); individual bad entries are skipped and reported.
    New nodes are deduplicated against the labels committed before the
    delta started, so two near-identical proposals in one delta both land.
    """

    def __init__(self, store: KnowledgeGraphService, layout: TreeLayoutEngine):
        self.store = store
        self.layout = layout

    # --- Creation deltas ---

    def submit_delta(self, payload: Any) -> DeltaReport:
        try:
            delta = parse_payload(payload, ProposedDelta)
        except MalformedDeltaError as e:
            logger.warning("Rejected delta: %s", e)
            return DeltaReport(status="rejected", error=str(e))

        report = DeltaReport()
        committed = [(n.label, n.id) for n in self.store.nodes()]
        local: Dict[str, str] = {}
        aliases: Dict[str, str] = {}
        added_ids: List[str] = []

        logger.debug("Delta stage: %s", DeltaStage.FILTERING.value)
        for index, entry in enumerate(delta.nodes):
            try:
                proposal = NodeProposal.model_validate(entry)
            except ValidationError as e:
                report.skipped.append(SkippedEntry(
                    kind="node", ref=_describe(entry, index),
                    reason=SkipReason.MALFORMED, detail=_first_error(e),
                ))
                continue

            match = next(((label, nid) for label, nid in committed if labels_match(proposal.label, label)), None)
            if match is not None:
                aliases[_key(proposal.label)] = match[1]
                if proposal.id:
                    aliases[_key(proposal.id)] = match[1]
                report.skipped.append(SkippedEntry(
                    kind="node", ref=proposal.label,
                    reason=SkipReason.DUPLICATE, detail=f"duplicates '{match[0]}'",
                ))
                logger.info("Skipped duplicate node '%s' (matches '%s')", proposal.label, match[0])
                continue

            if proposal.metadata.origin is None:
                proposal.metadata.origin = "delta"
            node = self.store.add_node(proposal)
            local[_key(proposal.label)] = node.id
            if proposal.id:
                local[_key(proposal.id)] = node.id
            added_ids.append(node.id)

        logger.debug("Delta stage: %s", DeltaStage.RESOLVING.value)
        report.added_edges = self._add_edges(delta.edges, local, aliases, report.skipped)

        if added_ids or report.added_edges:
            self.layout.recalculate_layout()
        report.added_nodes = [self.store.node(nid).model_copy(deep=True) for nid in added_ids]
        logger.debug("Delta stage: %s", DeltaStage.COMMITTED.value)
        logger.info(
            "Delta applied: %d nodes, %d edges, %d skipped",
            len(report.added_nodes), len(report.added_edges), len(report.skipped),
        )
        return report

    # --- Cleanup deltas ---

    def submit_refinement(self, payload: Any) -> RefinementReport:
        try:
            instructions = parse_payload(payload, RefinementInstructions)
        except MalformedDeltaError as e:
            logger.warning("Rejected refinement: %s", e)
            return RefinementReport(status="rejected", error=str(e))

        report = RefinementReport()

        for index, entry in enumerate(instructions.nodes_to_remove):
            ref = entry.get("id") if isinstance(entry, dict) else entry
            if not isinstance(ref, str):
                report.skipped.append(SkippedEntry(kind="node", ref=f"#{index}", reason=SkipReason.MALFORMED))
                continue
            node_id = self._resolve_existing(ref)
            if node_id is None or not self.store.remove_node(node_id):
                report.skipped.append(SkippedEntry(kind="node", ref=ref, reason=SkipReason.NOT_FOUND))
                continue
            report.removed_nodes.append(node_id)

        updated_ids = []
        for index, entry in enumerate(instructions.nodes_to_update):
            try:
                update = NodeUpdateProposal.model_validate(entry)
            except ValidationError as e:
                report.skipped.append(SkippedEntry(
                    kind="node", ref=_describe(entry, index),
                    reason=SkipReason.MALFORMED, detail=_first_error(e),
                ))
                continue
            node_id = self._resolve_existing(update.id)
            fields = {}
            if update.new_label and update.new_label.strip():
                fields["label"] = update.new_label.strip()
            if update.new_category is not None:
                fields["category"] = update.new_category
            if node_id is None:
                report.skipped.append(SkippedEntry(kind="node", ref=update.id, reason=SkipReason.NOT_FOUND))
                continue
            if not fields:
                report.skipped.append(SkippedEntry(
                    kind="node", ref=update.id, reason=SkipReason.MALFORMED, detail="nothing to update",
                ))
                continue
            self.store.update_node(node_id, fields)
            if node_id not in updated_ids:
                updated_ids.append(node_id)

        report.added_edges = self._add_edges(instructions.edges_to_add, {}, {}, report.skipped)

        if report.removed_nodes or updated_ids or report.added_edges:
            self.layout.recalculate_layout()
        report.updated_nodes = [
            self.store.node(nid).model_copy(deep=True) for nid in updated_ids if self.store.has_node(nid)
        ]
        logger.info(
            "Refinement applied: %d removed, %d updated, %d edges, %d skipped",
            len(report.removed_nodes), len(report.updated_nodes), len(report.added_edges), len(report.skipped),
        )
        return report

    # --- Restructure ---

    def apply_restructure(self, payload: Any) -> DeltaReport:
        """
        Replaces the graph with a complete proposal. Existing node ids named
        by the proposal are kept; everything else gets fresh ids. A proposal
        with no usable node is rejected so the graph is never wiped by it.
        """
        try:
            delta = parse_payload(payload, ProposedDelta)
        except MalformedDeltaError as e:
            logger.warning("Rejected restructure: %s", e)
            return DeltaReport(status="rejected", error=str(e))

        skipped: List[SkippedEntry] = []
        nodes = []
        handles: Dict[str, str] = {}
        for index, entry in enumerate(delta.nodes):
            try:
                proposal = NodeProposal.model_validate(entry)
            except ValidationError as e:
                skipped.append(SkippedEntry(
                    kind="node", ref=_describe(entry, index),
                    reason=SkipReason.MALFORMED, detail=_first_error(e),
                ))
                continue
            previous = self.store.node(proposal.id) if proposal.id else None
            node_id = previous.id if previous and previous.id not in [n.id for n in nodes] else self.store.ids.node_id()
            if proposal.metadata.origin is None:
                proposal.metadata.origin = "restructure"
            nodes.append(proposal.model_copy(update={"id": node_id, "position": None}))
            handles.setdefault(_key(proposal.label), node_id)
            if proposal.id:
                handles.setdefault(_key(proposal.id), node_id)

        if not nodes:
            return DeltaReport(status="rejected", error="Restructure proposal contains no valid nodes", skipped=skipped)

        new_ids = {n.id for n in nodes}
        edges = []
        pairs = set()
        for index, entry in enumerate(delta.edges):
            try:
                proposal = EdgeProposal.model_validate(entry)
            except ValidationError as e:
                skipped.append(SkippedEntry(
                    kind="edge", ref=_describe(entry, index),
                    reason=SkipReason.MALFORMED, detail=_first_error(e),
                ))
                continue
            source = proposal.source if proposal.source in new_ids else handles.get(_key(proposal.source))
            target = proposal.target if proposal.target in new_ids else handles.get(_key(proposal.target))
            reason = self._edge_problem(source, target, (source, target) in pairs)
            if reason is not None:
                skipped.append(SkippedEntry(
                    kind="edge", ref=f"{proposal.source} -> {proposal.target}", reason=reason,
                ))
                continue
            pairs.add((source, target))
            edges.append(proposal.model_copy(update={"id": None, "source": source, "target": target}))

        self.store.replace_graph(nodes, edges)
        self.layout.recalculate_layout()
        graph = self.store.get_graph()
        return DeltaReport(added_nodes=graph.nodes, added_edges=graph.edges, skipped=skipped)

    # --- Internals ---

    def _add_edges(self, entries: List[Any], local: Dict[str, str], aliases: Dict[str, str],
                   skipped: List[SkippedEntry]) -> List[GraphEdge]:
        added = []
        for index, entry in enumerate(entries):
            try:
                proposal = EdgeProposal.model_validate(entry)
            except ValidationError as e:
                skipped.append(SkippedEntry(
                    kind="edge", ref=_describe(entry, index),
                    reason=SkipReason.MALFORMED, detail=_first_error(e),
                ))
                continue

            source = self._resolve(proposal.source, local, aliases)
            target = self._resolve(proposal.target, local, aliases)
            duplicate = source is not None and target is not None and self.store.find_edge(source, target) is not None
            reason = self._edge_problem(source, target, duplicate)
            if reason is not None:
                ref = f"{proposal.source} -> {proposal.target}"
                skipped.append(SkippedEntry(kind="edge", ref=ref, reason=reason))
                logger.info("Skipped edge %s (%s)", ref, reason.value)
                continue

            edge = self.store.add_edge(source, target, proposal.label, proposal.type, proposal.animated)
            added.append(edge.model_copy(deep=True))
        return added

    @staticmethod
    def _edge_problem(source: Optional[str], target: Optional[str], duplicate: bool) -> Optional[SkipReason]:
        if source is None or target is None:
            return SkipReason.UNRESOLVED
        if source == target:
            return SkipReason.SELF_LOOP
        if duplicate:
            return SkipReason.DUPLICATE_EDGE
        return None

    def _resolve(self, ref: str, local: Dict[str, str], aliases: Dict[str, str]) -> Optional[str]:
        if self.store.has_node(ref):
            return ref
        key = _key(ref)
        if key in local:
            return local[key]
        node = self.store.find_node_by_label(ref)
        if node is not None:
            return node.id
        return aliases.get(key)

    def _resolve_existing(self, ref: str) -> Optional[str]:
        return self._resolve(ref, {}, {})
