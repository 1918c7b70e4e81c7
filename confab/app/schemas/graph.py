from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class Category(str, Enum):
    INPUT = "Input"
    SYSTEM = "System"
    ACTION = "Action"
    OUTPUT = "Output"
    DECISION = "Decision"


class Importance(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


# Free-form tags the model tends to emit instead of the five known kinds.
CATEGORY_ALIASES = {
    "input": Category.INPUT,
    "topic": Category.INPUT,
    "person": Category.INPUT,
    "question": Category.INPUT,
    "system": Category.SYSTEM,
    "service": Category.SYSTEM,
    "database": Category.SYSTEM,
    "concept": Category.SYSTEM,
    "action": Category.ACTION,
    "task": Category.ACTION,
    "step": Category.ACTION,
    "output": Category.OUTPUT,
    "result": Category.OUTPUT,
    "outcome": Category.OUTPUT,
    "decision": Category.DECISION,
    "choice": Category.DECISION,
}

BASE_NODE_WIDTH = 240.0
BASE_NODE_HEIGHT = 80.0
IMPORTANCE_SCALE = {
    Importance.SMALL: 1.0,
    Importance.MEDIUM: 1.15,
    Importance.LARGE: 1.4,
}


def normalize_category(value) -> Category:
    if isinstance(value, Category):
        return value
    key = str(value or "").strip().lower()
    return CATEGORY_ALIASES.get(key, Category.SYSTEM)


def normalize_importance(value) -> Importance:
    if isinstance(value, Importance):
        return value
    try:
        return Importance(str(value or "").strip().lower())
    except ValueError:
        return Importance.SMALL


def clean_label(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("label must be a non-empty string")
    return value.strip()


def _utcnow():
    return datetime.now(timezone.utc)


class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0


class Size(BaseModel):
    width: float
    height: float


def size_for(importance) -> Size:
    scale = IMPORTANCE_SCALE[normalize_importance(importance)]
    return Size(width=BASE_NODE_WIDTH * scale, height=BASE_NODE_HEIGHT * scale)


class NodeMetadata(BaseModel):
    """
    Known provenance fields plus an opaque `extra` bag.

    Keys that are not declared here are moved into `extra` so arbitrary
    JSON coming from the model is carried through untouched.
    """
    origin: Optional[str] = None
    source_excerpts: List[str] = []
    speaker: Optional[str] = None
    merged_from: List[str] = []
    summary: Optional[str] = None
    extra: Dict[str, Any] = {}

    @model_validator(mode="before")
    @classmethod
    def _collect_unknown(cls, data):
        if data is None:
            return {}
        if isinstance(data, BaseModel):
            return data
        if not isinstance(data, dict):
            return {"extra": {"value": data}}
        known = set(cls.model_fields)
        out = {k: v for k, v in data.items() if k in known}
        extra = dict(out["extra"]) if isinstance(out.get("extra"), dict) else {}
        for key, value in data.items():
            if key in known:
                continue
            if key in ("excerpt", "quote") and isinstance(value, str):
                out["source_excerpts"] = list(out.get("source_excerpts") or []) + [value]
            else:
                extra[key] = value
        out["extra"] = extra
        return out


class GraphNode(BaseModel):
    id: str
    label: str
    category: Category = Category.SYSTEM
    importance: Importance = Importance.SMALL
    position: Position = Field(default_factory=Position)
    size: Size
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)
    created_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="before")
    @classmethod
    def _default_size(cls, data):
        if isinstance(data, dict) and not data.get("size"):
            data = dict(data)
            data["size"] = size_for(data.get("importance"))
        return data

    @field_validator("label", mode="before")
    @classmethod
    def _label(cls, value):
        return clean_label(value)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value):
        return normalize_category(value)

    @field_validator("importance", mode="before")
    @classmethod
    def _importance(cls, value):
        return normalize_importance(value)


class GraphEdge(BaseModel):
    id: str
    source: str
    target: str
    label: Optional[str] = None
    type: str = "default"
    animated: bool = False


class GraphData(BaseModel):
    nodes: List[GraphNode] = []
    edges: List[GraphEdge] = []


# --- Inputs ---

class NodeCreate(BaseModel):
    """Input to GraphStore.add_node. `id` is only honoured by replace_graph."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    label: str
    category: Category = Field(Category.SYSTEM, validation_alias=AliasChoices("category", "type"))
    importance: Importance = Importance.SMALL
    position: Optional[Position] = None
    size: Optional[Size] = None
    metadata: NodeMetadata = Field(default_factory=NodeMetadata, validation_alias=AliasChoices("metadata", "data"))

    @field_validator("label", mode="before")
    @classmethod
    def _label(cls, value):
        return clean_label(value)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value):
        return normalize_category(value)

    @field_validator("importance", mode="before")
    @classmethod
    def _importance(cls, value):
        return normalize_importance(value)


class EdgeCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    source: str
    target: str
    label: Optional[str] = Field(None, validation_alias=AliasChoices("label", "relationship"))
    type: str = "default"
    animated: bool = False

    @field_validator("source", "target", mode="before")
    @classmethod
    def _ref(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if not isinstance(value, str) or not value.strip():
            raise ValueError("edge endpoint must be a non-empty string")
        return value.strip()


# Proposals coming from the language model share the input shapes; the
# node `id` on a proposal is only a local handle for edges in the same delta.
NodeProposal = NodeCreate
EdgeProposal = EdgeCreate


class ProposedDelta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    nodes: List[Any]
    edges: List[Any] = []


class NodeUpdateProposal(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    new_label: Optional[str] = Field(None, validation_alias=AliasChoices("newLabel", "new_label", "label"))
    new_category: Optional[Category] = Field(
        None, validation_alias=AliasChoices("newCategory", "new_category", "category")
    )

    @field_validator("new_category", mode="before")
    @classmethod
    def _category(cls, value):
        if value is None:
            return None
        return normalize_category(value)


class RefinementInstructions(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    nodes_to_remove: List[Any] = []
    nodes_to_update: List[Any] = []
    edges_to_add: List[Any] = []


# --- Results ---

class SkipReason(str, Enum):
    DUPLICATE = "duplicate"
    MALFORMED = "malformed"
    UNRESOLVED = "unresolved-reference"
    SELF_LOOP = "self-loop"
    DUPLICATE_EDGE = "duplicate-edge"
    NOT_FOUND = "not-found"


class SkippedEntry(BaseModel):
    kind: str  # "node" or "edge"
    ref: str
    reason: SkipReason
    detail: Optional[str] = None


class DeltaReport(BaseModel):
    status: str = "applied"  # applied, rejected
    added_nodes: List[GraphNode] = []
    added_edges: List[GraphEdge] = []
    skipped: List[SkippedEntry] = []
    error: Optional[str] = None


class RefinementReport(BaseModel):
    status: str = "applied"
    removed_nodes: List[str] = []
    updated_nodes: List[GraphNode] = []
    added_edges: List[GraphEdge] = []
    skipped: List[SkippedEntry] = []
    error: Optional[str] = None


class FinalizeReport(BaseModel):
    hub_id: Optional[str] = None
    edges_added: List[GraphEdge] = []
    isolated_nodes_remaining: int = 0
