import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .config import FRONTEND_URL, TRANSCRIPT_WINDOW_MS, configure_logging
from .errors import InvalidMergeError, OracleError, SessionNotFoundError
from .schemas.graph import EdgeCreate, NodeCreate
from .schemas.transcript import TranscriptCreate
from .services.extractor import GraphExtractor
from .services.session import GraphSession, SessionRegistry

logger = logging.getLogger(__name__)

# Global Instances
registry = SessionRegistry()
extractor = GraphExtractor()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("Graph service started.")
    yield
    logger.info("Graph service stopped.")

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL, "http://localhost:8082"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Dependencies ---

def get_session(session_id: str) -> GraphSession:
    try:
        return registry.get(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

SessionDep = Annotated[GraphSession, Depends(get_session)]


# --- Request Models ---

class CreateSessionRequest(BaseModel):
    session_id: Optional[str] = None

class ReplaceGraphRequest(BaseModel):
    nodes: List[Dict[str, Any]] = []
    edges: List[Dict[str, Any]] = []

class MergeRequest(BaseModel):
    node_ids: List[str]
    merged_label: str
    merged_category: Optional[str] = None

class ProcessTextRequest(BaseModel):
    text: str
    speaker: Optional[str] = None

class SummaryRequest(BaseModel):
    context_window: int = TRANSCRIPT_WINDOW_MS


def _session_info(session: GraphSession):
    return {
        "id": session.id,
        "created_at": session.created_at,
        "nodes": session.store.node_count(),
        "edges": session.store.edge_count(),
        "transcripts": len(session.transcripts),
    }


# --- Session Routes ---

@app.post("/sessions")
async def create_session(request: Optional[CreateSessionRequest] = None):
    session = registry.create(request.session_id if request else None)
    return _session_info(session)

@app.get("/sessions")
async def list_sessions():
    return {"sessions": [_session_info(s) for s in registry.list()]}

@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    if not registry.delete(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "deleted"}


# --- Graph Routes ---

@app.get("/sessions/{session_id}/graph")
async def get_graph(session: SessionDep):
    return session.get_graph()

@app.get("/sessions/{session_id}/graph/export")
async def export_graph(session: SessionDep):
    return Response(content=session.store.export_json(), media_type="application/json")

@app.post("/sessions/{session_id}/graph/clear")
async def clear_graph(session: SessionDep):
    session.clear()
    return {"message": "Graph cleared"}

@app.put("/sessions/{session_id}/graph")
async def replace_graph(request: ReplaceGraphRequest, session: SessionDep):
    try:
        return session.replace_graph(request.nodes, request.edges)
    except ValueError as e:
        # pydantic.ValidationError is a ValueError
        raise HTTPException(status_code=422, detail=str(e))

@app.post("/sessions/{session_id}/graph/nodes")
async def add_node(request: NodeCreate, session: SessionDep):
    return {"node": session.add_node(request)}

@app.patch("/sessions/{session_id}/graph/nodes/{node_id}")
async def update_node(node_id: str, session: SessionDep, fields: Dict[str, Any] = Body(...)):
    try:
        node = session.update_node(node_id, fields)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if node is None:
        raise HTTPException(status_code=404, detail="Node not found")
    return {"node": node}

@app.delete("/sessions/{session_id}/graph/nodes/{node_id}")
async def remove_node(node_id: str, session: SessionDep):
    return {"removed": session.remove_node(node_id)}

@app.post("/sessions/{session_id}/graph/edges")
async def add_edge(request: EdgeCreate, session: SessionDep):
    edge = session.add_edge(request.source, request.target, request.label, request.type, request.animated)
    if edge is None:
        raise HTTPException(status_code=404, detail="Source or target node not found")
    return {"edge": edge}

@app.delete("/sessions/{session_id}/graph/edges/{edge_id}")
async def remove_edge(edge_id: str, session: SessionDep):
    return {"removed": session.remove_edge(edge_id)}

@app.post("/sessions/{session_id}/graph/delta")
async def submit_delta(session: SessionDep, payload: Any = Body(...)):
    return session.submit_delta(payload)

@app.post("/sessions/{session_id}/graph/refine")
async def submit_refinement(session: SessionDep, payload: Any = Body(...)):
    return session.submit_refinement(payload)

@app.post("/sessions/{session_id}/graph/finalize")
async def finalize(session: SessionDep):
    return session.finalize()

@app.post("/sessions/{session_id}/graph/merge")
async def merge_nodes(request: MergeRequest, session: SessionDep):
    try:
        merged = session.merge(request.node_ids, request.merged_label, request.merged_category)
    except InvalidMergeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": "Nodes merged successfully", "merged_node": merged, "merged_from": request.node_ids}


# --- Transcript Routes ---

@app.post("/sessions/{session_id}/transcripts")
async def add_transcript(request: TranscriptCreate, session: SessionDep):
    return session.add_transcript(request.text, request.speaker)

@app.get("/sessions/{session_id}/transcripts")
async def get_transcripts(session: SessionDep, window_ms: Optional[int] = None):
    if window_ms is None:
        return {"transcripts": session.transcripts.all()}
    return {"transcripts": session.recent_transcripts(window_ms)}


# --- LLM Routes ---

@app.post("/sessions/{session_id}/process-text")
async def process_text(request: ProcessTextRequest, session: SessionDep):
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Text is required")
    async with session.lock:
        session.add_transcript(request.text, request.speaker)
        try:
            payload = await extractor.extract_delta(request.text, session.store.labels())
        except OracleError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return session.submit_delta(payload)

@app.post("/sessions/{session_id}/graph/refine/ai")
async def refine_with_ai(session: SessionDep):
    async with session.lock:
        try:
            payload = await extractor.propose_refinement(session.get_graph())
        except OracleError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return session.submit_refinement(payload)

@app.post("/sessions/{session_id}/graph/restructure/ai")
async def restructure_with_ai(session: SessionDep):
    async with session.lock:
        try:
            payload = await extractor.propose_restructure(session.get_graph())
        except OracleError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return session.apply_restructure(payload)

@app.post("/sessions/{session_id}/nodes/{node_id}/summary")
async def summarize_node(node_id: str, session: SessionDep, request: Optional[SummaryRequest] = None):
    node = session.store.node(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail="Node not found")
    window = request.context_window if request else TRANSCRIPT_WINDOW_MS
    try:
        summary = await extractor.summarize_node(node.label, session.recent_transcripts(window), window)
    except OracleError as e:
        raise HTTPException(status_code=502, detail=str(e))
    session.update_node(node_id, {"metadata": {"summary": summary}})
    return {"summary": summary, "node_id": node_id, "context_window": window}


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
