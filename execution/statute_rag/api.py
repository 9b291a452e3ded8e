"""
FastAPI Backend for Statute RAG

Exposes direct statute search, the agent loop (blocking and SSE-streamed),
law lookups for the reading view, the AI endpoint check and runtime
settings.

Run with: uvicorn execution.statute_rag.api:app --host 0.0.0.0 --port 8000
"""

import os
import json
import queue
import time
import logging
import threading
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from . import __version__
from .agent import AGENT_UPDATE_EVENT, AgentPhase, AgentProgressEvent
from .api_models import (
    SearchRequest, SearchResponse, FragmentInfo,
    AgentSearchRequest, AgentSearchResponse, CompletedTaskInfo,
    LawSuggestionInfo, SnippetResponse, FullTextResponse,
    AIConnectionCheckRequest, AIConnectionCheckResponse,
    SettingsUpdate, SettingsResponse, HealthResponse,
)
from .config import SettingsStore, get_settings_store
from .errors import (
    StatuteRAGError, NotFoundError, TransportError,
    UpstreamStatusError, DecodeError,
)
from .llm_client import check_ai_connection
from .services import ServiceCache, ServiceContainer
from .vector_store import StatuteFragment

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Statute RAG API",
    description="Agentic retrieval over Chinese statutes and regulations",
    version=__version__,
)

# Configure CORS: use CORS_ORIGINS env var (comma-separated) or default to localhost
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_service_cache = ServiceCache()

# Sentinel closing the progress queue of a streamed agent run
_STREAM_END = object()


# =============================================================================
# Dependencies
# =============================================================================

def get_store() -> SettingsStore:
    return get_settings_store()


def get_services(store: SettingsStore = Depends(get_store)) -> ServiceContainer:
    """Components for the current settings snapshot."""
    return _service_cache.get(store.snapshot())


# =============================================================================
# Error mapping
# =============================================================================

@app.exception_handler(StatuteRAGError)
async def statute_error_handler(request: Request, exc: StatuteRAGError):
    # Missing corpus is a server-side setup problem; everything else is upstream
    status_code = 503 if isinstance(exc, NotFoundError) else 502
    logger.error(f"{request.url.path} failed with {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def _fragment_infos(fragments: list[StatuteFragment]) -> list[FragmentInfo]:
    return [FragmentInfo(**f.to_dict()) for f in fragments]


def _sse_event(event: str, data) -> str:
    """Format a Server-Sent Event."""
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/api/v1/health", response_model=HealthResponse)
async def health_check(services: ServiceContainer = Depends(get_services)):
    """Health check endpoint."""
    corpus = "ready" if services.vector_index.exists() else "missing"
    if corpus == "missing":
        logger.warning(f"Health check: vector index missing at {services.vector_index.db_path}")

    return HealthResponse(status="ok", version=__version__, corpus=corpus)


@app.post("/api/v1/search", response_model=SearchResponse)
def search(
    request: SearchRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Direct retrieval: one embedding, one vector search, one metadata join."""
    start_time = time.time()
    results = services.retriever.retrieve(
        request.query,
        region_filter=request.region or None,
        top_k=request.top_k,
    )
    return SearchResponse(
        results=_fragment_infos(results),
        latency_ms=(time.time() - start_time) * 1000,
    )


@app.post("/api/v1/agent/search", response_model=AgentSearchResponse)
def agent_search(
    request: AgentSearchRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Run the agent loop to completion and return its results and audit log."""
    start_time = time.time()
    events: list[AgentProgressEvent] = []

    results = services.agent.run(request.query, on_progress=events.append)

    finished = events[-1] if events and events[-1].phase == AgentPhase.FINISHED else None
    completed_log = finished.completed_log if finished else ()

    return AgentSearchResponse(
        results=_fragment_infos(results),
        completed_log=[CompletedTaskInfo(**entry.to_dict()) for entry in completed_log],
        latency_ms=(time.time() - start_time) * 1000,
    )


@app.post("/api/v1/agent/search/stream")
def agent_search_stream(
    request: AgentSearchRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Streaming agent run with SSE.

    Sends events:
      - {"event": "agent-update", "data": {...}}  (one per progress snapshot)
      - {"event": "result", "data": [...]}        (final fragments)
      - {"event": "error", "data": "..."}         (instead of result, on failure)
      - {"event": "done", "data": {"latency_ms": ...}}  (final)
    """
    start_time = time.time()
    agent = services.agent

    def generate():
        events: queue.Queue = queue.Queue()
        outcome: dict = {}

        def worker():
            try:
                outcome["results"] = agent.run(request.query, on_progress=events.put)
            except StatuteRAGError as e:
                logger.error(f"Stream: agent run failed: {e}")
                outcome["error"] = str(e)
            except Exception as e:
                logger.exception("Stream: unexpected agent failure")
                outcome["error"] = f"{type(e).__name__}: {e}"
            finally:
                events.put(_STREAM_END)

        thread = threading.Thread(target=worker, name="agent-stream", daemon=True)
        thread.start()

        while True:
            event = events.get()
            if event is _STREAM_END:
                break
            yield _sse_event(AGENT_UPDATE_EVENT, event.to_dict())

        thread.join()

        if "error" in outcome:
            yield _sse_event("error", outcome["error"])
        else:
            yield _sse_event("result", [f.to_dict() for f in outcome["results"]])

        yield _sse_event("done", {"latency_ms": (time.time() - start_time) * 1000})

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@app.get("/api/v1/laws/suggest", response_model=list[LawSuggestionInfo])
def suggest_laws(
    q: str,
    limit: int = 10,
    services: ServiceContainer = Depends(get_services),
):
    """Autocomplete law titles."""
    if not q.strip():
        return []
    suggestions = services.metadata_store.suggest_law_names(q.strip(), limit=max(limit, 0))
    return [LawSuggestionInfo(**s.to_dict()) for s in suggestions]


@app.get("/api/v1/laws/snippet", response_model=SnippetResponse)
def article_snippet(
    article_number: str,
    current_law_name: str,
    law_name: Optional[str] = None,
    services: ServiceContainer = Depends(get_services),
):
    """Text of one article, for citation previews."""
    content = services.metadata_store.get_article_snippet(
        article_number, current_law_name, law_name_query=law_name or None,
    )
    return SnippetResponse(content=content)


@app.get("/api/v1/laws/full-text", response_model=FullTextResponse)
def full_text(
    source_file: str,
    services: ServiceContainer = Depends(get_services),
):
    """Complete text of a law."""
    try:
        content = services.metadata_store.get_full_text(source_file)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return FullTextResponse(source_file=source_file, content=content)


@app.post("/api/v1/ai/check", response_model=AIConnectionCheckResponse)
def ai_check(request: AIConnectionCheckRequest):
    """Check that an OpenAI-compatible endpoint answers and lists the model."""
    try:
        message = check_ai_connection(request.base_url, request.api_key, request.model)
    except TransportError as e:
        raise HTTPException(status_code=502, detail=f"连接失败: 网络请求错误 ({e})")
    except UpstreamStatusError as e:
        raise HTTPException(status_code=502, detail=f"连接失败: 服务器返回状态码 {e.status_code}")
    except DecodeError as e:
        raise HTTPException(status_code=502, detail=f"解析失败: {e}")
    return AIConnectionCheckResponse(message=message)


@app.get("/api/v1/settings", response_model=SettingsResponse)
async def get_config(store: SettingsStore = Depends(get_store)):
    """Current settings (API keys redacted)."""
    return SettingsResponse(**store.snapshot().to_dict())


@app.put("/api/v1/settings", response_model=SettingsResponse)
async def update_config(
    update: SettingsUpdate,
    store: SettingsStore = Depends(get_store),
):
    """Update settings in memory. New requests pick up the new snapshot."""
    changes = update.model_dump(exclude_none=True)
    # An empty DSN switches back to the local content.db
    if changes.get("metadata_dsn") == "":
        changes["metadata_dsn"] = None
    if not changes:
        raise HTTPException(status_code=400, detail="No settings to update")

    try:
        updated = store.update(**changes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SettingsResponse(**updated.to_dict())
