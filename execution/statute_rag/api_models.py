"""
Pydantic models for the Statute RAG FastAPI backend.
"""

from typing import Optional
from pydantic import BaseModel, Field


class SearchRequest(BaseModel):
    """Request body for direct statute search."""
    query: str = Field(..., min_length=1, max_length=2000)
    region: Optional[str] = None
    top_k: Optional[int] = Field(default=None, ge=1, le=200)


class FragmentInfo(BaseModel):
    """One statute fragment in a search response."""
    id: str
    content: str
    law_name: str
    category: str
    region: str
    publish_date: str
    part: str
    chapter: str
    article_number: str
    distance: float
    source_file: str


class SearchResponse(BaseModel):
    """Response body for direct statute search."""
    results: list[FragmentInfo]
    latency_ms: float


class AgentSearchRequest(BaseModel):
    """Request body for agent-driven search."""
    query: str = Field(..., min_length=1, max_length=2000)


class CompletedTaskInfo(BaseModel):
    task: str
    thought: str


class AgentSearchResponse(BaseModel):
    """Response body for a blocking agent run."""
    results: list[FragmentInfo]
    completed_log: list[CompletedTaskInfo]
    latency_ms: float


class LawSuggestionInfo(BaseModel):
    name: str
    region: str
    category: str


class SnippetResponse(BaseModel):
    content: str


class FullTextResponse(BaseModel):
    source_file: str
    content: str


class AIConnectionCheckRequest(BaseModel):
    """Request body for checking an OpenAI-compatible endpoint."""
    base_url: str = Field(..., min_length=1)
    api_key: str = ""
    model: str = Field(..., min_length=1)


class AIConnectionCheckResponse(BaseModel):
    message: str


class SettingsUpdate(BaseModel):
    """Partial settings update. Omitted fields keep their current value."""
    data_dir: Optional[str] = None
    vector_table: Optional[str] = None
    metadata_dsn: Optional[str] = None
    search_top_k: Optional[int] = Field(None, ge=1)
    chat_top_k: Optional[int] = Field(None, ge=1)
    embedding_base_url: Optional[str] = None
    embedding_api_key: Optional[str] = None
    embedding_model: Optional[str] = None
    chat_base_url: Optional[str] = None
    chat_api_key: Optional[str] = None
    chat_model: Optional[str] = None
    max_agent_loops: Optional[int] = None  # <= 0 means the fallback cap
    max_pending_tasks: Optional[int] = None
    request_timeout: Optional[float] = Field(None, gt=0)


class SettingsResponse(BaseModel):
    """Current settings snapshot; API keys are redacted."""
    data_dir: str
    vector_table: str
    metadata_dsn: Optional[str] = None
    search_top_k: int
    chat_top_k: int
    embedding_base_url: str
    embedding_api_key: str
    embedding_model: str
    chat_base_url: str
    chat_api_key: str
    chat_model: str
    max_agent_loops: int
    max_pending_tasks: int
    request_timeout: float


class HealthResponse(BaseModel):
    """Response body for health check."""
    status: str
    version: str
    corpus: str
