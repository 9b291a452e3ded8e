"""
Statute RAG - Agentic retrieval over Chinese statutes and regulations

This module provides:
- Hybrid retrieval: vector nearest-neighbour search joined with relational
  statute metadata, filtered by jurisdiction
- An agent loop that plans sub-queries, retrieves for each and lets an LLM
  reviewer rewrite the remaining plan
- Streaming chat-completion decoding for OpenAI-compatible endpoints
- A FastAPI backend exposing search, agent runs and law lookups

Corpus layout (read-only): <data_dir>/law_db.lancedb and <data_dir>/content.db
"""

__version__ = "0.1.0"

from .config import Settings, SettingsStore
from .embeddings import EmbeddingService
from .vector_store import VectorIndex, MetadataStore, StatuteFragment
from .retriever import HybridRetriever
from .agent import AgentLoop, AgentPhase, AgentProgressEvent

__all__ = [
    "Settings",
    "SettingsStore",
    "EmbeddingService",
    "VectorIndex",
    "MetadataStore",
    "StatuteFragment",
    "HybridRetriever",
    "AgentLoop",
    "AgentPhase",
    "AgentProgressEvent",
]
