"""
Component wiring.

Every request works from one Settings snapshot, so a concurrent settings
update never mixes old and new endpoints inside a single agent run.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .agent import AgentLoop
from .config import Settings
from .embeddings import EmbeddingService
from .llm_client import CompletionClient
from .planner import TaskPlanner
from .retriever import HybridRetriever
from .reviewer import RetrievalReviewer
from .vector_store import MetadataStore, VectorIndex

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Components built from a single settings snapshot."""
    settings: Settings
    vector_index: VectorIndex
    metadata_store: MetadataStore
    retriever: HybridRetriever
    agent: AgentLoop

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        vector_index = VectorIndex.from_settings(settings)
        metadata_store = MetadataStore.from_settings(settings)
        retriever = HybridRetriever(
            vector_index=vector_index,
            metadata_store=metadata_store,
            embedding_service=EmbeddingService.from_settings(settings),
            default_top_k=settings.search_top_k,
        )
        return cls(
            settings=settings,
            vector_index=vector_index,
            metadata_store=metadata_store,
            retriever=retriever,
            agent=_build_agent(settings, retriever),
        )


def _build_agent(settings: Settings, retriever: HybridRetriever) -> AgentLoop:
    completion = CompletionClient.from_settings(settings)
    return AgentLoop(
        retriever=retriever,
        planner=TaskPlanner(completion, max_tasks=settings.max_pending_tasks),
        reviewer=RetrievalReviewer(completion, max_tasks=settings.max_pending_tasks),
        max_loops=settings.max_agent_loops,
    )


def build_agent(settings: Settings) -> AgentLoop:
    """Agent loop with its own retriever, for CLI use."""
    return ServiceContainer.from_settings(settings).agent


class ServiceCache:
    """
    Holds the container for the most recent settings snapshot.

    Rebuilt whenever the snapshot changes; in-flight requests keep the
    container they started with.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._settings: Optional[Settings] = None
        self._container: Optional[ServiceContainer] = None

    def get(self, settings: Settings) -> ServiceContainer:
        with self._lock:
            if self._container is None or self._settings != settings:
                logger.info("Building services for new settings snapshot")
                self._container = ServiceContainer.from_settings(settings)
                self._settings = settings
            return self._container
