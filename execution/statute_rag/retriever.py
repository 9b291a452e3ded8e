"""
Hybrid Retriever for Statute Fragments

Combines approximate vector search with an exact relational metadata join,
then applies jurisdiction filtering.

Pipeline:
1. Embed the query
2. Vector search for top_k * 3 nearest fragments (over-fetch)
3. Batch-fetch metadata for exactly those ids
4. Rejoin in vector order, stamping distances; ids without metadata drop out
5. Keep nationally-binding law always, local regulations only for a
   matching region
6. Truncate to top_k
"""

import logging
import time
from dataclasses import replace
from typing import Optional

from .config import Settings
from .embeddings import EmbeddingService
from .vector_store import VectorIndex, MetadataStore, StatuteFragment

logger = logging.getLogger(__name__)

# Post-filtering removes a share of hits (mostly out-of-region local
# regulations), so the vector stage fetches this many times top_k.
OVER_FETCH_FACTOR = 3


def passes_region_filter(fragment: StatuteFragment, region_filter: Optional[str]) -> bool:
    """
    Local regulations are only relevant inside their own jurisdiction.

    Everything that is not a local regulation always passes. A local
    regulation passes only when a region filter is given and is a substring
    of the fragment's region. An empty string is a given filter and matches
    every region; only None means no filter.
    """
    if not fragment.is_local_regulation:
        return True
    if region_filter is None:
        return False
    return region_filter in fragment.region


class HybridRetriever:
    """
    Two-stage statute retrieval: vector similarity, then relational metadata.

    The ascending-distance order returned by the vector index is
    authoritative and is preserved through the join and filter stages.
    """

    def __init__(
        self,
        vector_index: VectorIndex,
        metadata_store: MetadataStore,
        embedding_service: EmbeddingService,
        default_top_k: int = 50,
    ):
        self.index = vector_index
        self.metadata = metadata_store
        self.embeddings = embedding_service
        self.default_top_k = default_top_k

    def retrieve(
        self,
        query: str,
        region_filter: Optional[str] = None,
        top_k: Optional[int] = None,
    ) -> list[StatuteFragment]:
        """
        Retrieve statute fragments for a query.

        Args:
            query: Natural-language query
            region_filter: Jurisdiction name; enables matching local regulations
            top_k: Maximum number of fragments (defaults to search_top_k)

        Returns:
            Up to top_k fragments ordered by ascending distance

        Raises:
            EmbeddingError: query could not be embedded
            NotFoundError: vector index path or table missing
            VectorSearchError, DecodeError: vector query failed
            MetadataLookupError: relational store unreachable
        """
        start_time = time.time()
        top_k = top_k if top_k is not None else self.default_top_k
        if top_k <= 0:
            return []

        logger.info(f"Retrieving for query: {query[:50]}...")

        vector = self.embeddings.embed_query(query)
        hits = self.index.search(vector, limit=top_k * OVER_FETCH_FACTOR)

        if not hits:
            logger.info("Vector search returned no hits")
            return []

        metadata = self.metadata.fetch_chunks([chunk_id for chunk_id, _ in hits])
        joined = self._rejoin(hits, metadata)

        results = [f for f in joined if passes_region_filter(f, region_filter)]
        filtered_out = len(joined) - len(results)

        elapsed = (time.time() - start_time) * 1000
        logger.info(
            f"Returning {min(len(results), top_k)} fragments "
            f"({len(hits)} hits, {len(hits) - len(joined)} without metadata, "
            f"{filtered_out} filtered by region) in {elapsed:.0f}ms"
        )
        return results[:top_k]

    @staticmethod
    def _rejoin(
        hits: list[tuple[str, float]],
        metadata: dict[str, StatuteFragment],
    ) -> list[StatuteFragment]:
        """Attach metadata and distance to each hit, in hit order."""
        joined = []
        for chunk_id, distance in hits:
            row = metadata.get(chunk_id)
            if row is None:
                logger.debug(f"No metadata row for chunk {chunk_id}, dropping")
                continue
            # Fresh copy per hit so a repeated id never shares a distance
            joined.append(replace(row, distance=distance))
        return joined


# Factory function
def get_retriever(settings: Settings) -> HybridRetriever:
    """Build a retriever wired from one settings snapshot."""
    return HybridRetriever(
        vector_index=VectorIndex.from_settings(settings),
        metadata_store=MetadataStore.from_settings(settings),
        embedding_service=EmbeddingService.from_settings(settings),
        default_top_k=settings.search_top_k,
    )


# CLI for testing
if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    retriever = get_retriever(Settings.from_env())

    query = sys.argv[1] if len(sys.argv) > 1 else "民事诉讼时效期间"
    region = sys.argv[2] if len(sys.argv) > 2 else None

    print(f"\nSearching for: {query} (region: {region or '-'})")
    print("-" * 50)

    results = retriever.retrieve(query, region_filter=region, top_k=5)

    for i, fragment in enumerate(results, 1):
        print(f"\n{i}. {fragment.citation()} [{fragment.category}] (distance: {fragment.distance:.4f})")
        print(f"   Preview: {fragment.content[:200]}...")
