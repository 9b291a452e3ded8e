"""
Error taxonomy for the Statute RAG system.

Embedding and retrieval failures propagate to the caller; planning and
review failures are absorbed into documented fallback values.
"""


class StatuteRAGError(Exception):
    """Base class for all errors raised by this package."""


class TransportError(StatuteRAGError):
    """HTTP or network failure before a response was received."""


class UpstreamStatusError(StatuteRAGError):
    """The upstream service answered with a non-success HTTP status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(StatuteRAGError):
    """Malformed or unexpected response shape."""


class NotFoundError(StatuteRAGError):
    """A store path, table or record does not exist."""


class MetadataLookupError(StatuteRAGError, LookupError):
    """The relational metadata store could not be queried."""


class VectorSearchError(StatuteRAGError):
    """The vector index was opened but the nearest-neighbour query failed."""


class EmbeddingError(StatuteRAGError):
    """Embedding a query failed. The underlying error is chained as __cause__."""
