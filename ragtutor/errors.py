"""Error kinds raised by the RAG pipeline.

Every error derives from RagError and exposes ``kind`` so callers can show
a short "<kind>: <message>" notification without inspecting types.
"""
from pathlib import Path
from typing import Optional


class RagError(Exception):
    """Base exception for all pipeline errors."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class InvalidConfiguration(RagError, ValueError):
    """Bad pipeline parameters (chunk size/overlap, top-k, missing folder)."""


class HTTPStatusFailure(RagError):
    """Base for errors that may originate from a non-success HTTP response.

    Attributes:
        status_code: HTTP status code if the service answered
        body: Response body text if the service answered
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class EmbeddingError(HTTPStatusFailure):
    """Embedding call failed or returned a missing/malformed vector."""


class ChromaAPIError(HTTPStatusFailure):
    """Raw vector-store transport failure, converted by the callers."""

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class ProvisioningError(HTTPStatusFailure):
    """Tenant, database or collection could not be resolved."""


class ValidationError(RagError):
    """A chunk batch is malformed and was rejected before any network call."""

    def __init__(self, message: str, chunk_id: Optional[str] = None):
        super().__init__(message)
        self.chunk_id = chunk_id


class UpsertError(HTTPStatusFailure):
    """Adding a validated chunk batch to the collection failed."""


class RetrievalError(HTTPStatusFailure):
    """Similarity query failed or returned a malformed body."""


class GenerationError(HTTPStatusFailure):
    """Streaming generation request failed."""


class StreamDecodeError(RagError):
    """A single streamed line was not a JSON object. Never raised, only recorded."""

    def __init__(self, message: str, line: str):
        super().__init__(message)
        self.line = line


class SourceReadError(RagError):
    """A single source document could not be read."""

    def __init__(self, message: str, path: Path):
        super().__init__(message)
        self.path = path
