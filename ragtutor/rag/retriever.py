"""Retriever for semantic search over the indexed collection.

Handles:
- Query embedding generation
- Nearest-neighbor query against Chroma
"""
from typing import List, Optional, Sequence
import structlog

from ragtutor import config
from ragtutor.llm_client import OllamaClient
from ragtutor.rag.chroma import ChromaCollection, RetrievalResult

logger = structlog.get_logger()


class Retriever:
    """Semantic retriever for RAG pipeline."""

    def __init__(
        self,
        ollama: OllamaClient,
        embedding_model: str = None,
        top_k: int = None,
    ):
        """Initialize the retriever.

        Args:
            ollama: Client used to embed queries
            embedding_model: Embedding model name (default from config)
            top_k: Number of results to retrieve (default from config)
        """
        self.ollama = ollama
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k

        logger.info(
            "retriever_initialized",
            embedding_model=self.embedding_model,
            top_k=self.top_k,
        )

    async def embed_query(self, query: str) -> List[float]:
        """Embed the query text with the indexing model.

        Raises:
            EmbeddingError: If the embedding call fails
        """
        embedding = await self.ollama.embed(query, model=self.embedding_model)
        logger.debug("query_embedded", dimension=len(embedding), query_length=len(query))
        return embedding

    async def search(
        self,
        collection: ChromaCollection,
        query_embedding: Sequence[float],
        top_k: Optional[int] = None,
    ) -> RetrievalResult:
        """Fetch the nearest documents for an already embedded query.

        Raises:
            InvalidConfiguration: If top_k < 1
            RetrievalError: If the query fails
        """
        top_k = self.top_k if top_k is None else top_k
        result = await collection.query(query_embedding, top_k)

        logger.info(
            "retrieval_completed",
            results_returned=len(result),
            top_distance=result.distances[0] if result.distances else None,
        )
        return result
