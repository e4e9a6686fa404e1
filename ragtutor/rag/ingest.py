"""Ingest pipeline for indexing source documents.

Orchestrates:
- Per-document chunking with run-wide ordinal ids
- Embedding generation (optionally concurrent)
- Batch upload to the Chroma collection
"""
from dataclasses import dataclass
from typing import List, Sequence
import asyncio
import structlog

from ragtutor import config
from ragtutor.llm_client import OllamaClient
from ragtutor.rag.chroma import Chunk, ChromaCollection
from ragtutor.rag.chunker import TextChunker
from ragtutor.rag.sources import SourceDocument

logger = structlog.get_logger()


@dataclass(frozen=True)
class PendingChunk:
    """A chunk that has an id and text but no embedding yet."""

    id: str
    text: str


def chunk_id(ordinal: int) -> str:
    return f"chunk_{ordinal}"


class IngestPipeline:
    """Pipeline for turning source documents into stored chunks."""

    def __init__(
        self,
        ollama: OllamaClient,
        embedding_model: str = None,
        chunk_size: int = None,
        chunk_overlap: int = None,
        concurrency: int = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            ollama: Client used for embedding calls
            embedding_model: Embedding model name (default from config)
            chunk_size: Chunk size in characters (default from config)
            chunk_overlap: Chunk overlap in characters (default from config)
            concurrency: Maximum embedding calls in flight (default from config)
        """
        self.ollama = ollama
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.concurrency = max(1, concurrency or config.EMBED_CONCURRENCY)

        self.chunker = TextChunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap)

        self.stats = {
            "chunks_created": 0,
            "embeddings_generated": 0,
            "chunks_upserted": 0,
        }

        logger.info(
            "ingest_pipeline_initialized",
            embedding_model=self.embedding_model,
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            concurrency=self.concurrency,
        )

    def chunk_documents(self, documents: Sequence[SourceDocument]) -> List[PendingChunk]:
        """Chunk every document, numbering chunks across the whole run.

        Ids follow document order then position, so the same input always
        yields the same ``chunk_0, chunk_1, ...`` sequence.
        """
        pending = []

        for document in documents:
            for text_chunk in self.chunker.chunk_text(document.as_indexed_text()):
                pending.append(
                    PendingChunk(id=chunk_id(len(pending)), text=text_chunk.content)
                )

        self.stats["chunks_created"] = len(pending)
        logger.info(
            "documents_chunked",
            documents=len(documents),
            chunks=len(pending),
        )
        return pending

    async def embed_chunks(self, pending: Sequence[PendingChunk]) -> List[Chunk]:
        """Embed each chunk, preserving input order.

        Raises:
            EmbeddingError: On the first failed embedding call
        """
        if not pending:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def embed_one(item: PendingChunk) -> Chunk:
            async with semaphore:
                embedding = await self.ollama.embed(item.text, model=self.embedding_model)
            self.stats["embeddings_generated"] += 1
            logger.debug("chunk_embedded", chunk_id=item.id, dimension=len(embedding))
            return Chunk(id=item.id, text=item.text, embedding=tuple(embedding))

        if self.concurrency == 1:
            chunks = [await embed_one(item) for item in pending]
        else:
            chunks = list(await asyncio.gather(*(embed_one(item) for item in pending)))

        logger.info("chunks_embedded", count=len(chunks))
        return chunks

    async def upsert(self, collection: ChromaCollection, chunks: Sequence[Chunk]) -> int:
        """Send embedded chunks to the collection as one batch."""
        if not chunks:
            logger.warning("no_chunks_to_upsert")
            return 0

        count = await collection.upsert(chunks)
        self.stats["chunks_upserted"] += count
        return count
