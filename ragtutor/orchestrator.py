"""End-to-end RAG run: index a folder, retrieve context, stream an answer.

Each run walks the states below in order. Any failing step moves the run to
FAILED and the original exception propagates unchanged; there are no
retries at this layer. Unreadable source documents are the one isolated
failure: they are logged, counted and skipped.
"""
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import structlog

from ragtutor.config import RagSettings
from ragtutor.errors import SourceReadError
from ragtutor.llm_client import OllamaClient
from ragtutor.output import MarkdownSink, render_header
from ragtutor.rag.chroma import (
    ChromaAdmin,
    ChromaClient,
    ChromaCollection,
    CollectionDescriptor,
)
from ragtutor.rag.ingest import IngestPipeline
from ragtutor.rag.prompt import build_rag_prompt, format_context
from ragtutor.rag.retriever import Retriever
from ragtutor.rag.sources import SourceDocument, SourceReader

logger = structlog.get_logger()

SinkFactory = Callable[[Path, str], MarkdownSink]


class PipelineState(str, Enum):
    IDLE = "idle"
    READING_SOURCES = "reading_sources"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    PROVISIONING = "provisioning"
    UPSERTING = "upserting"
    RETRIEVAL_EMBEDDING = "retrieval_embedding"
    RETRIEVING = "retrieving"
    GENERATING = "generating"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunResult:
    """Outcome of a successful run.

    ``collection_id`` is the resolved collection identifier; callers persist
    it so later runs skip provisioning.
    """

    collection_id: str
    output_path: Path
    documents_read: int
    documents_failed: int
    chunks_created: int
    embeddings_generated: int
    chunks_indexed: int
    retrieved: int
    fragments: int
    characters: int


class RagOrchestrator:
    """Runs the read → index → retrieve → generate flow for one folder."""

    def __init__(
        self,
        settings: RagSettings,
        ollama: Optional[OllamaClient] = None,
        chroma: Optional[ChromaClient] = None,
        reader: Optional[SourceReader] = None,
        sink_factory: Optional[SinkFactory] = None,
        notify: Optional[Callable[[str], None]] = None,
        on_fragment: Optional[Callable[[str], None]] = None,
    ):
        """Initialize the orchestrator.

        Args:
            settings: Immutable configuration for this invocation
            ollama: Ollama client (built from settings if omitted)
            chroma: Chroma transport (built from settings if omitted)
            reader: Source reader (built from settings if omitted)
            sink_factory: Callable(directory, header) returning an open sink
            notify: Receives short user-facing progress messages
            on_fragment: Receives every generated fragment after it is written

        Raises:
            InvalidConfiguration: If the chunking window is invalid
        """
        self.settings = settings
        self.ollama = ollama or OllamaClient(
            base_url=settings.ollama_base_url,
            timeout=settings.request_timeout,
            stream_timeout=settings.generation_timeout,
        )
        self.chroma = chroma or ChromaClient(
            base_url=settings.chroma_base_url,
            timeout=settings.request_timeout,
        )
        self.admin = ChromaAdmin(self.chroma)
        self.reader = reader or SourceReader(skip_prefix=settings.output_prefix)
        self.sink_factory = sink_factory or self._default_sink
        self.notify = notify or (lambda message: None)
        self.on_fragment = on_fragment

        self.ingest = IngestPipeline(
            self.ollama,
            embedding_model=settings.embedding_model,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            concurrency=settings.embed_concurrency,
        )
        self.retriever = Retriever(
            self.ollama,
            embedding_model=settings.embedding_model,
            top_k=settings.top_k,
        )

        self.state = PipelineState.IDLE
        self.history: List[PipelineState] = [PipelineState.IDLE]
        self.failed_step: Optional[PipelineState] = None
        self.error: Optional[Exception] = None
        self.output_path: Optional[Path] = None

    def _default_sink(self, directory: Path, header: str) -> MarkdownSink:
        return MarkdownSink.create(directory, header, prefix=self.settings.output_prefix)

    def _enter(self, state: PipelineState) -> None:
        logger.info("pipeline_state", previous=self.state.value, state=state.value)
        self.state = state
        self.history.append(state)

    def _fail(self, error: Exception) -> None:
        self.failed_step = self.state
        self.error = error
        self.state = PipelineState.FAILED
        self.history.append(PipelineState.FAILED)
        logger.error(
            "pipeline_failed",
            step=self.failed_step.value,
            error_kind=getattr(error, "kind", type(error).__name__),
            error=str(error),
        )

    async def run(
        self,
        folder: Path,
        user_prompt: str = "",
        output_dir: Optional[Path] = None,
    ) -> RunResult:
        """Index ``folder``, retrieve context for the guidance, and stream the answer.

        Args:
            folder: Folder holding the source documents
            user_prompt: Free-text guidance from the user (may be empty)
            output_dir: Where the output artifact goes (default: ``folder``)

        Returns:
            RunResult with the resolved collection id and counters

        Raises:
            RagError: The error of the first failing step, unchanged
        """
        if self.state is not PipelineState.IDLE:
            raise RuntimeError("An orchestrator instance runs only once")

        folder = Path(folder)
        output_dir = Path(output_dir) if output_dir else folder
        settings = self.settings

        try:
            self._enter(PipelineState.READING_SOURCES)
            documents, failed = self._read_sources(folder)

            self._enter(PipelineState.CHUNKING)
            pending = self.ingest.chunk_documents(documents)

            self._enter(PipelineState.EMBEDDING)
            chunks = await self.ingest.embed_chunks(pending)

            self._enter(PipelineState.PROVISIONING)
            descriptor = await self.admin.provision(
                CollectionDescriptor(
                    tenant_name=settings.chroma_tenant,
                    database_name=settings.chroma_database,
                    collection_name=settings.chroma_collection,
                    collection_id=settings.chroma_collection_id,
                )
            )
            collection = ChromaCollection(self.chroma, descriptor)

            self._enter(PipelineState.UPSERTING)
            upserted = await self.ingest.upsert(collection, chunks)
            self.notify(f"Stored {upserted} chunks in ChromaDB for RAG.")

            self._enter(PipelineState.RETRIEVAL_EMBEDDING)
            query = user_prompt if user_prompt.strip() else settings.base_prompt
            query_embedding = await self.retriever.embed_query(query)

            self._enter(PipelineState.RETRIEVING)
            retrieved = await self.retriever.search(collection, query_embedding)

            prompt = build_rag_prompt(
                settings.base_prompt, user_prompt, format_context(retrieved.documents)
            )

            self._enter(PipelineState.GENERATING)
            fragments, characters = await self._generate(prompt, user_prompt, output_dir)

            self._enter(PipelineState.DONE)
        except Exception as e:
            self._fail(e)
            raise

        result = RunResult(
            collection_id=descriptor.collection_id,
            output_path=self.output_path,
            documents_read=len(documents),
            documents_failed=failed,
            chunks_created=self.ingest.stats["chunks_created"],
            embeddings_generated=self.ingest.stats["embeddings_generated"],
            chunks_indexed=self.ingest.stats["chunks_upserted"],
            retrieved=len(retrieved),
            fragments=fragments,
            characters=characters,
        )
        logger.info(
            "pipeline_completed",
            collection_id=result.collection_id,
            output_path=str(result.output_path),
            chunks_indexed=result.chunks_indexed,
            retrieved=result.retrieved,
            fragments=result.fragments,
        )
        return result

    def _read_sources(self, folder: Path) -> Tuple[List[SourceDocument], int]:
        paths = self.reader.discover(folder)
        self.notify(f"Reading {len(paths)} files in {folder}...")

        documents = []
        failed = 0
        for path in paths:
            try:
                documents.append(self.reader.read(path))
            except SourceReadError as e:
                failed += 1
                logger.warning("source_skipped", path=str(e.path), error=str(e))
                self.notify(f"Skipped unreadable file {e.path.name}")

        if not documents:
            logger.warning("no_source_documents", folder=str(folder))

        return documents, failed

    async def _generate(
        self, prompt: str, user_prompt: str, output_dir: Path
    ) -> Tuple[int, int]:
        settings = self.settings
        sink = self.sink_factory(output_dir, render_header(settings.base_prompt, user_prompt))
        self.output_path = sink.path

        fragments = 0
        with sink:
            async for fragment in self.ollama.generate_stream(prompt, model=settings.llm_model):
                sink.append(fragment.text)
                fragments += 1
                if self.on_fragment:
                    self.on_fragment(fragment.text)

        return fragments, sink.characters_written
