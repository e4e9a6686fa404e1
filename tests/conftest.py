"""Pytest configuration and shared fixtures.

The Ollama and Chroma services are replaced by in-memory fakes served
through httpx.MockTransport, so every test runs offline.
"""
import json
import uuid
from typing import Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from ragtutor.config import RagSettings
from ragtutor.llm_client import OllamaClient
from ragtutor.rag.chroma import ChromaAdmin, ChromaClient

OLLAMA_URL = "http://ollama.test"
CHROMA_URL = "http://chroma.test"


async def byte_frames(frames: List[bytes]):
    """Async byte stream delivering ``frames`` one network read at a time."""
    for frame in frames:
        yield frame


def default_embed(text: str) -> List[float]:
    """Deterministic 3-d embedding derived from the text."""
    return [float(len(text)), float(text.count("a")), float(sum(map(ord, text[:8])) % 97)]


class FakeOllama:
    """Minimal /api/embed and /api/generate server."""

    def __init__(
        self,
        embed_fn: Callable[[str], List[float]] = default_embed,
        frames: Optional[List[bytes]] = None,
    ):
        self.embed_fn = embed_fn
        self.frames = frames if frames is not None else [
            b'{"response":"Q1. ","done":false}\n',
            b'{"response":"What is',
            b' RAG?","done":false}\n{"response":"","done":true}\n',
        ]
        self.embed_inputs: List[str] = []
        self.generate_payloads: List[dict] = []
        self.fail_embed_after: Optional[int] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}

        if request.url.path == "/api/embed":
            if (
                self.fail_embed_after is not None
                and len(self.embed_inputs) >= self.fail_embed_after
            ):
                return httpx.Response(500, text="model crashed")
            self.embed_inputs.append(body["input"])
            return httpx.Response(200, json={"embeddings": [self.embed_fn(body["input"])]})

        if request.url.path == "/api/generate":
            self.generate_payloads.append(body)
            return httpx.Response(200, content=byte_frames(self.frames))

        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": "llama3.1:latest"}]})

        return httpx.Response(404, text="not found")

    def client(self) -> OllamaClient:
        return OllamaClient(base_url=OLLAMA_URL, transport=httpx.MockTransport(self.handler))


class FakeChroma:
    """In-memory subset of the Chroma v2 REST API."""

    def __init__(self):
        self.tenants = set()
        self.databases: Dict[str, set] = {}
        self.collections: Dict[Tuple[str, str], Dict[str, str]] = {}
        self.records: Dict[str, List[Tuple[str, str, List[float]]]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], Tuple[int, str]] = {}

    def fail(self, method: str, path: str, status: int, body: str = "boom") -> None:
        """Make ``method path`` (path without /api/v2) answer with an error."""
        self.failures[(method, path)] = (status, body)

    def count(self, method: str, suffix: str = "") -> int:
        return sum(1 for m, p in self.calls if m == method and p.endswith(suffix))

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len("/api/v2"):]
        method = request.method
        self.calls.append((method, path))

        if (method, path) in self.failures:
            status, text = self.failures[(method, path)]
            return httpx.Response(status, text=text)

        body = json.loads(request.content) if request.content else None
        parts = [p for p in path.split("/") if p]

        if parts == ["heartbeat"]:
            return httpx.Response(200, json={"nanosecond heartbeat": 1})

        if parts == ["tenants"] and method == "POST":
            self.tenants.add(body["name"])
            return httpx.Response(200, json={})

        if len(parts) == 2 and parts[0] == "tenants":
            if parts[1] in self.tenants:
                return httpx.Response(200, json={"name": parts[1]})
            return httpx.Response(404, json={"error": "NotFoundError"})

        if len(parts) == 3 and parts[2] == "databases":
            tenant = parts[1]
            if tenant not in self.tenants:
                return httpx.Response(404, json={"error": "NotFoundError"})
            dbs = self.databases.setdefault(tenant, set())
            if method == "POST":
                dbs.add(body["name"])
                return httpx.Response(200, json={})
            return httpx.Response(
                200, json=[{"id": f"db-{n}", "name": n, "tenant": tenant} for n in sorted(dbs)]
            )

        if len(parts) == 5 and parts[4] == "collections":
            key = (parts[1], parts[3])
            collections = self.collections.setdefault(key, {})
            if method == "POST":
                collection_id = str(uuid.uuid4())
                collections[body["name"]] = collection_id
                self.records[collection_id] = []
                return httpx.Response(200, json={"id": collection_id, "name": body["name"]})
            return httpx.Response(
                200,
                json=[{"id": cid, "name": name} for name, cid in collections.items()],
            )

        if len(parts) == 7 and parts[6] in ("add", "query"):
            collection_id = parts[5]
            if collection_id not in self.records:
                return httpx.Response(404, json={"error": "NotFoundError"})
            if parts[6] == "add":
                for doc_id, doc, emb in zip(body["ids"], body["documents"], body["embeddings"]):
                    self.records[collection_id].append((doc_id, doc, emb))
                return httpx.Response(201, json=True)
            return self._query(collection_id, body)

        return httpx.Response(404, json={"error": "NotFoundError"})

    def _query(self, collection_id: str, body: dict) -> httpx.Response:
        query = body["query_embeddings"][0]
        scored = sorted(
            (
                sum((a - b) ** 2 for a, b in zip(query, emb)),
                doc_id,
                doc,
            )
            for doc_id, doc, emb in self.records[collection_id]
        )[: body["n_results"]]
        return httpx.Response(
            200,
            json={
                "ids": [[s[1] for s in scored]],
                "documents": [[s[2] for s in scored]],
                "distances": [[s[0] for s in scored]],
                "metadatas": [[None for _ in scored]],
            },
        )

    def client(self) -> ChromaClient:
        return ChromaClient(base_url=CHROMA_URL, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def fake_ollama():
    return FakeOllama()


@pytest.fixture
def fake_chroma():
    return FakeChroma()


@pytest.fixture
def chroma_admin(fake_chroma):
    return ChromaAdmin(fake_chroma.client())


@pytest.fixture
def settings():
    """Settings pointing at the fakes, with the default 500/50 window."""
    return RagSettings(
        ollama_base_url=OLLAMA_URL,
        chroma_base_url=CHROMA_URL,
        llm_model="llama3.1",
        embedding_model="qwen3-embedding",
        base_prompt="You are an AI tutor.",
        chroma_tenant="tenant_a",
        chroma_database="db_a",
        chroma_collection="notes",
        chroma_collection_id="",
        chunk_size=500,
        chunk_overlap=50,
        top_k=5,
        output_prefix="RagLlmLearning",
    )
