"""Chroma vector store client over the v2 REST API.

Handles:
- Idempotent tenant/database/collection provisioning
- Batch chunk upload with up-front validation
- Nearest-neighbor queries

Two sessions provisioning the same names at the same moment can both see
"absent" and both create; the server's uniqueness constraints decide the
outcome. Nothing here serializes concurrent sessions.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import pydantic
from pydantic import BaseModel, ConfigDict
import structlog

from ragtutor import config
from ragtutor.errors import (
    ChromaAPIError,
    InvalidConfiguration,
    ProvisioningError,
    RetrievalError,
    UpsertError,
    ValidationError,
)

logger = structlog.get_logger()

API_PREFIX = "/api/v2"


class NamedResource(BaseModel):
    """Database or collection entry as listed by the server."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    id: Optional[str] = None


class QueryResponse(BaseModel):
    """Subset of the query response this client reads."""

    model_config = ConfigDict(extra="ignore")

    documents: List[List[Optional[str]]]
    distances: Optional[List[Optional[List[Optional[float]]]]] = None


@dataclass(frozen=True)
class Chunk:
    """A chunk of source text paired with its embedding."""

    id: str
    text: str
    embedding: Tuple[float, ...]


@dataclass(frozen=True)
class CollectionDescriptor:
    """Names locating a collection, plus its id once resolved."""

    tenant_name: str
    database_name: str
    collection_name: str
    collection_id: str = ""


@dataclass
class RetrievalResult:
    """Documents returned by a similarity query, nearest first."""

    documents: List[str] = field(default_factory=list)
    distances: List[Optional[float]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.documents)


class ChromaClient:
    """Thin JSON transport for the Chroma REST API."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Chroma client.

        Args:
            base_url: Chroma server URL (defaults to config.CHROMA_BASE_URL)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or config.CHROMA_BASE_URL).rstrip("/")
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.transport = transport

    async def request(self, method: str, path: str, body: Any = None) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            ChromaAPIError: On transport failure, non-success status or
                a body that is not JSON
        """
        url = f"{self.base_url}{API_PREFIX}{path}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.request(method, url, json=body)
        except httpx.HTTPError as e:
            logger.error("chroma_transport_error", method=method, path=path, error=str(e))
            raise ChromaAPIError(f"Chroma request failed: {e}") from e

        if response.is_error:
            logger.debug(
                "chroma_http_error",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise ChromaAPIError(
                f"Chroma API error ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ChromaAPIError(
                f"Chroma response is not JSON: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e


class ChromaAdmin:
    """Get-or-create provisioning of tenants, databases and collections."""

    def __init__(self, client: ChromaClient):
        self.client = client
        self._collection_ids: Dict[Tuple[str, str, str], str] = {}

    async def heartbeat(self) -> bool:
        """Return True if the server answers its heartbeat endpoint."""
        try:
            await self.client.request("GET", "/heartbeat")
            return True
        except ChromaAPIError as e:
            logger.warning("chroma_heartbeat_failed", error=str(e))
            return False

    async def ensure_tenant(self, name: str) -> None:
        """Create the tenant unless it already exists.

        Raises:
            ProvisioningError: On any failure other than "tenant not found"
        """
        try:
            await self.client.request("GET", f"/tenants/{name}")
            logger.info("chroma_tenant_exists", tenant=name)
            return
        except ChromaAPIError as e:
            if not e.is_not_found:
                raise self._provisioning_error("tenant", name, e) from e

        try:
            await self.client.request("POST", "/tenants", {"name": name})
        except ChromaAPIError as e:
            raise self._provisioning_error("tenant", name, e) from e

        logger.info("chroma_tenant_created", tenant=name)

    async def ensure_database(self, tenant: str, name: str) -> None:
        """Create the database in ``tenant`` unless one with this name is listed.

        Raises:
            ProvisioningError: If listing or creating fails
        """
        path = f"/tenants/{tenant}/databases"

        try:
            databases = self._parse_listing(await self.client.request("GET", path))
            if any(db.name == name for db in databases):
                logger.info("chroma_database_exists", tenant=tenant, database=name)
                return

            await self.client.request("POST", path, {"name": name})
        except (ChromaAPIError, pydantic.ValidationError) as e:
            raise self._provisioning_error("database", name, e) from e

        logger.info("chroma_database_created", tenant=tenant, database=name)

    async def ensure_collection(self, tenant: str, database: str, name: str) -> str:
        """Return the id of the named collection, creating it only if absent.

        Ids are cached per (tenant, database, name) for the lifetime of this
        object, so repeated calls hit the server at most once.

        Raises:
            ProvisioningError: If listing or creating fails, or no id comes back
        """
        key = (tenant, database, name)
        if key in self._collection_ids:
            return self._collection_ids[key]

        path = f"/tenants/{tenant}/databases/{database}/collections"

        try:
            collections = self._parse_listing(await self.client.request("GET", path))
            collection = next((c for c in collections if c.name == name), None)

            if collection is None:
                created = await self.client.request("POST", path, {"name": name})
                collection = NamedResource.model_validate(created)
                logger.info(
                    "chroma_collection_created",
                    tenant=tenant,
                    database=database,
                    collection=name,
                )
        except (ChromaAPIError, pydantic.ValidationError) as e:
            raise self._provisioning_error("collection", name, e) from e

        if not collection.id:
            raise ProvisioningError(f"Collection {name} exists but has no id")

        self._collection_ids[key] = collection.id
        logger.info("chroma_collection_resolved", collection=name, collection_id=collection.id)
        return collection.id

    async def provision(self, descriptor: CollectionDescriptor) -> CollectionDescriptor:
        """Resolve the descriptor's collection id, provisioning as needed.

        A descriptor that already carries an id is returned unchanged
        without contacting the server.
        """
        if descriptor.collection_id:
            logger.info(
                "chroma_provisioning_skipped",
                collection_id=descriptor.collection_id,
            )
            return descriptor

        await self.ensure_tenant(descriptor.tenant_name)
        await self.ensure_database(descriptor.tenant_name, descriptor.database_name)
        collection_id = await self.ensure_collection(
            descriptor.tenant_name,
            descriptor.database_name,
            descriptor.collection_name,
        )

        return CollectionDescriptor(
            tenant_name=descriptor.tenant_name,
            database_name=descriptor.database_name,
            collection_name=descriptor.collection_name,
            collection_id=collection_id,
        )

    @staticmethod
    def _parse_listing(data: Any) -> List[NamedResource]:
        return pydantic.TypeAdapter(List[NamedResource]).validate_python(data)

    @staticmethod
    def _provisioning_error(resource: str, name: str, cause: Exception) -> ProvisioningError:
        logger.error(
            "chroma_provisioning_failed",
            resource=resource,
            name=name,
            error=str(cause),
        )
        return ProvisioningError(
            f"Could not ensure {resource} '{name}': {cause}",
            status_code=getattr(cause, "status_code", None),
            body=getattr(cause, "body", None),
        )


def _valid_embedding(embedding: Any) -> bool:
    if not isinstance(embedding, (list, tuple)) or not embedding:
        return False
    return all(
        isinstance(n, (int, float)) and not isinstance(n, bool) for n in embedding
    )


class ChromaCollection:
    """Data operations on one resolved collection."""

    def __init__(self, client: ChromaClient, descriptor: CollectionDescriptor):
        """Bind to a collection.

        Raises:
            InvalidConfiguration: If the descriptor has no collection id
        """
        if not descriptor.collection_id:
            raise InvalidConfiguration(
                f"Collection '{descriptor.collection_name}' has no resolved id"
            )

        self.client = client
        self.descriptor = descriptor
        self.path = (
            f"/tenants/{descriptor.tenant_name}"
            f"/databases/{descriptor.database_name}"
            f"/collections/{descriptor.collection_id}"
        )

    @staticmethod
    def validate_chunks(chunks: Sequence[Chunk]) -> None:
        """Reject the whole batch on the first chunk with a bad embedding.

        Raises:
            ValidationError: If any embedding is missing, empty or non-numeric
        """
        for chunk in chunks:
            if not _valid_embedding(getattr(chunk, "embedding", None)):
                raise ValidationError(
                    f"Invalid embedding for chunk {chunk.id}", chunk_id=chunk.id
                )

    async def upsert(self, chunks: Sequence[Chunk]) -> int:
        """Add a batch of chunks to the collection.

        The batch is validated before any request is sent.

        Returns:
            Number of chunks sent

        Raises:
            ValidationError: If any chunk is malformed (no request is made)
            UpsertError: If the add request fails
        """
        if not chunks:
            return 0

        self.validate_chunks(chunks)

        payload = {
            "documents": [c.text for c in chunks],
            "embeddings": [list(c.embedding) for c in chunks],
            "ids": [c.id for c in chunks],
            "metadatas": [None for _ in chunks],
            "uris": ["" for _ in chunks],
        }

        try:
            await self.client.request("POST", f"{self.path}/add", payload)
        except ChromaAPIError as e:
            logger.error("chroma_upsert_failed", count=len(chunks), error=str(e))
            raise UpsertError(
                f"Failed to add {len(chunks)} chunks: {e}",
                status_code=e.status_code,
                body=e.body,
            ) from e

        logger.info(
            "chroma_chunks_upserted",
            count=len(chunks),
            collection=self.descriptor.collection_name,
        )
        return len(chunks)

    async def query(self, embedding: Sequence[float], k: int) -> RetrievalResult:
        """Return the ``k`` nearest documents to ``embedding``.

        Raises:
            InvalidConfiguration: If k < 1
            RetrievalError: On request failure or malformed response
        """
        if k < 1:
            raise InvalidConfiguration(f"top_k must be at least 1, got {k}")

        payload = {
            "n_results": k,
            "query_embeddings": [list(embedding)],
        }

        try:
            data = await self.client.request("POST", f"{self.path}/query", payload)
            parsed = QueryResponse.model_validate(data)
        except ChromaAPIError as e:
            logger.error("chroma_query_failed", error=str(e))
            raise RetrievalError(
                f"Query failed: {e}", status_code=e.status_code, body=e.body
            ) from e
        except pydantic.ValidationError as e:
            logger.error("chroma_query_malformed", error=str(e))
            raise RetrievalError(f"Malformed query response: {e}") from e

        if not parsed.documents:
            raise RetrievalError("Query response contains no result list")

        ranked = parsed.documents[0]
        distances = []
        if parsed.distances and parsed.distances[0]:
            distances = parsed.distances[0]

        # distances stay index-aligned with documents; unknown ones are None
        result = RetrievalResult()
        for index, document in enumerate(ranked[:k]):
            if document is None:
                continue
            result.documents.append(document)
            result.distances.append(distances[index] if index < len(distances) else None)

        logger.info(
            "chroma_query_completed",
            requested=k,
            returned=len(result.documents),
        )
        return result
