"""Ollama LLM client wrapper with error handling."""
import httpx
from typing import Any, AsyncIterator, List, Optional
import structlog

from ragtutor import config
from ragtutor.errors import EmbeddingError, GenerationError
from ragtutor.stream import GenerationFragment, NDJSONStreamDecoder, fragments_from

logger = structlog.get_logger()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def normalize_embedding(data: Any) -> List[float]:
    """Extract one flat vector from an ``/api/embed`` response body.

    The ``embeddings`` field is either ``[[...]]`` (one vector per input,
    current servers) or a flat ``[...]`` (older servers).

    Raises:
        EmbeddingError: If the vector is absent, empty or non-numeric
    """
    if not isinstance(data, dict) or "embeddings" not in data:
        raise EmbeddingError("Embedding response has no 'embeddings' field")

    embeddings = data["embeddings"]
    if not isinstance(embeddings, list):
        raise EmbeddingError(
            f"'embeddings' must be a list, got {type(embeddings).__name__}"
        )

    vector = embeddings[0] if embeddings and isinstance(embeddings[0], list) else embeddings

    if not vector:
        raise EmbeddingError("Empty embedding returned")

    if not all(_is_number(n) for n in vector):
        raise EmbeddingError("Embedding contains non-numeric values")

    return [float(n) for n in vector]


class OllamaClient:
    """Async client for interacting with Ollama API."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        stream_timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds for embedding calls
            stream_timeout: Read timeout in seconds for streamed generation
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.stream_timeout = stream_timeout or config.GENERATION_TIMEOUT
        self.transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    async def embed(self, text: str, model: str = None) -> List[float]:
        """Generate an embedding vector for one input string.

        Args:
            text: Text to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            Flat list of floats

        Raises:
            EmbeddingError: On transport failure, error status, unparseable
                body, or a missing/empty/non-numeric vector
        """
        model = model or config.EMBEDDING_MODEL

        payload = {
            "model": model,
            "input": text,
        }

        try:
            async with self._client(self.timeout) as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=model,
                    input_length=len(text),
                )

                response = await client.post(
                    f"{self.base_url}/api/embed",
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e), base_url=self.base_url)
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        if response.is_error:
            logger.error(
                "ollama_embedding_http_error",
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise EmbeddingError(
                f"Embedding API error ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise EmbeddingError(f"Embedding response is not JSON: {e}") from e

        embedding = normalize_embedding(data)

        logger.debug(
            "ollama_embedding_response",
            model=model,
            dimension=len(embedding),
        )

        return embedding

    async def generate_stream(
        self,
        prompt: str,
        model: str = None,
    ) -> AsyncIterator[GenerationFragment]:
        """Stream a completion from ``/api/generate``.

        Fragments are yielded as soon as their line is complete. The
        iterator is single-use; a partial line left when the server closes
        the stream is dropped.

        Args:
            prompt: Fully composed prompt
            model: Model to use (defaults to config.LLM_MODEL)

        Yields:
            GenerationFragment for every streamed object with response text

        Raises:
            GenerationError: On transport failure or error status
        """
        model = model or config.LLM_MODEL

        payload = {
            "model": model,
            "prompt": prompt,
            "stream": True,
        }

        decoder = NDJSONStreamDecoder()
        fragment_count = 0

        logger.info(
            "ollama_generate_request",
            model=model,
            prompt_length=len(prompt),
        )

        timeout = httpx.Timeout(self.timeout, read=self.stream_timeout)

        try:
            async with self._client(timeout) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/api/generate",
                    json=payload,
                ) as response:
                    if response.is_error:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        logger.error(
                            "ollama_generate_http_error",
                            status_code=response.status_code,
                            body=body[:200],
                        )
                        raise GenerationError(
                            f"Generate API error ({response.status_code}): {body}",
                            status_code=response.status_code,
                            body=body,
                        )

                    async for data in response.aiter_bytes():
                        for obj in decoder.feed(data):
                            for fragment in fragments_from(obj):
                                fragment_count += 1
                                yield fragment

        except httpx.HTTPError as e:
            logger.error("ollama_generate_error", error=str(e), base_url=self.base_url)
            raise GenerationError(f"Generate request failed: {e}") from e
        finally:
            decoder.close()

        logger.info(
            "ollama_generate_completed",
            model=model,
            fragments=fragment_count,
            lines_parsed=decoder.lines_parsed,
            malformed_lines=len(decoder.errors),
        )

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Returns:
            List of model names

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise
