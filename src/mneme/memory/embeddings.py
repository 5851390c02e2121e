"""Text embeddings with a fallback chain.

Every write and every read goes through here, so providers are tried in
order (remote API, local sentence-transformers model, deterministic hashing)
and the first success wins. A provider that answers with the wrong vector
length is a configuration error and stops the chain immediately.
"""

import asyncio
import hashlib
import logging
import math
import re
from typing import Any, Protocol

import httpx

from ..config import MemorySettings
from ..errors import DimensionMismatchError, EmbeddingUnavailable

logger = logging.getLogger(__name__)

Vector = list[float]


class EmbeddingProvider(Protocol):
    """Anything that can turn text into a vector."""

    name: str

    async def embed(self, text: str) -> Vector: ...


class RemoteEmbeddingProvider:
    """Embeddings from an OpenAI-compatible HTTP endpoint (Mistral by default)."""

    name = "remote"

    def __init__(
        self,
        api_key: str | None,
        url: str = "https://api.mistral.ai/v1/embeddings",
        model: str = "mistral-embed",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            api_key: Bearer token for the endpoint. Without it the provider
                always fails and the chain moves on.
            url: Embeddings endpoint.
            model: Model name sent with each request.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, used by tests.
        """
        self._api_key = api_key
        self._url = url
        self._model = model
        self._timeout = timeout
        self._transport = transport

    async def embed(self, text: str) -> Vector:
        if not self._api_key:
            raise EmbeddingUnavailable("No API key configured for remote embeddings")

        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.post(
                self._url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"model": self._model, "input": [text]},
            )
            response.raise_for_status()
            data = response.json()

        try:
            return [float(x) for x in data["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingUnavailable(f"Malformed embedding response: {e}") from e


class LocalEmbeddingProvider:
    """Embeddings from a local sentence-transformers model, loaded lazily."""

    name = "local"

    def __init__(self, model_name: str) -> None:
        self.model_name = model_name
        self._model: Any = None

    def _get_model(self) -> Any:
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info(f"Loading local embedding model {self.model_name}")
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def _encode(self, text: str) -> Vector:
        model = self._get_model()
        emb = model.encode([text], convert_to_numpy=True, normalize_embeddings=True)
        return emb[0].tolist()

    async def embed(self, text: str) -> Vector:
        # Model loading and inference are CPU bound
        return await asyncio.to_thread(self._encode, text)


class HashEmbeddingProvider:
    """Deterministic feature-hashing embeddings.

    Never fails, so it is the last link of the chain. Word unigrams and
    bigrams are hashed into signed buckets and the result is L2-normalized:
    identical texts map to identical vectors and texts sharing words land
    close together.
    """

    name = "hash"

    def __init__(self, dimension: int) -> None:
        self.dimension = dimension

    def _features(self, text: str) -> list[str]:
        words = re.findall(r"\w+", text.lower())
        if not words:
            return list(text.strip())
        bigrams = [f"{a} {b}" for a, b in zip(words, words[1:])]
        return words + bigrams

    def embed_sync(self, text: str) -> Vector:
        vector = [0.0] * self.dimension
        for feature in self._features(text):
            digest = hashlib.sha256(feature.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "big") % self.dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[index] += sign

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]

    async def embed(self, text: str) -> Vector:
        return self.embed_sync(text)


class Embedder:
    """Embedding service adapter: fixed-length vectors through a provider chain."""

    def __init__(self, providers: list[EmbeddingProvider], dimension: int) -> None:
        """Initialize the adapter.

        Args:
            providers: Providers to try, in order of preference.
            dimension: Required vector length, shared with the collection.
        """
        if not providers:
            raise ValueError("At least one embedding provider is required")
        self.providers = providers
        self.dimension = dimension

    async def embed(self, text: str) -> Vector:
        """Embed text with the first provider that succeeds.

        Args:
            text: Non-empty text to embed.

        Returns:
            A vector of length ``dimension``.

        Raises:
            EmbeddingUnavailable: If the text is blank or every provider failed.
            DimensionMismatchError: If a provider returned the wrong length.
        """
        clean = text.strip() if text else ""
        if not clean:
            raise EmbeddingUnavailable("Cannot embed empty text")

        errors: list[str] = []
        for provider in self.providers:
            try:
                vector = await provider.embed(clean)
            except Exception as e:
                logger.warning(f"{provider.name} embedding failed: {e}")
                errors.append(f"{provider.name}: {e}")
                continue

            if len(vector) != self.dimension:
                raise DimensionMismatchError(self.dimension, len(vector), provider.name)
            return vector

        raise EmbeddingUnavailable("All embedding providers failed: " + "; ".join(errors))

    async def validate(self) -> bool:
        """Embed a probe string and report whether the chain is usable.

        Raises:
            DimensionMismatchError: If the chain is misconfigured.
        """
        try:
            await self.embed("Test connection")
        except EmbeddingUnavailable as e:
            logger.error(f"Embedding validation failed: {e}")
            return False
        return True


def build_embedder(settings: MemorySettings) -> Embedder:
    """Build the default provider chain from settings."""
    providers: list[EmbeddingProvider] = []
    if settings.embedding_api_key:
        providers.append(
            RemoteEmbeddingProvider(
                settings.embedding_api_key,
                url=settings.embedding_url,
                model=settings.embedding_model,
                timeout=settings.timeout,
            )
        )
    if settings.local_embedding_model:
        providers.append(LocalEmbeddingProvider(settings.local_embedding_model))
    providers.append(HashEmbeddingProvider(settings.dimension))
    return Embedder(providers, settings.dimension)
