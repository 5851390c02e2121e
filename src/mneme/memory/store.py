"""Qdrant storage for memory facts.

Every read is filtered by user twice: once in the query sent to Qdrant and
once on the returned points. Points that slip through the first filter are
dropped and reported as isolation violations.
"""

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from ..config import MemorySettings
from ..errors import ConfigurationError, DimensionMismatchError, StoreError, StoreUnavailable
from ..logging import JSONLLogger, get_logger
from .models import Fact, SearchResult, key_identity

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCROLL_PAGE_SIZE = 256


def is_transient(error: BaseException) -> bool:
    """Whether an error from the vector database is worth retrying.

    Timeouts, connection failures, 429 and 5xx responses are transient.
    Other HTTP errors (bad request, not found, unauthorized) are not.
    """
    if isinstance(error, UnexpectedResponse):
        status = error.status_code
        return status is None or status == 429 or status >= 500
    return isinstance(
        error,
        (
            asyncio.TimeoutError,
            ResponseHandlingException,
            httpx.TransportError,
            ConnectionError,
        ),
    )


def permanent_error(operation: str, error: BaseException) -> StoreError | ConfigurationError:
    """Map a non-retryable database error onto the error taxonomy.

    Rejected credentials (401, 403) are a deployment problem, not a store outage.
    """
    if isinstance(error, UnexpectedResponse) and error.status_code in (401, 403):
        return ConfigurationError(
            f"Qdrant rejected the credentials during {operation} "
            f"({error.status_code}); check QDRANT_API_KEY"
        )
    return StoreError(operation, error)


def _distance(metric: str | models.Distance) -> models.Distance:
    if isinstance(metric, models.Distance):
        return metric
    for distance in models.Distance:
        if distance.value.lower() == str(metric).lower():
            return distance
    raise ConfigurationError(f"Unknown distance metric: {metric}")


def _user_filter(user_id: str, key: str | None = None) -> models.Filter:
    must: list[Any] = [
        models.FieldCondition(key="userId", match=models.MatchValue(value=user_id))
    ]
    if key is not None:
        must.append(
            models.FieldCondition(
                key="factKeyId", match=models.MatchValue(value=key_identity(key))
            )
        )
    return models.Filter(must=must)


class VectorMemoryStore:
    """Fact storage on a Qdrant collection.

    The store owns one client and one collection handle. ``open()`` connects
    and makes sure the collection exists with the configured dimension;
    ``close()`` releases the client. Operations open the store lazily, and
    concurrent first calls initialize the collection only once.
    """

    def __init__(
        self,
        settings: MemorySettings,
        client: AsyncQdrantClient | None = None,
        events: JSONLLogger | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the store.

        Args:
            settings: Connection, retry and collection settings.
            client: Optional pre-built client (e.g. ``AsyncQdrantClient(":memory:")``).
            events: JSONL event logger, defaults to the global one.
            sleep: Coroutine used to wait between retries.
        """
        self.settings = settings
        self.collection = settings.collection
        self.dimension = settings.dimension
        self.events = events or get_logger()
        self._client = client
        self._sleep = sleep
        self._ready = False
        self._init_lock = asyncio.Lock()

    async def __aenter__(self) -> "VectorMemoryStore":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def client(self) -> AsyncQdrantClient:
        """The underlying client, created on first use."""
        if self._client is None:
            self._client = AsyncQdrantClient(
                url=self.settings.qdrant_url,
                api_key=self.settings.qdrant_api_key,
                timeout=math.ceil(self.settings.timeout),
            )
        return self._client

    async def open(self) -> None:
        """Connect and ensure the collection matches the configuration.

        Raises:
            DimensionMismatchError: If the collection has another dimension and
                recreation is disabled.
            ConfigurationError: If the database rejects the credentials.
            StoreUnavailable: If the database cannot be reached.
        """
        await self.ensure_collection()

    async def close(self) -> None:
        """Close the client. The store can be reopened afterwards."""
        if self._client is not None:
            await self._client.close()
            self._client = None
        self._ready = False

    async def _with_retry(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run ``call`` with a per-attempt timeout and bounded retries.

        Raises:
            ConfigurationError: If the database rejects the credentials.
            StoreError: On the first non-transient failure.
            StoreUnavailable: After the last transient failure.
        """
        retries = self.settings.retries
        delays = self.settings.retry_delays()
        last_error: BaseException | None = None

        for attempt in range(1, retries + 1):
            try:
                return await asyncio.wait_for(call(), timeout=self.settings.timeout)
            except Exception as e:
                if not is_transient(e):
                    logger.error(f"Qdrant {operation} failed: {e}")
                    raise permanent_error(operation, e) from e
                last_error = e
                message = str(e) or type(e).__name__
                if attempt < retries:
                    delay = delays[attempt - 1]
                    logger.warning(
                        f"Qdrant {operation} attempt {attempt}/{retries} failed: {message}"
                    )
                    self.events.log_retry(operation, attempt, message, delay=delay)
                    await self._sleep(delay)

        message = str(last_error) or type(last_error).__name__
        logger.error(f"Qdrant {operation} failed after {retries} attempts: {message}")
        self.events.log_store_failed(operation, retries, message)
        raise StoreUnavailable(operation, retries, last_error) from last_error

    async def ensure_collection(
        self,
        dimension: int | None = None,
        distance: str | models.Distance = models.Distance.COSINE,
    ) -> None:
        """Create the collection if missing; idempotent.

        An existing collection with another vector size is dropped and
        recreated when ``recreate_on_mismatch`` is set, otherwise this fails.

        Args:
            dimension: Vector size, defaults to the configured dimension.
            distance: Similarity metric ('cosine', 'dot', 'euclid', ...).
        """
        dimension = dimension or self.dimension
        if self._ready and dimension == self.dimension:
            return

        async with self._init_lock:
            # Another caller may have finished while we waited
            if self._ready and dimension == self.dimension:
                return
            await self._ensure_collection(dimension, _distance(distance))
            self.dimension = dimension
            self._ready = True

    async def _ensure_collection(self, dimension: int, distance: models.Distance) -> None:
        client = self.client
        exists = await self._with_retry(
            "collection_exists", lambda: client.collection_exists(self.collection)
        )

        if exists:
            info = await self._with_retry(
                "get_collection", lambda: client.get_collection(self.collection)
            )
            vectors = info.config.params.vectors
            current = getattr(vectors, "size", None)
            if current == dimension:
                logger.debug(f"Collection {self.collection} ready (dim={dimension})")
                return

            if not self.settings.recreate_on_mismatch:
                raise DimensionMismatchError(
                    dimension, current or 0, f"collection '{self.collection}'"
                )

            logger.warning(
                f"Recreating collection {self.collection}: dimension {current} -> {dimension}"
            )
            await self._with_retry(
                "delete_collection", lambda: client.delete_collection(self.collection)
            )

        logger.info(f"Creating collection {self.collection} (dim={dimension})")
        await self._with_retry(
            "create_collection",
            lambda: client.create_collection(
                collection_name=self.collection,
                vectors_config=models.VectorParams(size=dimension, distance=distance),
            ),
        )
        for field_name in ("userId", "factKeyId"):
            await self._with_retry(
                "create_payload_index",
                lambda: client.create_payload_index(
                    collection_name=self.collection,
                    field_name=field_name,
                    field_schema=models.PayloadSchemaType.KEYWORD,
                ),
            )

    def _check_vector(self, vector: list[float]) -> None:
        if len(vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vector), "query vector")

    def _owned(self, points: list[Any], user_id: str, operation: str) -> list[Any]:
        """Drop points that do not belong to ``user_id``."""
        owned = []
        for point in points:
            payload = point.payload or {}
            owner = payload.get("userId")
            if owner != user_id:
                logger.error(
                    f"Isolation violation in {operation}: point {point.id} "
                    f"belongs to {owner!r}, not {user_id!r}"
                )
                self.events.log_isolation_violation(operation, user_id, owner)
                continue
            owned.append(point)
        return owned

    async def upsert(self, fact: Fact, vector: list[float]) -> None:
        """Insert or overwrite a fact by id.

        Raises:
            DimensionMismatchError: If the vector has the wrong length.
            StoreUnavailable: If all attempts failed.
        """
        await self.ensure_collection()
        self._check_vector(vector)
        point = models.PointStruct(id=fact.id, vector=vector, payload=fact.to_payload())
        await self._with_retry(
            "upsert",
            lambda: self.client.upsert(
                collection_name=self.collection, points=[point], wait=True
            ),
        )
        logger.debug(f"Stored fact {fact.id}: {fact.key}")

    async def search(
        self,
        vector: list[float],
        user_id: str,
        limit: int = 10,
        score_threshold: float | None = None,
    ) -> list[SearchResult]:
        """Top ``limit`` facts of ``user_id`` scoring strictly above the threshold.

        Connectivity failures degrade to an empty list.

        Args:
            vector: Query embedding.
            user_id: Owner whose facts are searched.
            limit: Maximum number of results.
            score_threshold: Minimum similarity, defaults to the configured one.

        Returns:
            Results ordered by descending similarity.
        """
        threshold = (
            self.settings.relevance_threshold if score_threshold is None else score_threshold
        )
        start = time.time()
        try:
            await self.ensure_collection()
            self._check_vector(vector)
            response = await self._with_retry(
                "search",
                lambda: self.client.query_points(
                    collection_name=self.collection,
                    query=vector,
                    query_filter=_user_filter(user_id),
                    limit=limit,
                    score_threshold=threshold,
                    with_payload=True,
                    with_vectors=False,
                ),
            )
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"Memory search failed, returning no results: {e}")
            return []

        points = self._owned(list(response.points), user_id, "search")
        results = [
            SearchResult(fact=Fact.from_payload(p.id, p.payload or {}), score=p.score)
            for p in points
            if p.score is not None and p.score > threshold
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        logger.debug(
            f"Search for {user_id} returned {len(results)} results "
            f"in {(time.time() - start) * 1000:.0f}ms"
        )
        return results[:limit]

    async def _scroll(
        self, query_filter: models.Filter, user_id: str, limit: int | None, operation: str
    ) -> list[Fact]:
        facts: list[Fact] = []
        offset: Any = None
        while limit is None or len(facts) < limit:
            page_size = SCROLL_PAGE_SIZE
            if limit is not None:
                page_size = min(page_size, limit - len(facts))
            points, offset = await self._with_retry(
                operation,
                lambda: self.client.scroll(
                    collection_name=self.collection,
                    scroll_filter=query_filter,
                    limit=page_size,
                    offset=offset,
                    with_payload=True,
                    with_vectors=False,
                ),
            )
            for point in self._owned(list(points), user_id, operation):
                facts.append(Fact.from_payload(point.id, point.payload or {}))
            if offset is None or not points:
                break
        return facts if limit is None else facts[:limit]

    async def scroll_all(self, user_id: str, limit: int | None = None) -> list[Fact]:
        """Facts of ``user_id`` without a similarity query, in point-id order.

        Without a ``limit`` every page is read. A limited scroll returns the
        first points by id, not the newest ones.

        Connectivity failures degrade to an empty list.
        """
        try:
            await self.ensure_collection()
            return await self._scroll(_user_filter(user_id), user_id, limit, "scroll")
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"Memory scroll failed, returning no facts: {e}")
            return []

    async def find_by_key(self, user_id: str, key: str, limit: int | None = None) -> list[Fact]:
        """Facts of ``user_id`` whose key shares the identity of ``key``.

        Raises:
            StoreUnavailable: If the database cannot be reached.
        """
        await self.ensure_collection()
        return await self._scroll(_user_filter(user_id, key), user_id, limit, "find_by_key")

    async def get(self, fact_id: str) -> Fact | None:
        """Fetch a single fact by id, or None if it does not exist."""
        await self.ensure_collection()
        points = await self._with_retry(
            "retrieve",
            lambda: self.client.retrieve(
                collection_name=self.collection,
                ids=[fact_id],
                with_payload=True,
                with_vectors=False,
            ),
        )
        if not points:
            return None
        point = points[0]
        return Fact.from_payload(point.id, point.payload or {})

    async def delete(self, fact_id: str) -> None:
        """Remove a fact by id. Deleting a missing id is not an error."""
        await self.delete_many([fact_id])

    async def delete_many(self, fact_ids: list[str]) -> None:
        """Remove several facts by id."""
        if not fact_ids:
            return
        await self.ensure_collection()
        await self._with_retry(
            "delete",
            lambda: self.client.delete(
                collection_name=self.collection,
                points_selector=models.PointIdsList(points=list(fact_ids)),
                wait=True,
            ),
        )

    async def ping(self) -> bool:
        """Whether the database answers and the collection is usable."""
        try:
            await self.ensure_collection()
            await self._with_retry(
                "ping", lambda: self.client.collection_exists(self.collection)
            )
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"Vector store health check failed: {e}")
            return False
        return True
