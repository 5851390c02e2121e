"""Memory manager: the single entry point for reading and writing memory.

Writes go extraction -> embedding -> storage, reads go embedding -> search
-> context assembly. Every operation is scoped by user id.
"""

from __future__ import annotations

import logging
import re
import time
from typing import TYPE_CHECKING, Any

from ..config import MemorySettings
from ..errors import ConfigurationError, DimensionMismatchError
from ..logging import JSONLLogger, get_logger
from .context import ContextAssembler, group_by_type
from .dates import find_dates
from .embeddings import Embedder, build_embedder
from .extractor import FactExtractor
from .models import (
    BufferEntry,
    ConversationTurn,
    Fact,
    FactType,
    MemoryContext,
    key_identity,
)
from .quality import QualityGate
from .store import VectorMemoryStore

if TYPE_CHECKING:
    from groq import AsyncGroq

logger = logging.getLogger(__name__)

DATE_KEY_RE = re.compile(r"date|birthday|anniversary|event", re.IGNORECASE)

SUMMARY_KEY = "conversationSummary"


def collapse_by_key(facts: list[Fact]) -> list[Fact]:
    """Keep only the most recent fact per key identity.

    Rows are appended rather than updated in place, so a user can hold
    several values for one key; the newest one answers. Order follows the
    first appearance of each key in ``facts``.
    """
    latest: dict[str, Fact] = {}
    order: list[str] = []
    for fact in facts:
        identity = key_identity(fact.key)
        current = latest.get(identity)
        if current is None:
            order.append(identity)
            latest[identity] = fact
        elif fact.timestamp > current.timestamp:
            latest[identity] = fact
    return [latest[identity] for identity in order]


class MemoryManager:
    """Orchestrates memory operations: extraction, storage and retrieval.

    Read paths never raise: a failing memory degrades the conversation's
    context, not the conversation. Write paths log and swallow failures
    unless the caller asks for durability.
    """

    def __init__(
        self,
        store: VectorMemoryStore,
        embedder: Embedder,
        extractor: FactExtractor | None = None,
        settings: MemorySettings | None = None,
        assembler: ContextAssembler | None = None,
        events: JSONLLogger | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            store: The vector store holding facts.
            embedder: The embedding adapter shared by reads and writes.
            extractor: Optional FactExtractor for automatic extraction.
            settings: Retrieval defaults, defaults to the store's settings.
            assembler: Context renderer, sized from settings by default.
            events: JSONL event logger, defaults to the global one.
        """
        self.store = store
        self.embedder = embedder
        self.extractor = extractor
        self.settings = settings or store.settings
        self.assembler = assembler or ContextAssembler(self.settings.max_context_tokens)
        self.events = events or get_logger()

    @classmethod
    def from_settings(
        cls,
        settings: MemorySettings,
        llm_client: AsyncGroq | None = None,
        events: JSONLLogger | None = None,
    ) -> MemoryManager:
        """Build a manager with the default store, embedder and extractor."""
        events = events or get_logger()
        store = VectorMemoryStore(settings, events=events)
        extractor = None
        if llm_client is not None:
            gate = QualityGate(
                min_length=settings.min_fact_length,
                max_length=settings.max_fact_length,
                threshold=settings.quality_threshold,
            )
            extractor = FactExtractor(
                llm_client, model=settings.model, gate=gate, events=events
            )
        return cls(store, build_embedder(settings), extractor, settings, events=events)

    async def open(self) -> None:
        """Validate the embedder and open the store.

        Raises:
            ConfigurationError: If dimensions disagree anywhere.
            StoreUnavailable: If the vector database cannot be reached.
        """
        if self.embedder.dimension != self.store.dimension:
            raise DimensionMismatchError(
                self.store.dimension, self.embedder.dimension, "embedder configuration"
            )
        await self.embedder.validate()
        await self.store.open()

    async def close(self) -> None:
        await self.store.close()

    async def __aenter__(self) -> MemoryManager:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _store_fact(self, fact: Fact) -> bool:
        """Embed and store a fact unless the user already has that exact value.

        Returns:
            True if a new row was written.
        """
        try:
            existing = await self.store.find_by_key(fact.user_id, fact.key)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.debug(f"Duplicate check for {fact.key!r} skipped: {e}")
            existing = []

        value = fact.value.strip().casefold()
        if any(e.value.strip().casefold() == value for e in existing):
            logger.info(f"Fact {fact.key!r} already known for {fact.user_id}, skipping")
            return False

        vector = await self.embedder.embed(fact.text)
        await self.store.upsert(fact, vector)
        self.events.log_fact_stored(fact.user_id, fact.id, fact.key)
        return True

    async def record_turn(
        self,
        user_id: str,
        user_message: str,
        assistant_response: str,
        durable: bool = False,
    ) -> list[Fact]:
        """Extract facts from a turn and store them.

        Args:
            user_id: Owner of the facts.
            user_message: What the user said.
            assistant_response: What the assistant replied.
            durable: Propagate storage failures (e.g. StoreUnavailable)
                instead of logging and dropping the fact.

        Returns:
            The facts actually persisted; an empty list is a normal outcome.
        """
        if not self.extractor:
            return []

        turn = ConversationTurn(
            user_message=user_message,
            assistant_response=assistant_response,
            user_id=user_id,
        )
        facts = await self.extractor.extract(turn)

        stored: list[Fact] = []
        for fact in facts:
            try:
                if await self._store_fact(fact):
                    stored.append(fact)
            except ConfigurationError:
                raise
            except Exception as e:
                if durable:
                    raise
                logger.error(f"Dropping fact {fact.key!r} for {user_id}: {e}")
                self.events.log("fact_dropped", user_id=user_id, fact_id=fact.id, error=str(e))

        logger.info(f"Stored {len(stored)} of {len(facts)} extracted facts for {user_id}")
        return stored

    async def retrieve_context(
        self, query: str, user_id: str, limit: int | None = None
    ) -> MemoryContext:
        """Facts relevant to ``query`` and their rendered context block.

        Returns:
            MemoryContext; empty on any failure.
        """
        limit = limit or self.settings.max_context_facts
        start = time.time()
        try:
            vector = await self.embedder.embed(query)
            results = await self.store.search(
                vector, user_id, limit, self.settings.relevance_threshold
            )
            facts = collapse_by_key([r.fact for r in results])
            context_text = self.assembler.assemble(facts)
        except Exception as e:
            logger.warning(f"Failed to retrieve memory context for {user_id}: {e}")
            return MemoryContext()

        self.events.log_context_retrieved(
            user_id, len(facts), (time.time() - start) * 1000
        )
        return MemoryContext(facts=facts, context_text=context_text)

    async def list_all(
        self, user_id: str, limit: int | None = None, latest_only: bool = False
    ) -> list[Fact]:
        """Facts of a user, oldest first, for audits.

        Every fact is read before sorting, so ``limit`` keeps the newest ones.
        """
        facts = await self.store.scroll_all(user_id)
        facts.sort(key=lambda f: f.timestamp)
        if limit is not None:
            facts = facts[-limit:] if limit > 0 else []
        if latest_only:
            facts = collapse_by_key(facts)
        return facts

    async def remember(
        self,
        user_id: str,
        fact_type: FactType | str,
        key: str,
        value: str,
        origin_message: str = "",
    ) -> Fact:
        """Store a fact directly, without extraction.

        Raises:
            ValueError: If key or value is blank.
            StoreUnavailable: If the write could not be completed.
        """
        if not key.strip() or not value.strip():
            raise ValueError("Both key and value are required")

        fact = Fact(
            type=FactType.coerce(fact_type),
            key=key.strip(),
            value=value.strip(),
            user_id=user_id,
            origin_message=origin_message,
        )
        vector = await self.embedder.embed(fact.text)
        await self.store.upsert(fact, vector)
        self.events.log_fact_stored(user_id, fact.id, fact.key)
        return fact

    async def update_fact(
        self,
        user_id: str,
        key: str,
        value: str,
        fact_type: FactType | str | None = None,
    ) -> Fact:
        """Replace every value the user has under ``key`` with ``value``.

        The new fact is written before the old rows are removed.

        Raises:
            StoreUnavailable: If the database cannot be reached.
        """
        previous = await self.store.find_by_key(user_id, key)
        if fact_type is None:
            latest = max(previous, key=lambda f: f.timestamp, default=None)
            fact_type = latest.type if latest else FactType.FACT

        fact = await self.remember(user_id, fact_type, key, value, origin_message=f"{key}: {value}")
        await self.store.delete_many([p.id for p in previous if p.id != fact.id])
        return fact

    async def delete_fact(self, user_id: str, fact_id: str) -> bool:
        """Delete one of the user's facts by id.

        Returns:
            True if a fact was deleted; False if it does not exist or
            belongs to someone else.
        """
        fact = await self.store.get(fact_id)
        if fact is None:
            return False
        if fact.user_id != user_id:
            logger.error(f"Refusing to delete fact {fact_id}: it does not belong to {user_id}")
            self.events.log_isolation_violation("delete", user_id, fact.user_id)
            return False

        await self.store.delete(fact_id)
        self.events.log("fact_deleted", user_id=user_id, fact_id=fact_id)
        return True

    async def known_dates(self, user_id: str) -> list[str]:
        """Dates recorded in the user's facts, for the date sanitizer.

        Includes the full value of date-like facts (birthday, anniversary,
        events) and every date phrase found inside them.
        """
        dates: list[str] = []
        for fact in await self.list_all(user_id):
            if fact.type != FactType.EVENT and not DATE_KEY_RE.search(fact.key):
                continue
            for candidate in [fact.value, *find_dates(fact.value)]:
                if candidate not in dates:
                    dates.append(candidate)
        return dates

    async def audit(self, user_id: str) -> dict[str, Any]:
        """Summary of a user's memory grouped by fact type."""
        facts = await self.list_all(user_id)
        groups = group_by_type(facts)
        return {
            "user_id": user_id,
            "total_facts": len(facts),
            "facts_by_type": [
                {
                    "type": fact_type.value,
                    "count": len(group),
                    "facts": [fact.to_dict() for fact in group],
                }
                for fact_type, group in groups.items()
            ],
        }

    async def restore_history(self, user_id: str, limit: int = 10) -> list[BufferEntry]:
        """The user's most recent facts as buffer entries, oldest first."""
        facts = await self.list_all(user_id)
        recent = facts[-limit:] if limit > 0 else []
        return [BufferEntry(role="user", content=fact.text) for fact in recent]

    async def store_summary(self, user_id: str, summary: str) -> Fact | None:
        """Store a conversation summary as a context fact; best-effort."""
        if not summary.strip():
            return None
        fact = Fact(
            type=FactType.CONTEXT,
            key=SUMMARY_KEY,
            value=summary.strip(),
            user_id=user_id,
        )
        try:
            if await self._store_fact(fact):
                return fact
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Failed to store conversation summary for {user_id}: {e}")
        return None

    async def health(self) -> dict[str, Any]:
        """Probe the embedder and the vector store."""
        services = {}
        for name, probe in (
            ("embeddings", self.embedder.validate),
            ("vector_store", self.store.ping),
        ):
            try:
                healthy = await probe()
            except ConfigurationError as e:
                logger.error(f"{name} misconfigured: {e}")
                healthy = False
            services[name] = "healthy" if healthy else "unhealthy"

        status = "healthy" if all(s == "healthy" for s in services.values()) else "degraded"
        return {"status": status, "services": services}
