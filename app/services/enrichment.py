"""Tiered metadata enrichment: durable store, in-memory cache, then Gemini."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Protocol, Sequence, TypeVar

from sqlalchemy import func, select
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..cache import TTLCache
from ..database import Database
from ..db_models import EnrichedMetadataRecord
from ..models import ContentItem, EnrichedFields, EnrichedMetadata, MediaType
from .gemini import GeminiClient

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT", bound=ContentItem)

_MERGED_COLUMNS = (
    "author",
    "genre",
    "type",
    "rating",
    "status",
    "release_year",
    "synopsis",
)

# Enriched field name -> ContentItem attribute it fills.
_ITEM_FIELD_MAP = {
    "year": "release_year",
    "rating": "rating",
    "status": "status",
    "author": "author",
    "genre": "genre",
    "synopsis": "synopsis",
}


class EnrichmentStore(Protocol):
    """Durable lookup/upsert capability keyed by ``(title, media_type)``."""

    async def get_by_key(
        self, title: str, media_type: str
    ) -> EnrichedMetadata | None: ...

    async def upsert(self, record: EnrichedMetadata) -> None: ...


class SqlEnrichmentStore:
    """``EnrichmentStore`` backed by the ``enriched_metadata`` table."""

    def __init__(self, database: Database):
        self._database = database

    async def get_by_key(self, title: str, media_type: str) -> EnrichedMetadata | None:
        statement = select(EnrichedMetadataRecord).where(
            EnrichedMetadataRecord.title == title,
            EnrichedMetadataRecord.media_type == media_type,
        )
        async with self._database.session() as session:
            record = (await session.execute(statement)).scalars().first()
        if record is None:
            return None
        return EnrichedMetadata(
            title=record.title,
            media_type=record.media_type,
            slug=record.slug or "",
            author=record.author or "",
            genre=record.genre or "",
            type=record.type or "",
            rating=record.rating or "",
            status=record.status or "",
            release_year=record.release_year or "",
            synopsis=record.synopsis or "",
            source=record.source or "ai-generated",
            last_updated_at=record.last_updated_at,
        )

    async def upsert(self, record: EnrichedMetadata) -> None:
        """Insert or merge a record; stored values survive empty incoming ones."""

        now = datetime.utcnow()
        table = EnrichedMetadataRecord.__table__
        statement = self._database.insert(table).values(
            title=record.title,
            media_type=record.media_type,
            slug=record.slug,
            author=record.author,
            genre=record.genre,
            type=record.type,
            rating=record.rating,
            status=record.status,
            release_year=record.release_year,
            synopsis=record.synopsis,
            source=record.source,
            last_updated_at=now,
            created_at=now,
        )
        excluded = statement.excluded
        updates = {
            column: func.coalesce(func.nullif(excluded[column], ""), table.c[column])
            for column in _MERGED_COLUMNS
        }
        updates["slug"] = func.coalesce(func.nullif(excluded.slug, ""), table.c.slug)
        updates["source"] = excluded.source
        updates["last_updated_at"] = now
        statement = statement.on_conflict_do_update(
            index_elements=["title", "media_type"], set_=updates
        )
        async with self._database.session() as session:
            await session.execute(statement)
            await session.commit()


class EnrichmentService:
    """Fill missing descriptive fields for titles.

    Lookups go to the durable store first, then the in-memory cache, and
    only then to Gemini. Failures degrade to empty fields.
    """

    def __init__(
        self,
        ai: GeminiClient,
        cache: TTLCache,
        *,
        store: EnrichmentStore | None = None,
        cache_ttl: float = 3600.0,
        concurrency: int = 5,
    ) -> None:
        self._ai = ai
        self._cache = cache
        self._store = store
        self._cache_ttl = cache_ttl
        self._semaphore = asyncio.Semaphore(concurrency)

    @staticmethod
    def _cache_key(title: str, media_type: str) -> str:
        return f"enrichment:{media_type}:{title}"

    async def enrich(self, title: str, media_type: MediaType) -> EnrichedFields:
        normalized_title = (title or "").strip()
        if not normalized_title:
            return EnrichedFields()

        if self._store is not None:
            try:
                stored = await self._store.get_by_key(normalized_title, media_type)
            except (SQLAlchemyError, ValidationError) as exc:
                logger.warning("Enrichment store lookup failed for %s: %s", normalized_title, exc)
                stored = None
            if stored is not None:
                logger.debug("Enrichment store hit for %s (%s)", normalized_title, media_type)
                return stored.to_fields()

        cache_key = self._cache_key(normalized_title, media_type)
        cached, found = self._cache.get(cache_key)
        if found:
            logger.debug("Enrichment cache hit for %s (%s)", normalized_title, media_type)
            return cached

        logger.info("Requesting AI enrichment for %s (%s)", normalized_title, media_type)
        fields = await self._ai.describe(normalized_title, media_type)

        if self._store is not None and not fields.is_empty():
            record = EnrichedMetadata(
                title=normalized_title,
                media_type=media_type,
                author=fields.author,
                genre=fields.genre,
                type=media_type.capitalize(),
                rating=fields.rating,
                status=fields.status,
                release_year=fields.year,
                synopsis=fields.synopsis,
                source="ai-generated",
            )
            try:
                await self._store.upsert(record)
            except SQLAlchemyError as exc:
                logger.warning("Failed to persist enrichment for %s: %s", normalized_title, exc)

        self._cache.set(cache_key, fields, self._cache_ttl)
        return fields

    async def enrich_item(self, item: ItemT, media_type: MediaType) -> ItemT:
        async with self._semaphore:
            fields = await self.enrich(item.title, media_type)
        apply_enriched_fields(item, fields)
        return item

    async def enrich_all(
        self,
        items: Sequence[ItemT],
        media_type: MediaType,
        *,
        needs_enrichment: Callable[[ItemT], bool] | None = None,
    ) -> list[ItemT]:
        """Enrich the items that need it, waiting for the whole batch."""

        predicate = needs_enrichment or _missing_any_field
        pending = [item for item in items if predicate(item)]
        if pending:
            results = await asyncio.gather(
                *(self.enrich_item(item, media_type) for item in pending),
                return_exceptions=True,
            )
            for item, result in zip(pending, results):
                if isinstance(result, Exception):
                    logger.warning("Enrichment failed for %s: %s", item.title, result)
        return list(items)


def _missing_any_field(item: ContentItem) -> bool:
    return any(not getattr(item, attribute) for attribute in _ITEM_FIELD_MAP.values())


def apply_enriched_fields(item: ContentItem, fields: EnrichedFields) -> None:
    """Copy non-empty enriched values onto empty item attributes only."""

    for source, target in _ITEM_FIELD_MAP.items():
        value = getattr(fields, source)
        if value and not getattr(item, target):
            setattr(item, target, value)


def needs_fields(*attributes: str) -> Callable[[ContentItem], bool]:
    """Return a predicate selecting items missing any of ``attributes``."""

    def _predicate(item: ContentItem) -> bool:
        return any(not getattr(item, attribute) for attribute in attributes)

    return _predicate
