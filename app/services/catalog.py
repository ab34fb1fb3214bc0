"""Anime and manga read services combining upstream data, clean-up and enrichment."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Sequence

from ..cache import TTLCache
from ..errors import ProviderError
from ..models import (
    AnimeDetail,
    ChapterImages,
    ContentItem,
    LatestEpisode,
    MangaDetail,
    NormalizedStreamResponse,
)
from .enrichment import EnrichmentService, apply_enriched_fields, needs_fields
from .mirrors import AnimeIndoClient
from .normalization import (
    IMAGE_FIELDS,
    backfill_slug,
    clean_item_images,
    dedupe_entries,
    filter_blacklisted,
    normalize_items,
    resolve_cover,
)
from .primary import SankavollereiClient
from .streams import StreamResolver

logger = logging.getLogger(__name__)

ANIME_TYPE_LABEL = "Anime"
HOME_CACHE_KEY = "anime:home_enriched"
HOME_CACHE_TTL = 5 * 60.0
COVER_UPGRADE_CONCURRENCY = 10


class AnimeService:
    """Anime listings, details and stream resolution."""

    def __init__(
        self,
        primary: SankavollereiClient,
        enrichment: EnrichmentService,
        resolver: StreamResolver,
        cache: TTLCache,
        *,
        anime_indo: AnimeIndoClient | None = None,
        blacklist: Iterable[str] = (),
    ) -> None:
        self._primary = primary
        self._enrichment = enrichment
        self._resolver = resolver
        self._cache = cache
        self._anime_indo = anime_indo
        self._blacklist = tuple(blacklist)

    async def _enrich_list(self, items: Sequence[ContentItem]) -> list[ContentItem]:
        survivors = normalize_items(items, self._blacklist)
        await self._enrichment.enrich_all(
            survivors, "anime", needs_enrichment=needs_fields("release_year")
        )
        for item in survivors:
            item.type = ANIME_TYPE_LABEL
        return survivors

    async def home(self) -> dict[str, list[ContentItem]]:
        cached, found = self._cache.get(HOME_CACHE_KEY)
        if found:
            return cached
        sections = await self._primary.anime_home()
        ongoing, completed = await asyncio.gather(
            self._enrich_list(sections.get("ongoing", [])),
            self._enrich_list(sections.get("completed", [])),
        )
        result = {"ongoing": ongoing, "completed": completed}
        self._cache.set(HOME_CACHE_KEY, result, HOME_CACHE_TTL)
        return result

    async def ongoing(self, page: int = 1) -> list[ContentItem]:
        return await self._enrich_list(await self._primary.ongoing_anime(page))

    async def complete(self, page: int = 1) -> list[ContentItem]:
        return await self._enrich_list(await self._primary.complete_anime(page))

    async def genre(self, slug: str) -> list[ContentItem]:
        return await self._enrich_list(await self._primary.anime_genre(slug))

    async def search(self, keyword: str) -> list[ContentItem]:
        items = normalize_items(await self._primary.search_anime(keyword), self._blacklist)
        for item in items:
            item.type = ANIME_TYPE_LABEL
        return items

    async def detail(self, slug: str) -> AnimeDetail:
        detail = await self._primary.anime_detail(slug)
        normalize_items([detail])
        detail.episodes = dedupe_entries(detail.episodes)
        if not detail.author or not detail.genre:
            fields = await self._enrichment.enrich(detail.title, "anime")
            apply_enriched_fields(detail, fields)
        detail.type = ANIME_TYPE_LABEL
        return detail

    async def latest(self) -> list[LatestEpisode]:
        return await self._primary.latest_episodes()

    async def server_url(self, server_id: str) -> str:
        return await self._primary.server_url(server_id)

    async def episode(self, episode_id: str, title: str | None = None) -> NormalizedStreamResponse:
        return await self._resolver.resolve(episode_id, title)

    # AnimeIndo browse ------------------------------------------------------

    def _require_anime_indo(self) -> AnimeIndoClient:
        if self._anime_indo is None:
            raise RuntimeError("AnimeIndo client is not configured")
        return self._anime_indo

    async def indo_latest(self, page: int = 1) -> list[ContentItem]:
        items = await self._require_anime_indo().latest(page)
        return normalize_items(items, self._blacklist)

    async def indo_popular(self) -> list[ContentItem]:
        items = await self._require_anime_indo().popular()
        return normalize_items(items, self._blacklist)

    async def indo_search(self, keyword: str) -> list[ContentItem]:
        items = await self._require_anime_indo().search(keyword)
        return normalize_items(items, self._blacklist)

    async def indo_detail(self, slug: str) -> AnimeDetail:
        detail = await self._require_anime_indo().detail(slug)
        normalize_items([detail])
        detail.episodes = dedupe_entries(detail.episodes)
        return detail


class MangaService:
    """Manga listings with blacklist filtering and cover upgrades."""

    def __init__(
        self,
        primary: SankavollereiClient,
        enrichment: EnrichmentService,
        *,
        blacklist: Iterable[str] = (),
        cover_concurrency: int = COVER_UPGRADE_CONCURRENCY,
    ) -> None:
        self._primary = primary
        self._enrichment = enrichment
        self._blacklist = tuple(blacklist)
        self._cover_semaphore = asyncio.Semaphore(cover_concurrency)

    async def _upgrade_cover(self, item: ContentItem) -> None:
        backfill_slug(item)
        image = ""
        if item.slug:
            async with self._cover_semaphore:
                try:
                    image = (await self._primary.manga_detail(item.slug)).image
                except ProviderError as exc:
                    logger.debug("Cover upgrade failed for %s: %s", item.slug, exc)
        if image:
            for name in IMAGE_FIELDS:
                setattr(item, name, image)
        else:
            clean_item_images(item)
        resolve_cover(item)

    async def _with_covers(self, items: Sequence[ContentItem]) -> list[ContentItem]:
        survivors = filter_blacklisted(items, self._blacklist)
        await asyncio.gather(*(self._upgrade_cover(item) for item in survivors))
        return survivors

    async def home(self) -> list[ContentItem]:
        return await self.trending()

    async def trending(self) -> list[ContentItem]:
        return await self._with_covers(await self._primary.trending_manga())

    async def ongoing(self, page: int = 1) -> list[ContentItem]:
        return await self._with_covers(await self._primary.ongoing_manga(page))

    async def popular(self, page: int = 1) -> list[ContentItem]:
        return await self._with_covers(await self._primary.popular_manga(page))

    async def genre(self, slug: str) -> list[ContentItem]:
        return await self._with_covers(await self._primary.manga_genre(slug))

    async def search(self, keyword: str) -> list[ContentItem]:
        return normalize_items(await self._primary.search_manga(keyword), self._blacklist)

    async def detail(self, slug: str) -> MangaDetail:
        detail = await self._primary.manga_detail(slug)
        normalize_items([detail])
        detail.chapters = dedupe_entries(detail.chapters)
        if not detail.author or not detail.genre:
            fields = await self._enrichment.enrich(detail.title, "manga")
            apply_enriched_fields(detail, fields)
        return detail

    async def chapter(self, chapter_id: str) -> ChapterImages:
        return await self._primary.chapter_images(chapter_id)
