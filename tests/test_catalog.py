"""Anime and manga read services built on stubbed upstream clients."""

from __future__ import annotations

import asyncio

from app.cache import TTLCache
from app.errors import UpstreamUnavailable
from app.models import AnimeDetail, ContentItem, EnrichedFields, EpisodeEntry, MangaDetail
from app.services.catalog import AnimeService, MangaService
from app.services.enrichment import EnrichmentService
from app.services.gemini import GeminiClient
from app.services.primary import SankavollereiClient
from app.services.streams import StreamResolver


class StubGemini(GeminiClient):
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def describe(self, title, media_type):  # type: ignore[override]
        self.calls.append((title, media_type))
        return EnrichedFields(year="2020", rating="8.0", author="Someone", genre="Action")


class StubPrimary(SankavollereiClient):
    def __init__(self) -> None:
        self.ongoing_items: list[ContentItem] = []
        self.home_calls = 0
        self.manga_items: list[ContentItem] = []
        self.details: dict[str, MangaDetail] = {}
        self.anime: AnimeDetail | None = None

    async def anime_home(self):  # type: ignore[override]
        self.home_calls += 1
        return {
            "ongoing": [ContentItem(title="Frieren", animeId="frieren", poster="p.jpg")],
            "completed": [],
        }

    async def ongoing_anime(self, page=1):  # type: ignore[override]
        return [item.model_copy() for item in self.ongoing_items]

    async def search_anime(self, keyword):  # type: ignore[override]
        return [ContentItem(title=f"{keyword} result")]

    async def anime_detail(self, slug):  # type: ignore[override]
        assert self.anime is not None
        return self.anime.model_copy(deep=True)

    async def trending_manga(self):  # type: ignore[override]
        return [item.model_copy() for item in self.manga_items]

    async def manga_detail(self, slug):  # type: ignore[override]
        if slug not in self.details:
            raise UpstreamUnavailable("sankavollerei", "not found", status_code=404)
        return self.details[slug]


def _anime_service(primary: StubPrimary, ai: StubGemini) -> AnimeService:
    enrichment = EnrichmentService(ai, TTLCache())
    resolver = StreamResolver(primary, [], TTLCache())
    return AnimeService(primary, enrichment, resolver, TTLCache(), blacklist=("apk",))


def test_anime_lists_enrich_only_items_without_year() -> None:
    async def runner() -> None:
        primary = StubPrimary()
        primary.ongoing_items = [
            ContentItem(title="Dandadan", animeId="dandadan", releaseDate="2024"),
            ContentItem(title="Sakamoto Days", animeId="sakamoto-days"),
            ContentItem(title="Best APK Anime", animeId="spam"),
        ]
        ai = StubGemini()
        service = _anime_service(primary, ai)

        items = await service.ongoing()

        assert [item.slug for item in items] == ["dandadan", "sakamoto-days"]
        assert ai.calls == [("Sakamoto Days", "anime")]
        assert items[0].release_year == "2024"
        assert items[0].rating == ""
        assert items[1].release_year == "2020"
        assert all(item.type == "Anime" for item in items)

    asyncio.run(runner())


def test_anime_home_is_cached() -> None:
    async def runner() -> None:
        primary = StubPrimary()
        service = _anime_service(primary, StubGemini())

        first = await service.home()
        second = await service.home()

        assert primary.home_calls == 1
        assert first is second
        assert first["ongoing"][0].cover == "p.jpg"

    asyncio.run(runner())


def test_anime_search_is_not_enriched() -> None:
    async def runner() -> None:
        ai = StubGemini()
        service = _anime_service(StubPrimary(), ai)

        items = await service.search("naruto")

        assert items[0].type == "Anime"
        assert ai.calls == []

    asyncio.run(runner())


def test_anime_detail_dedupes_episodes_and_fills_missing_author() -> None:
    async def runner() -> None:
        primary = StubPrimary()
        primary.anime = AnimeDetail(
            title="Bleach",
            genre="Action",
            episodes=[
                EpisodeEntry(title="Episode 2", episode_id="blach-episode-2"),
                EpisodeEntry(title="Episode 2", episode_id="blach-episode-2"),
                EpisodeEntry(title="Episode 1", episode_id="blach-episode-1"),
            ],
        )
        ai = StubGemini()
        service = _anime_service(primary, ai)

        detail = await service.detail("blach-sub-indo")

        assert len(detail.episodes) == 2
        assert detail.author == "Someone"
        assert detail.genre == "Action"
        assert detail.type == "Anime"

    asyncio.run(runner())


def test_manga_listing_upgrades_covers_and_filters_blacklist() -> None:
    async def runner() -> None:
        primary = StubPrimary()
        primary.manga_items = [
            ContentItem(title="One Piece", slug="one-piece", image="https://img/low.jpg?resize=100,100"),
            ContentItem(title="Lost Manga", link="https://komik.example/manga/lost-manga/", thumbnail="https://img/t.jpg?quality=10&x=1"),
            ContentItem(title="Komiku Plus APK", slug="ads"),
        ]
        primary.details["one-piece"] = MangaDetail(title="One Piece", image="https://img/hd.jpg")
        service = MangaService(primary, EnrichmentService(StubGemini(), TTLCache()), blacklist=("apk",))

        items = await service.trending()

        assert [item.title for item in items] == ["One Piece", "Lost Manga"]
        assert items[0].cover == "https://img/hd.jpg"
        assert items[0].thumbnail == "https://img/hd.jpg"
        assert items[1].slug == "lost-manga"
        assert items[1].cover == "https://img/t.jpg?x=1"

    asyncio.run(runner())
