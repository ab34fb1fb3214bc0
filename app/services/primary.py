"""Client for the Sankavollerei anime and comic API."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, TypeVar
from urllib.parse import quote

from ..cache import TTLCache
from ..errors import MalformedUpstreamResponse
from ..models import (
    AnimeDetail,
    ChapterImages,
    ContentItem,
    DownloadLink,
    LatestEpisode,
    MangaDetail,
    NormalizedStreamResponse,
    QualityOption,
    StreamServer,
)
from ..utils import clean_image_url, first_non_empty
from .http import UpstreamClient

logger = logging.getLogger(__name__)

PROVIDER_NAME = "sankavollerei"

DecodedT = TypeVar("DecodedT")

MINUTE = 60.0
TTL_SEARCH = 10 * MINUTE
TTL_GENRE = 30 * MINUTE
TTL_ONGOING = 15 * MINUTE
TTL_COMPLETE = 60 * MINUTE
TTL_DETAIL = 30 * MINUTE
TTL_EPISODE = 15 * MINUTE
TTL_SERVER = 20 * MINUTE
TTL_LATEST = 3 * MINUTE
TTL_TRENDING = 30 * MINUTE
TTL_CHAPTER = 30 * MINUTE

# Keys that carry item arrays, checked in order.
_LIST_PATHS: tuple[tuple[str, ...], ...] = (
    ("data", "animeList"),
    ("data", "mangaList"),
    ("data", "comics"),
    ("data",),
    ("comics",),
    ("trending",),
    ("animeList",),
    ("mangaList",),
    ("episodes",),
    ("data", "episodes"),
)


def _dig(payload: Any, path: tuple[str, ...]) -> Any:
    current = payload
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def decode_item_list(payload: Any) -> list[dict[str, Any]]:
    """Return the raw item dicts of a list payload, whichever shape it uses."""

    for path in _LIST_PATHS:
        candidate = _dig(payload, path)
        if isinstance(candidate, list):
            return [entry for entry in candidate if isinstance(entry, dict)]
    raise MalformedUpstreamResponse(PROVIDER_NAME, "unrecognised list payload")


def _unwrap(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        raise MalformedUpstreamResponse(PROVIDER_NAME, "expected a JSON object")
    data = payload.get("data")
    if isinstance(data, Mapping):
        return dict(data)
    return dict(payload)


def decode_manga_detail(payload: Any) -> MangaDetail:
    """Decode both the ``data``-wrapped and the root-level detail shapes."""

    body = _unwrap(payload)
    metadata = body.pop("metadata", None)
    if isinstance(metadata, Mapping):
        for key in ("author", "status", "type", "genre", "genres", "rating", "released"):
            value = metadata.get(key)
            if value and not body.get(key):
                body[key] = value
    detail = MangaDetail.model_validate(body)
    detail.image = clean_image_url(detail.image)
    return detail


def _decode_downloads(value: Any) -> list[DownloadLink]:
    if isinstance(value, Mapping):
        # {"qualities": [{"title": "480p", "urls": [{"title": "...", "url": "..."}]}]}
        links: list[DownloadLink] = []
        for quality in value.get("qualities") or []:
            if not isinstance(quality, Mapping):
                continue
            label = str(quality.get("title") or "")
            for entry in quality.get("urls") or []:
                if isinstance(entry, Mapping) and entry.get("url"):
                    links.append(
                        DownloadLink(
                            quality=label,
                            server=str(entry.get("title") or ""),
                            url=str(entry["url"]),
                        )
                    )
        return links
    if isinstance(value, list):
        return [
            DownloadLink.model_validate(entry)
            for entry in value
            if isinstance(entry, Mapping) and (entry.get("url") or entry.get("href"))
        ]
    return []


def decode_stream(payload: Any) -> NormalizedStreamResponse:
    """Decode an episode payload into the normalized stream contract."""

    data = _unwrap(payload)
    server = data.get("server")
    qualities: list[QualityOption] = []
    if isinstance(server, Mapping) and isinstance(server.get("qualities"), list):
        qualities = [
            QualityOption.model_validate(entry)
            for entry in server["qualities"]
            if isinstance(entry, Mapping)
        ]
        qualities = [quality for quality in qualities if quality.servers]

    default_url = first_non_empty(
        data.get("defaultStreamingUrl") if isinstance(data.get("defaultStreamingUrl"), str) else None,
        data.get("stream_link") if isinstance(data.get("stream_link"), str) else None,
        data.get("url") if isinstance(data.get("url"), str) else None,
    )
    if not qualities and default_url:
        qualities = [
            QualityOption(
                title="default",
                servers=[StreamServer(title="Otakudesu", server_id="", href=default_url)],
            )
        ]

    return NormalizedStreamResponse(
        title=str(data.get("title") or ""),
        anime_id=str(data.get("animeId") or ""),
        default_url=default_url,
        qualities=qualities,
        downloads=_decode_downloads(data.get("downloadUrl")),
        providers=[PROVIDER_NAME] if qualities or default_url else [],
    )


class SankavollereiClient:
    """Typed, cached access to every primary-provider endpoint.

    Raw payloads are cached only after they decode, so a malformed or empty
    answer is retried on the next call instead of being pinned for the TTL.
    """

    name = PROVIDER_NAME

    def __init__(self, client: UpstreamClient, cache: TTLCache):
        self._client = client
        self._cache = cache

    async def _get(
        self,
        path: str,
        ttl: float | None,
        decode: Callable[[Any], DecodedT],
        params: dict[str, Any] | None = None,
        *,
        cacheable: Callable[[DecodedT], bool] | None = None,
    ) -> DecodedT:
        key = f"{self.name}:{path}"
        if params:
            key += "?" + "&".join(f"{name}={value}" for name, value in sorted(params.items()))
        if ttl is not None:
            cached, found = self._cache.get(key)
            if found:
                return decode(cached)
        payload = await self._client.get_json(path, params=params)
        decoded = decode(payload)
        if ttl is not None and (cacheable is None or cacheable(decoded)):
            self._cache.set(key, payload, ttl)
        return decoded

    async def _items(
        self, path: str, ttl: float | None, params: dict[str, Any] | None = None
    ) -> list[ContentItem]:
        return await self._get(path, ttl, _decode_content_items, params)

    # Anime ---------------------------------------------------------------

    async def anime_home(self) -> dict[str, list[ContentItem]]:
        return await self._get("anime/home", None, _decode_home)

    async def search_anime(self, keyword: str) -> list[ContentItem]:
        return await self._items(f"anime/search/{quote(keyword, safe='')}", TTL_SEARCH)

    async def anime_genre(self, slug: str) -> list[ContentItem]:
        return await self._items(f"anime/genre/{quote(slug, safe='')}", TTL_GENRE)

    async def ongoing_anime(self, page: int = 1) -> list[ContentItem]:
        path = "anime/ongoing-anime" if page <= 1 else f"anime/ongoing-anime/page/{page}"
        return await self._items(path, TTL_ONGOING)

    async def complete_anime(self, page: int = 1) -> list[ContentItem]:
        path = "anime/complete-anime" if page <= 1 else f"anime/complete-anime/page/{page}"
        return await self._items(path, TTL_COMPLETE)

    async def anime_detail(self, slug: str) -> AnimeDetail:
        detail = await self._get(
            f"anime/anime/{quote(slug, safe='')}",
            TTL_DETAIL,
            lambda payload: AnimeDetail.model_validate(_unwrap(payload)),
        )
        if not detail.slug:
            detail.slug = slug
        return detail

    async def episode_stream(self, episode_id: str) -> NormalizedStreamResponse:
        return await self._get(
            f"anime/episode/{quote(episode_id, safe='')}",
            TTL_EPISODE,
            decode_stream,
            cacheable=lambda stream: bool(stream.qualities or stream.default_url),
        )

    async def server_url(self, server_id: str) -> str:
        def decode(payload: Any) -> str:
            url = _unwrap(payload).get("url")
            if not isinstance(url, str) or not url:
                raise MalformedUpstreamResponse(self.name, f"no url for server {server_id}")
            return url

        return await self._get(f"anime/server/{quote(server_id, safe='')}", TTL_SERVER, decode)

    async def latest_episodes(self) -> list[LatestEpisode]:
        return await self._get(
            "anime/stream/latest",
            TTL_LATEST,
            lambda payload: [
                LatestEpisode.model_validate(entry) for entry in decode_item_list(payload)
            ],
        )

    # Comics --------------------------------------------------------------

    async def trending_manga(self) -> list[ContentItem]:
        return await self._items("comic/trending", TTL_TRENDING)

    async def ongoing_manga(self, page: int = 1) -> list[ContentItem]:
        params = {"page": page} if page > 1 else None
        return await self._items("comic/terbaru", TTL_ONGOING, params)

    async def popular_manga(self, page: int = 1) -> list[ContentItem]:
        params = {"page": page} if page > 1 else None
        return await self._items("comic/populer", TTL_COMPLETE, params)

    async def search_manga(self, keyword: str) -> list[ContentItem]:
        return await self._items("comic/search", TTL_SEARCH, {"q": keyword})

    async def manga_genre(self, slug: str) -> list[ContentItem]:
        return await self._items(f"comic/genre/{quote(slug, safe='')}", TTL_GENRE)

    async def manga_detail(self, slug: str) -> MangaDetail:
        detail = await self._get(
            f"comic/comic/{quote(slug, safe='')}", TTL_DETAIL, decode_manga_detail
        )
        if not detail.slug:
            detail.slug = slug
        return detail

    async def chapter_images(self, chapter_id: str) -> ChapterImages:
        chapter = await self._get(
            f"comic/chapter/{quote(chapter_id, safe='')}",
            TTL_CHAPTER,
            lambda payload: ChapterImages.model_validate(_unwrap(payload)),
        )
        if not chapter.chapter_id:
            chapter.chapter_id = chapter_id
        return chapter


def _decode_content_items(payload: Any) -> list[ContentItem]:
    return [ContentItem.model_validate(entry) for entry in decode_item_list(payload)]


def _decode_home(payload: Any) -> dict[str, list[ContentItem]]:
    data = _unwrap(payload)
    sections: dict[str, list[ContentItem]] = {}
    for section in ("ongoing", "completed"):
        block = data.get(section)
        entries = block.get("animeList") if isinstance(block, Mapping) else block
        sections[section] = [
            ContentItem.model_validate(entry)
            for entry in entries or []
            if isinstance(entry, Mapping)
        ]
    return sections
