"""Secondary stream mirrors queried when resolving an episode."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import quote

from ..cache import TTLCache
from ..errors import MalformedUpstreamResponse
from ..models import AnimeDetail, ContentItem, DownloadLink, QualityOption, StreamServer
from ..utils import slugify
from .http import UpstreamClient

logger = logging.getLogger(__name__)

STREAMING_HOSTS = ("acefile", "filedon", "akirabox")


@dataclass(slots=True)
class MirrorResult:
    """What one mirror produced for one slug, in the mirror's own order."""

    provider: str
    slug: str = ""
    title: str = ""
    qualities: list[QualityOption] = field(default_factory=list)
    default_url: str = ""
    downloads: list[DownloadLink] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.qualities


class StreamMirror(Protocol):
    name: str
    candidate_suffix: str
    preferred_server: str | None

    async def fetch(self, slug: str) -> MirrorResult: ...


def _as_list(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


class AnimeIndoClient:
    """AnimeIndo stream and browse endpoints."""

    name = "animeindo"
    candidate_suffix = "-sub-indo"
    preferred_server: str | None = "B-TUBE"

    def __init__(self, client: UpstreamClient, cache: TTLCache):
        self._client = client
        self._cache = cache

    async def fetch(self, slug: str) -> MirrorResult:
        payload = await self._client.get_json(f"anime/stream/episode/{quote(slug, safe='')}")
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise MalformedUpstreamResponse(self.name, "missing data object")

        result = MirrorResult(provider=self.name, slug=slug, title=_text(data.get("title")))
        for link in _as_list(data.get("stream_links")):
            server = _text(link.get("server"))
            url = _text(link.get("url"))
            if not url:
                continue
            result.qualities.append(
                QualityOption(
                    title=server or "AnimeIndo",
                    servers=[
                        StreamServer(
                            title="AnimeIndo",
                            server_id=f"{self.name}_{slugify(server) or len(result.qualities)}",
                            href=url,
                        )
                    ],
                )
            )
            if self.preferred_server and server == self.preferred_server and not result.default_url:
                result.default_url = url
        if not result.default_url and result.qualities:
            result.default_url = result.qualities[0].servers[0].href

        for link in _as_list(data.get("download_links")):
            url = _text(link.get("url"))
            if url:
                result.downloads.append(
                    DownloadLink(server=_text(link.get("server")), url=url)
                )
        return result

    async def latest(self, page: int = 1) -> list[ContentItem]:
        payload = await self._cached(
            f"animeindo:latest:{page}", "anime/stream/latest", 180, params={"page": page}
        )
        return [ContentItem.model_validate(item) for item in _as_list(_data(payload))]

    async def popular(self) -> list[ContentItem]:
        payload = await self._cached("animeindo:popular", "anime/stream/popular", 900)
        return [ContentItem.model_validate(item) for item in _as_list(_data(payload))]

    async def search(self, query: str) -> list[ContentItem]:
        payload = await self._cached(
            f"animeindo:search:{query.lower()}",
            f"anime/stream/search/{quote(query, safe='')}",
            600,
        )
        return [ContentItem.model_validate(item) for item in _as_list(_data(payload))]

    async def detail(self, slug: str) -> AnimeDetail:
        payload = await self._cached(
            f"animeindo:detail:{slug}", f"anime/stream/anime/{quote(slug, safe='')}", 1800
        )
        data = _data(payload)
        if not isinstance(data, dict):
            raise MalformedUpstreamResponse(self.name, "missing detail object")
        detail = AnimeDetail.model_validate(data)
        if not detail.slug:
            detail.slug = slug
        return detail

    async def _cached(
        self, key: str, path: str, ttl: float, params: dict[str, Any] | None = None
    ) -> Any:
        cached, found = self._cache.get(key)
        if found:
            return cached
        payload = await self._client.get_json(path, params=params)
        self._cache.set(key, payload, ttl)
        return payload


def _data(payload: Any) -> Any:
    return payload.get("data") if isinstance(payload, dict) else None


class OploverzClient:
    """Oploverz episode endpoint; its fields sit at the payload root."""

    name = "oploverz"
    candidate_suffix = "-subtitle-indonesia"
    preferred_server: str | None = None

    def __init__(self, client: UpstreamClient):
        self._client = client

    async def fetch(self, slug: str) -> MirrorResult:
        payload = await self._client.get_json(f"anime/oploverz/episode/{quote(slug, safe='')}")
        if not isinstance(payload, dict):
            raise MalformedUpstreamResponse(self.name, "expected a JSON object")

        result = MirrorResult(
            provider=self.name, slug=slug, title=_text(payload.get("episode_title"))
        )
        downloads = _as_list(payload.get("downloads"))
        tiers: dict[str, QualityOption] = {}
        for entry in downloads:
            name = _text(entry.get("name"))
            resolution = _text(entry.get("resolution"))
            url = _text(entry.get("url"))
            if not url:
                continue
            result.downloads.append(DownloadLink(quality=resolution, server=name, url=url))
            if not any(host in name.lower() for host in STREAMING_HOSTS):
                continue
            label = resolution or "default"
            tier = tiers.get(label)
            if tier is None:
                tier = QualityOption(title=label)
                tiers[label] = tier
                result.qualities.append(tier)
            tier.servers.append(
                StreamServer(
                    title=name or "Oploverz",
                    server_id=f"{self.name}_{slugify(label)}_{len(tier.servers)}",
                    href=to_embed_url(url),
                )
            )

        streams = _as_list(payload.get("streams"))
        stream_urls = [_text(stream.get("url")) for stream in streams]
        stream_urls = [url for url in stream_urls if url]
        if stream_urls:
            result.default_url = stream_urls[0]
        elif result.downloads:
            result.default_url = result.downloads[0].url
        return result


def to_embed_url(url: str) -> str:
    """Rewrite acefile download pages to their embeddable player form."""

    if "acefile.co/f/" in url:
        return url.replace("/f/", "/player/", 1)
    return url
