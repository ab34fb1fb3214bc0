"""Resolve an episode into one quality ladder across every stream provider."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Sequence

from ..cache import TTLCache
from ..errors import NoStreamAvailable, ProviderError, UpstreamUnavailable
from ..models import DownloadLink, NormalizedStreamResponse, QualityOption
from .mirrors import MirrorResult, StreamMirror
from .primary import SankavollereiClient, TTL_EPISODE
from .slugs import translate

logger = logging.getLogger(__name__)

RESOLUTION_RE = re.compile(r"^\s*(\d{3,4})p\b", re.IGNORECASE)
PRIMARY_LABEL = "Server 1 - Otakudesu (Sub Indo) - {title}"


def resolution_of(label: str) -> int | None:
    """Return the numeric resolution of labels such as ``720p``."""

    match = RESOLUTION_RE.match(label or "")
    return int(match.group(1)) if match else None


def order_qualities(qualities: Sequence[QualityOption]) -> list[QualityOption]:
    """Sort recognised resolutions ascending and keep other labels after them.

    Tiers sharing a label are folded into one tier. Unrecognised labels keep
    their original relative order.
    """

    merged: dict[str, QualityOption] = {}
    for quality in qualities:
        existing = merged.get(quality.title)
        if existing is None:
            merged[quality.title] = quality.model_copy(deep=True)
        else:
            existing.servers.extend(
                server.model_copy() for server in quality.servers
            )

    def _key(indexed: tuple[int, QualityOption]) -> tuple[int, int]:
        index, quality = indexed
        resolution = resolution_of(quality.title)
        if resolution is None:
            return (1, index)
        return (0, resolution)

    return [quality for _, quality in sorted(enumerate(merged.values()), key=_key)]


def demote_primary(primary: NormalizedStreamResponse) -> QualityOption | None:
    """Collapse the primary result into a single attributed quality tier."""

    if primary.qualities:
        first = primary.qualities[0].model_copy(deep=True)
        first.title = PRIMARY_LABEL.format(title=first.title or "default")
        return first
    return None


class StreamResolver:
    """Query the primary provider and every mirror, then merge the results."""

    def __init__(
        self,
        primary: SankavollereiClient,
        mirrors: Sequence[StreamMirror],
        cache: TTLCache,
        *,
        mirror_ttl: float = TTL_EPISODE,
    ) -> None:
        self._primary = primary
        self._mirrors = list(mirrors)
        self._cache = cache
        self._mirror_ttl = mirror_ttl

    @property
    def mirrors(self) -> list[StreamMirror]:
        return list(self._mirrors)

    async def resolve(
        self, episode_id: str, title: str | None = None
    ) -> NormalizedStreamResponse:
        primary, primary_error = await self._fetch_primary(episode_id)
        lookup_title = title or (primary.title if primary else None)

        results = await asyncio.gather(
            *(self._fetch_mirror(mirror, episode_id, lookup_title) for mirror in self._mirrors),
            return_exceptions=True,
        )
        secondaries: list[MirrorResult] = []
        for mirror, result in zip(self._mirrors, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.warning("Mirror %s crashed for %s: %s", mirror.name, episode_id, result)
                continue
            if result is not None:
                secondaries.append(result)

        if not secondaries and primary is None:
            raise NoStreamAvailable(episode_id, primary_error)
        return self.merge(primary, secondaries)

    def merge(
        self,
        primary: NormalizedStreamResponse | None,
        secondaries: Sequence[MirrorResult],
    ) -> NormalizedStreamResponse:
        """Build the normalized response from whatever succeeded."""

        if not secondaries:
            if primary is None:
                raise ValueError("merge requires at least one provider result")
            response = primary.model_copy(deep=True)
            if response.qualities:
                response.qualities[0].title = PRIMARY_LABEL.format(
                    title=response.qualities[0].title or "default"
                )
            if not response.default_url and response.qualities:
                response.default_url = response.qualities[0].servers[0].href
            return response

        ladder = order_qualities(
            [quality for result in secondaries for quality in result.qualities]
        )
        downloads: list[DownloadLink] = []
        providers: list[str] = []
        if primary is not None:
            demoted = demote_primary(primary)
            if demoted is not None:
                ladder.append(demoted)
            downloads.extend(link.model_copy() for link in primary.downloads)
            providers.extend(primary.providers)
        for result in secondaries:
            downloads.extend(link.model_copy() for link in result.downloads)
            providers.append(result.provider)

        default_url = next((result.default_url for result in secondaries if result.default_url), "")
        if not default_url and primary is not None:
            default_url = primary.default_url
        if not default_url:
            default_url = next(
                (server.href for quality in ladder for server in quality.servers if server.href),
                "",
            )

        title = (primary.title if primary else "") or secondaries[0].title
        return NormalizedStreamResponse(
            title=title,
            anime_id=primary.anime_id if primary else "",
            default_url=default_url,
            qualities=ladder,
            downloads=downloads,
            providers=providers,
        )

    async def _fetch_primary(
        self, episode_id: str
    ) -> tuple[NormalizedStreamResponse | None, Exception | None]:
        try:
            result = await self._primary.episode_stream(episode_id)
        except ProviderError as exc:
            logger.warning("Primary stream lookup failed for %s: %s", episode_id, exc)
            return None, exc
        if not result.qualities and not result.default_url:
            return None, UpstreamUnavailable(self._primary.name, "no playable entries")
        return result, None

    async def _fetch_mirror(
        self, mirror: StreamMirror, episode_id: str, title: str | None
    ) -> MirrorResult | None:
        cache_key = f"stream:{mirror.name}:{episode_id}:{title or ''}"
        cached, found = self._cache.get(cache_key)
        if found:
            return cached

        for candidate in translate(episode_id, title, mirror.candidate_suffix):
            logger.debug("Trying %s slug %s", mirror.name, candidate)
            try:
                result = await mirror.fetch(candidate)
            except ProviderError as exc:
                logger.debug("%s rejected %s: %s", mirror.name, candidate, exc)
                continue
            if result.is_empty:
                continue
            logger.info("%s resolved %s via %s", mirror.name, episode_id, candidate)
            self._cache.set(cache_key, result, self._mirror_ttl)
            return result

        logger.info("%s had no stream for %s", mirror.name, episode_id)
        return None
