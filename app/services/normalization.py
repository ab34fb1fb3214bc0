"""Clean-up applied to provider items before they leave the service."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence, TypeVar

from ..models import ChapterEntry, ContentItem, EpisodeEntry
from ..utils import clean_image_url, extract_slug_from_link, first_non_empty

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT", bound=ContentItem)
EntryT = TypeVar("EntryT", ChapterEntry, EpisodeEntry)

IMAGE_FIELDS = ("cover", "poster", "thumbnail", "image")


def resolve_cover(item: ContentItem) -> str:
    item.cover = first_non_empty(item.cover, item.poster, item.thumbnail, item.image)
    return item.cover


def backfill_slug(item: ContentItem) -> str:
    if not item.slug:
        item.slug = item.anime_id or extract_slug_from_link(item.link)
    return item.slug


def clean_item_images(item: ContentItem) -> None:
    for name in IMAGE_FIELDS:
        setattr(item, name, clean_image_url(getattr(item, name)))


def is_blacklisted(title: str, blacklist: Iterable[str]) -> bool:
    lowered = (title or "").lower()
    return any(term and term in lowered for term in blacklist)


def filter_blacklisted(items: Sequence[ItemT], blacklist: Iterable[str]) -> list[ItemT]:
    """Drop items whose lowercased title contains any blacklisted substring."""

    terms = [term.lower() for term in blacklist]
    kept = [item for item in items if not is_blacklisted(item.title, terms)]
    if len(kept) != len(items):
        logger.debug("Blacklist removed %s items", len(items) - len(kept))
    return kept


def normalize_items(
    items: Sequence[ItemT], blacklist: Iterable[str] = ()
) -> list[ItemT]:
    """Filter, then backfill slug, clean images and resolve the cover."""

    survivors = filter_blacklisted(items, blacklist)
    for item in survivors:
        backfill_slug(item)
        clean_item_images(item)
        resolve_cover(item)
    return survivors


def _entry_slug(entry: ChapterEntry | EpisodeEntry) -> str:
    slug = entry.slug
    if not slug and isinstance(entry, ChapterEntry):
        slug = entry.chapter_id or extract_slug_from_link(entry.link)
    if not slug and isinstance(entry, EpisodeEntry):
        slug = entry.episode_id
    return slug.strip().lower()


def _entry_title(entry: ChapterEntry | EpisodeEntry) -> str:
    title = entry.title
    if not title and isinstance(entry, ChapterEntry):
        title = entry.chapter
    return title.strip().lower()


def dedupe_entries(entries: Sequence[EntryT]) -> list[EntryT]:
    """Keep the first of any entries sharing a normalized slug or title."""

    seen_slugs: set[str] = set()
    seen_titles: set[str] = set()
    unique: list[EntryT] = []
    for entry in entries:
        slug = _entry_slug(entry)
        title = _entry_title(entry)
        if (slug and slug in seen_slugs) or (title and title in seen_titles):
            continue
        if slug:
            seen_slugs.add(slug)
        if title:
            seen_titles.add(title)
        unique.append(entry)
    return unique
