"""Pydantic models describing the normalized API payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MediaType = Literal["anime", "manga"]


def _coerce_text(value: Any) -> Any:
    """Collapse the loosely typed upstream scalars into plain strings."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict):
        for key in ("paragraphs", "text", "name", "title"):
            if key in value:
                return _coerce_text(value[key])
        return ""
    if isinstance(value, (list, tuple)):
        parts: list[str] = []
        for entry in value:
            text = _coerce_text(entry)
            if isinstance(text, str) and text.strip():
                parts.append(text.strip())
        return parts
    return value


class _UpstreamModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ContentItem(_UpstreamModel):
    """A single anime or manga entry as returned to API consumers."""

    title: str = ""
    slug: str = ""
    anime_id: str = Field(
        default="",
        validation_alias=AliasChoices("animeId", "anime_id", "mangaId", "id"),
        serialization_alias="animeId",
    )
    link: str = Field(default="", validation_alias=AliasChoices("link", "href", "url"))
    cover: str = ""
    poster: str = ""
    thumbnail: str = ""
    image: str = ""
    synopsis: str = ""
    genre: str = Field(default="", validation_alias=AliasChoices("genre", "genres"))
    status: str = ""
    rating: str = Field(default="", validation_alias=AliasChoices("rating", "score"))
    release_year: str = Field(
        default="",
        validation_alias=AliasChoices("releaseDate", "release_year", "year", "released"),
        serialization_alias="releaseDate",
    )
    author: str = ""
    type: str = ""
    total_episodes: str = Field(
        default="",
        validation_alias=AliasChoices("totalEpisodes", "total_episodes"),
        serialization_alias="totalEpisodes",
    )
    episode: str = Field(default="", validation_alias=AliasChoices("episode", "eps"))
    chapter: str = ""
    time_ago: str = Field(
        default="",
        validation_alias=AliasChoices("time_ago", "timeAgo", "updated"),
        serialization_alias="time_ago",
    )

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any, info) -> Any:
        if info.field_name in _LIST_FIELDS:
            return value
        coerced = _coerce_text(value)
        if isinstance(coerced, list):
            separator = "\n" if info.field_name == "synopsis" else ", "
            return separator.join(coerced)
        return coerced


class EpisodeEntry(_UpstreamModel):
    title: str = Field(default="", validation_alias=AliasChoices("title", "eps_title"))
    episode_id: str = Field(
        default="",
        validation_alias=AliasChoices("episodeId", "episode_id"),
        serialization_alias="episodeId",
    )
    slug: str = Field(default="", validation_alias=AliasChoices("slug", "eps_slug"))
    episode: str = Field(default="", validation_alias=AliasChoices("eps", "episode"))

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> Any:
        coerced = _coerce_text(value)
        return ", ".join(coerced) if isinstance(coerced, list) else coerced


class ChapterEntry(_UpstreamModel):
    title: str = ""
    chapter: str = ""
    chapter_id: str = Field(
        default="",
        validation_alias=AliasChoices("chapterId", "chapter_id"),
        serialization_alias="chapterId",
    )
    slug: str = ""
    link: str = Field(default="", validation_alias=AliasChoices("link", "href"))
    date: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> Any:
        coerced = _coerce_text(value)
        return ", ".join(coerced) if isinstance(coerced, list) else coerced


class AnimeDetail(ContentItem):
    """Anime detail view including the episode list."""

    episodes: list[EpisodeEntry] = Field(
        default_factory=list,
        validation_alias=AliasChoices("episodeList", "episodes", "episode_list"),
        serialization_alias="episodeList",
    )


class MangaDetail(ContentItem):
    """Manga detail view including the chapter list."""

    chapters: list[ChapterEntry] = Field(
        default_factory=list,
        validation_alias=AliasChoices("chapters", "chapterList", "chapter_list"),
    )


_LIST_FIELDS = frozenset({"episodes", "chapters"})


class ChapterImages(_UpstreamModel):
    title: str = ""
    chapter_id: str = Field(
        default="",
        validation_alias=AliasChoices("chapterId", "chapter_id"),
        serialization_alias="chapterId",
    )
    manga_id: str = Field(
        default="",
        validation_alias=AliasChoices("mangaId", "manga_id"),
        serialization_alias="mangaId",
    )
    images: list[str] = Field(default_factory=list)
    next_slug: str | None = Field(
        default=None,
        validation_alias=AliasChoices("nextSlug", "next_slug"),
        serialization_alias="nextSlug",
    )
    prev_slug: str | None = Field(
        default=None,
        validation_alias=AliasChoices("prevSlug", "prev_slug"),
        serialization_alias="prevSlug",
    )

    @field_validator("images", mode="before")
    @classmethod
    def _coerce_images(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        images: list[str] = []
        for entry in value:
            if isinstance(entry, dict):
                entry = entry.get("url") or entry.get("src") or ""
            if isinstance(entry, str) and entry.strip():
                images.append(entry.strip())
        return images


class LatestEpisode(_UpstreamModel):
    title: str = ""
    episode_id: str = Field(
        default="",
        validation_alias=AliasChoices("episodeId", "episode_id"),
        serialization_alias="episodeId",
    )
    slug: str = ""
    poster: str = ""
    anime_id: str = Field(
        default="",
        validation_alias=AliasChoices("animeId", "anime_id"),
        serialization_alias="animeId",
    )
    episode: str = ""
    source: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> Any:
        coerced = _coerce_text(value)
        return ", ".join(coerced) if isinstance(coerced, list) else coerced


class StreamServer(_UpstreamModel):
    """A named mirror inside a quality tier."""

    title: str = ""
    server_id: str = Field(
        default="",
        validation_alias=AliasChoices("serverId", "server_id"),
        serialization_alias="serverId",
    )
    href: str = Field(default="", validation_alias=AliasChoices("href", "url"))

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> Any:
        coerced = _coerce_text(value)
        return ", ".join(coerced) if isinstance(coerced, list) else coerced


class QualityOption(_UpstreamModel):
    """One rung of the quality ladder."""

    title: str = ""
    servers: list[StreamServer] = Field(
        default_factory=list,
        validation_alias=AliasChoices("serverList", "servers"),
        serialization_alias="serverList",
    )

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, value: Any) -> Any:
        coerced = _coerce_text(value)
        return ", ".join(coerced) if isinstance(coerced, list) else coerced

    @field_validator("servers", mode="before")
    @classmethod
    def _coerce_servers(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [entry for entry in value if isinstance(entry, (dict, StreamServer))]


class DownloadLink(_UpstreamModel):
    quality: str = Field(
        default="", validation_alias=AliasChoices("quality", "resolution", "title")
    )
    server: str = Field(default="", validation_alias=AliasChoices("server", "name"))
    url: str = Field(default="", validation_alias=AliasChoices("url", "href"))

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> Any:
        coerced = _coerce_text(value)
        return ", ".join(coerced) if isinstance(coerced, list) else coerced


class NormalizedStreamResponse(BaseModel):
    """Stream contract returned regardless of which upstreams produced it."""

    title: str = ""
    anime_id: str = ""
    default_url: str = ""
    qualities: list[QualityOption] = Field(default_factory=list)
    downloads: list[DownloadLink] = Field(default_factory=list)
    providers: list[str] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "animeId": self.anime_id,
            "defaultStreamingUrl": self.default_url,
            "server": {
                "qualities": [quality.to_payload() for quality in self.qualities]
            },
            "downloadUrl": [download.to_payload() for download in self.downloads],
            "providers": list(self.providers),
        }


ENRICHED_FIELDS: tuple[str, ...] = (
    "year",
    "rating",
    "status",
    "author",
    "genre",
    "synopsis",
)


class EnrichedFields(BaseModel):
    """Descriptive fields produced by the enrichment tiers."""

    model_config = ConfigDict(extra="ignore")

    year: str = Field(
        default="", validation_alias=AliasChoices("year", "release_year", "releaseYear")
    )
    rating: str = ""
    status: str = ""
    author: str = ""
    genre: str = Field(default="", validation_alias=AliasChoices("genre", "genres"))
    synopsis: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> Any:
        coerced = _coerce_text(value)
        if isinstance(coerced, list):
            return ", ".join(coerced)
        return coerced.strip() if isinstance(coerced, str) else coerced

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in ENRICHED_FIELDS)


EnrichmentSource = Literal["ai-generated", "manual", "upstream-api"]

# Provenance values written by earlier deployments of the store.
LEGACY_SOURCES: dict[str, str] = {
    "gemini": "ai-generated",
    "ai": "ai-generated",
    "api": "upstream-api",
    "upstream": "upstream-api",
}


class EnrichedMetadata(BaseModel):
    """Durable enrichment record keyed by ``(title, media_type)``."""

    title: str
    media_type: str
    slug: str = ""
    author: str = ""
    genre: str = ""
    type: str = ""
    rating: str = ""
    status: str = ""
    release_year: str = ""
    synopsis: str = ""
    source: EnrichmentSource = "ai-generated"
    last_updated_at: datetime | None = None

    @field_validator("source", mode="before")
    @classmethod
    def _normalise_source(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        if not text:
            return "ai-generated"
        text = LEGACY_SOURCES.get(text, text)
        return text

    def to_fields(self) -> EnrichedFields:
        return EnrichedFields(
            year=self.release_year,
            rating=self.rating,
            status=self.status,
            author=self.author,
            genre=self.genre,
            synopsis=self.synopsis,
        )


class BookmarkCreate(BaseModel):
    type: MediaType
    slug: str = Field(min_length=1, max_length=255)
    title: str = Field(default="", max_length=255)
    cover_image: str = Field(
        default="", validation_alias=AliasChoices("cover_image", "coverImage", "cover")
    )


class Credentials(BaseModel):
    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=6, max_length=256)
