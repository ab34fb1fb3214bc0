"""Translate canonical episode slugs into mirror-specific candidates."""

from __future__ import annotations

import re
from dataclasses import dataclass

EPISODE_SLUG_RE = re.compile(r"^(.*?)-episode-(\d+)(?:-.*)?$")
EPISODE_PHRASE_RE = re.compile(r"(episode|ep|eps)\s*\d+.*")
NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
BOILERPLATE_PHRASES = ("subtitle indonesia", "sub indo")

# Abbreviated catalogue tokens mapped to their full kebab-case titles.
ALIAS_TABLE: dict[str, str] = {
    "wpoiec": "one-piece",
    "bkunhro": "boku-no-hero-academia",
    "stvssn": "spy-x-family",
    "kslym": "kimetsu-no-yaiba",
    "jjksn": "jujutsu-kaisen",
    "atkslyr": "attack-on-titan",
    "nruto": "naruto",
    "nrtsppdn": "naruto-shippuden",
    "blach": "bleach",
    "dmnslyar": "demon-slayer",
    "tokyo-revengers": "tokyo-revengers",
    "blue-lock": "blue-lock",
    "windbreaker": "wind-breaker",
    "mushoku-tensei": "mushoku-tensei",
    "solo-leveling": "solo-leveling",
    "kaijuu-8-gou": "kaijuu-8-gou",
    "dandadan": "dandadan",
    "overlord": "overlord",
    "re-zero": "re-zero",
    "konosuba": "konosuba",
    "danmachi": "danmachi",
    "tensura": "tensei-shitara-slime-datta-ken",
}


@dataclass(frozen=True, slots=True)
class EpisodeSlug:
    anime_token: str
    number: str


def parse_episode_slug(slug: str) -> EpisodeSlug | None:
    match = EPISODE_SLUG_RE.match(slug or "")
    if match is None:
        return None
    return EpisodeSlug(anime_token=match.group(1), number=match.group(2))


def derive_slug_from_title(title: str) -> str:
    """Turn a display title such as ``One Piece Episode 12 Sub Indo`` into ``one-piece``."""

    cleaned = (title or "").lower()
    for phrase in BOILERPLATE_PHRASES:
        cleaned = cleaned.replace(phrase, "")
    cleaned = EPISODE_PHRASE_RE.sub("", cleaned).strip()
    return NON_ALNUM_RE.sub("-", cleaned).strip("-")


def resolve_anime_slug(anime_token: str, title: str | None = None) -> str:
    """Map an anime token to the full slug mirrors expect.

    The alias table wins; otherwise the title is used when it yields
    something, and the token itself is the last resort.
    """

    alias = ALIAS_TABLE.get(anime_token)
    if alias:
        return alias
    if title:
        derived = derive_slug_from_title(title)
        if derived:
            return derived
    return anime_token


def convert_slug(slug: str, title: str | None = None) -> str:
    """Return ``<full-title>-episode-<n>`` or ``slug`` when it is not an episode slug."""

    parsed = parse_episode_slug(slug)
    if parsed is None:
        return slug
    anime_slug = resolve_anime_slug(parsed.anime_token, title)
    return f"{anime_slug}-episode-{parsed.number}"


def translate(slug: str, title: str | None = None, suffix: str = "") -> list[str]:
    """Ordered, de-duplicated slug candidates for one mirror.

    The raw slug always comes first. Slugs that do not look like episode
    slugs produce no other candidate.
    """

    raw = (slug or "").strip()
    if not raw:
        return []
    if parse_episode_slug(raw) is None:
        return [raw]

    converted = convert_slug(raw, title)
    candidates = [raw, converted]
    if suffix:
        if not converted.endswith(suffix):
            candidates.append(converted + suffix)
        if not raw.endswith(suffix):
            candidates.append(raw + suffix)

    ordered: list[str] = []
    for candidate in candidates:
        if candidate and candidate not in ordered:
            ordered.append(candidate)
    return ordered
