"""Utility helpers for the TanyaAyomi service."""

from __future__ import annotations

import json
import re
import unicodedata
from typing import Any
from urllib.parse import urlsplit, urlunsplit


FENCE_PREFIXES = ("```json", "```JSON", "```")
JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)
BARE_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)
NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
IMAGE_TRANSFORM_KEYS = frozenset({"resize", "quality"})


def slugify(value: str) -> str:
    """Return a URL-friendly slug, or an empty string when nothing survives."""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii").lower()
    value = NON_ALNUM_RE.sub("-", value)
    return value.strip("-")


def strip_code_fence(content: str) -> str:
    """Remove markdown code-fence wrapping around a model response."""

    text = content.strip()
    for prefix in FENCE_PREFIXES:
        if text.startswith(prefix):
            text = text[len(prefix):]
            break
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def extract_json_object(content: str) -> dict[str, Any]:
    """Decode the JSON object in a model response.

    A reply that is only a (possibly fenced) object is decoded directly;
    otherwise the first fenced block, then the outermost braces, are used.
    """

    try:
        payload = json.loads(strip_code_fence(content))
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, dict):
        return payload

    match = JSON_BLOCK_RE.search(content)
    if match:
        candidate = match.group(1)
    else:
        match = BARE_JSON_RE.search(content)
        if not match:
            raise ValueError("No JSON object found in response")
        candidate = match.group(0)

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON payload produced by the model") from exc
    if not isinstance(payload, dict):
        raise ValueError("Model response was not a JSON object")
    return payload


def extract_slug_from_link(link: str) -> str:
    """Return the last non-empty path segment of a link."""

    trimmed = (link or "").strip().strip("/")
    if not trimmed:
        return ""
    return trimmed.split("/")[-1]


def clean_image_url(url: str) -> str:
    """Drop resize/quality transform parameters from an image URL."""

    if not url:
        return ""
    parts = urlsplit(url)
    if not parts.query:
        return url
    pieces = parts.query.split("&")
    kept = [
        piece
        for piece in pieces
        if piece.split("=", 1)[0].lower() not in IMAGE_TRANSFORM_KEYS
    ]
    if len(kept) == len(pieces):
        return url
    return urlunsplit(
        (parts.scheme, parts.netloc, parts.path, "&".join(kept), parts.fragment)
    )


def first_non_empty(*values: str | None) -> str:
    for value in values:
        if value:
            return value
    return ""
