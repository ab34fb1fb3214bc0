"""Client for the Gemini text generation API used to fill metadata gaps."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import EnrichedFields, MediaType
from ..utils import extract_json_object

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """Identify the {media_type} "{title}".
Return a strictly valid JSON object (no markdown formatting) with these fields:
- "year": (string) Release year (e.g. "2023").
- "rating": (string) Average score 0-10 (e.g. "8.5").
- "status": (string) "Ongoing" or "Completed".
- "author": (string) Original creator/mangaka.
- "genre": (string) Comma-separated genres (e.g. "Action, Adventure").
- "synopsis": (string) A very short, engaging 1-sentence summary.
If unknown, return generic/empty values but valid JSON."""


class GeminiClient:
    """Ask Gemini for descriptive fields about a title.

    Every failure mode (missing key, transport error, unexpected payload or
    unparsable JSON) collapses to an empty ``EnrichedFields``.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    @property
    def enabled(self) -> bool:
        return bool(self._settings.gemini_api_key)

    def build_prompt(self, title: str, media_type: MediaType) -> str:
        return PROMPT_TEMPLATE.format(media_type=media_type, title=title)

    async def describe(self, title: str, media_type: MediaType) -> EnrichedFields:
        if not self.enabled:
            return EnrichedFields()

        base_url = str(self._settings.gemini_api_url).rstrip("/")
        url = f"{base_url}/models/{self._settings.gemini_model}:generateContent"
        body = {"contents": [{"parts": [{"text": self.build_prompt(title, media_type)}]}]}

        try:
            response = await self._client.post(
                url,
                params={"key": self._settings.gemini_api_key},
                json=body,
                timeout=self._settings.ai_timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            logger.warning("Gemini request failed for %s: %s", title, exc)
            return EnrichedFields()
        except ValueError as exc:
            logger.warning("Gemini returned invalid JSON for %s: %s", title, exc)
            return EnrichedFields()

        text = self._extract_text(payload)
        if not text:
            return EnrichedFields()

        try:
            return EnrichedFields.model_validate(extract_json_object(text))
        except (ValueError, ValidationError) as exc:
            logger.info("Discarding unparsable Gemini answer for %s: %s", title, exc)
            return EnrichedFields()

    @staticmethod
    def _extract_text(payload: Any) -> str:
        if not isinstance(payload, dict):
            return ""
        candidates = payload.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            return ""
        content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
            return ""
        text = parts[0].get("text")
        return text if isinstance(text, str) else ""
