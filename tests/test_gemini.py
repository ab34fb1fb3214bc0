"""Tests for the Gemini enrichment client."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from app.config import Settings
from app.services.gemini import GeminiClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    base: dict[str, Any] = {
        "GEMINI_API_KEY": "test-key",
        "GEMINI_API_URL": "https://gemini.example.com/v1beta",
        "GEMINI_MODEL": "gemini-1.5-flash",
    }
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def _answer(text: str) -> dict[str, Any]:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.mark.anyio("asyncio")
async def test_describe_parses_fenced_json() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        text = '```json\n{"year": "2019", "rating": "8.7", "status": "Completed", "genre": "Action"}\n```'
        return httpx.Response(200, json=_answer(text))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = GeminiClient(build_settings(), http_client)
        fields = await client.describe("Kimetsu no Yaiba", "anime")

    assert fields.year == "2019"
    assert fields.rating == "8.7"
    assert fields.genre == "Action"
    assert requests[0].url.path == "/v1beta/models/gemini-1.5-flash:generateContent"
    assert requests[0].url.params["key"] == "test-key"
    prompt = json.loads(requests[0].content)["contents"][0]["parts"][0]["text"]
    assert 'Identify the anime "Kimetsu no Yaiba"' in prompt


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json=_answer("I could not find that title.")),
        httpx.Response(200, json={"candidates": []}),
        httpx.Response(500, json={"error": "overloaded"}),
        httpx.Response(200, text="not json"),
    ],
)
async def test_describe_degrades_to_empty_fields(response: httpx.Response) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = GeminiClient(build_settings(), http_client)
        fields = await client.describe("Mystery", "manga")

    assert fields.is_empty()


@pytest.mark.anyio("asyncio")
async def test_describe_without_key_makes_no_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("no request expected")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = GeminiClient(build_settings(GEMINI_API_KEY=None), http_client)
        fields = await client.describe("Anything", "anime")

    assert fields.is_empty()
    assert client.enabled is False


@pytest.mark.anyio("asyncio")
async def test_describe_reads_json_after_lead_in() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        text = 'Here is the metadata you asked for:\n```json\n{"year": "2023", "author": "Kanehito Yamada"}\n```'
        return httpx.Response(200, json=_answer(text))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        fields = await GeminiClient(build_settings(), http_client).describe("Frieren", "manga")

    assert fields.year == "2023"
    assert fields.author == "Kanehito Yamada"
