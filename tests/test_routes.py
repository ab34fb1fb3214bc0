from __future__ import annotations

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.errors import NoStreamAvailable, UpstreamUnavailable
from app.main import register_routes
from app.models import ContentItem, NormalizedStreamResponse, QualityOption, StreamServer
from app.services.accounts import AccountService, UsernameTaken
from app.services.catalog import AnimeService, MangaService


class DummyAnimeService(AnimeService):
    """AnimeService stub returning canned payloads."""

    def __init__(self) -> None:
        # Deliberately skip super().__init__ to avoid touching external systems.
        self.searched: list[str] = []
        self.episode_error: Exception | None = None

    async def search(self, keyword):  # type: ignore[override]
        self.searched.append(keyword)
        return [ContentItem(title="Naruto", slug="naruto", type="Anime")]

    async def ongoing(self, page=1):  # type: ignore[override]
        raise UpstreamUnavailable("sankavollerei", "API returned status 502", status_code=502)

    async def episode(self, episode_id, title=None):  # type: ignore[override]
        if self.episode_error is not None:
            raise self.episode_error
        return NormalizedStreamResponse(
            title="Naruto Episode 1",
            default_url="https://play.example/1",
            qualities=[
                QualityOption(
                    title="720p",
                    servers=[StreamServer(title="Oploverz", server_id="", href="https://play.example/1")],
                )
            ],
            providers=["oploverz"],
        )


class DummyMangaService(MangaService):
    def __init__(self) -> None:
        pass

    async def trending(self):  # type: ignore[override]
        return [ContentItem(title="One Piece", slug="one-piece", cover="c.jpg")]


class DummyAccountService(AccountService):
    def __init__(self) -> None:
        pass

    async def register(self, credentials):  # type: ignore[override]
        if credentials.username == "taken":
            raise UsernameTaken("Username taken is already registered")
        return {"id": 1, "username": credentials.username, "created_at": None}


def _build_app() -> tuple[FastAPI, DummyAnimeService]:
    app = FastAPI()
    register_routes(app)
    anime = DummyAnimeService()
    app.state.anime_service = anime
    app.state.manga_service = DummyMangaService()
    app.state.account_service = DummyAccountService()
    return app, anime


def test_search_requires_query() -> None:
    app, anime = _build_app()

    with TestClient(app) as client:
        missing = client.get("/api/anime/search")
        blank = client.get("/api/manga/search", params={"q": "   "})
        found = client.get("/api/anime/search", params={"q": " naruto "})

    assert missing.status_code == 400
    assert "error" in missing.json()
    assert blank.status_code == 400
    assert found.status_code == 200
    assert found.json()["data"][0]["slug"] == "naruto"
    assert anime.searched == ["naruto"]


def test_episode_payload_is_wrapped_in_data() -> None:
    app, _ = _build_app()

    with TestClient(app) as client:
        response = client.get("/api/anime/episode/naruto-episode-1")

    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload["defaultStreamingUrl"] == "https://play.example/1"
    assert payload["server"]["qualities"][0]["title"] == "720p"
    assert payload["providers"] == ["oploverz"]


def test_unresolvable_episode_returns_error_body() -> None:
    app, anime = _build_app()
    anime.episode_error = NoStreamAvailable("lost-episode-1")

    with TestClient(app) as client:
        response = client.get("/api/anime/episode/lost-episode-1")

    assert response.status_code == 500
    assert response.json() == {"error": "No stream available for lost-episode-1"}


def test_provider_failures_map_to_error_body() -> None:
    app, _ = _build_app()

    with TestClient(app) as client:
        response = client.get("/api/anime/ongoing")

    assert response.status_code == 500
    assert "502" in response.json()["error"]


def test_manga_routes_before_detail_catch_all() -> None:
    app, _ = _build_app()

    with TestClient(app) as client:
        response = client.get("/api/manga/trending")

    assert response.status_code == 200
    assert response.json()["data"][0]["cover"] == "c.jpg"


def test_register_validates_and_maps_conflicts() -> None:
    app, _ = _build_app()

    with TestClient(app) as client:
        short = client.post("/api/auth/register", json={"username": "ab", "password": "secret-pass"})
        created = client.post("/api/auth/register", json={"username": "ayomi", "password": "secret-pass"})
        taken = client.post("/api/auth/register", json={"username": "taken", "password": "secret-pass"})

    assert short.status_code == 400
    assert short.json()["error"].startswith("username")
    assert created.status_code == 201
    assert created.json()["data"]["username"] == "ayomi"
    assert taken.status_code == 409


def test_image_proxy_streams_with_referer() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})

    app, _ = _build_app()
    app.state.proxy_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    with TestClient(app) as client:
        response = client.get("/api/proxy/image", params={"url": "https://img.example/a.png"})
        invalid = client.get("/api/proxy/image", params={"url": "ftp://img.example/a.png"})

    assert response.status_code == 200
    assert response.content == b"\x89PNG"
    assert response.headers["content-type"] == "image/png"
    assert seen[0].headers["referer"] == "https://komikindo.ch/"
    assert invalid.status_code == 400
