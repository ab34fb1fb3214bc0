"""Entry point for the FastAPI-powered TanyaAyomi backend."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any
from urllib.parse import unquote, urlparse

import httpx
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from starlette.background import BackgroundTask

from . import __version__
from .cache import TTLCache
from .config import settings
from .database import Database
from .errors import NoStreamAvailable, ProviderError
from .models import BookmarkCreate, Credentials
from .services.accounts import (
    AccountError,
    AccountService,
    BookmarkNotFound,
    InvalidCredentials,
    UserNotFound,
    UsernameTaken,
)
from .services.catalog import AnimeService, MangaService
from .services.enrichment import EnrichmentService, SqlEnrichmentStore
from .services.gemini import GeminiClient
from .services.http import BROWSER_USER_AGENT, TokenBucket, UpstreamClient, build_http_client
from .services.mirrors import AnimeIndoClient, OploverzClient, StreamMirror
from .services.primary import SankavollereiClient
from .services.streams import StreamResolver

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

ANIME_INDO_TIMEOUT = 30.0
IMAGE_PROXY_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9,id;q=0.8",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Referer": "https://komikindo.ch/",
    "Origin": "https://komikindo.ch",
    "Sec-Fetch-Dest": "image",
    "Sec-Fetch-Mode": "no-cors",
    "Sec-Fetch-Site": "cross-site",
}


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    provider_http = await exit_stack.enter_async_context(
        build_http_client(
            timeout=settings.provider_timeout_seconds, proxy=settings.http_proxy
        )
    )
    mirror_http = await exit_stack.enter_async_context(
        build_http_client(
            timeout=settings.mirror_timeout_seconds, proxy=settings.http_proxy
        )
    )
    gemini_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(settings.ai_timeout_seconds, connect=10.0))
    )
    proxy_http = await exit_stack.enter_async_context(
        build_http_client(timeout=30.0, proxy=settings.http_proxy)
    )

    cache = TTLCache(sweep_interval=settings.cache_sweep_seconds)
    database = Database(settings.database_url)
    await database.create_all()

    base_url = str(settings.provider_base_url)
    bucket = TokenBucket(settings.provider_rate_capacity, settings.provider_refill_seconds)
    primary = SankavollereiClient(
        UpstreamClient(SankavollereiClient.name, provider_http, base_url, bucket=bucket),
        cache,
    )
    anime_indo = AnimeIndoClient(
        UpstreamClient(
            AnimeIndoClient.name, mirror_http, base_url, timeout=ANIME_INDO_TIMEOUT
        ),
        cache,
    )
    oploverz = OploverzClient(UpstreamClient(OploverzClient.name, mirror_http, base_url))
    available: dict[str, StreamMirror] = {
        anime_indo.name: anime_indo,
        oploverz.name: oploverz,
    }
    mirrors = [available[name] for name in settings.mirror_providers]

    enrichment = EnrichmentService(
        GeminiClient(settings, gemini_http),
        cache,
        store=SqlEnrichmentStore(database),
        cache_ttl=settings.enrichment_cache_seconds,
        concurrency=settings.enrichment_concurrency,
    )
    resolver = StreamResolver(primary, mirrors, cache)
    blacklist = settings.title_blacklist

    fastapi_app.state.database = database
    fastapi_app.state.cache = cache
    fastapi_app.state.proxy_client = proxy_http
    fastapi_app.state.anime_service = AnimeService(
        primary, enrichment, resolver, cache, anime_indo=anime_indo, blacklist=blacklist
    )
    fastapi_app.state.manga_service = MangaService(primary, enrichment, blacklist=blacklist)
    fastapi_app.state.account_service = AccountService(database)
    await cache.start()
    logger.info(
        "TanyaAyomi ready with mirrors %s", ", ".join(settings.mirror_providers) or "none"
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await cache.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Anime and manga aggregation API",
        version=__version__,
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_anime_service(app: FastAPI) -> AnimeService:
    service = getattr(app.state, "anime_service", None)
    if not isinstance(service, AnimeService):
        raise RuntimeError("Anime service not initialised")
    return service


def get_manga_service(app: FastAPI) -> MangaService:
    service = getattr(app.state, "manga_service", None)
    if not isinstance(service, MangaService):
        raise RuntimeError("Manga service not initialised")
    return service


def get_account_service(app: FastAPI) -> AccountService:
    service = getattr(app.state, "account_service", None)
    if not isinstance(service, AccountService):
        raise RuntimeError("Account service not initialised")
    return service


def _data(payload: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse({"data": payload}, status_code=status_code)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _dump(items: list[Any]) -> list[dict[str, Any]]:
    return [item.to_payload() for item in items]


def _first_validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


_ACCOUNT_STATUS: dict[type[AccountError], int] = {
    UsernameTaken: 409,
    InvalidCredentials: 401,
    UserNotFound: 404,
    BookmarkNotFound: 404,
}


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(NoStreamAvailable)
    async def _no_stream(_: Request, exc: NoStreamAvailable) -> JSONResponse:
        return _error(500, str(exc))

    @fastapi_app.exception_handler(ProviderError)
    async def _provider_failure(_: Request, exc: ProviderError) -> JSONResponse:
        logger.warning("Upstream failure: %s", exc)
        return _error(500, str(exc))

    @fastapi_app.exception_handler(AccountError)
    async def _account_failure(_: Request, exc: AccountError) -> JSONResponse:
        return _error(_ACCOUNT_STATUS.get(type(exc), 400), str(exc))

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    # Anime ---------------------------------------------------------------

    @fastapi_app.get("/api/anime/home")
    async def anime_home() -> JSONResponse:
        sections = await get_anime_service(fastapi_app).home()
        return _data({name: _dump(items) for name, items in sections.items()})

    @fastapi_app.get("/api/anime/ongoing")
    async def anime_ongoing(page: int = Query(1, ge=1)) -> JSONResponse:
        return _data(_dump(await get_anime_service(fastapi_app).ongoing(page)))

    @fastapi_app.get("/api/anime/complete")
    async def anime_complete(page: int = Query(1, ge=1)) -> JSONResponse:
        return _data(_dump(await get_anime_service(fastapi_app).complete(page)))

    @fastapi_app.get("/api/anime/search")
    async def anime_search(q: str = "") -> JSONResponse:
        if not q.strip():
            return _error(400, "Query parameter 'q' is required")
        return _data(_dump(await get_anime_service(fastapi_app).search(q.strip())))

    @fastapi_app.get("/api/anime/genre/{slug}")
    @fastapi_app.get("/api/anime/genres/{slug}")
    async def anime_genre(slug: str) -> JSONResponse:
        return _data(_dump(await get_anime_service(fastapi_app).genre(slug)))

    @fastapi_app.get("/api/anime/latest")
    async def anime_latest() -> JSONResponse:
        return _data(_dump(await get_anime_service(fastapi_app).latest()))

    @fastapi_app.get("/api/anime/server/{server_id}")
    async def anime_server(server_id: str) -> JSONResponse:
        url = await get_anime_service(fastapi_app).server_url(server_id)
        return _data({"url": url})

    @fastapi_app.get("/api/anime/episode/{slug}")
    async def anime_episode(slug: str, title: str | None = None) -> JSONResponse:
        if not slug.strip():
            return _error(400, "Episode slug is required")
        stream = await get_anime_service(fastapi_app).episode(slug.strip(), title)
        return _data(stream.to_payload())

    @fastapi_app.get("/api/anime/{slug}")
    async def anime_detail(slug: str) -> JSONResponse:
        detail = await get_anime_service(fastapi_app).detail(slug)
        return _data(detail.to_payload())

    # AnimeIndo browse ----------------------------------------------------

    @fastapi_app.get("/api/anime-indo/latest")
    async def anime_indo_latest(page: int = Query(1, ge=1)) -> JSONResponse:
        return _data(_dump(await get_anime_service(fastapi_app).indo_latest(page)))

    @fastapi_app.get("/api/anime-indo/popular")
    async def anime_indo_popular() -> JSONResponse:
        return _data(_dump(await get_anime_service(fastapi_app).indo_popular()))

    @fastapi_app.get("/api/anime-indo/search")
    async def anime_indo_search(q: str = "") -> JSONResponse:
        if not q.strip():
            return _error(400, "Query parameter 'q' is required")
        return _data(_dump(await get_anime_service(fastapi_app).indo_search(q.strip())))

    @fastapi_app.get("/api/anime-indo/{slug}")
    async def anime_indo_detail(slug: str) -> JSONResponse:
        detail = await get_anime_service(fastapi_app).indo_detail(slug)
        return _data(detail.to_payload())

    # Manga ---------------------------------------------------------------

    @fastapi_app.get("/api/manga/home")
    async def manga_home() -> JSONResponse:
        return _data(_dump(await get_manga_service(fastapi_app).home()))

    @fastapi_app.get("/api/manga/trending")
    async def manga_trending() -> JSONResponse:
        return _data(_dump(await get_manga_service(fastapi_app).trending()))

    @fastapi_app.get("/api/manga/ongoing")
    async def manga_ongoing(page: int = Query(1, ge=1)) -> JSONResponse:
        return _data(_dump(await get_manga_service(fastapi_app).ongoing(page)))

    @fastapi_app.get("/api/manga/popular")
    async def manga_popular(page: int = Query(1, ge=1)) -> JSONResponse:
        return _data(_dump(await get_manga_service(fastapi_app).popular(page)))

    @fastapi_app.get("/api/manga/search")
    async def manga_search(q: str = "") -> JSONResponse:
        if not q.strip():
            return _error(400, "Query parameter 'q' is required")
        return _data(_dump(await get_manga_service(fastapi_app).search(q.strip())))

    @fastapi_app.get("/api/manga/genre/{slug}")
    @fastapi_app.get("/api/manga/genres/{slug}")
    async def manga_genre(slug: str) -> JSONResponse:
        return _data(_dump(await get_manga_service(fastapi_app).genre(slug)))

    @fastapi_app.get("/api/manga/chapter/{chapter_id}")
    async def manga_chapter(chapter_id: str) -> JSONResponse:
        chapter = await get_manga_service(fastapi_app).chapter(chapter_id)
        return _data(chapter.to_payload())

    @fastapi_app.get("/api/manga/{slug}")
    async def manga_detail(slug: str) -> JSONResponse:
        detail = await get_manga_service(fastapi_app).detail(slug)
        return _data(detail.to_payload())

    # Accounts ------------------------------------------------------------

    async def _read_model(request: Request, model):
        try:
            payload = await request.json()
        except ValueError:
            return None, _error(400, "Request body must be JSON")
        if not isinstance(payload, dict):
            return None, _error(400, "Request body must be a JSON object")
        try:
            return model.model_validate(payload), None
        except ValidationError as exc:
            return None, _error(400, _first_validation_message(exc))

    @fastapi_app.post("/api/auth/register")
    async def register(request: Request) -> JSONResponse:
        credentials, failure = await _read_model(request, Credentials)
        if failure is not None:
            return failure
        user = await get_account_service(fastapi_app).register(credentials)
        return _data(user, status_code=201)

    @fastapi_app.post("/api/auth/login")
    async def login(request: Request) -> JSONResponse:
        credentials, failure = await _read_model(request, Credentials)
        if failure is not None:
            return failure
        return _data(await get_account_service(fastapi_app).login(credentials))

    @fastapi_app.post("/api/users/{user_id}/bookmarks")
    async def add_bookmark(user_id: int, request: Request) -> JSONResponse:
        bookmark, failure = await _read_model(request, BookmarkCreate)
        if failure is not None:
            return failure
        saved = await get_account_service(fastapi_app).add_bookmark(user_id, bookmark)
        return _data(saved, status_code=201)

    @fastapi_app.get("/api/users/{user_id}/bookmarks")
    async def list_bookmarks(user_id: int) -> JSONResponse:
        return _data(await get_account_service(fastapi_app).list_bookmarks(user_id))

    @fastapi_app.delete("/api/users/{user_id}/bookmarks/{bookmark_id}")
    async def delete_bookmark(user_id: int, bookmark_id: int) -> JSONResponse:
        await get_account_service(fastapi_app).delete_bookmark(user_id, bookmark_id)
        return _data({"deleted": bookmark_id})

    # Image proxy ---------------------------------------------------------

    @fastapi_app.get("/api/proxy/image")
    async def proxy_image(url: str = "") -> Any:
        target = unquote(url.strip())
        parsed = urlparse(target)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            return _error(400, "Query parameter 'url' must be an absolute http(s) URL")

        client = getattr(fastapi_app.state, "proxy_client", None)
        if not isinstance(client, httpx.AsyncClient):
            raise RuntimeError("Image proxy client not initialised")

        request = client.build_request("GET", target, headers=IMAGE_PROXY_HEADERS)
        try:
            upstream = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.warning("Image proxy failed for %s: %s", target, exc)
            return _error(502, f"Failed to fetch image: {exc}")

        if upstream.status_code != 200:
            await upstream.aclose()
            return _error(upstream.status_code, "Upstream image request failed")

        headers = {"Cache-Control": "public, max-age=86400"}
        return StreamingResponse(
            upstream.aiter_bytes(),
            media_type=upstream.headers.get("content-type", "image/jpeg"),
            headers=headers,
            background=BackgroundTask(upstream.aclose),
        )


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
