"""Account registration, login and bookmark persistence."""

from __future__ import annotations

import asyncio

import pytest

from app.database import Database
from app.models import BookmarkCreate, Credentials
from app.services.accounts import (
    AccountService,
    BookmarkNotFound,
    InvalidCredentials,
    UsernameTaken,
    UserNotFound,
    hash_password,
    verify_password,
)


def _run_with_service(tmp_path, scenario) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'accounts.db'}")
        await database.create_all()
        try:
            await scenario(AccountService(database))
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_password_hash_round_trip() -> None:
    encoded = hash_password("rahasia123", salt=b"0" * 16, iterations=1000)

    assert encoded.startswith("pbkdf2_sha256$1000$")
    assert verify_password("rahasia123", encoded)
    assert not verify_password("salah", encoded)
    assert not verify_password("rahasia123", "not-a-hash")


def test_register_and_login(tmp_path) -> None:
    async def scenario(service: AccountService) -> None:
        user = await service.register(Credentials(username="Ayomi", password="secret-pass"))
        assert user["username"] == "ayomi"

        logged_in = await service.login(Credentials(username="ayomi", password="secret-pass"))
        assert logged_in["id"] == user["id"]

        with pytest.raises(UsernameTaken):
            await service.register(Credentials(username="AYOMI", password="another-pass"))
        with pytest.raises(InvalidCredentials):
            await service.login(Credentials(username="ayomi", password="wrong-pass"))
        with pytest.raises(InvalidCredentials):
            await service.login(Credentials(username="nobody", password="secret-pass"))

    _run_with_service(tmp_path, scenario)


def test_bookmarks_are_idempotent_and_deletable(tmp_path) -> None:
    async def scenario(service: AccountService) -> None:
        user = await service.register(Credentials(username="reader", password="secret-pass"))
        bookmark = BookmarkCreate(type="manga", slug="one-piece", title="One Piece", coverImage="c.jpg")

        first = await service.add_bookmark(user["id"], bookmark)
        second = await service.add_bookmark(user["id"], bookmark)
        await service.add_bookmark(user["id"], BookmarkCreate(type="anime", slug="one-piece"))

        assert first["id"] == second["id"]
        assert first["cover_image"] == "c.jpg"

        saved = await service.list_bookmarks(user["id"])
        assert len(saved) == 2
        assert {entry["type"] for entry in saved} == {"anime", "manga"}

        await service.delete_bookmark(user["id"], first["id"])
        assert [entry["type"] for entry in await service.list_bookmarks(user["id"])] == ["anime"]

        with pytest.raises(BookmarkNotFound):
            await service.delete_bookmark(user["id"], first["id"])

    _run_with_service(tmp_path, scenario)


def test_bookmarks_require_existing_user(tmp_path) -> None:
    async def scenario(service: AccountService) -> None:
        with pytest.raises(UserNotFound):
            await service.add_bookmark(999, BookmarkCreate(type="anime", slug="bleach"))
        with pytest.raises(UserNotFound):
            await service.list_bookmarks(999)

    _run_with_service(tmp_path, scenario)
