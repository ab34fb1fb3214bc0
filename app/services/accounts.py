"""User accounts and bookmarks."""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from ..database import Database
from ..db_models import Bookmark, User
from ..models import BookmarkCreate, Credentials

logger = logging.getLogger(__name__)

HASH_ALGORITHM = "pbkdf2_sha256"
HASH_ITERATIONS = 390_000


class AccountError(Exception):
    """Base class for account and bookmark failures."""


class UsernameTaken(AccountError):
    pass


class InvalidCredentials(AccountError):
    pass


class UserNotFound(AccountError):
    pass


class BookmarkNotFound(AccountError):
    pass


def hash_password(password: str, *, salt: bytes | None = None, iterations: int = HASH_ITERATIONS) -> str:
    salt = salt or secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{HASH_ALGORITHM}${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt_hex, digest_hex = encoded.split("$")
        salt = bytes.fromhex(salt_hex)
        rounds = int(iterations)
    except ValueError:
        return False
    if algorithm != HASH_ALGORITHM:
        return False
    candidate = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(candidate.hex(), digest_hex)


def _user_payload(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


class AccountService:
    """Registration, login and per-user bookmark storage."""

    def __init__(self, database: Database):
        self._database = database

    async def register(self, credentials: Credentials) -> dict[str, Any]:
        username = credentials.username.strip().lower()
        user = User(username=username, password_hash=hash_password(credentials.password))
        async with self._database.session() as session:
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise UsernameTaken(f"Username {username} is already registered") from exc
            await session.refresh(user)
        logger.info("Registered user %s", username)
        return _user_payload(user)

    async def login(self, credentials: Credentials) -> dict[str, Any]:
        username = credentials.username.strip().lower()
        async with self._database.session() as session:
            user = (
                await session.execute(select(User).where(User.username == username))
            ).scalars().first()
        if user is None or not verify_password(credentials.password, user.password_hash):
            raise InvalidCredentials("Invalid username or password")
        return _user_payload(user)

    async def _require_user(self, session, user_id: int) -> User:
        user = await session.get(User, user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        return user

    async def add_bookmark(self, user_id: int, bookmark: BookmarkCreate) -> dict[str, Any]:
        """Save a bookmark; saving the same item twice keeps the first row."""

        statement = (
            self._database.insert(Bookmark.__table__)
            .values(
                user_id=user_id,
                type=bookmark.type,
                slug=bookmark.slug,
                title=bookmark.title,
                cover_image=bookmark.cover_image,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "type", "slug"])
        )
        async with self._database.session() as session:
            await self._require_user(session, user_id)
            await session.execute(statement)
            await session.commit()
            saved = (
                await session.execute(
                    select(Bookmark).where(
                        Bookmark.user_id == user_id,
                        Bookmark.type == bookmark.type,
                        Bookmark.slug == bookmark.slug,
                    )
                )
            ).scalars().one()
            return saved.to_payload()

    async def list_bookmarks(self, user_id: int) -> list[dict[str, Any]]:
        async with self._database.session() as session:
            await self._require_user(session, user_id)
            rows = (
                await session.execute(
                    select(Bookmark)
                    .where(Bookmark.user_id == user_id)
                    .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
                )
            ).scalars().all()
        return [row.to_payload() for row in rows]

    async def delete_bookmark(self, user_id: int, bookmark_id: int) -> None:
        async with self._database.session() as session:
            result = await session.execute(
                delete(Bookmark).where(
                    Bookmark.id == bookmark_id, Bookmark.user_id == user_id
                )
            )
            await session.commit()
        if not result.rowcount:
            raise BookmarkNotFound(f"Bookmark {bookmark_id} not found")
