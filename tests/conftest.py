from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.base import Base
from db.models import UserAccount
from db.session import enable_sqlite_savepoints
from portfolios.context import Actor
from portfolios.errors import UpstreamError
from uploads.storage import WriteGrant


class FakeObjectStore:
    base_url = "https://media.example.test/portfolio-media"

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.unavailable = False

    def write_grant(self, key: str, content_type: str, expires_in: int) -> WriteGrant:
        return WriteGrant(
            url=f"{self.base_url}/{key}?sig=test&ttl={expires_in}",
            method="PUT",
            headers={"x-ms-blob-type": "BlockBlob", "Content-Type": content_type},
        )

    def put(self, key: str, data: bytes) -> None:
        self.objects[key] = data

    def object_exists(self, key: str) -> bool:
        if self.unavailable:
            raise UpstreamError("object_store_unavailable")
        return key in self.objects

    def object_url(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def delete_object(self, key: str) -> None:
        self.objects.pop(key, None)
        self.deleted.append(key)

    def owns_url(self, url: str) -> bool:
        return url.startswith(f"{self.base_url}/")


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture()
def session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store() -> FakeObjectStore:
    return FakeObjectStore()


def make_user(session, username: str, role: str = "student", display_name: str | None = None) -> Actor:
    user = UserAccount(username=username, role=role, display_name=display_name)
    session.add(user)
    session.flush()
    return Actor(user_id=user.id, role=role)


@pytest.fixture()
def author(session) -> Actor:
    return make_user(session, "ania", display_name="Ania")


@pytest.fixture()
def admin(session) -> Actor:
    return make_user(session, "moderator", role="admin")


@pytest.fixture()
def visitor(session) -> Actor:
    return make_user(session, "bartek", display_name="Bartek")


@pytest.fixture()
def user_factory(session):
    def _make(username: str, role: str = "student", display_name: str | None = None) -> Actor:
        return make_user(session, username, role=role, display_name=display_name)

    return _make
