"""
Shared pytest fixtures.

Uses a file-backed SQLite database so no Postgres is required for tests.
Every test that touches the database creates its own clan through
`make_clan`, so rows never bleed between tests.
"""
import itertools
import os
import struct

SQLITE_URL = "sqlite:///./test_clanhub.db"
os.environ.setdefault("DATABASE_URL", SQLITE_URL)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from clanhub.db.base import Base, get_db, get_session_factory
from clanhub.main import app
from clanhub.models.clan import Character, Clan

engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

_clan_seq = itertools.count(1)
_game_id_seq = itertools.count(10_000)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def override_get_session_factory():
    return TestingSessionLocal


def pack_record(event_type, record_id, timestamp, who, p0=0, p1=0, p2=0) -> bytes:
    """One 28-byte faction history record."""
    return struct.pack("<7i", event_type, record_id, timestamp, who, p0, p1, p2)


def pack_header(from_id, to_id) -> bytes:
    return struct.pack("<2i", from_id, to_id)


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(db):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = override_get_session_factory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def make_clan(db):
    """
    make_clan(members=[("Alice", 101), ...]) -> (clan, [characters])

    Each member tuple is (name, game_char_id[, user_id]).
    Game ids passed as None get a fresh unique id.
    """
    def _make(members=(), name=None):
        n = next(_clan_seq)
        clan = Clan(name=name or f"clan-{n}-{os.getpid()}")
        db.add(clan)
        db.flush()
        characters = []
        for member in members:
            char_name, game_id, *rest = member
            character = Character(
                name=char_name,
                char_class="Archer",
                game_char_id=game_id if game_id is not None else next(_game_id_seq),
                clan_id=clan.id,
                user_id=rest[0] if rest else None,
            )
            db.add(character)
            characters.append(character)
        db.commit()
        return clan, characters

    return _make
