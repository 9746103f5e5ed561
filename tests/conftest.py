import importlib
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from bookshelf_rec.models import Book, Category, DownloadEvent, UserProfile, parse_timestamp_naive  # noqa: E402
from bookshelf_rec.sources import InMemoryCandidateSource  # noqa: E402

NOW = datetime(2026, 10, 19, 12, 0, 0)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def catalog_payload():
    """
    Small catalog shared by the in-memory and SQLite tests.

    User 10 favors Dune and downloaded SPQR two days ago; user 11 has no
    history; user 12 downloaded Dune three times yesterday.
    """
    old = "2024-01-01T00:00:00"
    return {
        "categories": [
            {"id": 1, "name": "Science Fiction"},
            {"id": 2, "name": "History"},
        ],
        "books": [
            {"id": 1, "title": "Dune", "author": "Frank Herbert", "category_id": 1,
             "tags": ["sf", "classic"], "download_count": 900, "favorite_count": 80, "created_at": old},
            {"id": 2, "title": "Foundation", "author": "Isaac Asimov", "category_id": 1,
             "tags": ["sf", "classic"], "download_count": 700, "favorite_count": 60, "created_at": old},
            {"id": 3, "title": "Hyperion", "author": "Dan Simmons", "category_id": 1,
             "tags": ["sf"], "download_count": 300, "favorite_count": 20, "created_at": old},
            {"id": 4, "title": "SPQR", "author": "Mary Beard", "category_id": 2,
             "tags": ["history"], "download_count": 400, "favorite_count": 30, "created_at": old},
            {"id": 5, "title": "Children of Dune", "author": "frank herbert", "category_id": 1,
             "tags": ["sf"], "download_count": 100, "favorite_count": 10, "created_at": old},
            {"id": 6, "title": "The Guns of August", "author": "Barbara Tuchman", "category_id": 2,
             "tags": ["history", "classic"], "download_count": 50, "favorite_count": 5, "created_at": old},
            {"id": 7, "title": "Withdrawn", "author": "Nobody", "category_id": 1,
             "tags": ["sf"], "download_count": 5000, "favorite_count": 500, "created_at": old,
             "available": False},
        ],
        "users": [
            {"id": 10, "username": "reader", "favorites": [1]},
            {"id": 11, "username": "newcomer", "favorites": []},
            {"id": 12, "username": "binger", "favorites": []},
        ],
        "downloads": [
            {"user_id": 10, "book_id": 4, "downloaded_at": "2026-10-17T12:00:00"},
            {"user_id": 12, "book_id": 1, "downloaded_at": "2026-10-18T09:00:00"},
            {"user_id": 12, "book_id": 1, "downloaded_at": "2026-10-18T10:00:00"},
            {"user_id": 12, "book_id": 1, "downloaded_at": "2026-10-18T11:00:00"},
            {"user_id": 12, "book_id": 3, "downloaded_at": "2026-10-09T12:00:00"},  # outside the 7-day window
        ],
    }


def source_from_payload(payload: dict) -> InMemoryCandidateSource:
    categories = {c["id"]: Category(c["id"], c["name"]) for c in payload["categories"]}
    books = [Book.from_dict(b, categories) for b in payload["books"]]
    events = [
        DownloadEvent(d["user_id"], d["book_id"], parse_timestamp_naive(d["downloaded_at"]))
        for d in payload["downloads"]
    ]
    profiles = [
        UserProfile(
            u["id"],
            frozenset(u["favorites"]),
            tuple(e for e in events if e.user_id == u["id"]),
        )
        for u in payload["users"]
    ]
    return InMemoryCandidateSource(books, profiles, events)


@pytest.fixture
def memory_source(catalog_payload):
    return source_from_payload(catalog_payload)


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("BOOKSHELF_DB", str(db_path))
    import bookshelf_rec.config as config

    importlib.reload(config)
    return config


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload config/database modules with a temp DB and cleanly close the pool after use.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("BOOKSHELF_DB", str(db_path))

    import bookshelf_rec.config as config
    import bookshelf_rec.database as database

    importlib.reload(config)
    importlib.reload(database)

    yield database
    database.close_pool()
