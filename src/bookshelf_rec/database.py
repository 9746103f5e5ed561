import sqlite3
import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from tqdm import tqdm

from .config import DB_PATH, IMPORT_CHUNK_SIZE
from .models import Book, Category, DownloadEvent, Tag, UserProfile, parse_timestamp_naive
from .sources import CollaboratorError

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    One SQLite connection per thread.

    Scoring threads come and go with each request, so connections owned by
    threads that have exited are closed the next time a thread connects.
    The pool also tracks how deeply ``get_db`` is nested on each thread.
    """

    def __init__(self, db_path):
        self._db_path = db_path
        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._depth: dict[int, int] = {}

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def _close(self, thread_id: int) -> None:
        # Caller holds the lock
        conn = self._connections.pop(thread_id, None)
        self._depth.pop(thread_id, None)
        if conn is None:
            return
        try:
            conn.close()
        except sqlite3.Error as e:
            logger.warning(f"Error closing connection for thread {thread_id}: {e}")

    def connection(self) -> sqlite3.Connection:
        thread_id = threading.get_ident()
        with self._lock:
            conn = self._connections.get(thread_id)
            if conn is None:
                alive = {t.ident for t in threading.enumerate()}
                finished = [tid for tid in self._connections if tid not in alive]
                for tid in finished:
                    self._close(tid)
                if finished:
                    logger.debug(f"Closed {len(finished)} connections from finished threads")
                conn = self._connect()
                self._connections[thread_id] = conn
            return conn

    def open_connections(self) -> int:
        with self._lock:
            return len(self._connections)

    def enter(self) -> bool:
        """Record one more level of get_db nesting; True for the outermost level."""
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._depth.get(thread_id, 0)
            self._depth[thread_id] = depth + 1
        return depth == 0

    def leave(self) -> None:
        thread_id = threading.get_ident()
        with self._lock:
            self._depth[thread_id] = max(0, self._depth.get(thread_id, 1) - 1)

    def close_all(self) -> None:
        with self._lock:
            for thread_id in list(self._connections):
                self._close(thread_id)


_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    global _pool
    with _pool_lock:
        if _pool is None:
            DB_PATH.parent.mkdir(exist_ok=True, parents=True)
            _pool = ConnectionPool(DB_PATH)
        return _pool


@contextmanager
def get_db(read_only: bool = False):
    """
    Yield this thread's connection.

    Nested calls share one transaction; only the outermost context commits
    (unless read_only) or rolls back.
    """
    pool = _get_pool()
    conn = pool.connection()
    outermost = pool.enter()
    try:
        yield conn
        if outermost and not read_only:
            conn.commit()
    except Exception:
        if outermost:
            conn.rollback()
        raise
    finally:
        pool.leave()


def close_pool():
    """Close every pooled connection. Registered with atexit by the CLI."""
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.close_all()
            _pool = None


def init_db() -> None:
    DB_PATH.parent.mkdir(exist_ok=True, parents=True)
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tags (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE
            );

            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT,
                category_id INTEGER REFERENCES categories(id),
                download_count INTEGER NOT NULL DEFAULT 0,
                favorite_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT,    -- ISO timestamp, naive
                available INTEGER NOT NULL DEFAULT 1
            );

            CREATE TABLE IF NOT EXISTS book_tags (
                book_id INTEGER REFERENCES books(id),
                tag_id INTEGER REFERENCES tags(id),
                PRIMARY KEY (book_id, tag_id)
            );

            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY,
                username TEXT
            );

            CREATE TABLE IF NOT EXISTS favorites (
                user_id INTEGER REFERENCES users(id),
                book_id INTEGER REFERENCES books(id),
                PRIMARY KEY (user_id, book_id)
            );

            -- Append-only download events
            CREATE TABLE IF NOT EXISTS downloads (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER REFERENCES users(id),
                book_id INTEGER REFERENCES books(id),
                downloaded_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_downloads_user ON downloads(user_id, downloaded_at);
            CREATE INDEX IF NOT EXISTS idx_downloads_book ON downloads(book_id, downloaded_at);
            CREATE INDEX IF NOT EXISTS idx_books_category ON books(category_id);
        """)


def _timestamp(value: str | datetime | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = parse_timestamp_naive(value)
    return value.replace(tzinfo=None).isoformat()


def _tag_id(conn, name: str) -> int:
    conn.execute("INSERT OR IGNORE INTO tags (name) VALUES (?)", (name,))
    return conn.execute("SELECT id FROM tags WHERE name = ?", (name,)).fetchone()[0]


def _chunks(items: list, size: int = IMPORT_CHUNK_SIZE):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def import_catalog(payload: dict[str, Any], show_progress: bool = False) -> dict[str, int]:
    """
    Upsert a catalog document into the database.

    Expected shape::

        {"categories": [{"id", "name"}],
         "tags": [{"id"?, "name"}],
         "books": [{"id", "title", "author", "category_id", "tags": [names],
                    "download_count", "favorite_count", "created_at", "available"}],
         "users": [{"id", "username"?, "favorites": [book ids]}],
         "downloads": [{"user_id", "book_id", "downloaded_at"}]}

    Counters on books are taken as given; favorites and downloads are
    inserted without touching them.

    Returns:
        Number of rows written per section
    """
    counts: dict[str, int] = defaultdict(int)
    books = payload.get("books", [])
    downloads = payload.get("downloads", [])

    with get_db() as conn:
        for cat in payload.get("categories", []):
            conn.execute(
                "INSERT OR REPLACE INTO categories (id, name) VALUES (?, ?)",
                (cat["id"], cat.get("name", "")),
            )
            counts["categories"] += 1

        for tag in payload.get("tags", []):
            if tag.get("id") is not None:
                conn.execute("INSERT OR REPLACE INTO tags (id, name) VALUES (?, ?)", (tag["id"], tag["name"]))
            else:
                _tag_id(conn, tag["name"])
            counts["tags"] += 1

        for book in tqdm(books, desc="Books", unit="book", disable=not show_progress):
            conn.execute(
                """
                INSERT OR REPLACE INTO books
                    (id, title, author, category_id, download_count, favorite_count, created_at, available)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    book["id"],
                    book.get("title", str(book["id"])),
                    book.get("author") or "",
                    book.get("category_id"),
                    max(0, int(book.get("download_count") or 0)),
                    max(0, int(book.get("favorite_count") or 0)),
                    _timestamp(book.get("created_at")),
                    1 if book.get("available", True) else 0,
                ),
            )
            conn.execute("DELETE FROM book_tags WHERE book_id = ?", (book["id"],))
            conn.executemany(
                "INSERT OR IGNORE INTO book_tags (book_id, tag_id) VALUES (?, ?)",
                [(book["id"], _tag_id(conn, name)) for name in book.get("tags", [])],
            )
            counts["books"] += 1

        for user in payload.get("users", []):
            conn.execute(
                "INSERT OR REPLACE INTO users (id, username) VALUES (?, ?)",
                (user["id"], user.get("username")),
            )
            conn.executemany(
                "INSERT OR IGNORE INTO favorites (user_id, book_id) VALUES (?, ?)",
                [(user["id"], book_id) for book_id in user.get("favorites", [])],
            )
            counts["users"] += 1

        with tqdm(total=len(downloads), desc="Downloads", unit="event", disable=not show_progress) as bar:
            for chunk in _chunks(downloads):
                conn.executemany(
                    "INSERT INTO downloads (user_id, book_id, downloaded_at) VALUES (?, ?, ?)",
                    [(d["user_id"], d["book_id"], _timestamp(d["downloaded_at"])) for d in chunk],
                )
                counts["downloads"] += len(chunk)
                bar.update(len(chunk))

    logger.info(
        "Imported " + ", ".join(f"{n} {section}" for section, n in counts.items())
    )
    return dict(counts)


def record_download(user_id: int, book_id: int, at: datetime | None = None) -> None:
    """Append a download event and bump the book's counter."""
    with get_db() as conn:
        conn.execute(
            "INSERT INTO downloads (user_id, book_id, downloaded_at) VALUES (?, ?, ?)",
            (user_id, book_id, _timestamp(at or datetime.now())),
        )
        conn.execute("UPDATE books SET download_count = download_count + 1 WHERE id = ?", (book_id,))


def add_favorite(user_id: int, book_id: int) -> bool:
    """Mark a book as favorite. Returns False if it already was."""
    with get_db() as conn:
        cursor = conn.execute(
            "INSERT OR IGNORE INTO favorites (user_id, book_id) VALUES (?, ?)", (user_id, book_id)
        )
        if cursor.rowcount == 0:
            return False
        conn.execute("UPDATE books SET favorite_count = favorite_count + 1 WHERE id = ?", (book_id,))
        return True


def remove_favorite(user_id: int, book_id: int) -> bool:
    """Unmark a favorite. The book's counter never drops below zero."""
    with get_db() as conn:
        cursor = conn.execute(
            "DELETE FROM favorites WHERE user_id = ? AND book_id = ?", (user_id, book_id)
        )
        if cursor.rowcount == 0:
            return False
        conn.execute(
            "UPDATE books SET favorite_count = MAX(0, favorite_count - 1) WHERE id = ?", (book_id,)
        )
        return True


def catalog_stats() -> dict[str, int]:
    with get_db(read_only=True) as conn:
        return {
            "books": conn.execute("SELECT COUNT(*) FROM books").fetchone()[0],
            "available_books": conn.execute("SELECT COUNT(*) FROM books WHERE available = 1").fetchone()[0],
            "categories": conn.execute("SELECT COUNT(*) FROM categories").fetchone()[0],
            "users": conn.execute("SELECT COUNT(*) FROM users").fetchone()[0],
            "favorites": conn.execute("SELECT COUNT(*) FROM favorites").fetchone()[0],
            "downloads": conn.execute("SELECT COUNT(*) FROM downloads").fetchone()[0],
        }


_BOOK_COLUMNS = """
    b.id, b.title, b.author, b.category_id, c.name AS category_name,
    b.download_count, b.favorite_count, b.created_at, b.available
"""


class SqliteCandidateSource:
    """CandidateSource backed by the local SQLite catalog."""

    def _books(self, conn, where: str = "", params: tuple = (), order: str = "b.id", limit: int | None = None) -> list[Book]:
        query = f"SELECT {_BOOK_COLUMNS} FROM books b LEFT JOIN categories c ON c.id = b.category_id"
        if where:
            query += f" WHERE {where}"
        query += f" ORDER BY {order}"
        if limit is not None:
            query += " LIMIT ?"
            params = params + (limit,)
        rows = conn.execute(query, params).fetchall()
        if not rows:
            return []

        ids = [row["id"] for row in rows]
        tags: dict[int, list[Tag]] = defaultdict(list)
        placeholders = ",".join("?" * len(ids))
        for tag_row in conn.execute(
            f"""
            SELECT bt.book_id, t.id, t.name FROM book_tags bt
            JOIN tags t ON t.id = bt.tag_id
            WHERE bt.book_id IN ({placeholders})
            """,
            ids,
        ):
            tags[tag_row["book_id"]].append(Tag(tag_row["name"], tag_row["id"]))

        return [
            Book(
                id=row["id"],
                title=row["title"],
                author=row["author"] or "",
                category=(
                    Category(row["category_id"], row["category_name"] or "")
                    if row["category_id"] is not None else None
                ),
                tags=frozenset(tags.get(row["id"], [])),
                download_count=row["download_count"],
                favorite_count=row["favorite_count"],
                created_at=parse_timestamp_naive(row["created_at"]) if row["created_at"] else None,
                available=bool(row["available"]),
            )
            for row in rows
        ]

    def get_user_profile(self, user_id: int) -> UserProfile | None:
        try:
            with get_db(read_only=True) as conn:
                if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                    return None
                favorite_ids = frozenset(
                    row[0] for row in conn.execute("SELECT book_id FROM favorites WHERE user_id = ?", (user_id,))
                )
                downloads = tuple(
                    DownloadEvent(user_id, row["book_id"], parse_timestamp_naive(row["downloaded_at"]))
                    for row in conn.execute(
                        "SELECT book_id, downloaded_at FROM downloads WHERE user_id = ? ORDER BY downloaded_at",
                        (user_id,),
                    )
                )
        except sqlite3.Error as e:
            raise CollaboratorError(f"failed to load user {user_id}: {e}") from e
        return UserProfile(user_id, favorite_ids, downloads)

    def get_available_items(self, category_id: int | None = None) -> list[Book]:
        try:
            with get_db(read_only=True) as conn:
                if category_id is None:
                    return self._books(conn, "b.available = 1")
                return self._books(conn, "b.available = 1 AND b.category_id = ?", (category_id,))
        except sqlite3.Error as e:
            raise CollaboratorError(f"failed to load available books: {e}") from e

    def get_item(self, item_id: int) -> Book | None:
        try:
            with get_db(read_only=True) as conn:
                books = self._books(conn, "b.id = ?", (item_id,))
        except sqlite3.Error as e:
            raise CollaboratorError(f"failed to load book {item_id}: {e}") from e
        return books[0] if books else None

    def get_recent_download_count(self, item_id: int, since: datetime) -> int:
        try:
            with get_db(read_only=True) as conn:
                return conn.execute(
                    "SELECT COUNT(*) FROM downloads WHERE book_id = ? AND downloaded_at >= ?",
                    (item_id, _timestamp(since)),
                ).fetchone()[0]
        except sqlite3.Error as e:
            raise CollaboratorError(f"failed to count downloads for book {item_id}: {e}") from e

    def get_most_downloaded(self, limit: int) -> list[Book]:
        try:
            with get_db(read_only=True) as conn:
                return self._books(conn, "b.available = 1", order="b.download_count DESC, b.id", limit=max(0, limit))
        except sqlite3.Error as e:
            raise CollaboratorError(f"failed to load most downloaded books: {e}") from e

    def get_recently_downloaded(self, since: datetime, limit: int) -> list[Book]:
        try:
            with get_db(read_only=True) as conn:
                rows = conn.execute(
                    """
                    SELECT d.book_id, COUNT(*) AS n FROM downloads d
                    JOIN books b ON b.id = d.book_id
                    WHERE d.downloaded_at >= ? AND b.available = 1
                    GROUP BY d.book_id
                    ORDER BY n DESC, d.book_id
                    LIMIT ?
                    """,
                    (_timestamp(since), max(0, limit)),
                ).fetchall()
                order = [row["book_id"] for row in rows]
                if not order:
                    return []
                placeholders = ",".join("?" * len(order))
                by_id = {b.id: b for b in self._books(conn, f"b.id IN ({placeholders})", tuple(order))}
        except sqlite3.Error as e:
            raise CollaboratorError(f"failed to load recently downloaded books: {e}") from e
        return [by_id[book_id] for book_id in order if book_id in by_id]
