"""
Read-only views of catalog and user data consumed by the recommender.

Users reference books by id only; resolving ids to books is the job of a
CandidateSource, so there are no back-references between users and books.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable


def parse_timestamp_naive(timestamp_str: str) -> datetime:
    """
    Parse ISO format timestamp string to naive datetime.

    Always returns a naive datetime so stored values with and without an
    offset can be compared against ``datetime.now()``.
    """
    dt = datetime.fromisoformat(timestamp_str)
    return dt.replace(tzinfo=None) if dt.tzinfo else dt


@dataclass(frozen=True)
class Category:
    """A book category. Two categories are equal when their ids are."""

    id: int
    name: str = field(default="", compare=False)


@dataclass(frozen=True)
class Tag:
    """A tag. Set operations work on names, so equality is by name."""

    name: str
    id: int | None = field(default=None, compare=False)


@dataclass(frozen=True)
class Book:
    id: int
    title: str
    author: str = ""
    category: Category | None = None
    tags: frozenset[Tag] = frozenset()
    download_count: int = 0
    favorite_count: int = 0
    created_at: datetime | None = None
    available: bool = True

    def __post_init__(self) -> None:
        if self.download_count < 0 or self.favorite_count < 0:
            raise ValueError(
                f"Book {self.id}: counters must be non-negative "
                f"(downloads={self.download_count}, favorites={self.favorite_count})"
            )
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, "tags", frozenset(self.tags))

    @property
    def tag_names(self) -> frozenset[str]:
        return frozenset(t.name for t in self.tags)

    @property
    def category_id(self) -> int | None:
        return self.category.id if self.category is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "tags": sorted(self.tag_names),
            "download_count": self.download_count,
            "favorite_count": self.favorite_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "available": self.available,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any], categories: dict[int, Category] | None = None) -> "Book":
        """
        Build a book from a catalog record.

        ``tags`` is a list of names; ``category_id`` is resolved through
        ``categories`` when given so the category name is carried along.
        """
        category = None
        category_id = payload.get("category_id")
        if category_id is not None:
            category = (categories or {}).get(category_id) or Category(category_id)

        created_at = payload.get("created_at")
        if isinstance(created_at, str):
            created_at = parse_timestamp_naive(created_at)

        return cls(
            id=payload["id"],
            title=payload.get("title", str(payload["id"])),
            author=payload.get("author") or "",
            category=category,
            tags=frozenset(Tag(name) for name in payload.get("tags", [])),
            download_count=int(payload.get("download_count") or 0),
            favorite_count=int(payload.get("favorite_count") or 0),
            created_at=created_at,
            available=bool(payload.get("available", True)),
        )


@dataclass(frozen=True)
class DownloadEvent:
    user_id: int
    item_id: int
    downloaded_at: datetime


@dataclass(frozen=True)
class UserProfile:
    """A user's favorites (by book id) and time-ordered download history."""

    user_id: int
    favorite_ids: frozenset[int] = frozenset()
    downloads: tuple[DownloadEvent, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.favorite_ids, frozenset):
            object.__setattr__(self, "favorite_ids", frozenset(self.favorite_ids))
        object.__setattr__(
            self, "downloads", tuple(sorted(self.downloads, key=lambda e: e.downloaded_at))
        )

    @property
    def has_history(self) -> bool:
        return bool(self.favorite_ids or self.downloads)

    def downloaded_ids(self) -> list[int]:
        """Downloaded book ids, deduplicated, in first-download order."""
        return list(dict.fromkeys(e.item_id for e in self.downloads))


class RecommendationType(Enum):
    """Which request mode produced a result."""

    PERSONALIZED = "personalized"
    CATEGORY = "category"
    SIMILAR = "similar"
    TRENDING = "trending"
    POPULAR_FALLBACK = "popular-fallback"


@dataclass(frozen=True)
class RecommendationResult:
    item: Book
    score: float
    reason: str
    recommendation_type: RecommendationType

    def to_dict(self) -> dict[str, Any]:
        return {
            "book": self.item.to_dict(),
            "score": round(self.score, 4),
            "reason": self.reason,
            "recommendation_type": self.recommendation_type.value,
        }


def index_by_id(books: Iterable[Book]) -> dict[int, Book]:
    return {b.id: b for b in books}
