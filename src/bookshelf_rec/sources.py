"""
Collaborator interface the recommender reads catalog and user data through.

Lookups that find nothing return None; backend failures raise
CollaboratorError. RetryingCandidateSource adds bounded retries around any
source so the recommender itself never retries.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Iterable, Protocol, runtime_checkable

from .config import SOURCE_MAX_RETRIES, SOURCE_RETRY_DELAY, SOURCE_RETRY_BACKOFF
from .models import Book, DownloadEvent, UserProfile, index_by_id
from .utils import retry_with_backoff

logger = logging.getLogger(__name__)


class CollaboratorError(Exception):
    """The data-fetch layer is unavailable or failed."""


@runtime_checkable
class CandidateSource(Protocol):
    def get_user_profile(self, user_id: int) -> UserProfile | None: ...

    def get_available_items(self, category_id: int | None = None) -> list[Book]: ...

    def get_item(self, item_id: int) -> Book | None: ...

    def get_recent_download_count(self, item_id: int, since: datetime) -> int: ...

    def get_most_downloaded(self, limit: int) -> list[Book]: ...

    def get_recently_downloaded(self, since: datetime, limit: int) -> list[Book]: ...


class InMemoryCandidateSource:
    """
    Snapshot-backed source over plain Python collections.

    Used by tests and batch jobs that already hold the catalog in memory.
    Books keep their insertion order, which is the candidate enumeration order.
    """

    def __init__(
        self,
        books: Iterable[Book],
        profiles: Iterable[UserProfile] = (),
        downloads: Iterable[DownloadEvent] = (),
    ):
        self.books = index_by_id(books)
        self.profiles = {p.user_id: p for p in profiles}
        self.downloads = list(downloads)

        # Events recorded only on profiles still count towards trend windows
        known = set(self.downloads)
        for profile in self.profiles.values():
            for event in profile.downloads:
                if event not in known:
                    self.downloads.append(event)
                    known.add(event)

    def get_user_profile(self, user_id: int) -> UserProfile | None:
        return self.profiles.get(user_id)

    def get_available_items(self, category_id: int | None = None) -> list[Book]:
        return [
            b for b in self.books.values()
            if b.available and (category_id is None or b.category_id == category_id)
        ]

    def get_item(self, item_id: int) -> Book | None:
        return self.books.get(item_id)

    def get_recent_download_count(self, item_id: int, since: datetime) -> int:
        return sum(1 for e in self.downloads if e.item_id == item_id and e.downloaded_at >= since)

    def get_most_downloaded(self, limit: int) -> list[Book]:
        available = [b for b in self.books.values() if b.available]
        return sorted(available, key=lambda b: -b.download_count)[:max(0, limit)]

    def get_recently_downloaded(self, since: datetime, limit: int) -> list[Book]:
        counts = Counter(e.item_id for e in self.downloads if e.downloaded_at >= since)
        ranked = [
            self.books[item_id]
            for item_id, _ in counts.most_common()
            if item_id in self.books and self.books[item_id].available
        ]
        return ranked[:max(0, limit)]


_SOURCE_OPERATIONS = (
    "get_user_profile",
    "get_available_items",
    "get_item",
    "get_recent_download_count",
    "get_most_downloaded",
    "get_recently_downloaded",
)


class RetryingCandidateSource:
    """
    Wrap a source so each read retries on CollaboratorError with backoff.

    Only CollaboratorError is retried; once attempts are exhausted the last
    error propagates to the caller.
    """

    def __init__(
        self,
        inner: CandidateSource,
        max_retries: int = SOURCE_MAX_RETRIES,
        initial_delay: float = SOURCE_RETRY_DELAY,
        backoff_factor: float = SOURCE_RETRY_BACKOFF,
    ):
        self.inner = inner
        retry = retry_with_backoff(
            max_retries=max_retries,
            initial_delay=initial_delay,
            backoff_factor=backoff_factor,
            exceptions=(CollaboratorError,),
        )
        for name in _SOURCE_OPERATIONS:
            setattr(self, name, retry(getattr(inner, name)))
