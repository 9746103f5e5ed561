"""Global popularity and short-window trend signals."""

from datetime import datetime

from .config import (
    POPULARITY_DOWNLOAD_NORM,
    POPULARITY_FAVORITE_NORM,
    FRESHNESS_WINDOW_DAYS,
    FRESHNESS_MAX,
    POPULARITY_WEIGHTS,
    TREND_RECENT_NORM,
    TREND_RECENT_WEIGHT,
    TREND_POPULARITY_WEIGHT,
)
from .models import Book


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def freshness(created_at: datetime | None, now: datetime | None = None) -> float:
    """
    New-book boost: 0.2 * (30 - age_days) / 30 inside the first 30 days.

    Age is counted in whole days and never goes below zero, so books dated
    in the future are treated as brand new.
    """
    if created_at is None:
        return 0.0
    if now is None:
        now = datetime.now()
    age_days = max(0, (now - created_at).days)
    if age_days >= FRESHNESS_WINDOW_DAYS:
        return 0.0
    return FRESHNESS_MAX * (FRESHNESS_WINDOW_DAYS - age_days) / FRESHNESS_WINDOW_DAYS


def popularity_score(book: Book, now: datetime | None = None) -> float:
    """
    Popularity in [0, 1] from download/favorite counters and age.

    Examples:
    - 500 downloads, 50 favorites, 10 days old -> ~0.427
    - 1000+ downloads, 100+ favorites, a year old -> 0.8
    """
    downloads = min(1.0, book.download_count / POPULARITY_DOWNLOAD_NORM)
    favorites = min(1.0, book.favorite_count / POPULARITY_FAVORITE_NORM)
    return _clamp(
        downloads * POPULARITY_WEIGHTS['downloads']
        + favorites * POPULARITY_WEIGHTS['favorites']
        + freshness(book.created_at, now) * POPULARITY_WEIGHTS['freshness']
    )


def trend_score(book: Book, recent_download_count: int, now: datetime | None = None) -> float:
    """Recent activity (saturating at 50 downloads/week) blended with overall popularity."""
    recent = min(1.0, max(0, recent_download_count) / TREND_RECENT_NORM)
    return _clamp(
        recent * TREND_RECENT_WEIGHT
        + popularity_score(book, now) * TREND_POPULARITY_WEIGHT
    )
