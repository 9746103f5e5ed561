from datetime import datetime, timedelta

import pytest

from bookshelf_rec.models import Book
from bookshelf_rec.popularity import freshness, popularity_score, trend_score

NOW = datetime(2026, 10, 19, 12, 0, 0)


def _book(downloads=0, favorites=0, age_days=None):
    created = NOW - timedelta(days=age_days) if age_days is not None else None
    return Book(id=1, title="Book", download_count=downloads, favorite_count=favorites, created_at=created)


def test_popularity_scenario():
    book = _book(downloads=500, favorites=50, age_days=10)

    # 0.4*0.5 + 0.4*0.5 + 0.2*(0.2*20/30)
    assert popularity_score(book, NOW) == pytest.approx(0.4267, abs=1e-3)


def test_counters_saturate():
    book = _book(downloads=10_000, favorites=1_000, age_days=400)
    assert popularity_score(book, NOW) == pytest.approx(0.8)


def test_freshness_window_edges():
    assert freshness(NOW, NOW) == pytest.approx(0.2)
    assert freshness(NOW - timedelta(days=29), NOW) == pytest.approx(0.2 / 30)
    assert freshness(NOW - timedelta(days=30), NOW) == 0.0
    assert freshness(None, NOW) == 0.0


def test_future_creation_date_counts_as_new():
    assert freshness(NOW + timedelta(days=3), NOW) == pytest.approx(0.2)


def test_brand_new_unpopular_book_stays_in_range():
    score = popularity_score(_book(age_days=0), NOW)
    assert score == pytest.approx(0.04)
    assert 0.0 <= score <= 1.0


def test_trend_blends_recent_activity_with_popularity():
    book = _book(downloads=500, favorites=50, age_days=10)
    popularity = popularity_score(book, NOW)

    assert trend_score(book, 25, NOW) == pytest.approx(0.7 * 0.5 + 0.3 * popularity)
    assert trend_score(book, 500, NOW) == pytest.approx(0.7 + 0.3 * popularity)
    assert trend_score(book, -3, NOW) == pytest.approx(0.3 * popularity)
