import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from .config import (
    FAVORITE_WEIGHT,
    DOWNLOAD_WEIGHT,
    BEHAVIOR_CATEGORY_NORM,
    BEHAVIOR_AUTHOR_NORM,
    BEHAVIOR_TAG_NORM,
    BEHAVIOR_WEIGHTS,
    NEUTRAL_BEHAVIOR_SCORE,
)
from .models import Book

logger = logging.getLogger(__name__)


@dataclass
class PreferenceTables:
    """Aggregated reading preferences from a user's favorites and downloads."""
    n_favorites: int = 0
    n_downloads: int = 0

    categories: dict[int, int] = field(default_factory=dict)
    authors: dict[str, int] = field(default_factory=dict)  # exact author string
    tags: dict[str, int] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.n_favorites == 0 and self.n_downloads == 0


def _accumulate(
    book: Book,
    weight: int,
    categories: dict,
    authors: dict,
    tags: dict,
) -> None:
    if book.category is not None:
        categories[book.category.id] += weight
    if book.author:
        authors[book.author] += weight
    for name in book.tag_names:
        tags[name] += weight


def build_preferences(favorites: Iterable[Book], downloaded: Iterable[Book]) -> PreferenceTables:
    """
    Build category/author/tag preference tables.

    Weighting strategy:
    - Favorite:   +2 to its category, author and every tag
    - Downloaded: +1 to the same tables, once per distinct book

    Built once per request and shared read-only across candidate scoring.
    """
    categories: dict[int, int] = defaultdict(int)
    authors: dict[str, int] = defaultdict(int)
    tags: dict[str, int] = defaultdict(int)

    n_favorites = 0
    for book in favorites:
        _accumulate(book, FAVORITE_WEIGHT, categories, authors, tags)
        n_favorites += 1

    seen: set[int] = set()
    for book in downloaded:
        if book.id in seen:
            continue
        seen.add(book.id)
        _accumulate(book, DOWNLOAD_WEIGHT, categories, authors, tags)

    prefs = PreferenceTables(
        n_favorites=n_favorites,
        n_downloads=len(seen),
        categories=dict(categories),
        authors=dict(authors),
        tags=dict(tags),
    )
    logger.debug(
        f"Built preferences from {prefs.n_favorites} favorites and {prefs.n_downloads} downloads: "
        f"{len(prefs.categories)} categories, {len(prefs.authors)} authors, {len(prefs.tags)} tags"
    )
    return prefs


def behavior_score(prefs: PreferenceTables, candidate: Book) -> float:
    """
    Score a candidate against the user's preference tables, in [0, 1].

    Users with no favorites and no downloads get a neutral 0.2 for every
    candidate.
    """
    if prefs.is_empty:
        return NEUTRAL_BEHAVIOR_SCORE

    score = 0.0

    if candidate.category is not None:
        weight = prefs.categories.get(candidate.category.id)
        if weight:
            score += min(1.0, weight / BEHAVIOR_CATEGORY_NORM) * BEHAVIOR_WEIGHTS['category']

    if candidate.author:
        weight = prefs.authors.get(candidate.author)
        if weight:
            score += min(1.0, weight / BEHAVIOR_AUTHOR_NORM) * BEHAVIOR_WEIGHTS['author']

    tag_total = 0.0
    matched = 0
    for name in candidate.tag_names:
        weight = prefs.tags.get(name)
        if weight:
            tag_total += min(1.0, weight / BEHAVIOR_TAG_NORM)
            matched += 1
    if matched:
        score += (tag_total / matched) * BEHAVIOR_WEIGHTS['tags']

    return max(0.0, min(1.0, score))
