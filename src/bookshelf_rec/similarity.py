"""Content similarity between two books: category, tag overlap and author."""

import logging
from functools import lru_cache

from .config import SIMILARITY_WEIGHTS, MISSING_CATEGORY_REPORT_LIMIT
from .models import Book

logger = logging.getLogger(__name__)


def jaccard(a: frozenset | set, b: frozenset | set) -> float:
    """|A ∩ B| / |A ∪ B|, defined as 0.0 when both sets are empty."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


@lru_cache(maxsize=MISSING_CATEGORY_REPORT_LIMIT)
def _warn_missing_category(book_id: int, title: str) -> None:
    logger.warning(f"Book {book_id} ('{title}') has no category; treating as no category match")


def category_match(a: Book, b: Book) -> float:
    if a.category is None or b.category is None:
        for book in (a, b):
            if book.category is None:
                _warn_missing_category(book.id, book.title)
        return 0.0
    return 1.0 if a.category.id == b.category.id else 0.0


def author_match(a: Book, b: Book) -> float:
    return 1.0 if a.author.casefold() == b.author.casefold() else 0.0


def content_similarity(a: Book, b: Book) -> float:
    """
    Weighted content similarity in [0, 1].

    0.5 * same category + 0.3 * tag-name Jaccard + 0.2 * same author
    (case-insensitive). Symmetric, and 1.0 for a book with itself as long as
    it has a category and at least one tag.
    """
    score = (
        category_match(a, b) * SIMILARITY_WEIGHTS['category']
        + jaccard(a.tag_names, b.tag_names) * SIMILARITY_WEIGHTS['tags']
        + author_match(a, b) * SIMILARITY_WEIGHTS['author']
    )
    return max(0.0, min(1.0, score))
