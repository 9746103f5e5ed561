import pytest

from bookshelf_rec.models import Book, Category, RecommendationResult, RecommendationType
from bookshelf_rec.stats import summarize_recommendations


def _result(book_id, score, category_id, author, kind=RecommendationType.PERSONALIZED):
    book = Book(id=book_id, title=f"Book {book_id}", author=author, category=Category(category_id))
    return RecommendationResult(book, score, "content match", kind)


def test_empty_results_summary():
    assert summarize_recommendations([]) == {"count": 0}


def test_summary_scores_and_diversity():
    results = [
        _result(1, 0.9, 1, "Herbert"),
        _result(2, 0.7, 1, "herbert"),
        _result(3, 0.5, 2, "Beard"),
        _result(4, 0.1, 3, "Tuchman", RecommendationType.POPULAR_FALLBACK),
    ]

    summary = summarize_recommendations(results)

    assert summary["count"] == 4
    assert summary["mean"] == pytest.approx(0.55)
    assert summary["median"] == pytest.approx(0.6)
    assert summary["min"] == pytest.approx(0.1)
    assert summary["max"] == pytest.approx(0.9)
    assert summary["by_type"] == {"personalized": 3, "popular-fallback": 1}
    assert summary["unique_categories"] == 3
    assert summary["unique_authors"] == 3
    # entropy of (2, 1, 1) over log2(4)
    assert summary["category_diversity"] == pytest.approx(0.75, abs=1e-3)


def test_single_category_has_zero_diversity():
    summary = summarize_recommendations([_result(1, 0.4, 1, "A"), _result(2, 0.2, 1, "B")])

    assert summary["category_diversity"] == 0.0
