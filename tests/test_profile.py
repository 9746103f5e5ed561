import pytest

from bookshelf_rec.models import Book, Category, Tag
from bookshelf_rec.profile import PreferenceTables, build_preferences, behavior_score


def _book(book_id, author="Author", category_id=1, tags=()):
    return Book(
        id=book_id,
        title=f"Book {book_id}",
        author=author,
        category=Category(category_id) if category_id is not None else None,
        tags=frozenset(Tag(t) for t in tags),
    )


def test_empty_history_is_neutral_for_any_candidate():
    prefs = build_preferences([], [])

    assert prefs.is_empty
    for candidate in (_book(1), _book(2, category_id=None), _book(3, tags=("sf",))):
        assert behavior_score(prefs, candidate) == 0.2


def test_favorites_weigh_double_and_downloads_are_deduplicated():
    fav = _book(1, author="Le Guin", category_id=1, tags=("sf", "classic"))
    downloaded = _book(2, author="le guin", category_id=2, tags=("sf",))

    prefs = build_preferences([fav], [downloaded, downloaded, downloaded])

    assert prefs.n_favorites == 1
    assert prefs.n_downloads == 1
    assert prefs.categories == {1: 2, 2: 1}
    assert prefs.authors == {"Le Guin": 2, "le guin": 1}
    assert prefs.tags == {"sf": 3, "classic": 2}


def test_candidate_scoring_components():
    prefs = PreferenceTables(
        n_favorites=1,
        categories={1: 5},
        authors={"Herbert": 2},
        tags={"sf": 5, "classic": 1},
    )
    candidate = _book(9, author="Herbert", category_id=1, tags=("sf", "classic", "unmatched"))

    # category 5/10 * 0.4 = 0.2; author 2/5 * 0.3 = 0.12; tags avg(1.0, 0.2) * 0.3 = 0.18
    assert behavior_score(prefs, candidate) == pytest.approx(0.5)


def test_candidate_without_overlap_scores_zero():
    prefs = build_preferences([_book(1, category_id=1, tags=("sf",))], [])
    stranger = _book(2, author="Someone Else", category_id=2, tags=("poetry",))

    assert behavior_score(prefs, stranger) == 0.0


def test_score_saturates_at_one():
    favorites = [_book(i, author="Herbert", category_id=1, tags=("sf",)) for i in range(10)]
    prefs = build_preferences(favorites, [])

    assert behavior_score(prefs, _book(99, author="Herbert", category_id=1, tags=("sf",))) == pytest.approx(1.0)


def test_uncategorized_history_is_skipped_for_category_table():
    prefs = build_preferences([_book(1, category_id=None, tags=("sf",))], [])

    assert prefs.categories == {}
    assert prefs.tags == {"sf": 2}


def test_author_preference_is_case_sensitive():
    prefs = build_preferences([_book(1, author="Frank Herbert", category_id=1)], [])
    candidate = _book(2, author="frank herbert", category_id=2)

    assert behavior_score(prefs, candidate) == 0.0
    assert behavior_score(prefs, _book(3, author="Frank Herbert", category_id=2)) == pytest.approx(0.12)
