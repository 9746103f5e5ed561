import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from .config import (
    CONTENT_WEIGHT,
    BEHAVIOR_WEIGHT,
    POPULARITY_WEIGHT,
    NEUTRAL_CONTENT_SCORE,
    FALLBACK_SCORE,
    TREND_WINDOW_DAYS,
    TREND_CANDIDATE_MULTIPLIER,
    REASON_CONTENT_THRESHOLD,
    REASON_BEHAVIOR_THRESHOLD,
    REASON_POPULARITY_THRESHOLD,
    REASON_CONTENT,
    REASON_BEHAVIOR,
    REASON_POPULAR,
    REASON_DISCOVERY,
    REASON_FALLBACK,
    REASON_TRENDING,
    REASON_SEPARATOR,
    SCORING_WORKERS,
    REQUEST_TIMEOUT,
    DEFAULT_LIMIT,
)
from .models import Book, RecommendationResult, RecommendationType
from .popularity import popularity_score, trend_score
from .profile import PreferenceTables, build_preferences, behavior_score
from .similarity import content_similarity
from .sources import CandidateSource, CollaboratorError
from .utils import Deadline, DeadlineExceeded

logger = logging.getLogger(__name__)

ScoreFunc = Callable[[Book], Optional[RecommendationResult]]


class _FallbackRequired(Exception):
    """Personalization cannot be computed; serve the popular list instead."""


def build_reason(content: float, behavior: float, popularity: float) -> str:
    """Human-readable rationale for a blended score."""
    reasons = []
    if content > REASON_CONTENT_THRESHOLD:
        reasons.append(REASON_CONTENT)
    if behavior > REASON_BEHAVIOR_THRESHOLD:
        reasons.append(REASON_BEHAVIOR)
    if popularity > REASON_POPULARITY_THRESHOLD:
        reasons.append(REASON_POPULAR)
    return REASON_SEPARATOR.join(reasons) if reasons else REASON_DISCOVERY


def _rank(results: Iterable[RecommendationResult], limit: int) -> list[RecommendationResult]:
    # sorted() is stable: equal scores keep candidate enumeration order
    return sorted(results, key=lambda r: -r.score)[:limit]


class Recommender:
    """
    Rank books for a user by blending content, behavior and popularity signals.

    Every public operation returns a list and never raises: unknown users,
    empty candidate sets, collaborator failures and exceeded deadlines all
    degrade to the popular fallback list. The one exception is an unknown
    anchor for ``similar_items``, which returns an empty list.
    """

    def __init__(
        self,
        source: CandidateSource,
        workers: int = SCORING_WORKERS,
        timeout: float | None = REQUEST_TIMEOUT,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.workers = max(1, workers)
        self.timeout = timeout
        self._clock = clock or datetime.now
        self._monotonic = monotonic

    # Public operations

    def personalized_recommendations(self, user_id: int, limit: int = DEFAULT_LIMIT) -> list[RecommendationResult]:
        logger.info(f"Generating personalized recommendations for user {user_id}")
        return self._run(
            limit,
            lambda deadline: self._blended(user_id, None, RecommendationType.PERSONALIZED, limit, deadline),
        )

    def category_recommendations(
        self, user_id: int, category_id: int, limit: int = DEFAULT_LIMIT
    ) -> list[RecommendationResult]:
        logger.info(f"Generating category {category_id} recommendations for user {user_id}")
        return self._run(
            limit,
            lambda deadline: self._blended(user_id, category_id, RecommendationType.CATEGORY, limit, deadline),
        )

    def similar_items(
        self, anchor_item_id: int, user_id: int | None = None, limit: int = DEFAULT_LIMIT
    ) -> list[RecommendationResult]:
        logger.info(f"Finding books similar to {anchor_item_id} for user {user_id}")
        return self._run(limit, lambda deadline: self._similar(anchor_item_id, user_id, limit, deadline))

    def trending_recommendations(self, limit: int = DEFAULT_LIMIT) -> list[RecommendationResult]:
        logger.info("Generating trending recommendations")
        return self._run(limit, lambda deadline: self._trending(limit, deadline))

    def fallback(self, limit: int = DEFAULT_LIMIT, cause: str = "unspecified") -> list[RecommendationResult]:
        """Globally most-downloaded books at a flat score. Never raises."""
        if limit <= 0:
            return []
        logger.warning(f"Serving popular fallback ({cause})")
        try:
            books = self.source.get_most_downloaded(limit)
        except Exception as e:
            logger.error(f"Popular fallback unavailable: {e}")
            return []
        return [
            RecommendationResult(book, FALLBACK_SCORE, REASON_FALLBACK, RecommendationType.POPULAR_FALLBACK)
            for book in books[:limit]
        ]

    # Request plumbing

    def _run(
        self,
        limit: int,
        handler: Callable[[Deadline], list[RecommendationResult]],
    ) -> list[RecommendationResult]:
        if limit <= 0:
            return []
        deadline = Deadline(self.timeout, self._monotonic)
        try:
            results = handler(deadline)
        except _FallbackRequired as e:
            return self.fallback(limit, cause=str(e))
        except DeadlineExceeded:
            return self.fallback(limit, cause=f"deadline of {self.timeout}s exceeded")
        except CollaboratorError as e:
            logger.error(f"Data source failed: {e}")
            return self.fallback(limit, cause=f"collaborator failure: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error while ranking: {e}")
            return self.fallback(limit, cause="unexpected error")
        logger.info(f"Generated {len(results)} recommendations")
        return results

    def _score_all(self, candidates: list[Book], score: ScoreFunc, deadline: Deadline) -> list[RecommendationResult]:
        """Score candidates in enumeration order, optionally across worker threads."""
        deadline.check()
        results: list[RecommendationResult] = []

        if self.workers == 1 or len(candidates) < 2:
            for book in candidates:
                deadline.check()
                result = score(book)
                if result is not None:
                    results.append(result)
            return results

        executor = ThreadPoolExecutor(max_workers=self.workers)
        try:
            # map() yields in submission order, so ranking stays deterministic
            for result in executor.map(score, candidates):
                deadline.check()
                if result is not None:
                    results.append(result)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return results

    def _resolve(self, item_ids: Iterable[int]) -> list[Book]:
        books = []
        for item_id in item_ids:
            book = self.source.get_item(item_id)
            if book is None:
                logger.debug(f"Skipping unknown book {item_id} in user history")
                continue
            books.append(book)
        return books

    # Modes

    def _blended(
        self,
        user_id: int,
        category_id: int | None,
        rec_type: RecommendationType,
        limit: int,
        deadline: Deadline,
    ) -> list[RecommendationResult]:
        profile = self.source.get_user_profile(user_id)
        if profile is None:
            raise _FallbackRequired(f"unknown user {user_id}")

        candidates = [
            b for b in self.source.get_available_items(category_id)
            if b.id not in profile.favorite_ids
        ]
        if not candidates:
            raise _FallbackRequired(f"no candidates for user {user_id}")

        favorites = self._resolve(sorted(profile.favorite_ids))
        prefs = build_preferences(favorites, self._resolve(profile.downloaded_ids()))
        now = self._clock()

        def score(book: Book) -> RecommendationResult:
            return self._blend(book, favorites, prefs, now, rec_type)

        return _rank(self._score_all(candidates, score, deadline), limit)

    @staticmethod
    def _blend(
        book: Book,
        favorites: list[Book],
        prefs: PreferenceTables,
        now: datetime,
        rec_type: RecommendationType,
    ) -> RecommendationResult:
        if favorites:
            content = max(content_similarity(fav, book) for fav in favorites)
        else:
            content = NEUTRAL_CONTENT_SCORE
        behavior = behavior_score(prefs, book)
        popularity = popularity_score(book, now)

        final = (
            content * CONTENT_WEIGHT
            + behavior * BEHAVIOR_WEIGHT
            + popularity * POPULARITY_WEIGHT
        )
        final = max(0.0, min(1.0, final))
        return RecommendationResult(book, final, build_reason(content, behavior, popularity), rec_type)

    def _similar(
        self,
        anchor_item_id: int,
        user_id: int | None,
        limit: int,
        deadline: Deadline,
    ) -> list[RecommendationResult]:
        anchor = self.source.get_item(anchor_item_id)
        if anchor is None:
            logger.info(f"Anchor book {anchor_item_id} not found; nothing to compare against")
            return []

        excluded: frozenset[int] = frozenset()
        if user_id is not None:
            profile = self.source.get_user_profile(user_id)
            if profile is None:
                logger.debug(f"Unknown user {user_id}; no favorites excluded")
            else:
                excluded = profile.favorite_ids

        candidates = [
            b for b in self.source.get_available_items()
            if b.id != anchor.id and b.id not in excluded
        ]
        if not candidates:
            raise _FallbackRequired(f"no candidates similar to book {anchor_item_id}")

        reason = f'similar to "{anchor.title}"'

        def score(book: Book) -> RecommendationResult:
            return RecommendationResult(
                book, content_similarity(anchor, book), reason, RecommendationType.SIMILAR
            )

        return _rank(self._score_all(candidates, score, deadline), limit)

    def _trending(self, limit: int, deadline: Deadline) -> list[RecommendationResult]:
        now = self._clock()
        since = now - timedelta(days=TREND_WINDOW_DAYS)
        candidates = self.source.get_recently_downloaded(since, limit * TREND_CANDIDATE_MULTIPLIER)

        recent_counts: dict[int, int] = {}
        for book in candidates:
            deadline.check()
            recent_counts[book.id] = self.source.get_recent_download_count(book.id, since)

        def score(book: Book) -> RecommendationResult | None:
            recent = recent_counts[book.id]
            if recent < 1:
                return None
            return RecommendationResult(
                book, trend_score(book, recent, now), REASON_TRENDING, RecommendationType.TRENDING
            )

        results = self._score_all(candidates, score, deadline)
        if not results:
            raise _FallbackRequired("no downloads in the trend window")
        return _rank(results, limit)
