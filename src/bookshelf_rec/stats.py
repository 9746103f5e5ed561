"""
Summary statistics for a recommendation result set.

Used by the CLI to report score spread and how varied a list is across
categories and authors.
"""

import math
from collections import Counter

import numpy as np

from .models import RecommendationResult


def _normalized_entropy(values: list) -> float:
    """Shannon entropy scaled to [0, 1] by the maximum for len(values) items."""
    if len(values) < 2:
        return 0.0
    counts = Counter(values)
    total = len(values)
    entropy = -sum((c / total) * math.log2(c / total) for c in counts.values())
    return entropy / math.log2(total)


def summarize_recommendations(results: list[RecommendationResult]) -> dict:
    if not results:
        return {"count": 0}

    scores = np.array([r.score for r in results], dtype=float)
    categories = [r.item.category_id for r in results if r.item.category_id is not None]
    authors = {r.item.author.casefold() for r in results if r.item.author}

    return {
        "count": len(results),
        "mean": round(float(scores.mean()), 4),
        "median": round(float(np.median(scores)), 4),
        "p90": round(float(np.percentile(scores, 90)), 4),
        "min": round(float(scores.min()), 4),
        "max": round(float(scores.max()), 4),
        "by_type": dict(Counter(r.recommendation_type.value for r in results)),
        "unique_categories": len(set(categories)),
        "unique_authors": len(authors),
        "category_diversity": round(_normalized_entropy(categories), 3),
    }
