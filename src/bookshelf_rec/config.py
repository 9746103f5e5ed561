"""
Configuration constants for the bookshelf recommender.

This module centralizes all magic numbers and configurable parameters.
Operational values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


# Database Configuration
DB_PATH = Path(os.environ.get("BOOKSHELF_DB", "data/bookshelf.db"))

# Request handling
SCORING_WORKERS = _get_int_env("BOOKSHELF_SCORING_WORKERS", 1, min_val=1)
REQUEST_TIMEOUT = _get_float_env("BOOKSHELF_REQUEST_TIMEOUT", 5.0, min_val=0.0)  # 0 disables the deadline
DEFAULT_LIMIT = 10

# Collaborator retries
SOURCE_MAX_RETRIES = _get_int_env("BOOKSHELF_SOURCE_RETRIES", 3, min_val=1)
SOURCE_RETRY_DELAY = _get_float_env("BOOKSHELF_SOURCE_RETRY_DELAY", 0.2, min_val=0.0)
SOURCE_RETRY_BACKOFF = 2.0

# Final score blend (personalized / category modes)
CONTENT_WEIGHT = 0.4
BEHAVIOR_WEIGHT = 0.35
POPULARITY_WEIGHT = 0.25

# Content similarity blend
SIMILARITY_WEIGHTS = {
    'category': 0.5,
    'tags': 0.3,
    'author': 0.2,
}

# Behavior preference tables
FAVORITE_WEIGHT = 2
DOWNLOAD_WEIGHT = 1
BEHAVIOR_CATEGORY_NORM = 10.0
BEHAVIOR_AUTHOR_NORM = 5.0
BEHAVIOR_TAG_NORM = 5.0
BEHAVIOR_WEIGHTS = {
    'category': 0.4,
    'author': 0.3,
    'tags': 0.3,
}

# Absence of signal is not evidence against a candidate
NEUTRAL_BEHAVIOR_SCORE = 0.2
NEUTRAL_CONTENT_SCORE = 0.3
FALLBACK_SCORE = 0.5

# Popularity
POPULARITY_DOWNLOAD_NORM = 1000.0
POPULARITY_FAVORITE_NORM = 100.0
FRESHNESS_WINDOW_DAYS = 30
FRESHNESS_MAX = 0.2
POPULARITY_WEIGHTS = {
    'downloads': 0.4,
    'favorites': 0.4,
    'freshness': 0.2,
}

# Trending
TREND_WINDOW_DAYS = 7
TREND_RECENT_NORM = 50.0
TREND_RECENT_WEIGHT = 0.7
TREND_POPULARITY_WEIGHT = 0.3
TREND_CANDIDATE_MULTIPLIER = 2  # Pull limit * N recently downloaded books before scoring

# Reason thresholds
REASON_CONTENT_THRESHOLD = 0.6
REASON_BEHAVIOR_THRESHOLD = 0.6
REASON_POPULARITY_THRESHOLD = 0.7

# Reason strings
REASON_CONTENT = "content match"
REASON_BEHAVIOR = "matches reading habits"
REASON_POPULAR = "very popular"
REASON_DISCOVERY = "discovery suggestion"
REASON_FALLBACK = "popular fallback"
REASON_TRENDING = "trending this week"
REASON_SEPARATOR = " • "

# Import
IMPORT_CHUNK_SIZE = 500

# Uncategorized books remembered so each is warned about once
MISSING_CATEGORY_REPORT_LIMIT = 1024
