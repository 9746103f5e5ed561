import argparse
import atexit
import json
import logging
from pathlib import Path

from .config import DEFAULT_LIMIT, SCORING_WORKERS, REQUEST_TIMEOUT
from .database import init_db, import_catalog, catalog_stats, close_pool, SqliteCandidateSource
from .models import RecommendationResult
from .recommender import Recommender
from .sources import RetryingCandidateSource
from .stats import summarize_recommendations

logger = logging.getLogger(__name__)

# Register cleanup on exit
atexit.register(close_pool)


def _build_recommender(args: argparse.Namespace) -> Recommender:
    source = RetryingCandidateSource(SqliteCandidateSource())
    return Recommender(
        source,
        workers=getattr(args, 'workers', SCORING_WORKERS),
        timeout=getattr(args, 'timeout', REQUEST_TIMEOUT),
    )


def _output_recommendations(results: list[RecommendationResult], args: argparse.Namespace, heading: str) -> None:
    """Format and log recommendations in the requested format."""
    output_format = getattr(args, 'format', 'text')

    if output_format == 'json':
        payload = {
            "recommendations": [r.to_dict() for r in results],
            "summary": summarize_recommendations(results),
        }
        logger.info(json.dumps(payload, indent=2))

    elif output_format == 'csv':
        logger.info("Id,Title,Author,Score,Type,Reason")
        for r in results:
            title = r.item.title.replace('"', '""')
            author = r.item.author.replace('"', '""')
            reason = r.reason.replace('"', '""')
            logger.info(
                f'{r.item.id},"{title}","{author}",{r.score:.3f},{r.recommendation_type.value},"{reason}"'
            )

    else:  # text format
        logger.info(f"\n{heading} ({len(results)}):")
        for i, r in enumerate(results, 1):
            by = f" by {r.item.author}" if r.item.author else ""
            logger.info(f"{i}. {r.item.title}{by} - Score: {r.score:.2f} [{r.recommendation_type.value}]")
            logger.info(f"   Why: {r.reason}")

        summary = summarize_recommendations(results)
        if summary["count"]:
            logger.info(
                f"\nScores: mean {summary['mean']:.2f}, median {summary['median']:.2f}, "
                f"range {summary['min']:.2f}-{summary['max']:.2f}; "
                f"{summary['unique_categories']} categories ({summary['category_diversity']:.0%} diversity), "
                f"{summary['unique_authors']} authors"
            )


def cmd_init_db(args: argparse.Namespace) -> None:
    """Create database tables."""
    init_db()
    logger.info("Database initialized")


def cmd_import(args: argparse.Namespace) -> None:
    """Load a JSON catalog document into the database."""
    path = Path(args.file)
    if not path.exists():
        logger.error(f"Catalog file not found: {path}")
        return

    try:
        payload = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        logger.error(f"Invalid catalog JSON in {path}: {e}")
        return

    init_db()
    counts = import_catalog(payload, show_progress=not args.quiet)
    for section, n in counts.items():
        logger.info(f"  {section}: {n}")


def cmd_recommend(args: argparse.Namespace) -> None:
    """Personalized (or category-restricted) recommendations for a user."""
    recommender = _build_recommender(args)
    if args.category is not None:
        results = recommender.category_recommendations(args.user_id, args.category, args.limit)
        heading = f"Category {args.category} recommendations for user {args.user_id}"
    else:
        results = recommender.personalized_recommendations(args.user_id, args.limit)
        heading = f"Recommendations for user {args.user_id}"
    _output_recommendations(results, args, heading)


def cmd_similar(args: argparse.Namespace) -> None:
    """Books similar to an anchor book."""
    recommender = _build_recommender(args)
    results = recommender.similar_items(args.book_id, args.user, args.limit)
    if not results:
        logger.info(f"No similar books found for book {args.book_id}")
        return
    _output_recommendations(results, args, f"Books similar to {args.book_id}")


def cmd_trending(args: argparse.Namespace) -> None:
    """Books with the most download activity this week."""
    recommender = _build_recommender(args)
    results = recommender.trending_recommendations(args.limit)
    _output_recommendations(results, args, "Trending this week")


def cmd_stats(args: argparse.Namespace) -> None:
    """Show database statistics."""
    stats = catalog_stats()
    logger.info("\nCatalog Statistics:")
    logger.info(f"  Books: {stats['books']} ({stats['available_books']} available)")
    logger.info(f"  Categories: {stats['categories']}")
    logger.info(f"  Users: {stats['users']}")
    logger.info(f"  Favorites: {stats['favorites']}")
    logger.info(f"  Downloads: {stats['downloads']}")


def _add_output_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT, help="Number of recommendations")
    parser.add_argument("--format", choices=['text', 'json', 'csv'], default='text', help="Output format")
    parser.add_argument("--workers", type=int, default=SCORING_WORKERS, help="Threads used to score candidates")
    parser.add_argument("--timeout", type=float, default=REQUEST_TIMEOUT,
                        help="Scoring deadline in seconds before falling back to popular books (0 disables)")


def main():
    parser = argparse.ArgumentParser(description="Bookshelf Recommender")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create database tables")
    init_parser.set_defaults(func=cmd_init_db)

    import_parser = subparsers.add_parser("import", help="Import a JSON catalog")
    import_parser.add_argument("file", help="Path to catalog JSON")
    import_parser.add_argument("--quiet", action="store_true", help="Hide progress bars")
    import_parser.set_defaults(func=cmd_import)

    rec_parser = subparsers.add_parser("recommend", help="Recommend books for a user")
    rec_parser.add_argument("user_id", type=int, help="User id")
    rec_parser.add_argument("--category", type=int, help="Restrict to a category id")
    _add_output_args(rec_parser)
    rec_parser.set_defaults(func=cmd_recommend)

    similar_parser = subparsers.add_parser("similar", help="Find books similar to a book")
    similar_parser.add_argument("book_id", type=int, help="Anchor book id")
    similar_parser.add_argument("--user", type=int, help="Exclude this user's favorites")
    _add_output_args(similar_parser)
    similar_parser.set_defaults(func=cmd_similar)

    trending_parser = subparsers.add_parser("trending", help="Trending books this week")
    _add_output_args(trending_parser)
    trending_parser.set_defaults(func=cmd_trending)

    stats_parser = subparsers.add_parser("stats", help="Show catalog statistics")
    stats_parser.set_defaults(func=cmd_stats)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()
