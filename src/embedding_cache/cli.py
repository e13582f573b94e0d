"""
Embedding Cache CLI - retention sweep and occupancy stats.

Meant to be run by an external scheduler (cron, a queue consumer) since the
cache never sweeps itself. Exits 1 on configuration errors and when the
sweep delete fails, so the scheduler can alert on it.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .backends import create_backend
from .core.config import CacheConfig
from .core.exceptions import ConfigError
from .core.logging import configure_logging
from .store import EmbeddingCache


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="embedding-cache",
        description="Embedding cache maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Delete embeddings older than the configured retention (default 30 days)
  embedding-cache sweep

  # Delete embeddings older than 7 days
  embedding-cache sweep --days 7

  # Cache stats for one user
  embedding-cache stats --user-id 7f9c...
        """,
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML config file (environment variables override it)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON-structured log lines"
    )

    subparsers = parser.add_subparsers(dest="command", help="Cache command")

    sweep_parser = subparsers.add_parser(
        "sweep",
        help="Delete embeddings older than a number of days"
    )
    sweep_parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Age threshold in days (default: configured retention)"
    )

    stats_parser = subparsers.add_parser(
        "stats",
        help="Print cache occupancy stats as JSON"
    )
    stats_parser.add_argument(
        "--user-id",
        type=str,
        default=None,
        help="Only count embeddings owned by this user"
    )

    return parser


def load_config(path: Optional[str]) -> CacheConfig:
    """Load configuration from a YAML file or the environment."""
    if path:
        return CacheConfig.from_yaml(path)
    return CacheConfig.from_env()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        structured=args.json_logs,
        stream=sys.stderr,
    )

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(args.config)
        backend = create_backend(config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    with backend:
        cache = EmbeddingCache(backend, retention_days=config.retention_days)

        if args.command == "sweep":
            if args.days is not None and args.days < 0:
                logger.error("--days must be non-negative")
                return 1
            outcome = cache.sweep_with_status(args.days)
            result = {
                "command": "sweep",
                "success": outcome.success,
                "max_age_days": outcome.max_age_days,
                "deleted": outcome.deleted,
            }
            if not outcome.success:
                result["error"] = outcome.error_message
                print(json.dumps(result, indent=2, default=str))
                return 1
        elif args.command == "stats":
            result = {"command": "stats", **cache.stats(args.user_id).to_dict()}
        else:
            parser.print_help()
            return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
