import argparse
import logging
import sys

from book_finder.config import get_log_level, load_settings
from book_finder.core.cache_manager import BookCacheManager, CacheUnavailableError
from book_finder.db.session import Database


def configure_logging():
    # Log to stdout for Docker compatibility
    logging.basicConfig(
        level=get_log_level(),
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def run_cleanup() -> int:
    """Open the database, run one cleanup and print the counts."""
    settings = load_settings()
    database = Database(settings.database_url, timeout_seconds=settings.db_timeout_seconds)
    database.open()
    try:
        result = BookCacheManager(database, settings).cleanup_cache()
    except CacheUnavailableError as e:
        logging.error(f"Cleanup failed: {e}")
        return 1
    finally:
        database.close()
    print(f"Removed {result.removed} expired and {result.old_removed} old cached books")
    return 0


def main():
    parser = argparse.ArgumentParser(description='Library Book Finder')
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # API server command
    api_parser = subparsers.add_parser('api', help='Run the API server')
    api_parser.add_argument('--host', default='localhost', help='Host to bind to')
    api_parser.add_argument('--port', type=int, default=8000, help='Port to bind to')

    # Cache maintenance command
    subparsers.add_parser('cleanup', help='Remove stale and excess cached books')

    args = parser.parse_args()
    configure_logging()

    if args.command == 'api':
        import uvicorn
        from book_finder.api.main import create_app
        uvicorn.run(create_app(), host=args.host, port=args.port)
    elif args.command == 'cleanup':
        sys.exit(run_cleanup())
    else:
        parser.print_help()


if __name__ == '__main__':
    main()
