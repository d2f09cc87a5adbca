"""
Main entry point for postercache.
"""

import argparse
import asyncio

from postercache.cache.context import CacheContext
from postercache.cache.errors import CacheError
from postercache.crawler.poster_fetcher import PlaywrightPosterFetcher
from postercache.storage.database import Database
from postercache.utils.config import Settings, ensure_directories, get_settings
from postercache.utils.logging import configure_logging, get_logger


def initialize(settings: Settings) -> None:
    """Prepare directories and logging."""
    ensure_directories(settings)
    configure_logging(settings=settings)

    logger = get_logger(__name__)
    logger.info(
        "postercache initializing",
        version=settings.general.version,
        log_level=settings.general.log_level,
    )


async def init_database(settings: Settings) -> None:
    """Create the durable store schema."""
    db = Database(settings.storage.database_path)
    await db.connect()
    try:
        await db.initialize_schema()
    finally:
        await db.close()


async def run_lookup(settings: Settings, key: str) -> int:
    """Resolve a single key through the full cache path.

    Returns:
        Process exit code.
    """
    async with CacheContext(settings, PlaywrightPosterFetcher(settings.browser)) as context:
        try:
            print(await context.cache.lookup(key))
        except CacheError as e:
            print(f"Error: {e.message}")
            return 1
    return 0


async def run_server(settings: Settings) -> None:
    """Serve lookups over HTTP until interrupted."""
    from postercache.server.app import serve

    async with CacheContext(settings, PlaywrightPosterFetcher(settings.browser)) as context:
        await serve(context)


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="postercache - cached poster lookups in front of a browser session"
    )
    parser.add_argument(
        "command",
        choices=["init", "lookup", "serve"],
        help="Command to run",
    )
    parser.add_argument(
        "--key", "-k",
        type=str,
        help="Movie name (for 'lookup' command)",
    )

    args = parser.parse_args()
    settings = get_settings()
    initialize(settings)

    if args.command == "init":
        if settings.storage.enabled:
            asyncio.run(init_database(settings))
        print("postercache initialized successfully.")
        return 0

    if args.command == "lookup":
        if not args.key:
            print("Error: --key is required for lookup command")
            return 2
        return asyncio.run(run_lookup(settings, args.key))

    try:
        asyncio.run(run_server(settings))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
