"""
postercache HTTP front.

Routes:
  /            -> Connectivity check
  /poster      -> Poster URL for ?movie=<name> (plain text); cached=1 skips fetching
  /posters     -> Snapshot of the hot tier (JSON)
  /health      -> Cache, gate and scheduler statistics (JSON)

The front only translates HTTP to PosterCache calls; it has no maintenance
trigger, eviction is timer-driven.
"""

from __future__ import annotations

import asyncio
import functools
import signal

from aiohttp import web

from postercache.cache.context import CacheContext
from postercache.cache.errors import (
    CacheError,
    CacheMiss,
    FetchFailed,
    FetchTimeout,
    GateTimeout,
    InvalidKeyError,
)
from postercache.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

CONTEXT_KEY = web.AppKey("cache_context", CacheContext)

_TRUTHY = {"1", "true", "yes"}


def _status_for(error: CacheError) -> int:
    if isinstance(error, InvalidKeyError):
        return 400
    if isinstance(error, CacheMiss):
        return 404
    if isinstance(error, FetchFailed):
        return 404 if error.reason == "not_found" else 502
    if isinstance(error, GateTimeout):
        return 503
    if isinstance(error, FetchTimeout):
        return 504
    return 500


async def handle_welcome(request: web.Request) -> web.Response:
    """Connectivity check."""
    return web.Response(text="Successfully connected")


async def handle_poster(request: web.Request) -> web.Response:
    """Look up a poster URL."""
    context = request.app[CONTEXT_KEY]
    movie = request.query.get("movie", "")
    cached_only = request.query.get("cached", "").lower() in _TRUTHY

    with LogContext(request_key=movie):
        try:
            url = await context.cache.lookup(movie, cached_only=cached_only)
        except CacheError as e:
            status = _status_for(e)
            if status >= 500:
                logger.warning("Poster lookup failed", status=status, error=e.message)
            return web.json_response(e.to_dict(), status=status)

    return web.Response(text=url)


async def handle_posters(request: web.Request) -> web.Response:
    """Snapshot of cached posters."""
    context = request.app[CONTEXT_KEY]
    return web.json_response(context.cache.list_all())


async def handle_health(request: web.Request) -> web.Response:
    """Health check endpoint."""
    context = request.app[CONTEXT_KEY]
    stats = context.get_stats()
    status = "degraded" if stats["cache"]["memory_only"] and context.settings.storage.enabled else "ok"
    logger.debug("health_check", status=status)
    return web.json_response({"status": status, **stats})


def create_app(context: CacheContext) -> web.Application:
    """Create aiohttp application bound to a started CacheContext."""
    app = web.Application()
    app[CONTEXT_KEY] = context

    app.router.add_get("/", handle_welcome)
    app.router.add_get("/poster", handle_poster)
    app.router.add_get("/posters", handle_posters)
    app.router.add_get("/health", handle_health)

    return app


async def serve(context: CacheContext) -> None:
    """Run the HTTP front until SIGINT/SIGTERM."""
    settings = context.settings
    app = create_app(context)
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, settings.server.host, settings.server.port)
    await site.start()

    logger.info(
        "Server running",
        url=f"http://{settings.server.host}:{settings.server.port}",
    )

    stop_event = asyncio.Event()

    def handle_signal(sig: int) -> None:
        logger.info("Received shutdown signal", signal=sig)
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, functools.partial(handle_signal, sig))

    await stop_event.wait()

    logger.info("Shutting down server")
    await runner.cleanup()
