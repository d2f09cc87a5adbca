"""
Browser backend access for postercache.
"""

from postercache.crawler.poster_fetcher import (
    BrowserUnavailableError,
    PlaywrightPosterFetcher,
    PosterFetcher,
    PosterNotFoundError,
)

__all__ = [
    "BrowserUnavailableError",
    "PlaywrightPosterFetcher",
    "PosterFetcher",
    "PosterNotFoundError",
]
