"""
Durable storage for postercache.
"""

from postercache.storage.database import Database
from postercache.storage.poster_store import PosterStore

__all__ = ["Database", "PosterStore"]
