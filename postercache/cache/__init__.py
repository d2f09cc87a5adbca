"""
Tiered poster cache: hot tier, admission gate, single-flight orchestration
and eviction.

CacheContext lives in postercache.cache.context and is imported from there.
"""

from postercache.cache.errors import (
    CacheError,
    CacheErrorCode,
    CacheMiss,
    FetchFailed,
    FetchTimeout,
    GateTimeout,
    InvalidKeyError,
    StoreUnavailable,
)
from postercache.cache.eviction import EvictionReport, EvictionScheduler
from postercache.cache.gate import AdmissionGate, GateToken
from postercache.cache.orchestrator import FetchOrchestrator, Flight, FlightState
from postercache.cache.record import Record, normalize_key
from postercache.cache.service import PosterCache
from postercache.cache.tier import CacheTier

__all__ = [
    "AdmissionGate",
    "CacheError",
    "CacheErrorCode",
    "CacheMiss",
    "CacheTier",
    "EvictionReport",
    "EvictionScheduler",
    "FetchFailed",
    "FetchOrchestrator",
    "FetchTimeout",
    "Flight",
    "FlightState",
    "GateTimeout",
    "GateToken",
    "InvalidKeyError",
    "PosterCache",
    "Record",
    "StoreUnavailable",
    "normalize_key",
]
