"""
Error taxonomy for the cache subsystem.

Error codes:
- CACHE_MISS: Key is in neither tier (control-flow signal, not a failure)
- FETCH_FAILED: Browser backend returned no usable result or errored
- FETCH_TIMEOUT: Caller gave up while the browser fetch was running
- GATE_TIMEOUT: Caller gave up before an admission slot was granted
- STORE_UNAVAILABLE: Durable store unreachable (absorbed, memory-only mode)
- INVALID_KEY: Lookup key is empty
"""

from enum import Enum
from typing import Any


class CacheErrorCode(str, Enum):
    """Error codes for cache lookups."""

    CACHE_MISS = "CACHE_MISS"
    FETCH_FAILED = "FETCH_FAILED"
    FETCH_TIMEOUT = "FETCH_TIMEOUT"
    GATE_TIMEOUT = "GATE_TIMEOUT"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    INVALID_KEY = "INVALID_KEY"


class CacheError(Exception):
    """
    Base exception for cache subsystem errors.

    Carries a code and structured details so the HTTP front can render
    a consistent error body.
    """

    def __init__(
        self,
        code: CacheErrorCode,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """
        Convert error to a response body.

        Returns:
            Dictionary with ok=False, error_code, error and optional details.
        """
        result: dict[str, Any] = {
            "ok": False,
            "error_code": self.code.value,
            "error": self.message,
        }

        if self.details:
            result["details"] = self.details

        return result


class CacheMiss(CacheError):
    """Raised when a key is absent from both the hot tier and the store."""

    def __init__(self, key: str):
        super().__init__(
            CacheErrorCode.CACHE_MISS,
            f"Not cached: {key}",
            details={"key": key},
        )
        self.key = key


class FetchFailed(CacheError):
    """Raised to every coalesced waiter when the backend fetch fails.

    reason is one of "not_found", "empty", "timeout" or "error".
    """

    def __init__(self, key: str, *, reason: str = "error", cause: str | None = None):
        details: dict[str, Any] = {"key": key, "reason": reason}
        if cause:
            details["cause"] = cause

        super().__init__(
            CacheErrorCode.FETCH_FAILED,
            f"Failed to fetch poster for {key}: {reason}",
            details=details,
        )
        self.key = key
        self.reason = reason


class FetchTimeout(CacheError):
    """Raised to a single caller that stopped waiting on an admitted fetch."""

    def __init__(self, key: str, timeout: float):
        super().__init__(
            CacheErrorCode.FETCH_TIMEOUT,
            f"Timed out after {timeout}s waiting for fetch of {key}",
            details={"key": key, "timeout": timeout},
        )
        self.key = key


class GateTimeout(CacheError):
    """Raised to a single caller that gave up before a gate slot was granted."""

    def __init__(self, timeout: float, *, key: str | None = None):
        details: dict[str, Any] = {"timeout": timeout}
        if key is not None:
            details["key"] = key

        super().__init__(
            CacheErrorCode.GATE_TIMEOUT,
            f"No admission slot granted within {timeout}s",
            details=details,
        )
        self.key = key


class StoreUnavailable(CacheError):
    """Raised by the persistent store on any storage-layer failure."""

    def __init__(self, operation: str, cause: str):
        super().__init__(
            CacheErrorCode.STORE_UNAVAILABLE,
            f"Persistent store unavailable during {operation}",
            details={"operation": operation, "cause": cause},
        )
        self.operation = operation


class InvalidKeyError(CacheError, ValueError):
    """Raised when a lookup key is empty."""

    def __init__(self, key: Any):
        super().__init__(
            CacheErrorCode.INVALID_KEY,
            "Lookup key must be a non-empty string",
            details={"received": repr(key)},
        )
