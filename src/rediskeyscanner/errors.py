"""Error types raised by the scanner."""

from contextlib import contextmanager
from typing import Any, Dict, Iterator

from redis.exceptions import RedisError


class ConfigurationError(ValueError):
    """Invalid scan configuration, raised before any network I/O."""


class ScanConnectionError(Exception):
    """
    Connection-level failure that aborts a scan.

    Covers unreachable hosts, authentication failures, Sentinel lookup
    failures and protocol error replies. Never retried by the scanner.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message}


@contextmanager
def translate_redis_errors(action: str) -> Iterator[None]:
    """Re-raise client and socket failures during ``action`` as ScanConnectionError."""
    try:
        yield
    except (RedisError, OSError) as e:
        raise ScanConnectionError(f"{action} failed: {type(e).__name__}: {e}") from e
