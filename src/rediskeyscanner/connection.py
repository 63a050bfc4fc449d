"""Connection to the Redis instance being scanned."""

import logging
from typing import Callable, List, Optional, Sequence

from redis.asyncio import Redis
from redis.asyncio.sentinel import Sentinel
from redis.exceptions import RedisError

from .config import ScanConfiguration
from .errors import ScanConnectionError, translate_redis_errors
from .iterator import PatternIterator
from .metadata import KeyMetadata, fetch_metadata

logger = logging.getLogger("rediskeyscanner.connection")


class RedisConnection:
    """
    A single connection owned by one scan.

    With ``config.name`` set, ``host``/``port`` address a Sentinel and the
    connection goes to a replica of the named master, so the scan never adds
    load to the primary. Otherwise ``host``/``port`` address Redis directly.

    Building the object does no I/O; failures surface from ``connect()`` or
    later calls as ScanConnectionError.
    """

    def __init__(self, config: ScanConfiguration):
        self.config = config
        self._sentinel: Optional[Sentinel] = None

        if config.name:
            self._sentinel = Sentinel([(config.host, config.port)])
            self.client: Redis = self._sentinel.slave_for(
                config.name,
                redis_class=Redis,
                db=config.db or 0,
                password=config.password,
                decode_responses=True,
            )
        else:
            self.client = Redis(
                host=config.host,
                port=config.port,
                db=config.db or 0,
                password=config.password,
                decode_responses=True,
            )

    async def connect(self) -> None:
        """
        Verify the server is reachable and accepts our credentials.

        Raises:
            ScanConnectionError: If the server (or Sentinel) is unreachable or rejects us
        """
        with translate_redis_errors(f"Connecting to {self.config.source}"):
            if not await self.client.ping():
                raise ScanConnectionError(f"Connecting to {self.config.source} failed: PING was not acknowledged")

    def iterate_keys(
        self, pattern: str, page_size: int, should_stop: Optional[Callable[[], bool]] = None
    ) -> PatternIterator:
        return PatternIterator(self.client, pattern, page_size, should_stop=should_stop)

    async def batch_get_metadata(self, keys: Sequence[str], include_ttl: bool) -> List[KeyMetadata]:
        return await fetch_metadata(self.client, keys, include_ttl)

    async def close(self) -> None:
        """Release the connection and any Sentinel connections."""
        clients = [self.client]
        if self._sentinel is not None:
            clients.extend(self._sentinel.sentinels)

        for client in clients:
            try:
                await client.aclose()
            except (RedisError, OSError) as e:
                # Releasing is best effort; the scan outcome is already decided
                logger.debug(f"Error closing connection to {self.config.source}: {e}")
