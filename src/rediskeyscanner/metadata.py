"""Per-key metadata fetched in one pipelined round trip per batch."""

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from redis.exceptions import ResponseError

from .errors import ScanConnectionError, translate_redis_errors

MISSING_KEY_TTL = -2


@dataclass(frozen=True)
class KeyMetadata:
    """Idle time and (optionally) TTL of one key, in seconds."""

    idletime: Optional[int]
    ttl: Optional[int] = None

    @property
    def vanished(self) -> bool:
        """True when the key was deleted between iteration and enrichment."""
        return self.idletime is None or self.ttl == MISSING_KEY_TTL


def _is_missing_key_reply(reply: Any) -> bool:
    return isinstance(reply, ResponseError) and "no such key" in str(reply).lower()


def _as_int(command: str, key: str, reply: Any) -> Optional[int]:
    if reply is None or _is_missing_key_reply(reply):
        return None
    if isinstance(reply, Exception):
        raise ScanConnectionError(f"{command} {key!r} failed: {type(reply).__name__}: {reply}")
    return int(reply)


async def fetch_metadata(client, keys: Sequence[str], include_ttl: bool) -> List[KeyMetadata]:
    """
    Fetch idle time, and TTL when needed, for every key in one round trip.

    Commands are queued on a non-transactional pipeline: ``OBJECT IDLETIME``
    for each key, followed by ``TTL`` for the same key when ``include_ttl``.
    Idle time is read first because on some Redis versions reading TTL
    resets the idle time it reports afterwards. That side effect still
    applies to later scans of the same keys and is not compensated for.

    A key that vanished before the pipeline ran is returned with
    ``vanished`` set rather than raising. Any other error reply is treated
    as a protocol failure.

    Args:
        client: redis.asyncio client
        keys: Key names of one batch
        include_ttl: Whether TTL is needed by the configured bounds

    Returns:
        KeyMetadata list aligned with ``keys``

    Raises:
        ScanConnectionError: On connection failure or an unexpected error reply
    """
    if not keys:
        return []

    with translate_redis_errors("Metadata pipeline"):
        async with client.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.object("idletime", key)
                if include_ttl:
                    pipe.ttl(key)
            replies = await pipe.execute(raise_on_error=False)

    per_key = 2 if include_ttl else 1
    if len(replies) != len(keys) * per_key:
        raise ScanConnectionError(f"Metadata pipeline returned {len(replies)} replies for {len(keys)} keys")

    metadata = []
    for key, offset in zip(keys, range(0, len(replies), per_key)):
        idletime = _as_int("OBJECT IDLETIME", key, replies[offset])
        ttl = _as_int("TTL", key, replies[offset + 1]) if include_ttl else None
        metadata.append(KeyMetadata(idletime=idletime, ttl=ttl))

    return metadata
