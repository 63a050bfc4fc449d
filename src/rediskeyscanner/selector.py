"""Key selection predicate."""

from typing import Optional

from .config import SelectBounds

NO_EXPIRY_TTL = -1


def select(idletime: int, ttl: Optional[int], bounds: SelectBounds) -> bool:
    """
    Decide whether a key is selected.

    Every configured bound must hold and all comparisons are inclusive.
    ``no_expiry`` is a necessary condition combined with the numeric TTL
    bounds, so a key with TTL -1 is only selected when ``min_ttl``/``max_ttl``
    also admit -1.

    Args:
        idletime: Seconds since the key was last touched
        ttl: Seconds until expiry, -1 for no expiry, None when not fetched
        bounds: Configured bounds

    Returns:
        True if the key is selected
    """
    if bounds.max_idle is not None and idletime > bounds.max_idle:
        return False
    if bounds.min_idle is not None and idletime < bounds.min_idle:
        return False

    if bounds.include_ttl and ttl is None:
        return False
    if bounds.max_ttl is not None and ttl > bounds.max_ttl:
        return False
    if bounds.min_ttl is not None and ttl < bounds.min_ttl:
        return False
    if bounds.no_expiry and ttl != NO_EXPIRY_TTL:
        return False

    return True
