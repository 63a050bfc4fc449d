"""Scan configuration and option validation."""

import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigurationError

DEFAULT_PATTERN = "*"
DEFAULT_SCAN_BATCH = 1000
DEFAULT_SELECT_LIMIT = 1000
DEFAULT_REDIS_PORT = 6379
DEFAULT_SENTINEL_PORT = 26379

TIMEFRAME_UNITS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
}

_TIMEFRAME_RE = re.compile(r"^\s*(\d+)\s*([smhdw]?)\s*$")
_CAMEL_HUMP_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")

TIMEFRAME_OPTIONS = ("max_idle", "min_idle", "max_ttl", "min_ttl")

RECOGNIZED_OPTIONS = frozenset(
    {
        "host",
        "port",
        "name",
        "db",
        "password",
        "pattern",
        "scan_batch",
        "scan_limit",
        "limit",
        "no_expiry",
        "debug",
        *TIMEFRAME_OPTIONS,
    }
)


def parse_timeframe(option: str, value: Any) -> int:
    """
    Convert a timeframe to seconds.

    Accepts a non-negative integer (seconds) or a string of the form
    ``<number><unit>`` where unit is one of s, m, h, d or w. Bare digits
    are seconds.

    Raises:
        ConfigurationError: If the value is not a valid timeframe
    """
    # bool is an int subclass, but `--min-idle` given without a value is not a timeframe
    if isinstance(value, bool) or value is None:
        raise ConfigurationError(f"{option} must be a timeframe like '30m' or '2d', got {value!r}")

    if isinstance(value, int):
        if value < 0:
            raise ConfigurationError(f"{option} must be >= 0, got {value}")
        return value

    if isinstance(value, str):
        match = _TIMEFRAME_RE.match(value)
        if match:
            number, unit = match.groups()
            return int(number) * TIMEFRAME_UNITS[unit or "s"]

    raise ConfigurationError(f"{option} must be a timeframe like '30m' or '2d', got {value!r}")


def _check_int(option: str, value: Any, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{option} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigurationError(f"{option} must be >= {minimum}, got {value}")


def _normalize_option_name(name: Any) -> str:
    """Map ``scan-limit`` and ``scanLimit`` to ``scan_limit``."""
    name = str(name).replace("-", "_")
    return _CAMEL_HUMP_RE.sub(r"_\1", name).lower()


def _parse_int(option: str, value: Any, minimum: int) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{option} must be an integer, got {value!r}")
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            raise ConfigurationError(f"{option} must be an integer, got {value!r}")
        value = int(value)
    _check_int(option, value, minimum)
    return value


@dataclass(frozen=True)
class SelectBounds:
    """Selection bounds in seconds. ``None`` means the bound is not configured."""

    max_idle: Optional[int] = None
    min_idle: Optional[int] = None
    max_ttl: Optional[int] = None
    min_ttl: Optional[int] = None
    no_expiry: bool = False

    @property
    def include_ttl(self) -> bool:
        """True when any bound needs the key's TTL."""
        return self.no_expiry or self.max_ttl is not None or self.min_ttl is not None


@dataclass(frozen=True)
class ScanConfiguration:
    """
    Validated, immutable configuration for a single scan.

    Addressing is either a plain Redis ``host``/``port``, or, when ``name`` is
    set, a Sentinel ``host``/``port`` that resolves ``name`` to a replica.

    A ``scan_limit`` or ``limit`` of 0 means unbounded.
    """

    host: str
    port: int
    name: Optional[str] = None
    db: Optional[int] = None
    password: Optional[str] = None
    pattern: str = DEFAULT_PATTERN
    scan_batch: int = DEFAULT_SCAN_BATCH
    scan_limit: int = 0
    limit: int = DEFAULT_SELECT_LIMIT
    max_idle: Optional[int] = None
    min_idle: Optional[int] = None
    max_ttl: Optional[int] = None
    min_ttl: Optional[int] = None
    no_expiry: bool = False
    debug: bool = False

    def __post_init__(self):
        if not self.host or not isinstance(self.host, str):
            raise ConfigurationError("host is required")

        _check_int("port", self.port, 1)
        if self.port > 65535:
            raise ConfigurationError(f"port must be <= 65535, got {self.port}")

        if self.name is not None and (not isinstance(self.name, str) or not self.name):
            raise ConfigurationError(f"name must be a non-empty string, got {self.name!r}")
        if self.db is not None:
            _check_int("db", self.db, 0)
        if self.password is not None and not isinstance(self.password, str):
            raise ConfigurationError("password must be a string")
        if not isinstance(self.pattern, str) or not self.pattern:
            raise ConfigurationError(f"pattern must be a non-empty string, got {self.pattern!r}")

        _check_int("scan_batch", self.scan_batch, 1)
        _check_int("scan_limit", self.scan_limit, 0)
        _check_int("limit", self.limit, 0)

        for option in TIMEFRAME_OPTIONS:
            value = getattr(self, option)
            if value is not None:
                _check_int(option.replace("_", "-"), value, 0)

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None) -> "ScanConfiguration":
        """
        Build a configuration from loosely typed options.

        Option names may be given in snake_case (``scan_limit``),
        kebab-case (``scan-limit``) or camelCase (``scanLimit``). Timeframes
        may be integers (seconds) or strings such as ``"10m"``. The result is
        checked again by ``__post_init__``, so direct construction is held to
        the same rules.

        Raises:
            ConfigurationError: On a missing host or port, a malformed value,
                or an unrecognized option
        """
        if options is None:
            raise ConfigurationError("host is required")

        normalized: Dict[str, Any] = {}
        for key, value in options.items():
            normalized[_normalize_option_name(key)] = value

        unknown = sorted(set(normalized) - RECOGNIZED_OPTIONS)
        if unknown:
            raise ConfigurationError(f"Unrecognized option(s): {', '.join(unknown)}")

        if not normalized.get("host"):
            raise ConfigurationError("host is required")
        if normalized.get("port") is None:
            raise ConfigurationError("port is required")

        kwargs: Dict[str, Any] = {"host": normalized["host"], "port": _parse_int("port", normalized["port"], 1)}

        for option in ("name", "password", "pattern"):
            if normalized.get(option) is not None:
                kwargs[option] = normalized[option]

        if normalized.get("db") is not None:
            kwargs["db"] = _parse_int("db", normalized["db"], 0)

        if normalized.get("scan_batch") is not None:
            kwargs["scan_batch"] = _parse_int("scan_batch", normalized["scan_batch"], 1)
        if normalized.get("scan_limit") is not None:
            kwargs["scan_limit"] = _parse_int("scan_limit", normalized["scan_limit"], 0)
        if normalized.get("limit") is not None:
            kwargs["limit"] = _parse_int("limit", normalized["limit"], 0)

        for option in TIMEFRAME_OPTIONS:
            if option in normalized:
                kwargs[option] = parse_timeframe(option.replace("_", "-"), normalized[option])

        for flag in ("no_expiry", "debug"):
            if flag in normalized:
                kwargs[flag] = bool(normalized[flag])

        return cls(**kwargs)

    @property
    def source(self) -> str:
        """Identifier reported with every record: the Sentinel name, or host:port."""
        if self.name:
            return self.name
        return f"{self.host}:{self.port}"

    @property
    def bounds(self) -> SelectBounds:
        return SelectBounds(
            max_idle=self.max_idle,
            min_idle=self.min_idle,
            max_ttl=self.max_ttl,
            min_ttl=self.min_ttl,
            no_expiry=self.no_expiry,
        )

    @property
    def include_ttl(self) -> bool:
        return self.bounds.include_ttl

    def to_dict(self) -> Dict[str, Any]:
        """Echo the configuration for summaries and logs, without the password."""
        echoed = asdict(self)
        echoed.pop("password")
        return echoed
