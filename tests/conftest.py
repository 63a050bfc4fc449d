"""Pytest configuration and in-memory Redis fakes."""

import asyncio
import sys
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path

import pytest

# Add src directory to Python path to ensure tests use local source code
# instead of installed package
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from rediskeyscanner.scanner import KeyScanner  # noqa: E402


@dataclass
class FakeKey:
    idletime: int = 0
    ttl: int = -1


class FakePipeline:
    """Queues OBJECT IDLETIME / TTL commands and answers them from the fake keyspace."""

    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.commands = []

    def object(self, infotype, key):
        self.commands.append(("OBJECT " + infotype.upper(), key))
        return self

    def ttl(self, key):
        self.commands.append(("TTL", key))
        return self

    async def execute(self, raise_on_error=True):
        commands = list(self.commands)
        self.redis.pipelines.append(commands)

        await asyncio.sleep(self.redis.pipeline_delay)
        if self.redis.pipeline_error is not None:
            raise self.redis.pipeline_error

        replies = []
        for command, key in commands:
            if (command, key) in self.redis.reply_overrides:
                replies.append(self.redis.reply_overrides[(command, key)])
                continue
            entry = self.redis.keys.get(key)
            if command == "TTL":
                replies.append(-2 if entry is None else entry.ttl)
            else:
                replies.append(None if entry is None else entry.idletime)

        self.redis.completed_pipelines += 1
        return replies


class FakeRedis:
    """
    Just enough of redis.asyncio.Redis for the scanner.

    SCAN walks the sorted key names ``count`` at a time and applies MATCH
    after paging, like Redis does, so pages may come back short or empty.
    """

    def __init__(self, keys=None):
        self.keys = {}
        for name, ttl in (keys or {}).items():
            self.set(name, ttl=ttl)

        self.scan_calls = []
        self.pipelines = []
        self.completed_pipelines = 0
        self.reply_overrides = {}
        self.scan_delay = 0.0
        self.pipeline_delay = 0.0
        self.ping_error = None
        self.scan_error = None
        self.pipeline_error = None
        self.closed = False

    def set(self, name, ttl=-1, idletime=0):
        self.keys[name] = FakeKey(idletime=idletime, ttl=ttl)

    async def ping(self):
        if self.ping_error is not None:
            raise self.ping_error
        return True

    async def scan(self, cursor=0, match=None, count=None):
        self.scan_calls.append(cursor)
        await asyncio.sleep(self.scan_delay)
        if self.scan_error is not None:
            raise self.scan_error

        names = sorted(self.keys)
        count = count or 10
        page = names[cursor : cursor + count]
        next_cursor = cursor + count if cursor + count < len(names) else 0
        return next_cursor, [name for name in page if fnmatchcase(name, match or "*")]

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_redis():
    """An empty fake Redis server."""
    return FakeRedis()


@pytest.fixture
def make_scanner(fake_redis):
    """Build a KeyScanner whose connection talks to ``fake_redis``."""

    def _make(**options):
        options.setdefault("host", "localhost")
        options.setdefault("port", 6379)
        scanner = KeyScanner(options)
        scanner.connection.client = fake_redis
        return scanner

    return _make


@pytest.fixture
def collect():
    """Subscribe to every event of a scanner and return the captured payloads."""

    def _collect(scanner):
        events = {"data": [], "end": [], "error": []}
        for event, payloads in events.items():
            scanner.on(event, payloads.append)
        return events

    return _collect
