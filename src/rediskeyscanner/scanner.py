"""Async keyspace scanner: iterate, enrich, select, and stream results."""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Union

import psutil

from . import __version__
from .config import ScanConfiguration
from .connection import RedisConnection
from .errors import ScanConnectionError
from .iterator import PatternIterator
from .logging import log_with_context, setup_logging
from .selector import select


def get_memory_usage_mb() -> float:
    """Get current memory usage in MB."""
    return psutil.Process().memory_info().rss / 1024 / 1024


class ScanPhase(enum.Enum):
    IDLE = "idle"
    ITERATING = "iterating"
    DRAINING = "draining"
    ENDED = "ended"
    ERRORED = "errored"


class StopReason(str, enum.Enum):
    EXHAUSTED = "exhausted"
    SCAN_LIMIT = "scan_limit"
    SELECT_LIMIT = "select_limit"


@dataclass(frozen=True)
class KeyRecord:
    """A selected key. ``ttl`` is only set when a TTL bound is configured."""

    name: str
    key: str
    idletime: int
    ttl: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"name": self.name, "key": self.key, "idletime": self.idletime}
        if self.ttl is not None:
            record["ttl"] = self.ttl
        return record


@dataclass(frozen=True)
class ScanSummary:
    """Final counts of a completed scan, with the configuration that produced them."""

    keys_scanned: int
    keys_selected: int
    duration_seconds: float
    keys_per_second: float
    stop_reason: StopReason
    options: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keys_scanned": self.keys_scanned,
            "keys_selected": self.keys_selected,
            "duration_seconds": self.duration_seconds,
            "keys_per_second": self.keys_per_second,
            "stop_reason": self.stop_reason.value,
            "options": self.options,
        }


@dataclass
class ScanState:
    """
    Mutable counters of one scan.

    Only the scanner touches this. Counter updates go through ``lock`` so the
    select-limit latch is checked, incremented and set as one step even when
    several batches finish enrichment at once.
    """

    keys_scanned: int = 0
    keys_selected: int = 0
    keys_vanished: int = 0
    at_select_limit: bool = False
    in_flight: Set["asyncio.Task[None]"] = field(default_factory=set)
    failure: Optional[BaseException] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def add_scanned(self, count: int) -> int:
        async with self.lock:
            self.keys_scanned += count
            return self.keys_scanned

    async def try_select(self, limit: int) -> bool:
        """
        Claim one selection slot.

        Returns:
            False if the select limit was already reached, otherwise True
            (setting the latch when this selection reaches the limit)
        """
        async with self.lock:
            if self.at_select_limit:
                return False
            self.keys_selected += 1
            if limit and self.keys_selected >= limit:
                self.at_select_limit = True
            return True

    def track(self, task: "asyncio.Task[None]") -> None:
        self.in_flight.add(task)
        task.add_done_callback(self._on_task_done)

    def record_outcome(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and self.failure is None:
            self.failure = exc

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        self.in_flight.discard(task)
        self.record_outcome(task)


EVENTS = ("data", "end", "error")


class ResultEmitter:
    """
    Subscription point for scan results.

    Events:
        data: one KeyRecord per selected key
        end: the ScanSummary, exactly once on success
        error: the ScanConnectionError, instead of ``end``, on failure

    Handlers are called synchronously in subscription order.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable[[Any], None]]] = {event: [] for event in EVENTS}

    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        if event not in self._handlers:
            raise ValueError(f"Unknown event {event!r}, expected one of {', '.join(EVENTS)}")
        self._handlers[event].append(handler)

    def has_subscribers(self, event: str) -> bool:
        return bool(self._handlers.get(event))

    def emit(self, event: str, payload: Any) -> None:
        for handler in list(self._handlers[event]):
            handler(payload)


class KeyScanner:
    """
    Non-destructive scanner selecting keys by pattern, idle time and TTL.

    Pipeline per SCAN page:
    - count the page as scanned as soon as it is delivered
    - fetch its metadata in a background task, so the next page is
      requested while the previous one is still being enriched
    - select keys from the metadata and emit a record per match
    - stop iterating once the scan limit is reached or the select limit latch
      is set, then wait for every in-flight task before the summary

    Keys are never read or written. See ``fetch_metadata`` for the TTL side
    effect on idle time.
    """

    def __init__(
        self,
        config: Union[ScanConfiguration, Mapping[str, Any]],
        connection: Optional[Any] = None,
        log_level: str = "INFO",
    ):
        """
        Initialize the scanner. No I/O happens until ``run()``.

        Args:
            config: A ScanConfiguration, or a mapping of options to validate
            connection: Connection to scan through (default: RedisConnection for config)
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR); ``debug`` forces DEBUG

        Raises:
            ConfigurationError: If the options are invalid
        """
        if not isinstance(config, ScanConfiguration):
            config = ScanConfiguration.from_options(config)

        self.config = config
        self.connection = connection if connection is not None else RedisConnection(config)
        self.emitter = ResultEmitter()

        self.phase = ScanPhase.IDLE
        self.state = ScanState()
        self.stop_reason: Optional[StopReason] = None
        self.summary: Optional[ScanSummary] = None
        self.start_time: Optional[float] = None

        self.logger = setup_logging("rediskeyscanner", "DEBUG" if config.debug else log_level)

        # Progress tracking
        self.progress_interval = 30  # Log progress every 30 seconds

    def on(self, event: str, handler: Callable[[Any], None]) -> "KeyScanner":
        """Subscribe to ``data``, ``end`` or ``error``. Returns self for chaining."""
        self.emitter.on(event, handler)
        return self

    def _scan_limit_reached(self, keys_scanned: int) -> bool:
        return self.config.scan_limit > 0 and keys_scanned >= self.config.scan_limit

    def _should_stop_scanning(self) -> bool:
        return self.state.at_select_limit or self.state.failure is not None

    async def _process_batch(self, batch: Sequence[str]) -> None:
        """Enrich one batch and emit records for the selected keys."""
        if self.state.at_select_limit:
            self.logger.debug(f"Select limit reached, skipping batch of {len(batch)} keys")
            return

        metadata = await self.connection.batch_get_metadata(batch, self.config.include_ttl)
        bounds = self.config.bounds

        for key, meta in zip(batch, metadata):
            if self.state.at_select_limit:
                break

            if meta.vanished:
                async with self.state.lock:
                    self.state.keys_vanished += 1
                self.logger.debug(f"Key vanished before enrichment: {key}")
                continue

            if not select(meta.idletime, meta.ttl, bounds):
                continue

            if not await self.state.try_select(self.config.limit):
                break

            self.emitter.emit("data", KeyRecord(name=self.config.source, key=key, idletime=meta.idletime, ttl=meta.ttl))

    async def _iterate(self) -> None:
        iterator: PatternIterator = self.connection.iterate_keys(
            self.config.pattern, self.config.scan_batch, should_stop=self._should_stop_scanning
        )

        async for batch in iterator:
            if self.state.failure is not None:
                raise self.state.failure

            keys_scanned = await self.state.add_scanned(len(batch))
            self.state.track(asyncio.create_task(self._process_batch(batch)))
            self.logger.debug(f"Dispatched batch of {len(batch)} keys ({keys_scanned} scanned)")

            if self.state.at_select_limit:
                self.stop_reason = StopReason.SELECT_LIMIT
            elif self._scan_limit_reached(keys_scanned):
                self.stop_reason = StopReason.SCAN_LIMIT

            if self.stop_reason is not None:
                iterator.pause()
                self._log_stop(keys_scanned)
                return

        # Stopped between deliveries, possibly after a run of empty pages
        if self.state.failure is not None:
            raise self.state.failure

        if iterator.paused and self.state.at_select_limit:
            self.stop_reason = StopReason.SELECT_LIMIT
            self._log_stop(self.state.keys_scanned)
            return

        self.stop_reason = StopReason.EXHAUSTED

    def _log_stop(self, keys_scanned: int) -> None:
        log_with_context(
            self.logger,
            "info",
            "Limit reached, stopping scan",
            {"stop_reason": self.stop_reason.value, "keys_scanned": keys_scanned},
        )

    async def _drain(self) -> None:
        """Wait for every in-flight enrichment task so the final counts are exact."""
        while self.state.in_flight and self.state.failure is None:
            done, _ = await asyncio.wait(list(self.state.in_flight), return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                self.state.record_outcome(task)

        if self.state.failure is not None:
            raise self.state.failure

    async def _abort(self) -> None:
        """Cancel in-flight enrichment after a fatal failure."""
        tasks = list(self.state.in_flight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _background_progress_reporter(self) -> None:
        """Log progress every N seconds while the scan runs."""
        while True:
            await asyncio.sleep(self.progress_interval)

            async with self.state.lock:
                elapsed = time.time() - (self.start_time or time.time())
                progress_data = {
                    "elapsed_seconds": round(elapsed, 1),
                    "phase": self.phase.value,
                    "keys_scanned": self.state.keys_scanned,
                    "keys_selected": self.state.keys_selected,
                    "keys_per_second": round(self.state.keys_scanned / elapsed, 1) if elapsed > 0 else 0.0,
                    "batches_in_flight": len(self.state.in_flight),
                    "memory_mb": round(get_memory_usage_mb(), 1),
                }

            log_with_context(self.logger, "info", "Progress update", progress_data)

    def _build_summary(self) -> ScanSummary:
        duration = time.time() - (self.start_time or time.time())
        keys_scanned = self.state.keys_scanned
        return ScanSummary(
            keys_scanned=keys_scanned,
            keys_selected=self.state.keys_selected,
            duration_seconds=round(duration, 2),
            keys_per_second=round(keys_scanned / duration, 2) if duration > 0 else 0.0,
            stop_reason=self.stop_reason or StopReason.EXHAUSTED,
            options=self.config.to_dict(),
        )

    async def run(self) -> Optional[ScanSummary]:
        """
        Run the scan to completion.

        Emits ``data`` per selected key, then exactly one of ``end`` or
        ``error``. The connection is released on every path.

        Returns:
            The summary, or None if the scan failed and an ``error`` handler
            was subscribed

        Raises:
            ScanConnectionError: On connection failure when nobody subscribed to ``error``
            RuntimeError: If the scanner already ran
        """
        if self.phase is not ScanPhase.IDLE:
            raise RuntimeError(f"Scanner cannot run from phase {self.phase.value!r}")

        self.phase = ScanPhase.ITERATING
        self.start_time = time.time()

        log_with_context(
            self.logger,
            "info",
            "Starting key scan",
            {"version": __version__, "source": self.config.source, **self.config.to_dict()},
        )

        progress_task = asyncio.create_task(self._background_progress_reporter())

        try:
            try:
                await self.connection.connect()
                await self._iterate()
                self.phase = ScanPhase.DRAINING
                await self._drain()
            except BaseException:
                await self._abort()
                self.phase = ScanPhase.ERRORED
                raise
            finally:
                progress_task.cancel()
                try:
                    await progress_task
                except asyncio.CancelledError:
                    pass  # Expected

            self.summary = self._build_summary()
            self.phase = ScanPhase.ENDED

            completion = self.summary.to_dict()
            if self.logger.isEnabledFor(logging.DEBUG):
                completion["keys_vanished"] = self.state.keys_vanished
            log_with_context(self.logger, "info", "Key scan completed", completion)

            self.emitter.emit("end", self.summary)
            return self.summary

        except ScanConnectionError as e:
            log_with_context(
                self.logger,
                "warning",
                "Key scan aborted",
                {
                    "source": self.config.source,
                    "error": e.message,
                    "keys_scanned": self.state.keys_scanned,
                    "keys_selected": self.state.keys_selected,
                },
            )
            if not self.emitter.has_subscribers("error"):
                raise
            self.emitter.emit("error", e)
            return None

        finally:
            await self.connection.close()


async def async_main(
    options: Mapping[str, Any],
    on_record: Optional[Callable[[KeyRecord], None]] = None,
    on_error: Optional[Callable[[ScanConnectionError], None]] = None,
    log_level: str = "INFO",
) -> Optional[ScanSummary]:
    """
    Async entry point for the scanner.

    Args:
        options: Scan options, validated into a ScanConfiguration
        on_record: Called for each selected key
        on_error: Called on connection failure (otherwise the error is raised)
        log_level: Logging level

    Returns:
        The scan summary, or None on a handled connection failure
    """
    scanner = KeyScanner(options, log_level=log_level)
    if on_record is not None:
        scanner.on("data", on_record)
    if on_error is not None:
        scanner.on("error", on_error)

    return await scanner.run()
