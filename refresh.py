"""
Full-matrix refresh: every (champion, position) counter page, at most N in
flight, each result merged into the cache the moment it arrives and written
to disk in batches.
"""
from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import requests

from cache import MatchupCache
from ddragon import get_champion_slugs, get_latest_version
from errors import ExtractionError, RateLimited, RefreshAlreadyRunning
from events import EventBus, ItemFailed, RefreshComplete, RefreshProgress
from model import ALL_POSITIONS, MatchupRecord, Position, RefreshSummary, RefreshUnit, UnitStatus
from opgg import ChampionEntry, MatchupExtractor

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
MAX_ATTEMPTS = 3
BACKOFF_BASE = 1.0  # seconds: 1, 2, 4 ...
MAX_BACKOFF = 30.0
FLUSH_EVERY = 50        # merges between cache writes
FLUSH_INTERVAL = 15.0   # seconds between cache writes

_Outcome = Tuple[RefreshUnit, Optional[List[MatchupRecord]], Optional[BaseException]]


class _Dispatched:
    """Sentinel: the dispatcher is done and submitted ``count`` units."""

    def __init__(self, count: int):
        self.count = count


def build_matrix(champions: Iterable[str], positions: Sequence[Position] = ALL_POSITIONS) -> List[RefreshUnit]:
    return [RefreshUnit(champion=c, position=p) for c in champions for p in positions]


def matrix_from_listing(entries: Iterable[ChampionEntry]) -> List[RefreshUnit]:
    """Only the positions the site lists each champion in."""
    seen = set()
    units = []
    for e in entries:
        if e.position is None or (e.key, e.position) in seen:
            continue
        seen.add((e.key, e.position))
        units.append(RefreshUnit(champion=e.key, position=e.position))
    return units


class BulkRefreshCoordinator:
    def __init__(
        self,
        extractor: MatchupExtractor,
        cache: MatchupCache,
        bus: Optional[EventBus] = None,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_base: float = BACKOFF_BASE,
        max_backoff: float = MAX_BACKOFF,
        flush_every: int = FLUSH_EVERY,
        flush_interval: float = FLUSH_INTERVAL,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        self.extractor = extractor
        self.cache = cache
        self.bus = bus or EventBus()
        self.concurrency = max(1, concurrency)
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.max_backoff = max_backoff
        self.flush_every = max(1, flush_every)
        self.flush_interval = flush_interval

        self._cancel = threading.Event()
        self._run_lock = threading.Lock()
        # backoff waits wake up early on cancel
        self.sleep = sleep or self._cancel.wait

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """
        Stop scheduling new units; whatever is in flight still lands in the
        cache. A cancel requested while idle applies to the next run, so a
        shutdown that races a starting refresh still stops it.
        """
        logger.info("Refresh cancellation requested%s", "" if self.running else " (idle)")
        self._cancel.set()

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._run_lock.acquire(blocking=False):
            raise RefreshAlreadyRunning("a bulk refresh is already running")
        try:
            yield
        finally:
            # the request is used up by this run, the next one starts clean
            self._cancel.clear()
            self._run_lock.release()

    # -----------------------
    # Entry points
    # -----------------------
    def refresh_all(self, full_matrix: bool = True) -> RefreshSummary:
        with self._exclusive():
            units: List[RefreshUnit] = []
            names: Dict[str, str] = {}
            try:
                entries = self.extractor.fetch_champion_list()
                names = {e.key: e.name for e in entries}
                if not full_matrix:
                    units = matrix_from_listing(entries)
            except ExtractionError as e:
                if self._cancel.is_set():
                    logger.info("Champion listing unavailable (%s) and refresh cancelled", e)
                else:
                    logger.warning("Champion listing unavailable (%s), using Data Dragon roster", e)
                    try:
                        names = get_champion_slugs(get_latest_version())
                    except (requests.RequestException, ValueError, KeyError) as dd_err:
                        logger.error("No champion roster available: %s", dd_err)

            if names:
                self.cache.set_champion_names(names)
            if not units:
                units = build_matrix(sorted(names))
            return self._run(units)

    def run(self, units: List[RefreshUnit]) -> RefreshSummary:
        with self._exclusive():
            return self._run(units)

    # -----------------------
    # Fan-out / fan-in
    # -----------------------
    def _run(self, units: List[RefreshUnit]) -> RefreshSummary:
        started = time.monotonic()
        total = len(units)
        results: "queue.Queue[object]" = queue.Queue()
        slots = threading.BoundedSemaphore(self.concurrency)
        if self._cancel.is_set():
            logger.info("Bulk refresh cancelled before scheduling %d units", total)
        else:
            logger.info("Bulk refresh: %d units, %d in flight max", total, self.concurrency)

        unflushed = 0
        last_flush = started
        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="refresh") as pool:
            dispatcher = threading.Thread(
                target=self._dispatch,
                args=(units, pool, slots, results),
                name="refresh-dispatch",
                daemon=True,
            )
            dispatcher.start()

            dispatched: Optional[int] = None
            completed = 0
            while dispatched is None or completed < dispatched:
                item = results.get()
                if isinstance(item, _Dispatched):
                    dispatched = item.count
                    continue
                unit, records, error = item  # type: ignore[misc]
                completed += 1
                if self._commit(unit, records, error):
                    unflushed += 1
                if unflushed and (
                    unflushed >= self.flush_every or time.monotonic() - last_flush >= self.flush_interval
                ):
                    self.cache.flush()
                    unflushed, last_flush = 0, time.monotonic()
                self.bus.publish(RefreshProgress(completed=completed, total=total, label=unit.key))
            dispatcher.join()

        for unit in units:
            if unit.status == UnitStatus.PENDING:
                unit.status = UnitStatus.SKIPPED

        summary = RefreshSummary(
            total=total,
            units=list(units),
            cancelled=self._cancel.is_set(),
            elapsed=time.monotonic() - started,
        )
        if not summary.cancelled and (summary.succeeded or summary.retried_then_succeeded):
            self.cache.mark_full_refresh()
        self.cache.flush()

        logger.info("Bulk refresh done in %.1fs: %s", summary.elapsed, summary.describe())
        self.bus.publish(RefreshComplete(summary=summary))
        return summary

    def _dispatch(
        self,
        units: List[RefreshUnit],
        pool: ThreadPoolExecutor,
        slots: threading.BoundedSemaphore,
        results: "queue.Queue[object]",
    ) -> None:
        count = 0
        try:
            for unit in units:
                if self._cancel.is_set():
                    break
                slots.acquire()
                if self._cancel.is_set():
                    slots.release()
                    break
                pool.submit(self._work, unit, slots, results)
                count += 1
        finally:
            if self._cancel.is_set():
                logger.info("Refresh cancelled after scheduling %d/%d units", count, len(units))
            results.put(_Dispatched(count))

    def _work(self, unit: RefreshUnit, slots: threading.BoundedSemaphore, results: "queue.Queue[object]") -> None:
        outcome: _Outcome
        try:
            outcome = (unit, self._fetch_with_retry(unit), None)
        except ExtractionError as e:
            outcome = (unit, None, e)
        except Exception as e:
            # a parser bug must cost one unit, not hang the fan-in
            logger.exception("Unexpected error refreshing %s", unit.key)
            outcome = (unit, None, e)
        finally:
            slots.release()
        results.put(outcome)

    def _fetch_with_retry(self, unit: RefreshUnit) -> Optional[List[MatchupRecord]]:
        """None when cancellation arrived during a backoff wait."""
        while True:
            unit.attempts += 1
            try:
                return self.extractor.fetch(unit.champion, unit.position)
            except ExtractionError as e:
                if not e.transient or unit.attempts >= self.max_attempts:
                    raise
                delay = self._backoff(unit.attempts, e)
                logger.warning(
                    "%s: %s (attempt %d/%d), retrying in %.1fs",
                    unit.key, e, unit.attempts, self.max_attempts, delay,
                )
                self.sleep(delay)
                if self._cancel.is_set():
                    logger.info("%s: retry abandoned, refresh cancelled", unit.key)
                    return None

    def _backoff(self, attempt: int, error: ExtractionError) -> float:
        delay = self.backoff_base * (2 ** (attempt - 1))
        if isinstance(error, RateLimited) and error.retry_after:
            delay = max(delay, error.retry_after)
        return min(delay, self.max_backoff)

    def _commit(self, unit: RefreshUnit, records: Optional[List[MatchupRecord]], error: Optional[BaseException]) -> bool:
        """Record the outcome; True when the cache changed."""
        if error is None:
            if records is None:
                return False  # abandoned on cancel, reported as skipped
            changed = self.cache.merge(unit.champion, unit.position, records, flush=False)
            unit.status = UnitStatus.SUCCEEDED
            unit.records = len(records)
            logger.debug("%s: %d counters (attempt %d)", unit.key, len(records), unit.attempts)
            return changed

        unit.status = UnitStatus.FAILED
        unit.error = f"{type(error).__name__}: {error}"
        logger.warning("%s failed after %d attempt(s): %s", unit.key, unit.attempts, unit.error)
        self.bus.publish(ItemFailed(
            champion=unit.champion,
            position=unit.position.value,
            error=type(error).__name__,
            message=str(error),
            attempts=unit.attempts,
        ))
        return False
