from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from errors import CacheCorrupt
from model import ALL_POSITIONS, MatchupRecord, Position, cache_key, sort_records

logger = logging.getLogger(__name__)

CACHE_VERSION = 1


@dataclass(frozen=True)
class CacheEntry:
    records: Tuple[MatchupRecord, ...]
    fetched_at: float


@dataclass(frozen=True)
class CacheLookup:
    champion: str
    position: Position
    records: Tuple[MatchupRecord, ...]
    fetched_at: float
    age: float  # seconds


class MatchupCache:
    """
    (champion, position) -> counters, persisted as one JSON document.

    Each key has its own lock and entries are immutable snapshots, so a lookup
    never waits for a merge on another key. Writes go to a temp file that is
    swapped in with os.replace, and loading validates entries one by one, so a
    bad entry (or a torn write from an older version) only costs that entry.
    """

    def __init__(self, path: Optional[Path] = None, autoflush: bool = True, clock: Callable[[], float] = time.time):
        self.path = Path(path) if path else None
        self.autoflush = autoflush
        self.clock = clock
        self.last_full_refresh: float = 0.0
        self._entries: Dict[str, CacheEntry] = {}
        self._names: Dict[str, str] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._flush_lock = threading.Lock()
        self._dirty = False

    @classmethod
    def open(cls, path: Path, **kwargs: Any) -> "MatchupCache":
        cache = cls(path, **kwargs)
        cache.load()
        return cache

    def _lock_for(self, key: str) -> threading.Lock:
        lock = self._locks.get(key)
        if lock is None:
            with self._locks_guard:
                lock = self._locks.setdefault(key, threading.Lock())
        return lock

    # -----------------------
    # Load
    # -----------------------
    def load(self) -> None:
        if self.path is None:
            return
        try:
            doc = self._read_document(self.path)
        except FileNotFoundError:
            logger.info("No cache at %s yet, starting empty", self.path)
            return
        except (OSError, CacheCorrupt) as e:
            logger.warning("Ignoring cache %s: %s", self.path, e)
            return

        dropped = 0
        for key, raw in (doc.get("entries") or {}).items():
            try:
                self._entries[key] = self._decode_entry(key, raw)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                dropped += 1
                logger.debug("Dropping cache entry %r: %s", key, e)
        if dropped:
            logger.warning("Dropped %d malformed cache entries from %s", dropped, self.path)

        try:
            self.last_full_refresh = float(doc.get("last_full_refresh") or 0.0)
        except (TypeError, ValueError):
            self.last_full_refresh = 0.0
        names = doc.get("champions")
        if isinstance(names, dict):
            self._names = {str(k): str(v) for k, v in names.items()}
        logger.info("Loaded %d cache entries from %s", len(self._entries), self.path)

    @staticmethod
    def _read_document(path: Path) -> Dict[str, Any]:
        text = path.read_text(encoding="utf-8")
        try:
            doc = json.loads(text)
        except ValueError as e:
            raise CacheCorrupt(f"not JSON: {e}") from e
        if not isinstance(doc, dict):
            raise CacheCorrupt("top level is not an object")
        if doc.get("version", CACHE_VERSION) != CACHE_VERSION:
            raise CacheCorrupt(f"unsupported version {doc.get('version')!r}")
        if not isinstance(doc.get("entries", {}), dict):
            raise CacheCorrupt("entries is not an object")
        return doc

    @staticmethod
    def _decode_entry(key: str, raw: Dict[str, Any]) -> CacheEntry:
        champion, pos = key.rsplit(":", 1)
        position = Position(pos)
        records = sort_records(MatchupRecord.from_dict(champion, position, r) for r in raw["records"])
        return CacheEntry(records=records, fetched_at=float(raw["fetched_at"]))

    # -----------------------
    # Queries
    # -----------------------
    def lookup(self, champion: str, position: Position, now: Optional[float] = None) -> Optional[CacheLookup]:
        entry = self._entries.get(cache_key(champion, position))
        if entry is None:
            return None
        now = self.clock() if now is None else now
        return CacheLookup(
            champion=champion,
            position=position,
            records=entry.records,
            fetched_at=entry.fetched_at,
            age=max(0.0, now - entry.fetched_at),
        )

    def lookup_any_position(self, champion: str, preferred: Optional[Position] = None) -> Optional[CacheLookup]:
        """Preferred position first, then whatever position the champion has data for."""
        order = ([preferred] if preferred else []) + [p for p in ALL_POSITIONS if p != preferred]
        for position in order:
            found = self.lookup(champion, position)
            if found:
                return found
        return None

    def is_stale(self, champion: str, position: Position, max_age: float) -> bool:
        found = self.lookup(champion, position)
        return found is None or found.age > max_age

    def full_refresh_age(self, now: Optional[float] = None) -> Optional[float]:
        if self.last_full_refresh <= 0:
            return None
        now = self.clock() if now is None else now
        return max(0.0, now - self.last_full_refresh)

    def needs_full_refresh(self, max_age: float) -> bool:
        age = self.full_refresh_age()
        return age is None or age > max_age

    def champion_name(self, key: str) -> str:
        return self._names.get(key, key)

    def keys(self) -> List[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    # -----------------------
    # Mutation
    # -----------------------
    def merge(
        self,
        champion: str,
        position: Position,
        records: Iterable[MatchupRecord],
        fetched_at: Optional[float] = None,
        flush: bool = True,
    ) -> bool:
        """
        Replace the entry for (champion, position). Returns False when the
        stored entry is already identical, in which case nothing is written.
        With flush=False the write is left to the caller's next flush().
        """
        recs = sort_records(records)
        for r in recs:
            if r.champion != champion or r.position != position:
                raise ValueError(f"record {r.champion}/{r.position.value} merged under {champion}/{position.value}")
        if fetched_at is None:
            fetched_at = max((r.fetched_at for r in recs), default=self.clock())
        entry = CacheEntry(records=recs, fetched_at=fetched_at)

        key = cache_key(champion, position)
        with self._lock_for(key):
            if self._entries.get(key) == entry:
                return False
            self._entries[key] = entry
            self._dirty = True

        if flush and self.autoflush:
            self.flush()
        return True

    def mark_full_refresh(self, when: Optional[float] = None) -> None:
        self.last_full_refresh = self.clock() if when is None else when
        self._dirty = True
        if self.autoflush:
            self.flush()

    def set_champion_names(self, names: Dict[str, str]) -> None:
        merged = {**self._names, **names}
        if merged != self._names:
            self._names = merged
            self._dirty = True

    # -----------------------
    # Persistence
    # -----------------------
    def to_document(self) -> Dict[str, Any]:
        entries = dict(self._entries)
        return {
            "version": CACHE_VERSION,
            "last_full_refresh": self.last_full_refresh,
            "champions": dict(self._names),
            "entries": {
                key: {
                    "fetched_at": e.fetched_at,
                    "records": [r.to_dict() for r in e.records],
                }
                for key, e in sorted(entries.items())
            },
        }

    def flush(self) -> bool:
        if self.path is None:
            return False
        with self._flush_lock:
            if not self._dirty and self.path.exists():
                return False
            self._dirty = False
            doc = self.to_document()
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp = tempfile.mkstemp(prefix=self.path.name, suffix=".tmp", dir=str(self.path.parent))
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        json.dump(doc, f, ensure_ascii=False)
                    os.replace(tmp, self.path)
                except BaseException:
                    os.unlink(tmp)
                    raise
            except OSError as e:
                self._dirty = True
                logger.error("Could not write cache %s: %s", self.path, e)
                return False
        logger.debug("Flushed %d cache entries to %s", len(doc["entries"]), self.path)
        return True
