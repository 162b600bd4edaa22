"""
One ordered channel from the background workers (poller, coordinator) to the
presentation layer. Producers publish from any thread; exactly one consumer
reads, in publish order.
"""
from __future__ import annotations

import queue
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from model import ChampSelect, InGame, MatchRow, RefreshSummary, SessionState


@dataclass(frozen=True)
class PhaseChanged:
    previous: SessionState
    current: SessionState


@dataclass(frozen=True)
class RosterReady:
    state: Union[ChampSelect, InGame]


@dataclass(frozen=True)
class RecentGames:
    games: Tuple[MatchRow, ...]


@dataclass(frozen=True)
class ClientStatus:
    connected: bool
    message: str


@dataclass(frozen=True)
class RefreshProgress:
    completed: int
    total: int
    label: str = ""


@dataclass(frozen=True)
class ItemFailed:
    champion: str
    position: str
    error: str      # exception class name, e.g. "RateLimited"
    message: str
    attempts: int


@dataclass(frozen=True)
class RefreshComplete:
    summary: RefreshSummary


Event = Union[
    PhaseChanged, RosterReady, RecentGames, ClientStatus, RefreshProgress, ItemFailed, RefreshComplete,
]


class EventBus:
    def __init__(self):
        self._q: "queue.Queue[Event]" = queue.Queue()

    def publish(self, event: Event) -> None:
        self._q.put(event)

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        try:
            return self._q.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Event]:
        out: List[Event] = []
        while True:
            try:
                out.append(self._q.get_nowait())
            except queue.Empty:
                return out

    def __len__(self) -> int:
        return self._q.qsize()
