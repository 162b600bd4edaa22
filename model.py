from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, Iterable, List, Optional, Tuple, Union


# -----------------------
# Positions
# -----------------------
class Position(str, Enum):
    TOP = "top"
    JUNGLE = "jungle"
    MID = "mid"
    BOTTOM = "bottom"
    SUPPORT = "support"

    @classmethod
    def from_client(cls, value: Optional[str]) -> Optional["Position"]:
        """
        Client vocabulary (champ-select assignedPosition):
          TOP / JUNGLE / MIDDLE / BOTTOM / UTILITY
        Blind pick queues report "" here, so unknown values map to None.
        """
        return _FROM_CLIENT.get((value or "").strip().upper())

    @classmethod
    def from_site(cls, value: Optional[str]) -> Optional["Position"]:
        # OP.GG uses TOP / JUNGLE / MID / ADC / SUPPORT, lowercase in URLs
        return _FROM_SITE.get((value or "").strip().upper())

    def to_client(self) -> str:
        return _TO_CLIENT[self]

    def to_site(self) -> str:
        return _TO_SITE[self]

    def site_slug(self) -> str:
        return _TO_SITE[self].lower()


_TO_CLIENT: Dict[Position, str] = {
    Position.TOP: "TOP",
    Position.JUNGLE: "JUNGLE",
    Position.MID: "MIDDLE",
    Position.BOTTOM: "BOTTOM",
    Position.SUPPORT: "UTILITY",
}
_TO_SITE: Dict[Position, str] = {
    Position.TOP: "TOP",
    Position.JUNGLE: "JUNGLE",
    Position.MID: "MID",
    Position.BOTTOM: "ADC",
    Position.SUPPORT: "SUPPORT",
}
_FROM_CLIENT = {v: k for k, v in _TO_CLIENT.items()}
_FROM_SITE = {v: k for k, v in _TO_SITE.items()}

ALL_POSITIONS: Tuple[Position, ...] = tuple(Position)


def champion_slug(alias: str, name: str = "") -> str:
    """
    Site slug for a champion: client alias ("MonkeyKing") or display name,
    lowercased with spaces turned into dashes.
    """
    s = alias or name or ""
    return s.strip().lower().replace(" ", "-")


def cache_key(champion: str, position: Position) -> str:
    return f"{champion}:{position.value}"


# -----------------------
# Session state
# -----------------------
@dataclass(frozen=True)
class PlayerInfo:
    game_name: str
    tag_line: str = ""
    puuid: str = ""
    rank_tier: str = ""
    rank_division: str = ""
    rank_lp: int = 0

    @property
    def riot_id(self) -> str:
        return f"{self.game_name}#{self.tag_line}" if self.tag_line else self.game_name

    @property
    def rank_label(self) -> str:
        tier = (self.rank_tier or "").upper()
        if tier in {"", "NA", "NONE", "UNRANKED"}:
            return "Unranked"
        if tier in {"MASTER", "GRANDMASTER", "CHALLENGER"}:
            return f"{tier.title()} {self.rank_lp} LP"
        return f"{tier.title()} {self.rank_division} {self.rank_lp} LP"


@dataclass(frozen=True)
class RosterSlot:
    cell_id: int
    summoner_id: int
    champion_id: int
    is_ally: bool
    position: Optional[Position] = None
    pick_intent_id: int = 0
    champion_key: str = ""   # site slug, "" while nothing is locked/hovered
    champion_name: str = ""
    player: Optional[PlayerInfo] = None

    @property
    def shown_champion_id(self) -> int:
        # hover (pick intent) until the champion is locked in
        return self.champion_id or self.pick_intent_id


@dataclass(frozen=True)
class Disconnected:
    kind: ClassVar[str] = "disconnected"


@dataclass(frozen=True)
class ConnectedIdle:
    kind: ClassVar[str] = "connected_idle"
    phase: str = ""


class _Teams:
    """Lane helpers shared by the two states that carry a roster."""

    self_champion: Optional[RosterSlot]
    allies: Tuple[RosterSlot, ...]
    enemies: Tuple[RosterSlot, ...]

    @property
    def positions(self) -> Dict[int, Optional[Position]]:
        return {s.cell_id: s.position for s in self.allies + self.enemies}

    @property
    def my_position(self) -> Optional[Position]:
        return self.self_champion.position if self.self_champion else None

    @property
    def lane_opponent(self) -> Optional[RosterSlot]:
        pos = self.my_position
        if pos is None:
            return None
        return next((e for e in self.enemies if e.position == pos), None)

    @property
    def has_roster(self) -> bool:
        return bool(self.allies or self.enemies)


@dataclass(frozen=True)
class ChampSelect(_Teams):
    kind: ClassVar[str] = "champ_select"
    self_champion: Optional[RosterSlot] = None
    allies: Tuple[RosterSlot, ...] = ()
    enemies: Tuple[RosterSlot, ...] = ()
    local_cell_id: Optional[int] = None


@dataclass(frozen=True)
class InGame(_Teams):
    """Loaded game; the roster stays empty until the gameflow session has teams."""

    kind: ClassVar[str] = "in_game"
    phase: str = ""
    self_champion: Optional[RosterSlot] = None
    allies: Tuple[RosterSlot, ...] = ()
    enemies: Tuple[RosterSlot, ...] = ()


SessionState = Union[Disconnected, ConnectedIdle, ChampSelect, InGame]


# -----------------------
# Matchups
# -----------------------
@dataclass(frozen=True)
class MatchupRecord:
    champion: str
    counter_champion: str
    position: Position
    win_rate: float
    games_played: int
    fetched_at: float  # unix seconds

    def __post_init__(self):
        if not (0.0 <= self.win_rate <= 1.0) or math.isnan(self.win_rate):
            raise ValueError(f"win_rate out of range: {self.win_rate!r}")
        if self.games_played < 0:
            raise ValueError(f"games_played must be >= 0: {self.games_played!r}")

    def to_dict(self) -> Dict[str, object]:
        # champion/position live in the cache key
        return {
            "counter": self.counter_champion,
            "win_rate": self.win_rate,
            "games": self.games_played,
            "fetched_at": self.fetched_at,
        }

    @classmethod
    def from_dict(cls, champion: str, position: Position, raw: Dict[str, object]) -> "MatchupRecord":
        return cls(
            champion=champion,
            counter_champion=str(raw["counter"]),
            position=position,
            win_rate=float(raw["win_rate"]),
            games_played=int(raw["games"]),
            fetched_at=float(raw["fetched_at"]),
        )


def sort_records(records: Iterable[MatchupRecord]) -> Tuple[MatchupRecord, ...]:
    """Highest win rate first; ties by sample size, then name, so order is stable."""
    return tuple(sorted(records, key=lambda r: (-r.win_rate, -r.games_played, r.counter_champion)))


@dataclass
class MatchRow:
    game_id: int
    win: bool
    champion_id: int
    queue_id: int
    k: int
    d: int
    a: int
    cs: int
    duration_min: int
    created_ms: int = 0

    @property
    def kda_str(self) -> str:
        return f"{self.k}/{self.d}/{self.a}"

    @property
    def kda(self) -> float:
        return (self.k + self.a) / max(1, self.d)

    @property
    def cs_per_min(self) -> float:
        return self.cs / max(1, self.duration_min)


# -----------------------
# Bulk refresh
# -----------------------
class UnitStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class RefreshUnit:
    champion: str
    position: Position
    attempts: int = 0
    status: UnitStatus = UnitStatus.PENDING
    error: str = ""
    records: int = 0

    @property
    def key(self) -> str:
        return cache_key(self.champion, self.position)

    @property
    def retried(self) -> bool:
        return self.attempts > 1


@dataclass
class RefreshSummary:
    total: int
    units: List[RefreshUnit] = field(default_factory=list)
    cancelled: bool = False
    elapsed: float = 0.0

    def _with(self, status: UnitStatus) -> List[RefreshUnit]:
        return [u for u in self.units if u.status == status]

    @property
    def succeeded(self) -> List[RefreshUnit]:
        return [u for u in self._with(UnitStatus.SUCCEEDED) if not u.retried]

    @property
    def retried_then_succeeded(self) -> List[RefreshUnit]:
        return [u for u in self._with(UnitStatus.SUCCEEDED) if u.retried]

    @property
    def failed(self) -> List[RefreshUnit]:
        return self._with(UnitStatus.FAILED)

    @property
    def skipped(self) -> List[RefreshUnit]:
        return self._with(UnitStatus.SKIPPED)

    @property
    def completed(self) -> int:
        return self.total - len(self.skipped)

    def describe(self) -> str:
        text = (
            f"{len(self.succeeded)} ok, {len(self.retried_then_succeeded)} ok after retry, "
            f"{len(self.failed)} failed, {len(self.skipped)} skipped of {self.total}"
        )
        return text + (" (cancelled)" if self.cancelled else "")
