"""
Watcher for the local client.

Every poll: find + read the lockfile, ask the client for its gameflow phase,
fold the answer into a SessionState and publish what changed on the EventBus.
A missing client is the normal "not running" case, never an error. The
poller has no thread of its own; app.PollWorker drives poll() from a timer.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from errors import AuthInvalid, ClientUnavailable, InvalidTransition
from events import ClientStatus, EventBus, PhaseChanged, RecentGames, RosterReady
from lcu import LcuAuth, LcuClient, find_lockfile, pick_soloq, read_lockfile
from model import (
    ChampSelect,
    ConnectedIdle,
    Disconnected,
    InGame,
    MatchRow,
    PlayerInfo,
    Position,
    RosterSlot,
    SessionState,
    champion_slug,
)

logger = logging.getLogger(__name__)

IN_GAME_PHASES = {"GameStart", "InProgress", "Reconnect", "WaitingForStats"}

# The order the client normally walks through. Anything else means polls were
# missed (sleep/resume, a slow tick) and the observed state simply wins.
_EXPECTED: Dict[str, set] = {
    Disconnected.kind: {Disconnected.kind, ConnectedIdle.kind, ChampSelect.kind, InGame.kind},
    ConnectedIdle.kind: {Disconnected.kind, ConnectedIdle.kind, ChampSelect.kind, InGame.kind},
    ChampSelect.kind: {Disconnected.kind, ConnectedIdle.kind, ChampSelect.kind, InGame.kind},
    InGame.kind: {Disconnected.kind, ConnectedIdle.kind, InGame.kind},
}


def state_for_phase(phase: str) -> str:
    if phase == "ChampSelect":
        return ChampSelect.kind
    if phase in IN_GAME_PHASES:
        return InGame.kind
    return ConnectedIdle.kind


def next_state(current: SessionState, observed: SessionState) -> SessionState:
    """
    The client is the source of truth: an observed state is always taken,
    a jump outside the usual order is only logged. InvalidTransition is for
    values that are not session states at all.
    """
    kind = getattr(observed, "kind", None)
    if kind not in _EXPECTED:
        raise InvalidTransition(f"{current.kind} -> {observed!r}")
    if kind not in _EXPECTED[current.kind]:
        logger.warning("Unexpected phase jump %s -> %s, resyncing to the client", current.kind, kind)
    return observed


def _roster(state: SessionState) -> Optional[Tuple[Any, ...]]:
    if isinstance(state, (ChampSelect, InGame)):
        return (state.self_champion, state.allies, state.enemies)
    return None


class SessionPoller:
    def __init__(
        self,
        bus: EventBus,
        *,
        lockfile_dir: str = "",
        interval: float = 1.0,
        client_factory: Callable[[LcuAuth], LcuClient] = LcuClient,
        resolve_players: bool = True,
    ):
        self.bus = bus
        self.lockfile_dir = lockfile_dir
        self.interval = interval
        self.client_factory = client_factory
        self.resolve_players = resolve_players

        self.state: SessionState = Disconnected()
        self.summoner: Optional[Dict[str, Any]] = None
        self.recent_games: List[MatchRow] = []
        self._client: Optional[LcuClient] = None
        self._lockfile: Optional[Path] = None
        self._champions: Dict[int, Tuple[str, str]] = {}  # id -> (name, slug)
        self._players: Dict[int, Optional[PlayerInfo]] = {}
        self._status: Optional[Tuple[bool, str]] = None

    @property
    def client(self) -> Optional[LcuClient]:
        return self._client

    def champion_name(self, champion_id: int) -> str:
        entry = self._champions.get(champion_id)
        return entry[0] if entry else ""

    def close(self) -> None:
        self._disconnect(forget_lockfile=True)

    # -----------------------
    # One poll
    # -----------------------
    def poll(self) -> SessionState:
        """tick() for timers: an unexpected error costs this poll, never the next one."""
        try:
            return self.tick()
        except Exception as e:
            logger.exception("Poll failed, reconnecting on the next one")
            self._disconnect(forget_lockfile=True)
            self._apply(Disconnected())
            self._set_status(False, f"Poll failed: {type(e).__name__}: {e}")
            return self.state

    def tick(self) -> SessionState:
        try:
            client = self._connect()
            observed = self._observe(client)
            status = (True, "Connected")
        except AuthInvalid as e:
            logger.warning("%s; re-reading lockfile", e)
            self._disconnect(forget_lockfile=True)
            observed, status = Disconnected(), (False, str(e))
        except ClientUnavailable as e:
            if self.state.kind != Disconnected.kind:
                logger.info("Client went away: %s", e)
            self._disconnect(forget_lockfile=True)
            observed, status = Disconnected(), (False, str(e))

        self._apply(observed)
        self._set_status(*status)
        return self.state

    def _set_status(self, connected: bool, message: str) -> None:
        if (connected, message) != self._status:
            self._status = (connected, message)
            self.bus.publish(ClientStatus(connected=connected, message=message))

    def _apply(self, observed: SessionState) -> None:
        previous = self.state
        self.state = next_state(previous, observed)

        if self.state.kind != previous.kind:
            logger.info("Session phase %s -> %s", previous.kind, self.state.kind)
            self.bus.publish(PhaseChanged(previous=previous, current=self.state))
        if isinstance(self.state, ChampSelect) and self.state != previous:
            self.bus.publish(RosterReady(state=self.state))
        elif isinstance(self.state, InGame) and self.state.has_roster and _roster(self.state) != _roster(previous):
            self.bus.publish(RosterReady(state=self.state))

    def _connect(self) -> LcuClient:
        if self._lockfile is None or not self._lockfile.is_file():
            self._lockfile = find_lockfile(self.lockfile_dir)
        auth = read_lockfile(self._lockfile)

        if self._client is None or self._client.auth != auth:
            self._disconnect()
            self._client = self.client_factory(auth)
            self.summoner = self._client.current_summoner()
            if self.summoner:
                logger.info(
                    "Connected to client on port %d as %s",
                    auth.port, self.summoner.get("gameName") or self.summoner.get("displayName", "?"),
                )
            self._load_recent_games()
        return self._client

    def _disconnect(self, forget_lockfile: bool = False) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None
        self.summoner = None
        self.recent_games = []
        self._champions.clear()
        self._players.clear()
        if forget_lockfile:
            self._lockfile = None

    def _load_recent_games(self) -> None:
        self.recent_games = self._client.match_history() if self._client else []
        if self.recent_games:
            wins = sum(1 for g in self.recent_games if g.win)
            logger.info("Recent games: %dW %dL", wins, len(self.recent_games) - wins)
            self.bus.publish(RecentGames(games=tuple(self.recent_games)))

    def _observe(self, client: LcuClient) -> SessionState:
        phase = client.gameflow_phase()
        kind = state_for_phase(phase)
        if self.state.kind == InGame.kind and kind != InGame.kind:
            self._load_recent_games()  # the finished game is in history now
        if kind == InGame.kind:
            return self._observe_game(client, phase)
        if kind == ChampSelect.kind:
            session = client.champ_select_session()
            if session is not None:
                return self._build_champ_select(client, session)
            # phase flips a moment before the session endpoint is populated
            logger.debug("ChampSelect phase without a session yet")
            if isinstance(self.state, ChampSelect):
                return self.state
        return ConnectedIdle(phase=phase)

    def _observe_game(self, client: LcuClient, phase: str) -> InGame:
        if isinstance(self.state, InGame) and self.state.has_roster:
            # teams are fixed once the game has loaded
            return InGame(
                phase=phase,
                self_champion=self.state.self_champion,
                allies=self.state.allies,
                enemies=self.state.enemies,
            )
        session = client.gameflow_session()
        game = self._build_in_game(client, phase, session) if session else None
        return game or InGame(phase=phase)

    # -----------------------
    # Rosters
    # -----------------------
    def _load_champions(self, client: LcuClient) -> None:
        if self._champions:
            return
        for item in client.champion_summary():
            cid = int(item.get("id", 0))
            if cid <= 0:
                continue
            name = item.get("name", "")
            self._champions[cid] = (name, champion_slug(item.get("alias", ""), name))
        logger.debug("Loaded %d champions from client", len(self._champions))

    def _player(self, client: LcuClient, summoner_id: int) -> Optional[PlayerInfo]:
        if summoner_id <= 0 or not self.resolve_players:
            return None
        if summoner_id in self._players:
            return self._players[summoner_id]

        info: Optional[PlayerInfo] = None
        raw = client.summoner(summoner_id)
        if raw:
            puuid = raw.get("puuid", "")
            solo = pick_soloq(client.ranked_stats(puuid)) if puuid else None
            info = PlayerInfo(
                game_name=raw.get("gameName") or raw.get("displayName") or f"Player {summoner_id}",
                tag_line=raw.get("tagLine", ""),
                puuid=puuid,
                rank_tier=(solo or {}).get("tier", ""),
                rank_division=(solo or {}).get("division", ""),
                rank_lp=int((solo or {}).get("leaguePoints", 0)),
            )
        self._players[summoner_id] = info
        return info

    def _slot(
        self,
        client: LcuClient,
        raw: Dict[str, Any],
        is_ally: bool,
        cell_id: Optional[int] = None,
        position_field: str = "assignedPosition",
    ) -> RosterSlot:
        champion_id = int(raw.get("championId", 0))
        intent = int(raw.get("championPickIntent", 0))
        name, slug = self._champions.get(champion_id or intent, ("", ""))
        summoner_id = int(raw.get("summonerId", 0))
        return RosterSlot(
            cell_id=int(raw.get("cellId", -1)) if cell_id is None else cell_id,
            summoner_id=summoner_id,
            champion_id=champion_id,
            is_ally=is_ally,
            position=Position.from_client(raw.get(position_field)),
            pick_intent_id=intent,
            champion_key=slug,
            champion_name=name,
            player=self._player(client, summoner_id),
        )

    def _build_champ_select(self, client: LcuClient, session: Dict[str, Any]) -> ChampSelect:
        self._load_champions(client)
        local_cell = session.get("localPlayerCellId")
        allies: List[RosterSlot] = [self._slot(client, p, True) for p in session.get("myTeam") or []]
        enemies: List[RosterSlot] = [self._slot(client, p, False) for p in session.get("theirTeam") or []]
        me = next((s for s in allies if s.cell_id == local_cell), None)
        return ChampSelect(
            self_champion=me,
            allies=tuple(allies),
            enemies=tuple(enemies),
            local_cell_id=local_cell,
        )

    def _build_in_game(self, client: LcuClient, phase: str, session: Dict[str, Any]) -> Optional[InGame]:
        """
        Roster from the gameflow session. There are no cells here: team one
        takes 0-4 and team two 5-9, and our team is the one holding our
        summoner id. None while neither team is filled in.
        """
        game_data = session.get("gameData") or {}
        team_one: List[Dict[str, Any]] = game_data.get("teamOne") or []
        team_two: List[Dict[str, Any]] = game_data.get("teamTwo") or []
        if not team_one and not team_two:
            return None

        self._load_champions(client)
        my_id = int((self.summoner or {}).get("summonerId", 0))
        mine_is_two = my_id > 0 and any(int(p.get("summonerId", 0)) == my_id for p in team_two)
        ally_team, enemy_team = (team_two, team_one) if mine_is_two else (team_one, team_two)
        ally_base, enemy_base = (5, 0) if mine_is_two else (0, 5)

        allies = [
            self._slot(client, p, True, cell_id=ally_base + i, position_field="selectedPosition")
            for i, p in enumerate(ally_team)
        ]
        enemies = [
            self._slot(client, p, False, cell_id=enemy_base + i, position_field="selectedPosition")
            for i, p in enumerate(enemy_team)
        ]
        me = next((s for s in allies if my_id > 0 and s.summoner_id == my_id), None)
        return InGame(phase=phase, self_champion=me, allies=tuple(allies), enemies=tuple(enemies))
