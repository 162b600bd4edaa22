from __future__ import annotations
import base64
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any, List, Iterable

import psutil
import requests

from errors import AuthInvalid, ClientUnavailable, LcuHttpError
from model import MatchRow

# The client serves its API on 127.0.0.1 with a self-signed certificate.
# Verification is off for this host only; the password in the lockfile is the trust anchor.
requests.packages.urllib3.disable_warnings()

logger = logging.getLogger(__name__)

LOCKFILE_NAME = "lockfile"
CLIENT_PROCESS_NAMES = {"LeagueClientUx.exe", "LeagueClient.exe", "LeagueClientUx", "LeagueClient"}
DEFAULT_LOCKFILE_PATHS = [
    r"C:\Riot Games\League of Legends\lockfile",
    r"C:\Program Files\Riot Games\League of Legends\lockfile",
    r"C:\Program Files (x86)\Riot Games\League of Legends\lockfile",
    r"D:\Riot Games\League of Legends\lockfile",
    r"D:\League of Legends\lockfile",
    "/Applications/League of Legends.app/Contents/LoL/lockfile",
]
LCU_TIMEOUT = 3


@dataclass(frozen=True)
class LcuAuth:
    port: int
    password: str
    protocol: str = "https"

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://127.0.0.1:{self.port}"

    @property
    def basic_auth_header(self) -> str:
        token = base64.b64encode(f"riot:{self.password}".encode("utf-8")).decode("utf-8")
        return f"Basic {token}"


# -----------------------
# Lockfile discovery
# -----------------------
def _find_league_process() -> Optional[psutil.Process]:
    for p in psutil.process_iter(["name"]):
        try:
            if p.info["name"] in CLIENT_PROCESS_NAMES:
                return p
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return None


def _lockfile_path_from_process(proc: psutil.Process) -> Optional[Path]:
    """
    lockfile is typically in the main League of Legends install folder, while
    LeagueClientUx.exe may live in a subfolder. Try the exe directory and up to
    five parents.
    """
    try:
        exe_path = proc.exe()
    except (psutil.NoSuchProcess, psutil.AccessDenied, OSError):
        return None
    if not exe_path:
        return None

    cur = Path(exe_path).parent
    for _ in range(6):
        candidate = cur / LOCKFILE_NAME
        if candidate.exists():
            return candidate
        if cur.parent == cur:
            break
        cur = cur.parent
    return None


def lockfile_candidates(config_dir: str = "") -> Iterable[Path]:
    """Candidate paths in priority order; process lookup happens lazily."""
    if config_dir:
        yield Path(config_dir) / LOCKFILE_NAME
    env_dir = os.environ.get("LOL_LOCKFILE_DIR", "").strip()
    if env_dir:
        yield Path(env_dir) / LOCKFILE_NAME

    proc = _find_league_process()
    if proc:
        found = _lockfile_path_from_process(proc)
        if found:
            yield found

    for p in DEFAULT_LOCKFILE_PATHS:
        yield Path(p)
    for var in ("LOCALAPPDATA", "PROGRAMDATA"):
        base = os.environ.get(var)
        if base:
            yield Path(base) / "Riot Games" / "Riot Client" / "Config" / LOCKFILE_NAME


def find_lockfile(config_dir: str = "") -> Optional[Path]:
    for candidate in lockfile_candidates(config_dir):
        if candidate.is_file():
            return candidate
    return None


def parse_lockfile(raw: str) -> LcuAuth:
    """
    lockfile format (colon-separated):
      processName:pid:port:password:protocol
    """
    text = raw.lstrip("\ufeff").strip()
    parts = [p.strip() for p in text.split(":")]
    if len(parts) != 5:
        raise ValueError(f"unexpected lockfile layout ({len(parts)} fields)")
    try:
        port = int(parts[2])
    except ValueError:
        raise ValueError(f"bad lockfile port: {parts[2]!r}") from None
    if not (0 < port < 65536) or not parts[3]:
        raise ValueError("lockfile port/password missing")
    return LcuAuth(port=port, password=parts[3], protocol=parts[4] or "https")


def read_lockfile(path: Optional[Path]) -> LcuAuth:
    if path is None:
        raise ClientUnavailable("lockfile not found (set LOL_LOCKFILE_DIR if the client is installed elsewhere)")
    try:
        raw = path.read_text(encoding="utf-8")
        return parse_lockfile(raw)
    except (OSError, ValueError) as e:
        raise ClientUnavailable(f"unreadable lockfile {path}: {e}") from e


# -----------------------
# Authenticated API access
# -----------------------
class LcuClient:
    def __init__(self, auth: LcuAuth, timeout: float = LCU_TIMEOUT):
        self.auth = auth
        self.timeout = timeout
        self.session = requests.Session()
        self.session.verify = False
        self.session.trust_env = False  # never route 127.0.0.1 through a proxy
        self.session.headers.update({
            "Authorization": auth.basic_auth_header,
            "Accept": "application/json",
        })

    def close(self) -> None:
        self.session.close()

    def get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        url = self.auth.base_url + path
        try:
            r = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise ClientUnavailable(f"LCU unreachable: {e}") from e

        if r.status_code in (401, 403):
            raise AuthInvalid(f"LCU rejected credentials ({r.status_code})")
        if not r.ok:
            raise LcuHttpError(r.status_code, path)
        try:
            return r.json()
        except ValueError as e:
            raise LcuHttpError(r.status_code, path) from e

    def _get_optional(self, path: str, params: Optional[Dict[str, str]] = None) -> Optional[Any]:
        # auth/connectivity failures still propagate; only "not available" is swallowed
        try:
            return self.get(path, params)
        except LcuHttpError as e:
            logger.debug("%s", e)
            return None

    def gameflow_phase(self) -> str:
        phase = self.get("/lol-gameflow/v1/gameflow-phase")
        return phase if isinstance(phase, str) else ""

    def champ_select_session(self) -> Optional[Dict[str, Any]]:
        return self._get_optional("/lol-champ-select/v1/session")

    def gameflow_session(self) -> Optional[Dict[str, Any]]:
        # gameData.teamOne/teamTwo hold the loaded game's roster
        data = self._get_optional("/lol-gameflow/v1/session")
        return data if isinstance(data, dict) else None

    def current_summoner(self) -> Optional[Dict[str, Any]]:
        return self._get_optional("/lol-summoner/v1/current-summoner")

    def summoner(self, summoner_id: int) -> Optional[Dict[str, Any]]:
        return self._get_optional(f"/lol-summoner/v1/summoners/{summoner_id}")

    def ranked_stats(self, puuid: str) -> Optional[Dict[str, Any]]:
        return self._get_optional(f"/lol-ranked/v1/ranked-stats/{puuid}")

    def champion_summary(self) -> List[Dict[str, Any]]:
        data = self._get_optional("/lol-game-data/assets/v1/champion-summary.json")
        return data if isinstance(data, list) else []

    def match_history(self, count: int = 20) -> List[MatchRow]:
        data = self._get_optional(
            "/lol-match-history/v1/products/lol/current-summoner/matches",
            {"begIndex": "0", "endIndex": str(max(0, count - 1))},
        )
        return parse_match_history(data or {})


def pick_soloq(ranked_payload: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not ranked_payload:
        return None

    queues = ranked_payload.get("queueMap") or ranked_payload.get("queues") or []
    if isinstance(queues, dict):
        solo = queues.get("RANKED_SOLO_5x5")
        if solo:
            return solo
        queues = list(queues.values())

    for q in queues:
        if q.get("queueType") == "RANKED_SOLO_5x5":
            return q
    return None


def parse_match_history(payload: Dict[str, Any]) -> List[MatchRow]:
    """
    /lol-match-history returns { "games": { "games": [ ... ] } } where each game
    only lists the current summoner as participant.
    """
    games = (payload.get("games") or {}).get("games") or []
    rows: List[MatchRow] = []
    for g in games:
        participants = g.get("participants") or []
        if not participants:
            continue
        me = participants[0]
        stats = me.get("stats") or {}
        duration_sec = int(g.get("gameDuration", 0))
        rows.append(MatchRow(
            game_id=int(g.get("gameId", 0)),
            win=bool(stats.get("win", False)),
            champion_id=int(me.get("championId", 0)),
            queue_id=int(g.get("queueId", 0)),
            k=int(stats.get("kills", 0)),
            d=int(stats.get("deaths", 0)),
            a=int(stats.get("assists", 0)),
            cs=int(stats.get("totalMinionsKilled", 0)) + int(stats.get("neutralMinionsKilled", 0)),
            duration_min=max(1, duration_sec // 60),
            created_ms=int(g.get("gameCreation", 0)),
        ))
    return rows
