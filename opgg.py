from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from errors import (
    ConnectionFailed,
    ExtractionNotFound,
    HttpStatusError,
    MalformedPayload,
    RateLimited,
    RequestTimeout,
    ServerError,
)
from hydration import find_data_array, reassemble
from model import MatchupRecord, Position, sort_records

logger = logging.getLogger(__name__)

OPGG_BASE = "https://www.op.gg"
HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept-Language": "en-US,en;q=0.8",
}
DEFAULT_TIMEOUT = 8


@dataclass(frozen=True)
class ChampionEntry:
    key: str
    name: str
    position: Optional[Position] = None


def counters_url(champion: str, position: Optional[Position], region: str = "global", tier: str = "emerald_plus") -> str:
    slug = quote(champion, safe="")
    if position is None:
        return f"{OPGG_BASE}/champions/{slug}/counters?region={region}&tier={tier}"
    return f"{OPGG_BASE}/champions/{slug}/counters/{position.site_slug()}?region={region}&tier={tier}"


def champions_url(region: str = "global") -> str:
    return f"{OPGG_BASE}/champions?position=all&region={region}"


def _retry_after(resp: requests.Response) -> Optional[float]:
    raw = resp.headers.get("Retry-After", "")
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


# -----------------------
# Row mapping
# -----------------------
def _is_counter_row(row: Dict[str, Any]) -> bool:
    return "win_rate" in row and isinstance(row.get("champion"), dict)


def _is_champion_row(row: Dict[str, Any]) -> bool:
    return "key" in row and "name" in row and "positionName" in row


def _win_fraction(raw: Any) -> Optional[float]:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if value != value:  # NaN
        return None
    if value > 1.0:
        value /= 100.0  # some tables carry percentages
    return min(1.0, max(0.0, value))


def parse_counters(rows: List[Any], champion: str, position: Position, fetched_at: float) -> List[MatchupRecord]:
    records: List[MatchupRecord] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        key = ((row.get("champion") or {}).get("key") or "").strip()
        win_rate = _win_fraction(row.get("win_rate"))
        if not key or win_rate is None:
            logger.debug("Skipping counter row without key/win_rate: %r", row)
            continue
        try:
            games = max(0, int(row.get("play") or 0))
        except (TypeError, ValueError):
            games = 0
        records.append(MatchupRecord(
            champion=champion,
            counter_champion=key,
            position=position,
            win_rate=win_rate,
            games_played=games,
            fetched_at=fetched_at,
        ))
    return list(sort_records(records))


def extract_counters(html: str, champion: str, position: Position, fetched_at: Optional[float] = None, url: str = "") -> List[MatchupRecord]:
    """
    Counter page HTML -> records, sorted by win rate (best counter first).
    Raises MalformedPayload when the hydration data is unusable and
    ExtractionNotFound when it decodes fine but has no counter table.
    """
    try:
        tree = reassemble(html)
    except MalformedPayload as e:
        e.url = url
        raise
    rows = find_data_array(tree, _is_counter_row)
    if rows is None:
        raise ExtractionNotFound(f"no counter table for {champion} {position.value}", url)

    records = parse_counters(rows, champion, position, time.time() if fetched_at is None else fetched_at)
    if not records:
        raise MalformedPayload(f"counter table for {champion} {position.value} had no usable rows", url)
    return records


def extract_champion_list(html: str) -> List[ChampionEntry]:
    rows = find_data_array(reassemble(html), _is_champion_row)
    if rows is None:
        raise ExtractionNotFound("no champion table on listing page")

    entries: List[ChampionEntry] = []
    seen = set()
    for item in rows:
        if not isinstance(item, dict):
            continue
        key = (item.get("key") or "").strip()
        name = (item.get("name") or "").strip()
        pos = Position.from_site(item.get("positionName"))
        if not key or not name or (key, pos) in seen:
            continue
        seen.add((key, pos))
        entries.append(ChampionEntry(key=key, name=name, position=pos))
    return entries


# -----------------------
# HTTP
# -----------------------
class MatchupExtractor:
    def __init__(
        self,
        region: str = "global",
        tier: str = "emerald_plus",
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.region = region
        self.tier = tier
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(HEADERS)

    def fetch_page(self, url: str) -> str:
        """One GET; every failure mode comes back as a typed ExtractionError."""
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as e:
            raise RequestTimeout(f"timeout for {url}: {e}", url) from e
        except requests.RequestException as e:
            raise ConnectionFailed(f"connection error for {url}: {e}", url) from e

        if r.status_code == 429:
            raise RateLimited(url, _retry_after(r))
        if r.status_code >= 500:
            raise ServerError(r.status_code, url)
        if not r.ok:
            raise HttpStatusError(r.status_code, url)
        return r.text

    def fetch(self, champion: str, position: Position) -> List[MatchupRecord]:
        url = counters_url(champion, position, self.region, self.tier)
        logger.debug("Fetching %s", url)
        html = self.fetch_page(url)
        return extract_counters(html, champion, position, url=url)

    def fetch_champion_list(self) -> List[ChampionEntry]:
        url = champions_url(self.region)
        entries = extract_champion_list(self.fetch_page(url))
        logger.info("Champion listing: %d champion/position rows", len(entries))
        return entries

    def close(self) -> None:
        self.session.close()
