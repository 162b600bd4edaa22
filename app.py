from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import List, Optional, Sequence, Tuple, Union

from PySide6.QtCore import QCoreApplication, QObject, QThread, QTimer, Signal

from cache import MatchupCache
from events import (
    ClientStatus,
    Event,
    EventBus,
    ItemFailed,
    PhaseChanged,
    RecentGames,
    RefreshComplete,
    RefreshProgress,
    RosterReady,
)
from model import ChampSelect, InGame, MatchRow, RosterSlot
from opgg import MatchupExtractor
from poller import SessionPoller
from refresh import BulkRefreshCoordinator
from settings import SETTING_KEYS, AppSettings, load_settings, save_setting

logger = logging.getLogger("counterwatch")

PUMP_INTERVAL_MS = 100
RECENT_GAMES_SHOWN = 5


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


# -----------------------
# EventPump: hands bus events to the UI thread
# -----------------------
class EventPump(QObject):
    event = Signal(object)  # events.Event

    def __init__(self, bus: EventBus, interval_ms: int = PUMP_INTERVAL_MS):
        super().__init__()
        self.bus = bus
        self.timer = QTimer(self)
        self.timer.setInterval(interval_ms)
        self.timer.timeout.connect(self.pump)

    def start(self) -> None:
        self.timer.start()

    def stop(self) -> None:
        self.timer.stop()

    def pump(self) -> int:
        events = self.bus.drain()
        for ev in events:
            self.event.emit(ev)
        return len(events)


# -----------------------
# Worker: bulk refresh without blocking the event loop
# -----------------------
class RefreshWorker(QObject):
    finished = Signal(object)   # RefreshSummary
    failed = Signal(str)

    def __init__(self, coordinator: BulkRefreshCoordinator, full_matrix: bool = True):
        super().__init__()
        self.coordinator = coordinator
        self.full_matrix = full_matrix

    def run(self):
        try:
            self.finished.emit(self.coordinator.refresh_all(full_matrix=self.full_matrix))
        except Exception as e:
            logger.exception("Bulk refresh crashed")
            self.failed.emit(str(e))


# -----------------------
# Worker: client polling off the event-loop thread
# -----------------------
class PollWorker(QObject):
    """
    Owns the poll timer. start() runs on the worker's QThread, so the timer
    is created there and every poll (blocking LCU calls included) stays off
    the thread that pumps events.
    """

    def __init__(self, poller: SessionPoller):
        super().__init__()
        self.poller = poller
        self.timer: Optional[QTimer] = None

    def start(self):
        self.timer = QTimer(self)
        self.timer.setInterval(max(1, int(self.poller.interval * 1000)))
        self.timer.timeout.connect(self.poll)
        logger.info("Session poller started (every %.1fs)", self.poller.interval)
        self.poll()
        self.timer.start()

    def poll(self):
        self.poller.poll()


def describe_event(ev: Event, cache: MatchupCache) -> Optional[str]:
    """Plain-text rendering used by the headless runner."""
    if isinstance(ev, ClientStatus):
        return f"Client {'connected' if ev.connected else 'not detected'}: {ev.message}"
    if isinstance(ev, PhaseChanged):
        return f"Phase: {ev.previous.kind} -> {ev.current.kind}"
    if isinstance(ev, RosterReady):
        return _describe_roster(ev.state, cache)
    if isinstance(ev, RecentGames):
        return _describe_recent_games(ev.games)
    if isinstance(ev, RefreshProgress):
        if ev.completed == ev.total or ev.completed % 25 == 0:
            return f"Refresh {ev.completed}/{ev.total}"
        return None
    if isinstance(ev, ItemFailed):
        return f"Refresh failed for {ev.champion} {ev.position}: {ev.error} after {ev.attempts} attempt(s)"
    if isinstance(ev, RefreshComplete):
        return f"Refresh complete: {ev.summary.describe()}"
    return None


def _describe_player(slot: RosterSlot) -> str:
    text = slot.champion_name or "(hidden)"
    if slot.player:
        text += f" [{slot.player.riot_id}, {slot.player.rank_label}]"
    return text


def _describe_roster(state: Union[ChampSelect, InGame], cache: MatchupCache) -> str:
    lines: List[str] = []
    pos = state.my_position.value if state.my_position else "?"
    if isinstance(state, InGame):
        lines.append(f"In game ({state.phase}), playing {pos}")
    else:
        lines.append(f"Champ select, playing {pos}")
    if state.self_champion and state.self_champion.player:
        lines.append(f"  you: {_describe_player(state.self_champion)}")
    for slot in state.enemies:
        lines.append(f"  enemy {slot.position.value if slot.position else '?'}: {_describe_player(slot)}")

    lane = state.lane_opponent
    if lane and lane.champion_key:
        found = cache.lookup_any_position(lane.champion_key, lane.position)
        if found:
            best = ", ".join(
                f"{cache.champion_name(r.counter_champion)} {r.win_rate:.1%}" for r in found.records[:5]
            )
            lines.append(f"  counters vs {lane.champion_name}: {best} ({found.age / 3600:.0f}h old)")
        else:
            lines.append(f"  no local data for {lane.champion_name}, run a full refresh")
    return "\n".join(lines)


def _describe_recent_games(games: Sequence[MatchRow]) -> str:
    wins = sum(1 for g in games if g.win)
    avg_kda = sum(g.kda for g in games) / max(1, len(games))
    lines = [f"Recent games: {wins}W {len(games) - wins}L, avg KDA {avg_kda:.2f}"]
    for g in games[:RECENT_GAMES_SHOWN]:
        lines.append(
            f"  {'W' if g.win else 'L'} {g.kda_str} ({g.kda:.2f} KDA), "
            f"{g.cs_per_min:.1f} cs/min, {g.duration_min}m"
        )
    return "\n".join(lines)


def _setting_pair(text: str) -> Tuple[str, str]:
    key, sep, value = text.partition("=")
    key = key.strip().upper()
    if not sep or key not in SETTING_KEYS:
        raise argparse.ArgumentTypeError(
            f"expected KEY=VALUE with KEY one of {', '.join(SETTING_KEYS)}"
        )
    return key, value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="counterwatch",
        description="Watch the League client and keep a local OP.GG counter cache.",
    )
    parser.add_argument(
        "--refresh", choices=["auto", "always", "never"], default="auto",
        help="Full counter refresh at startup (default: auto = when stale)",
    )
    parser.add_argument(
        "--listed-only", action="store_true", default=False,
        help="Refresh only positions the site lists per champion",
    )
    parser.add_argument(
        "--no-poll", action="store_true", default=False,
        help="Do not watch the League client",
    )
    parser.add_argument(
        "--set", dest="settings", metavar="KEY=VALUE", type=_setting_pair, action="append", default=[],
        help="Save a setting to the AppData .env and exit (repeatable)",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING"], default="INFO",
        help="Logging level (default: INFO)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(args.log_level)

    if args.settings:
        for key, value in args.settings:
            path = save_setting(key, value)
            logger.info("Saved %s to %s", key, path)
        return 0

    settings: AppSettings = load_settings()
    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])

    bus = EventBus()
    cache = MatchupCache.open(settings.cache_path)
    extractor = MatchupExtractor(
        region=settings.opgg_region,
        tier=settings.opgg_tier,
        timeout=settings.request_timeout,
    )
    coordinator = BulkRefreshCoordinator(
        extractor,
        cache,
        bus,
        concurrency=settings.refresh_concurrency,
        max_attempts=settings.max_attempts,
        backoff_base=settings.backoff_base,
    )
    poller = SessionPoller(bus, lockfile_dir=settings.lockfile_dir, interval=settings.poll_interval)

    pump = EventPump(bus)

    def on_event(ev: Event):
        text = describe_event(ev, cache)
        if text:
            logger.info("%s", text)

    pump.event.connect(on_event)

    # keep references (prevents GC)
    threads: List[object] = []

    def start_thread(worker: QObject, entry, *done_signals) -> None:
        t = QThread()
        worker.moveToThread(t)
        threads.extend([t, worker])
        for sig in done_signals:
            sig.connect(lambda *_: t.quit())
        t.started.connect(entry)
        t.finished.connect(worker.deleteLater)
        t.start()

    def start_refresh():
        if coordinator.running:
            logger.info("Refresh already running")
            return
        w = RefreshWorker(coordinator, full_matrix=not args.listed_only)
        start_thread(w, w.run, w.finished, w.failed)

    def shutdown():
        coordinator.cancel()
        pump.stop()
        for t in threads:
            if isinstance(t, QThread) and t.isRunning():
                t.quit()
                t.wait(10000)
        poller.close()
        pump.pump()
        cache.flush()
        extractor.close()

    app.aboutToQuit.connect(shutdown)

    pump.start()
    if not args.no_poll:
        pw = PollWorker(poller)
        start_thread(pw, pw.start)

    if args.refresh == "always" or (
        args.refresh == "auto" and cache.needs_full_refresh(settings.stale_after_seconds)
    ):
        age = cache.full_refresh_age()
        logger.info("Counter data %s, starting full refresh",
                    "missing" if age is None else f"{age / 3600:.0f}h old")
        QTimer.singleShot(150, start_refresh)

    # Ctrl+C quits cleanly; the pump timer gives Python a chance to run the handler
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
