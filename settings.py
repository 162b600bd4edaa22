from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

APP_DIR_NAME = "Counterwatch"

# .env keys load_settings reads
SETTING_KEYS = (
    "LOL_LOCKFILE_DIR",
    "POLL_INTERVAL",
    "OPGG_REGION",
    "OPGG_TIER",
    "REFRESH_CONCURRENCY",
    "MAX_ATTEMPTS",
    "BACKOFF_BASE",
    "REQUEST_TIMEOUT",
    "CACHE_PATH",
    "STALE_AFTER_HOURS",
)


def appdata_dir() -> Path:
    appdata = os.environ.get("APPDATA")
    if not appdata:
        # Fallback: local
        return Path(".")
    return Path(appdata) / APP_DIR_NAME


def appdata_env_path() -> Path:
    return appdata_dir() / ".env"


@dataclass
class AppSettings:
    lockfile_dir: str = ""
    poll_interval: float = 1.0
    opgg_region: str = "global"
    opgg_tier: str = "emerald_plus"
    refresh_concurrency: int = 10
    max_attempts: int = 3
    backoff_base: float = 1.0
    request_timeout: float = 8.0
    cache_path: Path = Path("opgg_data.json")
    stale_after_hours: float = 24.0

    @property
    def stale_after_seconds(self) -> float:
        return self.stale_after_hours * 3600.0


def _env_number(name: str, default, cast):
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %r", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r, using %r", name, raw, default)
        return default
    return value


def load_settings() -> AppSettings:
    # 1) Load AppData env first (installed app)
    env_path = appdata_env_path()
    if env_path.exists():
        load_dotenv(env_path, override=True)
    else:
        # 2) Fall back to local .env (dev mode)
        load_dotenv(".env", override=True)

    defaults = AppSettings()
    cache_raw = os.getenv("CACHE_PATH", "").strip()
    cache_path = Path(cache_raw) if cache_raw else appdata_dir() / defaults.cache_path.name

    return AppSettings(
        lockfile_dir=os.getenv("LOL_LOCKFILE_DIR", "").strip(),
        poll_interval=_env_number("POLL_INTERVAL", defaults.poll_interval, float),
        opgg_region=os.getenv("OPGG_REGION", "").strip() or defaults.opgg_region,
        opgg_tier=os.getenv("OPGG_TIER", "").strip() or defaults.opgg_tier,
        refresh_concurrency=_env_number("REFRESH_CONCURRENCY", defaults.refresh_concurrency, int),
        max_attempts=_env_number("MAX_ATTEMPTS", defaults.max_attempts, int),
        backoff_base=_env_number("BACKOFF_BASE", defaults.backoff_base, float),
        request_timeout=_env_number("REQUEST_TIMEOUT", defaults.request_timeout, float),
        cache_path=cache_path,
        stale_after_hours=_env_number("STALE_AFTER_HOURS", defaults.stale_after_hours, float),
    )


def save_setting(key: str, value: str) -> Path:
    """
    Writes/updates one KEY=value line inside %APPDATA%\\Counterwatch\\.env
    preserving other values if present.
    """
    value = (value or "").strip()
    env_path = appdata_env_path()
    env_path.parent.mkdir(parents=True, exist_ok=True)

    existing = {}
    if env_path.exists():
        for line in env_path.read_text(encoding="utf-8").splitlines():
            if "=" in line and not line.strip().startswith("#"):
                k, v = line.split("=", 1)
                existing[k.strip()] = v.strip()

    existing[key] = value

    text = "\n".join([f"{k}={v}" for k, v in existing.items()]) + "\n"
    env_path.write_text(text, encoding="utf-8")
    return env_path
