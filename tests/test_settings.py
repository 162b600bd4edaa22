"""Tests for settings."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from settings import SETTING_KEYS, AppSettings, appdata_env_path, load_settings, save_setting


@pytest.fixture()
def appdata(tmp_path: Path, monkeypatch) -> Path:
    # load_dotenv writes straight into os.environ; patch.dict puts it back afterwards
    with patch.dict(os.environ):
        for key in SETTING_KEYS:
            os.environ.pop(key, None)
        os.environ["APPDATA"] = str(tmp_path / "Roaming")
        monkeypatch.chdir(tmp_path)
        yield tmp_path / "Roaming" / "Counterwatch"


class TestLoadSettings:
    def test_defaults(self, appdata: Path) -> None:
        settings = load_settings()
        assert settings.poll_interval == 1.0
        assert settings.refresh_concurrency == 10
        assert settings.opgg_tier == "emerald_plus"
        assert settings.cache_path == appdata / "opgg_data.json"
        assert settings.stale_after_seconds == 24 * 3600

    def test_appdata_env_file(self, appdata: Path) -> None:
        appdata.mkdir(parents=True)
        (appdata / ".env").write_text(
            "REFRESH_CONCURRENCY=4\nOPGG_REGION=euw\nPOLL_INTERVAL=0.5\nCACHE_PATH=/tmp/x.json\n",
            encoding="utf-8",
        )
        settings = load_settings()
        assert settings.refresh_concurrency == 4
        assert settings.opgg_region == "euw"
        assert settings.poll_interval == 0.5
        assert settings.cache_path == Path("/tmp/x.json")

    def test_local_env_file_when_no_appdata_file(self, appdata: Path, tmp_path: Path) -> None:
        (tmp_path / ".env").write_text("MAX_ATTEMPTS=5\n", encoding="utf-8")
        assert load_settings().max_attempts == 5

    @pytest.mark.parametrize("raw", ["ten", "0", "-3"])
    def test_bad_numbers_fall_back(self, appdata: Path, raw: str) -> None:
        os.environ["REFRESH_CONCURRENCY"] = raw
        assert load_settings().refresh_concurrency == AppSettings().refresh_concurrency

    def test_lockfile_override(self, appdata: Path) -> None:
        os.environ["LOL_LOCKFILE_DIR"] = r"D:\Games\League of Legends"
        assert load_settings().lockfile_dir == r"D:\Games\League of Legends"


class TestSaveSetting:
    def test_creates_and_updates(self, appdata: Path) -> None:
        path = save_setting("OPGG_TIER", " master_plus ")
        assert path == appdata_env_path()
        save_setting("POLL_INTERVAL", "2")
        save_setting("OPGG_TIER", "diamond_plus")

        lines = path.read_text(encoding="utf-8").splitlines()
        assert lines == ["OPGG_TIER=diamond_plus", "POLL_INTERVAL=2"]

    def test_saved_value_is_loaded(self, appdata: Path) -> None:
        save_setting("STALE_AFTER_HOURS", "6")
        assert load_settings().stale_after_hours == 6.0
