"""Tests for model."""

import pytest

from model import (
    ALL_POSITIONS,
    ChampSelect,
    InGame,
    MatchupRecord,
    PlayerInfo,
    Position,
    RefreshSummary,
    RefreshUnit,
    RosterSlot,
    UnitStatus,
    cache_key,
    champion_slug,
    sort_records,
)


def _record(counter: str, win_rate: float, games: int = 100) -> MatchupRecord:
    return MatchupRecord(
        champion="annie",
        counter_champion=counter,
        position=Position.MID,
        win_rate=win_rate,
        games_played=games,
        fetched_at=1000.0,
    )


class TestPositionVocabulary:
    @pytest.mark.parametrize("position", list(Position))
    def test_client_to_site_round_trip_is_fixed_point(self, position: Position) -> None:
        client_value = position.to_client()
        canonical = Position.from_client(client_value)
        site_value = canonical.to_site()
        assert Position.from_site(site_value) is position
        assert Position.from_site(canonical.site_slug()) is position

    def test_client_vocabulary(self) -> None:
        assert Position.from_client("MIDDLE") is Position.MID
        assert Position.from_client("utility") is Position.SUPPORT
        assert Position.from_client("BOTTOM") is Position.BOTTOM

    def test_site_vocabulary(self) -> None:
        assert Position.from_site("ADC") is Position.BOTTOM
        assert Position.from_site("adc") is Position.BOTTOM
        assert Position.SUPPORT.site_slug() == "support"

    @pytest.mark.parametrize("value", ["", None, "NONE", "MIDDLE_LANE"])
    def test_unknown_maps_to_none(self, value) -> None:
        assert Position.from_client(value) is None
        assert Position.from_site(value) is None

    def test_vocabularies_do_not_leak_into_each_other(self) -> None:
        assert Position.from_site("MIDDLE") is None
        assert Position.from_client("ADC") is None

    def test_all_positions(self) -> None:
        assert len(ALL_POSITIONS) == 5


class TestMatchupRecord:
    def test_rejects_out_of_range_win_rate(self) -> None:
        with pytest.raises(ValueError):
            _record("fizz", 1.2)
        with pytest.raises(ValueError):
            _record("fizz", -0.1)

    def test_rejects_negative_games(self) -> None:
        with pytest.raises(ValueError):
            _record("fizz", 0.5, games=-1)

    def test_sort_by_win_rate_descending(self) -> None:
        ordered = sort_records([_record("a", 0.45), _record("b", 0.55), _record("c", 0.50)])
        assert [r.counter_champion for r in ordered] == ["b", "c", "a"]

    def test_sort_ties_by_games_then_name(self) -> None:
        ordered = sort_records([_record("z", 0.5, 10), _record("y", 0.5, 50), _record("x", 0.5, 10)])
        assert [r.counter_champion for r in ordered] == ["y", "x", "z"]

    def test_dict_form_keeps_timestamp(self) -> None:
        rec = _record("fizz", 0.54, 1200)
        raw = rec.to_dict()
        assert raw["fetched_at"] == 1000.0
        assert MatchupRecord.from_dict("annie", Position.MID, raw) == rec


class TestHelpers:
    def test_champion_slug(self) -> None:
        assert champion_slug("MonkeyKing", "Wukong") == "monkeyking"
        assert champion_slug("", "Lee Sin") == "lee-sin"

    def test_cache_key(self) -> None:
        assert cache_key("annie", Position.MID) == "annie:mid"


class TestChampSelect:
    def test_lane_opponent_and_positions(self) -> None:
        me = RosterSlot(cell_id=1, summoner_id=10, champion_id=1, is_ally=True, position=Position.MID)
        enemy_mid = RosterSlot(cell_id=6, summoner_id=0, champion_id=105, is_ally=False, position=Position.MID)
        enemy_top = RosterSlot(cell_id=5, summoner_id=0, champion_id=86, is_ally=False, position=Position.TOP)
        state = ChampSelect(self_champion=me, allies=(me,), enemies=(enemy_top, enemy_mid), local_cell_id=1)

        assert state.my_position is Position.MID
        assert state.lane_opponent == enemy_mid
        assert state.positions == {1: Position.MID, 6: Position.MID, 5: Position.TOP}

    def test_no_lane_opponent_without_position(self) -> None:
        state = ChampSelect(self_champion=None)
        assert state.lane_opponent is None

    def test_pick_intent_shown_until_locked(self) -> None:
        slot = RosterSlot(cell_id=1, summoner_id=1, champion_id=0, is_ally=True, pick_intent_id=103)
        assert slot.shown_champion_id == 103


class TestInGame:
    def test_shares_lane_helpers(self) -> None:
        me = RosterSlot(cell_id=5, summoner_id=10, champion_id=1, is_ally=True, position=Position.BOTTOM)
        enemy = RosterSlot(cell_id=0, summoner_id=20, champion_id=222, is_ally=False, position=Position.BOTTOM)
        state = InGame(phase="InProgress", self_champion=me, allies=(me,), enemies=(enemy,))

        assert state.has_roster
        assert state.my_position is Position.BOTTOM
        assert state.lane_opponent == enemy
        assert state.kind == "in_game"

    def test_phase_only(self) -> None:
        state = InGame("Reconnect")
        assert not state.has_roster
        assert state.lane_opponent is None


class TestPlayerInfo:
    def test_rank_label(self) -> None:
        assert PlayerInfo("a", rank_tier="GOLD", rank_division="II", rank_lp=40).rank_label == "Gold II 40 LP"
        assert PlayerInfo("a", rank_tier="MASTER", rank_lp=120).rank_label == "Master 120 LP"
        assert PlayerInfo("a").rank_label == "Unranked"

    def test_riot_id(self) -> None:
        assert PlayerInfo("Faker", tag_line="KR1").riot_id == "Faker#KR1"


class TestRefreshSummary:
    def test_classification(self) -> None:
        units = [
            RefreshUnit("annie", Position.MID, attempts=1, status=UnitStatus.SUCCEEDED),
            RefreshUnit("annie", Position.TOP, attempts=3, status=UnitStatus.SUCCEEDED),
            RefreshUnit("fizz", Position.MID, attempts=3, status=UnitStatus.FAILED),
            RefreshUnit("fizz", Position.TOP, status=UnitStatus.SKIPPED),
        ]
        summary = RefreshSummary(total=4, units=units, cancelled=True)

        assert [u.key for u in summary.succeeded] == ["annie:mid"]
        assert [u.key for u in summary.retried_then_succeeded] == ["annie:top"]
        assert [u.key for u in summary.failed] == ["fizz:mid"]
        assert [u.key for u in summary.skipped] == ["fizz:top"]
        assert summary.completed == 3
        assert summary.describe().endswith("(cancelled)")
