from datetime import datetime, timedelta, timezone

from tiltwatch.aggregate import SessionAnalytics, needs_refresh
from tiltwatch.config import EngineSettings
from tiltwatch.insights import (
    estimate_optimal_session,
    get_aggregate,
    get_full_insights,
    get_insights,
    performance_summary,
    refresh,
    tilt_status,
)
from tiltwatch.models import TIME_OF_DAY, to_ms
from tiltwatch.store import Store


USER = "U-TEST"
# Monday
T0 = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


def make_store(tmp_path) -> Store:
    return Store(db_path=str(tmp_path / "tw.db"))


def add(store: Store, mid: str, when: datetime, result: str, game: str = "cs2", user: str = USER) -> None:
    store.upsert_match(mid, user, game, None, to_ms(when), result, 600)


def add_sessions(store: Store, patterns, game: str = "cs2", spacing: timedelta = timedelta(hours=2)) -> None:
    for k, pattern in enumerate(patterns):
        for j, r in enumerate(pattern):
            add(store, f"{game}-{k}-{j}", T0 + spacing * k + timedelta(minutes=5 * j), r, game=game)


def aggregate_total(record: SessionAnalytics) -> int:
    return sum(record.bucket(n).total for n in TIME_OF_DAY)


def test_empty_history(tmp_path):
    store = make_store(tmp_path)
    ins = get_insights(store, "nobody", now=T0)
    assert ins.total_matches_analyzed == 0
    assert ins.total_sessions_analyzed == 0
    assert ins.time_of_day.best_time is None
    assert ins.day_of_week.best_day is None
    assert ins.session_length.optimal_length is None
    assert ins.tilt.tilt_threshold is None
    assert ins.tilt.baseline_win_rate == 0.0
    assert ins.optimal_session.win_rate_by_position == {}
    assert ins.optimal_session.optimal_game_count is None
    assert ins.recent_sessions == []
    assert ins.tilt_alert.should_take_break is False
    for b in ins.all_buckets().values():
        assert b.total == 0 and b.win_rate is None

    record = get_aggregate(store, "nobody")
    assert record is not None
    assert aggregate_total(record) == 0


def test_optimal_position_from_sessions(tmp_path):
    store = make_store(tmp_path)
    add_sessions(store, [["WIN", "WIN", "LOSS"]] * 5)
    ins = get_insights(store, USER, now=T0 + timedelta(days=1))
    assert ins.total_sessions_analyzed == 5
    assert ins.optimal_session.win_rate_by_position == {1: 1.0, 2: 1.0, 3: 0.0}
    assert ins.optimal_session.decline_point == 3
    assert ins.optimal_session.optimal_game_count == 2

    again = get_insights(store, USER, now=T0 + timedelta(days=1))
    assert again.optimal_session == ins.optimal_session
    record = get_aggregate(store, USER)
    assert record.win_rate_by_position == {1: 1.0, 2: 1.0, 3: 0.0}


def test_positions_need_enough_sessions(tmp_path):
    store = make_store(tmp_path)
    add_sessions(store, [["WIN", "LOSS"]] * 4)
    ins = get_insights(store, USER, now=T0 + timedelta(days=1))
    assert ins.optimal_session.win_rate_by_position == {}
    assert ins.optimal_session.decline_point is None


def test_estimate_uneven_session_lengths():
    info = estimate_optimal_session([["WIN"]] * 4 + [["LOSS", "WIN", "LOSS"]] * 5)
    # position 1 has 9 samples, positions 2 and 3 only 5
    assert info.win_rate_by_position == {1: 4 / 9, 2: 1.0, 3: 0.0}
    assert info.decline_point == 3
    assert info.optimal_game_count == 2

    info = estimate_optimal_session([])
    assert info.win_rate_by_position == {}
    assert info.decline_point is None


def test_aggregate_staleness_window(tmp_path):
    store = make_store(tmp_path)
    for i, r in enumerate(["WIN", "LOSS", "WIN"]):
        add(store, f"m{i}", T0 + timedelta(minutes=5 * i), r)
    get_insights(store, USER, now=T0)
    first = get_aggregate(store, USER)
    assert first.last_computed_at == T0
    assert aggregate_total(first) == 3

    add(store, "m3", T0 + timedelta(minutes=20), "WIN")
    ins = get_insights(store, USER, now=T0 + timedelta(hours=6))
    assert ins.total_matches_analyzed == 4
    assert get_aggregate(store, USER).last_computed_at == T0

    later = T0 + timedelta(hours=6, seconds=1)
    get_insights(store, USER, now=later)
    record = get_aggregate(store, USER)
    assert record.last_computed_at == later
    assert aggregate_total(record) == 4


def test_force_refresh_rewrites_fresh_aggregate(tmp_path):
    store = make_store(tmp_path)
    add(store, "m0", T0, "WIN")
    get_insights(store, USER, now=T0)
    soon = T0 + timedelta(minutes=1)
    get_insights(store, USER, force_refresh=True, now=soon)
    assert get_aggregate(store, USER).last_computed_at == soon


def test_needs_refresh():
    record = SessionAnalytics(user_id=USER, game=None, counters={}, last_computed_at=T0)
    window = timedelta(hours=6)
    assert needs_refresh(None, T0, window)
    assert not needs_refresh(record, T0 + window, window)
    assert needs_refresh(record, T0 + window + timedelta(seconds=1), window)
    assert needs_refresh(record, T0, window, force=True)


def test_full_insights_by_game(tmp_path):
    store = make_store(tmp_path)
    add_sessions(store, [["WIN", "LOSS", "WIN"]], game="cs2")
    add_sessions(store, [["LOSS", "LOSS"]], game="valorant")
    full = get_full_insights(store, USER, now=T0 + timedelta(days=1))
    assert set(full["by_game"]) == {"cs2", "valorant"}
    assert full["overall"].total_matches_analyzed == 5
    assert full["by_game"]["cs2"].total_matches_analyzed == 3
    assert full["by_game"]["valorant"].tilt.current_loss_streak == 2
    assert get_aggregate(store, USER, "valorant").game == "valorant"
    assert get_aggregate(store, USER).game is None


def test_refresh_reports_new_sessions(tmp_path):
    store = make_store(tmp_path)
    add_sessions(store, [["WIN"], ["LOSS"], ["WIN"]])
    out = refresh(store, USER, now=T0 + timedelta(days=1))
    assert out["new_sessions_detected"] == 3
    assert out["insights"].total_sessions_analyzed == 3
    assert refresh(store, USER, now=T0 + timedelta(days=1))["new_sessions_detected"] == 0


def test_recent_sessions_and_window(tmp_path):
    store = make_store(tmp_path)
    add_sessions(store, [["WIN"]] * 12, spacing=timedelta(hours=1))
    ins = get_insights(store, USER, now=T0 + timedelta(days=1))
    assert ins.total_sessions_analyzed == 12
    assert len(ins.recent_sessions) == 10
    assert ins.recent_sessions[0].started_at > ins.recent_sessions[-1].started_at

    narrow = get_insights(store, USER, now=T0 + timedelta(days=1), settings=EngineSettings(session_window=5))
    assert narrow.total_sessions_analyzed == 5


def test_performance_summary_and_tilt_status(tmp_path):
    store = make_store(tmp_path)
    for i, r in enumerate(["WIN", "WIN", "WIN", "WIN", "LOSS"]):
        add(store, f"am{i}", T0 + timedelta(minutes=5 * i), r)
    for i, r in enumerate(["WIN", "LOSS", "LOSS", "LOSS", "LOSS"]):
        add(store, f"pm{i}", T0 + timedelta(hours=12, minutes=5 * i), r)
    ins = get_insights(store, USER, now=T0 + timedelta(hours=13))

    summary = performance_summary(ins)
    assert summary["best_time_of_day"] == "morning"
    assert summary["worst_time_of_day"] == "evening"
    assert summary["best_day_of_week"] == "monday"
    assert summary["optimal_session_length"] == "medium"
    assert summary["tilt_threshold"] is None
    assert summary["total_matches_analyzed"] == 10
    recs = summary["recommendations"]
    assert "You perform best in the morning (6AM-12PM UTC)." in recs
    assert "Monday is your strongest day of the week." in recs
    assert "Aim for 4-7 games per session for optimal results." in recs

    status = tilt_status(ins)
    assert status["current_loss_streak"] == 4
    assert status["is_tilting"] is False
    assert status["alert"]["severity"] == "medium"
    assert status["alert"]["suggested_break_minutes"] == 30


def test_insights_serialize(tmp_path):
    store = make_store(tmp_path)
    add_sessions(store, [["WIN", "LOSS"]])
    out = get_insights(store, USER, now=T0 + timedelta(days=1)).to_dict()
    assert out["total_matches_analyzed"] == 2
    assert out["recent_sessions"][0]["match_count"] == 2
    assert out["recent_sessions"][0]["total_duration_minutes"] == 20
    assert out["tilt_alert"]["should_take_break"] is False
    assert set(out["time_of_day"]) >= {"morning", "best_time", "worst_time"}


def test_aggregate_counts_every_stored_session(tmp_path):
    store = make_store(tmp_path)
    add_sessions(store, [["WIN"]] * 60, spacing=timedelta(hours=1))
    ins = get_insights(store, USER, now=T0 + timedelta(days=5))
    # the response is limited to the most recent sessions
    assert ins.total_sessions_analyzed == 50
    assert ins.session_length.buckets["short"].total == 50

    record = get_aggregate(store, USER)
    assert store.count_sessions(USER) == 60
    assert record.bucket("short").total == 60
    assert aggregate_total(record) == 60
    assert record.win_rate_by_position == {1: 1.0}
