import json
from datetime import datetime, timezone

import pytest

from tiltwatch.feed import MatchRecordError, import_matches, parse_match_record, read_feed_file
from tiltwatch.sessions import load_matches
from tiltwatch.store import Store


def test_parse_camel_case_record():
    m = parse_match_record(
        {
            "id": "g1",
            "userId": "alice",
            "game": "cs2",
            "result": "win",
            "startedAt": "2024-01-01T10:00:00Z",
            "endedAt": "2024-01-01T10:35:00+00:00",
            "durationSeconds": 2100,
        }
    )
    assert m.user_id == "alice"
    assert m.outcome == "WIN"
    assert m.started_at == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert m.timestamp == datetime(2024, 1, 1, 10, 35, tzinfo=timezone.utc)
    assert m.duration_seconds == 2100


def test_parse_snake_case_and_epoch_ms():
    m = parse_match_record({"match_id": 7, "game": "chess", "result": "DRAW", "ended_at": 1704103200000}, user_id="bob")
    assert m.id == "7"
    assert m.user_id == "bob"
    assert m.ended_at == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert m.started_at is None


def test_naive_timestamps_are_utc():
    m = parse_match_record({"id": "x", "game": "cs2", "result": "LOSS", "endedAt": "2024-05-05 18:00:00"})
    assert m.ended_at.tzinfo is not None
    assert m.ended_at.hour == 18


@pytest.mark.parametrize(
    "rec",
    [
        {"game": "cs2", "result": "WIN"},
        {"id": "a", "result": "WIN"},
        {"id": "a", "game": "cs2"},
        {"id": "a", "game": "cs2", "result": "WIN", "durationSeconds": -5},
        {"id": "a", "game": "cs2", "result": "WIN", "durationSeconds": "long"},
        {"id": "a", "game": "cs2", "result": "WIN", "endedAt": "not a date"},
    ],
)
def test_bad_records_rejected(rec):
    with pytest.raises(MatchRecordError):
        parse_match_record(rec, user_id="alice")


def test_import_and_reimport(tmp_path):
    store = Store(db_path=str(tmp_path / "tw.db"))
    records = [
        {"id": "a", "game": "cs2", "result": "win", "endedAt": "2024-01-01T10:00:00Z", "durationSeconds": 600},
        {"id": "b", "game": "cs2", "result": "LOSS", "endedAt": "2024-01-01T10:20:00Z"},
        {"id": "c", "game": "cs2", "result": "WIN"},
    ]
    assert import_matches(store, records, user_id="alice") == 3

    # corrected result replaces the stored one
    records[1]["result"] = "WIN"
    import_matches(store, records[1:2], user_id="alice")

    matches = load_matches(store, "alice")
    assert [m.id for m in matches] == ["a", "b"]  # untimed match is not listed
    assert [m.result for m in matches] == ["WIN", "WIN"]


def test_import_requires_user(tmp_path):
    store = Store(db_path=str(tmp_path / "tw.db"))
    with pytest.raises(MatchRecordError):
        import_matches(store, [{"id": "a", "game": "cs2", "result": "WIN"}])


def test_read_feed_file(tmp_path):
    p = tmp_path / "feed.json"
    p.write_text(json.dumps({"matches": [{"id": "a", "game": "cs2", "result": "WIN"}]}))
    assert read_feed_file(p) == [{"id": "a", "game": "cs2", "result": "WIN"}]

    p.write_text(json.dumps({"matches": "nope"}))
    with pytest.raises(MatchRecordError):
        read_feed_file(p)
