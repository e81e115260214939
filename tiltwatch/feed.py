"""Loading canonical match records produced by the external ingestion layer."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from dateutil import parser as dateparser

from .models import Match, to_ms
from .store import Store


class MatchRecordError(ValueError):
    pass


def _parse_ts(value: Any, field_name: str, match_id: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # epoch milliseconds
        return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
    try:
        dt = dateparser.parse(str(value))
    except (ValueError, OverflowError) as e:
        raise MatchRecordError(f"{match_id}: bad {field_name} {value!r}") from e
    if not dt.tzinfo:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _first(rec: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in rec:
            return rec[k]
    return None


def parse_match_record(rec: Dict[str, Any], user_id: Optional[str] = None) -> Match:
    """Build a Match from a feed record (camelCase or snake_case keys)."""
    match_id = rec.get("id") or rec.get("match_id")
    if not match_id:
        raise MatchRecordError(f"record without id: {rec!r}")
    match_id = str(match_id)
    game = rec.get("game")
    if not game:
        raise MatchRecordError(f"{match_id}: missing game")
    result = rec.get("result")
    if not result:
        raise MatchRecordError(f"{match_id}: missing result")
    duration = _first(rec, "durationSeconds", "duration_seconds")
    if duration is not None:
        try:
            duration = int(duration)
        except (TypeError, ValueError) as e:
            raise MatchRecordError(f"{match_id}: bad duration {duration!r}") from e
        if duration < 0:
            raise MatchRecordError(f"{match_id}: negative duration")
    return Match(
        id=match_id,
        game=str(game),
        result=str(result),
        started_at=_parse_ts(_first(rec, "startedAt", "started_at"), "started_at", match_id),
        ended_at=_parse_ts(_first(rec, "endedAt", "ended_at"), "ended_at", match_id),
        duration_seconds=duration,
        user_id=user_id or rec.get("userId") or rec.get("user_id"),
    )


def read_feed_file(path: str | Path) -> List[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("matches", [])
    if not isinstance(data, list):
        raise MatchRecordError("feed file must hold a list of match records")
    return data


def import_matches(store: Store, records: Iterable[Dict[str, Any]], user_id: Optional[str] = None) -> int:
    """Validate every record, then upsert them in one batch. Returns the number stored."""
    rows = []
    for rec in records:
        m = parse_match_record(rec, user_id)
        if not m.user_id:
            raise MatchRecordError(f"{m.id}: no user id")
        rows.append((m.id, m.user_id, m.game, to_ms(m.started_at), to_ms(m.ended_at), m.result.upper(), m.duration_seconds))
    return store.upsert_matches(rows)
