"""Persisted per-(user, game) aggregate of every bucket counter.

One record exists per user and game, plus one cross-game record (``game=None``).
A record older than the staleness window is recomputed on the next read.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

from dateutil import parser as dateparser

from .models import WinRateBucket, ensure_utc
from .store import ANALYTICS_BUCKETS, CROSS_GAME_SCOPE, Store


@dataclass
class SessionAnalytics:
    user_id: str
    game: Optional[str]
    counters: Dict[str, int]
    win_rate_by_position: Dict[int, float] = field(default_factory=dict)
    last_computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_stale(self, now: datetime, max_age: timedelta) -> bool:
        return ensure_utc(now) - ensure_utc(self.last_computed_at) > max_age  # type: ignore[operator]

    def bucket(self, name: str) -> WinRateBucket:
        return WinRateBucket(
            wins=int(self.counters.get(f"{name}_wins", 0)),
            total=int(self.counters.get(f"{name}_total", 0)),
        )

    @classmethod
    def from_buckets(
        cls,
        user_id: str,
        game: Optional[str],
        buckets: Mapping[str, WinRateBucket],
        win_rate_by_position: Mapping[int, float],
        computed_at: Optional[datetime] = None,
    ) -> "SessionAnalytics":
        counters: Dict[str, int] = {}
        for name in ANALYTICS_BUCKETS:
            b = buckets.get(name) or WinRateBucket()
            counters[f"{name}_wins"] = b.wins
            counters[f"{name}_total"] = b.total
        return cls(
            user_id=user_id,
            game=game,
            counters=counters,
            win_rate_by_position=dict(win_rate_by_position),
            last_computed_at=ensure_utc(computed_at) or datetime.now(timezone.utc),
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SessionAnalytics":
        counters = {f"{n}_{k}": int(row[f"{n}_{k}"] or 0) for n in ANALYTICS_BUCKETS for k in ("wins", "total")}
        raw_positions = json.loads(row["win_rate_by_position"]) if row["win_rate_by_position"] else {}
        scope = row["scope"]
        return cls(
            user_id=row["user_id"],
            game=None if scope == CROSS_GAME_SCOPE else scope,
            counters=counters,
            win_rate_by_position={int(k): float(v) for k, v in raw_positions.items()},
            last_computed_at=ensure_utc(dateparser.isoparse(row["last_computed_at"])),  # type: ignore[arg-type]
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "game": self.game,
            "buckets": {n: self.bucket(n).to_dict() for n in ANALYTICS_BUCKETS},
            "win_rate_by_position": {str(k): v for k, v in sorted(self.win_rate_by_position.items())},
            "last_computed_at": self.last_computed_at.isoformat(),
        }


def needs_refresh(record: Optional[SessionAnalytics], now: datetime, max_age: timedelta, force: bool = False) -> bool:
    return force or record is None or record.is_stale(now, max_age)


def load_aggregate(store: Store, user_id: str, game: Optional[str] = None) -> Optional[SessionAnalytics]:
    row = store.load_analytics(user_id, game)
    return SessionAnalytics.from_row(row) if row else None


def save_aggregate(store: Store, record: SessionAnalytics) -> None:
    store.upsert_analytics(
        record.user_id,
        record.game,
        record.counters,
        json.dumps({str(k): v for k, v in sorted(record.win_rate_by_position.items())}),
        ensure_utc(record.last_computed_at).isoformat(),  # type: ignore[union-attr]
    )
