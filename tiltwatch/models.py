"""Value types shared by the segmenter, the aggregators and the store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional


WIN = "WIN"
LOSS = "LOSS"
DRAW = "DRAW"
UNKNOWN = "UNKNOWN"

TIME_OF_DAY = ("morning", "afternoon", "evening", "night")
DAYS_OF_WEEK = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
SESSION_LENGTHS = ("short", "medium", "long")
LOSS_STREAK_BUCKETS = ("after_loss_1", "after_loss_2", "after_loss_3_plus")


def normalize_result(result: Optional[str]) -> str:
    """Upper-case a result tag; anything that is not WIN or LOSS is a draw."""
    r = (result or "").strip().upper()
    if r in (WIN, LOSS):
        return r
    return DRAW


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_ms(dt: Optional[datetime]) -> Optional[int]:
    dt = ensure_utc(dt)
    if dt is None:
        return None
    return int(round(dt.timestamp() * 1000))


def from_ms(ms: Optional[int]) -> Optional[datetime]:
    if ms is None:
        return None
    return datetime.fromtimestamp(int(ms) / 1000, tz=timezone.utc)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt is not None else None


@dataclass
class Match:
    id: str
    game: str
    result: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    user_id: Optional[str] = None

    def __post_init__(self) -> None:
        self.started_at = ensure_utc(self.started_at)
        self.ended_at = ensure_utc(self.ended_at)

    @property
    def timestamp(self) -> Optional[datetime]:
        # position on the timeline
        return self.ended_at or self.started_at

    @property
    def outcome(self) -> str:
        return normalize_result(self.result)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Match":
        return cls(
            id=str(row["match_id"]),
            game=str(row["game"]),
            result=str(row["result"] or UNKNOWN),
            started_at=from_ms(row["started_at_ms"]),
            ended_at=from_ms(row["ended_at_ms"]),
            duration_seconds=row["duration_s"],
            user_id=row["user_id"],
        )


@dataclass
class WinRateBucket:
    wins: int = 0
    total: int = 0

    @property
    def win_rate(self) -> Optional[float]:
        return self.wins / self.total if self.total > 0 else None

    def add(self, won: bool, count: int = 1) -> None:
        self.total += count
        if won:
            self.wins += count

    def to_dict(self) -> Dict[str, Any]:
        return {"wins": self.wins, "total": self.total, "win_rate": self.win_rate}


@dataclass
class Session:
    game: str
    started_at: datetime
    ended_at: datetime
    match_count: int
    win_count: int = 0
    loss_count: int = 0
    draw_count: int = 0
    total_duration: int = 0
    longest_streak: int = 0
    streak_type: Optional[str] = None
    match_ids: List[str] = field(default_factory=list)
    id: Optional[int] = None
    user_id: Optional[str] = None

    @property
    def win_rate(self) -> float:
        return self.win_count / self.match_count if self.match_count > 0 else 0.0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Session":
        return cls(
            id=int(row["id"]),
            user_id=row["user_id"],
            game=str(row["game"]),
            started_at=from_ms(row["started_at_ms"]),  # type: ignore[arg-type]
            ended_at=from_ms(row["ended_at_ms"]),  # type: ignore[arg-type]
            match_count=int(row["match_count"]),
            win_count=int(row["win_count"]),
            loss_count=int(row["loss_count"]),
            draw_count=int(row["draw_count"]),
            total_duration=int(row["total_duration_s"] or 0),
            longest_streak=int(row["longest_streak"] or 0),
            streak_type=row["streak_type"],
        )

    def to_summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "game": self.game,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "match_count": self.match_count,
            "win_count": self.win_count,
            "loss_count": self.loss_count,
            "draw_count": self.draw_count,
            "win_rate": self.win_rate,
            "total_duration_minutes": round(self.total_duration / 60),
            "longest_streak": self.longest_streak,
            "streak_type": self.streak_type,
        }
