"""Win-rate distributions by time of day, day of week and session length.

All timestamps are bucketed in UTC.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from .config import DEFAULT_SETTINGS, EngineSettings
from .models import DAYS_OF_WEEK, SESSION_LENGTHS, TIME_OF_DAY, WIN, Match, Session, WinRateBucket


def empty_buckets(names: Sequence[str]) -> Dict[str, WinRateBucket]:
    return {n: WinRateBucket() for n in names}


def time_of_day_bucket(hour: int) -> str:
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 24:
        return "evening"
    return "night"


def session_length_category(match_count: int) -> str:
    if match_count <= 3:
        return "short"
    if match_count <= 7:
        return "medium"
    return "long"


def best_and_worst(
    buckets: Dict[str, WinRateBucket],
    order: Sequence[str],
    min_sample_size: int = DEFAULT_SETTINGS.min_sample_size,
) -> Tuple[Optional[str], Optional[str]]:
    """Strictly highest and lowest rate among buckets with enough samples.

    Ties keep the first bucket in ``order``.
    """
    best: Optional[str] = None
    worst: Optional[str] = None
    best_rate = -1.0
    worst_rate = 2.0
    for key in order:
        b = buckets[key]
        rate = b.win_rate
        if b.total < min_sample_size or rate is None:
            continue
        if rate > best_rate:
            best_rate = rate
            best = key
        if rate < worst_rate:
            worst_rate = rate
            worst = key
    return best, worst


def _dump(buckets: Dict[str, WinRateBucket]) -> Dict[str, Dict[str, Any]]:
    return {k: b.to_dict() for k, b in buckets.items()}


@dataclass
class TimeOfDayPerformance:
    buckets: Dict[str, WinRateBucket]
    best_time: Optional[str] = None
    worst_time: Optional[str] = None

    @classmethod
    def from_buckets(cls, buckets: Dict[str, WinRateBucket], settings: EngineSettings = DEFAULT_SETTINGS) -> "TimeOfDayPerformance":
        best, worst = best_and_worst(buckets, TIME_OF_DAY, settings.min_sample_size)
        return cls(buckets, best, worst)

    def to_dict(self) -> Dict[str, Any]:
        return {**_dump(self.buckets), "best_time": self.best_time, "worst_time": self.worst_time}


@dataclass
class DayOfWeekPerformance:
    buckets: Dict[str, WinRateBucket]
    best_day: Optional[str] = None
    worst_day: Optional[str] = None

    @classmethod
    def from_buckets(cls, buckets: Dict[str, WinRateBucket], settings: EngineSettings = DEFAULT_SETTINGS) -> "DayOfWeekPerformance":
        best, worst = best_and_worst(buckets, DAYS_OF_WEEK, settings.min_sample_size)
        return cls(buckets, best, worst)

    def to_dict(self) -> Dict[str, Any]:
        return {**_dump(self.buckets), "best_day": self.best_day, "worst_day": self.worst_day}


@dataclass
class SessionLengthPerformance:
    buckets: Dict[str, WinRateBucket]
    optimal_length: Optional[str] = None
    worst_length: Optional[str] = None

    @classmethod
    def from_buckets(cls, buckets: Dict[str, WinRateBucket], settings: EngineSettings = DEFAULT_SETTINGS) -> "SessionLengthPerformance":
        best, worst = best_and_worst(buckets, SESSION_LENGTHS, settings.min_sample_size)
        return cls(buckets, best, worst)

    def to_dict(self) -> Dict[str, Any]:
        return {**_dump(self.buckets), "optimal_length": self.optimal_length, "worst_length": self.worst_length}


def time_of_day_performance(matches: Iterable[Match], settings: EngineSettings = DEFAULT_SETTINGS) -> TimeOfDayPerformance:
    buckets = empty_buckets(TIME_OF_DAY)
    for m in matches:
        ts = m.timestamp
        if ts is None:
            continue
        buckets[time_of_day_bucket(ts.hour)].add(m.outcome == WIN)
    return TimeOfDayPerformance.from_buckets(buckets, settings)


def day_of_week_performance(matches: Iterable[Match], settings: EngineSettings = DEFAULT_SETTINGS) -> DayOfWeekPerformance:
    buckets = empty_buckets(DAYS_OF_WEEK)
    for m in matches:
        ts = m.timestamp
        if ts is None:
            continue
        # weekday(): monday == 0
        buckets[DAYS_OF_WEEK[ts.weekday()]].add(m.outcome == WIN)
    return DayOfWeekPerformance.from_buckets(buckets, settings)


def session_length_performance(sessions: Iterable[Session], settings: EngineSettings = DEFAULT_SETTINGS) -> SessionLengthPerformance:
    buckets = empty_buckets(SESSION_LENGTHS)
    for s in sessions:
        b = buckets[session_length_category(s.match_count)]
        # weighted by match count, not averaged per session
        b.wins += s.win_count
        b.total += s.match_count
    return SessionLengthPerformance.from_buckets(buckets, settings)
