from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from .aggregate import SessionAnalytics, load_aggregate, needs_refresh, save_aggregate
from .buckets import (
    DayOfWeekPerformance,
    SessionLengthPerformance,
    TimeOfDayPerformance,
    day_of_week_performance,
    session_length_performance,
    time_of_day_performance,
)
from .config import DEFAULT_SETTINGS, EngineSettings
from .models import WIN, Session, WinRateBucket, normalize_result
from .sessions import current_session, detect_and_store_sessions, load_matches, load_sessions
from .store import Store
from .tilt import TiltAlert, TiltAnalysis, analyze_tilt, compose_tilt_alert, is_significant_drop


logger = logging.getLogger(__name__)


@dataclass
class OptimalSessionInfo:
    win_rate_by_position: Dict[int, float] = field(default_factory=dict)
    optimal_game_count: Optional[int] = None
    decline_point: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "win_rate_by_position": {str(k): v for k, v in sorted(self.win_rate_by_position.items())},
            "optimal_game_count": self.optimal_game_count,
            "decline_point": self.decline_point,
        }


def estimate_optimal_session(
    session_results: Sequence[Sequence[str]],
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> OptimalSessionInfo:
    """Win rate by ordinal position within a session and where it first declines.

    ``session_results`` holds each session's match results in play order.
    """
    positions: Dict[int, WinRateBucket] = {}
    for results in session_results:
        for pos, result in enumerate(results, start=1):
            positions.setdefault(pos, WinRateBucket()).add(normalize_result(result) == WIN)

    rates: Dict[int, float] = {}
    for pos in sorted(positions):
        b = positions[pos]
        if b.total >= settings.min_sample_size and b.win_rate is not None:
            rates[pos] = b.win_rate

    initial = rates.get(1, rates.get(2, 0.5))
    decline: Optional[int] = None
    for pos in sorted(rates):
        if is_significant_drop(initial, rates[pos], settings.significant_drop):
            decline = pos
            break

    return OptimalSessionInfo(
        win_rate_by_position=rates,
        optimal_game_count=decline - 1 if decline else None,
        decline_point=decline,
    )


@dataclass
class SessionInsights:
    time_of_day: TimeOfDayPerformance
    day_of_week: DayOfWeekPerformance
    session_length: SessionLengthPerformance
    tilt: TiltAnalysis
    optimal_session: OptimalSessionInfo
    recent_sessions: List[Session]
    tilt_alert: TiltAlert
    total_matches_analyzed: int
    total_sessions_analyzed: int

    def all_buckets(self) -> Dict[str, WinRateBucket]:
        return {
            **self.time_of_day.buckets,
            **self.day_of_week.buckets,
            **self.session_length.buckets,
            **self.tilt.buckets,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time_of_day": self.time_of_day.to_dict(),
            "day_of_week": self.day_of_week.to_dict(),
            "session_length": self.session_length.to_dict(),
            "tilt": self.tilt.to_dict(),
            "optimal_session": self.optimal_session.to_dict(),
            "recent_sessions": [s.to_summary() for s in self.recent_sessions],
            "tilt_alert": self.tilt_alert.to_dict(),
            "total_matches_analyzed": self.total_matches_analyzed,
            "total_sessions_analyzed": self.total_sessions_analyzed,
        }


def compute_insights(
    store: Store,
    user_id: str,
    game: Optional[str] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
    now: Optional[datetime] = None,
) -> SessionInsights:
    detect_and_store_sessions(store, user_id, game, settings, now=now)

    matches = load_matches(store, user_id, game)
    sessions = load_sessions(store, user_id, game, limit=settings.session_window)

    tilt = analyze_tilt(matches, settings)
    return SessionInsights(
        time_of_day=time_of_day_performance(matches, settings),
        day_of_week=day_of_week_performance(matches, settings),
        session_length=session_length_performance(sessions, settings),
        tilt=tilt,
        optimal_session=_optimal_session(store, sessions, settings),
        recent_sessions=sessions[: settings.recent_sessions],
        tilt_alert=compose_tilt_alert(tilt.current_loss_streak, tilt.tilt_threshold),
        total_matches_analyzed=len(matches),
        total_sessions_analyzed=len(sessions),
    )


def _optimal_session(store: Store, sessions: Sequence[Session], settings: EngineSettings) -> OptimalSessionInfo:
    members = store.session_results([s.id for s in sessions if s.id is not None])
    return estimate_optimal_session([members.get(s.id, []) for s in sessions], settings)  # type: ignore[arg-type]


def build_aggregate(
    store: Store,
    user_id: str,
    game: Optional[str],
    insights: SessionInsights,
    now: datetime,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> SessionAnalytics:
    """Aggregate record over the whole history.

    Match-level buckets come from ``insights``; session-length buckets and
    position rates are recounted over every stored session rather than the
    response window.
    """
    sessions = load_sessions(store, user_id, game)
    buckets = {
        **insights.all_buckets(),
        **session_length_performance(sessions, settings).buckets,
    }
    positions = _optimal_session(store, sessions, settings).win_rate_by_position
    return SessionAnalytics.from_buckets(user_id, game, buckets, positions, computed_at=now)


def get_insights(
    store: Store,
    user_id: str,
    game: Optional[str] = None,
    force_refresh: bool = False,
    now: Optional[datetime] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> SessionInsights:
    """Insights computed from raw data; the stored aggregate is rewritten when stale."""
    now = now or datetime.now(timezone.utc)
    t0 = time.time()
    insights = compute_insights(store, user_id, game, settings, now=now)
    existing = load_aggregate(store, user_id, game)
    if needs_refresh(existing, now, timedelta(hours=settings.stale_hours), force=force_refresh):
        save_aggregate(store, build_aggregate(store, user_id, game, insights, now, settings))
        logger.info(
            "session analytics refreshed user=%s game=%s forced=%s matches=%d",
            user_id,
            game or "*",
            force_refresh,
            insights.total_matches_analyzed,
        )
    logger.debug("insights user=%s game=%s time=%.1fms", user_id, game or "*", (time.time() - t0) * 1000)
    return insights


def get_full_insights(
    store: Store,
    user_id: str,
    now: Optional[datetime] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> Dict[str, Any]:
    overall = get_insights(store, user_id, None, now=now, settings=settings)
    by_game = {g: get_insights(store, user_id, g, now=now, settings=settings) for g in store.distinct_games(user_id)}
    return {"overall": overall, "by_game": by_game}


def get_current_session(
    store: Store,
    user_id: str,
    game: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> Optional[Session]:
    return current_session(store, user_id, game, now=now, settings=settings)


def refresh(
    store: Store,
    user_id: str,
    game: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    created = detect_and_store_sessions(store, user_id, game, settings, now=now)
    insights = get_insights(store, user_id, game, force_refresh=True, now=now, settings=settings)
    return {"new_sessions_detected": created, "insights": insights}


def get_aggregate(store: Store, user_id: str, game: Optional[str] = None) -> Optional[SessionAnalytics]:
    return load_aggregate(store, user_id, game)


def tilt_status(insights: SessionInsights) -> Dict[str, Any]:
    return {
        "is_tilting": insights.tilt.is_tilting,
        "current_loss_streak": insights.tilt.current_loss_streak,
        "tilt_threshold": insights.tilt.tilt_threshold,
        "alert": insights.tilt_alert.to_dict(),
    }


TIME_LABELS = {
    "morning": "in the morning (6AM-12PM UTC)",
    "afternoon": "in the afternoon (12PM-6PM UTC)",
    "evening": "in the evening (6PM-12AM UTC)",
    "night": "at night (12AM-6AM UTC)",
}

LENGTH_ADVICE = {
    "short": "Keep sessions to 1-3 games for best performance.",
    "medium": "Aim for 4-7 games per session for optimal results.",
    "long": "You maintain performance well in longer sessions (8+ games).",
}


def recommendations(insights: SessionInsights) -> List[str]:
    out: List[str] = []
    if insights.time_of_day.best_time:
        out.append(f"You perform best {TIME_LABELS[insights.time_of_day.best_time]}.")
    if insights.day_of_week.best_day:
        out.append(f"{insights.day_of_week.best_day.capitalize()} is your strongest day of the week.")
    if insights.session_length.optimal_length:
        out.append(LENGTH_ADVICE[insights.session_length.optimal_length])
    threshold = insights.tilt.tilt_threshold
    if threshold is not None:
        out.append(f"Consider taking a break after {threshold} consecutive loss{'' if threshold == 1 else 'es'}.")
    if insights.optimal_session.decline_point:
        out.append(
            f"Your performance typically declines after game {insights.optimal_session.decline_point} in a session."
        )
    return out


def performance_summary(insights: SessionInsights) -> Dict[str, Any]:
    return {
        "best_time_of_day": insights.time_of_day.best_time,
        "worst_time_of_day": insights.time_of_day.worst_time,
        "best_day_of_week": insights.day_of_week.best_day,
        "worst_day_of_week": insights.day_of_week.worst_day,
        "optimal_session_length": insights.session_length.optimal_length,
        "optimal_game_count": insights.optimal_session.optimal_game_count,
        "tilt_threshold": insights.tilt.tilt_threshold,
        "total_matches_analyzed": insights.total_matches_analyzed,
        "recommendations": recommendations(insights),
    }
