"""Session segmentation.

A session is a maximal run of one game's matches in which no two consecutive
matches are separated by more than the inactivity gap (30 minutes by default).
Matches are placed on the timeline by ``ended_at``, falling back to
``started_at``; records with neither are skipped.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from .config import DEFAULT_SETTINGS, EngineSettings
from .models import DRAW, LOSS, WIN, Match, Session, to_ms
from .store import Store


logger = logging.getLogger(__name__)


def load_matches(store: Store, user_id: str, game: Optional[str] = None, since_ms: Optional[int] = None) -> List[Match]:
    return [Match.from_row(r) for r in store.list_matches(user_id, game, since_ms=since_ms)]


def build_session(game: str, matches: List[Match]) -> Session:
    """Summarise an ordered, non-empty run of matches."""
    first, last = matches[0], matches[-1]
    started_at = first.started_at or first.ended_at
    ended_at = last.ended_at or last.started_at

    wins = losses = draws = 0
    total_duration = 0
    streak = 0
    streak_type: Optional[str] = None
    longest = 0
    longest_type: Optional[str] = None

    for m in matches:
        outcome = m.outcome
        if outcome == WIN:
            wins += 1
        elif outcome == LOSS:
            losses += 1
        else:
            draws += 1

        if outcome == DRAW:
            # draws break streaks without counting as either type
            streak = 0
            streak_type = None
        elif outcome == streak_type:
            streak += 1
        else:
            streak = 1
            streak_type = outcome

        if streak > longest:
            longest = streak
            longest_type = streak_type

        total_duration += m.duration_seconds or 0

    return Session(
        game=game,
        started_at=started_at,  # type: ignore[arg-type]
        ended_at=ended_at,  # type: ignore[arg-type]
        match_count=len(matches),
        win_count=wins,
        loss_count=losses,
        draw_count=draws,
        total_duration=total_duration,
        longest_streak=longest,
        streak_type=longest_type,
        match_ids=[m.id for m in matches],
    )


def detect_sessions(matches: Iterable[Match], settings: EngineSettings = DEFAULT_SETTINGS) -> List[Session]:
    timed = [m for m in matches if m.timestamp is not None]
    timed.sort(key=lambda m: m.timestamp)  # type: ignore[arg-type, return-value]

    by_game: Dict[str, List[Match]] = {}
    for m in timed:
        by_game.setdefault(m.game, []).append(m)

    gap = timedelta(minutes=settings.gap_minutes)
    sessions: List[Session] = []
    for game, game_matches in by_game.items():
        current: List[Match] = []
        last_ts: Optional[datetime] = None
        for m in game_matches:
            ts = m.timestamp
            if last_ts is not None and ts - last_ts > gap:  # type: ignore[operator]
                sessions.append(build_session(game, current))
                current = []
            current.append(m)
            last_ts = ts
        if current:
            sessions.append(build_session(game, current))

    sessions.sort(key=lambda s: s.started_at)
    return sessions


def detect_and_store_sessions(
    store: Store,
    user_id: str,
    game: Optional[str] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
    now: Optional[datetime] = None,
) -> int:
    """Detect sessions from stored matches and persist the ones not stored yet.

    Safe to call on every read: a session that shares its start with, or
    overlaps, a stored one is skipped. A session whose last match ended within
    the gap of ``now`` may still grow and is left for a later run. Returns the
    number of sessions inserted.
    """
    t0 = time.time()
    now = now or datetime.now(timezone.utc)
    gap = timedelta(minutes=settings.gap_minutes)
    detected = detect_sessions(load_matches(store, user_id, game), settings)
    created = 0
    for s in detected:
        if now - s.ended_at <= gap:
            continue
        new_id = store.insert_session(
            user_id=user_id,
            game=s.game,
            started_at_ms=int(to_ms(s.started_at)),  # type: ignore[arg-type]
            ended_at_ms=int(to_ms(s.ended_at)),  # type: ignore[arg-type]
            match_count=s.match_count,
            win_count=s.win_count,
            loss_count=s.loss_count,
            draw_count=s.draw_count,
            total_duration_s=s.total_duration,
            longest_streak=s.longest_streak,
            streak_type=s.streak_type,
            match_ids=s.match_ids,
        )
        if new_id is not None:
            created += 1
    logger.debug(
        "detect sessions user=%s game=%s detected=%d created=%d time=%.1fms",
        user_id,
        game or "*",
        len(detected),
        created,
        (time.time() - t0) * 1000,
    )
    return created


def load_sessions(store: Store, user_id: str, game: Optional[str] = None, limit: Optional[int] = None) -> List[Session]:
    """Stored sessions, newest first."""
    return [Session.from_row(r) for r in store.list_sessions(user_id, game, limit=limit)]


def current_session(
    store: Store,
    user_id: str,
    game: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> Optional[Session]:
    """The session holding the user's latest match, if it ended within the gap of ``now``."""
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(hours=24)
    recent = load_matches(store, user_id, game, since_ms=to_ms(since))
    if not recent:
        return None
    latest_game = recent[-1].game
    sessions = detect_sessions([m for m in recent if m.game == latest_game], settings)
    if not sessions:
        return None
    latest = sessions[-1]
    if now - latest.ended_at <= timedelta(minutes=settings.gap_minutes):
        latest.user_id = user_id
        return latest
    return None
