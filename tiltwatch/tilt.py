from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

from .config import DEFAULT_SETTINGS, EngineSettings
from .models import LOSS, WIN, Match, WinRateBucket


# float slack so that an exact 15-point drop still counts
EPS = 1e-9


def is_significant_drop(reference: float, rate: float, drop: float = DEFAULT_SETTINGS.significant_drop) -> bool:
    return reference - rate >= drop - EPS


@dataclass
class TiltAnalysis:
    after_loss_1: WinRateBucket = field(default_factory=WinRateBucket)
    after_loss_2: WinRateBucket = field(default_factory=WinRateBucket)
    after_loss_3_plus: WinRateBucket = field(default_factory=WinRateBucket)
    baseline_win_rate: float = 0.0
    tilt_threshold: Optional[int] = None
    current_loss_streak: int = 0

    @property
    def is_tilting(self) -> bool:
        return self.tilt_threshold is not None and self.current_loss_streak >= self.tilt_threshold

    @property
    def buckets(self) -> Dict[str, WinRateBucket]:
        return {
            "after_loss_1": self.after_loss_1,
            "after_loss_2": self.after_loss_2,
            "after_loss_3_plus": self.after_loss_3_plus,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            **{k: b.to_dict() for k, b in self.buckets.items()},
            "baseline_win_rate": self.baseline_win_rate,
            "tilt_threshold": self.tilt_threshold,
            "is_tilting": self.is_tilting,
            "current_loss_streak": self.current_loss_streak,
        }


def current_loss_streak(matches: Sequence[Match], window: int = DEFAULT_SETTINGS.loss_streak_window) -> int:
    """Consecutive losses ending at the most recent match (``matches`` oldest first)."""
    streak = 0
    for m in reversed(list(matches)[-window:] if window > 0 else []):
        if m.outcome != LOSS:
            break
        streak += 1
    return streak


def infer_tilt_threshold(
    baseline: float,
    buckets: Sequence[WinRateBucket],
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> Optional[int]:
    """First loss count (1, 2, 3+) whose bucket sits significantly below baseline."""
    for threshold, bucket in enumerate(buckets, start=1):
        rate = bucket.win_rate
        if rate is None or bucket.total < settings.min_sample_size:
            continue
        if is_significant_drop(baseline, rate, settings.significant_drop):
            return threshold
    return None


def analyze_tilt(matches: Sequence[Match], settings: EngineSettings = DEFAULT_SETTINGS) -> TiltAnalysis:
    """Win rate conditioned on the losses immediately preceding each match.

    ``matches`` must be in chronological order.
    """
    out = TiltAnalysis()
    consecutive = 0
    wins = 0
    for m in matches:
        won = m.outcome == WIN
        if consecutive == 1:
            out.after_loss_1.add(won)
        elif consecutive == 2:
            out.after_loss_2.add(won)
        elif consecutive >= 3:
            out.after_loss_3_plus.add(won)

        if m.outcome == LOSS:
            consecutive += 1
        else:
            consecutive = 0
        if won:
            wins += 1

    out.baseline_win_rate = wins / len(matches) if matches else 0.0
    out.tilt_threshold = infer_tilt_threshold(
        out.baseline_win_rate,
        [out.after_loss_1, out.after_loss_2, out.after_loss_3_plus],
        settings,
    )
    out.current_loss_streak = current_loss_streak(matches, settings.loss_streak_window)
    return out


@dataclass
class TiltAlert:
    should_take_break: bool = False
    reason: Optional[str] = None
    severity: Optional[str] = None
    suggested_break_minutes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "should_take_break": self.should_take_break,
            "reason": self.reason,
            "severity": self.severity,
            "suggested_break_minutes": self.suggested_break_minutes,
        }


def _losses(n: int) -> str:
    return f"{n} loss" if n == 1 else f"{n} losses"


def compose_tilt_alert(current_loss_streak: int, tilt_threshold: Optional[int]) -> TiltAlert:
    if current_loss_streak >= 5:
        drop_at = _losses(tilt_threshold) if tilt_threshold is not None else "3+ losses"
        return TiltAlert(
            should_take_break=True,
            severity="high",
            suggested_break_minutes=60,
            reason=(
                f"You've lost {current_loss_streak} games in a row. Your win rate drops significantly "
                f"after {drop_at}. Take a longer break to reset."
            ),
        )
    if current_loss_streak >= 3:
        history = (
            f"Your win rate drops significantly after {_losses(tilt_threshold)}."
            if tilt_threshold is not None
            else "Performance usually declines at this point."
        )
        return TiltAlert(
            should_take_break=True,
            severity="medium",
            suggested_break_minutes=30,
            reason=f"{current_loss_streak} consecutive losses detected. {history}",
        )
    if current_loss_streak >= 2 and tilt_threshold is not None and tilt_threshold <= 2:
        return TiltAlert(
            should_take_break=True,
            severity="low",
            suggested_break_minutes=15,
            reason=(
                f"{current_loss_streak} losses in a row puts you at your tilt threshold of "
                f"{_losses(tilt_threshold)}. Consider a short break."
            ),
        )
    return TiltAlert()
