from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone

from tiltwatch.aggregate import load_aggregate, needs_refresh
from tiltwatch.insights import get_insights
from tiltwatch.store import Store
from ..deps import settings as get_settings, store as get_store


logger = logging.getLogger(__name__)

_STARTED = False
_INTERVAL_SEC = 1800  # 30 minutes


def start_prewarmer() -> None:
    global _STARTED
    if _STARTED:
        return
    _STARTED = True
    th = threading.Thread(target=_loop, daemon=True)
    th.start()


def _loop():
    # initial small delay to avoid competing with startup tasks
    time.sleep(30)
    while True:
        try:
            run_once(get_store())
        except Exception:
            logger.exception("prewarm sweep failed")
        time.sleep(_INTERVAL_SEC)


def run_once(store: Store, now: datetime | None = None) -> int:
    """Refresh every stale aggregate (cross-game and per game). Returns the number refreshed."""
    cfg = get_settings()
    now = now or datetime.now(timezone.utc)
    max_age = timedelta(hours=cfg.stale_hours)
    refreshed = 0
    for user_id in store.distinct_users():
        for game in [None, *store.distinct_games(user_id)]:
            if not needs_refresh(load_aggregate(store, user_id, game), now, max_age):
                continue
            try:
                get_insights(store, user_id, game, now=now, settings=cfg)
                refreshed += 1
            except Exception:
                # keep going; the next sweep retries this user
                logger.exception("prewarm failed user=%s game=%s", user_id, game)
    return refreshed
