from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from tiltwatch.insights import (
    get_aggregate,
    get_current_session,
    get_full_insights,
    get_insights,
    performance_summary,
    refresh as refresh_insights,
    tilt_status as tilt_status_of,
)
from ..deps import settings as get_settings, store as get_store


router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/{user_id}")
def session_insights(
    user_id: str,
    game: Optional[str] = Query(None),
    refresh: bool = Query(False),
):
    t0 = time.time()
    store = get_store()
    cfg = get_settings()
    if game:
        insights = get_insights(store, user_id, game, force_refresh=refresh, settings=cfg)
        data = {"insights": insights.to_dict(), "game": game}
    else:
        full = get_full_insights(store, user_id, settings=cfg)
        data = {
            "overall": full["overall"].to_dict(),
            "by_game": {g: i.to_dict() for g, i in full["by_game"].items()},
        }
    logger.debug("/session-insights user=%s game=%s time=%.1fms", user_id, game, (time.time() - t0) * 1000)
    return {"ok": True, "data": data}


@router.get("/{user_id}/current")
def current_session(user_id: str, game: Optional[str] = Query(None)):
    session = get_current_session(get_store(), user_id, game, settings=get_settings())
    if session is None:
        return {"ok": True, "data": {"in_session": False, "session": None}}
    return {"ok": True, "data": {"in_session": True, "session": session.to_summary()}}


@router.post("/{user_id}/refresh")
def refresh(user_id: str, game: Optional[str] = Query(None)):
    out = refresh_insights(get_store(), user_id, game, settings=get_settings())
    return {
        "ok": True,
        "data": {
            "new_sessions_detected": out["new_sessions_detected"],
            "insights": out["insights"].to_dict(),
        },
    }


@router.get("/{user_id}/tilt-status")
def tilt_status(user_id: str, game: Optional[str] = Query(None)):
    insights = get_insights(get_store(), user_id, game, settings=get_settings())
    return {"ok": True, "data": tilt_status_of(insights)}


@router.get("/{user_id}/performance-summary")
def summary(user_id: str, game: Optional[str] = Query(None)):
    insights = get_insights(get_store(), user_id, game, settings=get_settings())
    return {"ok": True, "data": performance_summary(insights)}


@router.get("/{user_id}/aggregate")
def aggregate(user_id: str, game: Optional[str] = Query(None)):
    record = get_aggregate(get_store(), user_id, game)
    if record is None:
        raise HTTPException(status_code=404, detail="no aggregate computed yet")
    return {"ok": True, "data": record.to_dict()}
