from __future__ import annotations

import sqlite3
import time

from fastapi import APIRouter

from ..deps import store as get_store


router = APIRouter()


@router.get("/health")
def health():
    t0 = time.time()
    try:
        store = get_store()
        schema_version = store.get_meta("schema_version")
        db_resp = {"ok": True, "schema_version": schema_version, "users": len(store.distinct_users())}
    except sqlite3.Error as e:
        db_resp = {"ok": False, "schema_version": None, "error": str(e)}

    data = {
        "version": "0.1.0",
        "db": db_resp,
        "elapsed_ms": round((time.time() - t0) * 1000, 1),
    }
    return {"ok": True, "data": data}
