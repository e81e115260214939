from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import db_path
from .models import DAYS_OF_WEEK, LOSS_STREAK_BUCKETS, SESSION_LENGTHS, TIME_OF_DAY


SCHEMA_VERSION = "1"

# session_analytics.scope for the cross-game aggregate
CROSS_GAME_SCOPE = "*"

ANALYTICS_BUCKETS: Tuple[str, ...] = TIME_OF_DAY + DAYS_OF_WEEK + SESSION_LENGTHS + LOSS_STREAK_BUCKETS
ANALYTICS_COUNTERS: List[str] = [f"{b}_{k}" for b in ANALYTICS_BUCKETS for k in ("wins", "total")]


SCHEMA = [
    # meta
    """
    CREATE TABLE IF NOT EXISTS meta (
        key TEXT PRIMARY KEY,
        value TEXT
    )
    """,
    # canonical match records from the feed
    """
    CREATE TABLE IF NOT EXISTS matches (
        match_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        game TEXT NOT NULL,
        started_at_ms INTEGER,
        ended_at_ms INTEGER,
        result TEXT NOT NULL,
        duration_s INTEGER
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_matches_user_game ON matches(user_id, game)
    """,
    # detected sessions
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        game TEXT NOT NULL,
        started_at_ms INTEGER NOT NULL,
        ended_at_ms INTEGER NOT NULL,
        match_count INTEGER NOT NULL,
        win_count INTEGER NOT NULL,
        loss_count INTEGER NOT NULL,
        draw_count INTEGER NOT NULL,
        total_duration_s INTEGER NOT NULL,
        longest_streak INTEGER NOT NULL,
        streak_type TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # dedup key; insert-or-ignore relies on it
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_key ON sessions(user_id, game, started_at_ms)
    """,
    # ordered membership of a session
    """
    CREATE TABLE IF NOT EXISTS session_matches (
        session_id INTEGER NOT NULL,
        position INTEGER NOT NULL,
        match_id TEXT NOT NULL,
        PRIMARY KEY (session_id, position)
    )
    """,
    # aggregate cache, one row per (user, game or cross-game scope)
    f"""
    CREATE TABLE IF NOT EXISTS session_analytics (
        user_id TEXT NOT NULL,
        scope TEXT NOT NULL,
        {", ".join(f"{c} INTEGER NOT NULL DEFAULT 0" for c in ANALYTICS_COUNTERS)},
        win_rate_by_position TEXT,
        last_computed_at TEXT NOT NULL,
        PRIMARY KEY (user_id, scope)
    )
    """,
]


def scope_for(game: Optional[str]) -> str:
    return game if game else CROSS_GAME_SCOPE


@dataclass
class Store:
    db_path: str = field(default_factory=db_path)

    def __post_init__(self):
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as con:
            cur = con.cursor()
            for stmt in SCHEMA:
                cur.execute(stmt)
            cur.execute("INSERT OR IGNORE INTO meta(key,value) VALUES('schema_version',?)", (SCHEMA_VERSION,))
            con.commit()

    @contextmanager
    def connect(self):
        con = sqlite3.connect(self.db_path)
        con.row_factory = sqlite3.Row
        try:
            # WAL + sane pragmas
            con.execute("PRAGMA journal_mode=WAL")
            con.execute("PRAGMA synchronous=NORMAL")
            con.execute("PRAGMA temp_store=MEMORY")
        except sqlite3.DatabaseError:
            pass
        try:
            yield con
        finally:
            con.close()

    # ---- Matches ----
    def upsert_match(
        self,
        match_id: str,
        user_id: str,
        game: str,
        started_at_ms: Optional[int],
        ended_at_ms: Optional[int],
        result: str,
        duration_s: Optional[int],
    ) -> None:
        self.upsert_matches([(match_id, user_id, game, started_at_ms, ended_at_ms, result, duration_s)])

    def upsert_matches(self, rows: Iterable[Tuple]) -> int:
        rows = list(rows)
        with self.connect() as con:
            con.executemany(
                """
                INSERT INTO matches(match_id, user_id, game, started_at_ms, ended_at_ms, result, duration_s)
                VALUES(?,?,?,?,?,?,?)
                ON CONFLICT(match_id) DO UPDATE SET
                    user_id=excluded.user_id,
                    game=excluded.game,
                    started_at_ms=excluded.started_at_ms,
                    ended_at_ms=excluded.ended_at_ms,
                    result=excluded.result,
                    duration_s=excluded.duration_s
                """,
                rows,
            )
            con.commit()
        return len(rows)

    def list_matches(self, user_id: str, game: Optional[str] = None, since_ms: Optional[int] = None) -> List[sqlite3.Row]:
        """Timed matches for a user, oldest first (by ended_at, falling back to started_at)."""
        q = "SELECT * FROM matches WHERE user_id=? AND COALESCE(ended_at_ms, started_at_ms) IS NOT NULL"
        params: list[Any] = [user_id]
        if game:
            q += " AND game=?"
            params.append(game)
        if since_ms is not None:
            q += " AND COALESCE(ended_at_ms, started_at_ms)>=?"
            params.append(since_ms)
        q += " ORDER BY COALESCE(ended_at_ms, started_at_ms) ASC, match_id ASC"
        with self.connect() as con:
            rows = con.execute(q, params).fetchall()
        return list(rows)

    def distinct_games(self, user_id: str) -> List[str]:
        with self.connect() as con:
            rows = con.execute("SELECT DISTINCT game FROM matches WHERE user_id=? ORDER BY game", (user_id,)).fetchall()
        return [r[0] for r in rows]

    def distinct_users(self) -> List[str]:
        with self.connect() as con:
            rows = con.execute("SELECT DISTINCT user_id FROM matches ORDER BY user_id").fetchall()
        return [r[0] for r in rows]

    # ---- Sessions ----
    def insert_session(
        self,
        user_id: str,
        game: str,
        started_at_ms: int,
        ended_at_ms: int,
        match_count: int,
        win_count: int,
        loss_count: int,
        draw_count: int,
        total_duration_s: int,
        longest_streak: int,
        streak_type: Optional[str],
        match_ids: Sequence[str],
    ) -> Optional[int]:
        """Insert a session and its members unless it collides with a stored one.

        A stored session of the same user and game collides when it shares the
        start instant or overlaps the new time range; stored rows are never
        rewritten. Returns the new row id, or None when nothing was inserted.
        """
        with self.connect() as con:
            cur = con.execute(
                """
                INSERT OR IGNORE INTO sessions(
                    user_id, game, started_at_ms, ended_at_ms, match_count, win_count, loss_count,
                    draw_count, total_duration_s, longest_streak, streak_type
                )
                SELECT ?,?,?,?,?,?,?,?,?,?,?
                WHERE NOT EXISTS (
                    SELECT 1 FROM sessions
                    WHERE user_id=? AND game=? AND started_at_ms<=? AND ended_at_ms>=?
                )
                """,
                (
                    user_id,
                    game,
                    started_at_ms,
                    ended_at_ms,
                    match_count,
                    win_count,
                    loss_count,
                    draw_count,
                    total_duration_s,
                    longest_streak,
                    streak_type,
                    user_id,
                    game,
                    ended_at_ms,
                    started_at_ms,
                ),
            )
            if cur.rowcount != 1:
                return None
            session_id = int(cur.lastrowid)
            con.executemany(
                "INSERT INTO session_matches(session_id, position, match_id) VALUES(?,?,?)",
                [(session_id, pos, mid) for pos, mid in enumerate(match_ids, start=1)],
            )
            con.commit()
        return session_id

    def list_sessions(self, user_id: str, game: Optional[str] = None, limit: Optional[int] = None) -> List[sqlite3.Row]:
        """Stored sessions, newest first."""
        q = "SELECT * FROM sessions WHERE user_id=?"
        params: list[Any] = [user_id]
        if game:
            q += " AND game=?"
            params.append(game)
        q += " ORDER BY started_at_ms DESC, id DESC"
        if limit is not None:
            q += " LIMIT ?"
            params.append(int(limit))
        with self.connect() as con:
            rows = con.execute(q, params).fetchall()
        return list(rows)

    def count_sessions(self, user_id: str, game: Optional[str] = None) -> int:
        q = "SELECT COUNT(1) FROM sessions WHERE user_id=?"
        params: list[Any] = [user_id]
        if game:
            q += " AND game=?"
            params.append(game)
        with self.connect() as con:
            row = con.execute(q, params).fetchone()
        return int(row[0]) if row else 0

    def session_results(self, session_ids: Sequence[int]) -> Dict[int, List[str]]:
        """Member results of each session in play order."""
        out: Dict[int, List[str]] = {int(s): [] for s in session_ids}
        if not out:
            return out
        ph = ",".join(["?"] * len(out))
        with self.connect() as con:
            rows = con.execute(
                f"""
                SELECT sm.session_id, sm.position, m.result
                FROM session_matches sm
                JOIN matches m ON m.match_id = sm.match_id
                WHERE sm.session_id IN ({ph})
                ORDER BY sm.session_id ASC, sm.position ASC
                """,
                list(out),
            ).fetchall()
        for r in rows:
            out[int(r["session_id"])].append(str(r["result"]))
        return out

    # ---- Aggregate cache ----
    def load_analytics(self, user_id: str, game: Optional[str] = None) -> Optional[sqlite3.Row]:
        with self.connect() as con:
            return con.execute(
                "SELECT * FROM session_analytics WHERE user_id=? AND scope=?",
                (user_id, scope_for(game)),
            ).fetchone()

    def upsert_analytics(
        self,
        user_id: str,
        game: Optional[str],
        counters: Dict[str, int],
        win_rate_by_position: str,
        last_computed_at: str,
    ) -> None:
        unknown = set(counters) - set(ANALYTICS_COUNTERS)
        if unknown:
            raise ValueError(f"unknown analytics counters: {sorted(unknown)}")
        keys = ["user_id", "scope", *ANALYTICS_COUNTERS, "win_rate_by_position", "last_computed_at"]
        values = [
            user_id,
            scope_for(game),
            *[int(counters.get(c, 0)) for c in ANALYTICS_COUNTERS],
            win_rate_by_position,
            last_computed_at,
        ]
        updates = ",\n".join(f"{k}=excluded.{k}" for k in keys[2:])
        with self.connect() as con:
            con.execute(
                f"""
                INSERT INTO session_analytics({','.join(keys)}) VALUES({','.join(['?'] * len(keys))})
                ON CONFLICT(user_id, scope) DO UPDATE SET
                {updates}
                """,
                values,
            )
            con.commit()

    # ---- Meta ----
    def get_meta(self, key: str) -> Optional[str]:
        with self.connect() as con:
            row = con.execute("SELECT value FROM meta WHERE key=?", (key,)).fetchone()
            return row[0] if row else None
