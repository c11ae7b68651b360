"""SQLiteMemoryStore: default storage backend using stdlib sqlite3."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

from ..core.math_utils import rank_by_similarity
from ..core.store import MemoryStore
from ..types import (
    ConversationTurn,
    MemoryScope,
    QuotaRecord,
    RecalledInteraction,
    RollingSummary,
    StorageError,
    UserProfile,
)
from .helpers import date_to_str, decode_embedding, dt_to_str, encode_embedding, str_to_date, str_to_dt

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS turns (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    scope_kind TEXT NOT NULL,
    scope_key TEXT NOT NULL,
    role TEXT NOT NULL,
    text TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS summaries (
    scope_kind TEXT NOT NULL,
    scope_key TEXT NOT NULL,
    summary TEXT NOT NULL DEFAULT '',
    covers_turns INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (scope_kind, scope_key)
);

CREATE TABLE IF NOT EXISTS interactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    identity TEXT NOT NULL,
    group_id TEXT,
    user_text TEXT NOT NULL DEFAULT '',
    assistant_text TEXT NOT NULL DEFAULT '',
    embedding_json TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quota (
    identity TEXT PRIMARY KEY,
    day TEXT NOT NULL,
    count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS profiles (
    identity TEXT NOT NULL,
    group_id TEXT NOT NULL DEFAULT '',
    profile_summary TEXT NOT NULL DEFAULT '',
    preferences_json TEXT NOT NULL DEFAULT '{}',
    affinity REAL NOT NULL DEFAULT 0,
    exchanges INTEGER NOT NULL DEFAULT 0,
    summarized_at INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (identity, group_id)
);

CREATE INDEX IF NOT EXISTS idx_turns_scope ON turns(scope_kind, scope_key, id);
CREATE INDEX IF NOT EXISTS idx_interactions_identity ON interactions(identity, group_id);
"""


def _row_to_turn(row: sqlite3.Row) -> ConversationTurn:
    return ConversationTurn(
        role=row["role"],
        text=row["text"],
        timestamp=str_to_dt(row["created_at"]),
    )


class SQLiteMemoryStore(MemoryStore):
    """SQLite-backed memory with brute-force cosine recall over stored embeddings."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            except sqlite3.Error as e:
                raise StorageError(f"Cannot open {self.db_path}: {e}") from e
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        conn.executescript(SCHEMA_SQL)
        conn.commit()

    # -- turns --

    def append_turn(self, scope: MemoryScope, turn: ConversationTurn) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                "INSERT INTO turns (scope_kind, scope_key, role, text, created_at) VALUES (?, ?, ?, ?, ?)",
                (scope.kind, scope.key, turn.role, turn.text, dt_to_str(turn.timestamp)),
            )
            conn.commit()

    def get_turns(self, scope: MemoryScope, limit: int | None = None) -> list[ConversationTurn]:
        conn = self._get_conn()
        if limit is None:
            rows = conn.execute(
                "SELECT * FROM turns WHERE scope_kind = ? AND scope_key = ? ORDER BY id",
                (scope.kind, scope.key),
            ).fetchall()
            return [_row_to_turn(r) for r in rows]
        if limit <= 0:
            return []
        rows = conn.execute(
            "SELECT * FROM turns WHERE scope_kind = ? AND scope_key = ? ORDER BY id DESC LIMIT ?",
            (scope.kind, scope.key, limit),
        ).fetchall()
        return [_row_to_turn(r) for r in reversed(rows)]

    def get_turns_range(self, scope: MemoryScope, start: int, end: int) -> list[ConversationTurn]:
        if end <= start:
            return []
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT * FROM turns WHERE scope_kind = ? AND scope_key = ? ORDER BY id LIMIT ? OFFSET ?",
            (scope.kind, scope.key, end - start, max(0, start)),
        ).fetchall()
        return [_row_to_turn(r) for r in rows]

    def count_turns(self, scope: MemoryScope) -> int:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT COUNT(*) FROM turns WHERE scope_kind = ? AND scope_key = ?",
            (scope.kind, scope.key),
        ).fetchone()
        return row[0]

    # -- rolling summaries --

    def save_summary(self, scope: MemoryScope, summary: RollingSummary) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                """INSERT OR REPLACE INTO summaries
                   (scope_kind, scope_key, summary, covers_turns, updated_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (scope.kind, scope.key, summary.summary, summary.covers_turns,
                 dt_to_str(summary.updated_at)),
            )
            conn.commit()

    def get_summary(self, scope: MemoryScope) -> RollingSummary | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM summaries WHERE scope_kind = ? AND scope_key = ?",
            (scope.kind, scope.key),
        ).fetchone()
        if not row:
            return None
        return RollingSummary(
            summary=row["summary"],
            covers_turns=row["covers_turns"],
            updated_at=str_to_dt(row["updated_at"]),
        )

    # -- recall --

    def store_interaction(
        self,
        identity: str,
        user_text: str,
        assistant_text: str,
        embedding: list[float],
        group_id: str | None = None,
    ) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                """INSERT INTO interactions
                   (identity, group_id, user_text, assistant_text, embedding_json, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (identity, group_id, user_text, assistant_text,
                 encode_embedding(embedding), dt_to_str(datetime.now(timezone.utc))),
            )
            conn.commit()

    def search_interactions(
        self,
        identity: str,
        embedding: list[float],
        limit: int = 2,
        threshold: float = 0.0,
        group_id: str | None = None,
    ) -> list[RecalledInteraction]:
        if limit <= 0 or not embedding:
            return []
        conn = self._get_conn()
        if group_id is None:
            rows = conn.execute(
                "SELECT * FROM interactions WHERE identity = ? ORDER BY id",
                (identity,),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM interactions WHERE identity = ? AND group_id = ? ORDER BY id",
                (identity, group_id),
            ).fetchall()
        vectors = [decode_embedding(r["embedding_json"]) for r in rows]
        ranked = rank_by_similarity(embedding, vectors, limit, threshold)
        return [
            RecalledInteraction(
                user_text=rows[i]["user_text"],
                assistant_text=rows[i]["assistant_text"],
                similarity=sim,
            )
            for i, sim in ranked
        ]

    # -- quota --

    def save_quota_record(self, record: QuotaRecord) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                "INSERT OR REPLACE INTO quota (identity, day, count) VALUES (?, ?, ?)",
                (record.identity, date_to_str(record.date), record.count),
            )
            conn.commit()

    def get_quota_record(self, identity: str) -> QuotaRecord | None:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM quota WHERE identity = ?", (identity,)).fetchone()
        if not row:
            return None
        return QuotaRecord(identity=row["identity"], date=str_to_date(row["day"]), count=row["count"])

    # -- profiles --

    def save_profile(self, profile: UserProfile) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                """INSERT OR REPLACE INTO profiles
                   (identity, group_id, profile_summary, preferences_json, affinity,
                    exchanges, summarized_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (profile.identity, profile.group_id or "", profile.profile_summary,
                 json.dumps(profile.preferences, ensure_ascii=False), profile.affinity,
                 profile.exchanges, profile.summarized_at, dt_to_str(profile.updated_at)),
            )
            conn.commit()

    def get_profile(self, identity: str, group_id: str | None = None) -> UserProfile | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM profiles WHERE identity = ? AND group_id = ?",
            (identity, group_id or ""),
        ).fetchone()
        if not row:
            return None
        return UserProfile(
            identity=row["identity"],
            group_id=row["group_id"],
            profile_summary=row["profile_summary"],
            preferences=json.loads(row["preferences_json"]),
            affinity=row["affinity"],
            exchanges=row["exchanges"],
            summarized_at=row["summarized_at"],
            updated_at=str_to_dt(row["updated_at"]),
        )

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
