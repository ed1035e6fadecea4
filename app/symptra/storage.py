"""SQLite persistence for diagnosis history, audit records and wearable tokens.

Every write is a single-row insert, upsert or delete; no multi-statement
transactions are needed.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from symptra.schemas import AuditRecord, HistoryCreate, TokenRecord
from symptra.utils import utc_now


class RecordStore:
    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS history (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  user_uid TEXT NOT NULL,
                  timestamp TEXT NOT NULL,
                  symptoms TEXT NOT NULL,
                  vitals TEXT,
                  demographics TEXT,
                  summary TEXT,
                  conditions TEXT NOT NULL,
                  urgency TEXT,
                  consent_timestamp TEXT
                );

                CREATE TABLE IF NOT EXISTS audit_logs (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  user_uid TEXT NOT NULL,
                  model_used TEXT NOT NULL,
                  input_hash TEXT NOT NULL,
                  response_hash TEXT NOT NULL,
                  timestamp TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS user_tokens (
                  user_uid TEXT PRIMARY KEY,
                  provider TEXT NOT NULL,
                  access_token TEXT NOT NULL,
                  refresh_token TEXT,
                  expiry_date INTEGER
                );

                CREATE INDEX IF NOT EXISTS idx_history_user ON history(user_uid, timestamp);
                CREATE INDEX IF NOT EXISTS idx_audit_input ON audit_logs(input_hash);
                """
            )

    # Audit log (append-only)

    def append_audit(self, record: AuditRecord) -> int:
        timestamp = record.timestamp or utc_now()
        if not isinstance(timestamp, str):
            timestamp = timestamp.isoformat()
        with self.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO audit_logs (user_uid, model_used, input_hash, response_hash, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (record.user_uid, record.model_used, record.input_hash, record.response_hash, timestamp),
            )
            return int(cursor.lastrowid)

    def list_audit(self, limit: int = 100) -> list[AuditRecord]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM audit_logs ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [AuditRecord(**dict(row)) for row in rows]

    def audit_stats(self) -> dict[str, Any]:
        with self.connection() as conn:
            total = conn.execute("SELECT COUNT(*) AS count FROM audit_logs").fetchone()["count"]
            users = conn.execute("SELECT COUNT(DISTINCT user_uid) AS count FROM audit_logs").fetchone()["count"]
            model_usage = conn.execute(
                "SELECT model_used, COUNT(*) AS count FROM audit_logs GROUP BY model_used ORDER BY count DESC"
            ).fetchall()
            # Same input submitted by more than one distinct caller.
            anomalies = conn.execute(
                """
                SELECT input_hash, COUNT(DISTINCT user_uid) AS user_count, COUNT(*) AS request_count
                FROM audit_logs
                GROUP BY input_hash
                HAVING user_count > 1
                ORDER BY request_count DESC
                """
            ).fetchall()
        return {
            "total_requests": int(total),
            "unique_users": int(users),
            "model_usage": [dict(row) for row in model_usage],
            "anomalies": [dict(row) for row in anomalies],
        }

    # Diagnosis history

    def add_history(self, user_uid: str, entry: HistoryCreate) -> int:
        with self.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO history (
                  user_uid, timestamp, symptoms, vitals, demographics, summary,
                  conditions, urgency, consent_timestamp
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_uid,
                    utc_now().isoformat(),
                    json.dumps(entry.symptoms),
                    json.dumps(entry.vitals),
                    json.dumps(entry.demographics),
                    entry.summary,
                    json.dumps(entry.conditions),
                    entry.urgency,
                    entry.consent_timestamp,
                ),
            )
            return int(cursor.lastrowid)

    def list_history(self, user_uid: str) -> list[dict[str, Any]]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM history WHERE user_uid = ? ORDER BY timestamp DESC, id DESC",
                (user_uid,),
            ).fetchall()
        out: list[dict[str, Any]] = []
        for row in rows:
            item = dict(row)
            for column in ("symptoms", "vitals", "demographics", "conditions"):
                item[column] = json.loads(item[column]) if item[column] is not None else None
            out.append(item)
        return out

    def delete_history(self, user_uid: str, entry_id: int) -> bool:
        with self.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM history WHERE id = ? AND user_uid = ?",
                (entry_id, user_uid),
            )
            return cursor.rowcount > 0

    # Wearable OAuth tokens

    def upsert_token(self, record: TokenRecord) -> None:
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO user_tokens (user_uid, provider, access_token, refresh_token, expiry_date)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_uid) DO UPDATE SET
                  provider = excluded.provider,
                  access_token = excluded.access_token,
                  refresh_token = COALESCE(excluded.refresh_token, user_tokens.refresh_token),
                  expiry_date = excluded.expiry_date
                """,
                (
                    record.user_uid,
                    record.provider,
                    record.access_token,
                    record.refresh_token,
                    record.expiry_date,
                ),
            )

    def get_token(self, user_uid: str, provider: str = "google") -> TokenRecord | None:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM user_tokens WHERE user_uid = ? AND provider = ?",
                (user_uid, provider),
            ).fetchone()
        if row is None:
            return None
        return TokenRecord(**dict(row))

    def delete_token(self, user_uid: str, provider: str = "google") -> bool:
        with self.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM user_tokens WHERE user_uid = ? AND provider = ?",
                (user_uid, provider),
            )
            return cursor.rowcount > 0
