"""SQLite sink for partial-write inconsistencies and unhandled API errors."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredAnomaly:
    """One recorded inconsistency or failure breadcrumb."""

    anomaly_id: str
    created_at_utc: str
    scope: str
    code: str
    severity: str
    message: str
    metadata_json: str

    def metadata(self) -> dict[str, object]:
        payload = json.loads(self.metadata_json)
        return payload if isinstance(payload, dict) else {}


class SQLiteAnomalyStore:
    """Append-only anomaly log kept beside the content tables."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self._db_path))
        connection.row_factory = sqlite3.Row
        return connection

    def _initialize_schema(self) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS anomaly_events (
                    anomaly_id TEXT PRIMARY KEY,
                    created_at_utc TEXT NOT NULL,
                    scope TEXT NOT NULL,
                    code TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    message TEXT NOT NULL,
                    metadata_json TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_anomaly_events_scope_created
                ON anomaly_events(scope, created_at_utc DESC)
                """
            )

    def write_anomaly(
        self,
        *,
        scope: str,
        code: str,
        severity: str,
        message: str,
        metadata: dict[str, object] | None = None,
    ) -> StoredAnomaly:
        """Persist one anomaly; metadata is stored as sorted JSON."""
        anomaly = StoredAnomaly(
            anomaly_id=str(uuid4()),
            created_at_utc=datetime.now(UTC).isoformat(timespec="microseconds"),
            scope=scope,
            code=code,
            severity=severity,
            message=message,
            metadata_json=json.dumps(metadata or {}, ensure_ascii=False, sort_keys=True),
        )
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO anomaly_events (
                    anomaly_id, created_at_utc, scope, code, severity, message, metadata_json
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    anomaly.anomaly_id,
                    anomaly.created_at_utc,
                    anomaly.scope,
                    anomaly.code,
                    anomaly.severity,
                    anomaly.message,
                    anomaly.metadata_json,
                ),
            )
        return anomaly

    def record(
        self,
        *,
        scope: str,
        code: str,
        severity: str,
        message: str,
        metadata: dict[str, object] | None = None,
    ) -> None:
        """Write an anomaly and mirror it as a concise warning log line."""
        anomaly = self.write_anomaly(
            scope=scope,
            code=code,
            severity=severity,
            message=message,
            metadata=metadata,
        )
        logger.warning(
            "anomaly.recorded id=%s scope=%s code=%s severity=%s message=%s",
            anomaly.anomaly_id,
            scope,
            code,
            severity,
            message,
        )

    def prune_anomalies(self, *, retention_days: int, max_rows: int) -> int:
        """Drop rows older than the retention window, then the oldest overflow."""
        if retention_days <= 0:
            raise ValueError("retention_days must be positive.")
        if max_rows <= 0:
            raise ValueError("max_rows must be positive.")
        cutoff = (datetime.now(UTC) - timedelta(days=retention_days)).isoformat(
            timespec="microseconds"
        )
        with self._connect() as connection:
            expired = connection.execute(
                "DELETE FROM anomaly_events WHERE created_at_utc < ?",
                (cutoff,),
            ).rowcount
            overflow = connection.execute(
                """
                DELETE FROM anomaly_events
                WHERE anomaly_id IN (
                    SELECT anomaly_id
                    FROM anomaly_events
                    ORDER BY created_at_utc DESC, rowid DESC
                    LIMIT -1 OFFSET ?
                )
                """,
                (max_rows,),
            ).rowcount
        return int(expired) + int(overflow)

    def list_recent(self, *, limit: int = 100, scope: str | None = None) -> list[StoredAnomaly]:
        """Newest anomalies first, optionally restricted to one scope."""
        if limit <= 0:
            raise ValueError("limit must be positive.")
        with self._connect() as connection:
            rows = connection.execute(
                """
                SELECT anomaly_id, created_at_utc, scope, code, severity, message, metadata_json
                FROM anomaly_events
                WHERE (? IS NULL OR scope = ?)
                ORDER BY created_at_utc DESC, rowid DESC
                LIMIT ?
                """,
                (scope, scope, limit),
            ).fetchall()
        return [
            StoredAnomaly(
                anomaly_id=str(row["anomaly_id"]),
                created_at_utc=str(row["created_at_utc"]),
                scope=str(row["scope"]),
                code=str(row["code"]),
                severity=str(row["severity"]),
                message=str(row["message"]),
                metadata_json=str(row["metadata_json"]),
            )
            for row in rows
        ]
