"""SQLite-backed content and ledger store: tales, votes, notifications, profiles, feedback."""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from tale_graph.domain.models import (
    NotificationType,
    SortBy,
    StoredNotification,
    StoredTale,
    StoredUser,
    TalePreview,
    TrendingInput,
)

_TALE_COLUMNS = """
    tale_id, title, author_id, author_name, content, created_at_utc, status,
    is_deleted, series_votes, last_activity_at_utc, trending_score
"""

_ROOT_ORDERING: dict[str, str] = {
    "popular": (
        "series_votes DESC, COALESCE(last_activity_at_utc, created_at_utc) DESC, rowid DESC"
    ),
    "trending": "COALESCE(last_activity_at_utc, created_at_utc) DESC, rowid DESC",
    "recent": "COALESCE(last_activity_at_utc, created_at_utc) DESC, rowid DESC",
    "newest": "created_at_utc DESC, rowid DESC",
}


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SQLiteContentStore:
    """Persist tale content, the vote ledger, notifications, and user profiles."""

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
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    display_name TEXT NOT NULL,
                    bio TEXT,
                    avatar_style TEXT NOT NULL DEFAULT 'initials',
                    created_at_utc TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS tales (
                    tale_id TEXT PRIMARY KEY,
                    title TEXT,
                    author_id TEXT NOT NULL,
                    author_name TEXT NOT NULL DEFAULT 'Anonymous',
                    content TEXT NOT NULL,
                    created_at_utc TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'Draft',
                    is_deleted INTEGER NOT NULL DEFAULT 0,
                    series_votes INTEGER NOT NULL DEFAULT 0,
                    last_activity_at_utc TEXT,
                    trending_score REAL NOT NULL DEFAULT 0
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS votes (
                    vote_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    tale_id TEXT NOT NULL,
                    voted_at_utc TEXT NOT NULL,
                    UNIQUE (user_id, tale_id)
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS notifications (
                    notification_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    triggered_by_id TEXT NOT NULL,
                    triggered_by_name TEXT NOT NULL,
                    type TEXT NOT NULL,
                    message TEXT NOT NULL,
                    related_tale_id TEXT,
                    is_read INTEGER NOT NULL DEFAULT 0,
                    created_at_utc TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS feedback (
                    feedback_id TEXT PRIMARY KEY,
                    user_email TEXT,
                    message TEXT NOT NULL,
                    submitted_at_utc TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_tales_author
                ON tales(author_id, is_deleted)
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_votes_tale
                ON votes(tale_id)
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_notifications_user_unread
                ON notifications(user_id, is_read, created_at_utc DESC)
                """
            )

    @staticmethod
    def _stage_ids(connection: sqlite3.Connection, tale_ids: Sequence[str]) -> None:
        """Load an id set into a per-connection temp table for set joins."""
        connection.execute("CREATE TEMP TABLE IF NOT EXISTS staged_ids (tale_id TEXT PRIMARY KEY)")
        connection.execute("DELETE FROM staged_ids")
        connection.executemany(
            "INSERT OR IGNORE INTO staged_ids (tale_id) VALUES (?)",
            [(tale_id,) for tale_id in tale_ids],
        )

    def ping(self) -> None:
        """Run a trivial query; raises sqlite3.Error when the database is unusable."""
        with self._connect() as connection:
            connection.execute("SELECT 1").fetchone()

    # Tales

    def insert_tale(
        self,
        *,
        tale_id: str,
        author_id: str,
        author_name: str,
        title: str | None,
        content: str,
        created_at_utc: str,
    ) -> StoredTale:
        """Create a tale row; aggregates start at zero."""
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO tales (tale_id, title, author_id, author_name, content, created_at_utc)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (tale_id, title, author_id, author_name, content, created_at_utc),
            )
        return StoredTale(
            tale_id=tale_id,
            title=title,
            author_id=author_id,
            author_name=author_name,
            content=content,
            created_at_utc=created_at_utc,
        )

    def get_tale(self, *, tale_id: str) -> StoredTale | None:
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_TALE_COLUMNS} FROM tales WHERE tale_id = ?",
                (tale_id,),
            ).fetchone()
        if row is None:
            return None
        return self._tale_from_row(row)

    def get_previews(self, *, tale_ids: Sequence[str]) -> dict[str, TalePreview]:
        """Batch-load titles and bodies for exactly the requested ids."""
        if not tale_ids:
            return {}
        with self._connect() as connection:
            self._stage_ids(connection, tale_ids)
            rows = connection.execute(
                """
                SELECT t.tale_id, t.title, t.content
                FROM tales t
                JOIN staged_ids s ON s.tale_id = t.tale_id
                """
            ).fetchall()
        return {
            str(row["tale_id"]): TalePreview(
                tale_id=str(row["tale_id"]),
                title=row["title"],
                content=str(row["content"]),
            )
            for row in rows
        }

    def update_tale_content(
        self, *, tale_id: str, title: str | None, content: str | None
    ) -> StoredTale | None:
        """Overwrite the provided content fields; None leaves a field unchanged."""
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE tales
                SET title = COALESCE(?, title),
                    content = COALESCE(?, content)
                WHERE tale_id = ?
                """,
                (title, content, tale_id),
            )
        if cursor.rowcount == 0:
            return None
        return self.get_tale(tale_id=tale_id)

    def set_last_activity(self, *, tale_id: str, at_utc: str) -> bool:
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE tales SET last_activity_at_utc = ? WHERE tale_id = ?",
                (at_utc, tale_id),
            )
        return cursor.rowcount > 0

    def bump_series_votes(self, *, tale_id: str, at_utc: str) -> bool:
        """Atomically add one series vote and stamp the activity time."""
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE tales
                SET series_votes = series_votes + 1,
                    last_activity_at_utc = ?
                WHERE tale_id = ?
                """,
                (at_utc, tale_id),
            )
        return cursor.rowcount > 0

    def tombstone_tale(self, *, tale_id: str, placeholder: str, anonymous_name: str) -> bool:
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE tales
                SET is_deleted = 1,
                    content = ?,
                    author_name = ?
                WHERE tale_id = ?
                """,
                (placeholder, anonymous_name, tale_id),
            )
        return cursor.rowcount > 0

    def delete_tale_and_votes(self, *, tale_id: str) -> bool:
        """Remove a tale row and every ledger row pointing at it in one transaction."""
        with self._connect() as connection:
            connection.execute("DELETE FROM votes WHERE tale_id = ?", (tale_id,))
            cursor = connection.execute("DELETE FROM tales WHERE tale_id = ?", (tale_id,))
        return cursor.rowcount > 0

    def page_roots(
        self,
        *,
        candidate_ids: Sequence[str],
        sort_by: SortBy,
        offset: int,
        limit: int,
    ) -> tuple[list[StoredTale], int]:
        """Sort, filter soft-deleted rows, and paginate the candidate root tales."""
        if not candidate_ids:
            return [], 0
        ordering = _ROOT_ORDERING.get(sort_by, _ROOT_ORDERING["popular"])
        with self._connect() as connection:
            self._stage_ids(connection, candidate_ids)
            total_row = connection.execute(
                """
                SELECT COUNT(*) AS total
                FROM tales t
                JOIN staged_ids s ON s.tale_id = t.tale_id
                WHERE t.is_deleted = 0
                """
            ).fetchone()
            rows = connection.execute(
                f"""
                SELECT {_TALE_COLUMNS}
                FROM tales
                WHERE is_deleted = 0
                  AND tale_id IN (SELECT tale_id FROM staged_ids)
                ORDER BY {ordering}
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            ).fetchall()
        assert total_row is not None
        return [self._tale_from_row(row) for row in rows], int(total_row["total"])

    def search_tales(self, *, text: str, limit: int) -> list[StoredTale]:
        """Substring match over title, content, and author name."""
        pattern = _like_pattern(text)
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_TALE_COLUMNS}
                FROM tales
                WHERE is_deleted = 0
                  AND (
                    title LIKE ? ESCAPE '\\'
                    OR content LIKE ? ESCAPE '\\'
                    OR author_name LIKE ? ESCAPE '\\'
                  )
                ORDER BY created_at_utc DESC
                LIMIT ?
                """,
                (pattern, pattern, pattern, limit),
            ).fetchall()
        return [self._tale_from_row(row) for row in rows]

    def list_tales_by_author(self, *, author_id: str) -> list[StoredTale]:
        """Return the author's non-deleted tales, newest first."""
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_TALE_COLUMNS}
                FROM tales
                WHERE author_id = ? AND is_deleted = 0
                ORDER BY created_at_utc DESC
                """,
                (author_id,),
            ).fetchall()
        return [self._tale_from_row(row) for row in rows]

    def rename_author(self, *, author_id: str, author_name: str) -> int:
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE tales SET author_name = ? WHERE author_id = ? AND is_deleted = 0",
                (author_name, author_id),
            )
        return int(cursor.rowcount)

    def anonymize_author(self, *, author_id: str, ghost_name: str, nil_author_id: str) -> int:
        """Detach every tale from its author while keeping the rows in place."""
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE tales SET author_name = ?, author_id = ? WHERE author_id = ?",
                (ghost_name, nil_author_id, author_id),
            )
        return int(cursor.rowcount)

    def list_trending_inputs(self, *, tale_ids: Sequence[str]) -> list[TrendingInput]:
        if not tale_ids:
            return []
        with self._connect() as connection:
            self._stage_ids(connection, tale_ids)
            rows = connection.execute(
                """
                SELECT t.tale_id, t.series_votes, t.created_at_utc
                FROM tales t
                JOIN staged_ids s ON s.tale_id = t.tale_id
                """
            ).fetchall()
        return [
            TrendingInput(
                tale_id=str(row["tale_id"]),
                series_votes=int(row["series_votes"]),
                created_at_utc=str(row["created_at_utc"]),
            )
            for row in rows
        ]

    def set_trending_score(self, *, tale_id: str, score: float) -> bool:
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE tales SET trending_score = ? WHERE tale_id = ?",
                (score, tale_id),
            )
        return cursor.rowcount > 0

    # Votes

    def insert_vote(self, *, user_id: str, tale_id: str, voted_at_utc: str) -> bool:
        """Insert one ledger row; return False when (user, tale) already voted."""
        try:
            with self._connect() as connection:
                connection.execute(
                    """
                    INSERT INTO votes (vote_id, user_id, tale_id, voted_at_utc)
                    VALUES (?, ?, ?, ?)
                    """,
                    (str(uuid4()), user_id, tale_id, voted_at_utc),
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def has_voted(self, *, user_id: str, tale_id: str) -> bool:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT 1 FROM votes WHERE user_id = ? AND tale_id = ?",
                (user_id, tale_id),
            ).fetchone()
        return row is not None

    def count_votes(self, *, tale_id: str) -> int:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT COUNT(*) AS total FROM votes WHERE tale_id = ?",
                (tale_id,),
            ).fetchone()
        assert row is not None
        return int(row["total"])

    def vote_counts(self, *, tale_ids: Sequence[str]) -> dict[str, int]:
        """Return ledger counts for tales that have at least one vote."""
        if not tale_ids:
            return {}
        with self._connect() as connection:
            self._stage_ids(connection, tale_ids)
            rows = connection.execute(
                """
                SELECT v.tale_id, COUNT(*) AS total
                FROM votes v
                JOIN staged_ids s ON s.tale_id = v.tale_id
                GROUP BY v.tale_id
                """
            ).fetchall()
        return {str(row["tale_id"]): int(row["total"]) for row in rows}

    def count_votes_received(self, *, author_id: str) -> int:
        with self._connect() as connection:
            row = connection.execute(
                """
                SELECT COUNT(*) AS total
                FROM votes v
                JOIN tales t ON t.tale_id = v.tale_id
                WHERE t.author_id = ? AND t.is_deleted = 0
                """,
                (author_id,),
            ).fetchone()
        assert row is not None
        return int(row["total"])

    def delete_votes_by_user(self, *, user_id: str) -> int:
        with self._connect() as connection:
            cursor = connection.execute("DELETE FROM votes WHERE user_id = ?", (user_id,))
        return int(cursor.rowcount)

    # Notifications

    def insert_notification(
        self,
        *,
        user_id: str,
        notification_type: NotificationType,
        message: str,
        related_tale_id: str | None,
        triggered_by_id: str,
        triggered_by_name: str,
        created_at_utc: str,
    ) -> StoredNotification:
        notification_id = str(uuid4())
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO notifications (
                    notification_id,
                    user_id,
                    triggered_by_id,
                    triggered_by_name,
                    type,
                    message,
                    related_tale_id,
                    is_read,
                    created_at_utc
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (
                    notification_id,
                    user_id,
                    triggered_by_id,
                    triggered_by_name,
                    notification_type.value,
                    message,
                    related_tale_id,
                    created_at_utc,
                ),
            )
        return StoredNotification(
            notification_id=notification_id,
            user_id=user_id,
            triggered_by_id=triggered_by_id,
            triggered_by_name=triggered_by_name,
            type=notification_type,
            message=message,
            related_tale_id=related_tale_id,
            is_read=False,
            created_at_utc=created_at_utc,
        )

    def list_unread_notifications(self, *, user_id: str) -> list[StoredNotification]:
        with self._connect() as connection:
            rows = connection.execute(
                """
                SELECT notification_id, user_id, triggered_by_id, triggered_by_name, type,
                       message, related_tale_id, is_read, created_at_utc
                FROM notifications
                WHERE user_id = ? AND is_read = 0
                ORDER BY created_at_utc DESC, rowid DESC
                """,
                (user_id,),
            ).fetchall()
        return [
            StoredNotification(
                notification_id=str(row["notification_id"]),
                user_id=str(row["user_id"]),
                triggered_by_id=str(row["triggered_by_id"]),
                triggered_by_name=str(row["triggered_by_name"]),
                type=NotificationType(row["type"]),
                message=str(row["message"]),
                related_tale_id=row["related_tale_id"],
                is_read=bool(row["is_read"]),
                created_at_utc=str(row["created_at_utc"]),
            )
            for row in rows
        ]

    def mark_notification_read(self, *, notification_id: str, user_id: str) -> bool:
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE notifications SET is_read = 1 WHERE notification_id = ? AND user_id = ?",
                (notification_id, user_id),
            )
        return cursor.rowcount > 0

    def mark_all_notifications_read(self, *, user_id: str) -> int:
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0",
                (user_id,),
            )
        return int(cursor.rowcount)

    def delete_notifications_for_user(self, *, user_id: str) -> int:
        with self._connect() as connection:
            cursor = connection.execute(
                "DELETE FROM notifications WHERE user_id = ?",
                (user_id,),
            )
        return int(cursor.rowcount)

    # Users

    def ensure_user(self, *, user_id: str, display_name: str) -> StoredUser:
        """Create the profile row on first sight; never overwrite an existing one."""
        now = datetime.now(UTC).isoformat(timespec="microseconds")
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO users (user_id, display_name, created_at_utc)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO NOTHING
                """,
                (user_id, display_name, now),
            )
        user = self.get_user(user_id=user_id)
        assert user is not None
        return user

    def get_user(self, *, user_id: str) -> StoredUser | None:
        with self._connect() as connection:
            row = connection.execute(
                """
                SELECT user_id, display_name, bio, avatar_style, created_at_utc
                FROM users
                WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return self._user_from_row(row)

    def update_user(
        self,
        *,
        user_id: str,
        display_name: str | None,
        bio: str | None,
        avatar_style: str | None,
    ) -> StoredUser | None:
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE users
                SET display_name = COALESCE(?, display_name),
                    bio = COALESCE(?, bio),
                    avatar_style = COALESCE(?, avatar_style)
                WHERE user_id = ?
                """,
                (display_name, bio, avatar_style, user_id),
            )
        if cursor.rowcount == 0:
            return None
        return self.get_user(user_id=user_id)

    def delete_user(self, *, user_id: str) -> bool:
        with self._connect() as connection:
            cursor = connection.execute("DELETE FROM users WHERE user_id = ?", (user_id,))
        return cursor.rowcount > 0

    def search_users(self, *, text: str, limit: int) -> list[StoredUser]:
        with self._connect() as connection:
            rows = connection.execute(
                """
                SELECT user_id, display_name, bio, avatar_style, created_at_utc
                FROM users
                WHERE display_name LIKE ? ESCAPE '\\'
                ORDER BY display_name ASC
                LIMIT ?
                """,
                (_like_pattern(text), limit),
            ).fetchall()
        return [self._user_from_row(row) for row in rows]

    # Feedback

    def insert_feedback(
        self, *, user_email: str | None, message: str, submitted_at_utc: str
    ) -> str:
        feedback_id = str(uuid4())
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO feedback (feedback_id, user_email, message, submitted_at_utc)
                VALUES (?, ?, ?, ?)
                """,
                (feedback_id, user_email, message, submitted_at_utc),
            )
        return feedback_id

    @staticmethod
    def _tale_from_row(row: sqlite3.Row) -> StoredTale:
        return StoredTale(
            tale_id=str(row["tale_id"]),
            title=row["title"],
            author_id=str(row["author_id"]),
            author_name=str(row["author_name"]),
            content=str(row["content"]),
            created_at_utc=str(row["created_at_utc"]),
            status=str(row["status"]),
            is_deleted=bool(row["is_deleted"]),
            series_votes=int(row["series_votes"]),
            last_activity_at_utc=row["last_activity_at_utc"],
            trending_score=float(row["trending_score"]),
        )

    @staticmethod
    def _user_from_row(row: sqlite3.Row) -> StoredUser:
        return StoredUser(
            user_id=str(row["user_id"]),
            display_name=str(row["display_name"]),
            bio=row["bio"],
            avatar_style=str(row["avatar_style"]),
            created_at_utc=str(row["created_at_utc"]),
        )
