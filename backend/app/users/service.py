"""UserStore — DuckDB-backed user profiles, counters and badge awards."""
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import duckdb

from app.chat.errors import StoreUnavailableError, UserNotFoundError, UsernameTakenError
from app.chat.schemas import SenderProfile

from .schemas import COUNTER_FIELDS, UserProfile

logger = logging.getLogger(__name__)

_CREATE_USERS = """
CREATE TABLE IF NOT EXISTS users (
    id                          VARCHAR PRIMARY KEY,
    username                    VARCHAR NOT NULL UNIQUE,
    fullname                    VARCHAR NOT NULL,
    mood_streak                 INTEGER NOT NULL DEFAULT 0,
    self_care_streak            INTEGER NOT NULL DEFAULT 0,
    journal_streak              INTEGER NOT NULL DEFAULT 0,
    community_engagement_streak INTEGER NOT NULL DEFAULT 0,
    created_at                  TIMESTAMP NOT NULL
)
"""

_CREATE_BADGES = """
CREATE TABLE IF NOT EXISTS user_badges (
    user_id    VARCHAR NOT NULL,
    badge_type VARCHAR NOT NULL,
    awarded_at TIMESTAMP NOT NULL,
    PRIMARY KEY (user_id, badge_type)
)
"""

# Profile counter name -> column. Doubles as the whitelist for adjust_counter.
_COUNTER_COLUMNS = {
    "moodStreak": "mood_streak",
    "selfCareStreak": "self_care_streak",
    "journalStreak": "journal_streak",
    "communityEngagementStreak": "community_engagement_streak",
}

_COUNTER_SELECT = ", ".join(_COUNTER_COLUMNS[name] for name in COUNTER_FIELDS)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserStore:
    """User profiles with atomic counter updates.

    Counter changes are single ``UPDATE ... RETURNING`` statements, so a
    concurrent increment and decrement can never lose one another, and the
    value is floored at zero inside the statement.
    """

    _default_db_path: str = "mindmate.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        self._db_path = db_path or self._default_db_path
        self._conn: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_USERS)
        self._conn.execute(_CREATE_BADGES)
        logger.info("[UserStore] Initialized with db=%s", self._db_path)

    def _execute(self, sql: str, params: Iterable = ()) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise StoreUnavailableError("User store is closed")
        try:
            return self._conn.execute(sql, list(params))
        except duckdb.ConstraintException:
            raise
        except duckdb.Error as exc:
            logger.error("[UserStore] Query failed: %s", exc)
            raise StoreUnavailableError(f"User store error: {exc}") from exc

    # -----------------------------------------------------------------------
    # Profiles
    # -----------------------------------------------------------------------

    def create_user(self, username: str, fullname: str) -> UserProfile:
        user_id = uuid.uuid4().hex
        try:
            self._execute(
                "INSERT INTO users (id, username, fullname, created_at) VALUES (?, ?, ?, ?)",
                [user_id, username, fullname, _utcnow()],
            )
        except duckdb.ConstraintException as exc:
            raise UsernameTakenError(username) from exc
        logger.info("[UserStore] Created user %s (%s)", user_id, username)
        return self.get_user(user_id)

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        row = self._execute(
            f"SELECT id, username, fullname, created_at, {_COUNTER_SELECT} FROM users WHERE id = ?",
            [user_id],
        ).fetchone()
        if row is None:
            return None
        return UserProfile(
            id=row[0],
            username=row[1],
            fullname=row[2],
            createdAt=row[3],
            counters=dict(zip(COUNTER_FIELDS, row[4:])),
            badges=self.get_badges(user_id),
        )

    def get_public_profile(self, user_id: str) -> Optional[SenderProfile]:
        row = self._execute(
            "SELECT id, username, fullname FROM users WHERE id = ?", [user_id]
        ).fetchone()
        if row is None:
            return None
        return SenderProfile(id=row[0], username=row[1], fullname=row[2])

    # -----------------------------------------------------------------------
    # Counters
    # -----------------------------------------------------------------------

    def adjust_counter(self, user_id: str, field: str, delta: int) -> Dict[str, int]:
        """Add ``delta`` to a counter (never below zero) and return all counters.

        Raises:
            ValueError: If ``field`` is not a known counter.
            UserNotFoundError: If the user does not exist.
        """
        column = _COUNTER_COLUMNS.get(field)
        if column is None:
            raise ValueError(f"Unknown counter: {field}")
        row = self._execute(
            f"""
            UPDATE users SET {column} = greatest({column} + ?, 0)
            WHERE id = ?
            RETURNING {_COUNTER_SELECT}
            """,
            [delta, user_id],
        ).fetchone()
        if row is None:
            raise UserNotFoundError(user_id)
        return dict(zip(COUNTER_FIELDS, row))

    # -----------------------------------------------------------------------
    # Badges
    # -----------------------------------------------------------------------

    def get_badges(self, user_id: str) -> List[str]:
        rows = self._execute(
            "SELECT badge_type FROM user_badges WHERE user_id = ? ORDER BY awarded_at, badge_type",
            [user_id],
        ).fetchall()
        return [r[0] for r in rows]

    def award_badges(self, user_id: str, badge_types: Iterable[str]) -> List[str]:
        """Record badges the user does not hold yet; returns the new ones."""
        held = set(self.get_badges(user_id))
        new = [b for b in badge_types if b not in held]
        now = _utcnow()
        for badge_type in new:
            self._execute(
                """
                INSERT INTO user_badges (user_id, badge_type, awarded_at)
                VALUES (?, ?, ?)
                ON CONFLICT DO NOTHING
                """,
                [user_id, badge_type, now],
            )
        if new:
            logger.info("[UserStore] Awarded %s to %s", new, user_id)
        return new

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
