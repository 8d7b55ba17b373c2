"""Anonymous like bookkeeping.

Likes are scoped by an opaque session identifier rather than a user account.
Each ``(prompt_id, session_id)`` pair may hold at most one like, enforced by a
UNIQUE constraint.  ``prompts.likes_count`` is a denormalized copy of the
number of like rows; every mutation changes the like row and the counter in
the same ``BEGIN IMMEDIATE`` transaction so the two never drift apart.
"""

import logging
import uuid

from nabd.core.database import Database, utc_now

logger = logging.getLogger(__name__)


class LikeLedger:
    """Track which session liked which prompt."""

    def __init__(self, db: Database):
        self.db = db

    def like(self, prompt_id: str, session_id: str) -> bool:
        """Record a like and bump the prompt's counter.

        Args:
            prompt_id: Prompt being liked
            session_id: Anonymous session identifier

        Returns:
            True if the like was recorded, False if this session already liked
            the prompt or the prompt does not exist (nothing is changed)
        """
        with self.db.transaction(immediate=True) as conn:
            if not conn.execute("SELECT 1 FROM prompts WHERE id = ?", (prompt_id,)).fetchone():
                logger.debug(f"Like for unknown prompt {prompt_id}")
                return False

            # INSERT OR IGNORE leaves rowcount at 0 when the pair already exists
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO prompt_likes (id, prompt_id, session_id, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (str(uuid.uuid4()), prompt_id, session_id, utc_now()),
            )
            if cursor.rowcount == 0:
                logger.debug(f"Already liked: {prompt_id} by {session_id}")
                return False

            conn.execute(
                "UPDATE prompts SET likes_count = likes_count + 1 WHERE id = ?",
                (prompt_id,),
            )

        logger.info(f"Liked prompt {prompt_id}")
        return True

    def unlike(self, prompt_id: str, session_id: str) -> bool:
        """Remove a like and decrement the prompt's counter.

        The counter is floored at zero.

        Returns:
            True if a like was removed, False if this session had not liked
            the prompt
        """
        with self.db.transaction(immediate=True) as conn:
            cursor = conn.execute(
                "DELETE FROM prompt_likes WHERE prompt_id = ? AND session_id = ?",
                (prompt_id, session_id),
            )
            if cursor.rowcount == 0:
                logger.debug(f"Not liked: {prompt_id} by {session_id}")
                return False

            conn.execute(
                "UPDATE prompts SET likes_count = MAX(likes_count - 1, 0) WHERE id = ?",
                (prompt_id,),
            )

        logger.info(f"Unliked prompt {prompt_id}")
        return True

    def has_liked(self, prompt_id: str, session_id: str) -> bool:
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM prompt_likes WHERE prompt_id = ? AND session_id = ? LIMIT 1",
                (prompt_id, session_id),
            ).fetchone()
        return row is not None

    def liked_prompt_ids(self, session_id: str) -> set[str]:
        """Return the identifiers of every prompt this session has liked."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT prompt_id FROM prompt_likes WHERE session_id = ?",
                (session_id,),
            ).fetchall()
        return {row["prompt_id"] for row in rows}

    def likes_count(self, prompt_id: str) -> int:
        """Return the prompt's current like counter, or 0 if it does not exist."""
        with self.db.transaction() as conn:
            row = conn.execute("SELECT likes_count FROM prompts WHERE id = ?", (prompt_id,)).fetchone()
        return row["likes_count"] if row else 0
