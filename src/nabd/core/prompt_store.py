"""Prompt storage, gallery persistence, and the filtered listing query.

This module owns every read and write against the ``prompts`` and
``generated_images`` tables.  Route handlers in :mod:`nabd.api.main` stay
focused on HTTP concerns while the query rules live here where they can be
tested as a small unit.

Listing rules
-------------
- ``query`` matches title, prompt text, or description (Unicode
  case-insensitive substring; every character matches literally)
- ``category`` is an exact match
- ``min_likes`` is an inclusive lower bound on ``likes_count``
- all filters are combined with AND

Sort keys are ``recent``, ``mostLiked`` and ``popular`` (the default).  Page
numbers and page sizes are clamped rather than rejected: a page past the end
simply comes back empty with the correct total.
"""

from __future__ import annotations

import json
import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from nabd.core.database import Database, utc_now

logger = logging.getLogger(__name__)

DEFAULT_PROMPTS_FILE: Path = Path(__file__).resolve().parent.parent / "data" / "default_prompts.json"

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 50

# Largest value SQLite can bind as INTEGER (signed 64-bit).
SQLITE_MAX_INT = 2**63 - 1
MAX_PAGE = SQLITE_MAX_INT // MAX_PAGE_SIZE

# Sort key -> ORDER BY clause.  Values are fixed strings, never user input.
SORT_ORDERS: dict[str, str] = {
    "recent": "created_at DESC",
    "mostLiked": "likes_count DESC",
    "popular": "usage_count DESC",
}
DEFAULT_SORT = "popular"

# Columns update_prompt() may touch.  Counters have dedicated operations.
_UPDATABLE_FIELDS = frozenset({"title", "prompt_text", "description", "category", "generated_image_url"})


@dataclass
class Prompt:
    """A stored prompt and its counters."""

    id: str
    title: str
    prompt_text: str
    description: str
    category: str
    generated_image_url: str | None
    usage_count: int
    likes_count: int
    created_at: str


@dataclass
class GeneratedImage:
    """One image produced for a prompt.  Immutable once stored."""

    id: str
    prompt_id: str
    image_url: str
    created_at: str


@dataclass
class PromptFilters:
    """Optional listing filters.  ``None`` means "not filtered"."""

    query: str | None = None
    category: str | None = None
    sort_by: str = DEFAULT_SORT
    min_likes: int | None = None


@dataclass
class PromptPage:
    """One page of a prompt listing.

    Attributes:
        items: Prompts on this page, in sort order.
        total: Number of prompts matching the filters before pagination.
        page: Resolved one-based page number.
        page_size: Resolved page size.
    """

    items: list[Prompt] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.total > 0 else 1

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


def clamp_page(page: int | None) -> int:
    """Return a one-based page number, treating missing or < 1 as page 1.

    Pages are capped at :data:`MAX_PAGE` so the SQL offset always fits an
    SQLite integer; any page that high is past the end anyway.
    """
    if page is None or page < 1:
        return 1
    return min(page, MAX_PAGE)


def clamp_page_size(page_size: int | None) -> int:
    """Return a page size in ``[1, MAX_PAGE_SIZE]``, defaulting when missing."""
    if page_size is None:
        return DEFAULT_PAGE_SIZE
    return min(max(page_size, 1), MAX_PAGE_SIZE)


def _row_to_prompt(row) -> Prompt:
    return Prompt(
        id=row["id"],
        title=row["title"],
        prompt_text=row["prompt_text"],
        description=row["description"],
        category=row["category"],
        generated_image_url=row["generated_image_url"],
        usage_count=row["usage_count"],
        likes_count=row["likes_count"],
        created_at=row["created_at"],
    )


def _row_to_image(row) -> GeneratedImage:
    return GeneratedImage(
        id=row["id"],
        prompt_id=row["prompt_id"],
        image_url=row["image_url"],
        created_at=row["created_at"],
    )


def build_where_clause(filters: PromptFilters) -> tuple[str, list]:
    """Translate listing filters into a SQL ``WHERE`` clause.

    Args:
        filters: The requested filters.

    Returns:
        Tuple of ``(clause, params)``.  ``clause`` is empty when no filter
        applies, otherwise it starts with ``WHERE``.
    """
    conditions: list[str] = []
    params: list = []

    if filters.query and filters.query.strip():
        # casefold() is registered on every connection by Database.connect()
        term = filters.query.strip().casefold()
        conditions.append(
            "(instr(casefold(title), ?) > 0 OR instr(casefold(prompt_text), ?) > 0 "
            "OR instr(casefold(description), ?) > 0)"
        )
        params.extend([term, term, term])

    if filters.category:
        conditions.append("category = ?")
        params.append(filters.category)

    if filters.min_likes is not None and filters.min_likes > 0:
        conditions.append("likes_count >= ?")
        params.append(min(filters.min_likes, SQLITE_MAX_INT))

    if not conditions:
        return "", params
    return "WHERE " + " AND ".join(conditions), params


class PromptStore:
    """Read and write prompts and their generated images."""

    def __init__(self, db: Database):
        self.db = db

    # -- Listing ------------------------------------------------------------

    def list_prompts(
        self,
        filters: PromptFilters | None = None,
        page: int | None = 1,
        page_size: int | None = DEFAULT_PAGE_SIZE,
    ) -> PromptPage:
        """Return one page of prompts matching *filters*.

        The count and the page are read inside the same transaction so the
        reported total always describes the returned items.

        Args:
            filters: Listing filters; ``None`` lists everything.
            page: One-based page number (clamped to >= 1).
            page_size: Items per page (clamped to ``[1, 50]``).

        Returns:
            A :class:`PromptPage` with the items and the pre-pagination total.
        """
        filters = filters or PromptFilters()
        page = clamp_page(page)
        page_size = clamp_page_size(page_size)
        offset = (page - 1) * page_size

        where, params = build_where_clause(filters)
        order = SORT_ORDERS.get(filters.sort_by, SORT_ORDERS[DEFAULT_SORT])

        with self.db.transaction() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM prompts {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM prompts {where} ORDER BY {order}, created_at DESC, id "
                "LIMIT ? OFFSET ?",
                [*params, page_size, offset],
            ).fetchall()

        return PromptPage(
            items=[_row_to_prompt(row) for row in rows],
            total=total,
            page=page,
            page_size=page_size,
        )

    # -- Single prompts -----------------------------------------------------

    def get_prompt(self, prompt_id: str) -> Prompt | None:
        with self.db.transaction() as conn:
            row = conn.execute("SELECT * FROM prompts WHERE id = ?", (prompt_id,)).fetchone()
        return _row_to_prompt(row) if row else None

    def create_prompt(
        self,
        title: str,
        prompt_text: str,
        description: str,
        category: str,
        *,
        usage_count: int = 0,
        created_at: str | None = None,
    ) -> Prompt:
        """Insert a new prompt and return it.

        Input is expected to be validated already (see
        :class:`nabd.api.models.PromptCreate`).  Like counts always start at
        zero; they only move through :class:`~nabd.core.like_ledger.LikeLedger`.
        """
        prompt = Prompt(
            id=str(uuid.uuid4()),
            title=title,
            prompt_text=prompt_text,
            description=description,
            category=category,
            generated_image_url=None,
            usage_count=usage_count,
            likes_count=0,
            created_at=created_at or utc_now(),
        )
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO prompts (id, title, prompt_text, description, category,
                                     usage_count, likes_count, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (
                    prompt.id,
                    prompt.title,
                    prompt.prompt_text,
                    prompt.description,
                    prompt.category,
                    prompt.usage_count,
                    prompt.created_at,
                ),
            )
        logger.info(f"Created prompt {prompt.id} ({prompt.category})")
        return prompt

    def update_prompt(self, prompt_id: str, **updates) -> Prompt | None:
        """Update editable prompt fields.

        Args:
            prompt_id: Prompt to update.
            **updates: Any of ``title``, ``prompt_text``, ``description``,
                ``category``, ``generated_image_url``.

        Returns:
            The updated prompt, or ``None`` if it does not exist.

        Raises:
            ValueError: If an unknown or read-only field is passed.
        """
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if not updates:
            return self.get_prompt(prompt_id)

        assignments = ", ".join(f"{name} = ?" for name in updates)
        with self.db.transaction(immediate=True) as conn:
            conn.execute(
                f"UPDATE prompts SET {assignments} WHERE id = ?",
                [*updates.values(), prompt_id],
            )
            row = conn.execute("SELECT * FROM prompts WHERE id = ?", (prompt_id,)).fetchone()
        return _row_to_prompt(row) if row else None

    def delete_prompt(self, prompt_id: str) -> bool:
        """Delete a prompt along with its images and likes.

        Returns:
            True if a prompt was deleted, False if it did not exist
        """
        with self.db.transaction(immediate=True) as conn:
            cursor = conn.execute("DELETE FROM prompts WHERE id = ?", (prompt_id,))
            was_deleted = cursor.rowcount > 0

        if was_deleted:
            logger.info(f"Deleted prompt {prompt_id}")
        else:
            logger.debug(f"Delete requested for unknown prompt {prompt_id}")
        return was_deleted

    def increment_usage(self, prompt_id: str) -> bool:
        """Add one to a prompt's usage counter.

        Returns:
            True if the prompt exists and was updated
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE prompts SET usage_count = usage_count + 1 WHERE id = ?",
                (prompt_id,),
            )
            return cursor.rowcount > 0

    # -- Generated images ---------------------------------------------------

    def list_generated_images(self, prompt_id: str) -> list[GeneratedImage]:
        """Return a prompt's generated images, newest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM generated_images
                WHERE prompt_id = ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (prompt_id,),
            ).fetchall()
        return [_row_to_image(row) for row in rows]

    def get_generated_image(self, image_id: str) -> GeneratedImage | None:
        with self.db.transaction() as conn:
            row = conn.execute("SELECT * FROM generated_images WHERE id = ?", (image_id,)).fetchone()
        return _row_to_image(row) if row else None

    def save_generated_image(self, prompt_id: str, image_url: str) -> GeneratedImage:
        """Store a generated image and make it the prompt's cached image.

        Both writes happen in one transaction.

        Raises:
            StorageError: If the prompt no longer exists (foreign key failure)
                or the database is unavailable.
        """
        image = GeneratedImage(
            id=str(uuid.uuid4()),
            prompt_id=prompt_id,
            image_url=image_url,
            created_at=utc_now(),
        )
        with self.db.transaction(immediate=True) as conn:
            conn.execute(
                "INSERT INTO generated_images (id, prompt_id, image_url, created_at) VALUES (?, ?, ?, ?)",
                (image.id, image.prompt_id, image.image_url, image.created_at),
            )
            conn.execute(
                "UPDATE prompts SET generated_image_url = ? WHERE id = ?",
                (image_url, prompt_id),
            )
        logger.info(f"Saved generated image {image.id} for prompt {prompt_id}")
        return image

    # -- Seeding ------------------------------------------------------------

    def count_prompts(self) -> int:
        with self.db.transaction() as conn:
            return conn.execute("SELECT COUNT(*) FROM prompts").fetchone()[0]

    def seed_default_prompts(
        self,
        source: Path = DEFAULT_PROMPTS_FILE,
        rng: random.Random | None = None,
    ) -> int:
        """Insert the curated default prompts into an empty database.

        Each seeded prompt gets a random starting usage count (10-59) and a
        random number of likes (5-34).  Likes are written as real like rows
        under synthetic ``seed-`` session identifiers so ``likes_count`` keeps
        matching the number of like records.

        Args:
            source: JSON file with a top-level ``prompts`` list.
            rng: Random source, injectable for deterministic tests.

        Returns:
            Number of prompts inserted (0 when the table already had data).
        """
        rng = rng or random.Random()

        with self.db.transaction(immediate=True) as conn:
            if conn.execute("SELECT 1 FROM prompts LIMIT 1").fetchone():
                return 0

            with open(source, encoding="utf-8") as handle:
                entries = json.load(handle).get("prompts", [])

            base_time = datetime.now(timezone.utc)
            for index, entry in enumerate(entries):
                prompt_id = str(uuid.uuid4())
                # Stagger creation times so "recent" has a defined order
                created_at = (base_time - timedelta(minutes=index)).isoformat(timespec="microseconds")
                likes = rng.randint(5, 34)
                conn.execute(
                    """
                    INSERT INTO prompts (id, title, prompt_text, description, category,
                                         usage_count, likes_count, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        prompt_id,
                        entry["title"],
                        entry["prompt_text"],
                        entry["description"],
                        entry["category"],
                        rng.randint(10, 59),
                        likes,
                        created_at,
                    ),
                )
                conn.executemany(
                    "INSERT INTO prompt_likes (id, prompt_id, session_id, created_at) VALUES (?, ?, ?, ?)",
                    [
                        (str(uuid.uuid4()), prompt_id, f"seed-{uuid.uuid4()}", created_at)
                        for _ in range(likes)
                    ],
                )

        logger.info(f"Seeded {len(entries)} default prompts")
        return len(entries)
