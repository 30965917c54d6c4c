from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple
from uuid import uuid4

from .database import get_connection, now_utc_iso
from .models import Translation, UserSummary

logger = logging.getLogger("archive_timeline.translations")

VOTE_TYPES = ("up", "down")


class DuplicateTranslationError(ValueError):
    """The author already has a translation for this item and language."""


class TranslationNotFoundError(LookupError):
    pass


_SELECT_WITH_AUTHOR = """
    SELECT translations.*, users.name AS author_name, users.email AS author_email,
           users.image AS author_image
    FROM translations
    JOIN users ON users.id = translations.author_id
"""


def _row_to_translation(row: sqlite3.Row) -> Translation:
    return Translation(
        id=row["id"],
        item_id=row["item_id"],
        language_code=row["language_code"],
        translated_title=row["translated_title"],
        translated_description=row["translated_description"],
        translated_content=row["translated_content"],
        author_type=row["author_type"],
        author_id=row["author_id"],
        status=row["status"],
        is_official=bool(row["is_official"]),
        upvotes=int(row["upvotes"]),
        downvotes=int(row["downvotes"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        author=UserSummary(
            id=row["author_id"],
            name=row["author_name"],
            email=row["author_email"],
            image=row["author_image"],
        ),
    )


def list_translations(item_id: str, *, db_path: Optional[Path] = None) -> List[Translation]:
    """Translations of an item, best voted first."""

    with get_connection(db_path) as conn:
        rows = conn.execute(
            _SELECT_WITH_AUTHOR
            + " WHERE translations.item_id = ? ORDER BY translations.upvotes DESC, translations.created_at DESC",
            (item_id,),
        ).fetchall()
    return [_row_to_translation(row) for row in rows]


def get_translation(translation_id: str, *, db_path: Optional[Path] = None) -> Optional[Translation]:
    with get_connection(db_path) as conn:
        row = conn.execute(_SELECT_WITH_AUTHOR + " WHERE translations.id = ?", (translation_id,)).fetchone()
    return _row_to_translation(row) if row else None


def create_translation(
    *,
    item_id: str,
    author_id: str,
    language_code: str,
    translated_content: str,
    translated_title: Optional[str] = None,
    translated_description: Optional[str] = None,
    author_type: str = "human",
    db_path: Optional[Path] = None,
) -> Translation:
    """Store a new translation.

    Human translations wait for moderation (``pending``); AI output starts as
    a ``draft``. Raises DuplicateTranslationError when the author already
    translated the item into ``language_code``.
    """

    status = "draft" if author_type == "ai" else "pending"
    translation_id = str(uuid4())
    with get_connection(db_path) as conn:
        existing = conn.execute(
            "SELECT id FROM translations WHERE item_id = ? AND language_code = ? AND author_id = ?",
            (item_id, language_code, author_id),
        ).fetchone()
        if existing is not None:
            raise DuplicateTranslationError(
                "You already have a translation for this language. Edit your existing translation instead."
            )
        conn.execute(
            """
            INSERT INTO translations (
                id, item_id, language_code, translated_title, translated_description,
                translated_content, author_type, author_id, status, is_official, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
            """,
            (
                translation_id,
                item_id,
                language_code,
                translated_title or None,
                translated_description or None,
                translated_content,
                author_type,
                author_id,
                status,
                now_utc_iso(),
            ),
        )
    logger.info(
        "Translation created",
        extra={"item_id": item_id, "language_code": language_code, "author_type": author_type},
    )
    created = get_translation(translation_id, db_path=db_path)
    if created is None:  # pragma: no cover - the row was inserted above
        raise RuntimeError("Failed to persist translation")
    return created


def vote_translation(
    translation_id: str,
    *,
    user_id: str,
    vote_type: str,
    db_path: Optional[Path] = None,
) -> Tuple[Optional[Translation], bool]:
    """Cast, switch or withdraw a vote.

    Repeating the current vote withdraws it. Returns the updated translation
    (``None`` when the vote was withdrawn) and whether a vote was removed.
    """

    if vote_type not in VOTE_TYPES:
        raise ValueError('Invalid vote type. Must be "up" or "down".')

    with get_connection(db_path) as conn:
        translation = conn.execute("SELECT id FROM translations WHERE id = ?", (translation_id,)).fetchone()
        if translation is None:
            raise TranslationNotFoundError("Translation not found")

        existing = conn.execute(
            "SELECT id, vote_type FROM translation_votes WHERE translation_id = ? AND user_id = ?",
            (translation_id, user_id),
        ).fetchone()

        if existing is not None:
            _adjust_count(conn, translation_id, existing["vote_type"], -1)
            if existing["vote_type"] == vote_type:
                conn.execute("DELETE FROM translation_votes WHERE id = ?", (existing["id"],))
                return None, True
            conn.execute(
                "UPDATE translation_votes SET vote_type = ? WHERE id = ?",
                (vote_type, existing["id"]),
            )
        else:
            conn.execute(
                """
                INSERT INTO translation_votes (id, translation_id, user_id, vote_type, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (str(uuid4()), translation_id, user_id, vote_type, now_utc_iso()),
            )
        _adjust_count(conn, translation_id, vote_type, 1)

    return get_translation(translation_id, db_path=db_path), False


def _adjust_count(conn: sqlite3.Connection, translation_id: str, vote_type: str, delta: int) -> None:
    column = "upvotes" if vote_type == "up" else "downvotes"
    conn.execute(
        f"UPDATE translations SET {column} = MAX(0, {column} + ?) WHERE id = ?",
        (delta, translation_id),
    )
