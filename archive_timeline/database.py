from __future__ import annotations

import json
import logging
import re
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
from uuid import uuid4

from .models import ArchiveItem, FacetRef, FuzzyDate, TagSummary, TimelineEntry, UserSummary
from .settings import settings

logger = logging.getLogger("archive_timeline.database")

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT,
        email TEXT NOT NULL UNIQUE,
        image TEXT,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS archive_items (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT,
        type TEXT NOT NULL,
        file_url TEXT,
        file_name TEXT,
        file_size INTEGER,
        mime_type TEXT,
        content_text TEXT,
        tags TEXT NOT NULL DEFAULT '[]',
        metadata TEXT NOT NULL DEFAULT '{}',
        embedding TEXT,
        sha256_hash TEXT UNIQUE,
        original_language TEXT,
        ai_processing_enabled INTEGER NOT NULL DEFAULT 0,
        ai_processed_at TEXT,
        is_published INTEGER NOT NULL DEFAULT 0,
        is_sensitive INTEGER NOT NULL DEFAULT 0,
        wiki_content TEXT,
        uploader_id TEXT NOT NULL REFERENCES users(id),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        parent_id TEXT REFERENCES archive_items(id),
        version TEXT NOT NULL DEFAULT '1.0'
    );
    """,
    "CREATE INDEX IF NOT EXISTS uploader_idx ON archive_items (uploader_id);",
    "CREATE INDEX IF NOT EXISTS created_at_idx ON archive_items (created_at);",
    "CREATE INDEX IF NOT EXISTS type_idx ON archive_items (type);",
    """
    CREATE TABLE IF NOT EXISTS archive_dates (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        item_id TEXT NOT NULL REFERENCES archive_items(id) ON DELETE CASCADE,
        date_start TEXT NOT NULL,
        date_end TEXT NOT NULL,
        display_date TEXT,
        is_approximate INTEGER NOT NULL DEFAULT 0,
        precision TEXT
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS facets (
        id TEXT PRIMARY KEY,
        category TEXT NOT NULL,
        value TEXT NOT NULL,
        slug TEXT NOT NULL,
        description TEXT,
        is_required INTEGER NOT NULL DEFAULT 0,
        sort_order INTEGER NOT NULL DEFAULT 0,
        UNIQUE (category, slug)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS archive_item_facets (
        item_id TEXT NOT NULL REFERENCES archive_items(id) ON DELETE CASCADE,
        facet_id TEXT NOT NULL REFERENCES facets(id) ON DELETE CASCADE,
        PRIMARY KEY (item_id, facet_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS tags (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        slug TEXT NOT NULL UNIQUE,
        description TEXT,
        color TEXT,
        usage_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS translations (
        id TEXT PRIMARY KEY,
        item_id TEXT NOT NULL REFERENCES archive_items(id) ON DELETE CASCADE,
        language_code TEXT NOT NULL,
        translated_title TEXT,
        translated_description TEXT,
        translated_content TEXT NOT NULL,
        author_type TEXT NOT NULL DEFAULT 'human',
        author_id TEXT NOT NULL REFERENCES users(id),
        status TEXT NOT NULL DEFAULT 'pending',
        is_official INTEGER NOT NULL DEFAULT 0,
        upvotes INTEGER NOT NULL DEFAULT 0,
        downvotes INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS translation_votes (
        id TEXT PRIMARY KEY,
        translation_id TEXT NOT NULL REFERENCES translations(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL REFERENCES users(id),
        vote_type TEXT NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE (translation_id, user_id)
    );
    """,
)

_SLUG_WHITESPACE = re.compile(r"\s+")


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def slugify_tag(name: str) -> str:
    """``World War II`` -> ``world-war-ii``"""
    return _SLUG_WHITESPACE.sub("-", name.lower())


@contextmanager
def get_connection(db_path: Optional[Path] = None) -> Iterator[sqlite3.Connection]:
    path = Path(db_path or settings.db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute("PRAGMA journal_mode = WAL;")
        yield conn
        conn.commit()
    finally:
        conn.close()


def init_db(db_path: Optional[Path] = None) -> None:
    with get_connection(db_path) as conn:
        for statement in SCHEMA:
            conn.execute(statement)


# -------------------------------
# Users
# -------------------------------


def _row_to_user(row: sqlite3.Row) -> UserSummary:
    return UserSummary(id=row["id"], name=row["name"], email=row["email"], image=row["image"])


def get_or_create_user(
    email: str,
    *,
    name: Optional[str] = None,
    db_path: Optional[Path] = None,
) -> UserSummary:
    normalised = email.strip().lower()
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT * FROM users WHERE email = ?", (normalised,)).fetchone()
        if row is not None:
            return _row_to_user(row)
        user_id = str(uuid4())
        conn.execute(
            "INSERT INTO users (id, name, email, created_at) VALUES (?, ?, ?, ?)",
            (user_id, name, normalised, now_utc_iso()),
        )
    logger.info("Created user record", extra={"user_id": user_id})
    return UserSummary(id=user_id, name=name, email=normalised)


def get_user(user_id: str, *, db_path: Optional[Path] = None) -> Optional[UserSummary]:
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return _row_to_user(row) if row else None


# -------------------------------
# Archive items
# -------------------------------


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_item(row: sqlite3.Row) -> ArchiveItem:
    return ArchiveItem(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        type=row["type"],
        file_url=row["file_url"],
        file_name=row["file_name"],
        file_size=row["file_size"],
        mime_type=row["mime_type"],
        content_text=row["content_text"],
        tags=json.loads(row["tags"] or "[]"),
        metadata=json.loads(row["metadata"] or "{}"),
        sha256_hash=row["sha256_hash"],
        original_language=row["original_language"],
        ai_processing_enabled=bool(row["ai_processing_enabled"]),
        ai_processed_at=_parse_datetime(row["ai_processed_at"]),
        is_published=bool(row["is_published"]),
        is_sensitive=bool(row["is_sensitive"]),
        wiki_content=row["wiki_content"],
        uploader_id=row["uploader_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        version=row["version"] or "1.0",
    )


def create_item(
    *,
    title: str,
    item_type: str,
    uploader_id: str,
    description: Optional[str] = None,
    file_url: Optional[str] = None,
    file_name: Optional[str] = None,
    file_size: Optional[int] = None,
    mime_type: Optional[str] = None,
    content_text: Optional[str] = None,
    tags: Sequence[str] = (),
    metadata: Optional[Dict[str, Any]] = None,
    sha256_hash: Optional[str] = None,
    original_language: Optional[str] = None,
    ai_processing_enabled: bool = False,
    ai_processed_at: Optional[datetime] = None,
    is_published: bool = False,
    is_sensitive: bool = False,
    wiki_content: Optional[str] = None,
    db_path: Optional[Path] = None,
) -> ArchiveItem:
    item_id = str(uuid4())
    created_at = now_utc_iso()
    with get_connection(db_path) as conn:
        conn.execute(
            """
            INSERT INTO archive_items (
                id, title, description, type, file_url, file_name, file_size, mime_type,
                content_text, tags, metadata, sha256_hash, original_language,
                ai_processing_enabled, ai_processed_at, is_published, is_sensitive,
                wiki_content, uploader_id, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item_id,
                title,
                description,
                item_type,
                file_url,
                file_name,
                file_size,
                mime_type,
                content_text,
                json.dumps(list(tags), ensure_ascii=False),
                json.dumps(metadata or {}, ensure_ascii=False, default=str),
                sha256_hash,
                original_language,
                int(ai_processing_enabled),
                ai_processed_at.isoformat() if ai_processed_at else None,
                int(is_published),
                int(is_sensitive),
                wiki_content,
                uploader_id,
                created_at,
                created_at,
            ),
        )
        row = conn.execute("SELECT * FROM archive_items WHERE id = ?", (item_id,)).fetchone()
    return _row_to_item(row)


def get_item(item_id: str, *, db_path: Optional[Path] = None) -> Optional[ArchiveItem]:
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT * FROM archive_items WHERE id = ?", (item_id,)).fetchone()
    return _row_to_item(row) if row else None


def find_item_by_hash(sha256_hash: str, *, db_path: Optional[Path] = None) -> Optional[ArchiveItem]:
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM archive_items WHERE sha256_hash = ? LIMIT 1",
            (sha256_hash,),
        ).fetchone()
    return _row_to_item(row) if row else None


def list_items(
    *,
    page: int = 1,
    limit: int = 20,
    item_type: Optional[str] = None,
    tag: Optional[str] = None,
    db_path: Optional[Path] = None,
) -> Tuple[List[ArchiveItem], int]:
    """Newest items first, with the total count matching the same filters."""

    clauses: List[str] = []
    params: List[Any] = []
    if item_type:
        clauses.append("type = ?")
        params.append(item_type)
    if tag:
        clauses.append("EXISTS (SELECT 1 FROM json_each(archive_items.tags) WHERE json_each.value = ?)")
        params.append(tag)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    offset = (max(page, 1) - 1) * limit

    with get_connection(db_path) as conn:
        rows = conn.execute(
            f"SELECT * FROM archive_items {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        ).fetchall()
        total = conn.execute(f"SELECT COUNT(*) FROM archive_items {where}", params).fetchone()[0]
    return [_row_to_item(row) for row in rows], int(total)


def list_all_items(*, item_type: Optional[str] = None, db_path: Optional[Path] = None) -> List[ArchiveItem]:
    with get_connection(db_path) as conn:
        if item_type:
            rows = conn.execute(
                "SELECT * FROM archive_items WHERE type = ? ORDER BY created_at DESC",
                (item_type,),
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM archive_items ORDER BY created_at DESC").fetchall()
    return [_row_to_item(row) for row in rows]


def update_item(
    item_id: str,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
    wiki_content: Optional[str] = None,
    db_path: Optional[Path] = None,
) -> Optional[ArchiveItem]:
    """Apply the given fields; ``None`` leaves a field unchanged."""

    current = get_item(item_id, db_path=db_path)
    if current is None:
        return None

    with get_connection(db_path) as conn:
        conn.execute(
            """
            UPDATE archive_items
            SET title = ?, description = ?, tags = ?, wiki_content = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                title or current.title,
                description if description is not None else current.description,
                json.dumps(list(tags) if tags is not None else current.tags, ensure_ascii=False),
                wiki_content if wiki_content is not None else current.wiki_content,
                now_utc_iso(),
                item_id,
            ),
        )
    return get_item(item_id, db_path=db_path)


def delete_item(item_id: str, *, db_path: Optional[Path] = None) -> bool:
    with get_connection(db_path) as conn:
        deleted = conn.execute("DELETE FROM archive_items WHERE id = ?", (item_id,)).rowcount
    return deleted > 0


def set_item_embedding(
    item_id: str,
    embedding: Sequence[float],
    *,
    db_path: Optional[Path] = None,
) -> None:
    with get_connection(db_path) as conn:
        conn.execute(
            "UPDATE archive_items SET embedding = ? WHERE id = ?",
            (json.dumps([float(value) for value in embedding]), item_id),
        )


def list_items_with_embeddings(
    *,
    db_path: Optional[Path] = None,
) -> List[Tuple[ArchiveItem, List[float]]]:
    with get_connection(db_path) as conn:
        rows = conn.execute("SELECT * FROM archive_items WHERE embedding IS NOT NULL").fetchall()
    return [(_row_to_item(row), json.loads(row["embedding"])) for row in rows]


# -------------------------------
# Dates
# -------------------------------


def _row_to_fuzzy_date(row: sqlite3.Row) -> FuzzyDate:
    return FuzzyDate(
        date_start=date.fromisoformat(row["date_start"]),
        date_end=date.fromisoformat(row["date_end"]),
        display_date=row["display_date"],
        is_approximate=bool(row["is_approximate"]),
        precision=row["precision"],
    )


def add_item_date(item_id: str, fuzzy_date: FuzzyDate, *, db_path: Optional[Path] = None) -> None:
    with get_connection(db_path) as conn:
        conn.execute(
            """
            INSERT INTO archive_dates (item_id, date_start, date_end, display_date, is_approximate, precision)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                item_id,
                fuzzy_date.date_start.isoformat(),
                fuzzy_date.date_end.isoformat(),
                fuzzy_date.display_date,
                int(fuzzy_date.is_approximate),
                fuzzy_date.precision,
            ),
        )


def get_item_dates(item_id: str, *, db_path: Optional[Path] = None) -> List[FuzzyDate]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM archive_dates WHERE item_id = ? ORDER BY id ASC",
            (item_id,),
        ).fetchall()
    return [_row_to_fuzzy_date(row) for row in rows]


# -------------------------------
# Tags
# -------------------------------


def record_tag_usage(names: Iterable[str], *, db_path: Optional[Path] = None) -> None:
    """Increment usage for existing tags and create the missing ones."""

    with get_connection(db_path) as conn:
        for name in names:
            slug = slugify_tag(name)
            row = conn.execute("SELECT id FROM tags WHERE slug = ?", (slug,)).fetchone()
            if row is not None:
                conn.execute("UPDATE tags SET usage_count = usage_count + 1 WHERE id = ?", (row["id"],))
                continue
            conn.execute(
                "INSERT OR IGNORE INTO tags (id, name, slug, usage_count, created_at) VALUES (?, ?, ?, 1, ?)",
                (str(uuid4()), name, slug, now_utc_iso()),
            )


def list_tags(*, db_path: Optional[Path] = None) -> List[TagSummary]:
    with get_connection(db_path) as conn:
        rows = conn.execute("SELECT * FROM tags ORDER BY usage_count DESC, name ASC").fetchall()
    return [
        TagSummary(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            description=row["description"],
            color=row["color"],
            usage_count=int(row["usage_count"] or 0),
        )
        for row in rows
    ]


# -------------------------------
# Timeline
# -------------------------------


def fetch_timeline_entries(*, db_path: Optional[Path] = None) -> List[TimelineEntry]:
    """Every item with its uploader, first date and facets, newest first."""

    with get_connection(db_path) as conn:
        item_rows = conn.execute(
            """
            SELECT archive_items.*, users.name AS uploader_name, users.email AS uploader_email,
                   users.image AS uploader_image
            FROM archive_items
            JOIN users ON users.id = archive_items.uploader_id
            ORDER BY archive_items.created_at DESC
            """
        ).fetchall()
        date_rows = conn.execute(
            """
            SELECT * FROM archive_dates
            WHERE id IN (SELECT MIN(id) FROM archive_dates GROUP BY item_id)
            """
        ).fetchall()
        facet_rows = conn.execute(
            """
            SELECT archive_item_facets.item_id, facets.id, facets.category, facets.value
            FROM archive_item_facets
            JOIN facets ON facets.id = archive_item_facets.facet_id
            ORDER BY facets.category, facets.sort_order
            """
        ).fetchall()

    dates = {row["item_id"]: _row_to_fuzzy_date(row) for row in date_rows}
    facets: Dict[str, List[FacetRef]] = {}
    for row in facet_rows:
        facets.setdefault(row["item_id"], []).append(
            FacetRef(id=row["id"], category=row["category"], value=row["value"])
        )

    return [
        TimelineEntry(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            type=row["type"],
            tags=json.loads(row["tags"] or "[]"),
            created_at=datetime.fromisoformat(row["created_at"]),
            uploader=UserSummary(
                id=row["uploader_id"],
                name=row["uploader_name"],
                email=row["uploader_email"],
                image=row["uploader_image"],
            ),
            date=dates.get(row["id"]),
            facets=facets.get(row["id"], []),
        )
        for row in item_rows
    ]
