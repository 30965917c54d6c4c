"""Curated facet taxonomy ("hard facets") and facet selection helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional
from uuid import uuid4

from .database import get_connection
from .models import Facet, FacetRef, FacetSelection

logger = logging.getLogger("archive_timeline.facets")

SENSITIVE_LEVELS = {"restricted", "confidential"}


class FacetDefinition(NamedTuple):
    category: str
    value: str
    slug: str
    description: Optional[str]
    is_required: bool
    sort_order: int


DEFAULT_FACETS: List[FacetDefinition] = [
    # era
    FacetDefinition("era", "Ancient History (Before 500 CE)", "ancient", "Before the fall of Rome", False, 1),
    FacetDefinition("era", "Medieval Period (500-1500)", "medieval", "Middle Ages", False, 2),
    FacetDefinition("era", "Early Modern (1500-1800)", "early-modern", "Renaissance to Enlightenment", False, 3),
    FacetDefinition("era", "19th Century", "19th-century", "1800-1900", False, 4),
    FacetDefinition("era", "World War I Era (1914-1918)", "ww1", "The Great War", False, 5),
    FacetDefinition("era", "Interwar Period (1918-1939)", "interwar", "Between the World Wars", False, 6),
    FacetDefinition("era", "World War II Era (1939-1945)", "ww2", "Second World War", False, 7),
    FacetDefinition("era", "Cold War (1945-1991)", "cold-war", "US-Soviet tensions", False, 8),
    FacetDefinition("era", "Post-Cold War (1991-2000)", "post-cold-war", "End of Soviet Union", False, 9),
    FacetDefinition("era", "21st Century", "21st-century", "2000-present", False, 10),
    # location
    FacetDefinition("location", "Global/International", "global", "Worldwide or multi-regional", False, 1),
    FacetDefinition("location", "North America", "north-america", None, False, 2),
    FacetDefinition("location", "South America", "south-america", None, False, 3),
    FacetDefinition("location", "Europe", "europe", None, False, 4),
    FacetDefinition("location", "Middle East", "middle-east", None, False, 5),
    FacetDefinition("location", "Africa", "africa", None, False, 6),
    FacetDefinition("location", "Asia", "asia", None, False, 7),
    FacetDefinition("location", "Oceania", "oceania", "Australia, Pacific Islands", False, 8),
    FacetDefinition("location", "Turkey/Anatolia", "turkey", "Ottoman Empire, Republic of Turkey", False, 9),
    # subject
    FacetDefinition("subject", "Military/Warfare", "military", "Armed conflict, strategy, battles", False, 1),
    FacetDefinition("subject", "Politics/Government", "politics", "Political events, elections, policies", False, 2),
    FacetDefinition("subject", "Economics/Trade", "economics", "Financial systems, commerce", False, 3),
    FacetDefinition("subject", "Social/Cultural", "social", "Society, culture, movements", False, 4),
    FacetDefinition("subject", "Science/Technology", "science", "Scientific discoveries, innovations", False, 5),
    FacetDefinition("subject", "Religion/Philosophy", "religion", "Religious events, theological texts", False, 6),
    FacetDefinition("subject", "Art/Literature", "art", "Creative works, artistic movements", False, 7),
    FacetDefinition("subject", "Human Rights/Justice", "human-rights", "Civil rights, legal cases", False, 8),
    FacetDefinition("subject", "Environment/Nature", "environment", "Ecology, natural disasters", False, 9),
    FacetDefinition("subject", "Personal/Biographical", "personal", "Individual stories, memoirs", False, 10),
    # source_type
    FacetDefinition("source_type", "Government Document", "government", "Official state records", True, 1),
    FacetDefinition("source_type", "Military Record", "military-doc", "Armed forces documentation", True, 2),
    FacetDefinition("source_type", "News Media", "news", "Newspapers, journalism", True, 3),
    FacetDefinition("source_type", "Academic/Research", "academic", "Scholarly work, studies", True, 4),
    FacetDefinition("source_type", "Personal Correspondence", "personal", "Letters, diaries, memoirs", True, 5),
    FacetDefinition("source_type", "Legal Document", "legal", "Court records, contracts", True, 6),
    FacetDefinition("source_type", "Organizational Record", "organizational", "NGO, corporate, institutional", True, 7),
    FacetDefinition("source_type", "Photograph/Image", "photo-doc", "Visual documentation", True, 8),
    FacetDefinition("source_type", "Audio/Video Recording", "media", "Recorded audio/visual material", True, 9),
    FacetDefinition("source_type", "Unknown/Uncertain", "unknown", "Origin unclear", True, 10),
    # language
    FacetDefinition("language", "English", "en", None, False, 1),
    FacetDefinition("language", "Turkish", "tr", None, False, 2),
    FacetDefinition("language", "Arabic", "ar", None, False, 3),
    FacetDefinition("language", "German", "de", None, False, 4),
    FacetDefinition("language", "French", "fr", None, False, 5),
    FacetDefinition("language", "Russian", "ru", None, False, 6),
    FacetDefinition("language", "Spanish", "es", None, False, 7),
    FacetDefinition("language", "Chinese", "zh", None, False, 8),
    FacetDefinition("language", "Japanese", "ja", None, False, 9),
    FacetDefinition("language", "Ottoman Turkish", "ota", "Pre-1928 Turkish script", False, 10),
    FacetDefinition("language", "Latin", "la", "Classical or Medieval Latin", False, 11),
    FacetDefinition("language", "Multiple Languages", "multi", None, False, 12),
    FacetDefinition("language", "Unknown", "unknown-lang", None, False, 13),
    # sensitivity
    FacetDefinition("sensitivity", "Public", "public", "Safe for all audiences", True, 1),
    FacetDefinition("sensitivity", "Sensitive Content", "sensitive", "Mature themes, requires warning", True, 2),
    FacetDefinition("sensitivity", "Graphic/Violent", "graphic", "War imagery, violence (auto-blurred)", True, 3),
    FacetDefinition("sensitivity", "Restricted", "restricted", "Admin approval required", True, 4),
]


def seed_default_facets(*, db_path: Optional[Path] = None) -> int:
    """Insert the default taxonomy into an empty facets table.

    Returns the number of inserted facets (0 when already seeded).
    """

    with get_connection(db_path) as conn:
        existing = conn.execute("SELECT 1 FROM facets LIMIT 1").fetchone()
        if existing is not None:
            logger.debug("Facets already seeded, skipping")
            return 0
        conn.executemany(
            """
            INSERT INTO facets (id, category, value, slug, description, is_required, sort_order)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    str(uuid4()),
                    definition.category,
                    definition.value,
                    definition.slug,
                    definition.description,
                    int(definition.is_required),
                    definition.sort_order,
                )
                for definition in DEFAULT_FACETS
            ],
        )
    logger.info("Seeded %d facets", len(DEFAULT_FACETS))
    return len(DEFAULT_FACETS)


def list_facets_grouped(*, db_path: Optional[Path] = None) -> Dict[str, List[Facet]]:
    with get_connection(db_path) as conn:
        rows = conn.execute("SELECT * FROM facets ORDER BY category ASC, sort_order ASC").fetchall()

    grouped: Dict[str, List[Facet]] = {}
    for row in rows:
        grouped.setdefault(row["category"], []).append(
            Facet(
                id=row["id"],
                category=row["category"],
                value=row["value"],
                slug=row["slug"],
                description=row["description"],
                is_required=bool(row["is_required"]),
                sort_order=int(row["sort_order"]),
            )
        )
    return grouped


def get_item_facets(item_id: str, *, db_path: Optional[Path] = None) -> List[FacetRef]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            """
            SELECT facets.id, facets.category, facets.value
            FROM archive_item_facets
            JOIN facets ON facets.id = archive_item_facets.facet_id
            WHERE archive_item_facets.item_id = ?
            ORDER BY facets.category, facets.sort_order
            """,
            (item_id,),
        ).fetchall()
    return [FacetRef(id=row["id"], category=row["category"], value=row["value"]) for row in rows]


def merge_facet_selection(
    ai_suggested: Optional[FacetSelection],
    user_selected: Optional[FacetSelection],
) -> FacetSelection:
    """Combine AI suggestions with the uploader's choice; the uploader wins per category."""

    merged = ai_suggested.model_dump() if ai_suggested else {}
    if user_selected is not None:
        for key, value in user_selected.model_dump(exclude_unset=True).items():
            if key == "extra":
                merged.setdefault("extra", {}).update(value)
            else:
                merged[key] = value
    return FacetSelection(**merged)


def facet_values(selection: FacetSelection) -> List[tuple[str, str]]:
    """Flatten a selection into ``(category, value)`` pairs."""

    pairs: List[tuple[str, str]] = []
    for category in ("era", "location", "subject"):
        pairs.extend((category, value) for value in getattr(selection, category))
    for category in ("source_type", "language", "sensitivity"):
        value = getattr(selection, category)
        if value:
            pairs.append((category, value))
    return pairs


def link_item_facets(
    item_id: str,
    selection: FacetSelection,
    *,
    db_path: Optional[Path] = None,
) -> List[FacetRef]:
    """Attach taxonomy facets matching the selection by value or slug.

    Values not present in the taxonomy are skipped.
    """

    linked: List[FacetRef] = []
    with get_connection(db_path) as conn:
        for category, value in facet_values(selection):
            row = conn.execute(
                """
                SELECT id, category, value FROM facets
                WHERE category = ? AND (lower(value) = lower(?) OR lower(slug) = lower(?))
                LIMIT 1
                """,
                (category, value, value),
            ).fetchone()
            if row is None:
                logger.debug("Unknown facet value skipped", extra={"category": category, "value": value})
                continue
            conn.execute(
                "INSERT OR IGNORE INTO archive_item_facets (item_id, facet_id) VALUES (?, ?)",
                (item_id, row["id"]),
            )
            linked.append(FacetRef(id=row["id"], category=row["category"], value=row["value"]))
    return linked


def is_sensitive(selection: FacetSelection) -> bool:
    return (selection.sensitivity or "").strip().lower() in SENSITIVE_LEVELS
