"""Upload ingestion: store the file, enrich it and record the archive item."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from pydantic import ValidationError

from . import database
from .facets import is_sensitive, link_item_facets, merge_facet_selection
from .file_processor import calculate_file_hash, extract_text, validate_upload
from .fuzzy_date import format_long_date
from .gemini import GeminiClient, GeminiError
from .media_processor import process_media
from .models import AIEnhancements, FacetSelection, FuzzyDate, UploadResponse
from .storage import StorageError
from .translations import create_translation

logger = logging.getLogger("archive_timeline.upload_pipeline")

EMBEDDING_TEXT_CHARS = 8000


@dataclass
class UploadInput:
    """Form fields of a multipart upload, after the file bytes are read."""

    data: bytes
    file_name: str
    mime_type: str
    title: str
    item_type: str
    description: Optional[str] = None
    ai_processing: bool = True
    facets_json: Optional[str] = None
    tags_json: Optional[str] = None
    date_type: Optional[str] = None
    date_exact: Optional[str] = None
    date_start: Optional[str] = None
    date_end: Optional[str] = None
    date_display: Optional[str] = None
    date_precision: Optional[str] = None


@dataclass
class UploadLimits:
    max_file_size: int
    max_video_size: int
    max_characters: int


@dataclass
class _Enrichment:
    facets: Optional[FacetSelection] = None
    tags: List[str] = field(default_factory=list)
    translation: str = ""
    embedding: Optional[List[float]] = None


def _parse_iso_date(value: str, field_name: str) -> date:
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {field_name}: {value}") from exc


def build_fuzzy_date(upload: UploadInput) -> Optional[FuzzyDate]:
    """The date record described by the form, or ``None`` when none was given."""

    try:
        if upload.date_type == "exact" and upload.date_exact:
            exact = _parse_iso_date(upload.date_exact, "dateExact")
            return FuzzyDate(
                date_start=exact,
                date_end=exact,
                display_date=format_long_date(exact),
                is_approximate=False,
                precision="day",
            )
        if upload.date_type == "period" and upload.date_start and upload.date_end:
            return FuzzyDate(
                date_start=_parse_iso_date(upload.date_start, "dateStart"),
                date_end=_parse_iso_date(upload.date_end, "dateEnd"),
                display_date=upload.date_display or f"{upload.date_start} to {upload.date_end}",
                is_approximate=True,
                precision=upload.date_precision or "year",
            )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail="dateStart must not be after dateEnd") from exc
    return None


def parse_user_tags(tags_json: Optional[str]) -> Optional[List[str]]:
    if not tags_json:
        return None
    try:
        parsed = json.loads(tags_json)
    except ValueError:
        logger.warning("Ignoring malformed tags payload")
        return None
    if not isinstance(parsed, list):
        return None
    return [str(tag).strip() for tag in parsed if str(tag).strip()]


def parse_user_facets(facets_json: Optional[str]) -> Optional[FacetSelection]:
    if not facets_json:
        return None
    try:
        return FacetSelection.model_validate(json.loads(facets_json))
    except (ValueError, ValidationError):
        logger.warning("Ignoring malformed facets payload")
        return None


def _enrich(upload: UploadInput, content_text: str, gemini: GeminiClient) -> _Enrichment:
    """Run each AI step on its own; a failed step leaves only its field empty."""

    enrichment = _Enrichment()
    try:
        enrichment.facets = gemini.suggest_facets(upload.title, content_text, upload.file_name)
    except GeminiError as exc:
        logger.warning("Facet suggestion failed, continuing without it: %s", exc)

    enrichment.tags = gemini.generate_tags(content_text)

    language = enrichment.facets.language if enrichment.facets else None
    if language and language != "en":
        try:
            enrichment.translation = gemini.generate_translation(content_text, "en", language)
        except GeminiError as exc:
            logger.warning("Translation failed, continuing without it: %s", exc)

    try:
        enrichment.embedding = gemini.generate_embedding(content_text[:EMBEDDING_TEXT_CHARS])
    except GeminiError as exc:
        logger.warning("Embedding failed, item will not appear in semantic search: %s", exc)
    return enrichment


def _discard_upload(item_id: Optional[str], file_urls: List[str], *, storage, db_path: Optional[Path]) -> None:
    """Undo a partially recorded upload: the item row (if any) and its stored blobs."""

    if item_id is not None:
        try:
            database.delete_item(item_id, db_path=db_path)
        except sqlite3.Error as exc:
            logger.warning("Could not remove item %s after failed upload: %s", item_id, exc)
    for file_url in file_urls:
        try:
            storage.delete_file(file_url)
        except StorageError as exc:
            logger.warning("Could not remove stored file %s: %s", file_url, exc)


def process_upload(
    upload: UploadInput,
    *,
    uploader_id: str,
    storage,
    gemini: Optional[GeminiClient],
    limits: UploadLimits,
    db_path: Optional[Path] = None,
) -> UploadResponse:
    if not upload.title.strip() or not upload.item_type:
        raise HTTPException(status_code=400, detail="Missing required fields: file, title, or type")
    validate_upload(
        upload.mime_type,
        len(upload.data),
        max_file_size=limits.max_file_size,
        max_video_size=limits.max_video_size,
    )
    fuzzy_date = build_fuzzy_date(upload)

    sha256_hash = calculate_file_hash(upload.data)
    existing = database.find_item_by_hash(sha256_hash, db_path=db_path)
    if existing is not None:
        raise HTTPException(
            status_code=409,
            detail={
                "error": "Duplicate file detected",
                "existing_item": {
                    "id": existing.id,
                    "title": existing.title,
                    "uploaded_at": existing.created_at.isoformat(),
                },
            },
        )

    file_url = storage.upload_file(upload.data, upload.file_name, upload.mime_type)

    content_text = ""
    try:
        content_text = extract_text(upload.data, upload.mime_type, max_characters=limits.max_characters)
    except Exception as exc:
        logger.warning("Text extraction failed for %s: %s", upload.file_name, exc)

    ai_enabled = upload.ai_processing and gemini is not None and gemini.is_configured()
    enrichment = _Enrichment()
    if ai_enabled and content_text:
        enrichment = _enrich(upload, content_text, gemini)

    user_tags = parse_user_tags(upload.tags_json)
    item_tags = user_tags if user_tags is not None else enrichment.tags
    final_facets = merge_facet_selection(enrichment.facets, parse_user_facets(upload.facets_json))
    original_language = final_facets.language or "en"

    metadata: Dict[str, Any] = {
        "ai_suggested_facets": enrichment.facets.model_dump() if enrichment.facets else {},
        "ai_generated_tags": enrichment.tags,
    }
    try:
        media = process_media(upload.data, upload.file_name, upload.mime_type, storage).to_dict()
    except StorageError as exc:
        logger.warning("Storing media derivatives failed: %s", exc)
        media = {}
    if media:
        metadata["media"] = media

    stored_urls = [file_url] + [media[key] for key in ("thumbnail_url", "preview_url") if media.get(key)]
    item = None
    try:
        item = database.create_item(
            title=upload.title.strip(),
            description=upload.description or None,
            item_type=upload.item_type,
            uploader_id=uploader_id,
            file_url=file_url,
            file_name=upload.file_name,
            file_size=len(upload.data),
            mime_type=upload.mime_type,
            content_text=content_text,
            tags=item_tags,
            metadata=metadata,
            sha256_hash=sha256_hash,
            original_language=original_language,
            ai_processing_enabled=upload.ai_processing,
            ai_processed_at=datetime.now(timezone.utc) if upload.ai_processing else None,
            is_sensitive=is_sensitive(final_facets),
            db_path=db_path,
        )

        if fuzzy_date is not None:
            database.add_item_date(item.id, fuzzy_date, db_path=db_path)
        link_item_facets(item.id, final_facets, db_path=db_path)
        if enrichment.embedding:
            database.set_item_embedding(item.id, enrichment.embedding, db_path=db_path)
        if enrichment.translation and original_language != "en":
            create_translation(
                item_id=item.id,
                author_id=uploader_id,
                language_code="en",
                translated_content=enrichment.translation,
                author_type="ai",
                db_path=db_path,
            )
        if item_tags:
            database.record_tag_usage(item_tags, db_path=db_path)
    except Exception:
        logger.error("Recording upload %s failed, removing stored files", upload.file_name)
        _discard_upload(item.id if item else None, stored_urls, storage=storage, db_path=db_path)
        raise

    logger.info(
        "Upload stored",
        extra={"item_id": item.id, "mime_type": upload.mime_type, "ai": ai_enabled, "tags": len(item_tags)},
    )

    return UploadResponse(
        item=item,
        date=fuzzy_date,
        ai_enhancements=AIEnhancements(
            facet_suggestions=enrichment.facets,
            generated_tags=enrichment.tags,
            translation_generated=bool(enrichment.translation),
        )
        if upload.ai_processing
        else None,
    )
