from __future__ import annotations

import json
import sqlite3
from datetime import date

import pytest
from fastapi import HTTPException

from . import database, upload_pipeline
from .facets import get_item_facets, seed_default_facets
from .gemini import GeminiError
from .models import FacetSelection
from .storage import LocalStorage, StorageConfig
from .translations import list_translations
from .upload_pipeline import UploadInput, UploadLimits, build_fuzzy_date, parse_user_tags, process_upload

LIMITS = UploadLimits(max_file_size=1024 * 1024, max_video_size=2 * 1024 * 1024, max_characters=10_000)


class FakeGemini:
    def __init__(self, *, configured: bool = True, fail: bool = False, fail_translation: bool = False):
        self.configured = configured
        self.fail = fail
        self.fail_translation = fail_translation
        self.calls = []

    def is_configured(self):
        return self.configured

    def suggest_facets(self, title, content, file_name):
        self.calls.append("facets")
        if self.fail:
            raise GeminiError("quota exceeded")
        return FacetSelection(era=["ww2"], language="tr")

    def generate_tags(self, content):
        self.calls.append("tags")
        return ["harbour", "strike"]

    def generate_translation(self, content, target_language, source_language):
        self.calls.append(f"translate:{source_language}->{target_language}")
        if self.fail_translation:
            raise GeminiError("quota exceeded")
        return "The workers left the harbour."

    def generate_embedding(self, text):
        self.calls.append("embedding")
        return [0.1, 0.2, 0.3]


@pytest.fixture()
def env(tmp_path):
    db_path = tmp_path / "archive.db"
    database.init_db(db_path=db_path)
    seed_default_facets(db_path=db_path)
    user = database.get_or_create_user("uploader@example.org", db_path=db_path)
    storage = LocalStorage(StorageConfig(root=tmp_path / "uploads"))
    return db_path, user, storage


def _upload(**overrides) -> UploadInput:
    fields = dict(
        data="İşçiler limandan ayrıldı.".encode("utf-8"),
        file_name="grev notu.txt",
        mime_type="text/plain",
        title="Strike note",
        item_type="document",
    )
    fields.update(overrides)
    return UploadInput(**fields)


def test_upload_with_ai_enrichment(env):
    db_path, user, storage = env
    gemini = FakeGemini()

    response = process_upload(
        _upload(facets_json=json.dumps({"sensitivity": "public"})),
        uploader_id=user.id,
        storage=storage,
        gemini=gemini,
        limits=LIMITS,
        db_path=db_path,
    )

    item = response.item
    assert item.tags == ["harbour", "strike"]
    assert item.original_language == "tr"
    assert item.content_text.startswith("İşçiler")
    assert item.metadata["ai_generated_tags"] == ["harbour", "strike"]
    assert item.file_url.startswith("/api/files/")
    assert storage.file_exists(item.file_url)

    assert response.ai_enhancements.translation_generated
    assert gemini.calls == ["facets", "tags", "translate:tr->en", "embedding"]

    facets = {(facet.category, facet.value) for facet in get_item_facets(item.id, db_path=db_path)}
    assert facets == {
        ("era", "World War II Era (1939-1945)"),
        ("language", "Turkish"),
        ("sensitivity", "Public"),
    }

    translations = list_translations(item.id, db_path=db_path)
    assert [(t.language_code, t.author_type) for t in translations] == [("en", "ai")]
    assert database.list_items_with_embeddings(db_path=db_path)[0][1] == [0.1, 0.2, 0.3]
    assert {tag.name for tag in database.list_tags(db_path=db_path)} == {"harbour", "strike"}


def test_user_tags_override_ai_tags(env):
    db_path, user, storage = env
    response = process_upload(
        _upload(tags_json=json.dumps(["Family", " "])),
        uploader_id=user.id,
        storage=storage,
        gemini=FakeGemini(),
        limits=LIMITS,
        db_path=db_path,
    )
    assert response.item.tags == ["Family"]
    assert response.ai_enhancements.generated_tags == ["harbour", "strike"]


def test_ai_failure_still_stores_item(env):
    db_path, user, storage = env
    response = process_upload(
        _upload(),
        uploader_id=user.id,
        storage=storage,
        gemini=FakeGemini(fail=True),
        limits=LIMITS,
        db_path=db_path,
    )
    assert response.item.tags == ["harbour", "strike"]
    assert response.item.original_language == "en"
    assert response.ai_enhancements.facet_suggestions is None
    assert database.list_items_with_embeddings(db_path=db_path)[0][1] == [0.1, 0.2, 0.3]


def test_translation_failure_keeps_embedding(env):
    db_path, user, storage = env
    gemini = FakeGemini(fail_translation=True)
    response = process_upload(
        _upload(),
        uploader_id=user.id,
        storage=storage,
        gemini=gemini,
        limits=LIMITS,
        db_path=db_path,
    )

    assert gemini.calls == ["facets", "tags", "translate:tr->en", "embedding"]
    assert response.item.tags == ["harbour", "strike"]
    assert response.item.original_language == "tr"
    assert not response.ai_enhancements.translation_generated
    assert list_translations(response.item.id, db_path=db_path) == []
    stored = database.list_items_with_embeddings(db_path=db_path)
    assert [(item.id, vector) for item, vector in stored] == [(response.item.id, [0.1, 0.2, 0.3])]


def test_failed_recording_removes_item_and_stored_file(env, monkeypatch, tmp_path):
    db_path, user, storage = env

    def broken_link(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(upload_pipeline, "link_item_facets", broken_link)

    with pytest.raises(sqlite3.OperationalError):
        process_upload(
            _upload(ai_processing=False),
            uploader_id=user.id,
            storage=storage,
            gemini=None,
            limits=LIMITS,
            db_path=db_path,
        )

    assert [path for path in (tmp_path / "uploads").rglob("*") if path.is_file()] == []
    assert database.list_items(db_path=db_path) == ([], 0)


def test_ai_disabled_skips_model_and_records_period_date(env):
    db_path, user, storage = env
    gemini = FakeGemini()
    response = process_upload(
        _upload(
            ai_processing=False,
            date_type="period",
            date_start="1940-01-01",
            date_end="1949-12-31",
            date_display="1940s",
            date_precision="decade",
        ),
        uploader_id=user.id,
        storage=storage,
        gemini=gemini,
        limits=LIMITS,
        db_path=db_path,
    )

    assert gemini.calls == []
    assert response.ai_enhancements is None
    assert response.item.ai_processed_at is None
    stored = database.get_item_dates(response.item.id, db_path=db_path)
    assert len(stored) == 1
    assert stored[0].date_start == date(1940, 1, 1)
    assert stored[0].precision == "decade"
    assert stored[0].is_approximate


def test_duplicate_upload_is_rejected(env):
    db_path, user, storage = env
    first = process_upload(
        _upload(ai_processing=False), uploader_id=user.id, storage=storage, gemini=None, limits=LIMITS, db_path=db_path
    )
    with pytest.raises(HTTPException) as excinfo:
        process_upload(
            _upload(ai_processing=False, title="Again"),
            uploader_id=user.id,
            storage=storage,
            gemini=None,
            limits=LIMITS,
            db_path=db_path,
        )
    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["existing_item"]["id"] == first.item.id


def test_validation_errors(env):
    db_path, user, storage = env
    kwargs = dict(uploader_id=user.id, storage=storage, gemini=None, limits=LIMITS, db_path=db_path)

    with pytest.raises(HTTPException) as missing_title:
        process_upload(_upload(title="  "), **kwargs)
    assert missing_title.value.status_code == 400

    with pytest.raises(HTTPException) as bad_type:
        process_upload(_upload(mime_type="application/x-msdownload"), **kwargs)
    assert bad_type.value.status_code == 400

    with pytest.raises(HTTPException) as too_large:
        process_upload(_upload(data=b"x" * (LIMITS.max_file_size + 1)), **kwargs)
    assert too_large.value.status_code == 413


def test_build_fuzzy_date_variants():
    exact = build_fuzzy_date(_upload(date_type="exact", date_exact="1995-12-05"))
    assert exact.display_date == "December 5, 1995"
    assert exact.precision == "day"
    assert not exact.is_approximate

    assert build_fuzzy_date(_upload()) is None
    assert build_fuzzy_date(_upload(date_type="period", date_start="1950-01-01")) is None

    with pytest.raises(HTTPException):
        build_fuzzy_date(_upload(date_type="period", date_start="1960-01-01", date_end="1950-01-01"))
    with pytest.raises(HTTPException):
        build_fuzzy_date(_upload(date_type="exact", date_exact="not-a-date"))


def test_parse_user_tags_ignores_bad_payloads():
    assert parse_user_tags(None) is None
    assert parse_user_tags("not json") is None
    assert parse_user_tags('{"a": 1}') is None
    assert parse_user_tags('["a", "", " b "]') == ["a", "b"]
