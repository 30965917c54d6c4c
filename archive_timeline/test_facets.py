from __future__ import annotations

from .database import create_item, get_or_create_user, init_db
from .facets import (
    DEFAULT_FACETS,
    facet_values,
    get_item_facets,
    is_sensitive,
    link_item_facets,
    list_facets_grouped,
    merge_facet_selection,
    seed_default_facets,
)
from .models import FacetSelection


def test_seed_default_facets_only_once(tmp_path):
    db_path = tmp_path / "archive.db"
    init_db(db_path=db_path)

    assert seed_default_facets(db_path=db_path) == len(DEFAULT_FACETS)
    assert seed_default_facets(db_path=db_path) == 0

    grouped = list_facets_grouped(db_path=db_path)
    assert set(grouped) == {"era", "location", "subject", "source_type", "language", "sensitivity"}
    assert [facet.slug for facet in grouped["era"]][:2] == ["ancient", "medieval"]


def test_facet_selection_accepts_camel_case_and_collects_extra():
    selection = FacetSelection.model_validate(
        {"era": "ww2", "sourceType": " news ", "language": "", "mood": "somber"}
    )
    assert selection.era == ["ww2"]
    assert selection.source_type == "news"
    assert selection.language is None
    assert selection.extra == {"mood": "somber"}


def test_merge_prefers_user_categories():
    ai = FacetSelection(era=["ww1"], location=["europe"], language="de", sensitivity="public")
    user = FacetSelection.model_validate({"era": ["interwar"], "sensitivity": "restricted"})

    merged = merge_facet_selection(ai, user)
    assert merged.era == ["interwar"]
    assert merged.location == ["europe"]
    assert merged.language == "de"
    assert merged.sensitivity == "restricted"
    assert is_sensitive(merged)


def test_merge_without_ai_suggestions():
    merged = merge_facet_selection(None, FacetSelection(subject=["art"]))
    assert merged.subject == ["art"]
    assert not is_sensitive(merged)
    assert facet_values(merged) == [("subject", "art")]


def test_link_item_facets_matches_value_or_slug_and_skips_unknown(tmp_path):
    db_path = tmp_path / "archive.db"
    init_db(db_path=db_path)
    seed_default_facets(db_path=db_path)
    user = get_or_create_user("a@example.com", db_path=db_path)
    item = create_item(title="Poster", item_type="photo", uploader_id=user.id, db_path=db_path)

    selection = FacetSelection(
        era=["World War II Era (1939-1945)", "not-an-era"],
        location=["europe"],
        sensitivity="Public",
    )
    linked = link_item_facets(item.id, selection, db_path=db_path)

    assert [(facet.category, facet.value) for facet in linked] == [
        ("era", "World War II Era (1939-1945)"),
        ("location", "Europe"),
        ("sensitivity", "Public"),
    ]
    assert {facet.id for facet in get_item_facets(item.id, db_path=db_path)} == {facet.id for facet in linked}
