from __future__ import annotations

from datetime import date, datetime, timezone

from .citations import (
    CitationData,
    citation_data_for_item,
    format_author,
    generate_all_citations,
    generate_apa,
    generate_bibtex,
    generate_chicago,
    generate_mla,
    generate_plain_text,
)
from .models import ArchiveItem, FuzzyDate, UserSummary

ACCESSED = date(2024, 3, 9)

DATA = CitationData(
    title="Harbour Strike Leaflet",
    author="Ada King Lovelace",
    date=date(1952, 6, 1),
    url="https://archive.example.org/api/items/42",
    access_date=ACCESSED,
    archive_name="Team Archive",
    item_type="document",
)


def test_format_author():
    assert format_author("Ada King Lovelace") == "Lovelace, Ada King"
    assert format_author("Plato") == "Plato"


def test_apa():
    assert generate_apa(DATA) == (
        "Lovelace, Ada King. (1952). Harbour Strike Leaflet. [document]. Team Archive. "
        "Retrieved March 9, 2024, from https://archive.example.org/api/items/42"
    )


def test_apa_without_date_uses_nd():
    assert generate_apa(CitationData(title="Untitled")) == "(n.d.). Untitled."


def test_mla():
    assert generate_mla(DATA) == (
        'Lovelace, Ada King. "Harbour Strike Leaflet." Team Archive, June 1, 1952. '
        "https://archive.example.org/api/items/42. Accessed March 9, 2024."
    )


def test_chicago():
    assert generate_chicago(DATA) == (
        'Ada King Lovelace. "Harbour Strike Leaflet." Team Archive. 1952. https://archive.example.org/api/items/42.'
    )


def test_bibtex():
    assert generate_bibtex(DATA) == (
        "@misc{Ada1952,\n"
        "  author = {Ada King Lovelace},\n"
        "  title = {Harbour Strike Leaflet},\n"
        "  year = {1952},\n"
        "  howpublished = {Team Archive},\n"
        "  url = {https://archive.example.org/api/items/42},\n"
        "  note = {Accessed: March 9, 2024}\n"
        "}"
    )
    assert generate_bibtex(CitationData(title="x", access_date=ACCESSED)).startswith("@misc{Anonymousnd,")


def test_plain_text():
    assert generate_plain_text(DATA) == (
        "Harbour Strike Leaflet by Ada King Lovelace (1952) - Team Archive "
        "Available at: https://archive.example.org/api/items/42"
    )


def test_all_citations_and_item_mapping():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    item = ArchiveItem(id="42", title="Leaflet", type="document", uploader_id="u1", created_at=now, updated_at=now)
    data = citation_data_for_item(
        item,
        uploader=UserSummary(id="u1", email="ada@example.org"),
        dates=[FuzzyDate(date_start=date(1952, 1, 1), date_end=date(1952, 12, 31))],
        base_url="https://archive.example.org/",
        access_date=ACCESSED,
    )
    assert data.author == "ada@example.org"
    assert data.date == date(1952, 1, 1)
    assert data.url == "https://archive.example.org/api/items/42"

    citations = generate_all_citations(data)
    assert set(citations) == {"apa", "mla", "chicago", "bibtex", "plaintext"}
