from datetime import date, datetime, timezone

from .models import FacetRef, FuzzyDate, PrintTimelineOptions, TimelineEntry
from .print_renderer import render_printable_timeline_html


def _entry(entry_id: str, title: str, start: date = None, rendered: str = None, **fields) -> TimelineEntry:
    fuzzy = FuzzyDate(date_start=start, date_end=start) if start else None
    return TimelineEntry(
        id=entry_id,
        title=title,
        type="document",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        date=fuzzy,
        rendered_date=rendered,
        **fields,
    )


def test_render_printable_timeline_basic_html():
    entries = [
        _entry(
            "1",
            "Harbour strike",
            date(1948, 5, 1),
            "May 1, 1948",
            description="Dock workers walk out",
            tags=["labour"],
            facets=[FacetRef(id="f1", category="location", value="Izmir")],
        ),
    ]
    html = render_printable_timeline_html("Family Archive", "Selected records", entries, PrintTimelineOptions())

    assert "<!DOCTYPE html>" in html
    assert "Family Archive" in html
    assert "Selected records" in html
    assert "Harbour strike" in html
    assert "May 1, 1948" in html
    assert "Dock workers walk out" in html
    assert "Tags: labour" in html
    assert "Facets: Izmir" in html
    assert "1 item<" in html
    assert "Generated by Archive Timeline API" in html


def test_sections_follow_cluster_order_and_undated_last():
    entries = [
        _entry("late", "Late", date(1995, 1, 1)),
        _entry("none", "No date"),
        _entry("early", "Early", date(1942, 1, 1)),
    ]
    html = render_printable_timeline_html(
        "T", "", entries, PrintTimelineOptions(cluster="decade", sort_order="asc")
    )

    assert "3 items" in html
    assert html.index("1940s") < html.index("1990s") < html.index("Undated")
    assert html.index("Early") < html.index("Late") < html.index("No date")
    assert "<h2>" not in html


def test_flat_list_and_hidden_details():
    entries = [
        _entry("a", "First", date(1950, 1, 1), description="hidden text", tags=["x"]),
        _entry("b", "Second", date(1960, 1, 1)),
    ]
    options = PrintTimelineOptions(cluster="none", sort_order="desc", show_description=False, show_tags=False)
    html = render_printable_timeline_html("T", "", entries, options)

    assert "group-heading\">" not in html
    assert html.index("Second") < html.index("First")
    assert "hidden text" not in html
    assert "Tags:" not in html
    assert "size: A4 portrait" in html


def test_titles_are_escaped():
    html = render_printable_timeline_html("<b>x</b>", "", [_entry("a", "<script>", date(1950, 1, 1))])
    assert "<script>" not in html
    assert "&lt;script&gt;" in html
    assert "&lt;b&gt;x&lt;/b&gt;" in html
