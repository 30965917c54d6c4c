from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from .models import FacetRef, FuzzyDate, TimelineEntry
from .timeline import build_timeline, cluster_timeline


def _entry(
    entry_id: str,
    start: date | None,
    end: date | None = None,
    *,
    tags: list[str] | None = None,
    facet_ids: list[str] | None = None,
    created: datetime | None = None,
    precision: str = "year",
) -> TimelineEntry:
    fuzzy = None
    if start is not None:
        fuzzy = FuzzyDate(date_start=start, date_end=end or start, is_approximate=True, precision=precision)
    return TimelineEntry(
        id=entry_id,
        title=f"Item {entry_id}",
        type="document",
        tags=tags or [],
        created_at=created or datetime(2024, 1, 1, tzinfo=timezone.utc),
        date=fuzzy,
        facets=[FacetRef(id=facet_id, category="era", value=facet_id) for facet_id in facet_ids or []],
    )


def test_date_range_keeps_overlapping_entries_only():
    entries = [
        _entry("early", date(1900, 1, 1), date(1910, 12, 31)),
        _entry("spanning", date(1935, 1, 1), date(1950, 12, 31)),
        _entry("late", date(1990, 1, 1)),
        _entry("undated", None),
    ]
    selected = build_timeline(entries, start_date=date(1940, 1, 1), end_date=date(1960, 1, 1))
    assert [entry.id for entry in selected] == ["spanning"]


def test_without_range_undated_entries_stay():
    entries = [_entry("dated", date(1990, 1, 1)), _entry("undated", None)]
    assert {entry.id for entry in build_timeline(entries)} == {"dated", "undated"}


def test_facet_and_tag_filters_match_any_value():
    entries = [
        _entry("a", date(1950, 1, 1), tags=["Letters"], facet_ids=["f1"]),
        _entry("b", date(1951, 1, 1), tags=["photos"], facet_ids=["f2"]),
        _entry("c", date(1952, 1, 1), tags=["maps"], facet_ids=["f1", "f3"]),
    ]
    assert [entry.id for entry in build_timeline(entries, facet_ids=["f1"], sort="asc")] == ["a", "c"]
    assert [entry.id for entry in build_timeline(entries, tags=["letters", "MAPS"], sort="asc")] == ["a", "c"]


def test_sorting_falls_back_to_created_at_and_renders_dates():
    entries = [
        _entry("dated-1950", date(1950, 1, 1)),
        _entry("undated-2001", None, created=datetime(2001, 5, 1, tzinfo=timezone.utc)),
        _entry("dated-1990", date(1990, 1, 1), precision="decade"),
    ]
    descending = build_timeline(entries)
    assert [entry.id for entry in descending] == ["undated-2001", "dated-1990", "dated-1950"]
    assert descending[1].rendered_date == "circa 1990s"
    assert descending[0].rendered_date is None

    ascending = build_timeline(entries, sort="asc")
    assert [entry.id for entry in ascending] == ["dated-1950", "dated-1990", "undated-2001"]


def test_cluster_timeline_auto_level_and_order():
    entries = [
        _entry("a", date(1995, 1, 1)),
        _entry("b", date(1942, 1, 1)),
        _entry("c", date(1948, 1, 1)),
        _entry("undated", None),
    ]
    level, clusters = cluster_timeline(entries, level="auto")
    assert level == "decade"
    assert [cluster.key for cluster in clusters] == ["1940s", "1990s"]
    assert [item.id for item in clusters[0].items] == ["b", "c"]

    _level, descending = cluster_timeline(entries, level="decade", order="desc")
    assert [cluster.label for cluster in descending] == ["1990s", "1940s"]


def test_cluster_timeline_empty_and_invalid_level():
    assert cluster_timeline([_entry("undated", None)]) == (None, [])
    with pytest.raises(ValueError):
        cluster_timeline([_entry("a", date(2000, 1, 1))], level="week")
