"""Fuzzy date rendering and timeline clustering.

Dates are rendered with English long month names independent of the process
locale, so labels are stable across deployments.
"""

from __future__ import annotations

import math
from collections import OrderedDict
from collections.abc import Mapping
from datetime import date
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from .models import FuzzyDate, TimeCluster

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

CENTURY_SPAN_YEARS = 200
DECADE_SPAN_YEARS = 50
YEAR_SPAN_YEARS = 5


def _month_name(value: date) -> str:
    return MONTH_NAMES[value.month - 1]


def format_long_date(value: date) -> str:
    """``December 5, 1995``"""
    return f"{_month_name(value)} {value.day}, {value.year}"


def format_month_year(value: date) -> str:
    """``December 1995``"""
    return f"{_month_name(value)} {value.year}"


def get_decade(year: int) -> str:
    """1995 -> ``1990s``"""
    return f"{year // 10 * 10}s"


def _ordinal_suffix(number: int) -> str:
    # Legacy rule keyed on the last digit only: century 11 renders as "11st".
    last_digit = number % 10
    if last_digit == 1:
        return "st"
    if last_digit == 2:
        return "nd"
    if last_digit == 3:
        return "rd"
    return "th"


def get_century(year: int) -> str:
    """1995 -> ``20th Century``"""
    century = math.ceil(year / 100)
    return f"{century}{_ordinal_suffix(century)} Century"


def get_era(year: int) -> str:
    """1995 -> ``1900-1999``"""
    start = year // 100 * 100
    return f"{start}-{start + 99}"


def get_approximate_descriptor(precision: Optional[str] = None) -> str:
    if precision == "decade":
        return "circa"
    if precision == "century":
        return "approximately"
    if precision == "era":
        return "around"
    return "circa"


def format_date_range(start: date, end: date) -> str:
    """Render an inclusive date range as readable text."""
    if start.year == end.year:
        if start.month == end.month:
            if start.day == end.day:
                return format_long_date(start)
            return f"{_month_name(start)} {start.day} - {end.day}, {start.year}"
        return f"{_month_name(start)} - {_month_name(end)}, {start.year}"
    return f"{format_month_year(start)} - {format_month_year(end)}"


def render_fuzzy_date(fuzzy_date: FuzzyDate) -> str:
    """Produce the human-readable label for ``fuzzy_date``.

    A non-blank ``display_date`` always wins and is returned untouched.
    Exact dates render as ``Month D, YYYY``; approximate dates with a known
    precision render as ``{descriptor} {period}``; everything else renders
    as a range.
    """

    if fuzzy_date.display_date and fuzzy_date.display_date.strip():
        return fuzzy_date.display_date

    start = fuzzy_date.date_start
    end = fuzzy_date.date_end

    if start == end and not fuzzy_date.is_approximate:
        return format_long_date(start)

    if fuzzy_date.is_approximate:
        precision = fuzzy_date.precision
        descriptor = get_approximate_descriptor(precision)
        if precision == "decade":
            return f"{descriptor} {get_decade(start.year)}"
        if precision == "century":
            return f"{descriptor} {get_century(start.year)}"
        if precision == "year":
            return f"{descriptor} {start.year}"
        if precision == "month":
            return f"{descriptor} {format_month_year(start)}"

    return format_date_range(start, end)


def get_timeline_position(value: date, min_date: date, max_date: date) -> float:
    """Position of ``value`` between ``min_date`` and ``max_date`` as 0-100."""
    total_days = (max_date - min_date).days
    if total_days == 0:
        return 0.0
    return (value - min_date).days / total_days * 100


def auto_cluster_level(min_date: date, max_date: date) -> TimeCluster:
    """Pick the bucket size for the span between two dates."""
    year_diff = max_date.year - min_date.year
    if year_diff >= CENTURY_SPAN_YEARS:
        return "century"
    if year_diff >= DECADE_SPAN_YEARS:
        return "decade"
    if year_diff >= YEAR_SPAN_YEARS:
        return "year"
    return "month"


def fuzzy_date_of(item: Any) -> FuzzyDate:
    """Return the FuzzyDate carried by ``item``.

    Accepts a FuzzyDate, a mapping with a ``"date"`` key or any object with a
    ``date`` attribute.
    """

    if isinstance(item, FuzzyDate):
        return item
    if isinstance(item, Mapping):
        return item["date"]
    return item.date


def cluster_key(value: date, level: str) -> str:
    if level == "decade":
        return get_decade(value.year)
    if level == "century":
        return get_century(value.year)
    if level == "month":
        return format_month_year(value)
    if level == "era":
        return get_era(value.year)
    return str(value.year)


def period_ordinal(value: date, level: str) -> Tuple[int, int]:
    """Numeric sort key of the bucket ``value`` falls into at ``level``."""
    if level == "decade":
        return value.year // 10, 0
    if level == "century":
        return math.ceil(value.year / 100), 0
    if level == "month":
        return value.year, value.month
    if level == "era":
        return value.year // 100, 0
    return value.year, 0


def cluster_by_period(items: Iterable[Any], level: str) -> "OrderedDict[str, List[Any]]":
    """Group ``items`` by the period their ``date_start`` falls in.

    Buckets appear in first-seen order and keep the input order of their
    items. Callers must drop undated items beforehand.
    """

    clusters: "OrderedDict[str, List[Any]]" = OrderedDict()
    for item in items:
        key = cluster_key(fuzzy_date_of(item).date_start, level)
        clusters.setdefault(key, []).append(item)
    return clusters


def sort_clusters(
    clusters: Mapping[str, Sequence[Any]],
    level: str,
    *,
    descending: bool = False,
) -> "OrderedDict[str, List[Any]]":
    """Order buckets chronologically by their numeric period.

    Labels such as ``900-999`` and ``1000-1099`` do not sort correctly as
    strings, so the order is derived from the dates inside each bucket.
    """

    def _ordinal(entry: Tuple[str, Sequence[Any]]) -> Tuple[int, int]:
        _key, bucket = entry
        return period_ordinal(fuzzy_date_of(bucket[0]).date_start, level)

    populated = [(key, list(bucket)) for key, bucket in clusters.items() if bucket]
    populated.sort(key=_ordinal, reverse=descending)
    return OrderedDict(populated)


def format_cluster_label(key: str, level: str) -> str:
    # Keys are already display-ready for every level.
    return key


__all__ = [
    "MONTH_NAMES",
    "auto_cluster_level",
    "cluster_by_period",
    "cluster_key",
    "format_cluster_label",
    "format_date_range",
    "format_long_date",
    "format_month_year",
    "fuzzy_date_of",
    "get_approximate_descriptor",
    "get_century",
    "get_decade",
    "get_era",
    "get_timeline_position",
    "period_ordinal",
    "render_fuzzy_date",
    "sort_clusters",
]
