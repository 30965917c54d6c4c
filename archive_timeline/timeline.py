from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from .fuzzy_date import auto_cluster_level, cluster_by_period, format_cluster_label, render_fuzzy_date, sort_clusters
from .models import TIME_CLUSTERS, TimelineCluster, TimelineEntry

logger = logging.getLogger("archive_timeline.timeline")


def _overlaps(entry: TimelineEntry, start_date: Optional[date], end_date: Optional[date]) -> bool:
    if entry.date is None:
        return False
    if start_date and entry.date.date_end < start_date:
        return False
    if end_date and entry.date.date_start > end_date:
        return False
    return True


def _sort_moment(entry: TimelineEntry) -> datetime:
    if entry.date is not None:
        return datetime.combine(entry.date.date_start, datetime.min.time())
    # created_at is stored timezone-aware; compare naive values only.
    return entry.created_at.replace(tzinfo=None)


def build_timeline(
    entries: Iterable[TimelineEntry],
    *,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    facet_ids: Sequence[str] = (),
    tags: Sequence[str] = (),
    sort: str = "desc",
) -> List[TimelineEntry]:
    """Filter and order timeline entries.

    A date range drops entries whose first date does not overlap it, along
    with undated entries. Facet and tag filters match when any value is
    shared. Entries are ordered by date start, falling back to creation time.
    """

    selected = list(entries)
    if start_date or end_date:
        selected = [entry for entry in selected if _overlaps(entry, start_date, end_date)]

    wanted_facets = {facet_id for facet_id in facet_ids if facet_id}
    if wanted_facets:
        selected = [entry for entry in selected if wanted_facets & {facet.id for facet in entry.facets}]

    wanted_tags = {tag.strip().lower() for tag in tags if tag.strip()}
    if wanted_tags:
        selected = [entry for entry in selected if wanted_tags & {tag.lower() for tag in entry.tags}]

    selected.sort(key=_sort_moment, reverse=sort != "asc")
    return [
        entry.model_copy(update={"rendered_date": render_fuzzy_date(entry.date)}) if entry.date else entry
        for entry in selected
    ]


def cluster_timeline(
    entries: Sequence[TimelineEntry],
    *,
    level: str = "auto",
    order: str = "asc",
) -> Tuple[Optional[str], List[TimelineCluster]]:
    """Group dated entries into period buckets.

    ``level="auto"`` picks the granularity from the span of start dates.
    Returns the level used and the buckets in chronological order
    (reversed for ``order="desc"``); ``(None, [])`` when nothing is dated.
    """

    dated = [entry for entry in entries if entry.date is not None]
    if not dated:
        return None, []

    if level == "auto":
        starts = [entry.date.date_start for entry in dated]
        level = auto_cluster_level(min(starts), max(starts))
    elif level not in TIME_CLUSTERS:
        raise ValueError(f"Unknown cluster level: {level}")

    clusters = sort_clusters(cluster_by_period(dated, level), level, descending=order == "desc")
    logger.debug("Clustered timeline", extra={"level": level, "clusters": len(clusters)})
    return level, [
        TimelineCluster(key=key, label=format_cluster_label(key, level), items=items)
        for key, items in clusters.items()
    ]
