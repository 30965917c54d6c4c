from __future__ import annotations

from html import escape
from typing import List, Optional, Sequence, Tuple

from .models import PrintTimelineOptions, TimelineEntry
from .timeline import cluster_timeline

UNDATED_LABEL = "Undated"


def _group_entries(
    entries: Sequence[TimelineEntry],
    options: PrintTimelineOptions,
) -> List[Tuple[Optional[str], List[TimelineEntry]]]:
    """Section heading and entries per section, undated entries last."""

    if options.cluster == "none":
        dated = sorted(
            (entry for entry in entries if entry.date is not None),
            key=lambda entry: entry.date.date_start,
            reverse=options.sort_order == "desc",
        )
        groups: List[Tuple[Optional[str], List[TimelineEntry]]] = [(None, dated)] if dated else []
    else:
        _level, clusters = cluster_timeline(entries, level=options.cluster, order=options.sort_order)
        groups = [(cluster.label, cluster.items) for cluster in clusters]

    undated = [entry for entry in entries if entry.date is None]
    if undated:
        groups.append((UNDATED_LABEL, undated))
    return groups


def render_printable_timeline_html(
    title: str,
    subtitle: str,
    entries: List[TimelineEntry],
    options: Optional[PrintTimelineOptions] = None,
) -> str:
    """Build a standalone, print-ready HTML page from timeline entries.

    Entries are sectioned by period bucket. The page needs no external
    assets and can be printed straight from the browser.
    """

    if options is None:
        options = PrintTimelineOptions()

    parts: List[str] = []
    parts.append("<!DOCTYPE html>")
    parts.append("<html lang=\"en\">")
    parts.append("<head>")
    parts.append("    <meta charset=\"utf-8\" />")
    parts.append("    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\" />")
    parts.append("    <title>" + escape(title) + "</title>")
    parts.append("    <style>")
    parts.append("        @page { size: " + options.page_size + " " + options.orientation + "; margin: 20mm; }")
    parts.append("        body { font-family: Georgia, 'Times New Roman', serif; color: #222; }")
    parts.append("        h1 { font-size: 20pt; margin-bottom: 4pt; }")
    parts.append("        h2 { font-size: 12pt; margin-top: 0; color: #555; }")
    parts.append("        .meta { font-size: 9pt; color: #666; margin-bottom: 16pt; }")
    parts.append("        .group-heading { font-size: 13pt; font-weight: bold; border-bottom: 1px solid #aaa; margin-top: 16pt; }")
    parts.append("        .entry { margin-top: 8pt; break-inside: avoid; }")
    parts.append("        .entry-date { font-weight: bold; margin-right: 8pt; }")
    parts.append("        .entry-title { font-weight: bold; }")
    parts.append("        .entry-body { font-size: 10pt; }")
    parts.append("        .chips { margin-top: 2pt; font-size: 8pt; color: #555; }")
    parts.append("        .chip { display: inline-block; border: 1px solid #ccc; border-radius: 10px; padding: 0 4pt; margin-right: 2pt; }")
    parts.append("        .footer { margin-top: 24pt; font-size: 8pt; color: #999; text-align: right; }")
    parts.append("    </style>")
    parts.append("</head>")
    parts.append("<body>")
    parts.append("    <h1>" + escape(title) + "</h1>")
    if subtitle.strip():
        parts.append("    <h2>" + escape(subtitle.strip()) + "</h2>")
    noun = "item" if len(entries) == 1 else "items"
    parts.append("    <div class=\"meta\">" + str(len(entries)) + " " + noun + "</div>")

    for heading, group in _group_entries(entries, options):
        if heading:
            parts.append("    <div class=\"group-heading\">" + escape(heading) + "</div>")
        for entry in group:
            parts.append("    <div class=\"entry\">")
            date_text = entry.rendered_date or ""
            if date_text:
                parts.append("        <span class=\"entry-date\">" + escape(date_text) + "</span>")
            parts.append("        <span class=\"entry-title\">" + escape(entry.title) + "</span>")
            if options.show_description and entry.description:
                parts.append("        <div class=\"entry-body\">" + escape(entry.description) + "</div>")

            chips: List[str] = []
            if options.show_tags and entry.tags:
                chips.append("Tags: " + ", ".join(escape(tag) for tag in entry.tags))
            if options.show_facets and entry.facets:
                chips.append("Facets: " + ", ".join(escape(facet.value) for facet in entry.facets))
            if chips:
                parts.append("        <div class=\"chips\">")
                for chip in chips:
                    parts.append("            <span class=\"chip\">" + chip + "</span>")
                parts.append("        </div>")
            parts.append("    </div>")

    parts.append("    <div class=\"footer\">Generated by Archive Timeline API</div>")
    parts.append("</body>")
    parts.append("</html>")
    return "\n".join(parts)
