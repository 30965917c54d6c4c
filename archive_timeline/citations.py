"""Citation strings for archive items (APA, MLA, Chicago, BibTeX, plain text)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional, Sequence

from .fuzzy_date import format_long_date
from .models import ArchiveItem, FuzzyDate, UserSummary

DEFAULT_ARCHIVE_NAME = "Team Archive"


@dataclass
class CitationData:
    title: str
    author: Optional[str] = None
    date: Optional[date] = None
    url: Optional[str] = None
    access_date: Optional[date] = None
    archive_name: Optional[str] = None
    item_type: Optional[str] = None

    def accessed(self) -> str:
        return format_long_date(self.access_date or date.today())


def format_author(name: str) -> str:
    """``Ada King Lovelace`` -> ``Lovelace, Ada King``"""
    parts = name.split()
    if len(parts) <= 1:
        return name.strip()
    return f"{parts[-1]}, {' '.join(parts[:-1])}"


def generate_apa(data: CitationData) -> str:
    parts = []
    if data.author:
        parts.append(f"{format_author(data.author)}.")
    parts.append(f"({data.date.year})." if data.date else "(n.d.).")
    parts.append(f"{data.title}.")
    if data.archive_name:
        parts.append(f"[{data.item_type or 'Archive item'}]. {data.archive_name}.")
    if data.url:
        parts.append(f"Retrieved {data.accessed()}, from {data.url}")
    return " ".join(parts)


def generate_mla(data: CitationData) -> str:
    parts = []
    if data.author:
        parts.append(f"{format_author(data.author)}.")
    parts.append(f'"{data.title}."')
    if data.archive_name:
        parts.append(f"{data.archive_name},")
    if data.date:
        parts.append(f"{format_long_date(data.date)}.")
    if data.url:
        parts.append(f"{data.url}.")
        parts.append(f"Accessed {data.accessed()}.")
    return " ".join(parts)


def generate_chicago(data: CitationData) -> str:
    parts = []
    if data.author:
        parts.append(f"{data.author}.")
    parts.append(f'"{data.title}."')
    if data.archive_name:
        parts.append(f"{data.archive_name}.")
    if data.date:
        parts.append(f"{data.date.year}.")
    if data.url:
        parts.append(f"{data.url}.")
    return " ".join(parts)


def generate_bibtex(data: CitationData, cite_key: Optional[str] = None) -> str:
    if cite_key is None:
        first = data.author.split()[0] if data.author and data.author.split() else "Anonymous"
        cite_key = f"{first}{data.date.year if data.date else 'nd'}"

    fields = []
    if data.author:
        fields.append(f"  author = {{{data.author}}}")
    fields.append(f"  title = {{{data.title}}}")
    if data.date:
        fields.append(f"  year = {{{data.date.year}}}")
    if data.archive_name:
        fields.append(f"  howpublished = {{{data.archive_name}}}")
    if data.url:
        fields.append(f"  url = {{{data.url}}}")
    fields.append(f"  note = {{Accessed: {data.accessed()}}}")
    return f"@misc{{{cite_key},\n" + ",\n".join(fields) + "\n}"


def generate_plain_text(data: CitationData) -> str:
    parts = [data.title]
    if data.author:
        parts.append(f"by {data.author}")
    if data.date:
        parts.append(f"({data.date.year})")
    if data.archive_name:
        parts.append(f"- {data.archive_name}")
    if data.url:
        parts.append(f"Available at: {data.url}")
    return " ".join(parts)


def generate_all_citations(data: CitationData) -> Dict[str, str]:
    return {
        "apa": generate_apa(data),
        "mla": generate_mla(data),
        "chicago": generate_chicago(data),
        "bibtex": generate_bibtex(data),
        "plaintext": generate_plain_text(data),
    }


def citation_data_for_item(
    item: ArchiveItem,
    *,
    uploader: Optional[UserSummary],
    dates: Sequence[FuzzyDate],
    base_url: str,
    archive_name: str = DEFAULT_ARCHIVE_NAME,
    access_date: Optional[date] = None,
) -> CitationData:
    """Citation fields for an item: the uploader as author, the first date as publication date."""

    author = None
    if uploader is not None:
        author = uploader.name or uploader.email
    return CitationData(
        title=item.title,
        author=author,
        date=dates[0].date_start if dates else None,
        url=f"{base_url.rstrip('/')}/api/items/{item.id}",
        access_date=access_date,
        archive_name=archive_name,
        item_type=item.type,
    )
