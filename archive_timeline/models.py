from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

DatePrecision = Literal["day", "month", "year", "decade", "century", "era"]
TimeCluster = Literal["era", "century", "decade", "year", "month"]
ItemType = Literal["document", "photo", "text", "archive", "other", "wiki_page"]
FacetCategory = Literal["era", "location", "subject", "source_type", "language", "sensitivity"]
TranslationStatus = Literal["draft", "pending", "approved", "rejected"]
AuthorType = Literal["human", "ai"]

KNOWN_PRECISIONS = ("day", "month", "year", "decade", "century", "era")
TIME_CLUSTERS = ("era", "century", "decade", "year", "month")


class FuzzyDate(BaseModel):
    """Temporal information attached to an archived item.

    An exact date has ``date_start == date_end`` and ``is_approximate`` false.
    Approximate periods carry a ``precision`` that controls rendering; an
    unrecognised precision is kept as-is and rendered as a plain range.
    """

    model_config = ConfigDict(frozen=True)

    date_start: date = Field(..., description="Inclusive start of the period")
    date_end: date = Field(..., description="Inclusive end of the period")
    display_date: Optional[str] = Field(
        default=None,
        description="Human-authored label used verbatim when present",
    )
    is_approximate: bool = Field(default=False, description="True for fuzzy / uncertain periods")
    precision: Optional[str] = Field(
        default=None,
        description="day / month / year / decade / century / era",
    )

    @field_validator("precision", mode="before")
    @classmethod
    def _normalise_precision(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        cleaned = str(value).strip().lower()
        return cleaned or None

    @model_validator(mode="after")
    def _ensure_ordered(self) -> "FuzzyDate":
        if self.date_start > self.date_end:
            raise ValueError("date_start must not be after date_end")
        return self


class UserSummary(BaseModel):
    id: str
    name: Optional[str] = None
    email: str
    image: Optional[str] = None


class Facet(BaseModel):
    id: str
    category: FacetCategory
    value: str
    slug: str
    description: Optional[str] = None
    is_required: bool = False
    sort_order: int = 0


class FacetRef(BaseModel):
    id: str
    category: str
    value: str


class FacetSelection(BaseModel):
    """Facet values for an item, by taxonomy category.

    ``era``, ``location`` and ``subject`` allow several values; the other
    categories are single-valued. Keys outside the taxonomy end up in
    ``extra``.
    """

    model_config = ConfigDict(populate_by_name=True)

    era: List[str] = Field(default_factory=list)
    location: List[str] = Field(default_factory=list)
    subject: List[str] = Field(default_factory=list)
    source_type: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("source_type", "sourceType"),
    )
    language: Optional[str] = None
    sensitivity: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_extra(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        known = {"era", "location", "subject", "source_type", "sourceType", "language", "sensitivity", "extra"}
        extra = dict(values.get("extra") or {})
        cleaned: Dict[str, Any] = {}
        for key, value in values.items():
            if key in known:
                cleaned[key] = value
            else:
                extra[key] = value
        cleaned["extra"] = extra
        return cleaned

    @field_validator("era", "location", "subject", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(entry).strip() for entry in value if str(entry).strip()]

    @field_validator("source_type", "language", "sensitivity", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None


class ArchiveItem(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    type: ItemType
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    content_text: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    sha256_hash: Optional[str] = None
    original_language: Optional[str] = None
    ai_processing_enabled: bool = False
    ai_processed_at: Optional[datetime] = None
    is_published: bool = False
    is_sensitive: bool = False
    wiki_content: Optional[str] = None
    uploader_id: str
    created_at: datetime
    updated_at: datetime
    version: str = "1.0"


class ItemUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=500)
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    wiki_content: Optional[str] = None

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        return [tag.strip() for tag in value if tag and tag.strip()]


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ItemListResponse(BaseModel):
    items: List[ArchiveItem]
    pagination: Pagination


class ItemDetailResponse(BaseModel):
    item: ArchiveItem
    uploader: Optional[UserSummary] = None
    dates: List[FuzzyDate] = Field(default_factory=list)
    rendered_date: Optional[str] = None
    facets: List[FacetRef] = Field(default_factory=list)


class WikiPageRequest(BaseModel):
    title: str = Field(..., max_length=500)
    description: Optional[str] = None
    wiki_content: str
    tags: List[str] = Field(default_factory=list)

    @field_validator("title", "wiki_content")
    @classmethod
    def _ensure_non_empty(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Missing required fields: title or content")
        return cleaned


class ItemResponse(BaseModel):
    success: bool = True
    item: ArchiveItem


class WikiPageResponse(BaseModel):
    success: bool = True
    page: ArchiveItem


class AIEnhancements(BaseModel):
    facet_suggestions: Optional[FacetSelection] = None
    generated_tags: List[str] = Field(default_factory=list)
    translation_generated: bool = False


class UploadResponse(BaseModel):
    success: bool = True
    item: ArchiveItem
    date: Optional[FuzzyDate] = None
    ai_enhancements: Optional[AIEnhancements] = None


class Translation(BaseModel):
    id: str
    item_id: str
    language_code: str
    translated_title: Optional[str] = None
    translated_description: Optional[str] = None
    translated_content: str
    author_type: AuthorType = "human"
    author_id: str
    status: TranslationStatus = "pending"
    is_official: bool = False
    upvotes: int = 0
    downvotes: int = 0
    created_at: datetime
    author: Optional[UserSummary] = None


class TranslationCreateRequest(BaseModel):
    language_code: str = Field(..., max_length=12)
    translated_title: Optional[str] = None
    translated_description: Optional[str] = None
    translated_content: str

    @field_validator("language_code", "translated_content")
    @classmethod
    def _ensure_present(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Missing required fields: language_code and translated_content")
        return cleaned


class TranslationListResponse(BaseModel):
    success: bool = True
    translations: List[Translation]


class TranslationResponse(BaseModel):
    success: bool = True
    translation: Translation


class VoteRequest(BaseModel):
    vote_type: Literal["up", "down"]


class VoteResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    translation: Optional[Translation] = None


class TagSummary(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    color: Optional[str] = None
    usage_count: int = 0


class TagListResponse(BaseModel):
    tags: List[TagSummary]


class FacetListResponse(BaseModel):
    success: bool = True
    facets: Dict[str, List[Facet]]


class TimelineEntry(BaseModel):
    """One archive item as shown on the timeline."""

    id: str
    title: str
    description: Optional[str] = None
    type: str
    tags: List[str] = Field(default_factory=list)
    created_at: datetime
    uploader: Optional[UserSummary] = None
    date: Optional[FuzzyDate] = None
    rendered_date: Optional[str] = None
    facets: List[FacetRef] = Field(default_factory=list)


class TimelineCluster(BaseModel):
    key: str
    label: str
    items: List[TimelineEntry]


class TimelineResponse(BaseModel):
    success: bool = True
    items: List[TimelineEntry]
    count: int
    cluster_level: Optional[TimeCluster] = None
    clusters: List[TimelineCluster] = Field(default_factory=list)


class PrintTimelineOptions(BaseModel):
    """Layout and content switches for the printable timeline."""

    page_size: Literal["A4", "Letter"] = "A4"
    orientation: Literal["portrait", "landscape"] = "portrait"
    sort_order: Literal["asc", "desc"] = "asc"
    cluster: Literal["auto", "none", "era", "century", "decade", "year", "month"] = Field(
        default="auto",
        description="Bucket granularity for section headings; none prints a flat list",
    )
    show_description: bool = True
    show_tags: bool = True
    show_facets: bool = True


class SearchRequest(BaseModel):
    """Keyword or semantic search over the archive."""

    keywords: List[str] = Field(default_factory=list, max_length=20)
    query: Optional[str] = Field(default=None, description="Free text, split into keywords")
    item_type: Optional[ItemType] = None
    match_mode: Literal["any", "all"] = "any"
    semantic: bool = Field(default=False, description="Rank by embedding similarity instead of keywords")
    max_results: int = Field(default=20, ge=1, le=500)

    @field_validator("keywords", mode="before")
    @classmethod
    def _normalise_keywords(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        cleaned = []
        for keyword in value:
            if not isinstance(keyword, str) or not keyword.strip():
                raise ValueError("Keywords must not be empty")
            cleaned.append(keyword.strip())
        return cleaned

    @model_validator(mode="after")
    def _merge_query_into_keywords(self) -> "SearchRequest":
        keywords = list(self.keywords)
        if self.query:
            keywords.extend(term for term in re.split(r"[\s,]+", self.query) if term)

        deduped: List[str] = []
        seen: set[str] = set()
        for keyword in keywords:
            lowered = keyword.lower()
            if lowered in seen:
                continue
            seen.add(lowered)
            deduped.append(keyword)
        self.keywords = deduped

        if not deduped:
            raise ValueError("Provide at least one keyword or a query")
        return self


class SearchResult(BaseModel):
    item: ArchiveItem
    score: float = Field(..., ge=0.0)
    matched_keywords: List[str] = Field(default_factory=list)
    matched_fields: List[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    keywords: List[str]
    match_mode: Literal["any", "all"]
    semantic: bool
    total_matches: int
    results: List[SearchResult]
    generated_at: datetime


class AskRequest(BaseModel):
    question: str = Field(..., max_length=2_000)
    max_sources: int = Field(default=5, ge=1, le=20)

    @field_validator("question")
    @classmethod
    def _ensure_question(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Question must not be empty")
        return cleaned


class SourceRef(BaseModel):
    id: str
    title: str
    score: float


class AskResponse(BaseModel):
    answer: str
    sources: List[SourceRef]


class CitationResponse(BaseModel):
    item_id: str
    citations: Dict[str, str]
