from __future__ import annotations

import logging
import math
import mimetypes
import time
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from . import database
from .citations import citation_data_for_item, generate_all_citations
from .facets import get_item_facets, list_facets_grouped, seed_default_facets
from .file_processor import read_upload_bytes
from .fuzzy_date import render_fuzzy_date
from .gemini import GeminiClient, GeminiError, gemini_config_from_settings
from .models import (
    AskRequest,
    AskResponse,
    CitationResponse,
    FacetListResponse,
    ItemDetailResponse,
    ItemListResponse,
    ItemResponse,
    ItemUpdateRequest,
    Pagination,
    PrintTimelineOptions,
    SearchRequest,
    SearchResponse,
    TagListResponse,
    TimelineResponse,
    TranslationCreateRequest,
    TranslationListResponse,
    TranslationResponse,
    UploadResponse,
    UserSummary,
    VoteRequest,
    VoteResponse,
    WikiPageRequest,
    WikiPageResponse,
)
from .print_renderer import render_printable_timeline_html
from .search import answer_question, search_items, semantic_search
from .settings import settings
from .storage import StorageError, create_storage, storage_config_from_settings
from .timeline import build_timeline, cluster_timeline
from .translations import (
    DuplicateTranslationError,
    TranslationNotFoundError,
    create_translation,
    list_translations,
    vote_translation,
)
from .upload_pipeline import UploadInput, UploadLimits, process_upload

LOG_LEVEL = getattr(logging, settings.log_level.upper(), logging.INFO)
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger("archive_timeline.app")
logger.setLevel(LOG_LEVEL)

ALLOWED_ORIGINS = settings.allowed_origins or ["*"]
CLUSTER_CHOICES = ("none", "auto", "era", "century", "decade", "year", "month")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.started_at = datetime.now(timezone.utc)
    app.state.settings = settings
    database.init_db()
    if settings.seed_default_facets:
        seed_default_facets()
    app.state.storage = create_storage(storage_config_from_settings(settings))
    app.state.gemini = GeminiClient(gemini_config_from_settings(settings))
    logger.info(
        "Archive API started",
        extra={"db_path": str(settings.db_path), "storage": settings.storage_backend},
    )
    yield


app = FastAPI(
    title=settings.app_title,
    description=settings.app_description,
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _uptime_seconds() -> float:
    started_at = getattr(app.state, "started_at", None)
    if not started_at:
        return 0.0
    return max(0.0, (datetime.now(timezone.utc) - started_at).total_seconds())


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    request.state.request_id = request_id
    start_time = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    if settings.enable_request_logging:
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "Request completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", str(uuid4()))
    logger.exception(
        "Unhandled server error",
        extra={"request_id": request_id, "path": request.url.path},
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected internal server error occurred.",
            "request_id": request_id,
        },
        headers={"X-Request-ID": request_id},
    )


# -------------------------------
# Dependencies
# -------------------------------


def current_user(x_user_email: Optional[str] = Header(default=None)) -> UserSummary:
    if not x_user_email or not x_user_email.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return database.get_or_create_user(x_user_email)


def get_storage(request: Request):
    return request.app.state.storage


def get_gemini(request: Request) -> GeminiClient:
    return request.app.state.gemini


def _require_gemini(gemini: GeminiClient) -> GeminiClient:
    if not gemini.is_configured():
        raise HTTPException(status_code=503, detail="AI features are not configured")
    return gemini


def _owned_item(item_id: str, user: UserSummary):
    item = database.get_item(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    if item.uploader_id != user.id:
        raise HTTPException(status_code=403, detail="Forbidden: You can only edit your own items")
    return item


def _split_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


# -------------------------------
# Health
# -------------------------------


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "uptime_seconds": round(_uptime_seconds(), 3),
        "version": app.version,
    }


@app.get("/health/live")
async def health_live() -> Dict[str, Any]:
    return {"status": "ok", "uptime_seconds": round(_uptime_seconds(), 3)}


@app.get("/health/ready")
def health_ready() -> Dict[str, Any]:
    try:
        with database.get_connection() as conn:
            conn.execute("SELECT 1").fetchone()
    except Exception as exc:
        logger.warning("Readiness check failed: %s", exc)
        raise HTTPException(status_code=503, detail="Database unavailable") from exc
    return {"status": "ok", "uptime_seconds": round(_uptime_seconds(), 3)}


# -------------------------------
# Upload and items
# -------------------------------


@app.post("/api/upload", response_model=UploadResponse)
async def upload(
    file: UploadFile = File(...),
    title: str = Form(""),
    item_type: str = Form("", alias="type"),
    description: Optional[str] = Form(None),
    ai_processing: Optional[str] = Form(None, alias="aiProcessing"),
    facets: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    date_type: Optional[str] = Form(None, alias="dateType"),
    date_exact: Optional[str] = Form(None, alias="dateExact"),
    date_start: Optional[str] = Form(None, alias="dateStart"),
    date_end: Optional[str] = Form(None, alias="dateEnd"),
    date_display: Optional[str] = Form(None, alias="dateDisplay"),
    date_precision: Optional[str] = Form(None, alias="datePrecision"),
    user: UserSummary = Depends(current_user),
    storage=Depends(get_storage),
    gemini: GeminiClient = Depends(get_gemini),
) -> UploadResponse:
    data = await read_upload_bytes(file, limit=max(settings.max_upload_bytes, settings.max_video_upload_bytes))
    upload_input = UploadInput(
        data=data,
        file_name=file.filename or "upload",
        mime_type=file.content_type or "application/octet-stream",
        title=title,
        item_type=item_type,
        description=description,
        ai_processing=settings.ai_processing_default if ai_processing is None else ai_processing != "false",
        facets_json=facets,
        tags_json=tags,
        date_type=date_type,
        date_exact=date_exact,
        date_start=date_start,
        date_end=date_end,
        date_display=date_display,
        date_precision=date_precision,
    )
    limits = UploadLimits(
        max_file_size=settings.max_upload_bytes,
        max_video_size=settings.max_video_upload_bytes,
        max_characters=settings.max_characters,
    )
    try:
        return await run_in_threadpool(
            process_upload,
            upload_input,
            uploader_id=user.id,
            storage=storage,
            gemini=gemini,
            limits=limits,
        )
    except StorageError as exc:
        logger.error("Upload storage failed: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to store file") from exc


@app.get("/api/items", response_model=ItemListResponse)
def list_items(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    item_type: Optional[str] = Query(None, alias="type"),
    tag: Optional[str] = None,
) -> ItemListResponse:
    items, total = database.list_items(page=page, limit=limit, item_type=item_type, tag=tag)
    return ItemListResponse(
        items=items,
        pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
    )


@app.get("/api/items/{item_id}", response_model=ItemDetailResponse)
def get_item(item_id: str) -> ItemDetailResponse:
    item = database.get_item(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    dates = database.get_item_dates(item_id)
    return ItemDetailResponse(
        item=item,
        uploader=database.get_user(item.uploader_id),
        dates=dates,
        rendered_date=render_fuzzy_date(dates[0]) if dates else None,
        facets=get_item_facets(item_id),
    )


@app.patch("/api/items/{item_id}", response_model=ItemResponse)
def update_item(
    item_id: str,
    request: ItemUpdateRequest,
    user: UserSummary = Depends(current_user),
) -> ItemResponse:
    _owned_item(item_id, user)
    updated = database.update_item(
        item_id,
        title=request.title,
        description=request.description,
        tags=request.tags,
        wiki_content=request.wiki_content,
    )
    if updated is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return ItemResponse(item=updated)


@app.delete("/api/items/{item_id}")
def delete_item(
    item_id: str,
    user: UserSummary = Depends(current_user),
    storage=Depends(get_storage),
) -> Dict[str, Any]:
    item = _owned_item(item_id, user)
    if item.file_url:
        try:
            storage.delete_file(item.file_url)
        except StorageError as exc:
            logger.warning("Could not delete stored file for %s: %s", item_id, exc)
    database.delete_item(item_id)
    return {"success": True, "message": "Item deleted successfully"}


@app.get("/api/items/{item_id}/citations", response_model=CitationResponse)
def item_citations(item_id: str) -> CitationResponse:
    item = database.get_item(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    data = citation_data_for_item(
        item,
        uploader=database.get_user(item.uploader_id),
        dates=database.get_item_dates(item_id),
        base_url=settings.public_url,
        archive_name=settings.app_title,
    )
    return CitationResponse(item_id=item_id, citations=generate_all_citations(data))


@app.post("/api/wiki", response_model=WikiPageResponse)
def create_wiki_page(request: WikiPageRequest, user: UserSummary = Depends(current_user)) -> WikiPageResponse:
    page = database.create_item(
        title=request.title,
        description=request.description,
        item_type="wiki_page",
        uploader_id=user.id,
        wiki_content=request.wiki_content,
        tags=request.tags,
    )
    if request.tags:
        database.record_tag_usage(request.tags)
    return WikiPageResponse(page=page)


# -------------------------------
# Translations
# -------------------------------


@app.get("/api/items/{item_id}/translations", response_model=TranslationListResponse)
def get_translations(item_id: str) -> TranslationListResponse:
    return TranslationListResponse(translations=list_translations(item_id))


@app.post("/api/items/{item_id}/translations", response_model=TranslationResponse)
def post_translation(
    item_id: str,
    request: TranslationCreateRequest,
    user: UserSummary = Depends(current_user),
) -> TranslationResponse:
    if database.get_item(item_id) is None:
        raise HTTPException(status_code=404, detail="Item not found")
    try:
        translation = create_translation(
            item_id=item_id,
            author_id=user.id,
            language_code=request.language_code,
            translated_title=request.translated_title,
            translated_description=request.translated_description,
            translated_content=request.translated_content,
        )
    except DuplicateTranslationError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return TranslationResponse(translation=translation)


@app.post("/api/translations/{translation_id}/vote", response_model=VoteResponse)
def vote(
    translation_id: str,
    request: VoteRequest,
    user: UserSummary = Depends(current_user),
) -> VoteResponse:
    try:
        translation, removed = vote_translation(translation_id, user_id=user.id, vote_type=request.vote_type)
    except TranslationNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Translation not found") from exc
    if removed:
        return VoteResponse(message="Vote removed")
    return VoteResponse(translation=translation)


# -------------------------------
# Taxonomy
# -------------------------------


@app.get("/api/facets", response_model=FacetListResponse)
def get_facets() -> FacetListResponse:
    return FacetListResponse(facets=list_facets_grouped())


@app.get("/api/tags", response_model=TagListResponse)
def get_tags() -> TagListResponse:
    return TagListResponse(tags=database.list_tags())


# -------------------------------
# Timeline
# -------------------------------


def _timeline_entries(
    start_date: Optional[date],
    end_date: Optional[date],
    facet_ids: Optional[str],
    tags: Optional[str],
    sort: str,
):
    return build_timeline(
        database.fetch_timeline_entries(),
        start_date=start_date,
        end_date=end_date,
        facet_ids=_split_csv(facet_ids),
        tags=_split_csv(tags),
        sort=sort,
    )


@app.get("/api/timeline", response_model=TimelineResponse)
def get_timeline(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    facet_ids: Optional[str] = Query(None, alias="facetIds"),
    tags: Optional[str] = None,
    sort: str = Query("desc", pattern="^(asc|desc)$"),
    cluster: str = Query("none"),
) -> TimelineResponse:
    if cluster not in CLUSTER_CHOICES:
        raise HTTPException(status_code=400, detail=f"cluster must be one of: {', '.join(CLUSTER_CHOICES)}")
    entries = _timeline_entries(start_date, end_date, facet_ids, tags, sort)
    level, clusters = (None, []) if cluster == "none" else cluster_timeline(entries, level=cluster, order=sort)
    return TimelineResponse(items=entries, count=len(entries), cluster_level=level, clusters=clusters)


@app.get("/api/timeline/print", response_class=HTMLResponse)
def print_timeline(
    title: str = "Archive Timeline",
    subtitle: str = "",
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    facet_ids: Optional[str] = Query(None, alias="facetIds"),
    tags: Optional[str] = None,
    sort: str = Query("asc", pattern="^(asc|desc)$"),
    cluster: str = Query("auto"),
    orientation: str = Query("portrait", pattern="^(portrait|landscape)$"),
    page_size: str = Query("A4", pattern="^(A4|Letter)$"),
) -> HTMLResponse:
    if cluster not in CLUSTER_CHOICES:
        raise HTTPException(status_code=400, detail=f"cluster must be one of: {', '.join(CLUSTER_CHOICES)}")
    entries = _timeline_entries(start_date, end_date, facet_ids, tags, sort)
    options = PrintTimelineOptions(page_size=page_size, orientation=orientation, sort_order=sort, cluster=cluster)
    html = render_printable_timeline_html(title, subtitle, entries, options)
    return HTMLResponse(content=html, media_type="text/html; charset=utf-8")


# -------------------------------
# Files
# -------------------------------


@app.get("/api/files/{file_path:path}")
def serve_file(file_path: str, storage=Depends(get_storage)) -> Response:
    file_url = f"/api/files/{file_path}"
    try:
        if not storage.file_exists(file_url):
            raise HTTPException(status_code=404, detail="File not found")
        content = storage.get_file(file_url)
    except StorageError as exc:
        raise HTTPException(status_code=404, detail="File not found") from exc
    media_type = mimetypes.guess_type(file_path)[0] or "application/octet-stream"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )


# -------------------------------
# Search and questions
# -------------------------------


@app.post("/api/search", response_model=SearchResponse)
async def search(request: SearchRequest, gemini: GeminiClient = Depends(get_gemini)) -> SearchResponse:
    if request.semantic:
        _require_gemini(gemini)
        candidates = await run_in_threadpool(database.list_items_with_embeddings)
        try:
            results = await run_in_threadpool(
                semantic_search,
                " ".join(request.keywords),
                candidates,
                gemini,
                item_type=request.item_type,
                max_results=request.max_results,
            )
        except GeminiError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
    else:
        items = await run_in_threadpool(database.list_all_items, item_type=request.item_type)
        results = search_items(
            items,
            keywords=request.keywords,
            item_type=request.item_type,
            match_mode=request.match_mode,
            max_results=request.max_results,
        )

    return SearchResponse(
        keywords=request.keywords,
        match_mode=request.match_mode,
        semantic=request.semantic,
        total_matches=len(results),
        results=results,
        generated_at=datetime.now(timezone.utc),
    )


@app.post("/api/ask", response_model=AskResponse)
async def ask(request: AskRequest, gemini: GeminiClient = Depends(get_gemini)) -> AskResponse:
    _require_gemini(gemini)
    candidates = await run_in_threadpool(database.list_items_with_embeddings)
    try:
        return await run_in_threadpool(
            answer_question,
            request.question,
            candidates,
            gemini,
            max_sources=request.max_sources,
        )
    except GeminiError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
