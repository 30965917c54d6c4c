from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

from .gemini import GeminiClient
from .models import ArchiveItem, AskResponse, SearchResult, SourceRef

FIELD_WEIGHTS = {
    "title": 3.0,
    "tags": 2.5,
    "description": 2.0,
    "content": 1.0,
}

CONTEXT_CHARS = 2000
NO_SOURCES_ANSWER = "No archived documents matched this question."


def _apply_keyword(item: ArchiveItem, keyword_lower: str, matched_fields: set[str]) -> bool:
    matched = False
    if keyword_lower in item.title.casefold():
        matched_fields.add("title")
        matched = True

    if item.description and keyword_lower in item.description.casefold():
        matched_fields.add("description")
        matched = True

    if item.content_text and keyword_lower in item.content_text.casefold():
        matched_fields.add("content")
        matched = True

    for tag in item.tags:
        if keyword_lower in tag.casefold():
            matched_fields.add("tags")
            matched = True
            break

    return matched


def search_items(
    items: Sequence[ArchiveItem],
    *,
    keywords: Sequence[str],
    item_type: Optional[str] = None,
    match_mode: str = "any",
    max_results: int = 20,
) -> List[SearchResult]:
    """Filter and rank archive items by keyword hits, weighted per field."""

    normalised_keywords = [(keyword, keyword.casefold()) for keyword in keywords]
    wants_all_keywords = match_mode == "all"

    results: List[SearchResult] = []
    for item in items:
        if item_type and item.type != item_type:
            continue

        matched_fields: set[str] = set()
        matched_keywords = [
            original for original, lowered in normalised_keywords if _apply_keyword(item, lowered, matched_fields)
        ]
        if not matched_keywords:
            continue
        if wants_all_keywords and len(matched_keywords) < len(normalised_keywords):
            continue

        score = sum(FIELD_WEIGHTS.get(field, 0.0) for field in matched_fields)
        score += 0.3 * len(matched_keywords)
        results.append(
            SearchResult(
                item=item,
                score=round(score, 3),
                matched_keywords=list(dict.fromkeys(matched_keywords)),
                matched_fields=sorted(matched_fields),
            )
        )

    results.sort(key=lambda result: (result.score, result.item.created_at), reverse=True)
    return results[:max_results]


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    if len(left) != len(right) or not left:
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if norm == 0:
        return 0.0
    return dot / norm


def rank_by_embedding(
    query_embedding: Sequence[float],
    candidates: Sequence[Tuple[ArchiveItem, Sequence[float]]],
    *,
    item_type: Optional[str] = None,
    max_results: int = 20,
) -> List[SearchResult]:
    """Most similar items first; non-positive similarities are dropped."""

    results: List[SearchResult] = []
    for item, embedding in candidates:
        if item_type and item.type != item_type:
            continue
        similarity = cosine_similarity(query_embedding, embedding)
        if similarity <= 0:
            continue
        results.append(SearchResult(item=item, score=round(similarity, 4), matched_fields=["embedding"]))
    results.sort(key=lambda result: result.score, reverse=True)
    return results[:max_results]


def semantic_search(
    query: str,
    candidates: Sequence[Tuple[ArchiveItem, Sequence[float]]],
    gemini: GeminiClient,
    *,
    item_type: Optional[str] = None,
    max_results: int = 20,
) -> List[SearchResult]:
    query_embedding = gemini.generate_embedding(query)
    return rank_by_embedding(query_embedding, candidates, item_type=item_type, max_results=max_results)


def answer_question(
    question: str,
    candidates: Sequence[Tuple[ArchiveItem, Sequence[float]]],
    gemini: GeminiClient,
    *,
    max_sources: int = 5,
) -> AskResponse:
    """Retrieve the closest items and let the model answer with numbered citations."""

    matches = semantic_search(question, candidates, gemini, max_results=max_sources)
    if not matches:
        return AskResponse(answer=NO_SOURCES_ANSWER, sources=[])

    context = [
        {
            "title": match.item.title,
            "content": (match.item.content_text or match.item.description or "")[:CONTEXT_CHARS],
            "source": match.item.file_name or match.item.id,
        }
        for match in matches
    ]
    answer = gemini.answer_question(question, context)
    return AskResponse(
        answer=answer,
        sources=[SourceRef(id=match.item.id, title=match.item.title, score=match.score) for match in matches],
    )


__all__ = ["answer_question", "cosine_similarity", "rank_by_embedding", "search_items", "semantic_search"]
