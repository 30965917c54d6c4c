from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests
from pydantic import ValidationError
from requests import Response

from .models import FacetSelection

logger = logging.getLogger("archive_timeline.gemini")

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
TAG_PROMPT_CHARS = 5000
FACET_PROMPT_CHARS = 3000
MAX_TAGS = 5
MAX_TAG_LENGTH = 30

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


class GeminiError(RuntimeError):
    """Gemini API call failed or returned an unusable response."""


@dataclass
class GeminiConfig:
    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    text_model: str = "gemini-2.0-flash-exp"
    embedding_model: str = "text-embedding-004"
    timeout_seconds: int = 30


def gemini_config_from_settings(app_settings) -> GeminiConfig:
    return GeminiConfig(
        api_key=app_settings.gemini_api_key,
        base_url=app_settings.gemini_base_url,
        text_model=app_settings.gemini_text_model,
        embedding_model=app_settings.gemini_embedding_model,
        timeout_seconds=app_settings.gemini_timeout_seconds,
    )


class GeminiClient:
    """Thin client for the Gemini REST API (generateContent / embedContent)."""

    def __init__(self, config: GeminiConfig, session: Optional[requests.Session] = None):
        self._config = config
        self._session = session or requests.Session()

    def is_configured(self) -> bool:
        return bool(self._config.api_key)

    # -- raw calls -----------------------------------------------------

    def _post(self, model: str, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.is_configured():
            raise GeminiError("Gemini API key is not configured.")
        url = f"{self._config.base_url.rstrip('/')}/models/{model}:{method}"
        try:
            response = self._session.post(
                url,
                params={"key": self._config.api_key},
                json=payload,
                timeout=self._config.timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.exception("Gemini API call failed: %s", exc)
            raise GeminiError("Failed to call the Gemini API.") from exc
        if response.status_code >= 400:
            _raise_gemini_error(response)
        try:
            return response.json()
        except ValueError as exc:
            raise GeminiError("Gemini API returned invalid JSON.") from exc

    def generate_text(self, prompt: str) -> str:
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        data = self._post(self._config.text_model, "generateContent", payload)
        parts = []
        for candidate in data.get("candidates") or []:
            for part in (candidate.get("content") or {}).get("parts") or []:
                if part.get("text"):
                    parts.append(part["text"])
            if parts:
                break
        if not parts:
            raise GeminiError("Gemini API returned no text.")
        return "".join(parts)

    # -- features ------------------------------------------------------

    def generate_embedding(self, text: str) -> List[float]:
        payload = {
            "model": f"models/{self._config.embedding_model}",
            "content": {"parts": [{"text": text}]},
        }
        data = self._post(self._config.embedding_model, "embedContent", payload)
        values = (data.get("embedding") or {}).get("values")
        if not values:
            raise GeminiError("Gemini API returned no embedding.")
        return [float(value) for value in values]

    def generate_tags(self, text: str) -> List[str]:
        """3-5 short lowercase tags for ``text``; an empty list when anything fails."""
        prompt = (
            "Analyze the following document content and suggest 3-5 relevant, concise tags that "
            "categorize it.\nReturn ONLY a comma-separated list of tags, nothing else.\n\n"
            f"Document content:\n{text[:TAG_PROMPT_CHARS]}"
        )
        try:
            response = self.generate_text(prompt)
        except GeminiError as exc:
            logger.warning("Tag generation failed: %s", exc)
            return []
        return parse_tags(response)

    def suggest_facets(self, title: str, text: str, file_name: str) -> FacetSelection:
        prompt = (
            "Classify this archived document. Respond with a JSON object with the keys "
            '"era", "location", "subject" (arrays of strings), "sourceType", "language" '
            '(ISO 639-1 code) and "sensitivity" (public, sensitive, graphic or restricted).\n\n'
            f"Title: {title}\nFile name: {file_name}\n\nContent:\n{text[:FACET_PROMPT_CHARS]}"
        )
        response = self.generate_text(prompt)
        match = _JSON_BLOCK.search(response)
        if match is None:
            raise GeminiError("Facet suggestion response contained no JSON object.")
        try:
            return FacetSelection.model_validate(json.loads(match.group(0)))
        except (ValueError, ValidationError) as exc:
            raise GeminiError("Facet suggestion response was not valid.") from exc

    def generate_translation(self, text: str, target_language: str, source_language: Optional[str] = None) -> str:
        source = f" from {source_language}" if source_language else ""
        prompt = (
            f"Translate the following text{source} into {target_language}. "
            "Return only the translation.\n\n"
            f"{text}"
        )
        return self.generate_text(prompt).strip()

    def answer_question(self, question: str, context: Sequence[Dict[str, str]]) -> str:
        """Answer ``question`` from numbered document excerpts, citing them as [1], [2], ..."""
        context_text = "\n\n---\n\n".join(
            f"[{index}] {doc.get('title', '')}\n{doc.get('content', '')}\nSource: {doc.get('source', '')}"
            for index, doc in enumerate(context, start=1)
        )
        prompt = (
            "You are a helpful assistant that answers questions based on archived documents.\n"
            "Use the following document excerpts to answer the user's question. "
            "Always cite your sources using [1], [2], etc.\n\n"
            f"Documents:\n{context_text}\n\nQuestion: {question}\n\nAnswer:"
        )
        return self.generate_text(prompt)


def parse_tags(response: str) -> List[str]:
    tags: List[str] = []
    for raw in response.split(","):
        tag = raw.strip().lower()
        if tag and len(tag) < MAX_TAG_LENGTH and tag not in tags:
            tags.append(tag)
    return tags[:MAX_TAGS]


def _raise_gemini_error(response: Response) -> None:
    message = f"Gemini API error: {response.status_code}"
    try:
        detail = response.json()
        message = f"{message} - {json.dumps(detail, ensure_ascii=False)}"
    except ValueError:
        message = f"{message} - {response.text}" if response.text else message
    raise GeminiError(message)
