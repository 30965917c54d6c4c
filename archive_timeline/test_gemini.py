from __future__ import annotations

import pytest
import requests

from .gemini import GeminiClient, GeminiConfig, GeminiError, parse_tags


class FakeResponse:
    def __init__(self, payload, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code
        self.text = str(payload)

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, *, params, json, timeout):
        self.calls.append({"url": url, "params": params, "json": json, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _text_response(text: str) -> FakeResponse:
    return FakeResponse({"candidates": [{"content": {"parts": [{"text": text}]}}]})


def _client(*responses) -> tuple[GeminiClient, FakeSession]:
    session = FakeSession(*responses)
    return GeminiClient(GeminiConfig(api_key="secret", timeout_seconds=5), session=session), session


def test_unconfigured_client_raises():
    client = GeminiClient(GeminiConfig(), session=FakeSession())
    assert not client.is_configured()
    with pytest.raises(GeminiError):
        client.generate_text("hello")


def test_generate_embedding_calls_embed_content():
    client, session = _client(FakeResponse({"embedding": {"values": [0.5, 1, -2]}}))
    assert client.generate_embedding("text") == [0.5, 1.0, -2.0]
    call = session.calls[0]
    assert call["url"].endswith("/models/text-embedding-004:embedContent")
    assert call["params"] == {"key": "secret"}
    assert call["timeout"] == 5


def test_generate_tags_normalises_response():
    client, _session = _client(_text_response("World War II, Letters , letters, , a-very-long-tag-that-exceeds-limit, x, y, z"))
    assert client.generate_tags("content") == ["world war ii", "letters", "x", "y", "z"]


def test_generate_tags_returns_empty_on_failure():
    client, _session = _client(FakeResponse({"error": "quota"}, status_code=429))
    assert client.generate_tags("content") == []


def test_suggest_facets_parses_json_inside_text():
    client, _session = _client(
        _text_response('```json\n{"era": ["ww2"], "sourceType": "news", "language": "de"}\n```')
    )
    selection = client.suggest_facets("Zeitung", "Text", "zeitung.pdf")
    assert selection.era == ["ww2"]
    assert selection.source_type == "news"
    assert selection.language == "de"


def test_suggest_facets_without_json_raises():
    client, _session = _client(_text_response("I cannot classify this."))
    with pytest.raises(GeminiError):
        client.suggest_facets("t", "x", "f.txt")


def test_answer_question_numbers_context():
    client, session = _client(_text_response("It was 1942 [1]."))
    answer = client.answer_question(
        "When?",
        [{"title": "Diary", "content": "Spring 1942", "source": "diary.pdf"}],
    )
    assert answer == "It was 1942 [1]."
    prompt = session.calls[0]["json"]["contents"][0]["parts"][0]["text"]
    assert "[1] Diary\nSpring 1942\nSource: diary.pdf" in prompt


def test_network_errors_become_gemini_errors():
    client, _session = _client(requests.ConnectionError("down"))
    with pytest.raises(GeminiError):
        client.generate_translation("Merhaba", "en", "tr")


def test_parse_tags_limits_to_five():
    assert parse_tags("a, b, c, d, e, f") == ["a", "b", "c", "d", "e"]
