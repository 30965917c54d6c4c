from __future__ import annotations

from typing import Iterable

import pytest
from fastapi.testclient import TestClient

from . import app as app_module

OWNER = {"X-User-Email": "owner@example.org"}
OTHER = {"X-User-Email": "someone@example.org"}


@pytest.fixture
def client(monkeypatch, tmp_path) -> Iterable[TestClient]:
    monkeypatch.setattr(app_module.settings, "db_path", tmp_path / "archive.db")
    monkeypatch.setattr(app_module.settings, "storage_path", tmp_path / "uploads")
    monkeypatch.setattr(app_module.settings, "storage_backend", "local")
    monkeypatch.setattr(app_module.settings, "gemini_api_key", "")
    with TestClient(app_module.app, raise_server_exceptions=False) as test_client:
        yield test_client


def _upload(client: TestClient, *, content: bytes = b"Dock workers left the harbour.", **form) -> dict:
    data = {"title": "Harbour strike", "type": "document", "aiProcessing": "false"}
    data.update(form)
    response = client.post(
        "/api/upload",
        files={"file": ("strike.txt", content, "text/plain")},
        data=data,
        headers=OWNER,
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_health_endpoint_returns_uptime_and_version(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "uptime_seconds" in data
    assert "version" in data
    assert "X-Request-ID" in response.headers


def test_health_ready_checks_database(client: TestClient) -> None:
    response = client.get("/health/ready")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_request_id_header_is_reused_from_client(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Request-ID": "test-request-123"})
    assert response.headers["X-Request-ID"] == "test-request-123"


def test_unhandled_exception_returns_request_id(client: TestClient) -> None:
    if not any(
        getattr(route, "path", None) == "/_test-error"
        for route in app_module.app.router.routes
    ):
        @app_module.app.get("/_test-error")
        async def _raise_error():  # pragma: no cover - used only for tests
            raise RuntimeError("boom")

    response = client.get("/_test-error")
    assert response.status_code == 500
    data = response.json()
    assert data["detail"] == "An unexpected internal server error occurred."
    assert response.headers["X-Request-ID"] == data["request_id"]


def test_upload_requires_user(client: TestClient) -> None:
    response = client.post(
        "/api/upload",
        files={"file": ("a.txt", b"x", "text/plain")},
        data={"title": "x", "type": "document"},
    )
    assert response.status_code == 401


def test_upload_then_read_item_and_file(client: TestClient) -> None:
    created = _upload(
        client,
        dateType="period",
        dateStart="1940-01-01",
        dateEnd="1949-12-31",
        datePrecision="decade",
        dateDisplay="The forties",
        tags='["labour"]',
    )
    item = created["item"]
    assert created["ai_enhancements"] is None
    assert item["tags"] == ["labour"]

    detail = client.get(f"/api/items/{item['id']}").json()
    assert detail["rendered_date"] == "The forties"
    assert detail["dates"][0]["precision"] == "decade"
    assert detail["uploader"]["email"] == "owner@example.org"

    served = client.get(item["file_url"])
    assert served.status_code == 200
    assert served.content == b"Dock workers left the harbour."
    assert client.get("/api/files/2020/01/missing.txt").status_code == 404

    listing = client.get("/api/items", params={"tag": "labour"}).json()
    assert listing["pagination"]["total"] == 1
    assert listing["items"][0]["id"] == item["id"]

    tags = client.get("/api/tags").json()["tags"]
    assert [tag["name"] for tag in tags] == ["labour"]


def test_duplicate_upload_returns_conflict(client: TestClient) -> None:
    first = _upload(client)
    response = client.post(
        "/api/upload",
        files={"file": ("copy.txt", b"Dock workers left the harbour.", "text/plain")},
        data={"title": "Copy", "type": "document", "aiProcessing": "false"},
        headers=OWNER,
    )
    assert response.status_code == 409
    assert response.json()["detail"]["existing_item"]["id"] == first["item"]["id"]


def test_only_owner_can_edit_or_delete(client: TestClient) -> None:
    item_id = _upload(client)["item"]["id"]

    assert client.patch(f"/api/items/{item_id}", json={"title": "Nope"}, headers=OTHER).status_code == 403
    assert client.delete(f"/api/items/{item_id}", headers=OTHER).status_code == 403

    patched = client.patch(f"/api/items/{item_id}", json={"title": "Renamed"}, headers=OWNER)
    assert patched.status_code == 200
    assert patched.json()["item"]["title"] == "Renamed"

    assert client.delete(f"/api/items/{item_id}", headers=OWNER).json()["success"] is True
    assert client.get(f"/api/items/{item_id}").status_code == 404
    assert client.delete(f"/api/items/{item_id}", headers=OWNER).status_code == 404


def test_translations_and_votes(client: TestClient) -> None:
    item_id = _upload(client)["item"]["id"]
    payload = {"language_code": "tr", "translated_content": "Liman işçileri ayrıldı."}

    created = client.post(f"/api/items/{item_id}/translations", json=payload, headers=OTHER)
    assert created.status_code == 200
    translation_id = created.json()["translation"]["id"]
    assert client.post(f"/api/items/{item_id}/translations", json=payload, headers=OTHER).status_code == 409
    assert client.post("/api/items/missing/translations", json=payload, headers=OTHER).status_code == 404

    up = client.post(f"/api/translations/{translation_id}/vote", json={"vote_type": "up"}, headers=OWNER)
    assert up.json()["translation"]["upvotes"] == 1
    again = client.post(f"/api/translations/{translation_id}/vote", json={"vote_type": "up"}, headers=OWNER)
    assert again.json()["message"] == "Vote removed"
    assert client.post("/api/translations/missing/vote", json={"vote_type": "up"}, headers=OWNER).status_code == 404

    listed = client.get(f"/api/items/{item_id}/translations").json()["translations"]
    assert [(t["language_code"], t["upvotes"]) for t in listed] == [("tr", 0)]


def test_facets_are_seeded(client: TestClient) -> None:
    facets = client.get("/api/facets").json()["facets"]
    assert "era" in facets
    assert any(facet["slug"] == "ww2" for facet in facets["era"])


def test_timeline_with_clusters_and_print(client: TestClient) -> None:
    _upload(client, content=b"one", title="Forties", dateType="exact", dateExact="1944-06-06")
    _upload(client, content=b"two", title="Nineties", dateType="exact", dateExact="1995-12-05")

    timeline = client.get("/api/timeline", params={"sort": "asc", "cluster": "decade"}).json()
    assert [entry["title"] for entry in timeline["items"]] == ["Forties", "Nineties"]
    assert timeline["cluster_level"] == "decade"
    assert [cluster["key"] for cluster in timeline["clusters"]] == ["1940s", "1990s"]

    ranged = client.get("/api/timeline", params={"startDate": "1990-01-01"}).json()
    assert ranged["count"] == 1

    assert client.get("/api/timeline", params={"cluster": "week"}).status_code == 400

    printed = client.get("/api/timeline/print", params={"title": "Family Archive", "cluster": "decade"})
    assert printed.status_code == 200
    assert printed.headers["content-type"].startswith("text/html")
    assert "Family Archive" in printed.text
    assert "June 6, 1944" in printed.text


def test_keyword_search_and_ai_endpoints_without_key(client: TestClient) -> None:
    item_id = _upload(client)["item"]["id"]

    found = client.post("/api/search", json={"query": "harbour"}).json()
    assert found["total_matches"] == 1
    assert found["results"][0]["item"]["id"] == item_id

    assert client.post("/api/search", json={"keywords": []}).status_code == 422
    assert client.post("/api/search", json={"query": "harbour", "semantic": True}).status_code == 503
    assert client.post("/api/ask", json={"question": "Who left?"}).status_code == 503


def test_wiki_page_and_citations(client: TestClient) -> None:
    created = client.post(
        "/api/wiki",
        json={"title": "Harbour history", "wiki_content": "# Harbour", "tags": ["port"]},
        headers=OWNER,
    )
    assert created.status_code == 200
    page = created.json()["page"]
    assert page["type"] == "wiki_page"

    citations = client.get(f"/api/items/{page['id']}/citations").json()["citations"]
    assert set(citations) == {"apa", "mla", "chicago", "bibtex", "plaintext"}
    assert "Harbour history" in citations["apa"]
    assert client.get("/api/items/missing/citations").status_code == 404
