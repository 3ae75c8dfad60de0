from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from fakes import FakeNoteStore, FakeSigner, record
from mednotes_api.dependencies import get_settings, get_signer, get_store
from mednotes_api.domain.entities import PatientSummary

AUTH = {"Authorization": "Bearer tok-alice"}


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    get_store.cache_clear()
    yield
    get_settings.cache_clear()
    get_store.cache_clear()


@pytest.fixture()
def store() -> FakeNoteStore:
    return FakeNoteStore(
        notes=[
            record("N1", 10, "MELD 3.0 reduces sex disparity", tags=["hepatology"]),
            record("N2", 5, "Discharge plan for Mr. Smith", tags=["@patient"]),
            record("B1", 7, "Bob's note", user="bob"),
        ]
    )


def _client(store: FakeNoteStore) -> TestClient:
    from main import create_app

    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    return TestClient(app)


def test_health_and_request_id(store) -> None:
    client = _client(store)
    r = client.get("/health", headers={"X-Request-ID": "abc"})
    assert r.status_code == 200
    assert r.headers.get("x-request-id") == "abc"


def test_store_not_configured(monkeypatch) -> None:
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    from main import create_app

    client = TestClient(create_app())
    r = client.get("/notes?scope=all")
    assert r.status_code == 503
    assert "store_not_configured" in r.text


def test_list_notes_requires_session_for_own_scope(store) -> None:
    client = _client(store)

    assert client.get("/notes").status_code == 401
    assert client.get("/notes", headers={"Authorization": "Bearer nope"}).status_code == 401

    r = client.get("/notes", headers=AUTH)
    assert r.status_code == 200
    assert [i["id"] for i in r.json()["items"]] == ["N1", "N2"]

    r_all = client.get("/notes?scope=all")
    assert [i["id"] for i in r_all.json()["items"]] == ["N1", "B1", "N2"]


def test_list_notes_filters(store) -> None:
    client = _client(store)
    r = client.get("/notes", params={"q": "  meld ", "tag": "hepatology"}, headers=AUTH)
    assert r.status_code == 200
    assert [i["id"] for i in r.json()["items"]] == ["N1"]
    assert store.list_calls[-1]["search_term"] == "meld"

    client.get("/notes?scope=all&limit=1")
    assert store.list_calls[-1]["limit"] == 1
    assert client.get("/notes?scope=all&limit=0").status_code == 422


def test_create_update_delete(store) -> None:
    client = _client(store)

    assert client.post("/notes", json={"content": "   "}, headers=AUTH).status_code == 400
    assert client.post("/notes", json={"content": "x"}).status_code == 401

    created = client.post("/notes", json={"content": " Ward round ", "tags": ["icu", "icu", " "]}, headers=AUTH)
    assert created.status_code == 201
    body = created.json()
    assert body["content"] == "Ward round"
    assert body["tags"] == ["icu"]

    r = client.patch(f"/notes/{body['id']}", json={"is_starred": True}, headers=AUTH)
    assert r.status_code == 200
    assert store.notes[body["id"]].is_starred is True

    assert client.patch(f"/notes/{body['id']}", json={}, headers=AUTH).status_code == 400
    assert client.patch("/notes/B1", json={"is_starred": True}, headers=AUTH).status_code == 404

    assert client.delete(f"/notes/{body['id']}", headers=AUTH).json() == {"deleted": body["id"]}
    assert client.delete("/notes/missing", headers=AUTH).status_code == 404


def test_quiz_blocked_when_external_disabled(store, monkeypatch) -> None:
    monkeypatch.setenv("AI_EXTERNAL_ENABLED", "false")
    client = _client(store)
    r = client.post("/ai/quiz", json={"note_ids": ["N1"]}, headers=AUTH)
    assert r.status_code == 403


def test_quiz_requires_provider_config(store, monkeypatch) -> None:
    monkeypatch.setenv("AI_EXTERNAL_ENABLED", "true")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    client = _client(store)
    r = client.post("/ai/quiz", json={"note_ids": ["N1"]}, headers=AUTH)
    assert r.status_code == 400
    assert "provider_not_configured" in r.text


def test_quiz_payload_size_limit(store, monkeypatch) -> None:
    monkeypatch.setenv("AI_EXTERNAL_ENABLED", "true")
    monkeypatch.setenv("OPENAI_API_KEY", "test")
    monkeypatch.setenv("AI_EXTERNAL_MAX_CHARS", "10")
    client = _client(store)
    r = client.post("/ai/quiz", json={"note_ids": ["N1"]}, headers=AUTH)
    assert r.status_code == 400
    assert "external_payload_too_large" in r.text


def test_quiz_returns_parsed_questions(store, monkeypatch) -> None:
    monkeypatch.setenv("AI_EXTERNAL_ENABLED", "true")
    monkeypatch.setenv("OPENAI_API_KEY", "test")
    seen = {}

    async def fake_chat(**kwargs):
        from mednotes_api.ai.providers import ChatResponse

        seen.update(kwargs)
        content = (
            '```json\n[{"noteId": "N1", "question": "What does MELD 3.0 add?", '
            '"choices": ["Sex", "Age", "Height", "Weight"], "correct": "Sex"}]\n```'
        )
        return ChatResponse(provider="external:openai:gpt-4o", content=content)

    monkeypatch.setattr("mednotes_api.interface.api.routes.openai_chat_completion", fake_chat)
    client = _client(store)

    assert client.post("/ai/quiz", json={"note_ids": []}, headers=AUTH).status_code == 400

    r = client.post("/ai/quiz", json={"note_ids": ["N1"], "num_questions": 1}, headers=AUTH)
    assert r.status_code == 200
    body = r.json()
    assert body["provider"] == "external:openai:gpt-4o"
    assert body["questions"][0]["note_id"] == "N1"
    assert body["questions"][0]["correct"] == "Sex"
    assert seen["model"] == "gpt-4o"
    assert store.get_notes_calls == [["N1"]]

    stored = client.get(f"/ai/quiz/{body['id']}", headers=AUTH)
    assert stored.status_code == 200
    assert stored.json()["questions"] == body["questions"]

    bob = client.get(f"/ai/quiz/{body['id']}", headers={"Authorization": "Bearer tok-bob"})
    assert bob.status_code == 404
    assert "quiz_not_found" in bob.text

    missing = client.post("/ai/quiz", json={"note_ids": ["N1", "nope"]}, headers=AUTH)
    assert missing.status_code == 404
    assert store.get_notes_calls[-1] == ["N1", "nope"]


def test_patient_summary_skipped_without_patient_tag(store, monkeypatch) -> None:
    monkeypatch.setenv("AI_EXTERNAL_ENABLED", "true")
    monkeypatch.setenv("OPENAI_API_KEY", "test")
    client = _client(store)
    r = client.post("/ai/patient-summary", json={"note_id": "N1"}, headers=AUTH)
    assert r.status_code == 204


def test_patient_summary_reuses_stored_result(store) -> None:
    store.summaries.append(PatientSummary(id="ps9", note_id="N2", summary_text="Rest and fluids."))
    client = _client(store)
    r = client.post("/ai/patient-summary", json={"note_id": "N2", "feedback": "  "}, headers=AUTH)
    assert r.status_code == 200
    assert r.json() == {"id": "ps9", "summary": "Rest and fluids.", "source": "stored"}


def test_patient_summary_generated_and_saved(store, monkeypatch) -> None:
    monkeypatch.setenv("AI_EXTERNAL_ENABLED", "true")
    monkeypatch.setenv("OPENAI_API_KEY", "test")

    async def fake_chat(**kwargs):
        from mednotes_api.ai.providers import ChatResponse

        return ChatResponse(provider="external:openai:gpt-4o-mini", content="  You can go home today.  ")

    monkeypatch.setattr("mednotes_api.interface.api.routes.openai_chat_completion", fake_chat)
    client = _client(store)

    r = client.post("/ai/patient-summary", json={"note_id": "N2", "feedback": "simpler"}, headers=AUTH)
    assert r.status_code == 200
    assert r.json()["source"] == "generated"
    assert r.json()["summary"] == "You can go home today."
    assert store.summaries[-1].feedback == "simpler"
    assert store.summaries[-1].user_id == "alice"


def test_attach_media_shows_up_in_feed(store, monkeypatch) -> None:
    monkeypatch.setenv("MEDIA_MAX_BYTES", "16")
    client = _client(store)

    r = client.post("/notes/N1/media", files={"file": ("scan.png", b"\x89PNG....", "image/png")}, headers=AUTH)
    assert r.status_code == 201
    assert r.json() == {"note_id": "N1", "path": "alice/N1/scan.png", "media_type": "image/png", "name": "scan.png"}
    client.post("/notes/N1/media", files={"file": ("labs.pdf", b"%PDF-1.7", "application/pdf")}, headers=AUTH)

    items = {i["id"]: i for i in client.get("/notes", headers=AUTH).json()["items"]}
    assert items["N1"]["image_paths"] == ["alice/N1/scan.png"]
    assert items["N1"]["has_pdf"] is True
    assert items["N2"]["image_paths"] == []


def test_attach_media_rejections(store, monkeypatch) -> None:
    monkeypatch.setenv("MEDIA_MAX_BYTES", "4")
    client = _client(store)

    too_big = client.post("/notes/N1/media", files={"file": ("a.png", b"123456", "image/png")}, headers=AUTH)
    assert too_big.status_code == 413
    empty = client.post("/notes/N1/media", files={"file": ("a.png", b"", "image/png")}, headers=AUTH)
    assert empty.status_code == 400
    foreign = client.post("/notes/B1/media", files={"file": ("a.png", b"1", "image/png")}, headers=AUTH)
    assert foreign.status_code == 404
    anonymous = client.post("/notes/N1/media", files={"file": ("a.png", b"1", "image/png")})
    assert anonymous.status_code == 401
    assert store.uploads == {}


def test_shared_note_is_readable_by_secret_link(store) -> None:
    signer = FakeSigner(failing=["alice/n4/broken.png"])
    client = _client(store)
    client.app.dependency_overrides[get_signer] = lambda: signer

    created = client.post("/notes", json={"content": "Share me"}, headers=AUTH).json()
    assert created["secret_url"]
    note_id = created["id"]
    client.post(f"/notes/{note_id}/media", files={"file": ("xray.png", b"img", "image/png")}, headers=AUTH)
    client.post(f"/notes/{note_id}/media", files={"file": ("broken.png", b"img", "image/png")}, headers=AUTH)

    r = client.get(f"/share/{created['secret_url']}")
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == note_id
    assert body["content"] == "Share me"
    media = {m["name"]: m for m in body["media"]}
    assert media["xray.png"]["url"].startswith("https://cdn.example.org/alice/")
    assert media["broken.png"]["url"] is None

    missing = client.get("/share/not-a-secret")
    assert missing.status_code == 404
    assert "note_not_found" in missing.text
