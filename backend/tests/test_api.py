"""
API tests against a throwaway SQLite database.
"""
import pytest
from fastapi.testclient import TestClient

from app.core.errors import InfrastructureError
from app.db.session import get_db
from app.main import app
from app.services.chat.known_terms import KnownTermRegistry, set_known_term_registry
from app.services.chat.telemetry import InMemoryTelemetrySink, set_telemetry_sink
from app.services.conversation_memory import ConversationMemory
from app.services.doc_store import set_alias_table

from conftest import RECORDS


@pytest.fixture
def client(session_factory, store):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    set_known_term_registry(KnownTermRegistry(store))
    set_alias_table({})
    set_telemetry_sink(InMemoryTelemetrySink())

    yield TestClient(app)

    app.dependency_overrides.clear()
    set_known_term_registry(None)
    set_alias_table(None)
    set_telemetry_sink(None)


def ingest(client):
    response = client.post("/api/docs/ingest", json={"documents": [r.model_dump() for r in RECORDS]})
    assert response.status_code == 200
    return response.json()


def send(client, message, session_id="s1", **extra):
    response = client.post("/api/chat/route", json={"session_id": session_id, "message": message, **extra})
    assert response.status_code == 200
    return response.json()


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["known_terms"]["version"] == "test"
    assert body["known_terms"]["stale"] is False


def test_ingest_twice_changes_nothing(client):
    assert ingest(client)["inserted"] == len(RECORDS)
    again = ingest(client)
    assert again["inserted"] == 0
    assert again["unchanged"] == len(RECORDS)


def test_list_and_get_documents(client):
    ingest(client)
    listing = client.get("/api/docs").json()
    assert [doc["slug"] for doc in listing] == sorted(r.slug for r in RECORDS)

    document = client.get("/api/docs/workspace").json()
    assert document["keywords"] == ["project"]
    assert document["version"] == "1"
    assert client.get("/api/docs/nope").status_code == 404


def test_disambiguation_survives_between_turns(client):
    first = send(client, "open links panel")
    assert first["action"] == "disambiguate"
    assert first["tier"] == "interrupt_command"

    second = send(client, "d")
    assert second["action"] == "execute_panel"
    assert second["payload"]["panel_id"] == "links-panel-d"

    summary = client.get("/api/chat/session/s1").json()
    assert summary["message_count"] == 4
    assert summary["state"]["pending_options"] == []


def test_doc_answer_and_followup(client):
    ingest(client)
    first = send(client, "what is workspace")
    assert first["action"] == "retrieve_doc_response"
    assert first["payload"]["doc_slug"] == "workspace"

    second = send(client, "tell me more")
    assert second["payload"]["chunk_index"] == 1


def test_ui_context_is_honoured(client):
    body = send(client, "open navigator", ui_context={"visible_panel_ids": ["recent"]})
    assert body["action"] == "clarify"
    assert "isn't available" in body["payload"]["message"]


def test_empty_message_is_rejected(client):
    response = client.post("/api/chat/route", json={"session_id": "s1", "message": "   "})
    assert response.status_code == 422


def test_offered_suggestion_can_be_affirmed(client):
    candidate = {"id": "navigator", "label": "Navigator", "kind": "panel", "panel_id": "navigator"}
    offered = client.post("/api/chat/session/s2/suggestion", json={"candidates": [candidate]}).json()
    assert offered["offered"] is True

    body = send(client, "yes", session_id="s2")
    assert body["action"] == "affirm_suggestion"
    assert body["payload"]["result"]["payload"]["panel_id"] == "navigator"


def test_rejected_label_is_not_offered_again(client):
    send(client, "navigater", session_id="s3")
    assert send(client, "no", session_id="s3")["action"] == "reject_suggestion"

    candidate = {"id": "navigator", "label": "Navigator", "kind": "panel", "panel_id": "navigator"}
    offered = client.post("/api/chat/session/s3/suggestion", json={"candidates": [candidate]}).json()
    assert offered["offered"] is False


def test_invalid_suggestion_is_rejected(client):
    response = client.post("/api/chat/session/s2/suggestion", json={"candidates": [{"id": "x"}]})
    assert response.status_code == 422


def test_delete_session(client):
    send(client, "open recent")
    assert client.delete("/api/chat/session/s1").status_code == 200
    assert client.delete("/api/chat/session/s1").status_code == 404


def test_store_outage_becomes_an_apology(client, monkeypatch):
    async def unavailable(self):
        raise InfrastructureError("Session store unavailable")

    monkeypatch.setattr(ConversationMemory, "load_state", unavailable)
    response = client.post("/api/chat/route", json={"session_id": "s1", "message": "open recent"})
    assert response.status_code == 503
    assert response.json()["detail"].startswith("Sorry")
