from datetime import timedelta
import inspect
import json

from fastapi.testclient import TestClient
import pytest

from prep_app.core.schemas import serialize_attempt, serialize_test
from prep_app.core.services.question_generator import QuestionGenerator
from prep_app.core.services.storage_gateway import MemoryStore
from prep_app.server.api_server import create_api_app
from prep_app.utils.settings import Settings

from conftest import VALID_REPLY, FakeModel, FakeResponse, make_attempt, make_test


@pytest.fixture
def client(tmp_path):
    settings = Settings(
        data_file=tmp_path / "db.json",
        jwt_secret="api-test-secret-0123456789abcdefghijkl",
        token_ttl=timedelta(days=7),
    )
    generator = QuestionGenerator(model=FakeModel(FakeResponse(json.dumps(VALID_REPLY))))
    app = create_api_app(settings, store=MemoryStore(), generator=generator, background_timer=False)
    with TestClient(app) as test_client:
        yield test_client
    app.state.registry.shutdown()


def auth_headers(client, email="asha@example.com"):
    response = client.post(
        "/api/auth/register", json={"name": "Asha", "email": email, "password": "secret1"}
    )
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['token']}"}


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_register_login_verify(client):
    auth_headers(client)

    login = client.post("/api/auth/login", json={"email": "ASHA@example.com", "password": "secret1"})
    assert login.status_code == 200
    token = login.json()["token"]

    verify = client.get("/api/auth/verify", headers={"Authorization": f"Bearer {token}"})
    assert verify.json()["user"]["email"] == "asha@example.com"


def test_auth_failures(client):
    auth_headers(client)

    assert client.get("/api/tests").status_code == 401
    assert client.get("/api/tests", headers={"Authorization": "Bearer nope"}).status_code == 403
    bad_login = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "wrong1"})
    assert bad_login.status_code == 401
    assert bad_login.json()["detail"] == "Invalid email or password"
    duplicate = client.post(
        "/api/auth/register", json={"name": "A", "email": "asha@example.com", "password": "secret1"}
    )
    assert duplicate.status_code == 400


def test_save_list_and_delete_tests(client):
    headers = auth_headers(client)
    wire = serialize_test(make_test(test_id="t1"))

    created = client.post("/api/tests", json=wire, headers=headers)
    updated = client.post("/api/tests", json=dict(wire, name="Renamed"), headers=headers)

    assert created.json()["message"] == "Test created successfully!"
    assert updated.json()["message"] == "Test updated successfully!"
    assert [t["name"] for t in client.get("/api/tests", headers=headers).json()] == ["Renamed"]
    assert client.delete("/api/tests/t1", headers=headers).status_code == 200
    assert client.delete("/api/tests/t1", headers=headers).status_code == 404


def test_invalid_test_payload_lists_failures(client):
    headers = auth_headers(client)
    wire = serialize_test(make_test())
    wire["questions"][0]["answer"] = 9

    response = client.post("/api/tests", json=wire, headers=headers)

    assert response.status_code == 422
    failures = response.json()["detail"]["failures"]
    assert failures == [
        {"path": "questions.0.answer", "kind": "out_of_range", "message": failures[0]["message"]}
    ]


def test_accounts_do_not_share_data(client):
    alice = auth_headers(client, "alice@example.com")
    bob = auth_headers(client, "bob@example.com")
    client.post("/api/tests", json=serialize_test(make_test()), headers=alice)

    assert client.get("/api/tests", headers=bob).json() == []


def test_attempt_session_flow(client):
    headers = auth_headers(client)
    client.post("/api/tests", json=serialize_test(make_test(test_id="t1")), headers=headers)

    started = client.post("/api/session/start", json={"test_id": "t1"}, headers=headers)
    assert started.status_code == 201
    view = started.json()
    assert view["active"] is True
    assert view["question_count"] == 3
    assert "<p>Question 1</p>" in view["question_html"]
    assert [p["status"] for p in view["palette"]] == ["notAnswered", "notVisited", "notVisited"]

    client.post("/api/session/select", json={"option_index": 1}, headers=headers)
    view = client.post("/api/session/navigate", json={"direction": "next"}, headers=headers).json()
    assert view["palette"][0]["status"] == "answered"

    view = client.post("/api/session/mark", headers=headers).json()
    assert view["question_index"] == 2
    assert view["palette"][1]["status"] == "marked"

    submitted = client.post("/api/session/submit", headers=headers).json()["attempt"]
    assert submitted["correctAnswers"] == 1
    assert submitted["unanswered"] == 2

    assert client.get("/api/session", headers=headers).json() == {
        "active": False,
        "notices": [],
        "last_attempt_id": submitted["id"],
    }
    assert client.post("/api/session/submit", headers=headers).status_code == 409

    report = client.get(f"/api/attempts/{submitted['id']}/report", headers=headers).json()
    assert report["accuracy"] == 100
    text = client.get(f"/api/attempts/{submitted['id']}/report.txt", headers=headers)
    assert text.text.startswith("Test Report: Sample Test")
    assert "report-Sample-Test.txt" in text.headers["content-disposition"]

    analytics = client.get("/api/analytics", headers=headers).json()
    assert analytics["attempts_taken"] == 1
    assert analytics["streak"] == 1


def test_abandon_needs_confirmation(client):
    headers = auth_headers(client)
    client.post("/api/tests", json=serialize_test(make_test(test_id="t1")), headers=headers)
    client.post("/api/session/start", json={"test_id": "t1"}, headers=headers)

    assert client.post("/api/session/abandon", json={}, headers=headers).json() == {"abandoned": False}
    assert client.post("/api/session/abandon", json={"confirmed": True}, headers=headers).json() == {
        "abandoned": True
    }
    assert client.get("/api/attempts", headers=headers).json() == []


def test_start_unknown_test(client):
    headers = auth_headers(client)

    assert client.post("/api/session/start", json={"test_id": "missing"}, headers=headers).status_code == 404


def test_generate_from_topic(client):
    headers = auth_headers(client)

    response = client.post(
        "/api/tests/generate",
        data={"mode": "topic", "text": "Mauryan Empire", "question_count": "1"},
        headers=headers,
    )

    assert response.status_code == 201
    test = response.json()["test"]
    assert test["name"] == "Test on Mauryan Empire"
    assert test["questions"][0]["answer"] == 0


def test_generate_rejects_empty_topic(client):
    headers = auth_headers(client)

    response = client.post("/api/tests/generate", data={"mode": "topic", "text": " "}, headers=headers)

    assert response.status_code == 422


def test_export_and_import(client):
    headers = auth_headers(client)
    client.post("/api/tests", json=serialize_test(make_test(test_id="t1", name="Polity")), headers=headers)

    exported = client.get("/api/tests/t1/export", headers=headers)
    assert "test-polity.json" in exported.headers["content-disposition"]

    imported = client.post(
        "/api/tests/import",
        files={"file": ("test-polity.json", exported.content, "application/json")},
        headers=headers,
    )
    assert imported.status_code == 201
    assert imported.json()["test"]["name"] == "Polity (Imported)"

    broken = client.post(
        "/api/tests/import", files={"file": ("x.json", b"{", "application/json")}, headers=headers
    )
    assert broken.status_code == 422
    assert broken.json()["detail"]["failures"][0]["kind"] == "malformed_json"


def test_sync_replaces_account_data(client):
    headers = auth_headers(client)
    client.post("/api/tests", json=serialize_test(make_test(test_id="old")), headers=headers)
    payload = {
        "tests": [serialize_test(make_test(test_id="new"))],
        "attempts": [serialize_attempt(make_attempt())],
    }

    assert client.post("/api/sync", json=payload, headers=headers).status_code == 200

    data = client.get("/api/sync", headers=headers).json()
    assert [t["id"] for t in data["tests"]] == ["new"]
    assert len(data["attempts"]) == 1
    assert client.post("/api/sync", json={"tests": 3}, headers=headers).status_code == 422


def test_backup_and_restore(client):
    headers = auth_headers(client)
    client.post("/api/tests", json=serialize_test(make_test(test_id="t1")), headers=headers)
    backup = client.get("/api/backup", headers=headers)
    assert "prep-backup-" in backup.headers["content-disposition"]

    other = auth_headers(client, "other@example.com")
    restored = client.post(
        "/api/backup/restore",
        files={"file": ("backup.json", backup.content, "application/json")},
        headers=other,
    )

    assert restored.json()["tests"] == 1
    assert [t["id"] for t in client.get("/api/tests", headers=other).json()] == ["t1"]


def test_post_attempt_assigns_id(client):
    headers = auth_headers(client)

    response = client.post("/api/attempts", json=serialize_attempt(make_attempt()), headers=headers)

    assert response.json()["attempt"]["id"].startswith("attempt_")
    assert len(client.get("/api/attempts", headers=headers).json()) == 1


def test_inconsistent_attempt_is_not_stored(client):
    headers = auth_headers(client)
    wire = serialize_attempt(make_attempt())
    wire["userAnswers"] = [9, 1, 1]
    wire["correctAnswers"] = 50

    response = client.post("/api/attempts", json=wire, headers=headers)

    assert response.status_code == 422
    assert response.json()["detail"]["failures"][0]["path"] == "userAnswers.0"
    assert client.get("/api/attempts", headers=headers).json() == []
    assert client.get("/api/analytics", headers=headers).json()["total_questions"] == 0


def test_blocking_routes_run_in_the_threadpool(client):
    endpoints = {route.path: route.endpoint for route in client.app.routes if hasattr(route, "endpoint")}

    for path in ("/api/tests/generate", "/api/tests/import", "/api/backup/restore"):
        assert not inspect.iscoroutinefunction(endpoints[path])


def test_edit_test_through_the_draft(client):
    headers = auth_headers(client)
    client.post("/api/tests", json=serialize_test(make_test(test_id="t1")), headers=headers)

    draft = client.post("/api/tests/t1/edit", headers=headers).json()
    assert [q["question"] for q in draft["questions"]] == ["Question 1", "Question 2", "Question 3"]

    draft = client.patch("/api/edit", json={"name": "Edited", "duration": 20}, headers=headers).json()
    assert (draft["name"], draft["duration"]) == ("Edited", 20)

    added = client.post("/api/edit/questions", headers=headers)
    assert added.status_code == 201
    assert added.json()["questions"][3]["options"] == ["", "", "", ""]

    draft = client.patch(
        "/api/edit/questions/3",
        json={"question": "New one", "options": ["a", "b", "c", "d"], "answer": 2},
        headers=headers,
    ).json()
    assert draft["questions"][3]["answer"] == 2

    draft = client.delete("/api/edit/questions/0", headers=headers).json()
    assert len(draft["questions"]) == 3

    saved = client.post("/api/edit/save", headers=headers)
    assert saved.json()["message"] == "Test updated successfully!"
    stored = client.get("/api/tests", headers=headers).json()
    assert [(t["name"], len(t["questions"])) for t in stored] == [("Edited", 3)]
    assert client.get("/api/edit", headers=headers).status_code == 409


def test_invalid_draft_is_not_saved(client):
    headers = auth_headers(client)
    client.post("/api/tests", json=serialize_test(make_test(test_id="t1")), headers=headers)
    client.post("/api/tests/t1/edit", headers=headers)

    client.put(
        "/api/edit/questions",
        json={"questions": [{"question": "Only text", "options": ["a", "", "c", "d"]}]},
        headers=headers,
    )
    response = client.post("/api/edit/save", headers=headers)

    assert response.status_code == 422
    assert client.get("/api/tests", headers=headers).json()[0]["questions"][0]["question"] == "Question 1"
    assert client.delete("/api/edit/questions/9", headers=headers).status_code == 422
    assert client.delete("/api/edit", headers=headers).json() == {"discarded": True}
    assert client.post("/api/edit/save", headers=headers).status_code == 409
