"""Tests for the REST API."""

from unittest.mock import AsyncMock

from sqlalchemy.exc import OperationalError

NEW_METRICS = {"requests_handled": 50, "success_rate": 98, "avg_response_time": 0.9}


class TestHealth:
    def test_health(self, client):
        r = client.get("/api/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "ok"
        assert data["environment"] == "test"
        assert "timestamp" in data


class TestAgents:
    def test_list_seeded_agents(self, client):
        r = client.get("/api/agents")
        assert r.status_code == 200
        agents = r.json()
        assert len(agents) == 7
        assert [a["id"] for a in agents] == list(range(1, 8))
        assert agents[0]["name"] == "Albert Einstein"
        assert set(agents[0]) == {"id", "name", "status", "type", "capabilities", "avatar", "metrics"}

    def test_get_agent(self, client):
        r = client.get("/api/agents/5")
        assert r.status_code == 200
        assert r.json()["name"] == "Leonardo da Vinci"

    def test_get_agent_bad_id(self, client):
        assert client.get("/api/agents/abc").status_code == 400
        assert client.get("/api/agents/999").status_code == 404

    def test_create_agent_allows_duplicate_names(self, client):
        r = client.post("/api/agents", json={
            "name": "Albert Einstein",
            "type": "Theoretical Physics",
            "capabilities": ["Research"],
            "avatar": "https://example.com/a.svg",
        })
        assert r.status_code == 200
        assert r.json()["id"] == 8
        assert r.json()["status"] == "idle"
        assert len(client.get("/api/agents").json()) == 8

    def test_create_agent_invalid(self, client):
        r = client.post("/api/agents", json={"name": "No Type"})
        assert r.status_code == 400


class TestStatusUpdates:
    def test_update_status(self, client):
        r = client.put("/api/agents/1/status", json={"status": "idle"})
        assert r.status_code == 200
        assert r.json()["success"] is True
        assert r.json()["agent"]["status"] == "idle"
        assert client.get("/api/agents/1").json()["status"] == "idle"

    def test_missing_status_is_400_without_mutation(self, client):
        r = client.put("/api/agents/1/status", json={})
        assert r.status_code == 400
        assert client.get("/api/agents/1").json()["status"] == "active"

    def test_empty_status_is_400(self, client):
        assert client.put("/api/agents/1/status", json={"status": ""}).status_code == 400

    def test_unknown_agent_is_404(self, client):
        r = client.put("/api/agents/999/status", json={"status": "active"})
        assert r.status_code == 404

    def test_non_integer_id_is_400(self, client):
        r = client.put("/api/agents/abc/status", json={"status": "active"})
        assert r.status_code == 400

    def test_non_json_body_is_400(self, client):
        r = client.put(
            "/api/agents/1/status",
            content=b"status=idle",
            headers={"Content-Type": "text/plain"},
        )
        assert r.status_code == 400


class TestMetricsUpdates:
    def test_update_metrics(self, client):
        r = client.put("/api/agents/2/metrics", json={"metrics": NEW_METRICS})
        assert r.status_code == 200
        assert client.get("/api/agents/2").json()["metrics"] == NEW_METRICS

    def test_missing_metrics_is_400(self, client):
        assert client.put("/api/agents/2/metrics", json={}).status_code == 400

    def test_incomplete_metrics_is_400(self, client):
        r = client.put("/api/agents/2/metrics", json={"metrics": {"requests_handled": 1}})
        assert r.status_code == 400

    def test_unknown_agent_is_404(self, client):
        r = client.put("/api/agents/999/metrics", json={"metrics": NEW_METRICS})
        assert r.status_code == 404


class TestMaintenance:
    def test_cleanup_duplicates(self, client):
        client.post("/api/agents", json={
            "name": "Walt Disney",
            "type": "Creative Visionary",
            "capabilities": [],
            "avatar": "https://example.com/w.svg",
        })

        r = client.post("/api/maintenance/cleanup-duplicates")
        assert r.status_code == 200
        data = r.json()
        assert data["success"] is True
        assert data["removed"] == 1

        agents = client.get("/api/agents").json()
        assert len(agents) == 7
        assert [a["id"] for a in agents if a["name"] == "Walt Disney"] == [7]

    def test_cleanup_without_duplicates(self, client):
        assert client.post("/api/maintenance/cleanup-duplicates").json()["removed"] == 0


class TestConversations:
    def test_create_list_get(self, client):
        r = client.post("/api/conversations", json={
            "title": "Design talk",
            "participants": ["Steve Jobs", "Leonardo da Vinci"],
            "topic": "Simplicity",
            "transcript": "Jobs: Simple can be harder than complex.",
        })
        assert r.status_code == 200
        conv_id = r.json()["id"]

        assert len(client.get("/api/conversations").json()) == 1
        assert client.get(f"/api/conversations/{conv_id}").json()["topic"] == "Simplicity"

        by_name = client.get("/api/conversations/participant/Steve Jobs").json()
        assert [c["id"] for c in by_name] == [conv_id]

    def test_get_errors(self, client):
        assert client.get("/api/conversations/xyz").status_code == 400
        assert client.get("/api/conversations/123").status_code == 404

    def test_create_invalid(self, client):
        r = client.post("/api/conversations", json={"title": "t", "participants": []})
        assert r.status_code == 400


class TestVoice:
    def test_synthesize_without_key_returns_fallback(self, client):
        r = client.post("/api/voice/synthesize", json={"text": "Hello", "persona": "Steve Jobs"})
        assert r.status_code == 200
        assert r.json() == {"fallback": True, "text": "Hello", "persona": "Steve Jobs"}

    def test_synthesize_returns_audio(self, client, app):
        app.state.voice_service.synthesize_speech = AsyncMock(return_value=b"ID3-fake-mp3")
        r = client.post("/api/voice/synthesize", json={"text": "Hello"})
        assert r.status_code == 200
        assert r.headers["content-type"] == "audio/mpeg"
        assert r.content == b"ID3-fake-mp3"

    def test_synthesize_rejects_empty_and_long_text(self, client):
        assert client.post("/api/voice/synthesize", json={"text": ""}).status_code == 400
        assert client.post("/api/voice/synthesize", json={"text": "x" * 501}).status_code == 400

    def test_voices_fallback(self, client):
        voices = client.get("/api/voices").json()
        assert [v["voice_id"] for v in voices] == ["ThT5KcBeYPX3keUQqHPh", "AZnzlk1XvdvUeBnXmlld"]


class TestIdRange:
    def test_huge_agent_id_is_400(self, client):
        huge = 10**20
        assert client.put(f"/api/agents/{huge}/status", json={"status": "active"}).status_code == 400
        assert client.put(f"/api/agents/{huge}/metrics", json={"metrics": NEW_METRICS}).status_code == 400
        assert client.get(f"/api/agents/{huge}").status_code == 400

    def test_negative_id_is_400(self, client):
        assert client.get("/api/agents/-1").status_code == 400

    def test_largest_id_is_404(self, client):
        assert client.get(f"/api/agents/{2**63 - 1}").status_code == 404


TWIN = {
    "name": "Ada Lovelace",
    "description": "First programmer",
    "type": "Mathematics",
    "avatar": "https://example.com/ada.svg",
    "capabilities": ["Analysis"],
}


class TestDigitalTwins:
    def test_create_and_list(self, client):
        r = client.post("/api/digital-twins", json=TWIN)
        assert r.status_code == 200
        twin = r.json()
        assert twin["status"] == "active"
        assert twin["configuration"]["personality"] == "friendly"
        assert twin["metadata"] == {}

        listed = client.get("/api/digital-twins").json()
        assert [t["id"] for t in listed] == [twin["id"]]
        assert client.get(f"/api/digital-twins/{twin['id']}").json()["name"] == "Ada Lovelace"

    def test_create_invalid(self, client):
        assert client.post("/api/digital-twins", json={"name": "No avatar", "type": "x"}).status_code == 400

    def test_partial_update(self, client):
        twin_id = client.post("/api/digital-twins", json=TWIN).json()["id"]

        r = client.patch(f"/api/digital-twins/{twin_id}", json={"status": "paused", "description": None})
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "paused"
        assert data["description"] is None
        assert data["name"] == "Ada Lovelace"

    def test_update_and_delete_unknown(self, client):
        assert client.patch("/api/digital-twins/99", json={"status": "x"}).status_code == 404
        assert client.delete("/api/digital-twins/99").status_code == 404
        assert client.get("/api/digital-twins/99").status_code == 404

    def test_delete(self, client):
        twin_id = client.post("/api/digital-twins", json=TWIN).json()["id"]

        assert client.delete(f"/api/digital-twins/{twin_id}").json() == {"success": True}
        assert client.get("/api/digital-twins").json() == []


class TestTasks:
    def test_create_and_get(self, client):
        r = client.post("/api/tasks", json={
            "title": "Prepare lecture",
            "assignedAgentId": 1,
            "dueDate": "2026-11-01T09:00:00+00:00",
        })
        assert r.status_code == 200
        task = r.json()
        assert task["status"] == "pending"
        assert task["priority"] == "medium"
        assert task["assignedAgentId"] == 1
        assert task["dueDate"].startswith("2026-11-01T09:00:00")

        assert client.get(f"/api/tasks/{task['id']}").json()["title"] == "Prepare lecture"
        assert len(client.get("/api/tasks").json()) == 1

    def test_update_status(self, client):
        task_id = client.post("/api/tasks", json={"title": "t"}).json()["id"]

        r = client.put(f"/api/tasks/{task_id}/status", json={"status": "done"})
        assert r.status_code == 200
        assert r.json()["task"]["status"] == "done"
        assert client.put(f"/api/tasks/{task_id}/status", json={}).status_code == 400
        assert client.put("/api/tasks/77/status", json={"status": "done"}).status_code == 404

    def test_tasks_by_agent(self, client):
        client.post("/api/tasks", json={"title": "a", "assignedAgentId": 2})
        client.post("/api/tasks", json={"title": "b", "assignedAgentId": 3})
        client.post("/api/tasks", json={"title": "c"})

        titles = [t["title"] for t in client.get("/api/agents/2/tasks").json()]
        assert titles == ["a"]
        assert client.get("/api/agents/6/tasks").json() == []

    def test_unknown_assignee_is_400(self, client):
        assert client.post("/api/tasks", json={"title": "t", "assignedAgentId": 999}).status_code == 400
        assert client.post("/api/tasks", json={"title": "t", "assignedTwinId": 5}).status_code == 400
        assert client.get("/api/tasks").json() == []

    def test_missing_task(self, client):
        assert client.get("/api/tasks/5").status_code == 404
        assert client.get("/api/tasks/abc").status_code == 400


class TestStoreUnavailable:
    def test_store_error_is_503(self, client, app):
        app.state.store.get_agents = AsyncMock(
            side_effect=OperationalError("SELECT agents", {}, Exception("database is locked"))
        )
        r = client.get("/api/agents")
        assert r.status_code == 503
        assert r.json() == {"detail": "Store unavailable"}

        # process keeps serving
        assert client.get("/api/health").status_code == 200
