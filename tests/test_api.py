"""Tests for the dashboard API: project, uploads, affinity map, history, tasks."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from helpers import MAIN_RESPONSE, FakeProvider, StatusError
from researchoo.analysis.pipeline import AnalysisPipeline
from researchoo.errors import QUOTA_MESSAGE
from researchoo.project.session import ProjectSession


def _make_client(session, tmp_path):
    from researchoo.api import routes
    from researchoo.api.routes import router
    from researchoo.api.task_manager import TaskManager

    # Fresh task manager per test to avoid cross-test thread pool contention
    fresh_tm = TaskManager()
    with patch.object(routes, "_session", session), \
         patch.object(routes, "_task_manager", fresh_tm), \
         patch("researchoo.api.routes.config") as mock_config:
        mock_config.get_upload_dir.side_effect = lambda fid: tmp_path / "uploads" / fid
        app = FastAPI()
        app.include_router(router, prefix="/api")
        try:
            yield TestClient(app), fresh_tm
        finally:
            fresh_tm.shutdown()


@pytest.fixture
def api(session, tmp_path):
    yield from _make_client(session, tmp_path)


@pytest.fixture
def client(api):
    return api[0]


def _upload(api, *names):
    client, tm = api
    files = [("files", (name, b"Q: Why?\nA: Because.\n", "text/plain")) for name in names]
    resp = client.post("/api/project/files", files=files)
    assert resp.status_code == 200
    started = resp.json()["files"]
    for f in started:
        tm.wait(f["task_id"], timeout=10)
    return started


def _sse_events(resp) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in resp.text.splitlines()
        if line.startswith("data: ")
    ]


# ── Project ──


class TestProject:
    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}

    def test_initial_state(self, client):
        data = client.get("/api/project").json()
        assert data["currentScreen"] == "START"
        assert data["files"] == []
        assert data["data"] is None
        assert data["isProcessing"] is False

    def test_start_and_rename(self, client):
        project_id = client.post("/api/project/start").json()["id"]
        resp = client.put("/api/project/name", json={"name": "Onboarding"})
        assert resp.json() == {"id": project_id, "projectName": "Onboarding"}
        assert client.get("/api/history").json()[0]["name"] == "Onboarding"

    def test_rename_blank(self, client):
        assert client.put("/api/project/name", json={"name": " "}).status_code == 400

    def test_navigate(self, client):
        assert client.post("/api/project/screen", json={"screen": "SUMMARY"}).json() == {
            "currentScreen": "SUMMARY",
        }
        assert client.post("/api/project/screen", json={"screen": "LOBBY"}).status_code == 400

    def test_new_project(self, client):
        first = client.post("/api/project").json()["id"]
        second = client.post("/api/project").json()["id"]
        assert first != second
        assert [p["id"] for p in client.get("/api/history").json()] == [second, first]


# ── Uploads and tasks ──


class TestUploads:
    def test_upload_analyzes_file(self, api, tmp_path):
        client, _ = api
        started = _upload(api, "interview.txt")
        assert started[0]["type"] == "text"
        file_id = started[0]["fileId"]
        assert (tmp_path / "uploads" / file_id / "interview.txt").exists()

        project = client.get("/api/project").json()
        assert project["activeFileId"] == file_id
        assert project["files"][0]["status"] == "uploaded"
        assert project["data"]["tags"][0]["label"] == "Reason"

        task = client.get(f"/api/tasks/{started[0]['task_id']}").json()
        assert task["status"] == "completed"
        assert task["file_id"] == file_id
        assert task["result"]["highlights"] == 1
        assert task["progress_events"][-1] == {"fileId": file_id, "status": "uploaded", "progress": 100}

    def test_multiple_files(self, api):
        client, _ = api
        started = _upload(api, "a.txt", "b.txt")
        assert len(started) == 2
        project = client.get("/api/project").json()
        assert {f["status"] for f in project["files"]} == {"uploaded"}
        assert project["activeFileId"] in {f["fileId"] for f in started}

        other = next(f["fileId"] for f in started if f["fileId"] != project["activeFileId"])
        resp = client.post(f"/api/project/files/{other}/select")
        assert resp.status_code == 200
        assert client.get("/api/project").json()["activeFileId"] == other

    def test_upload_with_project_name(self, api):
        client, tm = api
        resp = client.post(
            "/api/project/files",
            files=[("files", ("x.txt", b"hello", "text/plain"))],
            data={"project_name": "Field study"},
        )
        tm.wait(resp.json()["files"][0]["task_id"], timeout=10)
        assert client.get("/api/project").json()["projectName"] == "Field study"

    def test_remove_file(self, api):
        client, _ = api
        file_id = _upload(api, "a.txt")[0]["fileId"]
        assert client.delete(f"/api/project/files/{file_id}").status_code == 200
        assert client.delete(f"/api/project/files/{file_id}").status_code == 404

    def test_select_unknown_file(self, client):
        assert client.post("/api/project/files/nope/select").status_code == 404

    def test_task_list_hides_internals(self, api):
        client, _ = api
        _upload(api, "a.txt")
        tasks = client.get("/api/tasks").json()
        assert len(tasks) == 1
        assert "progress_events" not in tasks[0]
        assert "traceback" not in tasks[0]

    def test_unknown_task(self, client):
        assert client.get("/api/tasks/nope").status_code == 404
        assert client.get("/api/tasks/nope/stream").status_code == 404


class TestStream:
    def test_stream_of_finished_task(self, api):
        client, _ = api
        task_id = _upload(api, "a.txt")[0]["task_id"]
        resp = client.get(f"/api/tasks/{task_id}/stream")
        assert resp.headers["content-type"].startswith("text/event-stream")
        events = _sse_events(resp)
        assert events[0]["type"] == "progress"
        assert events[-1]["type"] == "done"
        assert events[-1]["result"]["discarded"] is False
        assert [e["progress"] for e in events[:-1]] == [0, 30, 60, 80, 100]

    def test_stream_of_failed_task(self, store, fake_sleep, tmp_path):
        provider = FakeProvider(main=StatusError(429))
        session = ProjectSession(
            store, pipeline_factory=lambda: AnalysisPipeline(provider=provider, sleep=fake_sleep),
        )
        for client, tm in _make_client(session, tmp_path):
            task_id = _upload((client, tm), "a.txt")[0]["task_id"]
            events = _sse_events(client.get(f"/api/tasks/{task_id}/stream"))
            assert events[-1] == {"type": "error", "error": QUOTA_MESSAGE}

            project = client.get("/api/project").json()
            assert project["error"] == QUOTA_MESSAGE
            assert project["files"][0]["status"] == "error"
            assert project["files"][0]["error"] == QUOTA_MESSAGE


# ── Affinity map and edits ──


class TestDocumentEdits:
    def test_edits_need_open_document(self, client):
        assert client.post("/api/project/clusters/layout").status_code == 409
        assert client.post("/api/project/inbox", json={"text": "x"}).status_code == 409
        assert client.put("/api/project/clusters", json={"clusters": []}).status_code == 409
        assert client.post("/api/project/tags/t1", json={"label": "x"}).status_code == 409

    def test_update_clusters(self, api):
        client, _ = api
        _upload(api, "a.txt")
        clusters = client.get("/api/project").json()["data"]["clusters"]
        clusters[0]["x"] = 777
        clusters[0]["title"] = "Renamed"
        resp = client.put("/api/project/clusters", json={"clusters": clusters})
        assert resp.status_code == 200
        saved = client.get("/api/project").json()["data"]["clusters"][0]
        assert (saved["x"], saved["title"]) == (777, "Renamed")

    def test_invalid_cluster(self, api):
        client, _ = api
        _upload(api, "a.txt")
        resp = client.put("/api/project/clusters", json={"clusters": [{"title": "no id"}]})
        assert resp.status_code == 422

    def test_non_object_items_are_rejected(self, api):
        client, _ = api
        _upload(api, "a.txt")
        before = client.get("/api/project").json()["data"]["clusters"]
        for body in (
            {"clusters": [{"id": "a", "items": ["x"]}]},
            {"clusters": ["a"]},
            {"clusters": [{"id": "a", "items": [{"text": "no id"}]}]},
        ):
            assert client.put("/api/project/clusters", json=body).status_code == 422
        assert client.get("/api/project").json()["data"]["clusters"] == before

    def test_auto_layout(self, api):
        client, _ = api
        _upload(api, "a.txt")
        clusters = client.post("/api/project/clusters/layout").json()["clusters"]
        assert (clusters[0]["x"], clusters[0]["y"]) == (50, 50)

    def test_move_item_between_clusters(self, api):
        client, _ = api
        _upload(api, "a.txt")
        inbox_item = client.post("/api/project/inbox", json={"text": "Because."}).json()
        clusters = client.get("/api/project").json()["data"]["clusters"]
        source = next(c for c in clusters if c["title"] == "Inbox")
        target = next(c for c in clusters if c["title"] != "Inbox")

        resp = client.post("/api/project/clusters/items/move", json={
            "source_cluster_id": source["id"],
            "item_id": inbox_item["id"],
            "target_cluster_id": target["id"],
        })
        assert resp.json()["moved"] is True
        saved = {c["id"]: c for c in client.get("/api/project").json()["data"]["clusters"]}
        assert saved[source["id"]]["items"] == []
        assert saved[target["id"]]["items"][-1]["id"] == inbox_item["id"]

    def test_rename_tag(self, api):
        client, _ = api
        _upload(api, "a.txt")
        tag_id = client.get("/api/project").json()["data"]["tags"][0]["id"]
        assert client.post(f"/api/project/tags/{tag_id}", json={"label": "Motive"}).status_code == 200
        assert client.get("/api/project").json()["data"]["tags"][0]["label"] == "Motive"
        assert client.post("/api/project/tags/nope", json={"label": "x"}).status_code == 404

    def test_add_highlight(self, api):
        client, _ = api
        _upload(api, "a.txt")
        resp = client.post("/api/project/highlights", json={"text": "Why?", "tag_label": "Question"})
        assert resp.status_code == 200
        assert resp.json()["text"] == "Why?"
        assert client.post("/api/project/highlights", json={"text": "Why?"}).status_code == 400
        assert client.post(
            "/api/project/highlights", json={"text": "Why?", "tag_id": "nope"},
        ).status_code == 404


def _analyzed_client(store, fake_sleep, tmp_path, provider):
    session = ProjectSession(
        store, pipeline_factory=lambda: AnalysisPipeline(provider=provider, sleep=fake_sleep),
    )
    yield from _make_client(session, tmp_path)


class TestDegradedUpload:
    def test_quota_skipped_stages_are_reported(self, store, fake_sleep, tmp_path):
        provider = FakeProvider(affinity=StatusError(429))
        for client, tm in _analyzed_client(store, fake_sleep, tmp_path, provider):
            task_id = _upload((client, tm), "a.txt")[0]["task_id"]
            task = client.get(f"/api/tasks/{task_id}").json()
            assert task["status"] == "completed"
            assert task["result"]["warning"] == QUOTA_MESSAGE
            assert task["result"]["clusters"] == 0

            project = client.get("/api/project").json()
            assert project["error"] == QUOTA_MESSAGE
            assert project["files"][0]["status"] == "uploaded"
            assert project["files"][0]["warning"] == QUOTA_MESSAGE
            assert "error" not in project["files"][0]

    def test_full_analysis_has_no_warning(self, api):
        client, _ = api
        task_id = _upload(api, "a.txt")[0]["task_id"]
        assert client.get(f"/api/tasks/{task_id}").json()["result"]["warning"] is None
        assert client.get("/api/project").json()["error"] is None


# ── Clusters and notes ──


class TestGenerateClusters:
    def test_maps_document_after_quota_skip(self, store, fake_sleep, tmp_path):
        provider = FakeProvider(affinity=StatusError(429))
        for client, tm in _analyzed_client(store, fake_sleep, tmp_path, provider):
            _upload((client, tm), "a.txt")
            data = client.get("/api/project").json()["data"]
            assert data["clusters"] == []
            highlight_id = data["highlights"][0]["id"]
            provider.script("affinity", {"items": [
                {"id": "th1", "type": "theme", "title": "Motivation"},
                {"id": "s1", "parentId": "th1", "title": "Reasons", "highlightIds": [highlight_id]},
            ]})

            resp = client.post("/api/project/clusters/generate")
            assert resp.status_code == 200
            task = tm.wait(resp.json()["task_id"], timeout=10)
            assert task["status"] == "completed"
            assert task["result"] == {"clusters": 1}

            clusters = client.get("/api/project").json()["data"]["clusters"]
            assert clusters[0]["title"] == "Motivation"
            assert clusters[0]["items"][0]["highlightIds"] == [highlight_id]

    def test_quota_failure_fails_task(self, store, fake_sleep, tmp_path):
        provider = FakeProvider(affinity=StatusError(429))
        for client, tm in _analyzed_client(store, fake_sleep, tmp_path, provider):
            _upload((client, tm), "a.txt")
            task_id = client.post("/api/project/clusters/generate").json()["task_id"]
            task = tm.wait(task_id, timeout=10)
            assert task["status"] == "failed"
            assert task["error"] == QUOTA_MESSAGE

    def test_needs_document(self, client):
        assert client.post("/api/project/clusters/generate").status_code == 409

    def test_needs_highlights(self, store, fake_sleep, tmp_path):
        provider = FakeProvider(main={**MAIN_RESPONSE, "highlights": []})
        for client, tm in _analyzed_client(store, fake_sleep, tmp_path, provider):
            _upload((client, tm), "a.txt")
            assert client.post("/api/project/clusters/generate").status_code == 400


class TestClusterRoutes:
    def test_add_and_rename_cluster(self, api):
        client, _ = api
        _upload(api, "a.txt")
        resp = client.post("/api/project/clusters", json={"title": "Ideas"})
        assert resp.status_code == 200
        cluster_id = resp.json()["id"]

        resp = client.put(f"/api/project/clusters/{cluster_id}/title", json={"title": "Big ideas"})
        assert resp.status_code == 200
        saved = client.get("/api/project").json()["data"]["clusters"]
        assert saved[-1]["id"] == cluster_id
        assert saved[-1]["title"] == "Big ideas"
        assert client.put("/api/project/clusters/nope/title", json={"title": "x"}).status_code == 404

    def test_two_step_delete(self, api):
        client, _ = api
        _upload(api, "a.txt")
        keep = client.get("/api/project").json()["data"]["clusters"][0]["id"]
        drop = client.post("/api/project/clusters", json={}).json()["id"]

        resp = client.delete(f"/api/project/clusters/{drop}")
        assert resp.json() == {"pending": drop, "confirmed": False}
        assert client.get("/api/project").json()["pendingClusterDelete"] == drop
        assert len(client.get("/api/project").json()["data"]["clusters"]) == 2

        assert client.delete(f"/api/project/clusters/{keep}?confirm=true").status_code == 409

        resp = client.delete(f"/api/project/clusters/{drop}?confirm=true")
        assert resp.json() == {"deleted": drop, "confirmed": True}
        assert [c["id"] for c in client.get("/api/project").json()["data"]["clusters"]] == [keep]

    def test_cancel_delete(self, api):
        client, _ = api
        _upload(api, "a.txt")
        cluster_id = client.get("/api/project").json()["data"]["clusters"][0]["id"]
        client.delete(f"/api/project/clusters/{cluster_id}")
        client.post("/api/project/clusters/delete/cancel")
        assert client.delete(f"/api/project/clusters/{cluster_id}?confirm=true").status_code == 409

    def test_delete_unknown(self, api):
        client, _ = api
        _upload(api, "a.txt")
        assert client.delete("/api/project/clusters/nope").status_code == 404

    def test_notes(self, api):
        client, _ = api
        _upload(api, "a.txt")
        cluster_id = client.get("/api/project").json()["data"]["clusters"][0]["id"]

        note = client.post(f"/api/project/clusters/{cluster_id}/notes", json={}).json()
        assert note["type"] == "note"
        resp = client.put(
            f"/api/project/clusters/{cluster_id}/notes/{note['id']}", json={"text": "Follow up"},
        )
        assert resp.status_code == 200
        items = client.get("/api/project").json()["data"]["clusters"][0]["items"]
        assert items[-1] == {"id": note["id"], "text": "Follow up", "type": "note"}

        assert client.delete(f"/api/project/clusters/{cluster_id}/notes/{note['id']}").status_code == 200
        items = client.get("/api/project").json()["data"]["clusters"][0]["items"]
        assert note["id"] not in [i["id"] for i in items]
        assert client.delete(f"/api/project/clusters/{cluster_id}/notes/{note['id']}").status_code == 404
        assert client.post("/api/project/clusters/nope/notes", json={"text": "x"}).status_code == 404

    def test_need_open_document(self, client):
        assert client.post("/api/project/clusters", json={}).status_code == 409
        assert client.put("/api/project/clusters/c1/title", json={"title": "x"}).status_code == 409
        assert client.delete("/api/project/clusters/c1").status_code == 409
        assert client.post("/api/project/clusters/c1/notes", json={}).status_code == 409
        assert client.get("/api/project/quotes/h1").status_code == 409


# ── Sidebar and language ──


class TestSidebar:
    def test_tags_and_highlights(self, api):
        client, _ = api
        _upload(api, "a.txt", "b.txt")
        tags = client.get("/api/project/tags").json()
        assert [t["label"] for t in tags] == ["Reason"]
        assert len(client.get("/api/project/highlights").json()) == 2
        assert len(client.get("/api/project/highlights?tag=Reason").json()) == 2
        assert client.get("/api/project/highlights?tag=Other").json() == []

    def test_quote(self, api):
        client, _ = api
        _upload(api, "a.txt")
        highlight_id = client.get("/api/project").json()["data"]["highlights"][0]["id"]
        assert client.get(f"/api/project/quotes/{highlight_id}").json()["text"] == "Because."
        assert client.get("/api/project/quotes/nope").json()["text"] == "Quote not found"

    def test_empty_project(self, client):
        assert client.get("/api/project/tags").json() == []
        assert client.get("/api/project/highlights").json() == []


class TestLanguage:
    def test_set_language(self, client):
        resp = client.put("/api/project/language", json={"language": "uk"})
        assert resp.json() == {"language": "uk"}
        assert client.get("/api/project").json()["language"] == "uk"

    def test_unsupported_language(self, client):
        assert client.put("/api/project/language", json={"language": "fr"}).status_code == 400


# ── History ──


class TestHistory:
    def test_two_step_delete(self, client):
        keep = client.post("/api/project").json()["id"]
        other = client.post("/api/project").json()["id"]

        resp = client.delete(f"/api/history/{keep}")
        assert resp.json() == {"pending": keep, "confirmed": False}
        assert len(client.get("/api/history").json()) == 2
        assert client.get("/api/project").json()["pendingDelete"] == keep

        assert client.delete(f"/api/history/{other}?confirm=true").status_code == 409

        resp = client.delete(f"/api/history/{keep}?confirm=true")
        assert resp.json() == {"deleted": keep, "confirmed": True, "currentProject": other}
        assert [p["id"] for p in client.get("/api/history").json()] == [other]

    def test_cancel_delete(self, client):
        project_id = client.post("/api/project").json()["id"]
        client.delete(f"/api/history/{project_id}")
        client.post("/api/history/delete/cancel")
        assert client.delete(f"/api/history/{project_id}?confirm=true").status_code == 409

    def test_delete_unknown(self, client):
        assert client.delete("/api/history/nope").status_code == 404

    def test_load_project(self, api):
        client, _ = api
        client.post("/api/project/start")
        _upload(api, "a.txt")
        saved_id = client.get("/api/project").json()["id"]
        client.post("/api/project")

        resp = client.post(f"/api/history/{saved_id}/load")
        assert resp.status_code == 200
        assert resp.json()["id"] == saved_id
        assert resp.json()["currentScreen"] == "TRANSCRIPT"
        assert resp.json()["data"]["tags"]
        assert client.post("/api/history/nope/load").status_code == 404
