"""Tests for the FastAPI routes: health and glossary projects."""

from __future__ import annotations

import httpx
import pytest

from storyglossary.api.main import _safe_host, create_app
from storyglossary.schemas.project import ProjectRecord, ProjectStatus
from storyglossary.workers.tasks import ARQ_QUEUE

SNAPSHOT = {
    "arcs": [{"id": "arc-entrance", "name": "Entrance", "characters": [{"name": "Kim"}]}],
    "processedChunks": 2,
    "totalChunks": 2,
}


# -- Fixtures ----------------------------------------------------------------


@pytest.fixture
def app(project_repo, mock_redis, mock_arq_pool):
    """App without lifespan; state is injected directly."""
    test_app = create_app(use_lifespan=False)
    test_app.state.redis = mock_redis
    test_app.state.project_repo = project_repo
    test_app.state.arq_pool = mock_arq_pool
    return test_app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _seed(repo, project_id: str = "p1", **fields) -> ProjectRecord:
    return await repo.save(ProjectRecord(id=project_id, name="Novel", glossary=SNAPSHOT, **fields))


# -- Health --------------------------------------------------------------------


class TestHealth:

    async def test_healthy(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["services"] == {"redis": "ok", "task_queue": "ok"}
        assert isinstance(body["oracle_breakers"], dict)

    async def test_degraded_when_redis_down(self, client, mock_redis):
        mock_redis.ping.side_effect = ConnectionError("refused")
        resp = await client.get("/api/health")
        assert resp.status_code == 503
        assert resp.json()["services"]["redis"] == "error"

    async def test_request_id_echoed(self, client):
        resp = await client.get("/api/health", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"


# -- Listing -------------------------------------------------------------------


class TestListAndGet:

    async def test_list_newest_first(self, client, project_repo):
        await project_repo.save(ProjectRecord(id="old", updated_at=1.0))
        await project_repo.save(ProjectRecord(id="new", updated_at=2.0, glossary=SNAPSHOT))
        resp = await client.get("/api/projects")
        assert resp.status_code == 200
        data = resp.json()
        assert [p["id"] for p in data] == ["new", "old"]
        assert data[0]["arc_count"] == 1
        assert "glossary" not in data[0]

    async def test_get_project(self, client, project_repo):
        await _seed(project_repo, processed_chunks=2, total_chunks=2)
        resp = await client.get("/api/projects/p1")
        assert resp.status_code == 200
        assert resp.json()["processed_chunks"] == 2

    async def test_get_unknown_project(self, client):
        resp = await client.get("/api/projects/nope")
        assert resp.status_code == 404
        assert resp.json()["error"] == "NotFoundError"
        assert "not found" in resp.json()["detail"].lower()

    async def test_delete(self, client, project_repo):
        await _seed(project_repo)
        resp = await client.delete("/api/projects/p1")
        assert resp.status_code == 200
        assert await project_repo.get("p1") is None
        assert (await client.delete("/api/projects/p1")).status_code == 404


# -- Export / import -------------------------------------------------------------


class TestExportImport:

    async def test_export_fills_defaults(self, client, project_repo):
        await _seed(project_repo)
        resp = await client.get("/api/projects/p1/export")
        assert resp.status_code == 200
        assert "p1-glossary.json" in resp.headers["Content-Disposition"]
        snapshot = resp.json()
        assert snapshot["arcs"][0]["characters"][0]["role"] == "minor"
        assert snapshot["target_language"] == "en"
        assert snapshot["raw_chunks"] == []

    async def test_export_without_glossary(self, client, project_repo):
        await project_repo.save(ProjectRecord(id="p1"))
        resp = await client.get("/api/projects/p1/export")
        assert resp.status_code == 422

    async def test_import_round_trip(self, client, project_repo):
        await _seed(project_repo)
        exported = (await client.get("/api/projects/p1/export")).json()
        resp = await client.post(
            "/api/projects/import",
            json={"id": "copy", "name": "Copy", "glossary": exported, "view": {"tab": "arcs"}},
        )
        assert resp.status_code == 201
        assert resp.json()["status"] == ProjectStatus.READY
        stored = await project_repo.get("copy")
        assert stored.glossary == exported
        assert stored.view == {"tab": "arcs"}

    async def test_import_generates_id(self, client, project_repo):
        resp = await client.post("/api/projects/import", json={"glossary": {}})
        assert resp.status_code == 201
        project_id = resp.json()["id"]
        assert len(project_id) == 12
        assert await project_repo.get(project_id) is not None

    @pytest.mark.parametrize("glossary", [None, [], "text", {"arcs": "not a list"}])
    async def test_import_rejects_unreadable_snapshot(self, client, glossary):
        resp = await client.post("/api/projects/import", json={"id": "x", "glossary": glossary})
        assert resp.status_code == 422
        assert resp.json()["error"] == "SerializationError"

    async def test_import_existing_id_conflicts(self, client, project_repo):
        await _seed(project_repo)
        resp = await client.post("/api/projects/import", json={"id": "p1", "glossary": SNAPSHOT})
        assert resp.status_code == 409


# -- Job enqueueing --------------------------------------------------------------


class TestEnqueue:

    async def test_extract_creates_project_and_enqueues(self, client, project_repo, mock_arq_pool):
        resp = await client.post(
            "/api/projects/p1/extract",
            json={"text": "그는 웃었다.", "target_language": "en", "name": "Novel"},
        )
        assert resp.status_code == 200
        assert resp.json()["job_id"] == "job-1"
        assert (await project_repo.get("p1")).name == "Novel"
        mock_arq_pool.enqueue_job.assert_awaited_once()
        call = mock_arq_pool.enqueue_job.await_args
        assert call.args == ("process_glossary_extraction", "p1", "그는 웃었다.", "en", "Novel")
        assert call.kwargs["_queue_name"] == ARQ_QUEUE
        assert call.kwargs["_job_id"].startswith("extract:p1:")

    async def test_rerun_gets_a_fresh_job_id(self, client, mock_arq_pool):
        for _ in range(2):
            resp = await client.post("/api/projects/p1/extract", json={"text": "abc"})
            assert resp.status_code == 200
        job_ids = [call.kwargs["_job_id"] for call in mock_arq_pool.enqueue_job.await_args_list]
        assert len(set(job_ids)) == 2

    async def test_extract_rejects_empty_text(self, client):
        resp = await client.post("/api/projects/p1/extract", json={"text": ""})
        assert resp.status_code == 422

    async def test_extract_while_processing_conflicts(self, client, project_repo):
        await _seed(project_repo, status=ProjectStatus.PROCESSING)
        resp = await client.post("/api/projects/p1/extract", json={"text": "abc"})
        assert resp.status_code == 409

    async def test_duplicate_job_conflicts(self, client, mock_arq_pool):
        mock_arq_pool.enqueue_job.return_value = None
        resp = await client.post("/api/projects/p1/extract", json={"text": "abc"})
        assert resp.status_code == 409

    async def test_queue_unavailable(self, app, client):
        app.state.arq_pool = None
        resp = await client.post("/api/projects/p1/extract", json={"text": "abc"})
        assert resp.status_code == 503

    async def test_consolidate_enqueues(self, client, project_repo, mock_arq_pool):
        await _seed(project_repo)
        resp = await client.post("/api/projects/p1/consolidate")
        assert resp.status_code == 200
        call = mock_arq_pool.enqueue_job.await_args
        assert call.args == ("process_glossary_consolidation", "p1")
        assert call.kwargs["_queue_name"] == ARQ_QUEUE
        assert call.kwargs["_job_id"].startswith("consolidate:p1:")

    async def test_consolidate_can_be_repeated(self, client, project_repo, mock_arq_pool):
        await _seed(project_repo)
        for _ in range(2):
            assert (await client.post("/api/projects/p1/consolidate")).status_code == 200
        job_ids = {call.kwargs["_job_id"] for call in mock_arq_pool.enqueue_job.await_args_list}
        assert len(job_ids) == 2

    async def test_consolidate_while_processing_conflicts(self, client, project_repo, mock_arq_pool):
        await _seed(project_repo, status=ProjectStatus.PROCESSING)
        resp = await client.post("/api/projects/p1/consolidate")
        assert resp.status_code == 409
        mock_arq_pool.enqueue_job.assert_not_awaited()

    async def test_consolidate_unknown_project(self, client):
        resp = await client.post("/api/projects/nope/consolidate")
        assert resp.status_code == 404


def test_safe_host_strips_credentials():
    assert _safe_host("redis://:secret@localhost:6379/0") == "localhost:6379"
