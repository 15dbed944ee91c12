"""
API endpoint tests
"""

from datetime import datetime, timedelta

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from api.main import app
from core.config import settings
from ingestion.checkpoint import CheckpointStore, checkpoint_path_for
from models.etl_run import ETLRun, ETLStatus
from schemas.checkpoint import Phase


@pytest_asyncio.fixture
async def client(session_factory, tmp_path, monkeypatch):
    """Async test client with database and checkpoint directory overrides"""
    monkeypatch.setattr(settings, "CHECKPOINT_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "BULK_KINDS", "default_cards")

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


async def add_run(session_factory, status, kind="default_cards", started_at=None, **fields):
    started_at = started_at or datetime.utcnow()
    async with session_factory() as session:
        session.add(ETLRun(
            dataset_kind=kind,
            status=status,
            started_at=started_at,
            completed_at=started_at + timedelta(seconds=30),
            duration_seconds=30.0,
            **fields
        ))
        await session.commit()


@pytest.mark.asyncio
async def test_root_endpoint(client):
    """Test root endpoint lists the operational endpoints"""
    response = await client.get("/")

    assert response.status_code == 200
    data = response.json()
    assert data["health"] == "/health"
    assert data["endpoints"]["stats"] == "/stats"


@pytest.mark.asyncio
async def test_health_without_checkpoint(client):
    """Test health endpoint before the first run"""
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()

    assert data["status"] == "healthy"
    assert data["database_connected"] is True
    assert len(data["checkpoints"]) == 1
    checkpoint = data["checkpoints"][0]
    assert checkpoint["dataset_kind"] == "default_cards"
    assert checkpoint["exists"] is False
    assert checkpoint["phase"] is None


@pytest.mark.asyncio
async def test_health_reports_checkpoint_progress(client, session_factory, tmp_path):
    store = CheckpointStore(checkpoint_path_for(tmp_path, "default_cards"), kind="default_cards")
    checkpoint = store.load()
    checkpoint.advance(Phase.REFERENCE_LOADED)
    checkpoint.downloads.update({"sets": True, "default_cards": True})
    progress = checkpoint.stream("default_cards")
    progress.processed_count = 1000
    progress.batches_committed = 2
    progress.last_record_id = "card-1000"
    store.save(checkpoint)
    await add_run(session_factory, ETLStatus.SUCCESS)

    response = await client.get("/health")

    data = response.json()
    assert data["status"] == "healthy"
    status = data["checkpoints"][0]
    assert status["exists"] is True
    assert status["phase"] == "reference-loaded"
    assert status["downloads"] == {"sets": True, "default_cards": True}
    assert status["streams"]["default_cards"]["processed_count"] == 1000
    assert status["streams"]["default_cards"]["last_record_id"] == "card-1000"
    assert status["last_run_status"] == "success"


@pytest.mark.asyncio
async def test_health_degraded_after_failed_run(client, session_factory):
    now = datetime.utcnow()
    await add_run(session_factory, ETLStatus.SUCCESS, started_at=now - timedelta(hours=2))
    await add_run(session_factory, ETLStatus.FAILED, started_at=now, error_message="StoreFatalError: ...")

    response = await client.get("/health")

    data = response.json()
    assert data["status"] == "degraded"
    assert data["checkpoints"][0]["last_run_status"] == "failed"


@pytest.mark.asyncio
async def test_health_degraded_on_unreadable_checkpoint(client, tmp_path):
    checkpoint_path_for(tmp_path, "default_cards").write_text("{broken", encoding="utf-8")

    response = await client.get("/health")

    data = response.json()
    assert data["status"] == "degraded"
    assert data["checkpoints"][0]["error"] == "Failed to read checkpoint"


@pytest.mark.asyncio
async def test_health_unhealthy_without_database(client):
    class UnreachableSession:
        async def execute(self, *args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    async def broken_get_db():
        yield UnreachableSession()

    app.dependency_overrides[get_db] = broken_get_db

    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "unhealthy"
    assert data["database_connected"] is False


@pytest.mark.asyncio
async def test_stats_after_pipeline_run(client, runner_factory):
    """Test stats reflect a completed ingestion run"""
    await runner_factory().run()

    response = await client.get("/stats")

    assert response.status_code == 200
    data = response.json()

    assert data["table_counts"]["mtg_cards"] == 3
    assert data["table_counts"]["mtg_card_faces"] == 2
    assert data["table_counts"]["mtg_card_rulings"] == 3
    assert data["catalog_counts"] == {"frame-effects": 3, "powers": 3, "watermarks": 2}
    assert data["total_etl_runs"] == 1
    assert data["last_etl_success"] is not None
    assert data["last_etl_failure"] is None
    assert data["request_id"].startswith("req_")

    (run,) = data["recent_runs"]
    assert run["dataset_kind"] == "default_cards"
    assert run["status"] == "success"
    assert run["records_loaded"] == 6
    assert run["phase_after"] == "done"


@pytest.mark.asyncio
async def test_stats_recent_runs_limit(client, session_factory):
    now = datetime.utcnow()
    for i in range(5):
        await add_run(session_factory, ETLStatus.SUCCESS, started_at=now - timedelta(minutes=i))

    response = await client.get("/stats", params={"limit": 2})

    data = response.json()
    assert data["total_etl_runs"] == 5
    assert len(data["recent_runs"]) == 2
    assert data["avg_etl_duration_seconds"] == 30.0


@pytest.mark.asyncio
async def test_stats_rejects_invalid_limit(client):
    response = await client.get("/stats", params={"limit": 0})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_request_id_is_propagated(client):
    response = await client.get("/", headers={"X-Request-ID": "trace-123"})

    assert response.headers["X-Request-ID"] == "trace-123"
    assert "X-API-Latency-ms" in response.headers


@pytest.mark.asyncio
async def test_get_db_yields_application_session():
    sessions = get_db()
    session = await sessions.__anext__()
    try:
        assert isinstance(session, AsyncSession)
        assert await session.scalar(text("SELECT 1")) == 1
    finally:
        await sessions.aclose()
