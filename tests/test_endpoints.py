"""
Test endpoint API.
"""
import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock, patch

from api.main import app
from api.routers.settlements import get_fetcher, get_limits, get_store
from ingest.batch import BatchReport, ConcurrencyLimits


@pytest.fixture
def mock_store():
    store = MagicMock()
    store.list_settlements = AsyncMock()
    store.get_settlement = AsyncMock()
    return store


@pytest.fixture
def shared_limits():
    return ConcurrencyLimits(extract_concurrency=2, persist_concurrency=1)


@pytest.fixture
def client(mock_store, shared_limits):
    """Fixture per TestClient con store mock (startup non eseguito)."""
    app.dependency_overrides[get_store] = lambda: mock_store
    app.dependency_overrides[get_fetcher] = lambda: MagicMock()
    app.dependency_overrides[get_limits] = lambda: shared_limits
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def mock_coordinator():
    with patch("api.routers.settlements.BatchCoordinator") as coordinator_cls:
        coordinator = coordinator_cls.return_value
        coordinator.run = AsyncMock(return_value=BatchReport(resultados=[
            {"filename": "a.pdf", "success": True, "coe": "1", "grano": "SOJA", "cantidad": 10.0, "ctgs": 1},
            {"filename": "b.pdf", "success": False, "error": "PDF non valido"},
        ]))
        yield coordinator_cls


class TestHealthEndpoint:
    """Test endpoint /health."""

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] in ("healthy", "degraded")
        assert data["service"] == "Settlements Processor"


class TestParseEndpoint:
    """Test POST /settlements/parse."""

    def test_parse_batch(self, client, mock_coordinator, mock_store, shared_limits):
        response = client.post(
            "/settlements/parse",
            json={"pdfs": [{"filename": "a.pdf", "data": "QQ=="}, {"filename": "b.pdf", "data": "QQ=="}]},
            headers={"X-User-Id": "u1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["resumen"] == {"total": 2, "procesados": 1, "errores": 1}
        assert [r["filename"] for r in data["resultados"]] == ["a.pdf", "b.pdf"]

        mock_coordinator.assert_called_once_with(mock_store, limits=shared_limits)
        documents = mock_coordinator.return_value.run.await_args.args[0]
        assert [d.filename for d in documents] == ["a.pdf", "b.pdf"]
        assert mock_coordinator.return_value.run.await_args.kwargs["user_id"] == "u1"

    @pytest.mark.parametrize("body", [
        {"pdfs": []},
        {"pdfs": "a.pdf"},
        {"pdfs": [{"filename": "a.pdf"}]},
        {"files": []},
    ])
    def test_malformed_batch(self, client, mock_coordinator, body):
        response = client.post("/settlements/parse", json=body)

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"]
        mock_coordinator.return_value.run.assert_not_called()

    def test_invalid_json(self, client):
        response = client.post(
            "/settlements/parse",
            content=b"{non json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_batches_share_process_limits(self, client, mock_coordinator, shared_limits):
        body = {"pdfs": [{"filename": "a.pdf", "data": "QQ=="}]}
        client.post("/settlements/parse", json=body)
        client.post("/settlements/parse", json=body)

        assert mock_coordinator.call_count == 2
        for call in mock_coordinator.call_args_list:
            assert call.kwargs["limits"] is shared_limits

    def test_unexpected_error(self, client, mock_coordinator):
        mock_coordinator.return_value.run.side_effect = RuntimeError("boom")

        response = client.post("/settlements/parse", json={"pdfs": [{"filename": "a.pdf", "data": "QQ=="}]})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Errore interno durante l'elaborazione del batch"}


class TestStorageEventEndpoint:
    """Test POST /settlements/events/storage."""

    def test_storage_event_without_summary(self, client, mock_coordinator):
        event = {
            "Records": [
                {"eventSource": "aws:s3", "s3": {"bucket": {"name": "b"}, "object": {"key": "in/a.pdf"}}}
            ]
        }
        response = client.post("/settlements/events/storage", json=event)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert "resumen" not in data
        assert len(data["resultados"]) == 2

        documents = mock_coordinator.return_value.run.await_args.args[0]
        assert documents[0].ref.key == "in/a.pdf"
        assert documents[0].filename == "a.pdf"

    def test_event_without_records(self, client, mock_coordinator):
        response = client.post("/settlements/events/storage", json={"detail": {}})

        assert response.status_code == 400
        assert response.json()["success"] is False

    @pytest.mark.parametrize("record", [
        {"s3": "oops"},
        {"s3": {"bucket": "b", "object": {"key": "a.pdf"}}},
    ])
    def test_malformed_record(self, client, mock_coordinator, record):
        response = client.post("/settlements/events/storage", json={"Records": [record]})

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert "s3.bucket" in data["error"]
        mock_coordinator.return_value.run.assert_not_called()


class TestReadEndpoints:
    """Test GET /settlements e /settlements/{id}."""

    def test_list_requires_user(self, client):
        response = client.get("/settlements")
        assert response.status_code == 401

    def test_list_settlements(self, client, mock_store):
        mock_store.list_settlements.return_value = {
            "data": [{"id": "s1", "coe": "330223456789"}],
            "pagination": {"page": 2, "limit": 5, "total": 6, "pages": 2},
        }

        response = client.get(
            "/settlements",
            params={"page": 2, "limit": 5, "grain": "SOJA"},
            headers={"X-User-Id": "u1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["data"][0]["coe"] == "330223456789"
        assert data["pagination"]["pages"] == 2
        mock_store.list_settlements.assert_awaited_once_with(
            user_id="u1", page=2, limit=5, grain="SOJA", status=None
        )

    def test_detail(self, client, mock_store):
        mock_store.get_settlement.return_value = {"id": "s1", "ctg_entries": []}

        response = client.get("/settlements/s1", headers={"X-User-Id": "u1"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"id": "s1", "ctg_entries": []}}
        mock_store.get_settlement.assert_awaited_once_with("s1", user_id="u1")

    def test_detail_not_found(self, client, mock_store):
        mock_store.get_settlement.return_value = None

        response = client.get("/settlements/missing", headers={"X-User-Id": "u1"})

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Liquidazione non trovata"}
