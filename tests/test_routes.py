"""
HTTP tests for the WearUp API.

The service container is swapped for one built from fakes, so no MongoDB,
Supabase or Replicate access happens.
"""
import pytest
from fastapi.testclient import TestClient

from conftest import FakeFetcher, png_bytes
from wearup_service.app.main import app
from wearup_service.app.routes import get_services
from wearup_service.core.services import Services
from wearup_service.imaging import CanvasCompositor, ReferenceCanvasBuilder
from wearup_service.jobs import JobService
from wearup_service.jobs.status import JobStatus


@pytest.fixture
def services(settings, storage, provider, job_store, ledger_store, cover_store):
    fetcher = FakeFetcher({
        "https://img/top.png": png_bytes((10, 10, 10, 255)),
        "https://img/main.png": png_bytes((200, 0, 0, 255), size=(200, 400)),
    })
    return Services(
        settings=settings,
        storage=storage,
        fetcher=fetcher,
        compositor=CanvasCompositor(fetcher, storage, cover_store),
        reference_builder=ReferenceCanvasBuilder(fetcher, storage, cell_size=64),
        job_service=JobService(provider, job_store, ledger_store, settings),
    )


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


# ==================== HEALTH ====================

class TestHealthEndpoint:
    """Tests for /health and /metrics."""

    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == "1.0.0"
        assert data["mongo"]["status"] == "disconnected"
        assert data["storage"]["backend"] == "LocalStorage"

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "layer_drop_ratio" in response.json()


# ==================== COMPOSE ====================

class TestComposeEndpoint:
    """Tests for POST /outfits/compose."""

    def test_compose_returns_cover(self, client):
        response = client.post("/outfits/compose", json={
            "outfitId": "o-1",
            "items": [
                {"id": "a", "imageUrl": "https://img/top.png", "x": 10, "y": 10, "zIndex": 1},
                {"id": "b", "imageUrl": "https://img/gone.png", "x": 40, "y": 40, "zIndex": 2},
            ],
            "canvasWidth": 300,
            "canvasHeight": 300,
            "resolutionScale": 1,
        })

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["layersRendered"] == 1
        assert data["layersDropped"] == 1
        assert data["fileName"].startswith("outfit_composed_o-1_")

        asset = client.get(data["imageUrl"])
        assert asset.status_code == 200
        assert asset.content[:8] == b"\x89PNG\r\n\x1a\n"

    def test_compose_requires_items(self, client):
        response = client.post("/outfits/compose", json={"outfitId": "o-1", "items": []})

        assert response.status_code == 400
        assert "items" in response.json()["detail"]

    def test_compose_rejects_bad_color(self, client):
        response = client.post("/outfits/compose", json={
            "outfitId": "o-1",
            "items": [{"imageUrl": "https://img/top.png", "x": 0, "y": 0}],
            "backgroundSettings": {"backgroundColor": "purple"},
        })

        assert response.status_code == 400

    @pytest.mark.parametrize("item", [
        {"imageUrl": "https://img/top.png", "x": 0, "y": 0, "scale": 1e6},
        {"imageUrl": "https://img/top.png", "x": 1e12, "y": 0},
        {"imageUrl": "https://img/top.png", "x": 0, "y": 0, "scale": 0},
    ])
    def test_compose_rejects_out_of_range_layers(self, client, item):
        response = client.post("/outfits/compose", json={"outfitId": "o-1", "items": [item]})

        assert response.status_code == 400
        assert "items[0]" in response.json()["detail"]


# ==================== REFERENCE ====================

class TestReferenceEndpoints:
    """Tests for /reference/*."""

    def test_reference_canvas(self, client):
        response = client.post("/reference/canvas", json={
            "mainImageUrl": "https://img/main.png",
            "items": [{"imageUrl": "https://img/top.png", "label": "Top"}],
            "userId": "u1",
        })

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["grid"] == {"columns": 1, "rows": 1}
        assert data["itemsRendered"] == 1
        assert client.get(data["labeledUrl"]).status_code == 200

    def test_reference_canvas_nothing_loadable(self, client):
        response = client.post("/reference/canvas", json={
            "items": [{"imageUrl": "https://img/gone.png"}],
        })

        assert response.status_code == 422

    def test_reference_generate_submits_and_waits(self, client, provider, ledger_store):
        provider.script("job-1", "processing", JobStatus("job-1", "succeeded", output=["https://out/look.jpg"]))

        response = client.post("/reference/generate", json={
            "accountId": "acct-1",
            "mainImageUrl": "https://img/main.png",
            "items": [{"imageUrl": "https://img/top.png", "label": "Top"}],
            "prompt": "street style",
            "aspectRatio": "1080:1920",
        })

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["job"]["status"] == "succeeded"
        assert data["job"]["output"] == ["https://out/look.jpg"]
        assert data["prompt"] == "street style"

        params = provider.submitted[0]["params"]
        assert params["aspect_ratio"] == "9:16"
        assert params["input_image"].startswith("data:image/jpeg;base64,")
        assert ledger_store.get_balance("acct-1") == 200

    def test_reference_generate_sensitive_content(self, client, provider, ledger_store):
        provider.script("job-1", JobStatus("job-1", "failed", error="flagged as sensitive (E005)"))

        response = client.post("/reference/generate", json={
            "accountId": "acct-1",
            "mainImageUrl": "https://img/main.png",
        })

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["error_type"] == "sensitive_content"
        assert ledger_store.get_balance("acct-1") == 250

    def test_reference_generate_insufficient_balance(self, client, provider, ledger_store):
        ledger_store.set_balance("acct-1", 10)

        response = client.post("/reference/generate", json={
            "accountId": "acct-1",
            "mainImageUrl": "https://img/main.png",
        })

        assert response.status_code == 402
        assert provider.submitted == []


# ==================== JOBS ====================

class TestJobEndpoints:
    """Tests for /jobs and /accounts."""

    def test_submit_job(self, client, ledger_store):
        response = client.post("/jobs", json={
            "accountId": "acct-1", "kind": "video", "model": "owner/video-model", "input": {"prompt": "spin"},
        })

        assert response.status_code == 201
        assert response.json()["data"]["job_id"] == "job-1"
        assert ledger_store.get_balance("acct-1") == 150

    def test_submit_job_validation(self, client):
        response = client.post("/jobs", json={"accountId": "acct-1", "kind": "hologram"})

        assert response.status_code == 400
        assert "kind" in response.json()["detail"]

    def test_submit_job_insufficient_balance(self, client):
        response = client.post("/jobs", json={
            "accountId": "broke", "kind": "image", "model": "owner/model",
        })

        assert response.status_code == 402
        assert response.json()["detail"]["required"] == 50

    def test_get_job_refreshes(self, client, provider):
        client.post("/jobs", json={"accountId": "acct-1", "kind": "training", "model": "owner/trainer:v1"})
        provider.script("job-1", JobStatus("job-1", "processing", logs=" 64%|######"))

        response = client.get("/jobs/job-1")

        assert response.status_code == 200
        assert response.json()["data"]["progress"] == 64

    def test_get_unknown_job(self, client):
        assert client.get("/jobs/nope").status_code == 404

    def test_wait_timeout(self, client, provider):
        client.post("/jobs", json={"accountId": "acct-1", "kind": "video", "model": "owner/model"})

        response = client.post("/jobs/job-1/wait", params={"max_attempts": 2, "interval": 0})

        assert response.status_code == 504

    def test_wait_terminal_failure(self, client, provider):
        client.post("/jobs", json={"accountId": "acct-1", "kind": "video", "model": "owner/model"})
        provider.script("job-1", JobStatus("job-1", "failed", error="GPU fault"))

        response = client.post("/jobs/job-1/wait", params={"interval": 0})

        assert response.status_code == 502

    def test_account_balance(self, client, provider):
        client.post("/jobs", json={"accountId": "acct-1", "kind": "video", "model": "owner/model"})
        provider.script("job-1", "failed")

        response = client.get("/accounts/acct-1/balance")

        assert response.status_code == 200
        assert response.json()["data"]["balance"] == 250


# ==================== ASSETS ====================

class TestAssets:
    """Tests for /assets path protection."""

    def test_missing_asset(self, client):
        assert client.get("/assets/covers/none.png").status_code == 404

    def test_suspicious_path_rejected(self, client):
        assert client.get("/assets/covers/..secret.png").status_code == 403
