"""Report API over checkpoints and readiness."""
import pytest
from fastapi.testclient import TestClient

from migrator.api.main import app
from migrator.api.storage import get_checkpoint_store, get_object_storage
from migrator.services.checkpoint import FileCheckpointStore

from conftest import FakeStorage


@pytest.fixture
def store(tmp_path):
    return FileCheckpointStore(tmp_path / "checkpoints")


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def client(store, storage):
    app.dependency_overrides[get_checkpoint_store] = lambda: store
    app.dependency_overrides[get_object_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


def seed_media_reports(store, storage):
    upload = {
        "success": True,
        "bucket": "avatars",
        "storage_path": "user-1/a.png",
        "compression_stats": {"original_size": 100, "compressed_size": 60},
    }
    storage.objects[("avatars", "user-1/a.png")] = b"x" * 60
    stats = {
        "total_files": 1,
        "successful_uploads": 1,
        "total_original_size": 100,
        "total_compressed_size": 60,
        "total_size_saved": 40,
    }
    store.save("media-inventory", {"total_files": 1})
    store.save("mapping-validation-results", {"valid_mappings": 1})
    store.save("profile-images-migrated", {"stats": stats, "uploads": [upload]})
    store.save("service-images-migrated", {"stats": {"total_files": 0}, "uploads": []})
    store.save("media-records-created", {
        "total_records": 1,
        "successful_records": 1,
        "failed_records": 0,
        "total_services": 0,
        "services_with_preview": 0,
        "duplicate_preview_images": 0,
    })


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_list_checkpoints(client, store):
    store.save("user-id-mapping", {"a": "b"}, {"total_mappings": 1})
    store.save("duplicates", [])

    response = client.get("/api/checkpoints")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert [c["key"] for c in data["checkpoints"]] == ["duplicates", "user-id-mapping"]
    assert data["checkpoints"][1]["metadata"]["total_mappings"] == 1


def test_unreadable_checkpoints_are_left_out_of_the_list(client, store, tmp_path):
    (tmp_path / "checkpoints" / "broken.json").write_text("{nope")
    response = client.get("/api/checkpoints")
    assert response.json() == {"checkpoints": [], "total": 0}


def test_get_checkpoint(client, store):
    store.save("user-id-mapping", {"a": "b"})

    response = client.get("/api/checkpoints/user-id-mapping")

    assert response.status_code == 200
    assert response.json()["payload"] == {"a": "b"}


def test_get_missing_checkpoint(client):
    response = client.get("/api/checkpoints/services-created")
    assert response.status_code == 404
    assert response.json()["detail"] == "Checkpoint not found"


def test_invalid_checkpoint_key(client):
    response = client.get("/api/checkpoints/.hidden")
    assert response.status_code == 400


def test_readiness_before_scoring(client):
    response = client.get("/api/readiness")
    assert response.status_code == 404
    assert response.json()["detail"] == "No readiness report yet"


def test_score_and_persist(client, store, storage):
    seed_media_reports(store, storage)

    response = client.post("/api/readiness/score", json={"persist": True})

    assert response.status_code == 200
    report = response.json()
    assert report["overall_score"] == 100
    assert report["migration_status"] == "success"
    assert len(report["validation_checks"]) == 6

    persisted = client.get("/api/readiness")
    assert persisted.status_code == 200
    assert persisted.json()["overall_score"] == 100


def test_score_without_persist_leaves_store_untouched(client, store, storage):
    seed_media_reports(store, storage)

    response = client.post("/api/readiness/score", json={"sample_strategy": "random", "sample_size": 1})

    assert response.status_code == 200
    assert not store.exists("media-migration-validation")


def test_score_rejects_unknown_strategy(client):
    response = client.post("/api/readiness/score", json={"sample_strategy": "stratified"})
    assert response.status_code == 422
