# tests/test_api.py
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from adapters.api import app
from adapters.database import DatabaseDataModel
from adapters.file import FileDataModel
from domain.models import EntityFactory
from domain.snapshot import SnapshotDataModel
from services.data_model_service import DataModelService, set_data_model_service


@pytest.fixture
def use_model():
    services = []

    def install(model):
        service = DataModelService(model, max_workers=2)
        services.append(service)
        set_data_model_service(service)
        return TestClient(app)

    yield install

    set_data_model_service(None)
    for service in services:
        service.close()


@pytest.fixture
def file_client(use_model, sample_file):
    return use_model(FileDataModel(sample_file, auto_reload=False))


@pytest.fixture
def db_client(use_model, populated_db_model):
    return use_model(populated_db_model)


def test_root(file_client):
    response = file_client.get("/")

    assert response.status_code == 200
    assert response.json()["service"] == "Preference Data Model API"


def test_health(file_client):
    body = file_client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["backend"] == "FileDataModel"


def test_health_without_service():
    set_data_model_service(None)

    assert TestClient(app).get("/health").status_code == 503


def test_stats(file_client):
    assert file_client.get("/stats").json() == {"backend": "FileDataModel", "users": 2, "items": 2}


def test_list_users_with_limit(db_client):
    assert db_client.get("/users").json() == {"ids": ["A123", "B234", "C345", "D456"], "count": 4}
    assert db_client.get("/users", params={"limit": 2}).json() == {"ids": ["A123", "B234"], "count": 2}
    assert db_client.get("/users", params={"limit": 0}).status_code == 422


def test_get_user(file_client):
    body = file_client.get("/users/u1").json()

    assert body["user_id"] == "u1"
    assert body["preferences"] == [
        {"user_id": "u1", "item_id": "i1", "value": 3.0},
        {"user_id": "u1", "item_id": "i2", "value": 4.0},
    ]


def test_missing_user_is_404(file_client):
    assert file_client.get("/users/missing").status_code == 404


def test_items(db_client):
    assert db_client.get("/items").json()["ids"] == ["123", "234", "456", "654", "789"]
    assert db_client.get("/items/456").json() == {"item_id": "456", "title": None}
    assert db_client.get("/items/999").status_code == 404
    assert db_client.get("/items/999", params={"assume_exists": True}).json()["item_id"] == "999"


def test_item_preferences(file_client):
    body = file_client.get("/items/i1/preferences").json()

    assert body["item_id"] == "i1"
    assert [(p["user_id"], p["value"]) for p in body["preferences"]] == [("u1", 3.0), ("u2", 5.0)]


def test_set_and_remove_preference(db_client):
    response = db_client.put("/users/D456/preferences/789", json={"value": 0.9})
    assert response.status_code == 204

    prefs = db_client.get("/items/789/preferences").json()["preferences"]
    assert [p["value"] for p in prefs if p["user_id"] == "D456"] == [0.9]

    assert db_client.delete("/users/D456/preferences/789").status_code == 204
    prefs = db_client.get("/items/789/preferences").json()["preferences"]
    assert "D456" not in [p["user_id"] for p in prefs]


def test_mutation_on_read_only_backend_is_405(file_client):
    response = file_client.put("/users/u1/preferences/i1", json={"value": 1.0})

    assert response.status_code == 405


def test_invalid_key_is_422(use_model):
    factory = EntityFactory.with_key_types(user_key=int, item_key=int)
    client = use_model(SnapshotDataModel([], factory=factory))

    assert client.get("/users/abc").status_code == 422
    assert client.get("/users/7").status_code == 404


def test_refresh_picks_up_changes(sample_file, file_client):
    assert file_client.get("/stats").json()["users"] == 2

    sample_file.write_text("u9,i9,1.0\n", encoding="utf-8")
    assert file_client.post("/refresh").status_code == 200

    assert file_client.get("/users").json()["ids"] == ["u9"]


def test_backend_failure_is_503(use_model):
    engine = MagicMock()
    engine.connect.side_effect = OperationalError("SELECT", {}, Exception("database is down"))
    client = use_model(DatabaseDataModel(engine))

    assert client.get("/stats").status_code == 503
    assert client.get("/users").status_code == 503
    assert client.get("/health").json()["status"] == "unhealthy"
