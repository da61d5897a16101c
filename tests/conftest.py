import pytest
from fastapi.testclient import TestClient

from api.main import app, get_storage
from referrals.config import get_settings
from referrals.storage import DataStorage


@pytest.fixture
def storage(tmp_path):
    return DataStorage(tmp_path / "data")


@pytest.fixture
def client(storage, monkeypatch):
    monkeypatch.delenv("INGEST_SECRET", raising=False)
    monkeypatch.delenv("REFERRALS_TIMEZONE", raising=False)
    get_settings.cache_clear()
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()
    get_settings.cache_clear()
