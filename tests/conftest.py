import os
import tempfile

import fakeredis
import pytest
from fastapi.testclient import TestClient

# main.py создаёт сервис при импорте, пусть его база лежит во временном каталоге
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{os.path.join(tempfile.mkdtemp(), 'links.db')}"
)

from shortener.config import Settings
from shortener.main import app, get_service
from shortener.service import ShortenerService


@pytest.fixture
def settings(tmp_path):
    return Settings(database_url=f"sqlite:///{tmp_path / 'links.db'}")


@pytest.fixture
def service(settings):
    return ShortenerService.from_settings(settings)


@pytest.fixture
def store(service):
    return service.store


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis()


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()
