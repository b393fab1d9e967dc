import asyncio

import pytest
from fastapi.testclient import TestClient

from filemailer import api
from filemailer.config import Settings
from filemailer.credentials import generate_token
from filemailer.persistence import Persistence
from filemailer.server import build_app


@pytest.fixture(autouse=True)
def reset_pipeline():
    original = api.pipeline
    yield
    api.pipeline = original


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_path=str(tmp_path / "server.db"),
        job_log_path=str(tmp_path / "logs" / "send.log"),
        scratch_dir=str(tmp_path),
        api_token="ops-token",
    )


def test_startup_creates_schema_and_serves(settings, tmp_path):
    with TestClient(build_app(settings)) as client:
        assert client.get("/health").text == "ok"
        response = client.post("/send", json={"api_key": generate_token(), "file_url": "https://h/r.pdf"})
        assert response.status_code == 401
        assert response.json()["stage"] == "unauthorized"

        metrics = client.get("/metrics", headers={"X-API-Token": "ops-token"})
        assert 'fm_deliveries_total{stage="unauthorized"} 1.0' in metrics.text

    log_lines = (tmp_path / "logs" / "send.log").read_text(encoding="utf-8").splitlines()
    assert len(log_lines) == 1
    assert log_lines[0].endswith("url=https://h/r.pdf status=unauthorized")


def test_schema_exists_after_startup(settings):
    with TestClient(build_app(settings)):
        pass
    assert asyncio.run(Persistence(settings.db_path).list_users()) == []
