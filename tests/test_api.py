import types

import pytest
from fastapi.testclient import TestClient

from filemailer import api
from filemailer.api import API_TOKEN_HEADER_NAME, create_app
from filemailer.errors import (
    AuthorizationError,
    DeliveryError,
    InternalInconsistencyError,
    SizeLimitError,
    StagingError,
    TransientRemoteError,
)
from filemailer.models import Outcome

API_TOKEN = "secret-token"
KEY = "a" * 64


class DummyPipeline:
    def __init__(self, outcome=None):
        self.calls = []
        self.outcome = outcome or Outcome(ok=True, stage="sent", message="file sent to your email", size=12)
        self.metrics = types.SimpleNamespace(generate_latest=lambda: b"metrics-data")

    async def deliver(self, token, url):
        self.calls.append((token, url))
        return self.outcome


@pytest.fixture(autouse=True)
def reset_pipeline():
    original = api.pipeline
    original_token = getattr(api.app.state, "api_token", None)
    api.pipeline = None
    api.app.state.api_token = None
    try:
        yield
    finally:
        api.pipeline = original
        api.app.state.api_token = original_token


def test_health_is_plain_ok():
    client = TestClient(create_app(DummyPipeline(), api_token=API_TOKEN))
    response = client.get("/health")
    assert response.status_code == 200
    assert response.text == "ok"


def test_send_success():
    pipeline = DummyPipeline()
    client = TestClient(create_app(pipeline))
    response = client.post("/send", json={"api_key": KEY, "file_url": "https://h/report.pdf"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "stage": "sent", "message": "file sent to your email", "size": 12}
    assert pipeline.calls == [(KEY, "https://h/report.pdf")]


def test_send_does_not_require_operator_token():
    client = TestClient(create_app(DummyPipeline(), api_token=API_TOKEN))
    response = client.post("/send", json={"api_key": KEY, "file_url": "https://h/r"})
    assert response.status_code == 200


@pytest.mark.parametrize(
    "payload",
    [
        {"api_key": KEY},
        {"file_url": "https://h/r"},
        {"api_key": "", "file_url": "https://h/r"},
        {"api_key": KEY, "file_url": "   "},
    ],
)
def test_send_missing_fields_is_400(payload):
    pipeline = DummyPipeline()
    client = TestClient(create_app(pipeline))
    response = client.post("/send", json=payload)

    assert response.status_code == 400
    assert response.json()["message"] == "api_key and file_url required"
    assert pipeline.calls == []


def test_send_invalid_json_is_400():
    client = TestClient(create_app(DummyPipeline()))
    response = client.post("/send", content=b"{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400


def test_validation_errors_never_log_the_body(caplog):
    client = TestClient(create_app(DummyPipeline()))
    with caplog.at_level("WARNING"):
        client.post("/send", json={"api_key": KEY})
    assert KEY not in caplog.text


@pytest.mark.parametrize(
    "exc,status",
    [
        (AuthorizationError("invalid api_key"), 401),
        (SizeLimitError("file too large"), 413),
        (TransientRemoteError("download bad status 404", tag="download_bad_status"), 502),
        (TransientRemoteError("download failed"), 502),
        (DeliveryError("email send failed"), 502),
        (StagingError("internal error"), 500),
        (InternalInconsistencyError("internal error", tag="send_error"), 500),
    ],
)
def test_send_failure_status_mapping(exc, status):
    client = TestClient(create_app(DummyPipeline(Outcome.failure(exc))))
    response = client.post("/send", json={"api_key": KEY, "file_url": "https://h/r"})

    assert response.status_code == status
    body = response.json()
    assert body["ok"] is False
    assert body["stage"] == exc.tag
    assert body["error"] == exc.code
    assert body["message"] == str(exc)


def test_returns_500_when_pipeline_missing():
    create_app(DummyPipeline())
    api.pipeline = None
    client = TestClient(api.app)
    response = client.post("/send", json={"api_key": KEY, "file_url": "https://h/r"})
    assert response.status_code == 500
    assert response.json()["detail"] == "Service not initialized"


def test_metrics_requires_token():
    client = TestClient(create_app(DummyPipeline(), api_token=API_TOKEN))
    response = client.get("/metrics")
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or missing API token"

    response = client.get("/metrics", headers={API_TOKEN_HEADER_NAME: API_TOKEN})
    assert response.status_code == 200
    assert response.content == b"metrics-data"


def test_metrics_open_without_configured_token():
    client = TestClient(create_app(DummyPipeline()))
    assert client.get("/metrics").status_code == 200
