import json

import pytest
from fastapi.testclient import TestClient

from clipchain.main import app
from clipchain.services.credit_ledger import get_credit_ledger
from clipchain.services.video_pipeline import get_video_pipeline
from clipchain.utils.exceptions import StitchError

from .conftest import RecordingStitcher

USER = {"X-User-Id": "user-1"}


@pytest.fixture
def client(pipeline, ledger):
    app.dependency_overrides[get_video_pipeline] = lambda: pipeline
    app.dependency_overrides[get_credit_ledger] = lambda: ledger
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_missing_identity_is_unauthorized(client):
    response = client.get("/api/credits/balance")
    assert response.status_code == 401


def test_add_credits_and_read_balance(client):
    client.post("/api/credits/add", json={"amount": 500}, headers=USER)

    response = client.get("/api/credits/balance", headers=USER)

    assert response.status_code == 200
    assert response.json()["remaining_credits"] == 500


def test_generate_returns_camel_case_result(client):
    client.post("/api/credits/add", json={"amount": 1000}, headers=USER)

    response = client.post(
        "/api/videos/generate",
        json={"prompt": "a dog running", "duration": 16, "videoStyle": "dialogue"},
        headers=USER,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["clipCount"] == 2
    assert body["totalDuration"] == pytest.approx(14.5)
    assert body["transition"] == "dissolve"
    assert body["creditsUsed"] == 240
    assert body["videoUrl"].startswith("/output/")

    history = client.get("/api/credits/history", headers=USER).json()
    assert len(history) == 1
    videos = client.get("/api/videos/history", headers=USER).json()
    assert videos[0]["clip_count"] == 2


def test_generate_without_credits_is_rejected(client):
    response = client.post("/api/videos/generate", json={"prompt": "a dog"}, headers=USER)

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "INSUFFICIENT_CREDITS"
    assert body["details"] == {"required": 120, "remaining": 0}


def test_invalid_body_is_a_400(client):
    response = client.post(
        "/api/videos/generate", json={"prompt": "a dog", "aspectRatio": "4:3"}, headers=USER
    )

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


def test_generation_failure_reports_clip_and_status(client, fake_client):
    client.post("/api/credits/add", json={"amount": 1000}, headers=USER)
    fake_client.script(0, {"done": True, "error": {"code": 3, "message": "blocked by moderation"}})

    response = client.post("/api/videos/generate", json={"prompt": "a dog"}, headers=USER)

    assert response.status_code == 502
    body = response.json()
    assert body["error"] == "GENERATION_FAILED"
    assert body["details"]["clip_index"] == 0
    assert "content moderation" in body["recovery_hint"]
    assert client.get("/api/credits/balance", headers=USER).json()["remaining_credits"] == 1000


def test_status_accepts_a_json_list(client):
    names = json.dumps(["operations/op-0", "operations/op-1"])

    response = client.get("/api/videos/status", params={"operationNames": names}, headers=USER)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "complete"
    assert body["needsCombining"] is True
    assert body["completedSegments"] == 2


def test_status_rejects_malformed_names(client):
    response = client.get("/api/videos/status", params={"operationNames": "not-json"}, headers=USER)
    assert response.status_code == 400


def test_unknown_job_is_404(client):
    response = client.get("/api/jobs/does-not-exist", headers=USER)

    assert response.status_code == 404
    assert response.json()["error"] == "JOB_NOT_FOUND"


class BrokenFfmpegStitcher(RecordingStitcher):
    def _run_ffmpeg(self, cmd, duration, progress_callback=None):
        raise StitchError("FFmpeg exited with code 1", clip_count=0, stderr=f"{cmd[3]}: Invalid data found")


def test_stitch_failure_does_not_expose_scratch_paths(client, pipeline, settings):
    pipeline.stitcher = BrokenFfmpegStitcher(settings)
    client.post("/api/credits/add", json={"amount": 1000}, headers=USER)

    response = client.post("/api/videos/generate", json={"prompt": "a dog", "duration": 16}, headers=USER)

    assert response.status_code == 500
    assert response.json()["error"] == "STITCH_ERROR"
    assert settings.temp_dir not in response.text
    assert "stderr" not in response.json()["details"]
