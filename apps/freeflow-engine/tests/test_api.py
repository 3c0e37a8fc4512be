"""Tests for the HTTP API."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import OfflinePersistence, settle
from freeflow_engine.api.v1.endpoints.websockets import JobFeed
from freeflow_engine.core.jobs import Job, JobScheduler, JobStatus, new_job_id
from freeflow_engine.main import create_app
from freeflow_engine.services.storage import LocalAssetStore


@pytest.fixture
def scheduler(make_scheduler, tmp_path):
    store = LocalAssetStore(tmp_path / "assets")
    scheduler, *_ = make_scheduler(persistence=OfflinePersistence(store))
    JobScheduler._instance = scheduler
    yield scheduler
    JobScheduler._instance = None


@pytest.fixture
def api(scheduler):
    with TestClient(create_app()) as client:
        yield client


class TestHealthAndModels:

    def test_health(self, api):
        response = api.get("/health")

        assert response.status_code == 200
        assert response.json()["maxConcurrent"] == 2

    def test_list_models(self, api):
        body = api.get("/v1/models").json()

        assert [m["id"] for m in body["data"]] == ["sample-i2v", "start-only-i2v"]
        assert body["defaultModelId"] == "sample-i2v"

    def test_unknown_model_404(self, api):
        assert api.get("/v1/models/nope").status_code == 404


class TestJobs:

    def test_submit_returns_job(self, api, reference_files):
        response = api.post("/v1/jobs", json={
            "model_id": "sample-i2v",
            "prompt": "a fox",
            "start_file": str(reference_files[0]),
            "storage_path": "clips",
        })

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"].startswith("job_")
        assert data["modelId"] == "sample-i2v"
        assert data["storagePath"] == "clips"
        assert api.get(f"/v1/jobs/{data['id']}").status_code == 200

    def test_validation_error_is_422(self, api):
        response = api.post("/v1/jobs", json={"model_id": "sample-i2v", "prompt": ""})

        assert response.status_code == 422
        assert response.json()["detail"] == "Please describe your prompt."

    def test_missing_credentials_is_422(self, api, scheduler, reference_files):
        scheduler.client.has_credentials = False

        response = api.post("/v1/jobs", json={
            "model_id": "sample-i2v",
            "prompt": "a fox",
            "start_file": str(reference_files[0]),
        })

        assert response.status_code == 422

    def test_unknown_job_404(self, api):
        assert api.get("/v1/jobs/job_missing").status_code == 404
        assert api.post("/v1/jobs/job_missing/retry").status_code == 404

    def test_retry_of_finished_job_is_400(self, api, scheduler):
        job = Job(id=new_job_id(), model_id="sample-i2v", prompt="done", status=JobStatus.SUCCESS)
        scheduler.load_history([job])

        assert api.post(f"/v1/jobs/{job.id}/retry").status_code == 400

    def test_list_and_clear_history(self, api, scheduler):
        job = Job(id=new_job_id(), model_id="sample-i2v", prompt="done", status=JobStatus.SUCCESS,
                  local_key="a.mp4", local_url="/v1/assets/a.mp4")
        scheduler.load_history([job])

        listed = api.get("/v1/jobs").json()
        assert listed["stats"]["success"] == 1

        cleared = api.delete("/v1/jobs/history").json()
        assert cleared["data"]["removed"] == 1
        assert api.get("/v1/jobs").json()["data"] == []


class TestAssets:

    def test_serves_stored_asset(self, api, tmp_path):
        (tmp_path / "assets" / "clip.mp4").write_bytes(b"movie")

        response = api.get("/v1/assets/clip.mp4")

        assert response.status_code == 200
        assert response.content == b"movie"
        assert response.headers["content-type"] == "video/mp4"

    def test_missing_asset_404(self, api):
        assert api.get("/v1/assets/none.mp4").status_code == 404

    def test_unsafe_key_400(self, api):
        assert api.get("/v1/assets/bad..name.mp4").status_code == 400


class TestSettings:

    def test_update_save_path(self, api):
        response = api.put("/v1/settings", json={"save_path": "renders"})

        assert response.status_code == 200
        assert response.json()["data"]["savePath"] == "renders"
        assert api.get("/v1/settings").json()["data"]["savePath"] == "renders"

        api.put("/v1/settings", json={"save_path": ""})

    def test_store_fal_key(self, api):
        response = api.put("/v1/settings", json={"fal_key": "abc"})

        assert response.json()["data"]["hasFalKey"] is True

        api.put("/v1/settings", json={"fal_key": ""})


class TestJobFeed:

    def test_snapshot_then_ping(self, api, scheduler):
        job = Job(id=new_job_id(), model_id="sample-i2v", prompt="done", status=JobStatus.SUCCESS)
        scheduler.load_history([job])

        with api.websocket_connect("/v1/ws") as ws:
            snapshot = ws.receive_json()
            assert snapshot["type"] == "JOB_SNAPSHOT"
            assert [j["id"] for j in snapshot["payload"]["jobs"]] == [job.id]

            ws.send_text("ping")
            assert ws.receive_json() == {"type": "PONG"}

    def test_job_updates_are_streamed(self, api, reference_files):
        with api.websocket_connect("/v1/ws") as ws:
            assert ws.receive_json()["type"] == "JOB_SNAPSHOT"

            job_id = api.post("/v1/jobs", json={
                "model_id": "sample-i2v",
                "prompt": "a fox",
                "start_file": str(reference_files[0]),
            }).json()["data"]["id"]

            update = ws.receive_json()
            assert update["type"] == "JOB_UPDATE"
            assert update["payload"]["id"] == job_id


class RecordingSocket:
    """Collects what the feed sends; optionally breaks on send."""

    def __init__(self, broken=False):
        self.broken = broken
        self.sent = []

    async def send_json(self, message):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(message)


class TestJobFeedDelivery:

    def test_messages_delivered_in_order_by_one_sender(self):
        feed = JobFeed()
        good, broken = RecordingSocket(), RecordingSocket(broken=True)
        feed.clients.extend([good, broken])

        async def run():
            for n in range(5):
                feed.enqueue({"n": n})
            sender = feed._sender
            await settle()
            alive = not sender.done()
            await feed.close()
            return alive, sender

        alive, sender = asyncio.run(run())

        assert [m["n"] for m in good.sent] == [0, 1, 2, 3, 4]
        assert feed.clients == [good]
        assert alive
        assert sender.cancelled()
