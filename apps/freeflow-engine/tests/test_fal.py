"""Tests for fal response helpers and reference preparation."""

import asyncio

import pytest

from aiohttp import web

from conftest import FakeUploader, local_server
from freeflow_engine.core.errors import ProviderError, UploadError
from freeflow_engine.services.fal import FalClient, describe_event, extract_upload_url
from freeflow_engine.services.prepare import PreparePipeline
from freeflow_engine.adapters.spec import UnifiedPayload


class TestExtractUploadUrl:

    @pytest.mark.parametrize("result", [
        "https://cdn/a.png",
        {"url": "https://cdn/a.png"},
        {"file_url": "https://cdn/a.png"},
        {"signedUrl": "https://cdn/a.png"},
        {"data": {"signed_url": "https://cdn/a.png"}},
    ])
    def test_known_shapes(self, result):
        assert extract_upload_url(result) == "https://cdn/a.png"

    @pytest.mark.parametrize("result", [None, {}, {"data": "x"}, {"url": ""}, 42])
    def test_unusable_shapes(self, result):
        assert extract_upload_url(result) is None


class TestDescribeEvent:

    def test_status_preferred(self):
        assert describe_event({"status": "IN_PROGRESS", "message": "ignored"}) == "IN_PROGRESS"

    def test_message_fallback(self):
        assert describe_event({"message": "warming up"}) == "warming up"

    def test_json_fallback(self):
        assert describe_event({"queue_position": 3}) == '{"queue_position": 3}'

    def test_empty_is_skipped(self):
        assert describe_event(None) is None


class TestFalClient:

    def test_credentials_toggle(self):
        client = FalClient(credentials="")
        assert not client.has_credentials

        client.configure("  key-123 ")

        assert client.has_credentials
        assert client._headers() == {"Authorization": "Key key-123"}

    def test_missing_file_is_upload_error(self, tmp_path):
        client = FalClient(credentials="key")

        with pytest.raises(UploadError):
            asyncio.run(client.upload_file(tmp_path / "missing.png"))


ENDPOINT = "fal-ai/sample/image-to-video"


def queue_routes(statuses, submitted=None, submit_status=200):
    """Queue API that walks through `statuses` on successive polls."""
    seen = {"arguments": None, "polls": [], "auth": None}
    pending = list(statuses)

    async def submit(request):
        seen["auth"] = request.headers.get("Authorization")
        seen["arguments"] = await request.json()
        if submit_status >= 400:
            return web.json_response({"detail": "bad arguments"}, status=submit_status)
        if submitted is not None:
            return web.json_response(submitted)
        origin = str(request.url.origin())
        return web.json_response({
            "request_id": "req-1",
            "status_url": f"{origin}/custom/status",
            "response_url": f"{origin}/custom/result",
        })

    async def status(request):
        seen["polls"].append(dict(request.query))
        return web.json_response(pending.pop(0))

    async def result(request):
        return web.json_response({"video": {"url": "https://cdn.example/out.mp4"}})

    routes = [
        web.post(f"/{ENDPOINT}", submit),
        web.get("/custom/status", status),
        web.get("/custom/result", result),
        web.get(f"/{ENDPOINT}/requests/req-9/status", status),
        web.get(f"/{ENDPOINT}/requests/req-9", result),
    ]
    return routes, seen


class TestFalClientQueue:
    """subscribe() against a local queue server."""

    def run_subscribe(self, routes, updates=None):
        async def run():
            async with local_server(routes) as base:
                client = FalClient(credentials="key-1", queue_url=base, poll_interval=0)
                callback = updates.append if updates is not None else None
                return await client.subscribe(ENDPOINT, {"prompt": "a fox"}, on_queue_update=callback)

        return asyncio.run(run())

    def test_polls_until_completed(self):
        routes, seen = queue_routes([
            {"status": "IN_QUEUE", "queue_position": 2},
            {"status": "IN_PROGRESS", "logs": [{"message": "rendering"}]},
            {"status": "COMPLETED"},
        ])
        updates = []

        result = self.run_subscribe(routes, updates)

        assert result == {"video": {"url": "https://cdn.example/out.mp4"}}
        assert [u["status"] for u in updates] == ["IN_QUEUE", "IN_PROGRESS", "COMPLETED"]
        assert seen["arguments"] == {"prompt": "a fox"}
        assert seen["auth"] == "Key key-1"
        assert all(p == {"logs": "1"} for p in seen["polls"])

    def test_builds_urls_when_submission_omits_them(self):
        routes, seen = queue_routes([{"status": "COMPLETED"}], submitted={"request_id": "req-9"})

        result = self.run_subscribe(routes)

        assert result["video"]["url"] == "https://cdn.example/out.mp4"
        assert len(seen["polls"]) == 1

    def test_terminal_failure_raises(self):
        routes, _ = queue_routes([
            {"status": "IN_PROGRESS"},
            {"status": "FAILED", "error": "content policy"},
        ])

        with pytest.raises(ProviderError, match="content policy"):
            self.run_subscribe(routes)

    def test_cancelled_without_detail_names_request(self):
        routes, _ = queue_routes([{"status": "CANCELLED"}])

        with pytest.raises(ProviderError, match="req-1 cancelled"):
            self.run_subscribe(routes)

    def test_rejected_submission_carries_status(self):
        routes, _ = queue_routes([], submit_status=422)

        with pytest.raises(ProviderError, match="bad arguments") as excinfo:
            self.run_subscribe(routes)

        assert excinfo.value.status == 422


class TestFalClientUpload:
    """upload_file() against a local storage server."""

    def test_initiate_then_put(self, reference_files):
        seen = {}

        async def initiate(request):
            seen["query"] = dict(request.query)
            seen["body"] = await request.json()
            origin = str(request.url.origin())
            return web.json_response({
                "upload_url": f"{origin}/put/start.png",
                "file_url": "https://cdn.example/start.png",
            })

        async def put(request):
            seen["data"] = await request.read()
            seen["content_type"] = request.headers.get("Content-Type")
            return web.Response(status=200)

        async def run():
            routes = [web.post("/storage/upload/initiate", initiate), web.put("/put/start.png", put)]
            async with local_server(routes) as base:
                client = FalClient(credentials="key-1", storage_url=base)
                return await client.upload_file(reference_files[0])

        result = asyncio.run(run())

        assert extract_upload_url(result) == "https://cdn.example/start.png"
        assert seen["query"] == {"storage_type": "fal-cdn-v3"}
        assert seen["body"] == {"file_name": "start.png", "content_type": "image/png"}
        assert seen["data"] == b"\x89PNG start"
        assert seen["content_type"] == "image/png"

    def test_missing_upload_url_is_upload_error(self, reference_files):
        async def initiate(request):
            return web.json_response({"file_url": "https://cdn.example/start.png"})

        async def run():
            async with local_server([web.post("/storage/upload/initiate", initiate)]) as base:
                await FalClient(credentials="key-1", storage_url=base).upload_file(reference_files[0])

        with pytest.raises(UploadError, match="no upload URL"):
            asyncio.run(run())


class TestPreparePipeline:

    def test_start_failure_names_the_frame(self, sample_spec, reference_files):
        pipeline = PreparePipeline(FakeUploader(fail_on={"start.png"}))
        base = UnifiedPayload(model_id="sample-i2v", prompt="a fox")

        with pytest.raises(UploadError, match="start frame"):
            asyncio.run(pipeline.prepare(sample_spec, base, reference_files[0]))

    def test_end_failure_names_the_frame(self, sample_spec, reference_files):
        pipeline = PreparePipeline(FakeUploader(fail_on={"end.png"}))
        base = UnifiedPayload(model_id="sample-i2v", prompt="a fox")

        with pytest.raises(UploadError, match="end frame"):
            asyncio.run(pipeline.prepare(sample_spec, base, *reference_files))

    def test_urls_fill_payload_copy(self, sample_spec, reference_files):
        pipeline = PreparePipeline(FakeUploader())
        base = UnifiedPayload(model_id="sample-i2v", prompt="a fox")

        prepared = asyncio.run(pipeline.prepare(sample_spec, base, *reference_files))

        assert prepared.start_frame_url == "https://cdn.example/start.png"
        assert prepared.end_frame_url == "https://cdn.example/end.png"
        assert base.start_frame_url == ""
