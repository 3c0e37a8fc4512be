"""Pytest configuration and fixtures."""

import asyncio
import os
import sys
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Keep the library (database, assets) out of the user's home directory
os.environ.setdefault("FREEFLOW_LIBRARY_PATH", tempfile.mkdtemp(prefix="freeflow-test-"))

from freeflow_engine.adapters.catalog import spec_from_dict  # noqa: E402
from freeflow_engine.adapters.registry import ModelRegistry  # noqa: E402
from freeflow_engine.core.errors import ProviderError, UploadError  # noqa: E402
from freeflow_engine.core.jobs import JobScheduler  # noqa: E402
from freeflow_engine.services.history import AssetHistory, AssetPersistence  # noqa: E402
from freeflow_engine.services.prepare import PreparePipeline  # noqa: E402


SAMPLE_VIDEO_MODEL = {
    "id": "sample-i2v",
    "endpoint": "fal-ai/sample/image-to-video",
    "label": "Sample I2V",
    "supports": {"startFrame": True, "endFrame": True, "audio": False,
                 "resolution": True, "aspectRatio": False, "fps": False},
    "params": {
        "prompt": {"type": "string", "required": True},
        "image_url": {"type": "string", "required": True, "uiKey": "start_frame_url"},
        "tail_image_url": {"type": "string", "uiKey": "end_frame_url"},
        "resolution": {"type": "enum", "values": ["720p", "1080p"], "default": "1080p"},
        "duration": {"type": "enum", "values": ["5", "10"]},
        "cfg_scale": {"type": "number", "default": 0.5},
    },
    "output": {"videoPath": "video.url"},
}

NO_END_VIDEO_MODEL = {
    "id": "start-only-i2v",
    "endpoint": "fal-ai/sample/start-only",
    "supports": {"startFrame": True, "endFrame": False},
    "params": {
        "prompt": {"type": "string", "required": True},
        "image_url": {"type": "string", "required": True, "uiKey": "start_frame_url"},
        "tail_image_url": {"type": "string", "uiKey": "end_frame_url"},
    },
    "output": {"videoPath": "video.url"},
}


async def settle(rounds: int = 25) -> None:
    """Let pending tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeUploader:
    """Stands in for fal storage."""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.uploaded = []

    async def upload_file(self, file_path):
        name = Path(file_path).name
        if name in self.fail_on:
            raise UploadError("storage rejected the file")
        self.uploaded.append(name)
        return {"url": f"https://cdn.example/{name}"}


class FakeClient:
    """Stands in for the fal queue. Jobs can be held open per prompt."""

    has_credentials = True

    def __init__(self, fail_prompts=(), response=None):
        self.fail_prompts = list(fail_prompts)
        self.response = response
        self.calls = []
        self.gates = {}

    def hold(self, prompt: str) -> asyncio.Event:
        self.gates[prompt] = asyncio.Event()
        return self.gates[prompt]

    async def subscribe(self, endpoint, arguments, on_queue_update=None):
        self.calls.append((endpoint, arguments))
        prompt = arguments.get("prompt")
        if on_queue_update:
            on_queue_update({"status": "IN_QUEUE", "queue_position": 0})
        gate = self.gates.get(prompt)
        if gate is not None:
            await gate.wait()
        if on_queue_update:
            on_queue_update({"status": "IN_PROGRESS", "logs": []})
        if prompt in self.fail_prompts:
            self.fail_prompts.remove(prompt)
            raise ProviderError("provider exploded")
        if self.response is not None:
            return self.response
        return {"video": {"url": f"https://cdn.example/{prompt}.mp4"}}


class FakePersistence:
    """Pretends to download and store the artifact."""

    def __init__(self, fail=False):
        self.fail = fail
        self.persisted = []

    async def persist(self, job, media_kind=None):
        if self.fail:
            from freeflow_engine.core.errors import PersistenceError
            raise PersistenceError("disk full")
        key = f"{job.id}.mp4"
        self.persisted.append(key)
        return key, f"/v1/assets/{key}"


class OfflinePersistence(AssetPersistence):
    """Real persistence with the network download replaced."""

    async def download(self, url):
        return b"fake-mp4-bytes", "video/mp4"


class MemorySlot:
    """In-memory stand-in for KeyValueSlot."""

    def __init__(self, values=None):
        self.values = dict(values or {})

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value):
        self.values[key] = value

    async def delete(self, key):
        self.values.pop(key, None)


@pytest.fixture
def sample_spec():
    return spec_from_dict(SAMPLE_VIDEO_MODEL)


@pytest.fixture
def no_end_spec():
    return spec_from_dict(NO_END_VIDEO_MODEL)


@pytest.fixture
def registry(sample_spec, no_end_spec):
    return ModelRegistry([sample_spec, no_end_spec])


@pytest.fixture
def reference_files(tmp_path):
    start = tmp_path / "start.png"
    end = tmp_path / "end.png"
    start.write_bytes(b"\x89PNG start")
    end.write_bytes(b"\x89PNG end")
    return start, end


@pytest.fixture
def make_scheduler(registry):
    """Build a scheduler wired to fakes; returns (scheduler, client, uploader, persistence, slot)."""

    def factory(max_concurrent=2, client=None, uploader=None, persistence=None, slot=None):
        client = client or FakeClient()
        uploader = uploader or FakeUploader()
        persistence = persistence or FakePersistence()
        slot = slot if slot is not None else MemorySlot()
        scheduler = JobScheduler(
            registry=registry,
            client=client,
            preparer=PreparePipeline(uploader),
            persistence=persistence,
            history=AssetHistory(slot),
            max_concurrent=max_concurrent,
        )
        return scheduler, client, uploader, persistence, slot

    return factory


async def open_database(path):
    """Fresh SQLite database with all tables; returns (engine, session_maker)."""
    from freeflow_engine.core.database import create_database_engine, create_session_maker, init_db

    engine = create_database_engine(path)
    await init_db(engine)
    return engine, create_session_maker(engine)


@asynccontextmanager
async def local_server(routes):
    """Serve aiohttp `routes` on a loopback port; yields the base URL."""
    app = web.Application()
    app.add_routes(routes)
    server = TestServer(app)
    await server.start_server()
    try:
        yield f"http://{server.host}:{server.port}"
    finally:
        await server.close()
