"""Job scheduler: lifecycle, bounded concurrency, and execution of generation jobs."""

import asyncio
import dataclasses
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Protocol, Sequence, Set, Union

from freeflow_engine.adapters.registry import ModelRegistry
from freeflow_engine.adapters.spec import TUNING_FIELDS, ModelSpec, UnifiedPayload
from freeflow_engine.core.config import settings
from freeflow_engine.core.errors import InvalidTransition, ValidationError
from freeflow_engine.services.fal import describe_event
from freeflow_engine.services.history import (
    AssetHistory,
    AssetPersistence,
    StoredAssetRecord,
    from_epoch_ms,
)
from freeflow_engine.services.prepare import FileRef, PreparePipeline

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Job status enumeration."""
    UPLOADING = "uploading"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


ALLOWED_TRANSITIONS: Dict[JobStatus, Set[JobStatus]] = {
    JobStatus.UPLOADING: {JobStatus.QUEUED, JobStatus.ERROR},
    JobStatus.QUEUED: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.SUCCESS, JobStatus.ERROR},
    JobStatus.SUCCESS: set(),
    JobStatus.ERROR: {JobStatus.QUEUED},
}


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Job:
    """One generation request. Instances are replaced, never mutated."""
    id: str
    model_id: str
    prompt: str
    status: JobStatus = JobStatus.UPLOADING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0
    payload: Optional[UnifiedPayload] = None
    result_url: Optional[str] = None
    local_key: Optional[str] = None
    local_url: Optional[str] = None
    error: Optional[str] = None
    events: tuple = ()
    storage_path: str = "downloads"
    preview: Optional[str] = None
    raw: Any = field(default=None, repr=False, compare=False)
    saving: bool = False
    saved: bool = False
    save_error: Optional[str] = None

    @property
    def asset_url(self) -> Optional[str]:
        return self.local_url or self.result_url

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "modelId": self.model_id,
            "prompt": self.prompt,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "attempts": self.attempts,
            "resultUrl": self.result_url,
            "localKey": self.local_key,
            "localUrl": self.local_url,
            "assetUrl": self.asset_url,
            "error": self.error,
            "events": list(self.events),
            "storagePath": self.storage_path,
            "preview": self.preview,
            "saving": self.saving,
            "saved": self.saved,
            "saveError": self.save_error,
            "retryable": self.status is JobStatus.ERROR and self.payload is not None,
        }

    @classmethod
    def from_record(cls, record: StoredAssetRecord) -> "Job":
        """Rebuild a finished job from its history entry."""
        return cls(
            id=record.id,
            model_id=record.model_id,
            prompt=record.prompt,
            status=JobStatus.SUCCESS,
            created_at=from_epoch_ms(record.created_at),
            attempts=1,
            result_url=record.local_url,
            local_key=record.local_key,
            local_url=record.local_url,
            events=tuple(record.events),
            storage_path=record.storage_path,
            preview=record.preview,
            saved=True,
        )


class ExecutionClient(Protocol):
    """Remote job execution surface."""

    def subscribe(
        self,
        endpoint: str,
        arguments: Dict[str, Any],
        on_queue_update: Optional[Callable[[Any], None]] = None,
    ) -> Awaitable[Any]: ...


JobListener = Callable[[Job], None]
JobPatch = Union[Dict[str, Any], Callable[[Job], Dict[str, Any]]]


class JobScheduler:
    """Owns the job collection and runs at most `max_concurrent` jobs at once.

    Every mutation goes through `_update`, a synchronous read-modify-write with no
    await inside, so it is atomic on the event loop. Queued jobs are started in
    FIFO order of entering the queue (submission or retry).
    """

    _instance: Optional["JobScheduler"] = None

    def __init__(
        self,
        registry: ModelRegistry,
        client: ExecutionClient,
        preparer: PreparePipeline,
        persistence: Optional[AssetPersistence] = None,
        history: Optional[AssetHistory] = None,
        max_concurrent: Optional[int] = None,
    ):
        self.registry = registry
        self.client = client
        self.preparer = preparer
        self.persistence = persistence
        self.history = history
        self.max_concurrent = max_concurrent or settings.MAX_CONCURRENT_JOBS

        self._jobs: Dict[str, Job] = {}
        self._ready: Deque[str] = deque()
        self._running: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[JobListener] = []

    @classmethod
    def get_instance(cls) -> "JobScheduler":
        """Get singleton instance wired to the configured collaborators."""
        if cls._instance is None:
            from freeflow_engine.adapters.catalog import build_registry
            from freeflow_engine.services.fal import FalClient
            from freeflow_engine.services.kv_slot import KeyValueSlot
            from freeflow_engine.services.storage import create_asset_store

            client = FalClient()
            cls._instance = cls(
                registry=build_registry(settings.CATALOG_PATH),
                client=client,
                preparer=PreparePipeline(client),
                persistence=AssetPersistence(create_asset_store()),
                history=AssetHistory(KeyValueSlot()),
            )
        return cls._instance

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def list_jobs(self) -> List[Job]:
        """All jobs, newest first."""
        return sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)

    @property
    def running_count(self) -> int:
        return len(self._running)

    def stats(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status.value] += 1
        return counts

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _update(self, job_id: str, patch: JobPatch) -> Optional[Job]:
        """Replace a job with a patched copy and notify listeners."""
        current = self._jobs.get(job_id)
        if current is None:
            return None
        changes = patch(current) if callable(patch) else patch
        new_status = changes.get("status")
        if new_status is not None and new_status is not current.status:
            if new_status not in ALLOWED_TRANSITIONS[current.status]:
                raise InvalidTransition(
                    f"Job {job_id}: {current.status.value} -> {new_status.value}"
                )
        updated = dataclasses.replace(current, **changes)
        self._jobs[job_id] = updated
        self._notify_listeners(updated)
        return updated

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def submit(
        self,
        model_id: str,
        prompt: str,
        tuning: Optional[Dict[str, Any]] = None,
        reference_files: Sequence[Optional[FileRef]] = (),
        storage_path: Optional[str] = None,
        preview: Optional[str] = None,
    ) -> str:
        """Create a job in `uploading` and start preparing it in the background.

        Validation happens up front and raises ValidationError before any job
        exists. Must be called from a running event loop.
        """
        spec = self.registry.require(model_id)
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValidationError("Please describe your prompt.", field="prompt")

        files = list(reference_files) + [None, None]
        start_file, end_file = files[0], files[1]

        start_param = spec.find_param("start_frame_url")
        if start_param and start_param[1].required and start_file is None:
            raise ValidationError("Start frame is required.", field="start_frame_url")
        end_param = spec.find_param("end_frame_url")
        if (
            spec.supports.end_frame.enabled
            and end_param
            and end_param[1].required
            and end_file is None
        ):
            raise ValidationError("This model requires an end frame.", field="end_frame_url")

        unknown = set(tuning or {}) - TUNING_FIELDS
        if unknown:
            raise ValidationError(f"Unknown tuning fields: {', '.join(sorted(unknown))}", field=sorted(unknown)[0])
        tuning = {k: v for k, v in (tuning or {}).items() if v is not None}
        if not spec.supports.audio.enabled:
            tuning.pop("generate_audio", None)
        base_payload = UnifiedPayload(model_id=spec.id, prompt=prompt, **tuning)

        job = Job(
            id=new_job_id(),
            model_id=spec.id,
            prompt=prompt,
            storage_path=(storage_path or "").strip() or settings.DEFAULT_SAVE_PATH,
            preview=preview,
        )
        self._jobs[job.id] = job
        self._notify_listeners(job)
        logger.info("Submitted job %s for %s", job.id, spec.id)

        self._spawn(self._prepare(job.id, spec, base_payload, start_file, end_file))
        return job.id

    async def _prepare(
        self,
        job_id: str,
        spec: ModelSpec,
        base_payload: UnifiedPayload,
        start_file: Optional[FileRef],
        end_file: Optional[FileRef],
    ) -> None:
        try:
            payload = await self.preparer.prepare(spec, base_payload, start_file, end_file)
        except Exception as e:
            logger.warning("Preparation of job %s failed: %s", job_id, e)
            self._update(job_id, {"status": JobStatus.ERROR, "error": str(e) or "Upload failed."})
            return
        self.enqueue(job_id, payload)

    def enqueue(self, job_id: str, payload: UnifiedPayload) -> None:
        """Attach the prepared payload and move `uploading -> queued`."""
        job = self._jobs.get(job_id)
        if job is None or job.status is not JobStatus.UPLOADING:
            return
        self._update(job_id, {"status": JobStatus.QUEUED, "payload": payload})
        self._ready.append(job_id)
        self.tick()

    def retry(self, job_id: str) -> bool:
        """Requeue a failed job that has a payload. Attempts are kept."""
        job = self._jobs.get(job_id)
        if job is None or job.status is not JobStatus.ERROR or job.payload is None:
            return False
        self._update(job_id, {"status": JobStatus.QUEUED, "error": None})
        self._ready.append(job_id)
        logger.info("Retrying job %s (attempt %d so far)", job_id, job.attempts)
        self.tick()
        return True

    def tick(self) -> None:
        """Start queued jobs while below the concurrency bound."""
        while len(self._running) < self.max_concurrent and self._ready:
            job_id = self._ready.popleft()
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.QUEUED or job_id in self._running:
                continue
            self._start(job)

    def _start(self, job: Job) -> None:
        self._running.add(job.id)
        self._update(job.id, lambda j: {"status": JobStatus.RUNNING, "attempts": j.attempts + 1})
        self._spawn(self._execute(job.id))

    def _append_event(self, job_id: str, event: Any) -> None:
        message = describe_event(event)
        if not message:
            return
        limit = settings.EVENT_LOG_LIMIT
        self._update(job_id, lambda j: {"events": (j.events + (message,))[-limit:]})

    async def _execute(self, job_id: str) -> None:
        job = self._jobs[job_id]
        spec: Optional[ModelSpec] = None
        try:
            spec = self.registry.require(job.model_id)
            arguments = self.registry.build_request(job.model_id, job.payload)
            logger.info("Running job %s on %s (attempt %d)", job_id, spec.endpoint, job.attempts)

            response = await self.client.subscribe(
                spec.endpoint,
                arguments,
                on_queue_update=lambda event: self._append_event(job_id, event),
            )
            url = self.registry.extract_result(job.model_id, response)

            self._update(job_id, {
                "status": JobStatus.SUCCESS,
                "result_url": url,
                "raw": response,
                "saving": self.persistence is not None,
                "saved": False,
                "save_error": None,
            })
            logger.info("Job %s completed", job_id)
        except Exception as e:
            logger.exception("Job %s failed: %s", job_id, e)
            self._update(job_id, {"status": JobStatus.ERROR, "error": str(e) or "Generation failed."})
        finally:
            self._running.discard(job_id)

        if self._jobs[job_id].status is JobStatus.SUCCESS and self.persistence is not None:
            self._spawn(self._persist(job_id, spec))
        self.tick()

    async def _persist(self, job_id: str, spec: ModelSpec) -> None:
        """Store the artifact durably; failures only mark the job's save state."""
        job = self._jobs.get(job_id)
        if job is None:
            return
        try:
            key, url = await self.persistence.persist(job, spec.media_kind)
        except Exception as e:
            logger.warning("Could not persist job %s: %s", job_id, e)
            self._update(job_id, {
                "saving": False,
                "saved": False,
                "save_error": str(e) or "Unable to persist asset locally.",
            })
            return

        self._update(job_id, {
            "saving": False,
            "saved": True,
            "local_key": key,
            "local_url": url,
            "save_error": None,
        })
        await self.write_history()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def write_history(self) -> None:
        if self.history is None:
            return
        try:
            count = await self.history.write_index(self._jobs.values())
            logger.debug("History index holds %d entries", count)
        except Exception as e:
            logger.warning("Failed to write history index: %s", e)

    async def rehydrate(self) -> int:
        """Load persisted history into the job collection. Returns jobs added."""
        if self.history is None:
            return 0
        jobs = []
        for record in await self.history.rehydrate():
            try:
                jobs.append(Job.from_record(record))
            except (ValueError, OverflowError, OSError) as e:
                logger.debug("Skipping history record %s: %s", record.id, e)
        self.load_history(jobs)
        return len(jobs)

    def load_history(self, jobs: Iterable[Job]) -> None:
        for job in jobs:
            if job.id in self._jobs:
                continue
            self._jobs[job.id] = job
            self._notify_listeners(job)

    async def clear_history(self) -> int:
        """Forget finished jobs and empty the durable index. Returns jobs removed."""
        finished = [job_id for job_id, job in self._jobs.items() if job.status is JobStatus.SUCCESS]
        for job_id in finished:
            del self._jobs[job_id]
        if self.history is not None:
            await self.history.clear()
        logger.info("Cleared %d finished jobs from history", len(finished))
        return len(finished)

    async def drain(self) -> None:
        """Wait for outstanding preparation, execution and persistence tasks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel background tasks on shutdown."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
        logger.info("Job scheduler stopped")

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def register_global_listener(self, callback: JobListener) -> None:
        """Register a listener for ALL job updates."""
        self._listeners.append(callback)

    def _notify_listeners(self, job: Job) -> None:
        for callback in self._listeners:
            try:
                callback(job)
            except Exception as e:
                logger.exception("Listener error: %s", e)
