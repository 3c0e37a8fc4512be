"""Job endpoints."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from freeflow_engine.core.errors import ValidationError
from freeflow_engine.core.jobs import JobScheduler
from freeflow_engine.services.kv_slot import KeyValueSlot, Preferences

router = APIRouter()


class SubmitJobRequest(BaseModel):
    model_id: str
    prompt: str
    tuning: Dict[str, Any] = {}
    start_file: Optional[str] = None
    end_file: Optional[str] = None
    storage_path: Optional[str] = None
    preview: Optional[str] = None


@router.get("")
async def list_jobs() -> dict:
    """List jobs, newest first."""
    scheduler = JobScheduler.get_instance()
    return {
        "success": True,
        "data": [j.to_dict() for j in scheduler.list_jobs()],
        "stats": scheduler.stats(),
    }


@router.post("")
async def submit_job(request: SubmitJobRequest) -> dict:
    """Submit a generation job. Returns immediately with the job id."""
    scheduler = JobScheduler.get_instance()

    if not getattr(scheduler.client, "has_credentials", True):
        raise HTTPException(status_code=422, detail="Please provide your FAL API key.")

    storage_path = request.storage_path
    if not storage_path:
        storage_path = await Preferences(KeyValueSlot()).get_save_path()

    try:
        job_id = scheduler.submit(
            request.model_id,
            request.prompt,
            tuning=request.tuning,
            reference_files=[request.start_file, request.end_file],
            storage_path=storage_path,
            preview=request.preview,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"success": True, "data": scheduler.get_job(job_id).to_dict()}


@router.delete("/history")
async def clear_history() -> dict:
    """Forget finished jobs and the persisted history index."""
    scheduler = JobScheduler.get_instance()
    removed = await scheduler.clear_history()
    return {"success": True, "data": {"removed": removed}}


@router.get("/{job_id}")
async def get_job(job_id: str) -> dict:
    """Get job status and event tail."""
    job = JobScheduler.get_instance().get_job(job_id)

    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    return {"success": True, "data": job.to_dict()}


@router.post("/{job_id}/retry")
async def retry_job(job_id: str) -> dict:
    """Requeue a failed job."""
    scheduler = JobScheduler.get_instance()
    if scheduler.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")

    if not scheduler.retry(job_id):
        raise HTTPException(status_code=400, detail="Job cannot be retried")

    return {"success": True, "data": scheduler.get_job(job_id).to_dict()}
