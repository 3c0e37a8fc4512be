"""Model catalog endpoints."""

from fastapi import APIRouter, HTTPException

from freeflow_engine.core.jobs import JobScheduler

router = APIRouter()


@router.get("")
async def list_models() -> dict:
    """List the models jobs can be submitted to."""
    registry = JobScheduler.get_instance().registry
    return {
        "success": True,
        "data": [spec.to_dict() for spec in registry.list_models()],
        "defaultModelId": registry.default_model_id,
    }


@router.get("/{model_id}")
async def get_model(model_id: str) -> dict:
    """Get one model's capabilities and parameters."""
    spec = JobScheduler.get_instance().registry.get(model_id)
    if spec is None:
        raise HTTPException(status_code=404, detail="Model not found")
    return {"success": True, "data": spec.to_dict()}
