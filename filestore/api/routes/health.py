"""
Storage readiness routes.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from filestore.core.container import get_storage
from filestore.services.storage_manager import StorageManager

router = APIRouter()


# ============================================================
# SCHEMAS
# ============================================================

class ProviderHealthResponse(BaseModel):
    """Health of one storage provider."""
    provider: str
    status: str
    response_time_ms: float
    last_checked_at: Optional[str]
    error: Optional[str]


class StorageHealthResponse(BaseModel):
    """Storage readiness: healthy while any provider is usable."""
    status: str
    strategy: str
    providers: list[ProviderHealthResponse]


# ============================================================
# ENDPOINTS
# ============================================================

@router.get(
    "/storage",
    response_model=StorageHealthResponse,
    responses={503: {"model": StorageHealthResponse}},
)
async def storage_health(
    refresh: bool = False,
    storage: StorageManager = Depends(get_storage),
):
    """
    Report storage provider health.

    Returns 503 when no provider is healthy. ``refresh=true`` probes every
    provider before answering instead of reporting the last known state.
    """
    if refresh:
        await storage.check_health()

    body = StorageHealthResponse(**storage.describe())
    status_code = (
        status.HTTP_200_OK if storage.is_healthy else status.HTTP_503_SERVICE_UNAVAILABLE
    )
    return JSONResponse(content=body.model_dump(), status_code=status_code)
