from __future__ import annotations

import os

from fastapi import APIRouter, Depends

from dvs import __version__
from dvs.api.deps import get_store
from dvs.api.schemas import HealthResponse
from dvs.storage import LocalStore

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(store: LocalStore = Depends(get_store)):  # noqa: B008
    """Liveness check with the served storage root."""
    return HealthResponse(
        version=__version__,
        storage=str(store.root),
        pid=os.getpid(),
    )
