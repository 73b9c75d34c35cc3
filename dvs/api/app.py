from __future__ import annotations

import time
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dvs import __version__
from dvs.api.routes.health import router as health_router
from dvs.api.routes.objects import router as objects_router
from dvs.errors import DvsError, ObjectNotFound
from dvs.storage import LocalStore
from dvs.utils.logger import api_logger, request_log


def create_app(
    storage_root: str | Path, max_upload_bytes: int | None = None
) -> FastAPI:
    """Build the object server over a filesystem store.

    Args:
        storage_root: Directory holding ``<algo>/<xx>/<rest>`` objects.
        max_upload_bytes: Reject uploads larger than this; unlimited when None.
    """
    root = Path(storage_root).expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)

    app = FastAPI(
        title="dvs object server",
        description="Content-addressed object transfer for dvs push/pull",
        version=__version__,
    )
    app.state.store = LocalStore(root)
    app.state.max_upload_bytes = max_upload_bytes

    app.include_router(health_router)
    app.include_router(objects_router)

    @app.exception_handler(DvsError)
    async def dvs_error_handler(request: Request, exc: DvsError):
        status_code = 404 if isinstance(exc, ObjectNotFound) else 500
        api_logger.error(
            "Request failed", path=request.url.path, kind=exc.kind, error=exc.message
        )
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        request_log(
            api_logger,
            request.method,
            request.url.path,
            response.status_code,
            round((time.perf_counter() - started) * 1000, 2),
        )
        return response

    api_logger.info("Object server ready", storage=str(root))
    return app
