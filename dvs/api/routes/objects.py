"""Object transfer routes: ``HEAD|GET|PUT|DELETE /objects/{algo}/{hex}``.

Objects are immutable and addressed by their content hash, so ``PUT`` is
idempotent: re-uploading an existing object answers 200 without touching
the stored copy. Every upload is hashed while it streams in and rejected
if the digest does not match the address.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import FileResponse, JSONResponse

from dvs.api.deps import get_max_upload, get_store
from dvs.api.schemas import ObjectStored
from dvs.core.hashing import new_hasher
from dvs.core.oid import Oid
from dvs.errors import DvsError, StorageError
from dvs.storage import LocalStore
from dvs.storage.local import temp_path_for
from dvs.utils.logger import api_logger

router = APIRouter(prefix="/objects")


def _parse_oid(algo: str, hex: str) -> Oid:
    try:
        return Oid.from_parts(algo, hex)
    except DvsError as e:
        raise HTTPException(status_code=400, detail=e.message) from e


def _too_large(limit: int) -> HTTPException:
    return HTTPException(
        status_code=413, detail=f"Object exceeds the upload limit of {limit} bytes"
    )


@router.head("/{algo}/{hex}")
async def head_object(
    algo: str, hex: str, store: LocalStore = Depends(get_store)  # noqa: B008
):
    oid = _parse_oid(algo, hex)
    if not store.exists(oid):
        return Response(status_code=404)
    return Response(
        status_code=200,
        headers={"Content-Length": str(store.size(oid))},
    )


@router.get("/{algo}/{hex}")
async def get_object(
    algo: str, hex: str, store: LocalStore = Depends(get_store)  # noqa: B008
):
    oid = _parse_oid(algo, hex)
    if not store.exists(oid):
        raise HTTPException(status_code=404, detail=f"Object not found: {oid}")
    return FileResponse(
        store.object_path(oid), media_type="application/octet-stream"
    )


@router.put("/{algo}/{hex}", response_model=ObjectStored)
async def put_object(
    algo: str,
    hex: str,
    request: Request,
    store: LocalStore = Depends(get_store),  # noqa: B008
    max_upload: int | None = Depends(get_max_upload),  # noqa: B008
):
    """Store an object after checking its bytes hash to the address."""
    oid = _parse_oid(algo, hex)

    declared = request.headers.get("content-length")
    if max_upload is not None and declared and declared.isdigit():
        if int(declared) > max_upload:
            raise _too_large(max_upload)

    if store.exists(oid):
        return JSONResponse(
            status_code=200,
            content=ObjectStored(
                oid=str(oid), size=store.size(oid), created=False
            ).model_dump(),
        )

    dest = store.object_path(oid)
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = temp_path_for(dest)
    hasher = new_hasher(oid.algo)
    size = 0
    try:
        with open(tmp, "wb") as fh:
            async for chunk in request.stream():
                size += len(chunk)
                if max_upload is not None and size > max_upload:
                    raise _too_large(max_upload)
                hasher.update(chunk)
                fh.write(chunk)
    except HTTPException:
        tmp.unlink(missing_ok=True)
        raise
    except OSError as e:
        tmp.unlink(missing_ok=True)
        api_logger.error("Failed to write upload", oid=str(oid), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to store object") from e

    actual = hasher.hexdigest()
    if actual != oid.hex:
        tmp.unlink(missing_ok=True)
        api_logger.warning(
            "Rejected upload with mismatched content", oid=str(oid), actual=actual
        )
        raise HTTPException(
            status_code=400,
            detail=f"Content hash {oid.algo.value}:{actual} does not match {oid}",
        )

    try:
        created = store.adopt(oid, tmp)
    except StorageError as e:
        api_logger.error("Failed to commit upload", oid=str(oid), error=e.message)
        raise HTTPException(status_code=500, detail=e.message) from e

    api_logger.info("Stored object", oid=str(oid), size=size, created=created)
    return JSONResponse(
        status_code=201 if created else 200,
        content=ObjectStored(oid=str(oid), size=size, created=created).model_dump(),
    )


@router.delete("/{algo}/{hex}", status_code=204)
async def delete_object(
    algo: str, hex: str, store: LocalStore = Depends(get_store)  # noqa: B008
):
    oid = _parse_oid(algo, hex)
    if not store.delete(oid):
        raise HTTPException(status_code=404, detail=f"Object not found: {oid}")
    api_logger.info("Deleted object", oid=str(oid))
    return Response(status_code=204)
