"""Object server response schemas."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "dvs-object-server"
    version: str
    storage: str
    pid: int | None = None


class ObjectStored(BaseModel):
    oid: str
    size: int
    created: bool
