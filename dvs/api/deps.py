from __future__ import annotations

from fastapi import Request

from dvs.storage import LocalStore


def get_store(request: Request) -> LocalStore:
    return request.app.state.store


def get_max_upload(request: Request) -> int | None:
    return request.app.state.max_upload_bytes
