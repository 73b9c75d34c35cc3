"""ASGI entrypoint for the object server.

Storage root and upload limit come from ``DVS_SERVER_STORAGE`` and
``DVS_SERVER_MAX_UPLOAD`` so uvicorn can import ``dvs.api.server:app``.
"""

import os

from dvs.api.app import create_app


def _max_upload() -> int | None:
    raw = os.getenv("DVS_SERVER_MAX_UPLOAD", "").strip()
    return int(raw) if raw else None


app = create_app(os.getenv("DVS_SERVER_STORAGE", "./dvs-objects"), _max_upload())
