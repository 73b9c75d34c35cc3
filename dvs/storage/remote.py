"""HTTP content store.

Speaks the object transfer protocol: ``HEAD``/``GET``/``PUT`` on
``{base_url}/objects/{algo}/{hex}``.
"""

from __future__ import annotations

from pathlib import Path

import httpx

from dvs.core.oid import Oid
from dvs.errors import ObjectNotFound, StorageError
from dvs.storage.local import atomic_write
from dvs.utils.logger import get_logger

logger = get_logger("dvs.storage.remote")

DEFAULT_TIMEOUT = 60.0


class RemoteStore:
    """Content store backed by an object server.

    Args:
        base_url: Server root, e.g. ``https://data.example.com/dvs``.
        token: Optional bearer token sent as ``Authorization``.
        client: Pre-built ``httpx.Client`` to use instead of creating one.
        timeout: Request timeout in seconds when the client is created here.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def __enter__(self) -> RemoteStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def describe(self) -> str:
        return f"remote:{self.base_url}"

    def object_url(self, oid: Oid) -> str:
        return f"{self.base_url}/objects/{oid.algo.value}/{oid.hex}"

    def _headers(self) -> dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def exists(self, oid: Oid) -> bool:
        url = self.object_url(oid)
        try:
            response = self._client.head(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise StorageError(f"HEAD {url} failed: {e}") from e
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise StorageError(f"HEAD {url} returned HTTP {response.status_code}")

    def fetch(self, oid: Oid, dest: Path) -> None:
        url = self.object_url(oid)
        try:
            with self._client.stream("GET", url, headers=self._headers()) as response:
                if response.status_code == 404:
                    raise ObjectNotFound(f"Object not found on remote: {oid}")
                if response.status_code != 200:
                    raise StorageError(
                        f"GET {url} returned HTTP {response.status_code}"
                    )

                def _write(fh) -> None:
                    for chunk in response.iter_bytes():
                        fh.write(chunk)

                if dest.exists():
                    dest.unlink()
                atomic_write(dest, _write)
        except httpx.HTTPError as e:
            raise StorageError(f"GET {url} failed: {e}") from e
        logger.debug("Downloaded object", oid=str(oid), dest=str(dest))

    def upload(self, oid: Oid, src: Path) -> None:
        url = self.object_url(oid)
        if not src.is_file():
            raise StorageError(f"Upload source does not exist: {src}")
        headers = self._headers()
        headers["Content-Type"] = "application/octet-stream"
        try:
            with open(src, "rb") as fh:
                response = self._client.put(url, content=fh, headers=headers)
        except httpx.HTTPError as e:
            raise StorageError(f"PUT {url} failed: {e}") from e
        if response.status_code not in (200, 201, 204):
            raise StorageError(
                f"PUT {url} returned HTTP {response.status_code}: {response.text[:200]}"
            )
        logger.debug("Uploaded object", oid=str(oid), status=response.status_code)
