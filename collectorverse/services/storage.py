"""
Object storage for card images.

Paths are deterministic so that re-uploading after a partial failure
overwrites rather than duplicates:

    {series_code}/{language}/{padded_number}.webp
    series/{series_code}.webp
"""

import logging
import shutil
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from collectorverse.config import settings
from collectorverse.models.failure import StorageFailure
from collectorverse.parsers.card_numbers import build_storage_number

logger = logging.getLogger(__name__)

WEBP = "image/webp"


def card_object_path(series_code: str, language: str, number: str, ext: str = "webp") -> str:
    """
    Storage path for a card image.

    `number` is the catalog number, variant suffix included ("4-ALT").
    Zero-padding and slash replacement happen here only.
    """
    return f"{series_code}/{language.lower()}/{build_storage_number(number)}.{ext}"


def banner_object_path(series_code: str, ext: str = "webp") -> str:
    return f"series/{series_code}.{ext}"


class ObjectStorage(Protocol):
    """Bucket/path object store."""

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = WEBP,
        upsert: bool = True,
    ) -> None: ...

    async def copy(self, bucket: str, source_path: str, target_path: str) -> None: ...

    async def exists(self, bucket: str, path: str) -> bool: ...

    async def remove(self, bucket: str, paths: list[str]) -> None: ...

    def public_url(self, bucket: str, path: str) -> str: ...


class SupabaseStorage:
    """
    Supabase Storage over its REST API.

    Uses the service key, so it bypasses bucket policies.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str | None = None,
        service_key: str | None = None,
    ):
        self.client = client
        self.base_url = (base_url or settings.supabase_url).rstrip("/")
        self.service_key = service_key or settings.supabase_service_key
        if not self.base_url or not self.service_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

    @property
    def _api(self) -> str:
        return f"{self.base_url}/storage/v1"

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
        }
        headers.update(extra)
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        action: str,
        *,
        headers: dict[str, str],
        content: bytes | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            response = await self.client.request(
                method, url, headers=headers, content=content, json=json
            )
        except httpx.HTTPError as e:
            raise StorageFailure(f"{action} failed", detail=str(e), key=url) from e
        if response.is_error:
            raise StorageFailure(
                f"{action} failed with HTTP {response.status_code}",
                detail=response.text[:200],
                key=url,
            )
        return response

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = WEBP,
        upsert: bool = True,
    ) -> None:
        url = f"{self._api}/object/{bucket}/{quote(path)}"
        headers = self._headers(**{"Content-Type": content_type, "x-upsert": str(upsert).lower()})
        await self._send("POST", url, f"Upload of {path}", content=data, headers=headers)
        logger.debug("Uploaded %s/%s (%d bytes)", bucket, path, len(data))

    async def copy(self, bucket: str, source_path: str, target_path: str) -> None:
        payload = {"bucketId": bucket, "sourceKey": source_path, "destinationKey": target_path}
        await self._send(
            "POST",
            f"{self._api}/object/copy",
            f"Copy {source_path} -> {target_path}",
            json=payload,
            headers=self._headers(**{"x-upsert": "true"}),
        )

    async def exists(self, bucket: str, path: str) -> bool:
        url = f"{self._api}/object/{bucket}/{quote(path)}"
        try:
            response = await self.client.head(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise StorageFailure(f"Lookup of {path} failed", detail=str(e), key=url) from e
        if response.status_code in (400, 404):
            return False
        if response.is_error:
            raise StorageFailure(f"Lookup of {path} failed with HTTP {response.status_code}")
        return True

    async def remove(self, bucket: str, paths: list[str]) -> None:
        if not paths:
            return
        await self._send(
            "DELETE",
            f"{self._api}/object/{bucket}",
            f"Removal of {len(paths)} objects",
            json={"prefixes": paths},
            headers=self._headers(),
        )

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self._api}/object/public/{bucket}/{quote(path)}"


class LocalStorage:
    """Filesystem storage, `{root}/{bucket}/{path}`. For local runs and tests."""

    def __init__(self, root: Path, public_base: str | None = None):
        self.root = Path(root)
        self.public_base = (public_base or self.root.resolve().as_uri()).rstrip("/")

    def _file(self, bucket: str, path: str) -> Path:
        return self.root / bucket / path

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = WEBP,
        upsert: bool = True,
    ) -> None:
        target = self._file(bucket, path)
        if target.exists() and not upsert:
            raise StorageFailure(f"Object already exists: {bucket}/{path}", key=path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageFailure(f"Upload of {path} failed", detail=str(e), key=path) from e

    async def copy(self, bucket: str, source_path: str, target_path: str) -> None:
        source = self._file(bucket, source_path)
        if not source.exists():
            raise StorageFailure(f"Copy source missing: {bucket}/{source_path}", key=source_path)
        target = self._file(bucket, target_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as e:
            raise StorageFailure(f"Copy to {target_path} failed", detail=str(e)) from e

    async def exists(self, bucket: str, path: str) -> bool:
        return self._file(bucket, path).is_file()

    async def remove(self, bucket: str, paths: list[str]) -> None:
        for path in paths:
            self._file(bucket, path).unlink(missing_ok=True)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base}/{bucket}/{path}"
