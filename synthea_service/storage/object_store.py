"""Object storage backends for published generator output."""

import os
import shutil
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Union
from urllib.parse import quote

Payload = Union[bytes, BinaryIO]


@dataclass
class StoredObject:
    key: str
    size: int


class ObjectStorage(ABC):
    """Abstract interface for the storage collaborator (local or Supabase)."""

    @abstractmethod
    def put(self, key: str, data: Payload, content_type: str = "application/octet-stream") -> None:
        """Store ``data`` under ``key``, replacing any existing object."""
        ...

    @abstractmethod
    def list(self, prefix: str) -> List[StoredObject]:
        """List objects whose key starts with ``prefix``."""
        ...

    @abstractmethod
    def presigned_url(self, key: str, ttl_seconds: int) -> str:
        """Return a time-limited download URL for ``key``."""
        ...


def _read_payload(data: Payload) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    return data.read()


class LocalObjectStorage(ObjectStorage):
    """Stores objects as files under a base directory, with TTL-based cleanup."""

    def __init__(self, base_dir: Optional[str] = None, ttl_hours: int = 2, url_prefix: str = "/api/v1/files"):
        if base_dir:
            self._base_dir = base_dir
        else:
            self._base_dir = os.path.join(tempfile.gettempdir(), "synthea_results")
        os.makedirs(self._base_dir, exist_ok=True)
        self._ttl_seconds = ttl_hours * 3600
        self._url_prefix = url_prefix.rstrip("/")

    @property
    def base_dir(self) -> str:
        return self._base_dir

    def path_for(self, key: str) -> str:
        """Filesystem path of ``key``; rejects keys escaping the base directory."""
        root = os.path.abspath(self._base_dir)
        path = os.path.abspath(os.path.join(root, *key.split("/")))
        if path != root and not path.startswith(root + os.sep):
            raise ValueError(f"Invalid storage key: {key}")
        return path

    def put(self, key: str, data: Payload, content_type: str = "application/octet-stream") -> None:
        path = self.path_for(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as dst:
            dst.write(_read_payload(data))

    def exists(self, key: str) -> bool:
        try:
            return os.path.isfile(self.path_for(key))
        except ValueError:
            return False

    def list(self, prefix: str) -> List[StoredObject]:
        objects = []
        for dirpath, _, filenames in os.walk(self._base_dir):
            for name in filenames:
                path = os.path.join(dirpath, name)
                key = os.path.relpath(path, self._base_dir).replace(os.sep, "/")
                if key.startswith(prefix):
                    objects.append(StoredObject(key=key, size=os.path.getsize(path)))
        return sorted(objects, key=lambda o: o.key)

    def presigned_url(self, key: str, ttl_seconds: int) -> str:
        # Local files are served by the API; the TTL is enforced by cleanup_expired
        return f"{self._url_prefix}/{quote(key)}"

    def cleanup_expired(self) -> int:
        """Remove top-level entries older than TTL. Returns count of removed entries."""
        now = time.time()
        removed = 0
        if not os.path.exists(self._base_dir):
            return 0
        for entry in os.listdir(self._base_dir):
            path = os.path.join(self._base_dir, entry)
            if now - os.path.getmtime(path) <= self._ttl_seconds:
                continue
            if os.path.isdir(path):
                shutil.rmtree(path, ignore_errors=True)
            else:
                os.remove(path)
            removed += 1
        return removed


class SupabaseObjectStorage(ObjectStorage):
    """Objects in a Supabase Storage bucket."""

    def __init__(self, client, bucket: str):
        self._client = client
        self._bucket = bucket

    def _bucket_api(self):
        return self._client.storage.from_(self._bucket)

    def put(self, key: str, data: Payload, content_type: str = "application/octet-stream") -> None:
        self._bucket_api().upload(
            key,
            _read_payload(data),
            {"content-type": content_type, "upsert": "true"},
        )

    def list(self, prefix: str) -> List[StoredObject]:
        """Recursive listing; Supabase lists one folder level per call."""
        objects = []
        folders = [prefix.rstrip("/")]
        while folders:
            folder = folders.pop()
            for entry in self._bucket_api().list(folder) or []:
                path = f"{folder}/{entry['name']}" if folder else entry["name"]
                # folders come back without an id
                if entry.get("id") is None:
                    folders.append(path)
                    continue
                size = (entry.get("metadata") or {}).get("size", 0)
                objects.append(StoredObject(key=path, size=int(size or 0)))
        return sorted(objects, key=lambda o: o.key)

    def presigned_url(self, key: str, ttl_seconds: int) -> str:
        response = self._bucket_api().create_signed_url(key, ttl_seconds)
        return response.get("signedURL") or response.get("signedUrl", "")


def create_storage(settings) -> ObjectStorage:
    """Pick the storage backend named by ``settings.storage_backend``."""
    if settings.storage_backend == "supabase":
        from synthea_service.db.supabase_client import get_supabase
        return SupabaseObjectStorage(get_supabase(), settings.storage_bucket)
    if settings.storage_backend != "local":
        raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
    return LocalObjectStorage(
        base_dir=settings.local_storage_dir or None,
        ttl_hours=settings.job_result_ttl_hours,
    )
