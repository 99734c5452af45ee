"""
Object storage for uploaded assets.

Two resource kinds exist. ``raw`` objects (resume PDFs) are served back
byte-for-byte with their own content type; ``image`` objects get long-lived
cache headers. Objects of each kind live under their own key namespace, so a
delete must name the kind the object was stored with. When the kind is not
known, ``delete_with_fallback`` walks an explicit attempt list.
"""
from __future__ import annotations

import enum
import logging
import mimetypes
import os
import threading
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .errors import AssetNotFound, StorageUnavailable

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
IMAGE_CACHE_CONTROL = "public, max-age=31536000, immutable"


class ResourceKind(enum.Enum):
    RAW = "raw"
    IMAGE = "image"


@dataclass(frozen=True)
class StoredObject:
    url: str
    storage_id: str
    kind: ResourceKind


@dataclass(frozen=True)
class DeleteOutcome:
    storage_id: str
    deleted_kind: Optional[ResourceKind]

    @property
    def found(self) -> bool:
        return self.deleted_kind is not None


def new_storage_id(folder: str, local_path: str) -> str:
    ext = os.path.splitext(local_path)[1].lower()
    return f"{folder.strip('/')}/{uuid.uuid4().hex}{ext}"


def content_type_for(local_path: str) -> str:
    guessed, _ = mimetypes.guess_type(local_path)
    return guessed or "application/octet-stream"


class ObjectStorage:
    """Interface shared by the S3 provider and the in-memory fake."""

    name = "base"

    def put(self, local_path: str, folder: str, kind: ResourceKind) -> StoredObject:
        raise NotImplementedError

    def delete(self, storage_id: str, kind: ResourceKind) -> None:
        """Delete one object. Raises ``AssetNotFound`` if it is not there."""
        raise NotImplementedError

    def exists(self, storage_id: str, kind: ResourceKind) -> bool:
        raise NotImplementedError

    def list_ids(self, folder: str) -> List[str]:
        """Storage ids of every object under ``folder``, any kind."""
        raise NotImplementedError

    def storage_id_from_url(self, url: str) -> Optional[str]:
        raise NotImplementedError


def fallback_attempts(kind: Optional[ResourceKind]) -> Tuple[ResourceKind, ...]:
    """Kinds to try, most likely first. Documents were historically stored raw."""
    if kind is ResourceKind.IMAGE:
        return (ResourceKind.IMAGE, ResourceKind.RAW)
    return (ResourceKind.RAW, ResourceKind.IMAGE)


def delete_with_fallback(storage: ObjectStorage, storage_id: str,
                         attempts: Sequence[ResourceKind]) -> DeleteOutcome:
    """Try each kind in ``attempts`` in order until one delete succeeds.

    Not-found on every attempt is an idempotent success and yields an
    outcome with ``deleted_kind=None``. ``StorageUnavailable`` propagates.
    """
    for kind in attempts:
        try:
            storage.delete(storage_id, kind)
        except AssetNotFound:
            logger.debug("%s not found as %s", storage_id, kind.value)
            continue
        return DeleteOutcome(storage_id=storage_id, deleted_kind=kind)
    return DeleteOutcome(storage_id=storage_id, deleted_kind=None)


class S3ObjectStorage(ObjectStorage):
    name = "s3"

    def __init__(self, bucket: str, region: str, prefix: str, public_base_url: str = "",
                 timeout: int = 20, client=None):
        self.bucket = bucket
        self.region = region
        self.prefix = prefix.strip("/")
        self.public_base_url = (public_base_url or "").rstrip("/")
        if client is None:
            client = boto3.client(
                "s3",
                region_name=region,
                config=BotoConfig(
                    connect_timeout=timeout,
                    read_timeout=timeout,
                    retries={"total_max_attempts": 1},
                ),
            )
        self.client = client

    def _key(self, storage_id: str, kind: ResourceKind) -> str:
        return f"{self.prefix}/{kind.value}/{storage_id}"

    def _url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def put(self, local_path: str, folder: str, kind: ResourceKind) -> StoredObject:
        storage_id = new_storage_id(folder, local_path)
        key = self._key(storage_id, kind)
        extra = {"ContentType": content_type_for(local_path)}
        if kind is ResourceKind.IMAGE:
            extra["CacheControl"] = IMAGE_CACHE_CONTROL
        else:
            extra["ContentDisposition"] = f'inline; filename="{os.path.basename(local_path)}"'
        try:
            with open(local_path, "rb") as f:
                self.client.put_object(Bucket=self.bucket, Key=key, Body=f, **extra)
        except (BotoCoreError, ClientError) as e:
            raise StorageUnavailable() from e
        logger.debug("Uploaded s3://%s/%s", self.bucket, key)
        return StoredObject(url=self._url(key), storage_id=storage_id, kind=kind)

    def exists(self, storage_id: str, kind: ResourceKind) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=self._key(storage_id, kind))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in NOT_FOUND_CODES:
                return False
            raise StorageUnavailable() from e
        except BotoCoreError as e:
            raise StorageUnavailable() from e
        return True

    def delete(self, storage_id: str, kind: ResourceKind) -> None:
        # S3 deletes are silent for missing keys, so look first
        if not self.exists(storage_id, kind):
            raise AssetNotFound(f"{storage_id} ({kind.value}) not found")
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._key(storage_id, kind))
        except (BotoCoreError, ClientError) as e:
            raise StorageUnavailable() from e
        logger.debug("Deleted s3://%s/%s", self.bucket, self._key(storage_id, kind))

    def list_ids(self, folder: str) -> List[str]:
        out: List[str] = []
        folder = folder.strip("/")
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for kind in ResourceKind:
                kind_prefix = f"{self.prefix}/{kind.value}/"
                pages = paginator.paginate(Bucket=self.bucket, Prefix=f"{kind_prefix}{folder}/")
                for page in pages:
                    for obj in page.get("Contents", []):
                        out.append(obj["Key"][len(kind_prefix):])
        except (BotoCoreError, ClientError) as e:
            raise StorageUnavailable() from e
        return sorted(out)

    def storage_id_from_url(self, url: str) -> Optional[str]:
        """Recover the storage id of an object from its public URL."""
        path = urlparse(url or "").path.lstrip("/")
        if self.public_base_url:
            base_path = urlparse(self.public_base_url).path.strip("/")
            if base_path and path.startswith(base_path + "/"):
                path = path[len(base_path) + 1:]
        for kind in ResourceKind:
            kind_prefix = f"{self.prefix}/{kind.value}/"
            if path.startswith(kind_prefix):
                return path[len(kind_prefix):] or None
        return None


class MemoryObjectStorage(ObjectStorage):
    """Process-local object store for tests and local development."""

    name = "memory"

    def __init__(self):
        self._objects: Dict[Tuple[ResourceKind, str], bytes] = {}
        self._lock = threading.Lock()
        self.calls: List[Tuple[str, str, str]] = []

    def _record(self, op: str, storage_id: str, kind: ResourceKind) -> None:
        with self._lock:
            self.calls.append((op, storage_id, kind.value))

    def put(self, local_path: str, folder: str, kind: ResourceKind) -> StoredObject:
        storage_id = new_storage_id(folder, local_path)
        with open(local_path, "rb") as f:
            data = f.read()
        self._record("put", storage_id, kind)
        with self._lock:
            self._objects[(kind, storage_id)] = data
        return StoredObject(url=f"memory://{kind.value}/{storage_id}", storage_id=storage_id, kind=kind)

    def exists(self, storage_id: str, kind: ResourceKind) -> bool:
        with self._lock:
            return (kind, storage_id) in self._objects

    def delete(self, storage_id: str, kind: ResourceKind) -> None:
        self._record("delete", storage_id, kind)
        with self._lock:
            if self._objects.pop((kind, storage_id), None) is None:
                raise AssetNotFound(f"{storage_id} ({kind.value}) not found")

    def get(self, storage_id: str, kind: ResourceKind) -> bytes:
        with self._lock:
            return self._objects[(kind, storage_id)]

    def list_ids(self, folder: str) -> List[str]:
        folder = folder.strip("/") + "/"
        with self._lock:
            return sorted(sid for (_, sid) in self._objects if sid.startswith(folder))

    def all_ids(self) -> List[str]:
        with self._lock:
            return sorted(sid for (_, sid) in self._objects)

    def storage_id_from_url(self, url: str) -> Optional[str]:
        parsed = urlparse(url or "")
        if parsed.scheme != "memory":
            return None
        return parsed.path.lstrip("/") or None
