"""Key-addressed blob storage used to persist chat records.

Two backends share the :class:`ObjectStore` interface:

- :class:`S3ObjectStore` talks to Amazon S3 through boto3.
- :class:`DiskObjectStore` maps keys onto a local directory, for development
  and tests.

Writes are unconditional overwrites (last writer wins); there is no
versioning or compare-and-swap at this boundary.
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ConfigError, StorageError

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


class ObjectStore(ABC):
    """Minimal put/get/list surface over a remote blob store."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        """Store ``data`` under ``key``, replacing any existing blob."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the blob at ``key`` or ``None`` if there is none."""

    @abstractmethod
    def list_prefixed(self, prefix: str, delimiter: str = "/") -> List[str]:
        """Return the immediate child segments below ``prefix``.

        For keys ``u1/chats/a/data.json`` and ``u1/chats/b/data.json``,
        ``list_prefixed("u1/chats/")`` returns ``["a", "b"]`` in store order.
        """


# -----------------------------
# S3
# -----------------------------
class S3ObjectStore(ObjectStore):
    """Amazon S3 backend.

    Credentials fall back to boto3's default chain (environment, profile,
    instance role) when not given explicitly.
    """

    def __init__(
        self,
        bucket: str,
        *,
        region: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client: Any = None,
    ) -> None:
        self.bucket = (bucket or "").strip()
        if not self.bucket:
            raise ConfigError("S3 bucket name is required (storage.bucket / S3_BUCKET_NAME)")
        self.region = region

        if client is None:
            kwargs: Dict[str, Any] = {"region_name": region}
            if access_key_id and secret_access_key:
                kwargs["aws_access_key_id"] = access_key_id
                kwargs["aws_secret_access_key"] = secret_access_key
            client = boto3.client("s3", **kwargs)
        self._client = client

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to put {key}: {e}") from e

    def get(self, key: str) -> Optional[bytes]:
        try:
            resp = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES:
                return None
            raise StorageError(f"Failed to get {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to get {key}: {e}") from e

        body = resp["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def list_prefixed(self, prefix: str, delimiter: str = "/") -> List[str]:
        out: List[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix, Delimiter=delimiter):
                for cp in page.get("CommonPrefixes", []) or []:
                    segment = _child_segment(cp.get("Prefix") or "", prefix, delimiter)
                    if segment:
                        out.append(segment)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to list {prefix}: {e}") from e
        return out


# -----------------------------
# Local disk
# -----------------------------
def _atomic_write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("wb", delete=False, dir=str(path.parent)) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)


class DiskObjectStore(ObjectStore):
    """Directory-backed store: key ``a/b/c.json`` lives at ``<root>/a/b/c.json``."""

    def __init__(self, root: str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        parts = [p for p in key.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise StorageError(f"Invalid key: {key!r}")
        return self.root.joinpath(*parts)

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        try:
            _atomic_write_bytes(self._path(key), data)
        except OSError as e:
            raise StorageError(f"Failed to put {key}: {e}") from e

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.is_file():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to get {key}: {e}") from e

    def list_prefixed(self, prefix: str, delimiter: str = "/") -> List[str]:
        if delimiter != "/":
            raise StorageError("DiskObjectStore only supports '/' as delimiter")
        base = self.root.joinpath(*[p for p in prefix.split("/") if p])
        if not base.is_dir():
            return []
        # Only directories count as common prefixes; loose files are objects.
        return [p.name for p in base.iterdir() if p.is_dir()]


# -----------------------------
# Helpers & factory
# -----------------------------
def _child_segment(full_prefix: str, prefix: str, delimiter: str) -> str:
    if not full_prefix.startswith(prefix):
        return ""
    rest = full_prefix[len(prefix):]
    if rest.endswith(delimiter):
        rest = rest[: -len(delimiter)]
    return rest.split(delimiter, 1)[0]


def create_store(cfg: Dict[str, Any]) -> ObjectStore:
    """Create an ObjectStore from the ``storage`` section of a config dict."""
    st = (cfg or {}).get("storage", {}) or {}
    backend = str(st.get("backend") or "disk").lower()
    if backend == "s3":
        logger.info("Using S3 object store (bucket=%s, region=%s)", st.get("bucket"), st.get("region"))
        return S3ObjectStore(
            st.get("bucket") or "",
            region=st.get("region"),
            access_key_id=st.get("access_key_id"),
            secret_access_key=st.get("secret_access_key"),
        )
    if backend == "disk":
        data_dir = st.get("data_dir") or "data"
        logger.info("Using local disk object store at %s", data_dir)
        return DiskObjectStore(data_dir)
    raise ConfigError(f"Unknown storage backend: {backend!r}")
