"""
Object storage for station documents.

Objects are addressed by content: keys embed the sha256 prefix, so re-uploading
a file with the same name never replaces bytes an older document row points to.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from werkzeug.utils import secure_filename

from app.emslab.config import missing_s3_settings


class StorageError(RuntimeError):
    pass


def content_key(prefix: str, sha256: str, filename: str) -> str:
    """`<prefix>/<sha256[:16]>/<safe filename>`"""
    safe = secure_filename(filename or "") or "document.bin"
    return f"{prefix.strip('/')}/{sha256[:16]}/{safe}"


class Storage:
    backend = "none"

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path
    backend = "local"

    def _path(self, key: str) -> Path:
        parts = [p for p in key.replace("\\", "/").split("/") if p]
        if not parts or ".." in parts:
            raise StorageError(f"Refusing storage key outside root: {key!r}")
        return self.root.joinpath(*parts)

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Cannot write {key}: {e}") from e

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        if not p.is_file():
            raise StorageError(f"Missing stored object: {key}")
        return p.open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    backend = "s3"
    _clients: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def endpoint_url(self) -> str | None:
        if not self.endpoint:
            return None
        if self.endpoint.startswith(("http://", "https://")):
            return self.endpoint
        return f"https://{self.endpoint}"

    def _client(self):
        if "s3" not in self._clients:
            self._clients["s3"] = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                region_name=self.region or None,
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
            )
        return self._clients["s3"]

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Cannot write {key} to bucket {self.bucket}: {e}") from e

    def open(self, key: str) -> BinaryIO:
        try:
            obj = self._client().get_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Cannot read stored object {key}: {e}") from e
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
        except ClientError:
            return False
        return True


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    # relative roots resolve against the working directory
    root = Path(config.get("STORAGE_LOCAL_ROOT") or "storage")
    return LocalStorage(root=root.resolve())


def storage_status(config: dict) -> dict:
    """Backend name and configuration problems, without touching the network."""
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    missing = missing_s3_settings(config)
    return {
        "storage_backend": backend,
        "storage_configured": not missing,
        "storage_error": f"Missing: {', '.join(missing)}" if missing else None,
    }
