from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

import boto3
from botocore.client import Config as BotoConfig

from restohub.core.config import settings
from restohub.core.errors import BadRequestError
from restohub.core.logging_setup import logger

UPLOAD_PRESETS: dict[str, set[str]] = {
    "payment-proof": {"image/jpeg", "image/png", "image/webp", "application/pdf"},
    "refund-proof": {"image/jpeg", "image/png", "image/webp", "application/pdf"},
}

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
}

_SAFE_SEGMENT = re.compile(r"[^A-Za-z0-9_.-]+")


def resolve_storage_root() -> Path:
    raw = os.getenv("RESTOHUB_STORAGE") or settings.storage_path or "_storage"
    return Path(raw).expanduser().resolve()


class StorageBackend(Protocol):
    def save_bytes(self, *, root: str, name: str, data: bytes, content_type: str | None = None) -> str:
        ...

    def delete(self, path: str) -> None:
        ...


@dataclass
class LocalStorage:
    base_dir: Path

    def __post_init__(self) -> None:
        self.base_dir = Path(self.base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def save_bytes(self, *, root: str, name: str, data: bytes, content_type: str | None = None) -> str:  # noqa: ARG002
        target_dir = self.base_dir / root
        target_dir.mkdir(parents=True, exist_ok=True)
        file_path = target_dir / name
        file_path.write_bytes(data)
        return str(file_path.relative_to(self.base_dir))

    def delete(self, path: str) -> None:
        file_path = (self.base_dir / path).resolve()
        if self.base_dir not in file_path.parents:
            raise BadRequestError("Invalid storage key")
        file_path.unlink(missing_ok=True)


@dataclass
class S3Storage:
    bucket: str
    client: Any

    def save_bytes(self, *, root: str, name: str, data: bytes, content_type: str | None = None) -> str:
        key = f"{root.strip('/')}/{name}"
        extra = {"ContentType": content_type} if content_type else {}
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        return f"s3://{self.bucket}/{key}"

    def delete(self, path: str) -> None:
        key = path
        if path.startswith("s3://"):
            _, rest = path.split("s3://", 1)
            _, key = rest.split("/", 1)
        self.client.delete_object(Bucket=self.bucket, Key=key)


def get_storage() -> StorageBackend:
    # Tests always use local storage unless S3 is explicitly allowed
    if os.getenv("PYTEST_CURRENT_TEST") and os.getenv("RESTOHUB_ALLOW_S3_IN_TESTS") != "1":
        return LocalStorage(base_dir=resolve_storage_root())

    if settings.s3_endpoint_url and settings.s3_access_key and settings.s3_secret_key and settings.s3_bucket_uploads:
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            config=BotoConfig(signature_version="s3v4"),
            region_name=settings.s3_region,
        )
        return S3Storage(bucket=settings.s3_bucket_uploads, client=client)

    return LocalStorage(base_dir=resolve_storage_root())


@dataclass
class UploadResult:
    base_path: str
    content_type: str
    size: int


class UploadService:
    """Validates and stores uploaded files under ``<preset>/<scope_id>/``."""

    def __init__(self, storage: StorageBackend | None = None, max_bytes: int | None = None) -> None:
        self.storage = storage or get_storage()
        self.max_bytes = max_bytes if max_bytes is not None else settings.max_upload_bytes

    def upload_image(
        self,
        *,
        data: bytes,
        filename: str | None,
        content_type: str | None,
        preset: str,
        scope_id: str,
    ) -> UploadResult:
        allowed = UPLOAD_PRESETS.get(preset)
        if allowed is None:
            raise BadRequestError(f"Unknown upload preset {preset!r}")
        if not data:
            raise BadRequestError("Uploaded file is empty")
        if len(data) > self.max_bytes:
            raise BadRequestError(f"File exceeds the maximum size of {self.max_bytes // (1024 * 1024)} MB")
        if content_type not in allowed:
            raise BadRequestError("Unsupported file type. Allowed: JPEG, PNG, WebP or PDF")

        stem = _SAFE_SEGMENT.sub("-", Path(filename or "upload").stem).strip("-") or "upload"
        name = f"{uuid4().hex[:12]}-{stem[:40]}{_EXTENSIONS[content_type]}"
        root = f"{preset}/{_SAFE_SEGMENT.sub('-', str(scope_id))}"
        path = self.storage.save_bytes(root=root, name=name, data=data, content_type=content_type)
        logger.info("[upload_image] stored %s bytes at %s", len(data), path)
        return UploadResult(base_path=path, content_type=content_type, size=len(data))

    def delete_file(self, key: str) -> None:
        self.storage.delete(key)
        logger.info("[delete_file] removed %s", key)
