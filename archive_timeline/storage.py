from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Union
from urllib.parse import urlparse

try:  # pragma: no cover - optional dependency for S3 mode
    import boto3  # type: ignore
except ImportError:  # pragma: no cover - local storage only
    boto3 = None

logger = logging.getLogger("archive_timeline.storage")

FILES_URL_PREFIX = "/api/files/"
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


class StorageError(RuntimeError):
    """Blob store failure or an invalid file reference."""


@dataclass
class StorageConfig:
    backend: str = "local"
    root: Path = Path("data/uploads")
    s3_bucket: str = ""
    s3_region: str = "us-east-1"


def sanitise_filename(file_name: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", file_name)


def _unique_name(file_name: str) -> str:
    return f"{int(time.time() * 1000)}-{sanitise_filename(file_name)}"


class LocalStorage:
    """
    Uploads on the local filesystem under ``root/YYYY/MM/``.
    Files are addressed by ``/api/files/<relative path>`` URLs.
    """

    def __init__(self, config: StorageConfig):
        self._root = Path(config.root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def upload_file(self, data: bytes, file_name: str, mime_type: str) -> str:
        now = datetime.now(timezone.utc)
        sub_dir = self._root / f"{now.year}" / f"{now.month:02d}"
        sub_dir.mkdir(parents=True, exist_ok=True)
        target = sub_dir / _unique_name(file_name)
        target.write_bytes(data)
        relative = target.relative_to(self._root).as_posix()
        logger.info("Stored upload", extra={"path": relative, "mime_type": mime_type, "size": len(data)})
        return f"{FILES_URL_PREFIX}{relative}"

    def get_file_path(self, file_url: str) -> Path:
        relative = file_url[len(FILES_URL_PREFIX):] if file_url.startswith(FILES_URL_PREFIX) else file_url
        candidate = (self._root / relative.lstrip("/")).resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise StorageError("File reference points outside the storage directory")
        return candidate

    def get_file(self, file_url: str) -> bytes:
        path = self.get_file_path(file_url)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageError(f"Could not read {file_url}") from exc

    def file_exists(self, file_url: str) -> bool:
        try:
            return self.get_file_path(file_url).is_file()
        except StorageError:
            return False

    def delete_file(self, file_url: str) -> None:
        path = self.get_file_path(file_url)
        try:
            path.unlink()
        except OSError as exc:
            raise StorageError(f"Could not delete {file_url}") from exc


class S3Storage:
    """Uploads in an S3 bucket under ``uploads/``."""

    def __init__(self, config: StorageConfig, client=None):
        if client is None:
            if boto3 is None:
                raise RuntimeError("S3 storage is enabled but boto3 is not installed.")
            client = boto3.client("s3", region_name=config.s3_region)
        self._client = client
        self._bucket = config.s3_bucket
        self._region = config.s3_region

    def upload_file(self, data: bytes, file_name: str, mime_type: str) -> str:
        key = f"uploads/{_unique_name(file_name)}"
        try:
            self._client.put_object(Bucket=self._bucket, Key=key, Body=data, ContentType=mime_type)
        except Exception as exc:
            logger.exception("S3 upload failed: %s", key)
            raise StorageError("Could not upload file to S3") from exc
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    def _key_from_url(self, file_url: str) -> str:
        return urlparse(file_url).path.lstrip("/")

    def get_file(self, file_url: str) -> bytes:
        key = self._key_from_url(file_url)
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            return response["Body"].read()
        except Exception as exc:
            raise StorageError(f"Could not read {file_url}") from exc

    def file_exists(self, file_url: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=self._key_from_url(file_url))
        except Exception:
            return False
        return True

    def delete_file(self, file_url: str) -> None:
        key = self._key_from_url(file_url)
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except Exception as exc:
            raise StorageError(f"Could not delete {file_url}") from exc


Storage = Union[LocalStorage, S3Storage]


def create_storage(config: StorageConfig, *, s3_client=None) -> Storage:
    if config.backend == "s3":
        return S3Storage(config, client=s3_client)
    return LocalStorage(config)


def storage_config_from_settings(app_settings) -> StorageConfig:
    return StorageConfig(
        backend=app_settings.storage_backend,
        root=Path(app_settings.storage_path),
        s3_bucket=app_settings.s3_bucket,
        s3_region=app_settings.s3_region,
    )