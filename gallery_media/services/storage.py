import asyncio
import os
from io import BytesIO
from pathlib import Path
from typing import Iterator, Protocol
from uuid import uuid4

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import UploadFile
from loguru import logger
from PIL import Image, UnidentifiedImageError

from gallery_media.config import Settings
from gallery_media.models.upload import SourceAsset
from gallery_media.services.errors import TransportError, ValidationError
from gallery_media.services.keys import original_key
from gallery_media.validators.common import EXTENSIONS_BY_TYPE, validate_image_type

MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


class ObjectStorage(Protocol):
    def get(self, key: str) -> bytes: ...

    def put(self, key: str, data: bytes, content_type: str) -> None: ...

    def exists(self, key: str) -> bool: ...

    def delete(self, key: str) -> None: ...

    def list_keys(self, prefix: str) -> Iterator[str]: ...


class LocalObjectStorage:
    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def _path(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if not path.is_relative_to(self.base_dir.resolve()):
            raise ValidationError(f"Storage key escapes storage root: {key!r}")
        return path

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            logger.error("Storage key not found key={} path={}", key, str(path))
            raise FileNotFoundError(f"Object not found: {key}")
        logger.debug("Reading object key={} path={}", key, str(path))
        return path.read_bytes()

    def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        staging = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
        staging.write_bytes(data)
        os.replace(staging, path)
        logger.debug(
            "Object written key={} content_type={} size_bytes={}",
            key,
            content_type,
            len(data),
        )

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def list_keys(self, prefix: str) -> Iterator[str]:
        root = self.base_dir.resolve()
        start = self._path(prefix) if prefix else root
        if not start.is_dir():
            return
        for path in sorted(start.rglob("*")):
            if path.is_file() and not path.name.endswith(".tmp"):
                yield path.relative_to(root).as_posix()


class S3ObjectStorage:
    def __init__(self, client, bucket: str):
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "S3ObjectStorage":
        client = boto3.client(
            "s3",
            region_name=app_settings.s3_region,
            endpoint_url=app_settings.s3_endpoint_url,
            aws_access_key_id=app_settings.s3_access_key_id,
            aws_secret_access_key=app_settings.s3_secret_access_key,
            config=Config(signature_version="s3v4"),
        )
        return cls(client, app_settings.s3_bucket)

    def get(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in MISSING_KEY_CODES:
                logger.error("Storage key not found bucket={} key={}", self.bucket, key)
                raise FileNotFoundError(f"Object not found: {key}") from exc
            raise TransportError(f"S3 get failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise TransportError(f"S3 get failed for {key}: {exc}") from exc

    def put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            raise TransportError(f"S3 put failed for {key}: {exc}") from exc
        logger.debug(
            "Object written bucket={} key={} content_type={} size_bytes={}",
            self.bucket,
            key,
            content_type,
            len(data),
        )

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in MISSING_KEY_CODES:
                return False
            raise TransportError(f"S3 head failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise TransportError(f"S3 head failed for {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise TransportError(f"S3 delete failed for {key}: {exc}") from exc

    def list_keys(self, prefix: str) -> Iterator[str]:
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    yield obj["Key"]
        except (BotoCoreError, ClientError) as exc:
            raise TransportError(f"S3 list failed for prefix {prefix}: {exc}") from exc


def build_storage(app_settings: Settings) -> ObjectStorage:
    if app_settings.storage_backend == "s3":
        if not app_settings.s3_bucket:
            raise ValueError("S3_BUCKET must be set when STORAGE_BACKEND=s3")
        logger.info(
            "Using S3 object storage bucket={} endpoint={}",
            app_settings.s3_bucket,
            app_settings.s3_endpoint_url,
        )
        return S3ObjectStorage.from_settings(app_settings)
    logger.info("Using local object storage path={}", str(app_settings.storage_path))
    return LocalObjectStorage(app_settings.storage_path)


def _image_dimensions(data: bytes) -> tuple[int | None, int | None]:
    try:
        with Image.open(BytesIO(data)) as img:
            return img.width, img.height
    except (UnidentifiedImageError, OSError):
        return None, None


async def save_upload(
    upload: UploadFile,
    owner_id: str,
    storage: ObjectStorage,
    app_settings: Settings,
) -> SourceAsset:
    content_type = validate_image_type(upload.content_type)

    data = await upload.read()
    if len(data) > app_settings.max_upload_bytes:
        raise ValidationError(f"File size must be {app_settings.max_upload_bytes} bytes or less")
    width, height = _image_dimensions(data)
    if width is None:
        raise ValidationError("File is not a readable image")

    storage_key = original_key(owner_id, str(uuid4()), EXTENSIONS_BY_TYPE[content_type])
    await asyncio.to_thread(storage.put, storage_key, data, content_type)
    logger.debug(
        "Original saved storage_key={} owner_id={} size_bytes={}",
        storage_key,
        owner_id,
        len(data),
    )

    return SourceAsset(
        storage_key=storage_key,
        owner_id=owner_id,
        mime_type=content_type,
        width=width,
        height=height,
        size_bytes=len(data),
    )
