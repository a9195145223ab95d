"""Object storage gateway.

Wraps an S3-compatible bucket: presigned PUT/GET/multipart URLs for direct
client transfers, plus the few direct operations the service performs itself
(legacy uploads, deletes). boto3 is blocking, so every call is pushed onto the
default executor.
"""

import asyncio
import functools
import logging
import re
import uuid

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from testintake.config import Settings
from testintake.errors import UpstreamStorageFailure

logger = logging.getLogger(__name__)

RECORDINGS_FOLDER = "test-recordings"
SERVER_SIDE_ENCRYPTION = "AES256"

_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,16}$")


def namespace_prefix(namespace: str) -> str:
    """Return the key prefix that holds one uploader's objects."""
    return f"{RECORDINGS_FOLDER}/{namespace}/"


def file_extension(file_name: str | None) -> str:
    """Extract a safe extension from a client-supplied file name."""
    if not file_name or "." not in file_name:
        return "bin"
    ext = file_name.rsplit(".", 1)[1].lower()
    if not _EXTENSION_RE.match(ext):
        return "bin"
    return ext


def make_object_key(namespace: str, file_name: str | None) -> str:
    """Build a fresh, never-reused key: test-recordings/{namespace}/{uuid}.{ext}."""
    return f"{namespace_prefix(namespace)}{uuid.uuid4()}.{file_extension(file_name)}"


class StorageGateway:
    """Async facade over a boto3 S3 client bound to one bucket."""

    def __init__(
        self,
        client,
        bucket: str,
        upload_expiry_seconds: int = 3600,
        download_expiry_seconds: int = 900,
    ) -> None:
        self._client = client
        self.bucket = bucket
        self.upload_expiry_seconds = upload_expiry_seconds
        self.download_expiry_seconds = download_expiry_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageGateway":
        client = boto3.client(
            "s3",
            region_name=settings.storage_region,
            endpoint_url=settings.storage_endpoint_url,
            aws_access_key_id=settings.storage_access_key_id,
            aws_secret_access_key=settings.storage_secret_access_key,
            config=Config(signature_version="s3v4"),
        )
        return cls(
            client,
            bucket=settings.storage_bucket,
            upload_expiry_seconds=settings.upload_url_expiry_seconds,
            download_expiry_seconds=settings.download_url_expiry_seconds,
        )

    def close(self) -> None:
        self._client.close()

    async def _call(self, operation: str, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None, functools.partial(func, *args, **kwargs)
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("Object storage %s failed: %s", operation, exc)
            raise UpstreamStorageFailure(
                f"Object storage could not complete {operation}"
            ) from exc

    # ── Presigned URLs ───────────────────────────────────────────────

    async def presign_upload(
        self, key: str, content_type: str, expires_in: int | None = None
    ) -> str:
        """Presigned PUT for one object, bound to its content type."""
        return await self._call(
            "presign_upload",
            self._client.generate_presigned_url,
            "put_object",
            Params={
                "Bucket": self.bucket,
                "Key": key,
                "ContentType": content_type,
                "ServerSideEncryption": SERVER_SIDE_ENCRYPTION,
            },
            ExpiresIn=expires_in or self.upload_expiry_seconds,
        )

    async def presign_download(self, key: str, expires_in: int | None = None) -> str:
        return await self._call(
            "presign_download",
            self._client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in or self.download_expiry_seconds,
        )

    async def presign_upload_part(
        self,
        key: str,
        upload_id: str,
        part_number: int,
        expires_in: int | None = None,
    ) -> str:
        return await self._call(
            "presign_upload_part",
            self._client.generate_presigned_url,
            "upload_part",
            Params={
                "Bucket": self.bucket,
                "Key": key,
                "UploadId": upload_id,
                "PartNumber": part_number,
            },
            ExpiresIn=expires_in or self.upload_expiry_seconds,
        )

    # ── Multipart lifecycle ──────────────────────────────────────────

    async def create_multipart_upload(self, key: str, content_type: str) -> str:
        response = await self._call(
            "create_multipart_upload",
            self._client.create_multipart_upload,
            Bucket=self.bucket,
            Key=key,
            ContentType=content_type,
            ServerSideEncryption=SERVER_SIDE_ENCRYPTION,
        )
        upload_id = response.get("UploadId")
        if not upload_id:
            raise UpstreamStorageFailure("Object storage did not return an upload id")
        return upload_id

    async def complete_multipart_upload(
        self, key: str, upload_id: str, parts: list[dict]
    ) -> None:
        await self._call(
            "complete_multipart_upload",
            self._client.complete_multipart_upload,
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={"Parts": sorted(parts, key=lambda p: p["PartNumber"])},
        )

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        await self._call(
            "abort_multipart_upload",
            self._client.abort_multipart_upload,
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
        )

    # ── Direct operations ────────────────────────────────────────────

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> None:
        await self._call(
            "put_object",
            self._client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
            ServerSideEncryption=SERVER_SIDE_ENCRYPTION,
            Metadata=metadata or {},
        )
        logger.debug("Stored object %s (%d bytes)", key, len(body))

    async def delete_object(self, key: str) -> None:
        await self._call(
            "delete_object",
            self._client.delete_object,
            Bucket=self.bucket,
            Key=key,
        )
