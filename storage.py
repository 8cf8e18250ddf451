import asyncio
import logging
import mimetypes
import os
import uuid
from typing import Optional
from urllib.parse import urlsplit

import boto3
from botocore.exceptions import ClientError

from config import settings
from errors import ConfigurationError

logger = logging.getLogger(__name__)

_CONTENT_TYPE_EXT = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}

_EXT_CONTENT_TYPE = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def extension_for(content_type: Optional[str]) -> str:
    ct = (content_type or "").split(";")[0].strip().lower()
    return _CONTENT_TYPE_EXT.get(ct, ".bin")


def content_type_for(filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower()
    return _EXT_CONTENT_TYPE.get(ext) or mimetypes.guess_type(filename)[0] or "application/octet-stream"


def safe_filename(name: str) -> str:
    # strips any directory part, including path traversal attempts
    return os.path.basename((name or "").replace("\\", "/"))


def extract_filename_from_media_url(url: str) -> Optional[str]:
    """
    "https://host/media/abc123.png?X-Amz-Signature=..." -> "abc123.png"
    Returns None when the last path segment doesn't look like a file.
    """
    try:
        path = urlsplit(url).path
    except ValueError as e:
        logger.warning(f"[storage] unparsable media url {url!r}: {e}")
        return None
    filename = safe_filename(path)
    if filename and "." in filename:
        return filename
    return None


def new_filename(content_type: Optional[str]) -> str:
    return f"{uuid.uuid4()}{extension_for(content_type)}"


class LocalBlobStorage:
    """Files in a local directory, served back by the /media/{filename} route."""

    def __init__(self, root_dir: str, base_url: str):
        self.root_dir = os.path.abspath(root_dir)
        self.base_url = base_url.rstrip("/")
        os.makedirs(self.root_dir, exist_ok=True)

    def path_for(self, filename: str) -> str:
        return os.path.join(self.root_dir, safe_filename(filename))

    def url_for(self, filename: str) -> str:
        return f"{self.base_url}/media/{safe_filename(filename)}"

    async def save(self, data: bytes, content_type: str, filename: Optional[str] = None) -> str:
        name = safe_filename(filename) if filename else new_filename(content_type)
        out = self.path_for(name)
        tmp = out + ".part"

        def _write():
            with open(tmp, "wb") as f:
                f.write(data)
            os.replace(tmp, out)

        await asyncio.to_thread(_write)
        logger.info(f"[storage] saved {name} ({len(data)} bytes)")
        return self.url_for(name)

    async def exists(self, filename: str) -> bool:
        return os.path.isfile(self.path_for(filename))

    async def read(self, filename: str) -> bytes:
        path = self.path_for(filename)
        if not os.path.isfile(path):
            raise FileNotFoundError(f"File not found: {filename}")

        def _read():
            with open(path, "rb") as f:
                return f.read()

        return await asyncio.to_thread(_read)

    async def delete(self, filename: str) -> None:
        path = self.path_for(filename)
        try:
            await asyncio.to_thread(os.remove, path)
            logger.info(f"[storage] deleted {safe_filename(filename)}")
        except FileNotFoundError:
            logger.info(f"[storage] {safe_filename(filename)} not found, skipping deletion")


class S3BlobStorage:
    """Objects under `prefix/` in an S3 bucket, handed out as presigned GET URLs."""

    def __init__(self, client, bucket: str, prefix: str = "", url_expires: int = 7 * 24 * 3600):
        self.client = client
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.url_expires = url_expires

    def key_for(self, filename: str) -> str:
        name = safe_filename(filename)
        return f"{self.prefix}/{name}" if self.prefix else name

    def presign_get_url(self, key: str) -> str:
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=self.url_expires,
        )

    async def save(self, data: bytes, content_type: str, filename: Optional[str] = None) -> str:
        name = safe_filename(filename) if filename else new_filename(content_type)
        key = self.key_for(name)
        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            CacheControl="private, max-age=31536000",
        )
        logger.info(f"[S3] uploaded -> s3://{self.bucket}/{key}")
        return await asyncio.to_thread(self.presign_get_url, key)

    async def exists(self, filename: str) -> bool:
        try:
            await asyncio.to_thread(self.client.head_object, Bucket=self.bucket, Key=self.key_for(filename))
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise

    async def read(self, filename: str) -> bytes:
        try:
            resp = await asyncio.to_thread(self.client.get_object, Bucket=self.bucket, Key=self.key_for(filename))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                raise FileNotFoundError(f"File not found: {filename}") from e
            raise
        return await asyncio.to_thread(resp["Body"].read)

    async def delete(self, filename: str) -> None:
        # S3 deletes are idempotent, a missing key is not an error
        key = self.key_for(filename)
        await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        logger.info(f"[S3] deleted s3://{self.bucket}/{key}")


def get_blob_storage():
    if settings.STORAGE_BACKEND != "s3":
        return LocalBlobStorage(settings.UPLOAD_DIR, settings.public_base_url)

    if not settings.S3_MEDIA_BUCKET:
        raise ConfigurationError("STORAGE_BACKEND=s3 requires S3_MEDIA_BUCKET")
    # credentials resolve through the default boto3 chain (env vars, profile, instance role)
    session = boto3.Session(region_name=settings.AWS_REGION)
    creds = session.get_credentials()
    source = getattr(creds, "method", "none") if creds else "none"
    logger.info(f"[S3] media storage | bucket={settings.S3_MEDIA_BUCKET} | prefix={settings.S3_MEDIA_PREFIX} | region={settings.AWS_REGION} | cred_source={source}")
    return S3BlobStorage(session.client("s3"), settings.S3_MEDIA_BUCKET, settings.S3_MEDIA_PREFIX)
