from __future__ import annotations

import posixpath
import secrets
import string
import time
from typing import Optional
from urllib.parse import urlparse

import boto3
from botocore.config import Config

from adscrape.config import settings

PUBLIC_CACHE_CONTROL = "public, max-age=31536000"

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "webm": "video/webm",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_KEY_ALPHABET = string.ascii_lowercase + string.digits


class MediaStorageConfigurationError(RuntimeError):
    pass


def url_extension(url: str) -> str:
    """Lower-cased extension of the URL path without the dot, or ``""``."""
    try:
        path = urlparse(url).path
    except ValueError:
        return ""
    _, ext = posixpath.splitext(posixpath.basename(path))
    ext = ext.lstrip(".").lower()
    if not ext or not ext.isalnum() or len(ext) > 5:
        return ""
    return ext


def content_type_for(url: str, fallback: Optional[str] = None) -> str:
    return CONTENT_TYPES.get(url_extension(url)) or fallback or DEFAULT_CONTENT_TYPE


class MediaStorage:
    """
    Thin wrapper around S3-compatible storage (R2, Hetzner, MinIO) for mirrored ad media.

    Objects are written once and never deleted; keys are unique per upload.
    """

    def __init__(self, client=None) -> None:
        if not settings.MEDIA_STORAGE_BUCKET:
            raise MediaStorageConfigurationError("MEDIA_STORAGE_BUCKET is required")
        if not settings.MEDIA_STORAGE_PUBLIC_BASE_URL:
            raise MediaStorageConfigurationError("MEDIA_STORAGE_PUBLIC_BASE_URL is required")

        self.bucket = settings.MEDIA_STORAGE_BUCKET
        self.prefix = (settings.MEDIA_STORAGE_PREFIX or "").strip("/")
        self.public_base_url = settings.MEDIA_STORAGE_PUBLIC_BASE_URL.rstrip("/")

        if client is not None:
            self.client = client
            return

        if not settings.MEDIA_STORAGE_ENDPOINT:
            raise MediaStorageConfigurationError("MEDIA_STORAGE_ENDPOINT is required")
        if not settings.MEDIA_STORAGE_ACCESS_KEY or not settings.MEDIA_STORAGE_SECRET_KEY:
            raise MediaStorageConfigurationError(
                "MEDIA_STORAGE_ACCESS_KEY and MEDIA_STORAGE_SECRET_KEY are required"
            )

        addressing_style = "path" if settings.MEDIA_STORAGE_FORCE_PATH_STYLE else "auto"
        session = boto3.session.Session()
        self.client = session.client(
            "s3",
            endpoint_url=settings.MEDIA_STORAGE_ENDPOINT,
            aws_access_key_id=settings.MEDIA_STORAGE_ACCESS_KEY,
            aws_secret_access_key=settings.MEDIA_STORAGE_SECRET_KEY,
            region_name=settings.MEDIA_STORAGE_REGION or "auto",
            use_ssl=bool(settings.MEDIA_STORAGE_USE_SSL),
            config=Config(
                s3={"addressing_style": addressing_style},
                signature_version="s3v4",
            ),
        )

    def build_key(self, *, organisation_id: str, ad_type: str, source_url: str) -> str:
        """
        Keys look like <prefix>/<organisation_id>/<ad_type>/<epoch_ms>_<random>.<ext>
        """
        suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(6))
        filename = f"{int(time.time() * 1000)}_{suffix}"
        ext = url_extension(source_url)
        if ext:
            filename = f"{filename}.{ext}"
        parts = [p for p in [self.prefix, organisation_id, ad_type] if p]
        return "/".join(parts + [filename])

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    def upload_bytes(
        self,
        *,
        key: str,
        data: bytes,
        content_type: Optional[str],
        cache_control: Optional[str] = PUBLIC_CACHE_CONTROL,
        bucket: Optional[str] = None,
    ) -> None:
        kwargs = {
            "Bucket": bucket or self.bucket,
            "Key": key,
            "Body": data,
        }
        if content_type:
            kwargs["ContentType"] = content_type
        if cache_control:
            kwargs["CacheControl"] = cache_control
        self.client.put_object(**kwargs)
