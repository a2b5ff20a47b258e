"""Pre-signed photo upload URLs.

Privileged callers get a short-lived S3 ``PUT`` URL so the photo bytes
go straight to the bucket and never pass through the API.
"""

from __future__ import annotations

import asyncio
import re
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from realty_listings.logging_config import get_logger

if TYPE_CHECKING:
    from realty_listings.config import Config

logger = get_logger(__name__)

KEY_PREFIX = "listings"

MAX_FILENAME_LENGTH = 100

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class UploadRejected(ValueError):
    """The requested upload is not allowed.

    Attributes:
        field: Request field that caused the rejection
    """

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


@dataclass(frozen=True)
class UploadTicket:
    """Where and how to upload one photo."""

    upload_url: str
    key: str
    public_url: str
    expires_in: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "uploadUrl": self.upload_url,
            "key": self.key,
            "publicUrl": self.public_url,
            "expiresIn": self.expires_in,
        }


def sanitize_filename(filename: str) -> str:
    """Reduce a client-supplied filename to a safe object key segment.

    Directory parts are dropped, runs of unsafe characters become ``-``
    and the result is capped in length. An empty result becomes ``photo``.
    """
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    name = _UNSAFE_CHARS.sub("-", name).strip(".-")
    return name[-MAX_FILENAME_LENGTH:] or "photo"


class S3UploadIssuer:
    """Issues pre-signed ``put_object`` URLs for listing photos."""

    def __init__(
        self,
        s3_client: Any,
        bucket: str,
        region: str,
        expires_in: int = 300,
    ) -> None:
        """Initialize the issuer.

        Args:
            s3_client: boto3 S3 client
            bucket: Destination bucket
            region: Bucket region, used for public URLs
            expires_in: Upload URL lifetime in seconds
        """
        self._s3 = s3_client
        self._bucket = bucket
        self._region = region
        self._expires_in = expires_in

    @classmethod
    def from_config(cls, config: Config) -> S3UploadIssuer:
        import boto3

        if not config.uploads_bucket:
            msg = "uploads_bucket is not configured"
            raise ValueError(msg)
        return cls(
            boto3.client("s3", region_name=config.region),
            bucket=config.uploads_bucket,
            region=config.region,
            expires_in=config.upload_url_expires,
        )

    @property
    def bucket(self) -> str:
        return self._bucket

    def public_url(self, key: str) -> str:
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    def _presign(self, key: str, content_type: str) -> str:
        url: str = self._s3.generate_presigned_url(
            "put_object",
            Params={"Bucket": self._bucket, "Key": key, "ContentType": content_type},
            ExpiresIn=self._expires_in,
            HttpMethod="PUT",
        )
        return url

    async def issue(self, filename: str, content_type: str) -> UploadTicket:
        """Create an upload URL for one image.

        Args:
            filename: Client-side file name
            content_type: MIME type the upload will be sent with

        Returns:
            UploadTicket with the URL, object key and eventual public URL

        Raises:
            UploadRejected: If the content type is not an image
        """
        content_type = (content_type or "").strip().lower()
        if not content_type.startswith("image/") or content_type == "image/":
            raise UploadRejected("contentType", "Only image uploads are allowed")

        key = f"{KEY_PREFIX}/{uuid.uuid4()}/{sanitize_filename(filename or '')}"
        url = await asyncio.to_thread(self._presign, key, content_type)

        logger.info("Issued upload URL for %s", key)
        return UploadTicket(
            upload_url=url,
            key=key,
            public_url=self.public_url(key),
            expires_in=self._expires_in,
        )
