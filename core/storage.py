"""
Object-store access for the gallery.

Talks to an S3-compatible bucket (Cloudflare R2 in production) through boto3:
- StorageClient: raw listing + presigned URL minting, botocore errors mapped
  onto the gallery error taxonomy
- ListingClient: one page per call, entries normalized into Items, non-images
  excluded

Thumbnails are not generated here. A thumbnail key is derived by naming
convention (see derive_thumb_key) and the browser falls back to the full
image when the derived object does not exist.
"""

import logging
import mimetypes
import re
from datetime import datetime
from typing import Iterator

from botocore.exceptions import BotoCoreError, ClientError

from core.config import GalleryConfig
from core.errors import AuthExpiredError, UpstreamError
from core.models import Credentials, Item, Page

logger = logging.getLogger(__name__)

IMAGE_EXTENSION_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp|bmp|svg)$", re.IGNORECASE)

# Error codes the store uses when the credential is expired or revoked.
AUTH_ERROR_CODES = {
    "AccessDenied",
    "AuthorizationFailure",
    "ExpiredToken",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "TokenRefreshRequired",
}


def is_image(key: str, content_type: str | None = None) -> bool:
    """Declared image/* content type, or a recognized image file extension."""
    if content_type and content_type.startswith("image/"):
        return True
    return bool(IMAGE_EXTENSION_RE.search(key))


def derive_thumb_key(key: str) -> str | None:
    """
    Derive the thumbnail object key for an image key.

    Two naming conventions exist in the bucket:
    - "images/<path>" has its thumbnail at "thumbs/<path>"
    - anything else with an extension uses "<stem>-thumb.<ext>"

    Keys without an extension have no thumbnail.
    """
    if key.startswith("images/"):
        return "thumbs/" + key[len("images/"):]

    if "." in key:
        stem, ext = key.rsplit(".", 1)
        return f"{stem}-thumb.{ext}"

    return None


def map_client_error(exc: Exception) -> UpstreamError:
    """Translate a botocore failure into UpstreamError / AuthExpiredError."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = error.get("Code", "")
        message = error.get("Message") or str(exc)
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if status == 403 or code in AUTH_ERROR_CODES:
            return AuthExpiredError(message)
        return UpstreamError(status or 502, message)
    return UpstreamError(502, str(exc))


class StorageClient:
    """
    Thin wrapper over a boto3 S3 client bound to one bucket.

    The boto3 client is rebuilt whenever credentials change.
    """

    def __init__(self, config: GalleryConfig, credentials: Credentials | None = None):
        self.config = config
        self.credentials = credentials or config.credentials()
        self._client = None

    @property
    def container(self) -> str:
        return self.config.container

    def _get_client(self):
        """Get or create the boto3 S3 client for the current credentials."""
        if self._client is not None:
            return self._client

        import boto3
        self._client = boto3.client(
            "s3",
            endpoint_url=self.config.account_url,
            region_name=self.config.region,
            aws_access_key_id=self.credentials.access_key_id,
            aws_secret_access_key=self.credentials.secret_access_key,
            aws_session_token=self.credentials.session_token,
        )
        return self._client

    def update_credentials(self, credentials: Credentials) -> None:
        logger.info("Storage credentials replaced (key id %s)", credentials.access_key_id)
        self.credentials = credentials
        self._client = None

    def list_objects(
        self, prefix: str = "", cursor: str | None = None, page_size: int = 300
    ) -> tuple[list[dict], str | None]:
        """
        List one page of objects.

        Returns:
            (entries, next_cursor). Entries are dicts with "name" and, when the
            store reports them, "contentLength" and "lastModified". ListObjectsV2
            carries no content type; ListingClient infers it from the key.
            next_cursor is None at end-of-listing.

        Raises:
            AuthExpiredError: credential rejected
            UpstreamError: any other non-success response
        """
        params = {"Bucket": self.container, "Prefix": prefix, "MaxKeys": page_size}
        if cursor:
            params["ContinuationToken"] = cursor

        try:
            response = self._get_client().list_objects_v2(**params)
        except (ClientError, BotoCoreError) as e:
            raise map_client_error(e) from e

        entries = []
        for obj in response.get("Contents", []):
            entry = {"name": obj["Key"]}
            if "Size" in obj:
                entry["contentLength"] = obj["Size"]
            if obj.get("LastModified") is not None:
                entry["lastModified"] = obj["LastModified"]
            entries.append(entry)

        next_cursor = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return entries, next_cursor

    def presign(self, key: str, container: str | None = None, expires_in: int | None = None) -> str:
        """Mint a time-limited GET URL for an object."""
        try:
            return self._get_client().generate_presigned_url(
                "get_object",
                Params={"Bucket": container or self.container, "Key": key},
                ExpiresIn=expires_in or self.config.url_expiry,
            )
        except (ClientError, BotoCoreError) as e:
            raise map_client_error(e) from e


def _parse_timestamp(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class ListingClient:
    """
    Paginated image listing over a StorageClient.

    fetch_page() performs exactly one upstream call and never retries;
    retry policy belongs to the caller (GallerySession).
    """

    def __init__(self, storage: StorageClient, prefix: str = "", page_size: int = 300):
        self.storage = storage
        self.prefix = prefix
        self.page_size = page_size

    @classmethod
    def from_config(cls, config: GalleryConfig) -> "ListingClient":
        return cls(StorageClient(config), prefix=config.prefix, page_size=config.page_size)

    def to_item(self, entry: dict) -> Item | None:
        """Normalize one upstream entry; None when it is not an image."""
        name = entry["name"]
        content_type = entry.get("contentType")
        if not is_image(name, content_type):
            return None

        thumb_key = derive_thumb_key(name)
        return Item(
            key=name,
            display_url=self.storage.presign(name),
            thumb_url=self.storage.presign(thumb_key) if thumb_key else None,
            byte_size=entry.get("contentLength"),
            media_type=content_type or mimetypes.guess_type(name)[0],
            last_modified=_parse_timestamp(entry.get("lastModified")),
        )

    def fetch_page(self, cursor: str | None = None) -> Page:
        """
        Fetch one page of images starting at cursor (None = beginning).

        Raises:
            AuthExpiredError: credential rejected (403-class)
            UpstreamError: any other upstream failure
        """
        entries, next_cursor = self.storage.list_objects(self.prefix, cursor, self.page_size)

        items = []
        for entry in entries:
            item = self.to_item(entry)
            if item is not None:
                items.append(item)

        logger.debug(
            "Listed %d entries (%d images), more=%s", len(entries), len(items), next_cursor is not None
        )
        return Page(items=tuple(items), continuation_cursor=next_cursor)

    def iter_pages(self) -> Iterator[Page]:
        """Walk the whole listing, one page at a time, until the cursor is absent."""
        cursor = None
        while True:
            page = self.fetch_page(cursor)
            yield page
            if page.continuation_cursor is None:
                return
            cursor = page.continuation_cursor

    def mint_url(self, container: str, key: str) -> str:
        """Time-limited URL for an arbitrary object."""
        return self.storage.presign(key, container=container)

    def refresh_items(self, items: list[Item]) -> list[Item]:
        """Re-mint display and thumbnail URLs for items whose URLs went stale."""
        refreshed = []
        for item in items:
            thumb_key = derive_thumb_key(item.key)
            refreshed.append(item.with_urls(
                self.storage.presign(item.key),
                self.storage.presign(thumb_key) if thumb_key else None,
            ))
        return refreshed

    def update_credentials(self, credentials: Credentials) -> None:
        self.storage.update_credentials(credentials)
