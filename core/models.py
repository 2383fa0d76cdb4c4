"""
Value types shared by the listing client, the session and the web layer.

Items are immutable once created; only their presigned URLs go stale, which
is handled by re-minting a new Item (see ListingClient.refresh_items).
"""

from dataclasses import dataclass, field, replace
from datetime import datetime

from core.errors import CredentialRefreshError


@dataclass(frozen=True)
class Item:
    """
    One image in the gallery.

    Attributes:
        key: Storage path, unique and stable identity
        display_url: Time-limited URL for the full image
        thumb_url: Time-limited URL for the derived thumbnail, if any
        byte_size: Content length reported by the store
        media_type: Declared content type
        last_modified: Last-modified timestamp from the store
    """
    key: str
    display_url: str
    thumb_url: str | None = None
    byte_size: int | None = None
    media_type: str | None = None
    last_modified: datetime | None = None

    @property
    def file_name(self) -> str:
        return self.key.rsplit("/", 1)[-1] or self.key

    def with_urls(self, display_url: str, thumb_url: str | None) -> "Item":
        return replace(self, display_url=display_url, thumb_url=thumb_url)

    def to_dict(self) -> dict:
        """Wire shape used by the JSON proxy. Absent fields are omitted."""
        data = {"key": self.key, "displayUrl": self.display_url}
        if self.thumb_url is not None:
            data["thumbUrl"] = self.thumb_url
        if self.byte_size is not None:
            data["byteSize"] = self.byte_size
        if self.media_type is not None:
            data["mediaType"] = self.media_type
        if self.last_modified is not None:
            data["lastModified"] = self.last_modified.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Item":
        """
        Parse the wire shape.

        Also accepts the older {name, url, size, contentType} field names so
        clients built against the first proxy revision keep working.

        Raises:
            ValueError: if the entry has no key
        """
        key = data.get("key") or data.get("name")
        if not key:
            raise ValueError("Item is missing required field: key")

        last_modified = data.get("lastModified")
        if isinstance(last_modified, str):
            last_modified = datetime.fromisoformat(last_modified.replace("Z", "+00:00"))

        return cls(
            key=key,
            display_url=data.get("displayUrl") or data.get("url") or "",
            thumb_url=data.get("thumbUrl"),
            byte_size=data.get("byteSize", data.get("size")),
            media_type=data.get("mediaType", data.get("contentType")),
            last_modified=last_modified,
        )


@dataclass(frozen=True)
class Page:
    """One upstream page. An absent cursor means end-of-collection."""
    items: tuple[Item, ...] = field(default_factory=tuple)
    continuation_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.continuation_cursor is not None

    def to_dict(self) -> dict:
        data = {
            "images": [item.to_dict() for item in self.items],
            "hasMore": self.has_more,
        }
        if self.continuation_cursor is not None:
            data["continuationToken"] = self.continuation_cursor
        return data


@dataclass(frozen=True)
class Credentials:
    """Access credential for the object store."""
    access_key_id: str
    secret_access_key: str
    session_token: str | None = None

    def __repr__(self) -> str:
        # Never leak the secret into logs
        return f"Credentials(access_key_id={self.access_key_id!r}, secret_access_key='***')"

    @classmethod
    def from_refresh_payload(cls, payload: dict) -> "Credentials":
        """Build credentials from a refresh endpoint response (camelCase or snake_case)."""
        if not isinstance(payload, dict):
            raise CredentialRefreshError("Refresh response is not a JSON object")

        key_id = payload.get("accessKeyId") or payload.get("access_key_id")
        secret = payload.get("secretAccessKey") or payload.get("secret_access_key")
        token = (
            payload.get("sessionToken")
            or payload.get("session_token")
            or payload.get("token")
        )
        if not key_id or not secret:
            raise CredentialRefreshError("No credentials in refresh response")
        return cls(access_key_id=key_id, secret_access_key=secret, session_token=token)


_SIZE_UNITS = ["B", "KB", "MB", "GB"]


def format_file_size(size: int | None) -> str:
    """Human-readable byte size for the lightbox header ("" when unknown)."""
    if not size:
        return ""
    exponent = 0
    while size >= 1024 ** (exponent + 1) and exponent < len(_SIZE_UNITS) - 1:
        exponent += 1
    value = round(size / 1024 ** exponent, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {_SIZE_UNITS[exponent]}"
