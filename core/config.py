"""
Configuration for the gallery application.

Contains:
- Server configuration (environment-based, never fatal)
- Gallery configuration (object store connection, listing options)

Server config is read from environment variables with sensible defaults.
Gallery config is read by load_gallery_config() at startup; missing required
values raise ConfigError and the app refuses to start.
"""

import os
from dataclasses import dataclass

from core.errors import ConfigError
from core.models import Credentials

# =============================================================================
# Server Configuration (from environment variables)
# =============================================================================

# Network binding
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5001"))

# Debug mode (enables hot reload, verbose logging)
DEBUG = os.getenv("DEBUG", "true").lower() == "true"

SESSION_SECRET = os.getenv("SESSION_SECRET", "dev-secret-change-in-production")

LOG_DIR = os.getenv("GALLERY_LOG_DIR", "logs")
LOG_LEVEL = os.getenv("GALLERY_LOG_LEVEL", "INFO").upper()

# =============================================================================
# Gallery Configuration
# =============================================================================

DEFAULT_PAGE_SIZE = 300
DEFAULT_URL_EXPIRY = 3600  # seconds a presigned URL stays valid

REQUIRED_VARS = {
    "account_url": "GALLERY_ACCOUNT_URL",
    "container": "GALLERY_CONTAINER",
    "access_key_id": "GALLERY_ACCESS_KEY_ID",
    "secret_access_key": "GALLERY_SECRET_ACCESS_KEY",
    "refresh_url": "GALLERY_REFRESH_URL",
}


@dataclass(frozen=True)
class GalleryConfig:
    account_url: str
    container: str
    access_key_id: str
    secret_access_key: str
    refresh_url: str
    session_token: str | None = None
    prefix: str = ""
    page_size: int = DEFAULT_PAGE_SIZE
    url_expiry: int = DEFAULT_URL_EXPIRY
    region: str = "auto"

    def credentials(self) -> Credentials:
        return Credentials(
            access_key_id=self.access_key_id,
            secret_access_key=self.secret_access_key,
            session_token=self.session_token,
        )


def _positive_int(environ, name: str, default: int) -> int:
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def load_gallery_config(environ=None) -> GalleryConfig:
    """
    Read gallery configuration from the environment.

    Args:
        environ: Mapping to read from (default: os.environ)

    Returns:
        GalleryConfig

    Raises:
        ConfigError: listing every missing required variable, or on a
            malformed numeric option
    """
    if environ is None:
        environ = os.environ

    values = {field: environ.get(var, "").strip() for field, var in REQUIRED_VARS.items()}
    missing = [REQUIRED_VARS[field] for field, value in values.items() if not value]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    return GalleryConfig(
        account_url=values["account_url"].rstrip("/"),
        container=values["container"],
        access_key_id=values["access_key_id"],
        secret_access_key=values["secret_access_key"],
        refresh_url=values["refresh_url"],
        session_token=environ.get("GALLERY_SESSION_TOKEN", "").strip() or None,
        prefix=environ.get("GALLERY_PREFIX", ""),
        page_size=_positive_int(environ, "GALLERY_PAGE_SIZE", DEFAULT_PAGE_SIZE),
        url_expiry=_positive_int(environ, "GALLERY_URL_EXPIRY", DEFAULT_URL_EXPIRY),
        region=environ.get("GALLERY_REGION", "").strip() or "auto",
    )
