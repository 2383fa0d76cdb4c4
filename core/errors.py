"""
Error taxonomy for the gallery.

- ConfigError: missing/invalid configuration, fatal at startup
- UpstreamError: listing or URL-generation failure (carries HTTP-equivalent status)
- AuthExpiredError: 403-class upstream failure, routed to credential refresh
- CredentialRefreshError: the refresh collaborator itself failed

Navigation out of bounds uses the builtin IndexError.
"""


class GalleryError(Exception):
    """Base class for all gallery errors."""


class ConfigError(GalleryError):
    """Required configuration is missing or malformed."""


class UpstreamError(GalleryError):
    """Non-success response from the object store."""

    def __init__(self, status: int, message: str):
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message


class AuthExpiredError(UpstreamError):
    """The access credential was rejected (expired or revoked)."""

    def __init__(self, message: str = "Access credential expired"):
        super().__init__(403, message)


class CredentialRefreshError(GalleryError):
    """The token-refresh collaborator could not produce new credentials."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
        self.message = message


def is_auth_failure(exc: BaseException) -> bool:
    """True for failures that must route to the credential handler, never retried."""
    return isinstance(exc, AuthExpiredError) or (
        isinstance(exc, UpstreamError) and exc.status == 403
    )
