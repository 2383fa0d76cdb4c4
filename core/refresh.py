"""
Token-refresh collaborator.

Calls the configured refresh endpoint and turns its JSON response into
Credentials. Any failure surfaces as CredentialRefreshError so the UI can
show it apart from the listing error that caused the refresh.
"""

import logging

import httpx

from core.errors import CredentialRefreshError
from core.models import Credentials

logger = logging.getLogger(__name__)


class HttpCredentialRefresher:
    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    async def __call__(self) -> Credentials:
        if not self.url:
            raise CredentialRefreshError("No credential refresh URL configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.url)
        except httpx.HTTPError as e:
            raise CredentialRefreshError(f"Connection error: {e}") from e

        if response.status_code != 200:
            raise CredentialRefreshError(
                f"Failed to refresh credentials: {response.status_code}",
                status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise CredentialRefreshError("Refresh response is not valid JSON") from e

        return Credentials.from_refresh_payload(payload)
