"""
OAuth credential issuing.

Exchanges the long-lived static key for a short-lived bearer token.
"""

import logging
import uuid
from typing import Optional

import httpx

from ..config.loader import ApiScope
from ..core.credentials import Credential
from ..core.errors import CredentialUnavailable

logger = logging.getLogger(__name__)


class OAuthTokenIssuer:
    """Calls the credential-issuing endpoint.

    Instances are async callables, so they plug straight into
    TokenLifecycleManager as its issuer.
    """

    def __init__(
        self,
        auth_key: str,
        auth_url: str,
        scope: ApiScope = ApiScope.PERSONAL,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the issuer.

        Args:
            auth_key: Pre-shared static key, sent as-is in a Basic header
            auth_url: Credential-issuing endpoint URL
            scope: Access scope requested for the token
            http_client: HTTP client to use (a private one is created if omitted)

        Raises:
            ValueError: If auth_key is missing/empty
        """
        if not auth_key or not auth_key.strip():
            raise ValueError("auth_key is required and cannot be empty")

        self.auth_key = auth_key.strip()
        self.auth_url = auth_url
        self.scope = scope
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()

    async def __call__(self) -> Credential:
        """Request a new bearer token.

        Returns:
            Credential with the issued token and its expiry

        Raises:
            CredentialUnavailable: On non-success status or malformed body
        """
        headers = {
            "Authorization": f"Basic {self.auth_key}",
            "RqUID": str(uuid.uuid4()),
            "Accept": "application/json",
        }

        try:
            response = await self._client.post(
                self.auth_url,
                data={"scope": self.scope.value},
                headers=headers,
            )
        except httpx.RequestError as e:
            raise CredentialUnavailable(f"Token request failed: {e}") from e

        if response.status_code != 200:
            raise CredentialUnavailable(
                f"Token request failed: {response.status_code}, {response.text[:500]}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise CredentialUnavailable(f"Token response is not valid JSON: {e}") from e

        return self._parse(body)

    @staticmethod
    def _parse(body) -> Credential:
        if not isinstance(body, dict):
            raise CredentialUnavailable("Token response must be a JSON object")

        token = body.get("access_token")
        if not isinstance(token, str) or not token.strip():
            raise CredentialUnavailable("Token response is missing 'access_token'")

        expires_at = body.get("expires_at")
        if isinstance(expires_at, bool) or not isinstance(expires_at, int):
            raise CredentialUnavailable("Token response is missing integer 'expires_at'")

        return Credential.from_epoch_millis(token, expires_at)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
