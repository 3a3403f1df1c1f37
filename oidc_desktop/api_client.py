"""API client that sends access tokens and classifies API failures."""

import logging
from typing import TYPE_CHECKING, Any

import httpx

from .errors import ErrorHandler

if TYPE_CHECKING:
    from .oauth.manager import OAuthManager

logger = logging.getLogger(__name__)


class ApiClient:
    """Calls the application's API with the current access token.

    When the API returns 401 the access token is refreshed once and the
    request retried. Every failure is raised as a ClassifiedError.
    """

    def __init__(
        self,
        base_url: str,
        authenticator: "OAuthManager",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.authenticator = authenticator
        self._http_client = http_client
        self._timeout = timeout

    async def get(self, path: str) -> Any:
        """GET a JSON resource from the API.

        Raises:
            ClassifiedError: login_required, token errors, or api_* errors
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        client = self._http_client or httpx.AsyncClient(timeout=self._timeout)
        should_close = self._http_client is None

        try:
            token = await self.authenticator.get_access_token()
            response = await self._send(client, url, token)

            if response.status_code == 401:
                logger.info("API rejected the access token, refreshing and retrying")
                token = await self.authenticator.refresh_access_token()
                response = await self._send(client, url, token)

            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise ErrorHandler.from_api_error(e, url) from e

            try:
                return response.json()
            except ValueError as e:
                raise ErrorHandler.from_api_error(e, url, response.status_code) from e

        finally:
            if should_close:
                await client.aclose()

    async def _send(self, client: httpx.AsyncClient, url: str, token: str) -> httpx.Response:
        try:
            return await client.get(
                url,
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
        except httpx.RequestError as e:
            raise ErrorHandler.from_api_error(e, url) from e
