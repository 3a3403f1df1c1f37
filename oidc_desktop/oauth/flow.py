"""OAuth authorization code flow with PKCE.

This module orchestrates one login attempt:
1. Get the authorization server metadata
2. Generate state and PKCE values for the attempt
3. Build the authorization URL and open the system browser
4. Wait for the loopback listener to deliver the login response
5. Validate the response against the attempt
6. Exchange the authorization code for tokens

It also contains the token endpoint requests shared with the OAuthManager.
"""

import asyncio
import logging
from typing import Any, Callable
from urllib.parse import urlencode

import httpx

from ..config import OAuthConfiguration
from ..errors import ClassifiedError, ErrorCodes, ErrorHandler
from .browser import BrowserLauncher, open_system_browser
from .callback import CallbackFailure, CallbackResult
from .channel import LoginAbandonedError, LoginSupersededError, LoopbackResponseChannel
from .correlator import LoginAttemptState, StateCorrelator
from .discovery import AuthServerMetadata, DiscoveryError, MetadataCache
from .tokens import TokenSet

logger = logging.getLogger(__name__)


class OAuthFlowError(Exception):
    """Error during OAuth flow."""

    pass


class TokenExchangeError(OAuthFlowError):
    """The token endpoint rejected a request or returned an unusable response.

    Attributes:
        error: OAuth error code from the response body, if any
        error_description: OAuth error description from the response body, if any
        status_code: HTTP status, or 0 when no response was received
    """

    def __init__(
        self,
        message: str,
        error: str | None = None,
        error_description: str | None = None,
        status_code: int = 0,
    ):
        super().__init__(message)
        self.error = error
        self.error_description = error_description
        self.status_code = status_code


class CallbackTimeoutError(OAuthFlowError):
    """Timeout waiting for the login response."""

    pass


def build_authorization_url(
    auth_server_metadata: AuthServerMetadata,
    client_id: str,
    redirect_uri: str,
    code_challenge: str,
    state: str,
    scope: str | None = None,
) -> str:
    """Build the authorization URL for browser redirect.

    Args:
        auth_server_metadata: Authorization server metadata
        client_id: The client ID
        redirect_uri: The loopback redirect URI
        code_challenge: PKCE code challenge
        state: State parameter for CSRF protection
        scope: Space-separated scopes to request

    Returns:
        Complete authorization URL
    """
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }

    if scope:
        params["scope"] = scope

    auth_url = auth_server_metadata.authorization_endpoint
    separator = "&" if "?" in auth_url else "?"
    return f"{auth_url}{separator}{urlencode(params)}"


async def _post_token_request(
    token_endpoint: str,
    token_request: dict[str, str],
    context: str,
    http_client: httpx.AsyncClient | None,
) -> dict[str, Any]:
    """POST a form-encoded grant to the token endpoint.

    Raises:
        TokenExchangeError: On transport errors, error responses and
            responses without an access token
    """
    http = http_client or httpx.AsyncClient(timeout=30.0)
    should_close = http_client is None

    try:
        response = await http.post(
            token_endpoint,
            data=token_request,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        if response.status_code != 200:
            error = None
            error_description = None
            try:
                error_data = response.json()
                # Only extract safe error fields, not arbitrary response data
                if isinstance(error_data, dict):
                    error = error_data.get("error")
                    error_description = error_data.get("error_description")
            except ValueError:
                # Don't include raw response body - it might contain tokens or secrets
                pass

            error_detail = f": {error} - {error_description or ''}" if error else ""
            raise TokenExchangeError(
                f"{context} failed (HTTP {response.status_code}){error_detail}",
                error=error,
                error_description=error_description,
                status_code=response.status_code,
            )

        try:
            result = response.json()
        except ValueError as e:
            raise TokenExchangeError(
                f"{context} returned a response that was not valid JSON",
                status_code=response.status_code,
            ) from e

        if not isinstance(result, dict) or not result.get("access_token"):
            raise TokenExchangeError(
                f"{context} response did not contain an access token",
                status_code=response.status_code,
            )

        return result

    except httpx.RequestError as e:
        raise TokenExchangeError(f"Network error during {context.lower()}: {e}") from e
    finally:
        if should_close:
            await http.aclose()


async def exchange_code_for_tokens(
    auth_server_metadata: AuthServerMetadata,
    client_id: str,
    code: str,
    redirect_uri: str,
    code_verifier: str,
    http_client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Exchange an authorization code for tokens.

    Args:
        auth_server_metadata: Authorization server metadata
        client_id: The client ID
        code: Authorization code from the login response
        redirect_uri: The redirect URI used in the authorization request
        code_verifier: PKCE code verifier for the attempt
        http_client: Optional HTTP client

    Returns:
        Token endpoint response as dictionary

    Raises:
        TokenExchangeError: If token exchange fails
    """
    token_request: dict[str, str] = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "code_verifier": code_verifier,
    }
    return await _post_token_request(
        auth_server_metadata.token_endpoint, token_request, "Token exchange", http_client
    )


async def refresh_tokens(
    auth_server_metadata: AuthServerMetadata,
    client_id: str,
    refresh_token_value: str,
    scope: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Send a refresh_token grant.

    Args:
        auth_server_metadata: Authorization server metadata
        client_id: The client ID
        refresh_token_value: The refresh token
        scope: Space-separated scopes for the new access token
        http_client: Optional HTTP client

    Returns:
        Token endpoint response as dictionary

    Raises:
        TokenExchangeError: If refresh fails
    """
    token_request: dict[str, str] = {
        "grant_type": "refresh_token",
        "client_id": client_id,
        "refresh_token": refresh_token_value,
    }
    if scope:
        token_request["scope"] = scope

    return await _post_token_request(
        auth_server_metadata.token_endpoint, token_request, "Token refresh", http_client
    )


class LoginOrchestrator:
    """Drives one browser login attempt end to end.

    The browser and the loopback listener are injected: the orchestrator
    only needs a function that opens a URL and a channel on which the
    login response arrives.

    Usage:
        orchestrator = LoginOrchestrator(config, metadata_cache, channel)
        tokens = await orchestrator.login(redirect_uri)
    """

    def __init__(
        self,
        config: OAuthConfiguration,
        metadata_cache: MetadataCache,
        channel: LoopbackResponseChannel,
        correlator: StateCorrelator | None = None,
        open_browser: BrowserLauncher = open_system_browser,
        http_client: httpx.AsyncClient | None = None,
        on_status: Callable[[str], None] | None = None,
    ):
        self.config = config
        self.metadata_cache = metadata_cache
        self.channel = channel
        self.correlator = correlator or StateCorrelator()
        self.open_browser = open_browser
        self.http_client = http_client
        self.on_status = on_status or (lambda msg: None)

    def _emit_status(self, message: str) -> None:
        logger.info(message)
        self.on_status(message)

    async def login(self, redirect_uri: str) -> TokenSet:
        """Run a login attempt.

        Waits for the login response without a time limit unless the
        configuration sets callback_timeout.

        Args:
            redirect_uri: The loopback redirect URI the listener serves

        Returns:
            TokenSet issued by the authorization server

        Raises:
            ClassifiedError: login_request_failed, login_response_failed or
                state_mismatch
        """
        try:
            metadata = await self.metadata_cache.get_metadata()
        except DiscoveryError as e:
            raise ErrorHandler.from_login_request(e, ErrorCodes.LOGIN_REQUEST_FAILED) from e

        attempt = self.correlator.begin_attempt(redirect_uri)

        # Subscribe before the browser opens so a fast response is not dropped
        waiter = self.channel.subscribe_once()

        auth_url = build_authorization_url(
            metadata,
            self.config.client_id,
            redirect_uri,
            attempt.code_challenge,
            attempt.state,
            self.config.scope,
        )
        self._emit_status("Opening browser for login...")
        self.open_browser(auth_url)

        try:
            callback = await self._wait_for_response(waiter)
        except (ClassifiedError, asyncio.CancelledError):
            self.correlator.discard(attempt)
            raise

        return await self._complete_login(metadata, attempt, callback)

    async def _wait_for_response(
        self, waiter: "asyncio.Future[CallbackResult]"
    ) -> CallbackResult:
        try:
            if self.config.callback_timeout:
                return await asyncio.wait_for(waiter, timeout=self.config.callback_timeout)
            return await waiter

        except (LoginSupersededError, LoginAbandonedError) as e:
            raise ErrorHandler.from_login_request(e, ErrorCodes.LOGIN_REQUEST_FAILED) from e
        except asyncio.TimeoutError as e:
            timeout_error = CallbackTimeoutError(
                f"Timeout waiting for the login response after {self.config.callback_timeout} seconds"
            )
            raise ErrorHandler.from_login_request(
                timeout_error, ErrorCodes.LOGIN_REQUEST_FAILED
            ) from e
        finally:
            self.channel.unsubscribe(waiter)

    async def _complete_login(
        self,
        metadata: AuthServerMetadata,
        attempt: LoginAttemptState,
        callback: CallbackResult,
    ) -> TokenSet:
        self.correlator.validate(attempt, callback)

        if isinstance(callback, CallbackFailure):
            logger.info(f"Login response returned error: {callback.error}")
            raise ErrorHandler.from_login_response(callback, ErrorCodes.LOGIN_RESPONSE_FAILED)

        self._emit_status("Exchanging code for tokens...")
        try:
            token_response = await exchange_code_for_tokens(
                metadata,
                self.config.client_id,
                callback.code,
                attempt.redirect_uri,
                attempt.code_verifier,
                self.http_client,
            )
        except TokenExchangeError as e:
            raise ErrorHandler.from_login_request(e, ErrorCodes.LOGIN_REQUEST_FAILED) from e

        self._emit_status("Successfully logged in")
        return TokenSet.from_token_response(token_response)
