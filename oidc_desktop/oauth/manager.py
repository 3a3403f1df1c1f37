"""High-level OAuth manager for oidc-desktop.

This module provides the interface the UI layer uses: it owns the token
set held in memory, serves access tokens, refreshes them, and runs browser
logins through the LoginOrchestrator.
"""

import asyncio
import logging
from typing import Any, Callable

import httpx

from ..config import OAuthConfiguration
from ..errors import ClassifiedError, ErrorCodes, ErrorHandler
from .browser import BrowserLauncher, open_system_browser
from .callback import LocalhostCallbackServer
from .channel import LoopbackResponseChannel
from .correlator import StateCorrelator
from .discovery import DiscoveryError, MetadataCache
from .flow import LoginOrchestrator, TokenExchangeError, refresh_tokens
from .tokens import TokenSet

logger = logging.getLogger(__name__)

# Token endpoint errors meaning the refresh token can no longer be used
REFRESH_TOKEN_EXPIRED_ERRORS = frozenset({"invalid_grant", ErrorCodes.REFRESH_TOKEN_EXPIRED})


class OAuthManager:
    """Manages the token set for the desktop app.

    The token set is only ever replaced as a whole, so callers never see
    a partially updated set. Concurrent refreshes share one request.

    Usage:
        async with OAuthManager(config) as manager:
            try:
                token = await manager.get_access_token()
            except ClassifiedError as e:
                if not e.is_login_required:
                    raise
                await manager.login()
                token = await manager.get_access_token()
    """

    def __init__(
        self,
        config: OAuthConfiguration,
        http_client: httpx.AsyncClient | None = None,
        open_browser: BrowserLauncher = open_system_browser,
        on_status: Callable[[str], None] | None = None,
    ):
        """Initialize the manager.

        Args:
            config: OAuth settings
            http_client: Optional HTTP client for discovery and token requests
            open_browser: Function that opens the authorization URL
            on_status: Callback for login progress messages
        """
        self.config = config
        self._http_client = http_client
        self.metadata_cache = MetadataCache(config.authority, http_client)
        self.channel = LoopbackResponseChannel()
        self.correlator = StateCorrelator()
        self.orchestrator = LoginOrchestrator(
            config,
            self.metadata_cache,
            self.channel,
            correlator=self.correlator,
            open_browser=open_browser,
            http_client=http_client,
            on_status=on_status,
        )

        self._tokens: TokenSet | None = None
        self._refresh_task: asyncio.Task[str] | None = None
        self._listener: LocalhostCallbackServer | None = None

    @property
    def tokens(self) -> TokenSet | None:
        """The current token set, or None when logged out."""
        return self._tokens

    def is_logged_in(self) -> bool:
        """Check if a token set is held."""
        return self._tokens is not None

    async def get_access_token(self) -> str:
        """Get an access token, refreshing it if none is cached.

        Raises:
            ClassifiedError: login_required when a login is needed, or
                token_refresh_failed
        """
        tokens = self._tokens
        if tokens is not None and tokens.access_token:
            return tokens.access_token

        return await self.refresh_access_token()

    async def refresh_access_token(self) -> str:
        """Use the refresh token to get a new access token.

        Concurrent callers share a single in-flight refresh.

        Raises:
            ClassifiedError: login_required when there is no usable refresh
                token, or token_refresh_failed for other failures
        """
        if self._refresh_task is None:
            tokens = self._tokens
            if tokens is None or not tokens.has_refresh_token():
                logger.debug("No refresh token available, login required")
                raise ErrorHandler.from_login_required()

            task = asyncio.ensure_future(self._perform_token_refresh(tokens))
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task

        # Shield so one cancelled caller does not cancel the shared refresh
        return await asyncio.shield(self._refresh_task)

    def _on_refresh_done(self, task: "asyncio.Task[str]") -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Mark the exception retrieved if every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def _perform_token_refresh(self, tokens: TokenSet) -> str:
        """Send the refresh token grant and store the result."""
        try:
            metadata = await self.metadata_cache.get_metadata()
            token_response = await refresh_tokens(
                metadata,
                self.config.client_id,
                tokens.refresh_token,  # type: ignore[arg-type]
                self.config.scope,
                self._http_client,
            )
        except TokenExchangeError as e:
            if e.error in REFRESH_TOKEN_EXPIRED_ERRORS:
                logger.info("Refresh token has expired, login required")
                if self._tokens is tokens:
                    self._tokens = None
                raise ErrorHandler.from_login_required() from e

            logger.warning(f"Token refresh failed: {e}")
            raise ErrorHandler.from_token_error(e, ErrorCodes.TOKEN_REFRESH_FAILED) from e
        except DiscoveryError as e:
            logger.warning(f"Discovery failed during token refresh: {e}")
            raise ErrorHandler.from_token_error(e, ErrorCodes.TOKEN_REFRESH_FAILED) from e

        if self._tokens is not tokens:
            # A login or logout happened while the request was in flight
            logger.debug("Token set changed during refresh, discarding refresh result")
            current = self._tokens
            if current is not None and current.access_token:
                return current.access_token
            raise ErrorHandler.from_login_required()

        new_tokens = tokens.refreshed_with(token_response)
        self._tokens = new_tokens
        logger.info("Access token refreshed")
        return new_tokens.access_token  # type: ignore[return-value]

    async def login(self) -> None:
        """Run a browser login and store the issued tokens.

        Starting a login while another is pending supersedes the pending one.

        Raises:
            ClassifiedError: login_request_failed, login_response_failed or
                state_mismatch
        """
        try:
            redirect_uri = await self._ensure_listener()
            tokens = await self.orchestrator.login(redirect_uri)
        except ClassifiedError:
            raise
        except Exception as e:
            raise ErrorHandler.from_login_request(e, ErrorCodes.LOGIN_REQUEST_FAILED) from e

        self._tokens = tokens
        logger.info("Login completed")

    async def _ensure_listener(self) -> str:
        if self._listener is None or not self._listener.is_running:
            self._listener = LocalhostCallbackServer(
                self.channel,
                port=self.config.loopback_port,
                path=self.config.callback_path,
            )
            await self._listener.start()
        return self._listener.redirect_uri

    def logout(self) -> None:
        """Clear the token set. Tokens are not revoked at the server."""
        self._tokens = None
        logger.info("Logged out")

    def expire_access_token(self) -> None:
        """Corrupt the access token so the API rejects it. For testing only."""
        if self._tokens is not None:
            self._tokens = self._tokens.with_expired_access_token()

    def expire_refresh_token(self) -> None:
        """Corrupt the refresh token so the authorization server rejects it.

        The access token is discarded, so the next call to get_access_token
        attempts a refresh. For testing only.
        """
        if self._tokens is not None:
            self._tokens = self._tokens.with_expired_refresh_token()

    async def aclose(self) -> None:
        """Abandon any pending login and stop the loopback listener."""
        self.channel.close()
        self.correlator.discard()
        if self._listener is not None:
            await self._listener.stop()
            self._listener = None

    async def __aenter__(self) -> "OAuthManager":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
