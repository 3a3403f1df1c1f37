"""OAuth 2.0 / OpenID Connect login support for desktop apps.

This package implements the Authorization Code flow with PKCE, using the
system browser and a loopback redirect, and manages the resulting tokens
in memory.

Main Components:
    OAuthManager: Token lifecycle and the entry point for the UI layer
    LoginOrchestrator: Runs one browser login attempt
    LoopbackResponseChannel: Hands login responses to the waiting attempt
    StateCorrelator: State and PKCE values per login attempt
    MetadataCache: Authorization server discovery
    TokenSet: Token data structure

Quick Start:
    from oidc_desktop.oauth import OAuthManager

    async with OAuthManager(config.oauth) as manager:
        if not manager.is_logged_in():
            await manager.login()
        token = await manager.get_access_token()
"""

from .browser import open_system_browser
from .callback import (
    CallbackError,
    CallbackFailure,
    CallbackResult,
    CallbackSuccess,
    LocalhostCallbackServer,
    parse_callback_url,
)
from .channel import LoginAbandonedError, LoginSupersededError, LoopbackResponseChannel
from .correlator import (
    LoginAttemptState,
    StateCorrelator,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from .discovery import AuthServerMetadata, DiscoveryError, MetadataCache, fetch_auth_server_metadata
from .flow import (
    CallbackTimeoutError,
    LoginOrchestrator,
    OAuthFlowError,
    TokenExchangeError,
    build_authorization_url,
    exchange_code_for_tokens,
    refresh_tokens,
)
from .manager import OAuthManager
from .tokens import TokenSet

__all__ = [
    # Manager (main entry point)
    "OAuthManager",
    # Flow
    "LoginOrchestrator",
    "OAuthFlowError",
    "TokenExchangeError",
    "CallbackTimeoutError",
    "build_authorization_url",
    "exchange_code_for_tokens",
    "refresh_tokens",
    # Discovery
    "MetadataCache",
    "AuthServerMetadata",
    "DiscoveryError",
    "fetch_auth_server_metadata",
    # Tokens
    "TokenSet",
    # Correlation
    "StateCorrelator",
    "LoginAttemptState",
    "generate_code_verifier",
    "generate_code_challenge",
    "generate_state",
    # Loopback
    "LoopbackResponseChannel",
    "LoginSupersededError",
    "LoginAbandonedError",
    "LocalhostCallbackServer",
    "CallbackResult",
    "CallbackSuccess",
    "CallbackFailure",
    "CallbackError",
    "parse_callback_url",
    # Browser
    "open_system_browser",
]
