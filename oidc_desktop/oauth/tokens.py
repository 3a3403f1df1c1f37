"""OAuth token data structures.

This module provides the TokenSet dataclass holding the tokens issued to
the desktop client. Token sets are immutable: the OAuthManager replaces
the whole set on login or refresh, so a reader never sees a mix of old
and new values.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenSet:
    """Tokens issued by the authorization server.

    Attributes:
        access_token: The access token sent to APIs. None only after the
            refresh token test hook has discarded it to force a refresh.
        id_token: Optional OpenID Connect id token
        refresh_token: Optional refresh token for obtaining new access tokens
    """

    access_token: str | None
    id_token: str | None = None
    refresh_token: str | None = None

    def has_refresh_token(self) -> bool:
        """Check if this token set has a refresh token."""
        return self.refresh_token is not None and len(self.refresh_token) > 0

    @classmethod
    def from_token_response(cls, response: dict[str, Any]) -> "TokenSet":
        """Create TokenSet from OAuth token endpoint response.

        Args:
            response: JSON response from token endpoint

        Returns:
            TokenSet instance
        """
        return cls(
            access_token=response["access_token"],
            id_token=response.get("id_token") or None,
            refresh_token=response.get("refresh_token") or None,
        )

    def refreshed_with(self, response: dict[str, Any]) -> "TokenSet":
        """Build the token set that results from a refresh_token grant.

        Servers with rolling refresh tokens may omit unchanged fields from
        the response, in which case the current refresh and id tokens are
        kept.

        Args:
            response: JSON response from token endpoint

        Returns:
            New TokenSet instance
        """
        issued = TokenSet.from_token_response(response)
        return TokenSet(
            access_token=issued.access_token,
            id_token=issued.id_token or self.id_token,
            refresh_token=issued.refresh_token or self.refresh_token,
        )

    def with_expired_access_token(self) -> "TokenSet":
        """Return a copy whose access token the API will reject."""
        if not self.access_token:
            return self
        return replace(self, access_token=f"x{self.access_token}x")

    def with_expired_refresh_token(self) -> "TokenSet":
        """Return a copy whose refresh token the authorization server will reject.

        The access token is dropped so the next request goes through a refresh.
        """
        if not self.has_refresh_token():
            return self
        return replace(self, access_token=None, refresh_token=f"x{self.refresh_token}x")

    def __repr__(self) -> str:
        # Never print token values
        return (
            f"TokenSet(access_token={'***' if self.access_token else None}, "
            f"id_token={'***' if self.id_token else None}, "
            f"refresh_token={'***' if self.refresh_token else None})"
        )
