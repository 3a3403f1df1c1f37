"""Authorization server discovery per OpenID Connect Discovery and RFC 8414.

This module handles:
- Fetching the authorization server metadata document from the authority
- Caching it for the lifetime of the process
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

# Hosts allowed to use plain HTTP, for local development servers
LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}


def _http_status_hint(status_code: int) -> str:
    """Get a user-friendly hint for common HTTP status codes."""
    hints = {
        403: "Access forbidden - check if you have permission to access this resource",
        404: "Endpoint not found - the server may not support discovery at this URL",
        500: "Server error - the authorization server may be experiencing issues",
        502: "Bad gateway - there may be a proxy or network issue",
        503: "Service unavailable - the server may be temporarily down",
    }
    return hints.get(status_code, "")


class DiscoveryError(Exception):
    """Error during OAuth metadata discovery."""

    pass


def _require_https(url: str, context: str) -> None:
    """Validate that a URL uses HTTPS, unless it points at a loopback host.

    Raises:
        DiscoveryError: If the URL doesn't use HTTPS
    """
    parsed = urlparse(url)
    if parsed.scheme == "https":
        return
    if parsed.scheme == "http" and parsed.hostname in LOOPBACK_HOSTS:
        return
    raise DiscoveryError(f"{context} must use HTTPS for security, got: {url}")


@dataclass
class AuthServerMetadata:
    """Authorization server metadata.

    Contains the endpoints and capabilities the desktop client needs.
    """

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    end_session_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    scopes_supported: list[str] | None = None
    grant_types_supported: list[str] = field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    code_challenge_methods_supported: list[str] | None = None

    def supports_pkce(self) -> bool:
        """Check if the server supports PKCE with S256.

        Servers that do not advertise their PKCE methods are assumed to
        support S256.
        """
        if self.code_challenge_methods_supported is None:
            return True
        return "S256" in self.code_challenge_methods_supported

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthServerMetadata":
        """Create from JSON response.

        Raises:
            DiscoveryError: If a required field is missing or an endpoint is insecure
        """
        try:
            auth_endpoint = data["authorization_endpoint"]
            token_endpoint = data["token_endpoint"]
            issuer = data["issuer"]
        except KeyError as e:
            raise DiscoveryError(f"Authorization server metadata missing required field: {e}") from e

        _require_https(auth_endpoint, "Authorization endpoint")
        _require_https(token_endpoint, "Token endpoint")

        return cls(
            issuer=issuer,
            authorization_endpoint=auth_endpoint,
            token_endpoint=token_endpoint,
            end_session_endpoint=data.get("end_session_endpoint"),
            userinfo_endpoint=data.get("userinfo_endpoint"),
            scopes_supported=data.get("scopes_supported"),
            grant_types_supported=data.get(
                "grant_types_supported", ["authorization_code", "refresh_token"]
            ),
            code_challenge_methods_supported=data.get("code_challenge_methods_supported"),
        )


def construct_discovery_urls(authority: str) -> list[str]:
    """Build the metadata URLs to try for an authority, in priority order.

    The OIDC document is appended to the authority path; the RFC 8414
    document lives at the host root.
    """
    parsed = urlparse(authority)
    base_url = f"{parsed.scheme}://{parsed.netloc}"
    path = parsed.path.rstrip("/")

    urls = [f"{base_url}{path}/.well-known/openid-configuration"]
    if path:
        urls.append(f"{base_url}/.well-known/oauth-authorization-server{path}")
    urls.append(f"{base_url}/.well-known/oauth-authorization-server")
    return urls


async def fetch_auth_server_metadata(
    authority: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> AuthServerMetadata:
    """Fetch authorization server metadata.

    Tries the OIDC discovery endpoint first, then RFC 8414.

    Args:
        authority: The authorization server base URL from configuration
        http_client: Optional HTTP client to use
        timeout: Request timeout in seconds

    Returns:
        AuthServerMetadata instance

    Raises:
        DiscoveryError: If metadata cannot be fetched or parsed
    """
    _require_https(authority, "Authority")

    client = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    errors: list[tuple[str, str]] = []  # (endpoint, error_message)

    try:
        for endpoint in construct_discovery_urls(authority):
            logger.debug(f"Trying metadata endpoint: {endpoint}")
            try:
                response = await client.get(endpoint)

                if response.status_code == 200:
                    try:
                        data = response.json()
                    except (ValueError, TypeError) as e:
                        errors.append((endpoint, f"Invalid JSON response: {e}"))
                        continue

                    if not isinstance(data, dict):
                        errors.append((endpoint, "Metadata document is not a JSON object"))
                        continue

                    logger.debug(f"Fetched authorization server metadata from {endpoint}")
                    return AuthServerMetadata.from_dict(data)

                hint = _http_status_hint(response.status_code)
                error_msg = f"HTTP {response.status_code}"
                if hint:
                    error_msg += f" ({hint})"
                errors.append((endpoint, error_msg))

            except httpx.ConnectError as e:
                errors.append((endpoint, f"Connection failed: {e}"))
            except httpx.TimeoutException as e:
                errors.append((endpoint, f"Timeout: {e}"))
            except httpx.RequestError as e:
                errors.append((endpoint, f"Network error: {e}"))

        error_details = "\n".join(f"  - {ep}: {err}" for ep, err in errors)
        raise DiscoveryError(
            f"Failed to fetch authorization server metadata from {authority}.\n"
            f"Tried the following endpoints:\n{error_details}"
        )

    finally:
        if should_close:
            await client.aclose()


class MetadataCache:
    """Fetches authorization server metadata once per process.

    Concurrent callers share a single fetch. A failed fetch is not cached,
    so the next caller tries again.
    """

    def __init__(
        self,
        authority: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.authority = authority
        self._http_client = http_client
        self._timeout = timeout
        self._metadata: AuthServerMetadata | None = None
        self._lock: asyncio.Lock | None = None

    @property
    def cached(self) -> AuthServerMetadata | None:
        return self._metadata

    async def get_metadata(self) -> AuthServerMetadata:
        """Return the cached metadata, fetching it on first use.

        Raises:
            DiscoveryError: If the metadata cannot be fetched
        """
        if self._metadata is not None:
            return self._metadata

        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            if self._metadata is None:
                metadata = await fetch_auth_server_metadata(
                    self.authority, self._http_client, self._timeout
                )
                if not metadata.supports_pkce():
                    raise DiscoveryError(
                        f"Authorization server {metadata.issuer} does not support PKCE with S256"
                    )
                self._metadata = metadata
                logger.info(f"Authorization server: {metadata.issuer}")

        return self._metadata
