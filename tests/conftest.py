"""Shared fixtures and utilities for oidc-desktop tests."""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from oidc_desktop.config import AppConfiguration, Config, OAuthConfiguration
from oidc_desktop.oauth.discovery import AuthServerMetadata


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def oauth_config() -> OAuthConfiguration:
    """Create a sample OAuth configuration."""
    return OAuthConfiguration(
        authority="https://login.example.com/oauth2/default",
        client_id="desktop-app",
        scope="openid profile offline_access",
    )


@pytest.fixture
def sample_config(oauth_config: OAuthConfiguration) -> Config:
    """Create a complete configuration with an API base URL."""
    return Config(
        oauth=oauth_config,
        app=AppConfiguration(api_base_url="https://api.example.com/api"),
        config_path=Path("desktop.config.json"),
        env_path=None,
    )


@pytest.fixture
def metadata_document() -> dict[str, Any]:
    """A discovery document as returned by an OpenID Connect provider."""
    return {
        "issuer": "https://login.example.com/oauth2/default",
        "authorization_endpoint": "https://login.example.com/oauth2/default/v1/authorize",
        "token_endpoint": "https://login.example.com/oauth2/default/v1/token",
        "end_session_endpoint": "https://login.example.com/oauth2/default/v1/logout",
        "userinfo_endpoint": "https://login.example.com/oauth2/default/v1/userinfo",
        "scopes_supported": ["openid", "profile", "offline_access"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "code_challenge_methods_supported": ["S256"],
    }


@pytest.fixture
def auth_metadata(metadata_document: dict[str, Any]) -> AuthServerMetadata:
    """Parsed authorization server metadata."""
    return AuthServerMetadata.from_dict(metadata_document)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a desktop.config.json to a temp directory."""
    path = tmp_path / "desktop.config.json"
    path.write_text(
        json.dumps(
            {
                "app": {"apiBaseUrl": "https://api.example.com/api/"},
                "oauth": {
                    "authority": "https://login.example.com/oauth2/default",
                    "clientId": "desktop-app",
                    "scope": "openid profile offline_access",
                },
            }
        )
    )
    return path


# ============================================================================
# HTTP Mock Fixtures
# ============================================================================


@pytest.fixture
def make_response() -> Callable[..., MagicMock]:
    """Factory for mock httpx responses.

    Pass json_data for a JSON body, or invalid_json=True for a body that
    fails to parse.
    """

    def _make(
        status_code: int = 200,
        json_data: Any = None,
        invalid_json: bool = False,
    ) -> MagicMock:
        response = MagicMock()
        response.status_code = status_code
        if invalid_json:
            response.json.side_effect = ValueError("Expecting value")
        else:
            response.json.return_value = json_data
        return response

    return _make


@pytest.fixture
def mock_http() -> AsyncMock:
    """Mock httpx.AsyncClient; set .get or .post return values per test."""
    http = AsyncMock()
    http.aclose = AsyncMock()
    return http
