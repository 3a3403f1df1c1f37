"""Tests for config module."""

import json
import os
from pathlib import Path

import pytest

from oidc_desktop.config import (
    ConfigError,
    _resolve_env_vars,
    find_config_file,
    load_config,
    parse_app_config,
    parse_oauth_config,
)


@pytest.fixture
def isolated_search(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Restrict config and .env discovery to a temp directory."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("oidc_desktop.config.CONFIG_SEARCH_DIRS", [Path(".")])
    monkeypatch.setattr("oidc_desktop.config.ENV_SEARCH_PATHS", [Path(".env")])
    return tmp_path


class TestResolveEnvVars:
    """Tests for ${VAR} resolution."""

    def test_resolves_variable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test a variable is replaced by its value."""
        monkeypatch.setenv("OIDC_TEST_CLIENT", "abc")
        assert _resolve_env_vars("client-${OIDC_TEST_CLIENT}") == "client-abc"

    def test_missing_variable_is_empty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test a missing variable resolves to an empty string."""
        monkeypatch.delenv("OIDC_TEST_MISSING", raising=False)
        assert _resolve_env_vars("${OIDC_TEST_MISSING}") == ""

    def test_plain_string_unchanged(self) -> None:
        """Test strings without references are returned as is."""
        assert _resolve_env_vars("https://login.example.com") == "https://login.example.com"


class TestParseOAuthConfig:
    """Tests for parse_oauth_config function."""

    def test_defaults(self) -> None:
        """Test optional settings take their defaults."""
        config = parse_oauth_config(
            {"authority": "https://login.example.com", "clientId": "desktop-app"}
        )

        assert config.scope == "openid profile"
        assert config.loopback_port == 0
        assert config.callback_path == "/callback"
        assert config.callback_timeout is None

    def test_all_settings(self) -> None:
        """Test every setting is read."""
        config = parse_oauth_config(
            {
                "authority": "https://login.example.com",
                "clientId": "desktop-app",
                "scope": "openid offline_access",
                "loopbackPort": "8001",
                "callbackPath": "/signin",
                "callbackTimeout": 120,
            }
        )

        assert config.scope == "openid offline_access"
        assert config.loopback_port == 8001
        assert config.callback_path == "/signin"
        assert config.callback_timeout == 120.0

    def test_missing_required(self) -> None:
        """Test missing authority and clientId are both reported."""
        with pytest.raises(ConfigError) as exc_info:
            parse_oauth_config({"clientId": ""})

        assert "authority" in str(exc_info.value)
        assert "clientId" in str(exc_info.value)

    @pytest.mark.parametrize(
        "key,value",
        [
            ("loopbackPort", "eighty"),
            ("loopbackPort", "-1"),
            ("loopbackPort", 70000),
            ("loopbackPort", [8001]),
            ("callbackTimeout", "two minutes"),
            ("callbackTimeout", -5),
        ],
    )
    def test_invalid_number_is_config_error(self, key: str, value: object) -> None:
        """Test an unusable port or timeout is reported as a ConfigError naming the setting."""
        data = {"authority": "https://login.example.com", "clientId": "desktop-app", key: value}

        with pytest.raises(ConfigError) as exc_info:
            parse_oauth_config(data)

        assert key in str(exc_info.value)

    def test_empty_numbers_take_defaults(self) -> None:
        """Test an empty port or timeout, as left by an unset ${VAR}, takes the default."""
        config = parse_oauth_config(
            {
                "authority": "https://login.example.com",
                "clientId": "desktop-app",
                "loopbackPort": "",
                "callbackTimeout": "",
            }
        )

        assert config.loopback_port == 0
        assert config.callback_timeout is None


class TestParseAppConfig:
    """Tests for parse_app_config function."""

    def test_strips_trailing_slash(self) -> None:
        """Test the API base URL has no trailing slash."""
        assert parse_app_config({"apiBaseUrl": "https://api.example.com/api/"}).api_base_url == (
            "https://api.example.com/api"
        )

    @pytest.mark.parametrize(
        "value, expected",
        [(True, True), (False, False), ("true", True), ("yes", True), ("false", False), ("0", False)],
    )
    def test_debug_error_details(self, value: object, expected: bool) -> None:
        """Test booleans and string booleans are accepted."""
        assert parse_app_config({"debugErrorDetails": value}).debug_error_details is expected

    def test_empty_section(self) -> None:
        """Test an empty app section uses defaults."""
        app = parse_app_config({})
        assert app.api_base_url == ""
        assert not app.debug_error_details


class TestFindConfigFile:
    """Tests for find_config_file function."""

    def test_explicit_path(self, config_file: Path) -> None:
        """Test an explicit path is used when it exists."""
        assert find_config_file(config_file) == config_file

    def test_explicit_path_missing(self, tmp_path: Path) -> None:
        """Test a missing explicit path returns None."""
        assert find_config_file(tmp_path / "missing.json") is None

    def test_searches_current_directory(self, isolated_search: Path, config_file: Path) -> None:
        """Test the current directory is searched."""
        found = find_config_file()
        assert found is not None
        assert found.resolve() == config_file.resolve()


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_explicit_file(self, isolated_search: Path, config_file: Path) -> None:
        """Test loading both sections from a file."""
        config = load_config(config_file)

        assert config.oauth.authority == "https://login.example.com/oauth2/default"
        assert config.oauth.client_id == "desktop-app"
        assert config.app.api_base_url == "https://api.example.com/api"
        assert config.config_path == config_file

    def test_no_config_file(self, isolated_search: Path) -> None:
        """Test the error explains where to put a config file."""
        with pytest.raises(FileNotFoundError) as exc_info:
            load_config()

        message = str(exc_info.value)
        assert "desktop.config.json" in message
        assert '"clientId"' in message

    def test_env_file_resolves_references(
        self, isolated_search: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test ${VAR} references are resolved from the .env file."""
        # Register the variable with monkeypatch so it is removed afterwards
        monkeypatch.setenv("OIDC_TEST_CLIENT_ID", "placeholder")
        monkeypatch.delenv("OIDC_TEST_CLIENT_ID")

        (isolated_search / ".env").write_text("OIDC_TEST_CLIENT_ID=from-env-file\n")
        (isolated_search / "desktop.config.json").write_text(
            json.dumps(
                {
                    "oauth": {
                        "authority": "https://login.example.com",
                        "clientId": "${OIDC_TEST_CLIENT_ID}",
                    }
                }
            )
        )

        config = load_config()

        assert config.oauth.client_id == "from-env-file"
        assert config.env_path is not None
        assert os.environ["OIDC_TEST_CLIENT_ID"] == "from-env-file"

    def test_missing_oauth_section(self, isolated_search: Path) -> None:
        """Test a config without an oauth section is rejected."""
        path = isolated_search / "desktop.config.json"
        path.write_text(json.dumps({"app": {"apiBaseUrl": "https://api.example.com"}}))

        with pytest.raises(ConfigError):
            load_config(path)

    def test_non_object_config(self, isolated_search: Path) -> None:
        """Test a JSON array is rejected."""
        path = isolated_search / "desktop.config.json"
        path.write_text("[]")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_invalid_json(self, isolated_search: Path) -> None:
        """Test invalid JSON raises JSONDecodeError."""
        path = isolated_search / "desktop.config.json"
        path.write_text("{not json")

        with pytest.raises(json.JSONDecodeError):
            load_config(path)
