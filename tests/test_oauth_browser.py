"""Tests for the system browser launcher."""

import logging
import webbrowser
from unittest.mock import patch

import pytest

from oidc_desktop.oauth.browser import open_system_browser

AUTH_URL = "https://login.example.com/authorize?client_id=desktop-app"


class TestOpenSystemBrowser:
    """Tests for open_system_browser function."""

    def test_opens_url(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test the URL is handed to the default browser."""
        with patch("oidc_desktop.oauth.browser.webbrowser.open", return_value=True) as mock_open:
            open_system_browser(AUTH_URL)

        mock_open.assert_called_once_with(AUTH_URL)
        assert "open this URL manually" not in caplog.text

    def test_logs_url_when_no_browser(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test the URL is logged when no browser opened."""
        with caplog.at_level(logging.WARNING, logger="oidc_desktop.oauth.browser"):
            with patch("oidc_desktop.oauth.browser.webbrowser.open", return_value=False):
                open_system_browser(AUTH_URL)

        assert AUTH_URL in caplog.text

    def test_browser_error_does_not_raise(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test a browser startup error is logged, not raised."""
        with caplog.at_level(logging.WARNING, logger="oidc_desktop.oauth.browser"):
            with patch(
                "oidc_desktop.oauth.browser.webbrowser.open",
                side_effect=webbrowser.Error("no runnable browser"),
            ):
                open_system_browser(AUTH_URL)

        assert "no runnable browser" in caplog.text
        assert AUTH_URL in caplog.text
