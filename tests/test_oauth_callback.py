"""Tests for the loopback redirect listener."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from oidc_desktop.oauth.callback import (
    CallbackFailure,
    CallbackSuccess,
    LocalhostCallbackServer,
    parse_callback_url,
)
from oidc_desktop.oauth.channel import LoopbackResponseChannel


async def _send_request(port: int, request: str) -> str:
    """Send a raw HTTP request to the listener and return the response."""
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(request.encode())
    await writer.drain()
    response = await reader.read()
    writer.close()
    await writer.wait_closed()
    return response.decode()


def _get(target: str) -> str:
    return f"GET {target} HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n"


class TestParseCallbackUrl:
    """Tests for parse_callback_url function."""

    def test_parse_success_callback(self) -> None:
        """Test parsing a successful login response."""
        result = parse_callback_url("/callback?code=abc123&state=xyz789")

        assert isinstance(result, CallbackSuccess)
        assert result.code == "abc123"
        assert result.state == "xyz789"

    def test_parse_error_callback(self) -> None:
        """Test parsing an error login response."""
        url = (
            "/callback?error=access_denied&error_description=User+denied+access"
            "&error_uri=https%3A%2F%2Fexample.com%2Fhelp&state=xyz"
        )
        result = parse_callback_url(url)

        assert isinstance(result, CallbackFailure)
        assert result.error == "access_denied"
        assert result.error_description == "User denied access"
        assert result.error_uri == "https://example.com/help"
        assert result.state == "xyz"

    def test_error_takes_precedence_over_code(self) -> None:
        """Test a response with both error and code is a failure."""
        result = parse_callback_url("/callback?code=abc&error=server_error&state=s")
        assert isinstance(result, CallbackFailure)
        assert result.error == "server_error"

    def test_missing_code_is_invalid_request(self) -> None:
        """Test a response with neither code nor error is a failure."""
        result = parse_callback_url("/callback?state=xyz")

        assert isinstance(result, CallbackFailure)
        assert result.error == "invalid_request"
        assert result.state == "xyz"

    def test_parse_multiple_values_takes_first(self) -> None:
        """Test that multiple values for same param uses first."""
        result = parse_callback_url("/callback?code=first&code=second")
        assert isinstance(result, CallbackSuccess)
        assert result.code == "first"


class TestLocalhostCallbackServer:
    """Tests for LocalhostCallbackServer class."""

    @pytest.mark.asyncio
    async def test_server_starts_and_stops(self) -> None:
        """Test server can start and stop cleanly."""
        server = LocalhostCallbackServer(LoopbackResponseChannel())
        redirect_uri = await server.start()

        assert redirect_uri.startswith("http://127.0.0.1:")
        assert redirect_uri.endswith("/callback")
        assert server.port > 0
        assert server.is_running

        await server.stop()
        assert not server.is_running

    @pytest.mark.asyncio
    async def test_custom_path(self) -> None:
        """Test the redirect URI uses the configured path."""
        async with LocalhostCallbackServer(LoopbackResponseChannel(), path="/signin") as server:
            assert server.redirect_uri == f"http://127.0.0.1:{server.port}/signin"

    @pytest.mark.asyncio
    async def test_successful_callback_is_published(self) -> None:
        """Test a login response is published to the waiting subscriber."""
        channel = LoopbackResponseChannel()
        waiter = channel.subscribe_once()

        async with LocalhostCallbackServer(channel) as server:
            response = await _send_request(server.port, _get("/callback?code=test_code&state=s1"))
            result = await asyncio.wait_for(waiter, timeout=2)

        assert "200 OK" in response
        assert "Login Successful" in response
        assert "X-Frame-Options: DENY" in response
        assert result == CallbackSuccess(code="test_code", state="s1")

    @pytest.mark.asyncio
    async def test_error_callback_is_published_and_escaped(self) -> None:
        """Test an error response is published and its text HTML-escaped."""
        channel = LoopbackResponseChannel()
        waiter = channel.subscribe_once()

        async with LocalhostCallbackServer(channel) as server:
            response = await _send_request(
                server.port,
                _get("/callback?error=access_denied&error_description=%3Cscript%3E&state=s1"),
            )
            result = await asyncio.wait_for(waiter, timeout=2)

        assert "Login Failed" in response
        assert "<script>" not in response
        assert "&lt;script&gt;" in response
        assert isinstance(result, CallbackFailure)
        assert result.error == "access_denied"

    @pytest.mark.asyncio
    async def test_response_published_when_page_write_fails(self) -> None:
        """Test a browser dropping the connection does not lose the login response."""
        channel = LoopbackResponseChannel()
        waiter = channel.subscribe_once()
        send_page = AsyncMock(side_effect=ConnectionResetError("Connection reset by peer"))

        async with LocalhostCallbackServer(channel) as server:
            with patch.object(server, "_send_html_response", send_page):
                await _send_request(server.port, _get("/callback?code=test_code&state=s1"))
                result = await asyncio.wait_for(waiter, timeout=2)

        send_page.assert_awaited_once()
        assert result == CallbackSuccess(code="test_code", state="s1")

    @pytest.mark.asyncio
    async def test_other_path_returns_404(self) -> None:
        """Test requests to other paths are not published."""
        channel = LoopbackResponseChannel()
        channel.subscribe_once()

        async with LocalhostCallbackServer(channel) as server:
            response = await _send_request(server.port, _get("/favicon.ico"))

        assert "404" in response
        assert channel.has_subscriber

    @pytest.mark.asyncio
    async def test_post_returns_405(self) -> None:
        """Test non-GET requests are rejected."""
        channel = LoopbackResponseChannel()
        channel.subscribe_once()

        async with LocalhostCallbackServer(channel) as server:
            response = await _send_request(
                server.port, "POST /callback?code=abc HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n"
            )

        assert "405" in response
        assert channel.has_subscriber

    @pytest.mark.asyncio
    async def test_callback_without_login_in_progress(self) -> None:
        """Test a response with no waiting login still gets a page and is dropped."""
        channel = LoopbackResponseChannel()

        async with LocalhostCallbackServer(channel) as server:
            response = await _send_request(server.port, _get("/callback?code=abc&state=s1"))

        assert "200 OK" in response
        assert not channel.has_subscriber

    @pytest.mark.asyncio
    async def test_invalid_request_line(self) -> None:
        """Test a malformed request gets 400."""
        async with LocalhostCallbackServer(LoopbackResponseChannel()) as server:
            response = await _send_request(server.port, "GARBAGE\r\n\r\n")

        assert "400" in response
