"""Loopback redirect listener for OAuth login responses.

This module provides:
- The CallbackResult types (success with a code, or an OAuth error)
- Parsing of the redirect query string
- A localhost HTTP listener that publishes each login response to a
  LoopbackResponseChannel and shows a small HTML page to the user
"""

import asyncio
import html
import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, Union
from urllib.parse import parse_qs, urlparse

if TYPE_CHECKING:
    from .channel import LoopbackResponseChannel

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
DEFAULT_CALLBACK_PATH = "/callback"


class CallbackError(Exception):
    """Error in the loopback listener."""

    pass


@dataclass(frozen=True)
class CallbackSuccess:
    """Authorization response carrying an authorization code."""

    code: str
    state: str | None = None


@dataclass(frozen=True)
class CallbackFailure:
    """Authorization error response.

    Attributes:
        error: OAuth error code, e.g. "access_denied"
        error_description: Human-readable error description
        error_uri: Optional page with more information
        state: The state parameter from the callback
    """

    error: str
    error_description: str | None = None
    error_uri: str | None = None
    state: str | None = None


CallbackResult = Union[CallbackSuccess, CallbackFailure]


# HTML templates for loopback responses
SUCCESS_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Login Successful</title>
    <style>
        body {{ font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; margin: 40px; }}
        h1 {{ color: #1a1a1a; font-size: 22px; }}
        p {{ color: #666; }}
    </style>
</head>
<body>
    <h1>Login Successful</h1>
    <p>You can close this window and return to the application.</p>
</body>
</html>"""

ERROR_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Login Failed</title>
    <style>
        body {{ font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; margin: 40px; }}
        h1 {{ color: #1a1a1a; font-size: 22px; }}
        .error {{ color: #c0392b; font-family: monospace; }}
    </style>
</head>
<body>
    <h1>Login Failed</h1>
    <p>The authorization server returned an error. Return to the application for details.</p>
    <div class="error">{error}: {description}</div>
</body>
</html>"""


def parse_callback_url(url: str) -> CallbackResult:
    """Parse the query string of a loopback redirect.

    Args:
        url: The request target, e.g. "/callback?code=abc&state=xyz"

    Returns:
        CallbackFailure if an error is present or no code was returned,
        otherwise CallbackSuccess
    """
    params = parse_qs(urlparse(url).query)

    # Get first value of each parameter (or None if not present)
    def get_param(name: str) -> str | None:
        values = params.get(name, [])
        return values[0] if values else None

    state = get_param("state")
    error = get_param("error")
    code = get_param("code")

    if error:
        return CallbackFailure(
            error=error,
            error_description=get_param("error_description"),
            error_uri=get_param("error_uri"),
            state=state,
        )

    if not code:
        return CallbackFailure(
            error="invalid_request",
            error_description="The login response did not contain an authorization code",
            state=state,
        )

    return CallbackSuccess(code=code, state=state)


class LocalhostCallbackServer:
    """HTTP listener for loopback redirects.

    Listens on 127.0.0.1 and publishes every response received on the
    callback path to the channel. The listener itself does no correlation:
    the channel hands the response to the waiting login attempt, which
    validates it.

    Usage:
        async with LocalhostCallbackServer(channel) as server:
            redirect_uri = server.redirect_uri
    """

    def __init__(
        self,
        channel: "LoopbackResponseChannel",
        port: int = 0,
        path: str = DEFAULT_CALLBACK_PATH,
    ):
        """Initialize the listener.

        Args:
            channel: Channel that receives parsed login responses
            port: Port to listen on; 0 lets the OS assign one
            path: URL path to listen on (default "/callback")
        """
        self.channel = channel
        self.path = path
        self.port: int = port
        self.redirect_uri: str = ""

        self._server: asyncio.Server | None = None

    @property
    def is_running(self) -> bool:
        return self._server is not None

    async def start(self) -> str:
        """Start the listener.

        Returns:
            The redirect URI to use in the authorization request

        Raises:
            CallbackError: If the port cannot be bound
        """
        try:
            self._server = await asyncio.start_server(
                self._handle_connection,
                LOOPBACK_HOST,
                self.port,
            )
        except OSError as e:
            raise CallbackError(
                f"Could not listen for login responses on {LOOPBACK_HOST}:{self.port}: {e}"
            ) from e

        sockets = self._server.sockets
        if not sockets:
            raise CallbackError("Failed to start loopback listener: no sockets created")

        self.port = sockets[0].getsockname()[1]
        self.redirect_uri = f"http://{LOOPBACK_HOST}:{self.port}{self.path}"

        logger.debug(f"Loopback listener started on {self.redirect_uri}")
        return self.redirect_uri

    async def stop(self) -> None:
        """Stop the listener."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.debug("Loopback listener stopped")

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle an incoming HTTP connection."""
        try:
            request_line = await reader.readline()
            request_text = request_line.decode("utf-8", errors="replace")

            # e.g. "GET /callback?code=xxx HTTP/1.1"
            parts = request_text.strip().split(" ")
            if len(parts) < 2:
                await self._send_response(writer, HTTPStatus.BAD_REQUEST, "Invalid request")
                return

            method, target = parts[0], parts[1]

            # Consume headers
            while True:
                header_line = await reader.readline()
                if header_line in (b"\r\n", b"\n", b""):
                    break

            if method != "GET":
                await self._send_response(
                    writer, HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed"
                )
                return

            if urlparse(target).path != self.path:
                await self._send_response(writer, HTTPStatus.NOT_FOUND, "Not found")
                return

            result = parse_callback_url(target)

            # Published first, so a failed page write cannot lose the response
            if not self.channel.publish(result):
                logger.info("Login response received with no login in progress, ignoring")

            if isinstance(result, CallbackSuccess):
                await self._send_html_response(writer, HTTPStatus.OK, SUCCESS_HTML.format())
            else:
                # HTML-escape error messages to prevent XSS attacks
                error_html = ERROR_HTML.format(
                    error=html.escape(result.error),
                    description=html.escape(result.error_description or "No description provided"),
                )
                await self._send_html_response(writer, HTTPStatus.OK, error_html)

        except (OSError, UnicodeError, asyncio.IncompleteReadError) as e:
            logger.warning(f"Error handling loopback request: {e}")

        finally:
            try:
                writer.close()
                await writer.wait_closed()
            except OSError:
                pass

    async def _send_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: str,
    ) -> None:
        """Send a plain text HTTP response."""
        response = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/plain\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"Connection: close\r\n"
            f"\r\n"
            f"{body}"
        )
        writer.write(response.encode("utf-8"))
        await writer.drain()

    async def _send_html_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        html_content: str,
    ) -> None:
        """Send an HTML HTTP response with security headers."""
        body = html_content.encode("utf-8")
        headers = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/html; charset=utf-8\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"X-Content-Type-Options: nosniff\r\n"
            f"X-Frame-Options: DENY\r\n"
            f"Content-Security-Policy: default-src 'none'; style-src 'unsafe-inline'\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(headers.encode("utf-8") + body)
        await writer.drain()

    async def __aenter__(self) -> "LocalhostCallbackServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()
