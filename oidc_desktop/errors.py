"""Error classification for login, token and API failures.

Every failure that reaches the UI layer is turned into a ClassifiedError
with a stable area and error code. The ErrorHandler functions apply a
fixed precedence:

1. Already classified errors pass through unchanged
2. Network failures (no HTTP status) become api_network_error
3. 2xx responses with an unparsable body become api_data_error
4. Other HTTP failures become api_response_error, unless the server
   returned a {code, message} error body
5. OAuth failures use the error and error_description fields
6. Anything else becomes general_ui_error
"""

import logging
import re
import traceback
from datetime import datetime, timezone
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Python's default object repr, e.g. "<foo.Bar object at 0x7f...>"
_DEFAULT_REPR = re.compile(r"^<[\w.]+ object at 0x[0-9a-fA-F]+>$")


class ErrorCodes:
    """Stable error codes surfaced to the UI and to logs."""

    LOGIN_REQUIRED = "login_required"
    LOGIN_REQUEST_FAILED = "login_request_failed"
    LOGIN_RESPONSE_FAILED = "login_response_failed"
    STATE_MISMATCH = "state_mismatch"
    TOKEN_REFRESH_FAILED = "token_refresh_failed"
    REFRESH_TOKEN_EXPIRED = "refresh_token_expired"
    LOGOUT_REQUEST_FAILED = "logout_request_failed"
    API_NETWORK_ERROR = "api_network_error"
    API_DATA_ERROR = "api_data_error"
    API_RESPONSE_ERROR = "api_response_error"
    GENERAL_UI_ERROR = "general_ui_error"


class ClassifiedError(Exception):
    """A failure with a stable area and error code.

    Instances are immutable once constructed: all fields are exposed as
    read-only properties. str(error) is the user-safe message.
    """

    def __init__(
        self,
        area: str,
        error_code: str,
        user_message: str,
        *,
        status_code: int = 0,
        details: str = "",
        url: str = "",
        stack_frames: list[str] | tuple[str, ...] | None = None,
        utc_time: str | None = None,
        instance_id: int = 0,
    ):
        super().__init__(user_message)
        self._area = area
        self._error_code = error_code
        self._user_message = user_message
        self._status_code = status_code
        self._details = details
        self._url = url
        self._stack_frames = tuple(stack_frames or ())
        self._utc_time = utc_time or datetime.now(timezone.utc).isoformat()
        self._instance_id = instance_id

    @property
    def area(self) -> str:
        return self._area

    @property
    def error_code(self) -> str:
        return self._error_code

    @property
    def user_message(self) -> str:
        return self._user_message

    @property
    def status_code(self) -> int:
        return self._status_code

    @property
    def details(self) -> str:
        return self._details

    @property
    def url(self) -> str:
        return self._url

    @property
    def stack_frames(self) -> tuple[str, ...]:
        return self._stack_frames

    @property
    def utc_time(self) -> str:
        return self._utc_time

    @property
    def instance_id(self) -> int:
        return self._instance_id

    @property
    def is_login_required(self) -> bool:
        """True for the expected signal that routes the UI to a login."""
        return self._error_code == ErrorCodes.LOGIN_REQUIRED

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "area": self._area,
            "error_code": self._error_code,
            "user_message": self._user_message,
            "status_code": self._status_code,
            "details": self._details,
            "url": self._url,
            "stack_frames": list(self._stack_frames),
            "utc_time": self._utc_time,
            "instance_id": self._instance_id,
        }

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(area={self._area!r}, error_code={self._error_code!r}, "
            f"status_code={self._status_code})"
        )


def _get_stack_frames(exception: Any) -> list[str]:
    """Return the formatted traceback lines of an exception, if it has one."""
    tb = getattr(exception, "__traceback__", None)
    if tb is None:
        return []
    return [line.rstrip() for line in traceback.format_tb(tb)]


def _get_exception_message(exception: Any) -> str:
    """Get the message from an exception without rendering a default repr."""
    message = getattr(exception, "message", None)
    if isinstance(message, str) and message:
        return message

    details = str(exception)
    if _DEFAULT_REPR.match(details):
        return ""
    return details


def _get_oauth_exception_message(exception: Any) -> str:
    """Get 'error : error_description' from an OAuth failure when present."""
    oauth_error = getattr(exception, "error", None)
    if isinstance(oauth_error, str) and oauth_error:
        description = getattr(exception, "error_description", None)
        if description:
            return f"{oauth_error} : {description}"
        return oauth_error

    return _get_exception_message(exception)


def _get_status_code(exception: Any) -> int:
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code
    status = getattr(exception, "status_code", 0)
    return status if isinstance(status, int) else 0


def _get_error_body(exception: Any) -> Any:
    """Read a JSON error body from an HTTP failure, if one is readable."""
    if isinstance(exception, httpx.HTTPStatusError):
        try:
            return exception.response.json()
        except ValueError:
            return None
    return getattr(exception, "response_json", None)


class ErrorHandler:
    """Translate caught exceptions into ClassifiedError instances."""

    @staticmethod
    def from_exception(exception: Any) -> ClassifiedError:
        """Classify a generic exception."""
        if isinstance(exception, ClassifiedError):
            return exception

        return ClassifiedError(
            "Desktop UI",
            ErrorCodes.GENERAL_UI_ERROR,
            "A technical problem was encountered in the UI",
            details=_get_exception_message(exception),
            stack_frames=_get_stack_frames(exception),
        )

    @staticmethod
    def from_login_required() -> ClassifiedError:
        """The signal raised when no access token can be obtained without a login."""
        return ClassifiedError(
            "Login",
            ErrorCodes.LOGIN_REQUIRED,
            "No access token is available and a login is required",
        )

    @staticmethod
    def from_state_mismatch() -> ClassifiedError:
        """A login response that does not belong to the active login attempt."""
        return ClassifiedError(
            "Login",
            ErrorCodes.STATE_MISMATCH,
            "The login response did not match the login request",
            details="The state parameter in the login response was not recognised",
        )

    @staticmethod
    def from_login_request(exception: Any, error_code: str) -> ClassifiedError:
        """Classify a failure while sending the login request or redeeming the code."""
        return ErrorHandler._from_oauth_error(
            exception,
            "Login",
            error_code,
            "A technical problem occurred during login processing",
        )

    @staticmethod
    def from_login_response(exception: Any, error_code: str) -> ClassifiedError:
        """Classify an error response returned to the loopback redirect."""
        return ErrorHandler._from_oauth_error(
            exception,
            "Login",
            error_code,
            "A technical problem occurred during login processing",
        )

    @staticmethod
    def from_logout_request(exception: Any, error_code: str) -> ClassifiedError:
        return ErrorHandler._from_oauth_error(
            exception,
            "Logout",
            error_code,
            "A technical problem occurred during logout processing",
        )

    @staticmethod
    def from_token_error(exception: Any, error_code: str) -> ClassifiedError:
        """Classify a token endpoint failure."""
        return ErrorHandler._from_oauth_error(
            exception,
            "Token",
            error_code,
            "A technical problem occurred during token processing",
        )

    @staticmethod
    def from_api_error(
        exception: Any,
        url: str,
        status_code: int | None = None,
    ) -> ClassifiedError:
        """Classify a failed API call.

        Args:
            exception: The caught exception
            url: The URL that was called
            status_code: HTTP status when known to the caller (e.g. a 200
                response whose body failed to parse)

        Returns:
            ClassifiedError for the Network, Data or API area
        """
        if isinstance(exception, ClassifiedError):
            return exception

        if status_code is None:
            status_code = _get_status_code(exception)

        details = _get_exception_message(exception)
        stack_frames = _get_stack_frames(exception)

        if status_code == 0:
            return ClassifiedError(
                "Network",
                ErrorCodes.API_NETWORK_ERROR,
                "A network problem occurred when the UI called the server",
                details=details,
                url=url,
                stack_frames=stack_frames,
            )

        if 200 <= status_code <= 299:
            return ClassifiedError(
                "Data",
                ErrorCodes.API_DATA_ERROR,
                "A technical problem occurred parsing received data",
                status_code=status_code,
                details=details,
                url=url,
                stack_frames=stack_frames,
            )

        error_code = ErrorCodes.API_RESPONSE_ERROR
        utc_time = None
        instance_id = 0
        area = "API"

        body = _get_error_body(exception)
        if isinstance(body, dict):
            # code and message are returned for both 4xx and 5xx errors
            if body.get("code") and body.get("message"):
                error_code = str(body["code"])
                details = str(body["message"])

            # 5xx errors also carry support details
            if body.get("area") and body.get("id") and body.get("utcTime"):
                area = str(body["area"])
                utc_time = str(body["utcTime"])
                try:
                    instance_id = int(body["id"])
                except (TypeError, ValueError):
                    logger.debug(f"Ignoring non-numeric error id: {body['id']!r}")

        return ClassifiedError(
            area,
            error_code,
            "A technical problem occurred when the UI called the server",
            status_code=status_code,
            details=details,
            url=url,
            stack_frames=stack_frames,
            utc_time=utc_time,
            instance_id=instance_id,
        )

    @staticmethod
    def _from_oauth_error(
        exception: Any,
        area: str,
        error_code: str,
        user_message: str,
    ) -> ClassifiedError:
        if isinstance(exception, ClassifiedError):
            return exception

        return ClassifiedError(
            area,
            error_code,
            user_message,
            status_code=_get_status_code(exception),
            details=_get_oauth_exception_message(exception),
            stack_frames=_get_stack_frames(exception),
        )
