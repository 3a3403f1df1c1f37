"""Login attempt correlation: state and PKCE per RFC 7636.

Each login attempt gets a fresh random state value and a PKCE verifier and
challenge pair. The state value returned to the loopback redirect must match
the one generated for the active attempt, which protects against CSRF and
against redeeming a code issued for a different attempt.
"""

import base64
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass

from ..errors import ErrorHandler
from .callback import CallbackResult

logger = logging.getLogger(__name__)


# PKCE code verifier length constraints per RFC 7636
MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128
DEFAULT_VERIFIER_LENGTH = 64

# Allowed characters for code verifier (unreserved URI characters)
VERIFIER_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"

STATE_BYTES = 32


def generate_code_verifier(length: int = DEFAULT_VERIFIER_LENGTH) -> str:
    """Generate a cryptographically random code verifier.

    Args:
        length: Length of the verifier (default 64, must be 43-128)

    Returns:
        Random string of unreserved URI characters

    Raises:
        ValueError: If length is outside allowed range
    """
    if length < MIN_VERIFIER_LENGTH or length > MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"Code verifier length must be between {MIN_VERIFIER_LENGTH} "
            f"and {MAX_VERIFIER_LENGTH}, got {length}"
        )

    return "".join(secrets.choice(VERIFIER_CHARS) for _ in range(length))


def generate_code_challenge(verifier: str) -> str:
    """Derive the S256 code challenge: BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_state() -> str:
    """Generate an opaque, URL-safe random state value."""
    return secrets.token_urlsafe(STATE_BYTES)


@dataclass(frozen=True)
class LoginAttemptState:
    """Values generated for a single login attempt.

    Attributes:
        state: Opaque value echoed back by the authorization server
        code_verifier: PKCE verifier sent with the code exchange
        code_challenge: S256 challenge sent with the authorization request
        redirect_uri: The loopback redirect URI used for this attempt
    """

    state: str
    code_verifier: str
    code_challenge: str
    redirect_uri: str

    def __repr__(self) -> str:
        return f"LoginAttemptState(redirect_uri={self.redirect_uri!r})"


class StateCorrelator:
    """Generates and validates login attempt state.

    At most one attempt is active. Beginning a new attempt supersedes the
    previous one, so a late response to the old attempt fails validation.
    """

    def __init__(self) -> None:
        self._active: LoginAttemptState | None = None

    @property
    def active_attempt(self) -> LoginAttemptState | None:
        return self._active

    def begin_attempt(self, redirect_uri: str) -> LoginAttemptState:
        """Create the state for a new login attempt and make it the active one."""
        if self._active is not None:
            logger.debug("Superseding an unfinished login attempt")

        verifier = generate_code_verifier()
        attempt = LoginAttemptState(
            state=generate_state(),
            code_verifier=verifier,
            code_challenge=generate_code_challenge(verifier),
            redirect_uri=redirect_uri,
        )
        self._active = attempt
        return attempt

    def discard(self, attempt: LoginAttemptState | None = None) -> None:
        """End an attempt without validating a response.

        With no argument the active attempt is discarded. Otherwise only the
        given attempt is, if it is still the active one.
        """
        if attempt is None or self._active is attempt:
            self._active = None

    def validate(self, attempt: LoginAttemptState, callback: CallbackResult) -> None:
        """Check that a loopback response belongs to the given attempt.

        The active attempt is consumed whatever the outcome.

        Raises:
            ClassifiedError: state_mismatch if the attempt is stale or the
                returned state differs from the generated one
        """
        is_active = self._active is attempt
        if is_active:
            self._active = None

        if not is_active:
            logger.warning("Login response received for an attempt that is no longer active")
            raise ErrorHandler.from_state_mismatch()

        # Use constant-time comparison to prevent timing attacks
        received = (callback.state or "").encode("utf-8")
        if not hmac.compare_digest(received, attempt.state.encode("utf-8")):
            logger.warning("State mismatch in login response")
            raise ErrorHandler.from_state_mismatch()
