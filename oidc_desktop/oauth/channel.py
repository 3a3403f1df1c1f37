"""Single-shot delivery of login responses to the waiting login attempt.

The loopback listener publishes each login response here. At most one
login attempt is subscribed at a time, and each subscription receives at
most one response. Responses published while nobody is waiting are
dropped rather than queued, so a response can never leak into a later
attempt.
"""

import asyncio
import logging

from .callback import CallbackResult

logger = logging.getLogger(__name__)


class LoginSupersededError(Exception):
    """A pending login attempt was replaced by a newer one."""

    pass


class LoginAbandonedError(Exception):
    """A pending login attempt was abandoned because the channel closed."""

    pass


class LoopbackResponseChannel:
    """One-shot channel between the loopback listener and a login attempt.

    Usage:
        channel = LoopbackResponseChannel()

        # In the login attempt
        waiter = channel.subscribe_once()
        result = await waiter

        # In the listener
        channel.publish(result)
    """

    def __init__(self) -> None:
        self._waiter: asyncio.Future[CallbackResult] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def has_subscriber(self) -> bool:
        return self._waiter is not None and not self._waiter.done()

    def subscribe_once(self) -> "asyncio.Future[CallbackResult]":
        """Register the single subscriber for the next login response.

        Must be called from a running event loop. A subscription that is
        still pending is superseded: its future fails with
        LoginSupersededError.

        Returns:
            Future resolved with the next published CallbackResult
        """
        loop = asyncio.get_running_loop()

        previous = self._waiter
        if previous is not None and not previous.done():
            logger.info("Superseding the pending login attempt")
            self._fail(previous, LoginSupersededError("Superseded by a newer login attempt"))

        waiter: asyncio.Future[CallbackResult] = loop.create_future()
        self._waiter = waiter
        self._loop = loop
        return waiter

    def publish(self, result: CallbackResult) -> bool:
        """Deliver a login response to the current subscriber.

        Safe to call from any thread. Delivery happens on the subscriber's
        event loop, and the subscription ends with the delivery.

        Returns:
            True if a subscriber will receive the result, False if it was dropped
        """
        waiter = self._waiter
        loop = self._loop
        if waiter is None or loop is None or waiter.done():
            logger.debug("No login attempt waiting, dropping login response")
            return False

        # Clear first so a second publish cannot reach the same subscriber
        self._waiter = None
        self._loop = None
        loop.call_soon_threadsafe(self._deliver, waiter, result)
        return True

    def unsubscribe(self, waiter: "asyncio.Future[CallbackResult]") -> None:
        """Release a subscription without delivering to it."""
        if self._waiter is waiter:
            self._waiter = None
            self._loop = None
        if not waiter.done():
            waiter.cancel()

    def close(self) -> None:
        """Abandon any pending subscription.

        The pending future fails with LoginAbandonedError, so the waiting
        login attempt ends with an error rather than a cancellation.
        """
        waiter = self._waiter
        self._waiter = None
        self._loop = None
        if waiter is not None and not waiter.done():
            logger.info("Abandoning the pending login attempt")
            self._fail(waiter, LoginAbandonedError("Login abandoned"))

    @staticmethod
    def _deliver(waiter: "asyncio.Future[CallbackResult]", result: CallbackResult) -> None:
        # The subscriber may have been cancelled between publish and delivery
        if not waiter.done():
            waiter.set_result(result)

    @staticmethod
    def _fail(waiter: "asyncio.Future[CallbackResult]", error: Exception) -> None:
        waiter.set_exception(error)
        # Mark retrieved in case the superseded attempt never awaits it
        waiter.exception()
