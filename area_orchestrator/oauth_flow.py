"""Redirect-based (OAuth) connection flow.

An attempt opens the provider's authorization page in a secondary window
and then races three signals against an absolute timeout:

- an "authorization succeeded" message on the message bus,
- a poll loop that re-queries the connection status,
- the user closing the window.

The first signal resolves the attempt; every later one is discarded by
the resolved-flag guard in ``_resolve``. Resolution releases the
subscription, the poll task, the timeout and the window exactly once.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from . import api
from .const import OAUTH_POLL_INTERVAL, OAUTH_TIMEOUT, OAUTH_WINDOW_FEATURES
from .errors import (
    AreaApiClientError,
    AreaError,
    ConnectionInProgressError,
    ConnectionTimeoutError,
    PopupBlockedError,
)
from .models import AttemptState, AuthKind, ConnectionAttempt
from .window import open_browser_window

if TYPE_CHECKING:
    from .api import BackendSession
    from .channel import MessageBus, WindowMessage
    from .registry import ConnectionRegistry
    from .window import WindowOpener

_LOGGER = logging.getLogger(__name__)


class OAuthConnectionFlow:
    """Connect services that authorize through a provider redirect."""

    kind = AuthKind.OAUTH

    def __init__(
        self,
        session: BackendSession,
        registry: ConnectionRegistry,
        bus: MessageBus,
        opener: WindowOpener = open_browser_window,
        *,
        poll_interval: float = OAUTH_POLL_INTERVAL,
        timeout: float = OAUTH_TIMEOUT,
    ) -> None:
        """Initialize the flow.

        Args:
            session: Backend session.
            registry: Registry marked connected on success.
            bus: Channel carrying "authorization succeeded" notices.
            opener: Opens the authorization window; returns None when blocked.
            poll_interval: Seconds between status polls.
            timeout: Seconds before an unresolved attempt times out.

        """
        self._session = session
        self._registry = registry
        self._bus = bus
        self._opener = opener
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._attempts: dict[str, ConnectionAttempt] = {}
        self._last_attempts: dict[str, ConnectionAttempt] = {}

    @property
    def pending(self) -> list[str]:
        """Return the services with a live attempt."""
        return [name for name, attempt in self._attempts.items() if attempt.live]

    def attempt_state(self, service: str) -> AttemptState:
        """Return the live attempt's state, or IDLE."""
        attempt = self._attempts.get(service)
        return attempt.state if attempt is not None else AttemptState.IDLE

    def last_attempt(self, service: str) -> ConnectionAttempt | None:
        """Return the most recent finished attempt for ``service``."""
        return self._last_attempts.get(service)

    def cancel(self, service: str) -> bool:
        """Abandon the live attempt for ``service`` as cancelled.

        Returns:
            True if a live attempt was resolved by this call.

        """
        attempt = self._attempts.get(service)
        if attempt is None:
            return False
        return self._resolve(attempt, AttemptState.CANCELLED)

    async def async_initiate(self, service: str) -> AttemptState:
        """Run one authorization attempt for ``service``.

        Args:
            service: Name of an OAuth service, e.g. "Twitch".

        Returns:
            AttemptState.SUCCESS, or AttemptState.CANCELLED when the user
            closed the window without authorizing.

        Raises:
            ConnectionInProgressError: If ``service`` already has a live attempt.
            PopupBlockedError: If the window could not be opened.
            ConnectionTimeoutError: If nothing resolved the attempt in time.
            AreaApiClientError: If the authorization URL could not be fetched.

        """
        current = self._attempts.get(service)
        if current is not None and current.live:
            raise ConnectionInProgressError(service)

        attempt = ConnectionAttempt(
            service=service,
            kind=AuthKind.OAUTH,
            started_at=datetime.now(UTC),
            state=AttemptState.OPENING,
        )
        self._attempts[service] = attempt

        try:
            state = await self._async_run(attempt)
        except asyncio.CancelledError:
            self._resolve(attempt, AttemptState.CANCELLED)
            raise
        except AreaError as err:
            self._resolve(attempt, AttemptState.ERROR, err)
            raise
        finally:
            self._release(attempt)
            if self._attempts.get(service) is attempt:
                del self._attempts[service]
            self._last_attempts[service] = attempt

        if state is AttemptState.TIMEOUT:
            raise ConnectionTimeoutError(service)
        if state is AttemptState.SUCCESS:
            self._registry.mark_connected(service)
            _LOGGER.info("Successfully connected %s", service)
        else:
            _LOGGER.info("%s connection ended as %s", service, state)
        return state

    async def _async_run(self, attempt: ConnectionAttempt) -> AttemptState:
        url = await api.async_get_authorization_url(self._session, attempt.service)
        if attempt.resolved:
            return attempt.state

        # Console browsers block until they exit.
        loop = asyncio.get_running_loop()
        window = await loop.run_in_executor(
            None,
            self._opener,
            url,
            f"{attempt.service} OAuth",
            OAUTH_WINDOW_FEATURES,
        )
        attempt.handle = window
        if attempt.resolved:
            self._release(attempt)
            return attempt.state
        if window is None:
            _LOGGER.warning("Authorization window for %s was blocked", attempt.service)
            raise PopupBlockedError(attempt.service)

        attempt.future = loop.create_future()
        attempt.state = AttemptState.WAITING
        attempt.unsubscribe = self._bus.subscribe(
            functools.partial(self._on_message, attempt)
        )
        attempt.poll_task = loop.create_task(self._async_poll(attempt))
        attempt.timeout_handle = loop.call_later(
            self._timeout, self._on_timeout, attempt
        )
        _LOGGER.debug("Waiting for %s authorization", attempt.service)
        return await attempt.future

    def _on_message(self, attempt: ConnectionAttempt, message: WindowMessage) -> None:
        if not message.is_authorization_success or not message.is_for(attempt.service):
            return
        _LOGGER.debug("Authorization message received for %s", attempt.service)
        self._resolve(attempt, AttemptState.SUCCESS)

    def _on_timeout(self, attempt: ConnectionAttempt) -> None:
        if self._resolve(attempt, AttemptState.TIMEOUT):
            _LOGGER.warning(
                "%s authorization timed out after %.0f seconds",
                attempt.service,
                self._timeout,
            )

    async def _async_poll(self, attempt: ConnectionAttempt) -> None:
        while not attempt.resolved:
            await asyncio.sleep(self._poll_interval)
            if attempt.resolved:
                return

            window = attempt.handle
            closed = window is None or window.closed

            try:
                connected = await api.async_get_connection_status(
                    self._session, attempt.service
                )
            except AreaApiClientError as err:
                if closed:
                    self._resolve(attempt, AttemptState.CANCELLED)
                    return
                _LOGGER.warning(
                    "Error checking %s connection: %s", attempt.service, err
                )
                continue

            if connected:
                self._resolve(attempt, AttemptState.SUCCESS)
                return
            if closed:
                _LOGGER.debug("%s window closed without authorization", attempt.service)
                self._resolve(attempt, AttemptState.CANCELLED)
                return

    def _resolve(
        self,
        attempt: ConnectionAttempt,
        state: AttemptState,
        error: Exception | None = None,
    ) -> bool:
        if attempt.resolved:
            _LOGGER.debug(
                "Discarding %s for %s, already resolved as %s",
                state,
                attempt.service,
                attempt.state,
            )
            return False

        attempt.resolved = True
        attempt.state = state
        attempt.error = error
        self._release(attempt)
        if attempt.future is not None and not attempt.future.done():
            attempt.future.set_result(state)
        return True

    def _release(self, attempt: ConnectionAttempt) -> None:
        if attempt.unsubscribe is not None:
            unsubscribe, attempt.unsubscribe = attempt.unsubscribe, None
            unsubscribe()

        if attempt.timeout_handle is not None:
            timeout_handle, attempt.timeout_handle = attempt.timeout_handle, None
            timeout_handle.cancel()

        if attempt.poll_task is not None:
            task, attempt.poll_task = attempt.poll_task, None
            if task is not asyncio.current_task() and not task.done():
                task.cancel()

        if attempt.handle is not None:
            window, attempt.handle = attempt.handle, None
            if not window.closed:
                try:
                    window.close()
                except Exception:
                    _LOGGER.exception(
                        "Error closing %s authorization window", attempt.service
                    )
