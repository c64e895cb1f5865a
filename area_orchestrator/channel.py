"""Origin-checked message channel for authorization notifications.

The provider callback page (or any other trusted producer) posts an
"authorization succeeded" notice; connection attempts subscribe for the
lifetime of a single attempt and unsubscribe when it resolves.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .const import OAUTH_SUCCESS_MESSAGE_TYPE

if TYPE_CHECKING:
    from collections.abc import Callable

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowMessage:
    """A message posted to the channel.

    Attributes:
        origin: Origin of the sender, e.g. "http://localhost:8000".
        data: Message payload, e.g. {"type": "OAUTH_SUCCESS", "service": "twitch"}.

    """

    origin: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_authorization_success(self) -> bool:
        """Return True for an "authorization succeeded" notice."""
        return self.data.get("type") == OAUTH_SUCCESS_MESSAGE_TYPE

    def is_for(self, service: str) -> bool:
        """Return True if the notice names ``service``; case-insensitive."""
        named = self.data.get("service")
        return isinstance(named, str) and named.casefold() == service.casefold()


class MessageBus:
    """Narrow message bus that only delivers same-origin messages."""

    def __init__(self, origin: str) -> None:
        """Initialize the bus.

        Args:
            origin: The only origin whose messages are delivered.

        """
        self._origin = origin.rstrip("/")
        self._subscribers: dict[int, Callable[[WindowMessage], None]] = {}
        self._ids = itertools.count()

    @property
    def origin(self) -> str:
        """Return the accepted origin."""
        return self._origin

    @property
    def subscriber_count(self) -> int:
        """Return the number of active subscribers."""
        return len(self._subscribers)

    def subscribe(
        self,
        callback: Callable[[WindowMessage], None],
    ) -> Callable[[], None]:
        """Subscribe to same-origin messages.

        Args:
            callback: Function to call for each accepted message.

        Returns:
            A function to unsubscribe. Calling it more than once is a no-op.

        """
        token = next(self._ids)
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def post(self, message: WindowMessage) -> int:
        """Deliver ``message`` to subscribers if its origin matches.

        Returns:
            Number of subscribers the message was delivered to.

        """
        if message.origin.rstrip("/") != self._origin:
            _LOGGER.debug("Dropping message from foreign origin %s", message.origin)
            return 0

        delivered = 0
        for callback in list(self._subscribers.values()):
            try:
                callback(message)
            except Exception:
                _LOGGER.exception("Error in message subscriber")
            delivered += 1
        return delivered
