"""Connection registry for the AREA orchestrator.

Single source of truth for whether a service is connected for the
session user. Every mutation notifies registered listeners so derived
views can be recomputed before the next render.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from . import api
from .const import SERVICES
from .errors import UnknownServiceError
from .models import Service

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from .api import BackendSession
    from .models import AuthKind

_LOGGER = logging.getLogger(__name__)


class ConnectionRegistry:
    """Cache of per-service connection state."""

    def __init__(
        self,
        session: BackendSession,
        services: Mapping[str, AuthKind] | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            session: Backend session used for status queries.
            services: Service table mapping name to auth kind. Defaults to
                the built-in table.

        """
        self._session = session
        table = SERVICES if services is None else services
        self._services = {
            name: Service(name=name, auth_kind=kind) for name, kind in table.items()
        }
        self._listeners: list[Callable[[str, bool], None]] = []

    @property
    def services(self) -> list[Service]:
        """Return the known services."""
        return list(self._services.values())

    def get_service(self, name: str) -> Service:
        """Return the service entry for ``name``.

        Raises:
            UnknownServiceError: If the service is not in the table.

        """
        try:
            return self._services[name]
        except KeyError:
            raise UnknownServiceError(name) from None

    def is_connected(self, name: str) -> bool:
        """Return the cached connected flag; unknown services read as disconnected."""
        service = self._services.get(name)
        return service.connected if service is not None else False

    def connected_map(self, names: Iterable[str]) -> dict[str, bool]:
        """Return ``{name: is_connected(name)}`` preserving order."""
        return {name: self.is_connected(name) for name in names}

    def register_listener(
        self,
        callback: Callable[[str, bool], None],
    ) -> Callable[[], None]:
        """Register a callback for connection state changes.

        Args:
            callback: Called with (service name, connected) after each change.

        Returns:
            A function to unregister the callback.

        """
        self._listeners.append(callback)

        def unregister() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unregister

    async def async_refresh(self, name: str) -> bool:
        """Query the backend for ``name`` and update the cache.

        Returns:
            The fresh connected flag.

        Raises:
            AreaApiClientError: If the status query fails. The registry does
                not retry.

        """
        connected = await api.async_get_connection_status(self._session, name)
        self._set(name, connected)
        return connected

    async def async_disconnect(self, name: str) -> str:
        """Disconnect ``name`` on the backend, then clear the cached flag.

        Returns:
            The backend message.

        """
        self.get_service(name)
        message = await api.async_disconnect_service(self._session, name)
        self.mark_disconnected(name)
        return message

    def mark_connected(self, name: str) -> None:
        """Mark ``name`` connected after a completed connection flow."""
        self._set(name, True)

    def mark_disconnected(self, name: str) -> None:
        """Mark ``name`` disconnected after an explicit disconnect."""
        self._set(name, False)

    def update_from_templates(self, connected: Mapping[str, bool]) -> None:
        """Seed the cache from the connected map of a template listing."""
        for name, is_connected in connected.items():
            self._set(name, is_connected)

    def _set(self, name: str, connected: bool) -> None:
        service = self._services.get(name)
        if service is None:
            _LOGGER.debug("Ignoring connection state for unknown service %s", name)
            return
        if service.connected == connected:
            return

        service.connected = connected
        _LOGGER.info("%s %s", name, "connected" if connected else "disconnected")
        for callback in list(self._listeners):
            try:
                callback(name, connected)
            except Exception:
                _LOGGER.exception("Error in connection listener")
