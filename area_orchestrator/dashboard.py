"""Orchestrator facade consumed by the rendering layer.

Wires the registry, both connection flows, the reconciler and the
lifecycle manager together, and converts every error raised at a flow
boundary into a display string. No facade operation raises.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from . import api
from .channel import MessageBus
from .const import (
    ERROR_UNKNOWN,
    MESSAGE_AREA_ACTIVATED,
    MESSAGE_AREA_DEACTIVATED,
    MESSAGE_AREA_DELETED,
    MESSAGE_CONNECTED,
    MESSAGE_CONNECTION_CANCELLED,
    MESSAGE_DISCONNECTED,
    MESSAGE_RELOAD_FAILED,
    MESSAGE_UNKNOWN,
    OAUTH_POLL_INTERVAL,
    OAUTH_TIMEOUT,
)
from .credential_flow import CredentialConnectionFlow
from .errors import (
    ActivationNotAllowedError,
    AreaError,
    ConnectionTimeoutError,
    ServerRejectionError,
)
from .lifecycle import AutomationLifecycleManager
from .models import AttemptState, AuthKind
from .oauth_flow import OAuthConnectionFlow
from .reconciler import MatchStrategy, TemplateReconciler
from .registry import ConnectionRegistry
from .window import open_browser_window

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from .api import BackendSession
    from .credential_flow import CredentialModal
    from .lifecycle import ConfirmCallback
    from .models import (
        AutomationInstance,
        AutomationTemplate,
        CreateResult,
        CustomDefinition,
        TemplateView,
    )
    from .window import WindowOpener

    ServiceConfirm = Callable[[str], bool | Awaitable[bool]]

_LOGGER = logging.getLogger(__name__)


class ConnectionFlow(Protocol):
    """Common contract of the OAuth and credential flows."""

    kind: AuthKind

    async def async_initiate(self, service: str) -> AttemptState:
        """Start connecting ``service``."""

    def attempt_state(self, service: str) -> AttemptState:
        """Return the state of the attempt for ``service``."""

    def cancel(self, service: str) -> bool:
        """Abandon the attempt for ``service``."""


@dataclass(frozen=True)
class ConnectionStatus:
    """Per-service connection picture for display."""

    service: str
    auth_kind: AuthKind
    connected: bool
    state: AttemptState = AttemptState.IDLE
    error: str | None = None

    @property
    def pending(self) -> bool:
        """Return True while an attempt is in flight."""
        return self.state is not AttemptState.IDLE


class AreaDashboard:
    """Connection and automation orchestrator for one logged-in user."""

    def __init__(
        self,
        session: BackendSession,
        *,
        bus: MessageBus | None = None,
        opener: WindowOpener = open_browser_window,
        match: MatchStrategy = MatchStrategy.TEMPLATE_ID,
        poll_interval: float = OAUTH_POLL_INTERVAL,
        oauth_timeout: float = OAUTH_TIMEOUT,
    ) -> None:
        self.session = session
        self.bus = bus or MessageBus(session.origin)
        self.registry = ConnectionRegistry(session)
        self.oauth_flow = OAuthConnectionFlow(
            session,
            self.registry,
            self.bus,
            opener,
            poll_interval=poll_interval,
            timeout=oauth_timeout,
        )
        self.credential_flow = CredentialConnectionFlow(session, self.registry)
        self.reconciler = TemplateReconciler(match)
        self.manager = AutomationLifecycleManager(session, self.registry)

        self.templates: list[AutomationTemplate] = []
        self.views: list[TemplateView] = []
        self.error: str | None = None
        self.message: str | None = None
        self.connection_errors: dict[str, str] = {}
        self.missing_services: list[str] = []

        self.registry.register_listener(lambda _name, _connected: self.recompute())
        self.manager.register_listener(self.recompute)

    @property
    def instances(self) -> list[AutomationInstance]:
        """Return the user's automation instances."""
        return self.manager.instances

    def flow_for(self, service: str) -> ConnectionFlow:
        """Return the connection flow matching the service's auth kind.

        Raises:
            UnknownServiceError: If the service is not in the service table.

        """
        if self.registry.get_service(service).auth_kind is AuthKind.OAUTH:
            return self.oauth_flow
        return self.credential_flow

    def recompute(self) -> list[TemplateView]:
        """Rebuild the per-template views from current state."""
        self.views = self.reconciler.recompute(
            self.templates, self.manager.instances, self.registry
        )
        return self.views

    def view_for(self, template_id: str) -> TemplateView | None:
        """Return the view of ``template_id``, if listed."""
        return next((v for v in self.views if v.template.id == template_id), None)

    def connection_status(self) -> Mapping[str, ConnectionStatus]:
        """Return the connection picture of every known service."""
        return {
            service.name: ConnectionStatus(
                service=service.name,
                auth_kind=service.auth_kind,
                connected=service.connected,
                state=self.flow_for(service.name).attempt_state(service.name),
                error=self.connection_errors.get(service.name),
            )
            for service in self.registry.services
        }

    def credential_modal(self, service: str) -> CredentialModal | None:
        """Return the open credential modal for ``service``, if any."""
        return self.credential_flow.modal(service)

    def clear_messages(self) -> None:
        """Dismiss page-level error and success strings."""
        self.error = None
        self.message = None

    def close(self) -> None:
        """Cancel live OAuth attempts, e.g. when the page goes away."""
        for service in self.oauth_flow.pending:
            self.oauth_flow.cancel(service)

    async def async_load(self) -> bool:
        """Load templates, connection state and instances.

        Returns:
            True on success; on failure ``error`` holds a reload message.

        """
        try:
            templates, connected = await api.async_list_templates(self.session)
            instances = await api.async_list_areas(self.session)
        except AreaError as err:
            _LOGGER.warning("Failed to load AREA state (%s): %s", err.error_key, err)
            self.error = MESSAGE_RELOAD_FAILED
            return False
        except Exception:
            _LOGGER.exception("Unexpected error loading AREA state (%s)", ERROR_UNKNOWN)
            self.error = MESSAGE_RELOAD_FAILED
            return False

        self.templates = templates
        self.manager.set_templates(templates)
        self.registry.update_from_templates(connected)
        self.manager.set_instances(instances)
        self.error = None
        return True

    async def async_refresh_service(self, service: str) -> bool | None:
        """Re-query one service's connection status.

        Returns:
            The fresh flag, or None if the query failed.

        """
        try:
            return await self.registry.async_refresh(service)
        except AreaError as err:
            _LOGGER.warning(
                "Failed to refresh %s (%s): %s", service, err.error_key, err
            )
            self.error = MESSAGE_RELOAD_FAILED
            return None
        except Exception:
            _LOGGER.exception(
                "Unexpected error refreshing %s (%s)", service, ERROR_UNKNOWN
            )
            self.error = MESSAGE_RELOAD_FAILED
            return None

    async def async_connect(self, service: str) -> AttemptState:
        """Start connecting ``service`` through its flow.

        OAuth services run the whole authorization attempt; credential
        services open their modal and finish in ``async_submit_credentials``.

        Returns:
            The resulting attempt state. TIMEOUT when the attempt expired and
            ERROR when it failed; the message is in ``connection_errors``.

        """
        self.connection_errors.pop(service, None)
        self.missing_services = [s for s in self.missing_services if s != service]

        try:
            flow = self.flow_for(service)
            state = await flow.async_initiate(service)
        except AreaError as err:
            _LOGGER.warning(
                "Connecting %s failed (%s): %s", service, err.error_key, err
            )
            self.connection_errors[service] = err.message
            if isinstance(err, ConnectionTimeoutError):
                return AttemptState.TIMEOUT
            return AttemptState.ERROR
        except Exception:
            _LOGGER.exception(
                "Unexpected error connecting %s (%s)", service, ERROR_UNKNOWN
            )
            self.connection_errors[service] = MESSAGE_UNKNOWN
            return AttemptState.ERROR

        if state is AttemptState.SUCCESS:
            self.message = MESSAGE_CONNECTED.format(service=service)
        elif state is AttemptState.CANCELLED:
            self.message = MESSAGE_CONNECTION_CANCELLED.format(service=service)
        return state

    def cancel_connection(self, service: str) -> bool:
        """Abandon the in-flight attempt for ``service``."""
        try:
            return self.flow_for(service).cancel(service)
        except AreaError as err:
            self.connection_errors[service] = err.message
            return False

    async def async_submit_credentials(
        self, service: str, values: Mapping[str, str]
    ) -> bool:
        """Submit the credential modal of ``service``.

        Returns:
            True when connected. On failure the modal stays open with the
            entered values and the inline error set.

        """
        try:
            message = await self.credential_flow.async_submit(service, values)
        except AreaError as err:
            _LOGGER.debug(
                "Credential submission for %s failed: %s", service, err.error_key
            )
            modal = self.credential_flow.modal(service)
            if modal is None:
                self.connection_errors[service] = err.message
            return False
        except Exception:
            _LOGGER.exception("Unexpected error submitting %s credentials", service)
            modal = self.credential_flow.modal(service)
            if modal is not None:
                modal.error = MESSAGE_UNKNOWN
            return False

        self.connection_errors.pop(service, None)
        self.missing_services = [s for s in self.missing_services if s != service]
        self.message = message
        return True

    async def async_disconnect(self, service: str, confirm: ServiceConfirm) -> bool:
        """Disconnect ``service`` after confirmation.

        Returns:
            True if disconnected.

        """
        try:
            confirmed = confirm(service)
            if inspect.isawaitable(confirmed):
                confirmed = await confirmed
            if not confirmed:
                return False
            message = await self.registry.async_disconnect(service)
        except AreaError as err:
            _LOGGER.warning(
                "Disconnecting %s failed (%s): %s", service, err.error_key, err
            )
            self.error = err.message
            return False
        except Exception:
            _LOGGER.exception(
                "Unexpected error disconnecting %s (%s)", service, ERROR_UNKNOWN
            )
            self.error = MESSAGE_UNKNOWN
            return False

        self.message = message or MESSAGE_DISCONNECTED.format(service=service)
        return True

    async def async_create(
        self,
        source: str | CustomDefinition,
        **kwargs: Any,
    ) -> CreateResult | None:
        """Create an automation instance.

        When the backend reports missing services they are exposed in
        ``missing_services`` so the page can offer exactly those connections.

        Returns:
            The create result, or None on error.

        """
        self.missing_services = []
        try:
            result = await self.manager.async_create(source, **kwargs)
        except AreaError as err:
            _LOGGER.warning("Creating AREA failed (%s): %s", err.error_key, err)
            self.error = err.message
            return None
        except Exception:
            _LOGGER.exception("Unexpected error creating AREA (%s)", ERROR_UNKNOWN)
            self.error = MESSAGE_UNKNOWN
            return None

        if result.created:
            self.error = None
            self.message = result.message
        else:
            self.missing_services = list(result.missing_services)
            self.error = result.message
        return result

    async def async_toggle(self, area_id: int) -> bool:
        """Toggle an instance; on failure the rollback is visible immediately.

        Returns:
            True if the backend confirmed the toggle.

        """
        try:
            instance = await self.manager.async_toggle(area_id)
        except AreaError as err:
            _LOGGER.warning(
                "Toggling AREA %s failed (%s): %s", area_id, err.error_key, err
            )
            self.error = err.message
            if isinstance(err, (ActivationNotAllowedError, ServerRejectionError)):
                self.missing_services = list(err.missing_services)
            return False
        except Exception:
            _LOGGER.exception(
                "Unexpected error toggling AREA %s (%s)", area_id, ERROR_UNKNOWN
            )
            self.error = MESSAGE_UNKNOWN
            return False

        self.error = None
        self.message = (
            MESSAGE_AREA_ACTIVATED if instance.active else MESSAGE_AREA_DEACTIVATED
        )
        return True

    async def async_delete(self, area_id: int, confirm: ConfirmCallback) -> bool:
        """Delete an instance after confirmation.

        Returns:
            True if deleted.

        """
        try:
            deleted = await self.manager.async_delete(area_id, confirm)
        except AreaError as err:
            _LOGGER.warning(
                "Deleting AREA %s failed (%s): %s", area_id, err.error_key, err
            )
            self.error = err.message
            return False
        except Exception:
            _LOGGER.exception(
                "Unexpected error deleting AREA %s (%s)", area_id, ERROR_UNKNOWN
            )
            self.error = MESSAGE_UNKNOWN
            return False

        if deleted:
            self.message = MESSAGE_AREA_DELETED
        return deleted
