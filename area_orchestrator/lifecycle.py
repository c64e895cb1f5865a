"""Automation instance lifecycle.

Creates, toggles, and deletes automation instances ("Areas"). Toggles are
applied optimistically to the local collection and rolled back when the
backend refuses them, so the collection never drifts from the last known
server truth.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from . import api
from .const import MESSAGE_AREA_CREATED, MESSAGE_MISSING_SERVICES
from .errors import (
    ActivationNotAllowedError,
    AreaApiAuthError,
    AreaApiClientError,
    NetworkError,
    ServerRejectionError,
    ToggleConflictError,
    UnknownAreaError,
)
from .models import (
    AutomationInstance,
    AutomationTemplate,
    CreateResult,
    CustomDefinition,
    ToggleOperation,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable
    from typing import Any

    from .api import BackendSession
    from .registry import ConnectionRegistry

    ConfirmCallback = Callable[[AutomationInstance], bool | Awaitable[bool]]

_LOGGER = logging.getLogger(__name__)


class AutomationLifecycleManager:
    """Owns the local collection of automation instances."""

    def __init__(self, session: BackendSession, registry: ConnectionRegistry) -> None:
        self._session = session
        self._registry = registry
        self._instances: dict[int, AutomationInstance] = {}
        self._templates: dict[str, AutomationTemplate] = {}
        self._toggles: dict[int, ToggleOperation] = {}
        self._listeners: list[Callable[[], None]] = []

    @property
    def instances(self) -> list[AutomationInstance]:
        """Return the instances in backend order."""
        return list(self._instances.values())

    @property
    def toggling(self) -> list[int]:
        """Return the ids of instances with a toggle in flight."""
        return list(self._toggles)

    def get(self, area_id: int) -> AutomationInstance:
        """Return the instance with ``area_id``.

        Raises:
            UnknownAreaError: If the instance is not in the collection.

        """
        try:
            return self._instances[area_id]
        except KeyError:
            raise UnknownAreaError(area_id) from None

    def set_templates(self, templates: Iterable[AutomationTemplate]) -> None:
        """Replace the template catalog used to fill created instances."""
        self._templates = {template.id: template for template in templates}

    def set_instances(self, instances: Iterable[AutomationInstance]) -> None:
        """Replace the whole collection with server records."""
        self._instances = {instance.id: instance for instance in instances}
        self._notify()

    def register_listener(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback run after every change to the collection.

        Returns:
            A function to unregister the callback.

        """
        self._listeners.append(callback)

        def unregister() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unregister

    async def async_load(self) -> list[AutomationInstance]:
        """Reload the collection from the backend."""
        instances = await api.async_list_areas(self._session)
        self.set_instances(instances)
        return instances

    async def async_create(
        self,
        source: str | CustomDefinition,
        *,
        name: str | None = None,
        reaction_config: dict[str, Any] | None = None,
    ) -> CreateResult:
        """Create an instance from a template id or a custom definition.

        Args:
            source: Template id, or a free-form action/reaction definition.
            name: Optional name override for template-based creation.
            reaction_config: Optional reaction config for a template.

        Returns:
            CreateResult holding the new instance, or the services the backend
            reported missing. Missing services are not retried.

        Raises:
            ServerRejectionError: For rejections other than missing services.
            NetworkError: If the backend cannot be reached.

        """
        if isinstance(source, CustomDefinition) and source.active:
            missing = self.missing_services_for(
                (source.action_service, source.reaction_service)
            )
            if missing:
                return CreateResult(
                    missing_services=tuple(missing),
                    message=MESSAGE_MISSING_SERVICES.format(
                        services=" and ".join(missing)
                    ),
                )

        try:
            if isinstance(source, CustomDefinition):
                record = await api.async_create_custom_area(self._session, source)
                base = self._instance_from_definition(source, record)
            else:
                record = await api.async_create_area_from_template(
                    self._session, source, name=name, reaction_config=reaction_config
                )
                base = self._instance_from_template(source, record)
        except ServerRejectionError as err:
            if not err.missing_services:
                raise
            _LOGGER.warning(
                "AREA creation rejected, missing services: %s",
                ", ".join(err.missing_services),
            )
            return CreateResult(
                missing_services=tuple(err.missing_services), message=err.message
            )

        instance = api.merge_instance(base, record)
        self._instances[instance.id] = instance
        _LOGGER.info("Created AREA %s (%s)", instance.id, instance.name)
        self._notify()
        return CreateResult(instance=instance, message=MESSAGE_AREA_CREATED)

    def _instance_from_template(
        self, template_id: str, record: dict[str, Any]
    ) -> AutomationInstance:
        template = self._templates.get(template_id)
        if template is None:
            return api.extract_instance({"template_id": template_id, **record})
        return AutomationInstance(
            id=int(record["id"]),
            name=template.name,
            description=template.description,
            action_service=template.action_service,
            action_type=template.action_type,
            reaction_service=template.reaction_service,
            reaction_type=template.reaction_type,
            can_execute=not self.missing_services_for(template.required_services),
            template_id=template.id,
        )

    def _instance_from_definition(
        self, definition: CustomDefinition, record: dict[str, Any]
    ) -> AutomationInstance:
        services = (definition.action_service, definition.reaction_service)
        return AutomationInstance(
            id=int(record["id"]),
            name=definition.name
            or f"{definition.action_service} to {definition.reaction_service}",
            description=definition.description or "",
            action_service=definition.action_service,
            action_type=definition.action_type,
            reaction_service=definition.reaction_service,
            reaction_type=definition.reaction_type,
            active=definition.active,
            can_execute=not self.missing_services_for(services),
        )

    def missing_services_for(self, services: Iterable[str]) -> list[str]:
        """Return the names in ``services`` that are not connected."""
        return [name for name in services if not self._registry.is_connected(name)]

    async def async_toggle(self, area_id: int) -> AutomationInstance:
        """Flip activation of an instance, optimistically.

        The local instance flips immediately. On success the backend record
        becomes canonical; on failure the previous value is restored.

        Returns:
            The instance as confirmed by the backend.

        Raises:
            UnknownAreaError: If ``area_id`` is not in the collection.
            ActivationNotAllowedError: If activating while a required service
                is disconnected; nothing is flipped or sent.
            ToggleConflictError: If the backend refuses the toggle.
            NetworkError: If the backend cannot be reached.

        """
        instance = self.get(area_id)
        if area_id in self._toggles:
            error_msg = "AREA is already being toggled"
            raise ToggleConflictError(error_msg)

        if not instance.active:
            missing = self.missing_services_for(instance.services)
            if missing:
                raise ActivationNotAllowedError(area_id, missing)

        operation = ToggleOperation(area_id=area_id, previous_active=instance.active)
        self._toggles[area_id] = operation
        self._replace(replace(instance, active=not instance.active))

        try:
            record = await api.async_toggle_area(self._session, area_id)
            current = self._instances.get(area_id)
            confirmed = api.merge_instance(current or instance, record)
        except AreaApiAuthError:
            self._rollback(operation)
            raise
        except ServerRejectionError as err:
            self._rollback(operation)
            _LOGGER.warning("Toggle of AREA %s rejected: %s", area_id, err.message)
            raise ToggleConflictError(err.message, status=err.status) from err
        except NetworkError:
            self._rollback(operation)
            await self._async_refetch(area_id)
            raise
        except BaseException:
            # Cancelled, or an answer that cannot be read.
            self._rollback(operation)
            raise
        finally:
            self._toggles.pop(area_id, None)

        if current is None:
            return confirmed

        self._replace(confirmed)
        _LOGGER.info(
            "AREA %s %s", area_id, "activated" if confirmed.active else "deactivated"
        )
        return confirmed

    def _rollback(self, operation: ToggleOperation) -> None:
        current = self._instances.get(operation.area_id)
        if current is not None and current.active != operation.previous_active:
            self._replace(replace(current, active=operation.previous_active))

    async def _async_refetch(self, area_id: int) -> None:
        try:
            fresh = await api.async_get_area(self._session, area_id)
        except AreaApiClientError as err:
            _LOGGER.warning("Could not re-fetch AREA %s: %s", area_id, err)
            return
        if area_id in self._instances:
            self._replace(fresh)

    async def async_delete(self, area_id: int, confirm: ConfirmCallback) -> bool:
        """Delete an instance after an explicit confirmation.

        Args:
            area_id: Instance to delete.
            confirm: Called with the instance; a false result aborts without
                any request. May be a coroutine function.

        Returns:
            True if the instance was deleted, False if not confirmed.

        Raises:
            UnknownAreaError: If ``area_id`` is not in the collection.
            ServerRejectionError: If the backend refuses; the collection is
                left untouched.
            NetworkError: If the backend cannot be reached.

        """
        instance = self.get(area_id)
        confirmed = confirm(instance)
        if inspect.isawaitable(confirmed):
            confirmed = await confirmed
        if not confirmed:
            _LOGGER.debug("Deletion of AREA %s not confirmed", area_id)
            return False

        await api.async_delete_area(self._session, area_id)
        self._instances.pop(area_id, None)
        _LOGGER.info("Deleted AREA %s", area_id)
        self._notify()
        return True

    def _replace(self, instance: AutomationInstance) -> None:
        self._instances[instance.id] = instance
        self._notify()

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                _LOGGER.exception("Error in lifecycle listener")
