"""Credential-based connection flow.

Services such as Telegram, Discord, and Steam authorize through secrets the
user types into a modal. Fields are validated locally against the declared
schema before anything is sent to the backend.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import voluptuous as vol

from . import api
from .const import CREDENTIAL_FIELDS
from .errors import (
    AreaApiClientError,
    ConnectionInProgressError,
    ServerRejectionError,
    UnknownServiceError,
    ValidationError,
)
from .models import AttemptState, AuthKind, FieldSpec

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from .api import BackendSession
    from .registry import ConnectionRegistry

_LOGGER = logging.getLogger(__name__)


@dataclass
class CredentialModal:
    """State of the credential entry modal for one service."""

    service: str
    fields: tuple[FieldSpec, ...]
    values: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    field_errors: dict[str, str] = field(default_factory=dict)
    submitting: bool = False
    is_open: bool = True


def _label(name: str) -> str:
    return name.replace("_", " ").capitalize()


def _starts_with(prefix: str, message: str) -> Callable[[str], str]:
    def validator(value: str) -> str:
        if not value.startswith(prefix):
            raise vol.Invalid(message)
        return value

    return validator


def build_schema(fields: Iterable[FieldSpec]) -> vol.Schema:
    """Build a voluptuous schema from declared credential fields.

    Args:
        fields: Field declarations for one service.

    Returns:
        Schema accepting stripped, non-empty string values.

    """
    schema: dict[vol.Marker, object] = {}
    for spec in fields:
        validators: list[object] = [str]
        invalid = spec.message or f"Invalid {_label(spec.name).lower()}"
        if spec.prefix:
            validators.append(_starts_with(spec.prefix, invalid))
        if spec.pattern:
            validators.append(vol.Match(spec.pattern, msg=invalid))

        if spec.required:
            key = vol.Required(spec.name, msg=f"{_label(spec.name)} is required")
        else:
            key = vol.Optional(spec.name)
        schema[key] = vol.All(*validators)
    return vol.Schema(schema, extra=vol.REMOVE_EXTRA)


def clean_values(values: Mapping[str, object]) -> dict[str, str]:
    """Strip values and drop empty ones so blanks count as missing."""
    return {
        key: value.strip()
        for key, value in values.items()
        if isinstance(value, str) and value.strip()
    }


class CredentialConnectionFlow:
    """Connect services that authorize through manually supplied secrets."""

    kind = AuthKind.CREDENTIAL

    def __init__(
        self,
        session: BackendSession,
        registry: ConnectionRegistry,
        fields: Mapping[str, tuple[FieldSpec, ...]] = CREDENTIAL_FIELDS,
    ) -> None:
        self._session = session
        self._registry = registry
        self._fields = fields
        self._schemas = {name: build_schema(specs) for name, specs in fields.items()}
        self._modals: dict[str, CredentialModal] = {}

    def fields_for(self, service: str) -> tuple[FieldSpec, ...]:
        """Return the declared fields for ``service``.

        Raises:
            UnknownServiceError: If ``service`` has no field schema.

        """
        try:
            return self._fields[service]
        except KeyError:
            raise UnknownServiceError(service) from None

    def modal(self, service: str) -> CredentialModal | None:
        """Return the open modal for ``service``, if any."""
        return self._modals.get(service)

    def attempt_state(self, service: str) -> AttemptState:
        """Return OPENING while the modal is shown, WAITING while submitting."""
        modal = self._modals.get(service)
        if modal is None:
            return AttemptState.IDLE
        return AttemptState.WAITING if modal.submitting else AttemptState.OPENING

    def open(self, service: str) -> CredentialModal:
        """Open (or return the already open) modal for ``service``."""
        modal = self._modals.get(service)
        if modal is None:
            modal = CredentialModal(service=service, fields=self.fields_for(service))
            self._modals[service] = modal
        return modal

    def cancel(self, service: str) -> bool:
        """Close the modal for ``service`` without submitting."""
        modal = self._modals.pop(service, None)
        if modal is None:
            return False
        modal.is_open = False
        return True

    async def async_initiate(self, service: str) -> AttemptState:
        """Start a connection by showing the modal; submission completes it."""
        self.open(service)
        return AttemptState.OPENING

    def validate(self, service: str, values: Mapping[str, object]) -> dict[str, str]:
        """Validate ``values`` against the schema of ``service``.

        Returns:
            Cleaned credentials ready to submit.

        Raises:
            ValidationError: With one message per failing field.

        """
        self.fields_for(service)
        try:
            return self._schemas[service](clean_values(values))
        except vol.MultipleInvalid as err:
            field_errors = {
                str(error.path[0]) if error.path else "base": error.msg
                for error in err.errors
            }
            raise ValidationError(service, field_errors) from err

    async def async_submit(self, service: str, values: Mapping[str, str]) -> str:
        """Validate and submit credentials for ``service``.

        On any failure the modal stays open with the entered values intact.

        Args:
            service: Credential service name, e.g. "Discord".
            values: Field values as typed by the user.

        Returns:
            The backend success message.

        Raises:
            ValidationError: If local validation fails; no request is made.
            ConnectionInProgressError: If a submission is already running.
            ServerRejectionError: If the backend rejects the credentials.
            NetworkError: If the backend cannot be reached.

        """
        modal = self.open(service)
        if modal.submitting:
            raise ConnectionInProgressError(service)
        modal.values = dict(values)

        try:
            credentials = self.validate(service, values)
        except ValidationError as err:
            modal.error = err.message
            modal.field_errors = err.field_errors
            _LOGGER.debug(
                "Credential validation failed for %s: %s",
                service,
                list(err.field_errors),
            )
            raise

        modal.submitting = True
        modal.error = None
        modal.field_errors = {}
        try:
            message = await api.async_submit_credentials(
                self._session, service, credentials
            )
        except ServerRejectionError as err:
            modal.error = err.message
            modal.field_errors = {
                name: messages[0]
                for name, messages in err.field_errors.items()
                if messages
            }
            _LOGGER.warning("%s rejected credentials: %s", service, err.message)
            raise
        except AreaApiClientError as err:
            modal.error = err.message
            _LOGGER.warning("Could not submit %s credentials: %s", service, err)
            raise
        finally:
            modal.submitting = False

        self._registry.mark_connected(service)
        self.cancel(service)
        _LOGGER.info("Successfully connected %s", service)
        return message
