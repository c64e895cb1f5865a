"""Exceptions raised by the AREA connection orchestrator."""

from __future__ import annotations

from .const import (
    ERROR_ACTIVATION_BLOCKED,
    ERROR_API_ERROR,
    ERROR_CANNOT_CONNECT,
    ERROR_IN_PROGRESS,
    ERROR_INVALID_AUTH,
    ERROR_POPUP_BLOCKED,
    ERROR_SERVER_REJECTED,
    ERROR_TIMEOUT,
    ERROR_TOGGLE_CONFLICT,
    ERROR_UNKNOWN_AREA,
    ERROR_UNKNOWN_SERVICE,
    ERROR_VALIDATION,
    MESSAGE_INVALID_AUTH,
    MESSAGE_MISSING_SERVICES,
    MESSAGE_NETWORK,
    MESSAGE_POPUP_BLOCKED,
    MESSAGE_TIMEOUT,
)


class AreaError(Exception):
    """Base exception for orchestrator errors."""

    error_key = ERROR_API_ERROR

    @property
    def message(self) -> str:
        """Return the user-facing message."""
        return str(self)


class AreaApiClientError(AreaError):
    """Base exception for backend client errors."""


class ServerRejectionError(AreaApiClientError):
    """Exception raised when the backend rejects a request.

    The backend message is kept verbatim for display.
    """

    error_key = ERROR_SERVER_REJECTED

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        missing_services: list[str] | None = None,
        field_errors: dict[str, list[str]] | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.missing_services = missing_services or []
        self.field_errors = field_errors or {}


class AreaApiAuthError(ServerRejectionError):
    """Exception raised when the session token is rejected."""

    error_key = ERROR_INVALID_AUTH

    @property
    def message(self) -> str:
        return MESSAGE_INVALID_AUTH


class ToggleConflictError(ServerRejectionError):
    """Exception raised when the backend refuses a toggle after the local flip."""

    error_key = ERROR_TOGGLE_CONFLICT


class NetworkError(AreaApiClientError):
    """Exception raised for transport failures."""

    error_key = ERROR_CANNOT_CONNECT

    @property
    def message(self) -> str:
        return MESSAGE_NETWORK


class PopupBlockedError(AreaError):
    """Exception raised when the authorization window cannot be opened."""

    error_key = ERROR_POPUP_BLOCKED

    def __init__(self, service: str) -> None:
        super().__init__(MESSAGE_POPUP_BLOCKED)
        self.service = service


class ConnectionTimeoutError(AreaError):
    """Exception raised when an authorization attempt does not resolve in time."""

    error_key = ERROR_TIMEOUT

    def __init__(self, service: str) -> None:
        super().__init__(MESSAGE_TIMEOUT)
        self.service = service


class ConnectionInProgressError(AreaError):
    """Exception raised when a service already has a live connection attempt."""

    error_key = ERROR_IN_PROGRESS

    def __init__(self, service: str) -> None:
        super().__init__(f"A {service} connection is already in progress")
        self.service = service


class ValidationError(AreaError):
    """Exception raised when credential fields fail local validation."""

    error_key = ERROR_VALIDATION

    def __init__(self, service: str, field_errors: dict[str, str]) -> None:
        message = next(iter(field_errors.values()), "Invalid credentials")
        super().__init__(message)
        self.service = service
        self.field_errors = field_errors


class ActivationNotAllowedError(AreaError):
    """Exception raised when activation is requested with services disconnected."""

    error_key = ERROR_ACTIVATION_BLOCKED

    def __init__(self, area_id: int, missing_services: list[str]) -> None:
        super().__init__(
            MESSAGE_MISSING_SERVICES.format(services=" and ".join(missing_services))
        )
        self.area_id = area_id
        self.missing_services = missing_services


class UnknownServiceError(AreaError):
    """Exception raised for a service missing from the service table."""

    error_key = ERROR_UNKNOWN_SERVICE

    def __init__(self, service: str) -> None:
        super().__init__(f"Service '{service}' not found")
        self.service = service


class UnknownAreaError(AreaError):
    """Exception raised for an automation instance missing from the collection."""

    error_key = ERROR_UNKNOWN_AREA

    def __init__(self, area_id: int) -> None:
        super().__init__("AREA not found")
        self.area_id = area_id
