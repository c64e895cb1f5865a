"""API client for the AREA backend.

This module provides functions to interact with the AREA backend,
including service connection status, authorization, credential
submission, and automation management.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

import httpx
from httpx_retries import Retry, RetryTransport

from .const import (
    API_PREFIX,
    DEFAULT_API_URL,
    DEFAULT_REQUEST_TIMEOUT,
    ENV_API_TOKEN,
    ENV_API_URL,
    REQUEST_BACKOFF_FACTOR,
    REQUEST_RETRIES,
    TEMPLATE_REQUIREMENTS,
    USER_AGENT,
)
from .errors import (
    AreaApiAuthError,
    AreaApiClientError,
    NetworkError,
    ServerRejectionError,
)
from .models import AutomationInstance, AutomationTemplate, CustomDefinition

_LOGGER = logging.getLogger(__name__)

# HTTP status codes
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401


@dataclass(frozen=True)
class BackendSession:
    """Explicit session context passed to every backend call.

    Attributes:
        client: HTTP client used for all requests.
        token: Bearer token of the logged-in user.
        base_url: Backend root URL, without the API prefix.

    """

    client: httpx.AsyncClient
    token: str
    base_url: str = DEFAULT_API_URL

    @classmethod
    def from_env(cls, client: httpx.AsyncClient | None = None) -> BackendSession:
        """Build a session from the AREA_API_URL and AREA_API_TOKEN variables."""
        return cls(
            client=client or create_session_client(),
            token=os.environ.get(ENV_API_TOKEN, ""),
            base_url=os.environ.get(ENV_API_URL, DEFAULT_API_URL),
        )

    @property
    def origin(self) -> str:
        """Return the backend origin used to vet cross-window messages."""
        url = httpx.URL(self.base_url)
        port = f":{url.port}" if url.port else ""
        return f"{url.scheme}://{url.host}{port}"

    def url(self, path: str) -> str:
        """Return the absolute API URL for ``path``."""
        return f"{self.base_url.rstrip('/')}{API_PREFIX}{path}"


def create_headers(token: str | None = None) -> dict[str, str]:
    """Create HTTP headers for AREA API requests.

    Args:
        token: Optional bearer token to include in headers.

    Returns:
        Dictionary containing HTTP headers for API requests.

    """
    headers = {
        "accept": "application/json",
        "content-type": "application/json",
        "user-agent": USER_AGENT,
    }
    if token:
        headers["authorization"] = f"Bearer {token}"
    return headers


def is_http_error(status: int) -> bool:
    """Check if HTTP status code indicates an error.

    Args:
        status: HTTP status code to check.

    Returns:
        True if status code is 400 or higher, False otherwise.

    """
    return status >= HTTP_BAD_REQUEST


def is_auth_error(status: int) -> bool:
    """Check if HTTP status code indicates authentication error.

    Args:
        status: HTTP status code to check.

    Returns:
        True if status code is 401, False otherwise.

    """
    return status == HTTP_UNAUTHORIZED


def is_api_error(data: dict[str, Any]) -> bool:
    """Check if API response indicates an error.

    Args:
        data: API response data dictionary.

    Returns:
        True if the success field is explicitly False, False otherwise.

    """
    return data.get("success", True) is False


def extract_message(data: dict[str, Any], default: str = "Unknown API error") -> str:
    """Extract the user-facing message from an API response.

    The backend uses ``error`` for AREA endpoints and ``message`` for
    service endpoints; both are returned verbatim.
    """
    return data.get("error") or data.get("message") or default


def extract_missing_services(data: dict[str, Any]) -> list[str]:
    """Extract the services reported as missing by a create rejection.

    Args:
        data: API response data dictionary.

    Returns:
        Names of services flagged as missing, in response order.

    """
    missing = data.get("missing_services") or {}
    if isinstance(missing, dict):
        return [name for name, is_missing in missing.items() if is_missing]
    return [str(name) for name in missing]


def extract_field_errors(data: dict[str, Any]) -> dict[str, list[str]]:
    """Extract per-field validation errors from a 422 response."""
    errors = data.get("errors") or {}
    return {
        key.removeprefix("credentials."): list(value)
        for key, value in errors.items()
    }


def _parse_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def validate_response(response: httpx.Response) -> dict[str, Any]:
    """Validate HTTP response and return parsed JSON data.

    Args:
        response: HTTP response object to validate.

    Returns:
        Parsed JSON data from response.

    Raises:
        AreaApiAuthError: If the session token is rejected.
        ServerRejectionError: If the backend rejects the request.

    """
    data = _parse_body(response)
    _validate_http_status(response, data)
    _validate_api_status(response, data)
    return data


def _validate_http_status(response: httpx.Response, data: dict[str, Any]) -> None:
    if not is_http_error(response.status_code):
        return

    if is_auth_error(response.status_code):
        auth_error = extract_message(data, "Authentication error")
        raise AreaApiAuthError(auth_error, status=response.status_code)

    client_error = extract_message(data, f"Request failed: {response.status_code}")
    raise ServerRejectionError(
        client_error,
        status=response.status_code,
        missing_services=extract_missing_services(data),
        field_errors=extract_field_errors(data),
    )


def _validate_api_status(response: httpx.Response, data: dict[str, Any]) -> None:
    if not is_api_error(data):
        return

    raise ServerRejectionError(
        extract_message(data),
        status=response.status_code,
        missing_services=extract_missing_services(data),
        field_errors=extract_field_errors(data),
    )


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        _LOGGER.warning("Ignoring malformed timestamp: %s", value)
        return None


def extract_template(record: dict[str, Any]) -> AutomationTemplate:
    """Build an AutomationTemplate from a template summary record.

    Args:
        record: One entry of the template listing.

    Returns:
        AutomationTemplate with its required services.

    """
    template_id = str(record["id"])
    required = record.get("requires_services") or TEMPLATE_REQUIREMENTS.get(
        template_id,
        (record["action_service"], record["reaction_service"]),
    )
    return AutomationTemplate(
        id=template_id,
        name=record.get("name", template_id),
        description=record.get("description", ""),
        action_service=record["action_service"],
        action_type=record.get("action_type", ""),
        reaction_service=record["reaction_service"],
        reaction_type=record.get("reaction_type", ""),
        required_services=tuple(required),
        default_config=record.get("default_config") or {},
    )


def extract_templates(data: dict[str, Any]) -> list[AutomationTemplate]:
    """Extract the template catalog from API response.

    Args:
        data: API response data dictionary.

    Returns:
        List of AutomationTemplate objects.

    """
    return [extract_template(record) for record in data.get("data", [])]


def extract_connected_services(data: dict[str, Any]) -> dict[str, bool]:
    """Merge the per-template ``services_connected`` maps of a template listing."""
    connected: dict[str, bool] = {}
    for record in data.get("data", []):
        for name, is_connected in (record.get("services_connected") or {}).items():
            connected[name] = bool(is_connected)
    return connected


def extract_instance(record: dict[str, Any]) -> AutomationInstance:
    """Build an AutomationInstance from an area record.

    Args:
        record: Area record as returned by the backend.

    Returns:
        AutomationInstance with defaults for absent counters.

    """
    return AutomationInstance(
        id=int(record["id"]),
        name=record.get("name", ""),
        description=record.get("description") or "",
        action_service=record.get("action_service", ""),
        action_type=record.get("action_type", ""),
        reaction_service=record.get("reaction_service", ""),
        reaction_type=record.get("reaction_type", ""),
        active=bool(record.get("active", False)),
        trigger_count=int(record.get("trigger_count") or 0),
        last_triggered_at=_parse_timestamp(record.get("last_triggered_at")),
        can_execute=bool(record.get("can_execute", False)),
        template_id=record.get("template_id"),
    )


def merge_instance(
    instance: AutomationInstance,
    record: dict[str, Any],
) -> AutomationInstance:
    """Overlay the fields present in ``record`` onto ``instance``.

    Used where the backend answers with a partial record (create, toggle);
    every field it does return is taken as canonical.
    """
    changes: dict[str, Any] = {
        key: record[key]
        for key in (
            "name",
            "description",
            "action_service",
            "action_type",
            "reaction_service",
            "reaction_type",
            "template_id",
        )
        if record.get(key) is not None
    }
    if "active" in record:
        changes["active"] = bool(record["active"])
    if "can_execute" in record:
        changes["can_execute"] = bool(record["can_execute"])
    if "trigger_count" in record:
        changes["trigger_count"] = int(record["trigger_count"] or 0)
    if "last_triggered_at" in record:
        changes["last_triggered_at"] = _parse_timestamp(record["last_triggered_at"])
    return replace(instance, **changes)


def extract_instances(data: dict[str, Any]) -> list[AutomationInstance]:
    """Extract area records from API response."""
    return [extract_instance(record) for record in data.get("data", [])]


def extract_connected(data: dict[str, Any]) -> bool:
    """Extract the connected flag from a status response."""
    if "connected" in data:
        return bool(data["connected"])
    return bool((data.get("data") or {}).get("connected", False))


def extract_authorization_url(data: dict[str, Any]) -> str:
    """Extract the provider authorization URL.

    Args:
        data: API response data dictionary.

    Returns:
        The URL to open in the authorization window.

    Raises:
        AreaApiClientError: If the response carries no URL.

    """
    url = data.get("auth_url") or data.get("url") or (data.get("data") or {}).get("url")
    if not url:
        error_msg = "Authorization URL missing from response"
        raise AreaApiClientError(error_msg)
    return str(url)


def create_session_client(
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> httpx.AsyncClient:
    """Create HTTP client with retry logic for the AREA API.

    Args:
        timeout: Per-request timeout in seconds.

    Returns:
        Configured httpx AsyncClient with retry transport.

    """
    retry = Retry(total=REQUEST_RETRIES, backoff_factor=REQUEST_BACKOFF_FACTOR)
    transport = RetryTransport(transport=httpx.AsyncHTTPTransport(), retry=retry)
    return httpx.AsyncClient(timeout=timeout, transport=transport)


async def _async_request(
    session: BackendSession,
    method: str,
    path: str,
    **kwargs: Any,
) -> dict[str, Any]:
    url = session.url(path)
    _LOGGER.debug("%s %s", method, url)
    try:
        response = await session.client.request(
            method,
            url,
            headers=create_headers(session.token),
            **kwargs,
        )
    except httpx.RequestError as err:
        error_msg = f"Connection error: {err}"
        _LOGGER.warning("Request %s %s failed: %s", method, url, err)
        raise NetworkError(error_msg) from err
    return validate_response(response)


async def async_get_connection_status(session: BackendSession, service: str) -> bool:
    """Query whether ``service`` is connected for the session user.

    Raises:
        AreaApiClientError: If the request fails.

    """
    data = await _async_request(session, "GET", f"/services/{service}/check")
    connected = extract_connected(data)
    _LOGGER.debug("Connection status for %s: %s", service, connected)
    return connected


async def async_get_authorization_url(session: BackendSession, service: str) -> str:
    """Request the provider authorization URL for an OAuth service.

    Args:
        session: Backend session.
        service: Service name, e.g. "Twitch".

    Returns:
        URL of the provider's authorization page.

    Raises:
        AreaApiClientError: If the request fails or carries no URL.

    """
    data = await _async_request(session, "GET", f"/oauth/{service.lower()}")
    return extract_authorization_url(data)


async def async_submit_credentials(
    session: BackendSession,
    service: str,
    credentials: dict[str, str],
) -> str:
    """Submit manually entered credentials for a service.

    Args:
        session: Backend session.
        service: Service name, e.g. "Telegram".
        credentials: Field values keyed by field name.

    Returns:
        The backend success message.

    Raises:
        ServerRejectionError: If the backend rejects the credentials.
        NetworkError: If the backend cannot be reached.

    """
    _LOGGER.debug(
        "Submitting credentials for %s (fields: %s)", service, list(credentials)
    )
    data = await _async_request(
        session,
        "POST",
        "/services/connect",
        json={"service": service, "credentials": credentials},
    )
    return extract_message(data, f"Successfully connected to {service}")


async def async_disconnect_service(session: BackendSession, service: str) -> str:
    """Disconnect a service for the session user and return the backend message."""
    data = await _async_request(session, "DELETE", f"/services/{service}/disconnect")
    return extract_message(data, f"Successfully disconnected from {service}")


async def async_list_templates(
    session: BackendSession,
) -> tuple[list[AutomationTemplate], dict[str, bool]]:
    """Fetch the template catalog.

    Returns:
        Tuple of (templates, connected map merged across templates).

    """
    data = await _async_request(session, "GET", "/areas/templates")
    templates = extract_templates(data)
    _LOGGER.debug("Retrieved %d templates", len(templates))
    return templates, extract_connected_services(data)


async def async_list_areas(session: BackendSession) -> list[AutomationInstance]:
    """Fetch the user's automation instances."""
    data = await _async_request(session, "GET", "/areas")
    instances = extract_instances(data)
    _LOGGER.debug("Retrieved %d areas", len(instances))
    return instances


async def async_get_area(session: BackendSession, area_id: int) -> AutomationInstance:
    """Fetch a single automation instance."""
    data = await _async_request(session, "GET", f"/areas/{area_id}")
    return extract_instance(data["data"])


async def async_create_area_from_template(
    session: BackendSession,
    template_id: str,
    name: str | None = None,
    reaction_config: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Create an automation instance from a template.

    Returns:
        The created area record.

    Raises:
        ServerRejectionError: If prerequisite services are missing or the
            template is unknown; ``missing_services`` lists the former.

    """
    payload: dict[str, Any] = {"template_id": template_id}
    if name is not None:
        payload["name"] = name
    if reaction_config is not None:
        payload["reaction_config"] = reaction_config

    data = await _async_request(session, "POST", "/areas", json=payload)
    return data.get("data") or {}


async def async_create_custom_area(
    session: BackendSession,
    definition: CustomDefinition,
) -> dict[str, Any]:
    """Create an automation instance from a free-form definition.

    Returns:
        The created area record.

    Raises:
        ServerRejectionError: If prerequisite services are missing.

    """
    payload = {
        "name": definition.name
        or f"{definition.action_service} to {definition.reaction_service}",
        "description": definition.description or "Custom automation",
        "action_service": definition.action_service,
        "action_type": definition.action_type,
        "action_config": dict(definition.action_config),
        "reaction_service": definition.reaction_service,
        "reaction_type": definition.reaction_type,
        "reaction_config": dict(definition.reaction_config),
        "active": definition.active,
    }
    data = await _async_request(session, "POST", "/areas/custom", json=payload)
    return data.get("data") or {}


async def async_toggle_area(session: BackendSession, area_id: int) -> dict[str, Any]:
    """Flip the activation of an automation instance.

    Returns:
        The updated area record as returned by the backend.

    """
    data = await _async_request(session, "POST", f"/areas/{area_id}/toggle")
    return data.get("data") or {}


async def async_delete_area(session: BackendSession, area_id: int) -> None:
    """Delete an automation instance."""
    await _async_request(session, "DELETE", f"/areas/{area_id}")
    _LOGGER.debug("Deleted area %s", area_id)
