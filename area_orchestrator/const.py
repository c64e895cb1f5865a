"""Constants for the AREA connection orchestrator.

This module contains all the constants used throughout the orchestrator,
including API endpoints, timings, error keys, and the service and
template tables that drive the connection flows.
"""

from .models import AuthKind, FieldSpec

DEFAULT_API_URL = "http://localhost:8000"
API_PREFIX = "/api"
USER_AGENT = "area-orchestrator/1.0"

ENV_API_URL = "AREA_API_URL"
ENV_API_TOKEN = "AREA_API_TOKEN"

DEFAULT_REQUEST_TIMEOUT = 5.0
REQUEST_RETRIES = 3
REQUEST_BACKOFF_FACTOR = 0.5

OAUTH_POLL_INTERVAL = 2.0
OAUTH_TIMEOUT = 300.0  # Leaves time for the user on the provider's page
OAUTH_SUCCESS_MESSAGE_TYPE = "OAUTH_SUCCESS"
OAUTH_WINDOW_FEATURES = "width=600,height=700,left=200,top=100"

ERROR_POPUP_BLOCKED = "popup_blocked"
ERROR_TIMEOUT = "timeout_error"
ERROR_VALIDATION = "validation_error"
ERROR_SERVER_REJECTED = "server_rejected"
ERROR_INVALID_AUTH = "invalid_auth"
ERROR_CANNOT_CONNECT = "cannot_connect"
ERROR_TOGGLE_CONFLICT = "toggle_conflict"
ERROR_IN_PROGRESS = "in_progress"
ERROR_ACTIVATION_BLOCKED = "activation_blocked"
ERROR_UNKNOWN_SERVICE = "unknown_service"
ERROR_UNKNOWN_AREA = "unknown_area"
ERROR_API_ERROR = "api_error"
ERROR_UNKNOWN = "unknown_error"

MESSAGE_POPUP_BLOCKED = "Popup blocked. Please allow popups for this site."
MESSAGE_TIMEOUT = "Connection timeout. Please try again."
MESSAGE_NETWORK = "Network error occurred. Please try again."
MESSAGE_RELOAD_FAILED = "Failed to load AREA details"
MESSAGE_INVALID_AUTH = "Your session has expired. Please log in again."
MESSAGE_UNKNOWN = "Something went wrong. Please try again."
MESSAGE_CONNECTED = "Successfully connected to {service}"
MESSAGE_DISCONNECTED = "Successfully disconnected from {service}"
MESSAGE_CONNECTION_CANCELLED = "{service} connection cancelled"
MESSAGE_AREA_CREATED = (
    'AREA created successfully. Click "Activate" to start monitoring.'
)
MESSAGE_AREA_ACTIVATED = "AREA activated"
MESSAGE_AREA_DEACTIVATED = "AREA deactivated"
MESSAGE_AREA_DELETED = "AREA deleted successfully"
MESSAGE_MISSING_SERVICES = "Please connect {services} first"

DISCORD_WEBHOOK_PREFIX = "https://discord.com/api/webhooks/"

SERVICES: dict[str, AuthKind] = {
    "YouTube": AuthKind.OAUTH,
    "Twitch": AuthKind.OAUTH,
    "Gmail": AuthKind.OAUTH,
    "Telegram": AuthKind.CREDENTIAL,
    "Discord": AuthKind.CREDENTIAL,
    "Steam": AuthKind.CREDENTIAL,
}

CREDENTIAL_FIELDS: dict[str, tuple[FieldSpec, ...]] = {
    "Telegram": (
        FieldSpec(
            name="bot_token",
            pattern=r"^\d+:[A-Za-z0-9_-]{20,50}$",
            message="Invalid Telegram bot token",
        ),
        FieldSpec(name="chat_id", required=False),
    ),
    "Discord": (
        FieldSpec(
            name="webhook_url",
            prefix=DISCORD_WEBHOOK_PREFIX,
            message="Invalid Discord webhook URL",
        ),
        FieldSpec(name="bot_token", required=False),
    ),
    "Steam": (
        FieldSpec(name="api_key"),
        FieldSpec(
            name="steam_id",
            pattern=r"^\d{17}$",
            message="Steam ID must be 17 digits",
        ),
    ),
}

TEMPLATE_REQUIREMENTS: dict[str, tuple[str, str]] = {
    "youtube_to_telegram": ("YouTube", "Telegram"),
    "twitch_to_telegram": ("Twitch", "Telegram"),
    "youtube_to_gmail": ("YouTube", "Gmail"),
    "gmail_to_telegram": ("Gmail", "Telegram"),
    "steam_to_telegram": ("Steam", "Telegram"),
    "youtube_to_discord": ("YouTube", "Discord"),
}
