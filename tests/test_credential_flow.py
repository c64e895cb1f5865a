"""Tests for the credential-based connection flow."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
import voluptuous as vol

from area_orchestrator.api import BackendSession
from area_orchestrator.credential_flow import (
    CredentialConnectionFlow,
    build_schema,
    clean_values,
)
from area_orchestrator.errors import (
    ConnectionInProgressError,
    NetworkError,
    ServerRejectionError,
    UnknownServiceError,
    ValidationError,
)
from area_orchestrator.models import AttemptState, FieldSpec
from area_orchestrator.registry import ConnectionRegistry

WEBHOOK_URL = "https://discord.com/api/webhooks/123/abc"
BOT_TOKEN = "123456789:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw"


@pytest.fixture
def flow(
    session: BackendSession, registry: ConnectionRegistry
) -> CredentialConnectionFlow:
    """Fixture providing a credential flow over the built-in fields."""
    return CredentialConnectionFlow(session, registry)


class TestBuildSchema:
    """Tests for build_schema and clean_values."""

    def test_required_field_missing(self) -> None:
        """Test that a missing required field reports its label."""
        schema = build_schema([FieldSpec(name="api_key")])
        with pytest.raises(vol.MultipleInvalid, match="Api key is required"):
            schema({})

    def test_optional_field_and_extra_keys(self) -> None:
        """Test that optional fields may be absent and unknown keys dropped."""
        schema = build_schema(
            [FieldSpec(name="api_key"), FieldSpec(name="chat_id", required=False)]
        )
        assert schema({"api_key": "k", "other": "x"}) == {"api_key": "k"}

    def test_prefix_and_pattern(self) -> None:
        """Test that prefix and pattern failures use the declared message."""
        schema = build_schema(
            [
                FieldSpec(
                    name="code", prefix="AB", pattern=r"^AB\d+$", message="Bad code"
                )
            ]
        )
        assert schema({"code": "AB12"}) == {"code": "AB12"}
        with pytest.raises(vol.MultipleInvalid, match="Bad code"):
            schema({"code": "XY12"})
        with pytest.raises(vol.MultipleInvalid, match="Bad code"):
            schema({"code": "ABxx"})

    def test_clean_values_strips_and_drops_blanks(self) -> None:
        """Test that blanks count as missing."""
        assert clean_values({"a": "  x ", "b": "   ", "c": None}) == {"a": "x"}


class TestCredentialConnectionFlow:
    """Tests for CredentialConnectionFlow."""

    @pytest.mark.asyncio
    async def test_initiate_opens_modal(self, flow: CredentialConnectionFlow) -> None:
        """Test that initiating shows the modal with the declared fields."""
        assert await flow.async_initiate("Discord") is AttemptState.OPENING

        modal = flow.modal("Discord")
        assert modal is not None
        assert [spec.name for spec in modal.fields] == ["webhook_url", "bot_token"]
        assert flow.attempt_state("Discord") is AttemptState.OPENING

    @pytest.mark.asyncio
    async def test_initiate_unknown_service(
        self, flow: CredentialConnectionFlow
    ) -> None:
        """Test that services without a field schema are rejected."""
        with pytest.raises(UnknownServiceError):
            await flow.async_initiate("YouTube")

    @pytest.mark.asyncio
    async def test_cancel_closes_modal(self, flow: CredentialConnectionFlow) -> None:
        """Test that cancel closes the modal without submitting."""
        modal = flow.open("Steam")

        assert flow.cancel("Steam") is True
        assert modal.is_open is False
        assert flow.modal("Steam") is None
        assert flow.attempt_state("Steam") is AttemptState.IDLE
        assert flow.cancel("Steam") is False

    @pytest.mark.asyncio
    async def test_invalid_webhook_is_rejected_locally(
        self, flow: CredentialConnectionFlow, registry: ConnectionRegistry
    ) -> None:
        """Test that a malformed webhook never reaches the backend."""
        with (
            patch("area_orchestrator.api.async_submit_credentials") as mock_submit,
            pytest.raises(ValidationError) as exc_info,
        ):
            await flow.async_submit("Discord", {"webhook_url": "https://example.com"})

        mock_submit.assert_not_called()
        assert exc_info.value.field_errors == {
            "webhook_url": "Invalid Discord webhook URL"
        }
        modal = flow.modal("Discord")
        assert modal.is_open is True
        assert modal.values == {"webhook_url": "https://example.com"}
        assert modal.error == "Invalid Discord webhook URL"
        assert registry.is_connected("Discord") is False

    @pytest.mark.asyncio
    async def test_missing_required_field(self, flow: CredentialConnectionFlow) -> None:
        """Test that blank required fields are reported per field."""
        with pytest.raises(ValidationError) as exc_info:
            await flow.async_submit("Steam", {"api_key": "  ", "steam_id": "123"})

        assert exc_info.value.field_errors == {
            "api_key": "Api key is required",
            "steam_id": "Steam ID must be 17 digits",
        }

    @pytest.mark.asyncio
    async def test_valid_submission_connects(
        self, flow: CredentialConnectionFlow, registry: ConnectionRegistry
    ) -> None:
        """Test that valid credentials are sent cleaned and the modal closes."""
        with patch(
            "area_orchestrator.api.async_submit_credentials",
            AsyncMock(return_value="Telegram connected successfully"),
        ) as mock_submit:
            message = await flow.async_submit(
                "Telegram", {"bot_token": f" {BOT_TOKEN} ", "chat_id": ""}
            )

        assert message == "Telegram connected successfully"
        mock_submit.assert_awaited_once()
        assert mock_submit.await_args.args[1:] == (
            "Telegram",
            {"bot_token": BOT_TOKEN},
        )
        assert registry.is_connected("Telegram") is True
        assert flow.modal("Telegram") is None

    @pytest.mark.asyncio
    async def test_server_rejection_keeps_modal_open(
        self, flow: CredentialConnectionFlow, registry: ConnectionRegistry
    ) -> None:
        """Test that a backend rejection keeps the values and shows its message."""
        rejection = ServerRejectionError(
            "Invalid webhook",
            status=422,
            field_errors={"webhook_url": ["Webhook does not exist."]},
        )
        values = {"webhook_url": WEBHOOK_URL}
        with (
            patch(
                "area_orchestrator.api.async_submit_credentials",
                AsyncMock(side_effect=rejection),
            ),
            pytest.raises(ServerRejectionError),
        ):
            await flow.async_submit("Discord", values)

        modal = flow.modal("Discord")
        assert modal.is_open is True
        assert modal.values == values
        assert modal.error == "Invalid webhook"
        assert modal.field_errors == {"webhook_url": "Webhook does not exist."}
        assert modal.submitting is False
        assert registry.is_connected("Discord") is False

    @pytest.mark.asyncio
    async def test_network_error_keeps_modal_open(
        self, flow: CredentialConnectionFlow
    ) -> None:
        """Test that a transport failure shows the network message."""
        with (
            patch(
                "area_orchestrator.api.async_submit_credentials",
                AsyncMock(side_effect=NetworkError("down")),
            ),
            pytest.raises(NetworkError),
        ):
            await flow.async_submit("Discord", {"webhook_url": WEBHOOK_URL})

        assert flow.modal("Discord").error == (
            "Network error occurred. Please try again."
        )

    @pytest.mark.asyncio
    async def test_submission_in_flight_is_rejected(
        self, flow: CredentialConnectionFlow
    ) -> None:
        """Test that a second submit while one is running is refused."""
        flow.open("Discord").submitting = True

        with pytest.raises(ConnectionInProgressError):
            await flow.async_submit("Discord", {"webhook_url": WEBHOOK_URL})
        assert flow.attempt_state("Discord") is AttemptState.WAITING
