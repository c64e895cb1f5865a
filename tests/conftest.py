"""Pytest configuration and fixtures for AREA orchestrator tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest
import pytest_asyncio

from area_orchestrator.api import BackendSession
from area_orchestrator.registry import ConnectionRegistry

API_URL = "http://backend.test"
TOKEN = "test_token"


class FakeWindow:
    """Authorization window double that counts close calls."""

    def __init__(self) -> None:
        self.closed = False
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1
        if self.closed:
            error_msg = "window closed twice"
            raise AssertionError(error_msg)
        self.closed = True


class FakeOpener:
    """Window opener double recording every open request."""

    def __init__(self, *, blocked: bool = False) -> None:
        self.blocked = blocked
        self.calls: list[tuple[str, str, str]] = []
        self.windows: list[FakeWindow] = []

    def __call__(self, url: str, name: str, features: str) -> FakeWindow | None:
        self.calls.append((url, name, features))
        if self.blocked:
            return None
        window = FakeWindow()
        self.windows.append(window)
        return window


@pytest_asyncio.fixture
async def client() -> AsyncIterator[httpx.AsyncClient]:
    """Fixture providing a plain httpx client."""
    async with httpx.AsyncClient() as http_client:
        yield http_client


@pytest_asyncio.fixture
async def session(client: httpx.AsyncClient) -> BackendSession:
    """Fixture providing a backend session against the test URL."""
    return BackendSession(client=client, token=TOKEN, base_url=API_URL)


@pytest_asyncio.fixture
async def registry(session: BackendSession) -> ConnectionRegistry:
    """Fixture providing a registry over the built-in service table."""
    return ConnectionRegistry(session)


@pytest.fixture
def opener() -> FakeOpener:
    """Fixture providing a window opener that always succeeds."""
    return FakeOpener()


def area_record(area_id: int = 1, **overrides: Any) -> dict[str, Any]:
    """Build an area record as returned by the backend.

    Args:
        area_id: Identifier of the area.
        **overrides: Fields replacing the defaults.

    Returns:
        A dictionary representing one area record.

    """
    record = {
        "id": area_id,
        "name": "YouTube to Telegram",
        "description": "Notify on new videos",
        "action_service": "YouTube",
        "action_type": "new_video",
        "reaction_service": "Telegram",
        "reaction_type": "send_message",
        "active": False,
        "trigger_count": 0,
        "last_triggered_at": None,
        "can_execute": True,
    }
    record.update(overrides)
    return record


@pytest.fixture
def sample_templates_response() -> dict[str, Any]:
    """Fixture providing a sample template listing.

    Returns:
        A dictionary representing the template listing with two templates.

    """
    return {
        "success": True,
        "data": [
            {
                "id": "youtube_to_telegram",
                "name": "YouTube to Telegram",
                "description": "Get notified on Telegram for new videos",
                "action_service": "YouTube",
                "action_type": "new_video",
                "reaction_service": "Telegram",
                "reaction_type": "send_message",
                "requires_services": ["YouTube", "Telegram"],
                "services_connected": {"YouTube": True, "Telegram": False},
                "can_activate": False,
                "default_config": {"chat_id": ""},
            },
            {
                "id": "twitch_to_telegram",
                "name": "Twitch to Telegram",
                "description": "Get notified when a streamer goes live",
                "action_service": "Twitch",
                "action_type": "stream_online",
                "reaction_service": "Telegram",
                "reaction_type": "send_message",
                "requires_services": ["Twitch", "Telegram"],
                "services_connected": {"Twitch": False, "Telegram": False},
                "can_activate": False,
            },
        ],
    }


@pytest.fixture
def sample_areas_response() -> dict[str, Any]:
    """Fixture providing a sample area listing with one inactive area."""
    return {"success": True, "data": [area_record(1)]}
