"""Data models for the AREA connection orchestrator."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .window import AuthWindow


class AuthKind(StrEnum):
    """How a service authorizes the platform."""

    OAUTH = "oauth"
    CREDENTIAL = "credential"


class AttemptState(StrEnum):
    """States of a single connection attempt."""

    IDLE = "idle"
    OPENING = "opening"
    WAITING = "waiting"
    SUCCESS = "success"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        """Return True for states that end an attempt."""
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        AttemptState.SUCCESS,
        AttemptState.TIMEOUT,
        AttemptState.CANCELLED,
        AttemptState.ERROR,
    }
)


@dataclass(frozen=True)
class FieldSpec:
    """Declared credential field for a credential-based service.

    Attributes:
        name: Key sent to the backend inside ``credentials``.
        required: Whether an empty value is rejected.
        pattern: Optional regular expression the value must match.
        prefix: Optional literal prefix the value must start with.
        message: Message shown when ``pattern`` or ``prefix`` fails.

    """

    name: str
    required: bool = True
    pattern: str | None = None
    prefix: str | None = None
    message: str | None = None


@dataclass
class Service:
    """An external service and the user's connection to it."""

    name: str
    auth_kind: AuthKind
    connected: bool = False


@dataclass(frozen=True)
class AutomationTemplate:
    """A predefined action/reaction pairing from the template catalog."""

    id: str
    name: str
    action_service: str
    action_type: str
    reaction_service: str
    reaction_type: str
    required_services: tuple[str, ...]
    description: str = ""
    default_config: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AutomationInstance:
    """A user-owned automation ("Area") linking an action to a reaction."""

    id: int
    name: str
    action_service: str
    action_type: str
    reaction_service: str
    reaction_type: str
    active: bool = False
    trigger_count: int = 0
    last_triggered_at: datetime | None = None
    can_execute: bool = False
    description: str = ""
    template_id: str | None = None

    @property
    def services(self) -> tuple[str, str]:
        """Return the (action, reaction) service names."""
        return (self.action_service, self.reaction_service)


@dataclass(frozen=True)
class TemplateView:
    """Derived, per-template picture produced by the reconciler.

    ``can_activate`` is computed from ``connected_map`` and is never stored.
    """

    template: AutomationTemplate
    connected_map: Mapping[str, bool]
    instance: AutomationInstance | None = None

    @property
    def can_activate(self) -> bool:
        """Return True only when every required service is connected."""
        return all(self.connected_map.values())

    @property
    def missing_services(self) -> list[str]:
        """Return the required services that are not connected."""
        return [name for name, ok in self.connected_map.items() if not ok]


@dataclass(frozen=True)
class CustomDefinition:
    """Free-form action/reaction pairing used to create an instance."""

    action_service: str
    action_type: str
    reaction_service: str
    reaction_type: str
    name: str | None = None
    description: str | None = None
    action_config: Mapping[str, Any] = field(default_factory=dict)
    reaction_config: Mapping[str, Any] = field(default_factory=dict)
    active: bool = False


@dataclass(frozen=True)
class CreateResult:
    """Outcome of a create request."""

    instance: AutomationInstance | None = None
    missing_services: tuple[str, ...] = ()
    message: str | None = None

    @property
    def created(self) -> bool:
        """Return True if the backend created an instance."""
        return self.instance is not None


@dataclass(frozen=True)
class ToggleOperation:
    """Snapshot held while an optimistic toggle is in flight."""

    area_id: int
    previous_active: bool


@dataclass
class ConnectionAttempt:
    """A single in-flight connection attempt for one service.

    The runtime fields (future, subscription, poll task, timeout handle) are
    owned by the flow and released exactly once on resolution.
    """

    service: str
    kind: AuthKind
    started_at: datetime
    state: AttemptState = AttemptState.IDLE
    handle: AuthWindow | None = None
    error: Exception | None = None
    resolved: bool = False
    future: asyncio.Future[AttemptState] | None = field(default=None, repr=False)
    unsubscribe: Callable[[], None] | None = field(default=None, repr=False)
    poll_task: asyncio.Task[None] | None = field(default=None, repr=False)
    timeout_handle: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def live(self) -> bool:
        """Return True while the attempt has not reached a terminal state."""
        return not self.resolved and not self.state.terminal
