"""Client-side orchestrator for AREA service connections and automations."""

from .api import BackendSession, create_session_client
from .dashboard import AreaDashboard, ConnectionStatus
from .models import AttemptState, AuthKind, CustomDefinition
from .reconciler import MatchStrategy

__all__ = [
    "AreaDashboard",
    "AttemptState",
    "AuthKind",
    "BackendSession",
    "ConnectionStatus",
    "CustomDefinition",
    "MatchStrategy",
    "create_session_client",
]
