"""Service layer exports."""

from .oauth_flow import CallbackOutcome, FlowState, OAuthFlow
from .protocol import ProtocolHandler
from .session_registry import SessionHandle, SessionNotFoundError, SessionRegistry
from .sweeper import run_sweeper, sweep_once
from .vault_tools import VaultTools

__all__ = [
    "CallbackOutcome",
    "FlowState",
    "OAuthFlow",
    "ProtocolHandler",
    "SessionHandle",
    "SessionNotFoundError",
    "SessionRegistry",
    "VaultTools",
    "run_sweeper",
    "sweep_once",
]
