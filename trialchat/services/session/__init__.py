"""
Chat session management: state, store, pipeline tracking, coordination, retry.
"""

from .state import Session, TurnLogEntry, TurnRole, BackendMode
from .state_store import SessionStore, InMemorySessionStore, get_session_store
from .pipeline import PipelineStage, PipelineTracker, StageStatus, TrialProgressEvent
from .profile import merge_profile
from .coordinator import SessionCoordinator, TurnHandle, get_coordinator
from .retry import RetryController, rollback_failed_turn

__all__ = [
    "Session",
    "TurnLogEntry",
    "TurnRole",
    "BackendMode",
    "SessionStore",
    "InMemorySessionStore",
    "get_session_store",
    "PipelineStage",
    "PipelineTracker",
    "StageStatus",
    "TrialProgressEvent",
    "merge_profile",
    "SessionCoordinator",
    "TurnHandle",
    "get_coordinator",
    "RetryController",
    "rollback_failed_turn",
]
