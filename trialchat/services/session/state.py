"""
Session State - Single source of truth for one chat conversation.

Holds the turn log, the accumulated patient profile, pipeline stage statuses
and the retry pointer. Owned exclusively by the session coordinator.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any
from datetime import datetime
from enum import Enum
import uuid

from trialchat.schemas.patient import PatientProfile
from .pipeline import PipelineTracker


class BackendMode(str, Enum):
    """Which backend serves the session's turns."""
    LOCAL = "local"
    REMOTE = "remote"


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class TurnLogEntry:
    """One entry of the conversation log."""
    role: TurnRole
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=datetime.utcnow)
    metadata: Optional[Dict[str, Any]] = None  # patient_data / trials
    is_error: bool = False

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'role': self.role.value,
            'content': self.content,
            'timestamp': self.timestamp.isoformat(),
            'metadata': self.metadata,
            'is_error': self.is_error,
        }


@dataclass
class Session:
    """
    Per-conversation state.

    Invariant: at most one turn is in flight (`is_loading`). Starting a turn
    resets stage statuses, trial progress and the transient turn cost; the
    accumulated profile survives across turns.
    """
    session_id: str
    mode: BackendMode = BackendMode.LOCAL
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    turns: List[TurnLogEntry] = field(default_factory=list)
    profile: PatientProfile = field(default_factory=PatientProfile)
    last_user_input: Optional[str] = None  # retained until a turn succeeds

    pipeline: PipelineTracker = field(default_factory=PipelineTracker)
    trials: List[Dict[str, Any]] = field(default_factory=list)
    total_cost: float = 0.0  # cumulative across successful turns
    turn_cost: float = 0.0   # running cost of the in-flight turn

    is_loading: bool = False
    matching_detail: Optional[str] = None
    current_turn_id: Optional[str] = None

    def add_turn(self, role: TurnRole, content: str, metadata: Optional[Dict] = None,
                 is_error: bool = False) -> TurnLogEntry:
        entry = TurnLogEntry(role=role, content=content, metadata=metadata, is_error=is_error)
        self.turns.append(entry)
        self.updated_at = datetime.utcnow()
        return entry

    def begin_turn(self, text: str) -> str:
        """Reset transient state for a new turn and mark it in flight."""
        self.pipeline.reset()
        self.turn_cost = 0.0
        self.matching_detail = None
        self.last_user_input = text
        self.is_loading = True
        self.current_turn_id = str(uuid.uuid4())[:8]
        self.updated_at = datetime.utcnow()
        return self.current_turn_id

    def count_turns(self, role: TurnRole) -> int:
        return sum(1 for t in self.turns if t.role == role)

    def to_dict(self) -> Dict:
        """Serialize for API responses."""
        return {
            'session_id': self.session_id,
            'mode': self.mode.value,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'is_loading': self.is_loading,
            'profile': self.profile.model_dump(exclude_none=True),
            'has_minimum_for_matching': self.profile.has_minimum_for_matching(),
            'turns': [t.to_dict() for t in self.turns],
            'pipeline': self.pipeline.snapshot(),
            'matching_detail': self.matching_detail,
            'trials': self.trials,
            'total_cost': self.total_cost,
            'turn_cost': self.turn_cost,
            'can_retry': self.last_user_input is not None and not self.is_loading,
        }
