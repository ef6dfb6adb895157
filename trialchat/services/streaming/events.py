"""
Canonical Stream Events - Backend-agnostic event taxonomy.

Every backend vocabulary is normalized into these variants. They are the only
contract between the normalizer and everything downstream (pipeline tracker,
profile accumulator, session coordinator, SSE encoder).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum


class EventKind(str, Enum):
    """Discriminator of the canonical event union."""
    STAGE_START = "stage-start"
    STAGE_PROGRESS = "stage-progress"
    STAGE_COMPLETE = "stage-complete"
    TRIAL_PROGRESS = "trial-progress"
    FINAL_RESPONSE = "final-response"
    ERROR = "error"
    STREAM_END = "stream-end"


TERMINAL_KINDS = (EventKind.FINAL_RESPONSE, EventKind.ERROR)


@dataclass
class StreamEvent:
    """Base class; use one of the concrete variants below."""

    kind = None  # type: EventKind

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.kind.value}
        data.update({k: v for k, v in self.payload().items() if v is not None})
        return data


@dataclass
class StageStart(StreamEvent):
    stage_name: str
    detail: Optional[str] = None

    kind = EventKind.STAGE_START

    def payload(self) -> Dict[str, Any]:
        return {"stage_name": self.stage_name, "detail": self.detail}


@dataclass
class StageProgress(StreamEvent):
    stage_name: str
    detail: Optional[str] = None

    kind = EventKind.STAGE_PROGRESS

    def payload(self) -> Dict[str, Any]:
        return {"stage_name": self.stage_name, "detail": self.detail}


@dataclass
class StageComplete(StreamEvent):
    stage_name: str
    cost: Optional[float] = None
    detail: Optional[str] = None

    kind = EventKind.STAGE_COMPLETE

    def payload(self) -> Dict[str, Any]:
        return {"stage_name": self.stage_name, "cost": self.cost, "detail": self.detail}


@dataclass
class TrialProgress(StreamEvent):
    """Per-trial progress during eligibility assessment (index is 1-based)."""
    nct_id: str
    title: str
    index: int
    total: int
    status: str
    confidence: Optional[float] = None

    kind = EventKind.TRIAL_PROGRESS

    def payload(self) -> Dict[str, Any]:
        return {
            "nct_id": self.nct_id,
            "title": self.title,
            "index": self.index,
            "total": self.total,
            "status": self.status,
            "confidence": self.confidence,
        }


@dataclass
class FinalResponse(StreamEvent):
    """
    End of a successful turn.

    `profile` is a snapshot delta (merged, never assigned); `trials` is None when
    the backend did not send a list, an empty list when it sent no matches.
    """
    text: str
    profile: Optional[Dict[str, Any]] = None
    trials: Optional[List[Dict[str, Any]]] = None
    total_cost: Optional[float] = None
    summary: Optional[Dict[str, Any]] = field(default=None, repr=False)

    kind = EventKind.FINAL_RESPONSE

    def payload(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "profile": self.profile,
            "trials": self.trials,
            "total_cost": self.total_cost,
            "summary": self.summary,
        }


@dataclass
class StreamErrorEvent(StreamEvent):
    """`reason` is a machine-readable cause (see REASON_* in streaming.config)."""
    message: str
    retryable: bool = True
    reason: Optional[str] = None

    kind = EventKind.ERROR

    def payload(self) -> Dict[str, Any]:
        return {"message": self.message, "retryable": self.retryable, "reason": self.reason}


@dataclass
class StreamEnd(StreamEvent):
    kind = EventKind.STREAM_END
