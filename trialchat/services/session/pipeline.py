"""
Pipeline State Machine - Status of the fixed, ordered matching stages.

Each stage moves pending -> running -> complete | error and stays there until
the next turn resets it. Driven exclusively by canonical stream events.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from trialchat.services.streaming.config import STAGE_DEFINITIONS
from trialchat.services.streaming.events import (
    EventKind,
    StreamEvent,
    TrialProgress,
)

logger = logging.getLogger(__name__)


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class PipelineStage:
    """One named stage; `model` is informational only."""
    name: str
    description: str = ""
    model: str = ""
    status: StageStatus = StageStatus.PENDING
    cost: Optional[float] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'description': self.description,
            'model': self.model,
            'status': self.status.value,
            'cost': self.cost,
            'detail': self.detail,
        }


@dataclass
class TrialProgressEvent:
    nct_id: str
    title: str
    index: int
    total: int
    status: str
    confidence: Optional[float] = None

    def to_dict(self) -> Dict:
        return {
            'nct_id': self.nct_id,
            'title': self.title,
            'index': self.index,
            'total': self.total,
            'status': self.status,
            'confidence': self.confidence,
        }


def default_stages() -> List[PipelineStage]:
    return [
        PipelineStage(name=d["name"], description=d["description"], model=d["model"])
        for d in STAGE_DEFINITIONS
    ]


class PipelineTracker:
    """
    Tracks stage statuses for the current turn.

    Terminal events finalize every stage: a final response forces any stage
    still pending or running to complete (the backend may skip completion
    frames), an error marks the running stages as failed and leaves the rest.
    """

    def __init__(self, stages: Optional[List[PipelineStage]] = None):
        self.stages: List[PipelineStage] = stages if stages is not None else default_stages()
        names = [s.name for s in self.stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Stage names must be unique: {names}")
        self.trial_progress: List[TrialProgressEvent] = []
        self.is_running = False

    def get(self, name: str) -> Optional[PipelineStage]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def reset(self) -> None:
        """Back to all-pending for a new turn."""
        for stage in self.stages:
            stage.status = StageStatus.PENDING
            stage.cost = None
            stage.detail = None
        self.trial_progress = []
        self.is_running = False

    def apply(self, event: StreamEvent) -> None:
        """Apply one canonical event."""
        kind = event.kind

        if kind == EventKind.STAGE_START:
            stage = self._lookup(event.stage_name)
            if stage is not None:
                stage.status = StageStatus.RUNNING
                stage.detail = event.detail
            self.is_running = True

        elif kind == EventKind.STAGE_PROGRESS:
            stage = self._lookup(event.stage_name)
            if stage is not None:
                stage.detail = event.detail

        elif kind == EventKind.STAGE_COMPLETE:
            stage = self._lookup(event.stage_name)
            if stage is not None:
                stage.status = StageStatus.COMPLETE
                stage.detail = None
                if event.cost is not None:
                    stage.cost = event.cost

        elif kind == EventKind.TRIAL_PROGRESS:
            self._record_trial(event)

        elif kind == EventKind.FINAL_RESPONSE:
            self._finalize(StageStatus.COMPLETE, (StageStatus.PENDING, StageStatus.RUNNING))

        elif kind == EventKind.ERROR:
            self._finalize(StageStatus.ERROR, (StageStatus.RUNNING,))

    def _finalize(self, target: StageStatus, from_statuses) -> None:
        for stage in self.stages:
            if stage.status in from_statuses:
                stage.status = target
                stage.detail = None
        self.is_running = False

    def _record_trial(self, event: TrialProgress) -> None:
        self.trial_progress.append(TrialProgressEvent(
            nct_id=event.nct_id,
            title=event.title,
            index=event.index,
            total=event.total,
            status=event.status,
            confidence=event.confidence,
        ))

    def _lookup(self, name: str) -> Optional[PipelineStage]:
        stage = self.get(name)
        if stage is None:
            logger.debug(f"Event for unknown stage {name!r} ignored")
        return stage

    def snapshot(self) -> Dict:
        return {
            'is_running': self.is_running,
            'stages': [s.to_dict() for s in self.stages],
            'trial_progress': [t.to_dict() for t in self.trial_progress],
        }
