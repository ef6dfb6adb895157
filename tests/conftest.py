"""
Pytest fixtures for the streaming chat session tests.
"""
import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from trialchat.services.backends import MatchingBackend, LocalPipelineBackend
from trialchat.services.session import (
    BackendMode,
    InMemorySessionStore,
    SessionCoordinator,
)
from trialchat.services.streaming.config import SOURCE_REMOTE


def sse(payload: Dict[str, Any], event: Optional[str] = None) -> str:
    """One SSE frame as the backends send it."""
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {json.dumps(payload)}\n\n"


class ScriptedBackend(MatchingBackend):
    """
    Backend that replays canned frames.

    Each open_stream() call consumes the next script. A script may end by
    hanging (no more frames, connection kept open) or by raising.
    """

    def __init__(self, source: str = SOURCE_REMOTE, healthy: bool = True, chunk_size: Optional[int] = None):
        self.source = source
        self.healthy = healthy
        self.chunk_size = chunk_size
        self.scripts: List[Dict[str, Any]] = []
        self.requests = []
        self.health_checks = 0

    def add_script(self, frames: List[str], hang: bool = False, error: Optional[Exception] = None):
        self.scripts.append({"frames": frames, "hang": hang, "error": error})
        return self

    async def check_health(self) -> bool:
        self.health_checks += 1
        return self.healthy

    async def open_stream(self, request):
        self.requests.append(request)
        script = self.scripts.pop(0)
        data = "".join(script["frames"]).encode("utf-8")
        size = self.chunk_size or len(data) or 1
        for i in range(0, len(data), size):
            yield data[i:i + size]
            await asyncio.sleep(0)
        if script["error"] is not None:
            raise script["error"]
        if script["hang"]:
            await asyncio.sleep(3600)


@pytest.fixture
def remote_backend() -> ScriptedBackend:
    return ScriptedBackend(source=SOURCE_REMOTE, chunk_size=7)


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def coordinator(store, remote_backend) -> SessionCoordinator:
    return SessionCoordinator(
        store=store,
        backends={
            BackendMode.LOCAL: LocalPipelineBackend(step_delay=0),
            BackendMode.REMOTE: remote_backend,
        },
        default_mode=BackendMode.LOCAL,
        heartbeat_timeout=0.3,
        heartbeat_interval=0.05,
    )


@pytest.fixture
def remote_match() -> Dict[str, Any]:
    """One entry of the remote service's result.matches"""
    return {
        "trial_id": "t-1",
        "nct_id": "NCT001",
        "title": "Osimertinib After Progression",
        "phase": "Phase 2",
        "status": "RECRUITING",
        "therapeutic_area": "oncology",
        "overall_score": 0.82,
        "recommendation": "ELIGIBLE",
        "criteria_summary": {"meets": 4, "fails": 1, "insufficient": 2},
        "criteria_details": [
            {"criterion_id": "i1", "criterion_text": "Age >= 18", "criterion_type": "inclusion",
             "status": "MEETS_CRITERION", "confidence": 0.99, "evidence": [], "reasoning": "Patient is 55"},
            {"criterion_id": "i2", "criterion_text": "NSCLC", "criterion_type": "inclusion",
             "status": "MEETS_CRITERION", "confidence": 0.95, "evidence": [], "reasoning": "NSCLC confirmed"},
            {"criterion_id": "i3", "criterion_text": "EGFR+", "criterion_type": "inclusion",
             "status": "MEETS_CRITERION", "confidence": 0.9, "evidence": [], "reasoning": "EGFR positive"},
            {"criterion_id": "i4", "criterion_text": "Measurable disease", "criterion_type": "inclusion",
             "status": "MEETS_CRITERION", "confidence": 0.7, "evidence": [], "reasoning": "RECIST lesion"},
            {"criterion_id": "e1", "criterion_text": "No brain mets", "criterion_type": "exclusion",
             "status": "INSUFFICIENT_INFO", "confidence": 0.4, "evidence": [], "reasoning": "Brain imaging unknown"},
            {"criterion_id": "e2", "criterion_text": "No prior TKI", "criterion_type": "exclusion",
             "status": "FAILS_CRITERION", "confidence": 0.8, "evidence": [], "reasoning": "Prior osimertinib"},
            {"criterion_id": "e3", "criterion_text": "ECOG <= 1", "criterion_type": "exclusion",
             "status": "INSUFFICIENT_INFO", "confidence": 0.5, "evidence": [], "reasoning": "ECOG missing"},
        ],
        "locations": [
            {"facility": "MGH", "city": "Boston", "state": "MA", "country": "United States"},
            {"facility": "Charite", "city": "Berlin", "country": "Germany"},
        ],
    }
