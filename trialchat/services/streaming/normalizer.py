"""
Streaming Protocol - Event Normalizer

Maps a backend-specific frame vocabulary onto the canonical StreamEvent union.

Two vocabularies are registered:
- local:  graph node lifecycle frames (on_chain_start / on_chain_end). The
          sentinel node "LangGraph" ending means the whole run finished.
- remote: phase / sub-phase frames of the remote matching service, folded onto
          the same four canonical stages. Sub-phases the service skips
          (sequential fallback never pre-filters) are synthesized so the stage
          tracker never stalls on "pending".

Handlers live in EVENT_HANDLERS keyed by (source, raw_type). A new backend is
added by registering handlers, never by branching in consumers.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from trialchat.schemas.trials import TrialMatch
from .config import (
    DATA_MARKER,
    EVENT_MARKER,
    COMMENT_MARKER,
    DEFAULT_SSE_EVENT,
    SOURCE_LOCAL,
    SOURCE_REMOTE,
    STAGE_PREFILTER,
    STAGE_ELIGIBILITY,
    LOCAL_NODE_STAGES,
    LOCAL_COMPLETION_SENTINEL,
    REMOTE_PHASE_STAGES,
    REMOTE_BATCHED_MODE,
    CRITERION_MEETS,
    CRITERION_CONCERNS,
    MAX_MATCH_REASONS,
    MAX_MATCH_CONCERNS,
    REASON_BACKEND_ERROR,
)
from .errors import MalformedFrame, UnknownEventType
from .events import (
    StreamEvent,
    StageStart,
    StageProgress,
    StageComplete,
    TrialProgress,
    FinalResponse,
    StreamErrorEvent,
    StreamEnd,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Frame parsing
# =============================================================================

def parse_frame(frame: str) -> Optional[Tuple[str, str]]:
    """
    Split one SSE frame into its event name and data payload.

    Args:
        frame: One complete frame (no trailing separator)

    Returns:
        (event_name, data) or None when the frame has no data line
        (keep-alive comments, bare event lines).
    """
    event_name = DEFAULT_SSE_EVENT
    data_lines = []

    for line in frame.split("\n"):
        if line.startswith(DATA_MARKER):
            data_lines.append(line[len(DATA_MARKER):].strip())
        elif line.startswith(EVENT_MARKER):
            event_name = line[len(EVENT_MARKER):].strip() or DEFAULT_SSE_EVENT
        elif line.startswith(COMMENT_MARKER):
            continue

    if not data_lines:
        return None
    return event_name, "\n".join(data_lines)


# =============================================================================
# Per-stream state
# =============================================================================

@dataclass
class NormalizerState:
    """Mutable context of one stream; discarded with it."""
    source: str
    active_stage: Optional[str] = None
    matching_mode: str = ""
    running_cost: float = 0.0
    frames_seen: int = 0
    frames_dropped: int = 0

    def add_cost(self, value: Any) -> Optional[float]:
        cost = _as_float(value)
        if cost:
            self.running_cost += cost
        return cost

    def start(self, stage: str, detail: Optional[str] = None) -> StageStart:
        self.active_stage = stage
        return StageStart(stage_name=stage, detail=detail)

    def complete(self, stage: str, cost: Optional[float] = None, detail: Optional[str] = None) -> StageComplete:
        if self.active_stage == stage:
            self.active_stage = None
        return StageComplete(stage_name=stage, cost=cost, detail=detail)


Handler = Callable[[NormalizerState, Dict[str, Any]], List[StreamEvent]]

EVENT_HANDLERS: Dict[Tuple[str, str], Handler] = {}


def register(source: str, *raw_types: str):
    """Register a handler for one or more raw event types of a source."""
    def decorator(func: Handler) -> Handler:
        for raw_type in raw_types:
            key = (source, raw_type)
            if key in EVENT_HANDLERS:
                raise ValueError(f"Duplicate handler for {key}")
            EVENT_HANDLERS[key] = func
        return func
    return decorator


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _q(value: Any) -> Any:
    """Placeholder for missing counters in progress strings."""
    return "?" if value is None or value == "" else value


# =============================================================================
# Shared handlers (both vocabularies)
# =============================================================================

def _handle_error(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    message = payload.get("message") or payload.get("error") or "Unknown error from backend"
    return [StreamErrorEvent(message=str(message), reason=REASON_BACKEND_ERROR)]


def _handle_done(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    return [StreamEnd()]


register(SOURCE_LOCAL, "error")(_handle_error)
register(SOURCE_REMOTE, "error")(_handle_error)
register(SOURCE_LOCAL, "done")(_handle_done)
register(SOURCE_REMOTE, "done")(_handle_done)


# =============================================================================
# Local pipeline vocabulary
# =============================================================================

def _node_output(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = payload.get("data") or {}
    output = data.get("output") if isinstance(data, dict) else None
    return output if isinstance(output, dict) else {}


@register(SOURCE_LOCAL, "on_chain_start")
def _local_node_start(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    stage = LOCAL_NODE_STAGES.get(payload.get("name", ""))
    if stage is None:
        return []
    return [state.start(stage, payload.get("message"))]


@register(SOURCE_LOCAL, "on_chain_end")
def _local_node_end(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    name = payload.get("name", "")
    output = _node_output(payload)

    if name == LOCAL_COMPLETION_SENTINEL:
        return [FinalResponse(
            text=output.get("response") or "Error processing request.",
            profile=output.get("patientProfile"),
            trials=output.get("matchedTrials") or [],
            total_cost=_as_float(output.get("totalCost")),
        )]

    stage = LOCAL_NODE_STAGES.get(name)
    if stage is None:
        return []
    return [state.complete(stage, cost=state.add_cost(output.get("totalCost")))]


# =============================================================================
# Remote service vocabulary
# =============================================================================

@register(SOURCE_REMOTE, "phase_start")
def _remote_phase_start(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    phase = payload.get("phase") or ""
    message = payload.get("message")

    if phase == "matching":
        state.matching_mode = payload.get("mode") or ""
        events = [state.start(STAGE_PREFILTER, message)]
        # Sequential matching has no pre-filter sub-phase: close it right away
        if state.matching_mode != REMOTE_BATCHED_MODE:
            events.append(state.complete(STAGE_PREFILTER))
            events.append(state.start(STAGE_ELIGIBILITY, "Sequential matching"))
        return events

    stage = REMOTE_PHASE_STAGES.get(phase)
    if stage is None:
        logger.info(f"[remote] phase_start for unknown phase {phase!r} ignored")
        return []
    return [state.start(stage, message)]


@register(SOURCE_REMOTE, "phase_complete")
def _remote_phase_complete(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    phase = payload.get("phase") or ""
    cost = state.add_cost(payload.get("cost_usd"))

    stage = REMOTE_PHASE_STAGES.get(phase)
    if stage is None:
        logger.info(f"[remote] phase_complete for unknown phase {phase!r} ignored")
        return []
    detail = None
    if phase == "retrieval" and payload.get("candidates") is not None:
        detail = f"{payload['candidates']} candidates"
    return [state.complete(stage, cost=cost, detail=detail)]


@register(SOURCE_REMOTE, "super_batch_start")
def _remote_super_batch_start(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    return [StageProgress(STAGE_PREFILTER, f"Super-batch: {_q(payload.get('total_trials'))} trials")]


@register(SOURCE_REMOTE, "prefilter_start")
def _remote_prefilter_start(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    return [StageProgress(STAGE_PREFILTER, f"Pre-filtering {_q(payload.get('total_trials'))} trials...")]


@register(SOURCE_REMOTE, "prefilter_complete")
def _remote_prefilter_complete(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    detail = f"{payload.get('passed_count') or 0} passed / {payload.get('failed_count') or 0} failed"
    return [
        state.complete(STAGE_PREFILTER, detail=detail),
        state.start(STAGE_ELIGIBILITY, "Assessing eligibility criteria"),
    ]


@register(SOURCE_REMOTE, "exclusion_chunk_start", "exclusion_chunk_complete")
def _remote_exclusion_chunk(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    return [StageProgress(
        STAGE_ELIGIBILITY,
        f"Exclusion: chunk {_q(payload.get('chunk_index'))}/{_q(payload.get('total_chunks'))}",
    )]


@register(SOURCE_REMOTE, "inclusion_chunk_start", "inclusion_chunk_complete")
def _remote_inclusion_chunk(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    return [StageProgress(
        STAGE_ELIGIBILITY,
        f"Inclusion: chunk {_q(payload.get('chunk_index'))}/{_q(payload.get('total_chunks'))}",
    )]


@register(SOURCE_REMOTE, "exclusion_phase_complete", "inclusion_phase_complete")
def _remote_criteria_phase_complete(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    return [StageProgress(STAGE_ELIGIBILITY, payload.get("message") or "Phase complete")]


@register(SOURCE_REMOTE, "batch_complete")
def _remote_batch_complete(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    state.add_cost(payload.get("cost_usd"))
    return [StageProgress(
        STAGE_ELIGIBILITY,
        f"Batch done: {_q(payload.get('trials_processed'))} trials processed",
    )]


@register(SOURCE_REMOTE, "super_batch_fallback")
def _remote_super_batch_fallback(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    state.matching_mode = "sequential"
    return [StageProgress(STAGE_ELIGIBILITY, "Falling back to sequential mode...")]


@register(SOURCE_REMOTE, "trial_matched")
def _remote_trial_matched(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    state.add_cost(payload.get("cost_usd"))
    try:
        index = int(payload.get("index"))
        total = int(payload.get("total"))
    except (TypeError, ValueError):
        logger.warning(f"[remote] trial_matched without usable index/total: {payload}")
        return []
    return [TrialProgress(
        nct_id=str(payload.get("nct_id") or ""),
        title=str(payload.get("title") or ""),
        index=index,
        total=total,
        status=str(payload.get("status") or ""),
        confidence=_as_float(payload.get("confidence")),
    )]


@register(SOURCE_REMOTE, "heartbeat")
def _remote_heartbeat(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    if state.active_stage is None:
        return []
    return [StageProgress(state.active_stage, "Processing...")]


def convert_remote_match(match: Dict[str, Any]) -> Dict[str, Any]:
    """
    Flatten a remote TrialMatchResponse into the unified trial record.

    Args:
        match: One entry of result.matches

    Returns:
        TrialMatch as a plain dict
    """
    details = match.get("criteria_details") or []
    reasons = [
        c.get("reasoning", "") for c in details if c.get("status") == CRITERION_MEETS
    ][:MAX_MATCH_REASONS]
    concerns = [
        c.get("reasoning", "") for c in details if c.get("status") in CRITERION_CONCERNS
    ][:MAX_MATCH_CONCERNS]
    locations = [
        f"{loc.get('city', '')}, {loc.get('country', '')}" for loc in (match.get("locations") or [])
    ]

    return TrialMatch(
        nct_id=str(match.get("nct_id") or ""),
        title=str(match.get("title") or ""),
        phase=str(match.get("phase") or ""),
        status=str(match.get("status") or ""),
        sponsor="",  # not part of the remote match record
        locations=locations,
        match_score=_as_float(match.get("overall_score")) or 0.0,
        match_reasons=reasons,
        concerns=concerns,
    ).model_dump()


@register(SOURCE_REMOTE, "complete")
def _remote_complete(state: NormalizerState, payload: Dict[str, Any]) -> List[StreamEvent]:
    result = payload.get("result") or {}
    summary = payload.get("summary") or None

    trials = [convert_remote_match(m) for m in (result.get("matches") or [])]
    text = result.get("clinical_narrative") or f"Found {len(trials)} matching trials for your patient."

    total_cost = _as_float(summary.get("cost_usd")) if summary else None
    if not total_cost:
        total_cost = state.running_cost

    return [FinalResponse(
        text=text,
        profile=payload.get("patient_profile"),
        trials=trials,
        total_cost=total_cost,
        summary=summary,
    )]


# =============================================================================
# Normalizer
# =============================================================================

class StreamNormalizer:
    """
    Classifies frames of one stream into canonical events.

    Malformed payloads and unknown type tags are logged and dropped; nothing in
    here raises for bad input.
    """

    def __init__(self, source: str):
        if not any(key[0] == source for key in EVENT_HANDLERS):
            raise ValueError(f"No event vocabulary registered for source {source!r}")
        self.source = source
        self.state = NormalizerState(source=source)

    def normalize(self, frame: str) -> List[StreamEvent]:
        """Classify one complete frame. Returns zero or more canonical events."""
        self.state.frames_seen += 1
        parsed = parse_frame(frame)
        if parsed is None:
            return []
        event_name, data = parsed

        try:
            payload = self._decode_payload(data)
        except MalformedFrame as e:
            self.state.frames_dropped += 1
            logger.warning(f"⚠️ [{self.source}] Dropping malformed frame: {e}")
            return []

        return self.normalize_payload(payload, event_name)

    def normalize_payload(self, payload: Dict[str, Any], fallback_type: str = DEFAULT_SSE_EVENT) -> List[StreamEvent]:
        """Classify an already-decoded payload."""
        raw_type = payload.get("type") or fallback_type
        handler = EVENT_HANDLERS.get((self.source, raw_type)) if isinstance(raw_type, str) else None
        if handler is None:
            self.state.frames_dropped += 1
            logger.info(f"[{self.source}] {UnknownEventType.__name__}: unhandled event type {raw_type!r}")
            return []
        try:
            return handler(self.state, payload)
        except (TypeError, AttributeError, ValueError, KeyError) as e:
            # Valid JSON with an unexpected shape for its type
            self.state.frames_dropped += 1
            logger.warning(
                f"⚠️ [{self.source}] {MalformedFrame.__name__}: dropping {raw_type!r} frame "
                f"({type(e).__name__}: {e})"
            )
            return []

    @staticmethod
    def _decode_payload(data: str) -> Dict[str, Any]:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            raise MalformedFrame(f"{e.msg} at pos {e.pos}: {data[:80]!r}") from e
        if not isinstance(payload, dict):
            raise MalformedFrame(f"payload is {type(payload).__name__}, expected object")
        return payload
