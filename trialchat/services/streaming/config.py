"""
Streaming Protocol - Configuration Constants

Centralized constants for frame transport, canonical stage names and the
liveness policy of an open backend stream.
"""

from trialchat.config import HEARTBEAT_TIMEOUT_S, HEARTBEAT_CHECK_INTERVAL_S

# Frame transport (SSE style: "event: x\ndata: {json}\n\n")
FRAME_SEPARATOR = "\n\n"
DATA_MARKER = "data:"
EVENT_MARKER = "event:"
COMMENT_MARKER = ":"
DEFAULT_SSE_EVENT = "message"

# Partial tail left in the buffer when a stream closes is never surfaced
DISCARD_PARTIAL_FRAME_ON_CLOSE = True

# Liveness policy (seconds)
HEARTBEAT_TIMEOUT = HEARTBEAT_TIMEOUT_S
HEARTBEAT_CHECK_INTERVAL = HEARTBEAT_CHECK_INTERVAL_S

# Backend vocabularies
SOURCE_LOCAL = "local"
SOURCE_REMOTE = "remote"

# Canonical pipeline stages (order is fixed)
STAGE_RETRIEVAL = "Retrieve Trials"
STAGE_PREFILTER = "Pre-filter"
STAGE_ELIGIBILITY = "Assess Eligibility"
STAGE_RANKING = "Rank & Report"

STAGE_DEFINITIONS = [
    {"name": STAGE_RETRIEVAL, "description": "Find candidate trials", "model": "qwen-7b"},
    {"name": STAGE_PREFILTER, "description": "Screen demographics and biomarkers", "model": "qwen-72b"},
    {"name": STAGE_ELIGIBILITY, "description": "Criterion-level eligibility reasoning", "model": "claude-sonnet"},
    {"name": STAGE_RANKING, "description": "Rank matches and write the report", "model": "claude-haiku"},
]

# Local pipeline: graph node -> canonical stage. Nodes not listed are not stages.
LOCAL_NODE_STAGES = {
    "retrieveTrials": STAGE_RETRIEVAL,
    "matchBiomarkers": STAGE_PREFILTER,
    "analyzeEligibility": STAGE_ELIGIBILITY,
    "generateSummary": STAGE_RANKING,
}
LOCAL_COMPLETION_SENTINEL = "LangGraph"

# Remote service: phase -> canonical stage
REMOTE_PHASE_STAGES = {
    "retrieval": STAGE_RETRIEVAL,
    "matching": STAGE_ELIGIBILITY,
    "ranking": STAGE_RANKING,
}
REMOTE_BATCHED_MODE = "super_batch"

# Remote criterion statuses used when flattening match records
CRITERION_MEETS = "MEETS_CRITERION"
CRITERION_CONCERNS = ("FAILS_CRITERION", "INSUFFICIENT_INFO")
MAX_MATCH_REASONS = 3
MAX_MATCH_CONCERNS = 2

# User-facing messages
CONNECTION_LOST_MESSAGE = (
    "Connection lost. The matching may still be processing on the backend. "
    "Please retry in a moment."
)
GENERIC_STREAM_ERROR_MESSAGE = "Error occurred. Please try again."
RETRY_HINT = "You can retry this request."

# Error reasons carried by outbound error events
REASON_BACKEND_ERROR = "backend_error"
REASON_CONNECTION_LOST = "connection_lost"
REASON_STREAM_FAILED = "stream_failed"
REASON_INCOMPLETE_STREAM = "incomplete_stream"
REASON_CANCELLED = "cancelled"
