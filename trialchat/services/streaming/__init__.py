"""
Streaming Protocol

Frame decoding, canonical event normalization and liveness supervision for
backend matching streams.
"""

from .events import (
    EventKind,
    StreamEvent,
    StageStart,
    StageProgress,
    StageComplete,
    TrialProgress,
    FinalResponse,
    StreamErrorEvent,
    StreamEnd,
)
from .errors import (
    StreamingError,
    MalformedFrame,
    UnknownEventType,
    ConnectionLost,
    BackendUnavailable,
    SessionBusy,
    BackendError,
)
from .frame_decoder import FrameDecoder, decode_frames
from .normalizer import StreamNormalizer, parse_frame, EVENT_HANDLERS
from .heartbeat import HeartbeatMonitor
from .sse import encode_event, encode_frame, SSE_HEADERS

__all__ = [
    "EventKind",
    "StreamEvent",
    "StageStart",
    "StageProgress",
    "StageComplete",
    "TrialProgress",
    "FinalResponse",
    "StreamErrorEvent",
    "StreamEnd",
    "StreamingError",
    "MalformedFrame",
    "UnknownEventType",
    "ConnectionLost",
    "BackendUnavailable",
    "SessionBusy",
    "BackendError",
    "FrameDecoder",
    "decode_frames",
    "StreamNormalizer",
    "parse_frame",
    "EVENT_HANDLERS",
    "HeartbeatMonitor",
    "encode_event",
    "encode_frame",
    "SSE_HEADERS",
]
