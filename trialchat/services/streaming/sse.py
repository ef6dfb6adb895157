"""
SSE frame encoding for outbound streams and the mock backend.
"""
import json
from typing import Any, Dict, Optional

from .events import StreamEvent
from .config import FRAME_SEPARATOR

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_frame(payload: Dict[str, Any], event: Optional[str] = None) -> str:
    """Encode one JSON payload as an SSE frame."""
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {json.dumps(payload, default=str)}{FRAME_SEPARATOR}"


def encode_event(event: StreamEvent) -> str:
    """Encode a canonical event for the rendering layer."""
    return encode_frame(event.to_dict())
