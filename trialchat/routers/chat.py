"""
Chat Router - Streaming trial-matching conversation endpoints.

Endpoints:
- POST   /api/chat                      - Run one turn, streamed as SSE
- POST   /api/chat/{session_id}/retry   - Replay the last failed turn (SSE, 204 if nothing to retry)
- GET    /api/chat/status               - Session count and backend availability
- GET    /api/chat/{session_id}         - Session snapshot
- PUT    /api/chat/{session_id}/mode    - Switch backend
- DELETE /api/chat/{session_id}         - Reset session
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from trialchat.schemas.chat import ChatRequest, ModeRequest
from trialchat.services.backends import RemoteMatchingBackend
from trialchat.services.session import (
    BackendMode,
    RetryController,
    SessionCoordinator,
    TurnHandle,
    get_coordinator,
)
from trialchat.services.streaming import (
    BackendUnavailable,
    SessionBusy,
    SSE_HEADERS,
    encode_event,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


async def _sse(handle: TurnHandle):
    async for event in handle.events():
        yield encode_event(event)


def _stream_response(handle: TurnHandle) -> StreamingResponse:
    # aclose() releases the session even if the client disconnects before streaming starts
    return StreamingResponse(
        _sse(handle),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=BackgroundTask(handle.aclose),
    )


async def _start(coordinator: SessionCoordinator, session_id: str, message: str, mode=None) -> TurnHandle:
    try:
        return await coordinator.start_turn(session_id, message, mode)
    except SessionBusy as e:
        raise HTTPException(status_code=409, detail=str(e))
    except BackendUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("")
async def chat(request: ChatRequest, coordinator: SessionCoordinator = Depends(get_coordinator)):
    """
    Run one chat turn.

    Returns a text/event-stream of canonical events, one JSON object per
    `data:` frame, always terminated by a `stream-end` event.
    """
    mode = BackendMode(request.mode) if request.mode else None
    handle = await _start(coordinator, request.session_id, request.message, mode)
    return _stream_response(handle)


@router.post("/{session_id}/retry")
async def retry_turn(session_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)):
    """Replay the last failed turn; 204 when there is nothing to retry."""
    try:
        handle = await RetryController(coordinator).retry(session_id)
    except SessionBusy as e:
        raise HTTPException(status_code=409, detail=str(e))
    except BackendUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    if handle is None:
        return Response(status_code=204)
    return _stream_response(handle)


@router.get("/status")
async def chat_status(coordinator: SessionCoordinator = Depends(get_coordinator)):
    """Session count and availability of each backend."""
    modes = list(coordinator.backends)
    health = await asyncio.gather(*(coordinator.backends[m].check_health() for m in modes))

    remote_status = None
    remote = coordinator.backends.get(BackendMode.REMOTE)
    if isinstance(remote, RemoteMatchingBackend) and health[modes.index(BackendMode.REMOTE)]:
        remote_status = await remote.get_system_status()

    return {
        "status": "ok",
        "sessions": await coordinator.store.count(),
        "default_mode": coordinator.default_mode.value,
        "backends": {m.value: ok for m, ok in zip(modes, health)},
        "remote_status": remote_status,
    }


@router.get("/{session_id}")
async def get_session(session_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)):
    session = await coordinator.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return session.to_dict()


@router.put("/{session_id}/mode")
async def set_mode(session_id: str, request: ModeRequest,
                   coordinator: SessionCoordinator = Depends(get_coordinator)):
    try:
        session = await coordinator.set_mode(session_id, BackendMode(request.mode))
    except SessionBusy as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"session_id": session_id, "mode": session.mode.value}


@router.delete("/{session_id}")
async def reset_session(session_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)):
    try:
        deleted = await coordinator.reset_session(session_id)
    except SessionBusy as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {"session_id": session_id, "deleted": True}
