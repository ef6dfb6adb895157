"""
Session Coordinator - Runs one turn at a time per conversation.

Flow of a turn:
    start_turn()  -> validate, extract + merge profile delta, pre-flight,
                     append user entry, reset transient state, mark busy
    handle.events() -> backend chunks -> FrameDecoder -> StreamNormalizer
                     -> apply_event() (pipeline tracker, profile, turn log)
                     -> yielded to the caller, ending with one stream-end
    end_turn()    -> clears the busy flag; always runs, exactly once

The heartbeat monitor wraps the backend chunk iterator for the life of the
stream and is torn down when the stream ends for any reason.
"""

import logging
from typing import AsyncIterator, Dict, Optional

from trialchat.config import DEFAULT_BACKEND_MODE
from trialchat.services.backends import (
    MatchingBackend,
    TurnRequest,
    LocalPipelineBackend,
    RemoteMatchingBackend,
)
from trialchat.services.extraction import ProfileExtractor, KeywordProfileExtractor
from trialchat.services.intake import should_trigger_matching, extract_max_results
from trialchat.services.streaming.config import (
    HEARTBEAT_TIMEOUT,
    HEARTBEAT_CHECK_INTERVAL,
    CONNECTION_LOST_MESSAGE,
    GENERIC_STREAM_ERROR_MESSAGE,
    RETRY_HINT,
    REASON_BACKEND_ERROR,
    REASON_CANCELLED,
    REASON_CONNECTION_LOST,
    REASON_INCOMPLETE_STREAM,
    REASON_STREAM_FAILED,
)
from trialchat.services.streaming.errors import (
    BackendError,
    BackendUnavailable,
    ConnectionLost,
    SessionBusy,
)
from trialchat.services.streaming.events import (
    EventKind,
    StreamEvent,
    StreamErrorEvent,
    StreamEnd,
)
from trialchat.services.streaming.frame_decoder import FrameDecoder
from trialchat.services.streaming.heartbeat import HeartbeatMonitor
from trialchat.services.streaming.normalizer import StreamNormalizer
from .profile import merge_profile
from .state import Session, BackendMode, TurnRole
from .state_store import SessionStore, get_session_store

logger = logging.getLogger(__name__)

INCOMPLETE_STREAM_MESSAGE = "The backend closed the stream before sending a result."
CANCELLED_TURN_MESSAGE = "Request was cancelled before completion."


class TurnHandle:
    """
    One in-flight turn.

    Iterate `events()` exactly once. If the caller abandons the turn without
    iterating, `aclose()` still releases the session.
    """

    def __init__(self, coordinator: "SessionCoordinator", session: Session,
                 backend: MatchingBackend, request: TurnRequest, turn_id: str):
        self.coordinator = coordinator
        self.session = session
        self.backend = backend
        self.request = request
        self.turn_id = turn_id
        self.completed = False  # a terminal outcome was applied to the session
        self._started = False
        self._ended = False

    @property
    def session_id(self) -> str:
        return self.session.session_id

    async def events(self) -> AsyncIterator[StreamEvent]:
        if self._started:
            raise RuntimeError(f"Turn {self.turn_id} is already being consumed")
        self._started = True
        stream = self.coordinator._run_stream(self)
        try:
            async for event in stream:
                yield event
        finally:
            await stream.aclose()
            await self.aclose()

    async def aclose(self) -> None:
        """Release the session. Safe to call more than once."""
        if self._ended:
            return
        self._ended = True
        if not self.completed:
            # Abandoned before a result: record it like any other failed turn
            self.coordinator.fail_turn(self.session, CANCELLED_TURN_MESSAGE, reason=REASON_CANCELLED)
            self.completed = True
        self.coordinator.end_turn(self.session, self.turn_id)
        await self.coordinator.store.put(self.session)


class SessionCoordinator:
    """
    Owns all session-scoped state and dispatches turns to backends.

    Sessions share nothing mutable; each has its own tracker, profile and log.
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        backends: Optional[Dict[BackendMode, MatchingBackend]] = None,
        extractor: Optional[ProfileExtractor] = None,
        default_mode: BackendMode = BackendMode(DEFAULT_BACKEND_MODE),
        heartbeat_timeout: float = HEARTBEAT_TIMEOUT,
        heartbeat_interval: float = HEARTBEAT_CHECK_INTERVAL,
    ):
        self.store = store or get_session_store()
        self.backends = backends or {
            BackendMode.LOCAL: LocalPipelineBackend(),
            BackendMode.REMOTE: RemoteMatchingBackend(),
        }
        self.extractor = extractor or KeywordProfileExtractor()
        self.default_mode = default_mode
        self.heartbeat_timeout = heartbeat_timeout
        self.heartbeat_interval = heartbeat_interval

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    async def get_session(self, session_id: str) -> Optional[Session]:
        return await self.store.get(session_id)

    async def set_mode(self, session_id: str, mode: BackendMode) -> Session:
        session = await self.store.get_or_create(session_id, self.default_mode)
        if session.is_loading:
            raise SessionBusy(session_id)
        if session.mode != mode:
            logger.info(f"Session {session_id} mode {session.mode.value} -> {mode.value}",
                        extra={"session_id": session_id})
            session.mode = mode
            await self.store.put(session)
        return session

    async def reset_session(self, session_id: str) -> bool:
        session = await self.store.get(session_id)
        if session is not None and session.is_loading:
            raise SessionBusy(session_id)
        return await self.store.delete(session_id)

    def backend_for(self, session: Session, mode: Optional[BackendMode] = None) -> MatchingBackend:
        mode = mode or session.mode
        backend = self.backends.get(mode)
        if backend is None:
            raise ValueError(f"No backend configured for mode {mode.value!r}")
        return backend

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------

    async def start_turn(self, session_id: str, text: str,
                         mode: Optional[BackendMode] = None) -> TurnHandle:
        """
        Begin a turn.

        The requested mode and the merged profile delta are applied to the
        session only once pre-flight passes; a rejected turn leaves it as it was.

        Raises:
            ValueError: empty message
            SessionBusy: a turn is already in flight for this session
            BackendUnavailable: pre-flight health check failed
        """
        if not text or not text.strip():
            raise ValueError("Message must not be empty")

        session = await self.store.get_or_create(session_id, mode or self.default_mode)
        if session.is_loading:
            raise SessionBusy(session_id)
        target_mode = mode or session.mode
        backend = self.backend_for(session, target_mode)

        # Claim the session before the first await so a concurrent call sees it busy
        session.is_loading = True
        started = False
        try:
            delta = await self.extractor.extract(text)
            profile = merge_profile(session.profile, delta)

            trigger = should_trigger_matching(text, profile)
            if trigger and not await backend.check_health():
                logger.warning(f"❌ Backend {target_mode.value} failed pre-flight health check",
                               extra={"session_id": session_id})
                raise BackendUnavailable(
                    f"{target_mode.value} backend unavailable. Check REMOTE_BACKEND_URL configuration."
                )

            session.mode = target_mode
            session.profile = profile
            session.add_turn(TurnRole.USER, text)
            turn_id = session.begin_turn(text)
            request = TurnRequest(
                session_id=session_id,
                message=text,
                profile=session.profile,
                trigger_matching=trigger,
                max_results=extract_max_results(text),
            )
            await self.store.put(session)
            started = True
        finally:
            if not started:
                session.is_loading = False

        logger.info(
            f"▶️ Turn {turn_id} started (mode={session.mode.value}, matching={trigger})",
            extra={"session_id": session_id, "turn_id": turn_id},
        )
        return TurnHandle(self, session, backend, request, turn_id)

    async def _run_stream(self, handle: TurnHandle) -> AsyncIterator[StreamEvent]:
        """Decode, normalize and apply the backend stream; always ends with stream-end."""
        session = handle.session
        log_extra = {"session_id": session.session_id, "turn_id": handle.turn_id}
        decoder = FrameDecoder()
        normalizer = StreamNormalizer(handle.backend.source)
        monitor = HeartbeatMonitor(timeout=self.heartbeat_timeout, check_interval=self.heartbeat_interval)
        chunks = monitor.guard(handle.backend.open_stream(handle.request))
        failure: Optional[StreamErrorEvent] = None
        terminal = False
        closed = False  # terminal event or backend stream-end seen

        try:
            async for chunk in chunks:
                for frame in decoder.feed(chunk):
                    monitor.touch()
                    for event in normalizer.normalize(frame):
                        # The backend's stream-end is replaced by our own below
                        if event.kind == EventKind.STREAM_END:
                            closed = True
                            break
                        self.apply_event(session, event)
                        if event.is_terminal:
                            terminal = closed = True
                            handle.completed = True
                        yield event
                        if closed:
                            break
                    if closed:
                        break
                if closed:
                    break
        except ConnectionLost as e:
            logger.warning(f"💔 Turn {handle.turn_id}: {e}", extra=log_extra)
            failure = StreamErrorEvent(message=CONNECTION_LOST_MESSAGE, reason=REASON_CONNECTION_LOST)
        except BackendError as e:
            logger.error(f"❌ Turn {handle.turn_id}: {e}", extra=log_extra)
            failure = StreamErrorEvent(message=str(e), reason=REASON_BACKEND_ERROR)
        except Exception as e:
            logger.error(f"❌ Turn {handle.turn_id} stream failed: {e}", exc_info=True, extra=log_extra)
            failure = StreamErrorEvent(message=GENERIC_STREAM_ERROR_MESSAGE, reason=REASON_STREAM_FAILED)
        finally:
            await chunks.aclose()
            decoder.close()

        if failure is None and not terminal:
            logger.warning(f"⚠️ Turn {handle.turn_id} stream ended without a result", extra=log_extra)
            failure = StreamErrorEvent(message=INCOMPLETE_STREAM_MESSAGE, reason=REASON_INCOMPLETE_STREAM)

        if failure is not None:
            self.apply_event(session, failure)
            handle.completed = True
            yield failure

        logger.info(
            f"⏹️ Turn {handle.turn_id} finished "
            f"(frames={normalizer.state.frames_seen}, dropped={normalizer.state.frames_dropped}, "
            f"cost=${session.turn_cost:.4f})",
            extra=log_extra,
        )
        yield StreamEnd()

    def apply_event(self, session: Session, event: StreamEvent) -> None:
        """Route one canonical event to the session's tracker, profile and log."""
        session.pipeline.apply(event)
        kind = event.kind

        if kind == EventKind.STAGE_COMPLETE:
            if event.cost:
                session.turn_cost += event.cost

        elif kind == EventKind.STAGE_PROGRESS:
            if event.detail:
                session.matching_detail = event.detail

        elif kind == EventKind.FINAL_RESPONSE:
            session.profile = merge_profile(session.profile, event.profile)
            if event.trials is not None:
                session.trials = list(event.trials)
            cost = event.total_cost if event.total_cost is not None else session.turn_cost
            session.turn_cost = cost
            session.total_cost += cost
            session.add_turn(
                TurnRole.ASSISTANT,
                event.text,
                metadata={
                    "patient_data": session.profile.model_dump(exclude_none=True),
                    "trials": event.trials,
                },
            )
            session.last_user_input = None

        elif kind == EventKind.ERROR:
            content = f"⚠️ {event.message}"
            if event.retryable:
                content = f"{content}\n\n{RETRY_HINT}"
            session.add_turn(TurnRole.ASSISTANT, content, is_error=True)

    def fail_turn(self, session: Session, message: str, reason: Optional[str] = None) -> None:
        """Record a failure that never reached the caller as an event."""
        self.apply_event(session, StreamErrorEvent(message=message, reason=reason))

    def end_turn(self, session: Session, turn_id: str) -> None:
        """Clear the loading flag of the given turn."""
        if session.current_turn_id != turn_id:
            logger.debug(f"end_turn for stale turn {turn_id} ignored", extra={"session_id": session.session_id})
            return
        session.is_loading = False
        session.current_turn_id = None
        logger.debug(f"Turn {turn_id} released", extra={"session_id": session.session_id, "turn_id": turn_id})


# Singleton instance
_coordinator: Optional[SessionCoordinator] = None


def get_coordinator() -> SessionCoordinator:
    """Get the global session coordinator instance."""
    global _coordinator
    if _coordinator is None:
        _coordinator = SessionCoordinator()
    return _coordinator
