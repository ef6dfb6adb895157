"""
Retry Controller - Replays the last failed user turn.
"""

import logging
from typing import Optional

from .coordinator import SessionCoordinator, TurnHandle
from .state import Session, TurnRole

logger = logging.getLogger(__name__)


def rollback_failed_turn(session: Session) -> int:
    """
    Remove the log entries of the failed attempt.

    Strips trailing assistant error entries, then the user entry that
    triggered them. The log afterwards reads as if the attempt never happened.

    Returns:
        Number of entries removed
    """
    removed = 0
    while session.turns and session.turns[-1].role == TurnRole.ASSISTANT and session.turns[-1].is_error:
        session.turns.pop()
        removed += 1

    last = session.turns[-1] if session.turns else None
    if last is not None and last.role == TurnRole.USER and last.content == session.last_user_input:
        session.turns.pop()
        removed += 1
    return removed


class RetryController:
    """Idempotent retry on top of the coordinator."""

    def __init__(self, coordinator: SessionCoordinator):
        self.coordinator = coordinator

    async def retry(self, session_id: str) -> Optional[TurnHandle]:
        """
        Replay the retained input of a failed turn.

        Returns:
            The new turn, or None when there is nothing to retry (no retained
            input, unknown session, or a turn in flight).

        Raises:
            BackendUnavailable: pre-flight failed; the log is left untouched
        """
        session = await self.coordinator.get_session(session_id)
        if session is None or session.is_loading or not session.last_user_input:
            logger.debug(f"Nothing to retry for session {session_id}")
            return None

        text = session.last_user_input
        turns = list(session.turns)
        removed = rollback_failed_turn(session)
        logger.info(f"🔁 Retrying last turn of {session_id} (rolled back {removed} entries)",
                    extra={"session_id": session_id})
        try:
            return await self.coordinator.start_turn(session_id, text)
        except Exception:
            # Rejected before starting: the failed attempt stays on record
            session.turns = turns
            raise
