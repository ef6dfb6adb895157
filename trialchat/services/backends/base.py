"""
Matching Backends - Common interface.

A backend opens one long-lived request per turn and yields raw transport
chunks (bytes or text). Chunk boundaries are arbitrary; framing and
classification happen downstream, keyed by the backend's `source` vocabulary.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Union

from trialchat.config import DEFAULT_MAX_RESULTS
from trialchat.schemas.patient import PatientProfile

Chunk = Union[bytes, str]


@dataclass
class TurnRequest:
    """Everything a backend needs to serve one turn."""
    session_id: str
    message: str
    profile: PatientProfile
    trigger_matching: bool
    max_results: int = DEFAULT_MAX_RESULTS


class MatchingBackend(ABC):
    """Streaming matching backend."""

    #: Vocabulary id understood by the normalizer
    source: str = ""

    @abstractmethod
    def open_stream(self, request: TurnRequest) -> AsyncIterator[Chunk]:
        """Open the turn's stream. Raises BackendError for a refused request."""
        ...

    @abstractmethod
    async def check_health(self) -> bool:
        ...

    async def aclose(self) -> None:
        """Release pooled resources."""
        return None
