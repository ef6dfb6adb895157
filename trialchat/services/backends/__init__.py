"""
Matching backends.

Each backend streams raw transport chunks in its own vocabulary; see
trialchat.services.streaming.normalizer for the mapping onto canonical events.
"""

from .base import MatchingBackend, TurnRequest
from .mock_pipeline import LocalPipelineBackend
from .remote_client import RemoteMatchingBackend, patient_profile_to_input

__all__ = [
    "MatchingBackend",
    "TurnRequest",
    "LocalPipelineBackend",
    "RemoteMatchingBackend",
    "patient_profile_to_input",
]
