"""
Remote Matching Backend - API Client Module

Async client for the remote matching service: a long-running, multi-phase
matching job streamed as SSE from POST /match/stream, plus /health and /status.
"""

import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from trialchat.config import (
    REMOTE_BACKEND_URL,
    REMOTE_BACKEND_API_KEY,
    REMOTE_STREAM_TIMEOUT,
    REMOTE_HEALTH_TIMEOUT,
)
from trialchat.schemas.patient import PatientProfile
from trialchat.schemas.trials import BiomarkerInput, PatientInput
from trialchat.services.intake import build_intake_reply
from trialchat.services.streaming.config import SOURCE_REMOTE
from trialchat.services.streaming.errors import BackendError
from trialchat.services.streaming.sse import encode_frame
from .base import MatchingBackend, TurnRequest

logger = logging.getLogger(__name__)

DEFAULT_PATIENT_AGE = 50
DEFAULT_DIAGNOSIS = "cancer"
ERROR_BODY_PREVIEW = 500


def _biomarker_status(value: str) -> Optional[str]:
    lowered = value.lower()
    if "positive" in lowered:
        return "positive"
    if "negative" in lowered:
        return "negative"
    return None


def patient_profile_to_input(profile: PatientProfile, session_id: str) -> PatientInput:
    """
    Convert the accumulated chat profile into the remote request body.

    Args:
        profile: Accumulated session profile
        session_id: Used as the remote patient_id

    Returns:
        PatientInput with service defaults for fields the chat never captured
    """
    return PatientInput(
        patient_id=session_id,
        age=profile.age if profile.age is not None else DEFAULT_PATIENT_AGE,
        sex=profile.sex.lower() if profile.sex else "other",
        primary_diagnosis=profile.cancer_type or DEFAULT_DIAGNOSIS,
        histology=profile.histology,
        stage=profile.stage,
        biomarkers=[
            BiomarkerInput(name=name, status=_biomarker_status(value), value=value)
            for name, value in profile.biomarkers.items()
        ],
        prior_treatments=list(profile.prior_treatments),
        ecog_status=profile.ecog,
        clinical_notes=profile.raw_text,
    )


class RemoteMatchingBackend(MatchingBackend):
    """Streams matching jobs from the remote service."""

    source = SOURCE_REMOTE

    def __init__(
        self,
        base_url: str = REMOTE_BACKEND_URL,
        api_key: Optional[str] = REMOTE_BACKEND_API_KEY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Service root, without trailing slash
            api_key: Sent as X-API-Key when set
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._transport = transport

    def _headers(self, streaming: bool = False) -> Dict[str, str]:
        headers = {}
        if streaming:
            headers["Content-Type"] = "application/json"
            headers["Accept"] = "text/event-stream"
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    def _client(self, timeout: httpx.Timeout) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def open_stream(self, request: TurnRequest) -> AsyncIterator[bytes]:
        if not request.trigger_matching:
            # Intake turns never reach the service; answer in its vocabulary
            yield encode_frame({
                "type": "complete",
                "result": {"matches": [], "clinical_narrative": build_intake_reply(request.profile)},
                "patient_profile": request.profile.model_dump(exclude_none=True),
            }).encode("utf-8")
            yield encode_frame({"type": "done"}).encode("utf-8")
            return

        patient = patient_profile_to_input(request.profile, request.session_id)
        url = f"{self.base_url}/match/stream"
        logger.info(
            f"🌐 Opening remote match stream for {request.session_id} "
            f"(max_results={request.max_results})"
        )

        async with self._client(REMOTE_STREAM_TIMEOUT) as client:
            async with client.stream(
                "POST",
                url,
                params={"max_results": request.max_results},
                json=patient.model_dump(exclude_none=True),
                headers=self._headers(streaming=True),
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(f"❌ Remote backend returned {response.status_code}: {body[:ERROR_BODY_PREVIEW]}")
                    raise BackendError(
                        f"Remote backend error {response.status_code}: {body[:ERROR_BODY_PREVIEW]}",
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    yield chunk

    async def check_health(self) -> bool:
        """Pre-flight check. Any transport failure counts as unhealthy."""
        try:
            async with self._client(REMOTE_HEALTH_TIMEOUT) as client:
                response = await client.get(f"{self.base_url}/health", headers=self._headers())
                return response.is_success
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Remote health check failed: {e}")
            return False

    async def get_system_status(self) -> Optional[Dict[str, Any]]:
        """Service status (trials loaded, collections), or None if unreachable."""
        try:
            async with self._client(REMOTE_HEALTH_TIMEOUT) as client:
                response = await client.get(f"{self.base_url}/status", headers=self._headers())
                if response.is_success:
                    return response.json()
                logger.warning(f"Remote status returned {response.status_code}")
                return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"⚠️ Remote status unavailable: {e}")
            return None
