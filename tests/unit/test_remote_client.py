"""
Tests for the remote matching backend client (httpx.MockTransport, no network).
"""
import json

import httpx
import pytest

from trialchat.schemas.patient import PatientProfile
from trialchat.services.backends import RemoteMatchingBackend, TurnRequest
from trialchat.services.backends.remote_client import patient_profile_to_input
from trialchat.services.streaming.errors import BackendError

from tests.conftest import sse

PROFILE = PatientProfile(
    age=55,
    sex="Male",
    cancer_type="NSCLC",
    stage="STAGE IIIB",
    biomarkers={"EGFR": "Positive", "ALK": "Negative", "KRAS": "G12C"},
    prior_treatments=["Carboplatin"],
    ecog=1,
)


def turn(trigger=True, max_results=3, profile=PROFILE) -> TurnRequest:
    return TurnRequest(session_id="s-1", message="find trials", profile=profile,
                       trigger_matching=trigger, max_results=max_results)


async def collect(backend, request) -> bytes:
    return b"".join([chunk async for chunk in backend.open_stream(request)])


class TestPatientInput:
    def test_field_mapping(self):
        body = patient_profile_to_input(PROFILE, "s-1")
        assert body.patient_id == "s-1"
        assert body.sex == "male"
        assert body.primary_diagnosis == "NSCLC"
        assert body.ecog_status == 1
        statuses = {b.name: b.status for b in body.biomarkers}
        assert statuses == {"EGFR": "positive", "ALK": "negative", "KRAS": None}

    def test_defaults_for_uncaptured_fields(self):
        body = patient_profile_to_input(PatientProfile(), "s-2")
        assert body.age == 50
        assert body.sex == "other"
        assert body.primary_diagnosis == "cancer"
        assert body.biomarkers == []


class TestOpenStream:
    @pytest.mark.asyncio
    async def test_posts_patient_and_streams_body(self):
        seen = {}
        body = sse({"type": "phase_start", "phase": "retrieval"}) + sse({"type": "done"})

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            seen["headers"] = request.headers
            seen["json"] = json.loads(request.content)
            return httpx.Response(200, content=body.encode("utf-8"),
                                  headers={"Content-Type": "text/event-stream"})

        backend = RemoteMatchingBackend("http://matcher.test/", api_key="secret",
                                        transport=httpx.MockTransport(handler))
        data = await collect(backend, turn())

        assert data.decode("utf-8") == body
        assert seen["method"] == "POST"
        assert seen["path"] == "/match/stream"
        assert seen["params"] == {"max_results": "3"}
        assert seen["headers"]["x-api-key"] == "secret"
        assert seen["headers"]["accept"] == "text/event-stream"
        assert seen["json"]["patient_id"] == "s-1"
        assert seen["json"]["prior_treatments"] == ["Carboplatin"]

    @pytest.mark.asyncio
    async def test_no_api_key_header_when_unset(self):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            return httpx.Response(200, content=b"")

        backend = RemoteMatchingBackend("http://matcher.test", api_key=None,
                                        transport=httpx.MockTransport(handler))
        await collect(backend, turn())
        assert "x-api-key" not in seen["headers"]

    @pytest.mark.asyncio
    async def test_error_status_raises_backend_error(self):
        def handler(request):
            return httpx.Response(500, text="matcher exploded")

        backend = RemoteMatchingBackend("http://matcher.test", transport=httpx.MockTransport(handler))
        with pytest.raises(BackendError) as exc_info:
            await collect(backend, turn())
        assert exc_info.value.status_code == 500
        assert "matcher exploded" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_intake_turn_never_calls_service(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        backend = RemoteMatchingBackend("http://matcher.test", transport=httpx.MockTransport(handler))
        data = (await collect(backend, turn(trigger=False))).decode("utf-8")

        assert calls == []
        assert '"type": "complete"' in data
        assert "Captured" in data
        assert data.endswith(sse({"type": "done"}))


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self):
        backend = RemoteMatchingBackend(
            "http://matcher.test",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"status": "ok"})),
        )
        assert await backend.check_health() is True

    @pytest.mark.asyncio
    async def test_error_status_is_unhealthy(self):
        backend = RemoteMatchingBackend(
            "http://matcher.test",
            transport=httpx.MockTransport(lambda r: httpx.Response(503)),
        )
        assert await backend.check_health() is False

    @pytest.mark.asyncio
    async def test_connection_failure_is_unhealthy(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        backend = RemoteMatchingBackend("http://matcher.test", transport=httpx.MockTransport(handler))
        assert await backend.check_health() is False

    @pytest.mark.asyncio
    async def test_system_status(self):
        def handler(request):
            assert request.url.path == "/status"
            return httpx.Response(200, json={"trials_loaded": 1200})

        backend = RemoteMatchingBackend("http://matcher.test", transport=httpx.MockTransport(handler))
        assert await backend.get_system_status() == {"trials_loaded": 1200}
