"""
Tests for the local mock matching pipeline.
"""
import pytest

from trialchat.schemas.patient import PatientProfile
from trialchat.services.backends import LocalPipelineBackend, TurnRequest
from trialchat.services.backends.mock_pipeline import (
    analyze_eligibility,
    calculate_cost,
    match_biomarkers,
    node_cost,
    retrieve_trials,
)
from trialchat.services.streaming.frame_decoder import FrameDecoder
from trialchat.services.streaming.normalizer import parse_frame

PROFILE = PatientProfile(age=55, cancer_type="NSCLC", stage="STAGE IIIB", biomarkers={"EGFR": "Positive"})


def test_cost_is_per_thousand_tokens():
    assert calculate_cost("claude-sonnet", 1000, 1000) == pytest.approx(0.018)
    assert node_cost("analyzeEligibility") == pytest.approx(0.0126)


def test_eligibility_sorted_with_concerns():
    trials = analyze_eligibility(PROFILE, match_biomarkers(PROFILE, retrieve_trials(PROFILE)))
    assert [t.match_score for t in trials] == [0.94, 0.87, 0.71]
    assert "✅ EGFR Positive" in trials[0].match_reasons
    assert trials[-1].concerns == ["ℹ️ Early phase study", "⚠️ ECOG not documented"]


@pytest.mark.asyncio
async def test_stream_node_order():
    backend = LocalPipelineBackend(step_delay=0)
    request = TurnRequest(session_id="s", message="find trials", profile=PROFILE,
                          trigger_matching=True, max_results=1)
    decoder = FrameDecoder()
    frames = []
    async for chunk in backend.open_stream(request):
        frames.extend(decoder.feed(chunk))

    payloads = [parse_frame(f)[1] for f in frames]
    assert '"name": "parsePatient"' in payloads[0]
    assert '"name": "LangGraph"' in payloads[-2]
    assert payloads[-1] == '{"type": "done"}'
    assert payloads[-2].count('"nct_id"') == 1
