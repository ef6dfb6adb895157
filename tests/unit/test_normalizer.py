"""
Tests for the event normalizer (local and remote vocabularies).
"""
import pytest

from trialchat.services.streaming.events import (
    EventKind,
    FinalResponse,
    StageComplete,
    StageProgress,
    StageStart,
    StreamEnd,
    StreamErrorEvent,
    TrialProgress,
)
from trialchat.services.streaming.normalizer import StreamNormalizer, parse_frame, convert_remote_match

from tests.conftest import sse


def frame(payload, event=None) -> str:
    """SSE text without the trailing separator, as the decoder yields it."""
    return sse(payload, event).rstrip("\n")


def normalize_all(normalizer, payloads):
    events = []
    for payload in payloads:
        events.extend(normalizer.normalize(frame(payload)))
    return events


class TestParseFrame:
    def test_event_and_data(self):
        assert parse_frame('event: heartbeat\ndata: {"a": 1}') == ("heartbeat", '{"a": 1}')

    def test_multiple_data_lines_joined(self):
        assert parse_frame('data: {"a":\ndata: 1}') == ("message", '{"a":\n1}')

    def test_comment_only_frame(self):
        assert parse_frame(": keep-alive") is None


class TestLocalVocabulary:
    def test_node_start_maps_to_canonical_stage(self):
        events = StreamNormalizer("local").normalize(frame({"type": "on_chain_start", "name": "retrieveTrials"}))
        assert events == [StageStart(stage_name="Retrieve Trials")]

    def test_unmapped_node_is_not_a_stage(self):
        normalizer = StreamNormalizer("local")
        assert normalizer.normalize(frame({"type": "on_chain_start", "name": "parsePatient"})) == []
        assert normalizer.normalize(frame({"type": "on_chain_end", "name": "parsePatient"})) == []

    def test_node_end_carries_cost(self):
        events = StreamNormalizer("local").normalize(frame({
            "type": "on_chain_end", "name": "matchBiomarkers", "data": {"output": {"totalCost": 0.00054}},
        }))
        assert events == [StageComplete(stage_name="Pre-filter", cost=0.00054)]

    def test_sentinel_node_is_final_response(self):
        events = StreamNormalizer("local").normalize(frame({
            "type": "on_chain_end",
            "name": "LangGraph",
            "data": {"output": {
                "response": "done",
                "patientProfile": {"age": 55, "cancerType": "NSCLC"},
                "matchedTrials": [{"nct_id": "NCT05123456"}],
                "totalCost": 0.011,
            }},
        }))
        assert len(events) == 1
        final = events[0]
        assert isinstance(final, FinalResponse)
        assert final.text == "done"
        assert final.trials == [{"nct_id": "NCT05123456"}]
        assert final.total_cost == pytest.approx(0.011)
        assert final.profile["cancerType"] == "NSCLC"

    def test_done_is_stream_end(self):
        assert StreamNormalizer("local").normalize(frame({"type": "done"})) == [StreamEnd()]


class TestRemoteVocabulary:
    def test_sequential_fallback_synthesizes_prefilter(self):
        events = StreamNormalizer("remote").normalize(frame({
            "type": "phase_start", "phase": "matching", "mode": "sequential", "message": "Matching trials",
        }))
        assert events == [
            StageStart(stage_name="Pre-filter", detail="Matching trials"),
            StageComplete(stage_name="Pre-filter"),
            StageStart(stage_name="Assess Eligibility", detail="Sequential matching"),
        ]

    def test_missing_mode_counts_as_sequential(self):
        events = StreamNormalizer("remote").normalize(frame({"type": "phase_start", "phase": "matching"}))
        kinds = [(e.kind, e.stage_name) for e in events]
        assert kinds.index((EventKind.STAGE_COMPLETE, "Pre-filter")) < kinds.index(
            (EventKind.STAGE_START, "Assess Eligibility")
        )

    def test_super_batch_keeps_prefilter_open_until_prefilter_complete(self):
        normalizer = StreamNormalizer("remote")
        events = normalizer.normalize(frame({"type": "phase_start", "phase": "matching", "mode": "super_batch"}))
        assert events == [StageStart(stage_name="Pre-filter")]

        events = normalize_all(normalizer, [
            {"type": "super_batch_start", "total_trials": 40},
            {"type": "prefilter_start", "total_trials": 40},
            {"type": "prefilter_complete", "passed_count": 12, "failed_count": 28},
        ])
        assert events == [
            StageProgress(stage_name="Pre-filter", detail="Super-batch: 40 trials"),
            StageProgress(stage_name="Pre-filter", detail="Pre-filtering 40 trials..."),
            StageComplete(stage_name="Pre-filter", detail="12 passed / 28 failed"),
            StageStart(stage_name="Assess Eligibility", detail="Assessing eligibility criteria"),
        ]

    def test_sub_phase_progress(self):
        events = normalize_all(StreamNormalizer("remote"), [
            {"type": "exclusion_chunk_start", "chunk_index": 1, "total_chunks": 3},
            {"type": "inclusion_chunk_complete", "chunk_index": 2},
            {"type": "inclusion_phase_complete", "message": "Inclusion done"},
            {"type": "batch_complete", "trials_processed": 10, "cost_usd": 0.003},
            {"type": "super_batch_fallback"},
        ])
        assert [e.detail for e in events] == [
            "Exclusion: chunk 1/3",
            "Inclusion: chunk 2/?",
            "Inclusion done",
            "Batch done: 10 trials processed",
            "Falling back to sequential mode...",
        ]
        assert all(e.stage_name == "Assess Eligibility" for e in events)

    def test_phase_complete_maps_phases(self):
        events = normalize_all(StreamNormalizer("remote"), [
            {"type": "phase_complete", "phase": "retrieval", "cost_usd": 0.001, "candidates": 40},
            {"type": "phase_complete", "phase": "matching", "cost_usd": 0.01},
            {"type": "phase_complete", "phase": "ranking"},
        ])
        assert events == [
            StageComplete(stage_name="Retrieve Trials", cost=0.001, detail="40 candidates"),
            StageComplete(stage_name="Assess Eligibility", cost=0.01),
            StageComplete(stage_name="Rank & Report"),
        ]

    def test_trial_matched(self):
        events = StreamNormalizer("remote").normalize(frame({
            "type": "trial_matched", "nct_id": "NCT001", "title": "T", "index": 1, "total": 3,
            "status": "ELIGIBLE", "confidence": 0.8,
        }))
        assert events == [TrialProgress(nct_id="NCT001", title="T", index=1, total=3,
                                        status="ELIGIBLE", confidence=0.8)]

    def test_heartbeat_targets_active_stage(self):
        normalizer = StreamNormalizer("remote")
        normalizer.normalize(frame({"type": "phase_start", "phase": "retrieval"}))
        assert normalizer.normalize(frame({"type": "heartbeat"})) == [
            StageProgress(stage_name="Retrieve Trials", detail="Processing...")
        ]

        normalizer.normalize(frame({"type": "phase_start", "phase": "matching", "mode": "sequential"}))
        assert normalizer.normalize(frame({"type": "heartbeat"}))[0].stage_name == "Assess Eligibility"

    def test_heartbeat_without_active_stage(self):
        assert StreamNormalizer("remote").normalize(frame({"type": "heartbeat"})) == []

    def test_type_falls_back_to_sse_event_name(self):
        normalizer = StreamNormalizer("remote")
        normalizer.normalize(frame({"type": "phase_start", "phase": "ranking"}))
        events = normalizer.normalize(frame({"ts": 1}, event="heartbeat"))
        assert events == [StageProgress(stage_name="Rank & Report", detail="Processing...")]

    def test_complete_converts_matches(self, remote_match):
        events = StreamNormalizer("remote").normalize(frame({
            "type": "complete",
            "result": {"matches": [remote_match], "clinical_narrative": "One strong match."},
            "summary": {"cost_usd": 0.042, "total_candidates": 40},
        }))
        final = events[0]
        assert isinstance(final, FinalResponse)
        assert final.text == "One strong match."
        assert final.total_cost == pytest.approx(0.042)
        assert final.summary["total_candidates"] == 40
        assert final.trials[0]["nct_id"] == "NCT001"

    def test_complete_without_summary_uses_running_cost(self):
        events = normalize_all(StreamNormalizer("remote"), [
            {"type": "phase_complete", "phase": "retrieval", "cost_usd": 0.002},
            {"type": "batch_complete", "cost_usd": 0.003},
            {"type": "complete", "result": {"matches": []}},
        ])
        final = events[-1]
        assert final.text == "Found 0 matching trials for your patient."
        assert final.trials == []
        assert final.total_cost == pytest.approx(0.005)

    def test_error_payload(self):
        normalizer = StreamNormalizer("remote")
        assert normalizer.normalize(frame({"type": "error", "message": "quota"})) == [
            StreamErrorEvent(message="quota", reason="backend_error")
        ]
        assert normalizer.normalize(frame({"type": "error", "error": "boom"})) == [
            StreamErrorEvent(message="boom", reason="backend_error")
        ]


class TestConvertRemoteMatch:
    def test_reasons_concerns_and_locations(self, remote_match):
        trial = convert_remote_match(remote_match)
        assert trial["match_score"] == pytest.approx(0.82)
        assert trial["match_reasons"] == ["Patient is 55", "NSCLC confirmed", "EGFR positive"]
        assert trial["concerns"] == ["Brain imaging unknown", "Prior osimertinib"]
        assert trial["locations"] == ["Boston, United States", "Berlin, Germany"]
        assert trial["sponsor"] == ""

    def test_sparse_record(self):
        trial = convert_remote_match({"nct_id": "NCT9"})
        assert trial["nct_id"] == "NCT9"
        assert trial["match_reasons"] == []
        assert trial["locations"] == []


class TestDroppedFrames:
    def test_malformed_json_is_dropped(self):
        normalizer = StreamNormalizer("remote")
        assert normalizer.normalize('data: {"type": "phase_start", ') == []
        assert normalizer.state.frames_dropped == 1

    def test_non_object_payload_is_dropped(self):
        normalizer = StreamNormalizer("remote")
        assert normalizer.normalize("data: [1, 2]") == []
        assert normalizer.state.frames_dropped == 1

    def test_unknown_type_is_dropped(self):
        normalizer = StreamNormalizer("remote")
        assert normalizer.normalize(frame({"type": "gpu_stats"})) == []
        assert normalizer.state.frames_dropped == 1

    def test_vocabularies_are_separate(self):
        assert StreamNormalizer("local").normalize(frame({"type": "phase_start", "phase": "retrieval"})) == []
        assert StreamNormalizer("remote").normalize(frame({"type": "on_chain_start", "name": "retrieveTrials"})) == []

    def test_unknown_source_rejected(self):
        with pytest.raises(ValueError):
            StreamNormalizer("carrier-pigeon")

    def test_stream_continues_after_bad_frame(self):
        normalizer = StreamNormalizer("remote")
        frames = ["data: not json", frame({"type": "phase_start", "phase": "retrieval"})]
        events = [e for f in frames for e in normalizer.normalize(f)]
        assert events == [StageStart(stage_name="Retrieve Trials")]


class TestUnexpectedShapes:
    """Valid JSON whose fields have the wrong type for their frame."""

    @pytest.mark.parametrize("payload", [
        {"type": ["phase_start"]},
        {"type": "phase_start", "phase": {"name": "retrieval"}},
        {"type": "phase_complete", "phase": ["retrieval"], "cost_usd": 0.001},
        {"type": "complete", "result": {"matches": []}, "summary": "n/a"},
        {"type": "complete", "result": {"matches": ["oops"]}},
        {"type": "complete", "result": {"matches": [{"nct_id": "NCT001", "criteria_details": ["meets"]}]}},
    ])
    def test_frame_is_dropped(self, payload):
        normalizer = StreamNormalizer("remote")
        assert normalizer.normalize(frame(payload)) == []
        assert normalizer.state.frames_dropped == 1

    def test_stream_continues_after_bad_shape(self):
        normalizer = StreamNormalizer("remote")
        events = normalize_all(normalizer, [
            {"type": "phase_start", "phase": ["retrieval"]},
            {"type": "phase_start", "phase": "retrieval"},
        ])
        assert events == [StageStart(stage_name="Retrieve Trials")]
        assert normalizer.state.frames_seen == 2
        assert normalizer.state.frames_dropped == 1

    def test_local_node_name_of_wrong_type(self):
        normalizer = StreamNormalizer("local")
        assert normalizer.normalize(frame({"type": "on_chain_start", "name": ["retrieveTrials"]})) == []
        assert normalizer.state.frames_dropped == 1
