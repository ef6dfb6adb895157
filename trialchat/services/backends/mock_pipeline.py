"""
Local Pipeline Backend - Deterministic mock of the matching graph.

Runs the graph nodes in-process and streams their lifecycle in the local
vocabulary (on_chain_start / on_chain_end per node, the "LangGraph" node ending
last with the final state). No network, no model calls: candidate trials and
scores are fixed, token counts are nominal so costs are reproducible.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Tuple

from trialchat.config import MOCK_STEP_DELAY_S
from trialchat.schemas.patient import PatientProfile
from trialchat.schemas.trials import TrialMatch
from trialchat.services.intake import build_intake_reply
from trialchat.services.streaming.config import SOURCE_LOCAL, LOCAL_COMPLETION_SENTINEL
from trialchat.services.streaming.sse import encode_frame
from .base import MatchingBackend, TurnRequest

logger = logging.getLogger(__name__)

# USD per 1K tokens
MODEL_CONFIGS = {
    "qwen-7b": {"name": "Qwen 7B", "cost_per_k_input": 0.0001, "cost_per_k_output": 0.0001},
    "qwen-72b": {"name": "Qwen 72B", "cost_per_k_input": 0.0006, "cost_per_k_output": 0.0006},
    "claude-sonnet": {"name": "Claude Sonnet", "cost_per_k_input": 0.003, "cost_per_k_output": 0.015},
    "claude-haiku": {"name": "Claude Haiku", "cost_per_k_input": 0.00025, "cost_per_k_output": 0.00125},
}

# node -> (model, input tokens, output tokens)
NODE_USAGE: Dict[str, Tuple[str, int, int]] = {
    "parsePatient": ("qwen-7b", 200, 100),
    "retrieveTrials": ("qwen-7b", 200, 400),
    "matchBiomarkers": ("qwen-72b", 600, 300),
    "analyzeEligibility": ("claude-sonnet", 1200, 600),
    "generateSummary": ("claude-haiku", 500, 300),
}

MATCHING_NODES = ["retrieveTrials", "matchBiomarkers", "analyzeEligibility", "generateSummary"]

# Fixed scores of the three candidates, in retrieval order
CANDIDATE_SCORES = [0.94, 0.87, 0.71]


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    cfg = MODEL_CONFIGS[model]
    return (input_tokens / 1000) * cfg["cost_per_k_input"] + (output_tokens / 1000) * cfg["cost_per_k_output"]


def node_cost(node: str) -> float:
    model, tokens_in, tokens_out = NODE_USAGE[node]
    return calculate_cost(model, tokens_in, tokens_out)


# =============================================================================
# Graph nodes
# =============================================================================

def retrieve_trials(profile: PatientProfile) -> List[TrialMatch]:
    cancer = profile.cancer_type
    return [
        TrialMatch(
            nct_id="NCT05123456",
            title=f"Phase 3 Targeted Therapy in {cancer or 'Cancer'}",
            phase="Phase 3", status="RECRUITING", sponsor="Pharma Corp",
            locations=["Boston", "New York"],
        ),
        TrialMatch(
            nct_id="NCT05234567",
            title=f"Immunotherapy Combination for {cancer or 'Solid Tumors'}",
            phase="Phase 2", status="RECRUITING", sponsor="Academic Center",
            locations=["Chicago", "LA"],
        ),
        TrialMatch(
            nct_id="NCT05345678",
            title=f"First-in-Human Bispecific in {cancer or 'Cancer'}",
            phase="Phase 1", status="RECRUITING", sponsor="Biotech Inc",
            locations=["San Francisco"],
        ),
    ]


def match_biomarkers(profile: PatientProfile, candidates: List[TrialMatch]) -> List[TrialMatch]:
    reasons = []
    if profile.cancer_type:
        reasons.append(f"✅ {profile.cancer_type} matches")
    if profile.stage:
        reasons.append(f"✅ {profile.stage} eligible")
    for marker, status in profile.biomarkers.items():
        reasons.append(f"✅ {marker} {status}")

    return [
        trial.model_copy(update={"match_reasons": list(reasons), "match_score": score})
        for trial, score in zip(candidates, CANDIDATE_SCORES)
    ]


def analyze_eligibility(profile: PatientProfile, candidates: List[TrialMatch]) -> List[TrialMatch]:
    analyzed = []
    for trial in candidates:
        reasons = list(trial.match_reasons)
        concerns = []
        if profile.prior_treatments:
            reasons.append(f"✅ Prior: {', '.join(profile.prior_treatments)}")
        if trial.phase == "Phase 1":
            concerns.append("ℹ️ Early phase study")
        if profile.ecog is None:
            concerns.append("⚠️ ECOG not documented")
        analyzed.append(trial.model_copy(update={"match_reasons": reasons, "concerns": concerns}))
    return sorted(analyzed, key=lambda t: t.match_score, reverse=True)


def generate_summary(profile: PatientProfile, matched: List[TrialMatch], total_cost: float) -> str:
    p = profile
    bio = ", ".join(f"{k}: {v}" for k, v in p.biomarkers.items())
    headline = " ".join(part for part in [
        f"{p.age}yo" if p.age is not None else "",
        p.sex or "",
        f"with {p.cancer_type or 'cancer'}",
        f"({p.stage})" if p.stage else "",
    ] if part)

    lines = ["## 🔬 Trial Matching Complete", "", "### Patient Profile", headline]
    if bio:
        lines.append(f"**Biomarkers:** {bio}")
    if p.pdl1_score:
        lines.append(f"**PD-L1:** {p.pdl1_score}")
    if p.ecog is not None:
        lines.append(f"**ECOG:** {p.ecog}")
    if p.prior_treatments:
        lines.append(f"**Prior Tx:** {', '.join(p.prior_treatments)}")

    lines += ["", "### Results", f"Found **{len(matched)}** matching trials."]
    if matched:
        top = matched[0]
        lines.append(f"**Top Match:** {top.nct_id} ({round(top.match_score * 100)}%)")
    lines += [
        "",
        "---",
        "⚠️ AI-generated. Consult healthcare provider.",
        f"**Pipeline Cost:** ${total_cost:.4f}",
    ]
    return "\n".join(lines)


# =============================================================================
# Backend
# =============================================================================

class LocalPipelineBackend(MatchingBackend):
    """In-process mock pipeline speaking the local vocabulary."""

    source = SOURCE_LOCAL

    def __init__(self, step_delay: float = MOCK_STEP_DELAY_S):
        self.step_delay = step_delay

    async def check_health(self) -> bool:
        return True

    async def open_stream(self, request: TurnRequest) -> AsyncIterator[str]:
        profile = request.profile
        total_cost = 0.0

        yield self._start("parsePatient")
        cost = node_cost("parsePatient")
        total_cost += cost
        yield self._end("parsePatient", {"totalCost": cost})

        if not request.trigger_matching:
            yield self._start("generateResponse")
            response = build_intake_reply(profile)
            yield self._end("generateResponse", {"response": response})
            yield self._final(response, profile, [], total_cost)
            yield encode_frame({"type": "done"})
            return

        logger.info(f"🔬 Mock matching for session {request.session_id} (max_results={request.max_results})")

        trials: List[TrialMatch] = []
        response = ""
        for node in MATCHING_NODES:
            yield self._start(node)
            await self._pause()

            cost = node_cost(node)
            total_cost += cost
            if node == "retrieveTrials":
                trials = retrieve_trials(profile)
            elif node == "matchBiomarkers":
                trials = match_biomarkers(profile, trials)
            elif node == "analyzeEligibility":
                trials = analyze_eligibility(profile, trials)[:request.max_results]
            elif node == "generateSummary":
                response = generate_summary(profile, trials, total_cost)

            yield self._end(node, {"totalCost": cost})

        yield self._final(response, profile, trials, total_cost)
        yield encode_frame({"type": "done"})

    async def _pause(self) -> None:
        if self.step_delay > 0:
            await asyncio.sleep(self.step_delay)

    @staticmethod
    def _start(node: str) -> str:
        return encode_frame({"type": "on_chain_start", "name": node})

    @staticmethod
    def _end(node: str, output: Dict[str, Any]) -> str:
        return encode_frame({"type": "on_chain_end", "name": node, "data": {"output": output}})

    @staticmethod
    def _final(response: str, profile: PatientProfile, trials: List[TrialMatch], total_cost: float) -> str:
        return encode_frame({
            "type": "on_chain_end",
            "name": LOCAL_COMPLETION_SENTINEL,
            "data": {"output": {
                "response": response,
                "patientProfile": profile.model_dump(exclude_none=True),
                "matchedTrials": [t.model_dump() for t in trials],
                "totalCost": round(total_cost, 6),
            }},
        })
