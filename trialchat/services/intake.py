"""
Intake - Decides whether a turn runs matching, and what to say when it doesn't.
"""

import re
from typing import List

from trialchat.config import DEFAULT_MAX_RESULTS
from trialchat.schemas.patient import PatientProfile

MATCHING_TRIGGER_PATTERNS = [
    re.compile(r"find.*trial", re.IGNORECASE),
    re.compile(r"search.*trial", re.IGNORECASE),
    re.compile(r"match.*trial", re.IGNORECASE),
    re.compile(r"start.*match", re.IGNORECASE),
]

_MAX_RESULTS_PATTERNS = [
    re.compile(r"\btop\s+(\d{1,2})\b", re.IGNORECASE),
    re.compile(r"\b(\d{1,2})\s+(?:\w+\s+)?trials?\b", re.IGNORECASE),
]
MAX_RESULTS_LIMIT = 20


def should_trigger_matching(message: str, profile: PatientProfile) -> bool:
    """A matching request with at least age and cancer type known."""
    asked = any(p.search(message) for p in MATCHING_TRIGGER_PATTERNS)
    return asked and profile.has_minimum_for_matching()


def extract_max_results(message: str, default: int = DEFAULT_MAX_RESULTS) -> int:
    """
    Number of trials the user asked for.

    "find top 2 trials" -> 2, "show me 3 matching trials" -> 3, otherwise the
    default. Values are clamped to 1..MAX_RESULTS_LIMIT.
    """
    for pattern in _MAX_RESULTS_PATTERNS:
        match = pattern.search(message)
        if match:
            return max(1, min(int(match.group(1)), MAX_RESULTS_LIMIT))
    return default


def captured_fields(profile: PatientProfile) -> List[str]:
    captured = []
    if profile.age is not None:
        captured.append(f"Age: {profile.age}")
    if profile.sex:
        captured.append(f"Sex: {profile.sex}")
    if profile.cancer_type:
        captured.append(f"Diagnosis: {profile.cancer_type}")
    if profile.stage:
        captured.append(f"Stage: {profile.stage}")
    if profile.biomarkers:
        markers = ", ".join(f"{k}: {v}" for k, v in profile.biomarkers.items())
        captured.append(f"Biomarkers: {markers}")
    if profile.ecog is not None:
        captured.append(f"ECOG: {profile.ecog}")
    if profile.prior_treatments:
        captured.append(f"Prior Tx: {', '.join(profile.prior_treatments)}")
    return captured


def build_intake_reply(profile: PatientProfile) -> str:
    """Reply for a turn that does not run matching."""
    captured = captured_fields(profile)
    if not captured:
        return (
            "👋 **Welcome to Trial Matching!**\n\n"
            "Describe the patient:\n"
            "> \"55yo male with stage IIIB NSCLC, EGFR positive\""
        )

    bullet_list = "\n".join(f"- **{c}**" for c in captured)
    if profile.has_minimum_for_matching():
        return f"✅ **Captured:**\n{bullet_list}\n\n👉 Say **\"find trials\"** when ready!"

    needed = []
    if profile.age is None:
        needed.append("Age")
    if profile.cancer_type is None:
        needed.append("Cancer Type")
    return f"📝 **Captured:**\n{bullet_list}\n\n**Still needed:** {', '.join(needed)}"
