"""
Patient Profile Accumulator.

Merges partial patient-profile deltas into the running session profile. Used
for the pre-stream extraction delta and for the profile snapshot carried by a
final response; both are deltas, never replacements.
"""

import logging
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from trialchat.schemas.patient import PatientProfile

logger = logging.getLogger(__name__)

ProfileDelta = Union[PatientProfile, Dict[str, Any], None]

_COLLECTION_FIELDS = ("biomarkers", "prior_treatments")

# camelCase keys used by the local pipeline payloads
_ALIASES = {
    "cancerType": "cancer_type",
    "pdl1Score": "pdl1_score",
    "msiStatus": "msi_status",
    "priorTreatments": "prior_treatments",
    "rawText": "raw_text",
}


def _defined_fields(delta: ProfileDelta) -> Dict[str, Any]:
    """Fields the delta explicitly defines with a non-null value."""
    if delta is None:
        return {}
    if isinstance(delta, PatientProfile):
        return delta.model_dump(exclude_unset=True, exclude_none=True)

    renamed = {_ALIASES.get(k, k): v for k, v in delta.items() if v is not None}
    try:
        validated = PatientProfile.model_validate(renamed)
    except ValidationError as e:
        # Drop only the offending fields; the rest of the delta still applies
        bad = {err["loc"][0] for err in e.errors() if err.get("loc")}
        logger.warning(f"⚠️ Ignoring invalid profile fields {sorted(map(str, bad))}")
        validated = PatientProfile.model_validate({k: v for k, v in renamed.items() if k not in bad})
    return validated.model_dump(exclude_unset=True, exclude_none=True)


def merge_profile(current: Optional[PatientProfile], delta: ProfileDelta) -> PatientProfile:
    """
    Merge a profile delta into the current profile.

    Rules:
    - Scalars: the delta wins only where it defines the field.
    - Biomarkers: key-wise merge, delta wins per key.
    - Prior treatments: ordered union, current entries first.

    Args:
        current: Accumulated profile (None = empty)
        delta: Partial profile as a model or plain dict

    Returns:
        A new PatientProfile; neither input is modified
    """
    base = current.model_dump(exclude_unset=True) if current is not None else {}
    incoming = _defined_fields(delta)

    merged = dict(base)
    for name, value in incoming.items():
        if name not in _COLLECTION_FIELDS:
            merged[name] = value

    biomarkers = dict(base.get("biomarkers") or {})
    biomarkers.update(incoming.get("biomarkers") or {})
    if biomarkers:
        merged["biomarkers"] = biomarkers

    treatments = list(base.get("prior_treatments") or [])
    for treatment in incoming.get("prior_treatments") or []:
        if treatment not in treatments:
            treatments.append(treatment)
    if treatments:
        merged["prior_treatments"] = treatments

    return PatientProfile(**merged)
