"""
Patient Profile Extraction - Produces a profile delta from one user message.

The coordinator consumes the delta as-is and merges it; it never re-validates
what an extractor returns. KeywordProfileExtractor is the deterministic default.
An LLM-backed extractor plugs in by subclassing ProfileExtractor.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List

from trialchat.schemas.patient import PatientProfile

logger = logging.getLogger(__name__)


class ProfileExtractor(ABC):
    """Turns free text into a partial PatientProfile."""

    @abstractmethod
    async def extract(self, message: str) -> PatientProfile:
        ...


CANCER_TYPES = {
    "nsclc": "NSCLC",
    "non-small cell lung": "NSCLC",
    "sclc": "SCLC",
    "breast": "Breast Cancer",
    "tnbc": "TNBC",
    "melanoma": "Melanoma",
    "colorectal": "CRC",
    "pancreatic": "Pancreatic",
}

BIOMARKERS = ["EGFR", "BRAF", "KRAS", "ALK", "ROS1", "HER2"]

KNOWN_TREATMENTS = ["carboplatin", "cisplatin", "pemetrexed", "pembrolizumab", "nivolumab", "osimertinib"]

AGE_RE = re.compile(r"(\d+)[\s-]*(year|yr|y/?o)", re.IGNORECASE)
MALE_RE = re.compile(r"\b(male|man)\b", re.IGNORECASE)
FEMALE_RE = re.compile(r"\b(female|woman)\b", re.IGNORECASE)
STAGE_RE = re.compile(r"stage[\s:=-]*(I{1,3}V?|IV)[ABC]?", re.IGNORECASE)
ADVANCED_RE = re.compile(r"\b(metastatic|advanced)\b", re.IGNORECASE)
PDL1_RE = re.compile(r"pd-?l1[\s:=-]*(tps)?[\s:=-]*(\d+)\s*%?", re.IGNORECASE)
ECOG_RE = re.compile(r"ecog[\s:=-]*(\d)", re.IGNORECASE)
POSITIVE_RE = re.compile(r"pos|positive|\+|mutant", re.IGNORECASE)
NEGATIVE_RE = re.compile(r"neg|negative|-|wild", re.IGNORECASE)


class KeywordProfileExtractor(ProfileExtractor):
    """Regex/keyword heuristics for the common oncology intake phrasing."""

    async def extract(self, message: str) -> PatientProfile:
        fields = self.extract_fields(message)
        if fields:
            fields["raw_text"] = message
            logger.debug(f"Extracted profile fields: {sorted(fields)}")
        return PatientProfile(**fields)

    def extract_fields(self, message: str) -> Dict:
        fields: Dict = {}
        lowered = message.lower()

        age = AGE_RE.search(message)
        if age and int(age.group(1)) <= 130:
            fields["age"] = int(age.group(1))

        if MALE_RE.search(message):
            fields["sex"] = "Male"
        elif FEMALE_RE.search(message):
            fields["sex"] = "Female"

        for key, value in CANCER_TYPES.items():
            if key in lowered:
                fields["cancer_type"] = value
                break

        stage = STAGE_RE.search(message)
        if stage:
            fields["stage"] = stage.group(0).upper()
        elif ADVANCED_RE.search(message):
            fields["stage"] = "Stage IV"

        biomarkers = self._biomarkers(message)
        if biomarkers:
            fields["biomarkers"] = biomarkers

        pdl1 = PDL1_RE.search(message)
        if pdl1:
            fields["pdl1_score"] = f"TPS {pdl1.group(2)}%"

        ecog = ECOG_RE.search(message)
        if ecog and int(ecog.group(1)) <= 5:
            fields["ecog"] = int(ecog.group(1))

        treatments = self._treatments(lowered)
        if treatments:
            fields["prior_treatments"] = treatments

        return fields

    @staticmethod
    def _biomarkers(message: str) -> Dict[str, str]:
        found = {}
        for marker in BIOMARKERS:
            match = re.search(rf"{marker}[\s:=-]*(\S+)?", message, re.IGNORECASE)
            if not match:
                continue
            context = message[max(0, match.start() - 20):match.start() + 30]
            if POSITIVE_RE.search(context):
                found[marker] = "Positive"
            elif NEGATIVE_RE.search(context):
                found[marker] = "Negative"
            else:
                found[marker] = "Detected"
        return found

    @staticmethod
    def _treatments(lowered: str) -> List[str]:
        return [tx.capitalize() for tx in KNOWN_TREATMENTS if tx in lowered]
