"""
Trial Schemas - Unified trial match record and remote request body.

Trial matches are opaque to the streaming core; this record only fixes the
shape both backends deliver to the rendering layer.
"""

from pydantic import BaseModel, Field
from typing import Optional, List


class TrialMatch(BaseModel):
    """One ranked trial match."""
    nct_id: str = Field(..., description="ClinicalTrials.gov identifier")
    title: str = Field("", description="Official or brief title")
    phase: str = Field("", description="Trial phase (e.g., 'Phase 2')")
    status: str = Field("", description="Recruitment status")
    sponsor: str = Field("", description="Lead sponsor")
    locations: List[str] = Field(default_factory=list, description="'City, Country' strings")
    match_score: float = Field(0.0, description="Overall match score (0-1)")
    match_reasons: List[str] = Field(default_factory=list)
    concerns: List[str] = Field(default_factory=list)


class BiomarkerInput(BaseModel):
    name: str
    status: Optional[str] = None
    value: Optional[str] = None
    method: Optional[str] = None


class PatientInput(BaseModel):
    """Request body of the remote matching service (/match/stream)."""
    patient_id: str
    age: int
    sex: str = Field("other", description="male | female | other")
    primary_diagnosis: str
    diagnosis_date: Optional[str] = None
    histology: Optional[str] = None
    stage: Optional[str] = None
    biomarkers: List[BiomarkerInput] = Field(default_factory=list)
    prior_treatments: List[str] = Field(default_factory=list)
    current_medications: List[dict] = Field(default_factory=list)
    lab_values: List[dict] = Field(default_factory=list)
    ecog_status: Optional[int] = None
    comorbidities: List[str] = Field(default_factory=list)
    clinical_notes: Optional[str] = None
    preferred_locations: List[str] = Field(default_factory=list)
    max_travel_distance_miles: Optional[int] = None
