"""
Patient Schemas - Accumulated patient profile for trial matching.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Literal


class PatientProfile(BaseModel):
    """
    Patient profile built up across chat turns.

    Deltas use the same model: a field that is unset (or None) carries no new
    value and never clears what is already known.
    """
    age: Optional[int] = Field(None, ge=0, le=130, description="Patient age in years")
    sex: Optional[Literal["Male", "Female"]] = Field(None, description="Patient sex")
    cancer_type: Optional[str] = Field(None, description="Cancer type or diagnosis (e.g., 'NSCLC')")
    histology: Optional[str] = Field(None, description="Histology type")
    stage: Optional[str] = Field(None, description="Cancer stage (e.g., 'STAGE IIIB')")
    ecog: Optional[int] = Field(None, ge=0, le=5, description="ECOG performance status")
    pdl1_score: Optional[str] = Field(None, description="PD-L1 score (e.g., 'TPS 80%')")
    msi_status: Optional[str] = Field(None, description="MSI status")
    biomarkers: Dict[str, str] = Field(default_factory=dict, description="Biomarker name -> status")
    prior_treatments: List[str] = Field(default_factory=list, description="Distinct prior treatments, first-seen order")
    raw_text: Optional[str] = Field(None, description="Free text the profile was last extracted from")

    model_config = {
        "json_schema_extra": {
            "example": {
                "age": 55,
                "sex": "Male",
                "cancer_type": "NSCLC",
                "stage": "STAGE IIIB",
                "biomarkers": {"EGFR": "Positive"},
                "prior_treatments": ["Carboplatin"],
                "ecog": 1,
            }
        }
    }

    def has_minimum_for_matching(self) -> bool:
        """Age and cancer type are required before matching can run."""
        return self.age is not None and self.cancer_type is not None
