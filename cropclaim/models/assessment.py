"""
Assessment Models
-----------------
Schemas for the AI/satellite damage assessment exchange:
- AssessmentResult: callback payload from the collaborator (success or failure)
- AssessmentReport: normalized report stored 1:1 with a claim
- AssessmentRequest: one dispatch attempt
"""

from datetime import datetime
from typing import Optional, List, Dict, Union
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict

ASSESSMENT_UNAVAILABLE_FLAG = "assessment_unavailable"


class AssessmentRequestStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    SUPERSEDED = "superseded"


# =========================================================
# 📩 COLLABORATOR CALLBACK
# =========================================================
class AssessmentResult(BaseModel):
    """
    Raw result from the assessment collaborator.

    `validation_flags` arrives either as a list of names or as a map of
    name -> bool/str; the coordinator normalizes it before storing.
    A result with `failed=True` is the collaborator's explicit failure signal.
    """
    failed: bool = Field(default=False, description="Collaborator could not compute an assessment")
    error_message: Optional[str] = None
    request_id: Optional[str] = Field(default=None, description="Dispatch this result answers")
    ai_damage_percent: Optional[float] = Field(default=None, description="Estimated damage 0–100")
    ai_recommended_amount: Optional[float] = None
    confidence_score: Optional[float] = Field(default=None, description="Model confidence 0–1")
    validation_flags: Union[List[str], Dict[str, Union[bool, str, None]], None] = None
    weather_summary: Optional[str] = None
    crop_health_summary: Optional[str] = None
    geospatial_summary: Optional[str] = None

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "ai_damage_percent": 62.0,
                "ai_recommended_amount": 46500.0,
                "confidence_score": 0.81,
                "validation_flags": {"weatherMismatch": False, "cloudCover": "high"},
                "weather_summary": "Hailstorm recorded on 2024-07-14",
            }
        },
    )

    @classmethod
    def failure(cls, message: str, request_id: Optional[str] = None) -> "AssessmentResult":
        return cls(failed=True, error_message=message, request_id=request_id)


# =========================================================
# 🧾 STORED REPORT
# =========================================================
class AssessmentReport(BaseModel):
    claim_id: str
    request_id: Optional[str] = None
    ai_damage_percent: Optional[float] = None
    ai_recommended_amount: Optional[float] = None
    confidence_score: Optional[float] = None
    validation_flags: List[str] = Field(default_factory=list, description="Sorted, snake_case flag names")
    weather_summary: Optional[str] = None
    crop_health_summary: Optional[str] = None
    geospatial_summary: Optional[str] = None
    received_at: datetime

    model_config = ConfigDict(extra="ignore", from_attributes=True)

    @property
    def unavailable(self) -> bool:
        return ASSESSMENT_UNAVAILABLE_FLAG in self.validation_flags


class AssessmentRequest(BaseModel):
    id: str
    claim_id: str
    status: AssessmentRequestStatus
    attempt: int = 1
    requested_by: str = "system"
    requested_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    model_config = ConfigDict(extra="ignore", from_attributes=True)


class AssessmentRetryRequest(BaseModel):
    retry: bool = Field(default=True, description="Operator retry of a timed-out dispatch")

    model_config = ConfigDict(extra="ignore")
