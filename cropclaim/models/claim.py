"""
Claim Models
------------
Defines the claim lifecycle enums plus input and response schemas for
claim intake. Compatible with Pydantic v2 and FastAPI 0.104+.
"""

from datetime import datetime, date
from typing import Optional, List
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict


# =========================================================
# 🧩 ENUMS
# =========================================================
class ClaimStatus(str, Enum):
    """Lifecycle states of a claim."""
    SUBMITTED = "SUBMITTED"
    ASSIGNED = "ASSIGNED"
    AI_PROCESSED = "AI_PROCESSED"
    UNDER_REVIEW = "UNDER_REVIEW"
    DECIDED = "DECIDED"
    PAYOUT_PENDING = "PAYOUT_PENDING"
    PAID = "PAID"
    CLOSED = "CLOSED"


TERMINAL_STATES = frozenset({ClaimStatus.PAID, ClaimStatus.CLOSED})


class DecisionOutcome(str, Enum):
    """Final verdict an insurer reviewer can record."""
    APPROVE = "approve"
    REJECT = "reject"
    PARTIAL = "partial"


# =========================================================
# 📄 INTAKE INPUT MODELS
# =========================================================
class IncidentDetails(BaseModel):
    """What happened, where and when, and how much the farmer is claiming."""
    date_of_incident: date = Field(..., description="Date the crop damage occurred (must lie in the policy window)")
    location_of_incident: str = Field(default="", description="Village / district / coordinates of the damaged field")
    description: str = Field(default="", description="Free-text description of the damage")
    amount_claimed: float = Field(..., description="Amount claimed in INR (must be > 0)")

    model_config = ConfigDict(extra="ignore")


class ClaimSubmission(BaseModel):
    """Incoming claim payload for POST /claims (idempotency key travels in the header)."""
    policy_id: str = Field(..., description="Policy the claim is filed under")
    farmer_id: str = Field(..., description="Farmer filing the claim")
    incident: IncidentDetails
    evidence_refs: List[str] = Field(default_factory=list, description="Opaque document/image references")

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "policy_id": "POL-2024-0001",
                "farmer_id": "FRM-001",
                "incident": {
                    "date_of_incident": "2024-07-15",
                    "location_of_incident": "Nashik, Maharashtra",
                    "description": "Hailstorm flattened the standing wheat crop",
                    "amount_claimed": 50000.0,
                },
                "evidence_refs": ["s3://evidence/FRM-001/field-1.jpg"],
            }
        },
    )


class AssignReviewerRequest(BaseModel):
    reviewer_id: str = Field(..., description="Reviewer to route the claim to")

    model_config = ConfigDict(extra="ignore")


# =========================================================
# 🧾 CLAIM RESPONSE MODELS
# =========================================================
class Claim(BaseModel):
    """Read model of a claim as stored by the engine."""
    id: str = Field(..., description="Internal key")
    claim_id: str = Field(..., description="Human-facing claim number (CLM-<year>-<6 digits>-<3 digits>)")
    policy_id: str
    farmer_id: str
    date_of_incident: date
    location_of_incident: str = ""
    description: str = ""
    amount_claimed: float
    evidence_refs: List[str] = Field(default_factory=list)
    status: ClaimStatus
    decision_outcome: Optional[DecisionOutcome] = None
    fraud_suspect: bool = False
    fraud_flagged_at: Optional[datetime] = None
    assigned_reviewer_id: Optional[str] = None
    idempotency_key: str
    version: int = Field(..., description="Optimistic concurrency counter (send back as If-Match)")
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(extra="ignore", from_attributes=True)


class ClaimSubmissionResponse(BaseModel):
    claim: Claim
    created: bool = Field(..., description="False when the idempotency key replayed an existing claim")

    model_config = ConfigDict(extra="ignore")
