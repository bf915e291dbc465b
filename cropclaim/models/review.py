"""
Pydantic models for reviewer drafts and final decisions.
"""

from datetime import datetime
from typing import Optional, List
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict


class DamageConfirmation(str, Enum):
    PENDING = "pending"
    YES = "yes"
    NO = "no"
    PARTIAL = "partial"


# =========================================================
# 📝 DRAFT
# =========================================================
class DraftInput(BaseModel):
    """Reviewer's working notes; overwritten whole on each save."""
    verified_area: Optional[float] = Field(default=None, description="Verified damaged area in acres")
    damage_confirmation: DamageConfirmation = Field(default=DamageConfirmation.PENDING)
    comments: Optional[str] = Field(default="", description="Field verification notes")
    field_photo_refs: List[str] = Field(default_factory=list, description="Opaque photo references")

    model_config = ConfigDict(extra="ignore")


class ReviewDraft(DraftInput):
    claim_id: str
    reviewer_id: str
    saved_at: datetime

    model_config = ConfigDict(extra="ignore", from_attributes=True)


# =========================================================
# ⚖️ DECISION
# =========================================================
class DecisionInput(BaseModel):
    """
    Final verdict payload. `outcome` is left as a plain string so that a
    missing, `pending` or unknown outcome reaches the engine and is reported
    as a domain ValidationError with the offending field.
    """
    outcome: Optional[str] = Field(default=None, description="approve / reject / partial")
    final_comments: Optional[str] = Field(default="", description="Reviewer's closing remarks")
    approved_amount: Optional[float] = Field(default=None, description="Amount approved (partial approvals)")

    model_config = ConfigDict(extra="ignore")


class DecisionRecord(BaseModel):
    """Immutable record of the insurer's final verdict."""
    claim_id: str
    decided_by: str
    decided_at: datetime
    outcome: str
    final_comments: Optional[str] = ""
    approved_amount: Optional[float] = None
    fraud_suspect_at_decision: bool = False
    draft_snapshot: Optional[dict] = None

    model_config = ConfigDict(extra="ignore", from_attributes=True)
