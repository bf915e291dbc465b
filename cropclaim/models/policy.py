"""
Reference-data models: farmers, insurers, reviewers and policies.
Read-only for the claim engine; rows are seeded by operators.
"""

from datetime import date
from typing import Optional, Dict
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict


class PolicyStatus(str, Enum):
    ACTIVE = "Active"
    EXPIRED = "Expired"
    PENDING = "Pending"


# =========================================================
# 👩‍🌾 PARTIES
# =========================================================
class Farmer(BaseModel):
    id: str
    account_id: Optional[str] = Field(default=None, description="Link to the external auth account")
    name: str
    bank_account_number: Optional[str] = None
    bank_ifsc: Optional[str] = None
    bank_account_holder: Optional[str] = None

    model_config = ConfigDict(extra="ignore", from_attributes=True)

    def bank_details(self) -> Dict[str, Optional[str]]:
        """Beneficiary details handed to the payment collaborator."""
        return {
            "account_number": self.bank_account_number,
            "ifsc": self.bank_ifsc,
            "account_holder": self.bank_account_holder or self.name,
        }


class Insurer(BaseModel):
    id: str
    account_id: Optional[str] = None
    name: str

    model_config = ConfigDict(extra="ignore", from_attributes=True)


class Reviewer(BaseModel):
    id: str
    insurer_id: str = Field(..., description="Insurer this reviewer acts for")
    account_id: Optional[str] = None
    name: str

    model_config = ConfigDict(extra="ignore", from_attributes=True)


# =========================================================
# 📘 POLICY
# =========================================================
class Policy(BaseModel):
    policy_id: str
    farmer_id: str
    insurer_id: str
    crop_type: str
    sum_insured: float
    status: PolicyStatus
    start_date: date
    end_date: date

    model_config = ConfigDict(extra="ignore", from_attributes=True)

    def covers(self, day: date) -> bool:
        """Inclusive check of the policy validity window."""
        return self.start_date <= day <= self.end_date

    def snapshot(self) -> dict:
        """Subset of the policy sent to the assessment collaborator."""
        return {
            "policy_id": self.policy_id,
            "crop_type": self.crop_type,
            "sum_insured": self.sum_insured,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
        }
