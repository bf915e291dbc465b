"""
Payout and settlement schemas.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class PayoutRequest(BaseModel):
    amount: float = Field(..., description="Amount to disburse (0 < amount ≤ sum insured)")
    transaction_id: Optional[str] = Field(default=None, description="Caller-supplied payout transaction id")
    notes: Optional[str] = Field(default="", description="Settlement notes")

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={"example": {"amount": 45000.0, "transaction_id": "TXN1", "notes": "Hailstorm claim"}},
    )


class PayoutRecord(BaseModel):
    """Immutable record of a completed disbursement."""
    claim_id: str
    amount: float
    transaction_id: str
    gateway_transaction_id: Optional[str] = None
    settled_at: datetime
    notes: Optional[str] = ""
    voided: bool = False

    model_config = ConfigDict(extra="ignore", from_attributes=True)


class ReleaseRequest(BaseModel):
    override: bool = Field(default=False, description="Operator override of a scrutiny hold")

    model_config = ConfigDict(extra="ignore")


class ReleaseResult(BaseModel):
    claim_id: str
    released: bool
    status: str
    reason: str

    model_config = ConfigDict(extra="ignore")
