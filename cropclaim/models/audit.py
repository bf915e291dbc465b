from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class AuditEntry(BaseModel):
    """Append-only trail entry; one per state transition or fraud flag change."""
    id: int
    claim_id: str
    actor: str
    action: str = Field(..., description="e.g. claim_submitted, draft_saved, fraud_flagged")
    timestamp: datetime
    before_state: Optional[str] = None
    after_state: Optional[str] = None
    details: Optional[dict] = None

    model_config = ConfigDict(extra="ignore", from_attributes=True)
