"""
ORM tables for the claim store.

Claims carry a `version` column wired as SQLAlchemy's `version_id_col`, so
every UPDATE is issued as `... WHERE id = ? AND version = ?` and a lost race
surfaces as StaleDataError at flush time.
"""

from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, Float, Boolean, Date, DateTime, Text, JSON,
    ForeignKey, UniqueConstraint, Index, event, false,
)
from cropclaim.utils.db import Base


# =========================================================
# 📘 Reference data
# =========================================================
class FarmerRow(Base):
    __tablename__ = "farmers"

    id = Column(String(40), primary_key=True)
    account_id = Column(String(80), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    bank_account_number = Column(String(40), nullable=True)
    bank_ifsc = Column(String(20), nullable=True)
    bank_account_holder = Column(String(200), nullable=True)


class InsurerRow(Base):
    __tablename__ = "insurers"

    id = Column(String(40), primary_key=True)
    account_id = Column(String(80), nullable=True, index=True)
    name = Column(String(200), nullable=False)


class ReviewerRow(Base):
    __tablename__ = "reviewers"

    id = Column(String(40), primary_key=True)
    insurer_id = Column(String(40), ForeignKey("insurers.id"), nullable=False, index=True)
    account_id = Column(String(80), nullable=True)
    name = Column(String(200), nullable=False)


class PolicyRow(Base):
    __tablename__ = "policies"

    policy_id = Column(String(40), primary_key=True)
    farmer_id = Column(String(40), ForeignKey("farmers.id"), nullable=False, index=True)
    insurer_id = Column(String(40), ForeignKey("insurers.id"), nullable=False, index=True)
    crop_type = Column(String(80), nullable=False)
    sum_insured = Column(Float, nullable=False)
    status = Column(String(20), nullable=False, default="Active")
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)


# =========================================================
# 🧾 Claims
# =========================================================
class ClaimRow(Base):
    __tablename__ = "claims"
    __table_args__ = (
        UniqueConstraint("farmer_id", "idempotency_key", name="uq_claims_farmer_idempotency_key"),
    )

    id = Column(String(32), primary_key=True)
    claim_id = Column(String(40), unique=True, nullable=False, index=True)
    policy_id = Column(String(40), ForeignKey("policies.policy_id"), nullable=False, index=True)
    farmer_id = Column(String(40), ForeignKey("farmers.id"), nullable=False, index=True)
    date_of_incident = Column(Date, nullable=False)
    location_of_incident = Column(String(255), default="")
    description = Column(Text, default="")
    amount_claimed = Column(Float, nullable=False)
    evidence_refs = Column(JSON, default=list)
    status = Column(String(20), nullable=False, index=True)
    decision_outcome = Column(String(10), nullable=True)
    fraud_suspect = Column(Boolean, default=False, nullable=False)
    fraud_flagged_at = Column(DateTime, nullable=True)
    assigned_reviewer_id = Column(String(40), ForeignKey("reviewers.id"), nullable=True, index=True)
    idempotency_key = Column(String(255), nullable=False)
    request_fingerprint = Column(String(64), nullable=False)
    payout_lock_token = Column(String(32), nullable=True)
    payout_lock_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Claim {self.claim_id} ({self.status} v{self.version})>"

    def touch(self) -> None:
        """Mark the row dirty so the flush runs the versioned UPDATE."""
        self.updated_at = datetime.utcnow()


# =========================================================
# 🛰️ Assessment
# =========================================================
class AssessmentRequestRow(Base):
    __tablename__ = "assessment_requests"

    id = Column(String(32), primary_key=True)
    claim_id = Column(String(40), ForeignKey("claims.claim_id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")
    attempt = Column(Integer, nullable=False, default=1)
    requested_by = Column(String(80), nullable=False, default="system")
    requested_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)


class AssessmentReportRow(Base):
    __tablename__ = "assessment_reports"

    claim_id = Column(String(40), ForeignKey("claims.claim_id"), primary_key=True)
    request_id = Column(String(32), nullable=True)
    ai_damage_percent = Column(Float, nullable=True)
    ai_recommended_amount = Column(Float, nullable=True)
    confidence_score = Column(Float, nullable=True)
    validation_flags = Column(JSON, default=list)
    weather_summary = Column(Text, nullable=True)
    crop_health_summary = Column(Text, nullable=True)
    geospatial_summary = Column(Text, nullable=True)
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)


# =========================================================
# ⚖️ Review & decision
# =========================================================
class ReviewDraftRow(Base):
    __tablename__ = "review_drafts"

    claim_id = Column(String(40), ForeignKey("claims.claim_id"), primary_key=True)
    reviewer_id = Column(String(40), ForeignKey("reviewers.id"), nullable=False)
    verified_area = Column(Float, nullable=True)
    damage_confirmation = Column(String(10), nullable=False, default="pending")
    comments = Column(Text, default="")
    field_photo_refs = Column(JSON, default=list)
    saved_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class DecisionRecordRow(Base):
    __tablename__ = "decision_records"

    claim_id = Column(String(40), ForeignKey("claims.claim_id"), primary_key=True)
    decided_by = Column(String(40), nullable=False)
    decided_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    outcome = Column(String(10), nullable=False)
    final_comments = Column(Text, default="")
    approved_amount = Column(Float, nullable=True)
    fraud_suspect_at_decision = Column(Boolean, default=False, nullable=False)
    draft_snapshot = Column(JSON, nullable=True)


# =========================================================
# 💸 Settlement
# =========================================================
class PayoutRecordRow(Base):
    __tablename__ = "payout_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    claim_id = Column(String(40), ForeignKey("claims.claim_id"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    transaction_id = Column(String(120), unique=True, nullable=False)
    gateway_transaction_id = Column(String(120), nullable=True)
    settled_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    notes = Column(Text, default="")
    voided = Column(Boolean, default=False, nullable=False)


# At most one non-voided payout per claim
Index(
    "uq_payout_records_active_claim",
    PayoutRecordRow.claim_id,
    unique=True,
    sqlite_where=PayoutRecordRow.voided == false(),
    postgresql_where=PayoutRecordRow.voided == false(),
)


# =========================================================
# 📜 Audit trail
# =========================================================
class AuditEntryRow(Base):
    __tablename__ = "audit_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    claim_id = Column(String(40), ForeignKey("claims.claim_id"), nullable=False, index=True)
    actor = Column(String(80), nullable=False)
    action = Column(String(60), nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    before_state = Column(String(20), nullable=True)
    after_state = Column(String(20), nullable=True)
    details = Column(JSON, nullable=True)


def _reject_mutation(mapper, connection, target):
    raise RuntimeError(f"{type(target).__name__} rows are immutable once written")


for _immutable in (AuditEntryRow, DecisionRecordRow, PayoutRecordRow):
    event.listen(_immutable, "before_update", _reject_mutation)
    event.listen(_immutable, "before_delete", _reject_mutation)
