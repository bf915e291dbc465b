"""
Claim Store
-----------
Single source of truth for claim state.

- `transaction()` is the unit of work: every state-mutating engine operation
  runs inside one, so the transition, its side records and the audit entry
  commit together or not at all.
- Lost optimistic-concurrency races (StaleDataError from the versioned
  UPDATE) surface as ConcurrentModificationError.
- Read helpers return pydantic read models, never ORM rows.
"""

from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Iterator, List, Optional, Tuple
from sqlalchemy import select, func
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from cropclaim.exceptions import (
    ClaimNotFoundError, ConcurrentModificationError, NotAuthorizedError, NotFoundError,
)
from cropclaim.models.audit import AuditEntry
from cropclaim.models.assessment import AssessmentReport, AssessmentRequest
from cropclaim.models.claim import Claim, ClaimStatus, TERMINAL_STATES
from cropclaim.models.payout import PayoutRecord
from cropclaim.models.policy import Farmer, Policy, Reviewer
from cropclaim.models.review import DecisionRecord, ReviewDraft
from cropclaim.store.tables import (
    AssessmentReportRow, AssessmentRequestRow, AuditEntryRow, ClaimRow,
    DecisionRecordRow, FarmerRow, PayoutRecordRow, PolicyRow, ReviewDraftRow, ReviewerRow,
)
from cropclaim.utils.db import SessionLocal
from cropclaim.utils.logger import log_event

TERMINAL_VALUES = tuple(s.value for s in TERMINAL_STATES)


class ClaimStore:
    """SQLAlchemy-backed storage for claims and everything hanging off them."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    # =========================================================
    # 🔁 Unit of work
    # =========================================================
    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Commit on success, roll back everything on any error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except StaleDataError:
            session.rollback()
            claim_id = session.info.get("claim_id", "unknown")
            log_event("concurrent_modification", level="warning", claim_id=claim_id)
            raise ConcurrentModificationError(claim_id) from None
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def reader(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    # =========================================================
    # 🔒 Lookups inside a transaction
    # =========================================================
    def load_claim(self, session: Session, claim_id: str, expected_version: Optional[int] = None) -> ClaimRow:
        """Fetch a claim for mutation, optionally checking the caller's version."""
        row = session.execute(select(ClaimRow).where(ClaimRow.claim_id == claim_id)).scalar_one_or_none()
        if row is None:
            raise ClaimNotFoundError(claim_id)
        session.info["claim_id"] = claim_id
        if expected_version is not None and row.version != expected_version:
            raise ConcurrentModificationError(
                claim_id,
                expected_version=expected_version,
                current_version=row.version,
                current_state=row.status,
            )
        return row

    def load_policy(self, session: Session, policy_id: str) -> Optional[PolicyRow]:
        return session.get(PolicyRow, policy_id)

    def load_farmer(self, session: Session, farmer_id: str) -> Optional[FarmerRow]:
        return session.get(FarmerRow, farmer_id)

    def load_reviewer(self, session: Session, reviewer_id: str) -> Optional[ReviewerRow]:
        return session.get(ReviewerRow, reviewer_id)

    def authorized_reviewer(self, session: Session, reviewer_id: str, row: ClaimRow) -> ReviewerRow:
        """The reviewer must exist and act for the insurer that issued the claim's policy."""
        reviewer = self.load_reviewer(session, reviewer_id) if reviewer_id else None
        if reviewer is None:
            raise NotAuthorizedError(reviewer_id or "anonymous", row.claim_id, "unknown reviewer")
        policy = self.load_policy(session, row.policy_id)
        if policy is None or policy.insurer_id != reviewer.insurer_id:
            raise NotAuthorizedError(reviewer_id, row.claim_id, "reviewer does not act for the policy's insurer")
        return reviewer

    def find_by_idempotency_key(self, session: Session, farmer_id: str, idempotency_key: str) -> Optional[ClaimRow]:
        return session.execute(
            select(ClaimRow).where(
                ClaimRow.farmer_id == farmer_id,
                ClaimRow.idempotency_key == idempotency_key,
            )
        ).scalar_one_or_none()

    def find_open_claims_near(self, session: Session, policy_id: str, day: date, window_days: int) -> List[ClaimRow]:
        """Non-terminal claims on the policy whose incident date is within the window."""
        return list(
            session.execute(
                select(ClaimRow).where(
                    ClaimRow.policy_id == policy_id,
                    ClaimRow.status.notin_(TERMINAL_VALUES),
                    ClaimRow.date_of_incident >= day - timedelta(days=window_days),
                    ClaimRow.date_of_incident <= day + timedelta(days=window_days),
                )
            ).scalars()
        )

    def pending_requests(self, session: Session, claim_id: str) -> List[AssessmentRequestRow]:
        return list(
            session.execute(
                select(AssessmentRequestRow)
                .where(AssessmentRequestRow.claim_id == claim_id, AssessmentRequestRow.status == "pending")
                .order_by(AssessmentRequestRow.requested_at)
            ).scalars()
        )

    def latest_request(self, session: Session, claim_id: str) -> Optional[AssessmentRequestRow]:
        return session.execute(
            select(AssessmentRequestRow)
            .where(AssessmentRequestRow.claim_id == claim_id)
            .order_by(AssessmentRequestRow.attempt.desc())
            .limit(1)
        ).scalar_one_or_none()

    def active_payout(self, session: Session, claim_id: str) -> Optional[PayoutRecordRow]:
        return session.execute(
            select(PayoutRecordRow).where(PayoutRecordRow.claim_id == claim_id, PayoutRecordRow.voided.is_(False))
        ).scalar_one_or_none()

    # =========================================================
    # ✍️ Writes inside a transaction
    # =========================================================
    def append_audit(
        self,
        session: Session,
        claim_id: str,
        actor: str,
        action: str,
        before_state: Optional[str],
        after_state: Optional[str],
        details: Optional[dict] = None,
    ) -> AuditEntryRow:
        entry = AuditEntryRow(
            claim_id=claim_id,
            actor=actor,
            action=action,
            timestamp=datetime.utcnow(),
            before_state=before_state,
            after_state=after_state,
            details=details,
        )
        session.add(entry)
        return entry

    def transition(
        self,
        session: Session,
        row: ClaimRow,
        new_status: ClaimStatus,
        actor: str,
        action: str,
        details: Optional[dict] = None,
    ) -> AuditEntryRow:
        """Move a claim to `new_status` and append the matching audit entry."""
        before = row.status
        row.status = new_status.value
        row.touch()
        entry = self.append_audit(session, row.claim_id, actor, action, before, new_status.value, details)
        log_event(
            "claim_transition",
            claim_id=row.claim_id,
            action=action,
            actor=actor,
            before=before,
            after=new_status.value,
        )
        return entry

    # =========================================================
    # 📖 Read models
    # =========================================================
    def get_claim(self, claim_id: str) -> Claim:
        with self.reader() as session:
            row = session.execute(select(ClaimRow).where(ClaimRow.claim_id == claim_id)).scalar_one_or_none()
            if row is None:
                raise ClaimNotFoundError(claim_id)
            return Claim.model_validate(row)

    def list_claims(
        self,
        farmer_id: Optional[str] = None,
        reviewer_id: Optional[str] = None,
        status: Optional[ClaimStatus] = None,
        fraud_suspect: Optional[bool] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Claim], int]:
        """Filter claims, newest first."""
        query = select(ClaimRow)
        if farmer_id:
            query = query.where(ClaimRow.farmer_id == farmer_id)
        if reviewer_id:
            query = query.where(ClaimRow.assigned_reviewer_id == reviewer_id)
        if status:
            query = query.where(ClaimRow.status == ClaimStatus(status).value)
        if fraud_suspect is not None:
            query = query.where(ClaimRow.fraud_suspect.is_(fraud_suspect))

        with self.reader() as session:
            total = session.execute(select(func.count()).select_from(query.subquery())).scalar_one()
            rows = session.execute(
                query.order_by(ClaimRow.created_at.desc()).offset(skip).limit(limit)
            ).scalars()
            return [Claim.model_validate(r) for r in rows], total

    def get_assessment_report(self, claim_id: str) -> Optional[AssessmentReport]:
        with self.reader() as session:
            row = session.get(AssessmentReportRow, claim_id)
            return AssessmentReport.model_validate(row) if row else None

    def get_assessment_requests(self, claim_id: str) -> List[AssessmentRequest]:
        with self.reader() as session:
            rows = session.execute(
                select(AssessmentRequestRow)
                .where(AssessmentRequestRow.claim_id == claim_id)
                .order_by(AssessmentRequestRow.attempt)
            ).scalars()
            return [AssessmentRequest.model_validate(r) for r in rows]

    def get_stale_requests(self, older_than: datetime) -> List[AssessmentRequest]:
        with self.reader() as session:
            rows = session.execute(
                select(AssessmentRequestRow)
                .where(AssessmentRequestRow.status == "pending", AssessmentRequestRow.requested_at < older_than)
                .order_by(AssessmentRequestRow.requested_at)
            ).scalars()
            return [AssessmentRequest.model_validate(r) for r in rows]

    def get_draft(self, claim_id: str) -> Optional[ReviewDraft]:
        with self.reader() as session:
            row = session.get(ReviewDraftRow, claim_id)
            return ReviewDraft.model_validate(row) if row else None

    def get_decision(self, claim_id: str) -> Optional[DecisionRecord]:
        with self.reader() as session:
            row = session.get(DecisionRecordRow, claim_id)
            return DecisionRecord.model_validate(row) if row else None

    def get_payouts(self, claim_id: str) -> List[PayoutRecord]:
        with self.reader() as session:
            rows = session.execute(
                select(PayoutRecordRow).where(PayoutRecordRow.claim_id == claim_id).order_by(PayoutRecordRow.id)
            ).scalars()
            return [PayoutRecord.model_validate(r) for r in rows]

    def get_audit_trail(self, claim_id: str) -> List[AuditEntry]:
        with self.reader() as session:
            rows = session.execute(
                select(AuditEntryRow).where(AuditEntryRow.claim_id == claim_id).order_by(AuditEntryRow.id)
            ).scalars()
            return [AuditEntry.model_validate(r) for r in rows]

    def get_policy(self, policy_id: str) -> Policy:
        with self.reader() as session:
            row = session.get(PolicyRow, policy_id)
            if row is None:
                raise NotFoundError(f"Policy not found: {policy_id}", error_code="POLICY_NOT_FOUND",
                                    details={"policy_id": policy_id})
            return Policy.model_validate(row)

    def get_farmer(self, farmer_id: str) -> Optional[Farmer]:
        with self.reader() as session:
            row = session.get(FarmerRow, farmer_id)
            return Farmer.model_validate(row) if row else None

    def get_reviewer(self, reviewer_id: str) -> Optional[Reviewer]:
        with self.reader() as session:
            row = session.get(ReviewerRow, reviewer_id)
            return Reviewer.model_validate(row) if row else None

    def count_claims(self) -> int:
        with self.reader() as session:
            return session.execute(select(func.count(ClaimRow.id))).scalar_one()


