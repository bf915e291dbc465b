"""
Review & Decision Engine
------------------------
Insurer-side work on a claim once the assessment is in:

- save_draft: mutable verification notes (last writer wins)
- submit_decision: immutable DecisionRecord + DECIDED(outcome)
- mark/clear fraud suspect: orthogonal flag. It halts automatic progression
  while set but never blocks a human decision; the decision is annotated
  with it for settlement scrutiny.
"""

from datetime import datetime
from typing import Optional, Union

from cropclaim.config import config
from cropclaim.exceptions import ClaimEngineError, InvalidStateError, ValidationError
from cropclaim.models.claim import Claim, ClaimStatus, DecisionOutcome
from cropclaim.models.review import DecisionRecord, DraftInput, ReviewDraft
from cropclaim.services.state_machine import NON_TERMINAL, Operation, ensure_in, next_state
from cropclaim.store.claim_store import ClaimStore
from cropclaim.store.tables import DecisionRecordRow, ReviewDraftRow
from cropclaim.utils.logger import log_event, log_with_context, logger


def parse_outcome(outcome: Optional[Union[str, DecisionOutcome]]) -> DecisionOutcome:
    """approve / reject / partial; anything else (including `pending`) is a ValidationError."""
    if isinstance(outcome, DecisionOutcome):
        return outcome
    value = (outcome or "").strip().lower()
    if not value:
        raise ValidationError("Decision outcome is required", field="outcome")
    if value == "pending":
        raise ValidationError("'pending' is a draft state, not a final decision", field="outcome")
    try:
        return DecisionOutcome(value)
    except ValueError:
        raise ValidationError(f"Unknown decision outcome: {outcome}", field="outcome") from None


def _draft_snapshot(draft_row: Optional[ReviewDraftRow]) -> Optional[dict]:
    if draft_row is None:
        return None
    return {
        "reviewer_id": draft_row.reviewer_id,
        "verified_area": draft_row.verified_area,
        "damage_confirmation": draft_row.damage_confirmation,
        "comments": draft_row.comments,
        "field_photo_refs": list(draft_row.field_photo_refs or []),
        "saved_at": draft_row.saved_at.isoformat() if draft_row.saved_at else None,
    }


class ReviewService:
    def __init__(self, store: ClaimStore, assessment=None, settlement=None, auto_release: Optional[bool] = None):
        self.store = store
        self.assessment = assessment
        self.settlement = settlement
        self.auto_release = config.AUTO_RELEASE_DECISIONS if auto_release is None else auto_release

    # =========================================================
    # 📝 Draft
    # =========================================================
    @log_with_context("info")
    def save_draft(self, claim_id: str, reviewer_id: str, draft: Union[DraftInput, dict],
                   expected_version: Optional[int] = None) -> ReviewDraft:
        """Overwrite the claim's draft; AI_PROCESSED → UNDER_REVIEW on the first save."""
        if not isinstance(draft, DraftInput):
            draft = DraftInput.model_validate(draft or {})

        with self.store.transaction() as session:
            row = self.store.load_claim(session, claim_id, expected_version)
            target = next_state(row.status, Operation.SAVE_DRAFT, claim_id=claim_id)
            self.store.authorized_reviewer(session, reviewer_id, row)

            draft_row = session.get(ReviewDraftRow, claim_id)
            if draft_row is None:
                draft_row = ReviewDraftRow(claim_id=claim_id)
                session.add(draft_row)
            draft_row.reviewer_id = reviewer_id
            draft_row.verified_area = draft.verified_area
            draft_row.damage_confirmation = draft.damage_confirmation.value
            draft_row.comments = draft.comments or ""
            draft_row.field_photo_refs = list(draft.field_photo_refs)
            draft_row.saved_at = datetime.utcnow()

            if not row.assigned_reviewer_id:
                row.assigned_reviewer_id = reviewer_id
            self.store.transition(session, row, target, reviewer_id, "draft_saved",
                                  details={"damage_confirmation": draft_row.damage_confirmation})

        return ReviewDraft.model_validate(draft_row)

    # =========================================================
    # ⚖️ Decision
    # =========================================================
    @log_with_context("info")
    def submit_decision(
        self,
        claim_id: str,
        reviewer_id: str,
        outcome: Optional[Union[str, DecisionOutcome]],
        final_comments: Optional[str] = "",
        approved_amount: Optional[float] = None,
        expected_version: Optional[int] = None,
    ) -> DecisionRecord:
        """Freeze the current draft into a DecisionRecord and move the claim to DECIDED."""
        verdict = parse_outcome(outcome)

        with self.store.transaction() as session:
            row = self.store.load_claim(session, claim_id, expected_version)
            target = next_state(row.status, Operation.SUBMIT_DECISION, claim_id=claim_id)
            self.store.authorized_reviewer(session, reviewer_id, row)
            if session.get(DecisionRecordRow, claim_id) is not None:
                raise InvalidStateError("submit decision", row.status, claim_id=claim_id,
                                        message=f"Claim {claim_id} already has a decision record")

            policy = self.store.load_policy(session, row.policy_id)
            if approved_amount is not None:
                if verdict == DecisionOutcome.REJECT:
                    raise ValidationError("A rejected claim cannot carry an approved amount",
                                          field="approved_amount", current_state=row.status)
                if approved_amount <= 0 or approved_amount > policy.sum_insured:
                    raise ValidationError(
                        f"Approved amount must be > 0 and ≤ sum insured ({policy.sum_insured:.2f})",
                        field="approved_amount",
                        current_state=row.status,
                    )

            record_row = DecisionRecordRow(
                claim_id=claim_id,
                decided_by=reviewer_id,
                decided_at=datetime.utcnow(),
                outcome=verdict.value,
                final_comments=final_comments or "",
                approved_amount=approved_amount,
                fraud_suspect_at_decision=bool(row.fraud_suspect),
                draft_snapshot=_draft_snapshot(session.get(ReviewDraftRow, claim_id)),
            )
            row.decision_outcome = verdict.value
            if not row.assigned_reviewer_id:
                row.assigned_reviewer_id = reviewer_id
            self.store.transition(
                session, row, target, reviewer_id, "decision_submitted",
                details={
                    "outcome": verdict.value,
                    "approved_amount": approved_amount,
                    "fraud_suspect": bool(row.fraud_suspect),
                },
            )
            # versioned claim UPDATE first; a racing decision loses here, not on the record's key
            session.flush()
            session.add(record_row)

        record = DecisionRecord.model_validate(record_row)
        log_event("decision_recorded", claim_id=claim_id, outcome=record.outcome, actor=reviewer_id,
                  fraud_suspect=record.fraud_suspect_at_decision)
        self._auto_release(claim_id)
        return record

    def _auto_release(self, claim_id: str) -> None:
        """Release a freshly decided claim in its own transaction; failure leaves it DECIDED."""
        if not (self.auto_release and self.settlement):
            return
        try:
            self.settlement.release_for_settlement(claim_id, actor="system")
        except ClaimEngineError as e:
            logger.warning(f"⚠️ Automatic release of {claim_id} failed ({e.error_code}); left for operator release")

    # =========================================================
    # 🚩 Fraud flag
    # =========================================================
    @log_with_context("info")
    def mark_fraud_suspect(self, claim_id: str, reviewer_id: str) -> Claim:
        """Set the flag (no-op when already set); refused on PAID/CLOSED claims."""
        with self.store.transaction() as session:
            row = self.store.load_claim(session, claim_id)
            ensure_in(row.status, NON_TERMINAL, "flag fraud suspect on", claim_id=claim_id)
            self.store.authorized_reviewer(session, reviewer_id, row)
            if row.fraud_suspect:
                logger.info(f"Claim {claim_id} already flagged as fraud suspect; no-op")
                return Claim.model_validate(row)

            row.fraud_suspect = True
            row.fraud_flagged_at = datetime.utcnow()
            row.touch()
            self.store.append_audit(session, claim_id, reviewer_id, "fraud_flagged", row.status, row.status)

        log_event("fraud_flagged", level="warning", claim_id=claim_id, actor=reviewer_id, state=row.status)
        return Claim.model_validate(row)

    @log_with_context("info")
    def clear_fraud_suspect(self, claim_id: str, reviewer_id: str) -> Claim:
        """Clear the flag and resume whatever automatic progression it was holding back."""
        with self.store.transaction() as session:
            row = self.store.load_claim(session, claim_id)
            ensure_in(row.status, NON_TERMINAL, "clear fraud suspect on", claim_id=claim_id)
            self.store.authorized_reviewer(session, reviewer_id, row)
            if not row.fraud_suspect:
                return Claim.model_validate(row)

            row.fraud_suspect = False
            row.fraud_flagged_at = None
            row.touch()
            self.store.append_audit(session, claim_id, reviewer_id, "fraud_unflagged", row.status, row.status)
            if self.assessment is not None:
                self.assessment.advance_if_assessed(session, row, reviewer_id)
            decided = row.status == ClaimStatus.DECIDED.value

        log_event("fraud_unflagged", claim_id=claim_id, actor=reviewer_id, state=row.status)
        if decided:
            self._auto_release(claim_id)
        return self.store.get_claim(claim_id)
