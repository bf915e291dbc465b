"""
Settlement Coordinator
----------------------
Drives decided claims to their terminal state.

release_for_settlement:
    DECIDED(approve|partial) → PAYOUT_PENDING, DECIDED(reject) → CLOSED,
    unless the scrutiny policy holds the claim (operator may override).

process_payout, in three steps:
    1. validate and take the settlement lock (versioned compare-and-swap)
    2. call the payment gateway outside any DB transaction
    3. record PayoutRecord + PAYOUT_PENDING → PAID + audit entry together
A gateway failure releases the lock and leaves the claim PAYOUT_PENDING.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import select

from cropclaim.config import config
from cropclaim.exceptions import (
    ClaimEngineError, CollaboratorUnavailableError, ConcurrentModificationError, ConflictError,
    InvalidStateError, PayoutFailedError, ValidationError,
)
from cropclaim.models.assessment import AssessmentReport
from cropclaim.models.claim import Claim, ClaimStatus
from cropclaim.models.payout import PayoutRecord, ReleaseResult
from cropclaim.models.policy import Farmer
from cropclaim.models.review import DecisionRecord
from cropclaim.services.scrutiny_policy import ScrutinyPolicy
from cropclaim.services.state_machine import Operation, next_state
from cropclaim.store.claim_store import ClaimStore
from cropclaim.store.tables import AssessmentReportRow, DecisionRecordRow, PayoutRecordRow
from cropclaim.utils.external_apis import PaymentClient
from cropclaim.utils.logger import log_event, logger
from cropclaim.utils.security import mask_bank_details


class SettlementCoordinator:
    def __init__(self, store: ClaimStore, payment_client: PaymentClient,
                 scrutiny_policy: Optional[ScrutinyPolicy] = None, lock_timeout_seconds: Optional[int] = None):
        self.store = store
        self.payment_client = payment_client
        self.scrutiny_policy = scrutiny_policy or ScrutinyPolicy()
        self.lock_timeout = timedelta(
            seconds=config.PAYOUT_LOCK_TIMEOUT_SECONDS if lock_timeout_seconds is None else lock_timeout_seconds
        )

    # =========================================================
    # 🚦 Release
    # =========================================================
    def release_for_settlement(self, claim_id: str, actor: str, override: bool = False,
                               expected_version: Optional[int] = None) -> ReleaseResult:
        with self.store.transaction() as session:
            row = self.store.load_claim(session, claim_id, expected_version)
            target = next_state(row.status, Operation.RELEASE, outcome=row.decision_outcome, claim_id=claim_id)
            decision_row = session.get(DecisionRecordRow, claim_id)
            report_row = session.get(AssessmentReportRow, claim_id)
            verdict = self.scrutiny_policy.evaluate(
                Claim.model_validate(row),
                DecisionRecord.model_validate(decision_row),
                AssessmentReport.model_validate(report_row) if report_row else None,
            )

            if verdict.hold and not override:
                log_event("settlement_held", level="warning", claim_id=claim_id, actor=actor,
                          reason=verdict.reason, signals=verdict.signals)
                return ReleaseResult(claim_id=claim_id, released=False, status=row.status, reason=verdict.reason)

            action = "claim_closed" if target == ClaimStatus.CLOSED else "released_for_payout"
            self.store.transition(
                session, row, target, actor, action,
                details={
                    "override": override and verdict.hold,
                    "risk_score": verdict.risk_score,
                    "signals": verdict.signals,
                },
            )

        reason = "Operator override of scrutiny hold" if (override and verdict.hold) else verdict.reason
        return ReleaseResult(claim_id=claim_id, released=True, status=target.value, reason=reason)

    # =========================================================
    # 💸 Payout
    # =========================================================
    def process_payout(self, claim_id: str, amount: float, transaction_id: str, notes: Optional[str] = "",
                       actor: str = "system") -> PayoutRecord:
        if not transaction_id or not str(transaction_id).strip():
            raise ValidationError("Transaction id is required", field="transaction_id")
        if amount is None or amount <= 0:
            raise ValidationError("Payout amount must be greater than zero", field="amount")

        token = uuid.uuid4().hex
        bank_details = self._acquire_lock(claim_id, amount, transaction_id, token)

        try:
            result = self.payment_client.pay(claim_id, amount, bank_details, transaction_id)
        except CollaboratorUnavailableError as e:
            self._release_lock(claim_id, token)
            log_event("payout_failed", level="error", claim_id=claim_id, transaction_id=transaction_id,
                      error=e.message)
            raise PayoutFailedError(claim_id, e.message) from e

        try:
            return self._record_payout(claim_id, amount, transaction_id, notes, actor, token, result)
        except Exception:
            # Money has moved; keep the lock so nobody pays again before an operator reconciles
            logger.error(
                f"❌ Payout {transaction_id} for {claim_id} settled at gateway "
                f"({result.transaction_id}) but could not be recorded",
                exc_info=True,
            )
            raise

    def _acquire_lock(self, claim_id: str, amount: float, transaction_id: str, token: str) -> dict:
        now = datetime.utcnow()
        with self.store.transaction() as session:
            row = self.store.load_claim(session, claim_id)
            next_state(row.status, Operation.PROCESS_PAYOUT, claim_id=claim_id)
            if self.store.active_payout(session, claim_id) is not None:
                raise InvalidStateError("process payout", row.status, claim_id=claim_id,
                                        message=f"Claim {claim_id} already has a payout record")

            policy = self.store.load_policy(session, row.policy_id)
            if amount > policy.sum_insured:
                raise ValidationError(
                    f"Payout {amount:.2f} exceeds sum insured {policy.sum_insured:.2f}",
                    field="amount", current_state=row.status,
                )
            decision = session.get(DecisionRecordRow, claim_id)
            if decision is not None and decision.approved_amount is not None and amount > decision.approved_amount:
                raise ValidationError(
                    f"Payout {amount:.2f} exceeds approved amount {decision.approved_amount:.2f}",
                    field="amount", current_state=row.status,
                )
            reused = session.execute(
                select(PayoutRecordRow.claim_id).where(PayoutRecordRow.transaction_id == transaction_id)
            ).first()
            if reused is not None:
                raise ConflictError(f"Transaction id {transaction_id} was already used",
                                    error_code="TRANSACTION_ID_REUSED", field="transaction_id")

            if row.payout_lock_token and row.payout_lock_at and now - row.payout_lock_at < self.lock_timeout:
                raise ConcurrentModificationError(claim_id, current_version=row.version, current_state=row.status)
            if row.payout_lock_token:
                logger.warning(f"⏱️ Taking over expired settlement lock on {claim_id}")

            row.payout_lock_token = token
            row.payout_lock_at = now
            row.touch()
            farmer = Farmer.model_validate(self.store.load_farmer(session, row.farmer_id))

        bank_details = farmer.bank_details()
        log_event("payout_lock_acquired", claim_id=claim_id, transaction_id=transaction_id,
                  beneficiary=mask_bank_details(bank_details))
        return bank_details

    def _release_lock(self, claim_id: str, token: str) -> None:
        try:
            with self.store.transaction() as session:
                row = self.store.load_claim(session, claim_id)
                if row.payout_lock_token == token:
                    row.payout_lock_token = None
                    row.payout_lock_at = None
                    row.touch()
        except ClaimEngineError as e:
            logger.warning(f"⚠️ Could not release settlement lock on {claim_id} ({e.error_code}); it will expire")

    def _record_payout(self, claim_id, amount, transaction_id, notes, actor, token, result) -> PayoutRecord:
        mismatch = result.transaction_id != transaction_id
        with self.store.transaction() as session:
            row = self.store.load_claim(session, claim_id)
            if row.payout_lock_token != token:
                raise ConcurrentModificationError(claim_id, current_version=row.version, current_state=row.status)
            target = next_state(row.status, Operation.PROCESS_PAYOUT, claim_id=claim_id)

            record_notes = notes or ""
            if mismatch:
                record_notes = (record_notes + f" [gateway reported transaction {result.transaction_id}]").strip()
                log_event("gateway_transaction_mismatch", level="warning", claim_id=claim_id,
                          transaction_id=transaction_id, gateway_transaction_id=result.transaction_id)

            record_row = PayoutRecordRow(
                claim_id=claim_id,
                amount=amount,
                transaction_id=transaction_id,
                gateway_transaction_id=result.transaction_id,
                settled_at=result.settled_at,
                notes=record_notes,
                voided=False,
            )
            session.add(record_row)
            row.payout_lock_token = None
            row.payout_lock_at = None
            self.store.transition(
                session, row, target, actor, "payout_completed",
                details={
                    "amount": amount,
                    "transaction_id": transaction_id,
                    "gateway_transaction_id": result.transaction_id,
                },
            )

        return PayoutRecord.model_validate(record_row)
